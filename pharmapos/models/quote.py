"""B2B quote models."""
import uuid
import enum
from sqlalchemy import Column, BigInteger, Integer, String, Text, Numeric, Date, DateTime, ForeignKey
from sqlalchemy.sql import func
from pharmapos.database import Base, IdType


class QuoteStage(str, enum.Enum):
    """B2B quote stages."""
    DRAFT = 'draft'
    SENT = 'sent'
    ACCEPTED = 'accepted'
    REJECTED = 'rejected'
    EXPIRED = 'expired'
    CONVERTED = 'converted'


def _new_quote_id():
    return str(uuid.uuid4())


class B2BQuote(Base):
    """Wholesale quote for a B2B customer."""

    __tablename__ = 'b2b_quotes'

    quote_id = Column(String(36), primary_key=True, default=_new_quote_id)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False)
    quote_number = Column(String(40), nullable=False)
    customer_id = Column(BigInteger, ForeignKey('patients.patient_id'), nullable=False)
    stage = Column(String(20), nullable=False, default=QuoteStage.DRAFT.value)
    total_value = Column(Numeric(14, 2), nullable=False, default=0)
    valid_until = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)
    order_id = Column(String(36), ForeignKey('sales_orders.order_id'), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<B2BQuote(quote_id='{self.quote_id}', stage='{self.stage}')>"


class B2BQuoteItem(Base):
    """Quoted product line at a wholesale price."""

    __tablename__ = 'b2b_quote_items'

    id = Column(IdType, primary_key=True, autoincrement=True)
    quote_id = Column(String(36), ForeignKey('b2b_quotes.quote_id'), nullable=False)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(14, 2), nullable=False)
    original_price = Column(Numeric(14, 2), nullable=False)
    promotion_id = Column(BigInteger, ForeignKey('promotions.id'), nullable=True)
