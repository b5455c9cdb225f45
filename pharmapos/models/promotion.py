"""Promotion model."""
from sqlalchemy import Column, BigInteger, String, Boolean, Numeric, Date, DateTime, JSON, ForeignKey
from sqlalchemy.sql import func
from pharmapos.database import Base, IdType
import enum


class PromotionType(str, enum.Enum):
    """Item-level promotion types."""
    PERCENTAGE = 'percentage'
    FIXED_AMOUNT = 'fixed_amount'


class Promotion(Base):
    """Promotion applied to a single product price.

    conditions: {"manufacturers": str | [str], "product_categories": str | [str]}
    """

    __tablename__ = 'promotions'

    id = Column(IdType, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False)
    name = Column(String(200), nullable=False)
    type = Column(String(30), nullable=False)
    value = Column(Numeric(14, 2), nullable=False)
    conditions = Column(JSON, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<Promotion(id={self.id}, type='{self.type}', value={self.value})>"
