"""Financial transaction model."""
from sqlalchemy import Column, BigInteger, String, Text, Numeric, DateTime, ForeignKey
from sqlalchemy.sql import func
from pharmapos.database import Base, IdType
import enum


class TransactionType(str, enum.Enum):
    """Transaction direction."""
    INCOME = 'income'
    EXPENSE = 'expense'


# POS income is collected at the counter
TRANSACTION_STATUS_COLLECTED = 'đã thu'


class Transaction(Base):
    """Cash-book entry against a fund."""

    __tablename__ = 'transactions'

    id = Column(IdType, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False)
    type = Column(String(20), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    description = Column(Text, nullable=True)
    payment_method = Column(String(20), nullable=False)
    status = Column(String(30), nullable=False)
    transaction_date = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    created_by = Column(String(64), nullable=True)
    fund_id = Column(BigInteger, ForeignKey('fund.id'), nullable=True)

    def __repr__(self):
        return f"<Transaction(id={self.id}, type='{self.type}', amount={self.amount})>"
