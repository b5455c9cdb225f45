"""Reconciliation task model - retry queue for soft sale-commit failures."""
from sqlalchemy import Column, BigInteger, Integer, String, Text, DateTime, JSON, ForeignKey
from sqlalchemy.sql import func
from pharmapos.database import Base, IdType
import enum


class ReconciliationKind(str, enum.Enum):
    """Which sale-commit step has to be replayed."""
    SALES_COMBO_ITEMS = 'sales_combo_items'
    LOT_DEDUCTION = 'lot_deduction'


class ReconciliationStatus(str, enum.Enum):
    PENDING = 'pending'
    DONE = 'done'
    FAILED = 'failed'


class ReconciliationTask(Base):
    """Queued replay of a step that was allowed to fail during a sale."""

    __tablename__ = 'reconciliation_tasks'

    id = Column(IdType, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False)
    kind = Column(String(40), nullable=False)
    order_id = Column(String(36), nullable=False)
    payload = Column(JSON, nullable=False)
    idempotency_key = Column(String(120), nullable=False, unique=True, index=True)
    status = Column(String(20), nullable=False, default=ReconciliationStatus.PENDING.value)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<ReconciliationTask(id={self.id}, kind='{self.kind}', status='{self.status}')>"
