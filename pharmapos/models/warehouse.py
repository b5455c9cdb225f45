"""Warehouse and fund models."""
from sqlalchemy import Column, BigInteger, String, Boolean, DateTime, ForeignKey
from sqlalchemy.sql import func
from pharmapos.database import Base, IdType


class Warehouse(Base):
    """Warehouse / store location holding inventory."""

    __tablename__ = 'warehouse'

    id = Column(IdType, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False)
    name = Column(String(200), nullable=False)
    code = Column(String(40), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<Warehouse(id={self.id}, name='{self.name}')>"


class Fund(Base):
    """Cash fund receiving POS income (one per warehouse in practice)."""

    __tablename__ = 'fund'

    id = Column(IdType, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False)
    warehouse_id = Column(BigInteger, ForeignKey('warehouse.id'), nullable=True)
    name = Column(String(200), nullable=False)
    active = Column(Boolean, nullable=False, default=True)

    def __repr__(self):
        return f"<Fund(id={self.id}, name='{self.name}')>"
