"""Inventory and product lot models."""
from sqlalchemy import Column, BigInteger, Integer, String, Date, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from pharmapos.database import Base, IdType


class Inventory(Base):
    """On-hand quantity of a product in a warehouse."""

    __tablename__ = 'inventory'
    __table_args__ = (
        UniqueConstraint('product_id', 'warehouse_id', name='uq_inventory_product_warehouse'),
    )

    id = Column(IdType, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=False)
    warehouse_id = Column(BigInteger, ForeignKey('warehouse.id'), nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    min_stock = Column(Integer, nullable=False, default=0)
    max_stock = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Inventory(product_id={self.product_id}, warehouse_id={self.warehouse_id}, quantity={self.quantity})>"


class ProductLot(Base):
    """Tracked batch of a product with its own expiry and quantity."""

    __tablename__ = 'product_lots'

    id = Column(IdType, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=False)
    warehouse_id = Column(BigInteger, ForeignKey('warehouse.id'), nullable=False)
    lot_number = Column(String(80), nullable=False)
    batch_code = Column(String(80), nullable=True)
    expiry_date = Column(Date, nullable=True)
    quantity = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<ProductLot(id={self.id}, lot_number='{self.lot_number}', quantity={self.quantity})>"
