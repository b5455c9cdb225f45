"""Product model."""
from sqlalchemy import Column, BigInteger, String, Boolean, Numeric, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from pharmapos.database import Base, IdType


class Product(Base):
    """Catalog product. Stock lives in Inventory, per warehouse."""

    __tablename__ = 'product'
    __table_args__ = (
        UniqueConstraint('tenant_id', 'sku', name='uq_product_tenant_sku'),
    )

    id = Column(IdType, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False)
    sku = Column(String, nullable=True)
    barcode = Column(String, nullable=True)
    name = Column(String, nullable=False)
    category = Column(String(120), nullable=True)
    manufacturer = Column(String(200), nullable=True)
    retail_price = Column(Numeric(14, 2), nullable=True)
    wholesale_price = Column(Numeric(14, 2), nullable=True)
    enable_lot_management = Column(Boolean, nullable=False, default=False)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', sku='{self.sku}')>"
