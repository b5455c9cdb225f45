"""Combo (bundle) models."""
from sqlalchemy import Column, BigInteger, Integer, String, Text, Boolean, Numeric, DateTime, ForeignKey
from sqlalchemy.sql import func
from pharmapos.database import Base, IdType


class Combo(Base):
    """Fixed-price bundle of products."""

    __tablename__ = 'combos'

    id = Column(IdType, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    combo_price = Column(Numeric(14, 2), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Combo(id={self.id}, name='{self.name}', combo_price={self.combo_price})>"


class ComboItem(Base):
    """Product and quantity required by a combo."""

    __tablename__ = 'combo_items'

    id = Column(IdType, primary_key=True, autoincrement=True)
    combo_id = Column(BigInteger, ForeignKey('combos.id'), nullable=False)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=False)
    quantity = Column(Integer, nullable=False)

    def __repr__(self):
        return f"<ComboItem(combo_id={self.combo_id}, product_id={self.product_id}, quantity={self.quantity})>"
