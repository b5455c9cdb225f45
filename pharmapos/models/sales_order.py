"""Sales order models."""
import uuid
import enum
from sqlalchemy import Column, BigInteger, Integer, String, Boolean, Numeric, DateTime, ForeignKey
from sqlalchemy.sql import func
from pharmapos.database import Base, IdType


class OrderType(str, enum.Enum):
    """Sales channel of an order."""
    POS = 'pos'
    B2B = 'b2b'


def _new_order_id():
    return str(uuid.uuid4())


class SalesOrder(Base):
    """Durable record of a sale. POS orders are created paid and completed."""

    __tablename__ = 'sales_orders'

    order_id = Column(String(36), primary_key=True, default=_new_order_id)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False)
    patient_id = Column(BigInteger, ForeignKey('patients.patient_id'), nullable=True)
    order_type = Column(String(20), nullable=False, default=OrderType.POS.value)
    total_value = Column(Numeric(14, 2), nullable=False)
    payment_method = Column(String(20), nullable=False)
    payment_status = Column(String(20), nullable=False)
    operational_status = Column(String(30), nullable=False)
    warehouse_id = Column(BigInteger, ForeignKey('warehouse.id'), nullable=True)
    created_by_employee_id = Column(String(64), nullable=True)
    order_datetime = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<SalesOrder(order_id='{self.order_id}', total_value={self.total_value})>"


class SalesOrderItem(Base):
    """Line of a sales order. Combo lines are stored exploded per product."""

    __tablename__ = 'sales_order_items'

    id = Column(IdType, primary_key=True, autoincrement=True)
    order_id = Column(String(36), ForeignKey('sales_orders.order_id'), nullable=False)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(14, 2), nullable=False)
    is_service = Column(Boolean, nullable=False, default=False)
    lot_id = Column(BigInteger, ForeignKey('product_lots.id'), nullable=True)

    def __repr__(self):
        return f"<SalesOrderItem(order_id='{self.order_id}', product_id={self.product_id}, quantity={self.quantity})>"


class SalesComboItem(Base):
    """Combo components sold in an order (reporting)."""

    __tablename__ = 'sales_combo_items'

    id = Column(IdType, primary_key=True, autoincrement=True)
    order_id = Column(String(36), ForeignKey('sales_orders.order_id'), nullable=False)
    combo_id = Column(BigInteger, ForeignKey('combos.id'), nullable=False)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(14, 2), nullable=False)
    lot_id = Column(BigInteger, ForeignKey('product_lots.id'), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class SalesOrderLotItem(Base):
    """Quantity deducted from a lot for an order."""

    __tablename__ = 'sales_order_lot_items'

    id = Column(IdType, primary_key=True, autoincrement=True)
    order_id = Column(String(36), ForeignKey('sales_orders.order_id'), nullable=False)
    lot_id = Column(BigInteger, ForeignKey('product_lots.id'), nullable=False)
    quantity = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
