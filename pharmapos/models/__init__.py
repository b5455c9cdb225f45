"""Models package - exports all SQLAlchemy models."""
# Core
from pharmapos.models.tenant import Tenant
from pharmapos.models.warehouse import Warehouse, Fund
from pharmapos.models.patient import Patient

# Catalog & stock
from pharmapos.models.product import Product
from pharmapos.models.inventory import Inventory, ProductLot
from pharmapos.models.promotion import Promotion, PromotionType
from pharmapos.models.combo import Combo, ComboItem

# Sales
from pharmapos.models.sales_order import (
    SalesOrder, SalesOrderItem, SalesComboItem, SalesOrderLotItem, OrderType
)
from pharmapos.models.transaction import Transaction, TransactionType, TRANSACTION_STATUS_COLLECTED
from pharmapos.models.quote import B2BQuote, B2BQuoteItem, QuoteStage
from pharmapos.models.reconciliation_task import (
    ReconciliationTask, ReconciliationKind, ReconciliationStatus
)

__all__ = [
    'Tenant', 'Warehouse', 'Fund', 'Patient',
    'Product', 'Inventory', 'ProductLot', 'Promotion', 'PromotionType', 'Combo', 'ComboItem',
    'SalesOrder', 'SalesOrderItem', 'SalesComboItem', 'SalesOrderLotItem', 'OrderType',
    'Transaction', 'TransactionType', 'TRANSACTION_STATUS_COLLECTED',
    'B2BQuote', 'B2BQuoteItem', 'QuoteStage',
    'ReconciliationTask', 'ReconciliationKind', 'ReconciliationStatus',
]
