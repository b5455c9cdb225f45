"""
Sale commit - multi-tenant POS.

The backend has no multi-statement transaction, so a sale is written as a
saga of single calls, each with a declared compensation:

    1. create_order          hard   delete order
    2. create_order_items    hard   delete items
    3. track_combo_items     soft   delete combo tracking rows
    4. record_transaction    hard   delete transaction
    5. decrement_inventory   hard   restore quantities (CAS)
    6. deduct_lots           soft   restore lots, delete lot records

Soft failures do not roll the sale back; they are queued as reconciliation
tasks once the sale has committed.
"""
import logging
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from flask import current_app

from pharmapos.exceptions import BusinessLogicError, SaleCommitError
from pharmapos.models import (
    OrderType, TransactionType, TRANSACTION_STATUS_COLLECTED, ReconciliationKind
)
from pharmapos.services import inventory_service
from pharmapos.services.combo_service import LINE_COMBO
from pharmapos.services.saga_service import Saga, SagaError
from pharmapos.utils.number_format import to_decimal, quantize_money, money_vn

logger = logging.getLogger(__name__)

PAYMENT_STATUS_PAID = 'paid'
OPERATIONAL_STATUS_COMPLETED = 'completed'
PAYMENT_METHODS = ('cash', 'card', 'transfer')


def _cas_retries() -> int:
    if current_app:
        return current_app.config.get('INVENTORY_CAS_RETRIES', inventory_service.DEFAULT_CAS_RETRIES)
    return inventory_service.DEFAULT_CAS_RETRIES


# =====================================================
# ROW BUILDERS
# =====================================================

def _combo_line_total(item: Dict[str, Any]) -> Decimal:
    return quantize_money(to_decimal(item['final_price'], Decimal('0')) * int(item['quantity']))


def combo_unit_price(item: Dict[str, Any]) -> Decimal:
    """Combo line total spread evenly over its component units."""
    total_units = sum(int(c['quantity']) for c in item.get('components', []))
    if total_units == 0:
        return Decimal('0.00')
    return quantize_money(_combo_line_total(item) / total_units)


def combo_component_prices(item: Dict[str, Any]) -> List[tuple]:
    """
    (component, quantity, unit_price) triples of a combo line.

    Rows add up to the combo line total: the rounding remainder of the even
    split goes to one unit of the last component, split into its own row.
    """
    components = item.get('components', [])
    unit_price = combo_unit_price(item)
    remainder = _combo_line_total(item) - unit_price * sum(int(c['quantity']) for c in components)

    priced = [(c, int(c['quantity']), unit_price) for c in components]
    if priced and remainder:
        last, quantity, _ = priced.pop()
        if quantity > 1:
            priced.append((last, quantity - 1, unit_price))
        priced.append((last, 1, unit_price + remainder))
    return priced


def build_order_item_rows(items: List[Dict[str, Any]], order_id: str) -> List[Dict[str, Any]]:
    """sales_order_items rows; combo lines are exploded into their products."""
    rows = []
    for item in items:
        if item.get('type') == LINE_COMBO:
            for component, quantity, unit_price in combo_component_prices(item):
                rows.append({
                    'order_id': order_id,
                    'product_id': component['product_id'],
                    'quantity': quantity,
                    'unit_price': unit_price,
                    'is_service': False,
                    'lot_id': component.get('lot_id'),
                })
        else:
            rows.append({
                'order_id': order_id,
                'product_id': item['product_id'],
                'quantity': int(item['quantity']),
                'unit_price': to_decimal(item['final_price'], Decimal('0')),
                'is_service': bool(item.get('is_service', False)),
                'lot_id': item.get('lot_id'),
            })
    return rows


def build_combo_tracking_rows(items: List[Dict[str, Any]], order_id: str) -> List[Dict[str, Any]]:
    rows = []
    for item in items:
        if item.get('type') != LINE_COMBO:
            continue
        for component, quantity, unit_price in combo_component_prices(item):
            rows.append({
                'order_id': order_id,
                'combo_id': item['combo_id'],
                'product_id': component['product_id'],
                'quantity': quantity,
                'unit_price': str(unit_price),
                'lot_id': component.get('lot_id'),
            })
    return rows


def lot_quantities(items: List[Dict[str, Any]]) -> List[Dict[str, int]]:
    """Quantity sold per lot, product lines and combo components together."""
    totals = defaultdict(int)
    for item in items:
        if item.get('type') == LINE_COMBO:
            for component in item.get('components', []):
                if component.get('lot_id'):
                    totals[int(component['lot_id'])] += int(component['quantity'])
        elif item.get('lot_id'):
            totals[int(item['lot_id'])] += int(item['quantity'])
    return [{'lot_id': lot_id, 'quantity': qty} for lot_id, qty in sorted(totals.items())]


# =====================================================
# SOFT STEP WRITERS (also replayed by reconciliation)
# =====================================================

def insert_combo_tracking_rows(backend, order_id: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Insert combo tracking rows unless the order already has them."""
    if not rows:
        return []
    existing = backend.select('sales_combo_items', {'order_id': order_id}).unwrap('sales_combo_items', 'select')
    if existing:
        return existing
    return backend.insert('sales_combo_items', rows).unwrap('sales_combo_items', 'insert')


def deduct_lots_for_order(backend, order_id: str, lots: List[Dict[str, int]],
                          retries: int = inventory_service.DEFAULT_CAS_RETRIES) -> List[Dict[str, Any]]:
    """
    Deduct sold quantities from lots, recording each deduction for the order.

    Lots already recorded for the order are skipped, so a rerun after a
    partial failure only touches what is left.
    """
    recorded = backend.select('sales_order_lot_items', {'order_id': order_id}).unwrap(
        'sales_order_lot_items', 'select'
    )
    done = {int(r['lot_id']) for r in recorded}
    applied = []
    for lot in lots:
        if int(lot['lot_id']) in done:
            continue
        updated = inventory_service.decrement_lot(backend, lot['lot_id'], lot['quantity'], retries)
        response = backend.insert('sales_order_lot_items', {
            'order_id': order_id,
            'lot_id': lot['lot_id'],
            'quantity': lot['quantity'],
        })
        if not response.ok:
            # unrecorded deductions would be applied again on replay
            inventory_service.compare_and_swap_quantity(
                backend, 'product_lots', updated, int(lot['quantity']), retries
            )
        applied.append(response.unwrap('sales_order_lot_items', 'insert')[0])
    return applied


# =====================================================
# SALE COMMIT
# =====================================================

class _SaleCommit:
    """Steps and compensations of one sale, bound to its parameters."""

    def __init__(self, backend, cart_totals, tenant_id, warehouse_id, fund_id,
                 payment_method, created_by, patient_id, order_type):
        self.backend = backend
        self.items = cart_totals['items']
        self.total = quantize_money(cart_totals['item_total'])
        self.tenant_id = tenant_id
        self.warehouse_id = warehouse_id
        self.fund_id = fund_id
        self.payment_method = payment_method
        self.created_by = created_by
        self.patient_id = patient_id
        self.order_type = order_type
        self.retries = _cas_retries()
        self.deferred_tasks = []

    # Step 1
    def create_order(self, ctx):
        return self.backend.insert('sales_orders', {
            'tenant_id': self.tenant_id,
            'patient_id': self.patient_id,
            'order_type': self.order_type,
            'total_value': self.total,
            'payment_method': self.payment_method,
            'payment_status': PAYMENT_STATUS_PAID,
            'operational_status': OPERATIONAL_STATUS_COMPLETED,
            'warehouse_id': self.warehouse_id,
            'created_by_employee_id': self.created_by,
        }).unwrap('sales_orders', 'insert')[0]

    def delete_order(self, order, ctx):
        self.backend.delete('sales_orders', {'order_id': order['order_id']}).unwrap('sales_orders', 'delete')

    # Step 2
    def create_order_items(self, ctx):
        rows = build_order_item_rows(self.items, ctx['create_order']['order_id'])
        return self.backend.insert('sales_order_items', rows).unwrap('sales_order_items', 'insert')

    def delete_order_items(self, items, ctx):
        self.backend.delete(
            'sales_order_items', {'order_id': ctx['create_order']['order_id']}
        ).unwrap('sales_order_items', 'delete')

    # Step 3 (soft)
    def track_combo_items(self, ctx):
        order_id = ctx['create_order']['order_id']
        return insert_combo_tracking_rows(self.backend, order_id, build_combo_tracking_rows(self.items, order_id))

    def untrack_combo_items(self, rows, ctx):
        if rows:
            self.backend.delete(
                'sales_combo_items', {'order_id': ctx['create_order']['order_id']}
            ).unwrap('sales_combo_items', 'delete')

    def queue_combo_tracking(self, ctx, error):
        order_id = ctx['create_order']['order_id']
        self.deferred_tasks.append((
            ReconciliationKind.SALES_COMBO_ITEMS.value, order_id,
            {'rows': build_combo_tracking_rows(self.items, order_id)}, error
        ))

    # Step 4
    def record_transaction(self, ctx):
        order_id = ctx['create_order']['order_id']
        return self.backend.insert('transactions', {
            'tenant_id': self.tenant_id,
            'type': TransactionType.INCOME.value,
            'amount': self.total,
            'description': f'POS Sale - Order {order_id} - Warehouse ID {self.warehouse_id}',
            'payment_method': self.payment_method,
            'status': TRANSACTION_STATUS_COLLECTED,
            'transaction_date': datetime.now(timezone.utc),
            'created_by': self.created_by,
            'fund_id': self.fund_id,
        }).unwrap('transactions', 'insert')[0]

    def delete_transaction(self, transaction, ctx):
        self.backend.delete('transactions', {'id': transaction['id']}).unwrap('transactions', 'delete')

    # Step 5
    def decrement_inventory(self, ctx):
        required = inventory_service.flatten_required_quantities({'items': self.items})
        names = inventory_service.product_names_from_cart({'items': self.items})
        applied = []
        try:
            for product_id, quantity in sorted(required.items()):
                applied.append(inventory_service.decrement_inventory(
                    self.backend, self.tenant_id, self.warehouse_id, product_id, quantity,
                    self.retries, names.get(product_id)
                ))
        except Exception:
            self.restore_inventory(applied, ctx)
            raise
        return applied

    def restore_inventory(self, applied, ctx):
        for change in reversed(applied):
            inventory_service.restore_inventory(self.backend, change, self.retries)

    # Step 6 (soft)
    def deduct_lots(self, ctx):
        return deduct_lots_for_order(
            self.backend, ctx['create_order']['order_id'], lot_quantities(self.items), self.retries
        )

    def restore_lots(self, rows, ctx):
        for row in reversed(rows or []):
            lot = self.backend.select('product_lots', {'id': row['lot_id']}).unwrap('product_lots', 'select')
            if lot:
                inventory_service.compare_and_swap_quantity(
                    self.backend, 'product_lots', lot[0], int(row['quantity']), self.retries
                )
            self.backend.delete('sales_order_lot_items', {'id': row['id']}).unwrap('sales_order_lot_items', 'delete')

    def queue_lot_deduction(self, ctx, error):
        order_id = ctx['create_order']['order_id']
        self.deferred_tasks.append((
            ReconciliationKind.LOT_DEDUCTION.value, order_id,
            {'lots': lot_quantities(self.items)}, error
        ))

    def build_saga(self) -> Saga:
        saga = Saga('sale', on_compensation=_count_compensation)
        saga.step('create_order', self.create_order, compensate=self.delete_order)
        saga.step('create_order_items', self.create_order_items, compensate=self.delete_order_items)
        saga.step('track_combo_items', self.track_combo_items, compensate=self.untrack_combo_items,
                  soft=True, on_soft_failure=self.queue_combo_tracking)
        saga.step('record_transaction', self.record_transaction, compensate=self.delete_transaction)
        saga.step('decrement_inventory', self.decrement_inventory, compensate=self.restore_inventory)
        saga.step('deduct_lots', self.deduct_lots, compensate=self.restore_lots,
                  soft=True, on_soft_failure=self.queue_lot_deduction)
        return saga


def _count_compensation(step_name: str, succeeded: bool) -> None:
    from pharmapos.blueprints.metrics import sale_compensations_total
    sale_compensations_total.labels(step=step_name, outcome='ok' if succeeded else 'failed').inc()


def _validate_sale(cart_totals, tenant_id, warehouse_id, payment_method, order_type) -> None:
    if not tenant_id:
        raise BusinessLogicError('tenant_id là bắt buộc')
    if not cart_totals or not cart_totals.get('items'):
        raise BusinessLogicError('Giỏ hàng trống')
    if not warehouse_id:
        raise BusinessLogicError('Vui lòng chọn kho')
    if payment_method not in PAYMENT_METHODS:
        raise BusinessLogicError(f'Phương thức thanh toán không hợp lệ: {payment_method}')
    if order_type not in (OrderType.POS.value, OrderType.B2B.value):
        raise BusinessLogicError(f'Loại đơn hàng không hợp lệ: {order_type}')
    for item in cart_totals['items']:
        if int(item['quantity']) <= 0:
            raise BusinessLogicError('Số lượng phải lớn hơn 0')
    if to_decimal(cart_totals.get('item_total'), Decimal('0')) < 0:
        raise BusinessLogicError('Tổng tiền không hợp lệ')


def process_sale(backend, cart_totals: Dict[str, Any], *, tenant_id: int, warehouse_id: int,
                 fund_id: Optional[int], payment_method: str, created_by: Optional[str] = None,
                 patient_id: Optional[int] = None, order_type: str = OrderType.POS.value) -> Dict[str, Any]:
    """
    Commit a priced cart as a sale.

    Args:
        backend: data backend
        cart_totals: output of cart_service.calculate_cart_totals
        tenant_id, warehouse_id, fund_id: where the sale and its income land
        payment_method: cash, card or transfer
        created_by: employee id
        patient_id: customer, None for walk-ins
        order_type: 'pos' or 'b2b'

    Returns:
        {'order', 'transaction', 'items', 'warnings'}

    Raises:
        BusinessLogicError: invalid input (nothing written)
        SaleCommitError: a hard step failed; compensations ran
    """
    from pharmapos.blueprints.metrics import sales_committed_total
    from pharmapos.services.reconciliation_service import enqueue_task

    _validate_sale(cart_totals, tenant_id, warehouse_id, payment_method, order_type)

    commit = _SaleCommit(backend, cart_totals, tenant_id, warehouse_id, fund_id,
                         payment_method, created_by, patient_id, order_type)
    try:
        result = commit.build_saga().run()
    except SagaError as e:
        logger.error(
            f"[SALE] tenant={tenant_id} failed at '{e.step}': {e.error} "
            f"(compensations run={e.compensators_run}, failed={e.compensators_failed})"
        )
        sales_committed_total.labels(order_type=order_type, outcome='failed').inc()
        raise SaleCommitError(e.step, e.error, rollback_complete=e.rollback_complete) from e

    for kind, order_id, payload, error in commit.deferred_tasks:
        enqueue_task(backend, tenant_id, kind, order_id, payload, error)

    order = result['create_order']
    sales_committed_total.labels(
        order_type=order_type, outcome='partial' if result.warnings else 'ok'
    ).inc()
    logger.info(
        f"[SALE] tenant={tenant_id} order={order['order_id']} total={money_vn(order['total_value'])} "
        f"warnings={len(result.warnings)}"
    )
    return {
        'order': order,
        'transaction': result['record_transaction'],
        'items': result['create_order_items'],
        'warnings': result.warnings,
    }
