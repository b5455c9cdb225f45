"""
Inventory checks and conditional stock writes.

Quantity checks run against an explicit InventorySnapshot. Writes use a
compare-and-swap discipline: update ... set quantity = new where
quantity = observed, retried on conflict, never going below zero.
"""
import logging
from collections import defaultdict
from datetime import datetime, timezone, date
from typing import Any, Dict, Iterable, List, Optional

from pharmapos.exceptions import (
    BusinessLogicError, InsufficientStockError, StaleSnapshotError, ConcurrentUpdateError
)
from pharmapos.services.combo_service import LINE_COMBO

logger = logging.getLogger(__name__)

DEFAULT_CAS_RETRIES = 3


class InventorySnapshot:
    """Point-in-time view of on-hand quantities of one warehouse."""

    def __init__(self, warehouse_id: int, quantities: Dict[int, int],
                 taken_at: Optional[datetime] = None, version: Optional[str] = None):
        self.warehouse_id = warehouse_id
        self.quantities = {int(k): int(v) for k, v in quantities.items()}
        self.taken_at = taken_at or datetime.now(timezone.utc)
        self.version = version

    def available(self, product_id: int) -> int:
        return self.quantities.get(int(product_id), 0)

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return (now - self.taken_at).total_seconds()

    def is_stale(self, max_age_seconds: Optional[float], now: Optional[datetime] = None) -> bool:
        if max_age_seconds is None:
            return False
        return self.age_seconds(now) > max_age_seconds

    def __repr__(self):
        return f"<InventorySnapshot(warehouse_id={self.warehouse_id}, products={len(self.quantities)})>"


def take_inventory_snapshot(backend, tenant_id: int, warehouse_id: int,
                            product_ids: Iterable[int]) -> InventorySnapshot:
    """Read on-hand quantities of the given products in a warehouse."""
    product_ids = sorted({int(pid) for pid in product_ids})
    if not product_ids:
        return InventorySnapshot(warehouse_id, {})

    rows = backend.select('inventory', {
        'tenant_id': tenant_id,
        'warehouse_id': warehouse_id,
        'product_id': ('in', product_ids),
    }).unwrap('inventory', 'select')

    stamps = [str(r['updated_at']) for r in rows if r.get('updated_at') is not None]
    return InventorySnapshot(
        warehouse_id,
        {r['product_id']: r['quantity'] for r in rows},
        version=max(stamps) if stamps else None
    )


def _cart_lines(cart: Dict[str, Any]) -> List[Dict[str, Any]]:
    # accepts a session cart or the output of calculate_cart_totals
    if 'lines' in cart:
        return cart['lines']
    return cart.get('items', [])


def flatten_required_quantities(cart: Dict[str, Any]) -> Dict[int, int]:
    """Per-product quantity the cart needs, combo components included."""
    required = defaultdict(int)
    for line in _cart_lines(cart):
        if line.get('type') == LINE_COMBO:
            for component in line.get('components', []):
                required[int(component['product_id'])] += int(component['quantity'])
        else:
            required[int(line['product_id'])] += int(line['quantity'])
    return dict(required)


def product_names_from_cart(cart: Dict[str, Any]) -> Dict[int, str]:
    names = {}
    for line in _cart_lines(cart):
        if line.get('type') == LINE_COMBO:
            for component in line.get('components', []):
                if component.get('name'):
                    names[int(component['product_id'])] = component['name']
        elif line.get('name'):
            names[int(line['product_id'])] = line['name']
    return names


def find_shortfalls(cart: Dict[str, Any], snapshot: InventorySnapshot,
                    product_names: Optional[Dict[int, str]] = None) -> List[Dict[str, Any]]:
    """Every product whose required quantity exceeds on-hand (missing counts as 0)."""
    names = product_names_from_cart(cart)
    names.update(product_names or {})
    shortfalls = []
    for product_id, required in sorted(flatten_required_quantities(cart).items()):
        available = snapshot.available(product_id)
        if required > available:
            shortfalls.append({
                'product_id': product_id,
                'product_name': names.get(product_id, f'#{product_id}'),
                'required': required,
                'available': available,
            })
    return shortfalls


def ensure_sufficient_stock(cart: Dict[str, Any], snapshot: InventorySnapshot,
                            max_age: Optional[float] = None,
                            product_names: Optional[Dict[int, str]] = None) -> None:
    """
    Gate payment on the snapshot.

    Raises:
        StaleSnapshotError: snapshot older than max_age seconds
        InsufficientStockError: with the full list of shortfalls
    """
    if snapshot.is_stale(max_age):
        raise StaleSnapshotError(snapshot.age_seconds(), max_age)

    shortfalls = find_shortfalls(cart, snapshot, product_names)
    if shortfalls:
        logger.info(f"[STOCK] Payment blocked, {len(shortfalls)} shortfall(s) in warehouse {snapshot.warehouse_id}")
        raise InsufficientStockError(shortfalls)


# =====================================================
# CONDITIONAL WRITES
# =====================================================

def compare_and_swap_quantity(backend, table: str, row: Dict[str, Any], delta: int,
                              retries: int = DEFAULT_CAS_RETRIES,
                              product_name: Optional[str] = None) -> Dict[str, Any]:
    """
    Apply delta to row['quantity'] only if nobody changed it meanwhile.

    On conflict the row is re-read and the write retried, up to `retries`
    attempts. A result below zero raises InsufficientStockError.

    Returns:
        The updated row.
    """
    observed = row
    for attempt in range(1, retries + 1):
        current = int(observed['quantity'])
        new_quantity = current + delta
        if new_quantity < 0:
            raise InsufficientStockError([{
                'product_id': observed.get('product_id'),
                'product_name': product_name or f"#{observed.get('product_id')}",
                'required': -delta,
                'available': current,
            }])

        updated = backend.update(
            table, {'quantity': new_quantity}, {'id': observed['id'], 'quantity': current}
        ).unwrap(table, 'update')
        if updated:
            return updated[0]

        logger.warning(f"[STOCK] CAS conflict on {table} id={observed['id']} (attempt {attempt}/{retries})")
        fresh = backend.select(table, {'id': observed['id']}).unwrap(table, 'select')
        if not fresh:
            raise BusinessLogicError(f'Bản ghi {table} #{observed["id"]} không còn tồn tại')
        observed = fresh[0]

    raise ConcurrentUpdateError(table, observed['id'], retries)


def decrement_inventory(backend, tenant_id: int, warehouse_id: int, product_id: int,
                        quantity: int, retries: int = DEFAULT_CAS_RETRIES,
                        product_name: Optional[str] = None) -> Dict[str, Any]:
    """Decrement-if-sufficient for one product. Returns the applied change."""
    rows = backend.select('inventory', {
        'tenant_id': tenant_id, 'warehouse_id': warehouse_id, 'product_id': product_id
    }).unwrap('inventory', 'select')
    if not rows:
        raise InsufficientStockError([{
            'product_id': product_id,
            'product_name': product_name or f'#{product_id}',
            'required': quantity,
            'available': 0,
        }])

    updated = compare_and_swap_quantity(backend, 'inventory', rows[0], -quantity, retries, product_name)
    return {'inventory_id': updated['id'], 'product_id': product_id, 'quantity': quantity,
            'remaining': updated['quantity']}


def restore_inventory(backend, applied: Dict[str, Any], retries: int = DEFAULT_CAS_RETRIES) -> None:
    """Put back a decrement returned by decrement_inventory."""
    rows = backend.select('inventory', {'id': applied['inventory_id']}).unwrap('inventory', 'select')
    if not rows:
        raise BusinessLogicError(f"Không tìm thấy tồn kho #{applied['inventory_id']}")
    compare_and_swap_quantity(backend, 'inventory', rows[0], applied['quantity'], retries)


def decrement_lot(backend, lot_id: int, quantity: int,
                  retries: int = DEFAULT_CAS_RETRIES) -> Dict[str, Any]:
    rows = backend.select('product_lots', {'id': lot_id}).unwrap('product_lots', 'select')
    if not rows:
        raise BusinessLogicError(f'Không tìm thấy lô #{lot_id}')
    lot = rows[0]
    return compare_and_swap_quantity(backend, 'product_lots', lot, -quantity, retries,
                                     product_name=f"lô {lot.get('lot_number')}")


# =====================================================
# ADMINISTRATION
# =====================================================

def set_inventory_level(backend, tenant_id: int, product_id: int, warehouse_id: int,
                        quantity: int, min_stock: int = 0, max_stock: int = 0) -> Dict[str, Any]:
    """Write the on-hand level of a product, keyed on (product_id, warehouse_id)."""
    if quantity < 0:
        raise BusinessLogicError('Số lượng tồn kho không được âm')
    rows = backend.upsert('inventory', {
        'tenant_id': tenant_id,
        'product_id': product_id,
        'warehouse_id': warehouse_id,
        'quantity': quantity,
        'min_stock': min_stock,
        'max_stock': max_stock,
    }, on_conflict=['product_id', 'warehouse_id']).unwrap('inventory', 'upsert')
    logger.info(f"[STOCK] product={product_id} warehouse={warehouse_id} set to {quantity}")
    return rows[0]


def _expiry_key(lot: Dict[str, Any]):
    expiry = lot.get('expiry_date')
    if expiry is None or expiry == '':
        return (1, date.max, lot['id'])
    if not isinstance(expiry, date):
        expiry = date.fromisoformat(str(expiry)[:10])
    return (0, expiry, lot['id'])


def get_available_lots(backend, tenant_id: int, product_id: int, warehouse_id: int) -> List[Dict[str, Any]]:
    """Lots with stock left, earliest expiry first (lots without expiry last)."""
    lots = backend.select('product_lots', {
        'tenant_id': tenant_id,
        'product_id': product_id,
        'warehouse_id': warehouse_id,
        'quantity': ('gt', 0),
    }).unwrap('product_lots', 'select')
    return sorted(lots, key=_expiry_key)
