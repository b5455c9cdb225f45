"""
Integration tests for conditional stock writes and lot handling.
"""

import pytest

from pharmapos.exceptions import ConcurrentUpdateError, InsufficientStockError, BusinessLogicError
from pharmapos.models import ProductLot
from pharmapos.services import inventory_service
from pharmapos.services.sales_service import deduct_lots_for_order


class RacingBackend:
    """Backend whose conditional inventory writes lose to another writer.

    Before each guarded update, another sale takes one unit from the row.
    """

    def __init__(self, inner, races):
        self.inner = inner
        self.name = inner.name
        self.races = races

    def __getattr__(self, item):
        return getattr(self.inner, item)

    def update(self, table, values, filters):
        if table == 'inventory' and 'quantity' in filters and self.races > 0:
            self.races -= 1
            row = self.inner.select('inventory', {'id': filters['id']}).unwrap()[0]
            self.inner.update('inventory', {'quantity': row['quantity'] - 1}, {'id': row['id']}).unwrap()
        return self.inner.update(table, values, filters)


def _inventory(backend, warehouse, product):
    return backend.select('inventory', {'warehouse_id': warehouse.id, 'product_id': product.id}).unwrap()[0]


class TestCompareAndSwap:

    def test_decrement(self, backend, tenant, warehouse, stocked, product_a):
        applied = inventory_service.decrement_inventory(backend, tenant.id, warehouse.id, product_a.id, 3)
        assert applied['remaining'] == 7
        assert _inventory(backend, warehouse, product_a)['quantity'] == 7

    def test_conflict_is_retried_on_fresh_quantity(self, backend, tenant, warehouse, stocked, product_a):
        racing = RacingBackend(backend, races=1)
        applied = inventory_service.decrement_inventory(racing, tenant.id, warehouse.id, product_a.id, 2)
        # the competing sale took one unit first: 10 - 1 - 2
        assert applied['remaining'] == 7
        assert _inventory(backend, warehouse, product_a)['quantity'] == 7

    def test_gives_up_after_retries(self, backend, tenant, warehouse, stocked, product_a):
        racing = RacingBackend(backend, races=10)
        with pytest.raises(ConcurrentUpdateError) as exc_info:
            inventory_service.decrement_inventory(racing, tenant.id, warehouse.id, product_a.id, 2, retries=3)
        assert exc_info.value.attempts == 3
        assert exc_info.value.status_code == 409
        # only the competing writes landed
        assert _inventory(backend, warehouse, product_a)['quantity'] == 7

    def test_never_goes_negative(self, backend, tenant, warehouse, stocked, product_x):
        with pytest.raises(InsufficientStockError) as exc_info:
            inventory_service.decrement_inventory(backend, tenant.id, warehouse.id, product_x.id, 6,
                                                  product_name='Amoxicillin 250mg')
        assert exc_info.value.shortfalls[0]['available'] == 5
        assert _inventory(backend, warehouse, product_x)['quantity'] == 5

    def test_missing_inventory_row_is_a_shortfall(self, backend, tenant, warehouse, product_a):
        with pytest.raises(InsufficientStockError):
            inventory_service.decrement_inventory(backend, tenant.id, warehouse.id, product_a.id, 1)

    def test_restore(self, backend, tenant, warehouse, stocked, product_a):
        applied = inventory_service.decrement_inventory(backend, tenant.id, warehouse.id, product_a.id, 4)
        inventory_service.restore_inventory(backend, applied)
        assert _inventory(backend, warehouse, product_a)['quantity'] == 10


class TestSetInventoryLevel:

    def test_upsert_on_product_and_warehouse(self, backend, tenant, warehouse, product_a):
        first = inventory_service.set_inventory_level(backend, tenant.id, product_a.id, warehouse.id, 10)
        second = inventory_service.set_inventory_level(backend, tenant.id, product_a.id, warehouse.id, 4,
                                                       min_stock=2, max_stock=50)
        assert first['id'] == second['id']
        rows = backend.select('inventory', {'product_id': product_a.id}).unwrap()
        assert len(rows) == 1
        assert (rows[0]['quantity'], rows[0]['min_stock'], rows[0]['max_stock']) == (4, 2, 50)

    def test_negative_level_rejected(self, backend, tenant, warehouse, product_a):
        with pytest.raises(BusinessLogicError):
            inventory_service.set_inventory_level(backend, tenant.id, product_a.id, warehouse.id, -1)


class TestLots:

    def test_available_lots_earliest_expiry_first(self, backend, tenant, warehouse, lot_product, lots,
                                                  session):
        session.add(ProductLot(tenant_id=tenant.id, product_id=lot_product.id, warehouse_id=warehouse.id,
                               lot_number='L-NOEXP', quantity=2))
        session.commit()

        result = inventory_service.get_available_lots(backend, tenant.id, lot_product.id, warehouse.id)
        # empty lot excluded, lot without expiry last
        assert [lot['lot_number'] for lot in result] == ['L-001', 'L-002', 'L-NOEXP']

    def test_lot_deduction_is_idempotent(self, backend, tenant, warehouse, lots):
        order_id = backend.insert('sales_orders', {
            'tenant_id': tenant.id, 'total_value': 500, 'payment_method': 'cash',
            'payment_status': 'paid', 'operational_status': 'completed', 'warehouse_id': warehouse.id,
        }).unwrap()[0]['order_id']
        sold = [{'lot_id': lots['early'].id, 'quantity': 2}, {'lot_id': lots['late'].id, 'quantity': 1}]

        first = deduct_lots_for_order(backend, order_id, sold)
        second = deduct_lots_for_order(backend, order_id, sold)

        assert len(first) == 2
        assert second == []
        quantities = {row['id']: row['quantity'] for row in backend.select('product_lots', {}).unwrap()}
        assert quantities[lots['early'].id] == 1
        assert quantities[lots['late'].id] == 4

    def test_lot_cannot_go_negative(self, backend, lots):
        with pytest.raises(InsufficientStockError):
            inventory_service.decrement_lot(backend, lots['early'].id, 4)
