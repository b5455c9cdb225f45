"""
Integration tests for the POS blueprint: cart, combos and checkout over HTTP.
"""

import pytest
from datetime import date, timedelta
from decimal import Decimal

from pharmapos.models import Product, ProductLot, Warehouse
from pharmapos.services.combo_service import create_combo
from pharmapos.services.pricing_service import create_promotion


def _add(client, product_id, quantity=1, lot_id=None):
    payload = {'product_id': product_id, 'quantity': quantity}
    if lot_id is not None:
        payload['lot_id'] = lot_id
    return client.post('/pos/cart/items', json=payload)


def _select_warehouse(client, warehouse_id, **extra):
    return client.post('/pos/cart/warehouse', json=dict(extra, warehouse_id=warehouse_id))


class TestTenantRequired:

    def test_cart_needs_tenant(self, client):
        response = client.get('/pos/cart')
        assert response.status_code == 403
        assert response.get_json()['status'] == 'error'

    def test_inactive_tenant_rejected(self, client, tenant, session):
        tenant.active = False
        session.commit()
        with client.session_transaction() as sess:
            sess['tenant_id'] = tenant.id
        assert client.get('/pos/cart').status_code == 403


class TestCart:

    def test_empty_cart_returns_token(self, tenant_client):
        data = tenant_client.get('/pos/cart').get_json()
        assert data['cart']['items'] == []
        assert 'csrf_token' in data

    def test_add_and_merge(self, tenant_client, stocked, product_a):
        assert _add(tenant_client, product_a.id, 1).status_code == 201
        data = _add(tenant_client, product_a.id, 2).get_json()
        [item] = data['cart']['items']
        assert item['quantity'] == 3
        assert Decimal(data['cart']['item_total']) == Decimal('90')

    def test_promotion_applied(self, tenant_client, backend, tenant, stocked, product_a):
        create_promotion(backend, tenant.id, {'name': 'Giảm 10% DHG', 'type': 'percentage', 'value': '10',
                                              'conditions': {'manufacturers': ['DHG']}})
        data = _add(tenant_client, product_a.id, 2).get_json()
        [item] = data['cart']['items']
        assert Decimal(item['final_price']) == Decimal('27')
        assert item['applied_promotion']['name'] == 'Giảm 10% DHG'
        assert Decimal(data['cart']['total_discount']) == Decimal('6')

    def test_update_and_remove(self, tenant_client, stocked, product_a, product_b):
        _add(tenant_client, product_a.id)
        items = _add(tenant_client, product_b.id).get_json()['cart']['items']
        key_a, key_b = items[0]['key'], items[1]['key']

        data = tenant_client.patch(f'/pos/cart/items/{key_a}', json={'quantity': 5}).get_json()
        assert data['cart']['items'][0]['quantity'] == 5

        data = tenant_client.patch(f'/pos/cart/items/{key_a}', json={'quantity': 0}).get_json()
        assert [i['key'] for i in data['cart']['items']] == [key_b]

        data = tenant_client.delete(f'/pos/cart/items/{key_b}').get_json()
        assert data['cart']['items'] == []

    def test_unknown_line_is_404(self, tenant_client):
        assert tenant_client.delete('/pos/cart/items/nope').status_code == 404

    def test_invalid_quantity(self, tenant_client, product_a):
        response = _add(tenant_client, product_a.id, 'abc')
        assert response.status_code == 400
        assert response.get_json()['message'] == 'Số lượng phải là số nguyên'

    def test_other_tenant_product_not_found(self, tenant_client, other_tenant, session):
        foreign = Product(tenant_id=other_tenant.id, name='Thuốc khác', sku='X1', retail_price=10, active=True)
        session.add(foreign)
        session.commit()
        assert _add(tenant_client, foreign.id).status_code == 404

    def test_carts_are_per_tenant(self, tenant_client, other_tenant, stocked, product_a):
        _add(tenant_client, product_a.id)
        with tenant_client.session_transaction() as sess:
            sess['tenant_id'] = other_tenant.id
        assert tenant_client.get('/pos/cart').get_json()['cart']['items'] == []


class TestLots:

    def test_lot_product_needs_lot(self, tenant_client, warehouse, stocked, lot_product):
        _select_warehouse(tenant_client, warehouse.id)
        response = _add(tenant_client, lot_product.id)
        assert response.status_code == 400

    def test_lots_listed_earliest_expiry_first(self, tenant_client, warehouse, lot_product, lots):
        _select_warehouse(tenant_client, warehouse.id)
        data = tenant_client.get(f'/pos/products/{lot_product.id}/lots').get_json()
        assert [lot['lot_number'] for lot in data['lots']] == ['L-001', 'L-002']

    def test_add_with_lot(self, tenant_client, warehouse, stocked, lot_product, lots):
        _select_warehouse(tenant_client, warehouse.id)
        data = _add(tenant_client, lot_product.id, 2, lots['early'].id).get_json()
        [item] = data['cart']['items']
        assert item['lot_id'] == lots['early'].id
        assert item['lot_number'] == 'L-001'

    def test_empty_lot_rejected(self, tenant_client, warehouse, stocked, lot_product, lots):
        _select_warehouse(tenant_client, warehouse.id)
        assert _add(tenant_client, lot_product.id, 1, lots['empty'].id).status_code == 400

    def test_warehouse_change_blocked_with_lot_lines(self, tenant_client, session, tenant, warehouse,
                                                     stocked, lot_product, lots):
        other = Warehouse(tenant_id=tenant.id, name='Kho phụ', active=True)
        session.add(other)
        session.commit()

        _select_warehouse(tenant_client, warehouse.id)
        _add(tenant_client, lot_product.id, 1, lots['early'].id)
        assert _select_warehouse(tenant_client, other.id).status_code == 400

    def test_lot_added_before_warehouse_must_match_it(self, tenant_client, session, tenant, warehouse,
                                                       stocked, lot_product):
        other = Warehouse(tenant_id=tenant.id, name='Kho 2', active=True)
        session.add(other)
        session.commit()
        lot = ProductLot(tenant_id=tenant.id, product_id=lot_product.id, warehouse_id=other.id,
                         lot_number='K2-001', batch_code='K2', expiry_date=date.today() + timedelta(days=90),
                         quantity=4)
        session.add(lot)
        session.commit()
        other_id, lot_id = other.id, lot.id

        assert _add(tenant_client, lot_product.id, 1, lot_id).status_code == 201

        response = _select_warehouse(tenant_client, warehouse.id)
        assert response.status_code == 400
        assert 'K2-001' in response.get_json()['message']
        assert tenant_client.get('/pos/cart').get_json()['cart']['warehouse_id'] is None

        assert _select_warehouse(tenant_client, other_id).status_code == 200


class TestCombos:

    @pytest.fixture
    def combo(self, backend, tenant, product_a):
        return create_combo(backend, tenant.id, 'Combo giảm đau', '50',
                            [{'product_id': product_a.id, 'quantity': 2}])

    def test_suggested_when_cart_matches(self, tenant_client, stocked, product_a, combo):
        data = _add(tenant_client, product_a.id, 1).get_json()
        assert data['combo_suggestions'] == []

        data = _add(tenant_client, product_a.id, 3).get_json()
        [suggestion] = data['combo_suggestions']
        assert suggestion['combo_id'] == combo['id']
        assert suggestion['max_sets'] == 2
        assert Decimal(suggestion['discount_amount']) == Decimal('10')

    def test_apply_one_set(self, tenant_client, stocked, product_a, combo):
        _add(tenant_client, product_a.id, 4)
        response = tenant_client.post(f'/pos/cart/combos/{combo["id"]}', json={})
        assert response.status_code == 201

        cart = response.get_json()['cart']
        product_item = next(i for i in cart['items'] if i['type'] == 'product')
        combo_item = next(i for i in cart['items'] if i['type'] == 'combo')
        assert product_item['quantity'] == 2
        assert Decimal(combo_item['final_price']) == Decimal('50')
        assert Decimal(cart['combo_savings']) == Decimal('10')
        assert Decimal(cart['item_total']) == Decimal('110')

    def test_apply_without_enough_items(self, tenant_client, stocked, product_a, combo):
        _add(tenant_client, product_a.id, 1)
        assert tenant_client.post(f'/pos/cart/combos/{combo["id"]}', json={}).status_code == 400

    def test_unknown_combo(self, tenant_client):
        assert tenant_client.post('/pos/cart/combos/999', json={}).status_code == 404

    def test_combo_set_count_cannot_be_patched(self, tenant_client, backend, warehouse, fund, stocked,
                                               product_a, combo):
        _select_warehouse(tenant_client, warehouse.id)
        _add(tenant_client, product_a.id, 2)
        cart = tenant_client.post(f'/pos/cart/combos/{combo["id"]}', json={}).get_json()['cart']
        combo_item = next(i for i in cart['items'] if i['type'] == 'combo')

        response = tenant_client.patch(f"/pos/cart/items/{combo_item['key']}", json={'quantity': 3})
        assert response.status_code == 400

        response = tenant_client.post('/pos/checkout', json={'payment_method': 'cash'})
        assert response.status_code == 201
        order = response.get_json()['order']
        assert Decimal(str(order['total_value'])) == Decimal('50')
        items = backend.select('sales_order_items', {'order_id': order['order_id']}).unwrap()
        assert [(i['quantity'], Decimal(str(i['unit_price']))) for i in items] == [(2, Decimal('25'))]
        assert backend.select('inventory', {'product_id': product_a.id}).unwrap()[0]['quantity'] == 8

    def test_removing_combo_line_is_allowed(self, tenant_client, stocked, product_a, combo):
        _add(tenant_client, product_a.id, 2)
        cart = tenant_client.post(f'/pos/cart/combos/{combo["id"]}', json={}).get_json()['cart']
        [combo_item] = cart['items']

        response = tenant_client.patch(f"/pos/cart/items/{combo_item['key']}", json={'quantity': 0})
        assert response.status_code == 200
        assert response.get_json()['cart']['items'] == []


class TestCheckout:

    def test_requires_warehouse(self, tenant_client, stocked, product_a):
        _add(tenant_client, product_a.id)
        response = tenant_client.post('/pos/checkout', json={})
        assert response.status_code == 400
        assert response.get_json()['message'] == 'Vui lòng chọn kho'

    def test_empty_cart(self, tenant_client, warehouse):
        _select_warehouse(tenant_client, warehouse.id)
        assert tenant_client.post('/pos/checkout', json={}).status_code == 400

    def test_validate_reports_every_shortfall(self, tenant_client, warehouse, stocked, product_a, product_x):
        _select_warehouse(tenant_client, warehouse.id)
        _add(tenant_client, product_a.id, 11)
        _add(tenant_client, product_x.id, 6)

        response = tenant_client.post('/pos/checkout/validate')
        assert response.status_code == 409
        shortfalls = response.get_json()['shortfalls']
        assert [(s['product_id'], s['required'], s['available']) for s in shortfalls] == [
            (product_a.id, '11', '10'), (product_x.id, '6', '5')
        ]

    def test_validate_returns_snapshot(self, tenant_client, warehouse, stocked, product_a):
        _select_warehouse(tenant_client, warehouse.id)
        _add(tenant_client, product_a.id, 2)
        snapshot = tenant_client.post('/pos/checkout/validate').get_json()['snapshot']
        assert snapshot['warehouse_id'] == warehouse.id
        assert snapshot['quantities'] == {str(product_a.id): 10}

    def test_shortfall_blocks_payment(self, tenant_client, backend, warehouse, fund, stocked, product_x):
        _select_warehouse(tenant_client, warehouse.id)
        _add(tenant_client, product_x.id, 6)
        assert tenant_client.post('/pos/checkout', json={'payment_method': 'cash'}).status_code == 409
        assert backend.select('sales_orders').unwrap() == []

    def test_sale_committed_and_cart_cleared(self, tenant_client, backend, warehouse, fund, stocked,
                                             product_a, walk_in_patient):
        _select_warehouse(tenant_client, warehouse.id, patient_id=walk_in_patient.patient_id)
        _add(tenant_client, product_a.id, 2)

        response = tenant_client.post('/pos/checkout', json={'payment_method': 'Card'})
        assert response.status_code == 201
        data = response.get_json()
        assert data['order']['payment_method'] == 'card'
        assert data['order']['patient_id'] == walk_in_patient.patient_id
        assert data['order']['created_by_employee_id'] == 'emp-001'
        assert data['transaction']['fund_id'] == fund.id
        assert data['warnings'] == []

        inventory = backend.select('inventory', {'product_id': product_a.id}).unwrap()[0]
        assert inventory['quantity'] == 8

        cart = tenant_client.get('/pos/cart').get_json()['cart']
        assert cart['items'] == []
        assert cart['patient_id'] is None
        assert cart['warehouse_id'] == warehouse.id

    def test_invalid_payment_method(self, tenant_client, warehouse, fund, stocked, product_a):
        _select_warehouse(tenant_client, warehouse.id)
        _add(tenant_client, product_a.id)
        assert tenant_client.post('/pos/checkout', json={'payment_method': 'bitcoin'}).status_code == 400
