"""
Unit tests for combo detection and application.
"""

import pytest
from decimal import Decimal

from pharmapos.exceptions import BusinessLogicError
from pharmapos.services.combo_service import (
    calculate_max_sets, detect_matching_combos, apply_combo, LINE_COMBO
)


def _line(product_id, quantity, retail_price, lot_id=None, key=None):
    return {'key': key or f'k{product_id}-{lot_id}', 'type': 'product', 'product_id': product_id,
            'name': f'SP {product_id}', 'quantity': quantity, 'retail_price': retail_price, 'lot_id': lot_id}


def _combo(items, price='50', combo_id=7):
    return {'id': combo_id, 'name': 'Combo cảm cúm', 'combo_price': price, 'items': [
        {'product_id': pid, 'quantity': qty, 'product': {'id': pid, 'retail_price': retail}}
        for pid, qty, retail in items
    ]}


class TestDetection:

    def test_max_sets_is_the_tightest_item(self):
        cart = {'lines': [_line(1, 5, '30'), _line(2, 1, '20')]}
        combo = _combo([(1, 2, '30'), (2, 1, '20')])
        assert calculate_max_sets(cart, combo) == 1

    def test_lot_lines_count_towards_quantity(self):
        cart = {'lines': [_line(1, 1, '30', lot_id=10), _line(1, 1, '30', lot_id=11)]}
        assert calculate_max_sets(cart, _combo([(1, 2, '30')])) == 1

    def test_unsatisfied_combo_not_reported(self):
        cart = {'lines': [_line(1, 1, '30')]}
        assert detect_matching_combos(cart, [_combo([(1, 2, '30')])]) == []

    def test_match_reports_discount(self):
        cart = {'lines': [_line(1, 4, '30')]}
        [match] = detect_matching_combos(cart, [_combo([(1, 2, '30')])])
        assert match['original_price'] == Decimal('60')
        assert match['discount_amount'] == Decimal('10')
        assert match['discount_percentage'] == Decimal('16.67')
        assert match['max_sets'] == 2
        # detection does not touch the cart
        assert cart['lines'][0]['quantity'] == 4

    def test_empty_combo_never_matches(self):
        cart = {'lines': [_line(1, 4, '30')]}
        assert detect_matching_combos(cart, [_combo([])]) == []
        assert calculate_max_sets(cart, _combo([])) == 0


class TestApplyCombo:

    def test_one_set_leaves_the_remainder(self):
        cart = {'lines': [_line(1, 4, '30')]}
        line = apply_combo(cart, _combo([(1, 2, '30')]), sets=1)

        product_lines = [entry for entry in cart['lines'] if entry['type'] == 'product']
        assert len(product_lines) == 1
        assert product_lines[0]['quantity'] == 2

        assert line['type'] == LINE_COMBO
        assert line['quantity'] == 1
        assert Decimal(line['final_price']) == Decimal('50')
        assert Decimal(line['savings']) == Decimal('10')
        assert [c['quantity'] for c in line['components']] == [2]

    def test_default_assembles_all_sets(self):
        cart = {'lines': [_line(1, 4, '30')]}
        line = apply_combo(cart, _combo([(1, 2, '30')]))
        assert line['quantity'] == 2
        assert [entry['type'] for entry in cart['lines']] == [LINE_COMBO]
        assert Decimal(line['savings']) == Decimal('20')

    def test_components_consume_lines_in_order(self):
        cart = {'lines': [_line(1, 1, '30', lot_id=10), _line(1, 3, '30', lot_id=11)]}
        line = apply_combo(cart, _combo([(1, 2, '30')]), sets=1)
        assert [(c['lot_id'], c['quantity']) for c in line['components']] == [(10, 1), (11, 1)]
        remaining = [(entry['lot_id'], entry['quantity']) for entry in cart['lines'] if entry['type'] == 'product']
        assert remaining == [(11, 2)]

    def test_empty_combo_rejected(self):
        cart = {'lines': [_line(1, 4, '30')]}
        with pytest.raises(BusinessLogicError):
            apply_combo(cart, _combo([]))
        assert cart['lines'][0]['quantity'] == 4

    def test_too_many_sets_rejected(self):
        cart = {'lines': [_line(1, 3, '30')]}
        with pytest.raises(BusinessLogicError):
            apply_combo(cart, _combo([(1, 2, '30')]), sets=2)

    def test_unsatisfied_combo_rejected(self):
        cart = {'lines': [_line(1, 1, '30')]}
        with pytest.raises(BusinessLogicError):
            apply_combo(cart, _combo([(1, 2, '30')]))
