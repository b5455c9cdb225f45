"""Combo (bundle) detection and application on a POS cart."""
import logging
import uuid
from collections import defaultdict
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pharmapos.exceptions import BusinessLogicError
from pharmapos.services import cache_service
from pharmapos.utils.number_format import to_decimal, quantize_money

logger = logging.getLogger(__name__)

LINE_PRODUCT = 'product'
LINE_COMBO = 'combo'


def product_lines(cart: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [line for line in cart.get('lines', []) if line.get('type', LINE_PRODUCT) == LINE_PRODUCT]


def cart_quantities(cart: Dict[str, Any]) -> Dict[int, int]:
    """Quantity per product over non-combo lines (lot lines included)."""
    totals = defaultdict(int)
    for line in product_lines(cart):
        totals[int(line['product_id'])] += int(line['quantity'])
    return dict(totals)


def _item_retail_price(item: Dict[str, Any], cart: Dict[str, Any]) -> Decimal:
    product = item.get('product') or {}
    price = to_decimal(product.get('retail_price'))
    if price is None:
        for line in product_lines(cart):
            if int(line['product_id']) == int(item['product_id']):
                price = to_decimal(line.get('retail_price'))
                break
    return price or Decimal('0')


def combo_original_price(combo: Dict[str, Any], cart: Optional[Dict[str, Any]] = None) -> Decimal:
    """Sum of retail prices of one set of the combo."""
    cart = cart or {'lines': []}
    return sum(
        (_item_retail_price(item, cart) * int(item['quantity']) for item in combo.get('items', [])),
        Decimal('0')
    )


def calculate_max_sets(cart: Dict[str, Any], combo: Dict[str, Any]) -> int:
    """How many whole sets of the combo the cart can assemble (0 when none)."""
    items = combo.get('items') or []
    if not items:
        return 0
    quantities = cart_quantities(cart)
    return min(
        quantities.get(int(item['product_id']), 0) // int(item['quantity'])
        for item in items
    )


def detect_matching_combos(cart: Dict[str, Any], combos: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Report the combos whose requirements are met by the cart.

    Satisfaction check only, the cart is not mutated.

    Returns:
        list of {'combo', 'original_price', 'discount_amount',
                 'discount_percentage', 'max_sets'}
    """
    quantities = cart_quantities(cart)
    matches = []
    for combo in combos:
        items = combo.get('items') or []
        if not items:
            continue
        if any(quantities.get(int(item['product_id']), 0) < int(item['quantity']) for item in items):
            continue

        original_price = combo_original_price(combo, cart)
        combo_price = to_decimal(combo.get('combo_price'), Decimal('0'))
        discount_amount = original_price - combo_price
        discount_percentage = (
            (discount_amount / original_price * 100).quantize(Decimal('0.01'))
            if original_price > 0 else Decimal('0')
        )
        matches.append({
            'combo': combo,
            'original_price': original_price,
            'discount_amount': discount_amount,
            'discount_percentage': discount_percentage,
            'max_sets': calculate_max_sets(cart, combo),
        })
    return matches


def _consume(cart: Dict[str, Any], product_id: int, needed: int) -> List[Dict[str, Any]]:
    """Take `needed` units of a product from its lines, first line first."""
    consumed = []
    for line in product_lines(cart):
        if needed == 0:
            break
        if int(line['product_id']) != product_id:
            continue
        take = min(int(line['quantity']), needed)
        line['quantity'] = int(line['quantity']) - take
        needed -= take
        consumed.append({
            'product_id': product_id,
            'name': line.get('name'),
            'quantity': take,
            'lot_id': line.get('lot_id'),
            'lot_number': line.get('lot_number'),
            'lot_warehouse_id': line.get('lot_warehouse_id'),
            'retail_price': str(to_decimal(line.get('retail_price'), Decimal('0'))),
        })
    cart['lines'] = [
        line for line in cart['lines']
        if line.get('type', LINE_PRODUCT) != LINE_PRODUCT or int(line['quantity']) > 0
    ]
    return consumed


def apply_combo(cart: Dict[str, Any], combo: Dict[str, Any], sets: Optional[int] = None) -> Dict[str, Any]:
    """
    Replace product lines of the cart with a combo line.

    Args:
        cart: cart dict, mutated in place
        combo: combo with its items
        sets: sets to assemble; None assembles as many as the cart allows

    Returns:
        The combo line appended to the cart.

    Raises:
        BusinessLogicError: combo without items, or not enough quantity for
            the requested sets.
    """
    items = combo.get('items') or []
    if not items:
        raise BusinessLogicError(f'Combo "{combo.get("name")}" không có sản phẩm')

    max_sets = calculate_max_sets(cart, combo)
    if max_sets == 0:
        raise BusinessLogicError(f'Giỏ hàng chưa đủ sản phẩm cho combo "{combo.get("name")}"')
    if sets is None:
        sets = max_sets
    if sets < 1 or sets > max_sets:
        raise BusinessLogicError(
            f'Chỉ có thể thêm tối đa {max_sets} combo "{combo.get("name")}"'
        )

    original_price = combo_original_price(combo, cart)
    components = []
    for item in items:
        components.extend(_consume(cart, int(item['product_id']), int(item['quantity']) * sets))

    combo_price = to_decimal(combo.get('combo_price'), Decimal('0'))
    line = {
        'key': uuid.uuid4().hex,
        'type': LINE_COMBO,
        'combo_id': combo['id'],
        'name': combo.get('name'),
        'quantity': sets,
        'unit_price': str(combo_price),
        'final_price': str(combo_price),
        'original_price': str(original_price),
        'components': components,
        'savings': str(quantize_money((original_price - combo_price) * sets)),
    }
    cart['lines'].append(line)
    logger.info(f"[COMBO] Applied combo {combo['id']} x{sets} ({len(components)} components)")
    return line


def load_active_combos(backend, tenant_id: int) -> List[Dict[str, Any]]:
    """Active combos with their items and each item's product row."""
    combos = backend.select(
        'combos', {'tenant_id': tenant_id, 'is_active': True}, order_by=['id']
    ).unwrap('combos', 'select')
    if not combos:
        return []

    combo_ids = [c['id'] for c in combos]
    items = backend.select(
        'combo_items', {'combo_id': ('in', combo_ids)}, order_by=['id']
    ).unwrap('combo_items', 'select')

    product_ids = sorted({i['product_id'] for i in items})
    products = {}
    if product_ids:
        rows = backend.select(
            'product', {'tenant_id': tenant_id, 'id': ('in', product_ids)}
        ).unwrap('product', 'select')
        products = {p['id']: p for p in rows}

    by_combo = defaultdict(list)
    for item in items:
        item['product'] = products.get(item['product_id'])
        by_combo[item['combo_id']].append(item)
    for combo in combos:
        combo['items'] = by_combo.get(combo['id'], [])
    return combos


def get_active_combos(backend, tenant_id: int) -> List[Dict[str, Any]]:
    return cache_service.cached(
        tenant_id, cache_service.COMBOS, 'active',
        lambda: load_active_combos(backend, tenant_id),
        ttl_setting='CACHE_COMBOS_TTL'
    )


def get_combo(backend, tenant_id: int, combo_id: int) -> Optional[Dict[str, Any]]:
    for combo in get_active_combos(backend, tenant_id):
        if int(combo['id']) == int(combo_id):
            return combo
    return None


def create_combo(backend, tenant_id: int, name: str, combo_price, items: List[Dict[str, Any]],
                 description: Optional[str] = None) -> Dict[str, Any]:
    """Insert a combo with its items and drop the tenant's cached combos."""
    if not items:
        raise BusinessLogicError('Combo phải có ít nhất một sản phẩm')
    if any(int(item['quantity']) <= 0 for item in items):
        raise BusinessLogicError('Số lượng trong combo phải lớn hơn 0')
    price = to_decimal(combo_price)
    if price is None or price < 0:
        raise BusinessLogicError('Giá combo không hợp lệ')

    combo = backend.insert('combos', {
        'tenant_id': tenant_id,
        'name': name,
        'description': description,
        'combo_price': price,
        'is_active': True,
    }).unwrap('combos', 'insert')[0]

    response = backend.insert('combo_items', [
        {'combo_id': combo['id'], 'product_id': item['product_id'], 'quantity': int(item['quantity'])}
        for item in items
    ])
    if not response.ok:
        backend.delete('combos', {'id': combo['id']})
    combo['items'] = response.unwrap('combo_items', 'insert')

    cache_service.invalidate(tenant_id, cache_service.COMBOS)
    logger.info(f"[COMBO] Combo {combo['id']} created for tenant {tenant_id}")
    return combo
