"""
POS cart operations.

A cart is a plain dict kept in the Flask session, one per tenant:

    {'warehouse_id': int | None, 'patient_id': int | None, 'lines': [...]}

Product lines carry a snapshot of the product row (prices as strings so the
session serializer round-trips them); combo lines are built by
combo_service.apply_combo.
"""
import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pharmapos.exceptions import BusinessLogicError, NotFoundError
from pharmapos.services.combo_service import LINE_PRODUCT, LINE_COMBO
from pharmapos.services.pricing_service import resolve_best_price
from pharmapos.utils.number_format import to_decimal


def new_cart(warehouse_id: Optional[int] = None, patient_id: Optional[int] = None) -> Dict[str, Any]:
    return {'warehouse_id': warehouse_id, 'patient_id': patient_id, 'lines': []}


def _price_str(value: Any) -> Optional[str]:
    number = to_decimal(value)
    return str(number) if number is not None else None


def _product_snapshot(product: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'product_id': product['id'],
        'name': product.get('name'),
        'sku': product.get('sku'),
        'retail_price': _price_str(product.get('retail_price')),
        'wholesale_price': _price_str(product.get('wholesale_price')),
        'category': product.get('category'),
        'manufacturer': product.get('manufacturer'),
        'enable_lot_management': bool(product.get('enable_lot_management')),
    }


def find_line(cart: Dict[str, Any], key: str) -> Dict[str, Any]:
    for line in cart.get('lines', []):
        if line['key'] == key:
            return line
    raise NotFoundError('Không tìm thấy dòng trong giỏ hàng')


def add_product(cart: Dict[str, Any], product: Dict[str, Any], quantity: int = 1,
                lot: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Add a product to the cart, merging with an existing line when possible.

    Non-lot lines merge on product_id, lot lines on (product_id, lot_id).

    Raises:
        BusinessLogicError: quantity <= 0, lot missing for a lot-managed
            product, or lot of another product.
    """
    if quantity is None or int(quantity) <= 0:
        raise BusinessLogicError('Số lượng phải lớn hơn 0')
    quantity = int(quantity)

    if product.get('enable_lot_management') and lot is None:
        raise BusinessLogicError(f'Vui lòng chọn lô cho sản phẩm "{product.get("name")}"')
    if lot is not None and int(lot['product_id']) != int(product['id']):
        raise BusinessLogicError('Lô không thuộc sản phẩm đã chọn')

    lot_id = lot['id'] if lot is not None else None
    for line in cart['lines']:
        if line.get('type') != LINE_PRODUCT:
            continue
        if int(line['product_id']) == int(product['id']) and line.get('lot_id') == lot_id:
            line['quantity'] += quantity
            return line

    line = {'key': uuid.uuid4().hex, 'type': LINE_PRODUCT, 'quantity': quantity, 'lot_id': lot_id}
    line.update(_product_snapshot(product))
    if lot is not None:
        line['lot_number'] = lot.get('lot_number')
        line['lot_warehouse_id'] = lot.get('warehouse_id')
        expiry = lot.get('expiry_date')
        line['expiry_date'] = expiry.isoformat() if hasattr(expiry, 'isoformat') else expiry
    cart['lines'].append(line)
    return line


def update_quantity(cart: Dict[str, Any], key: str, quantity: int) -> Optional[Dict[str, Any]]:
    """
    Set the quantity of a line; zero or less removes it. Returns the line or None.

    Raises:
        BusinessLogicError: set count change on a combo line (its components
            were consumed for the original count).
    """
    line = find_line(cart, key)
    if quantity is None or int(quantity) <= 0:
        remove_line(cart, key)
        return None
    if line.get('type') == LINE_COMBO and int(quantity) != int(line['quantity']):
        raise BusinessLogicError(
            f'Không thể đổi số lượng combo "{line.get("name")}", vui lòng xóa và áp dụng lại combo'
        )
    line['quantity'] = int(quantity)
    return line


def remove_line(cart: Dict[str, Any], key: str) -> None:
    find_line(cart, key)
    cart['lines'] = [line for line in cart['lines'] if line['key'] != key]


def clear_cart(cart: Dict[str, Any]) -> None:
    cart['lines'] = []


def lots_outside_warehouse(cart: Dict[str, Any], warehouse_id: int) -> List[str]:
    """Lot numbers in the cart (combo components included) stored in another warehouse."""
    entries = []
    for line in cart.get('lines', []):
        entries.append(line)
        entries.extend(line.get('components', []))

    foreign = []
    for entry in entries:
        if not entry.get('lot_id'):
            continue
        # lines without the lot warehouse were checked against the cart warehouse when added
        lot_warehouse = entry.get('lot_warehouse_id', cart.get('warehouse_id'))
        if lot_warehouse is None or int(lot_warehouse) != int(warehouse_id):
            foreign.append(str(entry.get('lot_number') or entry['lot_id']))
    return foreign


def calculate_cart_totals(cart: Dict[str, Any], promotions: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Re-price the cart.

    Product lines go through the promotion resolver, combo lines stay at the
    combo price.

    Returns:
        {'items': [...], 'item_total', 'original_total', 'total_discount',
         'combo_savings', 'warehouse_id', 'patient_id'}
    """
    items = []
    item_total = Decimal('0')
    original_total = Decimal('0')
    combo_savings = Decimal('0')

    for line in cart.get('lines', []):
        quantity = int(line['quantity'])
        item = dict(line)

        if line.get('type') == LINE_COMBO:
            final_price = to_decimal(line['final_price'], Decimal('0'))
            original_price = final_price
            item['applied_promotion'] = None
            combo_savings += to_decimal(line.get('savings'), Decimal('0'))
        else:
            price = resolve_best_price(line, promotions)
            final_price = price['final_price']
            original_price = price['original_price']
            promo = price['applied_promotion']
            item['applied_promotion'] = (
                {'id': promo['id'], 'name': promo.get('name')} if promo else None
            )

        item['final_price'] = final_price
        item['original_price'] = original_price
        item['subtotal'] = final_price * quantity
        item['original_subtotal'] = original_price * quantity
        item_total += item['subtotal']
        original_total += item['original_subtotal']
        items.append(item)

    return {
        'items': items,
        'item_total': item_total,
        'original_total': original_total,
        'total_discount': original_total - item_total,
        'combo_savings': combo_savings,
        'warehouse_id': cart.get('warehouse_id'),
        'patient_id': cart.get('patient_id'),
    }
