"""POS blueprint: cart management and checkout - Multi-Tenant (JSON)."""
from typing import Any, Dict, Optional

from flask import Blueprint, request, session, jsonify, current_app, g
from flask_wtf.csrf import generate_csrf

from pharmapos.exceptions import BusinessLogicError, NotFoundError
from pharmapos.middleware import require_tenant
from pharmapos.services.backend_service import get_backend
from pharmapos.services import cart_service, combo_service, inventory_service, pricing_service
from pharmapos.services.sales_service import process_sale
from pharmapos.utils.number_format import parse_quantity, money_vn

pos_bp = Blueprint('pos', __name__, url_prefix='/pos')


# =====================================================
# SESSION CART
# =====================================================

def get_cart() -> dict:
    """Get cart from session for current tenant."""
    if 'cart_by_tenant' not in session:
        session['cart_by_tenant'] = {}

    tenant_id = str(g.tenant_id)
    if tenant_id not in session['cart_by_tenant']:
        session['cart_by_tenant'][tenant_id] = cart_service.new_cart()
        session.modified = True

    return session['cart_by_tenant'][tenant_id]


def save_cart(cart: dict) -> None:
    """Save cart to session for current tenant."""
    carts = session.get('cart_by_tenant', {})
    carts[str(g.tenant_id)] = cart
    session['cart_by_tenant'] = carts
    session.modified = True


def _json() -> Dict[str, Any]:
    return request.get_json(silent=True) or {}


def _optional_int(value: Any, field: str) -> Optional[int]:
    if value in (None, ''):
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise BusinessLogicError(f'{field} không hợp lệ') from e


def _get_product_or_error(backend, product_id: int) -> dict:
    rows = backend.select('product', {'tenant_id': g.tenant_id, 'id': product_id}).unwrap('product', 'select')
    if not rows:
        raise NotFoundError('Không tìm thấy sản phẩm')
    product = rows[0]
    if not product.get('active'):
        raise BusinessLogicError(f'Sản phẩm "{product["name"]}" đã ngừng kinh doanh')
    return product


def _get_lot_or_error(backend, lot_id: int, product_id: int, warehouse_id: Optional[int]) -> dict:
    rows = backend.select('product_lots', {
        'tenant_id': g.tenant_id, 'id': lot_id, 'product_id': product_id
    }).unwrap('product_lots', 'select')
    if not rows:
        raise NotFoundError('Không tìm thấy lô hàng')
    lot = rows[0]
    if warehouse_id is not None and int(lot['warehouse_id']) != int(warehouse_id):
        raise BusinessLogicError(f'Lô {lot["lot_number"]} không thuộc kho đã chọn')
    if int(lot['quantity']) <= 0:
        raise BusinessLogicError(f'Lô {lot["lot_number"]} đã hết hàng')
    return lot


def _combo_suggestion(match: dict) -> dict:
    combo = match['combo']
    return {
        'combo_id': combo['id'],
        'name': combo['name'],
        'description': combo.get('description'),
        'combo_price': combo['combo_price'],
        'original_price': match['original_price'],
        'discount_amount': match['discount_amount'],
        'discount_percentage': match['discount_percentage'],
        'max_sets': match['max_sets'],
        'items': [
            {'product_id': i['product_id'], 'quantity': i['quantity'],
             'name': (i.get('product') or {}).get('name')}
            for i in combo.get('items', [])
        ],
    }


def _cart_response(cart: dict, status_code: int = 200, **extra):
    backend = get_backend()
    promotions = pricing_service.get_active_promotions(backend, g.tenant_id)
    combos = combo_service.get_active_combos(backend, g.tenant_id)
    payload = {
        'status': 'ok',
        'cart': cart_service.calculate_cart_totals(cart, promotions),
        'combo_suggestions': [
            _combo_suggestion(m) for m in combo_service.detect_matching_combos(cart, combos)
        ],
    }
    payload.update(extra)
    return jsonify(payload), status_code


# =====================================================
# CART
# =====================================================

@pos_bp.route('/cart', methods=['GET'])
@require_tenant
def cart_view():
    """Cart with totals, combo suggestions and the CSRF token for later calls."""
    return _cart_response(get_cart(), csrf_token=generate_csrf())


@pos_bp.route('/cart/items', methods=['POST'])
@require_tenant
def cart_add():
    """Add product to cart (product_id, quantity, lot_id)."""
    data = _json()
    product_id = _optional_int(data.get('product_id'), 'product_id')
    if product_id is None:
        raise BusinessLogicError('Vui lòng chọn sản phẩm')
    try:
        quantity = parse_quantity(data.get('quantity', 1))
    except ValueError as e:
        raise BusinessLogicError(str(e)) from e

    backend = get_backend()
    cart = get_cart()
    product = _get_product_or_error(backend, product_id)

    lot = None
    lot_id = _optional_int(data.get('lot_id'), 'lot_id')
    if lot_id is not None:
        lot = _get_lot_or_error(backend, lot_id, product_id, cart.get('warehouse_id'))

    line = cart_service.add_product(cart, product, quantity, lot)
    save_cart(cart)
    current_app.logger.info(f"[POS] tenant={g.tenant_id} added product {product_id} x{quantity}")
    return _cart_response(cart, 201, message=f'Đã thêm "{line["name"]}" vào giỏ hàng')


@pos_bp.route('/cart/items/<key>', methods=['PATCH'])
@require_tenant
def cart_update(key):
    """Update line quantity; zero or less removes the line."""
    data = _json()
    try:
        quantity = int(data.get('quantity'))
    except (TypeError, ValueError) as e:
        raise BusinessLogicError('Số lượng phải là số nguyên') from e

    cart = get_cart()
    cart_service.update_quantity(cart, key, quantity)
    save_cart(cart)
    return _cart_response(cart)


@pos_bp.route('/cart/items/<key>', methods=['DELETE'])
@require_tenant
def cart_remove(key):
    cart = get_cart()
    cart_service.remove_line(cart, key)
    save_cart(cart)
    return _cart_response(cart)


@pos_bp.route('/cart/clear', methods=['POST'])
@require_tenant
def cart_clear():
    cart = get_cart()
    cart_service.clear_cart(cart)
    save_cart(cart)
    return _cart_response(cart)


@pos_bp.route('/cart/warehouse', methods=['POST'])
@require_tenant
def cart_select_warehouse():
    """Select the warehouse (and optionally the patient) of the sale."""
    data = _json()
    backend = get_backend()
    cart = get_cart()

    warehouse_id = _optional_int(data.get('warehouse_id'), 'warehouse_id')
    if warehouse_id is None:
        raise BusinessLogicError('Vui lòng chọn kho')
    rows = backend.select('warehouse', {
        'tenant_id': g.tenant_id, 'id': warehouse_id, 'active': True
    }).unwrap('warehouse', 'select')
    if not rows:
        raise NotFoundError('Không tìm thấy kho')

    foreign_lots = cart_service.lots_outside_warehouse(cart, warehouse_id)
    if foreign_lots:
        raise BusinessLogicError(
            f'Giỏ hàng có lô {", ".join(foreign_lots)} của kho khác, vui lòng xóa trước khi đổi kho'
        )
    cart['warehouse_id'] = warehouse_id

    if 'patient_id' in data:
        patient_id = _optional_int(data.get('patient_id'), 'patient_id')
        if patient_id is not None:
            patients = backend.select('patients', {
                'tenant_id': g.tenant_id, 'patient_id': patient_id
            }).unwrap('patients', 'select')
            if not patients:
                raise NotFoundError('Không tìm thấy khách hàng')
        cart['patient_id'] = patient_id

    save_cart(cart)
    return _cart_response(cart)


@pos_bp.route('/cart/combos/<int:combo_id>', methods=['POST'])
@require_tenant
def cart_apply_combo(combo_id):
    """Replace matching product lines with a combo (sets, default 1)."""
    data = _json()
    try:
        sets = parse_quantity(data.get('sets', 1))
    except ValueError as e:
        raise BusinessLogicError(str(e)) from e

    combo = combo_service.get_combo(get_backend(), g.tenant_id, combo_id)
    if combo is None:
        raise NotFoundError('Không tìm thấy combo')

    cart = get_cart()
    line = combo_service.apply_combo(cart, combo, sets)
    save_cart(cart)
    return _cart_response(
        cart, 201, message=f'Đã thêm combo "{combo["name"]}" (tiết kiệm {money_vn(line["savings"])})'
    )


@pos_bp.route('/products/<int:product_id>/lots', methods=['GET'])
@require_tenant
def product_lots(product_id):
    """Lots of a product in the selected warehouse, earliest expiry first."""
    warehouse_id = _optional_int(request.args.get('warehouse_id'), 'warehouse_id') or get_cart().get('warehouse_id')
    if warehouse_id is None:
        raise BusinessLogicError('Vui lòng chọn kho')

    backend = get_backend()
    _get_product_or_error(backend, product_id)
    lots = inventory_service.get_available_lots(backend, g.tenant_id, product_id, warehouse_id)
    return jsonify({'status': 'ok', 'lots': lots})


# =====================================================
# CHECKOUT
# =====================================================

def _snapshot_for(cart: dict) -> inventory_service.InventorySnapshot:
    if not cart['lines']:
        raise BusinessLogicError('Giỏ hàng trống')
    if not cart.get('warehouse_id'):
        raise BusinessLogicError('Vui lòng chọn kho')
    foreign_lots = cart_service.lots_outside_warehouse(cart, cart['warehouse_id'])
    if foreign_lots:
        raise BusinessLogicError(f'Lô {", ".join(foreign_lots)} không thuộc kho đã chọn')
    required = inventory_service.flatten_required_quantities(cart)
    return inventory_service.take_inventory_snapshot(
        get_backend(), g.tenant_id, cart['warehouse_id'], required.keys()
    )


def _snapshot_dict(snapshot: inventory_service.InventorySnapshot) -> dict:
    return {
        'warehouse_id': snapshot.warehouse_id,
        'taken_at': snapshot.taken_at.isoformat(),
        'version': snapshot.version,
        'quantities': {str(k): v for k, v in snapshot.quantities.items()},
    }


def _fund_for_warehouse(backend, warehouse_id: int) -> Optional[int]:
    rows = backend.select('fund', {
        'tenant_id': g.tenant_id, 'warehouse_id': warehouse_id, 'active': True
    }, order_by=['id'], limit=1).unwrap('fund', 'select')
    return rows[0]['id'] if rows else None


@pos_bp.route('/checkout/validate', methods=['POST'])
@require_tenant
def checkout_validate():
    """Global quantity check against a fresh inventory snapshot."""
    cart = get_cart()
    snapshot = _snapshot_for(cart)
    inventory_service.ensure_sufficient_stock(cart, snapshot)
    return jsonify({'status': 'ok', 'snapshot': _snapshot_dict(snapshot)})


@pos_bp.route('/checkout', methods=['POST'])
@require_tenant
def checkout():
    """Validate stock and commit the sale (tenant-scoped)."""
    data = _json()
    backend = get_backend()
    cart = get_cart()

    payment_method = (data.get('payment_method') or current_app.config['DEFAULT_PAYMENT_METHOD']).lower()
    snapshot = _snapshot_for(cart)
    inventory_service.ensure_sufficient_stock(
        cart, snapshot, max_age=current_app.config.get('INVENTORY_SNAPSHOT_MAX_AGE')
    )

    fund_id = _optional_int(data.get('fund_id'), 'fund_id') or _fund_for_warehouse(backend, cart['warehouse_id'])
    totals = cart_service.calculate_cart_totals(
        cart, pricing_service.get_active_promotions(backend, g.tenant_id)
    )
    result = process_sale(
        backend, totals,
        tenant_id=g.tenant_id,
        warehouse_id=cart['warehouse_id'],
        fund_id=fund_id,
        payment_method=payment_method,
        created_by=str(g.employee_id) if g.get('employee_id') else None,
        patient_id=cart.get('patient_id'),
    )

    cart_service.clear_cart(cart)
    cart['patient_id'] = None
    save_cart(cart)

    order = result['order']
    current_app.logger.info(f"[POS] tenant={g.tenant_id} sale {order['order_id']} committed")
    return jsonify({
        'status': 'ok',
        'message': f"Đã tạo đơn hàng {order['order_id']} - {money_vn(order['total_value'])}",
        'order': order,
        'transaction': result['transaction'],
        'items': result['items'],
        'warnings': result['warnings'],
    }), 201
