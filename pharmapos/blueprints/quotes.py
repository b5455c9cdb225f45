"""B2B quotes blueprint - Multi-Tenant (JSON)."""
from flask import Blueprint, request, jsonify, current_app, g

from pharmapos.exceptions import BusinessLogicError
from pharmapos.middleware import require_tenant
from pharmapos.services.backend_service import get_backend
from pharmapos.services import pricing_service, quote_service
from pharmapos.utils.number_format import money_vn

quotes_bp = Blueprint('quotes', __name__, url_prefix='/quotes')


@quotes_bp.route('/', methods=['GET'])
@require_tenant
def list_quotes():
    """List quotes, optionally filtered by ?stage=."""
    quotes = quote_service.list_quotes(get_backend(), g.tenant_id, request.args.get('stage') or None)
    return jsonify({'status': 'ok', 'quotes': quotes})


@quotes_bp.route('/', methods=['POST'])
@require_tenant
def create_quote():
    """Create a draft quote: customer_id, lines [{product_id, quantity}], notes."""
    data = request.get_json(silent=True) or {}
    try:
        customer_id = int(data.get('customer_id'))
    except (TypeError, ValueError) as e:
        raise BusinessLogicError('Vui lòng chọn khách hàng') from e

    backend = get_backend()
    quote = quote_service.create_quote(
        backend, g.tenant_id, customer_id,
        data.get('lines') or [],
        pricing_service.get_active_promotions(backend, g.tenant_id),
        valid_days=int(data.get('valid_days') or current_app.config['QUOTE_VALID_DAYS']),
        notes=data.get('notes'),
    )
    return jsonify({
        'status': 'ok',
        'message': f"Đã tạo báo giá {quote['quote_number']} - {money_vn(quote['total_value'])}",
        'quote': quote,
    }), 201


@quotes_bp.route('/<quote_id>', methods=['GET'])
@require_tenant
def detail_quote(quote_id):
    return jsonify({'status': 'ok', 'quote': quote_service.get_quote(get_backend(), g.tenant_id, quote_id)})


@quotes_bp.route('/<quote_id>/stage', methods=['POST'])
@require_tenant
def change_stage(quote_id):
    data = request.get_json(silent=True) or {}
    stage = data.get('stage')
    if not stage:
        raise BusinessLogicError('Vui lòng chọn trạng thái')
    quote = quote_service.update_quote_stage(get_backend(), g.tenant_id, quote_id, stage)
    return jsonify({'status': 'ok', 'quote': quote})


@quotes_bp.route('/<quote_id>/convert', methods=['POST'])
@require_tenant
def convert(quote_id):
    """Convert an accepted quote into a B2B sale."""
    data = request.get_json(silent=True) or {}
    try:
        warehouse_id = int(data.get('warehouse_id'))
    except (TypeError, ValueError) as e:
        raise BusinessLogicError('Vui lòng chọn kho') from e
    fund_id = data.get('fund_id')

    result = quote_service.convert_quote_to_sale(
        get_backend(), g.tenant_id, quote_id,
        warehouse_id=warehouse_id,
        fund_id=int(fund_id) if fund_id else None,
        payment_method=(data.get('payment_method') or current_app.config['DEFAULT_PAYMENT_METHOD']).lower(),
        created_by=str(g.employee_id) if g.get('employee_id') else None,
    )
    order = result['order']
    return jsonify({
        'status': 'ok',
        'message': f"Đã tạo đơn hàng {order['order_id']} từ báo giá",
        'order': order,
        'transaction': result['transaction'],
        'warnings': result['warnings'],
    }), 201
