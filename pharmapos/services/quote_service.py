"""B2B quote service: wholesale quotes for business customers and their conversion to sales."""
import logging
from datetime import datetime, date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pharmapos.exceptions import BusinessLogicError, NotFoundError
from pharmapos.models import QuoteStage, OrderType
from pharmapos.services import inventory_service
from pharmapos.services.combo_service import LINE_PRODUCT
from pharmapos.services.pricing_service import resolve_best_price
from pharmapos.services.sales_service import process_sale
from pharmapos.utils.number_format import to_decimal, parse_quantity

logger = logging.getLogger(__name__)

# Allowed manual stage changes; CONVERTED is only reached through convert_quote_to_sale
STAGE_TRANSITIONS = {
    QuoteStage.DRAFT.value: {QuoteStage.SENT.value, QuoteStage.REJECTED.value, QuoteStage.EXPIRED.value},
    QuoteStage.SENT.value: {QuoteStage.ACCEPTED.value, QuoteStage.REJECTED.value, QuoteStage.EXPIRED.value},
    QuoteStage.ACCEPTED.value: {QuoteStage.EXPIRED.value},
    QuoteStage.REJECTED.value: set(),
    QuoteStage.EXPIRED.value: set(),
    QuoteStage.CONVERTED.value: set(),
}


def _as_date(value) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def is_expired(quote: Dict[str, Any], today: Optional[date] = None) -> bool:
    """Open quotes past valid_until count as expired even before the stage says so."""
    if quote['stage'] == QuoteStage.EXPIRED.value:
        return True
    valid_until = _as_date(quote.get('valid_until'))
    if quote['stage'] in (QuoteStage.CONVERTED.value, QuoteStage.REJECTED.value) or valid_until is None:
        return False
    return (today or date.today()) > valid_until


def generate_quote_number(backend, tenant_id: int) -> str:
    """Generate a quote number unique per tenant and day."""
    now = datetime.now()
    today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    rows = backend.select('b2b_quotes', {
        'tenant_id': tenant_id, 'created_at': ('gte', today_start)
    }).unwrap('b2b_quotes', 'select')
    return f"BG-{now.strftime('%Y%m%d')}-{str(len(rows) + 1).zfill(4)}"


def _load_products(backend, tenant_id: int, product_ids: List[int]) -> Dict[int, Dict[str, Any]]:
    rows = backend.select('product', {
        'tenant_id': tenant_id, 'id': ('in', sorted(set(product_ids)))
    }).unwrap('product', 'select')
    products = {p['id']: p for p in rows}
    missing = set(product_ids) - set(products)
    if missing:
        raise NotFoundError(f'Không tìm thấy sản phẩm: {", ".join(str(m) for m in sorted(missing))}')
    for product in products.values():
        if not product.get('active', True):
            raise BusinessLogicError(f'Sản phẩm "{product["name"]}" đã ngừng kinh doanh')
    return products


def price_quote_lines(products: Dict[int, Dict[str, Any]], lines: List[Dict[str, Any]],
                      promotions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Price each line at the wholesale price through the promotion resolver."""
    priced = []
    for line in lines:
        product = products[int(line['product_id'])]
        price = resolve_best_price(product, promotions, price_field='wholesale_price')
        promo = price['applied_promotion']
        priced.append({
            'product_id': product['id'],
            'quantity': parse_quantity(line['quantity']),
            'unit_price': price['final_price'],
            'original_price': price['original_price'],
            'promotion_id': promo['id'] if promo else None,
        })
    return priced


def create_quote(backend, tenant_id: int, customer_id: int, lines: List[Dict[str, Any]],
                 promotions: List[Dict[str, Any]], valid_days: int = 7,
                 notes: Optional[str] = None) -> Dict[str, Any]:
    """
    Create a draft quote for a B2B customer.

    Raises:
        BusinessLogicError: no lines, bad quantity, customer not B2B
        NotFoundError: customer or product not found
    """
    if not lines:
        raise BusinessLogicError('Báo giá phải có ít nhất một sản phẩm')

    customers = backend.select('patients', {
        'tenant_id': tenant_id, 'patient_id': customer_id
    }).unwrap('patients', 'select')
    if not customers:
        raise NotFoundError('Không tìm thấy khách hàng')
    if not customers[0].get('is_b2b_customer'):
        raise BusinessLogicError(f'Khách hàng "{customers[0]["full_name"]}" không phải khách sỉ')

    try:
        products = _load_products(backend, tenant_id, [int(line['product_id']) for line in lines])
        priced = price_quote_lines(products, lines, promotions)
    except ValueError as e:
        raise BusinessLogicError(str(e)) from e

    total = sum((p['unit_price'] * p['quantity'] for p in priced), Decimal('0'))
    quote = backend.insert('b2b_quotes', {
        'tenant_id': tenant_id,
        'quote_number': generate_quote_number(backend, tenant_id),
        'customer_id': customer_id,
        'stage': QuoteStage.DRAFT.value,
        'total_value': total,
        'valid_until': date.today() + timedelta(days=valid_days),
        'notes': notes,
    }).unwrap('b2b_quotes', 'insert')[0]

    response = backend.insert('b2b_quote_items', [dict(p, quote_id=quote['quote_id']) for p in priced])
    if not response.ok:
        backend.delete('b2b_quotes', {'quote_id': quote['quote_id']})
    quote['items'] = response.unwrap('b2b_quote_items', 'insert')

    logger.info(f"[QUOTE] {quote['quote_number']} created for customer {customer_id} (tenant {tenant_id})")
    return quote


def get_quote(backend, tenant_id: int, quote_id: str) -> Dict[str, Any]:
    rows = backend.select('b2b_quotes', {
        'tenant_id': tenant_id, 'quote_id': quote_id
    }).unwrap('b2b_quotes', 'select')
    if not rows:
        raise NotFoundError(f'Không tìm thấy báo giá {quote_id}')
    quote = rows[0]
    quote['items'] = backend.select(
        'b2b_quote_items', {'quote_id': quote_id}, order_by=['id']
    ).unwrap('b2b_quote_items', 'select')
    return quote


def list_quotes(backend, tenant_id: int, stage: Optional[str] = None) -> List[Dict[str, Any]]:
    filters = {'tenant_id': tenant_id}
    if stage:
        filters['stage'] = stage
    return backend.select('b2b_quotes', filters, order_by=['-created_at']).unwrap('b2b_quotes', 'select')


def update_quote_stage(backend, tenant_id: int, quote_id: str, stage: str) -> Dict[str, Any]:
    """Move a quote to another stage, enforcing the allowed transitions."""
    quote = get_quote(backend, tenant_id, quote_id)
    current = quote['stage']
    if stage not in STAGE_TRANSITIONS.get(current, set()):
        raise BusinessLogicError(f'Không thể chuyển báo giá từ "{current}" sang "{stage}"')
    if stage == QuoteStage.ACCEPTED.value and is_expired(quote):
        raise BusinessLogicError('Báo giá đã hết hạn')

    updated = backend.update('b2b_quotes', {'stage': stage}, {
        'tenant_id': tenant_id, 'quote_id': quote_id, 'stage': current
    }).unwrap('b2b_quotes', 'update')
    if not updated:
        raise BusinessLogicError('Báo giá vừa được cập nhật bởi người khác, vui lòng tải lại')

    logger.info(f"[QUOTE] {quote['quote_number']}: {current} -> {stage}")
    return dict(updated[0], items=quote['items'])


def quote_to_cart_totals(backend, tenant_id: int, quote: Dict[str, Any]) -> Dict[str, Any]:
    """Priced cart equivalent of a quote, in the shape process_sale expects."""
    products = _load_products(backend, tenant_id, [int(i['product_id']) for i in quote['items']])
    items = []
    total = Decimal('0')
    for row in quote['items']:
        unit_price = to_decimal(row['unit_price'], Decimal('0'))
        items.append({
            'type': LINE_PRODUCT,
            'product_id': row['product_id'],
            'name': products[int(row['product_id'])]['name'],
            'quantity': int(row['quantity']),
            'final_price': unit_price,
            'original_price': to_decimal(row['original_price'], unit_price),
            'lot_id': None,
        })
        total += unit_price * int(row['quantity'])
    return {'items': items, 'item_total': total}


def convert_quote_to_sale(backend, tenant_id: int, quote_id: str, *, warehouse_id: int,
                          fund_id: Optional[int], payment_method: str,
                          created_by: Optional[str] = None) -> Dict[str, Any]:
    """
    Turn an accepted quote into a B2B sale and link the order back to it.

    Raises:
        BusinessLogicError: quote not accepted, expired or already converted
        InsufficientStockError: warehouse cannot cover the quote
        SaleCommitError: the sale commit failed and was rolled back
    """
    quote = get_quote(backend, tenant_id, quote_id)
    if quote.get('order_id') or quote['stage'] == QuoteStage.CONVERTED.value:
        raise BusinessLogicError('Báo giá đã được chuyển thành đơn hàng')
    if quote['stage'] != QuoteStage.ACCEPTED.value:
        raise BusinessLogicError('Chỉ báo giá đã chấp nhận mới được chuyển thành đơn hàng')
    if is_expired(quote):
        raise BusinessLogicError('Báo giá đã hết hạn')

    cart_totals = quote_to_cart_totals(backend, tenant_id, quote)
    snapshot = inventory_service.take_inventory_snapshot(
        backend, tenant_id, warehouse_id, [i['product_id'] for i in cart_totals['items']]
    )
    inventory_service.ensure_sufficient_stock(cart_totals, snapshot)

    # claim the quote so a concurrent conversion finds it no longer accepted
    claimed = backend.update('b2b_quotes', {'stage': QuoteStage.CONVERTED.value}, {
        'tenant_id': tenant_id, 'quote_id': quote_id,
        'stage': QuoteStage.ACCEPTED.value, 'order_id': ('is', None),
    }).unwrap('b2b_quotes', 'update')
    if not claimed:
        raise BusinessLogicError('Báo giá đã được chuyển thành đơn hàng')

    try:
        result = process_sale(
            backend, cart_totals,
            tenant_id=tenant_id,
            warehouse_id=warehouse_id,
            fund_id=fund_id,
            payment_method=payment_method,
            created_by=created_by,
            patient_id=quote['customer_id'],
            order_type=OrderType.B2B.value,
        )
    except Exception:
        released = backend.update('b2b_quotes', {'stage': QuoteStage.ACCEPTED.value}, {
            'tenant_id': tenant_id, 'quote_id': quote_id,
            'stage': QuoteStage.CONVERTED.value, 'order_id': ('is', None),
        })
        if not released.ok:
            logger.error(f"[QUOTE] {quote['quote_number']} left claimed after failed sale: "
                         f"{released.error.get('message')}")
        raise

    order_id = result['order']['order_id']
    response = backend.update('b2b_quotes', {'order_id': order_id}, {
        'tenant_id': tenant_id, 'quote_id': quote_id, 'stage': QuoteStage.CONVERTED.value,
    })
    if not response.ok:
        logger.error(f"[QUOTE] {quote['quote_number']} sold as {order_id} but not linked: "
                     f"{response.error.get('message')}")
        result['warnings'].append({'step': 'link_quote', 'message': response.error.get('message')})

    logger.info(f"[QUOTE] {quote['quote_number']} converted to order {order_id}")
    result['quote_id'] = quote_id
    return result
