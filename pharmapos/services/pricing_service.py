"""
Promotion pricing resolver.

Picks the single item-level promotion giving the lowest price for a product.
Products and promotions are plain backend rows (dicts).
"""
import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pharmapos.exceptions import BusinessLogicError
from pharmapos.models import PromotionType
from pharmapos.services import cache_service
from pharmapos.utils.number_format import to_decimal, round_currency

logger = logging.getLogger(__name__)

# promotion condition key -> product field it is matched against
CONDITION_FIELDS = {
    'manufacturers': 'manufacturer',
    'product_categories': 'category',
}


def _as_values(condition: Any) -> List[str]:
    if condition is None or condition == '':
        return []
    if isinstance(condition, (list, tuple, set)):
        return [str(c) for c in condition if c not in (None, '')]
    return [str(condition)]


def promotion_applies(product: Dict[str, Any], promotion: Dict[str, Any]) -> bool:
    """
    Check active flag and conditions of a promotion against a product.

    A condition is ignored when the product has no value for the field it
    targets.
    """
    if not promotion.get('is_active'):
        return False

    conditions = promotion.get('conditions') or {}
    for key, field in CONDITION_FIELDS.items():
        allowed = _as_values(conditions.get(key))
        value = product.get(field)
        if allowed and value and str(value) not in allowed:
            return False
    return True


def candidate_price(base: Decimal, promotion: Dict[str, Any]) -> Optional[Decimal]:
    """Price after a promotion, or None for types that are not item-level."""
    value = to_decimal(promotion.get('value'), Decimal('0'))
    promo_type = promotion.get('type')
    if promo_type == PromotionType.PERCENTAGE.value:
        return base * (1 - value / 100)
    if promo_type == PromotionType.FIXED_AMOUNT.value:
        return base - value
    return None


def resolve_best_price(product: Dict[str, Any], promotions: List[Dict[str, Any]],
                       price_field: str = 'retail_price') -> Dict[str, Any]:
    """
    Resolve the best price of a product under the given promotions.

    Args:
        product: product row; needs price_field, category and manufacturer
        promotions: promotion rows
        price_field: 'retail_price' for the counter, 'wholesale_price' for B2B

    Returns:
        {'final_price': Decimal, 'original_price': Decimal,
         'applied_promotion': dict or None}
    """
    base = to_decimal(product.get(price_field))
    if base is None or base <= 0:
        return {
            'final_price': Decimal('0'),
            'original_price': base or Decimal('0'),
            'applied_promotion': None,
        }

    best_price = base
    applied = None
    for promotion in promotions or []:
        if not promotion_applies(product, promotion):
            continue
        price = candidate_price(base, promotion)
        if price is not None and price < best_price:
            best_price = price
            applied = promotion

    final_price = max(round_currency(best_price), Decimal('0'))
    return {
        'final_price': final_price,
        'original_price': base,
        'applied_promotion': applied,
    }


def _as_date(value: Any) -> Optional[date]:
    if value is None or value == '':
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def is_in_window(promotion: Dict[str, Any], today: date) -> bool:
    start = _as_date(promotion.get('start_date'))
    end = _as_date(promotion.get('end_date'))
    if start and today < start:
        return False
    if end and today > end:
        return False
    return True


def load_active_promotions(backend, tenant_id: int) -> List[Dict[str, Any]]:
    return backend.select(
        'promotions', {'tenant_id': tenant_id, 'is_active': True}, order_by=['id']
    ).unwrap('promotions', 'select')


def get_active_promotions(backend, tenant_id: int, today: Optional[date] = None) -> List[Dict[str, Any]]:
    """Active promotions whose date window contains today (cached per tenant)."""
    today = today or date.today()
    rows = cache_service.cached(
        tenant_id, cache_service.PROMOTIONS, 'active',
        lambda: load_active_promotions(backend, tenant_id),
        ttl_setting='CACHE_PROMOTIONS_TTL'
    )
    active = [p for p in rows if is_in_window(p, today)]
    logger.debug(f"[PRICING] tenant={tenant_id} active promotions: {len(active)}/{len(rows)}")
    return active


def create_promotion(backend, tenant_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    """Insert a promotion and drop the tenant's cached promotions."""
    if data.get('type') not in (PromotionType.PERCENTAGE.value, PromotionType.FIXED_AMOUNT.value):
        raise BusinessLogicError('Loại khuyến mãi không hợp lệ')
    value = to_decimal(data.get('value'))
    if value is None or value <= 0:
        raise BusinessLogicError('Giá trị khuyến mãi phải lớn hơn 0')
    if data['type'] == PromotionType.PERCENTAGE.value and value > 100:
        raise BusinessLogicError('Phần trăm khuyến mãi không được vượt quá 100')

    row = dict(data, tenant_id=tenant_id, value=value)
    row.setdefault('is_active', True)
    created = backend.insert('promotions', row).unwrap('promotions', 'insert')[0]
    cache_service.invalidate(tenant_id, cache_service.PROMOTIONS)
    logger.info(f"[PRICING] Promotion {created['id']} created for tenant {tenant_id}")
    return created
