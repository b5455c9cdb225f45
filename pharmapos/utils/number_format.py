"""Number helpers for prices and quantities (VND, integer currency units)."""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional, Union

CENT = Decimal('0.01')
UNIT = Decimal('1')


def to_decimal(value: Any, default: Optional[Decimal] = None) -> Optional[Decimal]:
    """
    Coerce a backend value (Decimal, int, float, numeric string) to Decimal.

    Floats go through str() so 0.1 stays 0.1. Returns default for None/empty
    or unparsable input.
    """
    if value is None or value == '':
        return default
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return default


def round_currency(value: Union[Decimal, int, float]) -> Decimal:
    """Round half-up to a whole currency unit (e.g. 26999.5 -> 27000)."""
    return to_decimal(value, Decimal('0')).quantize(UNIT, rounding=ROUND_HALF_UP)


def quantize_money(value: Union[Decimal, int, float]) -> Decimal:
    """Quantize to two decimals, half-up."""
    return to_decimal(value, Decimal('0')).quantize(CENT, rounding=ROUND_HALF_UP)


def parse_quantity(value: Any) -> int:
    """
    Parse a positive integer quantity from request data.

    Raises:
        ValueError: if the value is not a whole number greater than 0.
    """
    number = to_decimal(value)
    if number is None or number % 1 != 0:
        raise ValueError('Số lượng phải là số nguyên')
    if number <= 0:
        raise ValueError('Số lượng phải lớn hơn 0')
    return int(number)


def money_vn(value: Union[int, float, Decimal, str, None]) -> str:
    """
    Format an amount the Vietnamese way: dot thousands separator, no decimals.

    Examples:
        money_vn(1500) -> "1.500đ"
        money_vn(Decimal('1234567.4')) -> "1.234.567đ"
        money_vn(None) -> "-"
    """
    number = to_decimal(value)
    if number is None:
        return '-'

    num = round_currency(number)
    sign = '-' if num < 0 else ''
    integer_part = str(abs(int(num)))

    reversed_int = integer_part[::-1]
    groups = [reversed_int[i:i+3] for i in range(0, len(reversed_int), 3)]
    return f"{sign}{'.'.join(groups)[::-1]}đ"
