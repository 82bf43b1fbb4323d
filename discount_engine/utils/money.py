# discount_engine/utils/money.py
from decimal import Decimal, ROUND_HALF_EVEN
from typing import Union
from ..config import Config

ZERO = Decimal("0")

def to_decimal(value: Union[Decimal, int, float, str]) -> Decimal:
    """Convert to Decimal without going through binary floating point"""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))

def currency_quantum() -> Decimal:
    """Smallest currency unit, e.g. 0.01"""
    return Decimal(1).scaleb(-Config.CURRENCY_PRECISION)

def quantize_money(value: Union[Decimal, int, str]) -> Decimal:
    """Round to currency precision using banker's rounding"""
    return to_decimal(value).quantize(currency_quantum(), rounding=ROUND_HALF_EVEN)
