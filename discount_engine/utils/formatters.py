# discount_engine/utils/formatters.py
from datetime import datetime
from decimal import Decimal
from typing import Optional
from ..config import Config
from ..models.discount import BuyXGetYRule, DiscountRule, FixedRule
from ..services.rule_validator import is_eligible_state, is_expired
from .clock import ensure_aware, get_timezone


def format_price(amount: Decimal) -> str:
    """Money with the configured symbol and precision"""
    return f"{Config.CURRENCY_SYMBOL}{amount:,.{Config.CURRENCY_PRECISION}f}"


def format_date(dt: datetime) -> str:
    return ensure_aware(dt).astimezone(get_timezone()).strftime("%Y-%m-%d")


def discount_display(rule: DiscountRule) -> str:
    """Short description of what the rule gives, e.g. "10%" or "Buy 2 Get 1" """
    if isinstance(rule, BuyXGetYRule):
        return f"Buy {rule.buy_quantity} Get {rule.get_quantity}"
    if isinstance(rule, FixedRule):
        return format_price(rule.discount_value)
    return f"{rule.discount_value.normalize():f}%"


def status_label(rule: DiscountRule, now: datetime) -> str:
    if not rule.is_active:
        return "Inactive"
    if is_expired(rule, now):
        return "Expired"
    if not is_eligible_state(rule, now):
        return "Not valid"
    return "Active"


def validity_label(rule: DiscountRule, now: datetime) -> str:
    if is_expired(rule, now):
        return "Expired"
    if rule.end_date:
        return f"Valid until {format_date(rule.end_date)}"
    return "No expiry"


def usage_label(rule: DiscountRule) -> str:
    if rule.usage_limit is None:
        return f"{rule.current_usage} used"
    return f"{rule.current_usage}/{rule.usage_limit} used"


def optional_price(amount: Optional[Decimal]) -> str:
    return format_price(amount) if amount is not None else "-"
