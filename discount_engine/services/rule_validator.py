# discount_engine/services/rule_validator.py
"""Pure predicates over a rule's lifecycle state. None of them mutate the rule."""
from datetime import datetime
from typing import Optional
from ..models.discount import DiscountRule
from ..models.pricing import ValidationFailure
from ..utils.clock import ensure_aware


def is_expired(rule: DiscountRule, now: datetime) -> bool:
    return rule.end_date is not None and ensure_aware(now) > ensure_aware(rule.end_date)


def has_started(rule: DiscountRule, now: datetime) -> bool:
    return rule.start_date is None or ensure_aware(now) >= ensure_aware(rule.start_date)


def is_within_window(rule: DiscountRule, now: datetime) -> bool:
    return has_started(rule, now) and not is_expired(rule, now)


def has_usage_remaining(rule: DiscountRule) -> bool:
    return rule.usage_limit is None or rule.current_usage < rule.usage_limit


def usage_remaining(rule: DiscountRule) -> Optional[int]:
    """Redemptions left before the global cap, None when unlimited"""
    if rule.usage_limit is None:
        return None
    return max(rule.usage_limit - rule.current_usage, 0)


def has_customer_usage_remaining(rule: DiscountRule, customer_usage: int) -> bool:
    return rule.usage_per_customer is None or customer_usage < rule.usage_per_customer


def is_eligible_state(rule: DiscountRule, now: datetime) -> bool:
    return rule.is_active and is_within_window(rule, now) and has_usage_remaining(rule)


def failure_reason(rule: DiscountRule, now: datetime) -> Optional[ValidationFailure]:
    """Most specific reason the rule is not in an eligible state, None if it is"""
    if not rule.is_active:
        return ValidationFailure.INACTIVE
    if is_expired(rule, now):
        return ValidationFailure.EXPIRED
    if not has_started(rule, now):
        return ValidationFailure.NOT_VALID
    if not has_usage_remaining(rule):
        return ValidationFailure.USAGE_LIMIT_REACHED
    return None
