# discount_engine/models/pricing.py
from decimal import Decimal
from enum import Enum
from typing import Collection, List, Optional, Tuple
from pydantic import BaseModel, ConfigDict
from .discount import AppliesTo, DiscountRule


class ScopeInstance(BaseModel):
    """The order, one line, or one category grouping of lines that a rule is evaluated against"""
    kind: AppliesTo
    key: str
    description: str
    line_indexes: Tuple[int, ...]
    base: Decimal
    quantity: int

    model_config = ConfigDict(frozen=True)


class MatchedRule(BaseModel):
    rule: DiscountRule
    scopes: Tuple[ScopeInstance, ...]

    model_config = ConfigDict(frozen=True)


class Candidate(BaseModel):
    """A priced (rule, scope) pair waiting for conflict resolution"""
    rule: DiscountRule
    scope: ScopeInstance
    amount: Decimal

    model_config = ConfigDict(frozen=True)


class ExclusionReason(str, Enum):
    SCOPE_LOCKED = "scope locked by higher-priority non-combinable rule"
    SCOPE_EXHAUSTED = "scope amount already fully discounted"
    NO_DISCOUNT = "rule yields no discount on this scope"
    REDEMPTION_REJECTED = "usage limit reached when redeeming"


class AppliedDiscount(BaseModel):
    rule_id: int
    code: str
    scope_key: str
    scope_description: str
    amount: Decimal

    model_config = ConfigDict(frozen=True)


class ExcludedDiscount(BaseModel):
    rule_id: int
    code: str
    scope_key: str
    scope_description: str
    amount: Decimal
    reason: ExclusionReason

    model_config = ConfigDict(frozen=True)


class PricingResult(BaseModel):
    """Discounts for one order, plus the matched rules that lost a conflict"""
    customer_id: Optional[int] = None
    subtotal: Decimal
    applied: List[AppliedDiscount] = []
    excluded: List[ExcludedDiscount] = []
    total_discount: Decimal
    final_total: Decimal

    model_config = ConfigDict(frozen=True)

    @property
    def applied_rule_ids(self) -> List[int]:
        """Distinct applied rule ids, in the order they were applied"""
        seen = []
        for discount in self.applied:
            if discount.rule_id not in seen:
                seen.append(discount.rule_id)
        return seen

    def amount_for_rule(self, rule_id: int) -> Decimal:
        return sum((d.amount for d in self.applied if d.rule_id == rule_id), Decimal("0"))

    def without_rules(self, rule_ids: Collection[int]) -> 'PricingResult':
        """Same result with the given rules voided and the totals recomputed"""
        kept = [d for d in self.applied if d.rule_id not in rule_ids]
        voided = [
            ExcludedDiscount(
                rule_id=d.rule_id,
                code=d.code,
                scope_key=d.scope_key,
                scope_description=d.scope_description,
                amount=d.amount,
                reason=ExclusionReason.REDEMPTION_REJECTED,
            )
            for d in self.applied if d.rule_id in rule_ids
        ]
        total_discount = sum((d.amount for d in kept), Decimal("0"))
        return PricingResult(
            customer_id=self.customer_id,
            subtotal=self.subtotal,
            applied=kept,
            excluded=list(self.excluded) + voided,
            total_discount=total_discount,
            final_total=self.subtotal - total_discount,
        )


class ValidationFailure(str, Enum):
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    NOT_VALID = "not_valid"
    USAGE_LIMIT_REACHED = "usage_limit_reached"


class ValidationResult(BaseModel):
    """Outcome of checking a coupon code a customer typed in"""
    valid: bool
    rule: Optional[DiscountRule] = None
    amount: Optional[Decimal] = None
    error: Optional[ValidationFailure] = None
    message: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class CommitResult(BaseModel):
    """What happened when redemptions were committed for a confirmed order"""
    result: PricingResult
    redeemed_rule_ids: List[int] = []
    voided_rule_ids: List[int] = []

    model_config = ConfigDict(frozen=True)

    @property
    def price_changed(self) -> bool:
        return bool(self.voided_rule_ids)
