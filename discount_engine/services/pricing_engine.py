# discount_engine/services/pricing_engine.py
import logging
from collections import defaultdict
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional
from ..models.discount import AppliesTo, DiscountRule, RuleFilters, RuleSort
from ..models.order import OrderContext
from ..models.pricing import (
    AppliedDiscount, Candidate, CommitResult, ExcludedDiscount, PricingResult,
    ScopeInstance, ValidationFailure, ValidationResult
)
from ..utils.clock import Clock, now as system_now
from ..utils.messages import Messages
from ..utils.money import ZERO
from .calculator import DiscountCalculator
from .conflict_resolver import ConflictResolver
from .discount_service import fetch_all_rules
from .eligibility import EligibilityMatcher
from .rule_validator import failure_reason, has_customer_usage_remaining, is_eligible_state
from .usage_ledger import UsageLedger

# Narrower scopes are priced first; wider scopes only see what is left of their lines
SCOPE_TIERS = (AppliesTo.PRODUCT, AppliesTo.CATEGORY, AppliesTo.ORDER)


class PricingEngine:
    """Prices orders against the active discount rules and commits redemptions"""

    def __init__(self, repository, clock: Optional[Clock] = None,
                 matcher: Optional[EligibilityMatcher] = None,
                 calculator: Optional[DiscountCalculator] = None,
                 resolver: Optional[ConflictResolver] = None,
                 ledger: Optional[UsageLedger] = None):
        self.repository = repository
        self.clock = clock or system_now
        self.matcher = matcher or EligibilityMatcher()
        self.calculator = calculator or DiscountCalculator()
        self.resolver = resolver or ConflictResolver()
        self.ledger = ledger or UsageLedger(repository)
        self.logger = logging.getLogger(__name__)

    async def load_eligible_rules(self, now=None) -> List[DiscountRule]:
        """Active, in-window rules with usage left, highest priority first"""
        now = now or self.clock()
        filters = RuleFilters(is_active=True, valid_only=True, valid_at=now)
        rules = await fetch_all_rules(self.repository, filters, RuleSort(field='priority', descending=True))
        # The store may be a cache; re-check state against our own clock
        return [rule for rule in rules if is_eligible_state(rule, now)]

    async def apply_discounts(self, context: OrderContext) -> PricingResult:
        """Preview the discounts for an order. Never touches usage counters."""
        rules = await self.load_eligible_rules()
        customer_usage = await self._customer_usage(rules, context)
        result = self.price(rules, context, customer_usage)

        self.logger.info(
            f"Priced order for customer {context.customer_id}: "
            f"{len(result.applied)} discount(s), total discount {result.total_discount}"
        )
        return result

    def price(self, rules: Iterable[DiscountRule], context: OrderContext,
              customer_usage: Optional[Mapping[int, int]] = None) -> PricingResult:
        """Pure pricing over a rule snapshot: match, calculate, then resolve conflicts scope tier by tier"""
        matches = self.matcher.match(rules, context, customer_usage)

        applied: List[AppliedDiscount] = []
        excluded: List[ExcludedDiscount] = []
        line_discounts: Dict[int, Decimal] = defaultdict(lambda: ZERO)
        discounted = ZERO

        for tier in SCOPE_TIERS:
            candidates = []
            bases: Dict[str, Decimal] = {}
            scopes: Dict[str, ScopeInstance] = {}
            for match in matches:
                if match.rule.applies_to != tier:
                    continue
                for scope in match.scopes:
                    base = self._remaining_base(scope, line_discounts, discounted)
                    bases[scope.key] = base
                    scopes[scope.key] = scope
                    amount = self.calculator.calculate(match.rule, scope, context, base=base)
                    candidates.append(Candidate(rule=match.rule, scope=scope, amount=amount))

            tier_applied, tier_excluded = self.resolver.resolve(candidates, bases)
            for discount in tier_applied:
                discounted += discount.amount
                if tier == AppliesTo.PRODUCT:
                    for index in scopes[discount.scope_key].line_indexes:
                        line_discounts[index] += discount.amount
            applied.extend(tier_applied)
            excluded.extend(tier_excluded)

        return PricingResult(
            customer_id=context.customer_id,
            subtotal=context.subtotal,
            applied=applied,
            excluded=excluded,
            total_discount=discounted,
            final_total=context.subtotal - discounted,
        )

    async def validate_code(self, code: str, context: OrderContext) -> ValidationResult:
        """Check a code typed in by a customer and work out what it is worth on this order"""
        rule = await self.repository.get_by_code(code) if code and code.strip() else None
        if rule is None:
            return ValidationResult(
                valid=False,
                error=ValidationFailure.NOT_FOUND,
                message=Messages.validation_error(ValidationFailure.NOT_FOUND),
            )

        reason = failure_reason(rule, self.clock())
        if reason is not None:
            return ValidationResult(valid=False, rule=rule, error=reason, message=Messages.validation_error(reason))

        customer_usage = await self._customer_usage([rule], context)
        if not has_customer_usage_remaining(rule, customer_usage.get(rule.id, 0)):
            return ValidationResult(
                valid=False,
                rule=rule,
                error=ValidationFailure.USAGE_LIMIT_REACHED,
                message=Messages.customer_limit_reached(),
            )

        scopes, why = self.matcher.match_rule(rule, context, customer_usage)
        if not scopes:
            return ValidationResult(valid=False, rule=rule, error=ValidationFailure.NOT_VALID, message=why)

        amount = sum((self.calculator.calculate(rule, scope, context) for scope in scopes), ZERO)
        return ValidationResult(valid=True, rule=rule, amount=amount)

    async def commit_redemptions(self, result: PricingResult, customer_id: Optional[int],
                                 order_id: Optional[int] = None) -> CommitResult:
        """Call once, after the order is confirmed"""
        return await self.ledger.commit(result, customer_id, order_id=order_id)

    async def _customer_usage(self, rules: Iterable[DiscountRule], context: OrderContext) -> Dict[int, int]:
        capped = [rule.id for rule in rules if rule.usage_per_customer is not None]
        if context.customer_id is None or not capped:
            return {}
        return await self.repository.get_customer_usage(context.customer_id, capped)

    @staticmethod
    def _remaining_base(scope: ScopeInstance, line_discounts: Mapping[int, Decimal], discounted: Decimal) -> Decimal:
        if scope.kind == AppliesTo.ORDER:
            remaining = scope.base - discounted
        elif scope.kind == AppliesTo.CATEGORY:
            remaining = scope.base - sum((line_discounts.get(i, ZERO) for i in scope.line_indexes), ZERO)
        else:
            remaining = scope.base
        return max(remaining, ZERO)
