# discount_engine/services/eligibility.py
import logging
from collections import OrderedDict
from decimal import Decimal
from typing import Iterable, List, Mapping, Optional, Tuple
from ..models.discount import AppliesTo, BuyXGetYRule, DiscountRule
from ..models.order import OrderContext
from ..models.pricing import MatchedRule, ScopeInstance
from .rule_validator import has_customer_usage_remaining

logger = logging.getLogger(__name__)

ORDER_SCOPE_KEY = "order"


class EligibilityMatcher:
    """Decides which rules apply to an order, and to which parts of it"""

    def match(self, rules: Iterable[DiscountRule], context: OrderContext,
              customer_usage: Optional[Mapping[int, int]] = None) -> List[MatchedRule]:
        """Rules that apply to the order, each with the scope instances it applies to"""
        matched = []
        for rule in rules:
            scopes, reason = self.match_rule(rule, context, customer_usage)
            if scopes:
                matched.append(MatchedRule(rule=rule, scopes=tuple(scopes)))
            else:
                logger.debug("Rule %s not matched: %s", rule.code, reason)
        return matched

    def match_rule(self, rule: DiscountRule, context: OrderContext,
                   customer_usage: Optional[Mapping[int, int]] = None) -> Tuple[List[ScopeInstance], Optional[str]]:
        """Scope instances a single rule applies to, or an empty list and the reason it does not"""
        if not self.audience_matches(rule, context):
            return [], "customer is not in the rule's audience"

        used = (customer_usage or {}).get(rule.id, 0)
        if not has_customer_usage_remaining(rule, used):
            return [], "customer has used this discount the maximum number of times"

        if rule.min_order_amount is not None and rule.min_order_amount > context.subtotal:
            return [], f"order subtotal is below the minimum of {rule.min_order_amount}"

        scopes = self.build_scopes(rule, context)
        if not scopes:
            return [], "no order line is covered by the rule"

        gated = [scope for scope in scopes if self._passes_quantity_gate(rule, scope)]
        if not gated:
            return [], "quantity threshold not met"
        return gated, None

    @staticmethod
    def audience_matches(rule: DiscountRule, context: OrderContext) -> bool:
        if rule.customer_ids and context.customer_id not in rule.customer_ids:
            return False
        if rule.customer_classifications:
            classification = context.customer_classification
            if classification is None:
                return False
            allowed = {c.casefold() for c in rule.customer_classifications}
            if classification.casefold() not in allowed:
                return False
        return True

    @staticmethod
    def build_scopes(rule: DiscountRule, context: OrderContext) -> List[ScopeInstance]:
        """Scope instances for a rule before any gating"""
        if rule.applies_to == AppliesTo.ORDER:
            return [order_scope(context)]

        if rule.applies_to == AppliesTo.PRODUCT:
            return [
                line_scope(context, index)
                for index, line in enumerate(context.lines)
                if line.product_id in rule.product_ids
            ]

        groups = OrderedDict()
        for index, line in enumerate(context.lines):
            if line.category_id is not None and line.category_id in rule.category_ids:
                groups.setdefault(line.category_id, []).append(index)
        return [category_scope(context, category_id, indexes) for category_id, indexes in groups.items()]

    @staticmethod
    def _passes_quantity_gate(rule: DiscountRule, scope: ScopeInstance) -> bool:
        if rule.min_quantity is not None and rule.min_quantity > scope.quantity:
            return False
        # buy_x_get_y never applies partially below its buy threshold
        if isinstance(rule, BuyXGetYRule) and scope.quantity < rule.buy_quantity:
            return False
        return True


def order_scope(context: OrderContext) -> ScopeInstance:
    return ScopeInstance(
        kind=AppliesTo.ORDER,
        key=ORDER_SCOPE_KEY,
        description="order",
        line_indexes=tuple(range(len(context.lines))),
        base=context.subtotal,
        quantity=context.total_quantity,
    )


def line_scope(context: OrderContext, index: int) -> ScopeInstance:
    line = context.lines[index]
    return ScopeInstance(
        kind=AppliesTo.PRODUCT,
        key=f"line:{index}",
        description=f"line {index + 1} (product {line.product_id})",
        line_indexes=(index,),
        base=line.total_price,
        quantity=line.quantity,
    )


def category_scope(context: OrderContext, category_id: int, indexes: List[int]) -> ScopeInstance:
    lines = [context.lines[i] for i in indexes]
    return ScopeInstance(
        kind=AppliesTo.CATEGORY,
        key=f"category:{category_id}",
        description=f"category {category_id}",
        line_indexes=tuple(indexes),
        base=sum((line.total_price for line in lines), Decimal("0")),
        quantity=sum(line.quantity for line in lines),
    )
