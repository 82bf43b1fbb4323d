# discount_engine/services/calculator.py
from decimal import Decimal
from typing import Optional
from ..models.discount import BuyXGetYRule, DiscountRule, FixedRule, PercentageRule
from ..models.order import OrderContext
from ..models.pricing import ScopeInstance
from ..utils.money import ZERO, quantize_money


def free_units(quantity: int, buy_quantity: int, get_quantity: int) -> int:
    """Units given away: get_quantity per complete group of buy_quantity + get_quantity"""
    if quantity < buy_quantity:
        return 0
    return (quantity // (buy_quantity + get_quantity)) * get_quantity


class DiscountCalculator:
    """Prices one rule against one scope instance"""

    def calculate(self, rule: DiscountRule, scope: ScopeInstance, context: OrderContext,
                  base: Optional[Decimal] = None) -> Decimal:
        """
        Discount for the scope, rounded half-even to currency precision, then capped by
        max_discount_amount and by the base so a line or order never goes negative.
        `base` overrides the scope's own base when part of it is already discounted.
        """
        if base is None:
            base = scope.base
        if base <= 0:
            return ZERO

        if isinstance(rule, PercentageRule):
            amount = base * (rule.discount_value / Decimal(100))
        elif isinstance(rule, FixedRule):
            amount = min(rule.discount_value, base)
        elif isinstance(rule, BuyXGetYRule):
            amount = self._buy_x_get_y_amount(rule, scope, context)
        else:
            raise TypeError(f"Unsupported discount rule: {type(rule).__name__}")

        amount = quantize_money(amount)
        if rule.max_discount_amount is not None:
            amount = min(amount, rule.max_discount_amount)
        amount = min(amount, base)
        return max(amount, ZERO)

    @staticmethod
    def _buy_x_get_y_amount(rule: BuyXGetYRule, scope: ScopeInstance, context: OrderContext) -> Decimal:
        remaining = free_units(scope.quantity, rule.buy_quantity, rule.get_quantity)
        if remaining == 0:
            return ZERO

        # A scope spanning several lines gives away its cheapest units
        lines = sorted((context.lines[i] for i in scope.line_indexes), key=lambda line: line.unit_price)
        amount = ZERO
        for line in lines:
            if remaining == 0:
                break
            taken = min(remaining, line.quantity)
            amount += line.unit_price * taken
            remaining -= taken
        return amount
