# discount_engine/__init__.py
from .models.discount import (
    AppliesTo,
    BuyXGetYRule,
    DiscountRule,
    DiscountRuleCreate,
    DiscountRuleUpdate,
    DiscountType,
    FixedRule,
    PercentageRule,
)
from .models.order import OrderContext, OrderLine
from .models.pricing import PricingResult, ValidationFailure, ValidationResult
from .services.pricing_engine import PricingEngine
from .services.usage_ledger import UsageLedger

__all__ = [
    'AppliesTo',
    'BuyXGetYRule',
    'DiscountRule',
    'DiscountRuleCreate',
    'DiscountRuleUpdate',
    'DiscountType',
    'FixedRule',
    'PercentageRule',
    'OrderContext',
    'OrderLine',
    'PricingResult',
    'ValidationFailure',
    'ValidationResult',
    'PricingEngine',
    'UsageLedger',
]
