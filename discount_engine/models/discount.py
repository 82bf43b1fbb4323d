# discount_engine/models/discount.py
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, FrozenSet, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator
from ..utils.clock import ensure_aware

CODE_PATTERN = r"^[A-Za-z0-9_-]+$"


class DiscountType(str, Enum):
    """Discount semantics"""
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    BUY_X_GET_Y = "buy_x_get_y"


class AppliesTo(str, Enum):
    """What a rule is evaluated against"""
    ORDER = "order"
    PRODUCT = "product"
    CATEGORY = "category"


def _to_frozenset(value: Any) -> Any:
    if value is None:
        return frozenset()
    return value


def _to_aware(value: Optional[datetime]) -> Optional[datetime]:
    if isinstance(value, datetime):
        return ensure_aware(value)
    return value


class DiscountRuleBase(BaseModel):
    """Fields shared by every discount type; stored rules are immutable snapshots"""
    id: int
    code: str
    name: str
    description: Optional[str] = None
    applies_to: AppliesTo = AppliesTo.ORDER

    # Scope selectors and audience
    product_ids: FrozenSet[int] = frozenset()
    category_ids: FrozenSet[int] = frozenset()
    customer_ids: FrozenSet[int] = frozenset()
    customer_classifications: FrozenSet[str] = frozenset()

    # Gating conditions
    min_order_amount: Optional[Decimal] = None
    min_quantity: Optional[int] = None
    max_discount_amount: Optional[Decimal] = None

    # Validity window, inclusive on both sides
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    usage_limit: Optional[int] = None
    usage_per_customer: Optional[int] = None
    current_usage: int = 0

    priority: int = 0
    is_combinable: bool = False
    is_active: bool = True

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @field_validator('product_ids', 'category_ids', 'customer_ids', 'customer_classifications', mode='before')
    @classmethod
    def _none_is_empty(cls, value):
        return _to_frozenset(value)

    @field_validator('start_date', 'end_date', 'created_at', 'updated_at')
    @classmethod
    def _aware_dates(cls, value):
        return _to_aware(value)


class PercentageRule(DiscountRuleBase):
    discount_type: Literal['percentage'] = 'percentage'
    discount_value: Decimal = Field(gt=0, le=100)


class FixedRule(DiscountRuleBase):
    discount_type: Literal['fixed'] = 'fixed'
    discount_value: Decimal = Field(gt=0)


class BuyXGetYRule(DiscountRuleBase):
    discount_type: Literal['buy_x_get_y'] = 'buy_x_get_y'
    buy_quantity: int = Field(gt=0)
    get_quantity: int = Field(gt=0)

    @property
    def discount_value(self) -> Decimal:
        return Decimal("0")

    @property
    def group_size(self) -> int:
        return self.buy_quantity + self.get_quantity


DiscountRule = Annotated[
    Union[PercentageRule, FixedRule, BuyXGetYRule],
    Field(discriminator='discount_type'),
]

_rule_adapter = TypeAdapter(DiscountRule)


def parse_rule(data: Any) -> DiscountRule:
    """Build the right rule variant from a mapping or a database record"""
    if not isinstance(data, dict):
        data = dict(data)
    return _rule_adapter.validate_python(data)


class DiscountRuleCreate(BaseModel):
    """Administrator input for a new rule; validates structure before anything is persisted"""
    code: str = Field(min_length=1, max_length=64, pattern=CODE_PATTERN)
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: Decimal = Decimal("0")
    buy_quantity: Optional[int] = None
    get_quantity: Optional[int] = None
    applies_to: AppliesTo = AppliesTo.ORDER
    product_ids: FrozenSet[int] = frozenset()
    category_ids: FrozenSet[int] = frozenset()
    customer_ids: FrozenSet[int] = frozenset()
    customer_classifications: FrozenSet[str] = frozenset()
    min_order_amount: Optional[Decimal] = Field(default=None, ge=0)
    min_quantity: Optional[int] = Field(default=None, ge=0)
    max_discount_amount: Optional[Decimal] = Field(default=None, ge=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    usage_limit: Optional[int] = Field(default=None, gt=0)
    usage_per_customer: Optional[int] = Field(default=None, gt=0)
    priority: int = 0
    is_combinable: bool = False
    is_active: bool = True

    model_config = ConfigDict(frozen=True)

    @field_validator('code', mode='before')
    @classmethod
    def _normalize_code(cls, value):
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator('name', mode='before')
    @classmethod
    def _strip_name(cls, value):
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator('product_ids', 'category_ids', 'customer_ids', 'customer_classifications', mode='before')
    @classmethod
    def _none_is_empty(cls, value):
        return _to_frozenset(value)

    @field_validator('start_date', 'end_date')
    @classmethod
    def _aware_dates(cls, value):
        return _to_aware(value)

    @model_validator(mode='after')
    def _check_structure(self):
        if self.discount_type == DiscountType.BUY_X_GET_Y:
            if not self.buy_quantity or self.buy_quantity <= 0:
                raise ValueError("buy_quantity is required for buy_x_get_y rules")
            if not self.get_quantity or self.get_quantity <= 0:
                raise ValueError("get_quantity is required for buy_x_get_y rules")
            if self.discount_value != 0:
                raise ValueError("discount_value must be 0 for buy_x_get_y rules")
        else:
            if self.discount_value <= 0:
                raise ValueError("discount_value must be greater than 0")
            if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > 100:
                raise ValueError("percentage discount_value cannot exceed 100")
            if self.buy_quantity is not None or self.get_quantity is not None:
                raise ValueError("buy_quantity/get_quantity only apply to buy_x_get_y rules")

        if self.applies_to == AppliesTo.PRODUCT and not self.product_ids:
            raise ValueError("product rules need at least one product id")
        if self.applies_to == AppliesTo.CATEGORY and not self.category_ids:
            raise ValueError("category rules need at least one category id")

        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self

    def to_record(self) -> Dict[str, Any]:
        """Column values for persisting this rule"""
        record = self.model_dump()
        record['discount_type'] = self.discount_type.value
        record['applies_to'] = self.applies_to.value
        for key in ('product_ids', 'category_ids', 'customer_ids'):
            record[key] = sorted(record[key])
        record['customer_classifications'] = sorted(record['customer_classifications'])
        return record


class DiscountRuleUpdate(BaseModel):
    """Partial update; only fields that were explicitly set are applied"""
    code: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = None
    buy_quantity: Optional[int] = None
    get_quantity: Optional[int] = None
    applies_to: Optional[AppliesTo] = None
    product_ids: Optional[FrozenSet[int]] = None
    category_ids: Optional[FrozenSet[int]] = None
    customer_ids: Optional[FrozenSet[int]] = None
    customer_classifications: Optional[FrozenSet[str]] = None
    min_order_amount: Optional[Decimal] = None
    min_quantity: Optional[int] = None
    max_discount_amount: Optional[Decimal] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    usage_limit: Optional[int] = None
    usage_per_customer: Optional[int] = None
    priority: Optional[int] = None
    is_combinable: Optional[bool] = None
    is_active: Optional[bool] = None

    def merge(self, rule: DiscountRule) -> DiscountRuleCreate:
        """Apply this update on top of an existing rule and re-validate the result"""
        fields = rule_to_fields(rule)
        changes = self.model_dump(exclude_unset=True)
        # Switching away from buy_x_get_y drops the quantities unless they are resent
        if changes.get('discount_type') not in (None, DiscountType.BUY_X_GET_Y):
            fields['buy_quantity'] = None
            fields['get_quantity'] = None
        elif changes.get('discount_type') == DiscountType.BUY_X_GET_Y:
            fields['discount_value'] = Decimal("0")
        fields.update(changes)
        return DiscountRuleCreate(**fields)


def rule_to_fields(rule: DiscountRule) -> Dict[str, Any]:
    """Writable fields of a stored rule, in DiscountRuleCreate form"""
    fields = rule.model_dump(
        exclude={'id', 'current_usage', 'created_at', 'updated_at', 'discount_type'}
    )
    fields['discount_type'] = DiscountType(rule.discount_type)
    if isinstance(rule, BuyXGetYRule):
        fields['discount_value'] = Decimal("0")
    else:
        fields['buy_quantity'] = None
        fields['get_quantity'] = None
    return fields


SortField = Literal['name', 'code', 'priority', 'start_date', 'end_date', 'created_at', 'current_usage']


class RuleFilters(BaseModel):
    """Query filters for listing rules"""
    search: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    applies_to: Optional[AppliesTo] = None
    is_active: Optional[bool] = None
    code: Optional[str] = None
    valid_only: bool = False
    valid_at: Optional[datetime] = None


class RuleSort(BaseModel):
    field: SortField = 'created_at'
    descending: bool = False


class RulePage(BaseModel):
    """One page of rules plus paging metadata"""
    items: List[DiscountRule]
    current_page: int
    per_page: int
    total: int

    @property
    def last_page(self) -> int:
        if self.total == 0:
            return 1
        return (self.total + self.per_page - 1) // self.per_page
