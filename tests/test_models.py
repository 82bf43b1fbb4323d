from datetime import datetime, timedelta
from decimal import Decimal
import pytest
import pytz
from pydantic import ValidationError
from discount_engine.models.discount import (
    AppliesTo, BuyXGetYRule, DiscountRuleCreate, DiscountRuleUpdate, DiscountType,
    FixedRule, PercentageRule, RulePage, parse_rule
)
from discount_engine.models.order import OrderContext, OrderLine


def _create(**fields):
    data = {
        'code': 'summer2025',
        'name': 'Summer sale',
        'discount_type': 'percentage',
        'discount_value': Decimal("10"),
    }
    data.update(fields)
    return DiscountRuleCreate(**data)


class TestDiscountRuleCreate:
    def test_code_is_upper_cased(self):
        assert _create().code == "SUMMER2025"

    @pytest.mark.parametrize("code", ["", "has space", "bad!", "ñ"])
    def test_rejects_bad_codes(self, code):
        with pytest.raises(ValidationError):
            _create(code=code)

    def test_accepts_dashes_and_underscores(self):
        assert _create(code="black_friday-25").code == "BLACK_FRIDAY-25"

    def test_name_required(self):
        with pytest.raises(ValidationError):
            _create(name="   ")

    @pytest.mark.parametrize("value", ["0", "-5", "100.01"])
    def test_percentage_range(self, value):
        with pytest.raises(ValidationError):
            _create(discount_value=Decimal(value))

    def test_percentage_of_100_allowed(self):
        assert _create(discount_value=Decimal("100")).discount_value == 100

    def test_fixed_must_be_positive(self):
        with pytest.raises(ValidationError):
            _create(discount_type='fixed', discount_value=Decimal("0"))

    def test_buy_x_get_y_needs_quantities(self):
        with pytest.raises(ValidationError):
            _create(discount_type='buy_x_get_y', discount_value=Decimal("0"), buy_quantity=3)

    def test_buy_x_get_y_ignores_value_only_when_zero(self):
        with pytest.raises(ValidationError):
            _create(discount_type='buy_x_get_y', discount_value=Decimal("5"), buy_quantity=3, get_quantity=1)

        rule = _create(discount_type='buy_x_get_y', discount_value=Decimal("0"), buy_quantity=3, get_quantity=1)
        assert rule.buy_quantity == 3

    def test_quantities_rejected_on_other_types(self):
        with pytest.raises(ValidationError):
            _create(buy_quantity=2, get_quantity=1)

    def test_product_scope_needs_ids(self):
        with pytest.raises(ValidationError):
            _create(applies_to='product')
        assert _create(applies_to='product', product_ids=[1, 2]).product_ids == frozenset({1, 2})

    def test_category_scope_needs_ids(self):
        with pytest.raises(ValidationError):
            _create(applies_to='category', category_ids=[])

    def test_end_date_not_before_start(self):
        start = pytz.utc.localize(datetime(2025, 6, 1))
        with pytest.raises(ValidationError):
            _create(start_date=start, end_date=start - timedelta(days=1))
        assert _create(start_date=start, end_date=start).end_date == start

    def test_naive_dates_become_aware(self):
        rule = _create(start_date=datetime(2025, 6, 1))
        assert rule.start_date.tzinfo is not None

    def test_to_record(self):
        record = _create(applies_to='product', product_ids=[3, 1]).to_record()
        assert record['product_ids'] == [1, 3]
        assert record['discount_type'] == "percentage"
        assert record['applies_to'] == "product"


class TestRuleVariants:
    def test_discriminated_by_type(self, make_rule):
        assert isinstance(make_rule(), PercentageRule)
        assert isinstance(make_rule(discount_type='fixed', discount_value=Decimal("5")), FixedRule)
        bxgy = make_rule(discount_type='buy_x_get_y', buy_quantity=3, get_quantity=1)
        assert isinstance(bxgy, BuyXGetYRule)
        assert bxgy.discount_value == 0
        assert bxgy.group_size == 4

    def test_buy_x_get_y_requires_quantities(self, make_rule):
        with pytest.raises(ValidationError):
            make_rule(discount_type='buy_x_get_y')

    def test_unknown_type_rejected(self, make_rule):
        with pytest.raises(ValidationError):
            make_rule(discount_type='bogo')

    def test_none_selectors_are_empty(self):
        rule = parse_rule({
            'id': 1, 'code': 'X', 'name': 'X', 'discount_type': 'fixed',
            'discount_value': Decimal("1"), 'customer_ids': None,
        })
        assert rule.customer_ids == frozenset()
        assert rule.applies_to == AppliesTo.ORDER

    def test_rules_are_immutable(self, make_rule):
        rule = make_rule()
        with pytest.raises(ValidationError):
            rule.current_usage = 5


class TestDiscountRuleUpdate:
    def test_merge_applies_only_set_fields(self, make_rule):
        rule = make_rule(priority=3, is_combinable=True)
        merged = DiscountRuleUpdate(name="Renamed").merge(rule)
        assert merged.name == "Renamed"
        assert merged.priority == 3
        assert merged.is_combinable is True

    def test_merge_revalidates(self, make_rule):
        with pytest.raises(ValidationError):
            DiscountRuleUpdate(discount_value=Decimal("150")).merge(make_rule())

    def test_switching_to_buy_x_get_y(self, make_rule):
        merged = DiscountRuleUpdate(
            discount_type=DiscountType.BUY_X_GET_Y, buy_quantity=2, get_quantity=1
        ).merge(make_rule())
        assert merged.discount_value == 0
        assert merged.buy_quantity == 2

    def test_switching_away_from_buy_x_get_y(self, make_rule):
        rule = make_rule(discount_type='buy_x_get_y', buy_quantity=2, get_quantity=1)
        merged = DiscountRuleUpdate(discount_type=DiscountType.FIXED, discount_value=Decimal("5")).merge(rule)
        assert merged.buy_quantity is None
        assert merged.discount_value == 5


class TestOrderContext:
    def test_subtotal_is_computed(self):
        context = OrderContext(lines=[
            OrderLine(product_id=1, quantity=2, unit_price=Decimal("19.99")),
            OrderLine(product_id=2, quantity=1, unit_price=Decimal("5.02")),
        ])
        assert context.subtotal == Decimal("45.00")
        assert context.total_quantity == 3

    def test_explicit_subtotal_kept(self):
        context = OrderContext(subtotal=Decimal("10"), lines=[])
        assert context.subtotal == Decimal("10")

    def test_quantity_must_be_positive(self):
        with pytest.raises(ValidationError):
            OrderLine(product_id=1, quantity=0, unit_price=Decimal("1"))


def test_rule_page_last_page():
    assert RulePage(items=[], current_page=1, per_page=20, total=0).last_page == 1
    assert RulePage(items=[], current_page=1, per_page=20, total=41).last_page == 3
