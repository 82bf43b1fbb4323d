from datetime import timedelta
from decimal import Decimal
import pytest
import pytest_asyncio
from pydantic import ValidationError
from discount_engine.config import Config
from discount_engine.exceptions import DuplicateCodeError, RuleNotFoundError
from discount_engine.models.discount import (
    BuyXGetYRule, DiscountRuleCreate, DiscountRuleUpdate, DiscountType, FixedRule, RuleFilters, RuleSort
)
from discount_engine.services.discount_service import DEACTIVATED, DELETED


def _data(code, **fields):
    data = {
        'code': code,
        'name': f"{code} promotion",
        'discount_type': 'percentage',
        'discount_value': Decimal("10"),
    }
    data.update(fields)
    return DiscountRuleCreate(**data)


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_assigns_id_and_upper_cases(self, service, now):
        rule = await service.create_rule(_data("welcome"))
        assert rule.id == 1
        assert rule.code == "WELCOME"
        assert rule.current_usage == 0
        assert rule.created_at == now

    @pytest.mark.asyncio
    async def test_duplicate_code_ignores_case(self, service):
        await service.create_rule(_data("WELCOME"))
        with pytest.raises(DuplicateCodeError) as excinfo:
            await service.create_rule(_data("Welcome"))
        assert excinfo.value.code == "WELCOME"

    @pytest.mark.asyncio
    async def test_lookup_by_code(self, service):
        created = await service.create_rule(_data("WELCOME"))
        assert (await service.get_by_code("welcome")).id == created.id
        assert await service.get_by_code("missing") is None

    @pytest.mark.asyncio
    async def test_missing_rule(self, service):
        with pytest.raises(RuleNotFoundError):
            await service.get_rule(42)


class TestUpdate:
    @pytest.mark.asyncio
    async def test_partial_update(self, service, now):
        rule = await service.create_rule(_data("WELCOME", priority=4))
        updated = await service.update_rule(rule.id, DiscountRuleUpdate(discount_value=Decimal("15")))
        assert updated.discount_value == Decimal("15")
        assert updated.priority == 4
        assert updated.created_at == rule.created_at
        assert updated.updated_at == now

    @pytest.mark.asyncio
    async def test_update_is_revalidated(self, service):
        rule = await service.create_rule(_data("WELCOME"))
        with pytest.raises(ValidationError):
            await service.update_rule(rule.id, DiscountRuleUpdate(applies_to='product'))
        assert (await service.get_rule(rule.id)).applies_to == 'order'

    @pytest.mark.asyncio
    async def test_switch_type(self, service):
        rule = await service.create_rule(_data("WELCOME"))
        updated = await service.update_rule(rule.id, DiscountRuleUpdate(
            discount_type=DiscountType.BUY_X_GET_Y, buy_quantity=2, get_quantity=1
        ))
        assert isinstance(updated, BuyXGetYRule)

        updated = await service.update_rule(rule.id, DiscountRuleUpdate(
            discount_type=DiscountType.FIXED, discount_value=Decimal("7")
        ))
        assert isinstance(updated, FixedRule)

    @pytest.mark.asyncio
    async def test_rename_to_taken_code(self, service):
        await service.create_rule(_data("FIRST"))
        second = await service.create_rule(_data("SECOND"))
        with pytest.raises(DuplicateCodeError):
            await service.update_rule(second.id, DiscountRuleUpdate(code="first"))

    @pytest.mark.asyncio
    async def test_keep_own_code(self, service):
        rule = await service.create_rule(_data("FIRST"))
        updated = await service.update_rule(rule.id, DiscountRuleUpdate(code="first", name="Renamed"))
        assert updated.name == "Renamed"

    @pytest.mark.asyncio
    async def test_toggle(self, service):
        rule = await service.create_rule(_data("WELCOME"))
        assert not (await service.toggle_active(rule.id, False)).is_active
        assert (await service.toggle_active(rule.id, True)).is_active


class TestDelete:
    @pytest.mark.asyncio
    async def test_unused_rule_is_deleted(self, service, repository):
        rule = await service.create_rule(_data("WELCOME"))
        assert await service.delete_rule(rule.id) == DELETED
        assert await repository.get(rule.id) is None

    @pytest.mark.asyncio
    async def test_redeemed_rule_is_deactivated(self, service, repository):
        rule = await service.create_rule(_data("WELCOME"))
        await repository.increment_usage(rule.id, customer_id=1)
        assert await service.delete_rule(rule.id) == DEACTIVATED
        kept = await repository.get(rule.id)
        assert kept is not None
        assert not kept.is_active
        assert kept.current_usage == 1


class TestList:
    @pytest_asyncio.fixture
    async def seeded(self, service, now):
        await service.create_rule(_data("SUMMER", name="Summer sale", priority=5))
        await service.create_rule(_data("WINTER", name="Winter sale", is_active=False))
        await service.create_rule(_data("SHIP", name="Free shipping", discount_type='fixed',
                                        discount_value=Decimal("5"), priority=9))
        await service.create_rule(_data("OLD", name="Last year", end_date=now - timedelta(days=30)))
        await service.create_rule(_data("B2G1", name="Socks", discount_type='buy_x_get_y',
                                        discount_value=Decimal("0"), buy_quantity=2, get_quantity=1,
                                        applies_to='category', category_ids=[4], priority=5))

    @pytest.mark.asyncio
    async def test_search(self, service, seeded):
        page = await service.list_rules(RuleFilters(search="sale"))
        assert sorted(r.code for r in page.items) == ["SUMMER", "WINTER"]

    @pytest.mark.asyncio
    async def test_filters(self, service, seeded):
        assert [r.code for r in (await service.list_rules(RuleFilters(discount_type='fixed'))).items] == ["SHIP"]
        assert [r.code for r in (await service.list_rules(RuleFilters(applies_to='category'))).items] == ["B2G1"]
        assert [r.code for r in (await service.list_rules(RuleFilters(is_active=False))).items] == ["WINTER"]
        assert [r.code for r in (await service.list_rules(RuleFilters(code="summer"))).items] == ["SUMMER"]

    @pytest.mark.asyncio
    async def test_valid_only_uses_clock(self, service, seeded):
        page = await service.list_rules(RuleFilters(valid_only=True))
        assert sorted(r.code for r in page.items) == ["B2G1", "SHIP", "SUMMER"]

    @pytest.mark.asyncio
    async def test_sort_with_id_tie_break(self, service, seeded):
        page = await service.list_rules(sort=RuleSort(field='priority', descending=True))
        assert [r.code for r in page.items] == ["SHIP", "SUMMER", "B2G1", "WINTER", "OLD"]

    @pytest.mark.asyncio
    async def test_sort_missing_values_last(self, service, seeded):
        page = await service.list_rules(sort=RuleSort(field='end_date'))
        assert page.items[0].code == "OLD"

    @pytest.mark.asyncio
    async def test_pagination(self, service, seeded):
        page = await service.list_rules(page=2, page_size=2)
        assert [r.code for r in page.items] == ["SHIP", "OLD"]
        assert page.total == 5
        assert page.last_page == 3

    @pytest.mark.asyncio
    async def test_active_rules_span_pages(self, service, seeded, monkeypatch):
        monkeypatch.setattr(Config, "RULE_PAGE_SIZE", 1)
        rules = await service.get_active_rules()
        assert [r.code for r in rules] == ["SHIP", "SUMMER", "B2G1"]


@pytest.mark.asyncio
async def test_usage_stats(service, repository):
    rule = await service.create_rule(_data("WELCOME", usage_limit=10))
    await repository.increment_usage(rule.id, customer_id=1, amount=Decimal("3.00"))
    await repository.increment_usage(rule.id, customer_id=1, amount=Decimal("2.50"))
    await repository.increment_usage(rule.id, customer_id=2, amount=Decimal("1.00"))

    stats = await service.get_usage_stats(rule.id)
    assert stats == {
        'total_redemptions': 3,
        'unique_customers': 2,
        'total_discount_amount': Decimal("6.50"),
        'current_usage': 3,
        'usage_remaining': 7,
    }
