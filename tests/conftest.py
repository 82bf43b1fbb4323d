import itertools
from datetime import datetime
from decimal import Decimal
import pytest
import pytz
from discount_engine.database.memory_repository import InMemoryRuleRepository
from discount_engine.models.discount import DiscountRuleCreate, parse_rule
from discount_engine.models.order import OrderContext, OrderLine
from discount_engine.services.discount_service import DiscountRuleService
from discount_engine.services.pricing_engine import PricingEngine
from discount_engine.utils.clock import fixed_clock

NOW = pytz.utc.localize(datetime(2025, 7, 1, 12, 0, 0))


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return fixed_clock(NOW)


@pytest.fixture
def make_rule():
    """Build stored rules directly, without a repository"""
    ids = itertools.count(1)

    def _make(**overrides):
        rule_id = overrides.pop('id', None) or next(ids)
        data = {
            'id': rule_id,
            'code': f"RULE{rule_id}",
            'name': f"Rule {rule_id}",
            'discount_type': 'percentage',
            'discount_value': Decimal("10"),
            'applies_to': 'order',
            'created_at': NOW,
        }
        data.update(overrides)
        return parse_rule(data)

    return _make


@pytest.fixture
def make_order():
    """lines are (product_id, category_id, quantity, unit_price) tuples"""
    def _make(lines, customer_id=1, classification=None):
        return OrderContext(
            customer_id=customer_id,
            customer_classification=classification,
            lines=[
                OrderLine(product_id=p, category_id=c, quantity=q, unit_price=Decimal(str(price)))
                for p, c, q, price in lines
            ],
        )

    return _make


@pytest.fixture
def repository(clock):
    return InMemoryRuleRepository(clock=clock)


@pytest.fixture
def engine(repository, clock):
    return PricingEngine(repository, clock=clock)


@pytest.fixture
def service(repository, clock):
    return DiscountRuleService(repository, clock=clock)


@pytest.fixture
def create_rule(repository):
    """Persist a rule through the same validation administrators go through"""
    async def _create(**fields):
        data = {
            'code': 'PROMO',
            'name': 'Promotion',
            'discount_type': 'percentage',
            'discount_value': Decimal("10"),
        }
        data.update(fields)
        return await repository.create(DiscountRuleCreate(**data))

    return _create
