# discount_engine/database/memory_repository.py
import asyncio
import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from ..exceptions import DuplicateCodeError, RuleNotFoundError
from ..models.discount import (
    DiscountRule, DiscountRuleCreate, RuleFilters, RulePage, RuleSort, parse_rule
)
from ..services.rule_validator import is_eligible_state
from ..utils.clock import Clock, now as system_now
from ..utils.money import ZERO

logger = logging.getLogger(__name__)

# Undo steps recorded by increments made inside transaction()
_journal: ContextVar[Optional[List[Callable[[], None]]]] = ContextVar('memory_rule_journal', default=None)


class InMemoryRuleRepository:
    """Process-local rule store with the same contract as the PostgreSQL repository"""

    def __init__(self, clock: Optional[Clock] = None):
        self._rules: Dict[int, DiscountRule] = {}
        self._customer_usage: Dict[Tuple[int, int], int] = {}
        self._redemptions: List[Dict[str, Any]] = []
        self._next_id = 1
        self._lock = asyncio.Lock()
        self._clock = clock or system_now

    async def get(self, rule_id: int) -> Optional[DiscountRule]:
        return self._rules.get(rule_id)

    async def get_by_code(self, code: str) -> Optional[DiscountRule]:
        wanted = code.strip().upper()
        for rule in self._rules.values():
            if rule.code.upper() == wanted:
                return rule
        return None

    async def list_rules(self, filters: Optional[RuleFilters] = None, sort: Optional[RuleSort] = None,
                         page: int = 1, page_size: int = 20) -> RulePage:
        filters = filters or RuleFilters()
        sort = sort or RuleSort()
        rules = [rule for rule in self._rules.values() if self._matches(rule, filters)]
        rules = _sorted(rules, sort)

        start = (max(page, 1) - 1) * page_size
        return RulePage(
            items=rules[start:start + page_size],
            current_page=max(page, 1),
            per_page=page_size,
            total=len(rules),
        )

    async def create(self, data: DiscountRuleCreate) -> DiscountRule:
        async with self._lock:
            if await self.get_by_code(data.code):
                raise DuplicateCodeError(data.code)
            record = data.to_record()
            record.update(id=self._next_id, current_usage=0, created_at=self._clock(), updated_at=None)
            rule = parse_rule(record)
            self._rules[rule.id] = rule
            self._next_id += 1
            return rule

    async def update(self, rule_id: int, data: DiscountRuleCreate) -> DiscountRule:
        async with self._lock:
            current = self._rules.get(rule_id)
            if current is None:
                raise RuleNotFoundError(rule_id)
            clash = await self.get_by_code(data.code)
            if clash is not None and clash.id != rule_id:
                raise DuplicateCodeError(data.code)
            record = data.to_record()
            record.update(
                id=rule_id,
                current_usage=current.current_usage,
                created_at=current.created_at,
                updated_at=self._clock(),
            )
            rule = parse_rule(record)
            self._rules[rule_id] = rule
            return rule

    async def delete(self, rule_id: int) -> bool:
        async with self._lock:
            return self._rules.pop(rule_id, None) is not None

    async def has_redemptions(self, rule_id: int) -> bool:
        return any(r['rule_id'] == rule_id for r in self._redemptions)

    async def get_customer_usage(self, customer_id: Optional[int], rule_ids: Sequence[int]) -> Dict[int, int]:
        if customer_id is None:
            return {}
        return {
            rule_id: self._customer_usage[(rule_id, customer_id)]
            for rule_id in rule_ids
            if (rule_id, customer_id) in self._customer_usage
        }

    async def increment_usage(self, rule_id: int, customer_id: Optional[int] = None,
                              order_id: Optional[int] = None, amount: Decimal = ZERO) -> bool:
        """Bump the global and per-customer counters together, only if both caps allow it"""
        async with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                return False
            if rule.usage_limit is not None and rule.current_usage >= rule.usage_limit:
                return False
            key = (rule_id, customer_id)
            used = self._customer_usage.get(key, 0)
            if customer_id is not None and rule.usage_per_customer is not None and used >= rule.usage_per_customer:
                return False

            self._rules[rule_id] = rule.model_copy(update={'current_usage': rule.current_usage + 1})
            if customer_id is not None:
                self._customer_usage[key] = used + 1
            redemption = {
                'rule_id': rule_id,
                'customer_id': customer_id,
                'order_id': order_id,
                'amount': amount,
                'redeemed_at': self._clock(),
            }
            self._redemptions.append(redemption)

            journal = _journal.get()
            if journal is not None:
                journal.append(lambda: self._undo_increment(rule_id, customer_id, redemption))
            return True

    async def get_usage_stats(self, rule_id: int) -> Dict[str, Any]:
        rows = [r for r in self._redemptions if r['rule_id'] == rule_id]
        return {
            'total_redemptions': len(rows),
            'unique_customers': len({r['customer_id'] for r in rows if r['customer_id'] is not None}),
            'total_discount_amount': sum((r['amount'] for r in rows), ZERO),
        }

    @asynccontextmanager
    async def transaction(self):
        """Increments made inside the block are undone if it raises"""
        journal: List[Callable[[], None]] = []
        token = _journal.set(journal)
        try:
            yield
        except BaseException:
            async with self._lock:
                for undo in reversed(journal):
                    undo()
            raise
        finally:
            _journal.reset(token)

    def _undo_increment(self, rule_id: int, customer_id: Optional[int], redemption: Dict[str, Any]):
        rule = self._rules.get(rule_id)
        if rule is not None:
            self._rules[rule_id] = rule.model_copy(update={'current_usage': rule.current_usage - 1})
        if customer_id is not None:
            self._customer_usage[(rule_id, customer_id)] -= 1
        self._redemptions.remove(redemption)

    @staticmethod
    def _matches(rule: DiscountRule, filters: RuleFilters) -> bool:
        if filters.search:
            needle = filters.search.casefold()
            haystack = [rule.name, rule.code, rule.description or ""]
            if not any(needle in text.casefold() for text in haystack):
                return False
        if filters.discount_type is not None and rule.discount_type != filters.discount_type:
            return False
        if filters.applies_to is not None and rule.applies_to != filters.applies_to:
            return False
        if filters.is_active is not None and rule.is_active != filters.is_active:
            return False
        if filters.code is not None and rule.code.upper() != filters.code.strip().upper():
            return False
        if filters.valid_only and not is_eligible_state(rule, filters.valid_at or system_now()):
            return False
        return True


def _sorted(rules: List[DiscountRule], sort: RuleSort) -> List[DiscountRule]:
    """Sort on one field with missing values last and rule id as the tie-break"""
    present = [r for r in rules if getattr(r, sort.field) is not None]
    missing = [r for r in rules if getattr(r, sort.field) is None]
    present.sort(key=lambda r: r.id)
    present.sort(key=lambda r: getattr(r, sort.field), reverse=sort.descending)
    missing.sort(key=lambda r: r.id)
    return present + missing
