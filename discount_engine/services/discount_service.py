# discount_engine/services/discount_service.py
import logging
from typing import Any, Dict, List, Optional
from ..config import Config
from ..exceptions import DuplicateCodeError, RuleNotFoundError
from ..models.discount import (
    DiscountRule, DiscountRuleCreate, DiscountRuleUpdate, RuleFilters, RulePage, RuleSort
)
from ..utils.clock import Clock, now as system_now
from .rule_validator import usage_remaining

DELETED = "deleted"
DEACTIVATED = "deactivated"


class DiscountRuleService:
    """Administrative management of discount rules"""

    def __init__(self, repository, clock: Optional[Clock] = None):
        self.repository = repository
        self.clock = clock or system_now
        self.logger = logging.getLogger(__name__)

    async def create_rule(self, data: DiscountRuleCreate) -> DiscountRule:
        """Create a new rule; the code must be unique ignoring case"""
        if await self.repository.get_by_code(data.code):
            raise DuplicateCodeError(data.code)
        rule = await self.repository.create(data)
        self.logger.info(f"Discount rule {rule.code} created with id {rule.id}")
        return rule

    async def get_rule(self, rule_id: int) -> DiscountRule:
        rule = await self.repository.get(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        return rule

    async def get_by_code(self, code: str) -> Optional[DiscountRule]:
        return await self.repository.get_by_code(code)

    async def update_rule(self, rule_id: int, update: DiscountRuleUpdate) -> DiscountRule:
        """Apply a partial update; the merged rule is validated as a whole"""
        current = await self.get_rule(rule_id)
        merged = update.merge(current)
        if merged.code != current.code.upper():
            clash = await self.repository.get_by_code(merged.code)
            if clash is not None and clash.id != rule_id:
                raise DuplicateCodeError(merged.code)
        rule = await self.repository.update(rule_id, merged)
        self.logger.info(f"Discount rule {rule.code} updated")
        return rule

    async def toggle_active(self, rule_id: int, is_active: bool) -> DiscountRule:
        return await self.update_rule(rule_id, DiscountRuleUpdate(is_active=is_active))

    async def delete_rule(self, rule_id: int) -> str:
        """Hard-delete a rule that was never redeemed, otherwise only deactivate it"""
        rule = await self.get_rule(rule_id)
        if rule.current_usage > 0 or await self.repository.has_redemptions(rule_id):
            await self.toggle_active(rule_id, False)
            self.logger.info(f"Discount rule {rule.code} has redemptions; deactivated instead of deleted")
            return DEACTIVATED

        await self.repository.delete(rule_id)
        self.logger.info(f"Discount rule {rule.code} deleted")
        return DELETED

    async def list_rules(self, filters: Optional[RuleFilters] = None, sort: Optional[RuleSort] = None,
                         page: int = 1, page_size: int = 20) -> RulePage:
        filters = filters or RuleFilters()
        if filters.valid_only and filters.valid_at is None:
            filters = filters.model_copy(update={'valid_at': self.clock()})
        return await self.repository.list_rules(filters, sort, page=page, page_size=page_size)

    async def get_active_rules(self) -> List[DiscountRule]:
        """Every currently valid rule, by priority"""
        filters = RuleFilters(is_active=True, valid_only=True, valid_at=self.clock())
        return await fetch_all_rules(self.repository, filters, RuleSort(field='priority', descending=True))

    async def get_usage_stats(self, rule_id: int) -> Dict[str, Any]:
        rule = await self.get_rule(rule_id)
        stats = dict(await self.repository.get_usage_stats(rule_id))
        stats['current_usage'] = rule.current_usage
        stats['usage_remaining'] = usage_remaining(rule)
        return stats


async def fetch_all_rules(repository, filters: RuleFilters, sort: RuleSort) -> List[DiscountRule]:
    """Page through every rule matching the filters; a rule seen twice while paging is kept once"""
    rules: Dict[int, DiscountRule] = {}
    page = 1
    while True:
        result = await repository.list_rules(filters, sort, page=page, page_size=Config.RULE_PAGE_SIZE)
        for rule in result.items:
            rules.setdefault(rule.id, rule)
        if page >= result.last_page:
            return list(rules.values())
        page += 1
