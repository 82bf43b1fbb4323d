# discount_engine/services/usage_ledger.py
import logging
from decimal import Decimal
from typing import Optional
from ..exceptions import RedemptionCommitError, RepositoryUnavailableError
from ..models.pricing import CommitResult, PricingResult
from ..utils.money import ZERO


class UsageLedger:
    """The only way usage counters change: one atomic capped increment per redemption"""

    def __init__(self, repository):
        self.repository = repository
        self.logger = logging.getLogger(__name__)

    async def record_redemption(self, rule_id: int, customer_id: Optional[int],
                                order_id: Optional[int] = None, amount: Decimal = ZERO) -> bool:
        """Count one redemption; False when the global or per-customer cap is already reached"""
        try:
            recorded = await self.repository.increment_usage(
                rule_id, customer_id=customer_id, order_id=order_id, amount=amount
            )
        except RepositoryUnavailableError as e:
            self.logger.error(f"Could not record redemption of rule {rule_id}: {e}", exc_info=True)
            raise

        if recorded:
            self.logger.info(f"Rule {rule_id} redeemed by customer {customer_id}")
        else:
            self.logger.warning(f"Redemption of rule {rule_id} by customer {customer_id} rejected: usage limit reached")
        return recorded

    async def commit(self, result: PricingResult, customer_id: Optional[int],
                     order_id: Optional[int] = None) -> CommitResult:
        """
        Redeem every rule applied in a confirmed pricing result. Rules whose cap was
        reached in the meantime are voided and the totals recomputed without them.
        Rules are locked in id order. A storage failure rolls back every increment of
        this commit.
        """
        redeemed = []
        voided = []
        try:
            async with self.repository.transaction():
                for rule_id in sorted(result.applied_rule_ids):
                    ok = await self.record_redemption(
                        rule_id, customer_id, order_id=order_id, amount=result.amount_for_rule(rule_id)
                    )
                    (redeemed if ok else voided).append(rule_id)
        except RepositoryUnavailableError as e:
            raise RedemptionCommitError(f"Redemptions for order {order_id} were not recorded: {e}") from e

        adjusted = result.without_rules(voided) if voided else result
        return CommitResult(result=adjusted, redeemed_rule_ids=redeemed, voided_rule_ids=voided)
