# discount_engine/services/conflict_resolver.py
import logging
from collections import OrderedDict
from decimal import Decimal
from typing import Dict, List, Mapping, Sequence, Tuple
from ..models.pricing import AppliedDiscount, Candidate, ExcludedDiscount, ExclusionReason
from ..utils.money import ZERO

logger = logging.getLogger(__name__)


def precedence_key(candidate: Candidate) -> Tuple[int, int]:
    """Higher priority first, then the earlier-created rule"""
    return (-candidate.rule.priority, candidate.rule.id)


class ConflictResolver:
    """Chooses which priced candidates actually apply on each scope instance"""

    def resolve(self, candidates: Sequence[Candidate],
                bases: Mapping[str, Decimal]) -> Tuple[List[AppliedDiscount], List[ExcludedDiscount]]:
        """
        Walk each scope's candidates in precedence order. The first non-combinable rule
        reached locks its scope, even when it is worth nothing there; combinable rules
        stack, each capped at what is left of the scope's base.
        """
        groups: Dict[str, List[Candidate]] = OrderedDict()
        for candidate in candidates:
            groups.setdefault(candidate.scope.key, []).append(candidate)

        applied: List[AppliedDiscount] = []
        excluded: List[ExcludedDiscount] = []
        for scope_key, group in groups.items():
            remaining = bases.get(scope_key, group[0].scope.base)
            locked = False
            for candidate in sorted(group, key=precedence_key):
                if locked:
                    excluded.append(_excluded(candidate, ExclusionReason.SCOPE_LOCKED))
                    continue

                if not candidate.rule.is_combinable:
                    locked = True

                amount = min(candidate.amount, remaining)
                if amount <= ZERO:
                    reason = ExclusionReason.SCOPE_EXHAUSTED if remaining <= ZERO else ExclusionReason.NO_DISCOUNT
                    excluded.append(_excluded(candidate, reason))
                    continue

                applied.append(AppliedDiscount(
                    rule_id=candidate.rule.id,
                    code=candidate.rule.code,
                    scope_key=scope_key,
                    scope_description=candidate.scope.description,
                    amount=amount,
                ))
                remaining -= amount

        for entry in excluded:
            logger.debug("Rule %s excluded on %s: %s", entry.code, entry.scope_key, entry.reason.value)
        return applied, excluded


def _excluded(candidate: Candidate, reason: ExclusionReason) -> ExcludedDiscount:
    return ExcludedDiscount(
        rule_id=candidate.rule.id,
        code=candidate.rule.code,
        scope_key=candidate.scope.key,
        scope_description=candidate.scope.description,
        amount=candidate.amount,
        reason=reason,
    )
