"""Three-tier resolution: vendor rule, then check pattern, then oracle ranking.

Rule hits resolve a merchant at confidence 1.0 without calling the oracle.
Lookup failures are logged and fall through to ranking; they never fail the
merchant.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Sequence

from .grouping import MerchantGroup
from .logging_setup import get_logger
from .models import (
    BatchResult,
    Category,
    CategoryRanking,
    CategoryRankings,
    CategoryType,
    Direction,
    ResultSource,
    Transaction,
)
from .oracle import RankingRequest
from .storage import Storage

_logger = get_logger("txclassify.resolution")

RULE_CONFIDENCE = 1.0


def dominant_direction(transactions: Iterable[Transaction]) -> Direction:
    """Most common effective direction, ignoring transactions with none."""

    counts = Counter(
        d for d in (t.effective_direction() for t in transactions) if d is not Direction.UNSET
    )
    if not counts:
        return Direction.UNSET
    return counts.most_common(1)[0][0]


def _allowed(category: Category, direction: Direction) -> bool:
    if category.type is CategoryType.SYSTEM:
        return True
    if direction is Direction.INCOME:
        return category.type is CategoryType.INCOME
    if direction is Direction.EXPENSE:
        return category.type in (CategoryType.EXPENSE, CategoryType.UNSET)
    if direction is Direction.TRANSFER:
        return False
    return True


def filter_categories_by_direction(
    categories: Sequence[Category], transactions: Sequence[Transaction]
) -> list[Category]:
    """Restrict candidate categories to those compatible with the money flow.

    System categories always pass. Falls back to the full list when filtering
    would leave nothing to choose from.
    """

    direction = dominant_direction(transactions)
    if direction is Direction.UNSET:
        return list(categories)
    filtered = [c for c in categories if _allowed(c, direction)]
    if not filtered:
        _logger.debug(
            "resolution:direction_filter_empty direction=%s categories=%d",
            direction.value,
            len(categories),
        )
        return list(categories)
    return filtered


def _rule_result(group: MerchantGroup, category: str, source: ResultSource) -> BatchResult:
    suggestion = CategoryRanking(category=category, score=RULE_CONFIDENCE)
    return BatchResult(
        merchant=group.key,
        display_name=group.display_name,
        transactions=list(group.transactions),
        suggestion=suggestion,
        rankings=CategoryRankings([suggestion]),
        source=source,
    )


class ResolutionPolicy:
    """Resolve a merchant group by rules, or describe it for the oracle."""

    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    def resolve_by_rules(self, group: MerchantGroup) -> BatchResult | None:
        """Return a confidence-1.0 result on a vendor or check-pattern hit, else ``None``."""

        if group.display_name:
            try:
                vendor = self._storage.get_vendor(group.display_name)
            except Exception as e:  # noqa: BLE001
                _logger.warning(
                    "resolution:vendor_lookup_failed merchant=%s error=%s",
                    group.display_name,
                    e.__class__.__name__,
                )
                vendor = None
            if vendor is not None:
                _logger.debug(
                    "resolution:vendor_hit merchant=%s category=%s",
                    group.display_name,
                    vendor.category,
                )
                return _rule_result(group, vendor.category, ResultSource.VENDOR)

        sample = group.transactions[0]
        if sample.is_check:
            try:
                patterns = self._storage.get_matching_check_patterns(sample)
            except Exception as e:  # noqa: BLE001
                _logger.warning(
                    "resolution:pattern_lookup_failed merchant=%s error=%s",
                    group.display_name,
                    e.__class__.__name__,
                )
                patterns = []
            if patterns:
                pattern = patterns[0]
                _logger.debug(
                    "resolution:pattern_hit merchant=%s pattern=%s category=%s",
                    group.display_name,
                    pattern.name,
                    pattern.category,
                )
                result = _rule_result(group, pattern.category, ResultSource.PATTERN)
                result.used_patterns = [pattern]
                return result
        return None

    @staticmethod
    def ranking_request(group: MerchantGroup) -> RankingRequest:
        return RankingRequest(
            merchant_id=group.key.merchant_id,
            merchant_name=group.display_name,
            sample_transaction=group.transactions[0],
            transaction_count=len(group.transactions),
        )


__all__ = [
    "RULE_CONFIDENCE",
    "ResolutionPolicy",
    "dominant_direction",
    "filter_categories_by_direction",
]
