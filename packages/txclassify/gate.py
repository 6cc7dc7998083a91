"""Confidence gate: auto-accept, batch review, or per-transaction review."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
from enum import Enum

from .models import BatchResult, CategoryRanking, Transaction
from .snapshot import CategorySnapshot


class GateDecision(Enum):
    AUTO_ACCEPT = "auto_accept"
    BATCH_REVIEW = "batch_review"
    INDIVIDUAL_REVIEW = "individual_review"


def has_high_variance(
    transactions: Sequence[Transaction], *, ratio: float = 10.0, min_count: int = 5
) -> bool:
    """True when a merchant's absolute amounts spread too widely to review as one.

    Needs at least ``min_count`` transactions. With a zero minimum the group
    is high-variance once any amount exceeds 100.
    """

    if len(transactions) < min_count:
        return False
    amounts = [abs(t.amount) for t in transactions]
    lo, hi = min(amounts), max(amounts)
    if lo == 0:
        return hi > 100
    return hi / lo > ratio


def mark_new_against_snapshot(
    ranking: CategoryRanking, snapshot: CategorySnapshot
) -> CategoryRanking:
    """Force ``is_new`` when the ranked category is not in the run snapshot.

    A category the oracle flags as new but which already exists keeps the
    existing spelling and loses the flag.
    """

    existing = snapshot.get(ranking.category)
    if existing is None:
        return ranking if ranking.is_new else replace(ranking, is_new=True)
    if ranking.is_new or existing.name != ranking.category:
        return replace(ranking, category=existing.name, is_new=False)
    return ranking


class ConfidenceGate:
    def __init__(
        self,
        threshold: float = 0.95,
        *,
        variance_ratio: float = 10.0,
        variance_min_count: int = 5,
    ) -> None:
        self.threshold = threshold
        self._variance_ratio = variance_ratio
        self._variance_min_count = variance_min_count

    def is_high_variance(self, transactions: Sequence[Transaction]) -> bool:
        return has_high_variance(
            transactions, ratio=self._variance_ratio, min_count=self._variance_min_count
        )

    def accepts(self, suggestion: CategoryRanking | None, snapshot: CategorySnapshot) -> bool:
        return (
            suggestion is not None
            and suggestion.score >= self.threshold
            and not suggestion.is_new
            and snapshot.contains(suggestion.category)
        )

    def decide(self, result: BatchResult, snapshot: CategorySnapshot) -> GateDecision:
        """Route a successful result; normalizes ``result.suggestion`` against the snapshot."""

        if result.suggestion is not None:
            result.suggestion = mark_new_against_snapshot(result.suggestion, snapshot)
        if self.accepts(result.suggestion, snapshot):
            return GateDecision.AUTO_ACCEPT
        if self.is_high_variance(result.transactions):
            return GateDecision.INDIVIDUAL_REVIEW
        return GateDecision.BATCH_REVIEW


__all__ = [
    "ConfidenceGate",
    "GateDecision",
    "has_high_variance",
    "mark_new_against_snapshot",
]
