"""Persisting decided merchants: classifications, use counts and learned rules.

Per-transaction save failures are logged and skipped; counters move only by
what was actually saved.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Sequence

from .errors import CategoryNotFoundError
from .logging_setup import get_logger
from .models import (
    BatchResult,
    Category,
    CategoryType,
    Classification,
    ClassificationStatus,
    Direction,
    ResultSource,
    Vendor,
)
from .storage import Storage

_logger = get_logger("txclassify.persist")

_DIRECTION_FOR_TYPE: dict[CategoryType, Direction] = {
    CategoryType.INCOME: Direction.INCOME,
    CategoryType.EXPENSE: Direction.EXPENSE,
    CategoryType.SYSTEM: Direction.TRANSFER,
}


def direction_for_category(category: Category | None) -> Direction:
    if category is None:
        return Direction.UNSET
    return _DIRECTION_FOR_TYPE.get(category.type, Direction.UNSET)


def status_for_result(result: BatchResult) -> ClassificationStatus:
    if result.source in (ResultSource.VENDOR, ResultSource.PATTERN):
        return ClassificationStatus.RULE
    return ClassificationStatus.AI


class ResultWriter:
    def __init__(self, storage: Storage, *, vendor_rule_min_confidence: float = 0.85) -> None:
        self._storage = storage
        self.vendor_rule_min_confidence = vendor_rule_min_confidence

    def save_classifications(
        self, classifications: Sequence[Classification], category: Category | None
    ) -> int:
        """Save each classification; returns how many were written.

        Transactions with no explicit direction take the one implied by the
        chosen category's type.
        """

        implied = direction_for_category(category)
        saved = 0
        for c in classifications:
            try:
                self._storage.save_classification(c)
            except Exception as e:  # noqa: BLE001
                _logger.error(
                    "persist:save_failed txn=%s category=%s error=%s",
                    c.transaction.id,
                    c.category,
                    e.__class__.__name__,
                )
                continue
            saved += 1
            if implied is not Direction.UNSET and c.transaction.direction is Direction.UNSET:
                try:
                    self._storage.set_transaction_direction(c.transaction.id, implied)
                except Exception as e:  # noqa: BLE001
                    _logger.warning(
                        "persist:direction_failed txn=%s error=%s",
                        c.transaction.id,
                        e.__class__.__name__,
                    )
        return saved

    def increment_pattern_uses(self, result: BatchResult, category: str | None = None) -> None:
        """Count one use for each pattern applied (optionally only those naming ``category``)."""

        for p in result.used_patterns:
            if p.id is None or (category is not None and p.category != category):
                continue
            try:
                self._storage.increment_check_pattern_use_count(p.id)
            except Exception as e:  # noqa: BLE001
                _logger.warning(
                    "persist:pattern_use_failed pattern=%s error=%s",
                    p.name,
                    e.__class__.__name__,
                )

    def learn_vendor(self, merchant: str, category: str, use_count: int) -> None:
        if not merchant:
            return
        try:
            self._storage.save_vendor(Vendor(name=merchant, category=category, use_count=use_count))
            _logger.info("persist:vendor_rule_created merchant=%s category=%s", merchant, category)
        except Exception as e:  # noqa: BLE001
            _logger.warning(
                "persist:vendor_rule_failed merchant=%s error=%s",
                merchant,
                e.__class__.__name__,
            )

    def save_auto_accepted(self, result: BatchResult) -> int:
        """Persist a merchant whose suggestion is applied without review.

        The suggested category must exist; otherwise nothing is saved.
        Returns the number of transactions saved.
        """

        suggestion = result.suggestion
        if suggestion is None:
            return 0
        try:
            category = self._storage.get_category_by_name(suggestion.category)
        except CategoryNotFoundError:
            _logger.warning(
                "persist:auto_skip_missing_category merchant=%s category=%s",
                result.display_name,
                suggestion.category,
            )
            return 0

        now = dt.datetime.now(dt.UTC)
        status = status_for_result(result)
        saved = self.save_classifications(
            [
                Classification(
                    transaction=t,
                    category=category.name,
                    status=status,
                    confidence=suggestion.score,
                    classified_at=now,
                )
                for t in result.transactions
            ],
            category,
        )
        if saved == 0:
            return 0

        self.increment_pattern_uses(result)
        if result.source is ResultSource.VENDOR:
            try:
                self._storage.increment_vendor_use_count(result.display_name, saved)
            except Exception as e:  # noqa: BLE001
                _logger.warning(
                    "persist:vendor_use_failed merchant=%s error=%s",
                    result.display_name,
                    e.__class__.__name__,
                )
        elif (
            result.source is ResultSource.RANKING
            and suggestion.score >= self.vendor_rule_min_confidence
        ):
            self.learn_vendor(result.display_name, category.name, saved)

        _logger.info(
            "persist:auto_accepted merchant=%s category=%s score=%.2f saved=%d",
            result.display_name,
            category.name,
            suggestion.score,
            saved,
        )
        return saved


__all__ = ["ResultWriter", "direction_for_category", "status_for_result"]
