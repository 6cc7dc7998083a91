"""Interactive review of merchants the gate did not auto-accept.

Merchants are reviewed lowest-confidence first. A merchant is either
confirmed as a group (one prompt covering every transaction, the first
confirmation acting as the template) or, when its amounts vary too much, one
transaction at a time with fresh per-transaction rankings.

New categories
--------------
A confirmation may ask for its category to be created. Creation is
idempotent (an existing category of the same name is reused) and the
description comes from the prompter, the oracle's suggestion, or a
generated one. If creation fails the whole merchant is skipped. The run's
category snapshot is never updated here.

Errors
------
``ReviewCancelled`` from the prompter stops the run; any other prompter
error skips just that merchant (or transaction).
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

from .cancellation import Cancellation
from .errors import CategoryNotFoundError, ReviewCancelled, RunCancelled
from .gate import ConfidenceGate, mark_new_against_snapshot
from .logging_setup import get_logger
from .models import (
    BatchResult,
    Category,
    CategoryRanking,
    CategoryType,
    CheckPattern,
    Classification,
    ClassificationStatus,
    Confirmation,
    CreateCategoryIntent,
    Direction,
    PendingClassification,
    ResultSource,
    Transaction,
)
from .oracle import RetryingOracle
from .persist import ResultWriter
from .resolution import dominant_direction, filter_categories_by_direction
from .snapshot import CategorySnapshot
from .storage import Storage

_logger = get_logger("txclassify.review")


class Prompter(Protocol):
    def confirm_classification(self, pending: PendingClassification) -> Confirmation: ...

    def batch_confirm_classifications(
        self, pendings: Sequence[PendingClassification]
    ) -> list[Confirmation]: ...


class AutoAcceptPrompter:
    """Accept every suggestion as-is; used for unattended runs."""

    def confirm_classification(self, pending: PendingClassification) -> Confirmation:
        return Confirmation(
            transaction=pending.transaction,
            category=pending.suggested_category,
            status=ClassificationStatus.AI,
            confidence=pending.confidence,
            create_category=(
                CreateCategoryIntent(pending.category_description)
                if pending.is_new_category
                else None
            ),
        )

    def batch_confirm_classifications(
        self, pendings: Sequence[PendingClassification]
    ) -> list[Confirmation]:
        return [self.confirm_classification(p) for p in pendings]


_TYPE_FOR_DIRECTION: dict[Direction, CategoryType] = {
    Direction.INCOME: CategoryType.INCOME,
    Direction.TRANSFER: CategoryType.SYSTEM,
}


def category_type_for(transactions: Sequence[Transaction]) -> CategoryType:
    return _TYPE_FOR_DIRECTION.get(dominant_direction(transactions), CategoryType.EXPENSE)


@dataclass(slots=True)
class ReviewOutcome:
    merchants_reviewed: int = 0
    merchants_skipped: int = 0
    transactions_saved: int = 0


class ReviewCoordinator:
    def __init__(
        self,
        storage: Storage,
        oracle: RetryingOracle,
        prompter: Prompter,
        gate: ConfidenceGate,
        snapshot: CategorySnapshot,
        writer: ResultWriter,
        *,
        cancellation: Cancellation | None = None,
    ) -> None:
        self._storage = storage
        self._oracle = oracle
        self._prompter = prompter
        self._gate = gate
        self._snapshot = snapshot
        self._writer = writer
        self._cancellation = cancellation

    def review_all(
        self,
        results: Sequence[BatchResult],
        *,
        on_reviewed: Callable[[BatchResult], None] | None = None,
    ) -> ReviewOutcome:
        """Review ``results`` lowest score first.

        ``on_reviewed`` runs after each merchant is handled (saved or skipped).
        """

        outcome = ReviewOutcome()
        for result in sorted(results, key=lambda r: r.score):
            if self._cancellation is not None:
                self._cancellation.check()
            saved = self.review(result)
            if saved:
                outcome.merchants_reviewed += 1
                outcome.transactions_saved += saved
            else:
                outcome.merchants_skipped += 1
            if on_reviewed is not None:
                on_reviewed(result)
        return outcome

    def review(self, result: BatchResult) -> int:
        """Review one merchant; returns the number of transactions saved."""

        if result.suggestion is None:
            return 0
        if self._gate.is_high_variance(result.transactions):
            _logger.info(
                "review:individual merchant=%s transactions=%d",
                result.display_name,
                len(result.transactions),
            )
            return self._review_individually(result)
        return self._review_as_batch(result)

    # ---- Batch review ---------------------------------------------------------

    def _pending_for(
        self,
        txn: Transaction,
        suggestion: CategoryRanking,
        result: BatchResult,
        *,
        check_patterns: Sequence[CheckPattern],
        similar_count: int,
    ) -> PendingClassification:
        return PendingClassification(
            transaction=txn,
            suggested_category=suggestion.category,
            confidence=suggestion.score,
            rankings=result.rankings,
            check_patterns=tuple(check_patterns),
            all_categories=tuple(self._snapshot),
            similar_count=similar_count,
            is_new_category=suggestion.is_new,
            category_description=suggestion.description,
        )

    def _review_as_batch(self, result: BatchResult) -> int:
        assert result.suggestion is not None
        suggestion = mark_new_against_snapshot(result.suggestion, self._snapshot)
        similar = len(result.transactions) - 1
        pendings = [
            self._pending_for(
                t, suggestion, result, check_patterns=result.used_patterns, similar_count=similar
            )
            for t in result.transactions
        ]
        try:
            confirmations = self._prompter.batch_confirm_classifications(pendings)
        except ReviewCancelled:
            raise
        except Exception as e:  # noqa: BLE001
            _logger.error(
                "review:prompt_failed merchant=%s error=%s",
                result.display_name,
                e.__class__.__name__,
            )
            return 0
        if not confirmations:
            return 0
        return self._apply(result, confirmations[0], result.transactions)

    # ---- Individual review ----------------------------------------------------

    def _matching_patterns(self, txn: Transaction) -> list[CheckPattern]:
        if not txn.is_check:
            return []
        try:
            return self._storage.get_matching_check_patterns(txn)
        except Exception as e:  # noqa: BLE001
            _logger.warning(
                "review:pattern_lookup_failed txn=%s error=%s", txn.id, e.__class__.__name__
            )
            return []

    def _review_individually(self, result: BatchResult) -> int:
        """Confirm each transaction on its own ranking, then save them together.

        Every confirmed category is resolved (or created) before anything is
        written; if one cannot be, the whole merchant is skipped.
        """

        decided: list[tuple[BatchResult, Confirmation]] = []
        for txn in result.transactions:
            if self._cancellation is not None:
                self._cancellation.check()
            try:
                rankings = self._oracle.rank_transaction(
                    txn,
                    result.display_name,
                    filter_categories_by_direction(list(self._snapshot), [txn]),
                    cancellation=self._cancellation,
                )
            except RunCancelled:
                raise
            except Exception as e:  # noqa: BLE001
                _logger.warning(
                    "review:rank_failed txn=%s error=%s", txn.id, e.__class__.__name__
                )
                rankings = result.rankings
            if not rankings:
                rankings = result.rankings

            patterns = self._matching_patterns(txn)
            rankings = rankings.apply_check_pattern_boosts(patterns)
            top = rankings.top()
            if top is None:
                continue
            top = mark_new_against_snapshot(top, self._snapshot)
            single = BatchResult(
                merchant=result.merchant,
                display_name=result.display_name,
                transactions=[txn],
                suggestion=top,
                rankings=rankings,
                used_patterns=patterns,
                source=ResultSource.RANKING,
            )
            pending = self._pending_for(txn, top, single, check_patterns=patterns, similar_count=0)
            try:
                confirmation = self._prompter.confirm_classification(pending)
            except ReviewCancelled:
                raise
            except Exception as e:  # noqa: BLE001
                _logger.error(
                    "review:prompt_failed txn=%s error=%s", txn.id, e.__class__.__name__
                )
                continue
            decided.append((single, confirmation))

        categories: dict[str, Category] = {}
        for single, confirmation in decided:
            key = confirmation.category.casefold()
            if key in categories:
                continue
            category = self.ensure_category(
                confirmation.category,
                confirmation.creation_intent(),
                single.suggestion,
                result.transactions,
            )
            if category is None:
                _logger.warning(
                    "review:merchant_skipped merchant=%s category=%s",
                    result.display_name,
                    confirmation.category,
                )
                return 0
            categories[key] = category

        return sum(
            self._save_confirmed(
                single,
                confirmation,
                categories[confirmation.category.casefold()],
                single.transactions,
            )
            for single, confirmation in decided
        )

    # ---- Applying a confirmation ----------------------------------------------

    def _apply(
        self,
        result: BatchResult,
        confirmation: Confirmation,
        transactions: Sequence[Transaction],
    ) -> int:
        category = self.ensure_category(
            confirmation.category,
            confirmation.creation_intent(),
            result.suggestion,
            transactions,
        )
        if category is None:
            _logger.warning(
                "review:merchant_skipped merchant=%s category=%s",
                result.display_name,
                confirmation.category,
            )
            return 0
        return self._save_confirmed(result, confirmation, category, transactions)

    def _save_confirmed(
        self,
        result: BatchResult,
        confirmation: Confirmation,
        category: Category,
        transactions: Sequence[Transaction],
    ) -> int:
        now = dt.datetime.now(dt.UTC)
        saved = self._writer.save_classifications(
            [
                Classification(
                    transaction=t,
                    category=category.name,
                    status=confirmation.status,
                    confidence=confirmation.confidence,
                    classified_at=now,
                )
                for t in transactions
            ],
            category,
        )
        if saved == 0:
            return 0

        self._writer.increment_pattern_uses(result, category=category.name)
        suggestion = result.suggestion
        if (
            confirmation.status is ClassificationStatus.USER_MODIFIED
            and suggestion is not None
            and suggestion.score >= self._writer.vendor_rule_min_confidence
        ):
            self._writer.learn_vendor(result.display_name, category.name, saved)
        _logger.info(
            "review:saved merchant=%s category=%s status=%s saved=%d",
            result.display_name,
            category.name,
            confirmation.status.value,
            saved,
        )
        return saved

    def ensure_category(
        self,
        name: str,
        intent: CreateCategoryIntent | None,
        suggestion: CategoryRanking | None,
        transactions: Sequence[Transaction],
    ) -> Category | None:
        """Return the category to save under, creating it when needed.

        Returns ``None`` when the category is missing and cannot be created.
        """

        existing = self._snapshot.get(name)
        if existing is not None:
            return existing
        try:
            return self._storage.get_category_by_name(name)
        except CategoryNotFoundError:
            pass
        except Exception as e:  # noqa: BLE001
            _logger.error(
                "review:category_lookup_failed category=%s error=%s", name, e.__class__.__name__
            )
            return None

        description = intent.description if intent is not None else ""
        if (
            not description
            and suggestion is not None
            and suggestion.category.casefold() == name.casefold()
        ):
            description = suggestion.description
        if not description:
            description = self._generate_description(name)

        try:
            category = self._storage.create_category(
                name, description, category_type_for(transactions)
            )
        except Exception as e:  # noqa: BLE001
            _logger.error(
                "review:category_create_failed category=%s error=%s",
                name,
                e.__class__.__name__,
            )
            return None
        _logger.info("review:category_created category=%s type=%s", category.name, category.type)
        return category

    def _generate_description(self, name: str) -> str:
        try:
            description, confidence = self._oracle.generate_category_description(
                name, cancellation=self._cancellation
            )
        except RunCancelled:
            raise
        except Exception as e:  # noqa: BLE001
            _logger.warning(
                "review:description_failed category=%s error=%s", name, e.__class__.__name__
            )
            return ""
        _logger.debug("review:description_generated category=%s confidence=%.2f", name, confidence)
        return description


__all__ = [
    "AutoAcceptPrompter",
    "Prompter",
    "ReviewCoordinator",
    "ReviewOutcome",
    "category_type_for",
]
