"""Classification engine: the sequential and batch pipelines.

Both pipelines share the same stages (checkpoint resume, one category
snapshot per run, merchant grouping, rule/oracle resolution, the confidence
gate, and auto-persist or review) and differ only in how merchants reach the
oracle:

- :meth:`ClassificationEngine.classify_transactions` walks merchants one at a
  time, reviewing each as it goes.
- :meth:`ClassificationEngine.classify_transactions_batch` fans merchants out
  through :class:`~txclassify.scheduler.BatchScheduler`, applies every
  auto-accept, then reviews the rest lowest-confidence first.
"""

from __future__ import annotations

import datetime as dt
import time
from collections.abc import Sequence

from .cancellation import Cancellation
from .checkpoint import ProgressTracker
from .config import BatchOptions, EngineOptions, RerankOptions
from .errors import OracleError, RunCancelled
from .gate import ConfidenceGate, GateDecision
from .grouping import MerchantGroup, group_by_merchant, sort_by_volume
from .logging_setup import get_logger
from .models import (
    BatchClassificationSummary,
    BatchResult,
    RerankSummary,
    ResultSource,
    Transaction,
)
from .oracle import RankingOracle, RetryingOracle
from .persist import ResultWriter
from .resolution import ResolutionPolicy, filter_categories_by_direction
from .review import AutoAcceptPrompter, Prompter, ReviewCoordinator
from .scheduler import BatchScheduler
from .snapshot import CategorySnapshot
from .storage import Storage

_logger = get_logger("txclassify.engine")


class ClassificationEngine:
    """Entry point for classification runs.

    Parameters
    ----------
    storage:
        Persistence collaborator (see :class:`~txclassify.storage.Storage`).
    oracle:
        A ranking oracle; wrapped in :class:`RetryingOracle` unless it
        already is one.
    prompter:
        Interactive reviewer. Defaults to :class:`AutoAcceptPrompter`.
    options:
        Engine tunables (thresholds, variance rule, retry policy).
    """

    def __init__(
        self,
        storage: Storage,
        oracle: RankingOracle | RetryingOracle,
        prompter: Prompter | None = None,
        *,
        options: EngineOptions | None = None,
    ) -> None:
        self.options = options or EngineOptions()
        self.storage = storage
        self.oracle = (
            oracle
            if isinstance(oracle, RetryingOracle)
            else RetryingOracle(oracle, policy=self.options.retry)
        )
        self.prompter: Prompter = prompter or AutoAcceptPrompter()
        self.policy = ResolutionPolicy(storage)
        self.writer = ResultWriter(
            storage, vendor_rule_min_confidence=self.options.vendor_rule_min_confidence
        )

    # ---- Shared building blocks -----------------------------------------------

    def make_gate(self, threshold: float | None = None) -> ConfidenceGate:
        return ConfidenceGate(
            self.options.auto_accept_threshold if threshold is None else threshold,
            variance_ratio=self.options.variance_ratio,
            variance_min_count=self.options.variance_min_count,
        )

    def make_reviewer(
        self,
        gate: ConfidenceGate,
        snapshot: CategorySnapshot,
        cancellation: Cancellation | None,
    ) -> ReviewCoordinator:
        return ReviewCoordinator(
            self.storage,
            self.oracle,
            self.prompter,
            gate,
            snapshot,
            self.writer,
            cancellation=cancellation,
        )

    def get_transactions_to_classify(self, from_date: dt.date | None = None) -> list[Transaction]:
        return self.storage.get_transactions_to_classify(from_date)

    # ---- Sequential pipeline --------------------------------------------------

    def _rank_group(
        self,
        group: MerchantGroup,
        snapshot: CategorySnapshot,
        cancellation: Cancellation,
    ) -> BatchResult:
        result = self.policy.resolve_by_rules(group)
        if result is not None:
            return result
        result = BatchResult(
            merchant=group.key,
            display_name=group.display_name,
            transactions=list(group.transactions),
        )
        request = ResolutionPolicy.ranking_request(group)
        categories = filter_categories_by_direction(list(snapshot), group.transactions)
        try:
            rankings = self.oracle.suggest_category_batch(
                [request], categories, cancellation=cancellation
            ).get(request.merchant_id)
        except RunCancelled:
            raise
        except Exception as e:  # noqa: BLE001
            result.error = e
            return result
        top = rankings.top() if rankings is not None else None
        if rankings is None or top is None:
            result.error = OracleError(f"no rankings returned for {group.display_name!r}")
            return result
        result.suggestion = top
        result.rankings = rankings
        result.source = ResultSource.RANKING
        return result

    def classify_transactions(
        self,
        from_date: dt.date | None = None,
        *,
        cancellation: Cancellation | None = None,
    ) -> BatchClassificationSummary:
        """Classify unclassified transactions merchant by merchant.

        Progress is checkpointed after each merchant. On cancellation the
        last position is saved and :class:`RunCancelled` is raised.
        """

        cancellation = cancellation or Cancellation()
        t0 = time.perf_counter()
        snapshot = CategorySnapshot.load(self.storage)
        tracker = ProgressTracker(self.storage)
        start = tracker.resume_from(from_date)
        transactions = self.get_transactions_to_classify(start)
        summary = BatchClassificationSummary()
        if not transactions:
            _logger.info("engine:nothing_to_classify from_date=%s", start)
            tracker.clear()
            return summary

        groups = group_by_merchant(transactions)
        order = sort_by_volume(groups)
        summary.total_merchants = len(groups)
        summary.total_transactions = len(transactions)
        gate = self.make_gate()
        reviewer = self.make_reviewer(gate, snapshot, cancellation)
        _logger.info(
            "engine:sequential_start merchants=%d transactions=%d categories=%d",
            len(groups),
            len(transactions),
            len(snapshot),
        )

        try:
            for key in order:
                cancellation.check()
                group = groups[key]
                result = self._rank_group(group, snapshot, cancellation)
                if result.error is not None:
                    summary.failed_count += 1
                    _logger.error(
                        "engine:merchant_failed merchant=%s error=%s",
                        group.display_name,
                        result.error,
                    )
                    continue
                if gate.decide(result, snapshot) is GateDecision.AUTO_ACCEPT:
                    self.writer.save_auto_accepted(result)
                    result.auto_accepted = True
                    summary.auto_accepted_count += 1
                    summary.auto_accepted_txns += len(result.transactions)
                else:
                    summary.needs_review_count += 1
                    summary.needs_review_txns += len(result.transactions)
                    reviewer.review(result)
                tracker.record(group.transactions)
        except RunCancelled:
            tracker.save_on_cancel()
            raise

        tracker.clear()
        summary.processing_seconds = time.perf_counter() - t0
        _logger.info(
            "engine:sequential_done auto=%d review=%d failed=%d seconds=%.2f",
            summary.auto_accepted_count,
            summary.needs_review_count,
            summary.failed_count,
            summary.processing_seconds,
        )
        return summary

    # ---- Batch pipeline -------------------------------------------------------

    def _run_batch(
        self,
        transactions: Sequence[Transaction],
        options: BatchOptions,
        snapshot: CategorySnapshot,
        cancellation: Cancellation,
        *,
        tracker: ProgressTracker | None,
        save_unreviewed: bool,
    ) -> BatchClassificationSummary:
        t0 = time.perf_counter()
        summary = BatchClassificationSummary()
        if not transactions:
            _logger.info("engine:nothing_to_classify")
            if tracker is not None:
                tracker.clear()
            return summary

        groups = group_by_merchant(transactions)
        order = sort_by_volume(groups)
        summary.total_merchants = len(groups)
        summary.total_transactions = len(transactions)
        _logger.info(
            "engine:batch_start merchants=%d transactions=%d workers=%d batch_size=%d",
            len(groups),
            len(transactions),
            options.parallel_workers,
            options.batch_size,
        )

        scheduler = BatchScheduler(
            self.policy,
            self.oracle,
            batch_size=options.batch_size,
            parallel_workers=options.parallel_workers,
        )
        results = scheduler.run(order, groups, snapshot, cancellation=cancellation)

        gate = self.make_gate(options.auto_accept_threshold)
        needs_review: list[BatchResult] = []
        for result in results:
            if result.error is not None:
                summary.failed_count += 1
                _logger.error(
                    "engine:merchant_failed merchant=%s error=%s",
                    result.display_name,
                    result.error,
                )
                continue
            if gate.decide(result, snapshot) is GateDecision.AUTO_ACCEPT:
                self.writer.save_auto_accepted(result)
                result.auto_accepted = True
                summary.auto_accepted_count += 1
                summary.auto_accepted_txns += len(result.transactions)
                if tracker is not None:
                    tracker.record(result.transactions)
            else:
                summary.needs_review_count += 1
                summary.needs_review_txns += len(result.transactions)
                needs_review.append(result)

        try:
            cancellation.check()
            if needs_review and options.skip_manual_review:
                if save_unreviewed:
                    for result in sorted(needs_review, key=lambda r: r.score):
                        self.writer.save_auto_accepted(result)
                        if tracker is not None:
                            tracker.record(result.transactions)
                else:
                    _logger.info(
                        "engine:review_skipped merchants=%d transactions=%d",
                        summary.needs_review_count,
                        summary.needs_review_txns,
                    )
            elif needs_review:
                reviewer = self.make_reviewer(gate, snapshot, cancellation)
                reviewer.review_all(
                    needs_review,
                    on_reviewed=(
                        (lambda r: tracker.record(r.transactions)) if tracker is not None else None
                    ),
                )
        except RunCancelled:
            if tracker is not None:
                tracker.save_on_cancel()
            raise

        if tracker is not None:
            tracker.clear()
        summary.processing_seconds = time.perf_counter() - t0
        _logger.info(
            "engine:batch_done auto=%d review=%d failed=%d seconds=%.2f",
            summary.auto_accepted_count,
            summary.needs_review_count,
            summary.failed_count,
            summary.processing_seconds,
        )
        return summary

    def classify_transactions_batch(
        self,
        from_date: dt.date | None = None,
        options: BatchOptions | None = None,
        *,
        cancellation: Cancellation | None = None,
    ) -> BatchClassificationSummary:
        """Classify unclassified transactions through the parallel scheduler.

        With ``skip_manual_review`` the low-confidence suggestions are saved
        without prompting (new categories are never created that way).
        """

        options = options or BatchOptions()
        cancellation = cancellation or Cancellation()
        snapshot = CategorySnapshot.load(self.storage)
        tracker = ProgressTracker(self.storage)
        start = tracker.resume_from(from_date)
        transactions = self.get_transactions_to_classify(start)
        return self._run_batch(
            transactions,
            options,
            snapshot,
            cancellation,
            tracker=tracker,
            save_unreviewed=True,
        )

    def classify_specific_transactions(
        self,
        transactions: Sequence[Transaction],
        options: BatchOptions | None = None,
        *,
        cancellation: Cancellation | None = None,
    ) -> BatchClassificationSummary:
        """Run the batch pipeline over a caller-provided list.

        No checkpoint is read or written, and with ``skip_manual_review``
        low-confidence results are left unsaved.
        """

        options = options or BatchOptions()
        cancellation = cancellation or Cancellation()
        snapshot = CategorySnapshot.load(self.storage)
        return self._run_batch(
            transactions,
            options,
            snapshot,
            cancellation,
            tracker=None,
            save_unreviewed=False,
        )

    # ---- Rerank ---------------------------------------------------------------

    def rerank_low_confidence(
        self,
        options: RerankOptions | None = None,
        *,
        cancellation: Cancellation | None = None,
    ) -> RerankSummary:
        from .rerank import RerankDriver

        return RerankDriver(self).run(options or RerankOptions(), cancellation=cancellation)


__all__ = ["ClassificationEngine"]
