"""Re-rank low-confidence classifications.

Existing classifications below ``confidence_threshold`` (user-modified ones
excluded) are regrouped and sent through the scheduler again. A merchant
counts as improved when its new top score beats the highest confidence any of
its transactions had before; improved merchants then follow the usual
auto-accept/review path. Everything else is left untouched.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from .cancellation import Cancellation
from .config import RerankOptions
from .gate import GateDecision
from .grouping import group_by_merchant, sort_by_volume
from .logging_setup import get_logger
from .models import BatchResult, RerankSummary
from .scheduler import BatchScheduler
from .snapshot import CategorySnapshot

if TYPE_CHECKING:
    from .engine import ClassificationEngine

_logger = get_logger("txclassify.rerank")


class RerankDriver:
    def __init__(self, engine: ClassificationEngine) -> None:
        self._engine = engine

    def run(
        self, options: RerankOptions, *, cancellation: Cancellation | None = None
    ) -> RerankSummary:
        cancellation = cancellation or Cancellation()
        engine = self._engine
        t0 = time.perf_counter()
        summary = RerankSummary()

        existing = engine.storage.get_classifications_by_confidence(
            options.confidence_threshold, exclude_user_modified=True
        )
        if not existing:
            _logger.info("rerank:nothing_to_rerank threshold=%.2f", options.confidence_threshold)
            return summary

        old_confidence = {c.transaction.id: c.confidence for c in existing}
        transactions = [c.transaction for c in existing]
        summary.total_evaluated = len(transactions)

        snapshot = CategorySnapshot.load(engine.storage)
        groups = group_by_merchant(transactions)
        order = sort_by_volume(groups)
        _logger.info(
            "rerank:start merchants=%d transactions=%d threshold=%.2f",
            len(groups),
            len(transactions),
            options.confidence_threshold,
        )
        scheduler = BatchScheduler(
            engine.policy,
            engine.oracle,
            batch_size=options.batch_size,
            parallel_workers=options.parallel_workers,
        )
        results = scheduler.run(order, groups, snapshot, cancellation=cancellation)

        improved: list[BatchResult] = []
        total_improvement = 0.0
        for result in results:
            n = len(result.transactions)
            if not result.ok:
                if result.error is not None:
                    _logger.warning(
                        "rerank:merchant_failed merchant=%s error=%s",
                        result.display_name,
                        result.error,
                    )
                summary.unchanged_count += n
                continue
            max_old = max(old_confidence[t.id] for t in result.transactions)
            new_score = result.score
            if new_score <= max_old:
                summary.unchanged_count += n
                continue
            summary.improved_count += n
            total_improvement += sum(new_score - old_confidence[t.id] for t in result.transactions)
            improved.append(result)

        if summary.improved_count:
            summary.average_improvement = total_improvement / summary.improved_count

        gate = engine.make_gate(options.auto_accept_threshold)
        needs_review: list[BatchResult] = []
        for result in improved:
            if gate.decide(result, snapshot) is GateDecision.AUTO_ACCEPT:
                engine.writer.save_auto_accepted(result)
                result.auto_accepted = True
                summary.auto_accepted_count += len(result.transactions)
            else:
                summary.needs_review_count += len(result.transactions)
                needs_review.append(result)

        cancellation.check()
        if needs_review:
            if options.skip_manual_review:
                for result in needs_review:
                    engine.writer.save_auto_accepted(result)
            else:
                engine.make_reviewer(gate, snapshot, cancellation).review_all(needs_review)

        summary.processing_seconds = time.perf_counter() - t0
        _logger.info(
            "rerank:done evaluated=%d improved=%d unchanged=%d auto=%d review=%d",
            summary.total_evaluated,
            summary.improved_count,
            summary.unchanged_count,
            summary.auto_accepted_count,
            summary.needs_review_count,
        )
        return summary


__all__ = ["RerankDriver"]
