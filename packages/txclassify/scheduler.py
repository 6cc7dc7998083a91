"""Batch scheduler: fan merchants out to a fixed pool of worker loops.

Shape of a run
--------------
- A work queue is pre-filled with every merchant key in volume order.
- ``parallel_workers`` worker loops run on :func:`p_map`; each takes keys
  off the queue, accumulating up to ``batch_size`` before flushing (or
  flushing early once the queue is drained).
- A flush resolves rule hits locally and sends every remaining merchant to
  the oracle in a single call, with candidate categories filtered by the
  flush's dominant direction.
- Each merchant yields exactly one :class:`BatchResult` on the results
  queue, in completion order. The caller drains it after all workers exit.

Failures are per flush (oracle call failed: every merchant in it carries the
error) or per merchant (no rankings returned). Workers stop taking new keys
once cancelled; a flush already under way completes.
"""

from __future__ import annotations

import queue
import threading
import time
from collections.abc import Mapping, Sequence

from .cancellation import Cancellation
from .errors import OracleError
from .grouping import MerchantGroup
from .logging_setup import get_logger
from .models import BatchResult, MerchantKey, ResultSource
from .oracle import RetryingOracle
from .pmap import p_map
from .resolution import ResolutionPolicy, filter_categories_by_direction
from .snapshot import CategorySnapshot

_logger = get_logger("txclassify.scheduler")


class BatchScheduler:
    def __init__(
        self,
        policy: ResolutionPolicy,
        oracle: RetryingOracle,
        *,
        batch_size: int = 5,
        parallel_workers: int = 2,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be a positive integer")
        if parallel_workers < 1:
            raise ValueError("parallel_workers must be a positive integer")
        self._policy = policy
        self._oracle = oracle
        self._batch_size = batch_size
        self._parallel_workers = parallel_workers

    def run(
        self,
        order: Sequence[MerchantKey],
        groups: Mapping[MerchantKey, MerchantGroup],
        snapshot: CategorySnapshot,
        *,
        cancellation: Cancellation | None = None,
    ) -> list[BatchResult]:
        """Process ``order`` and return one result per processed merchant.

        On cancellation the returned list may be shorter than ``order``.
        """

        if not order:
            return []

        work: queue.Queue[MerchantKey] = queue.Queue()
        for key in order:
            work.put(key)
        results: queue.Queue[BatchResult] = queue.Queue(maxsize=len(order))
        n_workers = min(self._parallel_workers, len(order))
        flushes = 0
        flush_lock = threading.Lock()

        def _worker(worker_id: int) -> None:
            nonlocal flushes
            batch: list[MerchantKey] = []
            while True:
                if cancellation is not None and cancellation.cancelled:
                    _logger.info(
                        "scheduler:worker_cancelled worker=%d unflushed=%d",
                        worker_id,
                        len(batch),
                    )
                    return
                try:
                    key = work.get_nowait()
                except queue.Empty:
                    break
                batch.append(key)
                if len(batch) >= self._batch_size or work.empty():
                    self._flush(worker_id, batch, groups, snapshot, results, cancellation)
                    with flush_lock:
                        flushes += 1
                    batch = []
            if batch:
                self._flush(worker_id, batch, groups, snapshot, results, cancellation)
                with flush_lock:
                    flushes += 1

        t0 = time.perf_counter()
        p_map(
            range(n_workers),
            _worker,
            concurrency=n_workers,
            stop_on_error=False,
            thread_name_prefix="txclassify-worker",
        )

        out: list[BatchResult] = []
        while True:
            try:
                out.append(results.get_nowait())
            except queue.Empty:
                break
        _logger.info(
            "scheduler:done merchants=%d results=%d workers=%d flushes=%d latency_ms=%.2f",
            len(order),
            len(out),
            n_workers,
            flushes,
            (time.perf_counter() - t0) * 1000.0,
        )
        return out

    def _flush(
        self,
        worker_id: int,
        batch: Sequence[MerchantKey],
        groups: Mapping[MerchantKey, MerchantGroup],
        snapshot: CategorySnapshot,
        results: queue.Queue[BatchResult],
        cancellation: Cancellation | None,
    ) -> None:
        pending: list[MerchantGroup] = []
        for key in batch:
            group = groups[key]
            rule_result = self._policy.resolve_by_rules(group)
            if rule_result is not None:
                results.put(rule_result)
            else:
                pending.append(group)
        if not pending:
            return

        flush_txns = [t for g in pending for t in g.transactions]
        categories = filter_categories_by_direction(list(snapshot), flush_txns)
        requests = [ResolutionPolicy.ranking_request(g) for g in pending]

        t0 = time.perf_counter()
        try:
            rankings = self._oracle.suggest_category_batch(
                requests, categories, cancellation=cancellation
            )
        except Exception as e:  # noqa: BLE001
            _logger.error(
                "scheduler:flush_failed worker=%d merchants=%d error=%s",
                worker_id,
                len(pending),
                e.__class__.__name__,
            )
            for g in pending:
                results.put(
                    BatchResult(
                        merchant=g.key,
                        display_name=g.display_name,
                        transactions=list(g.transactions),
                        error=e,
                    )
                )
            return

        _logger.info(
            "scheduler:flush_done worker=%d merchants=%d categories=%d latency_ms=%.2f",
            worker_id,
            len(pending),
            len(categories),
            (time.perf_counter() - t0) * 1000.0,
        )
        for g in pending:
            ranked = rankings.get(g.key.merchant_id)
            top = ranked.top() if ranked is not None else None
            if ranked is None or top is None:
                results.put(
                    BatchResult(
                        merchant=g.key,
                        display_name=g.display_name,
                        transactions=list(g.transactions),
                        error=OracleError(f"no rankings returned for {g.display_name!r}"),
                    )
                )
                continue
            results.put(
                BatchResult(
                    merchant=g.key,
                    display_name=g.display_name,
                    transactions=list(g.transactions),
                    suggestion=top,
                    rankings=ranked,
                    source=ResultSource.RANKING,
                )
            )


__all__ = ["BatchScheduler"]
