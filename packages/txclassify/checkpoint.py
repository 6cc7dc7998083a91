"""Resumable run checkpoints.

A saved checkpoint's date overrides the caller's ``from_date`` on the next
run. A successful run writes an empty checkpoint so the following run starts
from the caller's date again.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Sequence

from .errors import CheckpointError
from .logging_setup import get_logger
from .models import ClassificationProgress, Transaction
from .storage import Storage

_logger = get_logger("txclassify.checkpoint")


def _position(txn: Transaction) -> tuple[dt.date, str]:
    return (txn.date, txn.id)


class ProgressTracker:
    def __init__(self, storage: Storage) -> None:
        self._storage = storage
        self._total = 0
        self._started_at: dt.datetime | None = None
        self._last: Transaction | None = None

    @property
    def total_processed(self) -> int:
        return self._total

    def resume_from(self, from_date: dt.date | None) -> dt.date | None:
        """Return the effective start date, preferring a saved checkpoint."""

        try:
            progress = self._storage.get_latest_progress()
        except Exception as e:
            raise CheckpointError(f"failed to load classification progress: {e}") from e
        self._started_at = dt.datetime.now(dt.UTC)
        if progress is None or progress.is_empty or progress.last_processed_date is None:
            return from_date
        self._total = progress.total_processed
        self._started_at = progress.started_at or self._started_at
        _logger.info(
            "checkpoint:resume last_id=%s last_date=%s total=%d",
            progress.last_processed_id,
            progress.last_processed_date.isoformat(),
            progress.total_processed,
        )
        return progress.last_processed_date

    def record(self, transactions: Sequence[Transaction]) -> None:
        """Checkpoint after a merchant group is fully handled.

        Groups finish in volume or worker-completion order, so the saved
        position is the latest-dated transaction recorded so far rather than
        the most recent call.
        """

        if not transactions:
            return
        self._total += len(transactions)
        latest = max(transactions, key=_position)
        if self._last is None or _position(latest) > _position(self._last):
            self._last = latest
        self._save(self._current())

    def save_on_cancel(self) -> None:
        """Best-effort save of the last recorded position."""

        if self._last is None:
            return
        _logger.info("checkpoint:save_on_cancel total=%d", self._total)
        self._save(self._current())

    def clear(self) -> None:
        self._save(ClassificationProgress.cleared())

    def _current(self) -> ClassificationProgress:
        assert self._last is not None
        return ClassificationProgress(
            last_processed_id=self._last.id,
            last_processed_date=self._last.date,
            total_processed=self._total,
            started_at=self._started_at,
        )

    def _save(self, progress: ClassificationProgress) -> None:
        try:
            self._storage.save_progress(progress)
        except Exception as e:  # noqa: BLE001
            _logger.warning(
                "checkpoint:save_failed last_id=%s error=%s",
                progress.last_processed_id,
                e.__class__.__name__,
            )


__all__ = ["ProgressTracker"]
