"""Retry with exponential backoff for oracle calls.

Every failure is retryable. Delays double from ``initial_delay`` up to
``max_delay`` with ±``jitter_pct`` jitter; a rate-limit response (our
:class:`RateLimitError` or any exception carrying ``status_code == 429``)
jumps straight to ``max_delay``. Exhausting the attempts raises
:class:`OracleError` chained to the last failure.
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from typing import TypeVar

from .cancellation import Cancellation
from .config import RetryPolicy
from .errors import OracleError, RateLimitError, RunCancelled
from .logging_setup import get_logger

T = TypeVar("T")

_logger = get_logger("txclassify.retry")


def _is_rate_limited(exc: BaseException) -> bool:
    if isinstance(exc, RateLimitError):
        return True
    return getattr(exc, "status_code", None) == 429


def backoff_delay(attempt: int, policy: RetryPolicy, exc: BaseException | None = None) -> float:
    """Delay to wait after the ``attempt``-th failure (1-based), jitter included."""

    base = policy.max_delay if exc is not None and _is_rate_limited(exc) else policy.delay_for(attempt)
    jitter = base * policy.jitter_pct
    delay = base + random.uniform(-jitter, jitter)
    return max(0.0, min(policy.max_delay, delay))


def _sleep(seconds: float, cancellation: Cancellation | None) -> None:
    if cancellation is None:
        time.sleep(seconds)
        return
    if cancellation.wait(seconds):
        cancellation.check()


def with_retry(
    operation: Callable[[], T],
    *,
    policy: RetryPolicy,
    label: str,
    cancellation: Cancellation | None = None,
) -> T:
    """Call ``operation`` until it succeeds or ``policy.max_attempts`` is reached.

    Cancellation is checked before each attempt and interrupts the backoff
    sleep; :class:`RunCancelled` raised by ``operation`` is never retried.
    """

    attempt = 1
    while True:
        if cancellation is not None:
            cancellation.check()
        t0 = time.perf_counter()
        try:
            return operation()
        except RunCancelled:
            raise
        except Exception as e:  # noqa: BLE001
            dt_ms = (time.perf_counter() - t0) * 1000.0
            if attempt >= policy.max_attempts:
                _logger.error(
                    "retry:exhausted op=%s attempts=%d latency_ms=%.2f error=%s",
                    label,
                    attempt,
                    dt_ms,
                    e.__class__.__name__,
                )
                raise OracleError(f"{label} failed after {attempt} attempts: {e}") from e
            delay = backoff_delay(attempt, policy, e)
            _logger.warning(
                "retry:attempt_failed op=%s attempt=%d latency_ms=%.2f delay_s=%.2f error=%s",
                label,
                attempt,
                dt_ms,
                delay,
                e.__class__.__name__,
            )
            _sleep(delay, cancellation)
            attempt += 1


__all__ = ["backoff_delay", "with_retry"]
