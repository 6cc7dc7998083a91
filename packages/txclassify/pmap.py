"""Bounded thread-pool mapping, modelled on the JavaScript ``p-map``.

``p_map(iterable, mapper, concurrency=N)`` keeps at most ``N`` mapper calls
in flight and returns results in input order. The batch scheduler uses it to
run its fixed set of worker loops; waiting on ``p_map`` is the wait-group.

Options
-------
- ``stop_on_error`` (default True): fail fast on the first error; when False,
  wait for every call and raise an ``ExceptionGroup`` of all failures.
- ``cancellation``: once cancelled, no further items are submitted. Calls
  already running are left to finish.
- ``p_map_skip``: return this sentinel from the mapper to drop an item.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from .cancellation import Cancellation

InT = TypeVar("InT")
OutT = TypeVar("OutT")


class _Skip:
    __slots__ = ()

    def __repr__(self) -> str:  # pragma: no cover - trivial
        return "p_map_skip"


p_map_skip: object = _Skip()


def p_map(
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT | object],
    *,
    concurrency: int,
    stop_on_error: bool = True,
    cancellation: Cancellation | None = None,
    thread_name_prefix: str = "p_map",
) -> list[OutT]:
    """Map ``iterable`` through ``mapper`` with at most ``concurrency`` calls in flight."""

    if not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    it = enumerate(iterable)
    results: dict[int, OutT | object] = {}
    errors: list[Exception] = []
    future_to_idx: dict[Future, int] = {}

    def _submit(pool: ThreadPoolExecutor) -> Future | None:
        if cancellation is not None and cancellation.cancelled:
            return None
        try:
            idx, item = next(it)
        except StopIteration:
            return None
        fut = pool.submit(mapper, item)
        future_to_idx[fut] = idx
        return fut

    with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix=thread_name_prefix) as pool:
        active: set[Future] = set()
        for _ in range(concurrency):
            fut = _submit(pool)
            if fut is None:
                break
            active.add(fut)

        while active:
            done, active = wait(active, return_when=FIRST_COMPLETED)
            for fut in done:
                idx = future_to_idx.pop(fut)
                try:
                    results[idx] = fut.result()
                except Exception as e:  # noqa: BLE001
                    if stop_on_error:
                        pool.shutdown(wait=False, cancel_futures=True)
                        raise
                    errors.append(e)

            for _ in range(len(done)):
                fut = _submit(pool)
                if fut is None:
                    break
                active.add(fut)

    if errors:
        raise ExceptionGroup("p_map: one or more mapper calls failed", errors)

    return [results[i] for i in sorted(results) if results[i] is not p_map_skip]  # type: ignore[misc]


__all__ = ["p_map", "p_map_skip"]
