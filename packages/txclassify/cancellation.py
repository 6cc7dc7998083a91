"""Cooperative cancellation shared by the scheduler, retry loop and engine."""

from __future__ import annotations

import signal
import threading
from collections.abc import Callable
from typing import Any

from .errors import RunCancelled


class Cancellation:
    """A thread-safe cancellation flag.

    Workers poll :meth:`cancelled` between units of work; sleeps go through
    :meth:`wait` so backoff wakes up as soon as the run is cancelled.
    """

    __slots__ = ("_event", "_reason")

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason = ""

    def cancel(self, reason: str = "cancelled") -> None:
        self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def check(self) -> None:
        """Raise :class:`RunCancelled` when cancellation was requested."""

        if self._event.is_set():
            raise RunCancelled(self._reason or "cancelled")

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True when woken by cancellation."""

        return self._event.wait(max(0.0, seconds))

    def install_sigint_handler(self) -> Callable[[], None]:
        """Route SIGINT to :meth:`cancel`; returns a callable restoring the old handler.

        A second Ctrl-C falls through to the previous handler so a stuck run
        can still be killed.
        """

        previous: Any = signal.getsignal(signal.SIGINT)

        def _handler(signum, frame) -> None:  # pragma: no cover - signal path
            if self._event.is_set() and callable(previous):
                previous(signum, frame)
                return
            self.cancel("interrupted")

        signal.signal(signal.SIGINT, _handler)

        def _restore() -> None:
            signal.signal(signal.SIGINT, previous)

        return _restore


__all__ = ["Cancellation"]
