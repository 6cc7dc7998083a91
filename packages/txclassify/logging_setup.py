"""Logging for ``txclassify``.

Library modules ask for ``get_logger("txclassify.<module>")`` and never attach
handlers; the package logger stays silent (``NullHandler``) until an
entrypoint calls :func:`configure_logging`. Lines are shaped
``module:event key=value ...`` so a run can be followed with grep.

The OpenAI SDK logs each HTTP request through ``httpx`` at INFO; those loggers
are capped at WARNING while a run is configured.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

_PKG_LOGGER_NAME = "txclassify"
_LEVEL_ENV = "TXCLASSIFY_LOG_LEVEL"
_DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"
_NOISY_LOGGERS = ("httpx", "httpcore", "openai")

_handler: logging.Handler | None = None


def resolve_level(level: int | str | None) -> int:
    """Turn an int, a level name or a numeric string into a logging level.

    ``None`` reads ``TXCLASSIFY_LOG_LEVEL``; anything unrecognised is INFO.
    """

    if level is None:
        level = os.getenv(_LEVEL_ENV) or logging.INFO
    if isinstance(level, int):
        return level
    name = level.strip().upper()
    if name.isdigit():
        return int(name)
    numeric = logging.getLevelName(name)
    return numeric if isinstance(numeric, int) else logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] | None = None,
    force: bool = False,
) -> None:
    """Attach one ``StreamHandler`` to the ``txclassify`` logger.

    Repeat calls are no-ops unless ``force`` is set, in which case the previous
    handler is replaced. ``stream`` defaults to the current ``sys.stderr``.
    """

    global _handler
    logger = logging.getLogger(_PKG_LOGGER_NAME)
    if _handler is not None:
        if not force:
            return
        logger.removeHandler(_handler)
    for h in list(logger.handlers):
        if isinstance(h, logging.NullHandler):
            logger.removeHandler(h)

    resolved = resolve_level(level)
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(fmt or _DEFAULT_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(resolved)
    logger.propagate = False
    _handler = handler

    for name in _NOISY_LOGGERS:
        noisy = logging.getLogger(name)
        if noisy.getEffectiveLevel() < logging.WARNING:
            noisy.setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    pkg_logger = logging.getLogger(_PKG_LOGGER_NAME)
    if _handler is None and not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "resolve_level"]
