"""Exception types raised across the classification pipeline.

Recoverable failures (a single merchant's ranking, a single persisted row) are
logged and isolated by the callers; only the run-level errors below escape a
pipeline entrypoint.
"""

from __future__ import annotations


class ClassificationError(Exception):
    """Base class for pipeline errors."""


class OracleError(ClassificationError):
    """The ranking oracle failed after exhausting retries."""


class RateLimitError(OracleError):
    """The oracle asked us to back off; retries jump to the maximum delay."""


class CategoryNotFoundError(ClassificationError):
    def __init__(self, name: str) -> None:
        super().__init__(f"category not found: {name!r}")
        self.name = name


class NoCategoriesError(ClassificationError):
    """No categories exist; nothing can be classified."""


class CheckpointError(ClassificationError):
    """The latest progress checkpoint could not be loaded."""


class RunCancelled(ClassificationError):
    """The run was cancelled (signal or caller request)."""


class ReviewCancelled(RunCancelled):
    """The user aborted an interactive review; stops the whole run."""


__all__ = [
    "CategoryNotFoundError",
    "CheckpointError",
    "ClassificationError",
    "NoCategoriesError",
    "OracleError",
    "RateLimitError",
    "ReviewCancelled",
    "RunCancelled",
]
