"""Run options for the classification pipelines.

Options are pydantic models so values coming from the CLI or the environment
are validated in one place. ``from_env`` reads ``TXCLASSIFY_*`` variables; the
CLI loads a local ``.env`` with python-dotenv before calling it.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field

_ENV_PREFIX = "TXCLASSIFY_"


def _env_overrides(model: type[BaseModel], env: Mapping[str, str]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for name in model.model_fields:
        raw = env.get(_ENV_PREFIX + name.upper())
        if raw is not None and raw.strip() != "":
            out[name] = raw.strip()
    return out


class _Options(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None, **overrides: Any) -> Self:
        """Build options from ``TXCLASSIFY_<FIELD>`` variables plus explicit overrides.

        Explicit keyword overrides win; ``None`` overrides are ignored so CLI
        flags left unset fall through to the environment and then defaults.
        """

        values = _env_overrides(cls, os.environ if env is None else env)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(values)


class RetryPolicy(_Options):
    """Backoff schedule for oracle calls."""

    max_attempts: int = Field(default=3, ge=1)
    initial_delay: float = Field(default=0.5, ge=0)
    max_delay: float = Field(default=5.0, ge=0)
    multiplier: float = Field(default=2.0, ge=1)
    jitter_pct: float = Field(default=0.2, ge=0, le=1)

    def delay_for(self, attempt: int) -> float:
        """Base delay (before jitter) after the ``attempt``-th failure (1-based)."""

        delay = self.initial_delay * (self.multiplier ** max(0, attempt - 1))
        return min(delay, self.max_delay)


class BatchOptions(_Options):
    auto_accept_threshold: float = Field(default=0.95, ge=0, le=1)
    batch_size: int = Field(default=5, ge=1)
    parallel_workers: int = Field(default=2, ge=1)
    skip_manual_review: bool = False


class RerankOptions(BatchOptions):
    confidence_threshold: float = Field(default=0.7, ge=0, le=1)


class EngineOptions(_Options):
    """Tunables shared by the sequential and batch pipelines."""

    auto_accept_threshold: float = Field(default=0.95, ge=0, le=1)
    variance_ratio: float = Field(default=10.0, gt=1)
    variance_min_count: int = Field(default=5, ge=2)
    vendor_rule_min_confidence: float = Field(default=0.85, ge=0, le=1)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)


__all__ = [
    "BatchOptions",
    "EngineOptions",
    "RerankOptions",
    "RetryPolicy",
]
