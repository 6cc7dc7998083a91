"""Ranking oracle interface and the retrying adapter used by the pipelines.

The oracle is anything that, given merchant descriptors and the candidate
categories, returns ranked category suggestions per merchant. Concrete
implementations live elsewhere (:mod:`txclassify.openai_oracle`, test stubs);
pipelines only talk to :class:`RetryingOracle`.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol

from .cancellation import Cancellation
from .config import RetryPolicy
from .logging_setup import get_logger
from .models import Category, CategoryRankings, Transaction
from .retry import with_retry

_logger = get_logger("txclassify.oracle")


@dataclass(frozen=True, slots=True)
class RankingRequest:
    """One merchant's descriptor in a batched ranking call."""

    merchant_id: str
    merchant_name: str
    sample_transaction: Transaction
    transaction_count: int


class RankingOracle(Protocol):
    def suggest_category_batch(
        self,
        requests: Sequence[RankingRequest],
        categories: Sequence[Category],
    ) -> Mapping[str, CategoryRankings]: ...

    def generate_category_description(self, category_name: str) -> tuple[str, float]: ...


class RetryingOracle:
    """Wrap an oracle with the retry/backoff policy.

    A merchant missing from a successful response is not an adapter error;
    the scheduler reports it on that merchant alone.
    """

    def __init__(self, oracle: RankingOracle, *, policy: RetryPolicy | None = None) -> None:
        self._oracle = oracle
        self._policy = policy or RetryPolicy()

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def suggest_category_batch(
        self,
        requests: Sequence[RankingRequest],
        categories: Sequence[Category],
        *,
        cancellation: Cancellation | None = None,
    ) -> dict[str, CategoryRankings]:
        if not requests:
            return {}
        _logger.debug(
            "oracle:suggest_batch merchants=%d categories=%d", len(requests), len(categories)
        )
        raw = with_retry(
            lambda: self._oracle.suggest_category_batch(requests, categories),
            policy=self._policy,
            label="suggest_category_batch",
            cancellation=cancellation,
        )
        return {mid: CategoryRankings(rankings) for mid, rankings in dict(raw).items()}

    def rank_transaction(
        self,
        txn: Transaction,
        merchant_name: str,
        categories: Sequence[Category],
        *,
        cancellation: Cancellation | None = None,
    ) -> CategoryRankings:
        """Rank a single transaction on its own (individual review)."""

        request = RankingRequest(
            merchant_id=txn.id,
            merchant_name=merchant_name,
            sample_transaction=txn,
            transaction_count=1,
        )
        out = self.suggest_category_batch([request], categories, cancellation=cancellation)
        return out.get(txn.id, CategoryRankings())

    def generate_category_description(
        self, category_name: str, *, cancellation: Cancellation | None = None
    ) -> tuple[str, float]:
        return with_retry(
            lambda: self._oracle.generate_category_description(category_name),
            policy=self._policy,
            label="generate_category_description",
            cancellation=cancellation,
        )


__all__ = ["RankingOracle", "RankingRequest", "RetryingOracle"]
