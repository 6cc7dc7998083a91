"""Domain records for ``txclassify``.

Records are frozen, slotted dataclasses: the pipeline passes them between
worker threads, so nothing here is mutated after construction except
:class:`BatchResult`, which the scheduler fills in while a merchant moves
through the gate. Oracle payloads are validated separately with pydantic
(:class:`RankedCategoryItem`, :class:`BatchRankingResponse`).
"""

from __future__ import annotations

import datetime as dt
import json
import math
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any, overload

from pydantic import BaseModel, ConfigDict, field_validator

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

CHECK_TYPE = "CHECK"


class Direction(StrEnum):
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"
    UNSET = "unset"


class CategoryType(StrEnum):
    EXPENSE = "expense"
    INCOME = "income"
    SYSTEM = "system"
    UNSET = "unset"


class ClassificationStatus(StrEnum):
    RULE = "rule"
    AI = "ai"
    USER_MODIFIED = "user_modified"


class ResultSource(StrEnum):
    """Which resolution tier produced a merchant's suggestion."""

    VENDOR = "vendor"
    PATTERN = "pattern"
    RANKING = "ranking"


# ---------------------------------------------------------------------------
# Transactions and categories
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Transaction:
    """A single bank transaction.

    ``amount`` follows the ledger convention: positive is money out, negative
    is money in. ``merchant_name`` may be empty, in which case grouping falls
    back to the raw ``name``.
    """

    id: str
    date: dt.date
    name: str
    amount: float
    merchant_name: str = ""
    type: str = ""
    direction: Direction = Direction.UNSET

    @property
    def is_check(self) -> bool:
        return self.type.strip().upper() == CHECK_TYPE

    def effective_direction(self) -> Direction:
        """Return the explicit direction, inferring one from the amount when unset."""

        if self.direction is not Direction.UNSET:
            return self.direction
        if self.amount > 0:
            return Direction.EXPENSE
        if self.amount < 0:
            return Direction.INCOME
        return Direction.UNSET


def category_key(name: str) -> str:
    """Comparison key for category names: whitespace collapsed, case-folded."""

    return " ".join(name.split()).casefold()


@dataclass(frozen=True, slots=True)
class Category:
    name: str
    description: str = ""
    type: CategoryType = CategoryType.UNSET
    id: int | None = None


@dataclass(frozen=True, slots=True)
class Vendor:
    """A merchant → category rule; a hit bypasses the oracle entirely."""

    name: str
    category: str
    use_count: int = 0
    last_updated: dt.datetime | None = None


@dataclass(frozen=True, slots=True)
class CheckPattern:
    """Amount/day-of-month matcher for check transactions.

    When ``amounts`` is non-empty the transaction amount must equal one of
    them and the ``amount_min``/``amount_max`` range is ignored.
    """

    name: str
    category: str
    amount_min: float | None = None
    amount_max: float | None = None
    amounts: tuple[float, ...] = ()
    day_of_month_min: int | None = None
    day_of_month_max: int | None = None
    confidence_boost: float = 0.3
    active: bool = True
    use_count: int = 0
    id: int | None = None

    def matches(self, txn: Transaction) -> bool:
        if not self.active or not txn.is_check:
            return False

        if self.amounts:
            if not any(math.isclose(txn.amount, a, abs_tol=0.005) for a in self.amounts):
                return False
        else:
            if self.amount_min is not None and txn.amount < self.amount_min:
                return False
            if self.amount_max is not None and txn.amount > self.amount_max:
                return False

        day = txn.date.day
        if self.day_of_month_min is not None and day < self.day_of_month_min:
            return False
        if self.day_of_month_max is not None and day > self.day_of_month_max:
            return False
        return True

    def validate(self) -> None:
        """Raise ``ValueError`` when the pattern cannot match consistently."""

        if not self.name.strip():
            raise ValueError("check pattern name is required")
        if not self.category.strip():
            raise ValueError("check pattern category is required")
        if (
            self.amount_min is not None
            and self.amount_max is not None
            and self.amount_min > self.amount_max
        ):
            raise ValueError("amount_min cannot be greater than amount_max")
        for label, day in (("min", self.day_of_month_min), ("max", self.day_of_month_max)):
            if day is not None and not 1 <= day <= 31:
                raise ValueError(f"day_of_month_{label} must be between 1 and 31")
        if (
            self.day_of_month_min is not None
            and self.day_of_month_max is not None
            and self.day_of_month_min > self.day_of_month_max
        ):
            raise ValueError("day_of_month_min cannot be greater than day_of_month_max")
        if not 0.0 <= self.confidence_boost <= 1.0:
            raise ValueError("confidence_boost must be between 0 and 1")


# ---------------------------------------------------------------------------
# Rankings
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CategoryRanking:
    category: str
    score: float
    is_new: bool = False
    description: str = ""

    def validate(self) -> None:
        if not self.category.strip():
            raise ValueError("ranking category name is required")
        if not 0.0 <= self.score <= 1.0:
            raise ValueError(f"ranking score out of range: {self.score}")


def _ranking_sort_key(r: CategoryRanking) -> tuple[float, str]:
    return (-r.score, r.category)


class CategoryRankings(Sequence[CategoryRanking]):
    """An immutable ranking list, always ordered by score desc then name."""

    __slots__ = ("_items",)

    def __init__(self, rankings: Iterable[CategoryRanking] = ()) -> None:
        self._items: tuple[CategoryRanking, ...] = tuple(sorted(rankings, key=_ranking_sort_key))

    @overload
    def __getitem__(self, index: int) -> CategoryRanking: ...

    @overload
    def __getitem__(self, index: slice) -> Sequence[CategoryRanking]: ...

    def __getitem__(self, index):
        return self._items[index]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[CategoryRanking]:
        return iter(self._items)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, CategoryRankings):
            return self._items == other._items
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._items)

    def __repr__(self) -> str:  # pragma: no cover - trivial
        return f"CategoryRankings({list(self._items)!r})"

    def top(self) -> CategoryRanking | None:
        return self._items[0] if self._items else None

    def top_n(self, n: int) -> CategoryRankings:
        return CategoryRankings(self._items[: max(0, n)])

    def above_threshold(self, threshold: float) -> CategoryRankings:
        return CategoryRankings(r for r in self._items if r.score >= threshold)

    def apply_check_pattern_boosts(self, patterns: Iterable[CheckPattern]) -> CategoryRankings:
        """Return new rankings with each pattern's boost added to its category.

        Boosts of several patterns naming the same category are summed; the
        resulting score is capped at 1.0. Categories absent from the rankings
        are not introduced.
        """

        boosts: dict[str, float] = {}
        for p in patterns:
            boosts[p.category] = boosts.get(p.category, 0.0) + p.confidence_boost
        if not boosts:
            return self
        return CategoryRankings(
            replace(r, score=min(1.0, r.score + boosts[r.category])) if r.category in boosts else r
            for r in self._items
        )

    def validate(self) -> None:
        for r in self._items:
            r.validate()


# ---------------------------------------------------------------------------
# Classifications and review
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Classification:
    transaction: Transaction
    category: str
    status: ClassificationStatus
    confidence: float
    classified_at: dt.datetime | None = None
    notes: str = ""


@dataclass(frozen=True, slots=True)
class PendingClassification:
    """Everything a prompter needs to confirm one transaction."""

    transaction: Transaction
    suggested_category: str
    confidence: float
    rankings: CategoryRankings = field(default_factory=CategoryRankings)
    check_patterns: tuple[CheckPattern, ...] = ()
    all_categories: tuple[Category, ...] = ()
    similar_count: int = 0
    is_new_category: bool = False
    category_description: str = ""


NEW_CATEGORY_MARKER = "NEW_CATEGORY"


@dataclass(frozen=True, slots=True)
class CreateCategoryIntent:
    """The prompter's request to create the chosen category before saving.

    ``description`` may be empty; the review flow then uses the suggestion's
    description or asks the oracle for one.
    """

    description: str = ""

    @classmethod
    def from_notes(cls, notes: str) -> CreateCategoryIntent | None:
        """Parse the legacy ``NEW_CATEGORY|<description>`` notes marker."""

        if not notes.startswith(NEW_CATEGORY_MARKER):
            return None
        _, _, description = notes.partition("|")
        return cls(description=description.strip())


@dataclass(frozen=True, slots=True)
class Confirmation:
    transaction: Transaction
    category: str
    status: ClassificationStatus
    confidence: float
    notes: str = ""
    create_category: CreateCategoryIntent | None = None

    def creation_intent(self) -> CreateCategoryIntent | None:
        return self.create_category or CreateCategoryIntent.from_notes(self.notes)


# ---------------------------------------------------------------------------
# Scheduler records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MerchantKey:
    """Grouping identity: case-folded merchant name plus direction."""

    name: str
    direction: Direction = Direction.UNSET

    @property
    def merchant_id(self) -> str:
        return f"{self.name}|{self.direction.value}"


@dataclass(slots=True)
class BatchResult:
    merchant: MerchantKey
    display_name: str
    transactions: list[Transaction]
    suggestion: CategoryRanking | None = None
    rankings: CategoryRankings = field(default_factory=CategoryRankings)
    used_patterns: list[CheckPattern] = field(default_factory=list)
    source: ResultSource | None = None
    error: BaseException | None = None
    auto_accepted: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and self.suggestion is not None

    @property
    def score(self) -> float:
        return self.suggestion.score if self.suggestion is not None else 0.0


@dataclass(frozen=True, slots=True)
class ClassificationProgress:
    last_processed_id: str = ""
    last_processed_date: dt.date | None = None
    total_processed: int = 0
    started_at: dt.datetime | None = None

    @classmethod
    def cleared(cls) -> ClassificationProgress:
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.last_processed_id and self.last_processed_date is None


# ---------------------------------------------------------------------------
# Run summaries
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class BatchClassificationSummary:
    total_merchants: int = 0
    total_transactions: int = 0
    auto_accepted_count: int = 0
    auto_accepted_txns: int = 0
    needs_review_count: int = 0
    needs_review_txns: int = 0
    failed_count: int = 0
    processing_seconds: float = 0.0

    def to_display(self) -> str:
        return json.dumps(
            {
                "total_merchants": self.total_merchants,
                "total_transactions": self.total_transactions,
                "auto_accepted": {
                    "merchants": self.auto_accepted_count,
                    "transactions": self.auto_accepted_txns,
                },
                "needs_review": {
                    "merchants": self.needs_review_count,
                    "transactions": self.needs_review_txns,
                },
                "failed": self.failed_count,
                "processing_seconds": round(self.processing_seconds, 3),
            },
            indent=2,
        )


@dataclass(slots=True)
class RerankSummary:
    total_evaluated: int = 0
    improved_count: int = 0
    unchanged_count: int = 0
    auto_accepted_count: int = 0
    needs_review_count: int = 0
    average_improvement: float = 0.0
    processing_seconds: float = 0.0

    def to_display(self) -> str:
        return json.dumps(
            {
                "total_evaluated": self.total_evaluated,
                "improved": self.improved_count,
                "unchanged": self.unchanged_count,
                "auto_accepted": self.auto_accepted_count,
                "needs_review": self.needs_review_count,
                "average_improvement": round(self.average_improvement, 4),
                "processing_seconds": round(self.processing_seconds, 3),
            },
            indent=2,
        )


# ---------------------------------------------------------------------------
# Oracle payload validation (pydantic)
# ---------------------------------------------------------------------------


class RankedCategoryItem(BaseModel):
    """One ranked category as returned by the ranking oracle."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    category: str
    score: float
    is_new: bool = False
    description: str = ""

    @field_validator("category")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("category must be a non-empty string")
        return v

    @field_validator("score")
    @classmethod
    def _clamp_score(cls, v: float) -> float:
        if math.isnan(v):
            raise ValueError("score must be a number")
        return min(1.0, max(0.0, v))

    def to_ranking(self) -> CategoryRanking:
        return CategoryRanking(
            category=self.category,
            score=self.score,
            is_new=self.is_new,
            description=self.description,
        )


class MerchantRankingItem(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    merchant_id: str
    rankings: list[RankedCategoryItem]


class BatchRankingResponse(BaseModel):
    """Top-level oracle payload: one ranking list per merchant id."""

    model_config = ConfigDict(extra="ignore")

    results: list[MerchantRankingItem]

    def by_merchant(self) -> dict[str, CategoryRankings]:
        out: dict[str, CategoryRankings] = {}
        for item in self.results:
            out[item.merchant_id] = CategoryRankings(r.to_ranking() for r in item.rankings)
        return out


class CategoryDescriptionResponse(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    description: str
    confidence: float = 0.0


def as_jsonable(txn: Transaction) -> dict[str, Any]:
    """Compact, prompt-friendly view of a transaction."""

    return {
        "id": txn.id,
        "date": txn.date.isoformat(),
        "name": txn.name,
        "merchant_name": txn.merchant_name,
        "amount": txn.amount,
        "type": txn.type,
    }


__all__ = [
    "category_key",
    "BatchClassificationSummary",
    "BatchRankingResponse",
    "BatchResult",
    "CHECK_TYPE",
    "Category",
    "CategoryDescriptionResponse",
    "CategoryRanking",
    "CategoryRankings",
    "CategoryType",
    "CheckPattern",
    "Classification",
    "ClassificationProgress",
    "ClassificationStatus",
    "Confirmation",
    "CreateCategoryIntent",
    "Direction",
    "MerchantKey",
    "MerchantRankingItem",
    "NEW_CATEGORY_MARKER",
    "PendingClassification",
    "RankedCategoryItem",
    "RerankSummary",
    "ResultSource",
    "Transaction",
    "Vendor",
    "as_jsonable",
]
