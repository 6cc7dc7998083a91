"""Public interface for the ``txclassify`` package.

This module only re-exports the stable import surface; there is no runtime
logic here and importing it has no side effects (no client creation, no
logging handler attachment, no environment reads).
"""

from .cancellation import Cancellation
from .config import BatchOptions, EngineOptions, RerankOptions, RetryPolicy
from .engine import ClassificationEngine
from .errors import (
    CategoryNotFoundError,
    CheckpointError,
    ClassificationError,
    NoCategoriesError,
    OracleError,
    RateLimitError,
    ReviewCancelled,
    RunCancelled,
)
from .models import (
    BatchClassificationSummary,
    BatchResult,
    Category,
    CategoryRanking,
    CategoryRankings,
    CategoryType,
    CheckPattern,
    Classification,
    ClassificationProgress,
    ClassificationStatus,
    Confirmation,
    CreateCategoryIntent,
    Direction,
    MerchantKey,
    PendingClassification,
    RerankSummary,
    Transaction,
    Vendor,
)
from .oracle import RankingOracle, RankingRequest, RetryingOracle
from .review import AutoAcceptPrompter, Prompter
from .storage import SqlStorage, Storage

__all__ = [
    # Engine and collaborators
    "AutoAcceptPrompter",
    "Cancellation",
    "ClassificationEngine",
    "Prompter",
    "RankingOracle",
    "RankingRequest",
    "RetryingOracle",
    "SqlStorage",
    "Storage",
    # Options
    "BatchOptions",
    "EngineOptions",
    "RerankOptions",
    "RetryPolicy",
    # Errors
    "CategoryNotFoundError",
    "CheckpointError",
    "ClassificationError",
    "NoCategoriesError",
    "OracleError",
    "RateLimitError",
    "ReviewCancelled",
    "RunCancelled",
    # Models
    "BatchClassificationSummary",
    "BatchResult",
    "Category",
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
    "PendingClassification",
    "RerankSummary",
    "Transaction",
    "Vendor",
]
