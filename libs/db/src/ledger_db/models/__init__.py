"""Shared SQLAlchemy models registry for the ledger database.

Currently includes the classification domain models used by ``txclassify``.
"""

from .ledger import (
    Base,
    LedgerCategory,
    LedgerCheckPattern,
    LedgerClassification,
    LedgerProgress,
    LedgerTransaction,
    LedgerVendor,
)

__all__ = [
    "Base",
    "LedgerCategory",
    "LedgerCheckPattern",
    "LedgerClassification",
    "LedgerProgress",
    "LedgerTransaction",
    "LedgerVendor",
]
