"""Merchant grouping: partition transactions into per-merchant work units.

Grouping is pure. A transaction's key is its normalized merchant name
(falling back to the raw transaction name) plus its explicit direction, so a
merchant that both charges and refunds yields two groups.
"""

from __future__ import annotations

import unicodedata
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from .models import MerchantKey, Transaction


def normalize_merchant_name(txn: Transaction) -> str:
    """Return the display form of the merchant: NFKC, single-spaced, trimmed.

    Uses ``merchant_name`` and falls back to the raw ``name`` when the
    merchant is blank. Returns ``""`` when both are blank.
    """

    raw = txn.merchant_name.strip() or txn.name.strip()
    if not raw:
        return ""
    s = unicodedata.normalize("NFKC", raw)
    return " ".join(s.split())


def merchant_key(txn: Transaction) -> MerchantKey:
    return MerchantKey(name=normalize_merchant_name(txn).casefold(), direction=txn.direction)


@dataclass(slots=True)
class MerchantGroup:
    key: MerchantKey
    # First-seen spelling; used for vendor lookups and prompts.
    display_name: str
    transactions: list[Transaction] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.transactions)


def group_by_merchant(transactions: Iterable[Transaction]) -> dict[MerchantKey, MerchantGroup]:
    """Partition ``transactions`` by merchant key.

    Every transaction lands in exactly one group; groups keep input order and
    the mapping keeps first-seen key order.
    """

    groups: dict[MerchantKey, MerchantGroup] = {}
    for txn in transactions:
        key = merchant_key(txn)
        group = groups.get(key)
        if group is None:
            group = MerchantGroup(key=key, display_name=normalize_merchant_name(txn))
            groups[key] = group
        group.transactions.append(txn)
    return groups


def sort_by_volume(groups: Mapping[MerchantKey, MerchantGroup]) -> list[MerchantKey]:
    """Keys ordered by transaction count, largest first; ties keep first-seen order."""

    return sorted(groups, key=lambda k: -len(groups[k]))


__all__ = [
    "MerchantGroup",
    "group_by_merchant",
    "merchant_key",
    "normalize_merchant_name",
    "sort_by_volume",
]
