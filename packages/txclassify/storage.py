"""Storage interface and the SQLAlchemy-backed implementation.

The pipelines depend only on :class:`Storage`. :class:`SqlStorage` maps the
domain records onto the ``ledger_db`` ORM models; each call runs in its own
``session_scope`` so it is safe to share one instance across worker threads.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Iterable, Sequence
from typing import Protocol

from ledger_db.client import create_schema, session_scope
from ledger_db.models.ledger import (
    LedgerCategory,
    LedgerCheckPattern,
    LedgerClassification,
    LedgerProgress,
    LedgerTransaction,
    LedgerVendor,
)
from sqlalchemy import delete, select, update

from .errors import CategoryNotFoundError
from .logging_setup import get_logger
from .models import (
    Category,
    CategoryType,
    CheckPattern,
    Classification,
    ClassificationProgress,
    ClassificationStatus,
    Direction,
    Transaction,
    Vendor,
    category_key,
)

_logger = get_logger("txclassify.storage")


class Storage(Protocol):
    def get_transactions_to_classify(self, from_date: dt.date | None = None) -> list[Transaction]: ...

    def get_vendor(self, name: str) -> Vendor | None: ...

    def save_vendor(self, vendor: Vendor) -> None: ...

    def get_matching_check_patterns(self, txn: Transaction) -> list[CheckPattern]: ...

    def get_categories(self) -> list[Category]: ...

    def get_category_by_name(self, name: str) -> Category: ...

    def create_category(
        self, name: str, description: str, type: CategoryType = CategoryType.UNSET
    ) -> Category: ...

    def save_classification(self, classification: Classification) -> None: ...

    def increment_vendor_use_count(self, name: str, n: int = 1) -> None: ...

    def increment_check_pattern_use_count(self, pattern_id: int, n: int = 1) -> None: ...

    def get_latest_progress(self) -> ClassificationProgress | None: ...

    def save_progress(self, progress: ClassificationProgress) -> None: ...

    def get_classifications_by_confidence(
        self, max_confidence: float, *, exclude_user_modified: bool = True
    ) -> list[Classification]: ...

    def set_transaction_direction(self, transaction_id: str, direction: Direction) -> None: ...


# ---- Row <-> record mapping --------------------------------------------------


def _vendor_key(name: str) -> str:
    return " ".join(name.split()).casefold()


def _to_transaction(row: LedgerTransaction) -> Transaction:
    return Transaction(
        id=row.id,
        date=row.date,
        name=row.name or "",
        amount=float(row.amount),
        merchant_name=row.merchant_name or "",
        type=row.type or "",
        direction=Direction(row.direction or Direction.UNSET),
    )


def _to_category(row: LedgerCategory) -> Category:
    return Category(
        id=row.id,
        name=row.name,
        description=row.description or "",
        type=CategoryType(row.type or CategoryType.UNSET),
    )


def _to_vendor(row: LedgerVendor) -> Vendor:
    return Vendor(
        name=row.name,
        category=row.category,
        use_count=row.use_count,
        last_updated=row.last_updated,
    )


def _to_check_pattern(row: LedgerCheckPattern) -> CheckPattern:
    return CheckPattern(
        id=row.id,
        name=row.name,
        category=row.category,
        amount_min=row.amount_min,
        amount_max=row.amount_max,
        amounts=tuple(float(a) for a in (row.amounts or ())),
        day_of_month_min=row.day_of_month_min,
        day_of_month_max=row.day_of_month_max,
        confidence_boost=row.confidence_boost,
        active=row.active,
        use_count=row.use_count,
    )


class SqlStorage:
    """:class:`Storage` over the ``ledger_db`` schema.

    Parameters
    ----------
    database_url:
        SQLAlchemy URL; ``None`` defers to ``DATABASE_URL``.
    create_tables:
        Run ``metadata.create_all`` on construction (tests, first run).
    """

    def __init__(self, database_url: str | None = None, *, create_tables: bool = False) -> None:
        self._url = database_url
        if create_tables:
            create_schema(database_url=database_url)

    def _scope(self):
        return session_scope(database_url=self._url)

    # ---- Transactions -------------------------------------------------------

    def get_transactions_to_classify(self, from_date: dt.date | None = None) -> list[Transaction]:
        """Unclassified transactions on or after ``from_date``, oldest first."""

        stmt = (
            select(LedgerTransaction)
            .outerjoin(
                LedgerClassification,
                LedgerClassification.transaction_id == LedgerTransaction.id,
            )
            .where(LedgerClassification.transaction_id.is_(None))
        )
        if from_date is not None:
            stmt = stmt.where(LedgerTransaction.date >= from_date)
        stmt = stmt.order_by(LedgerTransaction.date, LedgerTransaction.id)
        with self._scope() as s:
            return [_to_transaction(r) for r in s.scalars(stmt)]

    def get_transactions(self, ids: Iterable[str]) -> list[Transaction]:
        wanted = list(dict.fromkeys(ids))
        if not wanted:
            return []
        with self._scope() as s:
            rows = s.scalars(select(LedgerTransaction).where(LedgerTransaction.id.in_(wanted)))
            by_id = {r.id: _to_transaction(r) for r in rows}
        return [by_id[i] for i in wanted if i in by_id]

    def save_transactions(self, transactions: Iterable[Transaction]) -> int:
        """Insert or update transactions (seeding and tests; importing is out of scope)."""

        n = 0
        with self._scope() as s:
            for t in transactions:
                s.merge(
                    LedgerTransaction(
                        id=t.id,
                        date=t.date,
                        name=t.name,
                        merchant_name=t.merchant_name,
                        amount=t.amount,
                        type=t.type,
                        direction=t.direction.value,
                    )
                )
                n += 1
        return n

    def set_transaction_direction(self, transaction_id: str, direction: Direction) -> None:
        with self._scope() as s:
            s.execute(
                update(LedgerTransaction)
                .where(LedgerTransaction.id == transaction_id)
                .values(direction=direction.value)
            )

    # ---- Vendors ------------------------------------------------------------

    def get_vendor(self, name: str) -> Vendor | None:
        key = _vendor_key(name)
        if not key:
            return None
        with self._scope() as s:
            row = s.get(LedgerVendor, key)
            return _to_vendor(row) if row is not None else None

    def save_vendor(self, vendor: Vendor) -> None:
        key = _vendor_key(vendor.name)
        now = dt.datetime.now(dt.UTC)
        with self._scope() as s:
            row = s.get(LedgerVendor, key)
            if row is None:
                s.add(
                    LedgerVendor(
                        name=key,
                        category=vendor.category,
                        use_count=vendor.use_count,
                        last_updated=now,
                    )
                )
            else:
                row.category = vendor.category
                row.use_count = max(row.use_count, vendor.use_count)
                row.last_updated = now

    def increment_vendor_use_count(self, name: str, n: int = 1) -> None:
        with self._scope() as s:
            s.execute(
                update(LedgerVendor)
                .where(LedgerVendor.name == _vendor_key(name))
                .values(
                    use_count=LedgerVendor.use_count + n,
                    last_updated=dt.datetime.now(dt.UTC),
                )
            )

    # ---- Check patterns -----------------------------------------------------

    def get_active_check_patterns(self) -> list[CheckPattern]:
        with self._scope() as s:
            rows = s.scalars(
                select(LedgerCheckPattern)
                .where(LedgerCheckPattern.active.is_(True))
                .order_by(LedgerCheckPattern.id)
            )
            return [_to_check_pattern(r) for r in rows]

    def get_matching_check_patterns(self, txn: Transaction) -> list[CheckPattern]:
        if not txn.is_check:
            return []
        return [p for p in self.get_active_check_patterns() if p.matches(txn)]

    def create_check_pattern(self, pattern: CheckPattern) -> CheckPattern:
        pattern.validate()
        with self._scope() as s:
            row = LedgerCheckPattern(
                name=pattern.name,
                category=pattern.category,
                amount_min=pattern.amount_min,
                amount_max=pattern.amount_max,
                amounts=list(pattern.amounts) or None,
                day_of_month_min=pattern.day_of_month_min,
                day_of_month_max=pattern.day_of_month_max,
                confidence_boost=pattern.confidence_boost,
                active=pattern.active,
                use_count=pattern.use_count,
            )
            s.add(row)
            s.flush()
            return _to_check_pattern(row)

    def increment_check_pattern_use_count(self, pattern_id: int, n: int = 1) -> None:
        with self._scope() as s:
            s.execute(
                update(LedgerCheckPattern)
                .where(LedgerCheckPattern.id == pattern_id)
                .values(use_count=LedgerCheckPattern.use_count + n)
            )

    # ---- Categories ---------------------------------------------------------

    def get_categories(self) -> list[Category]:
        with self._scope() as s:
            rows = s.scalars(
                select(LedgerCategory)
                .where(LedgerCategory.is_active.is_(True))
                .order_by(LedgerCategory.name)
            )
            return [_to_category(r) for r in rows]

    def get_category_by_name(self, name: str) -> Category:
        with self._scope() as s:
            row = s.scalars(
                select(LedgerCategory).where(LedgerCategory.name_key == category_key(name))
            ).first()
            if row is None:
                raise CategoryNotFoundError(name)
            return _to_category(row)

    def create_category(
        self, name: str, description: str, type: CategoryType = CategoryType.UNSET
    ) -> Category:
        """Create ``name`` unless it already exists (case-insensitive); return the row."""

        clean = " ".join(name.split())
        if not clean:
            raise ValueError("category name is required")
        with self._scope() as s:
            existing = s.scalars(
                select(LedgerCategory).where(LedgerCategory.name_key == category_key(clean))
            ).first()
            if existing is not None:
                return _to_category(existing)
            row = LedgerCategory(
                name=clean,
                name_key=category_key(clean),
                description=description,
                type=type.value,
            )
            s.add(row)
            s.flush()
            _logger.info("storage:category_created name=%s type=%s", clean, type.value)
            return _to_category(row)

    # ---- Classifications ----------------------------------------------------

    def save_classification(self, classification: Classification) -> None:
        """Insert or replace the classification of one transaction."""

        with self._scope() as s:
            s.merge(
                LedgerClassification(
                    transaction_id=classification.transaction.id,
                    category=classification.category,
                    status=classification.status.value,
                    confidence=classification.confidence,
                    notes=classification.notes,
                    classified_at=classification.classified_at or dt.datetime.now(dt.UTC),
                )
            )

    def get_classification(self, transaction_id: str) -> Classification | None:
        with self._scope() as s:
            row = s.get(LedgerClassification, transaction_id)
            if row is None:
                return None
            txn = s.get(LedgerTransaction, transaction_id)
            assert txn is not None  # FK
            return Classification(
                transaction=_to_transaction(txn),
                category=row.category,
                status=ClassificationStatus(row.status),
                confidence=row.confidence,
                classified_at=row.classified_at,
                notes=row.notes or "",
            )

    def get_classifications_by_confidence(
        self, max_confidence: float, *, exclude_user_modified: bool = True
    ) -> list[Classification]:
        """Classifications with confidence strictly below ``max_confidence``."""

        stmt = (
            select(LedgerClassification, LedgerTransaction)
            .join(LedgerTransaction, LedgerTransaction.id == LedgerClassification.transaction_id)
            .where(LedgerClassification.confidence < max_confidence)
        )
        if exclude_user_modified:
            stmt = stmt.where(
                LedgerClassification.status != ClassificationStatus.USER_MODIFIED.value
            )
        stmt = stmt.order_by(LedgerTransaction.date, LedgerTransaction.id)
        with self._scope() as s:
            return [
                Classification(
                    transaction=_to_transaction(t),
                    category=c.category,
                    status=ClassificationStatus(c.status),
                    confidence=c.confidence,
                    classified_at=c.classified_at,
                    notes=c.notes or "",
                )
                for c, t in s.execute(stmt)
            ]

    def clear_all_classifications(self) -> int:
        with self._scope() as s:
            result = s.execute(delete(LedgerClassification))
            return int(result.rowcount or 0)

    # ---- Progress -----------------------------------------------------------

    def get_latest_progress(self) -> ClassificationProgress | None:
        with self._scope() as s:
            row = s.scalars(
                select(LedgerProgress).order_by(LedgerProgress.id.desc()).limit(1)
            ).first()
            if row is None:
                return None
            return ClassificationProgress(
                last_processed_id=row.last_processed_id or "",
                last_processed_date=row.last_processed_date,
                total_processed=row.total_processed,
                started_at=row.started_at,
            )

    def save_progress(self, progress: ClassificationProgress) -> None:
        now = dt.datetime.now(dt.UTC)
        with self._scope() as s:
            s.add(
                LedgerProgress(
                    last_processed_id=progress.last_processed_id,
                    last_processed_date=progress.last_processed_date,
                    total_processed=progress.total_processed,
                    started_at=progress.started_at or now,
                    updated_at=now,
                )
            )


def seed_categories(storage: SqlStorage, categories: Sequence[Category]) -> None:
    for c in categories:
        storage.create_category(c.name, c.description, c.type)


__all__ = ["SqlStorage", "Storage", "seed_categories"]
