from __future__ import annotations

from datetime import UTC, date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    pass


# ---------------------------
# Reference: categories
# ---------------------------


class LedgerCategory(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    # Whitespace-collapsed, case-folded name; lookups fold the probe the same
    # way (`txclassify.models.category_key`). Python casefold, not SQL lower(),
    # so non-ASCII names compare consistently.
    name_key: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    type: Mapped[str] = mapped_column(String, nullable=False, default="unset")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "type in ('expense','income','system','unset')",
            name="ck_categories_type",
        ),
    )


# ---------------------------
# Core: transactions
# ---------------------------


class LedgerTransaction(Base):
    __tablename__ = "transactions"

    # Provider-assigned identifier (bank/aggregator ids are opaque strings).
    id: Mapped[str] = mapped_column(String, primary_key=True)
    date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    merchant_name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # Positive = money out, negative = money in.
    amount: Mapped[float] = mapped_column(Numeric(18, 2, asdecimal=False), nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False, default="")
    direction: Mapped[str] = mapped_column(String, nullable=False, default="unset")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "direction in ('income','expense','transfer','unset')",
            name="ck_transactions_direction",
        ),
    )


# ---------------------------
# Rules: vendors and check patterns
# ---------------------------


class LedgerVendor(Base):
    __tablename__ = "vendors"

    # Stored case-folded; lookups fold the probe the same way.
    name: Mapped[str] = mapped_column(String, primary_key=True)
    category: Mapped[str] = mapped_column(String, nullable=False)
    use_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )


class LedgerCheckPattern(Base):
    __tablename__ = "check_patterns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False)
    amount_min: Mapped[float | None] = mapped_column(Float, nullable=True)
    amount_max: Mapped[float | None] = mapped_column(Float, nullable=True)
    # Explicit amount list; when non-empty it takes precedence over the range.
    amounts: Mapped[list[Any] | None] = mapped_column(JSON, nullable=True)
    day_of_month_min: Mapped[int | None] = mapped_column(Integer, nullable=True)
    day_of_month_max: Mapped[int | None] = mapped_column(Integer, nullable=True)
    confidence_boost: Mapped[float] = mapped_column(Float, nullable=False, default=0.3)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    use_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "confidence_boost >= 0 AND confidence_boost <= 1",
            name="ck_check_patterns_boost",
        ),
    )


# ---------------------------
# Outputs: classifications and run progress
# ---------------------------


class LedgerClassification(Base):
    __tablename__ = "classifications"

    transaction_id: Mapped[str] = mapped_column(
        String, ForeignKey("transactions.id"), primary_key=True
    )
    category: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    classified_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status in ('rule','ai','user_modified')",
            name="ck_classifications_status",
        ),
        CheckConstraint(
            "confidence >= 0 AND confidence <= 1",
            name="ck_classifications_confidence",
        ),
    )


class LedgerProgress(Base):
    __tablename__ = "classification_progress"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    last_processed_id: Mapped[str] = mapped_column(String, nullable=False, default="")
    last_processed_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    total_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
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
