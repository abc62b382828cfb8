from __future__ import annotations

import uuid
from datetime import UTC, date, datetime
from decimal import Decimal

from sqlalchemy import (
    CHAR,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(UTC)


# Closed set of statement lifecycle states. ``processing`` is the only
# non-terminal state; the pipeline moves a row out of it exactly once.
STATEMENT_STATUSES: tuple[str, ...] = ("processing", "completed", "failed")


# ---------------------------
# statements
# ---------------------------


class Statement(Base):
    __tablename__ = "statements"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # sha256 of the uploaded bytes; not unique (re-uploads are allowed and
    # deduplicated per expense row instead).
    checksum: Mapped[str] = mapped_column(CHAR(64), nullable=False)
    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    blob_url: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, server_default=text("'processing'")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "status in ('processing','completed','failed')",
            name="ck_statements_status",
        ),
    )


# ---------------------------
# categories
# ---------------------------


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    # Uniqueness is case-insensitive per owner via the functional index below;
    # the stored value keeps the casing of whoever created it first.
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_default: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )


Index(
    "uq_categories_user_lower_name",
    Category.user_id,
    func.lower(Category.name),
    unique=True,
)


# ---------------------------
# merchant_mappings
# ---------------------------


class MerchantMapping(Base):
    __tablename__ = "merchant_mappings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    # Always stored upper-cased; lookups upper-case the probe the same way.
    merchant_name: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("user_id", "merchant_name", name="uq_merchant_mappings_user_merchant"),
    )


# ---------------------------
# expenses
# ---------------------------


class Expense(Base):
    __tablename__ = "expenses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    statement_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("statements.id", ondelete="CASCADE"), nullable=False
    )
    date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    merchant: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(Text, nullable=False)
    category_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("categories.id", ondelete="SET NULL"), nullable=True
    )
    # Base-currency amount; the value the content hash and all views use.
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    original_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    original_currency: Mapped[str] = mapped_column(CHAR(3), nullable=False)
    currency: Mapped[str] = mapped_column(CHAR(3), nullable=False)
    line_hash: Mapped[str] = mapped_column(CHAR(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("user_id", "line_hash", name="uq_expenses_user_line_hash"),
        CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        CheckConstraint("original_amount > 0", name="ck_expenses_original_amount_positive"),
        Index("ix_expenses_user_date", "user_id", "date"),
    )


__all__ = [
    "Base",
    "STATEMENT_STATUSES",
    "Statement",
    "Category",
    "MerchantMapping",
    "Expense",
]
