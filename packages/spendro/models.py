"""Data models shared by the ingestion pipeline and the sync layer.

- :class:`ExtractedTransaction` is the validated shape of one candidate
  produced by the extraction service.
- :class:`ExpenseRecord` is the insert payload handed to the insertion gate.
- :class:`InsertOutcome` reports what the gate did with one record.
- :class:`DisplayExpense` is the immutable, consumer-facing row the sync
  layer emits (with the presentation-level ``is_duplicate`` flag).
"""

from __future__ import annotations

import datetime as dt
import enum
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

_CENT = Decimal("0.01")
_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


def quantize_amount(value: Decimal) -> Decimal:
    """Round to two decimal places, half-up (currency convention)."""

    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


class StatementStatus(enum.StrEnum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not StatementStatus.PROCESSING


# ---------------------------------------------------------------------------
# Extraction candidates
# ---------------------------------------------------------------------------


class ExtractedTransaction(BaseModel):
    """One candidate transaction as yielded by the extraction service.

    ``amount_base`` is set only when the statement itself shows the
    base-currency amount; otherwise the pipeline converts
    ``original_amount``.
    """

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True, frozen=True)

    date: dt.date
    merchant: str
    description: str
    category: str
    original_amount: Decimal
    original_currency: str
    amount_base: Decimal | None = None

    @field_validator("description")
    @classmethod
    def _description_non_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("description must be non-empty")
        return v

    @field_validator("category")
    @classmethod
    def _category_default(cls, v: str) -> str:
        return v or "Other"

    @field_validator("original_currency")
    @classmethod
    def _currency_code(cls, v: str) -> str:
        code = v.upper()
        if not _CURRENCY_RE.fullmatch(code):
            raise ValueError("original_currency must be a 3-letter code")
        return code

    @field_validator("original_amount")
    @classmethod
    def _positive_amount(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("original_amount must be positive")
        return v

    @field_validator("amount_base")
    @classmethod
    def _positive_base_amount(cls, v: Decimal | None) -> Decimal | None:
        # A zero/negative "known" base amount is treated as unknown.
        if v is None or v <= 0:
            return None
        return v


# ---------------------------------------------------------------------------
# Insertion
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ExpenseRecord:
    """A fully resolved expense ready for the insertion gate."""

    user_id: str
    statement_id: str
    date: date
    description: str
    merchant: str | None
    category: str
    category_id: str | None
    amount: Decimal
    original_amount: Decimal
    original_currency: str
    currency: str
    line_hash: str

    def __post_init__(self) -> None:
        """Reject rows the datastore would refuse anyway.

        - ``amount`` and ``original_amount`` must be strictly positive.
        - ``description`` must be non-blank.
        - currency codes must be three upper-case letters.
        """

        if not self.description.strip():
            raise ValueError("ExpenseRecord.description must be non-empty")
        for name in ("amount", "original_amount"):
            val = getattr(self, name)
            if not isinstance(val, Decimal) or val <= 0:
                raise ValueError(f"ExpenseRecord.{name} must be a positive Decimal")
        for name in ("original_currency", "currency"):
            if not _CURRENCY_RE.fullmatch(getattr(self, name)):
                raise ValueError(f"ExpenseRecord.{name} must be a 3-letter code")


class InsertKind(enum.StrEnum):
    INSERTED = "inserted"
    DUPLICATE = "duplicate"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class InsertOutcome:
    kind: InsertKind
    expense_id: str | None = None
    reason: str | None = None

    @classmethod
    def inserted(cls, expense_id: str) -> InsertOutcome:
        return cls(InsertKind.INSERTED, expense_id=expense_id)

    @classmethod
    def duplicate(cls) -> InsertOutcome:
        return cls(InsertKind.DUPLICATE)

    @classmethod
    def failed(cls, reason: str) -> InsertOutcome:
        return cls(InsertKind.FAILED, reason=reason)


# ---------------------------------------------------------------------------
# Consumer-facing rows
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DisplayExpense:
    """Immutable expense row as presented to sync-layer consumers.

    ``merchant`` is never ``None`` here (empty string instead) so that
    filters and the duplicate heuristic can treat it uniformly.
    """

    id: str
    date: date
    description: str
    merchant: str
    category: str
    amount: Decimal
    original_amount: Decimal
    original_currency: str
    currency: str
    statement_id: str
    created_at: datetime | None = None
    is_duplicate: bool = False

    @classmethod
    def from_row(cls, row: Any) -> DisplayExpense:
        """Build from an ORM ``Expense`` (or any object with the same attributes)."""

        return cls(
            id=row.id,
            date=row.date,
            description=row.description,
            merchant=row.merchant or "",
            category=row.category,
            amount=Decimal(row.amount),
            original_amount=Decimal(row.original_amount or row.amount),
            original_currency=row.original_currency or row.currency,
            currency=row.currency,
            statement_id=row.statement_id,
            created_at=row.created_at,
        )


__all__ = [
    "DisplayExpense",
    "ExpenseRecord",
    "ExtractedTransaction",
    "InsertKind",
    "InsertOutcome",
    "StatementStatus",
    "quantize_amount",
]
