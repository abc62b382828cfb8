# ruff: noqa: I001
"""Persistence integration for ``spendro``.

Functions here write statements and expenses to the shared database owned by
``libs/db``. They take a caller-owned SQLAlchemy ``Session`` (see
``db.client.session_scope``); committing is the caller's job unless noted.

Scope:
- Content hash over ``(date, description, base amount)`` for storage-level
  deduplication (merchant and category are deliberately excluded).
- The insertion gate: one conflict-tolerant insert per expense.
- Statement lifecycle writes (create, terminal transition).
- User-initiated expense edits/deletes, which the sync layer must observe.
"""

from __future__ import annotations

import hashlib
import uuid
from collections.abc import Callable, Mapping
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.models.expenses import Expense, Statement
from .logging_setup import get_logger
from .models import ExpenseRecord, InsertOutcome, StatementStatus, quantize_amount

_logger = get_logger("spendro.persistence")


# ---------------------------------------------------------------------------
# Content hash
# ---------------------------------------------------------------------------


def compute_line_hash(tx_date: date, description: str, amount: Decimal) -> str:
    """Return the SHA-256 content hash used for storage-level deduplication.

    The digest covers ``"<YYYY-MM-DD>-<description>-<amount 2dp>"``. Two
    transactions that differ only in merchant or category share a hash; that
    is intentional and distinct from the presentation heuristic in
    ``spendro.sync.duplicates``.
    """

    payload = f"{tx_date.isoformat()}-{description.strip()}-{quantize_amount(amount):.2f}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Insertion gate
# ---------------------------------------------------------------------------


def _dialect_insert(session: Session) -> Callable[..., Any]:
    name = session.get_bind().dialect.name
    if name == "postgresql":
        return pg_insert
    if name == "sqlite":
        return sqlite_insert
    raise NotImplementedError(f"conflict-tolerant insert not supported for dialect {name!r}")


def insert_expense(session: Session, record: ExpenseRecord) -> InsertOutcome:
    """Attempt a single insert of ``record``; never raises for database errors.

    Outcomes
    --------
    - ``inserted``: a new row was written (the caller commits).
    - ``duplicate``: a row with the same ``(user_id, line_hash)`` already
      exists. The conflict is suppressed by ``ON CONFLICT DO NOTHING``; this is
      expected and not retried.
    - ``failed``: any other database error (check/foreign-key violation,
      connectivity). The session is rolled back and the reason returned.
    """

    expense_id = str(uuid.uuid4())
    insert = _dialect_insert(session)
    stmt = (
        insert(Expense.__table__)
        .values(
            id=expense_id,
            user_id=record.user_id,
            statement_id=record.statement_id,
            date=record.date,
            description=record.description,
            merchant=record.merchant,
            category=record.category,
            category_id=record.category_id,
            amount=record.amount,
            original_amount=record.original_amount,
            original_currency=record.original_currency,
            currency=record.currency,
            line_hash=record.line_hash,
        )
        .on_conflict_do_nothing(index_elements=["user_id", "line_hash"])
    )
    try:
        result = session.connection().execute(stmt)
    except SQLAlchemyError as e:
        session.rollback()
        reason = str(getattr(e, "orig", None) or e)
        _logger.warning(
            "insert_expense:failed statement_id=%s line_hash=%s reason=%s",
            record.statement_id,
            record.line_hash,
            reason,
        )
        return InsertOutcome.failed(reason)

    if result.rowcount == 0:
        _logger.debug(
            "insert_expense:duplicate statement_id=%s line_hash=%s",
            record.statement_id,
            record.line_hash,
        )
        return InsertOutcome.duplicate()
    return InsertOutcome.inserted(expense_id)


# ---------------------------------------------------------------------------
# Statements
# ---------------------------------------------------------------------------


def create_statement(
    session: Session,
    *,
    user_id: str,
    checksum: str,
    file_name: str,
    blob_url: str,
) -> Statement:
    """Insert a new statement in ``processing`` state and return it (flushed)."""

    row = Statement(
        user_id=user_id,
        checksum=checksum,
        file_name=file_name,
        blob_url=blob_url,
        status=StatementStatus.PROCESSING.value,
    )
    session.add(row)
    session.flush()
    return row


def get_statement(session: Session, statement_id: str, *, user_id: str) -> Statement | None:
    return session.execute(
        select(Statement).where(Statement.id == statement_id, Statement.user_id == user_id)
    ).scalar_one_or_none()


def mark_statement_terminal(
    session: Session, statement_id: str, status: StatementStatus
) -> bool:
    """Move a ``processing`` statement to ``status``.

    Only rows still in ``processing`` are touched, so a terminal state can
    never be overwritten. Returns ``True`` when a row transitioned.
    """

    if not status.is_terminal:
        raise ValueError(f"not a terminal status: {status!r}")
    result = session.execute(
        update(Statement)
        .where(
            Statement.id == statement_id,
            Statement.status == StatementStatus.PROCESSING.value,
        )
        .values(status=status.value, updated_at=func.now())
    )
    return result.rowcount == 1


# ---------------------------------------------------------------------------
# User-initiated edits
# ---------------------------------------------------------------------------

# Fields a user may change on an existing expense. The content hash is not
# recomputed on edit; it only guards ingestion.
_EDITABLE_FIELDS: frozenset[str] = frozenset(
    {
        "date",
        "description",
        "merchant",
        "category",
        "category_id",
        "amount",
        "original_amount",
        "original_currency",
    }
)


def update_expense(
    session: Session, *, user_id: str, expense_id: str, changes: Mapping[str, Any]
) -> bool:
    """Apply ``changes`` to one of the user's expenses. Returns ``True`` if a row matched."""

    unknown = set(changes) - _EDITABLE_FIELDS
    if unknown:
        raise ValueError(f"Unsupported expense fields: {sorted(unknown)}")
    if not changes:
        return False
    result = session.execute(
        update(Expense)
        .where(Expense.id == expense_id, Expense.user_id == user_id)
        .values(**dict(changes))
    )
    return result.rowcount == 1


def delete_expense(session: Session, *, user_id: str, expense_id: str) -> bool:
    result = session.execute(
        delete(Expense).where(Expense.id == expense_id, Expense.user_id == user_id)
    )
    return result.rowcount == 1


__all__ = [
    "compute_line_hash",
    "create_statement",
    "delete_expense",
    "get_statement",
    "insert_expense",
    "mark_statement_terminal",
    "update_expense",
]
