"""Shape subscriptions over the database.

A *shape* is a user-scoped query (an expense :class:`WindowSpec` or a
:class:`StatementShape`). Subscribing yields full snapshots: one on
subscribe, then one after every relevant :class:`~spendro.changes.ChangeBus`
notification whose result differs from the previous snapshot. Snapshots are
immutable tuples; consumers diff them with
:func:`spendro.sync.diff.diff_snapshots`.

A query error ends the subscription: the iterator raises
:class:`SubscriptionError` once and is closed afterwards. There is no
automatic retry; consumers subscribe again to recover.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Generic, Protocol, TypeVar

from db.client import session_scope
from db.models.expenses import Expense, Statement
from sqlalchemy import Select, func, or_, select
from sqlalchemy.exc import SQLAlchemyError

from ..changes import EXPENSES, STATEMENTS, ChangeBus, ChangeNotice
from ..logging_setup import get_logger
from ..models import DisplayExpense, StatementStatus
from .windows import WindowSpec

_logger = get_logger("spendro.sync.feed")

RowT = TypeVar("RowT")


class SubscriptionError(RuntimeError):
    """A shape subscription failed; it must be re-opened explicitly."""


@dataclass(frozen=True, slots=True)
class StatementShape:
    """A user's statements, optionally narrowed to specific ids."""

    user_id: str
    statement_ids: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True, slots=True)
class StatementRow:
    id: str
    status: str
    file_name: str
    created_at: datetime | None
    updated_at: datetime | None


class ShapeSubscription(Generic[RowT]):
    """Async iterator of full snapshots for one shape.

    ``close()`` is synchronous: it detaches from the change bus immediately
    and the iterator stops at its next step.
    """

    def __init__(
        self,
        loader: Callable[[], tuple[RowT, ...]],
        *,
        bus: ChangeBus | None,
        tables: Iterable[str],
        user_id: str,
        label: str,
    ) -> None:
        self._loader = loader
        self._label = label
        self._dirty = True
        self._closed = False
        self._wake = asyncio.Event()
        self._wake.set()
        self._last: tuple[RowT, ...] | None = None
        self._unlisten = (
            bus.listen(tables, self._on_change, user_id=user_id) if bus is not None else None
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def _on_change(self, _notice: ChangeNotice) -> None:
        if self._closed:
            return
        self._dirty = True
        self._wake.set()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._unlisten is not None:
            self._unlisten()
            self._unlisten = None
        self._wake.set()

    def __aiter__(self) -> ShapeSubscription[RowT]:
        return self

    async def __anext__(self) -> tuple[RowT, ...]:
        while True:
            if self._closed:
                raise StopAsyncIteration
            if not self._dirty:
                self._wake.clear()
                await self._wake.wait()
                continue
            self._dirty = False
            try:
                snapshot = await asyncio.to_thread(self._loader)
            except SQLAlchemyError as e:
                self.close()
                _logger.error("feed:subscription_failed shape=%s error=%s", self._label, e)
                raise SubscriptionError(f"subscription {self._label} failed: {e}") from e
            if self._closed:
                raise StopAsyncIteration
            if snapshot == self._last:
                continue
            self._last = snapshot
            return snapshot


class ShapeSource(Protocol):
    def subscribe(self, shape: WindowSpec) -> ShapeSubscription[DisplayExpense]: ...

    def subscribe_statements(self, shape: StatementShape) -> ShapeSubscription[StatementRow]: ...


def expense_query(spec: WindowSpec) -> Select[tuple[Expense]]:
    """Build the user-scoped query for ``spec`` (the user predicate is always present)."""

    stmt = select(Expense).where(Expense.user_id == spec.user_id)
    if spec.start is not None:
        stmt = stmt.where(Expense.date >= spec.start)
    if spec.end is not None:
        stmt = stmt.where(Expense.date < spec.end)
    if spec.categories:
        stmt = stmt.where(Expense.category.in_(sorted(spec.categories)))
    if spec.statement_ids:
        stmt = stmt.where(Expense.statement_id.in_(sorted(spec.statement_ids)))
    needle = (spec.search_text or "").strip().lower()
    if needle:
        stmt = stmt.where(
            or_(
                func.lower(Expense.description).contains(needle, autoescape=True),
                func.lower(func.coalesce(Expense.merchant, "")).contains(
                    needle, autoescape=True
                ),
                func.lower(Expense.category).contains(needle, autoescape=True),
            )
        )
    return stmt.order_by(Expense.date.desc(), Expense.id)


class DatabaseShapeSource:
    """Shape source that re-queries the database on change notifications."""

    def __init__(self, *, database_url: str | None = None, bus: ChangeBus | None = None) -> None:
        self._database_url = database_url
        self._bus = bus

    def _load_expenses(self, spec: WindowSpec) -> tuple[DisplayExpense, ...]:
        with session_scope(database_url=self._database_url) as session:
            rows = session.execute(expense_query(spec)).scalars().all()
            return tuple(DisplayExpense.from_row(r) for r in rows)

    def _load_statements(self, shape: StatementShape) -> tuple[StatementRow, ...]:
        stmt = select(Statement).where(Statement.user_id == shape.user_id)
        if shape.statement_ids:
            stmt = stmt.where(Statement.id.in_(sorted(shape.statement_ids)))
        with session_scope(database_url=self._database_url) as session:
            rows: Sequence[Statement] = (
                session.execute(stmt.order_by(Statement.created_at.desc(), Statement.id))
                .scalars()
                .all()
            )
            return tuple(
                StatementRow(
                    id=r.id,
                    status=r.status,
                    file_name=r.file_name,
                    created_at=r.created_at,
                    updated_at=r.updated_at,
                )
                for r in rows
            )

    def subscribe(self, shape: WindowSpec) -> ShapeSubscription[DisplayExpense]:
        return ShapeSubscription(
            lambda: self._load_expenses(shape),
            bus=self._bus,
            tables=(EXPENSES,),
            user_id=shape.user_id,
            label=f"expenses[{shape.start}..{shape.end})",
        )

    def subscribe_statements(self, shape: StatementShape) -> ShapeSubscription[StatementRow]:
        return ShapeSubscription(
            lambda: self._load_statements(shape),
            bus=self._bus,
            tables=(STATEMENTS,),
            user_id=shape.user_id,
            label="statements",
        )


async def wait_for_statement(
    source: ShapeSource,
    *,
    user_id: str,
    statement_id: str,
    on_change: Callable[[StatementRow], None] | None = None,
) -> StatementRow:
    """Follow one statement until it leaves ``processing``; returns the final row."""

    sub = source.subscribe_statements(
        StatementShape(user_id=user_id, statement_ids=frozenset({statement_id}))
    )
    try:
        async for snapshot in sub:
            if not snapshot:
                continue
            row = snapshot[0]
            if on_change is not None:
                on_change(row)
            if row.status != StatementStatus.PROCESSING:
                return row
    finally:
        sub.close()
    raise SubscriptionError(f"statement {statement_id} subscription ended early")


__all__ = [
    "DatabaseShapeSource",
    "ShapeSource",
    "ShapeSubscription",
    "StatementRow",
    "StatementShape",
    "SubscriptionError",
    "expense_query",
    "wait_for_statement",
]
