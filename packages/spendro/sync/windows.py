"""Date windows for expense subscriptions.

The recent window covers the last N months up to and including today; the
historical window covers the M months before that. The two are disjoint by
construction (historical ``end`` == recent ``start``, exclusive).
"""

from __future__ import annotations

import calendar
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date


def add_months(d: date, months: int) -> date:
    """Shift ``d`` by ``months`` calendar months, clamping the day to month end."""

    total = d.year * 12 + (d.month - 1) + months
    year, month0 = divmod(total, 12)
    last_day = calendar.monthrange(year, month0 + 1)[1]
    return date(year, month0 + 1, min(d.day, last_day))


@dataclass(frozen=True, slots=True)
class WindowSpec:
    """A subscription shape over one user's expenses.

    ``start`` is inclusive, ``end`` exclusive; either may be ``None`` for an
    open bound. ``categories``, ``statement_ids`` and ``search_text`` narrow
    the shape at the source and are fixed for the life of a subscription.
    """

    user_id: str
    start: date | None = None
    end: date | None = None
    categories: frozenset[str] = field(default_factory=frozenset)
    statement_ids: frozenset[str] = field(default_factory=frozenset)
    search_text: str | None = None

    def __post_init__(self) -> None:
        if not self.user_id:
            raise ValueError("WindowSpec.user_id must be non-empty")
        if self.start is not None and self.end is not None and self.end < self.start:
            raise ValueError("WindowSpec.end must not precede start")

    def contains(self, d: date) -> bool:
        if self.start is not None and d < self.start:
            return False
        if self.end is not None and d >= self.end:
            return False
        return True


def _frozen(values: Iterable[str] | None) -> frozenset[str]:
    return frozenset(values or ())


def recent_window(
    user_id: str,
    today: date,
    months: int = 6,
    *,
    categories: Iterable[str] | None = None,
    search_text: str | None = None,
) -> WindowSpec:
    """Expenses dated on or after ``today - months``."""

    if months < 1:
        raise ValueError("months must be >= 1")
    return WindowSpec(
        user_id=user_id,
        start=add_months(today, -months),
        categories=_frozen(categories),
        search_text=search_text,
    )


def historical_window(
    user_id: str,
    today: date,
    recent_months: int = 6,
    months: int = 12,
    *,
    categories: Iterable[str] | None = None,
    search_text: str | None = None,
) -> WindowSpec:
    """Expenses in ``[today - (recent_months + months), today - recent_months)``."""

    if recent_months < 1 or months < 1:
        raise ValueError("recent_months and months must be >= 1")
    return WindowSpec(
        user_id=user_id,
        start=add_months(today, -(recent_months + months)),
        end=add_months(today, -recent_months),
        categories=_frozen(categories),
        search_text=search_text,
    )


def statement_window(user_id: str, statement_ids: Iterable[str]) -> WindowSpec:
    """All of a user's expenses produced by the given statements (upload tracking)."""

    ids = _frozen(statement_ids)
    if not ids:
        raise ValueError("statement_ids must be non-empty")
    return WindowSpec(user_id=user_id, statement_ids=ids)


__all__ = [
    "WindowSpec",
    "add_months",
    "historical_window",
    "recent_window",
    "statement_window",
]
