"""Client-side filters applied to the merged expense view."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from ..models import DisplayExpense


@dataclass(frozen=True, slots=True)
class ExpenseFilters:
    """All set criteria must match; unset ones are ignored.

    Date and amount bounds are inclusive. ``merchants`` compares
    case-insensitively; ``search_text`` is a case-insensitive substring match
    over description, merchant and category.
    """

    start_date: date | None = None
    end_date: date | None = None
    categories: frozenset[str] = field(default_factory=frozenset)
    merchants: frozenset[str] = field(default_factory=frozenset)
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    search_text: str | None = None

    @classmethod
    def build(
        cls,
        *,
        start_date: date | None = None,
        end_date: date | None = None,
        categories: Iterable[str] | None = None,
        merchants: Iterable[str] | None = None,
        min_amount: Decimal | None = None,
        max_amount: Decimal | None = None,
        search_text: str | None = None,
    ) -> ExpenseFilters:
        return cls(
            start_date=start_date,
            end_date=end_date,
            categories=frozenset(categories or ()),
            merchants=frozenset(m.strip().casefold() for m in merchants or ()),
            min_amount=min_amount,
            max_amount=max_amount,
            search_text=(search_text or "").strip() or None,
        )

    @property
    def active(self) -> bool:
        return any(
            (
                self.start_date,
                self.end_date,
                self.categories,
                self.merchants,
                self.min_amount is not None,
                self.max_amount is not None,
                self.search_text,
            )
        )

    def matches(self, exp: DisplayExpense) -> bool:
        if self.start_date is not None and exp.date < self.start_date:
            return False
        if self.end_date is not None and exp.date > self.end_date:
            return False
        if self.categories and exp.category not in self.categories:
            return False
        if self.merchants and exp.merchant.strip().casefold() not in self.merchants:
            return False
        if self.min_amount is not None and exp.amount < self.min_amount:
            return False
        if self.max_amount is not None and exp.amount > self.max_amount:
            return False
        if self.search_text:
            needle = self.search_text.casefold()
            haystacks = (exp.description, exp.merchant, exp.category)
            if not any(needle in h.casefold() for h in haystacks):
                return False
        return True

    def apply(self, expenses: Sequence[DisplayExpense]) -> tuple[DisplayExpense, ...]:
        if not self.active:
            return tuple(expenses)
        return tuple(e for e in expenses if self.matches(e))


__all__ = ["ExpenseFilters"]
