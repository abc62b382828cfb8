"""Presentation-level "possible duplicate" flags.

Two expenses are possible duplicates when they share a date, the same
merchant (case-insensitive, trimmed) and amounts that differ by less than
:data:`DUPLICATE_EPSILON`. Description and category are ignored; this is a
different notion from the storage content hash in
:func:`spendro.persistence.compute_line_hash`.

Flags belong to the whole collection, so callers recompute them from
scratch on every change.
"""

from __future__ import annotations

import dataclasses
from collections import defaultdict
from collections.abc import Sequence
from datetime import date
from decimal import Decimal

from ..models import DisplayExpense

DUPLICATE_EPSILON = Decimal("0.01")


def merchant_key(merchant: str | None) -> str:
    return (merchant or "").strip().casefold()


def flag_duplicates(
    expenses: Sequence[DisplayExpense], *, epsilon: Decimal = DUPLICATE_EPSILON
) -> list[DisplayExpense]:
    """Return copies of ``expenses`` (same order) with ``is_duplicate`` set.

    The sequence is scanned in the given order: the first expense of a
    matching group is never flagged, every later match is.
    """

    seen: dict[tuple[date, str], list[Decimal]] = defaultdict(list)
    out: list[DisplayExpense] = []
    for exp in expenses:
        amounts = seen[(exp.date, merchant_key(exp.merchant))]
        dup = any(abs(exp.amount - prior) < epsilon for prior in amounts)
        amounts.append(exp.amount)
        out.append(exp if exp.is_duplicate == dup else dataclasses.replace(exp, is_duplicate=dup))
    return out


def arrival_order_key(exp: DisplayExpense) -> tuple[bool, str, str]:
    """Sort key for data-arrival order: ``created_at`` then id (missing timestamps last)."""

    ts = exp.created_at.isoformat() if exp.created_at is not None else ""
    return (exp.created_at is None, ts, exp.id)


__all__ = ["DUPLICATE_EPSILON", "arrival_order_key", "flag_duplicates", "merchant_key"]
