"""User-initiated edits: expenses, merchant mappings and recategorization.

These are the external mutations the sync layer must observe. Each call is
one short transaction on a worker thread; after it commits the matching
table is announced on the :class:`~spendro.changes.ChangeBus` so open
views re-query.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, TypeVar

from db.client import session_scope
from sqlalchemy.orm import Session

from . import categories, persistence
from .changes import CATEGORIES, EXPENSES, MERCHANT_MAPPINGS, ChangeBus
from .logging_setup import get_logger

_logger = get_logger("spendro.review")

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class MerchantMappingView:
    merchant_name: str
    category: str
    created_at: datetime | None


class ReviewService:
    def __init__(self, *, database_url: str | None = None, bus: ChangeBus | None = None) -> None:
        self._database_url = database_url
        self._bus = bus

    async def _run(self, fn: Callable[[Session], T]) -> T:
        def _in_tx() -> T:
            with session_scope(database_url=self._database_url) as session:
                return fn(session)

        return await asyncio.to_thread(_in_tx)

    def _notify(self, user_id: str, *tables: str) -> None:
        if self._bus is None:
            return
        for table in tables:
            self._bus.notify(table, user_id=user_id)

    # ---- expenses -----------------------------------------------------

    async def update_expense(
        self, user_id: str, expense_id: str, changes: Mapping[str, Any]
    ) -> bool:
        def _tx(s: Session) -> bool:
            values = dict(changes)
            if "category" in values and "category_id" not in values:
                # Keep category_id aligned with a renamed category
                row, _created = categories.get_or_create_category(
                    s, user_id=user_id, name=str(values["category"])
                )
                values.update(category=row.name, category_id=row.id)
            return persistence.update_expense(
                s, user_id=user_id, expense_id=expense_id, changes=values
            )

        ok = await self._run(_tx)
        if ok:
            self._notify(user_id, EXPENSES)
        return ok

    async def delete_expense(self, user_id: str, expense_id: str) -> bool:
        ok = await self._run(
            lambda s: persistence.delete_expense(s, user_id=user_id, expense_id=expense_id)
        )
        if ok:
            self._notify(user_id, EXPENSES)
        return ok

    # ---- merchant mappings -------------------------------------------

    async def create_merchant_mapping(self, user_id: str, merchant: str, category: str) -> bool:
        """Create a mapping; ``False`` when the merchant is already mapped."""

        created = await self._run(
            lambda s: categories.create_merchant_mapping(
                s, user_id=user_id, merchant=merchant, category=category
            )
        )
        if created:
            _logger.info("review:mapping_created user_id=%s merchant=%s", user_id, merchant)
            self._notify(user_id, MERCHANT_MAPPINGS)
        return created

    async def update_merchant_mapping(self, user_id: str, merchant: str, category: str) -> bool:
        ok = await self._run(
            lambda s: categories.update_merchant_mapping(
                s, user_id=user_id, merchant=merchant, category=category
            )
        )
        if ok:
            self._notify(user_id, MERCHANT_MAPPINGS)
        return ok

    async def delete_merchant_mapping(self, user_id: str, merchant: str) -> bool:
        ok = await self._run(
            lambda s: categories.delete_merchant_mapping(s, user_id=user_id, merchant=merchant)
        )
        if ok:
            self._notify(user_id, MERCHANT_MAPPINGS)
        return ok

    async def list_merchant_mappings(self, user_id: str) -> list[MerchantMappingView]:
        def _tx(s: Session) -> list[MerchantMappingView]:
            return [
                MerchantMappingView(m.merchant_name, m.category, m.created_at)
                for m in categories.list_merchant_mappings(s, user_id=user_id)
            ]

        return await self._run(_tx)

    async def recategorize_merchant(self, user_id: str, merchant: str, category: str) -> int:
        """Move every expense of ``merchant`` to ``category``; returns the row count."""

        count = await self._run(
            lambda s: categories.recategorize_merchant_expenses(
                s, user_id=user_id, merchant=merchant, category=category
            )
        )
        _logger.info(
            "review:recategorized user_id=%s merchant=%s category=%s count=%d",
            user_id,
            merchant,
            category,
            count,
        )
        if count:
            self._notify(user_id, EXPENSES, CATEGORIES)
        return count


__all__ = ["MerchantMappingView", "ReviewService"]
