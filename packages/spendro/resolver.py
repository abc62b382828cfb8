"""Async category/merchant resolution used by the ingestion pipeline.

Thin asyncio wrapper over :mod:`spendro.categories`: each call opens its own
short transaction on a worker thread (``asyncio.to_thread``) so concurrent
statements never share a session and no DB call blocks the event loop.
"""

from __future__ import annotations

import asyncio

from db.client import session_scope
from sqlalchemy.exc import SQLAlchemyError

from . import categories
from .changes import CATEGORIES, ChangeBus
from .logging_setup import get_logger

_logger = get_logger("spendro.resolver")


class CategoryResolutionError(RuntimeError):
    """The resolver could not produce a category id for a label."""


class CategoryResolver:
    def __init__(self, *, database_url: str | None = None, bus: ChangeBus | None = None) -> None:
        self._database_url = database_url
        self._bus = bus

    def _resolve_sync(
        self, user_id: str, label: str, is_default: bool = False
    ) -> tuple[str, str, bool]:
        with session_scope(database_url=self._database_url) as session:
            row, created = categories.get_or_create_category(
                session, user_id=user_id, name=label, is_default=is_default
            )
            return row.id, row.name, created

    async def resolve_category(self, user_id: str, label: str) -> str:
        """Return the id of the user's category named ``label``, creating it if needed."""

        category_id, _name = await self.resolve(user_id, label)
        return category_id

    async def resolve(self, user_id: str, label: str) -> tuple[str, str]:
        """Return ``(category_id, canonical_name)`` for ``label``.

        The canonical name is the stored spelling, which may differ in case
        from ``label`` when another writer created the category first.
        """

        try:
            category_id, name, created = await asyncio.to_thread(
                self._resolve_sync, user_id, label
            )
        except (SQLAlchemyError, ValueError) as e:
            raise CategoryResolutionError(
                f"could not resolve category {label!r} for user {user_id}: {e}"
            ) from e
        if created:
            _logger.info("resolver:category_created user_id=%s name=%s", user_id, name)
            if self._bus is not None:
                self._bus.notify(CATEGORIES, user_id=user_id)
        return category_id, name

    def _override_sync(self, user_id: str, merchant: str) -> str | None:
        with session_scope(database_url=self._database_url) as session:
            mapping = categories.get_merchant_mapping(session, user_id=user_id, merchant=merchant)
            return mapping.category if mapping is not None else None

    async def resolve_merchant_override(self, user_id: str, merchant: str | None) -> str | None:
        """Category name mapped to ``merchant`` (upper-cased lookup), or ``None``."""

        if not merchant or not merchant.strip():
            return None
        try:
            return await asyncio.to_thread(self._override_sync, user_id, merchant)
        except SQLAlchemyError as e:
            raise CategoryResolutionError(
                f"could not look up merchant mapping for {merchant!r}: {e}"
            ) from e

    def _names_sync(self, user_id: str) -> list[str]:
        with session_scope(database_url=self._database_url) as session:
            return categories.list_category_names(session, user_id=user_id)

    async def category_names(self, user_id: str, *, seed_defaults: bool = False) -> list[str]:
        """The user's category vocabulary.

        With ``seed_defaults`` an empty vocabulary is first populated with
        :data:`spendro.categories.DEFAULT_CATEGORIES`, one short transaction
        per name so a concurrent seeder only ever loses single-name races.
        """

        names = await asyncio.to_thread(self._names_sync, user_id)
        if names or not seed_defaults:
            return names
        created = 0
        for default in categories.DEFAULT_CATEGORIES:
            _id, _name, was_created = await asyncio.to_thread(
                self._resolve_sync, user_id, default, True
            )
            created += int(was_created)
        if created:
            _logger.info("resolver:seeded_defaults user_id=%s count=%d", user_id, created)
            if self._bus is not None:
                self._bus.notify(CATEGORIES, user_id=user_id)
        return await asyncio.to_thread(self._names_sync, user_id)


__all__ = ["CategoryResolutionError", "CategoryResolver"]
