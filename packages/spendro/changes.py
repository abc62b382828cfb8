"""In-process change notifications.

Every write path in ``spendro`` calls :meth:`ChangeBus.notify` after its
transaction commits. Listeners (the sync layer's shape sources) re-query
on notification; the bus carries no row data, only which table changed and
for which user.

Listeners are bound to the event loop that registered them. ``notify`` is
safe to call from any thread: delivery to a listener on another loop/thread
goes through ``call_soon_threadsafe``.
"""

from __future__ import annotations

import asyncio
import itertools
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from .logging_setup import get_logger

_logger = get_logger("spendro.changes")

EXPENSES = "expenses"
STATEMENTS = "statements"
CATEGORIES = "categories"
MERCHANT_MAPPINGS = "merchant_mappings"


@dataclass(frozen=True, slots=True)
class ChangeNotice:
    table: str
    user_id: str | None = None


Listener = Callable[[ChangeNotice], None]


@dataclass(frozen=True, slots=True)
class _Registration:
    tables: frozenset[str]
    user_id: str | None
    callback: Listener
    loop: asyncio.AbstractEventLoop | None


class ChangeBus:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._listeners: dict[int, _Registration] = {}

    def listen(
        self,
        tables: Iterable[str],
        callback: Listener,
        *,
        user_id: str | None = None,
    ) -> Callable[[], None]:
        """Register ``callback`` for ``tables``; returns an idempotent unsubscribe."""

        try:
            loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        reg = _Registration(frozenset(tables), user_id, callback, loop)
        with self._lock:
            token = next(self._ids)
            self._listeners[token] = reg

        def _unsubscribe() -> None:
            with self._lock:
                self._listeners.pop(token, None)

        return _unsubscribe

    def notify(self, table: str, *, user_id: str | None = None) -> None:
        notice = ChangeNotice(table=table, user_id=user_id)
        with self._lock:
            targets = [
                r
                for r in self._listeners.values()
                if table in r.tables
                and (r.user_id is None or user_id is None or r.user_id == user_id)
            ]
        for reg in targets:
            self._deliver(reg, notice)

    @staticmethod
    def _deliver(reg: _Registration, notice: ChangeNotice) -> None:
        loop = reg.loop
        if loop is None:
            reg.callback(notice)
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            reg.callback(notice)
        elif loop.is_closed():
            _logger.debug("changes:drop_closed_loop table=%s", notice.table)
        else:
            loop.call_soon_threadsafe(reg.callback, notice)

    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)


__all__ = [
    "CATEGORIES",
    "EXPENSES",
    "MERCHANT_MAPPINGS",
    "STATEMENTS",
    "ChangeBus",
    "ChangeNotice",
]
