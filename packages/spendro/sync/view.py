"""Live, windowed, filterable view of one user's expenses.

:class:`ExpenseView` subscribes the recent window on start and the
historical window on demand. Each snapshot is sorted by ``(date desc, id)``
as it is applied, then the windows are concatenated and sorted again.
Duplicate flags are recomputed over the whole merged collection in arrival
order. Filters are applied last, so changing them never touches the
subscriptions.

A failing window records an error and keeps its last rows; the other window
is unaffected. Recovery is an explicit :meth:`ExpenseView.refetch`.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable, Iterable
from dataclasses import dataclass, field
from datetime import date
from types import TracebackType
from typing import Literal

from ..logging_setup import get_logger
from ..models import DisplayExpense
from .diff import diff_snapshots
from .duplicates import arrival_order_key, flag_duplicates
from .feed import ShapeSource, ShapeSubscription
from .filters import ExpenseFilters
from .windows import WindowSpec, historical_window, recent_window

_logger = get_logger("spendro.sync.view")

WindowName = Literal["recent", "historical"]


def display_sort_key(exp: DisplayExpense) -> tuple[int, str]:
    """Date descending, then id ascending."""

    return (-exp.date.toordinal(), exp.id)


@dataclass(frozen=True, slots=True)
class ViewState:
    loading: bool = True
    loading_historical: bool = False
    recent_error: str | None = None
    historical_error: str | None = None
    has_historical: bool = False
    total_count: int = 0
    filtered_count: int = 0


@dataclass(frozen=True, slots=True)
class ViewUpdate:
    added: tuple[DisplayExpense, ...]
    updated: tuple[DisplayExpense, ...]
    removed: tuple[DisplayExpense, ...]
    expenses: tuple[DisplayExpense, ...]
    state: ViewState


@dataclass(slots=True)
class _Window:
    name: WindowName
    spec: WindowSpec
    rows: tuple[DisplayExpense, ...] = ()
    error: str | None = None
    loading: bool = True
    subscription: ShapeSubscription[DisplayExpense] | None = None
    task: asyncio.Task[None] | None = None
    ready: asyncio.Event = field(default_factory=asyncio.Event)


class ExpenseView:
    def __init__(
        self,
        source: ShapeSource,
        user_id: str,
        *,
        today: date | None = None,
        clock: Callable[[], date] = date.today,
        recent_months: int = 6,
        historical_months: int = 12,
        filters: ExpenseFilters | None = None,
        categories: Iterable[str] | None = None,
        search_text: str | None = None,
    ) -> None:
        self._source = source
        self.user_id = user_id
        # A pinned ``today`` freezes the window bounds; otherwise ``clock`` is
        # read again on every refetch so a long-lived view follows the date.
        self._clock = (lambda: today) if today is not None else clock
        self._recent_months = recent_months
        self._historical_months = historical_months
        # Subscription-level narrowing is fixed for the life of the view.
        self._categories = tuple(categories) if categories is not None else None
        self._search_text = search_text
        recent_spec, self._historical_spec = self._window_specs()
        self._recent = _Window("recent", recent_spec)
        self._historical: _Window | None = None
        self._filters = filters or ExpenseFilters()
        self._all: tuple[DisplayExpense, ...] = ()
        self._expenses: tuple[DisplayExpense, ...] = ()
        self._last_state: ViewState | None = None
        self._queues: set[asyncio.Queue[ViewUpdate | None]] = set()
        self._started = False
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> ExpenseView:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def start(self) -> None:
        """Subscribe the recent window and wait for its first snapshot (or error)."""

        if self._closed:
            raise RuntimeError("ExpenseView is closed")
        if self._started:
            return
        self._started = True
        await self._open(self._recent)

    async def load_historical(self) -> None:
        """Open the historical window once; later calls are no-ops."""

        if self._closed:
            raise RuntimeError("ExpenseView is closed")
        if self._historical is not None:
            return
        self._historical = _Window("historical", self._historical_spec)
        self._publish()
        await self._open(self._historical)

    async def refetch(self, window: WindowName | None = None) -> None:
        """Re-subscribe ``window`` (default: every open window) from scratch.

        Window bounds are recomputed from the clock first, so a view opened
        before midnight picks up the new date here.
        """

        if self._closed:
            raise RuntimeError("ExpenseView is closed")
        recent_spec, self._historical_spec = self._window_specs()
        targets = [w for w in self._windows() if window is None or w.name == window]
        for w in targets:
            self._stop(w)
            w.spec = recent_spec if w.name == "recent" else self._historical_spec
            w.error = None
            w.loading = True
            w.ready = asyncio.Event()
        self._publish()
        for w in targets:
            await self._open(w)

    def close(self) -> None:
        """Close both subscriptions now and end every ``updates()`` iterator."""

        if self._closed:
            return
        self._closed = True
        for w in self._windows():
            self._stop(w)
        for q in list(self._queues):
            q.put_nowait(None)

    async def aclose(self) -> None:
        tasks = [w.task for w in self._windows() if w.task is not None]
        self.close()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Consumer surface
    # ------------------------------------------------------------------

    @property
    def expenses(self) -> tuple[DisplayExpense, ...]:
        """Merged, duplicate-flagged, filtered rows sorted by date desc then id."""

        return self._expenses

    @property
    def all_expenses(self) -> tuple[DisplayExpense, ...]:
        return self._all

    @property
    def filters(self) -> ExpenseFilters:
        return self._filters

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def state(self) -> ViewState:
        hist = self._historical
        return ViewState(
            loading=self._recent.loading,
            loading_historical=hist is not None and hist.loading,
            recent_error=self._recent.error,
            historical_error=hist.error if hist is not None else None,
            has_historical=hist is not None and not hist.loading and hist.error is None,
            total_count=len(self._all),
            filtered_count=len(self._expenses),
        )

    def set_filters(self, filters: ExpenseFilters) -> None:
        self._filters = filters
        self._recompute()

    def updates(self) -> AsyncIterator[ViewUpdate]:
        """Iterate a :class:`ViewUpdate` for every visible change until the view closes.

        The iterator is registered when this method is called, so changes
        made before the first ``__anext__`` are not lost.
        """

        queue: asyncio.Queue[ViewUpdate | None] = asyncio.Queue()
        if self._closed:
            queue.put_nowait(None)
        else:
            self._queues.add(queue)
        return self._drain(queue)

    async def _drain(self, queue: asyncio.Queue[ViewUpdate | None]) -> AsyncIterator[ViewUpdate]:
        try:
            while True:
                item = await queue.get()
                if item is None:
                    return
                yield item
        finally:
            self._queues.discard(queue)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _window_specs(self) -> tuple[WindowSpec, WindowSpec]:
        today = self._clock()
        recent = recent_window(
            self.user_id,
            today,
            self._recent_months,
            categories=self._categories,
            search_text=self._search_text,
        )
        historical = historical_window(
            self.user_id,
            today,
            self._recent_months,
            self._historical_months,
            categories=self._categories,
            search_text=self._search_text,
        )
        return recent, historical

    def _windows(self) -> list[_Window]:
        return [w for w in (self._recent, self._historical) if w is not None]

    def _stop(self, w: _Window) -> None:
        if w.subscription is not None:
            w.subscription.close()
            w.subscription = None
        if w.task is not None:
            w.task.cancel()
            w.task = None

    async def _open(self, w: _Window) -> None:
        sub = self._source.subscribe(w.spec)
        w.subscription = sub
        w.task = asyncio.create_task(self._pump(w, sub), name=f"expense-view:{w.name}")
        await w.ready.wait()

    async def _pump(self, w: _Window, sub: ShapeSubscription[DisplayExpense]) -> None:
        ready = w.ready
        try:
            async for snapshot in sub:
                if w.subscription is not sub:
                    return
                w.rows = tuple(sorted(snapshot, key=display_sort_key))
                w.loading = False
                w.error = None
                ready.set()
                self._recompute()
        except Exception as e:  # noqa: BLE001 - a failure ends this window only
            if w.subscription is not sub:
                return
            w.error = str(e)
            w.loading = False
            _logger.error("view:window_failed window=%s user_id=%s", w.name, self.user_id)
            self._publish()
        finally:
            ready.set()

    def _merge(self) -> tuple[DisplayExpense, ...]:
        seen: set[str] = set()
        merged: list[DisplayExpense] = []
        for w in self._windows():
            for row in w.rows:
                # A row moving between windows can briefly appear in both
                if row.id not in seen:
                    seen.add(row.id)
                    merged.append(row)
        merged.sort(key=display_sort_key)
        flagged = {e.id: e for e in flag_duplicates(sorted(merged, key=arrival_order_key))}
        return tuple(flagged[e.id] for e in merged)

    def _recompute(self) -> None:
        self._all = self._merge()
        self._publish()

    def _publish(self) -> None:
        current = self._filters.apply(self._all)
        diff = diff_snapshots(self._expenses, current)
        self._expenses = current
        state = self.state
        if diff.empty and state == self._last_state:
            return
        self._last_state = state
        update = ViewUpdate(diff.added, diff.updated, diff.removed, current, state)
        for q in list(self._queues):
            q.put_nowait(update)


__all__ = ["ExpenseView", "ViewState", "ViewUpdate", "display_sort_key"]
