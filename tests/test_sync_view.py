from __future__ import annotations

import asyncio
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

from sqlalchemy.exc import OperationalError

from spendro.changes import EXPENSES, ChangeBus
from spendro.models import DisplayExpense
from spendro.sync import (
    DatabaseShapeSource,
    ExpenseFilters,
    ExpenseView,
    ShapeSubscription,
    WindowSpec,
)
from tests.helpers.db import add_expense, add_statement

USER = "user-1"
OTHER = "user-2"
TODAY = date(2025, 8, 31)
T0 = datetime(2025, 8, 31, 8, 0, tzinfo=UTC)


def _seed_windows(url: str) -> dict[str, str]:
    st = add_statement(url, user_id=USER)
    days = {
        "r1": date(2025, 8, 1),
        "r2": date(2025, 3, 1),
        "h1": date(2024, 12, 1),
        "old": date(2023, 1, 1),
    }
    return {
        name: add_expense(url, user_id=USER, statement_id=st, on=day, description=name)
        for name, day in days.items()
    }


class CountingSource(DatabaseShapeSource):
    def __init__(self, **kw) -> None:
        super().__init__(**kw)
        self.subscribed: list[WindowSpec] = []

    def subscribe(self, shape: WindowSpec):
        self.subscribed.append(shape)
        return super().subscribe(shape)


class FlakySource:
    """In-memory source whose historical loads fail ``fail_historical`` times."""

    def __init__(self, rows, *, fail_historical: int = 0, fail_recent: int = 0) -> None:
        self.rows = rows
        self.fail = {"historical": fail_historical, "recent": fail_recent}

    def subscribe(self, shape: WindowSpec) -> ShapeSubscription:
        name = "historical" if shape.end is not None else "recent"

        def load():
            if self.fail[name]:
                self.fail[name] -= 1
                raise OperationalError("SELECT expenses", {}, Exception("connection lost"))
            return tuple(r for r in self.rows if shape.contains(r.date))

        return ShapeSubscription(load, bus=None, tables=(), user_id=shape.user_id, label=name)

    def subscribe_statements(self, shape):
        raise NotImplementedError


def test_recent_then_historical_merge_sorted_without_duplicates(database_url: str):
    ids = _seed_windows(database_url)
    source = CountingSource(database_url=database_url, bus=ChangeBus())

    async def _go():
        async with ExpenseView(source, USER, today=TODAY) as view:
            recent = [e.id for e in view.expenses]
            assert view.state.loading is False
            assert view.state.has_historical is False
            await view.load_historical()
            await view.load_historical()
            return recent, [e.id for e in view.expenses], view.state

    recent, merged, state = asyncio.run(_go())

    assert recent == [ids["r1"], ids["r2"]]
    assert merged == [ids["r1"], ids["r2"], ids["h1"]]
    assert state.has_historical and state.total_count == 3
    assert len(source.subscribed) == 2


def test_live_insert_reaches_the_view(database_url: str):
    st = add_statement(database_url, user_id=USER)
    add_expense(database_url, user_id=USER, statement_id=st, on=date(2025, 8, 1))
    bus = ChangeBus()
    source = DatabaseShapeSource(database_url=database_url, bus=bus)

    async def _go():
        async with ExpenseView(source, USER, today=TODAY) as view:
            updates = view.updates()
            new_id = add_expense(
                database_url,
                user_id=USER,
                statement_id=st,
                on=date(2025, 8, 2),
                description="New",
            )
            bus.notify(EXPENSES, user_id=USER)
            update = await asyncio.wait_for(anext(updates), timeout=5)
            return new_id, update, [e.id for e in view.expenses]

    new_id, update, current = asyncio.run(_go())

    assert [e.id for e in update.added] == [new_id]
    assert current[0] == new_id
    assert len(current) == 2


def test_other_users_rows_and_notices_are_invisible(database_url: str):
    mine = add_statement(database_url, user_id=USER)
    theirs = add_statement(database_url, user_id=OTHER)
    add_expense(database_url, user_id=USER, statement_id=mine, on=date(2025, 8, 1))
    add_expense(database_url, user_id=OTHER, statement_id=theirs, on=date(2025, 8, 1))
    bus = ChangeBus()
    source = DatabaseShapeSource(database_url=database_url, bus=bus)

    async def _go():
        async with ExpenseView(source, USER, today=TODAY) as view:
            updates = view.updates()
            add_expense(database_url, user_id=OTHER, statement_id=theirs, on=date(2025, 8, 2))
            bus.notify(EXPENSES, user_id=OTHER)
            try:
                await asyncio.wait_for(anext(updates), timeout=0.3)
            except TimeoutError:
                got_update = False
            else:
                got_update = True
            return got_update, view.expenses

    got_update, rows = asyncio.run(_go())

    assert got_update is False
    assert len(rows) == 1


def test_duplicate_flag_goes_to_the_later_arrival(database_url: str):
    st = add_statement(database_url, user_id=USER)
    later = add_expense(
        database_url,
        user_id=USER,
        statement_id=st,
        on=date(2025, 8, 1),
        description="Second copy",
        merchant="acme ",
        created_at=T0 + timedelta(minutes=1),
    )
    first = add_expense(
        database_url,
        user_id=USER,
        statement_id=st,
        on=date(2025, 8, 1),
        description="First copy",
        merchant="ACME",
        created_at=T0,
    )
    source = DatabaseShapeSource(database_url=database_url)

    async def _go():
        async with ExpenseView(source, USER, today=TODAY) as view:
            return {e.id: e.is_duplicate for e in view.expenses}

    assert asyncio.run(_go()) == {first: False, later: True}


def test_filters_apply_without_resubscribing(database_url: str):
    st = add_statement(database_url, user_id=USER)
    for day, cat in ((1, "Food & Drink"), (2, "Travel"), (3, "Food & Drink")):
        add_expense(
            database_url,
            user_id=USER,
            statement_id=st,
            on=date(2025, 8, day),
            description=f"item {day}",
            category=cat,
        )
    source = CountingSource(database_url=database_url, bus=ChangeBus())

    async def _go():
        async with ExpenseView(source, USER, today=TODAY) as view:
            view.set_filters(ExpenseFilters.build(categories=["Travel"]))
            travel = [e.category for e in view.expenses]
            state = view.state
            view.set_filters(ExpenseFilters())
            return travel, state, len(view.expenses)

    travel, state, unfiltered = asyncio.run(_go())

    assert travel == ["Travel"]
    assert (state.total_count, state.filtered_count) == (3, 1)
    assert unfiltered == 3
    assert len(source.subscribed) == 1


def test_failed_window_keeps_other_rows_and_recovers_on_refetch(database_url: str):
    st = add_statement(database_url, user_id=USER)
    add_expense(database_url, user_id=USER, statement_id=st, on=date(2025, 8, 1))
    add_expense(database_url, user_id=USER, statement_id=st, on=date(2024, 12, 1))
    rows = asyncio.run(_snapshot_all(database_url))
    source = FlakySource(rows, fail_historical=1)

    async def _go():
        async with ExpenseView(source, USER, today=TODAY) as view:
            await view.load_historical()
            failed = (view.state, len(view.expenses))
            await view.refetch("historical")
            return failed, view.state, len(view.expenses)

    (failed_state, failed_count), state, count = asyncio.run(_go())

    assert failed_state.historical_error and "connection lost" in failed_state.historical_error
    assert failed_state.recent_error is None
    assert failed_state.has_historical is False
    assert failed_count == 1
    assert state.historical_error is None and state.has_historical
    assert count == 2


def _row(row_id: str, day: date, merchant: str) -> DisplayExpense:
    amount = Decimal("5.00")
    return DisplayExpense(
        id=row_id,
        date=day,
        description=f"{merchant} purchase",
        merchant=merchant,
        category="Other",
        amount=amount,
        original_amount=amount,
        original_currency="SGD",
        currency="SGD",
        statement_id="st-1",
    )


def test_snapshots_are_resorted_by_date_then_id_whatever_the_feed_order():
    rows = (
        _row("c", date(2025, 8, 1), "Cafe"),
        _row("z", date(2024, 12, 1), "Zoo"),
        _row("0", date(2025, 5, 5), "Deli"),
        _row("a", date(2025, 8, 1), "Bakery"),
        _row("m", date(2024, 12, 1), "Market"),
        _row("b", date(2025, 8, 1), "Books"),
    )
    source = FlakySource(rows)

    async def _go():
        async with ExpenseView(source, USER, today=TODAY) as view:
            recent = [e.id for e in view.expenses]
            await view.load_historical()
            return recent, [e.id for e in view.expenses]

    recent, merged = asyncio.run(_go())

    assert recent == ["a", "b", "c", "0"]
    assert merged == ["a", "b", "c", "0", "m", "z"]


def test_refetch_moves_window_bounds_with_the_clock():
    clock = [TODAY]
    source = FlakySource((_row("x", date(2025, 3, 1), "Cafe"),))

    async def _go():
        async with ExpenseView(source, USER, clock=lambda: clock[0]) as view:
            before = [e.id for e in view.expenses]
            clock[0] = date(2025, 9, 2)
            await view.refetch()
            after = [e.id for e in view.expenses]
            await view.load_historical()
            return before, after, [e.id for e in view.expenses]

    before, after, with_historical = asyncio.run(_go())

    assert before == ["x"]
    assert after == []
    assert with_historical == ["x"]


def test_recent_failure_is_reported_not_raised():
    source = FlakySource((), fail_recent=1)

    async def _go():
        async with ExpenseView(source, USER, today=TODAY) as view:
            before = view.state
            await view.refetch()
            return before, view.state

    before, after = asyncio.run(_go())

    assert before.recent_error and before.loading is False
    assert after.recent_error is None


def test_close_releases_listeners_and_ends_updates(database_url: str):
    bus = ChangeBus()
    source = DatabaseShapeSource(database_url=database_url, bus=bus)

    async def _go():
        view = ExpenseView(source, USER, today=TODAY)
        await view.start()
        await view.load_historical()
        during = bus.listener_count()
        updates = view.updates()
        view.close()
        drained = [u async for u in updates]
        await view.aclose()
        return during, bus.listener_count(), drained, view.closed

    during, after, drained, closed = asyncio.run(_go())

    assert during == 2
    assert after == 0
    assert drained == []
    assert closed


async def _snapshot_all(url: str):
    source = DatabaseShapeSource(database_url=url)
    sub = source.subscribe(WindowSpec(user_id=USER))
    try:
        return await anext(sub)
    finally:
        sub.close()
