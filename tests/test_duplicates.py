from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

from spendro.models import DisplayExpense
from spendro.sync.duplicates import arrival_order_key, flag_duplicates

D = date(2025, 1, 1)
T0 = datetime(2025, 1, 2, 9, 0, tzinfo=UTC)


def _exp(id_: str, amount: str, merchant: str = "ACME", **kw) -> DisplayExpense:
    value = Decimal(amount)
    fields = {
        "id": id_,
        "date": D,
        "description": "Coffee",
        "merchant": merchant,
        "category": "Food & Drink",
        "amount": value,
        "original_amount": value,
        "original_currency": "SGD",
        "currency": "SGD",
        "statement_id": "st-1",
    }
    fields.update(kw)
    return DisplayExpense(**fields)


def test_later_near_equal_amount_same_merchant_is_flagged():
    out = flag_duplicates([_exp("a", "10.00", "ACME"), _exp("b", "10.004", " acme ")])

    assert [e.is_duplicate for e in out] == [False, True]


def test_description_and_category_do_not_matter():
    first = _exp("a", "5.00", description="Taxi", category="Transport")
    second = _exp("b", "5.00", description="Other text", category="Travel")

    assert [e.is_duplicate for e in flag_duplicates([first, second])] == [False, True]


def test_difference_of_a_full_cent_is_not_a_duplicate():
    out = flag_duplicates([_exp("a", "10.00"), _exp("b", "10.01")])

    assert [e.is_duplicate for e in out] == [False, False]


def test_different_date_or_merchant_is_not_a_duplicate():
    out = flag_duplicates(
        [
            _exp("a", "10.00"),
            _exp("b", "10.00", date=D + timedelta(days=1)),
            _exp("c", "10.00", merchant="Other"),
        ]
    )

    assert not any(e.is_duplicate for e in out)


def test_every_later_member_of_a_group_is_flagged():
    out = flag_duplicates([_exp("a", "7.00"), _exp("b", "7.00"), _exp("c", "7.00")])

    assert [e.is_duplicate for e in out] == [False, True, True]


def test_stale_flags_are_recomputed_and_inputs_untouched():
    stale = _exp("a", "3.00", is_duplicate=True)

    out = flag_duplicates([stale])

    assert out[0].is_duplicate is False
    assert stale.is_duplicate is True


def test_arrival_order_uses_created_at_then_id_missing_last():
    late = _exp("a", "1.00", created_at=T0 + timedelta(minutes=5))
    early_b = _exp("b", "1.00", created_at=T0)
    early_a = _exp("aa", "1.00", created_at=T0)
    unknown = _exp("0", "1.00")

    ordered = sorted([unknown, late, early_b, early_a], key=arrival_order_key)

    assert [e.id for e in ordered] == ["aa", "b", "a", "0"]
    flags = flag_duplicates(ordered)
    assert [e.is_duplicate for e in flags] == [False, True, True, True]
