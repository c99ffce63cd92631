from datetime import date, datetime

import pytest
from pydantic import ValidationError

from errors import InvalidOperation, NotFound
from models import Category, Frequency
from schemas import BillTemplateIn, EntryIn, EntryUpdate
from services import Ledger
from store import LedgerStore


def make_ledger() -> Ledger:
    store = LedgerStore.from_url("sqlite+pysqlite:///:memory:")
    store.create_schema()
    return Ledger(store)


def add(ledger: Ledger, title: str, due: date, cents: int = 1_000, **kwargs):
    month = ledger.entries.add_one_time(
        EntryIn(title=title, amount_cents=cents, due_date=due, **kwargs)
    ).unwrap()
    return next(e for e in month.entries if e.title == title)


def snapshots(ledger: Ledger) -> list:
    return [
        (s.year, s.month, s.ending_balance_cents)
        for s in ledger.store.list_snapshots()
    ]


def test_add_one_time_appends_to_month() -> None:
    ledger = make_ledger()
    first = add(ledger, "Dentist", date(2025, 5, 12), category=Category.healthcare)
    second = add(ledger, "Concert", date(2025, 5, 20))

    assert first.template_id is None
    assert (first.month, first.year) == (5, 2025)
    assert first.display_order == 0
    assert second.display_order == 1
    assert first.category == Category.healthcare
    assert [e.title for e in ledger.entries.list_month(5, 2025)] == [
        "Dentist",
        "Concert",
    ]


def test_add_paid_entry_without_timestamp_uses_now() -> None:
    ledger = make_ledger()
    entry = add(ledger, "Coffee", date(2025, 5, 2), cents=450, is_paid=True)
    assert entry.is_paid is True
    assert entry.actual_payment_date is not None
    assert ledger.balances.ending_balance(5, 2025) == -450


def test_add_rejects_bad_input() -> None:
    with pytest.raises(ValidationError):
        EntryIn(title="Coffee", amount_cents=-1, due_date=date(2025, 5, 2))
    with pytest.raises(ValidationError):
        EntryUpdate(title="")
    with pytest.raises(ValidationError):
        EntryUpdate(month=4)
    with pytest.raises(ValidationError):
        EntryIn(
            title="Coffee",
            amount_cents=450,
            due_date=date(2025, 5, 2),
            actual_payment_date=datetime(2025, 5, 2, 9, 0),
        )


def test_mark_paid_and_unpaid_move_the_balance() -> None:
    ledger = make_ledger()
    bill = add(ledger, "Power", date(2025, 6, 10), cents=8_000)

    paid_at = datetime(2025, 6, 9, 18, 30)
    june = ledger.entries.mark_paid(bill.id, paid_at).unwrap()
    assert june.ending_balance_cents == -8_000
    assert ledger.entries.get(bill.id).actual_payment_date == paid_at

    june = ledger.entries.mark_unpaid(bill.id).unwrap()
    assert june.ending_balance_cents == 0
    entry = ledger.entries.get(bill.id)
    assert entry.is_paid is False
    assert entry.actual_payment_date is None


def test_toggle_paid_flips_state() -> None:
    ledger = make_ledger()
    bill = add(ledger, "Water", date(2025, 6, 3), cents=2_500)

    ledger.entries.toggle_paid(bill.id).unwrap()
    assert ledger.entries.get(bill.id).is_paid is True
    assert ledger.balances.balance_up_to(7, 2025) == -2_500

    ledger.entries.toggle_paid(bill.id).unwrap()
    assert ledger.entries.get(bill.id).is_paid is False
    assert ledger.balances.balance_up_to(7, 2025) == 0


def test_unknown_entry_operations_fail_with_not_found() -> None:
    ledger = make_ledger()
    for result in (
        ledger.entries.mark_paid(404),
        ledger.entries.mark_unpaid(404),
        ledger.entries.toggle_paid(404),
        ledger.entries.delete(404),
        ledger.entries.update(404, EntryUpdate(title="x")),
    ):
        assert not result.ok
        assert isinstance(result.error, NotFound)
    with pytest.raises(NotFound):
        ledger.entries.get(404)


def test_update_unpaid_entry_leaves_snapshots_alone() -> None:
    ledger = make_ledger()
    add(
        ledger,
        "Salary",
        date(2025, 6, 1),
        cents=50_000,
        is_income=True,
        is_paid=True,
        actual_payment_date=datetime(2025, 6, 1, 8, 0),
    )
    bill = add(ledger, "Gas", date(2025, 6, 15), cents=3_000)
    before = snapshots(ledger)

    june = ledger.entries.update(
        bill.id, EntryUpdate(amount_cents=3_500, notes="winter rate")
    ).unwrap()
    updated = next(e for e in june.entries if e.id == bill.id)
    assert updated.amount_cents == 3_500
    assert updated.notes == "winter rate"
    assert updated.title == "Gas"
    assert snapshots(ledger) == before


def test_update_paid_entry_recalculates_balance() -> None:
    ledger = make_ledger()
    bill = add(
        ledger,
        "Gas",
        date(2025, 6, 15),
        cents=3_000,
        is_paid=True,
        actual_payment_date=datetime(2025, 6, 15, 8, 0),
    )
    assert ledger.balances.balance_up_to(8, 2025) == -3_000

    ledger.entries.update(bill.id, EntryUpdate(amount_cents=4_000)).unwrap()
    assert ledger.balances.balance_up_to(8, 2025) == -4_000

    ledger.entries.update(bill.id, EntryUpdate(is_income=True)).unwrap()
    assert ledger.balances.balance_up_to(8, 2025) == 4_000


def test_moving_paid_entry_to_another_month() -> None:
    ledger = make_ledger()
    add(
        ledger,
        "Opening",
        date(2025, 1, 1),
        cents=10_000,
        is_income=True,
        is_paid=True,
        actual_payment_date=datetime(2025, 1, 1, 9, 0),
    )
    bill = add(
        ledger,
        "Car tax",
        date(2025, 3, 20),
        cents=1_500,
        is_paid=True,
        actual_payment_date=datetime(2025, 3, 20, 9, 0),
    )
    assert ledger.balances.balance_up_to(3, 2025) == 10_000

    february = ledger.entries.update(
        bill.id, EntryUpdate(due_date=date(2025, 2, 20))
    ).unwrap()
    assert february.month.month == 2
    moved = ledger.entries.get(bill.id)
    assert (moved.month, moved.year) == (2, 2025)
    assert ledger.store.list_entries_for_month(3, 2025) == []
    assert ledger.balances.balance_up_to(3, 2025) == 8_500
    assert ledger.balances.balance_up_to(4, 2025) == 8_500


def test_delete_paid_entry_recalculates_balance() -> None:
    ledger = make_ledger()
    bill = add(
        ledger,
        "Fine",
        date(2025, 4, 2),
        cents=6_000,
        is_paid=True,
        actual_payment_date=datetime(2025, 4, 2, 9, 0),
    )
    assert ledger.balances.balance_up_to(5, 2025) == -6_000

    april = ledger.entries.delete(bill.id).unwrap()
    assert april.entries == []
    assert ledger.balances.balance_up_to(5, 2025) == 0


def test_reorder_unpaid_rewrites_display_order() -> None:
    ledger = make_ledger()
    a = add(ledger, "A", date(2025, 7, 1))
    b = add(ledger, "B", date(2025, 7, 2))
    c = add(ledger, "C", date(2025, 7, 3))

    entries = ledger.entries.reorder_unpaid(7, 2025, [c.id, a.id, b.id]).unwrap()
    assert [e.title for e in entries] == ["C", "A", "B"]
    assert [e.display_order for e in entries] == [0, 1, 2]


def test_reorder_rejects_paid_foreign_and_partial_lists() -> None:
    ledger = make_ledger()
    a = add(ledger, "A", date(2025, 7, 1))
    b = add(ledger, "B", date(2025, 7, 2))
    paid = add(
        ledger,
        "Paid",
        date(2025, 7, 3),
        is_paid=True,
        actual_payment_date=datetime(2025, 7, 3, 9, 0),
    )
    elsewhere = add(ledger, "August", date(2025, 8, 1))

    for ids in (
        [a.id, b.id, paid.id],
        [a.id, b.id, elsewhere.id],
        [a.id],
        [a.id, a.id, b.id],
    ):
        result = ledger.entries.reorder_unpaid(7, 2025, ids)
        assert not result.ok
        assert isinstance(result.error, InvalidOperation)

    assert [e.title for e in ledger.entries.list_month(7, 2025)] == [
        "Paid",
        "A",
        "B",
    ]


def test_upcoming_lists_unpaid_entries_due_soon() -> None:
    ledger = make_ledger()
    ledger.templates.add(
        BillTemplateIn(
            title="Rent", amount_cents=90_000, frequency=Frequency.monthly, due_day=3
        )
    ).unwrap()
    ledger.open_month(9, 2025).unwrap()
    add(ledger, "Gift", date(2025, 9, 6))
    add(ledger, "Later", date(2025, 9, 20))
    add(
        ledger,
        "Done",
        date(2025, 9, 4),
        is_paid=True,
        actual_payment_date=datetime(2025, 9, 1, 9, 0),
    )

    upcoming = ledger.entries.upcoming(days=7, today=date(2025, 9, 1))
    assert [e.title for e in upcoming] == ["Rent", "Gift"]
    assert ledger.entries.upcoming(days=7, today=date(2025, 9, 8)) == []
