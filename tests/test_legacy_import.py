import sqlite3
from datetime import date, datetime, timezone
from pathlib import Path

import pytest

from legacy_sqlite_import import LEGACY_SOURCE_KEY, LegacySQLiteImportService
from models import Category, Frequency
from periods import MonthKey
from services import Ledger
from store import LedgerStore


def make_ledger() -> Ledger:
    store = LedgerStore.from_url("sqlite+pysqlite:///:memory:")
    store.create_schema()
    return Ledger(store)


def epoch(year: int, month: int, day: int, hour: int = 12) -> float:
    return datetime(year, month, day, hour, tzinfo=timezone.utc).timestamp()


def create_legacy_db(path: Path) -> Path:
    con = sqlite3.connect(path)
    con.executescript(
        """
        create table bill_templates (
            id text primary key,
            title text not null,
            amount real not null,
            isIncome integer not null,
            recurrenceFrequency text not null,
            category text not null,
            notes text,
            createdAt real not null,
            dueDay integer,
            startDate real,
            semiMonthlyDay1 integer,
            semiMonthlyDay2 integer
        );
        create table transactions (
            id text primary key,
            templateId text,
            month integer not null,
            year integer not null,
            title text not null,
            amount real not null,
            isIncome integer not null,
            isPaid integer not null,
            dueDate real not null,
            actualPaymentDate real,
            displayOrder integer not null,
            category text not null,
            notes text,
            createdAt real not null
        );
        """
    )
    con.executemany(
        "insert into bill_templates values (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        [
            (
                "T-RENT",
                "Rent",
                1200.0,
                0,
                "Monthly",
                "Housing",
                None,
                epoch(2024, 12, 1),
                1,
                None,
                None,
                None,
            ),
            (
                "T-PAY",
                "Salary",
                3000.0,
                1,
                "Biweekly",
                "Income",
                "net",
                epoch(2024, 12, 2),
                None,
                epoch(2025, 1, 3),
                None,
                None,
            ),
            (
                "T-COFFEE",
                "Coffee",
                4.5,
                0,
                "Daily",
                "Food & Groceries",
                None,
                epoch(2024, 12, 3),
                None,
                None,
                None,
                None,
            ),
        ],
    )
    con.executemany(
        "insert into transactions values (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        [
            (
                "X1",
                "T-RENT",
                1,
                2025,
                "Rent",
                1200.0,
                0,
                1,
                epoch(2025, 1, 1),
                epoch(2025, 1, 1),
                0,
                "Housing",
                None,
                epoch(2025, 1, 1),
            ),
            (
                "X2",
                "T-PAY",
                1,
                2025,
                "Salary",
                3000.0,
                1,
                1,
                epoch(2025, 1, 3),
                epoch(2025, 1, 3),
                0,
                "Income",
                None,
                epoch(2025, 1, 1, 13),
            ),
            (
                "X3",
                "T-COFFEE",
                1,
                2025,
                "Coffee",
                4.5,
                0,
                0,
                epoch(2025, 1, 7),
                None,
                1,
                "Snacks",
                None,
                epoch(2025, 1, 1, 14),
            ),
            (
                "X4",
                None,
                2,
                2025,
                "Gift",
                50.25,
                1,
                1,
                epoch(2025, 2, 14),
                epoch(2025, 2, 14),
                0,
                "Other",
                "from grandma",
                epoch(2025, 2, 14),
            ),
        ],
    )
    con.commit()
    con.close()
    return path


def test_preview_summarizes_legacy_db(tmp_path) -> None:
    legacy = create_legacy_db(tmp_path / "budget.sqlite")
    service = LegacySQLiteImportService(make_ledger().store)

    preview = service.preview(legacy)
    assert preview.templates_count == 3
    assert preview.entries_count == 4
    assert preview.paid_entries_count == 3
    assert preview.first_month == MonthKey(2025, 1)
    assert preview.last_month == MonthKey(2025, 2)
    assert preview.unsupported_frequencies == ["Daily"]
    assert preview.unknown_categories == ["Snacks"]
    assert len(preview.warnings) == 2


def test_import_maps_templates_and_entries(tmp_path) -> None:
    legacy = create_legacy_db(tmp_path / "budget.sqlite")
    ledger = make_ledger()
    service = LegacySQLiteImportService(ledger.store)

    summary = service.import_db(legacy)
    assert summary.imported_templates == 2
    assert summary.skipped_templates == 1
    assert summary.imported_entries == 4
    assert summary.detached_entries == 1

    rent, salary = ledger.templates.list()
    assert (rent.title, rent.frequency, rent.category) == (
        "Rent",
        Frequency.monthly,
        Category.housing,
    )
    assert rent.amount_cents == 120_000
    assert rent.due_day == 1
    assert salary.is_income is True
    assert salary.frequency == Frequency.biweekly
    assert salary.start_date == date(2025, 1, 3)
    assert salary.notes == "net"

    january = {e.title: e for e in ledger.store.list_entries_for_month(1, 2025)}
    assert january["Rent"].template_id == rent.id
    assert january["Rent"].is_paid is True
    assert january["Rent"].due_date == date(2025, 1, 1)
    assert january["Coffee"].template_id is None
    assert january["Coffee"].category == Category.other
    assert january["Coffee"].actual_payment_date is None
    (gift,) = ledger.store.list_entries_for_month(2, 2025)
    assert gift.amount_cents == 5_025
    assert gift.notes == "from grandma"

    assert ledger.balances.balance_up_to(3, 2025) == 185_025
    assert ledger.settings.get(LEGACY_SOURCE_KEY) == str(legacy.resolve())


def test_imported_month_is_not_regenerated(tmp_path) -> None:
    legacy = create_legacy_db(tmp_path / "budget.sqlite")
    ledger = make_ledger()
    LegacySQLiteImportService(ledger.store).import_db(legacy)

    january = ledger.open_month(1, 2025).unwrap()
    titles = sorted(e.title for e in january.entries)
    # both templates already have entries in the imported month
    assert titles == ["Coffee", "Rent", "Salary"]


def test_import_refuses_non_empty_ledger_unless_replacing(tmp_path) -> None:
    legacy = create_legacy_db(tmp_path / "budget.sqlite")
    ledger = make_ledger()
    service = LegacySQLiteImportService(ledger.store)
    service.import_db(legacy)

    with pytest.raises(ValueError):
        service.import_db(legacy)

    summary = service.import_db(legacy, replace_existing=True)
    assert summary.imported_entries == 4
    assert len(ledger.templates.list()) == 2


def test_missing_file_and_tables_are_rejected(tmp_path) -> None:
    service = LegacySQLiteImportService(make_ledger().store)
    with pytest.raises(ValueError):
        service.preview(tmp_path / "missing.sqlite")

    broken = tmp_path / "broken.sqlite"
    con = sqlite3.connect(broken)
    con.execute("create table bill_templates (id text)")
    con.commit()
    con.close()
    with pytest.raises(ValueError):
        service.preview(broken)
    with pytest.raises(ValueError):
        service.import_db(broken)
