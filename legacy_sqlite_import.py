from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from database import session_scope
from models import BillTemplate, Category, Entry, Frequency
from periods import MonthKey
from store import LedgerStore

logger = logging.getLogger(__name__)

LEGACY_SOURCE_KEY = "legacy_import_source"

FREQUENCY_BY_LEGACY = {
    "One Time": Frequency.one_time,
    "Weekly": Frequency.weekly,
    "Biweekly": Frequency.biweekly,
    "Monthly": Frequency.monthly,
    "Bimonthly": Frequency.bimonthly,
    "Semi-Monthly (1st & 15th)": Frequency.semi_monthly,
    "Custom Days of Month": Frequency.custom_days,
    "Yearly": Frequency.yearly,
}

CATEGORY_BY_LEGACY = {
    "Housing": Category.housing,
    "Utilities": Category.utilities,
    "Transportation": Category.transportation,
    "Insurance": Category.insurance,
    "Food & Groceries": Category.food,
    "Entertainment": Category.entertainment,
    "Healthcare": Category.healthcare,
    "Debt Payments": Category.debt,
    "Savings": Category.savings,
    "Income": Category.income,
    "Other": Category.other,
}


@dataclass(frozen=True)
class LegacyDBPreview:
    templates_count: int
    entries_count: int
    paid_entries_count: int
    first_month: Optional[MonthKey]
    last_month: Optional[MonthKey]
    unsupported_frequencies: list[str]
    unknown_categories: list[str]
    warnings: list[str]


@dataclass(frozen=True)
class LegacyImportSummary:
    imported_templates: int
    skipped_templates: int
    imported_entries: int
    detached_entries: int


def _connect_readonly(path: Path) -> sqlite3.Connection:
    uri = f"file:{path.resolve()}?mode=ro"
    con = sqlite3.connect(uri, uri=True)
    con.row_factory = sqlite3.Row
    con.execute("PRAGMA query_only=ON;")
    return con


def _require_legacy_schema(con: sqlite3.Connection) -> None:
    cur = con.cursor()
    cur.execute(
        "select name from sqlite_master where type='table' and name not like 'sqlite_%'"
    )
    tables = {r[0] for r in cur.fetchall()}
    required_tables = {"bill_templates", "transactions"}
    missing = required_tables - tables
    if missing:
        raise ValueError(f"Legacy DB missing tables: {', '.join(sorted(missing))}")

    required_cols: dict[str, set[str]] = {
        "bill_templates": {
            "id",
            "title",
            "amount",
            "isIncome",
            "recurrenceFrequency",
            "category",
            "createdAt",
            "dueDay",
            "startDate",
            "semiMonthlyDay1",
            "semiMonthlyDay2",
        },
        "transactions": {
            "id",
            "templateId",
            "month",
            "year",
            "title",
            "amount",
            "isIncome",
            "isPaid",
            "dueDate",
            "actualPaymentDate",
            "displayOrder",
            "category",
            "createdAt",
        },
    }
    for table, cols in required_cols.items():
        cur.execute(f"pragma table_info({table})")
        present = {row["name"] for row in cur.fetchall()}
        missing_cols = cols - present
        if missing_cols:
            raise ValueError(
                f"Legacy DB table '{table}' missing columns: "
                f"{', '.join(sorted(missing_cols))}"
            )


def _parse_amount_cents(amount_text: str) -> int:
    try:
        cents = int(
            (Decimal(amount_text) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        )
    except InvalidOperation as exc:
        raise ValueError(f"Invalid legacy amount: {amount_text}") from exc
    if cents < 0:
        raise ValueError("Legacy amount must be non-negative")
    return cents


def _from_epoch(value: Optional[float]) -> Optional[datetime]:
    """Legacy dates are Unix seconds; keep the wall clock of the configured zone."""
    if value is None:
        return None
    tz = ZoneInfo(get_settings().timezone)
    return datetime.fromtimestamp(float(value), tz).replace(tzinfo=None)


def _from_epoch_date(value: Optional[float]) -> Optional[date]:
    moment = _from_epoch(value)
    return moment.date() if moment else None


def _day_or_none(value: Optional[int], upper: int) -> Optional[int]:
    if value is None:
        return None
    day = int(value)
    return day if 1 <= day <= upper else None


class LegacySQLiteImportService:
    def __init__(self, store: LedgerStore) -> None:
        self.store = store

    def preview(self, legacy_db_path: Path) -> LegacyDBPreview:
        if not legacy_db_path.exists():
            raise ValueError("Legacy DB file not found")

        con = _connect_readonly(legacy_db_path)
        try:
            _require_legacy_schema(con)
            cur = con.cursor()
            warnings: list[str] = []

            cur.execute("select count(*) as n from bill_templates")
            templates_count = int(cur.fetchone()["n"])
            cur.execute(
                "select count(*) as n, coalesce(sum(isPaid), 0) as paid "
                "from transactions"
            )
            row = cur.fetchone()
            entries_count = int(row["n"])
            paid_count = int(row["paid"])

            cur.execute(
                "select min(year * 12 + month) as lo, max(year * 12 + month) as hi "
                "from transactions"
            )
            row = cur.fetchone()
            first = MonthKey.from_ordinal(int(row["lo"])) if row["lo"] else None
            last = MonthKey.from_ordinal(int(row["hi"])) if row["hi"] else None

            cur.execute("select distinct recurrenceFrequency as f from bill_templates")
            unsupported = sorted(
                str(r["f"]) for r in cur.fetchall() if r["f"] not in FREQUENCY_BY_LEGACY
            )
            if unsupported:
                warnings.append(
                    "Templates with unsupported frequencies are skipped and their "
                    f"entries imported as one-time: {', '.join(unsupported)}"
                )

            cur.execute(
                "select category from bill_templates "
                "union select category from transactions"
            )
            unknown = sorted(
                str(r["category"])
                for r in cur.fetchall()
                if r["category"] not in CATEGORY_BY_LEGACY
            )
            if unknown:
                warnings.append(
                    f"Unknown categories are imported as 'other': {', '.join(unknown)}"
                )

            return LegacyDBPreview(
                templates_count=templates_count,
                entries_count=entries_count,
                paid_entries_count=paid_count,
                first_month=first,
                last_month=last,
                unsupported_frequencies=unsupported,
                unknown_categories=unknown,
                warnings=warnings,
            )
        finally:
            con.close()

    def import_db(
        self, legacy_db_path: Path, *, replace_existing: bool = False
    ) -> LegacyImportSummary:
        if not legacy_db_path.exists():
            raise ValueError("Legacy DB file not found")
        if replace_existing:
            self.store.reset()
        elif self.store.list_templates() or self.store.earliest_entry_month():
            raise ValueError("Target ledger is not empty; pass replace_existing=True")

        con = _connect_readonly(legacy_db_path)
        try:
            _require_legacy_schema(con)
            cur = con.cursor()

            template_id_by_legacy: dict[str, int] = {}
            skipped_templates = 0
            imported_entries = 0
            detached_entries = 0

            with session_scope(self.store.session_factory) as session:
                cur.execute(
                    "select id, title, cast(amount as text) as amount_text, isIncome, "
                    "recurrenceFrequency, category, notes, createdAt, dueDay, "
                    "startDate, semiMonthlyDay1, semiMonthlyDay2 "
                    "from bill_templates order by createdAt"
                )
                for r in cur.fetchall():
                    frequency = FREQUENCY_BY_LEGACY.get(str(r["recurrenceFrequency"]))
                    if frequency is None:
                        skipped_templates += 1
                        logger.warning(
                            f"legacy_template_skipped: id={r['id']} "
                            f"frequency={r['recurrenceFrequency']!r}"
                        )
                        continue
                    template = BillTemplate(
                        title=str(r["title"]),
                        amount_cents=_parse_amount_cents(str(r["amount_text"])),
                        is_income=bool(r["isIncome"]),
                        frequency=frequency,
                        category=CATEGORY_BY_LEGACY.get(
                            str(r["category"]), Category.other
                        ),
                        notes=str(r["notes"] or ""),
                        created_at=_from_epoch(r["createdAt"]) or datetime.utcnow(),
                        due_day=_day_or_none(r["dueDay"], 31),
                        start_date=_from_epoch_date(r["startDate"]),
                        semi_day1=_day_or_none(r["semiMonthlyDay1"], 31),
                        semi_day2=_day_or_none(r["semiMonthlyDay2"], 31),
                    )
                    session.add(template)
                    session.flush()
                    template_id_by_legacy[str(r["id"])] = template.id

                cur.execute(
                    "select templateId, month, year, title, "
                    "cast(amount as text) as amount_text, isIncome, isPaid, dueDate, "
                    "actualPaymentDate, displayOrder, category, notes, createdAt "
                    "from transactions order by year, month, createdAt"
                )
                for r in cur.fetchall():
                    template_id = None
                    if r["templateId"]:
                        template_id = template_id_by_legacy.get(str(r["templateId"]))
                        if template_id is None:
                            detached_entries += 1
                    is_paid = bool(r["isPaid"])
                    session.add(
                        Entry(
                            template_id=template_id,
                            month=int(r["month"]),
                            year=int(r["year"]),
                            title=str(r["title"]),
                            amount_cents=_parse_amount_cents(str(r["amount_text"])),
                            is_income=bool(r["isIncome"]),
                            is_paid=is_paid,
                            due_date=_from_epoch_date(r["dueDate"]),
                            actual_payment_date=(
                                _from_epoch(r["actualPaymentDate"]) if is_paid else None
                            ),
                            display_order=int(r["displayOrder"] or 0),
                            category=CATEGORY_BY_LEGACY.get(
                                str(r["category"]), Category.other
                            ),
                            notes=str(r["notes"] or ""),
                            created_at=(
                                _from_epoch(r["createdAt"]) or datetime.utcnow()
                            ),
                        )
                    )
                    imported_entries += 1
        finally:
            con.close()

        # snapshots are rebuilt lazily from the imported paid entries
        self.store.clear_snapshots()
        self.store.put_setting(LEGACY_SOURCE_KEY, str(legacy_db_path.resolve()))
        summary = LegacyImportSummary(
            imported_templates=len(template_id_by_legacy),
            skipped_templates=skipped_templates,
            imported_entries=imported_entries,
            detached_entries=detached_entries,
        )
        logger.info(f"legacy_import: {summary}")
        return summary
