from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Callable, Iterable, Optional, TypeVar

from config import get_settings
from errors import (
    InvalidOperation,
    LedgerError,
    NotFound,
    OperationResult,
    PersistenceFailure,
)
from models import BillTemplate, Category, Entry
from periods import MonthKey, iter_months
from recurrence import due_dates_for_month, local_now, local_today
from schemas import BillTemplateIn, EntryIn, EntryUpdate
from store import LedgerStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

BALANCE_CORRECTION_TITLE = "Balance Correction"
BALANCE_CORRECTION_ORDER = 9999
LAST_MATERIALIZED_KEY = "last_materialized_month"


def _guarded(action: str, func: Callable[[], T]) -> OperationResult[T]:
    try:
        return OperationResult.success(func())
    except LedgerError as exc:
        logger.error(f"{action} failed: {type(exc).__name__}: {exc}")
        return OperationResult.failure(exc)


def ledger_order(entries: Iterable[Entry]) -> list[Entry]:
    """Paid entries by payment time, then unpaid entries by display order."""
    rows = list(entries)
    paid = sorted(
        (e for e in rows if e.is_paid),
        key=lambda e: (
            e.actual_payment_date or datetime.combine(e.due_date, time.min),
            e.id,
        ),
    )
    unpaid = sorted(
        (e for e in rows if not e.is_paid), key=lambda e: (e.display_order, e.id)
    )
    return paid + unpaid


def signed_total(entries: Iterable[Entry]) -> int:
    total = 0
    for entry in entries:
        total += entry.signed_amount_cents
    return total


def format_cents(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(cents), 100)
    return f"{sign}{whole:,}.{frac:02d}"


@dataclass(frozen=True)
class MonthTotals:
    income_cents: int
    expense_cents: int
    paid_income_cents: int
    paid_expense_cents: int

    @property
    def net_cents(self) -> int:
        return self.income_cents - self.expense_cents

    @property
    def paid_net_cents(self) -> int:
        return self.paid_income_cents - self.paid_expense_cents


@dataclass(frozen=True)
class MonthLedger:
    month: MonthKey
    entries: list[Entry]
    opening_balance_cents: int
    ending_balance_cents: int


class BalanceCalculator:
    """Running balance over paid entries, memoized as monthly snapshots.

    A snapshot for month M holds the ending balance of M and is trusted only
    while nothing in M or earlier has changed. Callers that mutate a paid
    entry must call ``invalidate_from`` for its month (or use
    ``refresh_from``); later months are rebuilt lazily on the next read.
    """

    def __init__(self, store: LedgerStore) -> None:
        self.store = store

    def balance_up_to(self, month: int, year: int) -> int:
        target = MonthKey(year, month)
        previous = target.previous()
        cached = self.store.get_snapshot(previous.month, previous.year)
        if cached is not None:
            logger.debug(f"balance_cache_hit: month={previous} balance={cached}")
            return cached

        earliest = self.store.earliest_entry_month()
        if earliest is None or target <= earliest:
            return 0

        logger.debug(f"balance_walk: from={earliest} to={target}")
        balance = 0
        for key in iter_months(earliest, target):
            snapshot = self.store.get_snapshot(key.month, key.year)
            if snapshot is not None:
                balance = snapshot
                continue
            paid = self.store.list_paid_entries_for_month(key.month, key.year)
            balance += signed_total(paid)
            # stored even for months without paid entries so the chain has no gaps
            self.store.put_snapshot(key.month, key.year, balance)
        return balance

    def recalculate_and_cache(self, month: int, year: int) -> int:
        opening = self.balance_up_to(month, year)
        paid = self.store.list_paid_entries_for_month(month, year)
        ending = opening + signed_total(paid)
        self.store.put_snapshot(month, year, ending)
        logger.debug(
            f"balance_recalculated: month={MonthKey(year, month)} "
            f"opening={opening} ending={ending}"
        )
        return ending

    def invalidate_from(self, month: int, year: int) -> int:
        removed = self.store.delete_snapshots_from(month, year)
        logger.info(
            f"balance_invalidated: from={MonthKey(year, month)} snapshots={removed}"
        )
        return removed

    def refresh_from(self, month: int, year: int) -> int:
        self.invalidate_from(month, year)
        return self.recalculate_and_cache(month, year)

    def ending_balance(self, month: int, year: int) -> int:
        cached = self.store.get_snapshot(month, year)
        if cached is not None:
            return cached
        return self.recalculate_and_cache(month, year)

    def current_balance(self, today: Optional[date] = None) -> int:
        key = MonthKey.of(today or local_today())
        balance = self.balance_up_to(key.month, key.year)
        paid = self.store.list_paid_entries_for_month(key.month, key.year)
        return balance + signed_total(paid)

    def month_totals(self, month: int, year: int) -> MonthTotals:
        income = expense = paid_income = paid_expense = 0
        for entry in self.store.list_entries_for_month(month, year):
            if entry.is_income:
                income += entry.amount_cents
                if entry.is_paid:
                    paid_income += entry.amount_cents
            else:
                expense += entry.amount_cents
                if entry.is_paid:
                    paid_expense += entry.amount_cents
        return MonthTotals(
            income_cents=income,
            expense_cents=expense,
            paid_income_cents=paid_income,
            paid_expense_cents=paid_expense,
        )

    def month_ledger(self, month: int, year: int) -> MonthLedger:
        entries = self.store.list_entries_for_month(month, year)
        return MonthLedger(
            month=MonthKey(year, month),
            entries=ledger_order(entries),
            opening_balance_cents=self.balance_up_to(month, year),
            ending_balance_cents=self.ending_balance(month, year),
        )


def _entries_for_template(
    template: BillTemplate, key: MonthKey, due_dates: list[date]
) -> list[Entry]:
    return [
        Entry(
            template_id=template.id,
            month=key.month,
            year=key.year,
            title=template.title,
            amount_cents=template.amount_cents,
            is_income=template.is_income,
            is_paid=False,
            due_date=due,
            actual_payment_date=None,
            display_order=index,
            category=template.category,
            notes=template.notes,
        )
        for index, due in enumerate(due_dates)
    ]


class MonthMaterializer:
    def __init__(self, store: LedgerStore) -> None:
        self.store = store
        # the daily job runs on its own thread; one materialization at a time
        self._lock = threading.Lock()

    def ensure_month(self, month: int, year: int) -> OperationResult[list[Entry]]:
        """Create the entries every template owes ``month``; never duplicates.

        A template that already has any entry in the month is left alone.
        Each template's entries are written in one transaction; when that
        write fails the template is skipped and the rest still run.
        """
        return _guarded(
            f"ensure_month {MonthKey(year, month)}",
            lambda: self._ensure_month(MonthKey(year, month)),
        )

    def _ensure_month(self, key: MonthKey) -> list[Entry]:
        with self._lock:
            return self._materialize(key)

    def _materialize(self, key: MonthKey) -> list[Entry]:
        existing = self.store.list_entries_for_month(key.month, key.year)
        present = {e.template_id for e in existing if e.template_id is not None}
        templates = self.store.list_templates()

        created = 0
        skipped: list[int] = []
        for template in templates:
            if template.id in present:
                continue
            due_dates = due_dates_for_month(template, key.month, key.year)
            if not due_dates:
                continue
            try:
                rows = self.store.insert_entries(
                    _entries_for_template(template, key, due_dates)
                )
            except PersistenceFailure as exc:
                logger.error(
                    f"materialize_skipped: month={key} template={template.id} "
                    f"error={exc}"
                )
                skipped.append(template.id)
                continue
            created += len(rows)

        logger.info(
            f"materialize: month={key} templates={len(templates)} "
            f"created={created} skipped={len(skipped)}"
        )
        return ledger_order(self.store.list_entries_for_month(key.month, key.year))


class TemplateService:
    def __init__(self, store: LedgerStore, balances: BalanceCalculator) -> None:
        self.store = store
        self.balances = balances

    def list(self) -> list[BillTemplate]:
        return self.store.list_templates()

    def get(self, template_id: int) -> BillTemplate:
        template = self.store.get_template(template_id)
        if template is None:
            raise NotFound(f"Template {template_id} not found")
        return template

    def add(self, data: BillTemplateIn) -> OperationResult[list[BillTemplate]]:
        def run() -> list[BillTemplate]:
            template = self.store.insert_template(BillTemplate(**data.model_dump()))
            logger.info(f"template_added: id={template.id} title={template.title!r}")
            return self.store.list_templates()

        return _guarded("add_template", run)

    def update(
        self,
        template_id: int,
        data: BillTemplateIn,
        *,
        resync_month: Optional[MonthKey] = None,
    ) -> OperationResult[list[BillTemplate]]:
        """Update a template.

        Entries already generated keep their copied values unless
        ``resync_month`` is given; that month's entries from the template
        then take the new title, amount, direction, category and notes.
        """

        def run() -> list[BillTemplate]:
            template = self.store.update_template(template_id, **data.model_dump())
            if resync_month is not None:
                self._resync(template, resync_month)
            return self.store.list_templates()

        return _guarded("update_template", run)

    def _resync(self, template: BillTemplate, key: MonthKey) -> None:
        entries = [
            e
            for e in self.store.list_entries_for_month(key.month, key.year)
            if e.template_id == template.id
        ]
        if not entries:
            return
        fields = {
            "title": template.title,
            "amount_cents": template.amount_cents,
            "is_income": template.is_income,
            "category": template.category,
            "notes": template.notes,
        }
        self.store.update_entries({e.id: dict(fields) for e in entries})
        logger.info(
            f"template_resynced: id={template.id} month={key} entries={len(entries)}"
        )
        if any(e.is_paid for e in entries):
            self.balances.refresh_from(key.month, key.year)

    def delete(
        self, template_id: int, *, as_of: Optional[MonthKey] = None
    ) -> OperationResult[list[BillTemplate]]:
        """Delete a template and its entries from ``as_of`` onward.

        ``as_of`` defaults to the current month. Entries in earlier months
        stay as history with their template link cleared.
        """
        cutoff = as_of or MonthKey.of(local_today())

        def run() -> list[BillTemplate]:
            deleted = self.store.delete_template(template_id, keep_before=cutoff)
            logger.info(
                f"template_deleted: id={template_id} from={cutoff} entries={deleted}"
            )
            self.balances.refresh_from(cutoff.month, cutoff.year)
            return self.store.list_templates()

        return _guarded("delete_template", run)


class EntryService:
    def __init__(self, store: LedgerStore, balances: BalanceCalculator) -> None:
        self.store = store
        self.balances = balances

    def get(self, entry_id: int) -> Entry:
        entry = self.store.get_entry(entry_id)
        if entry is None:
            raise NotFound(f"Entry {entry_id} not found")
        return entry

    def list_month(self, month: int, year: int) -> list[Entry]:
        return ledger_order(self.store.list_entries_for_month(month, year))

    def upcoming(self, days: int = 7, today: Optional[date] = None) -> list[Entry]:
        start = today or local_today()
        return self.store.list_unpaid_due_between(start, start + timedelta(days=days))

    def _settle(self, key: MonthKey, touched_paid: bool) -> MonthLedger:
        if touched_paid:
            self.balances.refresh_from(key.month, key.year)
        return self.balances.month_ledger(key.month, key.year)

    def add_one_time(self, data: EntryIn) -> OperationResult[MonthLedger]:
        def run() -> MonthLedger:
            key = MonthKey.of(data.due_date)
            display_order = data.display_order
            if display_order is None:
                display_order = len(
                    self.store.list_entries_for_month(key.month, key.year)
                )
            paid_at = None
            if data.is_paid:
                paid_at = data.actual_payment_date or local_now()
            entry = self.store.insert_entry(
                Entry(
                    template_id=None,
                    month=key.month,
                    year=key.year,
                    title=data.title,
                    amount_cents=data.amount_cents,
                    is_income=data.is_income,
                    is_paid=data.is_paid,
                    due_date=data.due_date,
                    actual_payment_date=paid_at,
                    display_order=display_order,
                    category=data.category,
                    notes=data.notes,
                )
            )
            logger.info(
                f"entry_added: id={entry.id} month={key} paid={entry.is_paid}"
            )
            return self._settle(key, entry.is_paid)

        return _guarded("add_one_time", run)

    def update(
        self, entry_id: int, data: EntryUpdate
    ) -> OperationResult[MonthLedger]:
        def run() -> MonthLedger:
            entry = self.get(entry_id)
            old_key = MonthKey(entry.year, entry.month)
            fields = data.model_dump(exclude_none=True)
            if "due_date" in fields:
                new_key = MonthKey.of(fields["due_date"])
                fields["month"] = new_key.month
                fields["year"] = new_key.year
            else:
                new_key = old_key
            updated = self.store.update_entry(entry_id, **fields)
            if entry.is_paid:
                start = min(old_key, new_key)
                self.balances.refresh_from(start.month, start.year)
            return self.balances.month_ledger(updated.month, updated.year)

        return _guarded("update_entry", run)

    def mark_paid(
        self, entry_id: int, paid_at: Optional[datetime] = None
    ) -> OperationResult[MonthLedger]:
        def run() -> MonthLedger:
            entry = self.store.update_entry(
                entry_id, is_paid=True, actual_payment_date=paid_at or local_now()
            )
            logger.info(f"entry_paid: id={entry.id} at={entry.actual_payment_date}")
            return self._settle(MonthKey(entry.year, entry.month), True)

        return _guarded("mark_paid", run)

    def mark_unpaid(self, entry_id: int) -> OperationResult[MonthLedger]:
        def run() -> MonthLedger:
            was_paid = self.get(entry_id).is_paid
            entry = self.store.update_entry(
                entry_id, is_paid=False, actual_payment_date=None
            )
            logger.info(f"entry_unpaid: id={entry.id}")
            return self._settle(MonthKey(entry.year, entry.month), was_paid)

        return _guarded("mark_unpaid", run)

    def toggle_paid(self, entry_id: int) -> OperationResult[MonthLedger]:
        try:
            entry = self.get(entry_id)
        except LedgerError as exc:
            logger.error(f"toggle_paid failed: {exc}")
            return OperationResult.failure(exc)
        if entry.is_paid:
            return self.mark_unpaid(entry_id)
        return self.mark_paid(entry_id)

    def delete(self, entry_id: int) -> OperationResult[MonthLedger]:
        def run() -> MonthLedger:
            entry = self.store.delete_entry(entry_id)
            logger.info(f"entry_deleted: id={entry_id}")
            return self._settle(MonthKey(entry.year, entry.month), entry.is_paid)

        return _guarded("delete_entry", run)

    def reorder_unpaid(
        self, month: int, year: int, entry_ids: list[int]
    ) -> OperationResult[list[Entry]]:
        """Rewrite the display order of a month's unpaid entries.

        ``entry_ids`` must list every unpaid entry of the month exactly once.
        """

        def run() -> list[Entry]:
            month_entries = self.store.list_entries_for_month(month, year)
            entries = {e.id: e for e in month_entries}
            for entry_id in entry_ids:
                entry = entries.get(entry_id)
                if entry is None:
                    raise InvalidOperation(
                        f"Entry {entry_id} is not in {MonthKey(year, month)}"
                    )
                if entry.is_paid:
                    raise InvalidOperation(f"Entry {entry_id} is paid; order is fixed")
            unpaid_ids = {e.id for e in entries.values() if not e.is_paid}
            if len(entry_ids) != len(set(entry_ids)) or set(entry_ids) != unpaid_ids:
                raise InvalidOperation("Reorder must list every unpaid entry once")
            self.store.update_entries(
                {
                    entry_id: {"display_order": index}
                    for index, entry_id in enumerate(entry_ids)
                }
            )
            return self.list_month(month, year)

        return _guarded("reorder_unpaid", run)

    def adjust_balance(
        self, target_balance_cents: int, now: Optional[datetime] = None
    ) -> OperationResult[int]:
        """Post a paid correction entry so the current balance equals the target."""

        def run() -> int:
            moment = now or local_now()
            current = self.balances.current_balance(moment.date())
            difference = target_balance_cents - current
            if difference == 0:
                return current
            key = MonthKey.of(moment.date())
            entry = self.store.insert_entry(
                Entry(
                    template_id=None,
                    month=key.month,
                    year=key.year,
                    title=BALANCE_CORRECTION_TITLE,
                    amount_cents=abs(difference),
                    is_income=difference > 0,
                    is_paid=True,
                    due_date=moment.date(),
                    actual_payment_date=moment,
                    display_order=BALANCE_CORRECTION_ORDER,
                    category=Category.other,
                    notes=(
                        "Manual balance adjustment from "
                        f"{format_cents(current)} to "
                        f"{format_cents(target_balance_cents)}"
                    ),
                )
            )
            logger.info(f"balance_adjusted: entry={entry.id} difference={difference}")
            self.balances.refresh_from(key.month, key.year)
            return self.balances.current_balance(moment.date())

        return _guarded("adjust_balance", run)


class SettingsService:
    def __init__(self, store: LedgerStore) -> None:
        self.store = store

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self.store.get_setting(key)
        return default if value is None else value

    def set(self, key: str, value: str) -> OperationResult[None]:
        return _guarded(
            f"set_setting {key}", lambda: self.store.put_setting(key, value)
        )


class MaintenanceService:
    def __init__(self, store: LedgerStore) -> None:
        self.store = store

    def delete_entries_before(self, month: int, year: int) -> OperationResult[int]:
        def run() -> int:
            deleted = self.store.delete_entries_before(month, year)
            # the walk now starts at a later month, so every snapshot is stale
            self.store.clear_snapshots()
            logger.info(
                f"entries_pruned: before={MonthKey(year, month)} deleted={deleted}"
            )
            return deleted

        return _guarded("delete_entries_before", run)

    def clear_balance_cache(self) -> OperationResult[int]:
        return _guarded("clear_balance_cache", self.store.clear_snapshots)

    def reset(self) -> OperationResult[None]:
        return _guarded("reset", self.store.reset)


class Ledger:
    """Wires the services around one explicitly constructed store."""

    def __init__(self, store: LedgerStore) -> None:
        self.store = store
        self.balances = BalanceCalculator(store)
        self.materializer = MonthMaterializer(store)
        self.templates = TemplateService(store, self.balances)
        self.entries = EntryService(store, self.balances)
        self.settings = SettingsService(store)
        self.maintenance = MaintenanceService(store)

    @classmethod
    def from_settings(cls) -> Ledger:
        store = LedgerStore.from_url(get_settings().database_url)
        store.create_schema()
        return cls(store)

    def open_month(self, month: int, year: int) -> OperationResult[MonthLedger]:
        """Materialize a month and return its entries with balances."""
        generated = self.materializer.ensure_month(month, year)
        if not generated.ok:
            return OperationResult.failure(generated.error)
        return _guarded(
            f"open_month {MonthKey(year, month)}",
            lambda: self.balances.month_ledger(month, year),
        )

    def balance_up_to(self, month: int, year: int) -> OperationResult[int]:
        return _guarded(
            "balance_up_to", lambda: self.balances.balance_up_to(month, year)
        )

    def current_balance(self, today: Optional[date] = None) -> OperationResult[int]:
        return _guarded(
            "current_balance", lambda: self.balances.current_balance(today)
        )

    def materialize_ahead(
        self, today: Optional[date] = None, months_ahead: int = 0
    ) -> int:
        """Materialize the current month and ``months_ahead`` following ones.

        Returns how many months were materialized successfully.
        """
        start = MonthKey.of(today or local_today())
        done = 0
        for offset in range(months_ahead + 1):
            key = start.shift(offset)
            if self.materializer.ensure_month(key.month, key.year).ok:
                done += 1
                self.settings.set(
                    LAST_MATERIALIZED_KEY, f"{key.year:04d}-{key.month:02d}"
                )
        return done
