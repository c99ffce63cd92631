from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime
from typing import Iterable, Iterator, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from database import Base, build_engine, build_session_factory, session_scope
from errors import MalformedData, NotFound, PersistenceFailure
from models import BillTemplate, Entry, MonthBalance, Setting
from periods import MonthKey

logger = logging.getLogger(__name__)

TEMPLATE_FIELDS = (
    "title",
    "amount_cents",
    "is_income",
    "frequency",
    "category",
    "notes",
    "due_day",
    "start_date",
    "semi_day1",
    "semi_day2",
)
ENTRY_FIELDS = (
    "template_id",
    "month",
    "year",
    "title",
    "amount_cents",
    "is_income",
    "is_paid",
    "due_date",
    "actual_payment_date",
    "display_order",
    "category",
    "notes",
)


def _month_ordinal(column_year, column_month):
    return column_year * 12 + column_month


class LedgerStore:
    """Durable templates, entries, settings and month-balance snapshots.

    Each public method runs in its own session: a write either commits
    completely or is rolled back. SQLAlchemy errors surface as
    ``PersistenceFailure``; rows that cannot be decoded as ``MalformedData``.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self.session_factory = session_factory

    @classmethod
    def from_url(cls, database_url: str) -> LedgerStore:
        return cls.from_engine(build_engine(database_url))

    @classmethod
    def from_engine(cls, engine: Engine) -> LedgerStore:
        return cls(build_session_factory(engine))

    def create_schema(self) -> None:
        bind = self.session_factory.kw["bind"]
        Base.metadata.create_all(bind)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with session_scope(self.session_factory) as session:
                yield session
        except LookupError as exc:
            if isinstance(exc, NotFound):
                raise
            # SQLAlchemy raises LookupError for enum values it cannot map
            raise MalformedData(str(exc)) from exc
        except SQLAlchemyError as exc:
            logger.error("store_failure: %s", exc)
            raise PersistenceFailure(str(exc)) from exc

    # Templates

    def insert_template(self, template: BillTemplate) -> BillTemplate:
        with self._session() as session:
            session.add(template)
            session.flush()
        return template

    def get_template(self, template_id: int) -> Optional[BillTemplate]:
        with self._session() as session:
            return session.get(BillTemplate, template_id)

    def list_templates(self) -> list[BillTemplate]:
        with self._session() as session:
            stmt = select(BillTemplate).order_by(
                BillTemplate.created_at, BillTemplate.id
            )
            return list(session.scalars(stmt).all())

    def update_template(self, template_id: int, **fields: object) -> BillTemplate:
        with self._session() as session:
            template = session.get(BillTemplate, template_id)
            if template is None:
                raise NotFound(f"Template {template_id} not found")
            for field, value in fields.items():
                if field not in TEMPLATE_FIELDS:
                    raise ValueError(f"Unknown template field: {field}")
                setattr(template, field, value)
        return template

    def delete_template(
        self, template_id: int, *, keep_before: Optional[MonthKey] = None
    ) -> int:
        """Delete a template together with its entries.

        Entries in months before ``keep_before`` are kept and detached from
        the template. Returns the number of deleted entries.
        """
        with self._session() as session:
            template = session.get(BillTemplate, template_id)
            if template is None:
                raise NotFound(f"Template {template_id} not found")
            ordinal = _month_ordinal(Entry.year, Entry.month)
            delete_stmt = delete(Entry).where(Entry.template_id == template_id)
            if keep_before is not None:
                delete_stmt = delete_stmt.where(ordinal >= keep_before.ordinal)
                session.execute(
                    update(Entry)
                    .where(
                        Entry.template_id == template_id,
                        ordinal < keep_before.ordinal,
                    )
                    .values(template_id=None)
                )
            deleted = session.execute(delete_stmt).rowcount or 0
            session.delete(template)
        return int(deleted)

    # Entries

    def insert_entry(self, entry: Entry) -> Entry:
        return self.insert_entries([entry])[0]

    def insert_entries(self, entries: Iterable[Entry]) -> list[Entry]:
        rows = list(entries)
        with self._session() as session:
            session.add_all(rows)
            session.flush()
        return rows

    def get_entry(self, entry_id: int) -> Optional[Entry]:
        with self._session() as session:
            return session.get(Entry, entry_id)

    def update_entry(self, entry_id: int, **fields: object) -> Entry:
        with self._session() as session:
            entry = session.get(Entry, entry_id)
            if entry is None:
                raise NotFound(f"Entry {entry_id} not found")
            for field, value in fields.items():
                if field not in ENTRY_FIELDS:
                    raise ValueError(f"Unknown entry field: {field}")
                setattr(entry, field, value)
        return entry

    def update_entries(self, updates: dict[int, dict[str, object]]) -> None:
        """Apply several entry updates in one transaction."""
        with self._session() as session:
            for entry_id, fields in updates.items():
                entry = session.get(Entry, entry_id)
                if entry is None:
                    raise NotFound(f"Entry {entry_id} not found")
                for field, value in fields.items():
                    if field not in ENTRY_FIELDS:
                        raise ValueError(f"Unknown entry field: {field}")
                    setattr(entry, field, value)

    def delete_entry(self, entry_id: int) -> Entry:
        with self._session() as session:
            entry = session.get(Entry, entry_id)
            if entry is None:
                raise NotFound(f"Entry {entry_id} not found")
            session.delete(entry)
        return entry

    def list_entries_for_month(self, month: int, year: int) -> list[Entry]:
        with self._session() as session:
            stmt = (
                select(Entry)
                .where(Entry.month == month, Entry.year == year)
                .order_by(Entry.display_order, Entry.id)
            )
            return list(session.scalars(stmt).all())

    def list_paid_entries_for_month(self, month: int, year: int) -> list[Entry]:
        """Paid entries of a month in payment order, ties broken by insertion."""
        with self._session() as session:
            stmt = (
                select(Entry)
                .where(
                    Entry.month == month,
                    Entry.year == year,
                    Entry.is_paid.is_(True),
                )
                .order_by(Entry.actual_payment_date, Entry.id)
            )
            return list(session.scalars(stmt).all())

    def list_unpaid_due_between(self, start: date, end: date) -> list[Entry]:
        with self._session() as session:
            stmt = (
                select(Entry)
                .where(
                    Entry.is_paid.is_(False),
                    Entry.due_date >= start,
                    Entry.due_date <= end,
                )
                .order_by(Entry.due_date, Entry.display_order, Entry.id)
            )
            return list(session.scalars(stmt).all())

    def earliest_entry_month(self) -> Optional[MonthKey]:
        with self._session() as session:
            ordinal = session.execute(
                select(func.min(_month_ordinal(Entry.year, Entry.month)))
            ).scalar_one_or_none()
        if ordinal is None:
            return None
        return MonthKey.from_ordinal(int(ordinal))

    def delete_entries_before(self, month: int, year: int) -> int:
        cutoff = MonthKey(year, month).ordinal
        with self._session() as session:
            result = session.execute(
                delete(Entry).where(_month_ordinal(Entry.year, Entry.month) < cutoff)
            )
            return int(result.rowcount or 0)

    # Snapshots

    @staticmethod
    def _snapshot_row(
        session: Session, month: int, year: int
    ) -> Optional[MonthBalance]:
        return session.scalar(
            select(MonthBalance).where(
                MonthBalance.month == month, MonthBalance.year == year
            )
        )

    def get_snapshot(self, month: int, year: int) -> Optional[int]:
        with self._session() as session:
            row = self._snapshot_row(session, month, year)
            return None if row is None else int(row.ending_balance_cents)

    def put_snapshot(self, month: int, year: int, balance_cents: int) -> None:
        with self._session() as session:
            row = self._snapshot_row(session, month, year)
            if row is None:
                session.add(
                    MonthBalance(
                        month=month,
                        year=year,
                        ending_balance_cents=balance_cents,
                        last_updated=datetime.utcnow(),
                    )
                )
            else:
                row.ending_balance_cents = balance_cents
                row.last_updated = datetime.utcnow()

    def delete_snapshots_from(self, month: int, year: int) -> int:
        cutoff = MonthKey(year, month).ordinal
        with self._session() as session:
            result = session.execute(
                delete(MonthBalance).where(
                    _month_ordinal(MonthBalance.year, MonthBalance.month) >= cutoff
                )
            )
            return int(result.rowcount or 0)

    def clear_snapshots(self) -> int:
        with self._session() as session:
            return int(session.execute(delete(MonthBalance)).rowcount or 0)

    def list_snapshots(self) -> list[MonthBalance]:
        with self._session() as session:
            stmt = select(MonthBalance).order_by(MonthBalance.year, MonthBalance.month)
            return list(session.scalars(stmt).all())

    # Settings

    def get_setting(self, key: str) -> Optional[str]:
        with self._session() as session:
            row = session.get(Setting, key)
            return None if row is None else row.value

    def put_setting(self, key: str, value: str) -> None:
        with self._session() as session:
            row = session.get(Setting, key)
            if row is None:
                session.add(Setting(key=key, value=value))
            else:
                row.value = value

    def reset(self) -> None:
        with self._session() as session:
            session.execute(delete(Entry))
            session.execute(delete(BillTemplate))
            session.execute(delete(Setting))
            session.execute(delete(MonthBalance))
