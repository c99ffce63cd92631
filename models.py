from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    PrimaryKeyConstraint,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


class Frequency(str, Enum):
    one_time = "one_time"
    weekly = "weekly"
    biweekly = "biweekly"
    monthly = "monthly"
    bimonthly = "bimonthly"
    semi_monthly = "semi_monthly"
    custom_days = "custom_days"
    yearly = "yearly"


DAY_OF_MONTH_FREQUENCIES = frozenset(
    {Frequency.monthly, Frequency.bimonthly, Frequency.yearly}
)
ANCHORED_FREQUENCIES = frozenset({Frequency.weekly, Frequency.biweekly})


class Category(str, Enum):
    housing = "housing"
    utilities = "utilities"
    transportation = "transportation"
    insurance = "insurance"
    food = "food"
    entertainment = "entertainment"
    healthcare = "healthcare"
    debt = "debt"
    savings = "savings"
    income = "income"
    other = "other"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )


class BillTemplate(Base, TimestampMixin):
    __tablename__ = "bill_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    is_income: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    frequency: Mapped[Frequency] = mapped_column(SAEnum(Frequency), nullable=False)
    category: Mapped[Category] = mapped_column(
        SAEnum(Category), default=Category.other, nullable=False
    )
    notes: Mapped[str] = mapped_column(Text, default="", nullable=False)
    due_day: Mapped[Optional[int]] = mapped_column(Integer)
    start_date: Mapped[Optional[date]] = mapped_column(Date)
    semi_day1: Mapped[Optional[int]] = mapped_column(Integer)
    semi_day2: Mapped[Optional[int]] = mapped_column(Integer)

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_template_amount_positive"),
        CheckConstraint(
            "due_day IS NULL OR (due_day BETWEEN 1 AND 31)",
            name="ck_template_due_day_range",
        ),
    )

    def __repr__(self) -> str:
        return f"<BillTemplate {self.id} {self.title!r} {self.frequency.value}>"


class Entry(Base, TimestampMixin):
    __tablename__ = "entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    template_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("bill_templates.id", ondelete="SET NULL")
    )
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    is_income: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    actual_payment_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    category: Mapped[Category] = mapped_column(
        SAEnum(Category), default=Category.other, nullable=False
    )
    notes: Mapped[str] = mapped_column(Text, default="", nullable=False)

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_entry_amount_positive"),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_entry_month_range"),
        Index("ix_entries_year_month", "year", "month"),
        Index("ix_entries_template_year_month", "template_id", "year", "month"),
        Index("ix_entries_unpaid_due", "is_paid", "due_date"),
    )

    @property
    def signed_amount_cents(self) -> int:
        return self.amount_cents if self.is_income else -self.amount_cents

    def __repr__(self) -> str:
        state = "paid" if self.is_paid else "unpaid"
        return f"<Entry {self.id} {self.title!r} {self.due_date} {state}>"


class Setting(Base):
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)


class MonthBalance(Base):
    __tablename__ = "month_balances"

    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    ending_balance_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        PrimaryKeyConstraint("month", "year", name="pk_month_balances"),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_balance_month_range"),
    )
