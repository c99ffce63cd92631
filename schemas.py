import datetime as dt
from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import (
    ANCHORED_FREQUENCIES,
    DAY_OF_MONTH_FREQUENCIES,
    Category,
    Frequency,
)


class BillTemplateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1, max_length=120)
    amount_cents: int = Field(..., ge=0)
    is_income: bool = False
    frequency: Frequency
    category: Category = Category.other
    notes: str = Field(default="", max_length=2000)
    due_day: Optional[int] = Field(default=None, ge=1, le=31)
    start_date: Optional[date] = None
    semi_day1: Optional[int] = Field(default=None, ge=1, le=28)
    semi_day2: Optional[int] = Field(default=None, ge=1, le=28)

    @model_validator(mode="after")
    def _check_schedule_fields(self) -> "BillTemplateIn":
        if self.frequency in DAY_OF_MONTH_FREQUENCIES and self.due_day is None:
            raise ValueError(f"{self.frequency.value} templates require due_day")
        if self.frequency in ANCHORED_FREQUENCIES and self.start_date is None:
            raise ValueError(f"{self.frequency.value} templates require start_date")
        if self.frequency == Frequency.semi_monthly and (
            self.semi_day1 is None or self.semi_day2 is None
        ):
            raise ValueError("semi_monthly templates require semi_day1 and semi_day2")
        return self


class EntryIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1, max_length=120)
    amount_cents: int = Field(..., ge=0)
    is_income: bool = False
    due_date: date
    category: Category = Category.other
    notes: str = Field(default="", max_length=2000)
    is_paid: bool = False
    actual_payment_date: Optional[dt.datetime] = None
    display_order: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_payment(self) -> "EntryIn":
        if self.actual_payment_date is not None and not self.is_paid:
            raise ValueError("actual_payment_date requires is_paid")
        return self


class EntryUpdate(BaseModel):
    """Partial edit of an entry; ``None`` leaves the field unchanged."""

    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, min_length=1, max_length=120)
    amount_cents: Optional[int] = Field(default=None, ge=0)
    is_income: Optional[bool] = None
    due_date: Optional[date] = None
    category: Optional[Category] = None
    notes: Optional[str] = Field(default=None, max_length=2000)
