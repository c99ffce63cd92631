from dataclasses import dataclass
from datetime import date
from typing import Iterator


@dataclass(frozen=True, order=True)
class MonthKey:
    """A calendar month. Ordering follows ``ordinal`` (``year * 12 + month``)."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"Month out of range: {self.month}")

    @classmethod
    def of(cls, value: date) -> "MonthKey":
        return cls(value.year, value.month)

    @classmethod
    def from_ordinal(cls, ordinal: int) -> "MonthKey":
        year, month_index = divmod(ordinal - 1, 12)
        return cls(year, month_index + 1)

    @property
    def ordinal(self) -> int:
        return self.year * 12 + self.month

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        return self.next().start - date.resolution

    def previous(self) -> "MonthKey":
        if self.month == 1:
            return MonthKey(self.year - 1, 12)
        return MonthKey(self.year, self.month - 1)

    def next(self) -> "MonthKey":
        if self.month == 12:
            return MonthKey(self.year + 1, 1)
        return MonthKey(self.year, self.month + 1)

    def shift(self, months: int) -> "MonthKey":
        return MonthKey.from_ordinal(self.ordinal + months)

    def __str__(self) -> str:
        return f"{self.month:02d}/{self.year}"


def iter_months(start: MonthKey, stop: MonthKey) -> Iterator[MonthKey]:
    """Yield months from ``start`` up to but excluding ``stop``."""
    current = start
    while current < stop:
        yield current
        current = current.next()
