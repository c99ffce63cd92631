from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from config import get_settings
from errors import InvalidTemplateSchedule
from models import (
    ANCHORED_FREQUENCIES,
    DAY_OF_MONTH_FREQUENCIES,
    BillTemplate,
    Frequency,
)
from periods import MonthKey

BIWEEKLY_CYCLE_DAYS = 14


def local_now() -> datetime:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).replace(tzinfo=None)


def local_today() -> date:
    return local_now().date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def _clamped(year: int, month: int, day: int) -> date:
    return date(year, month, min(day, days_in_month(year, month)))


def validate_schedule(template: BillTemplate) -> None:
    """Raise InvalidTemplateSchedule when the frequency's fields are unusable."""
    freq = template.frequency
    if freq in DAY_OF_MONTH_FREQUENCIES:
        if template.due_day is None or not 1 <= template.due_day <= 31:
            raise InvalidTemplateSchedule(
                f"{freq.value} template needs a due_day between 1 and 31"
            )
    elif freq == Frequency.semi_monthly:
        for day in (template.semi_day1, template.semi_day2):
            if day is None or not 1 <= day <= 31:
                raise InvalidTemplateSchedule(
                    "semi_monthly template needs two days between 1 and 31"
                )
    elif freq in ANCHORED_FREQUENCIES:
        if template.start_date is None:
            raise InvalidTemplateSchedule(f"{freq.value} template needs a start_date")


def _weekly_dates(anchor: date, key: MonthKey) -> list[date]:
    offset = (anchor.weekday() - key.start.weekday()) % 7
    current = key.start + timedelta(days=offset)
    dates = []
    while current.month == key.month:
        dates.append(current)
        current += timedelta(weeks=1)
    return dates


def _biweekly_dates(anchor: date, key: MonthKey) -> list[date]:
    # Python's modulo is non-negative, so this works for anchors on either side.
    offset = (anchor - key.start).days % BIWEEKLY_CYCLE_DAYS
    current = key.start + timedelta(days=offset)
    stop = key.next().start
    dates = []
    while current < stop:
        dates.append(current)
        current += timedelta(days=BIWEEKLY_CYCLE_DAYS)
    return dates


def due_dates_for_month(template: BillTemplate, month: int, year: int) -> list[date]:
    """Due dates of ``template`` inside the given month, sorted and unique.

    Templates whose scheduling fields are missing or out of range produce no
    dates. ``bimonthly`` and ``yearly`` resolve like ``monthly``: one date per
    calendar month on the (clamped) due day.
    """
    try:
        validate_schedule(template)
    except InvalidTemplateSchedule:
        return []

    key = MonthKey(year, month)
    freq = template.frequency
    dates: list[date]
    if freq in DAY_OF_MONTH_FREQUENCIES:
        dates = [_clamped(year, month, template.due_day)]
    elif freq == Frequency.semi_monthly:
        dates = [
            _clamped(year, month, template.semi_day1),
            _clamped(year, month, template.semi_day2),
        ]
    elif freq == Frequency.weekly:
        dates = _weekly_dates(template.start_date, key)
    elif freq == Frequency.biweekly:
        dates = _biweekly_dates(template.start_date, key)
    else:
        dates = []
    return sorted(set(dates))

