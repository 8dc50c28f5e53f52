from datetime import date, datetime, timedelta
from typing import Iterator, Optional
from zoneinfo import ZoneInfo

from config import get_settings
from periods import add_months, month_end, month_start

DEFAULT_BILLING_DAY = 15


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    return month_end(year, month).day


def resolve_billing_date(year: int, month: int, billing_day: Optional[int]) -> date:
    """Due date of a cycle; a billing day past the month's end snaps to its last day."""
    day = billing_day or DEFAULT_BILLING_DAY
    if day < 1:
        raise ValueError(f"Invalid billing day {day}")
    return date(year, month, min(day, days_in_month(year, month)))


def last_business_day(year: int, month: int) -> date:
    day = month_end(year, month)
    while day.weekday() >= 5:
        day -= timedelta(days=1)
    return day


class BillingCycles:
    """Months in which a series bills, clipped to a horizon.

    Iterating yields ``(year, month)`` pairs from the month of
    ``max(start_date, horizon_start)`` through the month of
    ``min(end_date, horizon_end)``. Each ``iter()`` starts over.
    """

    def __init__(
        self,
        start_date: date,
        end_date: Optional[date],
        horizon_start: date,
        horizon_end: date,
    ) -> None:
        self.start_date = start_date
        self.end_date = end_date
        self.horizon_start = horizon_start
        self.horizon_end = horizon_end

    @property
    def first(self) -> date:
        return month_start(max(self.start_date, self.horizon_start))

    @property
    def last(self) -> date:
        if self.end_date is None:
            return self.horizon_end
        return min(self.end_date, self.horizon_end)

    def is_empty(self) -> bool:
        if self.end_date is not None and self.end_date < self.start_date:
            return True
        if self.start_date > self.horizon_end:
            return True
        return self.first > self.last

    def __iter__(self) -> Iterator[tuple[int, int]]:
        if self.is_empty():
            return
        year, month = self.first.year, self.first.month
        last = self.last
        while date(year, month, 1) <= last:
            yield year, month
            year, month = add_months(year, month, 1)

    def __len__(self) -> int:
        return sum(1 for _ in self)
