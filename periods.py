from dataclasses import dataclass
from datetime import date
from typing import Optional


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def month_start(d: date) -> date:
    return d.replace(day=1)


def month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


def add_months(year: int, month: int, count: int) -> tuple[int, int]:
    total = year * 12 + (month - 1) + count
    return total // 12, total % 12 + 1


def horizon_months(start: date, months: int) -> list[tuple[int, int]]:
    """(year, month) keys for ``months`` calendar months beginning at ``start``'s month."""
    return [add_months(start.year, start.month, i) for i in range(max(months, 0))]


def horizon_period(start: date, months: int) -> Optional[Period]:
    keys = horizon_months(start, months)
    if not keys:
        return None
    last_year, last_month = keys[-1]
    return Period(
        f"{months}m", month_start(start), month_end(last_year, last_month)
    )


def parse_month(value: str) -> date:
    """Parse ``YYYY-MM`` (or a full ISO date) into the first day of that month."""
    value = value.strip()
    if len(value) == 7:
        value = f"{value}-01"
    return month_start(date.fromisoformat(value))


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Period:
    today = today or date.today()
    if not period or period == "all":
        return Period("all", date(1970, 1, 1), today)
    if period == "last_month":
        first_this = month_start(today)
        last_month_end = first_this - date.resolution
        return Period("last_month", month_start(last_month_end), last_month_end)
    if period == "this_year":
        return Period("this_year", date(today.year, 1, 1), date(today.year, 12, 31))
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)

    # this month
    return Period("this_month", month_start(today), month_end(today.year, today.month))
