from datetime import date

import pytest

from periods import add_months, horizon_period, parse_month, resolve_period


def test_add_months_wraps_years() -> None:
    assert add_months(2024, 11, 3) == (2025, 2)
    assert add_months(2024, 1, -1) == (2023, 12)
    assert add_months(2024, 3, -14) == (2023, 1)


def test_horizon_period_spans_whole_months() -> None:
    period = horizon_period(date(2024, 1, 20), 2)
    assert period.start == date(2024, 1, 1)
    assert period.end == date(2024, 2, 29)
    assert horizon_period(date(2024, 1, 20), 0) is None


def test_parse_month() -> None:
    assert parse_month("2024-07") == date(2024, 7, 1)
    assert parse_month("2024-07-19") == date(2024, 7, 1)
    with pytest.raises(ValueError):
        parse_month("July")


def test_resolve_period() -> None:
    today = date(2024, 3, 15)
    assert resolve_period("last_month", None, None, today=today).start == date(2024, 2, 1)
    assert resolve_period("last_month", None, None, today=today).end == date(2024, 2, 29)
    assert resolve_period(None, None, None, today=today).slug == "all"
    this_month = resolve_period("this_month", None, None, today=today)
    assert (this_month.start, this_month.end) == (date(2024, 3, 1), date(2024, 3, 31))
    with pytest.raises(ValueError):
        resolve_period("custom", "2024-03-01", None, today=today)
    with pytest.raises(ValueError):
        resolve_period("custom", "2024-03-02", "2024-03-01", today=today)

