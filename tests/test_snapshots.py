from datetime import date

from forecast import compute_forecast
from models import CycleStatus, EntryType, PaymentStatus
from snapshots import ledger_entries_from_rows, payments_from_rows, series_from_rows


def test_ledger_rows_convert_decimal_amounts_to_cents() -> None:
    rows = [
        {
            "id": "e1",
            "type": "income",
            "amount": "200.00",
            "remaining_amount": "80.505",
            "due_date": "2024-03-10",
            "payment_status": "partial",
            "description": "Website",
            "created_by": "ignored",
        },
        {
            "id": "e2",
            "type": "expense",
            "amount": "12.30",
            "due_date": None,
            "payment_status": None,
        },
    ]

    entries, errors = ledger_entries_from_rows(rows)

    assert errors == []
    first, second = entries
    assert first.amount_cents == 20_000
    assert first.remaining_cents == 8_051
    assert first.due_date == date(2024, 3, 10)
    assert first.payment_status == PaymentStatus.partial
    assert second.direction == EntryType.expense
    assert second.amount_cents == 1_230
    assert second.payment_status == PaymentStatus.pending
    assert second.due_date is None


def test_invalid_rows_are_reported_and_skipped(caplog) -> None:
    rows = [
        {"id": 1, "type": "income", "amount": "10", "due_date": "2024-02-31"},
        {"id": 2, "type": "income", "amount": "-5", "due_date": "2024-02-01"},
        {"id": 3, "type": "refund", "amount": "5"},
        {"id": 4, "type": "income", "amount": "5", "due_date": "2024-02-01"},
    ]

    with caplog.at_level("WARNING"):
        entries, errors = ledger_entries_from_rows(rows)

    assert [e.id for e in entries] == [4]
    assert [idx for idx, _ in errors] == [0, 1, 2]
    assert "snapshot_row_rejected: kind=ledger index=0" in caplog.text


def test_series_and_payment_rows() -> None:
    series, series_errors = series_from_rows(
        [
            {
                "id": "s1",
                "monthly_value": "50.00",
                "start_date": "2024-01-01",
                "payment_day": 31,
                "title": "Hosting",
            },
            {"id": "s2", "monthly_value": "10", "start_date": "2024-01-01", "payment_day": 40},
        ]
    )
    payments, payment_errors = payments_from_rows(
        [
            {
                "id": "p1",
                "subscription_id": "s1",
                "year": 2024,
                "month": 2,
                "amount": "45.00",
                "payment_status": "pending",
                "is_skipped": None,
            },
            {
                "id": "p2",
                "subscription_id": "s1",
                "year": 2024,
                "month": 13,
                "amount": "45.00",
            },
        ]
    )

    assert [s.id for s in series] == ["s1"]
    assert [idx for idx, _ in series_errors] == [1]
    assert series[0].monthly_amount_cents == 5_000
    assert series[0].billing_day == 31
    assert [p.id for p in payments] == ["p1"]
    assert payments[0].is_skipped is False
    assert payments[0].status == CycleStatus.pending
    assert [idx for idx, _ in payment_errors] == [1]


def test_rows_feed_the_forecast_directly() -> None:
    ledger, _ = ledger_entries_from_rows(
        [
            {
                "id": "e1",
                "type": "income",
                "amount": "50.00",
                "due_date": "2024-02-15",
                "payment_status": "paid",
                "origin_payment_id": "p1",
            },
            {"id": "e2", "type": "income", "amount": "30", "due_date": "2024-02-03"},
        ]
    )
    series, _ = series_from_rows(
        [{"id": "s1", "monthly_value": "50", "start_date": "2024-01-01"}]
    )
    payments, _ = payments_from_rows(
        [
            {
                "id": "p1",
                "subscription_id": "s1",
                "year": 2024,
                "month": 2,
                "amount": "50",
                "payment_status": "paid",
                "financial_entry_id": "e1",
            }
        ]
    )

    buckets = compute_forecast(ledger, series, payments, 2, start=date(2024, 1, 1))

    assert [b.total_cents for b in buckets] == [5_000, 3_000]
    assert [e.id for e in buckets[1].entries] == ["e2"]
