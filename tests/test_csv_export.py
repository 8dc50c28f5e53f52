import csv
from datetime import date
from io import StringIO

from csv_utils import export_forecast, format_cents, sanitize_csv_value
from forecast import LedgerEntry, RecurringSeries, compute_forecast
from models import EntryType, PaymentStatus


def test_export_lists_each_entry_under_its_month() -> None:
    series = RecurringSeries(
        id=1,
        monthly_amount_cents=5_000,
        start_date=date(2024, 1, 1),
        billing_day=10,
        title="Hosting",
        customer_name="Acme",
    )
    entry = LedgerEntry(
        id=7,
        direction=EntryType.income,
        amount_cents=1_250,
        payment_status=PaymentStatus.pending,
        due_date=date(2024, 2, 3),
        description="=HYPERLINK(\"http://evil\")",
    )
    buckets = compute_forecast([entry], [series], [], 2, start=date(2024, 1, 1))

    rows = list(csv.reader(StringIO(export_forecast(buckets))))

    assert rows[0] == [
        "Month", "DueDate", "Source", "Description", "Customer", "Status", "Amount"
    ]
    assert rows[1] == ["2024-01", "2024-01-10", "series", "Hosting", "Acme", "pending", "50.00"]
    assert rows[2][:3] == ["2024-02", "2024-02-03", "ledger"]
    assert rows[2][3].startswith("\t=")
    assert rows[2][6] == "12.50"
    assert rows[3][:3] == ["2024-02", "2024-02-10", "series"]
    assert len(rows) == 4


def test_sanitize_csv_value() -> None:
    assert sanitize_csv_value("  ") == ""
    assert sanitize_csv_value("Acme") == "Acme"
    assert sanitize_csv_value("+55 11") == "\t+55 11"
    assert sanitize_csv_value("https://example.com") == "\thttps://example.com"


def test_format_cents() -> None:
    assert format_cents(0) == "0.00"
    assert format_cents(123_456) == "1234.56"
