import csv
import re
from io import StringIO
from typing import Sequence

from forecast import MonthBucket


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^sh\s*",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def format_cents(cents: int) -> str:
    return f"{cents / 100:.2f}"


def export_forecast(buckets: Sequence[MonthBucket]) -> str:
    """One row per forecast entry, grouped by month in bucket order."""
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(
        ["Month", "DueDate", "Source", "Description", "Customer", "Status", "Amount"]
    )
    for bucket in buckets:
        for entry in bucket.entries:
            writer.writerow(
                [
                    bucket.label,
                    entry.due_date.isoformat(),
                    entry.source,
                    sanitize_csv_value(entry.description or ""),
                    sanitize_csv_value(entry.customer_name or ""),
                    entry.status,
                    format_cents(entry.amount_cents),
                ]
            )
    return output.getvalue()
