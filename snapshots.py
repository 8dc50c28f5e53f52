"""Adapters that turn stored records into forecast engine inputs."""

import logging
from typing import Any, Callable, Iterable, Mapping, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from forecast import LedgerEntry, MaterializedPayment, RecurringSeries
from models import FinancialEntry, Subscription, SubscriptionPayment
from schemas import LedgerRow, PaymentRow, SeriesRow, decimal_to_cents

logger = logging.getLogger(__name__)

T = TypeVar("T")
RowErrors = list[tuple[int, str]]


def ledger_entry_from_model(entry: FinancialEntry) -> LedgerEntry:
    return LedgerEntry(
        id=entry.id,
        direction=entry.type,
        amount_cents=entry.amount_cents,
        payment_status=entry.payment_status,
        due_date=entry.due_date,
        remaining_cents=entry.remaining_cents,
        origin_payment_id=entry.origin_payment_id,
        description=entry.description,
        customer_name=entry.customer_name,
    )


def series_from_model(
    subscription: Subscription, default_billing_day: Optional[int] = None
) -> RecurringSeries:
    return RecurringSeries(
        id=subscription.id,
        monthly_amount_cents=subscription.monthly_amount_cents,
        start_date=subscription.start_date,
        end_date=subscription.end_date,
        billing_day=subscription.billing_day or default_billing_day,
        active=subscription.is_active,
        direction=subscription.type,
        title=subscription.title,
        customer_name=subscription.customer_name,
    )


def payment_from_model(payment: SubscriptionPayment) -> MaterializedPayment:
    return MaterializedPayment(
        id=payment.id,
        series_id=payment.subscription_id,
        year=payment.year,
        month=payment.month,
        amount_cents=payment.amount_cents,
        status=payment.status,
        is_skipped=payment.is_skipped,
        ledger_entry_id=payment.financial_entry_id,
    )


def _ledger_from_row(row: LedgerRow) -> LedgerEntry:
    return LedgerEntry(
        id=row.id,
        direction=row.type,
        amount_cents=decimal_to_cents(row.amount),
        payment_status=row.payment_status,
        due_date=row.due_date,
        remaining_cents=(
            None if row.remaining_amount is None else decimal_to_cents(row.remaining_amount)
        ),
        origin_payment_id=row.origin_payment_id,
        description=row.description,
        customer_name=row.customer_name,
    )


def _series_from_row(row: SeriesRow) -> RecurringSeries:
    return RecurringSeries(
        id=row.id,
        monthly_amount_cents=decimal_to_cents(row.monthly_value),
        start_date=row.start_date,
        end_date=row.end_date,
        billing_day=row.payment_day,
        active=row.is_active,
        direction=row.type,
        title=row.title,
        customer_name=row.customer_name,
    )


def _payment_from_row(row: PaymentRow) -> MaterializedPayment:
    return MaterializedPayment(
        id=row.id,
        series_id=row.subscription_id,
        year=row.year,
        month=row.month,
        amount_cents=decimal_to_cents(row.amount),
        status=row.payment_status,
        is_skipped=row.is_skipped,
        ledger_entry_id=row.financial_entry_id,
    )


def _parse_rows(
    rows: Iterable[Mapping[str, Any]],
    schema: type[BaseModel],
    convert: Callable[[Any], T],
    kind: str,
) -> tuple[list[T], RowErrors]:
    parsed: list[T] = []
    errors: RowErrors = []
    for idx, raw in enumerate(rows):
        try:
            parsed.append(convert(schema.model_validate(raw)))
        except ValidationError as exc:
            message = "; ".join(err["msg"] for err in exc.errors())
            errors.append((idx, message))
            logger.warning(f"snapshot_row_rejected: kind={kind} index={idx} error={message}")
    return parsed, errors


def ledger_entries_from_rows(
    rows: Iterable[Mapping[str, Any]],
) -> tuple[list[LedgerEntry], RowErrors]:
    return _parse_rows(rows, LedgerRow, _ledger_from_row, "ledger")


def series_from_rows(
    rows: Iterable[Mapping[str, Any]],
) -> tuple[list[RecurringSeries], RowErrors]:
    return _parse_rows(rows, SeriesRow, _series_from_row, "series")


def payments_from_rows(
    rows: Iterable[Mapping[str, Any]],
) -> tuple[list[MaterializedPayment], RowErrors]:
    return _parse_rows(rows, PaymentRow, _payment_from_row, "payment")
