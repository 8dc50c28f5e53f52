"""Receivables forecast engine.

Merges one-off ledger entries with recurring subscription schedules into
month buckets of money still expected to move. Everything here is a pure
function of the snapshots passed in: no session, no clock, no caching.

Pipeline::

    ledger entries ──► dedup filter ───────────────┐
                                                   ├─► month bucketer
    series ──► billing cycles ──► resolver ────────┘

Amounts are integer cents throughout. Records that fail validation are
dropped (and logged at DEBUG) instead of failing the whole forecast.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime
from enum import Enum
from typing import ClassVar, Iterable, Optional, Sequence, Union

from models import CycleStatus, EntryType, PaymentStatus
from periods import horizon_months, horizon_period
from recurrence import BillingCycles, resolve_billing_date

logger = logging.getLogger(__name__)

RecordId = Union[int, str]
CycleKey = tuple[RecordId, int, int]


class ForecastMode(str, Enum):
    # amount still owed: paid obligations are left out
    outstanding = "outstanding"
    # everything due in the month, paid obligations included
    scheduled = "scheduled"


@dataclass(frozen=True)
class LedgerEntry:
    id: RecordId
    direction: EntryType
    amount_cents: int
    payment_status: PaymentStatus
    due_date: Optional[date] = None
    remaining_cents: Optional[int] = None
    origin_payment_id: Optional[RecordId] = None
    description: str = ""
    customer_name: Optional[str] = None


@dataclass(frozen=True)
class RecurringSeries:
    id: RecordId
    monthly_amount_cents: int
    start_date: date
    end_date: Optional[date] = None
    billing_day: Optional[int] = None
    active: bool = True
    direction: EntryType = EntryType.income
    title: str = ""
    customer_name: Optional[str] = None


@dataclass(frozen=True)
class MaterializedPayment:
    id: RecordId
    series_id: RecordId
    year: int
    month: int
    amount_cents: int
    status: CycleStatus
    is_skipped: bool = False
    ledger_entry_id: Optional[RecordId] = None

    @property
    def key(self) -> CycleKey:
        return (self.series_id, self.year, self.month)

    @property
    def skipped(self) -> bool:
        return self.is_skipped or self.status == CycleStatus.skipped


@dataclass(frozen=True)
class SeriesOccurrence:
    series_id: RecordId
    year: int
    month: int
    amount_cents: int
    status: CycleStatus
    due_date: date
    payment_id: Optional[RecordId] = None
    materialized_ledger_entry_id: Optional[RecordId] = None

    @property
    def key(self) -> CycleKey:
        return (self.series_id, self.year, self.month)


@dataclass(frozen=True)
class LedgerDerived:
    source: ClassVar[str] = "ledger"

    entry: LedgerEntry
    amount_cents: int

    @property
    def id(self) -> RecordId:
        return self.entry.id

    @property
    def due_date(self) -> Optional[date]:
        return self.entry.due_date

    @property
    def status(self) -> str:
        return self.entry.payment_status.value

    @property
    def is_paid(self) -> bool:
        return self.entry.payment_status == PaymentStatus.paid

    @property
    def description(self) -> str:
        return self.entry.description

    @property
    def customer_name(self) -> Optional[str]:
        return self.entry.customer_name

    def is_overdue(self, today: date) -> bool:
        return not self.is_paid and self.entry.due_date is not None and (
            self.entry.due_date < today
        )


@dataclass(frozen=True)
class SeriesDerived:
    source: ClassVar[str] = "series"

    occurrence: SeriesOccurrence
    series: RecurringSeries

    @property
    def id(self) -> RecordId:
        if self.occurrence.payment_id is not None:
            return self.occurrence.payment_id
        occ = self.occurrence
        return f"sub-{occ.series_id}-{occ.year:04d}-{occ.month:02d}"

    @property
    def amount_cents(self) -> int:
        return self.occurrence.amount_cents

    @property
    def due_date(self) -> date:
        return self.occurrence.due_date

    @property
    def status(self) -> str:
        return self.occurrence.status.value

    @property
    def is_paid(self) -> bool:
        return self.occurrence.status == CycleStatus.paid

    @property
    def description(self) -> str:
        return self.series.title

    @property
    def customer_name(self) -> Optional[str]:
        return self.series.customer_name

    def is_overdue(self, today: date) -> bool:
        # A cycle is only late once its whole month has gone by.
        occ = self.occurrence
        return not self.is_paid and (occ.year, occ.month) < (today.year, today.month)


ResolvedObligation = Union[LedgerDerived, SeriesDerived]


@dataclass(frozen=True)
class MonthBucket:
    year: int
    month: int
    total_cents: int = 0
    outstanding_cents: int = 0
    overdue_cents: int = 0
    entries: tuple[ResolvedObligation, ...] = ()

    @property
    def month_key(self) -> tuple[int, int]:
        return (self.year, self.month)

    @property
    def label(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


def _coerce_date(value: object) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value.strip()[:10])
    raise ValueError(f"not a date: {value!r}")


def _is_cents(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def clean_ledger_entry(entry: LedgerEntry) -> Optional[LedgerEntry]:
    """Normalized copy of ``entry``, or None when it cannot be forecast."""
    try:
        direction = EntryType(entry.direction)
        status = PaymentStatus(entry.payment_status)
        due = None if entry.due_date is None else _coerce_date(entry.due_date)
    except ValueError as exc:
        logger.debug(f"forecast_skip: ledger id={entry.id} reason={exc}")
        return None
    if not _is_cents(entry.amount_cents):
        logger.debug(f"forecast_skip: ledger id={entry.id} reason=bad_amount")
        return None
    remaining = entry.remaining_cents
    if remaining is not None and (
        not _is_cents(remaining) or remaining > entry.amount_cents
    ):
        logger.debug(f"forecast_skip: ledger id={entry.id} reason=bad_remaining")
        return None
    return replace(entry, direction=direction, payment_status=status, due_date=due)


def clean_series(series: RecurringSeries) -> Optional[RecurringSeries]:
    try:
        direction = EntryType(series.direction)
        start = _coerce_date(series.start_date)
        end = None if series.end_date is None else _coerce_date(series.end_date)
    except ValueError as exc:
        logger.debug(f"forecast_skip: series id={series.id} reason={exc}")
        return None
    if not _is_cents(series.monthly_amount_cents):
        logger.debug(f"forecast_skip: series id={series.id} reason=bad_amount")
        return None
    day = series.billing_day
    if day is not None and (
        not isinstance(day, int) or isinstance(day, bool) or not 1 <= day <= 31
    ):
        logger.debug(f"forecast_skip: series id={series.id} reason=bad_billing_day")
        return None
    return replace(series, direction=direction, start_date=start, end_date=end)


def clean_payment(payment: MaterializedPayment) -> Optional[MaterializedPayment]:
    try:
        status = CycleStatus(payment.status)
    except ValueError as exc:
        logger.debug(f"forecast_skip: payment id={payment.id} reason={exc}")
        return None
    if not isinstance(payment.year, int) or not isinstance(payment.month, int):
        logger.debug(f"forecast_skip: payment id={payment.id} reason=bad_cycle")
        return None
    if not 1 <= payment.month <= 12 or not _is_cents(payment.amount_cents):
        logger.debug(f"forecast_skip: payment id={payment.id} reason=out_of_range")
        return None
    return replace(payment, status=status)


def index_payments(
    payments: Iterable[MaterializedPayment],
) -> dict[CycleKey, MaterializedPayment]:
    """Payments keyed by (series, year, month); the first record for a cycle wins."""
    index: dict[CycleKey, MaterializedPayment] = {}
    for payment in payments:
        if payment.key in index:
            logger.debug(
                f"forecast_duplicate_payment: id={payment.id} cycle={payment.key}"
            )
            continue
        index[payment.key] = payment
    return index


def resolve_cycle(
    series: RecurringSeries,
    year: int,
    month: int,
    payment: Optional[MaterializedPayment],
    *,
    include_paid: bool = False,
) -> Optional[SeriesOccurrence]:
    """Authoritative state of one billing cycle, or None when it is settled."""
    due = resolve_billing_date(year, month, series.billing_day)
    if payment is None:
        return SeriesOccurrence(
            series_id=series.id,
            year=year,
            month=month,
            amount_cents=series.monthly_amount_cents,
            status=CycleStatus.pending,
            due_date=due,
        )
    if payment.skipped:
        return None
    if payment.status == CycleStatus.paid and not include_paid:
        return None
    return SeriesOccurrence(
        series_id=series.id,
        year=year,
        month=month,
        amount_cents=payment.amount_cents,
        status=payment.status,
        due_date=due,
        payment_id=payment.id,
        materialized_ledger_entry_id=payment.ledger_entry_id,
    )


def resolve_series(
    series: Iterable[RecurringSeries],
    payments: dict[CycleKey, MaterializedPayment],
    horizon_start: date,
    horizon_end: date,
    *,
    include_paid: bool = False,
) -> list[SeriesDerived]:
    resolved: list[SeriesDerived] = []
    seen: set[CycleKey] = set()
    for item in series:
        if not item.active:
            continue
        cycles = BillingCycles(item.start_date, item.end_date, horizon_start, horizon_end)
        for year, month in cycles:
            key = (item.id, year, month)
            if key in seen:
                continue
            seen.add(key)
            occurrence = resolve_cycle(
                item, year, month, payments.get(key), include_paid=include_paid
            )
            if occurrence is not None:
                resolved.append(SeriesDerived(occurrence, item))
    return resolved


def materialized_entry_ids(
    occurrences: Iterable[SeriesOccurrence],
    payments: Iterable[MaterializedPayment],
) -> set[RecordId]:
    ids = {
        occ.materialized_ledger_entry_id
        for occ in occurrences
        if occ.materialized_ledger_entry_id is not None
    }
    ids.update(p.ledger_entry_id for p in payments if p.ledger_entry_id is not None)
    return ids


def filter_ledger_entries(
    entries: Iterable[LedgerEntry],
    linked_entry_ids: set[RecordId],
    payment_ids: set[RecordId],
) -> list[LedgerEntry]:
    """Drop entries that are the recorded form of a subscription cycle."""
    kept: list[LedgerEntry] = []
    for entry in entries:
        if entry.id in linked_entry_ids:
            continue
        if entry.origin_payment_id is not None and entry.origin_payment_id in payment_ids:
            continue
        kept.append(entry)
    return kept


def forecast_amount_cents(entry: LedgerEntry) -> int:
    if entry.remaining_cents is not None and entry.payment_status in (
        PaymentStatus.pending,
        PaymentStatus.partial,
    ):
        return entry.remaining_cents
    return entry.amount_cents


def _included(obligation: ResolvedObligation, mode: ForecastMode) -> bool:
    if obligation.is_paid:
        return mode == ForecastMode.scheduled
    return obligation.amount_cents > 0


def bucket_obligations(
    obligations: Iterable[ResolvedObligation],
    start: date,
    months: int,
    *,
    mode: ForecastMode = ForecastMode.outstanding,
    today: Optional[date] = None,
) -> list[MonthBucket]:
    keys = horizon_months(start, months)
    slots: dict[tuple[int, int], list[ResolvedObligation]] = {key: [] for key in keys}
    for obligation in obligations:
        due = obligation.due_date
        if due is None or not _included(obligation, mode):
            continue
        slot = slots.get((due.year, due.month))
        if slot is not None:
            slot.append(obligation)

    buckets: list[MonthBucket] = []
    for year, month in keys:
        entries = tuple(sorted(slots[(year, month)], key=lambda o: o.due_date))
        open_entries = [o for o in entries if not o.is_paid]
        overdue = 0
        if today is not None:
            overdue = sum(o.amount_cents for o in open_entries if o.is_overdue(today))
        buckets.append(
            MonthBucket(
                year=year,
                month=month,
                total_cents=sum(o.amount_cents for o in entries),
                outstanding_cents=sum(o.amount_cents for o in open_entries),
                overdue_cents=overdue,
                entries=entries,
            )
        )
    return buckets


def _clean_all(records, cleaner):
    cleaned = []
    for record in records:
        result = cleaner(record)
        if result is not None:
            cleaned.append(result)
    return cleaned


def compute_forecast(
    ledger: Sequence[LedgerEntry],
    series: Sequence[RecurringSeries],
    payments: Sequence[MaterializedPayment],
    horizon: int,
    *,
    start: date,
    mode: ForecastMode = ForecastMode.outstanding,
    direction: Optional[EntryType] = None,
    today: Optional[date] = None,
) -> list[MonthBucket]:
    """Month buckets for ``horizon`` months beginning with ``start``'s month.

    ``direction`` restricts both sources to income or expense; ``today``
    enables the per-bucket overdue totals. A non-positive horizon yields
    an empty list.
    """
    if horizon <= 0:
        return []
    period = horizon_period(start, horizon)

    clean_payments = _clean_all(payments, clean_payment)
    clean_series_list = _clean_all(series, clean_series)
    clean_ledger = _clean_all(ledger, clean_ledger_entry)
    if direction is not None:
        clean_series_list = [s for s in clean_series_list if s.direction == direction]
        clean_ledger = [e for e in clean_ledger if e.direction == direction]

    occurrences = resolve_series(
        clean_series_list,
        index_payments(clean_payments),
        period.start,
        period.end,
        include_paid=mode == ForecastMode.scheduled,
    )
    linked_ids = materialized_entry_ids(
        (o.occurrence for o in occurrences), clean_payments
    )
    kept = filter_ledger_entries(
        clean_ledger, linked_ids, {p.id for p in clean_payments}
    )

    obligations: list[ResolvedObligation] = [
        LedgerDerived(entry, forecast_amount_cents(entry)) for entry in kept
    ]
    obligations.extend(occurrences)
    return bucket_obligations(obligations, start, horizon, mode=mode, today=today)
