from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Hashable, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from config import get_settings
from forecast import (
    ForecastMode,
    LedgerEntry,
    MaterializedPayment,
    MonthBucket,
    RecurringSeries,
    clean_ledger_entry,
    clean_payment,
    clean_series,
    compute_forecast,
    filter_ledger_entries,
    forecast_amount_cents,
    index_payments,
    materialized_entry_ids,
    resolve_series,
)
from models import (
    CycleStatus,
    EntryType,
    FinancialEntry,
    PaymentStatus,
    Subscription,
    SubscriptionPayment,
)
from periods import Period, add_months, month_end, month_start
from recurrence import last_business_day, local_today
from schemas import (
    FinancialEntryIn,
    MarkPaidIn,
    PaymentIn,
    SkipMonthIn,
    SubscriptionIn,
)
from snapshots import ledger_entry_from_model, payment_from_model, series_from_model

logger = logging.getLogger(__name__)


def get_current_user_id() -> int:
    return 1


class ForecastCache:
    """Memoized forecasts, dropped wholesale whenever underlying data changes.

    ``generation`` moves on every invalidation so a result computed from a
    snapshot read before the change is never stored after it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._results: dict[Hashable, list[MonthBucket]] = {}
        self.generation = 0

    def get(self, key: Hashable) -> Optional[list[MonthBucket]]:
        with self._lock:
            cached = self._results.get(key)
        return None if cached is None else list(cached)

    def put(self, key: Hashable, buckets: list[MonthBucket], generation: int) -> None:
        with self._lock:
            if generation == self.generation:
                self._results[key] = list(buckets)

    def invalidate(self, reason: str) -> None:
        with self._lock:
            self._results.clear()
            self.generation += 1
        logger.info(f"forecast_cache: invalidated reason={reason}")


forecast_cache = ForecastCache()


def _month_label(year: int, month: int) -> str:
    return f"{month:02d}/{year}"


class FinancialEntryService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        cache: Optional[ForecastCache] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.cache = cache if cache is not None else forecast_cache

    def get(self, entry_id: int) -> FinancialEntry:
        entry = self.session.get(FinancialEntry, entry_id)
        if not entry or entry.user_id != self.user_id:
            raise ValueError("Entry not found")
        return entry

    def list(
        self,
        entry_type: Optional[EntryType] = None,
        statuses: Optional[list[PaymentStatus]] = None,
    ) -> list[FinancialEntry]:
        stmt = select(FinancialEntry).where(FinancialEntry.user_id == self.user_id)
        if entry_type is not None:
            stmt = stmt.where(FinancialEntry.type == entry_type)
        if statuses:
            stmt = stmt.where(FinancialEntry.payment_status.in_(statuses))
        stmt = stmt.order_by(FinancialEntry.due_date, FinancialEntry.id)
        return list(self.session.scalars(stmt).all())

    def create(self, data: FinancialEntryIn) -> FinancialEntry:
        entry = FinancialEntry(user_id=self.user_id)
        self._apply(entry, data)
        self.session.add(entry)
        self.session.commit()
        self.session.refresh(entry)
        self.cache.invalidate("entry_created")
        return entry

    def update(self, entry_id: int, data: FinancialEntryIn) -> FinancialEntry:
        entry = self.get(entry_id)
        if entry.origin_payment_id is not None:
            raise ValueError("Entry is managed by a subscription payment")
        self._apply(entry, data)
        self.session.commit()
        self.session.refresh(entry)
        self.cache.invalidate("entry_updated")
        return entry

    def delete(self, entry_id: int) -> None:
        entry = self.get(entry_id)
        if entry.origin_payment_id is not None:
            raise ValueError("Entry is managed by a subscription payment")
        self.session.delete(entry)
        self.session.commit()
        self.cache.invalidate("entry_deleted")

    def register_payment(self, entry_id: int, data: PaymentIn) -> FinancialEntry:
        """Settle all or part of an open entry; returns the record of what was paid.

        A payment smaller than the remainder leaves the entry ``partial`` with a
        reduced remainder and books the paid portion as its own paid entry.
        """
        entry = self.get(entry_id)
        if entry.payment_status == PaymentStatus.paid:
            raise ValueError("Entry is already paid")
        # same reading of what is still owed as the forecast
        remaining = forecast_amount_cents(ledger_entry_from_model(entry))
        if data.amount_cents > remaining:
            raise ValueError("Payment exceeds remaining amount")
        paid_at = data.paid_at or datetime.utcnow()
        original = entry.original_amount_cents or entry.amount_cents

        if data.amount_cents == remaining:
            if entry.payment_status == PaymentStatus.partial:
                # earlier portions already live in their own paid entries
                entry.amount_cents = remaining
            entry.original_amount_cents = original
            entry.payment_status = PaymentStatus.paid
            entry.payment_method = data.method
            entry.paid_at = paid_at
            entry.remaining_cents = 0
            self.session.commit()
            self.session.refresh(entry)
            self.cache.invalidate("entry_paid")
            return entry

        entry.original_amount_cents = original
        entry.remaining_cents = remaining - data.amount_cents
        entry.payment_status = PaymentStatus.partial
        portion = FinancialEntry(
            user_id=self.user_id,
            type=entry.type,
            description=f"{entry.description} (partial)",
            customer_name=entry.customer_name,
            amount_cents=data.amount_cents,
            remaining_cents=0,
            original_amount_cents=original,
            due_date=entry.due_date,
            payment_status=PaymentStatus.paid,
            payment_method=data.method,
            paid_at=paid_at,
        )
        self.session.add(portion)
        self.session.commit()
        self.session.refresh(portion)
        self.cache.invalidate("entry_partially_paid")
        return portion

    @staticmethod
    def _apply(entry: FinancialEntry, data: FinancialEntryIn) -> None:
        entry.type = data.type
        entry.description = data.description
        entry.customer_name = data.customer_name
        entry.amount_cents = data.amount_cents
        entry.due_date = data.due_date
        entry.payment_status = data.payment_status
        entry.payment_method = data.payment_method
        entry.notes = data.notes
        if data.payment_status == PaymentStatus.paid:
            entry.remaining_cents = 0
            entry.paid_at = entry.paid_at or datetime.utcnow()
        else:
            entry.remaining_cents = data.remaining_cents
            entry.paid_at = None


class SubscriptionService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        cache: Optional[ForecastCache] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.cache = cache if cache is not None else forecast_cache

    def get(self, subscription_id: int) -> Subscription:
        subscription = self.session.get(Subscription, subscription_id)
        if not subscription or subscription.user_id != self.user_id:
            raise ValueError("Subscription not found")
        return subscription

    def list(self, active_only: bool = False) -> list[Subscription]:
        stmt = select(Subscription).where(Subscription.user_id == self.user_id)
        if active_only:
            stmt = stmt.where(Subscription.is_active.is_(True))
        stmt = stmt.order_by(Subscription.title, Subscription.id)
        return list(self.session.scalars(stmt).all())

    def create(self, data: SubscriptionIn) -> Subscription:
        subscription = Subscription(user_id=self.user_id, **data.model_dump())
        self.session.add(subscription)
        self.session.commit()
        self.session.refresh(subscription)
        self.cache.invalidate("subscription_created")
        return subscription

    def update(self, subscription_id: int, data: SubscriptionIn) -> Subscription:
        subscription = self.get(subscription_id)
        for field, value in data.model_dump().items():
            setattr(subscription, field, value)
        self.session.commit()
        self.session.refresh(subscription)
        self.cache.invalidate("subscription_updated")
        return subscription

    def set_active(self, subscription_id: int, is_active: bool) -> Subscription:
        subscription = self.get(subscription_id)
        subscription.is_active = is_active
        self.session.commit()
        self.cache.invalidate("subscription_toggled")
        return subscription

    def delete(self, subscription_id: int) -> None:
        subscription = self.get(subscription_id)
        self.session.delete(subscription)
        self.session.commit()
        self.cache.invalidate("subscription_deleted")


class SubscriptionPaymentService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        cache: Optional[ForecastCache] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.cache = cache if cache is not None else forecast_cache
        self.subscriptions = SubscriptionService(session, self.user_id, self.cache)

    def list(self, subscription_id: Optional[int] = None) -> list[SubscriptionPayment]:
        stmt = (
            select(SubscriptionPayment)
            .join(Subscription)
            .where(Subscription.user_id == self.user_id)
        )
        if subscription_id is not None:
            stmt = stmt.where(SubscriptionPayment.subscription_id == subscription_id)
        stmt = stmt.order_by(
            SubscriptionPayment.subscription_id,
            SubscriptionPayment.year,
            SubscriptionPayment.month,
        )
        return list(self.session.scalars(stmt).all())

    def get_cycle(
        self, subscription_id: int, year: int, month: int
    ) -> Optional[SubscriptionPayment]:
        if not 1 <= month <= 12:
            raise ValueError("Month must be between 1 and 12")
        stmt = select(SubscriptionPayment).where(
            SubscriptionPayment.subscription_id == subscription_id,
            SubscriptionPayment.year == year,
            SubscriptionPayment.month == month,
        )
        return self.session.scalars(stmt).one_or_none()

    @staticmethod
    def _check_in_range(subscription: Subscription, year: int, month: int) -> None:
        cycle = date(year, month, 1)
        if cycle < month_start(subscription.start_date) or (
            subscription.end_date is not None and cycle > subscription.end_date
        ):
            raise ValueError("Cycle is outside the subscription period")

    def _new_cycle(
        self, subscription: Subscription, year: int, month: int
    ) -> SubscriptionPayment:
        payment = SubscriptionPayment(
            user_id=self.user_id,
            subscription_id=subscription.id,
            year=year,
            month=month,
            amount_cents=subscription.monthly_amount_cents,
            status=CycleStatus.pending,
        )
        self.session.add(payment)
        self.session.flush()
        return payment

    def mark_paid(
        self, subscription_id: int, year: int, month: int, data: MarkPaidIn
    ) -> SubscriptionPayment:
        subscription = self.subscriptions.get(subscription_id)
        payment = self.get_cycle(subscription.id, year, month)
        if payment is not None and payment.status == CycleStatus.paid:
            raise ValueError("Cycle already paid")
        self._check_in_range(subscription, year, month)
        if payment is None:
            payment = self._new_cycle(subscription, year, month)

        paid_on = data.paid_on or last_business_day(year, month)
        paid_at = datetime.combine(paid_on, time(12, 0))
        entry = FinancialEntry(
            user_id=self.user_id,
            type=subscription.type,
            description=f"{subscription.title} - {_month_label(year, month)}",
            customer_name=subscription.customer_name,
            amount_cents=payment.amount_cents,
            remaining_cents=0,
            due_date=paid_on,
            payment_status=PaymentStatus.paid,
            payment_method=data.method,
            paid_at=paid_at,
            origin_payment_id=payment.id,
        )
        self.session.add(entry)
        self.session.flush()

        payment.status = CycleStatus.paid
        payment.is_skipped = False
        payment.skip_reason = None
        payment.payment_method = data.method
        payment.paid_at = paid_at
        payment.financial_entry_id = entry.id
        self.session.commit()
        self.session.refresh(payment)
        self.cache.invalidate("cycle_paid")
        return payment

    def mark_pending(
        self, subscription_id: int, year: int, month: int
    ) -> SubscriptionPayment:
        subscription = self.subscriptions.get(subscription_id)
        payment = self.get_cycle(subscription.id, year, month)
        if payment is None:
            raise ValueError("Payment not found")
        if payment.is_skipped:
            raise ValueError("Month is skipped; revert the skip instead")
        entry = payment.financial_entry
        payment.financial_entry = None
        payment.status = CycleStatus.pending
        payment.payment_method = None
        payment.paid_at = None
        self.session.flush()
        if entry is not None:
            self.session.delete(entry)
        self.session.commit()
        self.session.refresh(payment)
        self.cache.invalidate("cycle_reverted")
        return payment

    def skip_month(
        self, subscription_id: int, year: int, month: int, data: SkipMonthIn
    ) -> SubscriptionPayment:
        subscription = self.subscriptions.get(subscription_id)
        payment = self.get_cycle(subscription.id, year, month)
        if payment is not None and payment.status == CycleStatus.paid:
            raise ValueError("Revert the payment before skipping the month")
        self._check_in_range(subscription, year, month)
        if payment is None:
            payment = self._new_cycle(subscription, year, month)
        payment.status = CycleStatus.skipped
        payment.is_skipped = True
        payment.skip_reason = data.reason
        payment.payment_method = None
        payment.paid_at = None
        self.session.commit()
        self.session.refresh(payment)
        self.cache.invalidate("cycle_skipped")
        return payment

    def revert_skip(
        self, subscription_id: int, year: int, month: int
    ) -> SubscriptionPayment:
        subscription = self.subscriptions.get(subscription_id)
        payment = self.get_cycle(subscription.id, year, month)
        if payment is None or not payment.is_skipped:
            raise ValueError("Month is not skipped")
        payment.status = CycleStatus.pending
        payment.is_skipped = False
        payment.skip_reason = None
        self.session.commit()
        self.session.refresh(payment)
        self.cache.invalidate("cycle_unskipped")
        return payment


@dataclass(frozen=True)
class ForecastSnapshot:
    ledger: tuple[LedgerEntry, ...]
    series: tuple[RecurringSeries, ...]
    payments: tuple[MaterializedPayment, ...]


class ForecastService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        cache: Optional[ForecastCache] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.cache = cache

    def load_snapshot(self, direction: Optional[EntryType] = None) -> ForecastSnapshot:
        """Ledger entries, active series and every series payment, read together."""
        settings = get_settings()
        entry_stmt = select(FinancialEntry).where(FinancialEntry.user_id == self.user_id)
        sub_stmt = select(Subscription).where(Subscription.user_id == self.user_id)
        # Payments of inactive subscriptions still link ledger entries that
        # must stay out of the plain ledger side.
        payment_stmt = (
            select(SubscriptionPayment)
            .join(Subscription)
            .where(Subscription.user_id == self.user_id)
        )
        if direction is not None:
            entry_stmt = entry_stmt.where(FinancialEntry.type == direction)
            sub_stmt = sub_stmt.where(Subscription.type == direction)
            payment_stmt = payment_stmt.where(Subscription.type == direction)
        entries = self.session.scalars(entry_stmt.order_by(FinancialEntry.id)).all()
        subscriptions = self.session.scalars(sub_stmt.order_by(Subscription.id)).all()
        payments = self.session.scalars(
            payment_stmt.order_by(
                SubscriptionPayment.subscription_id,
                SubscriptionPayment.year,
                SubscriptionPayment.month,
                SubscriptionPayment.id,
            )
        ).all()
        return ForecastSnapshot(
            ledger=tuple(ledger_entry_from_model(e) for e in entries),
            series=tuple(
                series_from_model(s, settings.default_billing_day)
                for s in subscriptions
                if s.is_active
            ),
            payments=tuple(payment_from_model(p) for p in payments),
        )

    def forecast(
        self,
        months: Optional[int] = None,
        *,
        direction: Optional[EntryType] = EntryType.income,
        mode: ForecastMode = ForecastMode.outstanding,
        start: Optional[date] = None,
        today: Optional[date] = None,
    ) -> list[MonthBucket]:
        months = get_settings().horizon_months if months is None else months
        today = today or local_today()
        start = month_start(start or today)
        key = (self.user_id, direction, months, mode, start, today)

        generation = 0
        if self.cache is not None:
            generation = self.cache.generation
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        snapshot = self.load_snapshot(direction)
        buckets = compute_forecast(
            snapshot.ledger,
            snapshot.series,
            snapshot.payments,
            months,
            start=start,
            mode=mode,
            direction=direction,
            today=today,
        )
        logger.debug(
            f"forecast_computed: user={self.user_id} months={months} mode={mode.value} "
            f"entries={sum(len(b.entries) for b in buckets)}"
        )
        if self.cache is not None:
            self.cache.put(key, buckets, generation)
        return buckets

    def monthly_forecast(self, today: Optional[date] = None) -> list[MonthBucket]:
        return self.forecast(get_settings().horizon_months, today=today)

    def receivables(self, today: Optional[date] = None) -> list[MonthBucket]:
        return self.forecast(get_settings().receivables_months, today=today)

    def overdue_buckets(
        self,
        lookback_months: int = 12,
        *,
        direction: Optional[EntryType] = EntryType.income,
        today: Optional[date] = None,
    ) -> list[MonthBucket]:
        today = today or local_today()
        year, month = add_months(today.year, today.month, -lookback_months)
        buckets = self.forecast(
            lookback_months + 1,
            direction=direction,
            start=date(year, month, 1),
            today=today,
        )
        return [bucket for bucket in buckets if bucket.overdue_cents > 0]


@dataclass(frozen=True)
class FinancialSummary:
    paid_income_from_entries: int
    paid_subscription_income: int
    pending_income_from_entries: int
    pending_subscription_income: int
    paid_expenses: int
    pending_expenses: int

    @property
    def total_paid_income(self) -> int:
        return self.paid_income_from_entries + self.paid_subscription_income

    @property
    def total_pending_income(self) -> int:
        return self.pending_income_from_entries + self.pending_subscription_income

    @property
    def balance(self) -> int:
        return self.total_paid_income - self.paid_expenses

    @property
    def profit_margin(self) -> float:
        if self.total_paid_income <= 0:
            return 0.0
        return self.balance / self.total_paid_income * 100

    @property
    def break_even_progress(self) -> float:
        if self.paid_expenses > 0:
            return self.total_paid_income / self.paid_expenses * 100
        return 200.0 if self.total_paid_income > 0 else 0.0


class MetricsService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _paid_entry_totals(self, period: Optional[Period]) -> dict[EntryType, int]:
        linked = select(SubscriptionPayment.financial_entry_id).where(
            SubscriptionPayment.financial_entry_id.is_not(None)
        )
        stmt = (
            select(
                FinancialEntry.type,
                func.coalesce(func.sum(FinancialEntry.amount_cents), 0),
            )
            .where(
                FinancialEntry.user_id == self.user_id,
                FinancialEntry.payment_status == PaymentStatus.paid,
                # entries of deleted subscriptions count as plain income again
                or_(
                    FinancialEntry.origin_payment_id.is_(None),
                    FinancialEntry.origin_payment_id.not_in(
                        select(SubscriptionPayment.id)
                    ),
                ),
                FinancialEntry.id.not_in(linked),
            )
            .group_by(FinancialEntry.type)
        )
        if period is not None:
            stmt = stmt.where(
                FinancialEntry.paid_at.between(
                    datetime.combine(period.start, time.min),
                    datetime.combine(period.end, time.max),
                )
            )
        return {row[0]: int(row[1]) for row in self.session.execute(stmt).all()}

    def _paid_cycle_totals(self, period: Optional[Period]) -> dict[EntryType, int]:
        stmt = (
            select(
                Subscription.type,
                func.coalesce(func.sum(SubscriptionPayment.amount_cents), 0),
            )
            .join(Subscription)
            .where(
                Subscription.user_id == self.user_id,
                SubscriptionPayment.status == CycleStatus.paid,
            )
            .group_by(Subscription.type)
        )
        if period is not None:
            stmt = stmt.where(
                SubscriptionPayment.paid_at.between(
                    datetime.combine(period.start, time.min),
                    datetime.combine(period.end, time.max),
                )
            )
        return {row[0]: int(row[1]) for row in self.session.execute(stmt).all()}

    def summary(
        self, period: Optional[Period] = None, today: Optional[date] = None
    ) -> FinancialSummary:
        """Paid figures fall inside ``period``; pending figures are everything still open."""
        today = today or local_today()
        snapshot = ForecastService(self.session, self.user_id).load_snapshot()

        payments = [p for p in map(clean_payment, snapshot.payments) if p is not None]
        series = [s for s in map(clean_series, snapshot.series) if s is not None]
        ledger = [e for e in map(clean_ledger_entry, snapshot.ledger) if e is not None]
        open_entries = filter_ledger_entries(
            ledger,
            materialized_entry_ids((), payments),
            {p.id for p in payments},
        )

        pending_entries = {EntryType.income: 0, EntryType.expense: 0}
        for entry in open_entries:
            if entry.payment_status in (PaymentStatus.pending, PaymentStatus.partial):
                pending_entries[entry.direction] += forecast_amount_cents(entry)

        # Unpaid cycles from the earliest start up to a year ahead, arrears included.
        pending_cycles = {EntryType.income: 0, EntryType.expense: 0}
        if series:
            horizon_start = min(s.start_date for s in series)
            end_year, end_month = add_months(today.year, today.month, 12)
            for resolved in resolve_series(
                series,
                index_payments(payments),
                horizon_start,
                month_end(end_year, end_month),
            ):
                pending_cycles[resolved.series.direction] += resolved.amount_cents

        paid_entries = self._paid_entry_totals(period)
        paid_cycles = self._paid_cycle_totals(period)
        return FinancialSummary(
            paid_income_from_entries=paid_entries.get(EntryType.income, 0),
            paid_subscription_income=paid_cycles.get(EntryType.income, 0),
            pending_income_from_entries=pending_entries[EntryType.income],
            pending_subscription_income=pending_cycles[EntryType.income],
            paid_expenses=(
                paid_entries.get(EntryType.expense, 0)
                + paid_cycles.get(EntryType.expense, 0)
            ),
            pending_expenses=(
                pending_entries[EntryType.expense] + pending_cycles[EntryType.expense]
            ),
        )
