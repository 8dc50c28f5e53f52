from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class EntryType(str, Enum):
    income = "income"
    expense = "expense"


class PaymentStatus(str, Enum):
    paid = "paid"
    pending = "pending"
    partial = "partial"


class CycleStatus(str, Enum):
    paid = "paid"
    pending = "pending"
    skipped = "skipped"


class PaymentMethod(str, Enum):
    pix = "pix"
    cash = "cash"
    card = "card"
    transfer = "transfer"
    open = "open"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class FinancialEntry(Base, TimestampMixin):
    __tablename__ = "financial_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    type: Mapped[EntryType] = mapped_column(SAEnum(EntryType), nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    customer_name: Mapped[Optional[str]] = mapped_column(String(120))
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    remaining_cents: Mapped[Optional[int]] = mapped_column(Integer)
    original_amount_cents: Mapped[Optional[int]] = mapped_column(Integer)
    due_date: Mapped[Optional[date]] = mapped_column(Date)
    payment_status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(PaymentStatus), nullable=False, default=PaymentStatus.pending
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SAEnum(PaymentMethod), nullable=False, default=PaymentMethod.open
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    # Back-reference to the subscription payment this entry materializes.
    # Not a foreign key: only used to keep the entry out of forecasts.
    origin_payment_id: Mapped[Optional[int]] = mapped_column(Integer)

    __table_args__ = (
        Index("ix_entries_user_type_due", "user_id", "type", "due_date"),
        Index("ix_entries_origin_payment", "origin_payment_id"),
        CheckConstraint("amount_cents >= 0", name="ck_entries_amount_positive"),
        CheckConstraint(
            "remaining_cents IS NULL OR remaining_cents >= 0",
            name="ck_entries_remaining_positive",
        ),
    )


class Subscription(Base, TimestampMixin):
    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    customer_name: Mapped[Optional[str]] = mapped_column(String(120))
    type: Mapped[EntryType] = mapped_column(
        SAEnum(EntryType), nullable=False, default=EntryType.income
    )
    monthly_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    billing_day: Mapped[Optional[int]] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    payments: Mapped[list["SubscriptionPayment"]] = relationship(
        "SubscriptionPayment",
        back_populates="subscription",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint(
            "monthly_amount_cents >= 0", name="ck_subscription_amount_positive"
        ),
        CheckConstraint(
            "billing_day IS NULL OR (billing_day >= 1 AND billing_day <= 31)",
            name="ck_subscription_billing_day_range",
        ),
    )


class SubscriptionPayment(Base, TimestampMixin):
    __tablename__ = "subscription_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    subscription_id: Mapped[int] = mapped_column(
        ForeignKey("subscriptions.id"), nullable=False
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[CycleStatus] = mapped_column(
        SAEnum(CycleStatus), nullable=False, default=CycleStatus.pending
    )
    is_skipped: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    skip_reason: Mapped[Optional[str]] = mapped_column(String(200))
    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(
        SAEnum(PaymentMethod)
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    financial_entry_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("financial_entries.id")
    )

    subscription: Mapped["Subscription"] = relationship(
        "Subscription", back_populates="payments"
    )
    financial_entry: Mapped[Optional["FinancialEntry"]] = relationship(
        "FinancialEntry"
    )

    __table_args__ = (
        UniqueConstraint(
            "subscription_id", "year", "month", name="uq_payment_subscription_cycle"
        ),
        CheckConstraint("month >= 1 AND month <= 12", name="ck_payment_month_range"),
        CheckConstraint("amount_cents >= 0", name="ck_payment_amount_positive"),
    )
