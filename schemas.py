from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models import CycleStatus, EntryType, PaymentMethod, PaymentStatus


def decimal_to_cents(value: Decimal) -> int:
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class FinancialEntryIn(BaseModel):
    type: EntryType
    description: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., ge=0)
    due_date: Optional[date] = None
    payment_status: PaymentStatus = PaymentStatus.pending
    remaining_cents: Optional[int] = Field(default=None, ge=0)
    payment_method: PaymentMethod = PaymentMethod.open
    customer_name: Optional[str] = Field(default=None, max_length=120)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _check_remaining(self) -> "FinancialEntryIn":
        if self.payment_status == PaymentStatus.partial:
            if self.remaining_cents is None:
                raise ValueError("Partial entries need a remaining amount")
            if not 0 < self.remaining_cents < self.amount_cents:
                raise ValueError("Remaining amount must be between 0 and the amount")
        elif self.remaining_cents is not None:
            raise ValueError("Remaining amount is only set on partial entries")
        return self


class PaymentIn(BaseModel):
    amount_cents: int = Field(..., gt=0)
    method: PaymentMethod = PaymentMethod.pix
    paid_at: Optional[datetime] = None


class SubscriptionIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=120)
    customer_name: Optional[str] = Field(default=None, max_length=120)
    type: EntryType = EntryType.income
    monthly_amount_cents: int = Field(..., ge=0)
    start_date: date
    end_date: Optional[date] = None
    billing_day: Optional[int] = Field(default=None, ge=1, le=31)
    is_active: bool = True

    @model_validator(mode="after")
    def _check_dates(self) -> "SubscriptionIn":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("End date must be on or after the start date")
        return self


class MarkPaidIn(BaseModel):
    method: PaymentMethod = PaymentMethod.pix
    paid_on: Optional[date] = None


class SkipMonthIn(BaseModel):
    reason: str = Field(..., min_length=1, max_length=200)


# Rows as the hosted store returns them: decimal amounts, ISO date strings
# and its own column names.


class _StoreRow(BaseModel):
    model_config = ConfigDict(extra="ignore")


class LedgerRow(_StoreRow):
    id: Union[int, str]
    type: EntryType
    amount: Decimal = Field(..., ge=0)
    remaining_amount: Optional[Decimal] = Field(default=None, ge=0)
    due_date: Optional[date] = None
    payment_status: PaymentStatus = PaymentStatus.pending
    origin_payment_id: Optional[Union[int, str]] = None
    description: str = ""
    customer_name: Optional[str] = None

    @field_validator("payment_status", mode="before")
    @classmethod
    def _default_status(cls, value):
        return value or PaymentStatus.pending


class SeriesRow(_StoreRow):
    id: Union[int, str]
    monthly_value: Decimal = Field(..., ge=0)
    start_date: date
    end_date: Optional[date] = None
    payment_day: Optional[int] = Field(default=None, ge=1, le=31)
    is_active: bool = True
    type: EntryType = EntryType.income
    title: str = ""
    customer_name: Optional[str] = None


class PaymentRow(_StoreRow):
    id: Union[int, str]
    subscription_id: Union[int, str]
    year: int = Field(..., ge=1970, le=3000)
    month: int = Field(..., ge=1, le=12)
    amount: Decimal = Field(..., ge=0)
    payment_status: CycleStatus = CycleStatus.pending
    is_skipped: bool = False
    financial_entry_id: Optional[Union[int, str]] = None

    @field_validator("is_skipped", mode="before")
    @classmethod
    def _null_is_false(cls, value):
        return bool(value)


class ForecastEntryOut(BaseModel):
    id: str
    source: str
    description: str
    customer_name: Optional[str]
    amount_cents: int
    due_date: date
    status: str


class MonthBucketOut(BaseModel):
    month: str
    total_cents: int
    outstanding_cents: int
    overdue_cents: int
    entries: list[ForecastEntryOut]


class FinancialEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: EntryType
    description: str
    customer_name: Optional[str]
    amount_cents: int
    remaining_cents: Optional[int]
    original_amount_cents: Optional[int]
    due_date: Optional[date]
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    paid_at: Optional[datetime]
    origin_payment_id: Optional[int]


class SubscriptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    customer_name: Optional[str]
    type: EntryType
    monthly_amount_cents: int
    start_date: date
    end_date: Optional[date]
    billing_day: Optional[int]
    is_active: bool


class SubscriptionPaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    subscription_id: int
    year: int
    month: int
    amount_cents: int
    status: CycleStatus
    is_skipped: bool
    skip_reason: Optional[str]
    payment_method: Optional[PaymentMethod]
    paid_at: Optional[datetime]
    financial_entry_id: Optional[int]
