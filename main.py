import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from config import get_settings
from csv_utils import export_forecast
from database import SessionLocal
from forecast import ForecastMode, MonthBucket
from models import EntryType, PaymentStatus
from periods import Period, parse_month, resolve_period
from scheduler import SchedulerManager
from schemas import (
    FinancialEntryIn,
    FinancialEntryOut,
    ForecastEntryOut,
    MarkPaidIn,
    MonthBucketOut,
    PaymentIn,
    SkipMonthIn,
    SubscriptionIn,
    SubscriptionOut,
    SubscriptionPaymentOut,
)
from services import (
    FinancialEntryService,
    ForecastService,
    MetricsService,
    SubscriptionPaymentService,
    SubscriptionService,
    forecast_cache,
)

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Receivables Forecast")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def period_from_request(request: Request) -> Period:
    period_slug = request.query_params.get("period")
    start = request.query_params.get("start")
    end = request.query_params.get("end")
    try:
        return resolve_period(period_slug, start, end)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def forecast_args_from_request(request: Request) -> dict[str, object]:
    params = request.query_params
    args: dict[str, object] = {}
    try:
        if params.get("months"):
            args["months"] = int(params["months"])
        if params.get("mode"):
            args["mode"] = ForecastMode(params["mode"])
        if params.get("direction"):
            args["direction"] = EntryType(params["direction"])
        if params.get("start"):
            args["start"] = parse_month(params["start"])
        if params.get("today"):
            args["today"] = date.fromisoformat(params["today"])
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return args


def bucket_payload(buckets: list[MonthBucket]) -> list[MonthBucketOut]:
    return [
        MonthBucketOut(
            month=bucket.label,
            total_cents=bucket.total_cents,
            outstanding_cents=bucket.outstanding_cents,
            overdue_cents=bucket.overdue_cents,
            entries=[
                ForecastEntryOut(
                    id=str(entry.id),
                    source=entry.source,
                    description=entry.description,
                    customer_name=entry.customer_name,
                    amount_cents=entry.amount_cents,
                    due_date=entry.due_date,
                    status=entry.status,
                )
                for entry in bucket.entries
            ],
        )
        for bucket in buckets
    ]


@app.get("/api/forecast", response_model=list[MonthBucketOut])
def api_forecast(request: Request, db: Session = Depends(get_db)):
    args = forecast_args_from_request(request)
    buckets = ForecastService(db, cache=forecast_cache).forecast(**args)
    return bucket_payload(buckets)


@app.get("/api/receivables", response_model=list[MonthBucketOut])
def api_receivables(request: Request, db: Session = Depends(get_db)):
    args = forecast_args_from_request(request)
    args.setdefault("months", get_settings().receivables_months)
    buckets = ForecastService(db, cache=forecast_cache).forecast(**args)
    return bucket_payload(buckets)


@app.get("/api/alerts/overdue", response_model=list[MonthBucketOut])
def api_overdue(request: Request, db: Session = Depends(get_db)):
    lookback = request.query_params.get("lookback", "12")
    try:
        lookback_months = int(lookback)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    buckets = ForecastService(db, cache=forecast_cache).overdue_buckets(lookback_months)
    return bucket_payload(buckets)


@app.get("/api/forecast/export.csv")
def api_forecast_export(request: Request, db: Session = Depends(get_db)):
    args = forecast_args_from_request(request)
    buckets = ForecastService(db, cache=forecast_cache).forecast(**args)
    content = export_forecast(buckets)
    headers = {"Content-Disposition": "attachment; filename=forecast.csv"}
    return Response(content=content, media_type="text/csv", headers=headers)


@app.get("/api/summary")
def api_summary(request: Request, db: Session = Depends(get_db)):
    period = None
    if request.query_params.get("period"):
        period = period_from_request(request)
    summary = MetricsService(db).summary(period)
    return {
        "period": period.slug if period else "all",
        "paid_income_from_entries": summary.paid_income_from_entries,
        "paid_subscription_income": summary.paid_subscription_income,
        "total_paid_income": summary.total_paid_income,
        "pending_income_from_entries": summary.pending_income_from_entries,
        "pending_subscription_income": summary.pending_subscription_income,
        "total_pending_income": summary.total_pending_income,
        "paid_expenses": summary.paid_expenses,
        "pending_expenses": summary.pending_expenses,
        "balance": summary.balance,
        "profit_margin": round(summary.profit_margin, 2),
        "break_even_progress": round(summary.break_even_progress, 2),
    }


@app.get("/api/entries", response_model=list[FinancialEntryOut])
def api_entries(
    type: Optional[EntryType] = None,
    status: Optional[PaymentStatus] = None,
    db: Session = Depends(get_db),
):
    statuses = [status] if status else None
    return FinancialEntryService(db).list(type, statuses)


@app.post("/api/entries", response_model=FinancialEntryOut, status_code=201)
def api_create_entry(data: FinancialEntryIn, db: Session = Depends(get_db)):
    return FinancialEntryService(db).create(data)


@app.put("/api/entries/{entry_id}", response_model=FinancialEntryOut)
def api_update_entry(
    entry_id: int, data: FinancialEntryIn, db: Session = Depends(get_db)
):
    service = FinancialEntryService(db)
    try:
        service.get(entry_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    try:
        return service.update(entry_id, data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.delete("/api/entries/{entry_id}", status_code=204)
def api_delete_entry(entry_id: int, db: Session = Depends(get_db)):
    service = FinancialEntryService(db)
    try:
        service.get(entry_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    try:
        service.delete(entry_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return Response(status_code=204)


@app.post("/api/entries/{entry_id}/payments", response_model=FinancialEntryOut)
def api_register_payment(
    entry_id: int, data: PaymentIn, db: Session = Depends(get_db)
):
    service = FinancialEntryService(db)
    try:
        service.get(entry_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    try:
        return service.register_payment(entry_id, data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/subscriptions", response_model=list[SubscriptionOut])
def api_subscriptions(active: bool = False, db: Session = Depends(get_db)):
    return SubscriptionService(db).list(active_only=active)


@app.post("/api/subscriptions", response_model=SubscriptionOut, status_code=201)
def api_create_subscription(data: SubscriptionIn, db: Session = Depends(get_db)):
    return SubscriptionService(db).create(data)


@app.put("/api/subscriptions/{subscription_id}", response_model=SubscriptionOut)
def api_update_subscription(
    subscription_id: int, data: SubscriptionIn, db: Session = Depends(get_db)
):
    try:
        return SubscriptionService(db).update(subscription_id, data)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/api/subscriptions/{subscription_id}/toggle", response_model=SubscriptionOut)
def api_toggle_subscription(subscription_id: int, db: Session = Depends(get_db)):
    service = SubscriptionService(db)
    try:
        subscription = service.get(subscription_id)
        return service.set_active(subscription_id, not subscription.is_active)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.delete("/api/subscriptions/{subscription_id}", status_code=204)
def api_delete_subscription(subscription_id: int, db: Session = Depends(get_db)):
    try:
        SubscriptionService(db).delete(subscription_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get(
    "/api/subscriptions/{subscription_id}/payments",
    response_model=list[SubscriptionPaymentOut],
)
def api_subscription_payments(subscription_id: int, db: Session = Depends(get_db)):
    service = SubscriptionPaymentService(db)
    try:
        service.subscriptions.get(subscription_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return service.list(subscription_id)


def _cycle_action(db: Session, subscription_id: int, action):
    service = SubscriptionPaymentService(db)
    try:
        service.subscriptions.get(subscription_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    try:
        return action(service)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post(
    "/api/subscriptions/{subscription_id}/cycles/{year}/{month}/paid",
    response_model=SubscriptionPaymentOut,
)
def api_mark_cycle_paid(
    subscription_id: int,
    year: int,
    month: int,
    data: MarkPaidIn,
    db: Session = Depends(get_db),
):
    return _cycle_action(
        db, subscription_id, lambda s: s.mark_paid(subscription_id, year, month, data)
    )


@app.post(
    "/api/subscriptions/{subscription_id}/cycles/{year}/{month}/pending",
    response_model=SubscriptionPaymentOut,
)
def api_mark_cycle_pending(
    subscription_id: int, year: int, month: int, db: Session = Depends(get_db)
):
    return _cycle_action(
        db, subscription_id, lambda s: s.mark_pending(subscription_id, year, month)
    )


@app.post(
    "/api/subscriptions/{subscription_id}/cycles/{year}/{month}/skip",
    response_model=SubscriptionPaymentOut,
)
def api_skip_cycle(
    subscription_id: int,
    year: int,
    month: int,
    data: SkipMonthIn,
    db: Session = Depends(get_db),
):
    return _cycle_action(
        db, subscription_id, lambda s: s.skip_month(subscription_id, year, month, data)
    )


@app.post(
    "/api/subscriptions/{subscription_id}/cycles/{year}/{month}/unskip",
    response_model=SubscriptionPaymentOut,
)
def api_unskip_cycle(
    subscription_id: int, year: int, month: int, db: Session = Depends(get_db)
):
    return _cycle_action(
        db, subscription_id, lambda s: s.revert_skip(subscription_id, year, month)
    )
