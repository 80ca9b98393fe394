import logging
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import issue_access_token, verify_access_token
from config import get_settings, local_today
from database import SessionLocal
from mailer import build_dispatchers
from models import Bill, DailyEntry, Notification
from periods import Granularity, InvalidPeriod, WeekStart
from scheduler import SchedulerManager
from schemas import BillIn, DailyEntryIn, TokenRequest, UserIn
from services import (
    BillService,
    EntryService,
    NotificationService,
    ReportService,
    UserService,
)
from store import AggregationFailure, SqlEntryStore

logger = logging.getLogger(__name__)

app = FastAPI(title="Expense Reports")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_report_service() -> ReportService:
    settings = get_settings()
    return ReportService(
        SqlEntryStore(SessionLocal),
        week_start=WeekStart(settings.week_start),
        max_workers=settings.report_workers,
    )


def current_user_id(authorization: Optional[str] = Header(default=None)) -> int:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    user_id = verify_access_token(authorization.split(" ", 1)[1].strip())
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return user_id


scheduler_manager = SchedulerManager(dispatchers=build_dispatchers(get_settings()))


@app.on_event("startup")
def startup_event():
    if get_settings().scheduler_enabled:
        scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def _error(status_code: int, message: str, error: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, "error": error, **extra},
    )


@app.exception_handler(InvalidPeriod)
async def invalid_period_handler(request: Request, exc: InvalidPeriod):
    return _error(400, str(exc), "Invalid period", token=str(exc.token))


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return _error(400, str(exc), "Invalid request")


@app.exception_handler(AggregationFailure)
async def aggregation_failure_handler(request: Request, exc: AggregationFailure):
    logger.error(
        f"report_failed: path={request.url.path} operation={exc.operation}"
    )
    extra = {"detail": exc.detail} if get_settings().debug else {}
    return _error(
        500,
        "Failed to generate report",
        f"Aggregation step '{exc.operation}' failed",
        **extra,
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail), "Request failed")


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return _error(
        422,
        "Request validation failed",
        "Validation failed",
        details=jsonable_encoder(exc.errors()),
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"request_failed: path={request.url.path}")
    extra = {"detail": str(exc)} if get_settings().debug else {}
    return _error(500, "Internal server error", "Unexpected error", **extra)


def _report_response(granularity: Granularity, report: dict) -> dict:
    kind = granularity.report_type
    return {
        "success": True,
        "data": report,
        "message": f"{kind.capitalize()} report generated successfully",
    }


def _require_token(value: Optional[str]) -> str:
    if not value:
        raise HTTPException(status_code=400, detail="Date parameter is required")
    return value


@app.get("/api/reports/weekly/available-periods")
def available_weeks(
    user_id: int = Depends(current_user_id),
    reports: ReportService = Depends(get_report_service),
):
    return {
        "success": True,
        "data": {"periods": reports.available_weeks(local_today())},
        "message": "Available weeks retrieved successfully",
    }


@app.get("/api/reports/weekly")
def weekly_report(
    period: Optional[str] = Query(default=None, alias="date"),
    user_id: int = Depends(current_user_id),
    reports: ReportService = Depends(get_report_service),
):
    report = reports.generate_weekly_report(user_id, _require_token(period))
    return _report_response(Granularity.week, report)


@app.get("/api/reports/weekly/data/{week_value}")
def weekly_data(
    week_value: str,
    user_id: int = Depends(current_user_id),
    reports: ReportService = Depends(get_report_service),
):
    report = reports.generate_weekly_report(user_id, week_value)
    return _report_response(Granularity.week, report)


@app.get("/api/reports/monthly/available-months")
def available_months(
    user_id: int = Depends(current_user_id),
    reports: ReportService = Depends(get_report_service),
):
    return {
        "success": True,
        "data": {"periods": reports.available_months(user_id)},
        "message": "Available months retrieved successfully",
    }


@app.get("/api/reports/monthly")
def monthly_report(
    period: Optional[str] = Query(default=None, alias="date"),
    user_id: int = Depends(current_user_id),
    reports: ReportService = Depends(get_report_service),
):
    report = reports.generate_monthly_report(user_id, _require_token(period))
    return _report_response(Granularity.month, report)


@app.get("/api/reports/monthly/data/{month_value}")
def monthly_data(
    month_value: str,
    user_id: int = Depends(current_user_id),
    reports: ReportService = Depends(get_report_service),
):
    report = reports.generate_monthly_report(user_id, month_value)
    return _report_response(Granularity.month, report)


@app.get("/api/reports/quarterly")
def quarterly_report(
    period: Optional[str] = Query(default=None, alias="date"),
    user_id: int = Depends(current_user_id),
    reports: ReportService = Depends(get_report_service),
):
    report = reports.generate_quarterly_report(user_id, _require_token(period))
    return _report_response(Granularity.quarter, report)


@app.get("/api/reports/quarterly/data/{quarter_value}")
def quarterly_data(
    quarter_value: str,
    user_id: int = Depends(current_user_id),
    reports: ReportService = Depends(get_report_service),
):
    report = reports.generate_quarterly_report(user_id, quarter_value)
    return _report_response(Granularity.quarter, report)


@app.get("/api/reports/quarters/available")
def available_quarters(
    user_id: int = Depends(current_user_id),
    reports: ReportService = Depends(get_report_service),
):
    return {
        "success": True,
        "data": {"quarters": reports.available_quarters(user_id)},
        "message": "Available quarters retrieved successfully",
    }


@app.get("/api/reports/yearly")
def yearly_report(
    period: Optional[str] = Query(default=None, alias="date"),
    user_id: int = Depends(current_user_id),
    reports: ReportService = Depends(get_report_service),
):
    report = reports.generate_yearly_report(user_id, _require_token(period))
    return _report_response(Granularity.year, report)


@app.get("/api/reports/yearly/data/{year_value}")
def yearly_data(
    year_value: str,
    user_id: int = Depends(current_user_id),
    reports: ReportService = Depends(get_report_service),
):
    report = reports.generate_yearly_report(user_id, year_value)
    return _report_response(Granularity.year, report)


@app.get("/api/reports/years/available")
def available_years(
    user_id: int = Depends(current_user_id),
    reports: ReportService = Depends(get_report_service),
):
    return {
        "success": True,
        "data": {"years": reports.available_years(user_id)},
        "message": "Available years retrieved successfully",
    }


@app.get("/api/reports/health")
def reports_health():
    return {
        "success": True,
        "message": "Report service is healthy",
        "timestamp": datetime.utcnow().isoformat(),
    }


def _token_response(user_id: int) -> dict:
    return {
        "access_token": issue_access_token(user_id),
        "token_type": "bearer",
        "expires_in": get_settings().token_max_age_hours * 3600,
    }


@app.post("/api/auth/register")
def register(payload: UserIn, db: Session = Depends(get_db)):
    user = UserService(db).register(payload)
    return {
        "success": True,
        "data": {"id": user.id, "email": user.email, "name": user.name, **_token_response(user.id)},
        "message": "User registered successfully",
    }


@app.post("/api/auth/token")
def issue_token(payload: TokenRequest, db: Session = Depends(get_db)):
    user = UserService(db).get_by_email(payload.email)
    if user is None:
        raise HTTPException(status_code=401, detail="Unknown user")
    return {"success": True, "data": _token_response(user.id), "message": "Token issued"}


def _bill_out(bill: Bill) -> dict:
    return {
        "id": bill.id,
        "bill_month": bill.bill_month,
        "total_balance_cents": bill.total_balance_cents,
    }


@app.get("/api/bills")
def list_bills(
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    bills = BillService(db, user_id).list_all()
    return {
        "success": True,
        "data": [_bill_out(bill) for bill in bills],
        "message": "Bills retrieved successfully",
    }


@app.post("/api/bills")
def upsert_bill(
    payload: BillIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    bill = BillService(db, user_id).upsert(payload)
    return {"success": True, "data": _bill_out(bill), "message": "Bill saved"}


def _entry_out(entry: DailyEntry) -> dict:
    return {
        "id": entry.id,
        "bill_id": entry.bill_id,
        "entry_date": entry.entry_date,
        "total_debit_cents": entry.total_debit_cents,
        "items": [
            {
                "id": item.id,
                "category": item.category,
                "amount_cents": item.amount_cents,
                "description": item.description,
                "proof_url": item.proof_url,
            }
            for item in entry.items
        ],
    }


@app.post("/api/entries")
def add_entry(
    payload: DailyEntryIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    entry = EntryService(db, user_id).add_entry(payload)
    return {"success": True, "data": _entry_out(entry), "message": "Entry saved"}


def _notification_out(notification: Notification) -> dict:
    return {
        "id": notification.id,
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "data": notification.data,
        "is_read": notification.is_read,
        "created_at": notification.created_at,
    }


@app.get("/api/notifications")
def list_notifications(
    unread: bool = False,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    items = NotificationService(db).list_for_user(user_id, unread_only=unread)
    return {
        "success": True,
        "data": [_notification_out(n) for n in items],
        "message": "Notifications retrieved successfully",
    }


@app.post("/api/notifications/{notification_id}/read")
def mark_notification_read(
    notification_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        notification = NotificationService(db).mark_read(user_id, notification_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"success": True, "data": _notification_out(notification), "message": "Marked as read"}


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
