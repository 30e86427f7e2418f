import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session

from aggregation import Dimension, SeriesPoint
from config import get_settings
from database import get_db, init_db, session_scope
from models import User
from periods import Period, resolve_period
from records import AmbiguousCategoryError, cents_to_decimal
from recurrence import local_today
from schemas import (
    AccountIn,
    AccountOut,
    CategoryRenameIn,
    FamilyIn,
    OccurrenceOut,
    TransactionIn,
    TransactionOut,
)
from services import (
    AccountService,
    DashboardService,
    FamilyService,
    InsufficientFundsError,
    NotFoundError,
    TransactionService,
    get_current_user_id,
)


logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Family Ledger")


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()


@app.on_event("startup")
def startup_event():
    init_db()
    with session_scope() as session:
        user_id = get_current_user_id()
        if not session.scalar(select(User.id).where(User.id == user_id)):
            session.add(
                User(
                    id=user_id,
                    username="owner",
                    name="Owner",
                    email="owner@example.com",
                    is_admin=True,
                )
            )
            logger.info(f"startup: created default user id={user_id}")
    logger.info(f"startup: version={APP_VERSION}")


def period_from_request(request: Request) -> Period:
    period_slug = request.query_params.get("period")
    start = request.query_params.get("start")
    end = request.query_params.get("end")
    try:
        months = int(request.query_params.get("months", "6"))
        return resolve_period(period_slug, start, end, months=months, today=local_today())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def dimension_from_request(request: Request) -> Optional[Dimension]:
    raw = request.query_params.get("by")
    if not raw:
        return None
    try:
        return Dimension(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Unknown dimension '{raw}'") from exc


def serialize_point(point: SeriesPoint) -> dict[str, object]:
    return {
        "key": list(point.key) if isinstance(point.key, tuple) else point.key,
        "label": point.label,
        "group": point.group,
        "income_cents": point.income_cents,
        "expense_cents": point.expense_cents,
        "transfer_cents": point.transfer_cents,
        "net_cents": point.net_cents,
        "expense_by_category": point.expense_by_category,
    }


def _dump(model: type[BaseModel], obj) -> dict:
    return model.model_validate(obj).model_dump(mode="json")


@app.get("/api/version")
def api_version():
    return {"version": APP_VERSION}


@app.get("/api/accounts")
def api_accounts(db: Session = Depends(get_db)):
    return [_dump(AccountOut, a) for a in AccountService(db).list_all()]


@app.post("/api/accounts", status_code=201)
def api_create_account(data: AccountIn, db: Session = Depends(get_db)):
    return _dump(AccountOut, AccountService(db).create(data))


@app.get("/api/accounts/{account_id}")
def api_account(account_id: int, db: Session = Depends(get_db)):
    try:
        return _dump(AccountOut, AccountService(db).get(account_id))
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.patch("/api/accounts/{account_id}")
def api_update_account(account_id: int, data: AccountIn, db: Session = Depends(get_db)):
    try:
        return _dump(AccountOut, AccountService(db).update(account_id, data))
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.delete("/api/accounts/{account_id}", status_code=204)
def api_delete_account(account_id: int, db: Session = Depends(get_db)):
    try:
        AccountService(db).delete(account_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get("/api/accounts/{account_id}/balance")
def api_account_balance(
    account_id: int, as_of: Optional[date] = None, db: Session = Depends(get_db)
):
    dashboard = DashboardService(db)
    target = as_of or dashboard.today
    try:
        cents = dashboard.balance_as_of(account_id, target)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {
        "account_id": account_id,
        "as_of": target.isoformat(),
        "balance_cents": cents,
        "balance": str(cents_to_decimal(cents)),
    }


@app.get("/api/transactions")
def api_transactions(request: Request, db: Session = Depends(get_db)):
    period = period_from_request(request) if request.query_params.get("period") else None
    account_param = request.query_params.get("account")
    account_id = int(account_param) if account_param and account_param.isdigit() else None
    items = TransactionService(db).list(period, account_id=account_id)
    return [_dump(TransactionOut, txn) for txn in items]


@app.post("/api/transactions", status_code=201)
def api_create_transaction(data: TransactionIn, db: Session = Depends(get_db)):
    try:
        return _dump(TransactionOut, TransactionService(db).create(data))
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (InsufficientFundsError, AmbiguousCategoryError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/transactions/{transaction_id}")
def api_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        return _dump(TransactionOut, TransactionService(db).get(transaction_id))
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.patch("/api/transactions/{transaction_id}")
def api_update_transaction(
    transaction_id: int, data: TransactionIn, db: Session = Depends(get_db)
):
    try:
        return _dump(TransactionOut, TransactionService(db).update(transaction_id, data))
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except AmbiguousCategoryError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def api_delete_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        TransactionService(db).delete(transaction_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.post("/api/categories/rename")
def api_rename_category(data: CategoryRenameIn, db: Session = Depends(get_db)):
    try:
        count = TransactionService(db).rename_category(
            data.old_category, data.new_category
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"updated": count}


@app.get("/api/categories")
def api_categories(db: Session = Depends(get_db)):
    return list(DashboardService(db).category_catalog())


@app.post("/api/families", status_code=201)
def api_create_family(data: FamilyIn, db: Session = Depends(get_db)):
    family = FamilyService(db).create(data)
    return {"id": family.id, "name": family.name, "currency": family.currency}


@app.get("/api/families")
def api_families(db: Session = Depends(get_db)):
    return [
        {"id": f.id, "name": f.name, "currency": f.currency}
        for f in FamilyService(db).list_all()
    ]


@app.post("/api/families/{family_id}/members/{user_id}")
def api_add_family_member(family_id: int, user_id: int, db: Session = Depends(get_db)):
    try:
        user = FamilyService(db).add_member(family_id, user_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"id": user.id, "family_id": user.family_id}


@app.delete("/api/families/members/{user_id}")
def api_remove_family_member(user_id: int, db: Session = Depends(get_db)):
    try:
        user = FamilyService(db).remove_member(user_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"id": user.id, "family_id": user.family_id}


@app.get("/api/families/{family_id}/members")
def api_family_members(family_id: int, db: Session = Depends(get_db)):
    try:
        members = FamilyService(db).members(family_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return [{"id": u.id, "name": u.name, "username": u.username} for u in members]


@app.get("/api/dashboard/summary")
def api_dashboard_summary(request: Request, db: Session = Depends(get_db)):
    period = period_from_request(request)
    return DashboardService(db).summary(period)


@app.get("/api/dashboard/daily")
def api_dashboard_daily(
    year: Optional[int] = None, month: Optional[int] = None, db: Session = Depends(get_db)
):
    dashboard = DashboardService(db)
    year = year or dashboard.today.year
    month = month or dashboard.today.month
    if month < 1 or month > 12:
        raise HTTPException(status_code=400, detail="month must be between 1 and 12")
    return [serialize_point(p) for p in dashboard.daily_activity(year, month)]


@app.get("/api/dashboard/monthly")
def api_dashboard_monthly(months: Optional[int] = None, db: Session = Depends(get_db)):
    if months is not None and months < 1:
        raise HTTPException(status_code=400, detail="months must be at least 1")
    return [serialize_point(p) for p in DashboardService(db).monthly_overview(months)]


@app.get("/api/dashboard/breakdown")
def api_dashboard_breakdown(request: Request, db: Session = Depends(get_db)):
    period = period_from_request(request)
    dimension = dimension_from_request(request) or Dimension.category
    expenses_only = request.query_params.get("expenses_only", "0") in {"1", "true", "yes"}
    points = DashboardService(db).breakdown(
        period, dimension, expenses_only=expenses_only
    )
    return [serialize_point(p) for p in points]


@app.get("/api/dashboard/upcoming")
def api_dashboard_upcoming(days: Optional[int] = None, db: Session = Depends(get_db)):
    if days is not None and days < 0:
        raise HTTPException(status_code=400, detail="days must not be negative")
    upcoming = DashboardService(db).upcoming_payments(days=days)
    return [
        {
            "next_date": item.next_date.isoformat(),
            "monthly_cents": item.monthly_cents,
            "transaction": OccurrenceOut.from_record(item.record).model_dump(mode="json"),
        }
        for item in upcoming
    ]


@app.get("/api/dashboard/occurrences")
def api_dashboard_occurrences(request: Request, db: Session = Depends(get_db)):
    period = period_from_request(request)
    records = DashboardService(db).with_occurrences(period)
    records.sort(key=lambda r: (r.date, r.source_id))
    return [OccurrenceOut.from_record(r).model_dump(mode="json") for r in records]


@app.get("/api/analytics/recurring")
def api_analytics_recurring(db: Session = Depends(get_db)):
    return DashboardService(db).recurring_summary()


@app.get("/api/analytics/balance-trend")
def api_analytics_balance_trend(
    months: Optional[int] = None, db: Session = Depends(get_db)
):
    if months is not None and months < 0:
        raise HTTPException(status_code=400, detail="months must not be negative")
    return [
        {
            "month": point.label,
            "month_start": point.month_start.isoformat(),
            "total_cents": point.total_cents,
            "balances": {str(k): v for k, v in point.balances.items()},
        }
        for point in DashboardService(db).balance_trend(months)
    ]


@app.get("/api/analytics/cash-flow-forecast")
def api_analytics_cash_flow(days: Optional[int] = None, db: Session = Depends(get_db)):
    if days is not None and days < 0:
        raise HTTPException(status_code=400, detail="days must not be negative")
    return [
        {
            "date": point.day.isoformat(),
            "income_cents": point.income_cents,
            "expense_cents": point.expense_cents,
            "balance_cents": point.balance_cents,
        }
        for point in DashboardService(db).cash_flow_forecast(days)
    ]
