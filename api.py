import logging
from dataclasses import asdict
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

import categories as registry
from config import get_settings
from dashboard import Dashboard
from database import Base, build_engine, build_session_factory
from domain import Expense
from errors import IdentityRequiredError, NotFoundError, PersistenceError
from identity import IdentityProvider
from metrics import AggregateView, DayGroup, daily_groups
from scheduler import SchedulerManager
from schemas import (
    BudgetIn,
    CustomCategoryIn,
    ExpenseIn,
    ExpensePatch,
    PeriodIn,
    PreferencesIn,
    ProfileIn,
    SessionIn,
)
from store import DocumentStore, SQLDocumentStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def serialize_expense(expense: Expense) -> dict[str, object]:
    return {
        "id": expense.id,
        "amount": expense.amount,
        "category_id": expense.category_id,
        "note": expense.note,
        "date": expense.date.isoformat() if expense.date else None,
        "created_at": expense.created_at.isoformat() if expense.created_at else None,
    }


def serialize_view(view: AggregateView) -> dict[str, object]:
    return {
        "period": view.period.value,
        "reference": view.reference.isoformat() if view.reference else None,
        "totals": asdict(view.totals),
        "budget": asdict(view.budget),
        "recent": [serialize_expense(e) for e in view.recent],
        "breakdown": [asdict(entry) for entry in view.breakdown],
        "series": [asdict(bucket) for bucket in view.series],
        "period_total": view.period_total,
        "expense_count": view.expense_count,
        "error": view.error,
    }


def serialize_day(group: DayGroup) -> dict[str, object]:
    return {
        "date": group.day.isoformat(),
        "total": group.total,
        "expenses": [serialize_expense(e) for e in group.expenses],
    }


def _default_store() -> DocumentStore:
    engine = build_engine()
    Base.metadata.create_all(engine)
    return SQLDocumentStore(build_session_factory(engine))


def create_app(
    store: Optional[DocumentStore] = None,
    *,
    scheduler: Optional[SchedulerManager] = None,
    mode: Optional[str] = None,
) -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="Expense Tracker")
    store = store or _default_store()
    scheduler = scheduler or SchedulerManager()
    identity = IdentityProvider()
    dashboard = Dashboard(store, scheduler=scheduler, mode=mode or settings.live_query)

    app.state.identity = identity
    app.state.dashboard = dashboard
    app.state.scheduler = scheduler

    async def refresh_view():
        dashboard.refresh()

    @app.on_event("startup")
    async def startup_event():
        scheduler.start()
        scheduler.add_daily("view_refresh", refresh_view)
        dashboard.attach(identity)

    @app.on_event("shutdown")
    async def shutdown_event():
        await dashboard.close()
        scheduler.stop()

    @app.exception_handler(IdentityRequiredError)
    async def identity_required_handler(request: Request, exc: IdentityRequiredError):
        return JSONResponse(status_code=401, content={"detail": str(exc)})

    @app.exception_handler(PersistenceError)
    async def persistence_handler(request: Request, exc: PersistenceError):
        logger.warning(f"request_failed: path={request.url.path} error={exc}")
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.post("/session")
    async def sign_in(payload: SessionIn):
        ctx = identity.sign_in(payload.user_id, payload.email)
        await dashboard.settled()
        return {"user_id": ctx.user_id, "email": ctx.email}

    @app.delete("/session", status_code=204)
    async def sign_out():
        identity.sign_out()
        await dashboard.settled()

    @app.get("/summary")
    async def summary():
        return serialize_view(dashboard.view)

    @app.put("/period")
    async def change_period(payload: PeriodIn):
        return serialize_view(dashboard.set_period(payload.period))

    @app.get("/expenses")
    async def list_expenses():
        if dashboard.ctx is None:
            raise IdentityRequiredError("No signed-in user")
        return [serialize_expense(e) for e in dashboard.snapshot]

    @app.get("/expenses/daily")
    async def list_expenses_by_day():
        if dashboard.ctx is None:
            raise IdentityRequiredError("No signed-in user")
        return [serialize_day(group) for group in daily_groups(dashboard.snapshot)]

    @app.get("/expenses/{expense_id}")
    async def get_expense(expense_id: str):
        try:
            return serialize_expense(dashboard.expense(expense_id))
        except NotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @app.post("/expenses", status_code=201)
    async def create_expense(payload: ExpenseIn):
        try:
            expense_id = await dashboard.create_expense(payload)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"id": expense_id}

    @app.put("/expenses/{expense_id}", status_code=204)
    async def update_expense(expense_id: str, payload: ExpensePatch):
        try:
            await dashboard.update_expense(expense_id, payload)
        except NotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @app.delete("/expenses/{expense_id}", status_code=204)
    async def delete_expense(expense_id: str):
        await dashboard.delete_expense(expense_id)

    @app.put("/budget")
    async def set_budget(payload: BudgetIn):
        try:
            value = await dashboard.set_budget(payload.amount)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"budget": value, "summary": serialize_view(dashboard.view)}

    @app.get("/categories")
    async def list_categories():
        return [asdict(cat) for cat in dashboard.category_list()]

    @app.get("/categories/icons")
    async def list_icons():
        return list(registry.AVAILABLE_ICONS)

    @app.post("/categories", status_code=201)
    async def add_category(payload: CustomCategoryIn):
        try:
            return await dashboard.add_category(payload.name, payload.icon)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @app.delete("/categories/{category_id}", status_code=204)
    async def remove_category(category_id: str):
        if not registry.is_custom_id(category_id):
            raise HTTPException(status_code=400, detail="Built-in categories cannot be deleted")
        await dashboard.remove_category(category_id)

    @app.get("/profile")
    async def get_profile():
        return {"display_name": await dashboard.display_name()}

    @app.put("/profile")
    async def update_profile(payload: ProfileIn):
        try:
            return {"display_name": await dashboard.set_display_name(payload.display_name)}
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @app.get("/preferences")
    async def get_preferences():
        return asdict(await dashboard.load_preferences())

    @app.put("/preferences")
    async def update_preferences(payload: PreferencesIn):
        try:
            return asdict(await dashboard.save_preferences(payload))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    return app

