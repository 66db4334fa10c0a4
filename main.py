import logging
import tomllib
from dataclasses import asdict
from importlib import metadata
from pathlib import Path
from typing import Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Request
from pydantic import ValidationError

from config import Settings, get_settings
from csrf import CSRF_HEADER, generate_csrf_token, validate_csrf_token
from database import init_db
from models import TransactionType
from mutations import CachedRecord, EntityController, build_controllers
from notifications import NotificationCenter, Notifier
from periods import DateRange, display_text, resolve_range
from query_cache import QueryCache
from reports import (
    aggregate_by_category,
    budget_breakdown,
    budget_window,
    history_series,
    totals_by_type,
)
from scheduler import SchedulerManager
from services import DataService, RestDataService, SqlDataService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Tracker")

PROJECT_FILE = Path(__file__).resolve().parent / "pyproject.toml"


def _load_app_version(path: Path = PROJECT_FILE) -> str:
    try:
        with path.open("rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError):
        try:
            return metadata.version("finance-tracker")
        except metadata.PackageNotFoundError:
            return "unknown"
    return str(data.get("project", {}).get("version", "unknown"))


APP_VERSION = _load_app_version()


def build_backend(settings: Settings) -> DataService:
    if settings.backend == "rest":
        if not settings.rest_url or not settings.rest_api_key:
            raise RuntimeError(
                "FINTRACK_REST_URL and FINTRACK_REST_API_KEY are required for the rest backend"
            )
        return RestDataService(
            settings.rest_url,
            settings.rest_api_key,
            settings.user_id,
            timeout=settings.rest_timeout_secs,
        )
    if settings.backend != "sql":
        raise ValueError(f"Unsupported backend: {settings.backend}")
    init_db()
    return SqlDataService(settings.user_id)


@app.on_event("startup")
async def startup_event():
    settings = get_settings()
    cache = QueryCache(gc_time_secs=settings.cache_gc_secs)
    notifications = NotificationCenter(limit=settings.notification_limit)
    backend = build_backend(settings)

    app.state.cache = cache
    app.state.backend = backend
    app.state.notifications = notifications
    app.state.controllers = build_controllers(cache, backend, Notifier([notifications]))
    app.state.scheduler = SchedulerManager(cache)
    app.state.scheduler.start()
    logger.info(f"startup: backend={settings.backend} version={APP_VERSION}")


@app.on_event("shutdown")
async def shutdown_event():
    app.state.scheduler.stop()
    app.state.cache.clear()
    await app.state.backend.aclose()


def get_controllers(request: Request) -> dict[str, EntityController]:
    return request.app.state.controllers


def get_controller(entity: str, request: Request) -> EntityController:
    controllers = get_controllers(request)
    if entity not in controllers:
        raise HTTPException(status_code=404, detail=f"Unknown entity: {entity}")
    return controllers[entity]


def require_csrf(request: Request) -> None:
    if not validate_csrf_token(request.headers.get(CSRF_HEADER)):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")


def range_from_request(request: Request) -> DateRange:
    try:
        return resolve_range(
            request.query_params.get("start"), request.query_params.get("end")
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def type_from_request(request: Request) -> TransactionType:
    try:
        return TransactionType(request.query_params.get("type") or "expense")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def record_json(record: CachedRecord) -> dict[str, object]:
    return record.as_dict()


def _reject_locked(controller: EntityController, record_id: str) -> None:
    cached = controller.find_cached(record_id)
    if cached is not None and cached.locked:
        raise HTTPException(
            status_code=409,
            detail=f"{controller.spec.label} has a pending change",
        )


@app.get("/api/health")
def health():
    return {"status": "ok", "version": APP_VERSION, "backend": get_settings().backend}


@app.get("/api/csrf")
def csrf_token():
    return {"token": generate_csrf_token(), "header": CSRF_HEADER}


@app.get("/api/notifications")
def notifications(request: Request):
    center: NotificationCenter = request.app.state.notifications
    return [
        {**asdict(toast), "level": toast.level.value, "created_at": toast.created_at.isoformat()}
        for toast in center.recent()
    ]


@app.get("/api/transactions/range")
async def transactions_in_range(request: Request):
    date_range = range_from_request(request)
    controller = get_controllers(request)["transactions"]
    records = await controller.list_range(date_range)
    return {
        "start": date_range.start.isoformat(),
        "end": date_range.end.isoformat(),
        "label": display_text(date_range),
        "items": [record_json(r) for r in records],
    }


@app.get("/api/dashboard/summary")
async def dashboard_summary(request: Request):
    date_range = range_from_request(request)
    records = await get_controllers(request)["transactions"].list_range(date_range)
    return {
        "label": display_text(date_range),
        "totals": totals_by_type(r.data for r in records),
        "count": len(records),
    }


@app.get("/api/dashboard/categories")
async def dashboard_categories(request: Request):
    date_range = range_from_request(request)
    txn_type = type_from_request(request)
    records = await get_controllers(request)["transactions"].list_range(date_range)
    return [asdict(b) for b in aggregate_by_category((r.data for r in records), txn_type)]


@app.get("/api/dashboard/history")
async def dashboard_history(request: Request):
    date_range = range_from_request(request)
    txn_type = type_from_request(request)
    category_id = request.query_params.get("category") or None
    records = await get_controllers(request)["transactions"].list_range(date_range)
    return [
        {"day": point.day.isoformat(), "amount": point.amount, "count": point.count}
        for point in history_series((r.data for r in records), txn_type, category_id)
    ]


@app.get("/api/dashboard/budget")
async def dashboard_budget(request: Request, budget_id: Optional[str] = None):
    controllers = get_controllers(request)
    budgets = [b for b in await controllers["budget"].list() if not b.locked]
    if budget_id:
        budgets = [b for b in budgets if b.id == budget_id]
    if not budgets:
        return {"budget": None}

    budget = budgets[0]
    window = budget_window(budget.data)
    records = await controllers["transactions"].list_range(window)
    txns = [r.data for r in records]
    breakdown = budget_breakdown(budget.data, txns)
    return {
        "budget": record_json(budget),
        "period": display_text(window),
        "used": breakdown.used,
        "available": breakdown.available,
        "total_budget": breakdown.total_budget,
        "usage_percentage": breakdown.usage_percentage,
        "status": breakdown.status.value,
        "message": breakdown.status_message,
        "categories": [asdict(b) for b in aggregate_by_category(txns, TransactionType.expense)],
    }


@app.get("/api/{entity}")
async def list_entities(controller: EntityController = Depends(get_controller)):
    return [record_json(r) for r in await controller.list()]


@app.get("/api/{entity}/{record_id}")
async def get_entity(record_id: str, controller: EntityController = Depends(get_controller)):
    record = await controller.get(record_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"{controller.spec.label} not found")
    return record_json(record)


@app.post("/api/{entity}", status_code=201, dependencies=[Depends(require_csrf)])
async def create_entity(
    payload: dict = Body(...),
    controller: EntityController = Depends(get_controller),
):
    try:
        data = controller.spec.create_schema.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False, include_context=False)) from exc
    outcome = await controller.create(data.model_dump(mode="json", exclude_none=True))
    if not outcome.ok:
        raise HTTPException(status_code=502, detail=outcome.error)
    return record_json(outcome.record)


@app.patch("/api/{entity}/{record_id}", dependencies=[Depends(require_csrf)])
async def update_entity(
    record_id: str,
    payload: dict = Body(...),
    controller: EntityController = Depends(get_controller),
):
    try:
        data = controller.spec.patch_schema.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False, include_context=False)) from exc
    _reject_locked(controller, record_id)
    outcome = await controller.update(record_id, data.model_dump(mode="json", exclude_unset=True))
    if not outcome.ok:
        raise HTTPException(status_code=502, detail=outcome.error)
    return {"id": record_id, "updated": True}


@app.delete("/api/{entity}/{record_id}", dependencies=[Depends(require_csrf)])
async def delete_entity(record_id: str, controller: EntityController = Depends(get_controller)):
    _reject_locked(controller, record_id)
    outcome = await controller.delete(record_id)
    if not outcome.ok:
        raise HTTPException(status_code=502, detail=outcome.error)
    return {"id": record_id, "deleted": True}


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
