"""FastAPI router for the vitals domain.

Endpoints:
- GET  /api/v1/users/{id}/dashboard
- GET  /api/v1/users/{id}/history?metric=&date=
- GET  /api/v1/users/{id}/sleep/nights?start=&end=
- GET  /api/v1/users/{id}/heart-rate/bands?date=
- POST /api/v1/users/{id}/sync/today
- POST /api/v1/users/{id}/sync/recent?days=
- POST /api/v1/users/{id}/sync/{metric}?date=

Read endpoints are snapshots computed from the local store. Sync endpoints
submit an orchestrator task and answer 202 with its results, or with
``pending`` if it outlives the sync timeout.
"""

import time
from datetime import UTC, date, datetime, timedelta
from typing import Any

from fastapi import APIRouter, Depends, Query, Request

from shared.config import settings
from shared.exceptions import (
    FutureDateError,
    InvalidDateRangeError,
    UnsupportedMetricError,
    ValidationError,
)
from shared.metrics import api_requests_total, api_response_duration_seconds
from shared.middleware import request_id_var
from vitals.aggregation import (
    daily_summary,
    history_view,
    hourly_bands,
    nightly_sleep,
    selection_window,
)
from vitals.domain.calendar import at_local_hour, day_bounds, local_date, start_of_day
from vitals.domain.models import MetricKind
from vitals.domain.views import Selection, view_to_dict
from vitals.reactive import DASHBOARD_DAYS, first_name
from vitals.store import SampleStore
from vitals.sync import SyncHandle, SyncOrchestrator, SyncRequest

router = APIRouter(prefix="/api/v1")

MAX_RECENT_DAYS = 31


# --- Dependencies ---


def get_store(request: Request) -> SampleStore:
    return request.app.state.store


def get_orchestrator(request: Request) -> SyncOrchestrator:
    return request.app.state.orchestrator


# --- Response helpers ---


def _meta() -> dict[str, Any]:
    return {
        "request_id": request_id_var.get(""),
        "timestamp": datetime.now(UTC).isoformat(),
        "api_version": settings.api_version,
    }


def _parse_metric(metric: str) -> MetricKind:
    try:
        return MetricKind(metric.upper())
    except ValueError:
        raise UnsupportedMetricError(metric, [k.value for k in MetricKind]) from None


def _resolve_date(selected: date | None, orchestrator: SyncOrchestrator) -> date:
    today = local_date(orchestrator.clock(), orchestrator.tz)
    if selected is None:
        return today
    if selected > today:
        raise FutureDateError(selected.isoformat())
    return selected


def _observe(endpoint: str, method: str, status_code: int, start_time: float) -> None:
    api_requests_total.labels(endpoint=endpoint, method=method, status_code=str(status_code)).inc()
    api_response_duration_seconds.labels(endpoint=endpoint).observe(time.monotonic() - start_time)


async def _await_sync(handle: SyncHandle) -> dict[str, Any]:
    results = await handle.wait(settings.sync_timeout_seconds)
    if results is None:
        return {"status": "pending", "results": []}
    status = "ok" if all(r.ok for r in results) else "partial"
    if results and not any(r.ok for r in results):
        status = "failed"
    return {"status": status, "results": [r.as_dict() for r in results]}


# --- Read endpoints ---


@router.get("/users/{user_id}/dashboard")
async def get_dashboard(
    user_id: str,
    name: str | None = Query(None, description="Display name; reduced to the first name"),
    store: SampleStore = Depends(get_store),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Today's summary plus weekly step and calorie series."""
    start_time = time.monotonic()
    tz = orchestrator.tz
    now = orchestrator.clock()
    today = local_date(now, tz)
    start = start_of_day(today - timedelta(days=DASHBOARD_DAYS - 1), tz)
    _, end = day_bounds(today, tz)

    records = await store.get_range(user_id, start, end)
    view = daily_summary(records, user_id, first_name(name), now, tz, settings.night_start_hour)

    _observe("dashboard", "GET", 200, start_time)
    return {"data": view_to_dict(view), "meta": _meta()}


@router.get("/users/{user_id}/history")
async def get_history(
    user_id: str,
    metric: str = Query(..., description="Metric kind, e.g. STEPS or HEART_RATE"),
    selected: date | None = Query(None, alias="date", description="Local day; defaults to today"),
    store: SampleStore = Depends(get_store),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """History for one metric on one local day (sleep: the seven nights ending that day)."""
    start_time = time.monotonic()
    kind = _parse_metric(metric)
    selection = Selection(metric=kind, selected_date=_resolve_date(selected, orchestrator))
    tz = orchestrator.tz

    start, _ = selection_window(selection, orchestrator.clock(), tz)
    _, end = day_bounds(selection.selected_date, tz)
    records = await store.get_range(user_id, start, end)
    view = history_view(records, selection, orchestrator.clock(), tz, settings.night_start_hour)

    _observe("history", "GET", 200, start_time)
    return {"data": view_to_dict(view), "meta": _meta()}


@router.get("/users/{user_id}/sleep/nights")
async def get_sleep_nights(
    user_id: str,
    start: date = Query(..., description="First night (local date the night begins)"),
    end: date = Query(..., description="Last night, inclusive"),
    store: SampleStore = Depends(get_store),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Asleep minutes per night key for nights starting within [start, end]."""
    start_time = time.monotonic()
    if start > end:
        raise InvalidDateRangeError(start.isoformat(), end.isoformat())

    tz = orchestrator.tz
    hour = settings.night_start_hour
    window_start = at_local_hour(start, hour, tz)
    window_end = at_local_hour(end + timedelta(days=1), hour, tz)
    records = await store.get_range(user_id, window_start, window_end)
    view = nightly_sleep(records, tz, hour)

    _observe("sleep_nights", "GET", 200, start_time)
    return {
        "data": {
            "status": view.status.value,
            "nights": [{"night_key": key, "asleep_minutes": minutes} for key, minutes in view.nights],
            "most_recent_night_key": view.most_recent_night_key,
            "most_recent_night_minutes": view.most_recent_night_minutes,
        },
        "meta": _meta(),
    }


@router.get("/users/{user_id}/heart-rate/bands")
async def get_heart_rate_bands(
    user_id: str,
    selected: date | None = Query(None, alias="date"),
    store: SampleStore = Depends(get_store),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Per-hour heart-rate min/max for one local day, hours without data omitted."""
    start_time = time.monotonic()
    day = _resolve_date(selected, orchestrator)
    start, end = day_bounds(day, orchestrator.tz)
    records = await store.get_range(user_id, start, end)
    view = hourly_bands(records, orchestrator.tz)

    _observe("heart_rate_bands", "GET", 200, start_time)
    return {"data": {"status": view.status.value, **view_to_dict(view)}, "meta": _meta()}


# --- Sync triggers ---


@router.post("/users/{user_id}/sync/today", status_code=202)
async def sync_today(
    user_id: str,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Summary sync plus every metric for today."""
    start_time = time.monotonic()
    handle = orchestrator.submit(SyncRequest(user_id=user_id))
    body = await _await_sync(handle)
    _observe("sync_today", "POST", 202, start_time)
    return {"data": body, "meta": _meta()}


@router.post("/users/{user_id}/sync/recent", status_code=202)
async def sync_recent(
    user_id: str,
    days: int | None = Query(None, description="Days to backfill, including today"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    start_time = time.monotonic()
    days = days if days is not None else settings.recent_days
    if not 1 <= days <= MAX_RECENT_DAYS:
        raise ValidationError(
            [
                {
                    "field": "days",
                    "message": f"days must be between 1 and {MAX_RECENT_DAYS}",
                    "constraint": "range",
                }
            ]
        )
    results = await orchestrator.sync_recent_days(user_id, days)
    _observe("sync_recent", "POST", 202, start_time)
    return {
        "data": {
            "status": "ok" if all(r.ok for r in results) else "partial",
            "results": [r.as_dict() for r in results],
        },
        "meta": _meta(),
    }


@router.post("/users/{user_id}/sync/{metric}", status_code=202)
async def sync_metric(
    user_id: str,
    metric: str,
    selected: date | None = Query(None, alias="date"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Sync one metric over the history window of the selected day."""
    start_time = time.monotonic()
    kind = _parse_metric(metric)
    day = _resolve_date(selected, orchestrator)
    start, end = selection_window(
        Selection(metric=kind, selected_date=day), orchestrator.clock(), orchestrator.tz
    )

    handle = orchestrator.submit(
        SyncRequest(user_id=user_id, kind=kind, start_millis=start, end_millis=end)
    )
    body = await _await_sync(handle)
    _observe("sync_metric", "POST", 202, start_time)
    return {"data": body, "meta": _meta()}
