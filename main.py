"""FastAPI application entry point.

Wires together: middleware, exception handlers, routes, metrics, and the
store/provider/orchestrator runtime. Validates config at startup.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from shared.config import settings
from shared.exceptions import ProblemDetailError
from shared.logging import configure_logging
from shared.metrics import create_metrics_app
from shared.middleware import (
    RequestIdMiddleware,
    http_exception_handler,
    problem_detail_handler,
    request_validation_handler,
    sync_error_handler,
)
from vitals.adapters.factory import get_provider
from vitals.api import router as vitals_router
from vitals.domain.errors import SyncError
from vitals.locks import KeyedLock
from vitals.store import InMemorySampleStore
from vitals.sync import SyncOrchestrator

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    configure_logging(json_output=True)
    locks = KeyedLock()
    engine = None

    if settings.store_backend == "postgres":
        from shared.database import build_engine, build_session_factory
        from vitals.repository import SqlSampleStore

        engine = build_engine()
        store = SqlSampleStore(build_session_factory(engine), guard=locks)
    else:
        store = InMemorySampleStore(guard=locks)

    orchestrator = SyncOrchestrator(store, get_provider(), locks=locks)
    app.state.store = store
    app.state.orchestrator = orchestrator

    logger.info(
        "app_starting",
        adapter_mode=settings.adapter_mode,
        store_backend=settings.store_backend,
        timezone=settings.timezone,
        database_url=settings.database_url.split("@")[-1],  # hide credentials
    )
    yield
    logger.info("app_shutting_down")
    await orchestrator.aclose()
    if engine is not None:
        await engine.dispose()


app = FastAPI(
    title="Vitals Sync API",
    description=(
        "Syncs health metrics (heart rate, steps, calories, distance, sleep, activity) "
        "from Google Fit into a local store and serves derived daily, weekly and "
        "nightly views."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestIdMiddleware)

# All errors emit application/problem+json (RFC 9457)
app.add_exception_handler(ProblemDetailError, problem_detail_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(SyncError, sync_error_handler)

app.include_router(vitals_router)

metrics_app = create_metrics_app()
app.mount("/metrics", metrics_app)


@app.get("/health")
async def health():
    return {"status": "ok"}
