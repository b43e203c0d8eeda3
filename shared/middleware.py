"""FastAPI middleware for request IDs, access logging and problem+json errors."""

import time
from collections.abc import Awaitable, Callable
from contextvars import ContextVar
from uuid import uuid4

import structlog
from fastapi import Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from shared.exceptions import PROBLEM_BASE_URI, ProblemDetailError
from vitals.domain.errors import NotAuthenticatedError, SyncError

logger = structlog.get_logger()

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

PROBLEM_MEDIA_TYPE = "application/problem+json"


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind an X-Request-ID to the structlog context and echo it on the response.

    An incoming X-Request-ID is reused; otherwise a UUID v4 is generated.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        rid = request.headers.get("X-Request-ID") or str(uuid4())
        token = request_id_var.set(rid)
        structlog.contextvars.bind_contextvars(request_id=rid)
        started = time.monotonic()

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = rid
            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round((time.monotonic() - started) * 1000, 2),
            )
            return response
        finally:
            structlog.contextvars.unbind_contextvars("request_id")
            request_id_var.reset(token)


def _problem(
    request: Request, status: int, title: str, detail: str, type_uri: str = "about:blank", **extra
) -> JSONResponse:
    body = {
        "type": type_uri,
        "title": title,
        "status": status,
        "detail": detail,
        "instance": str(request.url.path),
        **extra,
    }
    return JSONResponse(status_code=status, content=body, media_type=PROBLEM_MEDIA_TYPE)


async def problem_detail_handler(request: Request, exc: ProblemDetailError) -> JSONResponse:
    """Convert ProblemDetailError exceptions into RFC 9457 responses."""
    extra = {"violations": exc.violations} if exc.violations else {}
    return _problem(request, exc.status, exc.title, exc.detail, exc.type_uri, **extra)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report query/path parsing errors as a problem+json violations list."""
    violations = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part not in ("query", "path"))
            or "(root)",
            "message": err.get("msg", "Validation error"),
            "constraint": err.get("type", "validation"),
        }
        for err in exc.errors()
    ]
    return _problem(
        request,
        422,
        "Validation Error",
        f"Request contains {len(violations)} validation error(s)",
        f"{PROBLEM_BASE_URI}/validation-error",
        violations=violations,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _problem(request, exc.status_code, detail, detail)


async def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
    """Sync errors that escape the orchestrator: auth is 401, anything else 503."""
    if isinstance(exc, NotAuthenticatedError):
        return _problem(
            request, 401, "Provider Not Authenticated", exc.detail, f"{PROBLEM_BASE_URI}/not-authenticated"
        )
    logger.error("sync_error_unhandled", error=str(exc), error_type=type(exc).__name__)
    return _problem(
        request, 503, "Sync Unavailable", str(exc), f"{PROBLEM_BASE_URI}/sync-unavailable"
    )
