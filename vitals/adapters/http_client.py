"""HTTP client with tenacity retry for Google Fit API calls.

Retry policy:
- Retry on transient errors (429, 500, 502, 503, 504, timeouts)
- Do NOT retry on 400, 401, 403 (client errors / auth failures)
- Exponential backoff with jitter, bounded attempts from settings

Error translation (after retries are exhausted):
- 401/403 -> NotAuthenticatedError
- any other HTTP, transport or JSON decode failure -> TransientFetchError
"""

from typing import Any

import httpx
import structlog
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from shared.config import settings
from vitals.domain.errors import NotAuthenticatedError, TransientFetchError

logger = structlog.get_logger()

TRANSIENT_STATUS_CODES = {429, 500, 502, 503, 504}
AUTH_STATUS_CODES = {401, 403}


class TransientHTTPError(Exception):
    """Raised for HTTP errors that are safe to retry."""

    def __init__(self, status_code: int, detail: str = ""):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"HTTP {status_code}: {detail}")


@retry(
    retry=retry_if_exception_type((TransientHTTPError, httpx.TimeoutException)),
    wait=wait_exponential_jitter(initial=1, max=settings.retry_max_wait_seconds, jitter=2),
    stop=stop_after_attempt(settings.retry_max_attempts),
    before_sleep=before_sleep_log(logger, "WARNING"),
    reraise=True,
)
async def fetch_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    **kwargs,
) -> httpx.Response:
    """Make an HTTP request with retry on transient failures."""
    response = await client.request(method, url, **kwargs)

    if response.status_code in TRANSIENT_STATUS_CODES:
        raise TransientHTTPError(response.status_code, response.text[:200])

    response.raise_for_status()
    return response


async def fetch_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    **kwargs,
) -> dict[str, Any]:
    """Request ``url`` with retries and return the decoded JSON object."""
    try:
        response = await fetch_with_retry(client, method, url, **kwargs)
    except TransientHTTPError as exc:
        raise TransientFetchError(exc.detail, exc.status_code) from exc
    except httpx.HTTPStatusError as exc:
        status = exc.response.status_code
        if status in AUTH_STATUS_CODES:
            raise NotAuthenticatedError(f"Google Fit rejected credentials (HTTP {status})") from exc
        raise TransientFetchError(exc.response.text[:200], status) from exc
    except httpx.TimeoutException as exc:
        raise TransientFetchError(f"Timed out after {settings.retry_max_attempts} attempts") from exc
    except httpx.HTTPError as exc:
        raise TransientFetchError(str(exc) or type(exc).__name__) from exc

    try:
        body = response.json()
    except ValueError as exc:
        raise TransientFetchError("Response body is not valid JSON", response.status_code) from exc
    if not isinstance(body, dict):
        raise TransientFetchError("Response body is not a JSON object", response.status_code)
    return body
