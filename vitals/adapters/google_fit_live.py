"""Google Fit live provider: fetches from the Fitness REST API, then maps to canonical models.

Uses fetch_json (fetch_with_retry underneath) for transient-only retry
(429/5xx/timeout). Auth failures surface as NotAuthenticatedError.
"""

import httpx
import structlog

from shared.config import settings
from shared.metrics import provider_call_duration_seconds
from vitals.adapters.google_fit_mapper import DATA_SOURCES, DATA_TYPES, NANOS_PER_MILLI, GoogleFitMapper
from vitals.adapters.http_client import fetch_json
from vitals.domain.errors import NotAuthenticatedError
from vitals.domain.models import MetricKind, RecordOrigin, SampleRecord, Segment

logger = structlog.get_logger()


class GoogleFitLiveProvider:
    """Live-mode provider: fetches from Google Fit, then delegates to the mapper."""

    source_name = "google_fit"

    def __init__(
        self,
        access_token: str | None = None,
        base_url: str | None = None,
        account_id: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token = access_token if access_token is not None else settings.google_fit_access_token
        self._base_url = (base_url or settings.google_fit_base_url).rstrip("/")
        self._account_id = account_id or settings.google_fit_account_id
        self._transport = transport
        self._mapper = GoogleFitMapper()

    async def fetch_samples(
        self,
        kind: MetricKind,
        start_millis: int,
        end_millis: int,
        bucket_millis: int | None = None,
    ) -> list[SampleRecord]:
        if bucket_millis is not None and not kind.is_segmented:
            payload = await self._aggregate(kind, start_millis, end_millis, bucket_millis)
            return self._mapper.parse_aggregate(payload, kind, self._account_id)
        payload = await self._dataset(kind, start_millis, end_millis)
        return self._mapper.parse_points(payload, kind, self._account_id)

    async def fetch_aggregate(
        self, kind: MetricKind, start_millis: int, end_millis: int
    ) -> SampleRecord | None:
        payload = await self._aggregate(kind, start_millis, end_millis, end_millis - start_millis)
        records = self._mapper.parse_aggregate(
            payload, kind, self._account_id, origin=RecordOrigin.SUMMARY
        )
        return records[0] if records else None

    async def fetch_segments(
        self, kind: MetricKind, start_millis: int, end_millis: int
    ) -> list[Segment]:
        payload = await self._dataset(kind, start_millis, end_millis)
        return self._mapper.parse_segments(payload, kind)

    # ------------------------------------------------------------------

    async def _aggregate(
        self, kind: MetricKind, start_millis: int, end_millis: int, bucket_millis: int
    ) -> dict:
        body = {
            "aggregateBy": [{"dataTypeName": DATA_TYPES[kind]}],
            "bucketByTime": {"durationMillis": bucket_millis},
            "startTimeMillis": start_millis,
            "endTimeMillis": end_millis,
        }
        return await self._request(kind, "POST", f"{self._base_url}/dataset:aggregate", json=body)

    async def _dataset(self, kind: MetricKind, start_millis: int, end_millis: int) -> dict:
        dataset_id = f"{start_millis * NANOS_PER_MILLI}-{end_millis * NANOS_PER_MILLI}"
        url = f"{self._base_url}/dataSources/{DATA_SOURCES[kind]}/datasets/{dataset_id}"
        return await self._request(kind, "GET", url)

    async def _request(self, kind: MetricKind, method: str, url: str, **kwargs) -> dict:
        if not self._token:
            raise NotAuthenticatedError("No Google Fit access token configured")
        headers = {"Authorization": f"Bearer {self._token}"}

        async with httpx.AsyncClient(
            timeout=settings.http_timeout_seconds, transport=self._transport
        ) as client:
            with provider_call_duration_seconds.labels(metric=kind.value).time():
                payload = await fetch_json(client, method, url, headers=headers, **kwargs)

        logger.debug("provider_call_completed", metric=kind.value, method=method, url=url)
        return payload
