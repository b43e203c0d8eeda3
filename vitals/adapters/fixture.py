"""Fixture provider: serves canned Google Fit payloads (no HTTP fetch).

Payloads are keyed by metric kind. Each payload is either a dataset
response (``{"point": [...]}``) or an aggregate response
(``{"bucket": [...]}``) and goes through the same mapper as live data.
Results are clipped to the requested range.
"""

import json
from pathlib import Path
from typing import Any

from vitals.adapters.google_fit_mapper import GoogleFitMapper
from vitals.domain.models import MetricKind, RecordOrigin, SampleRecord, Segment


class FixtureProvider:
    """Fixture-mode provider: canned payloads, optional injected failures."""

    source_name = "google_fit"

    def __init__(
        self,
        payloads: dict[MetricKind | str, dict[str, Any]] | None = None,
        account_id: str = "me",
        failures: dict[MetricKind | str, Exception] | None = None,
    ) -> None:
        self._payloads = {MetricKind(k): v for k, v in (payloads or {}).items()}
        self._failures = {MetricKind(k): v for k, v in (failures or {}).items()}
        self._account_id = account_id
        self._mapper = GoogleFitMapper()
        self.calls: list[tuple[str, MetricKind, int, int]] = []

    @classmethod
    def from_file(cls, path: str | Path, account_id: str = "me") -> "FixtureProvider":
        with open(path) as f:
            return cls(json.load(f), account_id=account_id)

    def fail(self, kind: MetricKind, error: Exception) -> None:
        self._failures[kind] = error

    async def fetch_samples(
        self,
        kind: MetricKind,
        start_millis: int,
        end_millis: int,
        bucket_millis: int | None = None,
    ) -> list[SampleRecord]:
        self._record_call("fetch_samples", kind, start_millis, end_millis)
        return self._samples(kind, start_millis, end_millis)

    async def fetch_aggregate(
        self, kind: MetricKind, start_millis: int, end_millis: int
    ) -> SampleRecord | None:
        self._record_call("fetch_aggregate", kind, start_millis, end_millis)
        values = [
            value
            for r in self._samples(kind, start_millis, end_millis)
            if (value := r.value_of(kind.field_name)) is not None
        ]
        if not values:
            return None
        total = values[-1] if kind is MetricKind.HEART_RATE else sum(values)
        return SampleRecord(
            user_id=self._account_id,
            timestamp_millis=start_millis,
            origin=RecordOrigin.SUMMARY,
            **{kind.field_name: total},
        )

    async def fetch_segments(
        self, kind: MetricKind, start_millis: int, end_millis: int
    ) -> list[Segment]:
        self._record_call("fetch_segments", kind, start_millis, end_millis)
        payload = self._payloads.get(kind)
        if payload is None:
            return []
        return [
            seg
            for seg in self._mapper.parse_segments(payload, kind)
            if seg.end_millis > start_millis and seg.start_millis < end_millis
        ]

    # ------------------------------------------------------------------

    def _record_call(self, name: str, kind: MetricKind, start: int, end: int) -> None:
        self.calls.append((name, kind, start, end))
        failure = self._failures.get(kind)
        if failure is not None:
            raise failure

    def _samples(self, kind: MetricKind, start_millis: int, end_millis: int) -> list[SampleRecord]:
        payload = self._payloads.get(kind)
        if payload is None:
            return []
        if "bucket" in payload:
            records = self._mapper.parse_aggregate(payload, kind, self._account_id)
        else:
            records = self._mapper.parse_points(payload, kind, self._account_id)
        return [r for r in records if start_millis <= r.timestamp_millis < end_millis]
