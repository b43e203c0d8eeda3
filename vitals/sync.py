"""Sync orchestrator: provider fetch -> validate -> merge -> upsert.

Every sync is idempotent end-to-end:
- Aggregated buckets are stamped at the bucket start, so the same window
  always produces the same keys
- Merge only widens a record, and an unchanged merge result is not written
- Safe to re-run over any window any number of times

Failure semantics: NotAuthenticatedError and TransientFetchError are logged,
counted and turned into a ``failed`` SyncResult; stored data is untouched.
ConcurrentWriteConflictError is a programming error and propagates.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TypeVar
from zoneinfo import ZoneInfo

import structlog

from shared.config import Settings, settings
from shared.metrics import sync_duration_seconds, sync_failures_total, sync_samples_total
from vitals.adapters.protocol import HealthProvider
from vitals.aggregation import nightly_sleep_from_segments
from vitals.domain.calendar import (
    MILLIS_PER_DAY,
    MILLIS_PER_HOUR,
    MILLIS_PER_MINUTE,
    local_date,
    start_of_day,
    start_of_day_for,
    to_millis,
)
from vitals.domain.errors import NotAuthenticatedError, TransientFetchError
from vitals.domain.merge import merge
from vitals.domain.models import MetricKind, RecordOrigin, SampleRecord
from vitals.domain.validation import validate_sample
from vitals.locks import KeyedLock
from vitals.store import SampleStore

logger = structlog.get_logger()

T = TypeVar("T")

SUMMARY_TOTAL_KINDS = (
    MetricKind.STEPS,
    MetricKind.CALORIES,
    MetricKind.DISTANCE,
    MetricKind.HEART_POINTS,
)


def system_clock() -> int:
    return to_millis(datetime.now(UTC))


@dataclass
class SyncResult:
    """Outcome of one metric sync (or of the summary sync)."""

    metric: str
    status: str = "ok"  # "ok", "failed"
    fetched: int = 0
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    dropped: int = 0
    error: str | None = None

    @property
    def merged(self) -> int:
        return self.inserted + self.updated + self.unchanged

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    def as_dict(self) -> dict:
        return {
            "metric": self.metric,
            "status": self.status,
            "fetched": self.fetched,
            "merged": self.merged,
            "inserted": self.inserted,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "dropped": self.dropped,
            "error": self.error,
        }


@dataclass(frozen=True)
class QueryWindow:
    start_millis: int
    end_millis: int
    bucket_millis: int | None = None  # None = raw points / segments


@dataclass(frozen=True)
class SyncRequest:
    """An explicit sync job.

    With ``kind`` set, syncs that metric over [start, end). Without it, runs
    the today summary plus every metric for today.
    """

    user_id: str
    kind: MetricKind | None = None
    start_millis: int | None = None
    end_millis: int | None = None


@dataclass
class SyncHandle:
    """Observer of a submitted sync task."""

    request: SyncRequest
    task: asyncio.Task = field(repr=False)

    def done(self) -> bool:
        return self.task.done()

    def cancel(self) -> bool:
        return self.task.cancel()

    async def wait(self, timeout: float | None = None) -> list[SyncResult] | None:
        """Wait for the sync without cancelling it on timeout.

        Returns the results, or None if the timeout elapsed or the sync was
        cancelled.
        """
        try:
            return await asyncio.wait_for(asyncio.shield(self.task), timeout)
        except TimeoutError:
            logger.info("sync_wait_timed_out", user_id=self.request.user_id, timeout=timeout)
            return None
        except asyncio.CancelledError:
            if not self.task.cancelled():
                raise
            return None


class SyncOrchestrator:
    def __init__(
        self,
        store: SampleStore,
        provider: HealthProvider,
        locks: KeyedLock | None = None,
        config: Settings = settings,
        tz: ZoneInfo | None = None,
        clock: Callable[[], int] = system_clock,
    ):
        self.store = store
        self.provider = provider
        if locks is None:
            locks = getattr(store, "guard", None)
        self.locks = locks if locks is not None else KeyedLock()
        self.config = config
        self.tz = tz or config.tz
        self.clock = clock
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Window policy
    # ------------------------------------------------------------------

    def query_window(self, kind: MetricKind, start_millis: int, end_millis: int) -> QueryWindow:
        """Provider query for a requested [start, end) of ``kind``.

        Sleep always reaches back at least ``sleep_lookback_hours`` from the end
        so a night that began the previous evening is read whole.
        """
        if kind is MetricKind.SLEEP:
            lookback = self.config.sleep_lookback_hours * MILLIS_PER_HOUR
            return QueryWindow(min(start_millis, end_millis - lookback), end_millis)
        if kind is MetricKind.HEART_RATE:
            if end_millis - start_millis > MILLIS_PER_DAY:
                bucket = self.config.heart_rate_bucket_minutes * MILLIS_PER_MINUTE
                return QueryWindow(start_millis, end_millis, bucket)
            return QueryWindow(start_millis, end_millis)
        if kind.is_delta:
            bucket = self.config.history_bucket_minutes * MILLIS_PER_MINUTE
            return QueryWindow(start_millis, end_millis, bucket)
        return QueryWindow(start_millis, end_millis)

    # ------------------------------------------------------------------
    # Sync operations
    # ------------------------------------------------------------------

    async def sync_metric(
        self, user_id: str, kind: MetricKind, start_millis: int, end_millis: int
    ) -> SyncResult:
        """Fetch one metric kind over a window and merge it into the store."""
        started = time.monotonic()
        result = SyncResult(metric=kind.value)
        window = self.query_window(kind, start_millis, end_millis)
        log = logger.bind(user_id=user_id, metric=kind.value)

        try:
            samples = await self.provider.fetch_samples(
                kind, window.start_millis, window.end_millis, window.bucket_millis
            )
        except (NotAuthenticatedError, TransientFetchError) as exc:
            self._record_failure(kind.value, exc, user_id)
            result.status = "failed"
            result.error = str(exc)
            return result

        result.fetched = len(samples)
        now = self.clock()
        bucket_minutes = window.bucket_millis // MILLIS_PER_MINUTE if window.bucket_millis else None

        for sample in samples:
            incoming = (
                sample
                if sample.user_id == user_id
                else sample.model_copy(update={"user_id": user_id})
            )
            errors = validate_sample(incoming, kind, now, bucket_minutes)
            if errors:
                result.dropped += 1
                sync_samples_total.labels(metric=kind.value, status="dropped").inc()
                log.warning(
                    "sample_dropped",
                    stage="validation",
                    timestamp_millis=incoming.timestamp_millis,
                    reasons=[e.reason for e in errors],
                )
                continue

            status = await self.merge_and_store(user_id, incoming)
            setattr(result, status, getattr(result, status) + 1)
            if status != "unchanged":
                sync_samples_total.labels(metric=kind.value, status=status).inc()

        sync_duration_seconds.labels(metric=kind.value).observe(time.monotonic() - started)
        log.info(
            "sync_completed",
            window_start=window.start_millis,
            window_end=window.end_millis,
            bucket_millis=window.bucket_millis,
            fetched=result.fetched,
            inserted=result.inserted,
            updated=result.updated,
            unchanged=result.unchanged,
            dropped=result.dropped,
        )
        return result

    async def sync_history(
        self, user_id: str, kind: MetricKind, start_millis: int, end_millis: int
    ) -> list[SyncResult]:
        """History sync for a selection, plus the optional companion activity pass."""
        results = [await self.sync_metric(user_id, kind, start_millis, end_millis)]
        if self.config.backfill_activity_with_history and not kind.is_segmented:
            results.append(
                await self.sync_metric(user_id, MetricKind.ACTIVITY, start_millis, end_millis)
            )
        return results

    async def sync_all_metrics_for_today(self, user_id: str) -> list[SyncResult]:
        """Every metric kind over [local midnight, now), concurrently."""
        now = self.clock()
        day_start = start_of_day_for(now, self.tz)
        return list(
            await asyncio.gather(
                *(self.sync_metric(user_id, kind, day_start, now) for kind in MetricKind)
            )
        )

    async def sync_recent_days(self, user_id: str, days: int | None = None) -> list[SyncResult]:
        """Backfill from local midnight ``days - 1`` days ago up to now."""
        days = days or self.config.recent_days
        now = self.clock()
        first_day = local_date(now, self.tz) - timedelta(days=days - 1)
        start = start_of_day(first_day, self.tz)
        kinds = [
            kind
            for kind in MetricKind
            if kind is not MetricKind.HEART_POINTS or self.config.sync_heart_points
        ]
        return list(
            await asyncio.gather(*(self.sync_metric(user_id, kind, start, now) for kind in kinds))
        )

    async def sync_today_summary(self, user_id: str) -> SyncResult:
        """Build one summary record stamped now from independently fetched pieces."""
        started = time.monotonic()
        now = self.clock()
        day_start = start_of_day_for(now, self.tz)
        result = SyncResult(metric="SUMMARY")
        failures: list[str] = []

        piece_names = [k.field_name for k in SUMMARY_TOTAL_KINDS] + [
            "heart_rate_bpm",
            "activity_label",
            "sleep_duration_minutes",
        ]
        pieces = await asyncio.gather(
            *(
                self._summary_total(user_id, kind, day_start, now, failures)
                for kind in SUMMARY_TOTAL_KINDS
            ),
            self._guarded("HEART_RATE", user_id, self._latest_heart_rate(day_start, now), failures),
            self._guarded("ACTIVITY", user_id, self._last_activity(day_start, now), failures),
            self._guarded("SLEEP", user_id, self._recent_sleep(now), failures),
        )
        fields = {
            name: value for name, value in zip(piece_names, pieces, strict=True) if value is not None
        }
        result.fetched = len(fields)

        if not fields:
            logger.info("summary_empty", user_id=user_id, failed_pieces=failures)
            if failures:
                result.status = "failed"
                result.error = f"summary pieces failed: {', '.join(failures)}"
            return result

        record = SampleRecord(
            user_id=user_id, timestamp_millis=now, origin=RecordOrigin.SUMMARY, **fields
        )
        status = await self.merge_and_store(user_id, record)
        setattr(result, status, getattr(result, status) + 1)
        sync_duration_seconds.labels(metric="SUMMARY").observe(time.monotonic() - started)
        logger.info(
            "summary_synced",
            user_id=user_id,
            fields=sorted(fields),
            failed_pieces=failures,
            status=status,
        )
        return result

    # ------------------------------------------------------------------
    # Task submission
    # ------------------------------------------------------------------

    def submit(self, request: SyncRequest) -> SyncHandle:
        """Run a sync as an orchestrator-owned task and return its handle."""
        task = asyncio.create_task(self._run(request), name=f"sync:{request.user_id}:{request.kind}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return SyncHandle(request=request, task=task)

    async def _run(self, request: SyncRequest) -> list[SyncResult]:
        if request.kind is None:
            summary = await self.sync_today_summary(request.user_id)
            return [summary, *await self.sync_all_metrics_for_today(request.user_id)]
        end = request.end_millis if request.end_millis is not None else self.clock()
        start = request.start_millis
        if start is None:
            start = start_of_day_for(end, self.tz)
        return await self.sync_history(request.user_id, request.kind, start, end)

    async def aclose(self) -> None:
        """Cancel outstanding sync tasks and wait for them to unwind."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Read-merge-upsert
    # ------------------------------------------------------------------

    async def merge_and_store(self, user_id: str, incoming: SampleRecord) -> str:
        """Serialize read-merge-upsert on the record key.

        Returns "inserted", "updated" or "unchanged".
        """
        async with self.locks.hold((user_id, incoming.timestamp_millis)):
            existing = await self.store.get_by_timestamp(user_id, incoming.timestamp_millis)
            merged = merge(existing, incoming, user_id)
            if existing is not None and merged == existing:
                return "unchanged"
            await self.store.upsert(merged)
        return "inserted" if existing is None else "updated"

    # ------------------------------------------------------------------
    # Summary pieces
    # ------------------------------------------------------------------

    async def _guarded(
        self, metric: str, user_id: str, call: Awaitable[T], failures: list[str]
    ) -> T | None:
        try:
            return await call
        except (NotAuthenticatedError, TransientFetchError) as exc:
            failures.append(metric)
            self._record_failure(metric, exc, user_id)
            return None

    async def _summary_total(
        self, user_id: str, kind: MetricKind, start: int, end: int, failures: list[str]
    ) -> float | int | None:
        record = await self._guarded(
            kind.value, user_id, self.provider.fetch_aggregate(kind, start, end), failures
        )
        return record.value_of(kind.field_name) if record is not None else None

    async def _latest_heart_rate(self, start: int, end: int) -> float | None:
        samples = await self.provider.fetch_samples(MetricKind.HEART_RATE, start, end)
        readings = [s for s in samples if s.heart_rate_bpm is not None]
        if not readings:
            return None
        return max(readings, key=lambda s: s.timestamp_millis).heart_rate_bpm

    async def _last_activity(self, start: int, end: int) -> str | None:
        segments = await self.provider.fetch_segments(MetricKind.ACTIVITY, start, end)
        labelled = [s for s in segments if s.label]
        if not labelled:
            return None
        return max(labelled, key=lambda s: s.end_millis).label

    async def _recent_sleep(self, now: int) -> int | None:
        lookback = self.config.sleep_lookback_hours * MILLIS_PER_HOUR
        segments = await self.provider.fetch_segments(MetricKind.SLEEP, now - lookback, now)
        return nightly_sleep_from_segments(
            segments, self.tz, self.config.night_start_hour
        ).most_recent_night_minutes

    @staticmethod
    def _record_failure(metric: str, exc: Exception, user_id: str) -> None:
        reason = "not_authenticated" if isinstance(exc, NotAuthenticatedError) else "transient"
        sync_failures_total.labels(metric=metric, reason=reason).inc()
        logger.warning(
            "provider_fetch_failed", user_id=user_id, metric=metric, reason=reason, error=str(exc)
        )
