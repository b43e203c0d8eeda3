"""Google Fit REST -> canonical SampleRecord mapper.

Inbound anti-corruption layer: translates Google Fit data types, value
encodings (intVal/fpVal, nanosecond timestamps) and units into the
canonical SampleRecord and Segment models.

Timestamp policy:
- Aggregated buckets are stamped at the bucket start (startTimeMillis), so a
  re-sync over the same window hits the same keys.
- Raw points and segments are stamped at their start (startTimeNanos).

A point that cannot be interpreted is skipped with a warning; the rest of
the payload is still mapped. A response whose structure is wrong (a
"bucket", "dataset" or "point" that is not a list) fails the whole call
with TransientFetchError.
"""

from typing import Any

import pydantic
import structlog

from shared.metrics import sync_samples_total
from vitals.domain.calendar import MILLIS_PER_MINUTE
from vitals.domain.errors import MalformedSampleError, TransientFetchError
from vitals.domain.models import MetricKind, RecordOrigin, SampleRecord, Segment

logger = structlog.get_logger()

NANOS_PER_MILLI = 1_000_000

DATA_TYPES: dict[MetricKind, str] = {
    MetricKind.HEART_RATE: "com.google.heart_rate.bpm",
    MetricKind.STEPS: "com.google.step_count.delta",
    MetricKind.CALORIES: "com.google.calories.expended",
    MetricKind.DISTANCE: "com.google.distance.delta",
    MetricKind.SLEEP: "com.google.sleep.segment",
    MetricKind.ACTIVITY: "com.google.activity.segment",
    MetricKind.HEART_POINTS: "com.google.heart_minutes",
}

DATA_SOURCES: dict[MetricKind, str] = {
    MetricKind.HEART_RATE: "derived:com.google.heart_rate.bpm:com.google.android.gms:merge_heart_rate_bpm",
    MetricKind.STEPS: "derived:com.google.step_count.delta:com.google.android.gms:estimated_steps",
    MetricKind.CALORIES: "derived:com.google.calories.expended:com.google.android.gms:merge_calories_expended",
    MetricKind.DISTANCE: "derived:com.google.distance.delta:com.google.android.gms:merge_distance_delta",
    MetricKind.SLEEP: "derived:com.google.sleep.segment:com.google.android.gms:merged",
    MetricKind.ACTIVITY: "derived:com.google.activity.segment:com.google.android.gms:merge_activity_segments",
    MetricKind.HEART_POINTS: "derived:com.google.heart_minutes:com.google.android.gms:merge_heart_minutes",
}

# Subset of the Google Fit activity type table; unlisted codes map to "unknown".
ACTIVITY_NAMES: dict[int, str] = {
    0: "in_vehicle",
    1: "biking",
    2: "on_foot",
    3: "still",
    4: "unknown",
    5: "tilting",
    7: "walking",
    8: "running",
    9: "aerobics",
    10: "badminton",
    12: "basketball",
    15: "boxing",
    24: "dancing",
    25: "elliptical",
    35: "hiking",
    45: "meditation",
    56: "running.jogging",
    72: "sleep",
    80: "strength_training",
    82: "swimming",
    93: "walking.fitness",
    100: "yoga",
    108: "other",
    113: "crossfit",
    114: "interval_training.high_intensity",
}


def activity_name(code: int) -> str:
    return ACTIVITY_NAMES.get(code, "unknown")


def _nanos_to_millis(raw: Any) -> int:
    return int(raw) // NANOS_PER_MILLI


def _items(container: Any, key: str, kind: MetricKind) -> list[Any]:
    """The list under ``key``; a missing key is an empty list, any other shape is an error."""
    if not isinstance(container, dict):
        raise TransientFetchError(f"Malformed {kind.value} response: expected an object")
    items = container.get(key, [])
    if not isinstance(items, list):
        raise TransientFetchError(f"Malformed {kind.value} response: '{key}' is not a list")
    return items


def _point_bounds(point: dict[str, Any]) -> tuple[int, int]:
    if not isinstance(point, dict):
        raise MalformedSampleError("point", "not_an_object", point)
    try:
        start = _nanos_to_millis(point["startTimeNanos"])
        end = _nanos_to_millis(point.get("endTimeNanos", point["startTimeNanos"]))
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedSampleError("point", "invalid_timestamp", point.get("startTimeNanos")) from exc
    return start, end


def _first_value(point: dict[str, Any], metric: MetricKind) -> dict[str, Any]:
    if not isinstance(point, dict):
        raise MalformedSampleError(metric, "not_an_object", point)
    values = point.get("value") or []
    if not isinstance(values, list) or not values or not isinstance(values[0], dict):
        raise MalformedSampleError(metric, "missing_value", values)
    return values[0]


def _numeric(point: dict[str, Any], metric: MetricKind) -> float:
    value = _first_value(point, metric)
    raw = value.get("fpVal", value.get("intVal"))
    if isinstance(raw, bool) or not isinstance(raw, int | float):
        raise MalformedSampleError(metric, "non_numeric_value", raw)
    return float(raw)


def _integer(point: dict[str, Any], metric: MetricKind) -> int:
    raw = _first_value(point, metric).get("intVal")
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise MalformedSampleError(metric, "non_integer_value", raw)
    return raw


def _scale(kind: MetricKind, value: float) -> float | int:
    """Convert a provider value into the canonical unit and type of ``kind``."""
    if kind is MetricKind.DISTANCE:
        return value / 1000.0  # metres -> km
    if kind in (MetricKind.STEPS, MetricKind.HEART_POINTS):
        return int(round(value))
    return value


class GoogleFitMapper:
    source_name = "google_fit"

    def parse_aggregate(
        self,
        payload: dict[str, Any],
        kind: MetricKind,
        user_id: str,
        origin: RecordOrigin = RecordOrigin.INTERVAL,
    ) -> list[SampleRecord]:
        """Parse a ``dataset:aggregate`` response into one record per non-empty bucket."""
        if kind.is_segmented:
            return self._map_points(list(_iter_points(payload, kind)), kind, user_id)

        records: list[SampleRecord] = []
        for bucket in _items(payload, "bucket", kind):
            points = [
                p for ds in _items(bucket, "dataset", kind) for p in _items(ds, "point", kind)
            ]
            if not points:
                continue
            try:
                timestamp = int(bucket["startTimeMillis"])
                record = self._record(
                    user_id, timestamp, origin, **{kind.field_name: self._reduce(points, kind)}
                )
            except (KeyError, TypeError, ValueError) as exc:
                self._drop(kind, MalformedSampleError(kind, "invalid_bucket", bucket.get("startTimeMillis")), exc)
                continue
            except MalformedSampleError as exc:
                self._drop(kind, exc)
                continue
            records.append(record)
        return records

    def parse_points(
        self, payload: dict[str, Any], kind: MetricKind, user_id: str
    ) -> list[SampleRecord]:
        """Parse a ``dataSources/{id}/datasets/{range}`` response into raw-point records."""
        return self._map_points(_items(payload, "point", kind), kind, user_id)

    def parse_segments(self, payload: dict[str, Any], kind: MetricKind) -> list[Segment]:
        """Parse sleep or activity points into Segments (stage for sleep, label for activity)."""
        segments: list[Segment] = []
        for point in _iter_points(payload, kind):
            try:
                start, end = _point_bounds(point)
                code = _integer(point, kind)
            except MalformedSampleError as exc:
                self._drop(kind, exc)
                continue
            if end <= start:
                self._drop(kind, MalformedSampleError(kind, "empty_segment", end - start))
                continue
            if kind is MetricKind.SLEEP:
                segments.append(Segment(start_millis=start, end_millis=end, stage=code))
            else:
                segments.append(Segment(start_millis=start, end_millis=end, label=activity_name(code)))
        return sorted(segments, key=lambda s: (s.start_millis, s.end_millis))

    # ------------------------------------------------------------------

    def _map_points(
        self, points: list[dict[str, Any]], kind: MetricKind, user_id: str
    ) -> list[SampleRecord]:
        records: list[SampleRecord] = []
        for point in points:
            try:
                records.append(self._point_record(point, kind, user_id))
            except MalformedSampleError as exc:
                self._drop(kind, exc)
        return records

    def _point_record(self, point: dict[str, Any], kind: MetricKind, user_id: str) -> SampleRecord:
        start, end = _point_bounds(point)
        if kind is MetricKind.SLEEP:
            return self._record(
                user_id,
                start,
                RecordOrigin.SEGMENT,
                sleep_stage=_integer(point, kind),
                sleep_duration_minutes=max(end - start, 0) // MILLIS_PER_MINUTE,
            )
        if kind is MetricKind.ACTIVITY:
            return self._record(
                user_id,
                start,
                RecordOrigin.SEGMENT,
                activity_label=activity_name(_integer(point, kind)),
            )
        return self._record(
            user_id,
            start,
            RecordOrigin.INTERVAL,
            **{kind.field_name: _scale(kind, _numeric(point, kind))},
        )

    def _reduce(self, points: list[dict[str, Any]], kind: MetricKind) -> float | int:
        values = [_numeric(p, kind) for p in points]
        if kind is MetricKind.HEART_RATE:
            # heart_rate.summary buckets carry [average, max, min]; use the average
            return sum(values) / len(values)
        return _scale(kind, sum(values))

    @staticmethod
    def _record(user_id: str, timestamp: int, origin: RecordOrigin, **fields) -> SampleRecord:
        try:
            return SampleRecord(
                user_id=user_id, timestamp_millis=timestamp, origin=origin, **fields
            )
        except pydantic.ValidationError as exc:
            field_name = next(iter(fields), "record")
            raise MalformedSampleError(field_name, "constraint_violation", fields.get(field_name)) from exc

    @staticmethod
    def _drop(kind: MetricKind, error: MalformedSampleError, cause: Exception | None = None) -> None:
        logger.warning(
            "sample_dropped",
            metric=kind.value,
            stage="mapping",
            reason=error.reason,
            value=error.value,
            error=str(cause) if cause else None,
        )
        sync_samples_total.labels(metric=kind.value, status="dropped").inc()


def _iter_points(payload: dict[str, Any], kind: MetricKind):
    """Points from either a dataset response or an aggregate response."""
    if isinstance(payload, dict) and "bucket" in payload:
        for bucket in _items(payload, "bucket", kind):
            for dataset in _items(bucket, "dataset", kind):
                yield from _items(dataset, "point", kind)
    else:
        yield from _items(payload, "point", kind)
