"""Canonical validation rules for fetched health samples.

Rules check plausibility of a mapped SampleRecord against the metric kind
it was fetched for. Returns a list of ValidationError; empty list means the
sample is kept. A non-empty list means the sample is malformed and dropped.
"""

from dataclasses import dataclass
from typing import Any

from vitals.domain.calendar import MILLIS_PER_DAY
from vitals.domain.models import MetricKind, SampleRecord, SleepStage

_MIN_TIMESTAMP_MILLIS = 946_684_800_000  # 2000-01-01T00:00:00Z
_FUTURE_TOLERANCE_MILLIS = MILLIS_PER_DAY
_HEART_RATE_RANGE = (20.0, 300.0)
_MAX_SEGMENT_MINUTES = 1440
_MAX_STEPS_PER_MINUTE = 400
_KNOWN_STAGES = frozenset(stage.value for stage in SleepStage)


@dataclass
class ValidationError:
    field: str
    rule: str
    reason: str
    value: Any


def validate_sample(
    record: SampleRecord,
    kind: MetricKind,
    now_millis: int,
    bucket_minutes: int | None = None,
) -> list[ValidationError]:
    """Validate a mapped sample before it is merged into the store.

    Returns an empty list if valid; otherwise returns all violations.
    """
    errors: list[ValidationError] = []
    ts = record.timestamp_millis

    # Rule 1: Timestamp within a sane epoch range
    if ts < _MIN_TIMESTAMP_MILLIS:
        errors.append(ValidationError("timestamp_millis", "range", "timestamp_too_old", ts))
    if ts > now_millis + _FUTURE_TOLERANCE_MILLIS:
        errors.append(ValidationError("timestamp_millis", "no_future", "future_timestamp", ts))

    # Rule 2: The field for the declared metric kind is present
    value = record.value_of(kind.field_name)
    if value is None:
        errors.append(ValidationError(kind.field_name, "required", "missing_metric_value", None))
        return errors

    # Rule 3: Physiological heart-rate range
    if kind is MetricKind.HEART_RATE:
        low, high = _HEART_RATE_RANGE
        if not low <= float(value) <= high:
            errors.append(
                ValidationError("heart_rate_bpm", "range", "heart_rate_out_of_range", value)
            )

    # Rule 4: Sleep segments carry a known stage and a bounded duration
    if kind is MetricKind.SLEEP:
        if record.sleep_stage is not None and record.sleep_stage not in _KNOWN_STAGES:
            errors.append(
                ValidationError("sleep_stage", "known_stage", "unknown_sleep_stage", record.sleep_stage)
            )
        if int(value) > _MAX_SEGMENT_MINUTES:
            errors.append(
                ValidationError(
                    "sleep_duration_minutes", "range", "segment_duration_out_of_range", value
                )
            )

    # Rule 5: Step deltas bounded by the bucket width
    if kind is MetricKind.STEPS and bucket_minutes:
        if int(value) > _MAX_STEPS_PER_MINUTE * bucket_minutes:
            errors.append(
                ValidationError("step_count", "range", "step_delta_implausible", value)
            )

    # Rule 6: Activity labels are non-empty
    if kind is MetricKind.ACTIVITY and not str(value).strip():
        errors.append(ValidationError("activity_label", "required", "empty_activity_label", value))

    return errors
