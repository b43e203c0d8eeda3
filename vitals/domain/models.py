"""Canonical health sample domain model.

A SampleRecord is one timestamped observation of one or more health metrics
for one user. Identity is (user_id, timestamp_millis); every measurement
field is optional and independently nullable.

Design principles:
- Nullable measurement fields: None = "provider did not report", not "zero"
- Identity is immutable; merging may only widen fields (None -> value)
- Records are ordered by timestamp only for presentation and bucketing
"""

from enum import IntEnum, StrEnum

from pydantic import BaseModel, ConfigDict, Field


class MetricKind(StrEnum):
    HEART_RATE = "HEART_RATE"
    STEPS = "STEPS"
    CALORIES = "CALORIES"
    DISTANCE = "DISTANCE"
    SLEEP = "SLEEP"
    ACTIVITY = "ACTIVITY"
    HEART_POINTS = "HEART_POINTS"

    @property
    def field_name(self) -> str:
        """The SampleRecord field this metric kind populates."""
        return METRIC_FIELDS[self]

    @property
    def is_segmented(self) -> bool:
        """Sleep and activity arrive as labelled time segments, not values."""
        return self in (MetricKind.SLEEP, MetricKind.ACTIVITY)

    @property
    def is_delta(self) -> bool:
        """Per-interval deltas that are summed when bucketed."""
        return self in (
            MetricKind.STEPS,
            MetricKind.CALORIES,
            MetricKind.DISTANCE,
            MetricKind.HEART_POINTS,
        )


METRIC_FIELDS: dict[MetricKind, str] = {
    MetricKind.HEART_RATE: "heart_rate_bpm",
    MetricKind.STEPS: "step_count",
    MetricKind.CALORIES: "calories_kcal",
    MetricKind.DISTANCE: "distance_km",
    MetricKind.SLEEP: "sleep_duration_minutes",
    MetricKind.ACTIVITY: "activity_label",
    MetricKind.HEART_POINTS: "heart_points_count",
}


class SleepStage(IntEnum):
    AWAKE = 1
    SLEEP = 2
    OUT_OF_BED = 3
    LIGHT = 4
    DEEP = 5
    REM = 6

    @property
    def label(self) -> str:
        return _STAGE_LABELS[self]

    @property
    def is_asleep(self) -> bool:
        return self in ASLEEP_STAGES


_STAGE_LABELS = {
    SleepStage.AWAKE: "Awake",
    SleepStage.SLEEP: "Sleep",
    SleepStage.OUT_OF_BED: "Out-of-bed",
    SleepStage.LIGHT: "Light sleep",
    SleepStage.DEEP: "Deep sleep",
    SleepStage.REM: "REM sleep",
}

# Out-of-bed (3) is deliberately not an asleep stage.
ASLEEP_STAGES = frozenset({SleepStage.SLEEP, SleepStage.LIGHT, SleepStage.DEEP, SleepStage.REM})


def is_asleep_stage(stage: int | None) -> bool:
    return stage is not None and stage in ASLEEP_STAGES


class RecordOrigin(StrEnum):
    INTERVAL = "interval"  # per-bucket delta or point reading
    SEGMENT = "segment"  # start of a sleep/activity segment
    SUMMARY = "summary"  # provider-side day rollup stamped "now"


class SampleRecord(BaseModel):
    """Canonical representation of one timestamped health sample."""

    model_config = ConfigDict(frozen=True)

    # Identity
    user_id: str
    timestamp_millis: int

    # Measurements (nullable = not reported)
    heart_rate_bpm: float | None = Field(None, ge=0)
    step_count: int | None = Field(None, ge=0)
    calories_kcal: float | None = Field(None, ge=0)
    distance_km: float | None = Field(None, ge=0)
    sleep_duration_minutes: int | None = Field(None, ge=0)
    activity_label: str | None = None
    heart_points_count: int | None = Field(None, ge=0)
    weight_kg: float | None = Field(None, ge=0)
    floors_climbed: float | None = Field(None, ge=0)
    move_minutes: int | None = Field(None, ge=0)

    # Segment and provenance metadata
    sleep_stage: int | None = None
    origin: RecordOrigin | None = None

    @property
    def key(self) -> tuple[str, int]:
        return (self.user_id, self.timestamp_millis)

    @property
    def is_summary(self) -> bool:
        return self.origin == RecordOrigin.SUMMARY

    def value_of(self, field_name: str) -> float | int | str | None:
        return getattr(self, field_name)


# Fields that merge operates on; identity fields are excluded.
MERGEABLE_FIELDS: tuple[str, ...] = tuple(
    name for name in SampleRecord.model_fields if name not in ("user_id", "timestamp_millis")
)

NUMERIC_FIELDS: tuple[str, ...] = (
    "heart_rate_bpm",
    "step_count",
    "calories_kcal",
    "distance_km",
    "sleep_duration_minutes",
    "heart_points_count",
    "weight_kg",
    "floors_climbed",
    "move_minutes",
)


class Segment(BaseModel):
    """A labelled time span returned by the provider (sleep stage or activity)."""

    model_config = ConfigDict(frozen=True)

    start_millis: int
    end_millis: int
    label: str | None = None
    stage: int | None = None

    @property
    def duration_millis(self) -> int:
        return self.end_millis - self.start_millis

    @property
    def duration_minutes(self) -> int:
        return self.duration_millis // 60_000
