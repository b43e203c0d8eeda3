"""Immutable derived views handed to the presentation layer.

Views are recomputed from the sample set on every relevant change and
compared by structural equality; nothing mutates a published view.
"""

from dataclasses import asdict, dataclass, field
from datetime import date
from enum import StrEnum
from typing import Any

from vitals.domain.models import MetricKind, SampleRecord


class ViewStatus(StrEnum):
    LOADING = "loading"
    READY = "ready"
    NO_DATA = "no_data"


@dataclass(frozen=True)
class SeriesPoint:
    label: str
    value: float


@dataclass(frozen=True)
class WeeklySeriesView:
    """Seven (weekday, total) points, oldest to newest, ending today."""

    points: tuple[SeriesPoint, ...] = ()

    @property
    def values(self) -> list[float]:
        return [p.value for p in self.points]


@dataclass(frozen=True)
class NightlySleepView:
    """Asleep minutes per night key (18:00 local on the night's first day)."""

    nights: tuple[tuple[int, int], ...] = ()

    @property
    def status(self) -> ViewStatus:
        return ViewStatus.READY if self.nights else ViewStatus.NO_DATA

    @property
    def most_recent_night_key(self) -> int | None:
        return self.nights[-1][0] if self.nights else None

    @property
    def most_recent_night_minutes(self) -> int | None:
        return self.nights[-1][1] if self.nights else None

    def as_dict(self) -> dict[int, int]:
        return dict(self.nights)


@dataclass(frozen=True)
class HourlyBand:
    hour_start_millis: int
    min_bpm: float
    max_bpm: float


@dataclass(frozen=True)
class HourlyHeartRateBandView:
    bands: tuple[HourlyBand, ...] = ()

    @property
    def status(self) -> ViewStatus:
        return ViewStatus.READY if self.bands else ViewStatus.NO_DATA


@dataclass(frozen=True)
class IntervalTotal:
    start_millis: int
    value: float


@dataclass(frozen=True)
class IntervalRollupView:
    """Fixed-width slot totals; future slots of today are omitted, not zeroed."""

    slot_minutes: int = 30
    slots: tuple[IntervalTotal, ...] = ()

    @property
    def total(self) -> float:
        return sum(slot.value for slot in self.slots)


@dataclass(frozen=True)
class DailySummaryView:
    """Today's dashboard: latest-known values plus computed day totals.

    ``None`` means no contributing data; a present 0 is a real zero.
    """

    status: ViewStatus = ViewStatus.LOADING
    user_name: str = ""
    as_of_millis: int | None = None
    heart_rate_bpm: float | None = None
    steps: int | None = None
    calories_kcal: float | None = None
    distance_km: float | None = None
    heart_points: int | None = None
    floors_climbed: float | None = None
    move_minutes: int | None = None
    weight_kg: float | None = None
    sleep_minutes: int | None = None
    last_activity: str | None = None
    last_activity_millis: int | None = None
    weekly_steps: WeeklySeriesView = field(default_factory=WeeklySeriesView)
    weekly_calories: WeeklySeriesView = field(default_factory=WeeklySeriesView)


@dataclass(frozen=True)
class Selection:
    """An explicit history request: which metric, for which local day."""

    metric: MetricKind
    selected_date: date


@dataclass(frozen=True)
class HistoryView:
    """History for one Selection.

    ``samples`` is always time-ordered ascending; the metric-specific
    projections are populated only for the metric they apply to.
    """

    selection: Selection | None = None
    status: ViewStatus = ViewStatus.LOADING
    window_start_millis: int | None = None
    window_end_millis: int | None = None
    samples: tuple[SampleRecord, ...] = ()
    total: float | None = None
    min_bpm: float | None = None
    max_bpm: float | None = None
    hourly_bands: HourlyHeartRateBandView | None = None
    per_minute: tuple[SampleRecord, ...] = ()
    rollup: IntervalRollupView | None = None
    nightly_sleep: NightlySleepView | None = None


@dataclass(frozen=True)
class ViewState:
    """Everything a subscriber renders, published as one snapshot."""

    user_id: str | None = None
    user_name: str = "User"
    dashboard: DailySummaryView = field(default_factory=DailySummaryView)
    history: HistoryView = field(default_factory=HistoryView)


def view_to_dict(view: Any) -> dict[str, Any]:
    """JSON-friendly dict for a view dataclass (SampleRecords dumped via pydantic)."""
    return _jsonable(asdict(view)) if not isinstance(view, dict) else _jsonable(view)


def _jsonable(value: Any) -> Any:
    if isinstance(value, SampleRecord):
        return value.model_dump(mode="json")
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, date):
        return value.isoformat()
    return value
