"""Bucketing and aggregation of health samples into derived views.

Pure functions only: no I/O, no clock reads, no process-local timezone.
Callers pass ``now_millis`` and a ``ZoneInfo`` explicitly.

Summing rules:
- Per-interval delta rows are summed; summary rows (provider day totals
  stamped "now") are excluded from sums so the two never double count.
- A window where no record carries the field yields None, not 0.
- Accumulation is plain float/int arithmetic; rounding is left to callers.
"""

from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import date, timedelta
from operator import attrgetter
from zoneinfo import ZoneInfo

from vitals.domain.calendar import (
    MILLIS_PER_DAY,
    MILLIS_PER_MINUTE,
    day_bounds,
    floor_to_hour,
    floor_to_minute,
    local_date,
    night_key_for,
    start_of_day,
    trailing_days,
    weekday_abbrev,
)
from vitals.domain.models import MetricKind, SampleRecord, Segment, is_asleep_stage
from vitals.domain.views import (
    DailySummaryView,
    HistoryView,
    HourlyBand,
    HourlyHeartRateBandView,
    IntervalRollupView,
    IntervalTotal,
    NightlySleepView,
    Selection,
    SeriesPoint,
    ViewStatus,
    WeeklySeriesView,
)

__all__ = [
    "by_field",
    "daily_summary",
    "heart_rate_range",
    "history_view",
    "hourly_bands",
    "hourly_sums",
    "interval_rollup",
    "latest_for_day",
    "night_key_for",
    "nightly_sleep",
    "nightly_sleep_from_segments",
    "per_minute_samples",
    "selection_window",
    "total_for_day",
    "weekly_series",
]

Selector = Callable[[SampleRecord], float | int | None]

SLEEP_HISTORY_DAYS = 7


def by_field(field_name: str) -> Selector:
    return attrgetter(field_name)


def _in_window(records: Iterable[SampleRecord], start: int, end: int) -> list[SampleRecord]:
    return [r for r in records if start <= r.timestamp_millis < end]


def _summable(records: Iterable[SampleRecord]) -> list[SampleRecord]:
    return [r for r in records if not r.is_summary]


def _latest_with(records: Iterable[SampleRecord], field_name: str) -> SampleRecord | None:
    latest = None
    for r in records:
        if getattr(r, field_name) is None:
            continue
        if latest is None or r.timestamp_millis > latest.timestamp_millis:
            latest = r
    return latest


# ---------------------------------------------------------------------------
# Day-level reductions
# ---------------------------------------------------------------------------


def total_for_day(
    records: Iterable[SampleRecord],
    field_name: str,
    day_start_millis: int,
    day_end_millis: int | None = None,
) -> float | int | None:
    """Sum ``field_name`` over [day_start, day_end). None if nothing in the window has it.

    ``day_end_millis`` defaults to day_start + 24h; pass the real local day end
    on DST transition days.
    """
    end = day_end_millis if day_end_millis is not None else day_start_millis + MILLIS_PER_DAY
    values = [
        value
        for r in _summable(_in_window(records, day_start_millis, end))
        if (value := getattr(r, field_name)) is not None
    ]
    if not values:
        return None
    return sum(values)


def latest_for_day(
    records: Iterable[SampleRecord],
    field_name: str,
    day_start_millis: int,
    day_end_millis: int | None = None,
) -> float | int | str | None:
    end = day_end_millis if day_end_millis is not None else day_start_millis + MILLIS_PER_DAY
    latest = _latest_with(_in_window(records, day_start_millis, end), field_name)
    return getattr(latest, field_name) if latest is not None else None


def weekly_series(
    records: Iterable[SampleRecord],
    selector: Selector,
    today: date,
    tz: ZoneInfo,
) -> WeeklySeriesView:
    """Seven daily totals ending ``today``, oldest first; days without data are 0."""
    per_day: dict[date, float] = defaultdict(float)
    for r in _summable(records):
        value = selector(r)
        if value is not None:
            per_day[local_date(r.timestamp_millis, tz)] += value

    return WeeklySeriesView(
        points=tuple(
            SeriesPoint(label=weekday_abbrev(day), value=per_day.get(day, 0.0))
            for day in trailing_days(today, 7)
        )
    )


# ---------------------------------------------------------------------------
# Sleep
# ---------------------------------------------------------------------------


def nightly_sleep(
    records: Iterable[SampleRecord], tz: ZoneInfo, night_start_hour: int = 18
) -> NightlySleepView:
    """Asleep minutes per night key from stored sleep-segment records.

    Records without a stage (including summary rows) are ignored; awake and
    out-of-bed segments never count.
    """
    nights: dict[int, int] = defaultdict(int)
    for r in records:
        if r.sleep_duration_minutes is None or not is_asleep_stage(r.sleep_stage):
            continue
        nights[night_key_for(r.timestamp_millis, tz, night_start_hour)] += r.sleep_duration_minutes
    return NightlySleepView(nights=tuple(sorted(nights.items())))


def nightly_sleep_from_segments(
    segments: Iterable[Segment], tz: ZoneInfo, night_start_hour: int = 18
) -> NightlySleepView:
    nights: dict[int, int] = defaultdict(int)
    for seg in segments:
        if not is_asleep_stage(seg.stage) or seg.duration_millis <= 0:
            continue
        nights[night_key_for(seg.start_millis, tz, night_start_hour)] += seg.duration_minutes
    return NightlySleepView(nights=tuple(sorted(nights.items())))


# ---------------------------------------------------------------------------
# Heart rate
# ---------------------------------------------------------------------------


def hourly_bands(records: Iterable[SampleRecord], tz: ZoneInfo) -> HourlyHeartRateBandView:
    """Min/max heart rate per local hour that has data, ascending."""
    per_hour: dict[int, list[float]] = defaultdict(list)
    for r in records:
        if r.heart_rate_bpm is not None:
            per_hour[floor_to_hour(r.timestamp_millis, tz)].append(r.heart_rate_bpm)
    return HourlyHeartRateBandView(
        bands=tuple(
            HourlyBand(hour_start_millis=hour, min_bpm=min(values), max_bpm=max(values))
            for hour, values in sorted(per_hour.items())
        )
    )


def heart_rate_range(records: Iterable[SampleRecord]) -> tuple[float | None, float | None]:
    values = [r.heart_rate_bpm for r in records if r.heart_rate_bpm is not None]
    if not values:
        return None, None
    return min(values), max(values)


def per_minute_samples(records: Iterable[SampleRecord]) -> tuple[SampleRecord, ...]:
    """The earliest heart-rate sample of each minute, newest minute first."""
    first_in_minute: dict[int, SampleRecord] = {}
    for r in sorted(records, key=lambda rec: rec.timestamp_millis):
        if r.heart_rate_bpm is None:
            continue
        first_in_minute.setdefault(floor_to_minute(r.timestamp_millis), r)
    return tuple(first_in_minute[m] for m in sorted(first_in_minute, reverse=True))


# ---------------------------------------------------------------------------
# Interval rollups
# ---------------------------------------------------------------------------


def interval_rollup(
    records: Iterable[SampleRecord],
    selector: Selector,
    day_start_millis: int,
    now_millis: int,
    tz: ZoneInfo,
    slot_minutes: int = 30,
) -> IntervalRollupView:
    """Fixed-width slot totals from local midnight.

    When the day is today, slots starting after ``now_millis`` are omitted.
    """
    day = local_date(day_start_millis, tz)
    _, day_end = day_bounds(day, tz)
    slot_millis = slot_minutes * MILLIS_PER_MINUTE
    last_start = min(day_end - 1, now_millis)

    sums: dict[int, float] = defaultdict(float)
    for r in _summable(_in_window(records, day_start_millis, day_end)):
        value = selector(r)
        if value is not None:
            index = (r.timestamp_millis - day_start_millis) // slot_millis
            sums[index] += value

    slots = []
    slot_start = day_start_millis
    index = 0
    while slot_start < day_end and slot_start <= last_start:
        slots.append(IntervalTotal(start_millis=slot_start, value=sums.get(index, 0.0)))
        slot_start += slot_millis
        index += 1
    return IntervalRollupView(slot_minutes=slot_minutes, slots=tuple(slots))


def hourly_sums(
    records: Iterable[SampleRecord], selector: Selector, tz: ZoneInfo
) -> IntervalRollupView:
    """Sparse per-local-hour sums, ascending (calorie and distance history)."""
    sums: dict[int, float] = defaultdict(float)
    for r in _summable(records):
        value = selector(r)
        if value is not None:
            sums[floor_to_hour(r.timestamp_millis, tz)] += value
    return IntervalRollupView(
        slot_minutes=60,
        slots=tuple(IntervalTotal(start_millis=h, value=v) for h, v in sorted(sums.items())),
    )


# ---------------------------------------------------------------------------
# Composite views
# ---------------------------------------------------------------------------


def _day_total_or_summary(
    records: list[SampleRecord], field_name: str, day_start: int, day_end: int
) -> float | int | None:
    total = total_for_day(records, field_name, day_start, day_end)
    if total is not None:
        return total
    summaries = [r for r in _in_window(records, day_start, day_end) if r.is_summary]
    latest = _latest_with(summaries, field_name)
    return getattr(latest, field_name) if latest is not None else None


def daily_summary(
    records: Iterable[SampleRecord],
    user_id: str,
    user_name: str,
    now_millis: int,
    tz: ZoneInfo,
    night_start_hour: int = 18,
) -> DailySummaryView:
    """Dashboard view for today from the user's trailing-week records."""
    rows = [r for r in records if r.user_id == user_id]
    today = local_date(now_millis, tz)
    day_start, day_end = day_bounds(today, tz)

    heart = _latest_with(rows, "heart_rate_bpm")
    weight = _latest_with(rows, "weight_kg")
    activity = _latest_with(rows, "activity_label")

    sleep = nightly_sleep(rows, tz, night_start_hour).most_recent_night_minutes
    if sleep is None:
        summary_sleep = _latest_with([r for r in rows if r.is_summary], "sleep_duration_minutes")
        sleep = summary_sleep.sleep_duration_minutes if summary_sleep is not None else None

    return DailySummaryView(
        status=ViewStatus.READY if rows else ViewStatus.NO_DATA,
        user_name=user_name,
        as_of_millis=now_millis,
        heart_rate_bpm=heart.heart_rate_bpm if heart else None,
        steps=_day_total_or_summary(rows, "step_count", day_start, day_end),
        calories_kcal=_day_total_or_summary(rows, "calories_kcal", day_start, day_end),
        distance_km=_day_total_or_summary(rows, "distance_km", day_start, day_end),
        heart_points=_day_total_or_summary(rows, "heart_points_count", day_start, day_end),
        floors_climbed=_day_total_or_summary(rows, "floors_climbed", day_start, day_end),
        move_minutes=_day_total_or_summary(rows, "move_minutes", day_start, day_end),
        weight_kg=weight.weight_kg if weight else None,
        sleep_minutes=sleep,
        last_activity=activity.activity_label if activity else None,
        last_activity_millis=activity.timestamp_millis if activity else None,
        weekly_steps=weekly_series(rows, by_field("step_count"), today, tz),
        weekly_calories=weekly_series(rows, by_field("calories_kcal"), today, tz),
    )


def selection_window(selection: Selection, now_millis: int, tz: ZoneInfo) -> tuple[int, int]:
    """[start, end) covered by a history selection.

    Sleep covers the seven nights ending with the selected day; every other
    metric covers the selected local day. Either way the window ends at now
    when the selected day is today.
    """
    today = local_date(now_millis, tz)
    day_start, day_end = day_bounds(selection.selected_date, tz)
    if selection.metric is MetricKind.SLEEP:
        day_start = start_of_day(
            selection.selected_date - timedelta(days=SLEEP_HISTORY_DAYS - 1), tz
        )
    if selection.selected_date == today:
        day_end = now_millis
    return day_start, day_end


def history_view(
    records: Iterable[SampleRecord],
    selection: Selection,
    now_millis: int,
    tz: ZoneInfo,
    night_start_hour: int = 18,
) -> HistoryView:
    kind = selection.metric
    start, end = selection_window(selection, now_millis, tz)
    window = _in_window(records, start, end)
    # Heart-rate summary rows are real readings; day totals are not.
    if kind is not MetricKind.HEART_RATE:
        window = _summable(window)
    rows = sorted(
        (r for r in window if r.value_of(kind.field_name) is not None),
        key=lambda r: r.timestamp_millis,
    )

    base = HistoryView(
        selection=selection,
        status=ViewStatus.READY if rows else ViewStatus.NO_DATA,
        window_start_millis=start,
        window_end_millis=end,
        samples=tuple(rows),
    )
    if not rows:
        return base

    selector = by_field(kind.field_name)
    if kind is MetricKind.HEART_RATE:
        low, high = heart_rate_range(rows)
        return replace(
            base,
            min_bpm=low,
            max_bpm=high,
            hourly_bands=hourly_bands(rows, tz),
            per_minute=per_minute_samples(rows),
        )
    if kind is MetricKind.STEPS:
        rollup = interval_rollup(rows, selector, start, now_millis, tz)
        return replace(base, total=rollup.total, rollup=rollup)
    if kind.is_delta:
        return replace(
            base,
            total=sum(selector(r) for r in rows),
            rollup=hourly_sums(rows, selector, tz),
        )
    if kind is MetricKind.SLEEP:
        nights = nightly_sleep(rows, tz, night_start_hour)
        return replace(base, total=sum(m for _, m in nights.nights), nightly_sleep=nights)
    return base
