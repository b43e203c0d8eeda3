"""Timezone-explicit calendar arithmetic over epoch milliseconds.

Every function takes the zone as an argument and returns new values;
nothing here reads the process-local timezone or mutates shared state.
Day arithmetic goes through local dates so DST days are 23 or 25 hours long.
"""

from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

MILLIS_PER_MINUTE = 60_000
MILLIS_PER_HOUR = 3_600_000
MILLIS_PER_DAY = 86_400_000


def to_local(timestamp_millis: int, tz: ZoneInfo) -> datetime:
    return datetime.fromtimestamp(timestamp_millis / 1000, tz=tz)


def to_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def local_date(timestamp_millis: int, tz: ZoneInfo) -> date:
    return to_local(timestamp_millis, tz).date()


def start_of_day(day: date, tz: ZoneInfo) -> int:
    """Epoch millis of local midnight at the start of ``day``."""
    return to_millis(datetime.combine(day, time.min, tzinfo=tz))


def start_of_day_for(timestamp_millis: int, tz: ZoneInfo) -> int:
    return start_of_day(local_date(timestamp_millis, tz), tz)


def day_bounds(day: date, tz: ZoneInfo) -> tuple[int, int]:
    """[start, end) of the local calendar day in epoch millis."""
    return start_of_day(day, tz), start_of_day(day + timedelta(days=1), tz)


def is_same_day(timestamp_millis: int, day: date, tz: ZoneInfo) -> bool:
    return local_date(timestamp_millis, tz) == day


def at_local_hour(day: date, hour: int, tz: ZoneInfo) -> int:
    return to_millis(datetime.combine(day, time(hour=hour), tzinfo=tz))


def night_key_for(timestamp_millis: int, tz: ZoneInfo, night_start_hour: int = 18) -> int:
    """Key of the night a timestamp belongs to: night_start_hour local on the night's first day.

    Before the start hour a timestamp belongs to the previous day's night.
    """
    moment = to_local(timestamp_millis, tz)
    day = moment.date()
    if moment.hour < night_start_hour:
        day -= timedelta(days=1)
    return at_local_hour(day, night_start_hour, tz)


def floor_to_hour(timestamp_millis: int, tz: ZoneInfo) -> int:
    """Floor to the start of the local hour (matters for half-hour offset zones)."""
    moment = to_local(timestamp_millis, tz)
    return to_millis(moment.replace(minute=0, second=0, microsecond=0))


def floor_to_minute(timestamp_millis: int) -> int:
    return timestamp_millis - timestamp_millis % MILLIS_PER_MINUTE


def trailing_days(today: date, count: int = 7) -> list[date]:
    """``count`` consecutive days ending at ``today``, oldest first."""
    return [today - timedelta(days=offset) for offset in range(count - 1, -1, -1)]


_WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


def weekday_abbrev(day: date) -> str:
    # English labels regardless of process locale
    return _WEEKDAYS[day.weekday()]
