"""Integration test: SqlSampleStore upsert and range semantics against real Postgres.

Verifies that writing the same (user_id, timestamp_millis) key twice results
in exactly one row via the ON CONFLICT upsert, and that range reads are
half-open and ordered.
"""

import asyncio

import pytest

from vitals.domain.errors import ConcurrentWriteConflictError
from vitals.domain.models import RecordOrigin, SampleRecord

USER_ID = "integration-user"
DAY_START = 1_710_374_400_000
HOUR = 3_600_000


async def _put(store, record: SampleRecord) -> bool:
    async with store.guard.hold(record.key):
        return await store.upsert(record)


async def test_upsert_same_key_twice_yields_one_row(sql_store):
    """Upserting the same key twice should result in exactly one row."""
    first = SampleRecord(user_id=USER_ID, timestamp_millis=DAY_START, step_count=1200)
    assert await _put(sql_store, first) is True

    second = first.model_copy(update={"heart_rate_bpm": 72.0})
    assert await _put(sql_store, second) is False

    assert await sql_store.count_for_user(USER_ID) == 1
    stored = await sql_store.get_by_timestamp(USER_ID, DAY_START)
    assert stored == second


async def test_roundtrip_preserves_every_field(sql_store):
    record = SampleRecord(
        user_id=USER_ID,
        timestamp_millis=DAY_START - 30 * 60_000,
        sleep_duration_minutes=60,
        sleep_stage=4,
        activity_label="walking",
        distance_km=0.95,
        weight_kg=70.5,
        origin=RecordOrigin.SEGMENT,
    )
    await _put(sql_store, record)

    assert await sql_store.get_by_timestamp(USER_ID, record.timestamp_millis) == record


async def test_missing_key_is_none(sql_store):
    assert await sql_store.get_by_timestamp(USER_ID, DAY_START) is None


async def test_range_is_half_open_ordered_and_user_scoped(sql_store):
    for offset in (2, 0, 1, 3):
        await _put(
            sql_store,
            SampleRecord(user_id=USER_ID, timestamp_millis=DAY_START + offset * HOUR, step_count=offset),
        )
    await _put(sql_store, SampleRecord(user_id="someone-else", timestamp_millis=DAY_START + HOUR))

    rows = await sql_store.get_range(USER_ID, DAY_START, DAY_START + 3 * HOUR)

    assert [r.step_count for r in rows] == [0, 1, 2]
    assert {r.user_id for r in rows} == {USER_ID}


async def test_unguarded_write_rejected(sql_store):
    with pytest.raises(ConcurrentWriteConflictError):
        await sql_store.upsert(SampleRecord(user_id=USER_ID, timestamp_millis=DAY_START))
    assert await sql_store.count_for_user(USER_ID) == 0


async def test_watch_range_sees_committed_writes(sql_store):
    stream = sql_store.watch_range(USER_ID, DAY_START, DAY_START + HOUR)
    assert await anext(stream) == []

    await _put(sql_store, SampleRecord(user_id=USER_ID, timestamp_millis=DAY_START, step_count=5))

    rows = await asyncio.wait_for(anext(stream), 5.0)
    assert [r.step_count for r in rows] == [5]
    await stream.aclose()
