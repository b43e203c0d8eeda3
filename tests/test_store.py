"""Tests for the in-memory store, range reads and the change feed."""

import asyncio

import pytest

from vitals.domain.errors import ConcurrentWriteConflictError
from vitals.store import ChangeFeed, InMemorySampleStore, SampleStore
from tests.conftest import DAY_START, HOUR, USER_ID, sample


async def _put(store, record):
    async with store.guard.hold(record.key):
        return await store.upsert(record)


class TestInMemoryStore:
    def test_satisfies_protocol(self, store):
        assert isinstance(store, SampleStore)

    async def test_upsert_reports_insert_then_replace(self, store):
        assert await _put(store, sample(DAY_START, step_count=1)) is True
        assert await _put(store, sample(DAY_START, step_count=2)) is False
        assert (await store.get_by_timestamp(USER_ID, DAY_START)).step_count == 2
        assert len(store) == 1

    async def test_range_is_half_open_and_ascending(self, store):
        for offset in (3, 1, 2, 0):
            await _put(store, sample(DAY_START + offset * HOUR, step_count=offset))

        rows = await store.get_range(USER_ID, DAY_START + HOUR, DAY_START + 3 * HOUR)

        assert [r.step_count for r in rows] == [1, 2]

    async def test_range_scoped_to_user(self, store):
        await _put(store, sample(DAY_START, step_count=1))
        await _put(store, sample(DAY_START, user_id="other", step_count=2))
        rows = await store.get_range(USER_ID, DAY_START, DAY_START + HOUR)
        assert [r.user_id for r in rows] == [USER_ID]

    async def test_missing_key(self, store):
        assert await store.get_by_timestamp(USER_ID, DAY_START) is None

    async def test_write_while_another_task_holds_key_rejected(self, store, locks):
        record = sample(DAY_START, step_count=1)
        holding = asyncio.Event()
        release = asyncio.Event()

        async def holder():
            async with locks.hold(record.key):
                holding.set()
                await release.wait()

        task = asyncio.create_task(holder())
        await holding.wait()
        try:
            with pytest.raises(ConcurrentWriteConflictError):
                await store.upsert(record)
        finally:
            release.set()
            await task
        assert len(store) == 0

    async def test_unguarded_store_accepts_plain_writes(self):
        store = InMemorySampleStore()
        assert await store.upsert(sample(DAY_START, step_count=1)) is True


class TestWatchRange:
    async def test_emits_current_then_updates(self, store):
        await _put(store, sample(DAY_START, step_count=1))
        stream = store.watch_range(USER_ID, DAY_START, DAY_START + HOUR)

        first = await anext(stream)
        assert [r.step_count for r in first] == [1]

        await _put(store, sample(DAY_START + 60_000, step_count=2))
        second = await asyncio.wait_for(anext(stream), 1.0)
        assert [r.step_count for r in second] == [1, 2]

        await stream.aclose()
        assert len(store.feed) == 0

    async def test_writes_outside_range_do_not_wake(self, store):
        stream = store.watch_range(USER_ID, DAY_START, DAY_START + HOUR)
        assert await anext(stream) == []

        await _put(store, sample(DAY_START + HOUR, step_count=5))
        await _put(store, sample(DAY_START, user_id="other", step_count=5))

        with pytest.raises(TimeoutError):
            await asyncio.wait_for(anext(stream), 0.05)
        await stream.aclose()

    async def test_burst_is_conflated(self, store):
        stream = store.watch_range(USER_ID, DAY_START, DAY_START + HOUR)
        await anext(stream)

        for minute in range(5):
            await _put(store, sample(DAY_START + minute * 60_000, step_count=minute))

        snapshot = await asyncio.wait_for(anext(stream), 1.0)
        assert len(snapshot) == 5

        with pytest.raises(TimeoutError):
            await asyncio.wait_for(anext(stream), 0.05)
        await stream.aclose()


class TestChangeFeed:
    def test_publish_marks_covering_subscriptions(self):
        feed = ChangeFeed()
        inside = feed.subscribe(USER_ID, DAY_START, DAY_START + HOUR)
        outside = feed.subscribe(USER_ID, DAY_START + HOUR, DAY_START + 2 * HOUR)

        feed.publish(USER_ID, DAY_START + HOUR - 1)

        assert inside._dirty.is_set()
        assert not outside._dirty.is_set()

    def test_unsubscribe(self):
        feed = ChangeFeed()
        sub = feed.subscribe(USER_ID, 0, 1)
        feed.unsubscribe(sub)
        feed.unsubscribe(sub)
        assert len(feed) == 0
