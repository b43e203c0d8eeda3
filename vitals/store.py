"""Local sample store contract, change feed, and in-memory implementation.

The store is keyed by (user_id, timestamp_millis). Range reads are
half-open [start, end) and return records ordered by timestamp ascending.
``watch_range`` yields the current range immediately and again after every
upsert that lands inside it; bursts of upserts are conflated into a single
re-read.
"""

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from vitals.domain.errors import ConcurrentWriteConflictError
from vitals.domain.models import SampleRecord
from vitals.locks import KeyedLock


@runtime_checkable
class SampleStore(Protocol):
    """Common interface for local sample stores."""

    async def upsert(self, record: SampleRecord) -> bool:
        """Insert or replace the record at its key. Returns True if it was an insert."""
        ...

    async def get_by_timestamp(self, user_id: str, timestamp_millis: int) -> SampleRecord | None:
        ...

    async def get_range(self, user_id: str, start_millis: int, end_millis: int) -> list[SampleRecord]:
        ...

    def watch_range(
        self, user_id: str, start_millis: int, end_millis: int
    ) -> AsyncIterator[list[SampleRecord]]:
        ...


@dataclass(eq=False)
class RangeSubscription:
    user_id: str
    start_millis: int
    end_millis: int
    _dirty: asyncio.Event = field(default_factory=asyncio.Event)

    def covers(self, user_id: str, timestamp_millis: int) -> bool:
        return user_id == self.user_id and self.start_millis <= timestamp_millis < self.end_millis

    def notify(self) -> None:
        self._dirty.set()

    async def wait(self) -> None:
        await self._dirty.wait()
        self._dirty.clear()


class ChangeFeed:
    """Fan-out of upsert notifications to range subscriptions."""

    def __init__(self) -> None:
        self._subscriptions: set[RangeSubscription] = set()

    def subscribe(self, user_id: str, start_millis: int, end_millis: int) -> RangeSubscription:
        sub = RangeSubscription(user_id, start_millis, end_millis)
        self._subscriptions.add(sub)
        return sub

    def unsubscribe(self, sub: RangeSubscription) -> None:
        self._subscriptions.discard(sub)

    def publish(self, user_id: str, timestamp_millis: int) -> None:
        for sub in self._subscriptions:
            if sub.covers(user_id, timestamp_millis):
                sub.notify()

    def __len__(self) -> int:
        return len(self._subscriptions)


class ObservableStoreMixin:
    """Adds ``watch_range`` and the write guard to a store.

    When ``guard`` is set, every upsert must happen while the writing task
    holds the record key in that KeyedLock.
    """

    feed: ChangeFeed
    guard: KeyedLock | None = None

    def _check_guard(self, record: SampleRecord) -> None:
        if self.guard is not None and not self.guard.is_held(record.key):
            raise ConcurrentWriteConflictError(record.user_id, record.timestamp_millis)

    async def get_range(self, user_id: str, start_millis: int, end_millis: int) -> list[SampleRecord]:
        raise NotImplementedError

    async def watch_range(
        self, user_id: str, start_millis: int, end_millis: int
    ) -> AsyncIterator[list[SampleRecord]]:
        sub = self.feed.subscribe(user_id, start_millis, end_millis)
        try:
            while True:
                yield await self.get_range(user_id, start_millis, end_millis)
                await sub.wait()
        finally:
            self.feed.unsubscribe(sub)


class InMemorySampleStore(ObservableStoreMixin):
    """Dict-backed store for fixture mode and tests."""

    def __init__(self, guard: KeyedLock | None = None) -> None:
        self.feed = ChangeFeed()
        self.guard = guard
        self._rows: dict[tuple[str, int], SampleRecord] = {}

    async def upsert(self, record: SampleRecord) -> bool:
        self._check_guard(record)
        was_inserted = record.key not in self._rows
        self._rows[record.key] = record
        self.feed.publish(record.user_id, record.timestamp_millis)
        return was_inserted

    async def get_by_timestamp(self, user_id: str, timestamp_millis: int) -> SampleRecord | None:
        return self._rows.get((user_id, timestamp_millis))

    async def get_range(self, user_id: str, start_millis: int, end_millis: int) -> list[SampleRecord]:
        rows = [
            r
            for (uid, ts), r in self._rows.items()
            if uid == user_id and start_millis <= ts < end_millis
        ]
        return sorted(rows, key=lambda r: r.timestamp_millis)

    async def all_for_user(self, user_id: str) -> list[SampleRecord]:
        return sorted(
            (r for (uid, _), r in self._rows.items() if uid == user_id),
            key=lambda r: r.timestamp_millis,
        )

    def __len__(self) -> int:
        return len(self._rows)
