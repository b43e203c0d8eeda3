"""PostgreSQL-backed sample store.

Rows are keyed by (user_id, timestamp_millis). The orchestrator writes the
already-merged record, so an upsert replaces every measurement column on
conflict. Change notifications are published to the in-process feed after
the transaction commits.
"""

from typing import Any

import structlog
from sqlalchemy import func, select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vitals.domain.models import MERGEABLE_FIELDS, SampleRecord
from vitals.domain.orm import HealthSampleModel
from vitals.locks import KeyedLock
from vitals.store import ChangeFeed, ObservableStoreMixin

logger = structlog.get_logger()


def _row_values(record: SampleRecord) -> dict[str, Any]:
    values = record.model_dump()
    if record.origin is not None:
        values["origin"] = record.origin.value
    return values


class SqlSampleStore(ObservableStoreMixin):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        guard: KeyedLock | None = None,
    ):
        self.session_factory = session_factory
        self.feed = ChangeFeed()
        self.guard = guard

    async def upsert(self, record: SampleRecord) -> bool:
        """Insert or replace the row at the record key. Returns True on insert."""
        self._check_guard(record)
        stmt = pg_insert(HealthSampleModel).values(_row_values(record))
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "timestamp_millis"],
            set_={
                **{name: getattr(stmt.excluded, name) for name in MERGEABLE_FIELDS},
                "updated_at": func.now(),
            },
        ).returning(text("(xmax = 0) AS was_inserted"))

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            was_inserted = bool(result.scalar_one())
            await session.commit()

        self.feed.publish(record.user_id, record.timestamp_millis)
        logger.debug(
            "sample_upserted",
            user_id=record.user_id,
            timestamp_millis=record.timestamp_millis,
            was_inserted=was_inserted,
        )
        return was_inserted

    async def get_by_timestamp(self, user_id: str, timestamp_millis: int) -> SampleRecord | None:
        async with self.session_factory() as session:
            row = await session.get(HealthSampleModel, (user_id, timestamp_millis))
            return row.to_record() if row is not None else None

    async def get_range(self, user_id: str, start_millis: int, end_millis: int) -> list[SampleRecord]:
        query = (
            select(HealthSampleModel)
            .where(HealthSampleModel.user_id == user_id)
            .where(HealthSampleModel.timestamp_millis >= start_millis)
            .where(HealthSampleModel.timestamp_millis < end_millis)
            .order_by(HealthSampleModel.timestamp_millis.asc())
        )
        async with self.session_factory() as session:
            result = await session.execute(query)
            return [row.to_record() for row in result.scalars().all()]

    async def count_for_user(self, user_id: str) -> int:
        query = select(func.count()).select_from(HealthSampleModel).where(
            HealthSampleModel.user_id == user_id
        )
        async with self.session_factory() as session:
            result = await session.execute(query)
            return result.scalar_one()
