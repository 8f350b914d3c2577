"""Key-value record store.

Each store holds one collection of pydantic records keyed by ``id``. Updates
replace the whole record: ``update(id, updater)`` reads the current record,
passes it to ``updater`` and writes back whatever it returns.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Generic, TypeVar

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import select

from codereview.database.models import Record
from codereview.database.session import (
    close_db,
    create_engine,
    create_session_maker,
    get_session,
    init_db,
)
from codereview.schemas import CamelModel, Report, Submission, TimelineEvent


logger = logging.getLogger(__name__)

T = TypeVar("T", bound=CamelModel)


class RecordStore(ABC, Generic[T]):
    """get/list/save/update/remove over one collection."""

    def __init__(self, collection: str, model: type[T]):
        self.collection = collection
        self.model = model
        self._lock = asyncio.Lock()

    @abstractmethod
    async def get(self, record_id: str) -> T | None:
        ...

    @abstractmethod
    async def list(self) -> list[T]:
        ...

    @abstractmethod
    async def save(self, record: T) -> T:
        ...

    @abstractmethod
    async def update(self, record_id: str, updater: Callable[[T], T]) -> T | None:
        ...

    @abstractmethod
    async def remove(self, record_id: str) -> bool:
        ...

    async def upsert_many(self, records: list[T]) -> None:
        for record in records:
            await self.save(record)


class InMemoryStore(RecordStore[T]):
    """Dict-backed store. Records are kept serialized so callers never share instances."""

    def __init__(self, collection: str, model: type[T]):
        super().__init__(collection, model)
        self._items: dict[str, dict] = {}

    async def get(self, record_id: str) -> T | None:
        data = self._items.get(record_id)
        return self.model.model_validate(data) if data is not None else None

    async def list(self) -> list[T]:
        return [self.model.model_validate(data) for data in self._items.values()]

    async def save(self, record: T) -> T:
        async with self._lock:
            self._items[record.id] = record.to_json_dict()
        return record

    async def update(self, record_id: str, updater: Callable[[T], T]) -> T | None:
        async with self._lock:
            data = self._items.get(record_id)
            if data is None:
                return None
            updated = updater(self.model.model_validate(data))
            self._items[record_id] = updated.to_json_dict()
            return updated

    async def remove(self, record_id: str) -> bool:
        async with self._lock:
            return self._items.pop(record_id, None) is not None


class SQLRecordStore(RecordStore[T]):
    """Store persisted in the ``records`` table."""

    def __init__(
        self,
        collection: str,
        model: type[T],
        session_maker: async_sessionmaker[AsyncSession],
    ):
        super().__init__(collection, model)
        self._session_maker = session_maker

    async def get(self, record_id: str) -> T | None:
        async with get_session(self._session_maker) as session:
            row = await session.get(Record, (self.collection, record_id))
            return self.model.model_validate(row.data) if row else None

    async def list(self) -> list[T]:
        async with get_session(self._session_maker) as session:
            result = await session.execute(
                select(Record)
                .where(Record.collection == self.collection)
                .order_by(Record.created_at)
            )
            return [self.model.model_validate(row.data) for row in result.scalars().all()]

    async def save(self, record: T) -> T:
        async with self._lock:
            async with get_session(self._session_maker) as session:
                row = await session.get(Record, (self.collection, record.id))
                if row is None:
                    session.add(
                        Record(
                            collection=self.collection,
                            id=record.id,
                            data=record.to_json_dict(),
                        )
                    )
                else:
                    row.data = record.to_json_dict()
                    row.updated_at = datetime.now(timezone.utc)
        return record

    async def update(self, record_id: str, updater: Callable[[T], T]) -> T | None:
        async with self._lock:
            async with get_session(self._session_maker) as session:
                row = await session.get(Record, (self.collection, record_id))
                if row is None:
                    return None
                updated = updater(self.model.model_validate(row.data))
                row.data = updated.to_json_dict()
                row.updated_at = datetime.now(timezone.utc)
                return updated

    async def remove(self, record_id: str) -> bool:
        async with self._lock:
            async with get_session(self._session_maker) as session:
                row = await session.get(Record, (self.collection, record_id))
                if row is None:
                    return False
                await session.delete(row)
                return True


@dataclass
class Stores:
    """The collections the pipeline reads and writes."""
    submissions: RecordStore[Submission]
    reports: RecordStore[Report]
    timeline: RecordStore[TimelineEvent]
    engine: AsyncEngine | None = None

    @classmethod
    def in_memory(cls) -> Stores:
        return cls(
            submissions=InMemoryStore("submissions", Submission),
            reports=InMemoryStore("reports", Report),
            timeline=InMemoryStore("timeline", TimelineEvent),
        )

    @classmethod
    async def connect(cls, database_url: str | None = None) -> Stores:
        """Open the SQL-backed stores, creating the table on first use."""
        engine = create_engine(database_url)
        await init_db(engine)
        session_maker = create_session_maker(engine)
        logger.info("Record store connected")
        return cls(
            submissions=SQLRecordStore("submissions", Submission, session_maker),
            reports=SQLRecordStore("reports", Report, session_maker),
            timeline=SQLRecordStore("timeline", TimelineEvent, session_maker),
            engine=engine,
        )

    async def close(self) -> None:
        if self.engine is not None:
            await close_db(self.engine)
