"""
Record store.

A key-value document store with query-by-field-equality: the persistence
seam for generated interviews and feedback. Returned records always carry
their id under the "id" key.
"""

import copy
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from interview_coach.db.models import Base, RecordModel

logger = logging.getLogger(__name__)

IN_MEMORY_URL = "memory://"


def _matches(data: dict[str, Any], field_equals: dict[str, Any]) -> bool:
    return all(field in data and data[field] == value for field, value in field_equals.items())


class RecordStore(ABC):
    """Abstract document store."""

    @abstractmethod
    async def create_record(self, collection: str, data: dict[str, Any]) -> str:
        """
        Store a new document.

        Args:
            collection: Collection name.
            data: JSON-serializable document.

        Returns:
            The new record id.
        """
        ...

    @abstractmethod
    async def get_record(self, collection: str, record_id: str) -> dict[str, Any] | None:
        """Fetch one document by id, or None."""
        ...

    @abstractmethod
    async def query_records(self, collection: str, **field_equals: Any) -> list[dict[str, Any]]:
        """Return documents whose fields equal every given value, oldest first."""
        ...

    async def init_schema(self) -> None:
        """Prepare storage; no-op unless the backend needs it."""

    async def close(self) -> None:
        """Release resources."""


class InMemoryRecordStore(RecordStore):
    """Process-local store, used in tests and when no database is configured."""

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}

    async def create_record(self, collection: str, data: dict[str, Any]) -> str:
        record_id = uuid4().hex
        self._collections.setdefault(collection, {})[record_id] = copy.deepcopy(data)
        return record_id

    async def get_record(self, collection: str, record_id: str) -> dict[str, Any] | None:
        data = self._collections.get(collection, {}).get(record_id)
        if data is None:
            return None
        return {**copy.deepcopy(data), "id": record_id}

    async def query_records(self, collection: str, **field_equals: Any) -> list[dict[str, Any]]:
        return [
            {**copy.deepcopy(data), "id": record_id}
            for record_id, data in self._collections.get(collection, {}).items()
            if _matches(data, field_equals)
        ]


class SqlRecordStore(RecordStore):
    """SQLAlchemy async store over the `records` table."""

    def __init__(self, database_url: str | None = None, *, engine: AsyncEngine | None = None) -> None:
        """
        Initialize the store.

        Args:
            database_url: SQLAlchemy async URL, e.g. sqlite+aiosqlite:///./data/app.db
            engine: Pre-built engine (takes precedence over the URL).
        """
        if engine is None and not database_url:
            raise ValueError("SqlRecordStore needs a database_url or an engine")
        self._database_url = database_url
        self._engine = engine or create_async_engine(database_url)
        self._sessionmaker = async_sessionmaker(self._engine, expire_on_commit=False)

    async def init_schema(self) -> None:
        """Create the records table (and the SQLite directory) if missing."""
        if self._database_url:
            url = make_url(self._database_url)
            if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
                Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info(f"Record store ready at {self._engine.url.render_as_string(hide_password=True)}")

    async def create_record(self, collection: str, data: dict[str, Any]) -> str:
        async with self._sessionmaker() as session:
            async with session.begin():
                record = RecordModel(collection=collection, data=copy.deepcopy(data))
                session.add(record)
                await session.flush()
                record_id = record.id
        logger.debug(f"Created record {collection}/{record_id}")
        return record_id

    async def get_record(self, collection: str, record_id: str) -> dict[str, Any] | None:
        async with self._sessionmaker() as session:
            record = await session.get(RecordModel, record_id)
            if record is None or record.collection != collection:
                return None
            return {**record.data, "id": record.id}

    async def query_records(self, collection: str, **field_equals: Any) -> list[dict[str, Any]]:
        # JSON operators differ per dialect; filter documents in Python.
        stmt = (
            select(RecordModel)
            .where(RecordModel.collection == collection)
            .order_by(RecordModel.created_at)
        )
        async with self._sessionmaker() as session:
            result = await session.execute(stmt)
            records = result.scalars().all()
        return [
            {**record.data, "id": record.id}
            for record in records
            if _matches(record.data, field_equals)
        ]

    async def close(self) -> None:
        await self._engine.dispose()


def create_record_store(database_url: str) -> RecordStore:
    """Build the store for a configured URL (`memory://` selects the in-memory store)."""
    if database_url == IN_MEMORY_URL:
        return InMemoryRecordStore()
    return SqlRecordStore(database_url)
