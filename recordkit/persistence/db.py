from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import TYPE_CHECKING, Any, AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from recordkit.core.config import Settings, get_settings
from recordkit.persistence.duplicates import DuplicateKeyDetector, detector_for, is_duplicate_key

if TYPE_CHECKING:
    from recordkit.persistence.record import Record


logger = logging.getLogger(__name__)


def create_engine_from_settings(settings: Settings | None = None) -> AsyncEngine:
    settings = settings or get_settings()
    engine_kwargs: dict[str, Any] = {"pool_pre_ping": True, "echo": settings.db_echo}
    # Configure bounded pools for predictable latency under load.
    if not settings.database_url.startswith("sqlite"):
        engine_kwargs["pool_size"] = max(1, int(settings.db_pool_size))
        engine_kwargs["max_overflow"] = max(0, int(settings.db_max_overflow))
        engine_kwargs["pool_timeout"] = settings.db_pool_timeout_s
        engine_kwargs["pool_recycle"] = settings.db_pool_recycle_s
        if settings.db_statement_timeout_ms > 0 and "+asyncpg" in settings.database_url:
            engine_kwargs["connect_args"] = {
                "server_settings": {"statement_timeout": str(int(settings.db_statement_timeout_ms))}
            }
    return create_async_engine(settings.database_url, **engine_kwargs)


class Store:
    """Handle to a relational store shared by the record types bound to it.

    Wraps an ``AsyncEngine`` and its session factory. Each call to
    ``transaction()`` is one short unit of work: commit on success, rollback
    when the body raises.
    """

    def __init__(self, engine: AsyncEngine, *, duplicate_key_detector: DuplicateKeyDetector | None = None) -> None:
        self.engine = engine
        self.sessions = async_sessionmaker(engine, expire_on_commit=False)
        self._detector = duplicate_key_detector or detector_for(engine.dialect.name)
        logger.debug("store_created dialect=%s", engine.dialect.name)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "Store":
        return cls(create_engine_from_settings(settings))

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def is_duplicate_key(self, exc: BaseException) -> bool:
        return is_duplicate_key(exc, self._detector)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        async with self.sessions.begin() as session:
            yield session

    async def dispose(self) -> None:
        await self.engine.dispose()
        logger.debug("store_disposed dialect=%s", self.dialect_name)


async def create_all(store: Store, *record_types: type[Record]) -> None:
    # Creates only the listed tables; schema evolution is out of scope.
    tables = [record_type.descriptor.sa_table for record_type in record_types]
    async with store.engine.begin() as conn:
        for table in tables:
            await conn.run_sync(table.create, checkfirst=True)


async def drop_all(store: Store, *record_types: type[Record]) -> None:
    tables = [record_type.descriptor.sa_table for record_type in record_types]
    async with store.engine.begin() as conn:
        for table in tables:
            await conn.run_sync(table.drop, checkfirst=True)
