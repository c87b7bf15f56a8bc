from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from recordkit.domain.models import FileHits
from recordkit.persistence.db import Store, create_all
from recordkit.tests.utils.records import DailyTotals


@pytest.fixture
async def store(tmp_path) -> Store:
    # File-backed sqlite gives each concurrent operation its own connection.
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'records.db'}")
    store = Store(engine)
    await create_all(store, FileHits, DailyTotals)
    FileHits.bind(store)
    DailyTotals.bind(store)
    yield store
    FileHits.bind(None)
    DailyTotals.bind(None)
    await store.dispose()
