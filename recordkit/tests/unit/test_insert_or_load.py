from __future__ import annotations

import asyncio
from datetime import date

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import create_async_engine

from recordkit.core.errors import InconsistentStateError, ValidationFailure
from recordkit.persistence.db import Store
from recordkit.tests.utils.records import DailyTotals


@pytest.mark.asyncio
async def test_first_writer_creates_the_row(store) -> None:
    totals = DailyTotals(date=date(2024, 1, 1), hits=5)
    assert await totals.insert_or_load() is True
    assert totals.id is not None


@pytest.mark.asyncio
async def test_existing_row_is_adopted(store) -> None:
    winner = DailyTotals(date=date(2024, 1, 1), hits=5, label="winner")
    await winner.insert()

    loser = DailyTotals(date=date(2024, 1, 1), hits=9, label="loser")
    assert await loser.insert_or_load() is False
    assert loser.id == winner.id
    assert loser.hits == 5
    assert loser.label == "winner"
    assert len(await DailyTotals.find_all()) == 1


@pytest.mark.asyncio
async def test_concurrent_callers_converge_on_one_row(store) -> None:
    first = DailyTotals(date=date(2024, 1, 1), hits=5)
    second = DailyTotals(date=date(2024, 1, 1), hits=11)

    outcomes = await asyncio.gather(first.insert_or_load(), second.insert_or_load())

    assert sorted(outcomes) == [False, True]
    created, loaded = (first, second) if outcomes[0] else (second, first)
    assert loaded.date == created.date
    assert loaded.id == created.id
    assert loaded.hits == created.hits
    stored = await DailyTotals.find_all()
    assert len(stored) == 1
    assert stored[0].hits == created.hits


@pytest.mark.asyncio
async def test_vanished_conflicting_row_is_fatal(store, monkeypatch: pytest.MonkeyPatch) -> None:
    await DailyTotals(date=date(2024, 1, 1), hits=5).insert()

    async def _gone(cls, criteria, *, store=None):
        return None

    monkeypatch.setattr(DailyTotals, "find", classmethod(_gone))
    with pytest.raises(InconsistentStateError):
        await DailyTotals(date=date(2024, 1, 1), hits=1).insert_or_load()


@pytest.mark.asyncio
async def test_validation_failures_propagate_unchanged(store) -> None:
    with pytest.raises(ValidationFailure):
        await DailyTotals(hits=1).insert_or_load()
    assert await DailyTotals.find_all() == []


@pytest.mark.asyncio
async def test_integrity_errors_not_classified_as_duplicates_propagate(store) -> None:
    strict = Store(
        create_async_engine(store.engine.url),
        duplicate_key_detector=lambda exc: False,
    )
    try:
        await DailyTotals(date=date(2024, 1, 1), hits=1).insert(store=strict)
        with pytest.raises(IntegrityError):
            await DailyTotals(date=date(2024, 1, 1), hits=2).insert_or_load(store=strict)
    finally:
        await strict.dispose()
