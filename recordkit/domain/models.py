from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Any, Union

from pydantic import BeforeValidator, Field
from sqlalchemy import BigInteger, Date, Integer, func, select

from recordkit.domain.schema import FieldRule, SchemaDescriptor
from recordkit.persistence.db import Store
from recordkit.persistence.record import Record


def _reject_bool(value: Any) -> Any:
    # bool is an int subclass; counts and ids must be real numbers.
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    return value


NonNegativeInt = Annotated[int, BeforeValidator(_reject_bool), Field(ge=0)]
# A file id is either known, unknown (None) or a batch SQL session variable such as "@update_id_files".
FileId = Union[NonNegativeInt, None, Annotated[str, Field(pattern=r"^@")]]


def _coerce_date(record: Record, value: Any) -> Any:
    # Hit counts are daily aggregates; drop the time part of timestamps.
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value).date()
        except ValueError:
            pass
        try:
            return date.fromisoformat(value)
        except ValueError:
            # Left as is so the field rule reports it.
            return value
    return value


class FileHits(Record):
    descriptor = SchemaDescriptor(
        table="file_hits",
        fields=(
            FieldRule("file_id", FileId, BigInteger()),
            FieldRule("date", date, Date()),
            FieldRule("hits", NonNegativeInt, Integer(), default=0),
        ),
        unique_key=("file_id", "date"),
    )
    transformers = {"date": _coerce_date}

    @classmethod
    async def get_sum_by_date(
        cls,
        from_: date | None = None,
        to: date | None = None,
        *,
        store: Store | None = None,
    ) -> dict[str, int]:
        """Total hits per day across all files, keyed by ISO date."""
        table = cls.descriptor.sa_table
        stmt = (
            select(table.c.date, func.sum(table.c.hits).label("hits"))
            .group_by(table.c.date)
            .order_by(table.c.date)
        )
        if isinstance(from_, date):
            stmt = stmt.where(table.c.date >= _coerce_date(None, from_))
        if isinstance(to, date):
            stmt = stmt.where(table.c.date <= _coerce_date(None, to))
        store = cls._resolve_store(store)
        async with store.transaction() as session:
            rows = (await session.execute(stmt)).all()
        return {row.date.isoformat()[:10]: int(row.hits) for row in rows}
