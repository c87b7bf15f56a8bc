from __future__ import annotations

import asyncio
from contextlib import contextmanager
from datetime import datetime, timezone
import logging
import re
from types import MappingProxyType
from typing import Any, Callable, ClassVar, Iterator, Mapping, TypeVar, Union

from sqlalchemy import ColumnElement, Select, delete, insert, literal_column, select, update
from sqlalchemy.dialects import mysql
from sqlalchemy.engine import Dialect
from sqlalchemy.exc import IntegrityError

from recordkit.core.errors import (
    DuplicateKeyConflict,
    InconsistentStateError,
    MissingUniqueCriteriaError,
    SchemaDefinitionError,
    StoreNotConfiguredError,
    ValidationFailure,
)
from recordkit.domain.schema import SchemaDescriptor
from recordkit.domain.validation import assert_valid, validate_field
from recordkit.persistence.db import Store


logger = logging.getLogger(__name__)

R = TypeVar("R", bound="Record")
Transformer = Callable[[Any, Any], Any]
Criteria = Union[Mapping[str, Any], ColumnElement[bool], Callable[[Select], Select]]

UPDATED_AT = "updated_at"
# Batch SQL refers to ids captured in MySQL session variables by name.
SESSION_VARIABLE = re.compile(r"^@update_id_\w+$")


class Record:
    """Base class for record types mapped to one relation.

    Subclasses declare a ``descriptor`` and optionally a ``transformers``
    table mapping field names to ``callable(instance, value) -> value``.
    Every write to a declared field goes through ``set_field``: the
    transformer runs first, then the field rule, and a rejected value leaves
    the attribute untouched.
    """

    descriptor: ClassVar[SchemaDescriptor]
    transformers: ClassVar[Mapping[str, Transformer]] = MappingProxyType({})
    _store: ClassVar[Store | None] = None

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        descriptor = getattr(cls, "descriptor", None)
        if descriptor is None:
            return
        unknown = [name for name in cls.transformers if name not in descriptor]
        if unknown:
            raise SchemaDefinitionError(f"{cls.__name__} registers transformers for undeclared fields: {unknown}")

    def __init__(self, **properties: Any) -> None:
        descriptor = type(self).descriptor
        if descriptor.identifier is not None:
            object.__setattr__(self, descriptor.identifier, None)
        # Defaults stay unvalidated until the record is written.
        for rule in descriptor.fields:
            object.__setattr__(self, rule.name, rule.default)
        for name, value in properties.items():
            self.set_field(name, value)

    def __setattr__(self, name: str, value: Any) -> None:
        self.set_field(name, value)

    def set_field(self, name: str, value: Any) -> None:
        descriptor = type(self).descriptor
        if name not in descriptor:
            object.__setattr__(self, name, value)
            return
        transform = type(self).transformers.get(name)
        if transform is not None:
            value = transform(self, value)
        object.__setattr__(self, name, validate_field(name, value, descriptor))

    def __repr__(self) -> str:
        descriptor = type(self).descriptor
        parts = []
        if descriptor.identifier is not None:
            parts.append(f"{descriptor.identifier}={getattr(self, descriptor.identifier, None)!r}")
        parts.extend(f"{name}={value!r}" for name, value in self.serialize().items())
        return f"{type(self).__name__}({', '.join(parts)})"

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        identifier = type(self).descriptor.identifier
        same_id = identifier is None or getattr(self, identifier, None) == getattr(other, identifier, None)
        return same_id and self.serialize() == other.serialize()

    __hash__ = None  # type: ignore[assignment]

    # -- store binding -------------------------------------------------------

    @classmethod
    def bind(cls, store: Store | None) -> None:
        # Bound per type; subclasses inherit the binding until they rebind.
        cls._store = store

    @classmethod
    def _resolve_store(cls, store: Store | None) -> Store:
        resolved = store if store is not None else cls._store
        if resolved is None:
            raise StoreNotConfiguredError(f"{cls.__name__} has no bound store; call {cls.__name__}.bind(store)")
        return resolved

    # -- serialisation -------------------------------------------------------

    def serialize(self) -> dict[str, Any]:
        return {name: getattr(self, name, None) for name in type(self).descriptor.columns}

    @property
    def unique_criteria(self) -> dict[str, Any]:
        criteria = {}
        for name in type(self).descriptor.unique_key:
            value = getattr(self, name, None)
            if value:
                criteria[name] = value
        return criteria

    async def rehydrate(self: R) -> R:
        """Post-load hook run on every instance read from the store."""
        return self

    @classmethod
    def _from_row(cls: type[R], row: Mapping[str, Any]) -> R:
        record = cls.__new__(cls)
        descriptor = cls.descriptor
        if descriptor.identifier is not None:
            object.__setattr__(record, descriptor.identifier, None)
        for rule in descriptor.fields:
            object.__setattr__(record, rule.name, rule.default)
        for name, value in row.items():
            object.__setattr__(record, name, value)
        return record

    def _adopt(self, other: Record) -> None:
        for name, value in vars(other).items():
            object.__setattr__(self, name, value)

    # -- validation ----------------------------------------------------------

    def validate(self) -> None:
        assert_valid(self.serialize(), type(self).descriptor)

    def is_valid(self) -> bool:
        try:
            self.validate()
        except ValidationFailure:
            return False
        return True

    def _touch(self) -> None:
        if UPDATED_AT in type(self).descriptor:
            self.set_field(UPDATED_AT, datetime.now(timezone.utc))

    # -- reads ---------------------------------------------------------------

    @classmethod
    def _apply_criteria(cls, stmt: Select, criteria: Any) -> Select | None:
        table = cls.descriptor.sa_table
        if isinstance(criteria, Mapping):
            return stmt.where(*[table.c[name] == value for name, value in criteria.items()])
        if isinstance(criteria, ColumnElement):
            return stmt.where(criteria)
        if callable(criteria):
            return criteria(stmt)
        return None

    @classmethod
    async def find(cls: type[R], criteria: Criteria | int, *, store: Store | None = None) -> R | None:
        """Return the first record matching ``criteria`` or ``None``.

        An ``int`` matches the identifier column (floats are never identifiers
        and fall under unsupported shapes); a mapping matches columns by
        equality; a SQLAlchemy expression is used as the where clause; a
        callable receives the ``Select`` and returns the composed one. Any
        other shape returns ``None`` without querying.
        """
        identifier = cls.descriptor.identifier
        if isinstance(criteria, bool):
            return None
        if isinstance(criteria, int):
            if identifier is None:
                return None
            criteria = {identifier: criteria}
        stmt = cls._apply_criteria(select(cls.descriptor.sa_table), criteria)
        if stmt is None:
            return None
        store = cls._resolve_store(store)
        async with store.transaction() as session:
            row = (await session.execute(stmt.limit(1))).mappings().first()
        if row is None:
            return None
        return await cls._from_row(row).rehydrate()

    @classmethod
    async def find_all(
        cls: type[R],
        criteria: Criteria | None = None,
        limit: int | None = None,
        offset: int | None = None,
        *,
        store: Store | None = None,
    ) -> list[R]:
        stmt: Select | None = select(cls.descriptor.sa_table)
        if criteria is not None:
            stmt = cls._apply_criteria(stmt, criteria)
            if stmt is None:
                raise TypeError(f"unsupported criteria for {cls.__name__}.find_all: {criteria!r}")
        if isinstance(limit, int) and not isinstance(limit, bool):
            stmt = stmt.limit(limit)
        if isinstance(offset, int) and not isinstance(offset, bool):
            stmt = stmt.offset(offset)
        store = cls._resolve_store(store)
        async with store.transaction() as session:
            rows = (await session.execute(stmt)).mappings().all()
        return list(await asyncio.gather(*(cls._from_row(row).rehydrate() for row in rows)))

    # -- writes --------------------------------------------------------------

    @contextmanager
    def _duplicate_keys_as_conflicts(self, store: Store) -> Iterator[None]:
        try:
            yield
        except IntegrityError as exc:
            if not store.is_duplicate_key(exc):
                raise
            table = type(self).descriptor.table
            raise DuplicateKeyConflict(
                f"duplicate key on {table} for {self.unique_criteria!r}", orig=exc
            ) from exc

    def _require_unique_criteria(self) -> list[ColumnElement[bool]]:
        criteria = self.unique_criteria
        if not criteria:
            raise MissingUniqueCriteriaError(
                f"{type(self).__name__} has no unique key values set; refusing to scope to every row"
            )
        table = type(self).descriptor.sa_table
        return [table.c[name] == value for name, value in criteria.items()]

    async def insert(self: R, *, store: Store | None = None) -> R:
        store = type(self)._resolve_store(store)
        self._touch()
        self.validate()
        descriptor = type(self).descriptor
        with self._duplicate_keys_as_conflicts(store):
            async with store.transaction() as session:
                result = await session.execute(insert(descriptor.sa_table).values(**self.serialize()))
                primary_key = result.inserted_primary_key
        if descriptor.identifier is not None and primary_key:
            object.__setattr__(self, descriptor.identifier, primary_key[0])
        return self

    async def update(self, *, store: Store | None = None) -> int:
        store = type(self)._resolve_store(store)
        self._touch()
        self.validate()
        where = self._require_unique_criteria()
        stmt = update(type(self).descriptor.sa_table).where(*where).values(**self.serialize())
        with self._duplicate_keys_as_conflicts(store):
            async with store.transaction() as session:
                result = await session.execute(stmt)
        return result.rowcount

    async def delete(self, *, store: Store | None = None) -> int:
        store = type(self)._resolve_store(store)
        where = self._require_unique_criteria()
        async with store.transaction() as session:
            result = await session.execute(delete(type(self).descriptor.sa_table).where(*where))
        return result.rowcount

    async def insert_or_load(self, *, store: Store | None = None) -> bool:
        """Insert the record, or adopt the existing row that holds its unique key.

        Returns ``True`` when this call created the row and ``False`` when a
        concurrent or earlier writer owns it; in that case the persisted
        values, identifier included, replace this instance's values.
        """
        store = type(self)._resolve_store(store)
        try:
            await self.insert(store=store)
        except DuplicateKeyConflict as exc:
            criteria = self.unique_criteria
            if not criteria:
                raise MissingUniqueCriteriaError(
                    f"{type(self).__name__} conflicted but has no unique key values to reload by"
                ) from exc
            found = await type(self).find(criteria, store=store)
            if found is None:
                raise InconsistentStateError(
                    f"duplicate key on {type(self).descriptor.table} but no row matches {criteria!r}"
                ) from exc
            self._adopt(found)
            logger.debug("insert_or_load_adopted table=%s criteria=%s", type(self).descriptor.table, criteria)
            return False
        return True

    # -- batch SQL -----------------------------------------------------------

    def to_upsert_statement(self, on_duplicate: str | None = None, *, dialect: Dialect | None = None) -> str:
        """Render a literal INSERT ... ON DUPLICATE KEY UPDATE statement.

        The default clause re-asserts the existing identifier as the insert id
        and stores it in ``@update_id_<table>`` so later statements in the same
        batch can reference it. Values such as ``"@update_id_files"`` are
        emitted as bare session variables.
        """
        descriptor = type(self).descriptor
        if on_duplicate is None:
            identifier = descriptor.identifier or "id"
            on_duplicate = (
                f"{identifier} = LAST_INSERT_ID({identifier}); "
                f"SET @update_id_{descriptor.table} = LAST_INSERT_ID()"
            )
        values = {
            name: literal_column(value) if isinstance(value, str) and SESSION_VARIABLE.match(value) else value
            for name, value in self.serialize().items()
        }
        stmt = insert(descriptor.sa_table).values(**values)
        compiled = stmt.compile(dialect=dialect or mysql.dialect(), compile_kwargs={"literal_binds": True})
        return f"{compiled} ON DUPLICATE KEY UPDATE {on_duplicate};"
