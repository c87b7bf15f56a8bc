from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from sqlalchemy import BigInteger, Column, Integer, MetaData, Table, UniqueConstraint
from sqlalchemy.types import TypeEngine

from recordkit.core.errors import SchemaDefinitionError


# Shared metadata so every declared record type can be created together.
metadata = MetaData()


@dataclass(frozen=True)
class FieldRule:
    # rule is a type annotation understood by pydantic; unions express alternatives.
    # An optional field may be absent from an attribute bag; a present value is still checked.
    name: str
    rule: Any
    sql_type: TypeEngine | type[TypeEngine]
    default: Any = None
    required: bool = True


@dataclass(frozen=True, eq=False)
class SchemaDescriptor:
    """Static declaration of the relation a record type maps to.

    Built once per record type. ``columns``, ``qualified_columns`` and
    ``schema`` are pure derivations of ``table`` and ``fields``; the
    SQLAlchemy ``Table`` is registered on the shared ``metadata`` at
    declaration time.
    """

    table: str
    fields: tuple[FieldRule, ...]
    unique_key: tuple[str, ...] = ()
    identifier: str | None = "id"
    sa_table: Table = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        names = [rule.name for rule in self.fields]
        if len(set(names)) != len(names):
            raise SchemaDefinitionError(f"duplicate field names in {self.table}: {names}")
        if self.identifier is not None and self.identifier in names:
            raise SchemaDefinitionError(f"identifier {self.identifier!r} must not be a declared field")
        unknown = [name for name in self.unique_key if name not in names]
        if unknown:
            raise SchemaDefinitionError(f"unique key of {self.table} names undeclared columns: {unknown}")
        object.__setattr__(self, "fields", tuple(self.fields))
        object.__setattr__(self, "unique_key", tuple(self.unique_key))
        object.__setattr__(self, "sa_table", self._build_table())

    def _build_table(self) -> Table:
        columns: list[Column] = []
        if self.identifier is not None:
            # BigInteger does not autoincrement on sqlite; keep INTEGER there.
            id_type = BigInteger().with_variant(Integer(), "sqlite")
            columns.append(Column(self.identifier, id_type, primary_key=True, autoincrement=True))
        for rule in self.fields:
            # Nullability is enforced by the field rule, not the column.
            columns.append(Column(rule.name, rule.sql_type, nullable=True))
        signature = (tuple((column.name, repr(column.type)) for column in columns), self.unique_key)
        existing = metadata.tables.get(self.table)
        if existing is not None:
            # Redeclaring an identical relation reuses it; anything else would merge two layouts.
            if existing.info.get("signature") != signature:
                raise SchemaDefinitionError(f"table {self.table!r} is already declared with different columns")
            return existing
        constraints = []
        if self.unique_key:
            constraints.append(UniqueConstraint(*self.unique_key, name=f"uq_{self.table}_{'_'.join(self.unique_key)}"))
        return Table(self.table, metadata, *columns, *constraints, info={"signature": signature})

    @property
    def columns(self) -> list[str]:
        return [rule.name for rule in self.fields]

    @property
    def qualified_columns(self) -> list[str]:
        return [f"{self.table}.{name}" for name in self.columns]

    @property
    def schema(self) -> Mapping[str, FieldRule]:
        return MappingProxyType({rule.name: rule for rule in self.fields})

    def rule_for(self, name: str) -> FieldRule:
        for rule in self.fields:
            if rule.name == name:
                return rule
        raise KeyError(name)

    def __contains__(self, name: object) -> bool:
        return any(rule.name == name for rule in self.fields)
