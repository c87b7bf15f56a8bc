from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Iterable, Mapping

from pydantic import TypeAdapter, ValidationError

from recordkit.core.errors import ValidationFailure
from recordkit.domain.schema import SchemaDescriptor


@dataclass(frozen=True)
class ViolationDetail:
    field: str
    message: str
    type: str
    value: Any = None


@lru_cache(maxsize=None)
def _adapters(descriptor: SchemaDescriptor) -> dict[str, TypeAdapter]:
    # One adapter per declared field, built the first time a descriptor is validated.
    return {rule.name: TypeAdapter(rule.rule) for rule in descriptor.fields}


def _violations(name: str, value: Any, exc: ValidationError) -> list[ViolationDetail]:
    return [
        ViolationDetail(field=name, message=error["msg"], type=error["type"], value=value)
        for error in exc.errors(include_url=False)
    ]


def _check(adapter: TypeAdapter, name: str, value: Any) -> tuple[Any, list[ViolationDetail]]:
    try:
        return adapter.validate_python(value), []
    except ValidationError as exc:
        return value, _violations(name, value, exc)


def validate(
    attributes: Mapping[str, Any],
    descriptor: SchemaDescriptor,
    fields: Iterable[str] | None = None,
) -> list[ViolationDetail]:
    """Validate an attribute bag against a descriptor.

    Every requested field is checked and every violation is returned, so an
    empty list means the bag is valid. ``fields`` restricts the check to a
    subset of declared columns. Keys that are not declared are ignored, and a
    field declared with ``required=False`` may be left out.
    """
    adapters = _adapters(descriptor)
    names = descriptor.columns if fields is None else list(fields)
    violations: list[ViolationDetail] = []
    for name in names:
        if name not in adapters:
            raise KeyError(f"{descriptor.table} has no field {name!r}")
        if name not in attributes:
            if not descriptor.rule_for(name).required:
                continue
            violations.append(ViolationDetail(field=name, message="Field required", type="missing"))
            continue
        _, found = _check(adapters[name], name, attributes[name])
        violations.extend(found)
    return violations


def validate_field(name: str, value: Any, descriptor: SchemaDescriptor) -> Any:
    """Validate a single field value and return it in its validated form."""
    adapters = _adapters(descriptor)
    if name not in adapters:
        raise KeyError(f"{descriptor.table} has no field {name!r}")
    validated, violations = _check(adapters[name], name, value)
    if violations:
        raise ValidationFailure(violations)
    return validated


def assert_valid(attributes: Mapping[str, Any], descriptor: SchemaDescriptor) -> None:
    violations = validate(attributes, descriptor)
    if violations:
        raise ValidationFailure(violations)
