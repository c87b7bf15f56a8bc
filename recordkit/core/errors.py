from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from recordkit.domain.validation import ViolationDetail


class RecordKitError(Exception):
    """Base error for recordkit."""


class SchemaDefinitionError(RecordKitError):
    """Invalid schema descriptor declaration."""


class ValidationFailure(RecordKitError):
    """One or more fields violate their declared rules."""

    def __init__(self, violations: list[ViolationDetail]) -> None:
        self.violations = list(violations)
        summary = "; ".join(f"{item.field}: {item.message}" for item in self.violations)
        super().__init__(summary or "validation failed")

    @property
    def fields(self) -> list[str]:
        return [item.field for item in self.violations]


class StoreNotConfiguredError(RecordKitError):
    """Record type used before a store was bound to it."""


class DatabaseError(RecordKitError):
    """Database layer failure."""


class DuplicateKeyConflict(DatabaseError):
    """The store rejected a write because of a unique key violation."""

    def __init__(self, message: str, orig: BaseException | None = None) -> None:
        super().__init__(message)
        self.orig = orig


class InconsistentStateError(DatabaseError):
    """Duplicate key reported but the conflicting row could not be reloaded."""


class MissingUniqueCriteriaError(DatabaseError):
    """Unique criteria is empty; refusing to scope a write to every row."""
