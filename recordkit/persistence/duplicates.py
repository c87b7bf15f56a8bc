from __future__ import annotations

from typing import Callable

from sqlalchemy.exc import IntegrityError


DuplicateKeyDetector = Callable[[IntegrityError], bool]

# MySQL reports ER_DUP_ENTRY / ER_DUP_ENTRY_WITH_KEY_NAME for unique violations.
MYSQL_DUPLICATE_CODES = frozenset({1062, 1586})
POSTGRES_UNIQUE_VIOLATION = "23505"


def _sqlstate(orig: BaseException | None) -> str | None:
    # Drivers disagree on the attribute name; the asyncpg adapter keeps the driver error as __cause__.
    for candidate in (orig, getattr(orig, "__cause__", None)):
        if candidate is None:
            continue
        for attr in ("sqlstate", "pgcode"):
            value = getattr(candidate, attr, None)
            if isinstance(value, str):
                return value
    return None


def _mysql(exc: IntegrityError) -> bool:
    args = getattr(exc.orig, "args", ())
    return bool(args) and args[0] in MYSQL_DUPLICATE_CODES


def _postgres(exc: IntegrityError) -> bool:
    return _sqlstate(exc.orig) == POSTGRES_UNIQUE_VIOLATION


def _sqlite(exc: IntegrityError) -> bool:
    if getattr(exc.orig, "sqlite_errorname", None) in ("SQLITE_CONSTRAINT_UNIQUE", "SQLITE_CONSTRAINT_PRIMARYKEY"):
        return True
    message = str(exc.orig)
    return "UNIQUE constraint failed" in message or "PRIMARY KEY must be unique" in message


def _any_integrity_error(exc: IntegrityError) -> bool:
    return True


_DETECTORS: dict[str, DuplicateKeyDetector] = {
    "mysql": _mysql,
    "mariadb": _mysql,
    "postgresql": _postgres,
    "sqlite": _sqlite,
}


def register_duplicate_key_detector(dialect: str, detector: DuplicateKeyDetector) -> None:
    _DETECTORS[dialect] = detector


def detector_for(dialect: str) -> DuplicateKeyDetector:
    # Unknown backends fall back to treating every integrity error as a duplicate.
    return _DETECTORS.get(dialect, _any_integrity_error)


def is_duplicate_key(exc: BaseException, detector: DuplicateKeyDetector) -> bool:
    return isinstance(exc, IntegrityError) and detector(exc)
