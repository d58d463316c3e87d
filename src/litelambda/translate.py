"""Engine status translation.

Every call into ``sqlite3`` runs inside :func:`engine_call`, which converts
the engine's exceptions into the litelambda hierarchy. Classification uses
the primary SQLite result code (``sqlite_errorcode & 0xFF``) and falls back
to the diagnostic text when the engine did not attach a code.

=========================  ===================
Primary code               Raised as
=========================  ===================
SQLITE_BUSY, SQLITE_LOCKED ``ConcurrencyError``
SQLITE_CONSTRAINT          ``ConstraintError``
SQLITE_MISUSE              ``UsageError``
anything else              operation default
=========================  ===================

The operation default is ``ConnectionError`` for open, ``StatementError``
for execute/prepare and ``EngineError`` for exec/iteration.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Final

from litelambda.errors import (
    ConcurrencyError,
    ConstraintError,
    EngineError,
    ErrorContext,
    LiteError,
    UsageError,
)
from litelambda.logging import get_logger

logger = get_logger(__name__)

SQLITE_BUSY: Final = 5
SQLITE_LOCKED: Final = 6
SQLITE_CONSTRAINT: Final = 19
SQLITE_MISUSE: Final = 21

_BUSY_CODES: Final[frozenset[int]] = frozenset({SQLITE_BUSY, SQLITE_LOCKED})

_BUSY_SUBSTRINGS: Final[tuple[str, ...]] = (
    "database is locked",
    "database table is locked",
    "database schema is locked",
)

# ProgrammingError texts that describe bad SQL rather than a misused handle.
_STATEMENT_SUBSTRINGS: Final[tuple[str, ...]] = (
    "one statement at a time",
    "incorrect number of bindings",
)

# sqlite3.Warning is not an sqlite3.Error subclass but is raised for
# multi-statement SQL on older interpreters.
ENGINE_EXCEPTIONS: Final = (sqlite3.Error, sqlite3.Warning)


def _classify(exc: Exception, primary: int | None, default: type[EngineError]) -> type[LiteError]:
    message = str(exc).lower()
    if primary is not None:
        if primary in _BUSY_CODES:
            return ConcurrencyError
        if primary == SQLITE_CONSTRAINT:
            return ConstraintError
        if primary == SQLITE_MISUSE:
            return UsageError
        return default
    if any(fragment in message for fragment in _BUSY_SUBSTRINGS):
        return ConcurrencyError
    if isinstance(exc, sqlite3.IntegrityError):
        return ConstraintError
    if isinstance(exc, sqlite3.ProgrammingError):
        if any(fragment in message for fragment in _STATEMENT_SUBSTRINGS):
            return default
        return UsageError
    return default


def translate(
    exc: Exception,
    *,
    default: type[EngineError] = EngineError,
    classify: bool = True,
    sql: str | None = None,
    path: str | None = None,
) -> LiteError:
    """
    Convert an engine exception into a litelambda error.

    Args:
        exc: The ``sqlite3`` exception.
        default: Class used when the code is not otherwise classified.
        classify: When False, always use ``default`` (open uses this so
            that every failure to open is a ``ConnectionError``).
        sql: SQL text of the failing operation.
        path: Database path of the connection.
    """
    code = getattr(exc, "sqlite_errorcode", None)
    if not isinstance(code, int):
        code = None
    name = getattr(exc, "sqlite_errorname", None)
    primary = code & 0xFF if code is not None else None

    error_class = _classify(exc, primary, default) if classify else default
    diagnostic = str(exc)
    context = ErrorContext(sql=sql, path=path, engine_code=code, engine_name=name)

    if issubclass(error_class, EngineError):
        return error_class(diagnostic, code=code, diagnostic=diagnostic, context=context, cause=exc)
    return error_class(diagnostic, code=code, context=context, cause=exc)


@contextmanager
def engine_call(
    operation: str,
    *,
    default: type[EngineError] = EngineError,
    classify: bool = True,
    sql: str | None = None,
    path: str | None = None,
) -> Iterator[None]:
    """Run engine calls, re-raising their failures as translated errors."""
    try:
        yield
    except ENGINE_EXCEPTIONS as exc:
        error = translate(exc, default=default, classify=classify, sql=sql, path=path)
        logger.debug("engine_error", operation=operation, error=error.to_dict())
        raise error from exc


__all__ = [
    "SQLITE_BUSY",
    "SQLITE_LOCKED",
    "SQLITE_CONSTRAINT",
    "SQLITE_MISUSE",
    "translate",
    "engine_call",
]
