"""
Structured error types for litelambda.

Every failure that crosses the public boundary of litelambda is one of the
classes below. Raw ``sqlite3`` exceptions and raw engine status codes never
escape: the translator in :mod:`litelambda.translate` converts them at the
boundary of every Connection and Statement operation.

Manifesto:
    - **Typed Error Hierarchy:** One class per failure kind the caller can act on
    - **Explicit Retry Semantics:** Only lock contention is retryable
    - **Rich Context:** Errors carry the failing SQL, engine code and position
    - **Error Chaining:** The original ``sqlite3`` exception is kept as cause

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                         LiteError                             │
        │        (category, retryable, context, cause)                  │
        ├──────────────────────────────────────────────────────────────┤
        │                                                               │
        │  EngineError (code, diagnostic)      BindError (position)     │
        │     │                                                         │
        │     ├── ConnectionError              TypeMismatchError        │
        │     ├── ConcurrencyError (retry)        │                     │
        │     └── StatementError                  NullConversionError   │
        │            │                                                  │
        │            └── ConstraintError       UsageError (defect)      │
        └──────────────────────────────────────────────────────────────┘

Examples:
    >>> error = ConcurrencyError("database is locked", code=5)
    >>> error.retryable
    True
    >>> error.with_context(sql="insert into t values (?)").context.sql
    'insert into t values (?)'

Guardrails:
    ❌ DON'T: Catch ``sqlite3.Error`` in application code
    ✅ DO: Catch the litelambda class that matches the decision you need

    ❌ DON'T: Catch UsageError to keep going
    ✅ DO: Fix the calling code; UsageError marks a programming defect

Tags:
    error-handling, exception-hierarchy, sqlite, retry-logic, litelambda
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Standard error categories for classification and routing.

    Categories are grouped by who has to act:
    - **Environment:** CONNECTION, CONCURRENCY
    - **Caller data/SQL:** STATEMENT, CONSTRAINT, BIND, CONVERSION
    - **Programming defect:** USAGE
    - **Everything else the engine reports:** ENGINE
    """

    CONNECTION = "CONNECTION"     # Open/create failures
    CONCURRENCY = "CONCURRENCY"   # Busy / locked
    STATEMENT = "STATEMENT"       # Malformed or rejected SQL
    CONSTRAINT = "CONSTRAINT"     # UNIQUE, NOT NULL, CHECK, FK
    BIND = "BIND"                 # Parameter position problems
    CONVERSION = "CONVERSION"     # Codec coercion failures
    USAGE = "USAGE"               # Misuse of a handle
    ENGINE = "ENGINE"             # Unclassified engine status


@dataclass
class ErrorContext:
    """
    Structured metadata attached to every litelambda error.

    Only the fields relevant to a failure are set; ``to_dict()`` drops the
    rest so log lines stay short.

    Attributes:
        sql: SQL text of the failing statement, when known
        path: Database path of the owning connection
        position: 1-based parameter position (bind failures)
        column: 0-based result column (conversion failures)
        engine_code: Extended SQLite result code
        engine_name: Symbolic SQLite result name (``SQLITE_BUSY`` etc.)
        metadata: Additional key-value pairs
    """

    sql: str | None = None
    path: str | None = None
    position: int | None = None
    column: int | None = None
    engine_code: int | None = None
    engine_name: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["sql", "path", "position", "column", "engine_code", "engine_name"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class LiteError(Exception):
    """
    Base exception for all litelambda errors.

    Subclasses set ``default_category`` and ``default_retryable`` so that
    callers never have to pass them explicitly.

    Examples:
        >>> error = LiteError("Something went wrong")
        >>> error.category
        <ErrorCategory.ENGINE: 'ENGINE'>
        >>> error.to_dict()["retryable"]
        False
    """

    default_category: ErrorCategory = ErrorCategory.ENGINE
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> LiteError:
        """
        Add context to this error (fluent API).

        Usage:
            raise StatementError("no such table").with_context(sql=sql)
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __str__(self) -> str:
        if self.context.sql:
            return f"{self.message} [sql: {self.context.sql}]"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# ENGINE ERRORS (translated status codes)
# =============================================================================


class EngineError(LiteError):
    """
    Catch-all for engine status codes not otherwise classified.

    Carries the numeric engine code and the engine's diagnostic text.
    """

    default_category = ErrorCategory.ENGINE

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        diagnostic: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.code = code
        self.diagnostic = diagnostic if diagnostic is not None else message
        if code is not None and self.context.engine_code is None:
            self.context.engine_code = code

    @property
    def primary_code(self) -> int | None:
        """Primary result code (low byte of the extended code)."""
        if self.code is None:
            return None
        return self.code & 0xFF

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.code is not None:
            result["code"] = self.code
        return result


class ConnectionError(EngineError):
    """The engine could not open or create the database."""

    default_category = ErrorCategory.CONNECTION


class ConcurrencyError(EngineError):
    """
    The database or a table is busy/locked.

    Retryable by caller policy; litelambda itself never retries.
    """

    default_category = ErrorCategory.CONCURRENCY
    default_retryable = True


class StatementError(EngineError):
    """SQL was malformed or the engine rejected its execution."""

    default_category = ErrorCategory.STATEMENT


class ConstraintError(StatementError):
    """Constraint violation (UNIQUE, NOT NULL, CHECK, FOREIGN KEY)."""

    default_category = ErrorCategory.CONSTRAINT


# =============================================================================
# BINDING / CONVERSION ERRORS
# =============================================================================


class BindError(LiteError):
    """A parameter position is outside the statement's declared slots."""

    default_category = ErrorCategory.BIND

    def __init__(
        self,
        message: str,
        *,
        position: int | None = None,
        parameter_count: int | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.position = position
        self.parameter_count = parameter_count
        if position is not None:
            self.context.position = position

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.parameter_count is not None:
            result["parameter_count"] = self.parameter_count
        return result


class TypeMismatchError(LiteError):
    """
    A value cannot be converted between a native type and a typed value.

    ``source`` names the typed-value variant (or native type when encoding)
    and ``target`` the requested type.
    """

    default_category = ErrorCategory.CONVERSION

    def __init__(
        self,
        message: str,
        *,
        source: str | None = None,
        target: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.source = source
        self.target = target

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.source:
            result["source"] = self.source
        if self.target:
            result["target"] = self.target
        return result


class NullConversionError(TypeMismatchError):
    """A NULL column was read into a non-nullable type under the raise policy."""

    pass


# =============================================================================
# PROGRAMMING DEFECTS
# =============================================================================


class UsageError(LiteError):
    """
    Misuse of a handle: closed connection, finalized statement, a statement
    left in the error state, or an engine ``SQLITE_MISUSE``.

    Not expected to be caught.
    """

    default_category = ErrorCategory.USAGE

    def __init__(self, message: str, *, code: int | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.code = code
        if code is not None:
            self.context.engine_code = code


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, LiteError):
        return error.retryable
    return False


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, LiteError):
        return error.category
    return ErrorCategory.ENGINE


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "LiteError",
    "EngineError",
    "ConnectionError",
    "ConcurrencyError",
    "StatementError",
    "ConstraintError",
    "BindError",
    "TypeMismatchError",
    "NullConversionError",
    "UsageError",
    "is_retryable",
    "categorize_error",
]
