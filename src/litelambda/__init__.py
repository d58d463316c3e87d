"""litelambda -- typed SQLite statements driven by row handlers.

Manifesto:
    Callers should not marshal values to and from the engine's dynamically
    typed columns by hand. A row handler's own parameter list says which
    columns it wants and at which types; litelambda reads exactly those,
    converts them by a fixed coercion table, and calls the handler.

    - **Scoped handles:** Connections and statements are context managers
    - **Typed rows:** ``for_each(lambda name, data: ...)`` or annotated functions
    - **Fluent binding:** ``stmt.bind(1, 2.0).exec()``
    - **Structured failures:** No raw ``sqlite3`` exception crosses the API

Architecture::

    errors.py      LiteError hierarchy (EngineError, BindError, ...)
    translate.py   sqlite3 exception -> LiteError at every engine call
    codec.py       TypedValue, coercion table, NullPolicy
    dispatch.py    Handler signature -> RowPlan; step/extract/invoke loop
    statement.py   Statement handle and its state machine
    connection.py  Connection handle, open(), transaction()
    settings.py    LITELAMBDA_* environment defaults (pydantic-settings)
    logging.py     structlog configuration

Usage::

    import litelambda

    with litelambda.open(":memory:") as db:
        db.execute("create table test (name Integer, data Real);")
        db.prepare("insert into test values (?, ?);").bind(1, 1.0).exec()

        def show(name: int, data: float) -> None:
            print(name, data)

        db.prepare("select * from test;").for_each(show)
"""

from litelambda.codec import NullPolicy, TypedValue, ValueType, decode, encode
from litelambda.connection import MEMORY, Connection, open
from litelambda.errors import (
    BindError,
    ConcurrencyError,
    ConnectionError,
    ConstraintError,
    EngineError,
    ErrorCategory,
    LiteError,
    NullConversionError,
    StatementError,
    TypeMismatchError,
    UsageError,
)
from litelambda.settings import LiteSettings, get_settings
from litelambda.statement import Statement, StatementState

__version__ = "0.1.0"

__all__ = [
    # Handles
    "open",
    "Connection",
    "Statement",
    "StatementState",
    "MEMORY",
    # Codec
    "TypedValue",
    "ValueType",
    "NullPolicy",
    "encode",
    "decode",
    # Errors
    "LiteError",
    "ErrorCategory",
    "EngineError",
    "ConnectionError",
    "ConcurrencyError",
    "StatementError",
    "ConstraintError",
    "BindError",
    "TypeMismatchError",
    "NullConversionError",
    "UsageError",
    # Config
    "LiteSettings",
    "get_settings",
]
