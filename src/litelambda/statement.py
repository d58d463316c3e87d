"""
Prepared statement handle.

A ``Statement`` owns one compiled SQL text and its parameter slots. It is
bound, executed, bound again and executed again without recompiling::

    insert = db.prepare("insert into test (name, data) values (?, ?);")
    for i in range(1000):
        insert.bind(i, math.sqrt(i)).exec()

    select = db.prepare("select * from test where data < ?;").bind(8.0)
    select.for_each(lambda name, data: print(name, data))

State machine::

    UNBOUND ──bind──▶ BOUND ──exec / for_each──▶ EXECUTING
       ▲                ▲                            │
       │                └──────── exhausted ─────────┤
       │                                             │ engine / bind /
       └── clear_bindings ── ERROR ◀─────────────────┘ conversion error
                               │
                               └── reset() ──▶ BOUND (bindings kept)

    close() from any state ──▶ CLOSED

A statement in ERROR refuses every operation except ``reset``,
``clear_bindings`` and ``close``.
"""

from __future__ import annotations

import weakref
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING, Any

from litelambda.codec import NullPolicy, to_engine
from litelambda.dispatch import RowDispatcher, plan_for
from litelambda.errors import BindError, LiteError, UsageError
from litelambda.logging import get_logger
from litelambda.translate import ENGINE_EXCEPTIONS, engine_call

if TYPE_CHECKING:
    import sqlite3

    from litelambda.connection import Connection

logger = get_logger(__name__)


class StatementState(str, Enum):
    """Cursor/binding state of a Statement."""

    UNBOUND = "unbound"
    BOUND = "bound"
    EXECUTING = "executing"
    ERROR = "error"
    CLOSED = "closed"


class Statement:
    """
    One prepared statement, exclusively owned by its caller.

    Created by :meth:`Connection.prepare`. Holds only a weak reference to
    the owning connection; closing the connection finalizes the statement.
    """

    def __init__(self, connection: Connection, sql: str, parameter_count: int):
        self._connection_ref = weakref.ref(connection)
        self._sql = sql
        self._parameter_count = parameter_count
        self._bindings: list[Any] = [None] * parameter_count
        self._has_bindings = False
        self._state = StatementState.UNBOUND
        self._cursor: sqlite3.Cursor | None = None
        self.rowcount = -1

    # -- properties --------------------------------------------------------

    @property
    def sql(self) -> str:
        return self._sql

    @property
    def parameter_count(self) -> int:
        """Number of ``?`` slots the engine reported for this SQL."""
        return self._parameter_count

    @property
    def state(self) -> StatementState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state is StatementState.CLOSED

    @property
    def bindings(self) -> tuple[Any, ...]:
        """Engine values currently bound, by position (unbound slots are None)."""
        return tuple(self._bindings)

    # -- binding -----------------------------------------------------------

    def bind_at(self, position: int, value: Any) -> Statement:
        """
        Bind ``value`` to the 1-based ``position``.

        Raises:
            BindError: ``position`` is outside ``1..parameter_count``.
                Existing bindings are left untouched.
            TypeMismatchError: ``value`` has no engine representation.
        """
        self._require_ready("bind")
        count = self._parameter_count
        if isinstance(position, bool) or not isinstance(position, int) or not 1 <= position <= count:
            self._state = StatementState.ERROR
            raise BindError(
                f"parameter position {position!r} is out of range 1..{count}",
                position=position if isinstance(position, int) else None,
                parameter_count=count,
            ).with_context(sql=self._sql)
        try:
            self._bindings[position - 1] = to_engine(value)
        except LiteError as error:
            self._state = StatementState.ERROR
            error.with_context(sql=self._sql, position=position)
            raise
        self._has_bindings = True
        self._state = StatementState.BOUND
        return self

    def bind(self, *values: Any) -> Statement:
        """
        Bind ``values`` to positions ``1..len(values)`` in order.

        Equivalent to sequential ``bind_at`` calls: if position ``k`` fails,
        positions before it stay bound and the statement needs ``reset()``.
        """
        for position, value in enumerate(values, start=1):
            self.bind_at(position, value)
        return self

    def clear_bindings(self) -> Statement:
        """Drop every binding and return to UNBOUND."""
        self._require_open()
        self._release_cursor()
        self._bindings = [None] * self._parameter_count
        self._has_bindings = False
        self._state = StatementState.UNBOUND
        return self

    def reset(self) -> Statement:
        """Clear cursor and error state; bindings are kept."""
        self._require_open()
        self._release_cursor()
        self._state = self._rest_state()
        return self

    # -- execution ---------------------------------------------------------

    def exec(self) -> None:
        """
        Run the statement to completion, discarding any result rows, then
        reset so it can be rebound. Bound values persist.
        """
        native = self._begin("exec")
        try:
            with engine_call("exec", sql=self._sql, path=self._path()):
                cursor = native.execute(self._sql, tuple(self._bindings))
                try:
                    for _ in cursor:
                        pass
                    self.rowcount = cursor.rowcount
                finally:
                    cursor.close()
        except BaseException:
            self._settle(StatementState.ERROR)
            raise
        self._settle(self._rest_state())

    def for_each(self, handler: Callable[..., Any]) -> None:
        """
        Invoke ``handler`` once per result row with typed column values.

        The handler's parameter list decides which columns are read and at
        which types (see :mod:`litelambda.dispatch`). Exceptions raised by
        the handler propagate unchanged and the statement auto-resets;
        engine and conversion failures leave it in ERROR.
        """
        self._iterate(handler, None)

    forEach = for_each

    def map(self, handler: Callable[..., Any]) -> list[Any]:
        """Like ``for_each`` but collect the handler's return values."""
        results: list[Any] = []
        self._iterate(handler, results)
        return results

    def _iterate(self, handler: Callable[..., Any], sink: list[Any] | None) -> None:
        self._require_ready("for_each")
        dispatcher = RowDispatcher(handler, plan_for(handler, self._null_policy()))
        native = self._begin("for_each")
        try:
            with engine_call("for_each", sql=self._sql, path=self._path()):
                self._cursor = native.execute(self._sql, tuple(self._bindings))
            dispatcher.run(self._step, sink)
        except BaseException:
            self._release_cursor()
            self._settle(self._rest_state() if dispatcher.in_handler else StatementState.ERROR)
            raise
        self._release_cursor()
        self._settle(self._rest_state())

    def _step(self) -> tuple[Any, ...] | None:
        if self._cursor is None:
            raise UsageError("statement was finalized during iteration").with_context(sql=self._sql)
        with engine_call("step", sql=self._sql, path=self._path()):
            return self._cursor.fetchone()

    # -- lifecycle ---------------------------------------------------------

    def close(self) -> None:
        """Finalize the statement. Safe to call more than once."""
        if self._state is StatementState.CLOSED:
            return
        self._release_cursor()
        self._state = StatementState.CLOSED
        connection = self._connection_ref()
        if connection is not None:
            connection._forget(self)
        logger.debug("statement_finalized", sql=self._sql)

    def __enter__(self) -> Statement:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Statement({self._sql!r}, state={self._state.value})"

    # -- internals ---------------------------------------------------------

    def _rest_state(self) -> StatementState:
        return StatementState.BOUND if self._has_bindings else StatementState.UNBOUND

    def _settle(self, state: StatementState) -> None:
        if self._state is not StatementState.CLOSED:
            self._state = state

    def _release_cursor(self) -> None:
        cursor, self._cursor = self._cursor, None
        if cursor is None:
            return
        try:
            cursor.close()
        except ENGINE_EXCEPTIONS as exc:
            logger.warning("statement_finalize_failed", sql=self._sql, error=str(exc))

    def _require_open(self) -> Connection:
        if self._state is StatementState.CLOSED:
            raise UsageError("statement is finalized").with_context(sql=self._sql)
        connection = self._connection_ref()
        if connection is None or connection.closed:
            self._release_cursor()
            self._state = StatementState.CLOSED
            raise UsageError("owning connection is closed").with_context(sql=self._sql)
        return connection

    def _require_ready(self, operation: str) -> Connection:
        connection = self._require_open()
        if self._state is StatementState.ERROR:
            raise UsageError(
                f"cannot {operation}: statement is in the error state, call reset() first"
            ).with_context(sql=self._sql)
        if self._state is StatementState.EXECUTING:
            raise UsageError(
                f"cannot {operation}: statement is mid-iteration"
            ).with_context(sql=self._sql)
        return connection

    def _begin(self, operation: str) -> sqlite3.Connection:
        native = self._require_ready(operation)._require_native()
        self._state = StatementState.EXECUTING
        return native

    def _path(self) -> str | None:
        connection = self._connection_ref()
        return connection.path if connection is not None else None

    def _null_policy(self) -> NullPolicy:
        return self._connection_ref().null_policy


__all__ = ["Statement", "StatementState"]
