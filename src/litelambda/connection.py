"""Connection handle - one open engine session.

This is the entry point of litelambda::

    import litelambda

    with litelambda.open("runs.db") as db:
        db.execute("create table if not exists test (name Integer, data Real);")
        with db.transaction():
            insert = db.prepare("insert into test (name, data) values (?, ?);")
            for i in range(100):
                insert.bind(i, i ** 0.5).exec()
        db.prepare("select * from test where data < 8.0;").for_each(
            lambda name, data: print(name, data)
        )

Paths
-----
==================  =============================================
Argument            Opens
==================  =============================================
``":memory:"``      Private in-memory database
``"file:..."``      SQLite URI, passed through unchanged
any other path      File; created unless ``create_if_missing=False``
==================  =============================================

The engine runs in autocommit mode: transaction boundaries are exactly the
``begin``/``commit``/``rollback`` statements the caller executes, or
``Connection.transaction()``.
"""

from __future__ import annotations

import os
import re
import sqlite3
import weakref
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from litelambda.codec import NullPolicy
from litelambda.errors import ConnectionError, LiteError, StatementError, UsageError
from litelambda.logging import get_logger
from litelambda.settings import LiteSettings, get_settings
from litelambda.statement import Statement
from litelambda.translate import ENGINE_EXCEPTIONS, engine_call

logger = get_logger(__name__)

MEMORY = ":memory:"

# sqlite3 reports a statement's slot count when given the wrong number of values.
_BINDING_COUNT = re.compile(r"uses (\d+), and there (?:are|is) \d+ supplied")


def _database_uri(path: str, *, create_if_missing: bool, readonly: bool) -> tuple[str, bool]:
    if path == MEMORY:
        return MEMORY, False
    if path.startswith("file:"):
        return path, True
    if readonly:
        mode = "ro"
    elif create_if_missing:
        mode = "rwc"
    else:
        mode = "rw"
    resolved = Path(path).expanduser().resolve()
    return f"{resolved.as_uri()}?mode={mode}", True


def _parameter_count(native: sqlite3.Connection, sql: str) -> int:
    """
    Compile ``sql`` without running it and return its parameter slot count.

    ``EXPLAIN`` compiles the inner statement (so syntax errors and unknown
    tables surface here) and has the same slots; supplying no values makes
    the engine refuse to step it when slots exist.
    """
    try:
        cursor = native.execute(f"EXPLAIN {sql}", ())
    except sqlite3.ProgrammingError as exc:
        match = _BINDING_COUNT.search(str(exc))
        if match is None:
            raise
        return int(match.group(1))
    cursor.close()
    return 0


class Connection:
    """
    An open database session.

    Owns the native ``sqlite3.Connection`` exclusively. Statements it
    prepares are finalized when it closes. Not safe for concurrent use from
    several threads.
    """

    def __init__(
        self,
        native: sqlite3.Connection,
        path: str,
        *,
        null_policy: NullPolicy = NullPolicy.RAISE,
    ):
        self._native: sqlite3.Connection | None = native
        self._path = path
        self._null_policy = null_policy
        self._statements: weakref.WeakSet[Statement] = weakref.WeakSet()

    @classmethod
    def open(
        cls,
        path: str | os.PathLike[str],
        create_if_missing: bool = True,
        *,
        readonly: bool = False,
        timeout: float | None = None,
        null_policy: NullPolicy | str | None = None,
        settings: LiteSettings | None = None,
    ) -> Connection:
        """
        Open (and by default create) the database at ``path``.

        Raises:
            ConnectionError: The engine cannot open or create the file, or
                the file is not a database.
        """
        settings = settings or get_settings()
        target = os.fspath(path)
        database, uri = _database_uri(
            target, create_if_missing=create_if_missing, readonly=readonly
        )
        policy = NullPolicy(null_policy) if null_policy is not None else settings.null_policy

        with engine_call("open", default=ConnectionError, classify=False, path=target):
            native = sqlite3.connect(
                database,
                timeout=settings.timeout if timeout is None else timeout,
                isolation_level=None,
                cached_statements=settings.cached_statements,
                uri=uri,
            )

        try:
            with engine_call("open", default=ConnectionError, classify=False, path=target):
                # Reads the header so a non-database file fails here.
                native.execute("PRAGMA schema_version").fetchone()
                if settings.foreign_keys:
                    native.execute("PRAGMA foreign_keys = ON")
        except LiteError:
            _close_quietly(native, target)
            raise

        logger.debug("connection_opened", path=target, readonly=readonly)
        return cls(native, target, null_policy=policy)

    # -- properties --------------------------------------------------------

    @property
    def path(self) -> str:
        return self._path

    @property
    def closed(self) -> bool:
        return self._native is None

    @property
    def null_policy(self) -> NullPolicy:
        return self._null_policy

    @property
    def in_transaction(self) -> bool:
        return self._require_native().in_transaction

    @property
    def total_changes(self) -> int:
        """Rows changed since the connection was opened."""
        return self._require_native().total_changes

    @property
    def last_insert_rowid(self) -> int:
        native = self._require_native()
        with engine_call("last_insert_rowid", path=self._path):
            return native.execute("select last_insert_rowid()").fetchone()[0]

    # -- operations --------------------------------------------------------

    def execute(self, sql: str) -> None:
        """
        Run one statement with no parameters, discarding any rows.

        Intended for DDL and transaction control (``begin;``, ``end;``).

        Raises:
            StatementError: Malformed SQL or the engine rejected it
                (``ConstraintError`` for constraint violations).
        """
        native = self._require_native()
        with engine_call("execute", default=StatementError, sql=sql, path=self._path):
            cursor = native.execute(sql)
            try:
                for _ in cursor:
                    pass
            finally:
                cursor.close()

    def prepare(self, sql: str) -> Statement:
        """
        Compile ``sql`` (with ``?`` placeholders) into a reusable Statement.

        Raises:
            StatementError: Syntax error or unknown table/column.
        """
        native = self._require_native()
        with engine_call("prepare", default=StatementError, sql=sql, path=self._path):
            count = _parameter_count(native, sql)
        statement = Statement(self, sql, count)
        self._statements.add(statement)
        logger.debug("statement_prepared", sql=sql, parameter_count=count)
        return statement

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """
        ``begin`` on entry, ``commit`` on success, ``rollback`` on exception.

        A failed commit is rolled back as well. A failed rollback is logged;
        the original exception propagates.
        """
        self.execute("begin")
        try:
            yield self
            self.execute("commit")
        except BaseException:
            self._rollback_quietly()
            raise

    # -- lifecycle ---------------------------------------------------------

    def close(self) -> None:
        """
        Finalize every open statement and close the session.

        Never raises engine errors: failures are logged. Uncommitted work
        is rolled back by the engine and reported with a warning.
        """
        native = self._native
        if native is None:
            return
        for statement in list(self._statements):
            statement.close()
        try:
            if native.in_transaction:
                logger.warning("uncommitted_work_discarded", path=self._path)
        finally:
            self._native = None
            _close_quietly(native, self._path)
        logger.debug("connection_closed", path=self._path)

    def __enter__(self) -> Connection:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"Connection({self._path!r}, {state})"

    # -- internals ---------------------------------------------------------

    def _require_native(self) -> sqlite3.Connection:
        if self._native is None:
            raise UsageError("connection is closed").with_context(path=self._path)
        return self._native

    def _forget(self, statement: Statement) -> None:
        self._statements.discard(statement)

    def _rollback_quietly(self) -> None:
        if self.closed or not self.in_transaction:
            return
        try:
            self.execute("rollback")
        except LiteError as rollback_error:
            logger.warning(
                "transaction_rollback_failed",
                path=self._path,
                error=str(rollback_error),
            )


def _close_quietly(native: sqlite3.Connection, path: str) -> None:
    try:
        native.close()
    except ENGINE_EXCEPTIONS as exc:
        logger.warning("connection_close_failed", path=path, error=str(exc))


def open(
    path: str | os.PathLike[str],
    create_if_missing: bool = True,
    **options: Any,
) -> Connection:
    """Open a database. See :meth:`Connection.open`."""
    return Connection.open(path, create_if_missing, **options)


__all__ = ["Connection", "MEMORY", "open"]
