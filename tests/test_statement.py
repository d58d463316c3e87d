"""Tests for litelambda.statement - binding, execution and the state machine."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Optional
from unittest.mock import patch

import pytest

import litelambda
from litelambda import StatementState
from litelambda.errors import (
    BindError,
    ConstraintError,
    EngineError,
    NullConversionError,
    TypeMismatchError,
    UsageError,
)


def _count(db: litelambda.Connection, table: str = "test") -> int:
    return db.prepare(f"select count(*) from {table};").map(lambda n: n)[0]


class TestPrepare:
    def test_parameter_count(self, test_table):
        assert test_table.prepare("insert into test values (?, ?);").parameter_count == 2
        assert test_table.prepare("select * from test;").parameter_count == 0
        assert test_table.prepare("select * from test where name = ?3;").parameter_count == 3

    def test_initial_state(self, test_table):
        stmt = test_table.prepare("select * from test;")
        assert stmt.state is StatementState.UNBOUND
        assert stmt.sql == "select * from test;"
        assert not stmt.closed

    def test_prepare_has_no_side_effects(self, test_table):
        test_table.prepare("delete from test;")
        assert _count(test_table) == 10


class TestBind:
    def test_variadic_bind_returns_self(self, test_table):
        stmt = test_table.prepare("insert into test values (?, ?);")
        assert stmt.bind(1, 2.0) is stmt
        assert stmt.bindings == (1, 2.0)
        assert stmt.state is StatementState.BOUND

    def test_bind_at(self, test_table):
        stmt = test_table.prepare("insert into test values (?, ?);")
        stmt.bind_at(2, 5.5).bind_at(1, 7)
        assert stmt.bindings == (7, 5.5)

    @pytest.mark.parametrize("position", [0, 3, -1])
    def test_out_of_range_position(self, test_table, position):
        stmt = test_table.prepare("insert into test values (?, ?);").bind(1, 1.0)
        with pytest.raises(BindError) as exc_info:
            stmt.bind_at(position, 9)
        assert exc_info.value.position == position
        assert exc_info.value.parameter_count == 2
        assert exc_info.value.context.sql == stmt.sql
        assert stmt.bindings == (1, 1.0)
        assert stmt.state is StatementState.ERROR

    def test_too_many_values_keeps_prior_positions(self, test_table):
        stmt = test_table.prepare("insert into test values (?, ?);")
        with pytest.raises(BindError) as exc_info:
            stmt.bind(1, 2.0, 3)
        assert exc_info.value.position == 3
        assert stmt.bindings == (1, 2.0)

    def test_unsupported_value(self, test_table):
        stmt = test_table.prepare("insert into test values (?, ?);")
        with pytest.raises(TypeMismatchError) as exc_info:
            stmt.bind(1, [1, 2])
        assert exc_info.value.context.position == 2
        assert stmt.state is StatementState.ERROR

    def test_error_state_requires_reset(self, test_table):
        stmt = test_table.prepare("insert into test values (?, ?);")
        with pytest.raises(BindError):
            stmt.bind_at(5, 1)
        with pytest.raises(UsageError):
            stmt.bind(1, 1.0)
        with pytest.raises(UsageError):
            stmt.exec()
        stmt.reset().bind(100, 1.0).exec()
        assert _count(test_table) == 11

    def test_clear_bindings(self, test_table):
        stmt = test_table.prepare("insert into test values (?, ?);").bind(1, 1.0)
        stmt.clear_bindings()
        assert stmt.state is StatementState.UNBOUND
        assert stmt.bindings == (None, None)


class TestExec:
    def test_bind_exec_repeat(self, db):
        db.execute("create table test (name Integer, data Real);")
        stmt = db.prepare("insert into test (name, data) values (?, ?);")
        stmt.bind(0, 0.0).exec()
        stmt.bind(1, 1.0).exec()
        assert db.prepare("select * from test;").map(lambda n, d: (n, d)) == [(0, 0.0), (1, 1.0)]

    def test_bindings_persist_after_exec(self, db):
        db.execute("create table t (x);")
        stmt = db.prepare("insert into t values (?);").bind("same")
        stmt.exec()
        assert stmt.state is StatementState.BOUND
        stmt.exec()
        assert db.prepare("select x from t;").map(lambda x: x) == ["same", "same"]

    def test_exec_is_repeatable(self, test_table):
        stmt = test_table.prepare("select * from test where name = ?;").bind(3)
        stmt.exec()
        stmt.exec()
        assert stmt.state is StatementState.BOUND

    def test_unbound_slots_are_null(self, db):
        db.execute("create table t (a, b);")
        db.prepare("insert into t values (?, ?);").bind_at(1, 5).exec()
        assert db.prepare("select a, b from t;").map(lambda a, b: (a, b)) == [(5, None)]

    def test_rowcount(self, test_table):
        stmt = test_table.prepare("delete from test where name < ?;").bind(3)
        stmt.exec()
        assert stmt.rowcount == 3

    def test_constraint_violation(self, db):
        db.execute("create table u (id integer primary key, name text not null unique);")
        stmt = db.prepare("insert into u (name) values (?);").bind("a")
        stmt.exec()
        with pytest.raises(ConstraintError) as exc_info:
            stmt.exec()
        assert exc_info.value.primary_code == 19
        assert stmt.state is StatementState.ERROR
        stmt.reset().bind("b").exec()

    def test_null_into_not_null(self, db):
        db.execute("create table n (x integer not null);")
        with pytest.raises(ConstraintError):
            db.prepare("insert into n values (?);").bind(None).exec()

    def test_engine_failure_mid_exec_is_translated(self, test_table):
        stmt = test_table.prepare("select * from test;")
        boom = sqlite3.OperationalError("disk I/O error")
        boom.sqlite_errorcode = 10
        boom.sqlite_errorname = "SQLITE_IOERR"
        native = test_table._native
        with patch.object(test_table, "_native", wraps=native) as wrapped:
            wrapped.execute.side_effect = boom
            with pytest.raises(EngineError) as exc_info:
                stmt.exec()
        assert exc_info.value.code == 10
        assert stmt.state is StatementState.ERROR


class TestForEach:
    def test_typed_handler(self, test_table):
        seen = []

        def handler(name: int, data: float) -> None:
            seen.append((name, data))

        test_table.prepare("select * from test where data < 8.0;").for_each(handler)
        assert seen == [(i, i * 1.5) for i in range(6)]

    def test_forEach_alias(self, test_table):
        seen = []
        test_table.prepare("select name from test where name < 2;").forEach(seen.append)
        assert seen == [0, 1]

    def test_zero_rows(self, test_table):
        calls = []
        stmt = test_table.prepare("select * from test where data < 0;")
        stmt.for_each(lambda name, data: calls.append(name))
        assert calls == []
        assert stmt.state is StatementState.UNBOUND

    def test_widen_integer_to_float(self, test_table):
        values = test_table.prepare("select name from test where name = 4;").map(
            _as_float
        )
        assert values == [4.0]
        assert isinstance(values[0], float)

    def test_truncate_real_to_int(self, test_table):
        values = test_table.prepare("select data from test where name = 3;").map(_as_int)
        assert values == [4]

    def test_text_to_int_mismatch(self, db):
        db.execute("create table t (name Integer);")
        db.prepare("insert into t values (?);").bind("not a number").exec()
        stmt = db.prepare("select name from t;")
        with pytest.raises(TypeMismatchError) as exc_info:
            stmt.for_each(_as_int)
        assert exc_info.value.source == "TEXT"
        assert exc_info.value.target == "int"
        assert stmt.state is StatementState.ERROR

    def test_null_column(self, db):
        db.execute("create table t (x integer);")
        db.prepare("insert into t values (?);").bind(None).exec()

        def optional(x: Optional[int]) -> Optional[int]:
            return x

        assert db.prepare("select x from t;").map(optional) == [None]
        with pytest.raises(NullConversionError):
            db.prepare("select x from t;").for_each(_as_int)

    def test_rows_before_failure_stay_delivered(self, db):
        db.execute("create table t (x);")
        insert = db.prepare("insert into t values (?);")
        for value in (1, 2, "three", 4):
            insert.bind(value).exec()
        seen = []

        def handler(x: int) -> None:
            seen.append(x)

        with pytest.raises(TypeMismatchError):
            db.prepare("select x from t order by rowid;").for_each(handler)
        assert seen == [1, 2]

    def test_handler_exception_auto_resets(self, test_table):
        stmt = test_table.prepare("select name from test;")

        def handler(name: int) -> None:
            if name == 2:
                raise RuntimeError("stop")

        with pytest.raises(RuntimeError, match="stop"):
            stmt.for_each(handler)
        assert stmt.state is StatementState.UNBOUND
        assert len(stmt.map(lambda name: name)) == 10

    def test_reentrant_use_is_rejected(self, test_table):
        stmt = test_table.prepare("select name from test;")

        with pytest.raises(UsageError, match="mid-iteration"):
            stmt.for_each(lambda name: stmt.exec())
        assert stmt.state is StatementState.UNBOUND

    def test_nested_statements(self, test_table):
        lookup = test_table.prepare("select data from test where name = ?;")
        pairs = []

        def handler(name: int) -> None:
            pairs.append((name, lookup.bind(name).map(_as_float)[0]))

        test_table.prepare("select name from test where name < 3;").for_each(handler)
        assert pairs == [(0, 0.0), (1, 1.5), (2, 3.0)]

    def test_bound_parameters_filter(self, test_table):
        stmt = test_table.prepare("select name from test where data < ?;")
        assert stmt.bind(3.0).map(_as_int) == [0, 1]
        assert stmt.bind(5.0).map(_as_int) == [0, 1, 2, 3]

    def test_short_row_leaves_error_state(self, test_table):
        stmt = test_table.prepare("select name from test;")
        with pytest.raises(UsageError):
            stmt.for_each(lambda a, b: None)
        assert stmt.state is StatementState.ERROR

    def test_dataclass_rows(self, test_table):
        rows = test_table.prepare("select name, data from test where name < 2;").map(Sample)
        assert rows == [Sample(0, 0.0), Sample(1, 1.5)]


class TestLifecycle:
    def test_close_is_idempotent(self, test_table):
        stmt = test_table.prepare("select * from test;")
        stmt.close()
        stmt.close()
        assert stmt.closed
        with pytest.raises(UsageError, match="finalized"):
            stmt.exec()

    def test_context_manager(self, test_table):
        with test_table.prepare("select * from test;") as stmt:
            stmt.exec()
        assert stmt.state is StatementState.CLOSED

    def test_close_during_iteration(self, test_table):
        stmt = test_table.prepare("select name from test;")
        with pytest.raises(UsageError, match="finalized"):
            stmt.for_each(lambda name: stmt.close())
        assert stmt.closed

    def test_connection_close_finalizes(self, test_table):
        stmt = test_table.prepare("select * from test;")
        test_table.close()
        assert stmt.closed
        with pytest.raises(UsageError):
            stmt.bind(1)

    def test_reset_on_closed(self, test_table):
        stmt = test_table.prepare("select * from test;")
        stmt.close()
        with pytest.raises(UsageError):
            stmt.reset()


def _as_float(value: float) -> float:
    return value


def _as_int(value: int) -> int:
    return value


@dataclass
class Sample:
    name: int
    data: float
