"""
Shared pytest fixtures and configuration for litelambda tests.

This module provides:
- In-memory and file-backed database fixtures
- The ``test (name Integer, data Real)`` table most tests query
- Settings cache isolation

Usage:
    def test_something(db):
        db.execute("create table t (x)")
"""

import sys
from pathlib import Path
from typing import Generator

import pytest

# Ensure litelambda package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import litelambda
from litelambda.settings import get_settings


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: fast isolated tests")
    config.addinivalue_line("markers", "integration: end-to-end scenarios against a file database")


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        if "scenarios" in Path(item.fspath).name:
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration"}):
            item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True)
def clean_settings_cache() -> Generator[None, None, None]:
    """Settings are cached per process; clear around each test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def db() -> Generator[litelambda.Connection, None, None]:
    """Fresh in-memory database, closed after the test."""
    connection = litelambda.open(litelambda.MEMORY)
    yield connection
    connection.close()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "dbfile.db"


@pytest.fixture
def file_db(db_path: Path) -> Generator[litelambda.Connection, None, None]:
    connection = litelambda.open(db_path)
    yield connection
    connection.close()


@pytest.fixture
def test_table(db: litelambda.Connection) -> litelambda.Connection:
    """``db`` with ``test (name Integer, data Real)`` holding rows 0..9."""
    db.execute("create table if not exists test (name Integer, data Real);")
    insert = db.prepare("insert into test (name, data) values (?, ?);")
    for i in range(10):
        insert.bind(i, float(i) * 1.5).exec()
    insert.close()
    return db
