"""Shared fixtures: SQLite source and target databases in a temporary directory."""

import sqlite3

import pytest

from dbtransfer.config import TransferSettings
from dbtransfer.connectors import SQLiteConnector


def run_script(path, script, rows=None, insert=None):
    """Execute DDL on a database file and optionally insert rows."""
    conn = sqlite3.connect(path)
    try:
        conn.executescript(script)
        if rows:
            conn.executemany(insert, rows)
        conn.commit()
    finally:
        conn.close()


def fetch_all(path, sql, params=()):
    conn = sqlite3.connect(path)
    try:
        return conn.execute(sql, params).fetchall()
    finally:
        conn.close()


def table_names(path):
    return [r[0] for r in fetch_all(path, "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name")]


def item_rows(count, null_at=None):
    """Rows (id, name, price); ``name`` is NULL at the 1-based row ``null_at``."""
    return [
        (i, None if i == null_at else f"item {i}", round(i * 1.5, 2))
        for i in range(1, count + 1)
    ]


@pytest.fixture
def source_path(tmp_path):
    return str(tmp_path / "source.db")


@pytest.fixture
def target_path(tmp_path):
    return str(tmp_path / "target.db")


@pytest.fixture
def make_items(source_path):
    """Create ``items(id PK, name, price)`` in the source database with N rows."""
    def _make(count, table="items", null_at=None):
        run_script(
            source_path,
            f"CREATE TABLE {table} (id INTEGER PRIMARY KEY, name TEXT, price REAL);",
            item_rows(count, null_at),
            f"INSERT INTO {table} (id, name, price) VALUES (?, ?, ?)"
        )
    return _make


@pytest.fixture
def source(source_path):
    connector = SQLiteConnector({"database": source_path})
    yield connector
    connector.close()


@pytest.fixture
def target(target_path):
    # The file must exist before the first metadata read
    run_script(target_path, "")
    connector = SQLiteConnector({"database": target_path})
    yield connector
    connector.close()


@pytest.fixture
def settings():
    return TransferSettings(commit_after_rows=100, fetch_size=50)
