"""SQLite connector."""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, List, Optional

from dbtransfer.dialects import parse_type_modifiers, split_type_name
from dbtransfer.models import Attribute

from .base_connector import BaseConnector, ExecutionContext

logger = logging.getLogger(__name__)

MEMORY_DATABASE = ":memory:"


class SQLiteConnector(BaseConnector):
    """Connector for SQLite database files.

    The ``sqlite3`` module is driven in its own auto-commit mode (``isolation_level=None``)
    and transactions are opened explicitly with BEGIN, so savepoints behave the same
    way as on server databases.
    """

    dialect_name = "sqlite"
    paramstyle = "qmark"

    def __init__(self, connection_config: Dict[str, Any]):
        """Initialize SQLite connector.

        Args:
            connection_config: Dictionary containing:
                - database: Path of the database file, or ``:memory:`` (required)
                - timeout: Lock wait timeout in seconds (optional, default: 30)
        """
        super().__init__(connection_config)
        # An in-memory database only exists on its one connection
        self.embedded = self.config["database"] == MEMORY_DATABASE

    def _validate_config(self) -> None:
        if not self.config.get("database"):
            raise ValueError("Missing required connection parameters: database")

    def connect(self):
        """Open the database file.

        Returns:
            sqlite3.Connection in auto-commit mode
        """
        database = self.config["database"]
        try:
            conn = sqlite3.connect(
                database,
                timeout=float(self.config.get("timeout", 30)),
                isolation_level=None,
                check_same_thread=False
            )
            logger.info(f"Connected to SQLite: {database}")
            return conn
        except Exception as e:
            logger.error(f"Failed to connect to SQLite {database}: {e}")
            raise

    def retryable_errors(self):
        return (sqlite3.OperationalError,)

    def apply_auto_commit(self, connection, value: bool) -> None:
        if value and connection.in_transaction:
            connection.commit()

    def begin_if_needed(self, context: ExecutionContext) -> None:
        if not context.auto_commit and not context.connection.in_transaction:
            context.connection.execute("BEGIN")

    def list_table_names(self, context: ExecutionContext, schema: Optional[str]) -> List[str]:
        master = f"{self.dialect.quote_identifier(schema)}.sqlite_master" if schema else "sqlite_master"
        cursor = context.execute(
            f"SELECT name FROM {master} WHERE type IN ('table', 'view') "
            "AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        try:
            return [row[0] for row in cursor.fetchall()]
        finally:
            cursor.close()

    def _has_autoincrement(self, context: ExecutionContext, schema: Optional[str], table: str) -> bool:
        master = f"{self.dialect.quote_identifier(schema)}.sqlite_master" if schema else "sqlite_master"
        cursor = context.execute(f"SELECT sql FROM {master} WHERE name = ?", (table,))
        try:
            row = cursor.fetchone()
        finally:
            cursor.close()
        return bool(row and row[0] and "autoincrement" in row[0].lower())

    def read_attributes(self, context: ExecutionContext, schema: Optional[str], table: str) -> List[Attribute]:
        """Columns of a table from ``PRAGMA table_xinfo``.

        Generated columns (hidden 2/3) and an AUTOINCREMENT rowid alias are reported as
        auto-generated; hidden virtual-table columns as hidden.
        """
        prefix = f"{self.dialect.quote_identifier(schema)}." if schema else ""
        cursor = context.execute(f"PRAGMA {prefix}table_xinfo({self.dialect.quote_identifier(table, force=True)})")
        try:
            rows = cursor.fetchall()
        finally:
            cursor.close()

        pk_columns = [row for row in rows if row[5]]
        autoincrement = len(pk_columns) == 1 and self._has_autoincrement(context, schema, table)

        attributes = []
        for index, (cid, name, type_name, notnull, default, pk, hidden) in enumerate(rows):
            max_length, precision, scale = parse_type_modifiers(type_name or "")
            generated = hidden in (2, 3)
            if autoincrement and pk and self.dialect.is_integer_type(type_name or ""):
                generated = True
            attributes.append(Attribute(
                name=name,
                type_name=split_type_name(type_name or "")[0],
                data_kind=self.dialect.data_kind(type_name or ""),
                ordinal=index + 1,
                max_length=max_length,
                precision=precision,
                scale=scale,
                required=bool(notnull),
                auto_generated=generated,
                hidden=hidden == 1,
                default_value=default
            ))
        return attributes

    def read_primary_keys(self, context: ExecutionContext, schema: Optional[str], table: str) -> List[str]:
        prefix = f"{self.dialect.quote_identifier(schema)}." if schema else ""
        cursor = context.execute(f"PRAGMA {prefix}table_info({self.dialect.quote_identifier(table, force=True)})")
        try:
            rows = [row for row in cursor.fetchall() if row[5]]
        finally:
            cursor.close()
        return [row[1] for row in sorted(rows, key=lambda r: r[5])]

    def test_connection(self) -> bool:
        """Test the SQLite connection.

        Returns:
            True if connection is successful, False otherwise
        """
        try:
            conn = self.connect()
            version = conn.execute("SELECT sqlite_version()").fetchone()
            conn.close()
            logger.info(f"SQLite connection test successful. Version: {version[0] if version else 'unknown'}")
            return True
        except Exception as e:
            logger.error(f"SQLite connection test failed: {e}")
            return False
