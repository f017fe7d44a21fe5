"""Base connector class for database connectors."""

from __future__ import annotations

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Type

from dbtransfer.connectors.tables import DbSchema, QueryContainer
from dbtransfer.ddl import SQLStructEditor
from dbtransfer.dialects import SQLDialect, get_dialect
from dbtransfer.models import Attribute
from dbtransfer.retry import call_with_retry

logger = logging.getLogger(__name__)

_savepoint_ids = itertools.count(1)


class ExecutionContext:
    """A database connection used by one side of a transfer.

    Wraps a DB-API connection with auto-commit control, savepoints and a scoped schema
    switch. Contexts are not thread-safe; each pipe owns its own isolated contexts.
    """

    def __init__(self, connector: "BaseConnector", connection, isolated: bool = False):
        self.connector = connector
        self.connection = connection
        self.isolated = isolated
        self._auto_commit = True
        self.closed = False

    @property
    def dialect(self) -> SQLDialect:
        return self.connector.dialect

    @property
    def auto_commit(self) -> bool:
        return self._auto_commit

    @auto_commit.setter
    def auto_commit(self, value: bool) -> None:
        if value == self._auto_commit:
            return
        self.connector.apply_auto_commit(self.connection, value)
        self._auto_commit = value
        logger.debug(f"Auto-commit {'enabled' if value else 'disabled'} on {self.connector.name}")

    def execute(self, sql, params: Optional[Sequence[Any]] = None):
        """Execute a statement and return its cursor (caller closes it)."""
        self.connector.begin_if_needed(self)
        cursor = self.connection.cursor()
        try:
            if params:
                cursor.execute(sql, params)
            else:
                cursor.execute(sql)
        except Exception:
            cursor.close()
            raise
        return cursor

    def executemany(self, sql: str, rows: List[Sequence[Any]]) -> None:
        self.connector.begin_if_needed(self)
        cursor = self.connection.cursor()
        try:
            self.connector.execute_batch(cursor, sql, rows)
        finally:
            cursor.close()

    def commit(self) -> None:
        self.connection.commit()

    def rollback(self) -> None:
        self.connection.rollback()

    def set_savepoint(self, prefix: str = "dbtransfer") -> Optional[str]:
        """Establish a savepoint; None when not in a transaction or unsupported."""
        if self.auto_commit:
            return None
        name = f"{prefix}_{next(_savepoint_ids)}"
        statement = self.dialect.savepoint_statement(name)
        if not statement:
            return None
        self.execute(statement).close()
        logger.debug(f"Savepoint {name} set")
        return name

    def rollback_to_savepoint(self, name: str) -> None:
        statement = self.dialect.rollback_to_savepoint_statement(name)
        if statement:
            self.execute(statement).close()
            logger.debug(f"Rolled back to savepoint {name}")

    def release_savepoint(self, name: str) -> None:
        statement = self.dialect.release_savepoint_statement(name)
        if statement:
            self.execute(statement).close()

    @contextmanager
    def use_schema(self, schema: Optional[str]) -> Iterator["ExecutionContext"]:
        """Temporarily make ``schema`` the current schema of this connection."""
        previous = self.connector.switch_schema(self, schema) if schema else None
        try:
            yield self
        finally:
            if previous is not None:
                try:
                    self.connector.switch_schema(self, previous)
                except Exception as e:
                    logger.error(f"Failed to restore schema {previous}: {e}")

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self.connection.close()
        except Exception as e:
            logger.error(f"Error closing connection to {self.connector.name}: {e}")

    def __repr__(self) -> str:
        kind = "isolated" if self.isolated else "default"
        return f"ExecutionContext({self.connector.name!r}, {kind})"


class BaseConnector(ABC):
    """Abstract base class for all database connectors.

    This class defines the common interface that all database connectors
    must implement. It ensures consistency across different database systems
    while allowing database-specific implementations.
    """

    dialect_name = "generic"
    # DB-API paramstyle of the driver: 'qmark' or 'format'
    paramstyle = "qmark"
    # Embedded databases never get a second connection
    embedded = False
    # Reads must run inside a transaction (large-object streaming)
    requires_read_transactions = False

    def __init__(self, connection_config: Dict[str, Any]):
        """Initialize connector with connection configuration.

        Args:
            connection_config: Dictionary containing database connection parameters.
                Credentials and connection details are provided dynamically.
        """
        self.config = connection_config.copy()
        self._validate_config()
        self.dialect: SQLDialect = get_dialect(self.dialect_name)
        self._default_context: Optional[ExecutionContext] = None
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return str(self.config.get("database") or self.dialect_name)

    @property
    def default_schema(self) -> Optional[str]:
        return self.config.get("schema")

    @abstractmethod
    def _validate_config(self) -> None:
        """Validate that required connection parameters are present.

        Raises:
            ValueError: If required parameters are missing.
        """
        pass

    @abstractmethod
    def connect(self):
        """Establish connection to the database.

        Returns:
            Database connection object (type depends on database driver), in
            auto-commit mode.
        """
        pass

    def retryable_errors(self) -> Tuple[Type[BaseException], ...]:
        """Driver errors on which opening a connection is retried."""
        return ()

    def open_connection(self):
        errors = self.retryable_errors()
        if not errors:
            return self.connect()
        return call_with_retry(
            self.connect,
            errors,
            max_attempts=int(self.config.get("connect_attempts", 3)),
            delay=float(self.config.get("connect_retry_delay", 1.0))
        )

    def default_context(self) -> ExecutionContext:
        """Shared metadata context (opened on first use)."""
        with self._lock:
            if self._default_context is None or self._default_context.closed:
                self._default_context = ExecutionContext(self, self.open_connection())
            return self._default_context

    def open_isolated_context(self) -> ExecutionContext:
        """Open a separate connection owned by the caller."""
        logger.debug(f"Opening isolated context for {self.name}")
        return ExecutionContext(self, self.open_connection(), isolated=True)

    def apply_auto_commit(self, connection, value: bool) -> None:
        connection.autocommit = value

    def begin_if_needed(self, context: ExecutionContext) -> None:
        """Start a transaction explicitly where the driver does not do it implicitly."""
        pass

    def execute_batch(self, cursor, statement: str, rows: List[Sequence[Any]]) -> None:
        cursor.executemany(statement, rows)

    @property
    def placeholder(self) -> str:
        return "?" if self.paramstyle == "qmark" else "%s"

    def values_clause(self, count: int) -> str:
        """Placeholder clause for an INSERT of ``count`` columns."""
        return "(" + ", ".join([self.placeholder] * count) + ")"

    def switch_schema(self, context: ExecutionContext, schema: str) -> Optional[str]:
        """Make ``schema`` current; returns the previous schema, or None if not supported."""
        return None

    @abstractmethod
    def list_table_names(self, context: ExecutionContext, schema: Optional[str]) -> List[str]:
        pass

    @abstractmethod
    def read_attributes(self, context: ExecutionContext, schema: Optional[str], table: str) -> List[Attribute]:
        pass

    def read_primary_keys(self, context: ExecutionContext, schema: Optional[str], table: str) -> List[str]:
        return []

    def describe_cursor(self, cursor) -> List[Attribute]:
        """Attributes of a result set, from the cursor description."""
        attributes = []
        for index, column in enumerate(cursor.description or []):
            attributes.append(Attribute(name=column[0], ordinal=index + 1))
        return attributes

    def struct_editor(self):
        return SQLStructEditor(self.dialect)

    def get_schema(self, schema: Optional[str] = None):
        """Target/source schema as an entity container."""
        return DbSchema(self, schema or self.default_schema)

    def get_table(self, table: str, schema: Optional[str] = None):
        return self.get_schema(schema).get_entity(table)

    def query(self, sql: str, name: str = "query", params: Optional[Sequence[Any]] = None):
        """An SQL query as a data container."""
        return QueryContainer(self, sql, name=name, params=params)

    def test_connection(self) -> bool:
        """Test the database connection.

        This is a default implementation that can be overridden by subclasses
        for database-specific connection testing.

        Returns:
            True if connection is successful, False otherwise
        """
        try:
            conn = self.connect()
            if conn:
                conn.close()
                return True
            return False
        except Exception as e:
            logger.error(f"Connection test failed: {e}")
            return False

    def close(self) -> None:
        with self._lock:
            if self._default_context is not None:
                self._default_context.close()
                self._default_context = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"
