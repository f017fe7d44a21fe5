"""PostgreSQL connector."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

try:
    import psycopg2
    from psycopg2 import sql
    from psycopg2.extras import RealDictCursor, execute_values

    POSTGRESQL_AVAILABLE = True
except ImportError:
    POSTGRESQL_AVAILABLE = False
    psycopg2 = None  # type: ignore
    sql = None  # type: ignore
    RealDictCursor = None  # type: ignore
    execute_values = None  # type: ignore

from dbtransfer.dialects import split_type_name
from dbtransfer.models import Attribute

from .base_connector import BaseConnector, ExecutionContext

logger = logging.getLogger(__name__)


class PostgreSQLConnector(BaseConnector):
    """Connector for PostgreSQL sources and targets."""

    dialect_name = "postgresql"
    paramstyle = "format"

    def __init__(self, connection_config: Dict[str, Any]):
        """Initialize PostgreSQL connector with connection configuration.

        Args:
            connection_config: Dictionary containing:
                - host: Server hostname or IP (required)
                - port: Port number (optional, default: 5432)
                - database: Database name (required)
                - user or username: Username (required)
                - password: Password (required)
                - schema: Schema name (optional, default: public)
        """
        if not POSTGRESQL_AVAILABLE:
            raise ImportError(
                "psycopg2 is not installed. "
                "Install it with: pip install psycopg2-binary"
            )

        connection_config = dict(connection_config)
        # Normalize field names: accept both 'username' and 'user'
        if "username" in connection_config and "user" not in connection_config:
            connection_config["user"] = connection_config["username"]

        super().__init__(connection_config)

    def _validate_config(self) -> None:
        """Validate that required connection parameters are present."""
        required = ["host", "database", "user", "password"]
        missing = [key for key in required if not self.config.get(key)]
        if missing:
            raise ValueError(f"Missing required connection parameters: {', '.join(missing)}")

    @property
    def default_schema(self) -> Optional[str]:
        return self.config.get("schema") or "public"

    def connect(self):
        """Establish connection to PostgreSQL.

        Returns:
            PostgreSQL connection object (psycopg2.Connection) in autocommit mode
        """
        host = self.config["host"]
        port = self.config.get("port", 5432)
        database = self.config["database"]
        try:
            conn = psycopg2.connect(
                host=host,
                port=port,
                database=database,
                user=self.config["user"],
                password=self.config["password"],
                connect_timeout=int(self.config.get("connect_timeout", 30)),
                sslmode=self.config.get("sslmode", "prefer")
            )
            conn.autocommit = True
            logger.info(f"Connected to PostgreSQL: {host}:{port}/{database}")
            return conn
        except Exception as e:
            logger.error(f"Failed to connect to PostgreSQL: {e}")
            raise

    def retryable_errors(self):
        return (psycopg2.OperationalError,)

    def values_clause(self, count: int) -> str:
        # execute_values expands a single placeholder into the row list
        return "%s"

    def execute_batch(self, cursor, statement: str, rows: List[Sequence[Any]]) -> None:
        execute_values(cursor, statement, rows, page_size=max(len(rows), 1))

    def switch_schema(self, context: ExecutionContext, schema: str) -> Optional[str]:
        cursor = context.execute("SHOW search_path")
        try:
            previous = cursor.fetchone()[0]
        finally:
            cursor.close()
        if previous == schema:
            return None
        if "," in schema or '"' in schema:
            # Restoring a saved search_path
            statement = sql.SQL("SET search_path TO " + schema)
        else:
            statement = sql.SQL("SET search_path TO {}").format(sql.Identifier(schema))
        context.execute(statement).close()
        logger.debug(f"search_path set to {schema} (was {previous})")
        return previous

    def list_table_names(self, context: ExecutionContext, schema: Optional[str]) -> List[str]:
        cursor = context.execute(
            """
                SELECT table_name
                FROM information_schema.tables
                WHERE table_schema = %s
                    AND table_type IN ('BASE TABLE', 'VIEW')
                ORDER BY table_name
            """,
            (schema or self.default_schema,)
        )
        try:
            return [row[0] for row in cursor.fetchall()]
        finally:
            cursor.close()

    def read_attributes(self, context: ExecutionContext, schema: Optional[str], table: str) -> List[Attribute]:
        query = """
            SELECT
                column_name,
                data_type,
                character_maximum_length,
                numeric_precision,
                numeric_scale,
                ordinal_position,
                is_nullable,
                column_default,
                is_identity,
                is_generated,
                udt_name
            FROM information_schema.columns
            WHERE table_schema = %s
                AND table_name = %s
            ORDER BY ordinal_position
        """
        cursor = context.connection.cursor(cursor_factory=RealDictCursor)
        try:
            cursor.execute(query, (schema or self.default_schema, table))
            rows = cursor.fetchall()
        finally:
            cursor.close()

        attributes = []
        for row in rows:
            data_type = row["data_type"]
            if data_type in ("USER-DEFINED", "ARRAY"):
                data_type = row["udt_name"]
            default = row["column_default"]
            generated = (
                row["is_identity"] == "YES"
                or (row["is_generated"] or "NEVER") != "NEVER"
                or bool(default and str(default).startswith("nextval("))
            )
            precision = row["numeric_precision"] if data_type in ("numeric", "decimal") else None
            attributes.append(Attribute(
                name=row["column_name"],
                type_name=split_type_name(data_type)[0],
                data_kind=self.dialect.data_kind(data_type),
                ordinal=int(row["ordinal_position"]),
                max_length=row["character_maximum_length"],
                precision=precision,
                scale=row["numeric_scale"] if precision else None,
                required=row["is_nullable"] == "NO",
                auto_generated=generated,
                default_value=str(default) if default else None
            ))
        return attributes

    def read_primary_keys(self, context: ExecutionContext, schema: Optional[str], table: str) -> List[str]:
        query = """
            SELECT a.attname
            FROM pg_index i
            JOIN pg_attribute a ON a.attrelid = i.indrelid AND a.attnum = ANY(i.indkey)
            JOIN pg_class c ON c.oid = i.indrelid
            JOIN pg_namespace n ON n.oid = c.relnamespace
            WHERE i.indisprimary = true
                AND n.nspname = %s
                AND c.relname = %s
            ORDER BY a.attnum
        """
        cursor = context.execute(query, (schema or self.default_schema, table))
        try:
            return [row[0] for row in cursor.fetchall()]
        finally:
            cursor.close()

    def test_connection(self) -> bool:
        """Test the PostgreSQL connection.

        Returns:
            True if connection is successful, False otherwise
        """
        try:
            conn = self.connect()
            cursor = conn.cursor()
            cursor.execute("SELECT version()")
            version = cursor.fetchone()
            cursor.close()
            conn.close()
            logger.info(f"PostgreSQL connection test successful. Version: {version[0][:50] if version else 'unknown'}...")
            return True
        except Exception as e:
            logger.error(f"PostgreSQL connection test failed: {e}")
            return False
