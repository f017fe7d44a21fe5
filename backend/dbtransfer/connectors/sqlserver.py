"""SQL Server connector."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

try:
    import pyodbc

    SQLSERVER_AVAILABLE = True
except ImportError:
    SQLSERVER_AVAILABLE = False
    pyodbc = None  # type: ignore

from dbtransfer.dialects import split_type_name
from dbtransfer.models import Attribute

from .base_connector import BaseConnector, ExecutionContext

logger = logging.getLogger(__name__)

DRIVER_CANDIDATES = [
    "ODBC Driver 18 for SQL Server",
    "ODBC Driver 17 for SQL Server",
    "ODBC Driver 13 for SQL Server",
    "SQL Server Native Client 11.0",
    "SQL Server",
    "FreeTDS",
]


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


class SQLServerConnector(BaseConnector):
    """Connector for SQL Server sources and targets."""

    dialect_name = "sqlserver"
    paramstyle = "qmark"

    def __init__(self, connection_config: Dict[str, Any]):
        """Initialize SQL Server connector with connection configuration.

        Args:
            connection_config: Dictionary containing:
                - server: Server hostname or IP (required)
                - port: Port number (optional, default: 1433)
                - database: Database name (optional, default: master)
                - username or user: Username (required)
                - password: Password (required)
                - driver: ODBC driver name (optional, detected when missing)
                - trust_server_certificate: Trust server certificate (optional, default: False)
                - encrypt: Encrypt connection (optional, default: True)
                - schema: Schema name (optional, default: dbo)
        """
        if not SQLSERVER_AVAILABLE:
            raise ImportError(
                "pyodbc is not installed. "
                "Install it with: pip install pyodbc"
            )

        connection_config = dict(connection_config)
        # Normalize field names: accept both 'username' and 'user'
        if "username" in connection_config and "user" not in connection_config:
            connection_config["user"] = connection_config["username"]
        if "host" in connection_config and "server" not in connection_config:
            connection_config["server"] = connection_config["host"]

        super().__init__(connection_config)

    def _validate_config(self) -> None:
        """Validate that required connection parameters are present."""
        required = ["server", "user", "password"]
        missing = [key for key in required if not self.config.get(key)]
        if missing:
            raise ValueError(f"Missing required connection parameters: {', '.join(missing)}")

    @property
    def default_schema(self) -> Optional[str]:
        return self.config.get("schema") or "dbo"

    def _escape_odbc_password(self, password: str) -> str:
        """Quote a password for an ODBC connection string.

        The value is wrapped in braces so ``;`` and ``=`` are taken literally; a closing
        brace inside the value is doubled.
        """
        password_str = str(password) if password is not None else ""
        if not password_str:
            return ""
        return "{" + password_str.replace("}", "}}") + "}"

    def _detect_odbc_driver(self) -> Optional[str]:
        """Detect an installed ODBC driver for SQL Server.

        Returns:
            Driver name if found, None otherwise
        """
        available_drivers = pyodbc.drivers()
        logger.debug(f"Available ODBC drivers: {available_drivers}")
        for driver_name in DRIVER_CANDIDATES:
            if driver_name in available_drivers:
                logger.info(f"Detected ODBC driver: {driver_name}")
                return driver_name
        for driver_name in available_drivers:
            if "sql server" in driver_name.lower():
                logger.info(f"Detected ODBC driver (fallback): {driver_name}")
                return driver_name
        logger.warning(f"No SQL Server ODBC driver found. Available drivers: {available_drivers}")
        return None

    def _build_connection_string(self) -> str:
        """Build SQL Server connection string.

        Returns:
            Connection string for pyodbc
        """
        driver = self.config.get("driver") or self._detect_odbc_driver()
        if not driver:
            raise ValueError(
                "No ODBC driver found for SQL Server. "
                "Please install Microsoft ODBC Driver for SQL Server."
            )
        server = self.config["server"]
        port = self.config.get("port", 1433)
        database = self.config.get("database") or "master"
        trust_cert = _flag(self.config.get("trust_server_certificate", False))
        encrypt = _flag(self.config.get("encrypt", True))
        return (
            f"DRIVER={{{driver}}};"
            f"SERVER={server},{port};"
            f"DATABASE={database};"
            f"UID={self.config['user']};"
            f"PWD={self._escape_odbc_password(self.config['password'])};"
            f"TrustServerCertificate={'yes' if trust_cert else 'no'};"
            f"Encrypt={'yes' if encrypt else 'no'};"
        )

    def connect(self):
        """Establish connection to SQL Server.

        Returns:
            SQL Server connection object (pyodbc.Connection) in autocommit mode
        """
        try:
            conn = pyodbc.connect(
                self._build_connection_string(),
                timeout=int(self.config.get("timeout", 30)),
                autocommit=True
            )
            logger.info(f"Connected to SQL Server: {self.config['server']}/{self.config.get('database') or 'master'}")
            return conn
        except Exception as e:
            logger.error(f"Failed to connect to SQL Server: {e}")
            raise

    def retryable_errors(self):
        return (pyodbc.OperationalError, pyodbc.InterfaceError)

    def execute_batch(self, cursor, statement: str, rows: List[Sequence[Any]]) -> None:
        cursor.fast_executemany = True
        cursor.executemany(statement, rows)

    def list_table_names(self, context: ExecutionContext, schema: Optional[str]) -> List[str]:
        cursor = context.execute(
            """
                SELECT TABLE_NAME
                FROM INFORMATION_SCHEMA.TABLES
                WHERE TABLE_SCHEMA = ?
                    AND TABLE_TYPE IN ('BASE TABLE', 'VIEW')
                ORDER BY TABLE_NAME
            """,
            (schema or self.default_schema,)
        )
        try:
            return [row[0] for row in cursor.fetchall()]
        finally:
            cursor.close()

    def read_attributes(self, context: ExecutionContext, schema: Optional[str], table: str) -> List[Attribute]:
        schema = schema or self.default_schema
        cursor = context.execute(
            """
                SELECT
                    c.COLUMN_NAME,
                    c.DATA_TYPE,
                    c.CHARACTER_MAXIMUM_LENGTH,
                    c.NUMERIC_PRECISION,
                    c.NUMERIC_SCALE,
                    c.ORDINAL_POSITION,
                    c.IS_NULLABLE,
                    c.COLUMN_DEFAULT,
                    COLUMNPROPERTY(OBJECT_ID(QUOTENAME(c.TABLE_SCHEMA) + '.' + QUOTENAME(c.TABLE_NAME)),
                                   c.COLUMN_NAME, 'IsIdentity') AS IS_IDENTITY,
                    COLUMNPROPERTY(OBJECT_ID(QUOTENAME(c.TABLE_SCHEMA) + '.' + QUOTENAME(c.TABLE_NAME)),
                                   c.COLUMN_NAME, 'IsComputed') AS IS_COMPUTED
                FROM INFORMATION_SCHEMA.COLUMNS c
                WHERE c.TABLE_SCHEMA = ?
                    AND c.TABLE_NAME = ?
                ORDER BY c.ORDINAL_POSITION
            """,
            (schema, table)
        )
        try:
            rows = cursor.fetchall()
        finally:
            cursor.close()

        attributes = []
        for row in rows:
            name, data_type, max_length, precision, scale, ordinal, nullable, default, identity, computed = row
            base_type = split_type_name(data_type)[0]
            if max_length == -1:
                # (max) types
                max_length = None
            has_precision = base_type.lower() in ("decimal", "numeric")
            attributes.append(Attribute(
                name=name,
                type_name=base_type,
                data_kind=self.dialect.data_kind(base_type),
                ordinal=int(ordinal),
                max_length=max_length,
                precision=precision if has_precision else None,
                scale=scale if has_precision else None,
                required=nullable == "NO",
                auto_generated=bool(identity) or bool(computed) or base_type.lower() in ("timestamp", "rowversion"),
                default_value=str(default) if default else None
            ))
        return attributes

    def read_primary_keys(self, context: ExecutionContext, schema: Optional[str], table: str) -> List[str]:
        cursor = context.execute(
            """
                SELECT c.name
                FROM sys.indexes i
                INNER JOIN sys.index_columns ic ON i.object_id = ic.object_id AND i.index_id = ic.index_id
                INNER JOIN sys.columns c ON ic.object_id = c.object_id AND ic.column_id = c.column_id
                INNER JOIN sys.tables t ON i.object_id = t.object_id
                INNER JOIN sys.schemas s ON t.schema_id = s.schema_id
                WHERE i.is_primary_key = 1
                    AND s.name = ?
                    AND t.name = ?
                ORDER BY ic.key_ordinal
            """,
            (schema or self.default_schema, table)
        )
        try:
            return [row[0] for row in cursor.fetchall()]
        finally:
            cursor.close()

    def test_connection(self) -> bool:
        """Test the SQL Server connection.

        Returns:
            True if connection is successful, False otherwise
        """
        try:
            conn = self.connect()
            cursor = conn.cursor()
            cursor.execute("SELECT @@VERSION")
            version = cursor.fetchone()
            cursor.close()
            conn.close()
            logger.info(f"SQL Server connection test successful. Version: {version[0][:50] if version else 'unknown'}...")
            return True
        except Exception as e:
            logger.error(f"SQL Server connection test failed: {e}")
            return False
