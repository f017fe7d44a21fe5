"""Database connectors package."""

from typing import Union

from dbtransfer.models import Connection

from .base_connector import BaseConnector, ExecutionContext
from .csv_source import CsvContainer, CsvFileConnector
from .postgresql import PostgreSQLConnector
from .sqlite import SQLiteConnector
from .sqlserver import SQLServerConnector
from .tables import DbSchema, DbTable, QueryContainer

CONNECTOR_TYPES = {
    "sqlite": SQLiteConnector,
    "postgresql": PostgreSQLConnector,
    "sqlserver": SQLServerConnector,
    "csv": CsvFileConnector,
}


def create_connector(connection: Union[Connection, str]):
    """Create the connector for a connection model or URL.

    Raises:
        ValueError: If the database type is not supported
    """
    if isinstance(connection, str):
        connection = Connection.from_url(connection)
    connector_class = CONNECTOR_TYPES.get(connection.database_type)
    if connector_class is None:
        raise ValueError(f"Unsupported database type: {connection.database_type}")
    return connector_class(connection.get_connection_config())


__all__ = [
    "BaseConnector",
    "ExecutionContext",
    "SQLiteConnector",
    "PostgreSQLConnector",
    "SQLServerConnector",
    "CsvFileConnector",
    "CsvContainer",
    "DbSchema",
    "DbTable",
    "QueryContainer",
    "CONNECTOR_TYPES",
    "create_connector",
]
