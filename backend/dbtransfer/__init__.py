"""Database transfer package."""

from dbtransfer.config import TransferSettings
from dbtransfer.connectors import (
    BaseConnector,
    CsvFileConnector,
    PostgreSQLConnector,
    SQLiteConnector,
    SQLServerConnector,
    create_connector,
)
from dbtransfer.consumer import DatabaseTransferConsumer, PreviewTransferConsumer
from dbtransfer.coordinator import TransferCoordinator, TransferPipe
from dbtransfer.ddl import DDLAction, DdlSynthesizer
from dbtransfer.exceptions import (
    BatchInsertError,
    CommitError,
    ConfigurationError,
    DDLError,
    MappingError,
    RowTransformError,
    TransferCancelledError,
    TransferError,
    TransferException,
)
from dbtransfer.mapping import AttributeMapping, ContainerMapping, MappingResolver
from dbtransfer.models import (
    Attribute,
    Connection,
    DataFilter,
    DataKind,
    ExtractType,
    MappingType,
    NameCase,
    RunStatus,
    TransferStatistics,
)
from dbtransfer.monitor import ProgressMonitor
from dbtransfer.producer import DatabaseTransferProducer

__all__ = [
    "TransferSettings",
    "BaseConnector",
    "CsvFileConnector",
    "PostgreSQLConnector",
    "SQLiteConnector",
    "SQLServerConnector",
    "create_connector",
    "DatabaseTransferConsumer",
    "PreviewTransferConsumer",
    "TransferCoordinator",
    "TransferPipe",
    "DDLAction",
    "DdlSynthesizer",
    "BatchInsertError",
    "CommitError",
    "ConfigurationError",
    "DDLError",
    "MappingError",
    "RowTransformError",
    "TransferCancelledError",
    "TransferError",
    "TransferException",
    "AttributeMapping",
    "ContainerMapping",
    "MappingResolver",
    "Attribute",
    "Connection",
    "DataFilter",
    "DataKind",
    "ExtractType",
    "MappingType",
    "NameCase",
    "RunStatus",
    "TransferStatistics",
    "ProgressMonitor",
    "DatabaseTransferProducer",
]
