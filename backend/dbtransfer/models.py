"""Core data models for the transfer engine."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qsl, unquote, urlparse


class MappingType(str, Enum):
    """How a source object maps onto the target."""
    UNSPECIFIED = "unspecified"
    EXISTING = "existing"
    CREATE = "create"
    RECREATE = "recreate"
    SKIP = "skip"

    @property
    def is_valid(self) -> bool:
        return self in (MappingType.EXISTING, MappingType.CREATE, MappingType.RECREATE)


class DataKind(str, Enum):
    """Abstract data kind of an attribute, independent of any dialect."""
    NUMERIC = "numeric"
    STRING = "string"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    BINARY = "binary"
    UNKNOWN = "unknown"


class ExtractType(str, Enum):
    """Producer read strategy."""
    SINGLE_QUERY = "single-query"
    SEGMENTED = "segmented"


class NameCase(str, Enum):
    """Naming policy applied to newly created target names."""
    DEFAULT = "default"
    UPPER = "upper"
    LOWER = "lower"
    CAMEL = "camel"
    UNDERSCORE = "underscore"


class RunStatus(str, Enum):
    """Transfer run status enumeration."""
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    SKIPPED = "SKIPPED"


_LENGTH_TYPES = ("char", "binary", "varbinary", "raw", "graphic")
_PRECISION_TYPES = ("numeric", "decimal", "number", "dec")


def format_type_name(
    type_name: str,
    max_length: Optional[int] = None,
    precision: Optional[int] = None,
    scale: Optional[int] = None
) -> str:
    """Append length or precision modifiers to a bare type name.

    Type names that already carry modifiers (``VARCHAR(50)``) are returned unchanged.
    """
    if not type_name or "(" in type_name:
        return type_name
    base = type_name.lower()
    if base in _PRECISION_TYPES:
        if precision:
            if scale:
                return f"{type_name}({precision},{scale})"
            return f"{type_name}({precision})"
        return type_name
    if any(marker in base for marker in _LENGTH_TYPES) and "text" not in base:
        if max_length and max_length > 0:
            return f"{type_name}({max_length})"
    return type_name


class Attribute:
    """A typed attribute (column) of a data container or manipulator."""

    def __init__(
        self,
        name: str,
        type_name: Optional[str] = None,
        data_kind: DataKind = DataKind.UNKNOWN,
        ordinal: int = 0,
        label: Optional[str] = None,
        max_length: Optional[int] = None,
        precision: Optional[int] = None,
        scale: Optional[int] = None,
        required: bool = False,
        auto_generated: bool = False,
        pseudo: bool = False,
        hidden: bool = False,
        default_value: Optional[str] = None
    ):
        self.name = name
        self.type_name = type_name or ""
        self.data_kind = data_kind
        self.ordinal = ordinal
        self.label = label
        self.max_length = max_length
        self.precision = precision
        self.scale = scale
        self.required = required
        self.auto_generated = auto_generated
        self.pseudo = pseudo
        self.hidden = hidden
        self.default_value = default_value

    @property
    def label_or_name(self) -> str:
        """User-visible label when present, otherwise the raw identifier."""
        return self.label or self.name

    @property
    def full_type_name(self) -> str:
        return format_type_name(self.type_name, self.max_length, self.precision, self.scale)

    @property
    def is_visible(self) -> bool:
        """Whether the attribute takes part in positional matching."""
        return not (self.pseudo or self.hidden or self.auto_generated)

    def to_dict(self) -> Dict[str, Any]:
        """Convert attribute to dictionary."""
        return {
            "name": self.name,
            "label": self.label,
            "type_name": self.full_type_name,
            "data_kind": self.data_kind.value,
            "ordinal": self.ordinal,
            "required": self.required,
            "auto_generated": self.auto_generated,
        }

    def __repr__(self) -> str:
        return f"Attribute({self.name!r}, {self.full_type_name!r})"


class DataFilter:
    """Row/column restriction applied to a source read."""

    def __init__(
        self,
        columns: Optional[List[str]] = None,
        where: Optional[str] = None,
        parameters: Optional[List[Any]] = None,
        order_by: Optional[List[str]] = None
    ):
        self.columns = list(columns) if columns else None
        self.where = where
        self.parameters = list(parameters or [])
        self.order_by = list(order_by) if order_by else None

    @property
    def is_empty(self) -> bool:
        return not self.columns and not self.where and not self.order_by


class TransferStatistics:
    """Counters accumulated by producers and consumers."""

    def __init__(self):
        self.rows_fetched = 0
        self.rows_exported = 0
        self.rows_inserted = 0
        self.rows_committed = 0
        self.rows_ignored = 0
        self.batches = 0
        self.commits = 0
        self.retries = 0
        self.segments = 0
        self.fetch_time = 0.0
        self.execute_time = 0.0
        self.start_time = time.time()
        self.end_time: Optional[float] = None

    def accumulate(self, other: "TransferStatistics") -> "TransferStatistics":
        """Add another statistics object into this one (segmented reads)."""
        self.rows_fetched += other.rows_fetched
        self.rows_exported += other.rows_exported
        self.rows_inserted += other.rows_inserted
        self.rows_committed += other.rows_committed
        self.rows_ignored += other.rows_ignored
        self.batches += other.batches
        self.commits += other.commits
        self.retries += other.retries
        self.segments += other.segments
        self.fetch_time += other.fetch_time
        self.execute_time += other.execute_time
        return self

    def finish(self) -> None:
        self.end_time = time.time()

    @property
    def total_time(self) -> float:
        end = self.end_time or time.time()
        return end - self.start_time

    def to_dict(self) -> Dict[str, Any]:
        """Convert statistics to dictionary."""
        return {
            "rows_fetched": self.rows_fetched,
            "rows_exported": self.rows_exported,
            "rows_inserted": self.rows_inserted,
            "rows_committed": self.rows_committed,
            "rows_ignored": self.rows_ignored,
            "batches": self.batches,
            "commits": self.commits,
            "retries": self.retries,
            "segments": self.segments,
            "fetch_time": round(self.fetch_time, 3),
            "execute_time": round(self.execute_time, 3),
            "total_time": round(self.total_time, 3),
        }


class Connection:
    """Database connection model.

    A simple data class describing where a source or target lives. Connectors are
    created from it through ``dbtransfer.connectors.create_connector``.
    """

    def __init__(
        self,
        database_type: str,
        database: str,
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        schema: Optional[str] = None,
        name: Optional[str] = None,
        additional_config: Optional[Dict[str, Any]] = None
    ):
        self.database_type = database_type
        self.database = database
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.schema = schema
        self.name = name or database
        self.additional_config = additional_config or {}

    @classmethod
    def from_url(cls, url: str) -> "Connection":
        """Parse a connection URL.

        Supported forms::

            sqlite:///relative/path.db, sqlite:////abs/path.db, sqlite:///:memory:
            postgresql://user:pw@host:5432/db?schema=public
            mssql://user:pw@host:1433/db?schema=dbo&driver=ODBC+Driver+18+for+SQL+Server
            csv:///path/to/file.csv?header=false&delimiter=;

        Args:
            url: Connection URL

        Returns:
            Connection instance
        """
        parsed = urlparse(url)
        scheme = parsed.scheme.lower()
        if not scheme:
            raise ValueError(f"Connection URL has no scheme: {url}")
        options = dict(parse_qsl(parsed.query))
        schema = options.pop("schema", None)

        if scheme in ("sqlite", "csv"):
            path = parsed.path[1:] if parsed.path.startswith("/") else parsed.path
            if parsed.netloc:
                path = parsed.netloc + "/" + path
            return cls(
                database_type=scheme,
                database=unquote(path),
                schema=schema,
                additional_config=options
            )

        if scheme in ("postgres", "postgresql"):
            database_type = "postgresql"
        elif scheme in ("mssql", "sqlserver"):
            database_type = "sqlserver"
        else:
            database_type = scheme

        return cls(
            database_type=database_type,
            database=unquote(parsed.path.lstrip("/")),
            host=parsed.hostname,
            port=parsed.port,
            username=unquote(parsed.username) if parsed.username else None,
            password=unquote(parsed.password) if parsed.password else None,
            schema=schema,
            additional_config=options
        )

    def get_connection_config(self) -> Dict[str, Any]:
        """Get connection configuration for connector initialization."""
        if self.database_type in ("sqlite", "csv"):
            config = {"database": self.database}
            if self.schema:
                config["schema"] = self.schema
            config.update(self.additional_config)
            return config

        # PostgreSQL uses 'host', SQL Server uses 'server'
        host_key = "host" if self.database_type == "postgresql" else "server"
        config = {
            host_key: self.host,
            "database": self.database,
            "user": self.username,
            "password": self.password,
        }
        if self.port:
            config["port"] = self.port
        if self.schema:
            config["schema"] = self.schema

        if self.database_type == "sqlserver":
            if "trust_server_certificate" not in self.additional_config:
                config["trust_server_certificate"] = True
            if "encrypt" not in self.additional_config:
                config["encrypt"] = True

        config.update(self.additional_config)
        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert connection to dictionary."""
        return {
            "name": self.name,
            "database_type": self.database_type,
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "username": self.username,
            "password": "***" if self.password else None,
            "schema": self.schema,
            "additional_config": self.additional_config,
        }
