"""SQL dialect capabilities: identifier rules, native type mapping and statement shapes.

Each target database is described by one ``SQLDialect`` subclass. The mapping core only
talks to this interface; dialects are looked up through the static ``DIALECTS`` table.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Sequence, Tuple, Type

from dbtransfer.exceptions import ConfigurationError
from dbtransfer.models import Attribute, DataKind, format_type_name

logger = logging.getLogger(__name__)

_SIMPLE_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*$")

INSERT_METHODS = ("insert", "ignore", "replace")

ANSI_RESERVED_WORDS = frozenset("""
    all alter and any as asc between by case check column constraint create cross current
    date default delete desc distinct drop else end exists false for foreign from full grant
    group having in index inner insert intersect into is join key left like limit not null
    offset on or order outer primary references right select set table then time timestamp
    to true union unique update user using values when where with
""".split())


def split_type_name(type_name: str) -> Tuple[str, Optional[str]]:
    """Split ``"numeric(10,2)"`` into ``("numeric", "10,2")``.

    Modifiers in the middle of a type are dropped from the base name:
    ``"timestamp(6) with time zone"`` gives ``("timestamp with time zone", "6")``.
    """
    if not type_name:
        return "", None
    text = type_name.strip()
    start = text.find("(")
    if start < 0:
        return " ".join(text.split()), None
    end = text.find(")", start)
    if end < 0:
        return " ".join(text[:start].split()), None
    base = f"{text[:start]} {text[end + 1:]}"
    return " ".join(base.split()), text[start + 1:end].strip()


def parse_type_modifiers(type_name: str) -> Tuple[Optional[int], Optional[int], Optional[int]]:
    """Extract (max_length, precision, scale) from a full type name.

    A single modifier is reported as length for character/binary types and as precision
    for everything else.
    """
    base, modifiers = split_type_name(type_name)
    if not modifiers:
        return None, None, None
    parts = [p.strip() for p in modifiers.split(",")]
    try:
        values = [int(p) for p in parts if p]
    except ValueError:
        return None, None, None
    if not values:
        return None, None, None
    lowered = base.lower()
    if len(values) == 1 and ("char" in lowered or "binary" in lowered or lowered in ("raw", "bit varying")):
        return values[0], None, None
    if len(values) == 1:
        return None, values[0], None
    return None, values[0], values[1]


class SQLDialect:
    """ANSI SQL dialect; the base for every concrete dialect."""

    name = "generic"
    quote_open = '"'
    quote_close = '"'
    catalog_separator = "."
    # How unquoted identifiers are stored: 'upper', 'lower' or 'mixed' (case preserved)
    storage_case = "upper"
    supports_nullability = True
    supports_savepoints = True
    supports_release_savepoint = True
    supports_decimal_binding = True
    binds_datetime_as_text = False
    alter_add_column = "ADD"
    reserved_words = ANSI_RESERVED_WORDS

    integer_type = "INTEGER"
    bigint_type = "BIGINT"
    real_type = "DOUBLE PRECISION"
    decimal_type = "NUMERIC"
    boolean_type = "BOOLEAN"
    string_type = "VARCHAR"
    text_type = "VARCHAR"
    default_string_length = 255
    datetime_type = "TIMESTAMP"
    date_type = "DATE"
    binary_type = "BLOB"
    length_required_types = ("varchar", "character varying", "nvarchar", "varchar2", "nvarchar2")

    # Type names this dialect accepts as-is, with their data kind
    native_types: Dict[str, DataKind] = {
        "integer": DataKind.NUMERIC,
        "int": DataKind.NUMERIC,
        "smallint": DataKind.NUMERIC,
        "bigint": DataKind.NUMERIC,
        "numeric": DataKind.NUMERIC,
        "decimal": DataKind.NUMERIC,
        "real": DataKind.NUMERIC,
        "float": DataKind.NUMERIC,
        "double precision": DataKind.NUMERIC,
        "boolean": DataKind.BOOLEAN,
        "char": DataKind.STRING,
        "character": DataKind.STRING,
        "varchar": DataKind.STRING,
        "character varying": DataKind.STRING,
        "date": DataKind.DATETIME,
        "time": DataKind.DATETIME,
        "timestamp": DataKind.DATETIME,
        "blob": DataKind.BINARY,
    }
    # Foreign type names mapped to the nearest native type (may embed modifiers)
    type_aliases: Dict[str, str] = {}

    _integer_names = ("int", "integer", "smallint", "bigint", "tinyint", "mediumint", "serial",
                      "bigserial", "smallserial", "int2", "int4", "int8", "long", "short", "byte")

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"

    # ------------------------------------------------------------------
    # Identifiers
    # ------------------------------------------------------------------

    def is_quoted(self, name: str) -> bool:
        return (
            len(name) >= 2
            and name.startswith(self.quote_open)
            and name.endswith(self.quote_close)
        )

    def unquote(self, name: str) -> str:
        if self.is_quoted(name):
            inner = name[len(self.quote_open):-len(self.quote_close)]
            return inner.replace(self.quote_close * 2, self.quote_close)
        return name

    def needs_quoting(self, name: str) -> bool:
        if not _SIMPLE_IDENTIFIER.match(name):
            return True
        if name.lower() in self.reserved_words:
            return True
        if self.storage_case == "upper" and name != name.upper():
            return True
        if self.storage_case == "lower" and name != name.lower():
            return True
        return False

    def quote_identifier(self, name: str, force: bool = False) -> str:
        """Quote an identifier when the dialect requires it."""
        if self.is_quoted(name):
            return name
        if not force and not self.needs_quoting(name):
            return name
        escaped = name.replace(self.quote_close, self.quote_close * 2)
        return f"{self.quote_open}{escaped}{self.quote_close}"

    def qualified_name(self, *parts: Optional[str]) -> str:
        """Build a quoted, separator-joined name from non-empty parts."""
        return self.catalog_separator.join(self.quote_identifier(p) for p in parts if p)

    def transform_name(self, name: str) -> str:
        """Convert a new object name to the dialect's identifier storage case.

        Quoted and mixed-case names are kept verbatim (they will be quoted on use).
        """
        if self.is_quoted(name):
            return self.unquote(name)
        if self.storage_case == "mixed":
            return name
        has_upper = any(c.isupper() for c in name)
        has_lower = any(c.islower() for c in name)
        if has_upper and has_lower:
            return name
        if not _SIMPLE_IDENTIFIER.match(name):
            return name
        return name.upper() if self.storage_case == "upper" else name.lower()

    def names_equal(self, left: str, right: str) -> bool:
        """Whether two unquoted names denote the same object in this dialect."""
        if self.storage_case == "mixed":
            return left.lower() == right.lower()
        return self.transform_name(left) == self.transform_name(right)

    # ------------------------------------------------------------------
    # Types
    # ------------------------------------------------------------------

    def data_kind(self, type_name: str) -> DataKind:
        """Classify a (possibly foreign) type name."""
        base = split_type_name(type_name)[0].lower()
        if not base:
            return DataKind.UNKNOWN
        if base in self.native_types:
            return self.native_types[base]
        if base in ("bit", "bool", "boolean"):
            return DataKind.BOOLEAN
        if any(m in base for m in ("date", "time", "interval")):
            return DataKind.DATETIME
        if any(m in base for m in ("char", "text", "clob", "string", "uuid", "uniqueidentifier", "xml", "json", "graphic", "enum")):
            return DataKind.STRING
        if any(m in base for m in ("blob", "binary", "bytea", "raw", "image")):
            return DataKind.BINARY
        if "int" in base or "serial" in base:
            return DataKind.NUMERIC
        if any(m in base for m in ("num", "dec", "real", "float", "double", "money")):
            return DataKind.NUMERIC
        return DataKind.UNKNOWN

    def is_integer_type(self, type_name: str) -> bool:
        base = split_type_name(type_name)[0].lower()
        # "int unsigned", "bigint identity"
        return bool(base) and base.split()[0] in self._integer_names

    def map_type(self, attribute: Attribute) -> str:
        """Compute the nearest native type for a source attribute.

        Returns a bare type name, or a type string with embedded modifiers when the alias
        table says so (e.g. ``NUMERIC(19,4)`` for a money column).
        """
        base = split_type_name(attribute.type_name)[0].lower()
        if base in self.native_types:
            return base.upper()
        if base in self.type_aliases:
            return self.type_aliases[base]

        kind = attribute.data_kind
        if kind == DataKind.UNKNOWN:
            kind = self.data_kind(attribute.type_name)

        if kind == DataKind.NUMERIC:
            if self.is_integer_type(base) or (not base and not attribute.scale and attribute.precision is None):
                if "big" in base or "int8" == base or "long" == base:
                    return self.bigint_type
                return self.integer_type
            if attribute.scale:
                return self.decimal_type
            if attribute.precision and not attribute.scale and base in ("numeric", "decimal", "number"):
                return self.decimal_type
            return self.real_type
        if kind == DataKind.BOOLEAN:
            return self.boolean_type
        if kind == DataKind.STRING:
            if not attribute.max_length and any(m in base for m in ("text", "clob", "json", "xml")):
                return self.text_type
            return self.string_type
        if kind == DataKind.DATETIME:
            if base == "date":
                return self.date_type
            return self.datetime_type
        if kind == DataKind.BINARY:
            return self.binary_type
        return self.string_type

    def type_with_modifiers(
        self,
        type_name: str,
        max_length: Optional[int] = None,
        precision: Optional[int] = None,
        scale: Optional[int] = None
    ) -> str:
        """Render a type with its length/precision, unless it already embeds modifiers."""
        if "(" in type_name:
            return type_name
        base = type_name.lower()
        if base in self.length_required_types and not max_length:
            max_length = self.default_string_length
        return format_type_name(type_name, max_length, precision, scale)

    def target_type(self, attribute: Attribute) -> str:
        """Full native type (with modifiers) for a column created from ``attribute``."""
        return self.type_with_modifiers(
            self.map_type(attribute),
            attribute.max_length,
            attribute.precision,
            attribute.scale
        )

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def paginate(self, sql: str, offset: int, limit: int, has_order_by: bool) -> str:
        """Restrict a SELECT to a row window. ``limit`` <= 0 means unbounded."""
        if limit and limit > 0:
            sql = f"{sql} LIMIT {int(limit)}"
            if offset and offset > 0:
                sql = f"{sql} OFFSET {int(offset)}"
        elif offset and offset > 0:
            sql = f"{sql} OFFSET {int(offset)}"
        return sql

    def truncate_statement(self, table: str) -> str:
        return f"TRUNCATE TABLE {table}"

    def savepoint_statement(self, name: str) -> Optional[str]:
        return f"SAVEPOINT {name}" if self.supports_savepoints else None

    def rollback_to_savepoint_statement(self, name: str) -> Optional[str]:
        return f"ROLLBACK TO SAVEPOINT {name}" if self.supports_savepoints else None

    def release_savepoint_statement(self, name: str) -> Optional[str]:
        if self.supports_savepoints and self.supports_release_savepoint:
            return f"RELEASE SAVEPOINT {name}"
        return None

    def supported_insert_methods(self) -> Sequence[str]:
        return ("insert",)

    def insert_statement(
        self,
        table: str,
        columns: List[str],
        values_clause: str,
        method: str = "insert",
        key_columns: Optional[List[str]] = None
    ) -> str:
        """Build the INSERT statement for the configured duplicate-key method.

        Args:
            table: Quoted, qualified table name
            columns: Quoted column names
            values_clause: Placeholder clause, e.g. ``(?, ?)`` or ``%s``
            method: One of ``insert``, ``ignore``, ``replace``
            key_columns: Quoted key columns (required by some upsert forms)
        """
        method = method or "insert"
        if method not in self.supported_insert_methods():
            raise ConfigurationError(
                f"Insert method '{method}' is not supported by {self.name} dialect",
                option="on_duplicate_key_insert_method"
            )
        column_list = ", ".join(columns)
        return f"INSERT INTO {table} ({column_list}) VALUES {values_clause}"


class SQLiteDialect(SQLDialect):
    """SQLite: case-preserving identifiers, type affinity, no TRUNCATE."""

    name = "sqlite"
    storage_case = "mixed"
    supports_decimal_binding = False
    binds_datetime_as_text = True
    alter_add_column = "ADD COLUMN"

    integer_type = "INTEGER"
    bigint_type = "INTEGER"
    real_type = "REAL"
    decimal_type = "NUMERIC"
    boolean_type = "BOOLEAN"
    string_type = "TEXT"
    text_type = "TEXT"
    datetime_type = "TIMESTAMP"
    date_type = "DATE"
    binary_type = "BLOB"
    length_required_types = ()

    native_types = {
        "integer": DataKind.NUMERIC,
        "int": DataKind.NUMERIC,
        "bigint": DataKind.NUMERIC,
        "smallint": DataKind.NUMERIC,
        "real": DataKind.NUMERIC,
        "numeric": DataKind.NUMERIC,
        "decimal": DataKind.NUMERIC,
        "double": DataKind.NUMERIC,
        "float": DataKind.NUMERIC,
        "boolean": DataKind.BOOLEAN,
        "text": DataKind.STRING,
        "varchar": DataKind.STRING,
        "char": DataKind.STRING,
        "nvarchar": DataKind.STRING,
        "clob": DataKind.STRING,
        "date": DataKind.DATETIME,
        "datetime": DataKind.DATETIME,
        "timestamp": DataKind.DATETIME,
        "blob": DataKind.BINARY,
    }
    type_aliases = {
        "character varying": "VARCHAR",
        "character": "CHAR",
        "double precision": "REAL",
        "bit": "BOOLEAN",
        "bytea": "BLOB",
        "uuid": "TEXT",
        "uniqueidentifier": "TEXT",
        "money": "NUMERIC",
        "number": "NUMERIC",
        "varchar2": "VARCHAR",
        "nvarchar2": "NVARCHAR",
        "datetime2": "TIMESTAMP",
        "timestamp without time zone": "TIMESTAMP",
        "timestamp with time zone": "TIMESTAMP",
    }

    def truncate_statement(self, table: str) -> str:
        return f"DELETE FROM {table}"

    def supported_insert_methods(self) -> Sequence[str]:
        return INSERT_METHODS

    def insert_statement(self, table, columns, values_clause, method="insert", key_columns=None):
        statement = super().insert_statement(table, columns, values_clause, method, key_columns)
        if method == "ignore":
            return statement.replace("INSERT INTO", "INSERT OR IGNORE INTO", 1)
        if method == "replace":
            return statement.replace("INSERT INTO", "INSERT OR REPLACE INTO", 1)
        return statement


class PostgreSQLDialect(SQLDialect):
    """PostgreSQL: lower-case identifier storage, ON CONFLICT upserts."""

    name = "postgresql"
    storage_case = "lower"
    alter_add_column = "ADD COLUMN"

    integer_type = "INTEGER"
    bigint_type = "BIGINT"
    real_type = "DOUBLE PRECISION"
    decimal_type = "NUMERIC"
    boolean_type = "BOOLEAN"
    string_type = "VARCHAR"
    text_type = "TEXT"
    datetime_type = "TIMESTAMP"
    binary_type = "BYTEA"
    length_required_types = ()

    native_types = {
        "integer": DataKind.NUMERIC,
        "int": DataKind.NUMERIC,
        "int4": DataKind.NUMERIC,
        "int8": DataKind.NUMERIC,
        "smallint": DataKind.NUMERIC,
        "bigint": DataKind.NUMERIC,
        "serial": DataKind.NUMERIC,
        "bigserial": DataKind.NUMERIC,
        "numeric": DataKind.NUMERIC,
        "decimal": DataKind.NUMERIC,
        "real": DataKind.NUMERIC,
        "double precision": DataKind.NUMERIC,
        "boolean": DataKind.BOOLEAN,
        "char": DataKind.STRING,
        "character": DataKind.STRING,
        "varchar": DataKind.STRING,
        "character varying": DataKind.STRING,
        "text": DataKind.STRING,
        "uuid": DataKind.STRING,
        "xml": DataKind.STRING,
        "json": DataKind.STRING,
        "jsonb": DataKind.STRING,
        "date": DataKind.DATETIME,
        "time": DataKind.DATETIME,
        "timestamp": DataKind.DATETIME,
        "timestamp without time zone": DataKind.DATETIME,
        "timestamp with time zone": DataKind.DATETIME,
        "timestamptz": DataKind.DATETIME,
        "interval": DataKind.DATETIME,
        "bytea": DataKind.BINARY,
    }
    # SQL Server, DB2 (IBM i), Oracle and SQLite names
    type_aliases = {
        "int": "INTEGER",
        "tinyint": "SMALLINT",
        "bit": "BOOLEAN",
        "float": "DOUBLE PRECISION",
        "double": "DOUBLE PRECISION",
        "money": "NUMERIC(19,4)",
        "smallmoney": "NUMERIC(10,4)",
        "nchar": "CHAR",
        "nvarchar": "VARCHAR",
        "ntext": "TEXT",
        "datetime": "TIMESTAMP",
        "datetime2": "TIMESTAMP",
        "smalldatetime": "TIMESTAMP",
        "datetimeoffset": "TIMESTAMP WITH TIME ZONE",
        "binary": "BYTEA",
        "varbinary": "BYTEA",
        "image": "BYTEA",
        "blob": "BYTEA",
        "uniqueidentifier": "UUID",
        "graphic": "CHAR",
        "vargraphic": "VARCHAR",
        "clob": "TEXT",
        "dbclob": "TEXT",
        "varchar2": "VARCHAR",
        "nvarchar2": "VARCHAR",
        "number": "NUMERIC",
        "binary_double": "DOUBLE PRECISION",
        "binary_float": "REAL",
        "raw": "BYTEA",
    }

    def supported_insert_methods(self) -> Sequence[str]:
        return INSERT_METHODS

    def insert_statement(self, table, columns, values_clause, method="insert", key_columns=None):
        statement = super().insert_statement(table, columns, values_clause, method, key_columns)
        if method == "ignore":
            return f"{statement} ON CONFLICT DO NOTHING"
        if method == "replace":
            if not key_columns:
                raise ConfigurationError(
                    f"Insert method 'replace' requires key columns for table {table}",
                    option="on_duplicate_key_insert_method"
                )
            updates = [c for c in columns if c not in key_columns]
            if not updates:
                return f"{statement} ON CONFLICT ({', '.join(key_columns)}) DO NOTHING"
            assignments = ", ".join(f"{c} = EXCLUDED.{c}" for c in updates)
            return f"{statement} ON CONFLICT ({', '.join(key_columns)}) DO UPDATE SET {assignments}"
        return statement


class SQLServerDialect(SQLDialect):
    """Microsoft SQL Server: bracket quoting, OFFSET/FETCH paging, SAVE TRANSACTION."""

    name = "sqlserver"
    quote_open = "["
    quote_close = "]"
    storage_case = "mixed"
    supports_release_savepoint = False
    alter_add_column = "ADD"

    integer_type = "INT"
    bigint_type = "BIGINT"
    real_type = "FLOAT"
    decimal_type = "DECIMAL"
    boolean_type = "BIT"
    string_type = "NVARCHAR"
    text_type = "NVARCHAR(MAX)"
    datetime_type = "DATETIME2"
    date_type = "DATE"
    binary_type = "VARBINARY(MAX)"
    length_required_types = ("varchar", "nvarchar", "char", "nchar", "varbinary", "binary")

    native_types = {
        "int": DataKind.NUMERIC,
        "bigint": DataKind.NUMERIC,
        "smallint": DataKind.NUMERIC,
        "tinyint": DataKind.NUMERIC,
        "decimal": DataKind.NUMERIC,
        "numeric": DataKind.NUMERIC,
        "float": DataKind.NUMERIC,
        "real": DataKind.NUMERIC,
        "money": DataKind.NUMERIC,
        "smallmoney": DataKind.NUMERIC,
        "bit": DataKind.BOOLEAN,
        "char": DataKind.STRING,
        "varchar": DataKind.STRING,
        "nchar": DataKind.STRING,
        "nvarchar": DataKind.STRING,
        "text": DataKind.STRING,
        "ntext": DataKind.STRING,
        "uniqueidentifier": DataKind.STRING,
        "xml": DataKind.STRING,
        "date": DataKind.DATETIME,
        "time": DataKind.DATETIME,
        "datetime": DataKind.DATETIME,
        "datetime2": DataKind.DATETIME,
        "smalldatetime": DataKind.DATETIME,
        "datetimeoffset": DataKind.DATETIME,
        "binary": DataKind.BINARY,
        "varbinary": DataKind.BINARY,
        "image": DataKind.BINARY,
    }
    # PostgreSQL, DB2 (IBM i), Oracle and SQLite names
    type_aliases = {
        "integer": "INT",
        "int4": "INT",
        "int8": "BIGINT",
        "serial": "INT",
        "bigserial": "BIGINT",
        "boolean": "BIT",
        "double precision": "FLOAT",
        "double": "FLOAT",
        "character": "CHAR",
        "character varying": "VARCHAR",
        "timestamp": "DATETIME2",
        "timestamp without time zone": "DATETIME2",
        "timestamp with time zone": "DATETIMEOFFSET",
        "timestamptz": "DATETIMEOFFSET",
        "timezone": "DATETIMEOFFSET",
        "bytea": "VARBINARY(MAX)",
        "blob": "VARBINARY(MAX)",
        "uuid": "UNIQUEIDENTIFIER",
        "graphic": "NCHAR",
        "vargraphic": "NVARCHAR",
        "clob": "NVARCHAR(MAX)",
        "dbclob": "NVARCHAR(MAX)",
        "json": "NVARCHAR(MAX)",
        "jsonb": "NVARCHAR(MAX)",
        "varchar2": "VARCHAR",
        "nvarchar2": "NVARCHAR",
        "number": "DECIMAL",
    }

    def paginate(self, sql: str, offset: int, limit: int, has_order_by: bool) -> str:
        if not (limit and limit > 0) and not (offset and offset > 0):
            return sql
        if not has_order_by:
            sql = f"{sql} ORDER BY (SELECT NULL)"
        sql = f"{sql} OFFSET {int(offset or 0)} ROWS"
        if limit and limit > 0:
            sql = f"{sql} FETCH NEXT {int(limit)} ROWS ONLY"
        return sql

    def savepoint_statement(self, name: str) -> Optional[str]:
        return f"SAVE TRANSACTION {name}"

    def rollback_to_savepoint_statement(self, name: str) -> Optional[str]:
        return f"ROLLBACK TRANSACTION {name}"


class OracleDialect(SQLDialect):
    """Oracle: upper-case identifier storage, NUMBER/VARCHAR2 type families."""

    name = "oracle"
    storage_case = "upper"
    supports_release_savepoint = False
    alter_add_column = "ADD"

    integer_type = "NUMBER(10)"
    bigint_type = "NUMBER(19)"
    real_type = "BINARY_DOUBLE"
    decimal_type = "NUMBER"
    boolean_type = "NUMBER(1)"
    string_type = "VARCHAR2"
    text_type = "CLOB"
    default_string_length = 4000
    datetime_type = "TIMESTAMP"
    date_type = "DATE"
    binary_type = "BLOB"
    length_required_types = ("varchar2", "nvarchar2", "varchar", "raw")

    native_types = {
        "number": DataKind.NUMERIC,
        "float": DataKind.NUMERIC,
        "binary_float": DataKind.NUMERIC,
        "binary_double": DataKind.NUMERIC,
        "char": DataKind.STRING,
        "nchar": DataKind.STRING,
        "varchar2": DataKind.STRING,
        "nvarchar2": DataKind.STRING,
        "clob": DataKind.STRING,
        "nclob": DataKind.STRING,
        "date": DataKind.DATETIME,
        "timestamp": DataKind.DATETIME,
        "timestamp with time zone": DataKind.DATETIME,
        "blob": DataKind.BINARY,
        "raw": DataKind.BINARY,
    }
    # PostgreSQL, SQL Server and SQLite names
    type_aliases = {
        "integer": "NUMBER(10)",
        "int": "NUMBER(10)",
        "bigint": "NUMBER(19)",
        "smallint": "NUMBER(5)",
        "tinyint": "NUMBER(3)",
        "boolean": "NUMBER(1)",
        "bit": "NUMBER(1)",
        "numeric": "NUMBER",
        "decimal": "NUMBER",
        "double precision": "BINARY_DOUBLE",
        "double": "BINARY_DOUBLE",
        "real": "BINARY_FLOAT",
        "character": "CHAR",
        "varchar": "VARCHAR2",
        "character varying": "VARCHAR2",
        "nvarchar": "NVARCHAR2",
        "text": "CLOB",
        "ntext": "NCLOB",
        "time": "TIMESTAMP",
        "datetime": "TIMESTAMP",
        "datetime2": "TIMESTAMP",
        "timestamp without time zone": "TIMESTAMP",
        "datetimeoffset": "TIMESTAMP WITH TIME ZONE",
        "bytea": "BLOB",
        "varbinary": "BLOB",
        "uuid": "VARCHAR2(36)",
        "uniqueidentifier": "VARCHAR2(36)",
        "xml": "XMLTYPE",
    }

    def paginate(self, sql: str, offset: int, limit: int, has_order_by: bool) -> str:
        if not (limit and limit > 0) and not (offset and offset > 0):
            return sql
        sql = f"{sql} OFFSET {int(offset or 0)} ROWS"
        if limit and limit > 0:
            sql = f"{sql} FETCH NEXT {int(limit)} ROWS ONLY"
        return sql

    def rollback_to_savepoint_statement(self, name: str) -> Optional[str]:
        return f"ROLLBACK TO SAVEPOINT {name}"


DIALECTS: Dict[str, Type[SQLDialect]] = {
    "generic": SQLDialect,
    "sqlite": SQLiteDialect,
    "postgresql": PostgreSQLDialect,
    "sqlserver": SQLServerDialect,
    "oracle": OracleDialect,
}


def get_dialect(name: str) -> SQLDialect:
    """Look up a dialect by its registered name.

    Raises:
        ConfigurationError: If no dialect is registered under the name
    """
    dialect_class = DIALECTS.get((name or "").lower())
    if dialect_class is None:
        raise ConfigurationError(f"Unknown SQL dialect: {name}", option="dialect")
    return dialect_class()
