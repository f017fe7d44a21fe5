"""DB-API backed data containers, manipulators and schemas."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from dbtransfer.models import Attribute, DataFilter, TransferStatistics
from dbtransfer.struct import BatchHandle, DataContainer, DataManipulator, DataReceiver, EntityContainer
from dbtransfer.value_handlers import infer_type

logger = logging.getLogger(__name__)


def stream_rows(
    context,
    sql: str,
    params: Optional[Sequence[Any]],
    receiver: DataReceiver,
    describe: Callable[[Any], List[Attribute]],
    offset: int,
    limit: int,
    fetch_size: int,
    monitor=None
) -> TransferStatistics:
    """Execute a SELECT and push its rows into ``receiver``.

    The monitor is polled once per fetched chunk, not per row.
    """
    statistics = TransferStatistics()
    started = time.time()
    cursor = context.execute(sql, params)
    try:
        cursor.arraysize = fetch_size
        columns = describe(cursor)
        statistics.fetch_time += time.time() - started
        receiver.fetch_start(columns, offset, limit)
        while True:
            if monitor is not None:
                monitor.check_canceled()
            started = time.time()
            rows = cursor.fetchmany(fetch_size)
            statistics.fetch_time += time.time() - started
            if not rows:
                break
            for row in rows:
                receiver.fetch_row(row)
            statistics.rows_fetched += len(rows)
            if monitor is not None:
                monitor.worked(len(rows))
        receiver.fetch_end()
    finally:
        cursor.close()
    statistics.finish()
    return statistics


class DbBatchInsert(BatchHandle):
    """Batched INSERT executed with ``executemany`` inside a savepoint.

    A failed batch is rolled back to its savepoint (when the context is transactional)
    and stays pending so it can be retried or cleared.
    """

    def __init__(self, context, statement: str, table_name: str):
        self.context = context
        self.statement = statement
        self.table_name = table_name
        self._rows: List[Tuple[Any, ...]] = []

    def add(self, values: Sequence[Any]) -> None:
        self._rows.append(tuple(values))

    @property
    def pending(self) -> int:
        return len(self._rows)

    def execute(self) -> int:
        if not self._rows:
            return 0
        savepoint = self.context.set_savepoint("batch")
        try:
            self.context.executemany(self.statement, self._rows)
        except Exception:
            if savepoint:
                try:
                    self.context.rollback_to_savepoint(savepoint)
                except Exception as e:
                    logger.error(f"Rollback to savepoint {savepoint} failed: {e}")
            raise
        if savepoint:
            self.context.release_savepoint(savepoint)
        count = len(self._rows)
        self._rows = []
        logger.debug(f"Inserted {count} rows into {self.table_name}")
        return count

    def clear(self) -> None:
        self._rows = []


class DbTable(DataContainer, DataManipulator):
    """A database table: readable as a source and writable as a target."""

    is_entity = True
    supports_truncate = True

    def __init__(self, schema: "DbSchema", name: str, attributes: List[Attribute], primary_keys: Optional[List[str]] = None):
        DataContainer.__init__(self, name, schema.connector)
        self.schema = schema
        self._attributes = list(attributes)
        self.primary_keys = list(primary_keys or [])

    @property
    def dialect(self):
        return self.connector.dialect

    @property
    def full_name(self) -> str:
        return self.dialect.qualified_name(self.schema.name, self.name)

    def attributes(self) -> List[Attribute]:
        return list(self._attributes)

    def identifier_attributes(self) -> List[Attribute]:
        by_name = {a.name: a for a in self._attributes}
        return [by_name[name] for name in self.primary_keys if name in by_name]

    def _where_clause(self, data_filter: Optional[DataFilter]) -> Tuple[str, List[Any]]:
        if data_filter is not None and data_filter.where:
            return f" WHERE {data_filter.where}", list(data_filter.parameters)
        return "", []

    def count_rows(self, context, data_filter: Optional[DataFilter] = None) -> int:
        where, params = self._where_clause(data_filter)
        cursor = context.execute(f"SELECT COUNT(*) FROM {self.full_name}{where}", params)
        try:
            return int(cursor.fetchone()[0])
        finally:
            cursor.close()

    def select_statement(
        self,
        data_filter: Optional[DataFilter] = None,
        offset: int = 0,
        limit: int = 0
    ) -> Tuple[str, List[Any]]:
        quote = self.dialect.quote_identifier
        columns = "*"
        if data_filter is not None and data_filter.columns:
            columns = ", ".join(quote(c) for c in data_filter.columns)
        where, params = self._where_clause(data_filter)
        sql = f"SELECT {columns} FROM {self.full_name}{where}"
        order_by = list(data_filter.order_by) if data_filter is not None and data_filter.order_by else []
        if not order_by and (offset or limit):
            # Stable paging
            order_by = list(self.primary_keys)
        if order_by:
            sql += " ORDER BY " + ", ".join(quote(c) for c in order_by)
        return self.dialect.paginate(sql, offset, limit, bool(order_by)), params

    def _result_attributes(self, cursor) -> List[Attribute]:
        result = []
        for column in self.connector.describe_cursor(cursor):
            attribute = self.get_attribute(column.name)
            result.append(attribute if attribute is not None else column)
        return result

    def read_data(
        self,
        context,
        receiver: DataReceiver,
        data_filter: Optional[DataFilter] = None,
        offset: int = 0,
        limit: int = 0,
        fetch_size: int = 10000,
        monitor=None
    ) -> TransferStatistics:
        sql, params = self.select_statement(data_filter, offset, limit)
        logger.debug(f"Reading {self.full_name}: {sql}")
        return stream_rows(context, sql, params, receiver, self._result_attributes, offset, limit, fetch_size, monitor)

    def truncate_data(self, context) -> None:
        statement = self.dialect.truncate_statement(self.full_name)
        context.execute(statement).close()
        logger.info(f"Truncated {self.full_name}")

    def insert_data(
        self,
        context,
        attributes: List[Attribute],
        key_columns: Optional[List[Attribute]] = None,
        options: Optional[Dict[str, Any]] = None
    ) -> BatchHandle:
        options = options or {}
        quote = self.dialect.quote_identifier
        statement = self.dialect.insert_statement(
            self.full_name,
            [quote(a.name) for a in attributes],
            self.connector.values_clause(len(attributes)),
            options.get("insert_method", "insert"),
            [quote(a.name) for a in key_columns or []]
        )
        logger.debug(f"Batch insert statement: {statement}")
        return DbBatchInsert(context, statement, self.full_name)


class QueryContainer(DataContainer):
    """An SQL query used as a data source. Not an entity: it has no identifier."""

    def __init__(self, connector, sql: str, name: str = "query", params: Optional[Sequence[Any]] = None):
        super().__init__(name, connector)
        self.sql = sql.strip().rstrip(";")
        self.params = list(params or [])
        self._attributes: Optional[List[Attribute]] = None

    @property
    def dialect(self):
        return self.connector.dialect

    def attributes(self) -> List[Attribute]:
        """Result columns, typed from the first rows of the query."""
        if self._attributes is None:
            cursor = self.connector.default_context().execute(self.sql, self.params)
            try:
                columns = self.connector.describe_cursor(cursor)
                sample = cursor.fetchmany(100)
            finally:
                cursor.close()
            for index, column in enumerate(columns):
                if not column.type_name:
                    column.data_kind, column.type_name = infer_type(row[index] for row in sample)
            self._attributes = columns
        return list(self._attributes)

    def _wrapped(self, data_filter: Optional[DataFilter]) -> Tuple[str, List[Any], bool]:
        params = list(self.params)
        if data_filter is None or data_filter.is_empty:
            return self.sql, params, "order by" in self.sql.lower()
        quote = self.dialect.quote_identifier
        columns = ", ".join(quote(c) for c in data_filter.columns) if data_filter.columns else "*"
        sql = f"SELECT {columns} FROM ({self.sql}) q"
        if data_filter.where:
            sql += f" WHERE {data_filter.where}"
            params.extend(data_filter.parameters)
        if data_filter.order_by:
            sql += " ORDER BY " + ", ".join(quote(c) for c in data_filter.order_by)
        return sql, params, bool(data_filter.order_by)

    def count_rows(self, context, data_filter: Optional[DataFilter] = None) -> int:
        sql, params, _ = self._wrapped(data_filter)
        cursor = context.execute(f"SELECT COUNT(*) FROM ({sql}) c", params)
        try:
            return int(cursor.fetchone()[0])
        finally:
            cursor.close()

    def _result_attributes(self, cursor) -> List[Attribute]:
        known = {a.name: a for a in self.attributes()}
        return [known.get(c.name, c) for c in self.connector.describe_cursor(cursor)]

    def read_data(
        self,
        context,
        receiver: DataReceiver,
        data_filter: Optional[DataFilter] = None,
        offset: int = 0,
        limit: int = 0,
        fetch_size: int = 10000,
        monitor=None
    ) -> TransferStatistics:
        sql, params, ordered = self._wrapped(data_filter)
        sql = self.dialect.paginate(sql, offset, limit, ordered)
        logger.debug(f"Reading query {self.name}: {sql}")
        return stream_rows(context, sql, params, receiver, self._result_attributes, offset, limit, fetch_size, monitor)


class DbSchema(EntityContainer):
    """A database schema as a target entity container.

    Table metadata is cached until ``refresh``.
    """

    def __init__(self, connector, name: Optional[str]):
        super().__init__(name, connector)
        self._names: Optional[List[str]] = None
        self._tables: Dict[str, DbTable] = {}

    @property
    def dialect(self):
        return self.connector.dialect

    def _context(self):
        return self.connector.default_context()

    def list_entities(self) -> List[str]:
        if self._names is None:
            self._names = self.connector.list_table_names(self._context(), self.name)
        return list(self._names)

    def get_entity(self, name: str) -> Optional[DbTable]:
        name = self.dialect.unquote(name)
        names = self.list_entities()
        actual = name if name in names else None
        if actual is None:
            lowered = name.lower()
            actual = next((n for n in names if n.lower() == lowered), None)
        if actual is None:
            return None
        if actual not in self._tables:
            context = self._context()
            attributes = self.connector.read_attributes(context, self.name, actual)
            primary_keys = self.connector.read_primary_keys(context, self.name, actual)
            self._tables[actual] = DbTable(self, actual, attributes, primary_keys)
        return self._tables[actual]

    def refresh(self) -> None:
        self._names = None
        self._tables.clear()

    def struct_editor(self):
        return self.connector.struct_editor()
