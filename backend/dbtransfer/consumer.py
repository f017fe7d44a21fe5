"""Transfer consumers: write fetched rows into a target data manipulator.

``resolve_column_mappings`` joins the columns actually returned by a source read to the
mapping decisions, so the real consumer and the preview consumer always agree on how
columns map.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from dbtransfer.config import TransferSettings
from dbtransfer.dialects import SQLDialect
from dbtransfer.error_policy import Disposition, ErrorPolicy, make_error_policy
from dbtransfer.exceptions import BatchInsertError, CommitError, ConfigurationError, MappingError, RowTransformError
from dbtransfer.mapping import AttributeMapping, ContainerMapping
from dbtransfer.models import Attribute, MappingType, TransferStatistics
from dbtransfer.monitor import ProgressMonitor
from dbtransfer.struct import DataManipulator, DataReceiver
from dbtransfer.transformers import Transformer, create_transformer
from dbtransfer.value_handlers import ValueHandler, find_value_handler

logger = logging.getLogger(__name__)


class ColumnMapping:
    """Runtime pairing of a result-set column with its target attribute.

    Built once per read from the result metadata; never persisted.
    """

    def __init__(
        self,
        source: Attribute,
        source_index: int,
        target: Attribute,
        value_handler: ValueHandler,
        attribute_mapping: Optional[AttributeMapping] = None,
        transformer: Optional[Transformer] = None,
        target_index: int = 0
    ):
        self.source = source
        self.source_index = source_index
        self.target = target
        self.value_handler = value_handler
        self.attribute_mapping = attribute_mapping
        self.transformer = transformer
        self.target_index = target_index

    def __repr__(self) -> str:
        return f"ColumnMapping({self.source.name!r} -> {self.target.name!r})"


def resolve_column_mappings(
    columns: List[Attribute],
    container_mapping: Optional[ContainerMapping],
    target: Optional[DataManipulator],
    dialect: SQLDialect
) -> List[ColumnMapping]:
    """Join result-set columns to mapping decisions.

    Without a container mapping (headless transfer) columns map 1:1 by name onto the
    target, or onto themselves when there is no target (preview).

    Raises:
        MappingError: If a column has no usable decision
    """
    container_name = container_mapping.source.name if container_mapping is not None else (
        target.name if target is not None else "")
    result: List[ColumnMapping] = []
    for position, column in enumerate(columns):
        am = None
        transformer = None
        if container_mapping is None:
            target_attribute = target.get_attribute(column.name) if target is not None else column
            if target_attribute is None:
                raise MappingError(
                    f"Column {column.name} not found in target {target.full_name}",
                    container=container_name
                )
        else:
            am = container_mapping.get_attribute_mapping(column, position)
            if am is None:
                raise MappingError(
                    f"Result column {column.name} has no mapping in {container_name}",
                    container=container_name
                )
            if am.mapping_type == MappingType.SKIP:
                continue
            if not am.mapping_type.is_valid:
                raise MappingError(
                    f"Column {am.source_name} mapping is {am.mapping_type.value}",
                    container=container_name
                )
            target_attribute = am.target
            if target_attribute is None and target is not None:
                target_attribute = target.get_attribute(am.target_name)
            if target_attribute is None:
                target_attribute = Attribute(name=am.target_name, type_name=am.target_type or "")
            if am.transformer_id:
                transformer = create_transformer(am.transformer_id, am.transformer_properties)
        result.append(ColumnMapping(
            source=column,
            source_index=position,
            target=target_attribute,
            value_handler=find_value_handler(dialect, target_attribute),
            attribute_mapping=am,
            transformer=transformer,
            target_index=len(result)
        ))
    if not result:
        raise MappingError(f"No columns to transfer for {container_name}", container=container_name)
    logger.debug(f"Column mappings for {container_name}: {result}")
    return result


def convert_row(
    columns: List[ColumnMapping],
    source_columns: List[Attribute],
    row: Sequence[Any],
    row_number: int
) -> List[Any]:
    """Target values of one source row.

    Raises:
        RowTransformError: If a transformer or value handler fails
    """
    row_dict: Optional[Dict[str, Any]] = None
    values = []
    for cm in columns:
        value = row[cm.source_index]
        try:
            if cm.transformer is not None:
                if row_dict is None:
                    row_dict = {c.name: row[i] for i, c in enumerate(source_columns)}
                value = cm.transformer(row_dict, value)
            values.append(cm.value_handler.to_target(value))
        except Exception as e:
            raise RowTransformError(
                f"Row {row_number}: cannot convert column {cm.source.name}: {e}",
                row_number=row_number,
                column=cm.source.name
            ) from e
    return values


def _target_dialect(target: Optional[DataManipulator]) -> SQLDialect:
    connector = getattr(target, "connector", None)
    if connector is not None:
        return connector.dialect
    return SQLDialect()


class DatabaseTransferConsumer(DataReceiver):
    """Writes rows into a target manipulator in batches, inside target transactions.

    Lifecycle: ``fetch_start`` -> ``fetch_row``* -> ``fetch_end`` (once per segment),
    then ``close`` which always runs.

    Args:
        settings: Transfer settings
        container_mapping: Resolved mapping; None for a headless transfer
        target: Target manipulator (defaults to the mapping's target)
        error_policy: Failure policy; defaults to ``settings.error_policy``
        monitor: Progress monitor polled after each batch flush
        post_write_hook: Called with the target after each ``fetch_end``
        on_finish: Called with the target by ``finish_transfer`` when
            ``open_table_on_finish`` is set
    """

    def __init__(
        self,
        settings: Optional[TransferSettings] = None,
        container_mapping: Optional[ContainerMapping] = None,
        target: Optional[DataManipulator] = None,
        error_policy: Optional[ErrorPolicy] = None,
        monitor: Optional[ProgressMonitor] = None,
        post_write_hook: Optional[Callable[[DataManipulator], None]] = None,
        on_finish: Optional[Callable[[DataManipulator], None]] = None
    ):
        self.settings = settings or TransferSettings()
        self.container_mapping = container_mapping
        self.target = target if target is not None else (container_mapping.target if container_mapping else None)
        if self.target is None:
            raise ConfigurationError("No target container for the transfer", option="target")
        self.error_policy = error_policy or make_error_policy(self.settings.error_policy, self.settings.retry_delay)
        self.monitor = monitor or ProgressMonitor(self.target.name)
        self.post_write_hook = post_write_hook
        self.on_finish = on_finish
        self.statistics = TransferStatistics()

        self._context = None
        self._isolated = False
        self._initialized = False
        self._transactional = False
        self._columns: List[ColumnMapping] = []
        self._source_columns: List[Attribute] = []
        self._batch = None
        self._truncated = False
        self._dirty = False
        self._ignore_all = False
        self._commit_error: Optional[Exception] = None
        self._row_number = 0
        self._closed = False

    @property
    def dialect(self) -> SQLDialect:
        return _target_dialect(self.target)

    @property
    def column_mappings(self) -> List[ColumnMapping]:
        return list(self._columns)

    @property
    def rows_transferred(self) -> int:
        """Rows durably written so far."""
        if self._transactional:
            return self.statistics.rows_committed
        return self.statistics.rows_inserted

    def _init_context(self) -> None:
        if self._initialized:
            return
        self._initialized = True
        connector = self.target.connector
        if connector is None:
            return
        if self.settings.open_new_connections and not connector.embedded:
            self._context = connector.open_isolated_context()
            self._isolated = True
        else:
            self._context = connector.default_context()
        if self.settings.use_transactions:
            self._context.auto_commit = False
            self._transactional = True

    # ------------------------------------------------------------------
    # DataReceiver
    # ------------------------------------------------------------------

    def fetch_start(self, columns: List[Attribute], offset: int, max_rows: int) -> None:
        self._init_context()
        self._source_columns = list(columns)
        self._columns = resolve_column_mappings(columns, self.container_mapping, self.target, self.dialect)

        if offset <= 0 and self.settings.truncate_before_load and not self._truncated:
            mapping_type = self.container_mapping.mapping_type if self.container_mapping is not None else None
            if mapping_type in (None, MappingType.EXISTING):
                self._truncate()
            self._truncated = True

        method = self.settings.on_duplicate_key_insert_method
        key_columns = self.target.identifier_attributes() if method == "replace" else []
        self._batch = self.target.insert_data(
            self._context,
            [cm.target for cm in self._columns],
            key_columns,
            {"insert_method": method}
        )

    def _truncate(self) -> None:
        if not self.target.supports_truncate:
            logger.warning(f"Target {self.target.full_name} does not support truncate; loading without it")
            return
        self.target.truncate_data(self._context)
        if self._transactional:
            self._dirty = True

    def fetch_row(self, row: Sequence[Any]) -> None:
        self._row_number += 1
        self.statistics.rows_fetched += 1
        self.statistics.rows_exported += 1
        values = self._convert(row)
        if values is not None:
            self._batch.add(values)
        self.insert_batch(force=False)

    def _convert(self, row: Sequence[Any]) -> Optional[List[Any]]:
        attempt = 1
        while True:
            try:
                return convert_row(self._columns, self._source_columns, row, self._row_number)
            except RowTransformError as e:
                e.attempt = attempt
                e.rows_transferred = self.rows_transferred
                disposition = self._dispose(e)
                if disposition == Disposition.RETRY:
                    attempt += 1
                    self.statistics.retries += 1
                    continue
                if disposition == Disposition.IGNORE:
                    # The whole in-flight batch is dropped with the failing row
                    dropped = self._batch.pending + 1
                    self._batch.clear()
                    self.statistics.rows_ignored += dropped
                    logger.warning(f"Dropped {dropped} rows of {self.target.full_name} after transform error: {e}")
                    return None
                raise

    def insert_batch(self, force: bool) -> None:
        """Flush the pending batch if a flush boundary is reached, then commit."""
        interval = self.settings.commit_after_rows
        need_commit = force or (interval > 0 and self.statistics.rows_exported % interval == 0)
        if (need_commit or not self.settings.use_batch_insert) and self._batch.pending > 0:
            self._flush()
        if need_commit:
            self._commit()
        self.monitor.check_canceled(self.rows_transferred)

    def _flush(self) -> None:
        size = self._batch.pending
        attempt = 1
        while True:
            started = time.time()
            try:
                count = self._batch.execute()
            except Exception as e:
                self.statistics.execute_time += time.time() - started
                error = BatchInsertError(
                    f"Failed to insert {size} rows into {self.target.full_name}: {e}",
                    batch_size=size,
                    attempt=attempt,
                    rows_transferred=self.rows_transferred
                )
                error.__cause__ = e
                logger.error(str(error))
                disposition = self._dispose(error)
                if disposition == Disposition.RETRY:
                    attempt += 1
                    self.statistics.retries += 1
                    continue
                if disposition == Disposition.IGNORE:
                    self._batch.clear()
                    self.statistics.rows_ignored += size
                    logger.warning(f"Ignored failed batch of {size} rows for {self.target.full_name}")
                    return
                raise error
            self.statistics.execute_time += time.time() - started
            self.statistics.rows_inserted += count
            self.statistics.batches += 1
            if self._transactional:
                self._dirty = True
            logger.debug(f"Flushed {count} rows into {self.target.full_name}")
            return

    def _dispose(self, error: Exception) -> Disposition:
        if self._ignore_all:
            return Disposition.IGNORE
        disposition = Disposition(self.error_policy(error))
        if disposition == Disposition.IGNORE_ALL:
            self._ignore_all = True
            return Disposition.IGNORE
        return disposition

    def _commit(self) -> None:
        if not self._transactional or not self._dirty:
            return
        try:
            self._context.commit()
        except Exception as e:
            logger.error(f"Commit into {self.target.full_name} failed: {e}")
            self._commit_error = e
            return
        self._dirty = False
        self._commit_error = None
        self.statistics.commits += 1
        self.statistics.rows_committed = self.statistics.rows_inserted
        logger.debug(f"Committed {self.statistics.rows_committed} rows into {self.target.full_name}")

    def fetch_end(self) -> None:
        self.insert_batch(force=True)
        if self._batch is not None:
            self._batch.close()
            self._batch = None
        if self.post_write_hook is not None:
            self.post_write_hook(self.target)

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def finish_transfer(self) -> None:
        """Run the finish hook after the last segment completed successfully.

        Raises:
            CommitError: If the final commit failed, leaving rows uncommitted
        """
        if self._transactional and self._dirty and self._commit_error is not None:
            raise CommitError(
                f"Rows loaded into {self.target.full_name} were not committed: {self._commit_error}",
                rows_transferred=self.rows_transferred
            ) from self._commit_error
        self.statistics.finish()
        logger.info(
            f"Loaded {self.rows_transferred} rows into {self.target.full_name} "
            f"({self.statistics.commits} commits, {self.statistics.rows_ignored} ignored)"
        )
        if self.settings.open_table_on_finish and self.on_finish is not None:
            self.on_finish(self.target)

    def close(self) -> None:
        """Release the target context; uncommitted work is rolled back."""
        if self._closed:
            return
        self._closed = True
        if self._batch is not None:
            self._batch.close()
            self._batch = None
        if self._context is None:
            return
        if self._transactional:
            if self._dirty:
                try:
                    self._context.rollback()
                    logger.info(f"Rolled back uncommitted rows of {self.target.full_name}")
                except Exception as e:
                    logger.error(f"Rollback of {self.target.full_name} failed: {e}")
                self._dirty = False
            try:
                self._context.auto_commit = True
            except Exception as e:
                logger.error(f"Failed to restore auto-commit: {e}")
        if self._isolated:
            self._context.close()
        self._context = None


class PreviewTransferConsumer(DataReceiver):
    """Consumer that records converted rows in memory instead of writing them.

    Uses the same column resolution as ``DatabaseTransferConsumer``.

    Args:
        container_mapping: Resolved mapping (None to preview a headless transfer)
        target: Target manipulator, if it exists
        dialect: Target dialect for value conversion
        max_rows: Rows to keep
    """

    def __init__(
        self,
        container_mapping: Optional[ContainerMapping] = None,
        target: Optional[DataManipulator] = None,
        dialect: Optional[SQLDialect] = None,
        max_rows: int = 100
    ):
        self.container_mapping = container_mapping
        self.target = target if target is not None else (container_mapping.target if container_mapping else None)
        self.dialect = dialect or _target_dialect(self.target)
        self.max_rows = max_rows
        self.columns: List[ColumnMapping] = []
        self.rows: List[List[Any]] = []
        self._source_columns: List[Attribute] = []
        self._row_number = 0

    @property
    def column_names(self) -> List[str]:
        return [cm.target.name for cm in self.columns]

    def fetch_start(self, columns: List[Attribute], offset: int, max_rows: int) -> None:
        self._source_columns = list(columns)
        self.columns = resolve_column_mappings(columns, self.container_mapping, self.target, self.dialect)

    def fetch_row(self, row: Sequence[Any]) -> None:
        self._row_number += 1
        if len(self.rows) < self.max_rows:
            self.rows.append(convert_row(self.columns, self._source_columns, row, self._row_number))

    def fetch_end(self) -> None:
        pass

    def to_dicts(self) -> List[Dict[str, Any]]:
        names = self.column_names
        return [dict(zip(names, row)) for row in self.rows]
