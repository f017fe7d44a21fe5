"""Transfer producer: reads a source data container and feeds a consumer."""

from __future__ import annotations

import logging
from typing import Optional

from dbtransfer.config import TransferSettings
from dbtransfer.models import DataFilter, TransferStatistics
from dbtransfer.monitor import ProgressMonitor
from dbtransfer.struct import DataContainer, DataReceiver

logger = logging.getLogger(__name__)


class _SegmentCounter(DataReceiver):
    """Receiver wrapper counting the rows of one segment."""

    def __init__(self, consumer: DataReceiver):
        self.consumer = consumer
        self.rows = 0

    def fetch_start(self, columns, offset, max_rows):
        self.consumer.fetch_start(columns, offset, max_rows)

    def fetch_row(self, row):
        self.rows += 1
        self.consumer.fetch_row(row)

    def fetch_end(self):
        self.consumer.fetch_end()


class DatabaseTransferProducer:
    """Reads rows from a source container and pushes them into a consumer.

    The producer owns its source context for the duration of ``transfer``. With
    ``open_new_connections`` set (and a non-embedded driver) it reads on a connection
    of its own so reads never contend with the consumer's writes.

    Args:
        source: Source data container
        settings: Transfer settings
        data_filter: Optional pre-selected columns/rows
    """

    def __init__(self, source: DataContainer, settings: Optional[TransferSettings] = None, data_filter: Optional[DataFilter] = None):
        self.source = source
        self.settings = settings or TransferSettings()
        self.data_filter = data_filter
        self.total_rows: Optional[int] = None

    def effective_filter(self) -> Optional[DataFilter]:
        """Filter actually applied to the read, honouring the ``selected_*`` options."""
        if self.data_filter is None:
            return None
        columns = self.data_filter.columns if self.settings.selected_columns_only else None
        where = self.data_filter.where if self.settings.selected_rows_only else None
        parameters = self.data_filter.parameters if where else None
        data_filter = DataFilter(columns=columns, where=where, parameters=parameters, order_by=self.data_filter.order_by)
        return None if data_filter.is_empty else data_filter

    def _open_context(self):
        connector = self.source.connector
        if connector is None:
            return None, False
        if self.settings.open_new_connections and not connector.embedded:
            return connector.open_isolated_context(), True
        return connector.default_context(), False

    def _count_rows(self, context, data_filter: Optional[DataFilter]) -> Optional[int]:
        """Probe the total row count; a failed probe is rolled back and ignored."""
        savepoint = context.set_savepoint("rowcount") if context is not None else None
        try:
            count = self.source.count_rows(context, data_filter)
        except Exception as e:
            logger.warning(f"Can't query row count for {self.source.full_name}: {e}")
            if savepoint:
                try:
                    context.rollback_to_savepoint(savepoint)
                except Exception as rollback_error:
                    logger.error(f"Rollback to savepoint {savepoint} failed: {rollback_error}")
            return None
        if savepoint:
            context.release_savepoint(savepoint)
        return count

    def transfer(self, consumer: DataReceiver, monitor: Optional[ProgressMonitor] = None) -> TransferStatistics:
        """Read the source to completion into ``consumer``.

        Args:
            consumer: Receiver of the rows (normally a transfer consumer)
            monitor: Progress monitor; polled between segments and chunks

        Returns:
            Statistics accumulated over every segment

        Raises:
            TransferCancelledError: If the monitor was cancelled
        """
        monitor = monitor or ProgressMonitor(self.source.name)
        settings = self.settings
        data_filter = self.effective_filter()
        context, isolated = self._open_context()
        connector = self.source.connector
        # Only a transaction started here is ended here
        own_transaction = False
        failed = False
        try:
            if context is not None and (isolated or connector.requires_read_transactions) and context.auto_commit:
                context.auto_commit = False
                own_transaction = True

            if settings.query_row_count and self.source.supports_row_count:
                monitor.sub_task(f"Count rows of {self.source.name}")
                self.total_rows = self._count_rows(context, data_filter)
            monitor.begin_task(f"Transfer {self.source.name}", self.total_rows if self.total_rows is not None else -1)
            if self.total_rows is not None:
                logger.info(f"Reading {self.source.full_name} ({settings.extract_type}, {self.total_rows} rows)")
            else:
                logger.info(f"Reading {self.source.full_name} ({settings.extract_type})")

            if settings.segmented:
                statistics = self._read_segments(context, consumer, data_filter, monitor)
            else:
                statistics = self.source.read_data(
                    context, consumer, data_filter,
                    offset=0, limit=0, fetch_size=settings.fetch_size, monitor=monitor
                )
                statistics.segments = 1
            statistics.finish()
            return statistics
        except BaseException:
            failed = True
            raise
        finally:
            if own_transaction:
                self._end_transaction(context, failed)
                try:
                    context.auto_commit = True
                except Exception as e:
                    logger.error(f"Failed to restore auto-commit on {connector.name}: {e}")
            if isolated:
                context.close()
            monitor.done()

    def _read_segments(self, context, consumer, data_filter, monitor) -> TransferStatistics:
        settings = self.settings
        statistics = TransferStatistics()
        offset = 0
        while True:
            monitor.check_canceled()
            counter = _SegmentCounter(consumer)
            monitor.sub_task(f"Read segment at {offset}")
            segment = self.source.read_data(
                context, counter, data_filter,
                offset=offset, limit=settings.segment_size,
                fetch_size=min(settings.fetch_size, settings.segment_size), monitor=monitor
            )
            segment.segments = 1
            statistics.accumulate(segment)
            logger.debug(f"Segment at {offset} of {self.source.name}: {counter.rows} rows")
            if counter.rows < settings.segment_size:
                break
            offset += counter.rows
        return statistics

    def _end_transaction(self, context, failed: bool) -> None:
        """Finish the read transaction; errors here are logged, never raised."""
        if context.auto_commit:
            return
        try:
            if failed:
                context.rollback()
            else:
                context.commit()
        except Exception as e:
            logger.error(f"Failed to {'roll back' if failed else 'commit'} source transaction: {e}")
