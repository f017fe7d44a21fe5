"""Transfer coordination: mapping, DDL and data load for a set of pipes."""

from __future__ import annotations

import concurrent.futures
import logging
from typing import Any, Callable, Dict, List, Optional

from dbtransfer.config import TransferSettings
from dbtransfer.consumer import DatabaseTransferConsumer, PreviewTransferConsumer
from dbtransfer.ddl import DDLAction, DDLErrorHandler, DdlSynthesizer, execute_ddl, refresh_mapping
from dbtransfer.error_policy import ErrorPolicy, make_error_policy
from dbtransfer.exceptions import ConfigurationError, TransferCancelledError, TransferError
from dbtransfer.mapping import ContainerMapping, MappingResolver
from dbtransfer.models import DataFilter, MappingType, NameCase, RunStatus
from dbtransfer.monitor import ProgressMonitor
from dbtransfer.producer import DatabaseTransferProducer
from dbtransfer.struct import DataContainer, DataManipulator, EntityContainer

logger = logging.getLogger(__name__)


class TransferPipe:
    """One source wired to one target.

    Either ``target_container`` (mapping mode: the target table is resolved, and created
    if needed) or ``target`` (headless mode: columns map 1:1 by name) must be set.
    """

    def __init__(
        self,
        source: DataContainer,
        target_container: Optional[EntityContainer] = None,
        target: Optional[DataManipulator] = None,
        target_name: Optional[str] = None,
        data_filter: Optional[DataFilter] = None,
        mapping: Optional[ContainerMapping] = None,
        saved_mapping: Optional[Dict[str, Any]] = None
    ):
        self.source = source
        self.target_container = target_container
        self.target = target
        self.target_name = target_name
        self.data_filter = data_filter
        self.mapping = mapping
        self.saved_mapping = saved_mapping
        self.status: Optional[RunStatus] = None
        self.rows_transferred = 0
        self.error: Optional[BaseException] = None
        self.statistics: Dict[str, Any] = {}

    @property
    def name(self) -> str:
        return self.source.name

    @property
    def target_entity(self) -> Optional[DataManipulator]:
        if self.mapping is not None:
            return self.mapping.target
        return self.target

    def to_dict(self) -> Dict[str, Any]:
        """Per-table result entry of a run summary."""
        target = self.target_entity
        result = {
            "table_name": self.source.name,
            "target_table": target.name if target is not None else (
                self.mapping.target_name if self.mapping is not None else None),
            "status": self.status.value if self.status else None,
            "rows_transferred": self.rows_transferred,
            "statistics": self.statistics,
        }
        if self.error is not None:
            result["error"] = str(self.error)
        return result

    def __repr__(self) -> str:
        return f"TransferPipe({self.source.name!r})"


class TransferCoordinator:
    """Runs a transfer job: resolves mappings, executes DDL once, then loads every pipe.

    Mapping readiness of every pipe is checked before any DDL runs, and all DDL runs
    sequentially before the first row is read. Pipes then run one after another, or on a
    thread pool when ``settings.max_jobs`` > 1.

    Args:
        settings: Transfer settings
        monitor: Job progress monitor; each pipe gets a fork sharing its cancel token
        ddl_error_handler: Manual-SQL fallback for failed DDL
        error_policy: Batch failure policy, or a factory is built from settings per pipe
        on_finish: Finish hook passed to consumers (``open_table_on_finish``)
        post_write_hook: Called with the target after each load segment
    """

    def __init__(
        self,
        settings: Optional[TransferSettings] = None,
        monitor: Optional[ProgressMonitor] = None,
        ddl_error_handler: Optional[DDLErrorHandler] = None,
        error_policy: Optional[ErrorPolicy] = None,
        on_finish: Optional[Callable[[DataManipulator], None]] = None,
        post_write_hook: Optional[Callable[[DataManipulator], None]] = None
    ):
        self.settings = settings or TransferSettings()
        self.monitor = monitor or ProgressMonitor("transfer")
        self.ddl_error_handler = ddl_error_handler
        self.error_policy = error_policy
        self.on_finish = on_finish
        self.post_write_hook = post_write_hook
        self.pipes: List[TransferPipe] = []
        self._resolvers: Dict[int, MappingResolver] = {}
        self._prepared = False

    def add_pipe(
        self,
        source: DataContainer,
        target_container: Optional[EntityContainer] = None,
        target: Optional[DataManipulator] = None,
        target_name: Optional[str] = None,
        data_filter: Optional[DataFilter] = None,
        saved_mapping: Optional[Dict[str, Any]] = None
    ) -> TransferPipe:
        pipe = TransferPipe(
            source,
            target_container=target_container,
            target=target,
            target_name=target_name,
            data_filter=data_filter,
            saved_mapping=saved_mapping
        )
        self.pipes.append(pipe)
        self._prepared = False
        return pipe

    def resolver(self, target_container: EntityContainer) -> MappingResolver:
        """The mapping resolver of a target container (one per container)."""
        key = id(target_container)
        if key not in self._resolvers:
            self._resolvers[key] = MappingResolver(target_container, NameCase(self.settings.name_case))
        return self._resolvers[key]

    @property
    def mappings(self) -> List[ContainerMapping]:
        return [pipe.mapping for pipe in self.pipes if pipe.mapping is not None]

    def cancel(self) -> None:
        self.monitor.cancel()

    # ------------------------------------------------------------------
    # Preparation
    # ------------------------------------------------------------------

    def resolve(self) -> None:
        """Resolve every pipe's mapping and check readiness; no side effects on the target.

        Raises:
            ConfigurationError: If settings are invalid or a pipe has no target
            MappingError: If any mapping is not ready
        """
        self.settings.validate()
        if not self.pipes:
            raise ConfigurationError("Nothing to transfer: no pipes configured", option="pipes")
        for pipe in self.pipes:
            if pipe.target_container is None:
                if pipe.target is None:
                    raise ConfigurationError(
                        f"No target container selected for {pipe.source.name}",
                        option="target"
                    )
                continue
            resolver = self.resolver(pipe.target_container)
            if pipe.mapping is None:
                pipe.mapping = resolver.create_mapping(pipe.source, pipe.target_name)
                if pipe.saved_mapping:
                    resolver.apply_saved(pipe.mapping, pipe.saved_mapping)
            resolver.resolve(pipe.mapping)
        for mapping in self.mappings:
            mapping.check_ready()

    def plan_ddl(self) -> List[DDLAction]:
        """DDL the run would execute, without executing it."""
        self.resolve()
        actions: List[DDLAction] = []
        planned = set()
        for pipe in self.pipes:
            mapping = pipe.mapping
            if mapping is None:
                continue
            key = (id(pipe.target_container), mapping.target_name.lower())
            if key in planned and mapping.mapping_type in (MappingType.CREATE, MappingType.RECREATE):
                continue
            pipe_actions = DdlSynthesizer(pipe.target_container).synthesize(mapping)
            if pipe_actions and mapping.mapping_type in (MappingType.CREATE, MappingType.RECREATE):
                planned.add(key)
            actions.extend(pipe_actions)
        return actions

    def prepare(self) -> None:
        """Resolve mappings, then execute the DDL of every pipe in order.

        A table named by several pipes is created once; later pipes are re-bound to it.

        Raises:
            ConfigurationError, MappingError: Before any schema change
            DDLError: If DDL fails and no replacement SQL is supplied
        """
        self.resolve()
        created = set()
        for pipe in self.pipes:
            mapping = pipe.mapping
            if mapping is None or mapping.mapping_type == MappingType.SKIP:
                continue
            container = pipe.target_container
            resolver = self.resolver(container)
            key = (id(container), mapping.target_name.lower())
            if key in created and mapping.mapping_type in (MappingType.CREATE, MappingType.RECREATE):
                logger.info(f"{mapping.target_name} was already created in this run; loading {pipe.name} into it")
                mapping.target = None
                resolver.refresh_target(mapping)
                resolver.resolve(mapping, force_refresh=True)
                mapping.check_ready()
            actions = DdlSynthesizer(container).synthesize(mapping)
            if not actions:
                continue
            creates = mapping.mapping_type in (MappingType.CREATE, MappingType.RECREATE)
            execute_ddl(container, actions, self.ddl_error_handler)
            if creates:
                created.add(key)
            refresh_mapping(mapping, resolver)
            logger.info(f"Schema of {mapping.target_name} updated ({len(actions)} DDL actions)")
        self._prepared = True

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def preview(self, pipe: TransferPipe, max_rows: int = 10) -> PreviewTransferConsumer:
        """Convert the first rows of a pipe without touching the target."""
        if pipe.mapping is None and pipe.target is None:
            self.resolve()
        consumer = PreviewTransferConsumer(
            container_mapping=pipe.mapping,
            target=pipe.target_entity,
            dialect=pipe.target_container.dialect if pipe.target_container is not None else None,
            max_rows=max_rows
        )
        producer = DatabaseTransferProducer(pipe.source, self.settings, pipe.data_filter)
        connector = pipe.source.connector
        context = connector.default_context() if connector is not None else None
        pipe.source.read_data(
            context, consumer, producer.effective_filter(),
            offset=0, limit=max_rows, fetch_size=max_rows, monitor=self.monitor
        )
        return consumer

    def _pipe_policy(self) -> ErrorPolicy:
        if self.error_policy is not None:
            return self.error_policy
        return make_error_policy(self.settings.error_policy, self.settings.retry_delay)

    def run_pipe(self, pipe: TransferPipe) -> TransferPipe:
        """Load one pipe. Failures are recorded on the pipe, not raised."""
        if pipe.mapping is not None and pipe.mapping.mapping_type == MappingType.SKIP:
            pipe.status = RunStatus.SKIPPED
            logger.info(f"Skipping {pipe.name}")
            return pipe
        monitor = self.monitor.fork(pipe.name)
        consumer = None
        pipe.status = RunStatus.RUNNING
        try:
            consumer = DatabaseTransferConsumer(
                self.settings,
                container_mapping=pipe.mapping,
                target=pipe.target_entity,
                error_policy=self._pipe_policy(),
                monitor=monitor,
                post_write_hook=self.post_write_hook,
                on_finish=self.on_finish
            )
            producer = DatabaseTransferProducer(pipe.source, self.settings, pipe.data_filter)
            read_statistics = producer.transfer(consumer, monitor)
            consumer.finish_transfer()
            pipe.status = RunStatus.COMPLETED
            pipe.statistics = {"read": read_statistics.to_dict(), "write": consumer.statistics.to_dict()}
        except TransferCancelledError as e:
            pipe.status = RunStatus.CANCELLED
            pipe.error = e
            logger.warning(f"Transfer of {pipe.name} cancelled")
        except Exception as e:
            pipe.status = RunStatus.FAILED
            pipe.error = e
            logger.error(f"Transfer of {pipe.name} failed: {e}")
        finally:
            if consumer is not None:
                consumer.close()
                pipe.rows_transferred = consumer.rows_transferred
                if not pipe.statistics:
                    pipe.statistics = {"write": consumer.statistics.to_dict()}
        return pipe

    def run(self, raise_on_error: bool = True) -> Dict[str, Any]:
        """Run the whole job.

        Args:
            raise_on_error: Raise TransferError when any pipe failed or was cancelled

        Returns:
            Summary: tables_processed, tables_successful, tables_failed,
            total_rows_transferred and per-table results

        Raises:
            TransferError: Carrying the summary and the rows transferred before the failure
        """
        if not self._prepared:
            self.prepare()
        pipes = self.pipes
        max_jobs = min(self.settings.max_jobs, len(pipes))
        logger.info(f"Starting transfer of {len(pipes)} table(s) with {max_jobs} job(s)")

        if max_jobs > 1:
            with concurrent.futures.ThreadPoolExecutor(max_workers=max_jobs) as executor:
                futures = [executor.submit(self.run_pipe, pipe) for pipe in pipes]
                concurrent.futures.wait(futures)
        else:
            for pipe in pipes:
                if self.monitor.is_canceled:
                    pipe.status = RunStatus.CANCELLED
                    pipe.error = TransferCancelledError()
                    continue
                self.run_pipe(pipe)

        summary = self.summary()
        logger.info(
            f"Transfer completed: {summary['tables_successful']} successful, "
            f"{summary['tables_failed']} failed, "
            f"{summary['total_rows_transferred']} total rows transferred"
        )
        failed = [pipe for pipe in pipes if pipe.status not in (RunStatus.COMPLETED, RunStatus.SKIPPED)]
        if failed and raise_on_error:
            first = failed[0]
            raise TransferError(
                f"Transfer of {first.name} {first.status.value.lower()}: {first.error}",
                table_name=first.name,
                rows_transferred=summary["total_rows_transferred"],
                summary=summary
            ) from first.error
        return summary

    def summary(self) -> Dict[str, Any]:
        successful = [pipe for pipe in self.pipes if pipe.status == RunStatus.COMPLETED]
        skipped = [pipe for pipe in self.pipes if pipe.status == RunStatus.SKIPPED]
        return {
            "tables_processed": len(self.pipes),
            "tables_successful": len(successful),
            "tables_skipped": len(skipped),
            "tables_failed": len(self.pipes) - len(successful) - len(skipped),
            "total_rows_transferred": sum(pipe.rows_transferred for pipe in self.pipes),
            "tables": [pipe.to_dict() for pipe in self.pipes],
        }
