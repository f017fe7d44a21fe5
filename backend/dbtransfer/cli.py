"""CLI tool for database-to-database transfers."""

from __future__ import annotations

import json
import logging
import sys
from typing import Any, Dict, List, Optional, Tuple

import click

from dbtransfer.config import TransferSettings
from dbtransfer.connectors import CsvFileConnector, create_connector
from dbtransfer.coordinator import TransferCoordinator
from dbtransfer.exceptions import ConfigurationError, TransferError, TransferException
from dbtransfer.mapping import mappings_to_dict
from dbtransfer.models import RunStatus

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _table_options(f):
    """Source selection options shared by every command."""
    f = click.option('--target-table', help='Target table name (single table or query)')(f)
    f = click.option('--query', help='SQL query to use as the source')(f)
    f = click.option('-t', '--table', 'tables', multiple=True, help='Source table (repeatable)')(f)
    f = click.option('--name-case', type=click.Choice(['default', 'upper', 'lower', 'camel', 'underscore']),
                     help='Naming policy for new tables and columns')(f)
    f = click.option('--settings', 'settings_file', type=click.Path(exists=True, dir_okay=False),
                     help='JSON settings file')(f)
    f = click.argument('target_url')(f)
    f = click.argument('source_url')(f)
    return f


def load_settings(settings_file: Optional[str] = None, task: Optional[Dict[str, Any]] = None,
                  overrides: Optional[Dict[str, Any]] = None) -> TransferSettings:
    """Settings from the environment, then a settings file, a saved task, and CLI options."""
    settings = TransferSettings.from_env()
    if settings_file:
        settings = TransferSettings.from_file(settings_file, base=settings)
    if task and task.get("settings"):
        settings = TransferSettings.from_dict(task["settings"], base=settings)
    if overrides:
        settings = TransferSettings.from_dict(overrides, base=settings)
    return settings.validate()


def build_coordinator(
    source_url: str,
    target_url: str,
    tables: Tuple[str, ...],
    query: Optional[str],
    target_table: Optional[str],
    settings: TransferSettings,
    saved_mappings: Optional[Dict[str, Any]] = None,
    **kwargs
) -> Tuple[TransferCoordinator, List[Any]]:
    """Open both connectors and add one pipe per source table (and the query).

    Returns:
        The coordinator and the connectors to close afterwards

    Raises:
        ConfigurationError: If a source table does not exist or nothing is selected
    """
    source_connector = create_connector(source_url)
    target_connector = create_connector(target_url)
    connectors = [source_connector, target_connector]
    try:
        if target_table and len(tables) + (1 if query else 0) > 1:
            raise ConfigurationError("--target-table needs exactly one source", option="target_table")
        coordinator = TransferCoordinator(settings, **kwargs)
        target_container = target_connector.get_schema()
        saved_mappings = saved_mappings or {}

        names: List[Optional[str]] = list(tables)
        if not names and not query and isinstance(source_connector, CsvFileConnector):
            names = [None]
        if not names and not query:
            raise ConfigurationError("Select at least one source table (-t) or a --query", option="table")

        for name in names:
            source = source_connector.get_table(name)
            if source is None:
                raise ConfigurationError(f"Source table not found: {name}", option="table")
            coordinator.add_pipe(
                source,
                target_container=target_container,
                target_name=target_table,
                saved_mapping=saved_mappings.get(source.name)
            )
        if query:
            source = source_connector.query(query, name=target_table or "query")
            coordinator.add_pipe(
                source,
                target_container=target_container,
                target_name=target_table,
                saved_mapping=saved_mappings.get(source.name)
            )
    except Exception:
        _close_all(connectors)
        raise
    return coordinator, connectors


def _close_all(connectors) -> None:
    for connector in connectors:
        try:
            connector.close()
        except Exception as e:
            logger.warning(f"Failed to close {connector}: {e}")


def _open_store(store_url: Optional[str]):
    from sqlalchemy.orm import sessionmaker

    from dbtransfer.database import create_store_engine, init_store
    from dbtransfer.task_store import TaskStore

    engine = create_store_engine(store_url)
    init_store(engine)
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    return TaskStore(session_factory), session_factory


@click.group()
@click.option('--log-level', default='INFO', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
              help='Logging level')
@click.option('--store-url', envvar='DBTRANSFER_STORE_URL', help='Task store database URL')
@click.pass_context
def cli(ctx, log_level, store_url):
    """Database transfer CLI."""
    logging.basicConfig(level=getattr(logging, log_level.upper()), format=LOG_FORMAT)
    ctx.ensure_object(dict)
    ctx.obj['store_url'] = store_url


@cli.command()
@_table_options
@click.option('--segmented', is_flag=True, help='Read the source in segments')
@click.option('--segment-size', type=int, help='Rows per segment')
@click.option('--fetch-size', type=int, help='Rows fetched per round trip')
@click.option('--commit-after-rows', type=int, help='Commit every N rows')
@click.option('--truncate', is_flag=True, help='Truncate the target before loading')
@click.option('--no-transactions', is_flag=True, help='Write in auto-commit mode')
@click.option('--insert-method', type=click.Choice(['insert', 'ignore', 'replace']),
              help='Handling of duplicate keys')
@click.option('--error-policy', help='stop, retry, retry-N, ignore or ignore-all')
@click.option('--jobs', type=int, help='Tables transferred in parallel')
@click.option('--task', 'task_name', help='Saved task: load and save settings and mappings, record the run')
@click.option('--log-to-store', is_flag=True, help='Store run logs in the task store')
@click.pass_context
def transfer(ctx, source_url, target_url, settings_file, name_case, tables, query, target_table,
             segmented, segment_size, fetch_size, commit_after_rows, truncate, no_transactions,
             insert_method, error_policy, jobs, task_name, log_to_store):
    """Transfer tables from SOURCE_URL into TARGET_URL."""
    overrides = {
        "extract_type": "segmented" if segmented else None,
        "segment_size": segment_size,
        "fetch_size": fetch_size,
        "commit_after_rows": commit_after_rows,
        "truncate_before_load": True if truncate else None,
        "use_transactions": False if no_transactions else None,
        "on_duplicate_key_insert_method": insert_method,
        "error_policy": error_policy,
        "max_jobs": jobs,
        "name_case": name_case,
    }
    store = None
    task = None
    run_id = None
    log_handler = None
    connectors: List[Any] = []
    try:
        if task_name or log_to_store:
            store, session_factory = _open_store(ctx.obj.get('store_url'))
        if task_name:
            task = store.load_task(task_name)
            if task is None:
                click.echo(f"Creating task {task_name}")
        settings = load_settings(settings_file, task, overrides)
        if task_name:
            store.save_task(task_name, settings=settings.to_dict())
            run_id = store.start_run(task_name)
        if log_to_store:
            from dbtransfer.database_log_handler import TransferLogHandler

            log_handler = TransferLogHandler(session_factory, run_id=run_id)
            log_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            logging.getLogger().addHandler(log_handler)

        coordinator, connectors = build_coordinator(
            source_url, target_url, tables, query, target_table, settings,
            saved_mappings=(task or {}).get("mappings")
        )
        coordinator.prepare()
        if task_name:
            store.save_task(task_name, mappings=mappings_to_dict(coordinator.mappings))
        summary = coordinator.run()

        if run_id:
            store.finish_run(run_id, RunStatus.COMPLETED, summary["total_rows_transferred"], statistics=summary)
        click.echo(f"✓ Transfer completed: {summary['tables_successful']} table(s), "
                   f"{summary['total_rows_transferred']} rows")
        for table in summary["tables"]:
            click.echo(f"  {table['table_name']} -> {table['target_table']}: {table['rows_transferred']} rows")
    except TransferError as e:
        if run_id:
            status = RunStatus.CANCELLED if all(
                t["status"] != RunStatus.FAILED.value for t in e.summary["tables"]
            ) else RunStatus.FAILED
            store.finish_run(run_id, status, e.rows_transferred, str(e), statistics=e.summary)
        click.echo(f"✗ Transfer failed: {e}", err=True)
        click.echo(f"  Rows transferred before the failure: {e.rows_transferred}", err=True)
        sys.exit(1)
    except (TransferException, ValueError) as e:
        if run_id:
            store.finish_run(run_id, RunStatus.FAILED, getattr(e, 'rows_transferred', 0), str(e))
        click.echo(f"✗ Transfer failed: {e}", err=True)
        sys.exit(1)
    finally:
        _close_all(connectors)
        if log_handler is not None:
            logging.getLogger().removeHandler(log_handler)
            log_handler.close()


@cli.command()
@_table_options
def mapping(source_url, target_url, settings_file, name_case, tables, query, target_table):
    """Show how source tables map onto TARGET_URL."""
    connectors: List[Any] = []
    try:
        settings = load_settings(settings_file, overrides={"name_case": name_case})
        coordinator, connectors = build_coordinator(source_url, target_url, tables, query, target_table, settings)
        for pipe in coordinator.pipes:
            resolver = coordinator.resolver(pipe.target_container)
            pipe.mapping = resolver.create_mapping(pipe.source, pipe.target_name)
            resolver.resolve(pipe.mapping)
        ready = True
        for container_mapping in coordinator.mappings:
            click.echo(f"\n{container_mapping.source.name} -> {container_mapping.display_name}")
            for am in container_mapping.attribute_mappings if container_mapping.is_resolved else []:
                target = f"{am.target_name} {am.target_type or ''}".rstrip() if am.target_name else "-"
                click.echo(f"  {am.source_name} ({am.source_type}) -> {target} [{am.mapping_type.value}]")
            report = container_mapping.readiness()
            ready = ready and report.ready
            click.echo(f"  {'✓' if report.ready else '✗'} {report}")
        if not ready:
            sys.exit(1)
    except (TransferException, ValueError) as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)
    finally:
        _close_all(connectors)


@cli.command()
@_table_options
def ddl(source_url, target_url, settings_file, name_case, tables, query, target_table):
    """Print the DDL a transfer would execute."""
    connectors: List[Any] = []
    try:
        settings = load_settings(settings_file, overrides={"name_case": name_case})
        coordinator, connectors = build_coordinator(source_url, target_url, tables, query, target_table, settings)
        actions = coordinator.plan_ddl()
        if not actions:
            click.echo("-- No schema changes needed")
        for action in actions:
            click.echo(f"-- {action.title}")
            click.echo(f"{action.sql};")
    except (TransferException, ValueError) as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)
    finally:
        _close_all(connectors)


@cli.command()
@_table_options
@click.option('--rows', default=10, type=int, help='Rows to preview')
@click.option('--json', 'as_json', is_flag=True, help='Print rows as JSON')
def preview(source_url, target_url, settings_file, name_case, tables, query, target_table, rows, as_json):
    """Show source rows converted for the target, without writing them."""
    connectors: List[Any] = []
    try:
        settings = load_settings(settings_file, overrides={"name_case": name_case})
        coordinator, connectors = build_coordinator(source_url, target_url, tables, query, target_table, settings)
        coordinator.resolve()
        for pipe in coordinator.pipes:
            consumer = coordinator.preview(pipe, max_rows=rows)
            if as_json:
                click.echo(json.dumps({pipe.name: consumer.to_dicts()}, default=str))
                continue
            click.echo(f"\n{pipe.name} -> {pipe.mapping.target_name if pipe.mapping else pipe.name}")
            click.echo("  " + " | ".join(consumer.column_names))
            for row in consumer.rows:
                click.echo("  " + " | ".join("NULL" if v is None else str(v) for v in row))
    except (TransferException, ValueError) as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)
    finally:
        _close_all(connectors)


@cli.command()
@click.argument('task_name')
@click.option('--limit', default=10, type=int, help='Runs to show')
@click.pass_context
def runs(ctx, task_name, limit):
    """Show the run history of a saved task."""
    store, _ = _open_store(ctx.obj.get('store_url'))
    history = store.list_runs(task_name, limit=limit)
    if not history:
        click.echo(f"No runs found for {task_name}.")
        return
    for run in history:
        click.echo(f"  {run['started_at']}  {run['status']:<10} {run['rows_transferred']} rows"
                   + (f"  {run['error_message']}" if run['error_message'] else ""))


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
