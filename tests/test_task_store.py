"""Task store persistence and the run log handler."""

import logging

import pytest
from sqlalchemy.orm import sessionmaker

from dbtransfer.database import create_store_engine, init_store
from dbtransfer.database.models_db import TransferLogModel
from dbtransfer.database_log_handler import TransferLogHandler
from dbtransfer.models import RunStatus
from dbtransfer.task_store import TaskStore


@pytest.fixture
def session_factory(tmp_path):
    engine = create_store_engine(f"sqlite:///{tmp_path / 'store.db'}")
    init_store(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return TaskStore(session_factory)


class TestTasks:

    def test_save_and_load(self, store):
        created = store.save_task("nightly", settings={"fetch_size": 500})

        loaded = store.load_task("nightly")
        assert loaded["id"] == created["id"]
        assert loaded["settings"] == {"fetch_size": 500}
        assert loaded["mappings"] == {}

    def test_update_keeps_unchanged_parts(self, store):
        store.save_task("nightly", settings={"fetch_size": 500})
        store.save_task("nightly", mappings={"items": {"targetName": "items_copy"}})

        loaded = store.load_task("nightly")
        assert loaded["settings"] == {"fetch_size": 500}
        assert loaded["mappings"]["items"]["targetName"] == "items_copy"

    def test_missing_task(self, store):
        assert store.load_task("unknown") is None
        assert store.delete_task("unknown") is False

    def test_delete_removes_runs(self, store):
        store.save_task("nightly")
        store.start_run("nightly")

        assert store.delete_task("nightly") is True
        assert store.load_task("nightly") is None
        assert store.list_runs("nightly") == []


class TestRuns:

    def test_run_lifecycle(self, store):
        store.save_task("nightly")
        run_id = store.start_run("nightly")

        assert store.list_runs("nightly")[0]["status"] == "RUNNING"

        store.finish_run(run_id, RunStatus.COMPLETED, rows_transferred=42, statistics={"tables_processed": 1})

        run = store.list_runs("nightly")[0]
        assert run["id"] == run_id
        assert run["status"] == "COMPLETED"
        assert run["rows_transferred"] == 42
        assert run["statistics"] == {"tables_processed": 1}
        assert run["finished_at"] is not None

    def test_failed_run_keeps_error(self, store):
        store.save_task("nightly")
        run_id = store.start_run("nightly")
        store.finish_run(run_id, "FAILED", rows_transferred=100, error_message="NOT NULL constraint failed")

        run = store.list_runs("nightly")[0]
        assert run["status"] == "FAILED"
        assert run["error_message"] == "NOT NULL constraint failed"

    def test_start_run_needs_task(self, store):
        with pytest.raises(KeyError):
            store.start_run("unknown")

    def test_list_runs_limit(self, store):
        store.save_task("nightly")
        for _ in range(3):
            store.start_run("nightly")

        assert len(store.list_runs("nightly", limit=2)) == 2

    def test_finish_unknown_run_is_ignored(self, store):
        store.finish_run("no-such-run", RunStatus.COMPLETED)


class TestTransferLogHandler:

    def test_records_are_stored(self, session_factory):
        handler = TransferLogHandler(session_factory, run_id="run-1")
        test_logger = logging.getLogger("dbtransfer.tests.store")
        test_logger.setLevel(logging.INFO)
        test_logger.addHandler(handler)
        try:
            test_logger.info("Inserted 100 rows", extra={"table": "items"})
            test_logger.debug("not stored")
            handler.flush()
        finally:
            test_logger.removeHandler(handler)
            handler.close()

        db = session_factory()
        try:
            logs = db.query(TransferLogModel).all()
        finally:
            db.close()
        assert len(logs) == 1
        assert logs[0].run_id == "run-1"
        assert logs[0].level == "INFO"
        assert logs[0].message == "Inserted 100 rows"
        assert logs[0].extra == {"table": "items"}

    def test_record_run_id_wins(self, session_factory):
        handler = TransferLogHandler(session_factory, run_id="run-1")
        record = logging.LogRecord("dbtransfer", logging.ERROR, __file__, 1, "boom", None, None)
        record.run_id = "run-2"

        handler.emit(record)
        handler.close()

        db = session_factory()
        try:
            stored = db.query(TransferLogModel).one()
        finally:
            db.close()
        assert stored.run_id == "run-2"
        assert stored.extra is None
