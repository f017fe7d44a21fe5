"""End-to-end transfers between SQLite databases."""

import sqlite3

import pytest

from dbtransfer.config import TransferSettings
from dbtransfer.connectors import ExecutionContext
from dbtransfer.consumer import DatabaseTransferConsumer
from dbtransfer.coordinator import TransferCoordinator
from dbtransfer.exceptions import CommitError, ConfigurationError, TransferError
from dbtransfer.models import DataFilter, MappingType, RunStatus
from dbtransfer.producer import DatabaseTransferProducer

from tests.conftest import fetch_all, item_rows, run_script, table_names


def run_items(source, target, settings, **kwargs):
    coordinator = TransferCoordinator(settings, **kwargs)
    pipe = coordinator.add_pipe(source.get_table("items"), target_container=target.get_schema())
    return coordinator, pipe


class TestFullTransfer:
    """Source table copied into a newly created target table."""

    def test_creates_table_and_copies_rows_in_order(self, source, target, target_path, make_items, settings):
        make_items(250)
        coordinator, pipe = run_items(source, target, settings)

        summary = coordinator.run()

        assert summary["tables_successful"] == 1
        assert summary["total_rows_transferred"] == 250
        assert pipe.status == RunStatus.COMPLETED
        assert fetch_all(target_path, "SELECT id, name, price FROM items ORDER BY rowid") == item_rows(250)

    def test_commits_every_commit_after_rows(self, source, target, make_items, settings):
        make_items(250)
        coordinator, pipe = run_items(source, target, settings)

        coordinator.run()

        write = pipe.statistics["write"]
        assert write["commits"] == 3
        assert write["rows_committed"] == 250

    def test_created_table_has_primary_key(self, source, target, target_path, make_items, settings):
        make_items(5)
        coordinator, _ = run_items(source, target, settings)

        coordinator.run()

        ddl = fetch_all(target_path, "SELECT sql FROM sqlite_master WHERE name = 'items'")[0][0]
        assert "PRIMARY KEY (id)" in ddl

    def test_summary_reports_target_table(self, source, target, make_items, settings):
        make_items(3)
        coordinator, _ = run_items(source, target, settings)

        summary = coordinator.run()

        table = summary["tables"][0]
        assert table["table_name"] == "items"
        assert table["target_table"] == "items"
        assert table["status"] == "COMPLETED"
        assert table["rows_transferred"] == 3

    def test_empty_source_creates_empty_table(self, source, target, target_path, make_items, settings):
        make_items(0)
        coordinator, _ = run_items(source, target, settings)

        summary = coordinator.run()

        assert summary["total_rows_transferred"] == 0
        assert "items" in table_names(target_path)


class TestExistingTarget:

    def test_case_insensitive_column_binding(self, source, target, source_path, target_path, settings):
        run_script(source_path, "CREATE TABLE users (userid INTEGER, name TEXT);",
                   [(1, "ann"), (2, "bob")], "INSERT INTO users VALUES (?, ?)")
        run_script(target_path, 'CREATE TABLE users ("UserId" INTEGER, name TEXT);')
        coordinator = TransferCoordinator(settings)
        coordinator.add_pipe(source.get_table("users"), target_container=target.get_schema())

        coordinator.run()

        assert fetch_all(target_path, 'SELECT "UserId", name FROM users ORDER BY 1') == [(1, "ann"), (2, "bob")]

    def test_truncate_before_load_twice_leaves_no_duplicates(self, source, target, target_path, make_items):
        make_items(120)
        settings = TransferSettings(commit_after_rows=50, truncate_before_load=True)

        for _ in range(2):
            coordinator, _ = run_items(source, target, settings)
            coordinator.run()

        assert fetch_all(target_path, "SELECT COUNT(*) FROM items")[0][0] == 120

    def test_without_truncate_second_run_appends(self, source, target, target_path, source_path):
        run_script(source_path, "CREATE TABLE notes (body TEXT);", [("a",), ("b",)], "INSERT INTO notes VALUES (?)")
        settings = TransferSettings()

        for _ in range(2):
            coordinator = TransferCoordinator(settings)
            coordinator.add_pipe(source.get_table("notes"), target_container=target.get_schema())
            coordinator.run()

        assert fetch_all(target_path, "SELECT COUNT(*) FROM notes")[0][0] == 4

    def test_new_source_column_is_added(self, source, target, target_path, make_items, settings):
        make_items(2)
        run_script(target_path, "CREATE TABLE items (id INTEGER PRIMARY KEY, name TEXT);")
        coordinator, pipe = run_items(source, target, settings)

        coordinator.run()

        assert fetch_all(target_path, "SELECT id, name, price FROM items ORDER BY id") == item_rows(2)

    def test_replace_insert_method_upserts(self, source, target, source_path, target_path):
        run_script(source_path, "CREATE TABLE kv (k INTEGER PRIMARY KEY, v TEXT);",
                   [(1, "new"), (2, "b")], "INSERT INTO kv VALUES (?, ?)")
        run_script(target_path, "CREATE TABLE kv (k INTEGER PRIMARY KEY, v TEXT);",
                   [(1, "old")], "INSERT INTO kv VALUES (?, ?)")
        coordinator = TransferCoordinator(TransferSettings(on_duplicate_key_insert_method="replace"))
        coordinator.add_pipe(source.get_table("kv"), target_container=target.get_schema())

        coordinator.run()

        assert fetch_all(target_path, "SELECT k, v FROM kv ORDER BY k") == [(1, "new"), (2, "b")]

    def test_ignore_insert_method_keeps_existing_rows(self, source, target, source_path, target_path):
        run_script(source_path, "CREATE TABLE kv (k INTEGER PRIMARY KEY, v TEXT);",
                   [(1, "new"), (2, "b")], "INSERT INTO kv VALUES (?, ?)")
        run_script(target_path, "CREATE TABLE kv (k INTEGER PRIMARY KEY, v TEXT);",
                   [(1, "old")], "INSERT INTO kv VALUES (?, ?)")
        coordinator = TransferCoordinator(TransferSettings(on_duplicate_key_insert_method="ignore"))
        coordinator.add_pipe(source.get_table("kv"), target_container=target.get_schema())

        coordinator.run()

        assert fetch_all(target_path, "SELECT k, v FROM kv ORDER BY k") == [(1, "old"), (2, "b")]


class TestBatchFailures:
    """A NOT NULL violation in the batch holding row 150."""

    @pytest.fixture
    def failing(self, source, target, target_path, make_items):
        make_items(250, null_at=150)
        run_script(target_path, "CREATE TABLE items (id INTEGER, name TEXT NOT NULL, price REAL);")

    def test_stop_keeps_committed_rows(self, failing, source, target, target_path, settings):
        coordinator, pipe = run_items(source, target, settings)

        with pytest.raises(TransferError) as exc_info:
            coordinator.run()

        assert exc_info.value.rows_transferred == 100
        assert exc_info.value.table_name == "items"
        assert pipe.status == RunStatus.FAILED
        assert fetch_all(target_path, "SELECT COUNT(*) FROM items")[0][0] == 100

    def test_stop_without_raising_returns_summary(self, failing, source, target, settings):
        coordinator, _ = run_items(source, target, settings)

        summary = coordinator.run(raise_on_error=False)

        assert summary["tables_failed"] == 1
        assert summary["total_rows_transferred"] == 100
        assert "error" in summary["tables"][0]

    def test_ignore_drops_failed_batch_and_continues(self, failing, source, target, target_path):
        settings = TransferSettings(commit_after_rows=100, error_policy="ignore")
        coordinator, pipe = run_items(source, target, settings)

        coordinator.run()

        assert pipe.rows_transferred == 150
        assert pipe.statistics["write"]["rows_ignored"] == 100
        ids = [r[0] for r in fetch_all(target_path, "SELECT id FROM items ORDER BY id")]
        assert ids == list(range(1, 101)) + list(range(201, 251))

    def test_retry_gives_up_after_configured_attempts(self, failing, source, target, target_path):
        settings = TransferSettings(commit_after_rows=100, error_policy="retry-2")
        coordinator, pipe = run_items(source, target, settings)

        with pytest.raises(TransferError):
            coordinator.run()

        assert pipe.statistics["write"]["retries"] == 2
        assert fetch_all(target_path, "SELECT COUNT(*) FROM items")[0][0] == 100

    def test_custom_policy_sees_attempt_numbers(self, failing, source, target):
        attempts = []

        def policy(error):
            attempts.append(error.attempt)
            return "retry" if error.attempt < 3 else "ignore"

        coordinator, pipe = run_items(source, target, TransferSettings(commit_after_rows=100), error_policy=policy)

        coordinator.run()

        assert attempts == [1, 2, 3]
        assert pipe.rows_transferred == 150

    def test_without_transactions_rows_before_failure_stay(self, failing, source, target, target_path):
        settings = TransferSettings(commit_after_rows=100, use_transactions=False, use_batch_insert=False)
        coordinator, pipe = run_items(source, target, settings)

        with pytest.raises(TransferError) as exc_info:
            coordinator.run()

        assert exc_info.value.rows_transferred == 149
        assert fetch_all(target_path, "SELECT COUNT(*) FROM items")[0][0] == 149


class TestCommitFailures:

    def test_failed_commit_fails_the_table(self, source, target, target_path, make_items, settings, monkeypatch):
        make_items(50)
        coordinator, pipe = run_items(source, target, settings)
        coordinator.prepare()
        commit = ExecutionContext.commit

        def commit_target_fails(context):
            if context.connector is target:
                raise sqlite3.OperationalError("disk I/O error")
            commit(context)

        monkeypatch.setattr(ExecutionContext, "commit", commit_target_fails)

        summary = coordinator.run(raise_on_error=False)

        assert pipe.status == RunStatus.FAILED
        assert isinstance(pipe.error, CommitError)
        assert summary["tables_failed"] == 1
        assert summary["total_rows_transferred"] == 0
        assert fetch_all(target_path, "SELECT COUNT(*) FROM items")[0][0] == 0

    def test_later_commit_recovers(self, source, target, target_path, make_items, settings, monkeypatch):
        make_items(250)
        coordinator, pipe = run_items(source, target, settings)
        coordinator.prepare()
        commit = ExecutionContext.commit
        failures = []

        def first_target_commit_fails(context):
            if context.connector is target and not failures:
                failures.append(1)
                raise sqlite3.OperationalError("database is locked")
            commit(context)

        monkeypatch.setattr(ExecutionContext, "commit", first_target_commit_fails)

        coordinator.run()

        assert pipe.status == RunStatus.COMPLETED
        assert pipe.rows_transferred == 250
        assert fetch_all(target_path, "SELECT COUNT(*) FROM items")[0][0] == 250


class TestTransformFailures:

    def test_unconvertible_value_stops_transfer(self, source, target, source_path, target_path):
        run_script(source_path, "CREATE TABLE m (n TEXT);", [("1",), ("two",), ("3",)], "INSERT INTO m VALUES (?)")
        run_script(target_path, "CREATE TABLE m (n INTEGER);")
        coordinator = TransferCoordinator(TransferSettings())
        pipe = coordinator.add_pipe(source.get_table("m"), target_container=target.get_schema())

        with pytest.raises(TransferError) as exc_info:
            coordinator.run()

        cause = exc_info.value.__cause__
        assert cause.row_number == 2
        assert cause.column == "n"
        assert pipe.rows_transferred == 0

    def test_ignore_drops_in_flight_batch_with_failing_row(self, source, target, source_path, target_path):
        run_script(source_path, "CREATE TABLE m (n TEXT);", [("1",), ("two",), ("3",)], "INSERT INTO m VALUES (?)")
        run_script(target_path, "CREATE TABLE m (n INTEGER);")
        coordinator = TransferCoordinator(TransferSettings(error_policy="ignore"))
        pipe = coordinator.add_pipe(source.get_table("m"), target_container=target.get_schema())

        coordinator.run()

        assert fetch_all(target_path, "SELECT n FROM m") == [(3,)]
        assert pipe.statistics["write"]["rows_ignored"] == 2


class TestSegmentedTransfer:

    def test_reads_all_segments(self, source, target, target_path, make_items):
        make_items(250)
        settings = TransferSettings(extract_type="segmented", segment_size=100, commit_after_rows=1000)
        coordinator, pipe = run_items(source, target, settings)

        coordinator.run()

        assert pipe.statistics["read"]["segments"] == 3
        assert pipe.statistics["read"]["rows_fetched"] == 250
        assert fetch_all(target_path, "SELECT id FROM items ORDER BY rowid") == [(i,) for i in range(1, 251)]

    def test_exact_multiple_of_segment_size(self, source, target, target_path, make_items):
        make_items(200)
        settings = TransferSettings(extract_type="segmented", segment_size=100)
        coordinator, pipe = run_items(source, target, settings)

        coordinator.run()

        assert pipe.rows_transferred == 200
        assert pipe.statistics["read"]["segments"] == 3

    def test_truncates_only_before_first_segment(self, source, target, target_path, make_items):
        make_items(250)
        run_script(target_path, "CREATE TABLE items (id INTEGER, name TEXT, price REAL);",
                   [(0, "stale", 0.0)], "INSERT INTO items VALUES (?, ?, ?)")
        settings = TransferSettings(extract_type="segmented", segment_size=100, truncate_before_load=True)
        coordinator, _ = run_items(source, target, settings)

        coordinator.run()

        assert fetch_all(target_path, "SELECT COUNT(*), MIN(id) FROM items")[0] == (250, 1)


class TestCancellation:

    def test_cancel_before_run(self, source, target, make_items, settings):
        make_items(10)
        coordinator, pipe = run_items(source, target, settings)
        coordinator.cancel()

        with pytest.raises(TransferError):
            coordinator.run()

        assert pipe.status == RunStatus.CANCELLED

    def test_cancel_between_segments_keeps_committed_segment(self, source, target, target_path, make_items):
        make_items(250)
        settings = TransferSettings(extract_type="segmented", segment_size=100, commit_after_rows=100)
        coordinator, pipe = run_items(source, target, settings)
        coordinator.post_write_hook = lambda table: coordinator.cancel()

        summary = coordinator.run(raise_on_error=False)

        assert pipe.status == RunStatus.CANCELLED
        assert summary["tables"][0]["status"] == "CANCELLED"
        assert pipe.rows_transferred == 100
        assert fetch_all(target_path, "SELECT COUNT(*) FROM items")[0][0] == 100


class TestSelection:

    def test_selected_rows_and_columns(self, source, target, target_path, make_items):
        make_items(20)
        settings = TransferSettings(selected_rows_only=True, selected_columns_only=True)
        coordinator = TransferCoordinator(settings)
        coordinator.add_pipe(
            source.get_table("items"),
            target_container=target.get_schema(),
            data_filter=DataFilter(columns=["id", "name"], where="id > ?", parameters=[15])
        )

        coordinator.run()

        assert fetch_all(target_path, "SELECT id, name FROM items ORDER BY id") == [
            (i, f"item {i}") for i in range(16, 21)
        ]

    def test_filter_ignored_unless_selected(self, source, target, target_path, make_items):
        make_items(20)
        coordinator = TransferCoordinator(TransferSettings())
        coordinator.add_pipe(
            source.get_table("items"),
            target_container=target.get_schema(),
            data_filter=DataFilter(where="id > ?", parameters=[15])
        )

        coordinator.run()

        assert fetch_all(target_path, "SELECT COUNT(*) FROM items")[0][0] == 20

    def test_query_source(self, source, target, target_path, make_items):
        make_items(20)
        coordinator = TransferCoordinator(TransferSettings())
        coordinator.add_pipe(
            source.query("SELECT id, name FROM items WHERE id <= 5 ORDER BY id", name="subset"),
            target_container=target.get_schema()
        )

        coordinator.run()

        assert fetch_all(target_path, "SELECT id, name FROM subset ORDER BY id") == [
            (i, f"item {i}") for i in range(1, 6)
        ]
        ddl = fetch_all(target_path, "SELECT sql FROM sqlite_master WHERE name = 'subset'")[0][0]
        assert "PRIMARY KEY" not in ddl


class TestMultiplePipes:

    def test_same_new_table_is_created_once(self, source, target, source_path, target_path, make_items):
        make_items(10, table="a_items")
        make_items(5, table="b_items")
        # Both sources use ids 1..5; duplicates of the second load are skipped
        coordinator = TransferCoordinator(TransferSettings(on_duplicate_key_insert_method="ignore"))
        schema = target.get_schema()
        coordinator.add_pipe(source.get_table("a_items"), target_container=schema, target_name="combined")
        coordinator.add_pipe(source.get_table("b_items"), target_container=schema, target_name="combined")

        assert len(coordinator.plan_ddl()) == 1
        assert "combined" not in table_names(target_path)

        summary = coordinator.run()

        assert summary["tables_successful"] == 2
        assert fetch_all(target_path, "SELECT COUNT(*) FROM combined")[0][0] == 10
        assert [p.mapping.display_name for p in coordinator.pipes] == ["combined", "combined"]

    def test_skipped_pipe_is_left_out(self, source, target, target_path, make_items, settings):
        make_items(10)
        make_items(4, table="other")
        coordinator = TransferCoordinator(settings)
        schema = target.get_schema()
        coordinator.add_pipe(source.get_table("items"), target_container=schema)
        skipped = coordinator.add_pipe(source.get_table("other"), target_container=schema)
        coordinator.resolve()
        coordinator.resolver(schema).set_mapping_type(skipped.mapping, MappingType.SKIP)

        summary = coordinator.run()

        assert skipped.status == RunStatus.SKIPPED
        assert summary["tables_successful"] == 1
        assert summary["tables_skipped"] == 1
        assert summary["tables_failed"] == 0
        assert summary["total_rows_transferred"] == 10
        assert table_names(target_path) == ["items"]

    def test_parallel_pipes(self, source, target, target_path, make_items):
        for name in ("p1", "p2", "p3"):
            make_items(60, table=name)
        coordinator = TransferCoordinator(TransferSettings(max_jobs=3, use_transactions=False))
        schema = target.get_schema()
        for name in ("p1", "p2", "p3"):
            coordinator.add_pipe(source.get_table(name), target_container=schema)

        summary = coordinator.run()

        assert summary["tables_successful"] == 3
        assert summary["total_rows_transferred"] == 180
        for name in ("p1", "p2", "p3"):
            assert fetch_all(target_path, f"SELECT COUNT(*) FROM {name}")[0][0] == 60

    def test_finish_hook_called_per_table(self, source, target, make_items):
        make_items(3, table="f1")
        make_items(3, table="f2")
        finished = []
        coordinator = TransferCoordinator(TransferSettings(open_table_on_finish=True), on_finish=finished.append)
        schema = target.get_schema()
        coordinator.add_pipe(source.get_table("f1"), target_container=schema)
        coordinator.add_pipe(source.get_table("f2"), target_container=schema)

        coordinator.run()

        assert sorted(t.name for t in finished) == ["f1", "f2"]


class TestHeadlessTransfer:
    """Producer and consumer wired directly, without mapping."""

    def test_consumer_maps_columns_by_name(self, source, target, target_path, make_items):
        make_items(30)
        run_script(target_path, "CREATE TABLE items (price REAL, id INTEGER, name TEXT);")
        settings = TransferSettings(commit_after_rows=10)
        producer = DatabaseTransferProducer(source.get_table("items"), settings)
        consumer = DatabaseTransferConsumer(settings, target=target.get_table("items"))
        try:
            statistics = producer.transfer(consumer)
            consumer.finish_transfer()
        finally:
            consumer.close()

        assert statistics.rows_fetched == 30
        assert consumer.rows_transferred == 30
        assert fetch_all(target_path, "SELECT id, name, price FROM items ORDER BY id") == item_rows(30)

    def test_consumer_requires_target(self):
        with pytest.raises(ConfigurationError):
            DatabaseTransferConsumer(TransferSettings())

    def test_close_rolls_back_uncommitted_rows(self, source, target, target_path, make_items):
        make_items(5)
        run_script(target_path, "CREATE TABLE items (id INTEGER, name TEXT, price REAL);")
        settings = TransferSettings(commit_after_rows=1000)
        consumer = DatabaseTransferConsumer(settings, target=target.get_table("items"))
        table = source.get_table("items")
        table.read_data(source.default_context(), _RowsUntilFlush(consumer))
        consumer.close()

        assert consumer.statistics.rows_inserted == 5
        assert consumer.rows_transferred == 0
        assert fetch_all(target_path, "SELECT COUNT(*) FROM items")[0][0] == 0


class _RowsUntilFlush:
    """Receiver that flushes the consumer's batch but never commits it."""

    def __init__(self, consumer):
        self.consumer = consumer

    def fetch_start(self, columns, offset, max_rows):
        self.consumer.fetch_start(columns, offset, max_rows)

    def fetch_row(self, row):
        self.consumer.fetch_row(row)

    def fetch_end(self):
        self.consumer._flush()


class TestPreview:

    def test_preview_converts_without_writing(self, source, target, target_path, make_items):
        make_items(20)
        coordinator, pipe = run_items(source, target, TransferSettings())

        consumer = coordinator.preview(pipe, max_rows=5)

        assert consumer.column_names == ["id", "name", "price"]
        assert consumer.rows == [list(r) for r in item_rows(5)]
        assert consumer.to_dicts()[0] == {"id": 1, "name": "item 1", "price": 1.5}
        assert "items" not in table_names(target_path)
