"""CSV files as transfer sources."""

from __future__ import annotations

import csv
import itertools
import logging
import os
import time
from typing import Any, Dict, List, Optional

from dbtransfer.exceptions import ConfigurationError
from dbtransfer.models import Attribute, DataFilter, TransferStatistics
from dbtransfer.struct import DataContainer, DataReceiver
from dbtransfer.value_handlers import infer_type

logger = logging.getLogger(__name__)


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


class CsvContainer(DataContainer):
    """A delimited text file read as a stream of rows.

    Without a header row the file has no name metadata and columns are called
    ``column_1`` .. ``column_N``; such a source is mapped onto an existing target by
    position.
    """

    def __init__(
        self,
        path: str,
        name: Optional[str] = None,
        header: bool = True,
        delimiter: str = ",",
        quotechar: str = '"',
        encoding: str = "utf-8",
        sample_rows: int = 1000
    ):
        super().__init__(name or os.path.splitext(os.path.basename(path))[0])
        self.path = path
        self.header = header
        self.has_name_metadata = header
        self.delimiter = delimiter
        self.quotechar = quotechar
        self.encoding = encoding
        self.sample_rows = sample_rows
        self._attributes: Optional[List[Attribute]] = None

    @property
    def full_name(self) -> str:
        return self.path

    def _open(self):
        return open(self.path, "r", encoding=self.encoding, newline="")

    def _reader(self, f):
        return csv.reader(f, delimiter=self.delimiter, quotechar=self.quotechar)

    def attributes(self) -> List[Attribute]:
        """Columns of the file, typed from the first ``sample_rows`` records."""
        if self._attributes is None:
            with self._open() as f:
                reader = self._reader(f)
                first = next(reader, None)
                if first is None:
                    self._attributes = []
                    return []
                if self.header:
                    names = [n.strip() for n in first]
                    sample = list(itertools.islice(reader, self.sample_rows))
                else:
                    names = [f"column_{i + 1}" for i in range(len(first))]
                    sample = [first] + list(itertools.islice(reader, self.sample_rows - 1))
            attributes = []
            for index, name in enumerate(names):
                kind, type_name = infer_type(row[index] for row in sample if index < len(row))
                attributes.append(Attribute(name=name, type_name=type_name, data_kind=kind, ordinal=index + 1))
            self._attributes = attributes
            logger.debug(f"Inferred {len(attributes)} columns from {self.path}")
        return list(self._attributes)

    def count_rows(self, context=None, data_filter: Optional[DataFilter] = None) -> int:
        with self._open() as f:
            count = sum(1 for _ in self._reader(f))
        return max(count - 1, 0) if self.header else count

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
        if data_filter is not None and data_filter.where:
            raise ConfigurationError("Row filters are not supported for CSV sources", option="where")
        attributes = self.attributes()
        indexes = list(range(len(attributes)))
        if data_filter is not None and data_filter.columns:
            by_name = {a.name: i for i, a in enumerate(attributes)}
            missing = [c for c in data_filter.columns if c not in by_name]
            if missing:
                raise ConfigurationError(f"Unknown CSV columns: {', '.join(missing)}", option="columns")
            indexes = [by_name[c] for c in data_filter.columns]
        columns = [attributes[i] for i in indexes]

        statistics = TransferStatistics()
        receiver.fetch_start(columns, offset, limit)
        with self._open() as f:
            reader = self._reader(f)
            if self.header:
                next(reader, None)
            rows = itertools.islice(reader, offset, offset + limit if limit else None)
            while True:
                if monitor is not None:
                    monitor.check_canceled()
                started = time.time()
                chunk = list(itertools.islice(rows, fetch_size))
                statistics.fetch_time += time.time() - started
                if not chunk:
                    break
                for record in chunk:
                    receiver.fetch_row([
                        (record[i] if record[i] != "" else None) if i < len(record) else None
                        for i in indexes
                    ])
                statistics.rows_fetched += len(chunk)
                if monitor is not None:
                    monitor.worked(len(chunk))
        receiver.fetch_end()
        statistics.finish()
        return statistics


class CsvFileConnector:
    """Source-only connector over a CSV file (or a directory of them)."""

    embedded = True
    requires_read_transactions = False

    def __init__(self, connection_config: Dict[str, Any]):
        self.config = dict(connection_config)
        if not self.config.get("database"):
            raise ValueError("Missing required connection parameters: database")
        self.path = self.config["database"]

    @property
    def name(self) -> str:
        return self.path

    def get_table(self, table: Optional[str] = None, schema: Optional[str] = None) -> CsvContainer:
        path = self.path
        if os.path.isdir(path):
            if not table:
                raise ConfigurationError(f"{path} is a directory; a file name is required", option="table")
            path = os.path.join(path, table if table.endswith(".csv") else f"{table}.csv")
        if not os.path.exists(path):
            raise ConfigurationError(f"CSV file not found: {path}", option="database")
        return CsvContainer(
            path,
            header=_flag(self.config.get("header", True)),
            delimiter=self.config.get("delimiter", ","),
            quotechar=self.config.get("quotechar", '"'),
            encoding=self.config.get("encoding", "utf-8"),
            sample_rows=int(self.config.get("sample_rows", 1000))
        )

    def test_connection(self) -> bool:
        return os.path.exists(self.path)

    def close(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"CsvFileConnector({self.path!r})"
