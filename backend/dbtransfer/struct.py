"""Abstract interfaces for transfer sources and targets.

A transfer reads from a ``DataContainer`` and writes into a ``DataManipulator``. Target
schemas are ``EntityContainer`` objects that can look up, list and create entities.
Concrete implementations live in ``dbtransfer.connectors``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from dbtransfer.models import Attribute, DataFilter, TransferStatistics


class DataReceiver(ABC):
    """Receives rows pushed by a data container read.

    ``fetch_start`` is called once per read with the attributes of the actual result set,
    then ``fetch_row`` once per row in source order, then ``fetch_end``.
    """

    @abstractmethod
    def fetch_start(self, columns: List[Attribute], offset: int, max_rows: int) -> None:
        pass

    @abstractmethod
    def fetch_row(self, row: Sequence[Any]) -> None:
        pass

    @abstractmethod
    def fetch_end(self) -> None:
        pass


class BatchHandle(ABC):
    """Buffered insert handle opened on a data manipulator."""

    @abstractmethod
    def add(self, values: Sequence[Any]) -> None:
        """Append one row of target values to the pending batch."""
        pass

    @abstractmethod
    def execute(self) -> int:
        """Write all pending rows.

        On failure the pending rows are kept so the same batch can be retried, and the
        target is left as it was before the call.

        Returns:
            Number of rows written
        """
        pass

    @abstractmethod
    def clear(self) -> None:
        """Drop all pending rows."""
        pass

    @property
    @abstractmethod
    def pending(self) -> int:
        pass

    def close(self) -> None:
        self.clear()


class DataContainer(ABC):
    """Read-only source of rows with typed attributes."""

    # Attribute names are meaningful (not just positional)
    has_name_metadata = True
    # Structured entity with its own identifier columns
    is_entity = False
    supports_row_count = True

    def __init__(self, name: str, connector=None):
        self.name = name
        self.connector = connector

    @property
    def full_name(self) -> str:
        return self.name

    @abstractmethod
    def attributes(self) -> List[Attribute]:
        pass

    def identifier_attributes(self) -> List[Attribute]:
        """Attributes forming the best unique identifier (primary key) of the source."""
        return []

    def count_rows(self, context, data_filter: Optional[DataFilter] = None) -> int:
        raise NotImplementedError(f"{type(self).__name__} does not support row count")

    @abstractmethod
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
        """Stream rows into ``receiver``.

        Args:
            context: Execution context of the source connector
            receiver: Row receiver
            data_filter: Optional column/row restriction
            offset: Rows to skip
            limit: Maximum rows to read (0 for all)
            fetch_size: Driver-level fetch buffer
            monitor: Progress monitor polled once per fetched chunk

        Returns:
            Statistics of this read
        """
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.full_name!r})"


class DataManipulator(ABC):
    """Writable target supporting batched insert and optional truncate."""

    supports_truncate = False

    def __init__(self, name: str, connector=None):
        self.name = name
        self.connector = connector

    @property
    def full_name(self) -> str:
        return self.name

    @abstractmethod
    def attributes(self) -> List[Attribute]:
        pass

    def identifier_attributes(self) -> List[Attribute]:
        return []

    def get_attribute(self, name: str) -> Optional[Attribute]:
        """Find an attribute by name, preferring an exact-case match."""
        attributes = self.attributes()
        for attribute in attributes:
            if attribute.name == name:
                return attribute
        lowered = name.lower()
        for attribute in attributes:
            if attribute.name.lower() == lowered:
                return attribute
        return None

    def truncate_data(self, context) -> None:
        raise NotImplementedError(f"{type(self).__name__} does not support truncate")

    @abstractmethod
    def insert_data(
        self,
        context,
        attributes: List[Attribute],
        key_columns: Optional[List[Attribute]] = None,
        options: Optional[Dict[str, Any]] = None
    ) -> BatchHandle:
        """Open a batched insert over ``attributes`` (in value order)."""
        pass


class EntityContainer(ABC):
    """A target schema: holds entities and can create new ones."""

    def __init__(self, name: Optional[str], connector=None):
        self.name = name
        self.connector = connector

    @property
    @abstractmethod
    def dialect(self):
        pass

    @abstractmethod
    def get_entity(self, name: str) -> Optional[DataManipulator]:
        """Look up an entity by name (case-aware)."""
        pass

    @abstractmethod
    def list_entities(self) -> List[str]:
        pass

    def refresh(self) -> None:
        """Drop cached metadata so the next lookup reads the live schema."""
        pass

    def struct_editor(self):
        """Structural editor for schema changes, or None if only literal DDL is possible."""
        return None

    def qualified_name(self, entity_name: str) -> str:
        return self.dialect.qualified_name(self.name, entity_name)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"
