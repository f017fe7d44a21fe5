"""Transfer settings: defaults, loading from dicts, JSON files and the environment."""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from dbtransfer.error_policy import make_error_policy
from dbtransfer.exceptions import ConfigurationError
from dbtransfer.models import ExtractType, NameCase

logger = logging.getLogger(__name__)

ENV_PREFIX = "DBTRANSFER_"
DEFAULT_STORE_URL = "sqlite:///dbtransfer.db"

INSERT_METHODS = ("insert", "ignore", "replace")

# Persisted option names (camelCase) -> attribute names
_OPTION_ALIASES = {
    "extractType": "extract_type",
    "segmentSize": "segment_size",
    "fetchSize": "fetch_size",
    "openNewConnections": "open_new_connections",
    "queryRowCount": "query_row_count",
    "selectedRowsOnly": "selected_rows_only",
    "selectedColumnsOnly": "selected_columns_only",
    "useTransactions": "use_transactions",
    "commitAfterRows": "commit_after_rows",
    "truncateBeforeLoad": "truncate_before_load",
    "openTableOnFinish": "open_table_on_finish",
    "onDuplicateKeyInsertMethod": "on_duplicate_key_insert_method",
    "useBatchInsert": "use_batch_insert",
    "maxJobs": "max_jobs",
    "errorPolicy": "error_policy",
    "retryDelay": "retry_delay",
    "nameCase": "name_case",
}

_BOOL_OPTIONS = (
    "open_new_connections", "query_row_count", "selected_rows_only", "selected_columns_only",
    "use_transactions", "truncate_before_load", "open_table_on_finish", "use_batch_insert",
)
_INT_OPTIONS = ("segment_size", "fetch_size", "commit_after_rows", "max_jobs")
_FLOAT_OPTIONS = ("retry_delay",)


def _to_bool(option: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    raise ConfigurationError(f"Invalid boolean for {option}: {value!r}", option=option)


class TransferSettings:
    """Options consumed by producers, consumers and the coordinator."""

    def __init__(
        self,
        extract_type: str = ExtractType.SINGLE_QUERY.value,
        segment_size: int = 100000,
        fetch_size: int = 10000,
        open_new_connections: bool = True,
        query_row_count: bool = True,
        selected_rows_only: bool = False,
        selected_columns_only: bool = False,
        use_transactions: bool = True,
        commit_after_rows: int = 10000,
        truncate_before_load: bool = False,
        open_table_on_finish: bool = False,
        on_duplicate_key_insert_method: str = "insert",
        use_batch_insert: bool = True,
        max_jobs: int = 1,
        error_policy: str = "stop",
        retry_delay: float = 0.0,
        name_case: str = NameCase.DEFAULT.value
    ):
        self.extract_type = extract_type
        self.segment_size = segment_size
        self.fetch_size = fetch_size
        self.open_new_connections = open_new_connections
        self.query_row_count = query_row_count
        self.selected_rows_only = selected_rows_only
        self.selected_columns_only = selected_columns_only
        self.use_transactions = use_transactions
        self.commit_after_rows = commit_after_rows
        self.truncate_before_load = truncate_before_load
        self.open_table_on_finish = open_table_on_finish
        self.on_duplicate_key_insert_method = on_duplicate_key_insert_method
        self.use_batch_insert = use_batch_insert
        self.max_jobs = max_jobs
        self.error_policy = error_policy
        self.retry_delay = retry_delay
        self.name_case = name_case

    @property
    def segmented(self) -> bool:
        return self.extract_type == ExtractType.SEGMENTED.value

    def validate(self) -> "TransferSettings":
        """Check option values.

        Raises:
            ConfigurationError: Naming the first invalid option
        """
        if self.extract_type not in [e.value for e in ExtractType]:
            raise ConfigurationError(f"Unknown extract type: {self.extract_type}", option="extract_type")
        for option in _INT_OPTIONS:
            value = getattr(self, option)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ConfigurationError(f"{option} must be a positive integer, got {value!r}", option=option)
        if self.retry_delay < 0:
            raise ConfigurationError("retry_delay must not be negative", option="retry_delay")
        if self.on_duplicate_key_insert_method not in INSERT_METHODS:
            raise ConfigurationError(
                f"Unknown insert method: {self.on_duplicate_key_insert_method}",
                option="on_duplicate_key_insert_method"
            )
        if self.name_case not in [n.value for n in NameCase]:
            raise ConfigurationError(f"Unknown name case: {self.name_case}", option="name_case")
        if isinstance(self.error_policy, str):
            make_error_policy(self.error_policy)
        return self

    def copy(self, **changes) -> "TransferSettings":
        data = self.to_dict()
        data.update(changes)
        return TransferSettings(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to dictionary (snake_case keys)."""
        return {
            "extract_type": self.extract_type,
            "segment_size": self.segment_size,
            "fetch_size": self.fetch_size,
            "open_new_connections": self.open_new_connections,
            "query_row_count": self.query_row_count,
            "selected_rows_only": self.selected_rows_only,
            "selected_columns_only": self.selected_columns_only,
            "use_transactions": self.use_transactions,
            "commit_after_rows": self.commit_after_rows,
            "truncate_before_load": self.truncate_before_load,
            "open_table_on_finish": self.open_table_on_finish,
            "on_duplicate_key_insert_method": self.on_duplicate_key_insert_method,
            "use_batch_insert": self.use_batch_insert,
            "max_jobs": self.max_jobs,
            "error_policy": self.error_policy,
            "retry_delay": self.retry_delay,
            "name_case": self.name_case,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], base: Optional["TransferSettings"] = None) -> "TransferSettings":
        """Build settings from a dict with snake_case or camelCase keys.

        Values given as strings (environment, CLI) are converted to the option's type.

        Raises:
            ConfigurationError: For unknown options or unconvertible values
        """
        values = base.to_dict() if base is not None else cls().to_dict()
        for key, value in (data or {}).items():
            option = _OPTION_ALIASES.get(key, key)
            if option not in values:
                raise ConfigurationError(f"Unknown transfer option: {key}", option=key)
            if value is None:
                continue
            values[option] = cls._convert(option, value)
        return cls(**values)

    @staticmethod
    def _convert(option: str, value: Any) -> Any:
        if option in _BOOL_OPTIONS:
            return _to_bool(option, value)
        try:
            if option in _INT_OPTIONS:
                return int(value)
            if option in _FLOAT_OPTIONS:
                return float(value)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Invalid value for {option}: {value!r}", option=option) from None
        if option == "error_policy":
            return value if callable(value) else str(value).strip()
        return str(value).strip().lower()

    @classmethod
    def from_file(cls, path: str, base: Optional["TransferSettings"] = None) -> "TransferSettings":
        """Load settings from a JSON file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read settings file {path}: {e}", option="settings") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Settings file {path} must contain a JSON object", option="settings")
        return cls.from_dict(data, base=base)

    @classmethod
    def from_env(cls, base: Optional["TransferSettings"] = None, dotenv_path: Optional[str] = None) -> "TransferSettings":
        """Load ``DBTRANSFER_<OPTION>`` variables (a ``.env`` file is read first)."""
        load_dotenv(dotenv_path)
        data = {}
        for option in cls().to_dict():
            value = os.getenv(f"{ENV_PREFIX}{option.upper()}")
            if value is not None and value != "":
                data[option] = value
        if data:
            logger.debug(f"Transfer settings from environment: {sorted(data)}")
        return cls.from_dict(data, base=base)

    def __repr__(self) -> str:
        return f"TransferSettings({self.to_dict()!r})"


def get_store_url() -> str:
    """URL of the task store database."""
    load_dotenv()
    return os.getenv(f"{ENV_PREFIX}STORE_URL", DEFAULT_STORE_URL)
