"""Custom exception classes for the data transfer engine."""

from __future__ import annotations


class TransferException(Exception):
    """Base exception for all data transfer errors."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message)
        self.details = kwargs


class ConfigurationError(TransferException):
    """Exception raised when transfer configuration is invalid or incomplete."""

    def __init__(self, message: str, option: str = None, **kwargs):
        super().__init__(message, **kwargs)
        self.option = option


class MappingError(TransferException):
    """Exception raised when a mapping is not ready for transfer."""

    def __init__(self, message: str, container: str = None, report=None, **kwargs):
        super().__init__(message, **kwargs)
        self.container = container
        self.report = report


class DDLError(TransferException):
    """Exception raised when target schema creation or alteration fails."""

    def __init__(self, message: str, actions=None, **kwargs):
        super().__init__(message, **kwargs)
        self.actions = list(actions or [])


class RowTransformError(TransferException):
    """Exception raised when a column value cannot be transformed for the target."""

    def __init__(self, message: str, row_number: int = 0, column: str = None, attempt: int = 1, rows_transferred: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.row_number = row_number
        self.column = column
        self.attempt = attempt
        self.rows_transferred = rows_transferred


class BatchInsertError(TransferException):
    """Exception raised when a batch of rows cannot be written to the target."""

    def __init__(self, message: str, batch_size: int = 0, attempt: int = 1, rows_transferred: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.batch_size = batch_size
        self.attempt = attempt
        self.rows_transferred = rows_transferred


class TransferCancelledError(TransferException):
    """Exception raised when the operator cancels a running transfer."""

    def __init__(self, message: str = "Transfer cancelled", rows_transferred: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.rows_transferred = rows_transferred


class TransferError(TransferException):
    """Exception raised when a data transfer is aborted."""

    def __init__(self, message: str, table_name: str = None, rows_transferred: int = 0, summary=None, **kwargs):
        super().__init__(message, **kwargs)
        self.table_name = table_name
        self.rows_transferred = rows_transferred
        self.summary = summary


class CommitError(TransferException):
    """Exception raised when a load finished but its target transaction could not be committed."""

    def __init__(self, message: str, rows_transferred: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.rows_transferred = rows_transferred
