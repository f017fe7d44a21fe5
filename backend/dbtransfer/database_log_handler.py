"""Logging handler storing transfer run logs in the task store."""

import json
import logging
import traceback
from datetime import datetime, timezone
from typing import Optional
import threading
from queue import Empty, Queue

from dbtransfer.database.models_db import TransferLogModel

_STANDARD_ATTRIBUTES = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'message', 'pathname', 'process', 'processName', 'relativeCreated',
    'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info', 'taskName',
    'asctime',
}


class TransferLogHandler(logging.Handler):
    """Logging handler that writes records of a run to ``transfer_logs``.

    Records are queued and written by a background worker so a slow store never
    slows the transfer down. A full queue drops the record.

    Args:
        session_factory: Task store session factory
        run_id: Run the records belong to
        level: Handler level
    """

    def __init__(self, session_factory=None, run_id: Optional[str] = None, level=logging.NOTSET):
        super().__init__(level)
        if session_factory is None:
            from dbtransfer.database.session import SessionLocal
            session_factory = SessionLocal
        self.session_factory = session_factory
        self.run_id = run_id
        self.log_queue = Queue(maxsize=1000)  # Buffer up to 1000 logs
        self.worker_thread = None
        self._start_worker()

    def _start_worker(self):
        """Start background worker thread to process log queue."""
        if self.worker_thread is None or not self.worker_thread.is_alive():
            self.worker_thread = threading.Thread(target=self._process_queue, daemon=True)
            self.worker_thread.start()

    def emit(self, record: logging.LogRecord):
        """Queue a log record for the store."""
        try:
            # Don't block if queue is full
            if not self.log_queue.full():
                self.log_queue.put_nowait(record)
        except Exception:
            # A failing log handler must not fail the transfer
            self.handleError(record)

    def _process_queue(self):
        """Background worker writing queued records."""
        while True:
            try:
                record = self.log_queue.get(timeout=1.0)
            except Empty:
                continue
            try:
                self._store(record)
            finally:
                self.log_queue.task_done()

    def _store(self, record: logging.LogRecord) -> None:
        db = self.session_factory()
        try:
            db.add(TransferLogModel(
                run_id=getattr(record, 'run_id', None) or self.run_id,
                level=record.levelname,
                logger=record.name,
                message=self.format(record),
                module=record.module,
                function=record.funcName,
                line=record.lineno,
                timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc),
                extra=self._extract_extra(record)
            ))
            db.commit()
        except Exception:
            db.rollback()
            # Don't log store errors from the log handler itself
            self.handleError(record)
        finally:
            db.close()

    def flush(self):
        """Block until every queued record has been written."""
        self.log_queue.join()

    def close(self):
        self.flush()
        super().close()

    def _extract_extra(self, record: logging.LogRecord) -> Optional[dict]:
        """Extract extra information from log record."""
        extra = {}

        if record.exc_info:
            extra['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': traceback.format_exception(*record.exc_info)
            }

        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRIBUTES or key == 'run_id':
                continue
            try:
                # Only include JSON-serializable values
                json.dumps(value)
                extra[key] = value
            except (TypeError, ValueError):
                extra[key] = str(value)

        return extra if extra else None
