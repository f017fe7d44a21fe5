"""Progress reporting and cooperative cancellation."""

from __future__ import annotations

import logging
import threading
from typing import Optional

from dbtransfer.exceptions import TransferCancelledError

logger = logging.getLogger(__name__)


class ProgressMonitor:
    """Progress monitor shared by a producer and its consumer.

    Cancellation is cooperative: workers poll ``is_canceled`` between segments and batch
    flushes. The monitor itself is thread-safe so an operator thread may cancel a run that
    executes on a worker thread.
    """

    def __init__(self, name: str = "transfer", cancel_event: Optional[threading.Event] = None):
        self.name = name
        self._cancel_event = cancel_event or threading.Event()
        self._lock = threading.Lock()
        self.task_name: Optional[str] = None
        self.sub_task_name: Optional[str] = None
        self.total_work = -1
        self.work_done = 0

    def begin_task(self, name: str, total_work: int = -1) -> None:
        with self._lock:
            self.task_name = name
            self.total_work = total_work
            self.work_done = 0
        logger.debug(f"[{self.name}] {name} (total={total_work})")

    def sub_task(self, name: str) -> None:
        with self._lock:
            self.sub_task_name = name
        logger.debug(f"[{self.name}] {name}")

    def worked(self, amount: int = 1) -> None:
        with self._lock:
            self.work_done += amount

    def done(self) -> None:
        with self._lock:
            self.sub_task_name = None

    def cancel(self) -> None:
        """Request cancellation of the running transfer."""
        logger.info(f"[{self.name}] cancellation requested")
        self._cancel_event.set()

    @property
    def is_canceled(self) -> bool:
        return self._cancel_event.is_set()

    def check_canceled(self, rows_transferred: int = 0) -> None:
        """Raise TransferCancelledError if cancellation was requested."""
        if self._cancel_event.is_set():
            raise TransferCancelledError(
                f"Transfer '{self.name}' cancelled",
                rows_transferred=rows_transferred
            )

    def fork(self, name: str) -> "ProgressMonitor":
        """Create a per-pipe monitor sharing this monitor's cancellation token."""
        return ProgressMonitor(name=name, cancel_event=self._cancel_event)
