"""Task store: saved transfer settings, mapping decisions and run history."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from dbtransfer.database.models_db import TransferRunModel, TransferTaskModel
from dbtransfer.database.session import get_session
from dbtransfer.models import RunStatus

logger = logging.getLogger(__name__)


class TaskStore:
    """Persists named transfer tasks and the runs executed for them.

    Every method opens its own session so the store can be shared between the
    coordinator thread and the CLI.

    Args:
        session_factory: SQLAlchemy session factory (defaults to the store's SessionLocal)
    """

    def __init__(self, session_factory=None):
        self.session_factory = session_factory

    def save_task(
        self,
        name: str,
        settings: Optional[Dict[str, Any]] = None,
        mappings: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Create or update a task.

        ``None`` leaves the stored value of an existing task unchanged.

        Returns:
            The stored task as a dict
        """
        with get_session(self.session_factory) as db:
            task = db.query(TransferTaskModel).filter(TransferTaskModel.name == name).first()
            if task is None:
                task = TransferTaskModel(name=name, settings=settings or {}, mappings=mappings or {})
                db.add(task)
                logger.info(f"Created transfer task {name}")
            else:
                if settings is not None:
                    task.settings = settings
                if mappings is not None:
                    task.mappings = mappings
                task.updated_at = datetime.utcnow()
                logger.debug(f"Updated transfer task {name}")
            db.flush()
            return task.to_dict()

    def load_task(self, name: str) -> Optional[Dict[str, Any]]:
        with get_session(self.session_factory) as db:
            task = db.query(TransferTaskModel).filter(TransferTaskModel.name == name).first()
            return task.to_dict() if task is not None else None

    def delete_task(self, name: str) -> bool:
        """Delete a task and its run history."""
        with get_session(self.session_factory) as db:
            task = db.query(TransferTaskModel).filter(TransferTaskModel.name == name).first()
            if task is None:
                return False
            db.delete(task)
            logger.info(f"Deleted transfer task {name}")
            return True

    def start_run(self, task_name: str) -> str:
        """Record the start of a run.

        Raises:
            KeyError: If the task does not exist

        Returns:
            Run ID
        """
        with get_session(self.session_factory) as db:
            task = db.query(TransferTaskModel).filter(TransferTaskModel.name == task_name).first()
            if task is None:
                raise KeyError(f"Transfer task not found: {task_name}")
            run = TransferRunModel(task_id=task.id, status=RunStatus.RUNNING)
            db.add(run)
            db.flush()
            return run.id

    def finish_run(
        self,
        run_id: str,
        status: RunStatus,
        rows_transferred: int = 0,
        error_message: Optional[str] = None,
        statistics: Optional[Dict[str, Any]] = None
    ) -> None:
        with get_session(self.session_factory) as db:
            run = db.query(TransferRunModel).filter(TransferRunModel.id == run_id).first()
            if run is None:
                logger.warning(f"Run {run_id} not found; result not recorded")
                return
            run.status = RunStatus(status)
            run.rows_transferred = rows_transferred
            run.error_message = error_message
            run.statistics = statistics or {}
            run.finished_at = datetime.utcnow()

    def list_runs(self, task_name: str, limit: int = 20) -> List[Dict[str, Any]]:
        """Most recent runs of a task, newest first."""
        with get_session(self.session_factory) as db:
            runs = (
                db.query(TransferRunModel)
                .join(TransferTaskModel)
                .filter(TransferTaskModel.name == task_name)
                .order_by(TransferRunModel.started_at.desc())
                .limit(limit)
                .all()
            )
            return [run.to_dict() for run in runs]
