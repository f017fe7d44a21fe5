"""SQLAlchemy ORM models for transfer tasks, runs and run logs."""

from datetime import datetime
import uuid
from sqlalchemy import Column, String, Integer, DateTime, Text, JSON, Enum as SQLEnum, ForeignKey, Index
from sqlalchemy.orm import relationship
from dbtransfer.database.base import Base
from dbtransfer.models import RunStatus


class TransferTaskModel(Base):
    """A named, repeatable transfer: settings plus saved mapping decisions."""
    __tablename__ = "transfer_tasks"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False, unique=True, index=True)
    settings = Column(JSON, default={})
    mappings = Column(JSON, default={})

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    runs = relationship("TransferRunModel", back_populates="task", cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "settings": self.settings or {},
            "mappings": self.mappings or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class TransferRunModel(Base):
    __tablename__ = "transfer_runs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    task_id = Column(String(36), ForeignKey('transfer_tasks.id'), nullable=False)

    status = Column(SQLEnum(RunStatus, values_callable=lambda x: [e.value for e in x]), default=RunStatus.RUNNING, nullable=False)
    rows_transferred = Column(Integer, default=0)
    error_message = Column(Text, nullable=True)
    statistics = Column(JSON, default={})

    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    finished_at = Column(DateTime, nullable=True)

    task = relationship("TransferTaskModel", back_populates="runs")

    __table_args__ = (
        Index('idx_run_task_started', 'task_id', 'started_at'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "status": self.status.value if self.status else None,
            "rows_transferred": self.rows_transferred or 0,
            "error_message": self.error_message,
            "statistics": self.statistics or {},
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class TransferLogModel(Base):
    """Log record of a transfer run."""
    __tablename__ = "transfer_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    run_id = Column(String(36), nullable=True, index=True)
    level = Column(String(20), nullable=False, index=True)  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    logger = Column(String(255), nullable=True)
    message = Column(Text, nullable=False)
    module = Column(String(255), nullable=True)
    function = Column(String(255), nullable=True)
    line = Column(Integer, nullable=True)
    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    extra = Column(JSON, nullable=True)

    __table_args__ = (
        Index('idx_log_run_timestamp', 'run_id', 'timestamp'),
    )
