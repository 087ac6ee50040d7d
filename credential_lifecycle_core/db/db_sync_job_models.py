from sqlalchemy import Column, DateTime, Index, String, Text

from ..constants import SyncJobStatus, SyncJobType
from .db_base import JSON, TimestampMixin, UUIDMixin
from .db_config import Base


class SyncJob(Base, UUIDMixin, TimestampMixin):
    """One tracked bootstrap attempt. Completed and failed jobs are never re-run."""

    __tablename__ = "integration_sync_jobs"

    integration_id = Column(String(36), nullable=False)
    job_type = Column(String(50), nullable=False, default=SyncJobType.BOOTSTRAP.value)
    status = Column(String(20), nullable=False, default=SyncJobStatus.PENDING.value)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
    result_summary = Column(JSON, nullable=True)

    __table_args__ = (Index("ix_sync_job_integration_status", "integration_id", "status"),)
