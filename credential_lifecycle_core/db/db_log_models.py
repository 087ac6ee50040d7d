from sqlalchemy import Column, DateTime, Index, String, Text

from .db_base import JSON, UUIDMixin, utc_now
from .db_config import Base


class IntegrationLog(Base, UUIDMixin):
    """Append-only audit row. Never updated or deleted."""

    __tablename__ = "integration_logs"

    user_id = Column(String(100), nullable=False)
    platform = Column(String(100), nullable=False)
    action = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False)
    log_level = Column(String(20), nullable=False)
    message = Column(Text, nullable=False)
    error_details = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    __table_args__ = (Index("ix_integration_log_user_created", "user_id", "created_at"),)
