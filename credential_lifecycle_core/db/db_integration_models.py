"""
Integration, webhook registration and webhook event models.

References between tables are plain id columns: deleting an integration
never cascades into its history.
"""

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text

from ..constants import IntegrationStatus
from .db_base import JSON, TimestampMixin, UUIDMixin, utc_now
from .db_config import Base


class Integration(Base, UUIDMixin, TimestampMixin):
    """The logical connection between a user and a provider."""

    __tablename__ = "integrations"

    user_id = Column(String(100), nullable=False, index=True)
    workspace_id = Column(String(100), nullable=True)
    provider_key = Column(String(100), nullable=False)
    provider_name = Column(String(200), nullable=False)

    status = Column(String(20), nullable=False, default=IntegrationStatus.PENDING.value, index=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    next_sync_at = Column(DateTime(timezone=True), nullable=True)
    health_score = Column(Integer, nullable=False, default=100)
    error_message = Column(Text, nullable=True)
    metadata_ = Column("metadata", JSON, nullable=True)

    __table_args__ = (
        Index("ix_integration_owner", "user_id", "provider_key", "workspace_id", unique=True),
    )


class IntegrationWebhook(Base, UUIDMixin, TimestampMixin):
    """At most one webhook registration per integration."""

    __tablename__ = "integration_webhooks"

    integration_id = Column(String(36), nullable=False, unique=True)
    webhook_url = Column(Text, nullable=False)
    webhook_id = Column(String(255), nullable=True, index=True)
    webhook_secret = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    event_types = Column(JSON, nullable=True)
    last_triggered_at = Column(DateTime(timezone=True), nullable=True)


class IntegrationEvent(Base, UUIDMixin):
    """A raw provider push event. integration_id is NULL for unattributed events."""

    __tablename__ = "integration_events"

    integration_id = Column(String(36), nullable=True, index=True)
    user_id = Column(String(100), nullable=True)
    provider = Column(String(100), nullable=False)
    webhook_id = Column(String(255), nullable=True)
    event_type = Column(String(100), nullable=False)
    payload = Column(JSON, nullable=True)
    headers = Column(JSON, nullable=True)
    processed = Column(Boolean, nullable=False, default=False)
    received_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
