"""
Credential model.

Just the data structure - no business logic or class methods.
"""

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text

from ..constants import IntegrationStatus
from .db_base import JSON, TimestampMixin, UUIDMixin
from .db_config import Base


class Credential(Base, UUIDMixin, TimestampMixin):
    """Encrypted secret material for one (user, platform) pair."""

    __tablename__ = "credentials"

    user_id = Column(String(100), nullable=False, index=True)
    platform = Column(String(100), nullable=False)
    platform_name = Column(String(200), nullable=False)
    credential_type = Column(String(20), nullable=False)

    # Fernet ciphertext; NULL when the secret is absent
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    api_key = Column(Text, nullable=True)
    api_secret = Column(Text, nullable=True)

    additional_data = Column(JSON, nullable=True)
    scopes = Column(JSON, nullable=True)

    expires_at = Column(DateTime(timezone=True), nullable=True)
    last_refreshed_at = Column(DateTime(timezone=True), nullable=True)

    status = Column(String(20), nullable=False, default=IntegrationStatus.PENDING.value)
    is_active = Column(Boolean, nullable=False, default=True)
    connection_count = Column(Integer, nullable=False, default=0)
    last_used_at = Column(DateTime(timezone=True), nullable=True)

    integration_id = Column(String(36), nullable=True, index=True)

    # Compare-and-swap guard for refresh and deactivate
    version = Column(Integer, nullable=False, default=1)
    refresh_lease_expires_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_credential_user_platform", "user_id", "platform", unique=True),)
