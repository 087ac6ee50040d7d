from sqlalchemy import Column, DateTime, String, Text

from .db_base import JSON, UUIDMixin, utc_now
from .db_config import Base


class OAuthState(Base, UUIDMixin):
    """Short-lived authorization state. Deleted on first use."""

    __tablename__ = "oauth_states"

    state = Column(String(128), nullable=False, unique=True)
    user_id = Column(String(100), nullable=False)
    platform = Column(String(100), nullable=False)
    code_verifier = Column(Text, nullable=True)
    redirect_uri = Column(Text, nullable=True)
    scopes = Column(JSON, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
