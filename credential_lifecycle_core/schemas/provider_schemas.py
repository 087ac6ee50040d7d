"""
Pydantic models for the provider plugin contract.

Plugins return these result objects from every call; failures are
``success=False`` with a human-readable ``error``, never exceptions.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..constants import DEFAULT_WEBHOOK_ID_HEADER, AuthType


class ProviderConfig(BaseModel):
    """Static description of a provider plugin."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., min_length=1)
    name: str
    auth_type: AuthType = AuthType.OAUTH2
    supports_refresh: bool = False
    webhook_support: bool = False
    default_scopes: List[str] = Field(default_factory=list)
    required_scopes: List[str] = Field(default_factory=list)
    api_base_url: str
    authorization_url: Optional[str] = None
    token_url: Optional[str] = None
    webhook_id_header: str = DEFAULT_WEBHOOK_ID_HEADER
    # Long-lived-token providers refresh with the access token itself
    refresh_with_access_token: bool = False


class BootstrapRequest(BaseModel):
    """Decrypted inputs for a bootstrap call."""

    user_id: str
    integration_id: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    additional_data: Dict[str, Any] = Field(default_factory=dict)
    webhook_url: Optional[str] = None

    def __repr__(self) -> str:
        return f"BootstrapRequest(user_id={self.user_id!r}, integration_id={self.integration_id!r})"

    __str__ = __repr__


class BootstrapResult(BaseModel):
    success: bool
    webhook_id: Optional[str] = None
    webhook_secret: Optional[str] = None
    webhook_event_types: Optional[List[str]] = None
    initial_sync_completed: bool = False
    metadata: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


class RefreshResult(BaseModel):
    success: bool
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    error: Optional[str] = None

    def __repr__(self) -> str:
        return f"RefreshResult(success={self.success}, expires_at={self.expires_at}, error={self.error!r})"

    __str__ = __repr__


class RevokeResult(BaseModel):
    success: bool
    error: Optional[str] = None


class TokenExchangeResult(BaseModel):
    """Tokens obtained from an OAuth authorization code."""

    success: bool
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    scopes: Optional[List[str]] = None
    additional_data: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None

    def __repr__(self) -> str:
        return f"TokenExchangeResult(success={self.success}, error={self.error!r})"

    __str__ = __repr__
