"""
Pydantic schemas for credentials.

Secrets only travel inside ``CredentialSecrets``; read models never carry
ciphertext.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..constants import CredentialKind, IntegrationStatus


class CredentialSecrets(BaseModel):
    """Plaintext secret material. Absent fields are never encrypted."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    access_token: Optional[str] = Field(None, description="OAuth access token")
    refresh_token: Optional[str] = Field(None, description="OAuth refresh token")
    api_key: Optional[str] = Field(None, description="API key")
    api_secret: Optional[str] = Field(None, description="API secret")

    @field_validator("access_token", "refresh_token", "api_key", "api_secret")
    @classmethod
    def empty_is_absent(cls, v):
        return v or None

    def has_usable_secret(self) -> bool:
        return bool(self.access_token or self.api_key)

    def __repr__(self) -> str:
        present = [name for name, value in self.model_dump().items() if value]
        return f"CredentialSecrets(present={present})"

    __str__ = __repr__


class SaveCredentialRequest(BaseModel):
    """Input for storing a credential."""

    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: str = Field(..., min_length=1)
    platform: str = Field(..., min_length=1, description="Provider key")
    platform_name: str = Field(..., min_length=1, description="Display name")
    kind: CredentialKind = CredentialKind.OAUTH
    secrets: CredentialSecrets = Field(default_factory=CredentialSecrets)
    scopes: Optional[List[str]] = None
    expires_at: Optional[datetime] = None
    additional_data: Optional[Dict[str, Any]] = None
    workspace_id: Optional[str] = None


class KnownAdditionalData(BaseModel):
    """
    The keys of the open additional-data map that logic may read.

    Providers return heterogeneous metadata; everything else in the map is
    stored and echoed back but never branched on.
    """

    model_config = ConfigDict(extra="ignore")

    token_type: Optional[str] = None
    team_id: Optional[str] = None
    bot_user_id: Optional[str] = None
    account_id: Optional[str] = None
    scope: Optional[str] = None

    @classmethod
    def narrow(cls, data: Optional[Dict[str, Any]]) -> "KnownAdditionalData":
        if not isinstance(data, dict):
            return cls()
        known = {
            key: str(value)
            for key, value in data.items()
            if key in cls.model_fields and value is not None and isinstance(value, (str, int))
        }
        return cls(**known)


class CredentialRead(BaseModel):
    """Credential metadata returned to callers."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    platform: str
    platform_name: str
    credential_type: CredentialKind
    status: IntegrationStatus
    is_active: bool
    connection_count: int = 0
    scopes: Optional[List[str]] = None
    additional_data: Optional[Dict[str, Any]] = None
    expires_at: Optional[datetime] = None
    last_refreshed_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    integration_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    secrets: Optional[CredentialSecrets] = Field(
        None, description="Decrypted secrets, only when explicitly requested"
    )


class OAuthStateRead(BaseModel):
    """A consumed OAuth state. ``code_verifier`` is only set for PKCE flows."""

    model_config = ConfigDict(from_attributes=True)

    state: str
    user_id: str
    platform: str
    redirect_uri: Optional[str] = None
    scopes: Optional[List[str]] = None
    code_verifier: Optional[str] = Field(None, repr=False)
    expires_at: datetime
