"""Read models for integrations and their history."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ..constants import IntegrationLogLevel, IntegrationStatus, SyncJobStatus


class IntegrationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    workspace_id: Optional[str] = None
    provider_key: str
    provider_name: str
    status: IntegrationStatus
    health_score: int = Field(ge=0, le=100)
    error_message: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    next_sync_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("metadata_", "metadata")
    )
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, integration) -> "IntegrationRead":
        data = {
            column.key: getattr(integration, column.key)
            for column in integration.__mapper__.column_attrs
        }
        data["metadata_"] = data.get("metadata_") or {}
        return cls.model_validate(data)


class SyncJobRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    integration_id: str
    job_type: str
    status: SyncJobStatus
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    result_summary: Optional[Dict[str, Any]] = None


class IntegrationLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    platform: str
    action: str
    status: str
    log_level: IntegrationLogLevel
    message: str
    error_details: Optional[Dict[str, Any]] = None
    created_at: datetime


class WebhookRegistrationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    integration_id: str
    webhook_url: str
    webhook_id: Optional[str] = None
    is_active: bool
    event_types: Optional[List[str]] = None
    last_triggered_at: Optional[datetime] = None


class IntegrationEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    integration_id: Optional[str] = None
    user_id: Optional[str] = None
    provider: str
    webhook_id: Optional[str] = None
    event_type: str
    payload: Optional[Dict[str, Any]] = None
    headers: Optional[Dict[str, Any]] = None
    processed: bool
    received_at: datetime
