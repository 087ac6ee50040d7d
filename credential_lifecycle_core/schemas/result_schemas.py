"""
Result objects returned by the exposed operations.

Callers receive plain data: ``success`` plus either the payload fields or
an ``error`` string and code. No stack traces and no ciphertext.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..exceptions import BaseError, ErrorCode


class OperationResult(BaseModel):
    """Outcome of an exposed operation."""

    success: bool = Field(description="Whether the operation succeeded")
    error: Optional[str] = Field(default=None, description="Human-readable failure reason")
    error_code: Optional[str] = Field(default=None, description="ErrorCode value on failure")
    data: Dict[str, Any] = Field(default_factory=dict, description="Operation payload")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def success_result(cls, **data: Any) -> "OperationResult":
        return cls(success=True, data=data)

    @classmethod
    def failure_result(
        cls, error: str, error_code: Optional[ErrorCode] = ErrorCode.INTERNAL_ERROR, **data: Any
    ) -> "OperationResult":
        return cls(
            success=False,
            error=error,
            error_code=error_code.value if error_code else None,
            data=data,
        )

    @classmethod
    def from_error(cls, error: BaseError, **data: Any) -> "OperationResult":
        return cls.failure_result(error.message, error.error_code, **data)

    @property
    def is_not_found(self) -> bool:
        return self.error_code == ErrorCode.NOT_FOUND.value


class StoreCredentialResult(OperationResult):
    integration_id: Optional[str] = None
    job_id: Optional[str] = None


class SweepSummary(BaseModel):
    """Aggregate counts for one health sweep."""

    checked: int = 0
    refreshed: int = 0
    errors: int = 0
    skipped: int = 0
    timed_out: int = 0
    duration_ms: Optional[float] = None
    error_integration_ids: List[str] = Field(default_factory=list)


class WebhookReceipt(OperationResult):
    event_id: Optional[str] = None
    integration_id: Optional[str] = None
    attributed: bool = False


class OAuthStart(OperationResult):
    authorization_url: Optional[str] = None
    state: Optional[str] = None
