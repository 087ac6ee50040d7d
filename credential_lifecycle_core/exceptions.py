"""
Exception hierarchy with error codes, context, and correlation support.

Every error records an id, a timestamp and the current correlation id, and
logs itself when constructed. Operation boundaries catch these errors and
turn them into typed failure results; only ConfigurationError is allowed to
stop the process, and only at startup.
"""

import threading
import traceback
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

_thread_local = threading.local()


class ErrorCode(str, Enum):
    """Standardized error codes."""

    # System errors (1xxx)
    INTERNAL_ERROR = "1000"
    DATABASE_ERROR = "1001"
    CONNECTION_ERROR = "1002"
    CONFIGURATION_ERROR = "1003"
    TIMEOUT_ERROR = "1004"
    DECRYPTION_ERROR = "1005"

    # Validation errors (2xxx)
    VALIDATION_FAILED = "2000"
    INVALID_FORMAT = "2001"
    MISSING_REQUIRED = "2002"

    # Resource errors (3xxx)
    NOT_FOUND = "3000"
    DUPLICATE = "3001"
    CONFLICT = "3002"
    LOCKED = "3003"
    EXPIRED = "3004"

    # Business logic errors (4xxx)
    INVALID_STATE_TRANSITION = "4001"
    PRECONDITION_FAILED = "4004"

    # External service errors (5xxx)
    PROVIDER_ERROR = "5000"
    QUEUE_ERROR = "5001"
    EXTERNAL_API_ERROR = "5002"
    PROVIDER_NOT_FOUND = "5003"


class BaseError(Exception):
    """Base exception with context, error codes, logging, and error chaining."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        cause: Optional[Exception] = None,
        **context: Any,
    ):
        """
        Initialize base error with rich context.

        Args:
            message: Human-readable error message
            error_code: Standardized error code from ErrorCode enum
            status_code: HTTP-style status used to pick the log level
            cause: Original exception that caused this error
            **context: Additional context information
        """
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.error_id = str(uuid.uuid4())
        self.context = context

        correlation_id = get_correlation_id()
        if correlation_id:
            self.context["correlation_id"] = correlation_id

        self.context["error_id"] = self.error_id

        if cause:
            self.context["cause"] = {
                "type": type(cause).__name__,
                "message": str(cause),
                "traceback": traceback.format_exception(type(cause), cause, cause.__traceback__),
            }

        self._log_error()

        super().__init__(message)

    def _log_error(self) -> None:
        """Log error with a level based on status code."""
        # Lazy import, the logger module imports config which imports this module
        from .utils.logger import get_logger

        logger = get_logger()

        log_data = {
            "error_id": self.error_id,
            "error_code": self.error_code.value,
            "status_code": self.status_code,
            "error_message": self.message,
            "timestamp": self.timestamp,
            "context": {k: v for k, v in self.context.items() if k not in ["cause", "traceback"]},
        }

        if "correlation_id" in self.context:
            log_data["correlation_id"] = self.context["correlation_id"]

        if self.status_code >= 500:
            logger.error(
                f"Error {self.error_code.value}: {self.message}", extra=log_data, exc_info=self.cause
            )
        elif self.status_code >= 400:
            logger.warning(f"Client error {self.error_code.value}: {self.message}", extra=log_data)
        else:
            logger.info(f"Error {self.error_code.value}: {self.message}", extra=log_data)

    def to_dict(self, include_cause: bool = False) -> Dict[str, Any]:
        """
        Convert to a dict safe to hand to callers.

        Args:
            include_cause: Include cause type and message (no traceback)

        Returns:
            Dictionary representation suitable for JSON serialization
        """
        result: Dict[str, Any] = {
            "error": {
                "id": self.error_id,
                "code": self.error_code.value,
                "message": self.message,
                "timestamp": self.timestamp,
                "context": {
                    k: v
                    for k, v in self.context.items()
                    if k not in ["cause", "error_id", "correlation_id"]
                },
            }
        }

        if "correlation_id" in self.context:
            result["error"]["correlation_id"] = self.context["correlation_id"]

        if include_cause and "cause" in self.context:
            result["error"]["cause"] = {
                "type": self.context["cause"]["type"],
                "message": self.context["cause"]["message"],
            }

        return result

    def add_context(self, **kwargs: Any) -> "BaseError":
        """Add additional context to the error and return self."""
        self.context.update(kwargs)
        return self

    @property
    def error_chain(self) -> List[Exception]:
        """Get the full chain of errors."""
        chain: List[Exception] = [self]
        current = self.cause
        while current:
            chain.append(current)
            current = getattr(current, "cause", None)
        return chain


class ConfigurationError(BaseError):
    """Missing or invalid deployment configuration. Fatal at startup."""

    def __init__(self, message: str, setting: Optional[str] = None, **context):
        if setting:
            context["setting"] = setting
        super().__init__(message, ErrorCode.CONFIGURATION_ERROR, 500, **context)


class RepositoryError(BaseError):
    """Datastore errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.DATABASE_ERROR,
        status_code: int = 500,
        cause: Optional[Exception] = None,
        **context,
    ):
        super().__init__(message, error_code, status_code, cause, **context)


class ServiceError(BaseError):
    """Service layer errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        operation: Optional[str] = None,
        cause: Optional[Exception] = None,
        **context,
    ):
        if operation:
            context["operation"] = operation
        super().__init__(message, error_code, 500, cause, **context)


class ValidationError(BaseError):
    """Invalid caller input."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        cause: Optional[Exception] = None,
        **context,
    ):
        if field:
            context["field"] = field
        super().__init__(message, error_code, 400, cause, **context)


class NotFoundError(RepositoryError):
    """A credential, integration or job is absent."""

    def __init__(self, message: str, cause: Optional[Exception] = None, **context):
        super().__init__(message, ErrorCode.NOT_FOUND, 404, cause, **context)


class DecryptionError(BaseError):
    """Ciphertext is corrupted or was produced with a different key."""

    def __init__(self, message: str = "Failed to decrypt credential data", **kwargs):
        super().__init__(message, ErrorCode.DECRYPTION_ERROR, 500, **kwargs)


class ExternalServiceError(BaseError):
    """External service errors."""

    def __init__(
        self,
        message: str,
        service_name: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_API_ERROR,
        cause: Optional[Exception] = None,
        **context,
    ):
        context["service_name"] = service_name
        super().__init__(message, error_code, 502, cause, **context)


class ProviderError(ExternalServiceError):
    """A provider plugin call failed or timed out."""

    def __init__(self, message: str, provider_key: str, cause: Optional[Exception] = None, **context):
        super().__init__(
            message, service_name=provider_key, error_code=ErrorCode.PROVIDER_ERROR, cause=cause, **context
        )
        self.provider_key = provider_key


class ProviderNotFoundError(BaseError):
    """No plugin is registered under the requested provider key."""

    def __init__(self, provider_key: str, **context):
        self.provider_key = provider_key
        super().__init__(
            f"Provider not found: {provider_key}",
            ErrorCode.PROVIDER_NOT_FOUND,
            404,
            provider_key=provider_key,
            **context,
        )


class InvalidStateTransitionError(BaseError):
    """An integration status change is not allowed from its current status."""

    def __init__(self, current: str, target: str, **context):
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot transition integration from {current} to {target}",
            ErrorCode.INVALID_STATE_TRANSITION,
            409,
            current_status=current,
            target_status=target,
            **context,
        )


class StaleCredentialError(BaseError):
    """A conditional credential write lost against a concurrent writer."""

    def __init__(self, message: str = "Credential was modified concurrently", **context):
        super().__init__(message, ErrorCode.CONFLICT, 409, **context)


class OAuthStateError(BaseError):
    """OAuth state is unknown, expired, already used or for another platform."""

    def __init__(self, message: str = "Invalid or expired OAuth state", **context):
        super().__init__(message, ErrorCode.EXPIRED, 400, **context)


def not_found(resource_type: str, cause: Optional[Exception] = None, **identifiers) -> NotFoundError:
    """
    Factory for not found errors.

    Args:
        resource_type: Type of resource (e.g., 'Credential', 'Integration')
        cause: Original exception if any
        **identifiers: Resource identifiers (e.g., integration_id='123')
    """
    id_parts = [f"{k}={v}" for k, v in identifiers.items()]
    message = f"{resource_type} not found"
    if id_parts:
        message += f": {', '.join(id_parts)}"

    return NotFoundError(message, cause=cause, resource_type=resource_type, **identifiers)


# Correlation ID management
def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID for the current thread."""
    _thread_local.correlation_id = correlation_id


def get_correlation_id() -> Optional[str]:
    """Get the current thread's correlation ID."""
    return getattr(_thread_local, "correlation_id", None)


def clear_correlation_id() -> None:
    """Clear the current thread's correlation ID."""
    if hasattr(_thread_local, "correlation_id"):
        delattr(_thread_local, "correlation_id")
