"""
Constants and enums for the credential lifecycle core.

This module centralizes the status names, log actions and environment
variable names used throughout the package so that persisted values stay
consistent between services.
"""

from enum import Enum


class QueueName(str, Enum):
    """Standard queue names used by the package."""

    LOGS = "logs-queue"
    BOOTSTRAP = "integration-bootstrap-queue"


class IntegrationStatus(str, Enum):
    """Connection status shared by integrations and credentials."""

    PENDING = "pending"
    CONNECTED = "connected"
    ERROR = "error"
    DISCONNECTED = "disconnected"


class CredentialKind(str, Enum):
    """How the secret material of a credential was obtained."""

    OAUTH = "oauth"
    API_KEY = "api_key"
    MANUAL = "manual"


class SyncJobType(str, Enum):
    """Kinds of tracked integration work."""

    BOOTSTRAP = "bootstrap"


class SyncJobStatus(str, Enum):
    """Sync job states. COMPLETED and FAILED are terminal."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class IntegrationLogLevel(str, Enum):
    """Levels stored on integration log rows."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


class IntegrationAction(str, Enum):
    """Action names recorded in the integration log."""

    STORE_CREDENTIAL = "store_credential"
    BOOTSTRAP = "bootstrap"
    REFRESH_TOKEN = "refresh_token"
    HEALTH_CHECK = "health_check"
    REVOKE_TOKEN = "revoke_token"
    STATUS_UPDATE = "status_update"
    WEBHOOK_RECEIVED = "webhook_received"
    OAUTH_CALLBACK = "oauth_callback"


class AuthType(str, Enum):
    """Authentication styles a provider can declare."""

    OAUTH2 = "oauth2"
    API_KEY = "api_key"
    BASIC = "basic"


class LogLevel(str, Enum):
    """Standard logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EnvironmentVariable(str, Enum):
    """Standard environment variable names."""

    AZURE_STORAGE_CONNECTION = "AzureWebJobsStorage"
    APP_ENV = "APP_ENV"
    APP_URL = "APP_URL"
    LOG_LEVEL = "LOG_LEVEL"
    ENCRYPTION_KEY = "CREDENTIAL_ENCRYPTION_KEY"
    ENCRYPTION_SALT = "CREDENTIAL_ENCRYPTION_SALT"
    DB_TYPE = "DB_TYPE"
    DB_HOST = "DB_HOST"
    DB_PORT = "DB_PORT"
    DB_NAME = "DB_NAME"
    DB_USER = "DB_USER"
    DB_PASSWORD = "DB_PASSWORD"
    DEV_DB_PATH = "DEV_DB_PATH"
    DB_ECHO = "DB_ECHO"
    BOOTSTRAP_QUEUE_NAME = "BOOTSTRAP_QUEUE_NAME"
    PROVIDER_TIMEOUT_SECONDS = "PROVIDER_TIMEOUT_SECONDS"
    HEALTH_SWEEP_INTERVAL_SECONDS = "HEALTH_SWEEP_INTERVAL_SECONDS"
    ENABLE_LOGS_QUEUE = "ENABLE_LOGS_QUEUE"


class LogContextKey(str, Enum):
    """Standard keys for logging context."""

    OPERATION_ID = "operation_id"
    CORRELATION_ID = "correlation_id"
    DURATION_MS = "duration_ms"
    STATUS = "status"
    ERROR_CODE = "error_code"
    SOURCE_MODULE = "source_module"
    USER_ID = "user_id"
    INTEGRATION_ID = "integration_id"
    PLATFORM = "platform"


class EventName(str, Enum):
    """In-process notification events published by the services."""

    STATUS_CHANGED = "integration.status_changed"
    BOOTSTRAP_COMPLETED = "bootstrap.completed"
    BOOTSTRAP_FAILED = "bootstrap.failed"
    CREDENTIAL_REFRESHED = "credential.refreshed"
    CREDENTIAL_REVOKED = "credential.revoked"
    WEBHOOK_RECEIVED = "webhook.received"


DEFAULT_WEBHOOK_ID_HEADER = "x-webhook-id"
EVENT_TYPE_HEADER = "x-event-type"
DEFAULT_EVENT_TYPE = "webhook"


# Numeric constants
class Limits:
    """System limits and thresholds."""

    MAX_HEALTH_SCORE = 100
    MIN_HEALTH_SCORE = 0
    HEALTH_PENALTY = 10
    SWEEP_BATCH_SIZE = 100
    MAX_CONCURRENT_PROVIDER_CALLS = 10
    DEFAULT_LOG_PAGE_SIZE = 50
    MAX_LOG_PAGE_SIZE = 500


# Time-related constants (in seconds)
class Timeouts:
    """Timeout and interval values in seconds."""

    REFRESH_THRESHOLD = 60 * 60
    PROVIDER_CALL = 15
    SWEEP_INTERVAL = 60 * 60
    SWEEP_DEADLINE = 5 * 60
    OAUTH_STATE_TTL = 10 * 60
    NEXT_SYNC_OFFSET = 24 * 60 * 60
    WORKER_SHUTDOWN = 10
    BOOTSTRAP_RUNNING_TIMEOUT = 15 * 60
    BOOTSTRAP_REDISPATCH_AFTER = 5 * 60
