"""
Centralized configuration management for the credential lifecycle core.

This module provides a unified configuration system with support for:
- Environment variables
- Tunable lifecycle and scheduler thresholds
- Startup validation of deployment secrets
- Validation using Pydantic
"""

import os
from typing import Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from .constants import EnvironmentVariable, Limits, LogLevel, QueueName, Timeouts
from .exceptions import ConfigurationError


def _env_int(name: EnvironmentVariable, default: int) -> int:
    return int(os.getenv(name.value, str(default)))


class QueueConfig(BaseModel):
    """Queue configuration for Azure Storage Queues."""

    connection_string: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.AZURE_STORAGE_CONNECTION.value, ""),
        description="Azure Storage connection string",
    )
    logs_queue_name: str = Field(default=QueueName.LOGS.value, description="Log queue name")
    bootstrap_queue_name: str = Field(
        default_factory=lambda: os.getenv(
            EnvironmentVariable.BOOTSTRAP_QUEUE_NAME.value, QueueName.BOOTSTRAP.value
        ),
        description="Queue carrying bootstrap job ids",
    )
    visibility_timeout: int = Field(
        default=300, description="Seconds a received bootstrap message stays invisible"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.LOG_LEVEL.value, LogLevel.INFO.value),
        description="Logging level",
    )
    enable_queue: bool = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.ENABLE_LOGS_QUEUE.value, "false").lower()
        == "true",
        description="Send structured log entries to the logs queue",
    )

    @field_validator("level")
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = {level.value for level in LogLevel}
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


class SecurityConfig(BaseModel):
    """Credential encryption settings. The key itself is never persisted."""

    encryption_key: Optional[str] = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.ENCRYPTION_KEY.value) or None,
        description="Passphrase the Fernet key is derived from",
    )
    encryption_salt: str = Field(
        default_factory=lambda: os.getenv(
            EnvironmentVariable.ENCRYPTION_SALT.value, "credential-lifecycle-core"
        ),
        description="PBKDF2 salt",
    )
    kdf_iterations: int = Field(default=100_000, description="PBKDF2 iteration count")

    def __repr__(self) -> str:
        return f"SecurityConfig(encryption_key='***', kdf_iterations={self.kdf_iterations})"


class LifecycleConfig(BaseModel):
    """Thresholds used by the integration state machine."""

    refresh_threshold_seconds: int = Field(
        default=Timeouts.REFRESH_THRESHOLD,
        description="Refresh a token when it expires within this many seconds",
    )
    health_penalty: int = Field(default=Limits.HEALTH_PENALTY, description="Health lost per failure")
    next_sync_offset_seconds: int = Field(
        default=Timeouts.NEXT_SYNC_OFFSET, description="Delay before the next scheduled sync"
    )


class SchedulerConfig(BaseModel):
    """Health/refresh sweep settings."""

    interval_seconds: int = Field(
        default_factory=lambda: _env_int(
            EnvironmentVariable.HEALTH_SWEEP_INTERVAL_SECONDS, Timeouts.SWEEP_INTERVAL
        ),
        description="Seconds between sweeps",
    )
    batch_size: int = Field(default=Limits.SWEEP_BATCH_SIZE, description="Integrations per sweep")
    sweep_deadline_seconds: int = Field(
        default=Timeouts.SWEEP_DEADLINE, description="Overall deadline for one sweep"
    )
    max_concurrent_calls: int = Field(
        default=Limits.MAX_CONCURRENT_PROVIDER_CALLS,
        description="Concurrent provider calls during a sweep",
    )

    @field_validator("batch_size", "max_concurrent_calls")
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v


class ProviderSettings(BaseModel):
    """Outbound provider call settings and OAuth client credential lookup."""

    timeout_seconds: int = Field(
        default_factory=lambda: _env_int(
            EnvironmentVariable.PROVIDER_TIMEOUT_SECONDS, Timeouts.PROVIDER_CALL
        ),
        description="Timeout applied to every outbound provider request",
    )

    def client_credentials(self, provider_key: str) -> Tuple[Optional[str], Optional[str]]:
        """Return the (client_id, client_secret) pair for a provider, read from the environment."""
        prefix = provider_key.upper()
        return (
            os.getenv(f"{prefix}_CLIENT_ID") or None,
            os.getenv(f"{prefix}_CLIENT_SECRET") or None,
        )


class BootstrapConfig(BaseModel):
    """Settings for first-contact setup of integrations."""

    app_url: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.APP_URL.value, "http://localhost:3000"),
        description="Public base URL webhook callbacks are registered under",
    )
    webhook_path: str = Field(
        default="/api/webhooks/{provider_key}", description="Webhook callback path template"
    )
    running_timeout_seconds: int = Field(
        default=Timeouts.BOOTSTRAP_RUNNING_TIMEOUT,
        description="A running job older than this is treated as abandoned",
    )
    redispatch_after_seconds: int = Field(
        default=Timeouts.BOOTSTRAP_REDISPATCH_AFTER,
        description="Pending jobs older than this are re-enqueued by the scheduled cycle",
    )

    def webhook_url(self, provider_key: str) -> str:
        return self.app_url.rstrip("/") + self.webhook_path.format(provider_key=provider_key)


class OAuthConfig(BaseModel):
    """OAuth authorization flow settings."""

    state_ttl_seconds: int = Field(default=Timeouts.OAUTH_STATE_TTL, description="State lifetime")


class AppConfig(BaseModel):
    """Main application configuration."""

    environment: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.APP_ENV.value, "development"),
        description="Application environment",
    )

    # Sub-configurations
    queue: QueueConfig = Field(default_factory=QueueConfig, description="Queue configuration")
    logging: LoggingConfig = Field(default_factory=LoggingConfig, description="Logging configuration")
    security: SecurityConfig = Field(default_factory=SecurityConfig, description="Encryption settings")
    lifecycle: LifecycleConfig = Field(default_factory=LifecycleConfig, description="State machine")
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig, description="Health sweeps")
    providers: ProviderSettings = Field(default_factory=ProviderSettings, description="Providers")
    bootstrap: BootstrapConfig = Field(default_factory=BootstrapConfig, description="Bootstrap")
    oauth: OAuthConfig = Field(default_factory=OAuthConfig, description="OAuth flow")

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Create configuration from environment variables."""
        return cls()

    def validate_secrets(self) -> None:
        """
        Fail fast when deployment secrets are missing.

        Raises:
            ConfigurationError: If the encryption key is not configured
        """
        if not self.security.encryption_key:
            raise ConfigurationError(
                f"{EnvironmentVariable.ENCRYPTION_KEY.value} must be set",
                setting=EnvironmentVariable.ENCRYPTION_KEY.value,
            )


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def set_config(config: AppConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration instance."""
    global _config
    _config = None
