"""
Credential lifecycle core.

Stores encrypted third-party credentials, keeps OAuth tokens fresh,
bootstraps and health-checks integrations, and records provider webhooks.
"""

from .api import IntegrationAPI
from .config import AppConfig, get_config, reset_config, set_config
from .constants import CredentialKind, IntegrationStatus
from .context.app_context import AppContext
from .exceptions import (
    BaseError,
    ConfigurationError,
    DecryptionError,
    NotFoundError,
    ProviderError,
    ProviderNotFoundError,
)

__version__ = "0.1.0"

__all__ = [
    "IntegrationAPI",
    "AppConfig",
    "get_config",
    "reset_config",
    "set_config",
    "CredentialKind",
    "IntegrationStatus",
    "AppContext",
    "BaseError",
    "ConfigurationError",
    "DecryptionError",
    "NotFoundError",
    "ProviderError",
    "ProviderNotFoundError",
]
