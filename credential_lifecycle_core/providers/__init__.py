from .base import BaseProvider, expires_at_from
from .gmail import GmailProvider
from .instagram import InstagramProvider
from .registry import DEFAULT_PROVIDER_CLASSES, ProviderRegistry, build_default_registry
from .slack import SlackProvider

__all__ = [
    "BaseProvider",
    "expires_at_from",
    "GmailProvider",
    "InstagramProvider",
    "SlackProvider",
    "DEFAULT_PROVIDER_CLASSES",
    "ProviderRegistry",
    "build_default_registry",
]
