"""
Read-only provider registry.

The registry is built once by the process entry point and shared by
reference; it cannot be modified after construction.
"""

from types import MappingProxyType
from typing import Iterable, Iterator, List, Mapping, Optional

import requests

from ..constants import Timeouts
from ..exceptions import ProviderNotFoundError, ValidationError
from ..schemas.provider_schemas import ProviderConfig
from .base import BaseProvider
from .gmail import GmailProvider
from .instagram import InstagramProvider
from .slack import SlackProvider

DEFAULT_PROVIDER_CLASSES = (GmailProvider, SlackProvider, InstagramProvider)


class ProviderRegistry:
    """Maps provider keys to plugin instances."""

    def __init__(self, providers: Iterable[BaseProvider]):
        registered = {}
        for provider in providers:
            if provider.key in registered:
                raise ValidationError(
                    f"Duplicate provider key: {provider.key}", field="provider_key", provider_key=provider.key
                )
            registered[provider.key] = provider
        self._providers: Mapping[str, BaseProvider] = MappingProxyType(registered)

    def get(self, key: str) -> BaseProvider:
        """
        Resolve a provider key.

        Raises:
            ProviderNotFoundError: If no plugin is registered under ``key``
        """
        provider = self._providers.get(key)
        if provider is None:
            raise ProviderNotFoundError(key, registered=sorted(self._providers))
        return provider

    def find(self, key: str) -> Optional[BaseProvider]:
        return self._providers.get(key)

    def configs(self) -> List[ProviderConfig]:
        return [provider.config for provider in self._providers.values()]

    def keys(self) -> List[str]:
        return list(self._providers)

    def __contains__(self, key: object) -> bool:
        return key in self._providers

    def __iter__(self) -> Iterator[BaseProvider]:
        return iter(self._providers.values())

    def __len__(self) -> int:
        return len(self._providers)


def build_default_registry(timeout: float = Timeouts.PROVIDER_CALL) -> ProviderRegistry:
    """Registry with the built-in Gmail, Slack and Instagram plugins sharing one HTTP session."""
    http = requests.Session()
    return ProviderRegistry(cls(timeout=timeout, http=http) for cls in DEFAULT_PROVIDER_CLASSES)
