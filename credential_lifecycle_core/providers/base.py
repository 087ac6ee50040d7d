"""
Provider plugin base class.

A plugin declares a static ``ProviderConfig`` and implements bootstrap,
refresh and revoke against its provider's API. Subclasses may raise
``ProviderError`` from their internals; the public ``run_*`` wrappers
convert every exception into a ``success=False`` result so nothing crosses
the plugin boundary as an exception.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import requests

from ..constants import Timeouts
from ..exceptions import BaseError, ProviderError
from ..schemas.provider_schemas import (
    BootstrapRequest,
    BootstrapResult,
    ProviderConfig,
    RefreshResult,
    RevokeResult,
    TokenExchangeResult,
)
from ..utils.logger import get_logger


def _describe(error: Exception) -> str:
    if isinstance(error, BaseError):
        return error.message
    return str(error) or type(error).__name__


def expires_at_from(expires_in: Any) -> Optional[datetime]:
    """Turn an ``expires_in`` seconds value into an absolute UTC timestamp."""
    if expires_in in (None, ""):
        return None
    return datetime.now(UTC) + timedelta(seconds=int(expires_in))


class BaseProvider(ABC):
    """Base class for provider plugins."""

    config: ProviderConfig

    def __init__(self, timeout: float = Timeouts.PROVIDER_CALL, http: Optional[requests.Session] = None):
        """
        Args:
            timeout: Seconds allowed for every outbound request
            http: Optional requests session (shared connection pool)
        """
        self.timeout = timeout
        self.http = http or requests.Session()
        self.logger = get_logger()

    @property
    def key(self) -> str:
        return self.config.key

    @property
    def name(self) -> str:
        return self.config.name

    # ==================== PLUGIN CONTRACT ====================

    @abstractmethod
    def bootstrap(self, request: BootstrapRequest) -> BootstrapResult:
        """Validate the credential with the cheapest read call and set up webhooks."""

    @abstractmethod
    def refresh_token(
        self, refresh_token: str, client_id: Optional[str], client_secret: Optional[str]
    ) -> RefreshResult:
        """Exchange a refresh token for a new access token."""

    @abstractmethod
    def revoke_access(
        self,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
    ) -> RevokeResult:
        """Revoke the grant at the provider."""

    def exchange_code(
        self,
        code: str,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        code_verifier: Optional[str] = None,
    ) -> TokenExchangeResult:
        return TokenExchangeResult(
            success=False, error=f"{self.name} does not support authorization code exchange"
        )

    def build_authorization_url(
        self,
        client_id: str,
        redirect_uri: str,
        state: str,
        scopes: Optional[List[str]] = None,
        code_challenge: Optional[str] = None,
    ) -> str:
        if not self.config.authorization_url:
            raise ProviderError(f"{self.name} has no authorization endpoint", provider_key=self.key)
        params = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(scopes or self.config.default_scopes),
            "state": state,
        }
        params.update(self.extra_authorization_params())
        if code_challenge:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = "S256"
        return f"{self.config.authorization_url}?{urlencode(params)}"

    def extra_authorization_params(self) -> Dict[str, str]:
        return {}

    # ==================== SAFE WRAPPERS ====================

    def run_bootstrap(self, request: BootstrapRequest) -> BootstrapResult:
        try:
            return self.bootstrap(request)
        except Exception as e:
            self._log_plugin_failure("bootstrap", e)
            return BootstrapResult(success=False, error=_describe(e))

    def run_refresh(
        self, refresh_token: str, client_id: Optional[str], client_secret: Optional[str]
    ) -> RefreshResult:
        if not self.config.supports_refresh:
            return RefreshResult(success=False, error=f"{self.name} does not support token refresh")
        try:
            return self.refresh_token(refresh_token, client_id, client_secret)
        except Exception as e:
            self._log_plugin_failure("refresh_token", e)
            return RefreshResult(success=False, error=_describe(e))

    def run_revoke(
        self,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
    ) -> RevokeResult:
        try:
            return self.revoke_access(access_token, refresh_token, client_id, client_secret)
        except Exception as e:
            self._log_plugin_failure("revoke_access", e)
            return RevokeResult(success=False, error=_describe(e))

    def run_exchange_code(
        self,
        code: str,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        code_verifier: Optional[str] = None,
    ) -> TokenExchangeResult:
        try:
            return self.exchange_code(code, client_id, client_secret, redirect_uri, code_verifier)
        except Exception as e:
            self._log_plugin_failure("exchange_code", e)
            return TokenExchangeResult(success=False, error=_describe(e))

    def _log_plugin_failure(self, call: str, error: Exception) -> None:
        self.logger.warning(
            f"Provider call failed: {self.key}.{call}",
            extra={"provider": self.key, "call": call, "error_type": type(error).__name__},
        )

    # ==================== HTTP HELPERS ====================

    def get_api_url(self, endpoint: str) -> str:
        if endpoint.startswith("http://") or endpoint.startswith("https://"):
            return endpoint
        return f"{self.config.api_base_url.rstrip('/')}/{endpoint.lstrip('/')}"

    def make_request(
        self,
        method: str,
        endpoint: str,
        access_token: Optional[str] = None,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        """
        Call the provider API and return the decoded JSON body.

        Raises:
            ProviderError: On timeouts, connection failures and non-2xx responses
        """
        headers = dict(kwargs.pop("headers", None) or {})
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        url = self.get_api_url(endpoint)

        try:
            response = self.http.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            raise ProviderError(
                f"{self.name} request timed out after {self.timeout}s", provider_key=self.key, cause=e
            ) from e
        except requests.RequestException as e:
            raise ProviderError(f"{self.name} request failed: {e}", provider_key=self.key, cause=e) from e

        data = self._decode(response)
        if not response.ok:
            raise ProviderError(self._error_message(data, response.status_code), provider_key=self.key)
        return data

    @staticmethod
    def _decode(response: requests.Response) -> Dict[str, Any]:
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError:
            return {"raw": response.text}
        return data if isinstance(data, dict) else {"data": data}

    @staticmethod
    def _error_message(data: Dict[str, Any], status_code: int) -> str:
        error = data.get("error")
        if isinstance(error, dict):
            error = error.get("message")
        return (
            data.get("error_description")
            or error
            or data.get("error_message")
            or data.get("message")
            or f"Request failed with status {status_code}"
        )
