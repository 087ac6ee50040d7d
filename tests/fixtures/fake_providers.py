"""
In-memory provider plugins for tests.

They follow the plugin contract without any HTTP. Results can be set per
test, and ``refresh_failures`` maps a refresh token to an exception the
plugin raises for it.
"""

import threading
import time
from datetime import UTC, datetime, timedelta
from typing import Callable, Dict, List, Optional

from credential_lifecycle_core.providers.base import BaseProvider
from credential_lifecycle_core.schemas.provider_schemas import (
    BootstrapRequest,
    BootstrapResult,
    ProviderConfig,
    RefreshResult,
    RevokeResult,
    TokenExchangeResult,
)


class FakeOAuthProvider(BaseProvider):
    config = ProviderConfig(
        key="fakeoauth",
        name="Fake OAuth",
        supports_refresh=True,
        webhook_support=True,
        default_scopes=["read", "write"],
        required_scopes=["read"],
        api_base_url="https://api.fake.test/v1",
        authorization_url="https://auth.fake.test/authorize",
        token_url="https://auth.fake.test/token",
        webhook_id_header="x-fake-webhook-id",
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.bootstrap_result = BootstrapResult(
            success=True,
            webhook_id="wh-fake-1",
            webhook_secret="whsec-1",
            webhook_event_types=["message"],
            initial_sync_completed=True,
            metadata={"accountId": "acct-1"},
        )
        self.bootstrap_error: Optional[Exception] = None
        self.on_bootstrap: Optional[Callable[[BootstrapRequest], None]] = None
        self.refresh_result: Optional[RefreshResult] = None
        self.refresh_failures: Dict[str, Exception] = {}
        self.refresh_delay: float = 0
        self.revoke_result = RevokeResult(success=True)
        self.revoke_error: Optional[Exception] = None
        self.exchange_result: Optional[TokenExchangeResult] = None
        self.bootstrap_requests: List[BootstrapRequest] = []
        self.refresh_calls: List[str] = []
        self.revoke_calls: List[dict] = []
        self._lock = threading.Lock()

    def bootstrap(self, request: BootstrapRequest) -> BootstrapResult:
        self.bootstrap_requests.append(request)
        if self.on_bootstrap is not None:
            self.on_bootstrap(request)
        if self.bootstrap_error is not None:
            raise self.bootstrap_error
        return self.bootstrap_result

    def refresh_token(self, refresh_token, client_id, client_secret) -> RefreshResult:
        with self._lock:
            self.refresh_calls.append(refresh_token)
        if self.refresh_delay:
            time.sleep(self.refresh_delay)
        if refresh_token in self.refresh_failures:
            raise self.refresh_failures[refresh_token]
        if self.refresh_result is not None:
            return self.refresh_result
        return RefreshResult(
            success=True,
            access_token=f"access-for-{refresh_token}",
            refresh_token=f"rotated-{refresh_token}",
            expires_at=datetime.now(UTC) + timedelta(hours=2),
        )

    def revoke_access(self, access_token=None, refresh_token=None, client_id=None, client_secret=None) -> RevokeResult:
        self.revoke_calls.append({"access_token": access_token, "refresh_token": refresh_token})
        if self.revoke_error is not None:
            raise self.revoke_error
        return self.revoke_result

    def exchange_code(self, code, client_id, client_secret, redirect_uri, code_verifier=None) -> TokenExchangeResult:
        if self.exchange_result is not None:
            return self.exchange_result
        return TokenExchangeResult(
            success=True,
            access_token=f"access-{code}",
            refresh_token=f"refresh-{code}",
            expires_at=datetime.now(UTC) + timedelta(hours=1),
            scopes=["read"],
            additional_data={"token_type": "Bearer", "verifier_used": bool(code_verifier)},
        )


class FakeStaticProvider(BaseProvider):
    """Long-lived API keys: no refresh, no webhooks."""

    config = ProviderConfig(
        key="fakestatic",
        name="Fake Static",
        supports_refresh=False,
        webhook_support=False,
        api_base_url="https://api.static.test",
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.bootstrap_result = BootstrapResult(success=True, initial_sync_completed=False)

    def bootstrap(self, request: BootstrapRequest) -> BootstrapResult:
        return self.bootstrap_result

    def refresh_token(self, refresh_token, client_id, client_secret) -> RefreshResult:
        raise AssertionError("refresh must not be attempted for a provider without refresh support")

    def revoke_access(self, access_token=None, refresh_token=None, client_id=None, client_secret=None) -> RevokeResult:
        return RevokeResult(success=True)
