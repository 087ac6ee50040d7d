"""Instagram provider plugin (long-lived tokens, refreshed with the access token itself)."""

from typing import Optional

from ..constants import AuthType
from ..exceptions import ProviderError
from ..schemas.provider_schemas import (
    BootstrapRequest,
    BootstrapResult,
    ProviderConfig,
    RefreshResult,
    RevokeResult,
    TokenExchangeResult,
)
from .base import BaseProvider, expires_at_from


class InstagramProvider(BaseProvider):
    config = ProviderConfig(
        key="instagram",
        name="Instagram",
        auth_type=AuthType.OAUTH2,
        supports_refresh=True,
        webhook_support=False,
        default_scopes=["user_profile", "user_media"],
        required_scopes=["user_profile"],
        api_base_url="https://graph.instagram.com",
        authorization_url="https://api.instagram.com/oauth/authorize",
        token_url="https://api.instagram.com/oauth/access_token",
        refresh_with_access_token=True,
    )

    def bootstrap(self, request: BootstrapRequest) -> BootstrapResult:
        if not request.access_token:
            return BootstrapResult(success=False, error="Instagram requires an access token")

        try:
            profile = self.make_request(
                "GET",
                "/me",
                params={"fields": "id,username,account_type", "access_token": request.access_token},
            )
        except ProviderError as e:
            return BootstrapResult(success=False, error=f"Failed to validate Instagram token: {e.message}")

        return BootstrapResult(
            success=True,
            initial_sync_completed=True,
            metadata={
                "userId": profile.get("id"),
                "username": profile.get("username"),
                "accountType": profile.get("account_type"),
            },
        )

    def refresh_token(
        self, refresh_token: str, client_id: Optional[str], client_secret: Optional[str]
    ) -> RefreshResult:
        try:
            data = self.make_request(
                "GET",
                "/refresh_access_token",
                params={"grant_type": "ig_refresh_token", "access_token": refresh_token},
            )
        except ProviderError as e:
            return RefreshResult(success=False, error=f"Instagram token refresh failed: {e.message}")

        if not data.get("access_token"):
            return RefreshResult(success=False, error="Instagram token refresh failed: no access token returned")

        return RefreshResult(
            success=True,
            access_token=data["access_token"],
            refresh_token=data["access_token"],
            expires_at=expires_at_from(data.get("expires_in")),
        )

    def revoke_access(
        self,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
    ) -> RevokeResult:
        # Basic Display API has no revoke endpoint; deauthorization happens on the user's side
        return RevokeResult(success=True)

    def exchange_code(
        self,
        code: str,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        code_verifier: Optional[str] = None,
    ) -> TokenExchangeResult:
        try:
            short_lived = self.make_request(
                "POST",
                self.config.token_url,
                data={
                    "code": code,
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "redirect_uri": redirect_uri,
                    "grant_type": "authorization_code",
                },
            )
            long_lived = self.make_request(
                "GET",
                "/access_token",
                params={
                    "grant_type": "ig_exchange_token",
                    "client_secret": client_secret,
                    "access_token": short_lived.get("access_token"),
                },
            )
        except ProviderError as e:
            return TokenExchangeResult(success=False, error=e.message)

        return TokenExchangeResult(
            success=True,
            access_token=long_lived.get("access_token"),
            expires_at=expires_at_from(long_lived.get("expires_in")),
            additional_data={"account_id": short_lived.get("user_id")},
        )
