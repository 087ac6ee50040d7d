"""Gmail provider plugin (Google OAuth 2.0)."""

from typing import Dict, Optional

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

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"


class GmailProvider(BaseProvider):
    config = ProviderConfig(
        key="gmail",
        name="Gmail",
        auth_type=AuthType.OAUTH2,
        supports_refresh=True,
        webhook_support=True,
        default_scopes=[
            "https://www.googleapis.com/auth/gmail.readonly",
            "https://www.googleapis.com/auth/gmail.send",
        ],
        required_scopes=["https://www.googleapis.com/auth/gmail.readonly"],
        api_base_url="https://gmail.googleapis.com/gmail/v1",
        authorization_url="https://accounts.google.com/o/oauth2/v2/auth",
        token_url=GOOGLE_TOKEN_URL,
        webhook_id_header="x-goog-channel-id",
    )

    def extra_authorization_params(self) -> Dict[str, str]:
        # offline access + consent so Google always issues a refresh token
        return {"access_type": "offline", "prompt": "consent"}

    def bootstrap(self, request: BootstrapRequest) -> BootstrapResult:
        if not request.access_token:
            return BootstrapResult(success=False, error="Gmail requires an access token")

        try:
            profile = self.make_request("GET", "/users/me/profile", access_token=request.access_token)
        except ProviderError as e:
            return BootstrapResult(success=False, error=f"Failed to validate Gmail access token: {e.message}")

        return BootstrapResult(
            success=True,
            initial_sync_completed=True,
            metadata={
                "emailAddress": profile.get("emailAddress"),
                "messagesTotal": profile.get("messagesTotal"),
                "threadsTotal": profile.get("threadsTotal"),
                "historyId": profile.get("historyId"),
            },
        )

    def refresh_token(
        self, refresh_token: str, client_id: Optional[str], client_secret: Optional[str]
    ) -> RefreshResult:
        if not client_id or not client_secret:
            return RefreshResult(success=False, error="Missing Gmail OAuth client credentials")

        try:
            data = self.make_request(
                "POST",
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        except ProviderError as e:
            return RefreshResult(success=False, error=f"Gmail token refresh failed: {e.message}")

        if not data.get("access_token"):
            return RefreshResult(success=False, error="Gmail token refresh failed: no access token returned")

        return RefreshResult(
            success=True,
            access_token=data["access_token"],
            # Google usually omits the refresh token on refresh; keep the current one
            refresh_token=data.get("refresh_token") or refresh_token,
            expires_at=expires_at_from(data.get("expires_in")),
        )

    def revoke_access(
        self,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
    ) -> RevokeResult:
        token = refresh_token or access_token
        if not token:
            return RevokeResult(success=False, error="No token available to revoke")

        try:
            self.make_request(
                "POST",
                GOOGLE_REVOKE_URL,
                params={"token": token},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except ProviderError as e:
            return RevokeResult(success=False, error=f"Gmail token revocation failed: {e.message}")
        return RevokeResult(success=True)

    def exchange_code(
        self,
        code: str,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        code_verifier: Optional[str] = None,
    ) -> TokenExchangeResult:
        form = {
            "code": code,
            "client_id": client_id,
            "client_secret": client_secret,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        }
        if code_verifier:
            form["code_verifier"] = code_verifier

        try:
            data = self.make_request("POST", GOOGLE_TOKEN_URL, data=form)
        except ProviderError as e:
            return TokenExchangeResult(success=False, error=e.message)

        scope = data.get("scope")
        return TokenExchangeResult(
            success=True,
            access_token=data.get("access_token"),
            refresh_token=data.get("refresh_token"),
            expires_at=expires_at_from(data.get("expires_in")),
            scopes=scope.split() if scope else None,
            additional_data={"token_type": data.get("token_type"), "scope": scope},
        )
