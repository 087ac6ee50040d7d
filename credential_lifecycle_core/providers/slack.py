"""Slack provider plugin. Slack bot tokens do not expire and cannot be refreshed."""

from typing import Any, Dict, Optional

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
from .base import BaseProvider


class SlackProvider(BaseProvider):
    config = ProviderConfig(
        key="slack",
        name="Slack",
        auth_type=AuthType.OAUTH2,
        supports_refresh=False,
        webhook_support=True,
        default_scopes=["channels:read", "chat:write", "team:read"],
        required_scopes=["channels:read", "chat:write"],
        api_base_url="https://slack.com/api",
        authorization_url="https://slack.com/oauth/v2/authorize",
        token_url="https://slack.com/api/oauth.v2.access",
        webhook_id_header="x-slack-webhook-id",
    )

    def _call(self, method: str, endpoint: str, access_token: Optional[str] = None, **kwargs) -> Dict[str, Any]:
        """Slack reports failures as HTTP 200 with ``ok: false``."""
        data = self.make_request(method, endpoint, access_token=access_token, **kwargs)
        if not data.get("ok"):
            raise ProviderError(f"Slack API error: {data.get('error', 'unknown_error')}", provider_key=self.key)
        return data

    def bootstrap(self, request: BootstrapRequest) -> BootstrapResult:
        if not request.access_token:
            return BootstrapResult(success=False, error="Slack requires an access token")

        try:
            auth = self._call("POST", "auth.test", access_token=request.access_token)
            team = self._call("GET", "team.info", access_token=request.access_token).get("team", {})
        except ProviderError as e:
            return BootstrapResult(success=False, error=f"Failed to validate Slack token: {e.message}")

        return BootstrapResult(
            success=True,
            initial_sync_completed=True,
            webhook_event_types=["message", "channel_created"],
            metadata={
                "teamId": team.get("id") or auth.get("team_id"),
                "teamName": team.get("name") or auth.get("team"),
                "teamDomain": team.get("domain"),
                "userId": auth.get("user_id"),
                "userName": auth.get("user"),
                "botUserId": auth.get("bot_id"),
            },
        )

    def refresh_token(
        self, refresh_token: str, client_id: Optional[str], client_secret: Optional[str]
    ) -> RefreshResult:
        return RefreshResult(success=False, error="Slack does not support token refresh")

    def revoke_access(
        self,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
    ) -> RevokeResult:
        if not access_token:
            return RevokeResult(success=False, error="Access token is required to revoke Slack access")
        try:
            self._call("POST", "auth.revoke", access_token=access_token)
        except ProviderError as e:
            return RevokeResult(success=False, error=f"Slack token revocation failed: {e.message}")
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
            data = self._call(
                "POST",
                "oauth.v2.access",
                data={
                    "code": code,
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "redirect_uri": redirect_uri,
                },
            )
        except ProviderError as e:
            return TokenExchangeResult(success=False, error=e.message)

        team = data.get("team") or {}
        scope = data.get("scope")
        return TokenExchangeResult(
            success=True,
            access_token=data.get("access_token"),
            refresh_token=data.get("refresh_token"),
            scopes=scope.split(",") if scope else None,
            additional_data={
                "team_id": team.get("id"),
                "team_name": team.get("name"),
                "bot_user_id": data.get("bot_user_id"),
                "app_id": data.get("app_id"),
                "scope": scope,
            },
        )
