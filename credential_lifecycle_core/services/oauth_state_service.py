"""
OAuth authorization state.

A state token is issued when the user starts an authorization flow and
must come back unchanged on the callback. Each state is single use: it is
deleted when consumed, and the delete's row count decides the winner if
the same callback is replayed concurrently.
"""

from datetime import timedelta
from typing import List, Optional

from sqlalchemy import delete
from sqlalchemy.orm import Session

from ..config import OAuthConfig
from ..db.db_base import ensure_utc, utc_now
from ..db.db_oauth_state_models import OAuthState
from ..exceptions import OAuthStateError
from ..providers.registry import ProviderRegistry
from ..schemas.credential_schemas import OAuthStateRead
from ..utils.token_utils import generate_code_verifier, generate_state_token, mask_token
from .base_service import SessionService


class OAuthStateService(SessionService):
    def __init__(self, session: Session, registry: ProviderRegistry, config: Optional[OAuthConfig] = None):
        super().__init__(session)
        self.registry = registry
        self.config = config or OAuthConfig()

    def create_state(
        self,
        user_id: str,
        platform: str,
        redirect_uri: Optional[str] = None,
        scopes: Optional[List[str]] = None,
        use_pkce: bool = True,
    ) -> OAuthStateRead:
        """
        Issue a new state token, optionally with a PKCE verifier.

        Raises:
            ProviderNotFoundError: If ``platform`` is not registered
        """
        provider = self.registry.get(platform)
        row = OAuthState(
            state=generate_state_token(),
            user_id=user_id,
            platform=platform,
            code_verifier=generate_code_verifier() if use_pkce else None,
            redirect_uri=redirect_uri,
            scopes=scopes or list(provider.config.default_scopes),
            expires_at=utc_now() + timedelta(seconds=self.config.state_ttl_seconds),
        )
        with self.transaction():
            self.session.add(row)

        self.logger.info(
            "OAuth state created",
            extra={"user_id": user_id, "platform": platform, "state": mask_token(row.state)},
        )
        return OAuthStateRead.model_validate(row)

    def consume_state(self, state: str, platform: str) -> OAuthStateRead:
        """
        Validate and delete a state token.

        Raises:
            OAuthStateError: If the state is unknown, expired, already used
                or was issued for a different platform
        """
        row = self.session.query(OAuthState).filter(OAuthState.state == state).first()
        if row is None:
            raise OAuthStateError("Invalid or expired OAuth state", state=mask_token(state))

        consumed = OAuthStateRead.model_validate(row)
        with self.transaction():
            result = self.session.execute(
                delete(OAuthState)
                .where(OAuthState.id == row.id)
                .execution_options(synchronize_session=False)
            )
        self.session.expunge(row)

        if result.rowcount != 1:
            raise OAuthStateError("OAuth state already used", state=mask_token(state))
        if ensure_utc(consumed.expires_at) <= utc_now():
            raise OAuthStateError("OAuth state expired", state=mask_token(state))
        if consumed.platform != platform:
            raise OAuthStateError(
                "OAuth state was issued for a different platform",
                state=mask_token(state),
                platform=platform,
            )
        return consumed

    def purge_expired(self) -> int:
        """Delete expired states. Returns the number removed."""
        with self.transaction():
            result = self.session.execute(
                delete(OAuthState)
                .where(OAuthState.expires_at <= utc_now())
                .execution_options(synchronize_session=False)
            )
        if result.rowcount:
            self.logger.info("Expired OAuth states purged", extra={"count": result.rowcount})
        return result.rowcount
