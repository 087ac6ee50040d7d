"""Tests for OAuthStateService."""

from datetime import UTC, datetime, timedelta

import pytest

from credential_lifecycle_core.config import OAuthConfig
from credential_lifecycle_core.db import OAuthState
from credential_lifecycle_core.exceptions import OAuthStateError, ProviderNotFoundError
from credential_lifecycle_core.services import OAuthStateService


class TestCreateState:
    def test_creates_state_with_pkce_and_default_scopes(self, oauth_state_service, db_session):
        state = oauth_state_service.create_state("user-1", "fakeoauth", redirect_uri="https://app/cb")

        assert len(state.state) >= 32
        assert state.code_verifier is not None
        assert state.scopes == ["read", "write"]
        assert state.code_verifier not in repr(state)
        assert db_session.query(OAuthState).count() == 1

    def test_without_pkce(self, oauth_state_service):
        state = oauth_state_service.create_state("user-1", "fakeoauth", scopes=["read"], use_pkce=False)

        assert state.code_verifier is None
        assert state.scopes == ["read"]

    def test_unknown_provider(self, oauth_state_service):
        with pytest.raises(ProviderNotFoundError):
            oauth_state_service.create_state("user-1", "nope")


class TestConsumeState:
    """Test single-use state validation."""

    def test_consume_returns_state_and_deletes_it(self, oauth_state_service, db_session):
        created = oauth_state_service.create_state("user-1", "fakeoauth", redirect_uri="https://app/cb")

        consumed = oauth_state_service.consume_state(created.state, "fakeoauth")

        assert consumed.user_id == "user-1"
        assert consumed.redirect_uri == "https://app/cb"
        assert consumed.code_verifier == created.code_verifier
        assert db_session.query(OAuthState).count() == 0

    def test_replay_rejected(self, oauth_state_service):
        """A state can be consumed once."""
        created = oauth_state_service.create_state("user-1", "fakeoauth")
        oauth_state_service.consume_state(created.state, "fakeoauth")

        with pytest.raises(OAuthStateError, match="Invalid or expired OAuth state"):
            oauth_state_service.consume_state(created.state, "fakeoauth")

    def test_unknown_state(self, oauth_state_service):
        with pytest.raises(OAuthStateError):
            oauth_state_service.consume_state("made-up", "fakeoauth")

    def test_expired_state_rejected_and_removed(self, db_session, registry):
        service = OAuthStateService(db_session, registry, config=OAuthConfig(state_ttl_seconds=-1))
        created = service.create_state("user-1", "fakeoauth")

        with pytest.raises(OAuthStateError, match="OAuth state expired"):
            service.consume_state(created.state, "fakeoauth")
        assert db_session.query(OAuthState).count() == 0

    def test_platform_mismatch(self, oauth_state_service):
        created = oauth_state_service.create_state("user-1", "fakeoauth")

        with pytest.raises(OAuthStateError, match="different platform"):
            oauth_state_service.consume_state(created.state, "fakestatic")


class TestPurgeExpired:
    def test_purges_only_expired(self, oauth_state_service, db_session):
        oauth_state_service.create_state("user-1", "fakeoauth")
        db_session.add(
            OAuthState(
                state="stale-state",
                user_id="user-2",
                platform="fakeoauth",
                expires_at=datetime.now(UTC) - timedelta(minutes=1),
            )
        )
        db_session.commit()

        assert oauth_state_service.purge_expired() == 1
        assert db_session.query(OAuthState).count() == 1
