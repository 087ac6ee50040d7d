"""Tests for CredentialStore."""

from datetime import UTC, datetime, timedelta

import pytest

from credential_lifecycle_core.constants import (
    CredentialKind,
    EventName,
    IntegrationStatus,
    SyncJobStatus,
)
from credential_lifecycle_core.db import Credential, Integration, IntegrationLog, SyncJob
from credential_lifecycle_core.exceptions import (
    DecryptionError,
    InvalidStateTransitionError,
    NotFoundError,
    ProviderError,
    ProviderNotFoundError,
    StaleCredentialError,
)
from credential_lifecycle_core.schemas.credential_schemas import (
    CredentialSecrets,
    KnownAdditionalData,
    SaveCredentialRequest,
)
from credential_lifecycle_core.schemas.provider_schemas import RevokeResult
from tests.fixtures.factories import CredentialFactory, IntegrationFactory, IntegrationWebhookFactory


def save_request(user_id="user-1", platform="fakeoauth", **kwargs):
    secrets = kwargs.pop("secrets", None) or CredentialSecrets(access_token="at-1", refresh_token="rt-1")
    return SaveCredentialRequest(
        user_id=user_id,
        platform=platform,
        platform_name=kwargs.pop("platform_name", "Fake OAuth"),
        secrets=secrets,
        **kwargs,
    )


def connected(cipher, **kwargs):
    integration = IntegrationFactory.create(**kwargs)
    credential = CredentialFactory.with_secrets(cipher, integration=integration)
    return integration, credential


def log_rows(session, user_id):
    return session.query(IntegrationLog).filter_by(user_id=user_id).order_by(IntegrationLog.created_at).all()


class TestSaveCredential:
    """Test storing credentials."""

    def test_first_save_creates_pending_integration_and_job(self, credential_store, db_session, job_queue):
        """A first save creates the integration, the credential and one pending bootstrap job."""
        result = credential_store.save_credential(save_request())

        assert result.success is True
        integration = db_session.get(Integration, result.integration_id)
        assert integration.status == IntegrationStatus.PENDING.value
        assert integration.health_score == 100

        job = db_session.get(SyncJob, result.job_id)
        assert job.status == SyncJobStatus.PENDING.value
        assert job.integration_id == integration.id
        assert job_queue.pending_count() == 1

        credential = db_session.query(Credential).filter_by(user_id="user-1").one()
        assert credential.is_active is True
        assert credential.integration_id == integration.id

    def test_secrets_are_encrypted_at_rest(self, credential_store, db_session, cipher):
        """Stored secret columns hold ciphertext, and absent secrets stay NULL."""
        credential_store.save_credential(save_request())

        credential = db_session.query(Credential).filter_by(user_id="user-1").one()
        assert credential.access_token != "at-1"
        assert cipher.decrypt(credential.access_token) == "at-1"
        assert cipher.decrypt(credential.refresh_token) == "rt-1"
        assert credential.api_key is None
        assert credential.api_secret is None

    def test_second_save_supersedes_in_place(self, credential_store, db_session, cipher):
        """Saving again keeps one credential row and one integration, with new secrets."""
        first = credential_store.save_credential(save_request())
        second = credential_store.save_credential(
            save_request(secrets=CredentialSecrets(access_token="at-2", refresh_token="rt-2"))
        )

        assert first.integration_id == second.integration_id
        assert first.job_id != second.job_id

        credentials = db_session.query(Credential).filter_by(user_id="user-1").all()
        assert len(credentials) == 1
        assert cipher.decrypt(credentials[0].access_token) == "at-2"
        assert credentials[0].version == 2
        assert db_session.query(Integration).filter_by(user_id="user-1").count() == 1

    def test_save_restarts_disconnected_integration(self, credential_store, db_session, cipher):
        """A disconnected integration comes back through pending on a fresh save."""
        integration, _ = connected(cipher, user_id="user-1", status=IntegrationStatus.DISCONNECTED.value)

        result = credential_store.save_credential(save_request())

        assert result.integration_id == integration.id
        db_session.refresh(integration)
        assert integration.status == IntegrationStatus.PENDING.value
        assert integration.error_message is None

    def test_save_writes_success_log(self, credential_store, db_session):
        """The save is recorded in the integration log."""
        credential_store.save_credential(save_request(kind=CredentialKind.OAUTH))

        logs = log_rows(db_session, "user-1")
        assert logs[-1].message == "Successfully stored oauth credential for Fake OAuth"
        assert logs[-1].action == "store_credential"
        assert logs[-1].log_level == "success"

    def test_workspaces_get_separate_integrations(self, credential_store):
        """The same provider under two workspaces gives two integrations."""
        a = credential_store.save_credential(save_request(workspace_id="ws-a"))
        b = credential_store.save_credential(save_request(workspace_id="ws-b"))

        assert a.integration_id != b.integration_id

    def test_unknown_platform_rejected(self, credential_store, db_session):
        """Saving for an unregistered provider fails before anything is written."""
        with pytest.raises(ProviderNotFoundError):
            credential_store.save_credential(save_request(platform="unknown"))

        assert db_session.query(Credential).count() == 0

    def test_enqueue_failure_keeps_job_pending(self, credential_store, db_session, job_queue, monkeypatch):
        """A failed enqueue is logged and the job row stays pending for re-dispatch."""

        def broken(job_id):
            raise ConnectionError("queue down")

        monkeypatch.setattr(job_queue, "enqueue", broken)

        result = credential_store.save_credential(save_request())

        assert result.success is True
        assert db_session.get(SyncJob, result.job_id).status == SyncJobStatus.PENDING.value


class TestGetCredential:
    """Test credential reads."""

    def test_returns_metadata_without_secrets(self, credential_store, cipher):
        """By default no secret material is returned."""
        integration, _ = connected(cipher)

        read = credential_store.get_credential(integration.user_id, "fakeoauth")

        assert read.platform == "fakeoauth"
        assert read.secrets is None
        assert "access-1" not in read.model_dump_json()

    def test_returns_decrypted_secrets_on_request(self, credential_store, cipher):
        """Secrets are decrypted only when asked for."""
        integration, _ = connected(cipher)

        read = credential_store.get_credential(integration.user_id, "fakeoauth", include_secrets=True)

        assert read.secrets.access_token == "access-1"
        assert read.secrets.refresh_token == "refresh-1"

    def test_each_read_increments_usage(self, credential_store, cipher):
        """connection_count goes up by one per read and last_used_at is set."""
        integration, _ = connected(cipher)

        first = credential_store.get_credential(integration.user_id, "fakeoauth")
        second = credential_store.get_credential(integration.user_id, "fakeoauth")

        assert first.connection_count == 1
        assert second.connection_count == 2
        assert second.last_used_at is not None

    def test_missing_returns_none(self, credential_store):
        """Absent credentials are not an error."""
        assert credential_store.get_credential("nobody", "fakeoauth") is None

    def test_inactive_credential_not_returned(self, credential_store, cipher):
        """Deactivated credentials are invisible to reads."""
        integration = IntegrationFactory.create()
        CredentialFactory.with_secrets(cipher, integration=integration, is_active=False)

        assert credential_store.get_credential(integration.user_id, "fakeoauth") is None

    def test_decrypt_failure_marks_integration_error(self, credential_store, db_session):
        """Corrupted ciphertext raises and moves the integration to error."""
        integration = IntegrationFactory.create(health_score=100)
        CredentialFactory.create(
            user_id=integration.user_id, integration_id=integration.id, access_token="not-a-fernet-token"
        )

        with pytest.raises(DecryptionError):
            credential_store.get_credential(integration.user_id, "fakeoauth", include_secrets=True)

        db_session.refresh(integration)
        assert integration.status == IntegrationStatus.ERROR.value
        assert integration.error_message == "Failed to decrypt credential data"
        assert integration.health_score == 90


class TestUpdateCredentialStatus:
    """Test manual status changes."""

    def test_sets_status_and_logs(self, credential_store, db_session, cipher):
        """The integration moves and the change is logged."""
        integration, credential = connected(cipher)

        read = credential_store.update_credential_status(integration.user_id, "fakeoauth", "error")

        assert read.status == IntegrationStatus.ERROR
        db_session.refresh(credential)
        assert credential.status == "error"
        assert log_rows(db_session, integration.user_id)[-1].message == "Status updated to error"

    def test_missing_credential(self, credential_store):
        with pytest.raises(NotFoundError):
            credential_store.update_credential_status("nobody", "fakeoauth", IntegrationStatus.ERROR)

    def test_disallowed_transition(self, credential_store, cipher):
        """disconnected -> connected has to go through a new save."""
        integration, _ = connected(cipher, status=IntegrationStatus.DISCONNECTED.value)

        with pytest.raises(InvalidStateTransitionError):
            credential_store.update_credential_status(integration.user_id, "fakeoauth", IntegrationStatus.CONNECTED)


class TestDeactivateCredential:
    """Test disconnecting an integration."""

    def test_revokes_and_disconnects(self, credential_store, db_session, cipher, fake_oauth, published):
        """Provider revoke is attempted, then the credential and webhook are deactivated."""
        integration, credential = connected(cipher)
        webhook = IntegrationWebhookFactory.create(integration_id=integration.id)

        read = credential_store.deactivate_credential(integration.user_id, "fakeoauth")

        assert read.status == IntegrationStatus.DISCONNECTED
        assert fake_oauth.revoke_calls == [{"access_token": "access-1", "refresh_token": "refresh-1"}]

        db_session.refresh(credential)
        db_session.refresh(webhook)
        assert credential.is_active is False
        assert credential.status == IntegrationStatus.DISCONNECTED.value
        assert webhook.is_active is False

        log = log_rows(db_session, integration.user_id)[-1]
        assert log.message == "Integration disconnected successfully"
        assert log.error_details == {"providerRevoked": True}

        names = [name for name, _ in published]
        assert EventName.CREDENTIAL_REVOKED.value in names
        assert EventName.STATUS_CHANGED.value in names

    def test_provider_timeout_still_disconnects(self, credential_store, db_session, cipher, fake_oauth):
        """A revoke that times out is recorded but never blocks local deactivation."""
        integration, credential = connected(cipher)
        fake_oauth.revoke_error = ProviderError("Fake OAuth request timed out after 1s", provider_key="fakeoauth")

        read = credential_store.deactivate_credential(integration.user_id, "fakeoauth")

        assert read.status == IntegrationStatus.DISCONNECTED
        db_session.refresh(credential)
        assert credential.is_active is False
        log = log_rows(db_session, integration.user_id)[-1]
        assert log.error_details == {
            "providerRevoked": False,
            "providerError": "Fake OAuth request timed out after 1s",
        }

    def test_provider_rejection_still_disconnects(self, credential_store, db_session, cipher, fake_oauth):
        integration, _ = connected(cipher)
        fake_oauth.revoke_result = RevokeResult(success=False, error="invalid_token")

        read = credential_store.deactivate_credential(integration.user_id, "fakeoauth")

        assert read.status == IntegrationStatus.DISCONNECTED
        assert log_rows(db_session, integration.user_id)[-1].error_details["providerError"] == "invalid_token"

    def test_undecryptable_credential_still_disconnects(self, credential_store, db_session, fake_oauth):
        """Revoke is skipped when secrets cannot be decrypted."""
        integration = IntegrationFactory.create()
        CredentialFactory.create(user_id=integration.user_id, integration_id=integration.id, access_token="garbage")

        read = credential_store.deactivate_credential(integration.user_id, "fakeoauth")

        assert read.status == IntegrationStatus.DISCONNECTED
        assert fake_oauth.revoke_calls == []

    def test_missing_credential(self, credential_store):
        with pytest.raises(NotFoundError):
            credential_store.deactivate_credential("nobody", "fakeoauth")

    def test_second_deactivate_is_not_found(self, credential_store, cipher):
        """Only an active credential can be deactivated."""
        integration, _ = connected(cipher)
        credential_store.deactivate_credential(integration.user_id, "fakeoauth")

        with pytest.raises(NotFoundError):
            credential_store.deactivate_credential(integration.user_id, "fakeoauth")


class TestRefreshLease:
    """Test the refresh lease and compare-and-swap update."""

    def test_lease_is_exclusive(self, credential_store, cipher):
        """A held lease cannot be taken a second time."""
        _, credential = connected(cipher)

        version = credential_store.acquire_refresh_lease(credential, 60)

        assert version == 2
        assert credential_store.acquire_refresh_lease(credential, 60) is None

    def test_expired_lease_can_be_taken(self, credential_store, db_session, cipher):
        """A lease left behind by a crashed worker expires on its own."""
        _, credential = connected(cipher)
        credential.refresh_lease_expires_at = datetime.now(UTC) - timedelta(seconds=5)
        db_session.commit()

        assert credential_store.acquire_refresh_lease(credential, 60) is not None

    def test_update_after_refresh(self, credential_store, db_session, cipher, published):
        """New tokens are written, the lease is cleared and the integration is connected."""
        integration, credential = connected(cipher, status=IntegrationStatus.ERROR.value, health_score=40)
        version = credential_store.acquire_refresh_lease(credential, 60)
        expires = datetime.now(UTC) + timedelta(hours=2)

        credential_store.update_after_refresh(
            credential.id, cipher.encrypt("access-2"), cipher.encrypt("refresh-2"), expires, version
        )

        db_session.refresh(credential)
        db_session.refresh(integration)
        assert cipher.decrypt(credential.access_token) == "access-2"
        assert cipher.decrypt(credential.refresh_token) == "refresh-2"
        assert credential.version == version + 1
        assert credential.refresh_lease_expires_at is None
        assert credential.last_refreshed_at is not None
        assert integration.status == IntegrationStatus.CONNECTED.value
        assert integration.health_score == 100
        assert EventName.CREDENTIAL_REFRESHED.value in [name for name, _ in published]

    def test_update_without_rotated_refresh_token_keeps_old(self, credential_store, db_session, cipher):
        _, credential = connected(cipher)
        version = credential_store.acquire_refresh_lease(credential, 60)

        credential_store.update_after_refresh(credential.id, cipher.encrypt("access-2"), None, None, version)

        db_session.refresh(credential)
        assert cipher.decrypt(credential.refresh_token) == "refresh-1"

    def test_stale_version_rejected(self, credential_store, cipher):
        """A write with an outdated version loses."""
        _, credential = connected(cipher)
        version = credential_store.acquire_refresh_lease(credential, 60)

        with pytest.raises(StaleCredentialError):
            credential_store.update_after_refresh(credential.id, cipher.encrypt("x"), None, None, version - 1)

    def test_deactivate_during_refresh_wins(self, credential_store, db_session, cipher):
        """A refresh that finishes after a revoke never resurrects the credential."""
        integration, credential = connected(cipher)
        version = credential_store.acquire_refresh_lease(credential, 60)

        credential_store.deactivate_credential(integration.user_id, "fakeoauth")

        with pytest.raises(StaleCredentialError):
            credential_store.update_after_refresh(credential.id, cipher.encrypt("x"), None, None, version)

        db_session.refresh(credential)
        db_session.refresh(integration)
        assert credential.is_active is False
        assert integration.status == IntegrationStatus.DISCONNECTED.value


class TestIntegrationReads:
    """Test listing and fetching integrations."""

    def test_list_only_returns_own_integrations(self, credential_store):
        mine = IntegrationFactory.create(user_id="user-1")
        IntegrationFactory.create(user_id="user-2")

        listed = credential_store.list_integrations("user-1")

        assert [i.id for i in listed] == [mine.id]

    def test_get_integration_checks_owner(self, credential_store):
        integration = IntegrationFactory.create(user_id="user-1", metadata_={"teamId": "T1"})

        assert credential_store.get_integration("user-1", integration.id).metadata == {"teamId": "T1"}
        assert credential_store.get_integration("user-2", integration.id) is None


class TestKnownAdditionalData:
    def test_reads_only_known_keys(self):
        """Unknown keys and nested values are left out of the narrowed view."""
        known = KnownAdditionalData.narrow(
            {"team_id": "T1", "bot_user_id": 42, "profile": {"name": "x"}, "scope": None, "extra": "y"}
        )

        assert known.team_id == "T1"
        assert known.bot_user_id == "42"
        assert known.scope is None
        assert not hasattr(known, "extra")

    @pytest.mark.parametrize("data", [None, [], "token_type=bearer"])
    def test_non_mapping_gives_empty_view(self, data):
        """Anything that is not a dict narrows to all-None fields."""
        assert KnownAdditionalData.narrow(data) == KnownAdditionalData()
