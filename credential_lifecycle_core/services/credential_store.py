"""
Credential store.

Owns the encrypted credential rows and their integrations. There is at
most one credential row per (user, platform); saving again supersedes the
previous secrets in place. Writes that race with a token refresh go
through conditional updates on ``Credential.version``.
"""

from datetime import timedelta
from typing import List, Optional, Tuple

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import LifecycleConfig, ProviderSettings
from ..constants import (
    EventName,
    IntegrationAction,
    IntegrationStatus,
    SyncJobStatus,
    SyncJobType,
)
from ..context.operation_context import operation
from ..db.db_base import utc_now
from ..db.db_credential_models import Credential
from ..db.db_integration_models import Integration, IntegrationWebhook
from ..db.db_sync_job_models import SyncJob
from ..exceptions import DecryptionError, StaleCredentialError, not_found
from ..providers.registry import ProviderRegistry
from ..schemas.credential_schemas import CredentialRead, CredentialSecrets, SaveCredentialRequest
from ..schemas.integration_schemas import IntegrationRead
from ..schemas.result_schemas import StoreCredentialResult
from ..utils.cipher import Cipher
from ..utils.events import EventBus
from .lifecycle import LifecycleBoundService

SECRET_FIELDS = ("access_token", "refresh_token", "api_key", "api_secret")


class CredentialStore(LifecycleBoundService):
    """CRUD over credentials and integrations with one active credential per (user, platform)."""

    def __init__(
        self,
        session: Session,
        cipher: Cipher,
        registry: ProviderRegistry,
        provider_settings: Optional[ProviderSettings] = None,
        lifecycle_config: Optional[LifecycleConfig] = None,
        events: Optional[EventBus] = None,
        job_queue=None,
    ):
        super().__init__(session, lifecycle_config=lifecycle_config, events=events)
        self.cipher = cipher
        self.registry = registry
        self.provider_settings = provider_settings or ProviderSettings()
        self.job_queue = job_queue

    # ==================== SAVE ====================

    @operation(name="credential_store.save_credential")
    def save_credential(self, request: SaveCredentialRequest) -> StoreCredentialResult:
        """
        Store a credential, reset its integration to pending and hand a
        bootstrap job to the queue.

        Raises:
            ProviderNotFoundError: If ``request.platform`` is not registered
        """
        self.registry.get(request.platform)
        encrypted = {field: self.cipher.encrypt_optional(getattr(request.secrets, field)) for field in SECRET_FIELDS}

        try:
            integration_id, job_id = self._save(request, encrypted)
        except IntegrityError:
            # A concurrent first save created the same rows; the second attempt updates them
            self.logger.warning(
                "Concurrent credential save detected, retrying",
                extra={"user_id": request.user_id, "platform": request.platform},
            )
            integration_id, job_id = self._save(request, encrypted)

        self.logger.info(
            "Credential stored",
            extra={
                "user_id": request.user_id,
                "platform": request.platform,
                "credential_type": request.kind.value,
                "integration_id": integration_id,
                "job_id": job_id,
            },
        )
        self._enqueue(job_id)
        return StoreCredentialResult(success=True, integration_id=integration_id, job_id=job_id)

    def _save(self, request: SaveCredentialRequest, encrypted: dict) -> Tuple[str, str]:
        with self.transaction():
            integration = self._upsert_integration(request)
            credential = self._find_credential(request.user_id, request.platform)
            if credential is None:
                credential = Credential(user_id=request.user_id, platform=request.platform, version=0)
                self.session.add(credential)

            credential.platform_name = request.platform_name
            credential.credential_type = request.kind.value
            for field, value in encrypted.items():
                setattr(credential, field, value)
            credential.scopes = request.scopes
            credential.expires_at = request.expires_at
            credential.additional_data = request.additional_data
            credential.status = IntegrationStatus.CONNECTED.value
            credential.is_active = True
            credential.integration_id = integration.id
            credential.last_used_at = utc_now()
            credential.version = (credential.version or 0) + 1
            credential.refresh_lease_expires_at = None

            self.lifecycle.mark_pending(
                integration,
                action=IntegrationAction.STORE_CREDENTIAL,
                message=f"Successfully stored {request.kind.value} credential for {request.platform_name}",
            )

            job = SyncJob(
                integration_id=integration.id,
                job_type=SyncJobType.BOOTSTRAP.value,
                status=SyncJobStatus.PENDING.value,
            )
            self.session.add(job)
            self.session.flush()
            return integration.id, job.id

    def _upsert_integration(self, request: SaveCredentialRequest) -> Integration:
        query = self.session.query(Integration).filter(
            Integration.user_id == request.user_id,
            Integration.provider_key == request.platform,
        )
        if request.workspace_id is None:
            query = query.filter(Integration.workspace_id.is_(None))
        else:
            query = query.filter(Integration.workspace_id == request.workspace_id)

        integration = query.first()
        if integration is None:
            integration = Integration(
                user_id=request.user_id,
                workspace_id=request.workspace_id,
                provider_key=request.platform,
                provider_name=request.platform_name,
                status=IntegrationStatus.PENDING.value,
                health_score=100,
                metadata_={},
            )
            self.session.add(integration)
            self.session.flush()
        else:
            integration.provider_name = request.platform_name
        return integration

    def _enqueue(self, job_id: str) -> None:
        if self.job_queue is None:
            return
        try:
            self.job_queue.enqueue(job_id)
        except Exception as e:
            # The job row stays pending and can be re-dispatched
            self.logger.error(
                f"Failed to enqueue bootstrap job: {str(e)}",
                extra={"job_id": job_id, "error_type": type(e).__name__},
            )

    # ==================== READ ====================

    def get_credential(
        self, user_id: str, platform: str, include_secrets: bool = False
    ) -> Optional[CredentialRead]:
        """
        Return the active credential for (user, platform) or None.

        Every successful read bumps ``connection_count`` and ``last_used_at``.

        Raises:
            DecryptionError: If secrets were requested and cannot be decrypted;
                the integration is moved to error first
        """
        credential = self._find_credential(user_id, platform, active_only=True)
        if credential is None:
            return None

        secrets = None
        if include_secrets:
            try:
                secrets = self.decrypt_secrets(credential)
            except DecryptionError:
                self.record_decrypt_failure(credential, IntegrationAction.HEALTH_CHECK)
                raise

        self.session.execute(
            update(Credential)
            .where(Credential.id == credential.id)
            .values(connection_count=Credential.connection_count + 1, last_used_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        self.session.refresh(credential)

        read = CredentialRead.model_validate(credential)
        if secrets is not None:
            read.secrets = secrets
        return read

    def decrypt_secrets(self, credential: Credential) -> CredentialSecrets:
        """Decrypt every stored secret field. Raises DecryptionError on the first bad one."""
        return CredentialSecrets(
            **{field: self.cipher.decrypt(getattr(credential, field)) or None for field in SECRET_FIELDS}
        )

    def record_decrypt_failure(self, credential: Credential, action: IntegrationAction) -> None:
        """Move the owning integration to error after a failed decrypt."""
        with self.transaction():
            integration = self.integration_for(credential)
            if integration is not None:
                self.lifecycle.mark_error(
                    integration, "Failed to decrypt credential data", action=action
                )

    def list_integrations(self, user_id: str) -> List[IntegrationRead]:
        rows = (
            self.session.query(Integration)
            .filter(Integration.user_id == user_id)
            .order_by(Integration.created_at.asc())
            .all()
        )
        return [IntegrationRead.from_model(row) for row in rows]

    def get_integration(self, user_id: str, integration_id: str) -> Optional[IntegrationRead]:
        integration = (
            self.session.query(Integration)
            .filter(Integration.id == integration_id, Integration.user_id == user_id)
            .first()
        )
        return IntegrationRead.from_model(integration) if integration else None

    # ==================== STATUS ====================

    @operation(name="credential_store.update_credential_status")
    def update_credential_status(
        self, user_id: str, platform: str, status: IntegrationStatus
    ) -> IntegrationRead:
        """
        Manually set the status of a credential and its integration.

        Raises:
            NotFoundError: If no credential exists for (user, platform)
            InvalidStateTransitionError: If the integration cannot move to ``status``
        """
        status = IntegrationStatus(status)
        credential = self._find_credential(user_id, platform)
        if credential is None:
            raise not_found("Credential", user_id=user_id, platform=platform)

        with self.transaction():
            integration = self.integration_for(credential)
            if integration is None:
                raise not_found("Integration", user_id=user_id, platform=platform)
            self.lifecycle.transition(
                integration,
                status,
                action=IntegrationAction.STATUS_UPDATE,
                message=f"Status updated to {status.value}",
            )
            credential.status = status.value
            credential.version = (credential.version or 0) + 1
        return IntegrationRead.from_model(integration)

    # ==================== DEACTIVATE ====================

    @operation(name="credential_store.deactivate_credential")
    def deactivate_credential(self, user_id: str, platform: str) -> IntegrationRead:
        """
        Revoke at the provider (best effort) and deactivate locally.

        The local deactivation is unconditional and bumps ``version`` so a
        refresh that is in flight loses its compare-and-swap.

        Raises:
            NotFoundError: If there is no active credential for (user, platform)
            ProviderNotFoundError: If the platform is not registered
        """
        credential = self._find_credential(user_id, platform, active_only=True)
        if credential is None:
            raise not_found("Credential", user_id=user_id, platform=platform)
        provider = self.registry.get(platform)

        revoke_error = self._revoke_at_provider(provider, credential)

        with self.transaction():
            result = self.session.execute(
                update(Credential)
                .where(Credential.id == credential.id, Credential.is_active.is_(True))
                .values(
                    is_active=False,
                    status=IntegrationStatus.DISCONNECTED.value,
                    version=Credential.version + 1,
                    refresh_lease_expires_at=None,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise not_found("Credential", user_id=user_id, platform=platform)

            integration = self.integration_for(credential)
            if integration is None:
                raise not_found("Integration", user_id=user_id, platform=platform)

            details = {"providerRevoked": revoke_error is None}
            if revoke_error:
                details["providerError"] = revoke_error
            self.lifecycle.mark_disconnected(
                integration,
                action=IntegrationAction.REVOKE_TOKEN,
                message="Integration disconnected successfully",
                error_details=details,
            )
            self.session.query(IntegrationWebhook).filter(
                IntegrationWebhook.integration_id == integration.id
            ).update({IntegrationWebhook.is_active: False}, synchronize_session=False)

            self.lifecycle.queue_event(
                EventName.CREDENTIAL_REVOKED,
                {
                    "integration_id": integration.id,
                    "user_id": user_id,
                    "provider_key": platform,
                    "provider_revoked": revoke_error is None,
                },
            )

        self.session.refresh(credential)
        return IntegrationRead.from_model(integration)

    def _revoke_at_provider(self, provider, credential: Credential) -> Optional[str]:
        """Returns the provider-side error message, or None when the revoke succeeded."""
        try:
            secrets = self.decrypt_secrets(credential)
        except DecryptionError:
            self.logger.warning(
                "Skipping provider revoke, credential cannot be decrypted",
                extra={"credential_id": credential.id, "platform": credential.platform},
            )
            return "Failed to decrypt credential data"

        client_id, client_secret = self.provider_settings.client_credentials(provider.key)
        result = provider.run_revoke(
            access_token=secrets.access_token,
            refresh_token=secrets.refresh_token,
            client_id=client_id,
            client_secret=client_secret,
        )
        if result.success:
            return None

        self.logger.warning(
            f"Provider revoke failed: {result.error}",
            extra={"credential_id": credential.id, "platform": credential.platform},
        )
        return result.error or "Provider revoke failed"

    # ==================== REFRESH SUPPORT ====================

    def acquire_refresh_lease(self, credential: Credential, lease_seconds: int) -> Optional[int]:
        """
        Claim the per-credential refresh lease with a compare-and-swap on ``version``.

        Returns:
            The credential version the lease holder must present to
            ``update_after_refresh``, or None if another writer got there first
        """
        now = utc_now()
        result = self.session.execute(
            update(Credential)
            .where(
                Credential.id == credential.id,
                Credential.version == credential.version,
                Credential.is_active.is_(True),
                or_(
                    Credential.refresh_lease_expires_at.is_(None),
                    Credential.refresh_lease_expires_at < now,
                ),
            )
            .values(
                version=Credential.version + 1,
                refresh_lease_expires_at=now + timedelta(seconds=lease_seconds),
            )
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        if result.rowcount != 1:
            self.logger.info(
                "Refresh lease not acquired",
                extra={"credential_id": credential.id, "platform": credential.platform},
            )
            return None
        self.session.refresh(credential)
        return credential.version

    def release_refresh_lease(self, credential_id: str, lease_version: int) -> None:
        """Drop a lease without changing the credential. Joins the caller's transaction."""
        self.session.execute(
            update(Credential)
            .where(Credential.id == credential_id, Credential.version == lease_version)
            .values(refresh_lease_expires_at=None)
            .execution_options(synchronize_session=False)
        )

    @operation(name="credential_store.update_after_refresh")
    def update_after_refresh(
        self,
        credential_id: str,
        new_access_token_enc: Optional[str],
        new_refresh_token_enc: Optional[str],
        new_expires_at,
        expected_version: int,
    ) -> Credential:
        """
        Persist rotated tokens and return the integration to connected.

        ``new_refresh_token_enc`` of None keeps the stored refresh token.

        Raises:
            StaleCredentialError: If the credential changed since the lease was taken
        """
        now = utc_now()
        values = {
            "access_token": new_access_token_enc,
            "expires_at": new_expires_at,
            "last_refreshed_at": now,
            "status": IntegrationStatus.CONNECTED.value,
            "version": expected_version + 1,
            "refresh_lease_expires_at": None,
        }
        if new_refresh_token_enc:
            values["refresh_token"] = new_refresh_token_enc

        with self.transaction():
            result = self.session.execute(
                update(Credential)
                .where(
                    Credential.id == credential_id,
                    Credential.version == expected_version,
                    Credential.is_active.is_(True),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise StaleCredentialError(credential_id=credential_id, expected_version=expected_version)

            credential = self.session.get(Credential, credential_id)
            self.session.refresh(credential)
            integration = self.integration_for(credential)
            if integration is not None:
                self.lifecycle.mark_connected(
                    integration, action=IntegrationAction.REFRESH_TOKEN, message="Token refreshed successfully"
                )
                self.lifecycle.queue_event(
                    EventName.CREDENTIAL_REFRESHED,
                    {
                        "integration_id": integration.id,
                        "user_id": credential.user_id,
                        "provider_key": credential.platform,
                        "expires_at": new_expires_at.isoformat() if new_expires_at else None,
                    },
                )
        return credential

    # ==================== LOOKUPS ====================

    def _find_credential(self, user_id: str, platform: str, active_only: bool = False) -> Optional[Credential]:
        query = self.session.query(Credential).filter(
            Credential.user_id == user_id, Credential.platform == platform
        )
        if active_only:
            query = query.filter(Credential.is_active.is_(True))
        return query.first()

    def integration_for(self, credential: Credential) -> Optional[Integration]:
        if credential.integration_id:
            integration = self.session.get(Integration, credential.integration_id)
            if integration is not None:
                return integration
        return (
            self.session.query(Integration)
            .filter(
                Integration.user_id == credential.user_id,
                Integration.provider_key == credential.platform,
            )
            .order_by(Integration.updated_at.desc())
            .first()
        )

    def find_credential_for(self, integration: Integration) -> Optional[Credential]:
        """The active credential backing an integration."""
        return (
            self.session.query(Credential)
            .filter(
                Credential.user_id == integration.user_id,
                Credential.platform == integration.provider_key,
                Credential.is_active.is_(True),
            )
            .first()
        )
