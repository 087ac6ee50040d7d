"""
Token refresh.

A refresh runs in three steps so provider calls never hold a database
session:

1. ``prepare`` (database): decide whether the credential is due, decrypt
   it and take the per-credential refresh lease.
2. ``call`` (no database): ask the provider plugin for new tokens. Safe
   to run on a worker thread.
3. ``apply`` (database): write the new tokens with a compare-and-swap on
   the lease version, or record the failure.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy.orm import Session

from ..config import LifecycleConfig, ProviderSettings
from ..constants import IntegrationAction, IntegrationLogLevel, IntegrationStatus
from ..db.db_base import utc_now
from ..db.db_credential_models import Credential
from ..db.db_integration_models import Integration
from ..exceptions import DecryptionError, ErrorCode, ProviderNotFoundError, StaleCredentialError, not_found
from ..providers.base import BaseProvider
from ..providers.registry import ProviderRegistry
from ..schemas.provider_schemas import RefreshResult
from ..utils.cipher import Cipher
from ..utils.events import EventBus
from .credential_store import CredentialStore
from .lifecycle import is_refresh_due


class RefreshOutcome(str, Enum):
    REFRESHED = "refreshed"
    ERROR = "error"
    SKIPPED = "skipped"


@dataclass
class RefreshPlan:
    """Everything a worker thread needs to call the provider. Holds plaintext; never log it."""

    integration_id: str
    credential_id: str
    user_id: str
    platform: str
    provider: BaseProvider
    lease_version: int
    refresh_token: str = field(repr=False)
    client_id: Optional[str] = field(default=None, repr=False)
    client_secret: Optional[str] = field(default=None, repr=False)


@dataclass
class PrepareResult:
    """Either a plan to execute or a decision already recorded."""

    outcome: Optional[RefreshOutcome] = None
    plan: Optional[RefreshPlan] = None
    error: Optional[str] = None


@dataclass
class RefreshReport:
    integration_id: str
    outcome: RefreshOutcome
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None


class TokenRefreshService(CredentialStore):
    """Refreshes expiring OAuth tokens for single integrations or sweep batches."""

    def __init__(
        self,
        session: Session,
        cipher: Cipher,
        registry: ProviderRegistry,
        provider_settings: Optional[ProviderSettings] = None,
        lifecycle_config: Optional[LifecycleConfig] = None,
        events: Optional[EventBus] = None,
    ):
        super().__init__(
            session,
            cipher,
            registry,
            provider_settings=provider_settings,
            lifecycle_config=lifecycle_config,
            events=events,
        )

    @property
    def lease_seconds(self) -> int:
        # Outlives one provider call with margin; an abandoned lease expires on its own
        return max(60, int(self.provider_settings.timeout_seconds) * 4)

    # ==================== PHASE 1 ====================

    def prepare(self, integration: Integration, now: Optional[datetime] = None, force: bool = False) -> PrepareResult:
        """Decide what to do for one integration. Records every non-refresh decision itself."""
        credential = (
            self.session.query(Credential)
            .populate_existing()
            .filter(
                Credential.user_id == integration.user_id,
                Credential.platform == integration.provider_key,
                Credential.is_active.is_(True),
            )
            .first()
        )
        if credential is None:
            with self.transaction():
                self.lifecycle.mark_error(
                    integration, "Credential not found", action=IntegrationAction.HEALTH_CHECK
                )
            return PrepareResult(outcome=RefreshOutcome.ERROR, error="Credential not found")

        due = is_refresh_due(
            credential.credential_type,
            credential.expires_at,
            now=now,
            threshold_seconds=self.lifecycle.config.refresh_threshold_seconds,
        )
        if not due and not force:
            return PrepareResult(outcome=RefreshOutcome.SKIPPED)

        try:
            provider = self.registry.get(integration.provider_key)
        except ProviderNotFoundError as e:
            return self._record_error(integration, e.message)

        if not provider.config.supports_refresh:
            if force:
                return PrepareResult(
                    outcome=RefreshOutcome.ERROR, error=f"{provider.name} does not support token refresh"
                )
            return PrepareResult(outcome=RefreshOutcome.SKIPPED)

        try:
            secrets = self.decrypt_secrets(credential)
        except DecryptionError as e:
            return self._record_error(integration, e.message)

        token = secrets.refresh_token
        if not token and provider.config.refresh_with_access_token:
            token = secrets.access_token
        if not token:
            self.log_service.write(
                user_id=integration.user_id,
                platform=integration.provider_key,
                action=IntegrationAction.REFRESH_TOKEN,
                status=IntegrationStatus(integration.status),
                level=IntegrationLogLevel.WARNING,
                message="Missing refresh token",
            )
            # Moves the row behind other due integrations in the next batch
            integration.updated_at = utc_now()
            self.session.commit()
            return PrepareResult(outcome=RefreshOutcome.ERROR, error="Missing refresh token")

        lease_version = self.acquire_refresh_lease(credential, self.lease_seconds)
        if lease_version is None:
            return PrepareResult(outcome=RefreshOutcome.SKIPPED)

        client_id, client_secret = self.provider_settings.client_credentials(provider.key)
        return PrepareResult(
            plan=RefreshPlan(
                integration_id=integration.id,
                credential_id=credential.id,
                user_id=integration.user_id,
                platform=integration.provider_key,
                provider=provider,
                lease_version=lease_version,
                refresh_token=token,
                client_id=client_id,
                client_secret=client_secret,
            )
        )

    def _record_error(self, integration: Integration, message: str) -> PrepareResult:
        with self.transaction():
            self.lifecycle.mark_error(integration, message, action=IntegrationAction.REFRESH_TOKEN)
        return PrepareResult(outcome=RefreshOutcome.ERROR, error=message)

    # ==================== PHASE 2 ====================

    @staticmethod
    def call(plan: RefreshPlan) -> RefreshResult:
        """Provider round trip. Touches no database state."""
        return plan.provider.run_refresh(plan.refresh_token, plan.client_id, plan.client_secret)

    # ==================== PHASE 3 ====================

    def apply(self, plan: RefreshPlan, result: RefreshResult) -> RefreshOutcome:
        if result.success and result.access_token:
            try:
                self.update_after_refresh(
                    plan.credential_id,
                    self.cipher.encrypt(result.access_token),
                    self.cipher.encrypt_optional(result.refresh_token),
                    result.expires_at,
                    plan.lease_version,
                )
            except StaleCredentialError:
                # Deactivated or rotated by someone else while we were calling out
                return RefreshOutcome.SKIPPED
            self.logger.info(
                "Token refreshed",
                extra={"integration_id": plan.integration_id, "platform": plan.platform},
            )
            return RefreshOutcome.REFRESHED

        self.abandon(plan, result.error or "Token refresh returned no access token")
        return RefreshOutcome.ERROR

    def abandon(self, plan: RefreshPlan, error: str) -> None:
        """Release the lease and record the failure on the integration."""
        with self.transaction():
            self.release_refresh_lease(plan.credential_id, plan.lease_version)
            integration = self.session.get(Integration, plan.integration_id)
            if integration is not None and integration.status != IntegrationStatus.DISCONNECTED.value:
                self.lifecycle.mark_error(
                    integration,
                    error,
                    action=IntegrationAction.REFRESH_TOKEN,
                    log_message=f"Token refresh failed: {error}",
                )
        self.logger.warning(
            f"Token refresh failed: {error}",
            extra={"integration_id": plan.integration_id, "platform": plan.platform},
        )

    # ==================== SINGLE ====================

    def refresh_one(self, user_id: str, platform: str, force: bool = True) -> RefreshReport:
        """
        Refresh one integration's token now.

        Raises:
            NotFoundError: If the user has no integration for ``platform``
        """
        integration = (
            self.session.query(Integration)
            .filter(Integration.user_id == user_id, Integration.provider_key == platform)
            .order_by(Integration.updated_at.desc())
            .first()
        )
        if integration is None:
            raise not_found("Integration", user_id=user_id, platform=platform)
        if integration.status == IntegrationStatus.DISCONNECTED.value:
            return RefreshReport(
                integration.id,
                RefreshOutcome.ERROR,
                "Integration is disconnected",
                error_code=ErrorCode.PRECONDITION_FAILED,
            )

        prepared = self.prepare(integration, now=utc_now(), force=force)
        if prepared.plan is None:
            return RefreshReport(integration.id, prepared.outcome, prepared.error)

        result = self.call(prepared.plan)
        outcome = self.apply(prepared.plan, result)
        error = result.error if outcome == RefreshOutcome.ERROR else None
        return RefreshReport(integration.id, outcome, error)
