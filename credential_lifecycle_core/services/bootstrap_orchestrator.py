"""
Bootstrap orchestrator.

Runs one bootstrap Sync Job: validate the stored credential against the
provider, register the webhook the provider hands back and mark the
integration connected. A ``running`` job row is the per-integration lock;
a second job for the same integration is skipped while one runs. Finished
jobs are terminal and never re-run.
"""

from datetime import timedelta
from typing import List, Optional

from sqlalchemy import exists, update
from sqlalchemy.orm import Session, aliased

from ..config import BootstrapConfig, LifecycleConfig, ProviderSettings
from ..constants import EventName, IntegrationAction, IntegrationStatus, SyncJobStatus, SyncJobType
from ..context.operation_context import operation
from ..db.db_base import utc_now
from ..db.db_integration_models import Integration, IntegrationWebhook
from ..db.db_sync_job_models import SyncJob
from ..exceptions import BaseError, InvalidStateTransitionError, not_found
from ..providers.registry import ProviderRegistry
from ..schemas.credential_schemas import KnownAdditionalData
from ..schemas.integration_schemas import SyncJobRead
from ..schemas.provider_schemas import BootstrapRequest, BootstrapResult
from ..utils.cipher import Cipher
from ..utils.events import EventBus
from .credential_store import CredentialStore


class BootstrapFailed(Exception):
    """Internal signal carrying the message recorded on the integration and job."""


class BootstrapOrchestrator(CredentialStore):
    def __init__(
        self,
        session: Session,
        cipher: Cipher,
        registry: ProviderRegistry,
        bootstrap_config: Optional[BootstrapConfig] = None,
        provider_settings: Optional[ProviderSettings] = None,
        lifecycle_config: Optional[LifecycleConfig] = None,
        events: Optional[EventBus] = None,
        job_queue=None,
    ):
        super().__init__(
            session,
            cipher,
            registry,
            provider_settings=provider_settings,
            lifecycle_config=lifecycle_config,
            events=events,
            job_queue=job_queue,
        )
        self.bootstrap_config = bootstrap_config or BootstrapConfig()

    # ==================== JOBS ====================

    def create_job(self, integration_id: str) -> SyncJob:
        """Add a pending bootstrap job to the current unit of work."""
        job = SyncJob(
            integration_id=integration_id,
            job_type=SyncJobType.BOOTSTRAP.value,
            status=SyncJobStatus.PENDING.value,
        )
        self.session.add(job)
        self.session.flush()
        return job

    @operation(name="bootstrap_orchestrator.retry_bootstrap")
    def retry_bootstrap(self, user_id: str, integration_id: str) -> SyncJobRead:
        """
        Queue a fresh bootstrap for an integration ("fix connection").

        Raises:
            NotFoundError: If the integration does not belong to the user
        """
        integration = (
            self.session.query(Integration)
            .filter(Integration.id == integration_id, Integration.user_id == user_id)
            .first()
        )
        if integration is None:
            raise not_found("Integration", integration_id=integration_id, user_id=user_id)

        with self.transaction():
            job = self.create_job(integration.id)
        self.logger.info(
            "Bootstrap retry requested", extra={"integration_id": integration.id, "job_id": job.id}
        )
        self._enqueue(job.id)
        return SyncJobRead.model_validate(job)

    def pending_job_ids(self, limit: int = 100, older_than_seconds: Optional[int] = None) -> List[str]:
        """Pending jobs, oldest first. Used to re-dispatch jobs whose queue entry was lost or skipped."""
        query = self.session.query(SyncJob.id).filter(SyncJob.status == SyncJobStatus.PENDING.value)
        if older_than_seconds is not None:
            query = query.filter(SyncJob.created_at <= utc_now() - timedelta(seconds=older_than_seconds))
        rows = query.order_by(SyncJob.created_at.asc()).limit(limit).all()
        return [row.id for row in rows]

    def redispatch_pending(self, limit: int = 100) -> List[str]:
        """Re-enqueue pending jobs older than ``redispatch_after_seconds``. Returns their ids."""
        job_ids = self.pending_job_ids(
            limit=limit, older_than_seconds=self.bootstrap_config.redispatch_after_seconds
        )
        for job_id in job_ids:
            self._enqueue(job_id)
        if job_ids:
            self.logger.info("Pending bootstrap jobs re-dispatched", extra={"count": len(job_ids)})
        return job_ids

    def get_job(self, job_id: str) -> Optional[SyncJobRead]:
        job = self.session.get(SyncJob, job_id)
        return SyncJobRead.model_validate(job) if job else None

    def _fail_abandoned(self, integration_id: str) -> int:
        """running -> failed for jobs of this integration that outlived the running timeout."""
        now = utc_now()
        message = "Bootstrap job abandoned"
        result = self.session.execute(
            update(SyncJob)
            .where(
                SyncJob.integration_id == integration_id,
                SyncJob.status == SyncJobStatus.RUNNING.value,
                SyncJob.started_at <= now - timedelta(seconds=self.bootstrap_config.running_timeout_seconds),
            )
            .values(
                status=SyncJobStatus.FAILED.value,
                completed_at=now,
                error_message=message,
                result_summary={"success": False, "error": message},
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            self.logger.warning(
                "Abandoned bootstrap jobs failed",
                extra={"integration_id": integration_id, "count": result.rowcount},
            )
        return result.rowcount

    def _claim(self, job_id: str) -> bool:
        """pending -> running, unless another job for the same integration is already running."""
        job = self.session.get(SyncJob, job_id)
        if job is None:
            raise not_found("SyncJob", job_id=job_id)

        self._fail_abandoned(job.integration_id)
        running = aliased(SyncJob)
        result = self.session.execute(
            update(SyncJob)
            .where(
                SyncJob.id == job_id,
                SyncJob.status == SyncJobStatus.PENDING.value,
                ~exists().where(
                    running.integration_id == job.integration_id,
                    running.status == SyncJobStatus.RUNNING.value,
                ),
            )
            .values(status=SyncJobStatus.RUNNING.value, started_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        self.session.refresh(job)
        return result.rowcount == 1

    # ==================== RUN ====================

    @operation(name="bootstrap_orchestrator.run_job")
    def run_job(self, job_id: str) -> SyncJobRead:
        """
        Execute one bootstrap job.

        Returns the job as it stands afterwards: ``completed``, ``failed``, or
        unchanged when it was skipped (already terminal, or another job for
        the integration is running).

        Raises:
            NotFoundError: If the job does not exist
        """
        if not self._claim(job_id):
            job = self.session.get(SyncJob, job_id)
            self.logger.info(
                "Bootstrap job skipped",
                extra={"job_id": job_id, "job_status": job.status, "integration_id": job.integration_id},
            )
            return SyncJobRead.model_validate(job)

        job = self.session.get(SyncJob, job_id)
        integration = self.session.get(Integration, job.integration_id)
        if integration is None:
            self._finish_failed(job, None, "Integration not found")
            return SyncJobRead.model_validate(job)

        try:
            request, provider = self._build_request(integration)
            result = provider.run_bootstrap(request)
            if not result.success:
                raise BootstrapFailed(result.error or "Bootstrap failed")
            self._finish_completed(job, integration, provider, result)
        except BootstrapFailed as e:
            self._finish_failed(job, integration, str(e))
        except BaseError as e:
            self._finish_failed(job, integration, e.message)
        except Exception as e:
            self.logger.exception(
                f"Unexpected bootstrap error: {str(e)}",
                extra={"job_id": job.id, "integration_id": integration.id, "error_type": type(e).__name__},
            )
            self.session.rollback()
            self._finish_failed(job, integration, str(e) or type(e).__name__)

        self._dispatch_next(job)
        return SyncJobRead.model_validate(job)

    def _dispatch_next(self, job: SyncJob) -> None:
        """Hand the integration's next pending job to the queue once this one is terminal."""
        next_job = (
            self.session.query(SyncJob.id)
            .filter(
                SyncJob.integration_id == job.integration_id,
                SyncJob.status == SyncJobStatus.PENDING.value,
                SyncJob.id != job.id,
            )
            .order_by(SyncJob.created_at.asc())
            .first()
        )
        if next_job is not None:
            self.logger.info(
                "Dispatching next bootstrap job",
                extra={"integration_id": job.integration_id, "job_id": next_job.id, "previous_job_id": job.id},
            )
            self._enqueue(next_job.id)

    def _build_request(self, integration: Integration):
        credential = self.find_credential_for(integration)
        if credential is None:
            raise BootstrapFailed("Credential not found")

        provider = self.registry.get(integration.provider_key)
        secrets = self.decrypt_secrets(credential)
        if not secrets.has_usable_secret():
            raise BootstrapFailed("No access token or API key available")

        known = KnownAdditionalData.narrow(credential.additional_data)
        self.logger.debug(
            "Bootstrapping integration",
            extra={
                "integration_id": integration.id,
                "platform": integration.provider_key,
                "token_type": known.token_type,
            },
        )
        request = BootstrapRequest(
            user_id=integration.user_id,
            integration_id=integration.id,
            access_token=secrets.access_token,
            refresh_token=secrets.refresh_token,
            api_key=secrets.api_key,
            api_secret=secrets.api_secret,
            additional_data=credential.additional_data or {},
            webhook_url=self.bootstrap_config.webhook_url(integration.provider_key)
            if provider.config.webhook_support
            else None,
        )
        return request, provider

    def _finish_completed(self, job: SyncJob, integration: Integration, provider, result: BootstrapResult) -> None:
        try:
            with self.transaction():
                if result.webhook_id or result.webhook_secret:
                    self._upsert_webhook(integration, provider.key, result)
                webhook_setup = bool(result.webhook_id)

                self.lifecycle.mark_connected(
                    integration,
                    action=IntegrationAction.BOOTSTRAP,
                    message=f"Successfully bootstrapped {provider.name} integration",
                    metadata=result.metadata,
                    synced=True,
                )
                job.status = SyncJobStatus.COMPLETED.value
                job.completed_at = utc_now()
                job.result_summary = {
                    "success": True,
                    "initialSyncCompleted": result.initial_sync_completed,
                    "webhookSetup": webhook_setup,
                }
                self.lifecycle.queue_event(
                    EventName.BOOTSTRAP_COMPLETED,
                    {
                        "integration_id": integration.id,
                        "user_id": integration.user_id,
                        "provider_key": integration.provider_key,
                        "job_id": job.id,
                        "webhook_setup": webhook_setup,
                    },
                )
        except InvalidStateTransitionError as e:
            # Disconnected while the provider call was in flight
            self._finish_failed(job, None, e.message)
            return

        self.logger.info(
            "Bootstrap completed",
            extra={"integration_id": integration.id, "job_id": job.id, "platform": provider.key},
        )

    def _upsert_webhook(self, integration: Integration, provider_key: str, result: BootstrapResult) -> None:
        webhook = (
            self.session.query(IntegrationWebhook)
            .filter(IntegrationWebhook.integration_id == integration.id)
            .first()
        )
        if webhook is None:
            webhook = IntegrationWebhook(integration_id=integration.id)
            self.session.add(webhook)
        webhook.webhook_url = self.bootstrap_config.webhook_url(provider_key)
        webhook.webhook_id = result.webhook_id
        webhook.webhook_secret = self.cipher.encrypt_optional(result.webhook_secret)
        webhook.event_types = result.webhook_event_types
        webhook.is_active = True

    def _finish_failed(self, job: SyncJob, integration: Optional[Integration], error: str) -> None:
        with self.transaction():
            job.status = SyncJobStatus.FAILED.value
            job.completed_at = utc_now()
            job.error_message = error
            job.result_summary = {"success": False, "error": error}
            if integration is not None and integration.status != IntegrationStatus.DISCONNECTED.value:
                self.lifecycle.mark_error(
                    integration,
                    error,
                    action=IntegrationAction.BOOTSTRAP,
                    log_message=f"Bootstrap failed: {error}",
                )
            self.lifecycle.queue_event(
                EventName.BOOTSTRAP_FAILED,
                {
                    "integration_id": job.integration_id,
                    "job_id": job.id,
                    "error": error,
                },
            )
        self.logger.warning(
            f"Bootstrap failed: {error}",
            extra={"integration_id": job.integration_id, "job_id": job.id},
        )
