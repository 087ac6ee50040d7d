"""
Runtime context.

The process entry point builds one ``AppContext`` at startup and passes it
to every handler: configuration, database manager, cipher, provider
registry, event bus and bootstrap queue live here instead of in module
globals. ``close()`` tears them down on shutdown.
"""

from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy.orm import Session

from ..config import AppConfig
from ..db.db_config import DatabaseConfig, DatabaseManager, get_config_from_env, initialize_db
from ..dispatch.bootstrap_queue import AzureBootstrapQueue, BootstrapQueue, InProcessBootstrapQueue
from ..providers.registry import ProviderRegistry, build_default_registry
from ..schemas.integration_schemas import SyncJobRead
from ..schemas.result_schemas import SweepSummary
from ..services.bootstrap_orchestrator import BootstrapOrchestrator
from ..services.credential_store import CredentialStore
from ..services.health_scheduler import HealthScheduler, HealthSweepWorker
from ..services.integration_log_service import IntegrationLogService
from ..services.oauth_state_service import OAuthStateService
from ..services.token_refresh_service import TokenRefreshService
from ..services.webhook_ingestor import WebhookIngestor
from ..utils.cipher import Cipher
from ..utils.events import EventBus
from ..utils.logger import get_logger


class AppContext:
    def __init__(
        self,
        config: AppConfig,
        db_manager: DatabaseManager,
        cipher: Cipher,
        registry: ProviderRegistry,
        events: Optional[EventBus] = None,
        job_queue: Optional[BootstrapQueue] = None,
    ):
        self.config = config
        self.db_manager = db_manager
        self.cipher = cipher
        self.registry = registry
        self.events = events or EventBus()
        self.job_queue = job_queue or InProcessBootstrapQueue()
        if self.job_queue.runner is None:
            self.job_queue.set_runner(self.run_bootstrap_job)
        self.logger = get_logger()

    @classmethod
    def from_env(
        cls, config: Optional[AppConfig] = None, db_config: Optional[DatabaseConfig] = None
    ) -> "AppContext":
        """
        Build the context from environment configuration.

        Raises:
            ConfigurationError: If the encryption key or datastore credentials
                are missing. This is the only error meant to stop the process.
        """
        config = config or AppConfig.from_env()
        config.validate_secrets()
        cipher = Cipher.from_config(config.security)
        db_manager = initialize_db(db_config or get_config_from_env())
        registry = build_default_registry(timeout=config.providers.timeout_seconds)

        if config.queue.connection_string:
            job_queue: BootstrapQueue = AzureBootstrapQueue(
                config.queue.connection_string,
                queue_name=config.queue.bootstrap_queue_name,
                visibility_timeout=config.queue.visibility_timeout,
            )
        else:
            job_queue = InProcessBootstrapQueue()

        context = cls(config, db_manager, cipher, registry, job_queue=job_queue)
        context.logger.info(
            "Application context initialized",
            extra={
                "environment": config.environment,
                "providers": registry.keys(),
                "job_queue": type(job_queue).__name__,
            },
        )
        return context

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """A fresh session, closed on exit. Services commit their own units of work."""
        session = self.db_manager.new_session()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ==================== SERVICE BUILDERS ====================

    def credential_store(self, session: Session) -> CredentialStore:
        return CredentialStore(
            session,
            self.cipher,
            self.registry,
            provider_settings=self.config.providers,
            lifecycle_config=self.config.lifecycle,
            events=self.events,
            job_queue=self.job_queue,
        )

    def refresh_service(self, session: Session) -> TokenRefreshService:
        return TokenRefreshService(
            session,
            self.cipher,
            self.registry,
            provider_settings=self.config.providers,
            lifecycle_config=self.config.lifecycle,
            events=self.events,
        )

    def bootstrap_orchestrator(self, session: Session) -> BootstrapOrchestrator:
        return BootstrapOrchestrator(
            session,
            self.cipher,
            self.registry,
            bootstrap_config=self.config.bootstrap,
            provider_settings=self.config.providers,
            lifecycle_config=self.config.lifecycle,
            events=self.events,
            job_queue=self.job_queue,
        )

    def health_scheduler(self, session: Session) -> HealthScheduler:
        return HealthScheduler(session, self.refresh_service(session), config=self.config.scheduler)

    def webhook_ingestor(self, session: Session) -> WebhookIngestor:
        return WebhookIngestor(session, self.registry, events=self.events)

    def oauth_state_service(self, session: Session) -> OAuthStateService:
        return OAuthStateService(session, self.registry, config=self.config.oauth)

    def log_service(self, session: Session) -> IntegrationLogService:
        return IntegrationLogService(session)

    # ==================== RUNNERS ====================

    def run_bootstrap_job(self, job_id: str) -> SyncJobRead:
        """Job runner handed to the bootstrap queue. Uses its own session."""
        with self.session_scope() as session:
            return self.bootstrap_orchestrator(session).run_job(job_id)

    def run_health_sweep(self) -> SweepSummary:
        with self.session_scope() as session:
            return self.health_scheduler(session).sweep()

    def redispatch_pending_jobs(self) -> List[str]:
        """Re-enqueue bootstrap jobs left pending, for example after a skipped or lost queue entry."""
        with self.session_scope() as session:
            return self.bootstrap_orchestrator(session).redispatch_pending()

    def run_scheduled_cycle(self) -> SweepSummary:
        """One tick of the periodic worker: re-dispatch stranded bootstrap jobs, then sweep."""
        try:
            self.redispatch_pending_jobs()
        except Exception as e:
            self.logger.exception(
                f"Bootstrap re-dispatch failed: {str(e)}", extra={"error_type": type(e).__name__}
            )
        return self.run_health_sweep()

    def health_sweep_worker(self) -> HealthSweepWorker:
        return HealthSweepWorker(self.run_scheduled_cycle, interval_seconds=self.config.scheduler.interval_seconds)

    def close(self) -> None:
        self.job_queue.close()
        self.db_manager.close()
        self.logger.info("Application context closed")
