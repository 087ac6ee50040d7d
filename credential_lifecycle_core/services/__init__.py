from .base_service import SessionService
from .bootstrap_orchestrator import BootstrapOrchestrator
from .credential_store import CredentialStore
from .health_scheduler import HealthScheduler, HealthSweepWorker
from .integration_log_service import IntegrationLogService
from .lifecycle import (
    ALLOWED_TRANSITIONS,
    IntegrationLifecycle,
    LifecycleBoundService,
    apply_failure_penalty,
    can_transition,
    clamp_health,
    is_refresh_due,
)
from .oauth_state_service import OAuthStateService
from .token_refresh_service import RefreshOutcome, RefreshPlan, RefreshReport, TokenRefreshService
from .webhook_ingestor import WebhookIngestor

__all__ = [
    "SessionService",
    "BootstrapOrchestrator",
    "CredentialStore",
    "HealthScheduler",
    "HealthSweepWorker",
    "IntegrationLogService",
    "ALLOWED_TRANSITIONS",
    "IntegrationLifecycle",
    "LifecycleBoundService",
    "apply_failure_penalty",
    "can_transition",
    "clamp_health",
    "is_refresh_due",
    "OAuthStateService",
    "RefreshOutcome",
    "RefreshPlan",
    "RefreshReport",
    "TokenRefreshService",
    "WebhookIngestor",
]
