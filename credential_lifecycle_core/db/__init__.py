"""
SQLAlchemy models and database configuration.
"""

from .db_base import JSON, TimestampMixin, UUIDMixin, ensure_utc, utc_now
from .db_config import (
    Base,
    DatabaseConfig,
    DatabaseManager,
    get_config_from_env,
    get_development_config,
    get_production_config,
    import_all_models,
    init_db,
    initialize_db,
)
from .db_credential_models import Credential
from .db_integration_models import Integration, IntegrationEvent, IntegrationWebhook
from .db_log_models import IntegrationLog
from .db_oauth_state_models import OAuthState
from .db_sync_job_models import SyncJob

__all__ = [
    # Base definitions
    "Base",
    "JSON",
    "TimestampMixin",
    "UUIDMixin",
    "ensure_utc",
    "utc_now",
    # Configuration
    "DatabaseConfig",
    "DatabaseManager",
    "get_config_from_env",
    "get_development_config",
    "get_production_config",
    "import_all_models",
    "init_db",
    "initialize_db",
    # Models
    "Credential",
    "Integration",
    "IntegrationEvent",
    "IntegrationLog",
    "IntegrationWebhook",
    "OAuthState",
    "SyncJob",
]
