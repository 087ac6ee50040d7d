"""
Test fixtures for the credential lifecycle core.

This module provides the shared database setup, the test cipher, fake
provider plugins and service fixtures bound to the per-test session.
"""

from typing import List, Tuple

import pytest
from sqlalchemy.orm import Session

from credential_lifecycle_core.config import AppConfig
from credential_lifecycle_core.constants import EventName
from credential_lifecycle_core.context.app_context import AppContext
from credential_lifecycle_core.db import DatabaseConfig, DatabaseManager, import_all_models
from credential_lifecycle_core.db.db_config import Base, initialize_db
from credential_lifecycle_core.dispatch import InProcessBootstrapQueue
from credential_lifecycle_core.providers.registry import ProviderRegistry
from credential_lifecycle_core.services import (
    BootstrapOrchestrator,
    CredentialStore,
    HealthScheduler,
    OAuthStateService,
    TokenRefreshService,
    WebhookIngestor,
)
from credential_lifecycle_core.utils.cipher import Cipher
from credential_lifecycle_core.utils.events import EventBus
from tests.fixtures.factories import configure_factories
from tests.fixtures.fake_providers import FakeOAuthProvider, FakeStaticProvider

TEST_PASSPHRASE = "test-passphrase-do-not-use"


# ==================== DATABASE ====================


@pytest.fixture(scope="session")
def db_config() -> DatabaseConfig:
    """Create SQLite in-memory database configuration for testing."""
    return DatabaseConfig(db_type="sqlite", database=":memory:", echo=False, development_mode=True)


@pytest.fixture(scope="session")
def db_manager(db_config: DatabaseConfig) -> DatabaseManager:
    """Create and initialize database manager with all models."""
    import_all_models()
    manager = initialize_db(db_config)
    yield manager
    manager.close()


@pytest.fixture(scope="function")
def db_session(db_manager: DatabaseManager) -> Session:
    """
    Fresh schema and session for each test.

    Tables are created before and dropped after every test so no rows leak
    between tests.
    """
    Base.metadata.create_all(db_manager.engine)
    session = db_manager.new_session()
    configure_factories(session)

    yield session

    session.rollback()
    session.close()
    Base.metadata.drop_all(db_manager.engine)


# ==================== CORE OBJECTS ====================


@pytest.fixture(scope="session")
def cipher() -> Cipher:
    """Cipher with a low iteration count to keep tests fast."""
    return Cipher(TEST_PASSPHRASE, salt="test-salt", iterations=1_000)


@pytest.fixture(scope="function")
def fake_oauth() -> FakeOAuthProvider:
    return FakeOAuthProvider(timeout=1)


@pytest.fixture(scope="function")
def fake_static() -> FakeStaticProvider:
    return FakeStaticProvider(timeout=1)


@pytest.fixture(scope="function")
def registry(fake_oauth, fake_static) -> ProviderRegistry:
    return ProviderRegistry([fake_oauth, fake_static])


@pytest.fixture(scope="function")
def events() -> EventBus:
    return EventBus()


@pytest.fixture(scope="function")
def published(events) -> List[Tuple[str, dict]]:
    """Every event published on the test bus, in order."""
    received: List[Tuple[str, dict]] = []
    for name in EventName:
        events.subscribe(name, lambda event, payload: received.append((event, payload)))
    return received


@pytest.fixture(scope="function")
def client_credentials(monkeypatch):
    """OAuth client id/secret for the fake provider."""
    monkeypatch.setenv("FAKEOAUTH_CLIENT_ID", "fake-client-id")
    monkeypatch.setenv("FAKEOAUTH_CLIENT_SECRET", "fake-client-secret")


# ==================== SERVICES ====================


@pytest.fixture(scope="function")
def job_queue() -> InProcessBootstrapQueue:
    return InProcessBootstrapQueue()


@pytest.fixture(scope="function")
def credential_store(db_session, cipher, registry, events, job_queue) -> CredentialStore:
    return CredentialStore(db_session, cipher, registry, events=events, job_queue=job_queue)


@pytest.fixture(scope="function")
def refresh_service(db_session, cipher, registry, events) -> TokenRefreshService:
    return TokenRefreshService(db_session, cipher, registry, events=events)


@pytest.fixture(scope="function")
def bootstrap_orchestrator(db_session, cipher, registry, events) -> BootstrapOrchestrator:
    return BootstrapOrchestrator(db_session, cipher, registry, events=events)


@pytest.fixture(scope="function")
def health_scheduler(db_session, refresh_service) -> HealthScheduler:
    return HealthScheduler(db_session, refresh_service)


@pytest.fixture(scope="function")
def webhook_ingestor(db_session, registry, events) -> WebhookIngestor:
    return WebhookIngestor(db_session, registry, events=events)


@pytest.fixture(scope="function")
def oauth_state_service(db_session, registry) -> OAuthStateService:
    return OAuthStateService(db_session, registry)


@pytest.fixture(scope="function")
def app_context(db_session, db_manager, cipher, registry, events) -> AppContext:
    """Context wired to the test database; bootstrap jobs run when the queue is drained."""
    config = AppConfig()
    return AppContext(config, db_manager, cipher, registry, events=events, job_queue=InProcessBootstrapQueue())
