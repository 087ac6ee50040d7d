"""
Factory Boy factories for integration and credential rows.

Credential secrets are stored as ciphertext, so factories take plaintext
through ``CredentialFactory.with_secrets`` and encrypt with the test cipher.
"""

from datetime import UTC, datetime, timedelta

import factory

from credential_lifecycle_core.constants import (
    CredentialKind,
    IntegrationStatus,
    SyncJobStatus,
    SyncJobType,
)
from credential_lifecycle_core.db import (
    Credential,
    Integration,
    IntegrationWebhook,
    SyncJob,
)

# ==================== BASE FACTORIES ====================


class BaseFactory(factory.alchemy.SQLAlchemyModelFactory):
    """Base factory with common patterns."""

    class Meta:
        abstract = True
        sqlalchemy_session_persistence = "commit"


# ==================== INTEGRATION FACTORIES ====================


class IntegrationFactory(BaseFactory):
    class Meta:
        model = Integration

    user_id = factory.Sequence(lambda n: f"user_{n}")
    workspace_id = None
    provider_key = "fakeoauth"
    provider_name = "Fake OAuth"
    status = IntegrationStatus.CONNECTED.value
    health_score = 100
    error_message = None
    metadata_ = factory.LazyFunction(dict)


class IntegrationWebhookFactory(BaseFactory):
    class Meta:
        model = IntegrationWebhook

    integration_id = factory.LazyAttribute(lambda o: IntegrationFactory.create().id)
    webhook_url = "http://localhost:3000/api/webhooks/fakeoauth"
    webhook_id = factory.Sequence(lambda n: f"wh_{n}")
    is_active = True
    event_types = factory.LazyFunction(lambda: ["message"])


# ==================== CREDENTIAL FACTORIES ====================


class CredentialFactory(BaseFactory):
    class Meta:
        model = Credential

    user_id = factory.Sequence(lambda n: f"user_{n}")
    platform = "fakeoauth"
    platform_name = "Fake OAuth"
    credential_type = CredentialKind.OAUTH.value
    status = IntegrationStatus.CONNECTED.value
    is_active = True
    connection_count = 0
    version = 1
    expires_at = factory.LazyFunction(lambda: datetime.now(UTC) + timedelta(days=1))
    integration_id = None

    @classmethod
    def with_secrets(cls, cipher, integration=None, access_token="access-1", refresh_token="refresh-1", **kwargs):
        """Create a credential whose secrets are encrypted with ``cipher``."""
        if integration is not None:
            kwargs.setdefault("user_id", integration.user_id)
            kwargs.setdefault("platform", integration.provider_key)
            kwargs.setdefault("platform_name", integration.provider_name)
            kwargs.setdefault("integration_id", integration.id)
        return cls.create(
            access_token=cipher.encrypt_optional(access_token),
            refresh_token=cipher.encrypt_optional(refresh_token),
            **kwargs,
        )


class SyncJobFactory(BaseFactory):
    class Meta:
        model = SyncJob

    integration_id = factory.LazyAttribute(lambda o: IntegrationFactory.create().id)
    job_type = SyncJobType.BOOTSTRAP.value
    status = SyncJobStatus.PENDING.value


def configure_factories(session):
    """Bind every factory to the test session."""
    for factory_class in (IntegrationFactory, IntegrationWebhookFactory, CredentialFactory, SyncJobFactory):
        factory_class._meta.sqlalchemy_session = session
