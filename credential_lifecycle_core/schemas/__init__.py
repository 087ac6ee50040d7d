from .credential_schemas import (
    CredentialRead,
    CredentialSecrets,
    KnownAdditionalData,
    OAuthStateRead,
    SaveCredentialRequest,
)
from .integration_schemas import (
    IntegrationEventRead,
    IntegrationLogRead,
    IntegrationRead,
    SyncJobRead,
    WebhookRegistrationRead,
)
from .provider_schemas import (
    BootstrapRequest,
    BootstrapResult,
    ProviderConfig,
    RefreshResult,
    RevokeResult,
    TokenExchangeResult,
)
from .result_schemas import (
    OAuthStart,
    OperationResult,
    StoreCredentialResult,
    SweepSummary,
    WebhookReceipt,
)

__all__ = [
    "CredentialRead",
    "CredentialSecrets",
    "KnownAdditionalData",
    "OAuthStateRead",
    "SaveCredentialRequest",
    "IntegrationEventRead",
    "IntegrationLogRead",
    "IntegrationRead",
    "SyncJobRead",
    "WebhookRegistrationRead",
    "BootstrapRequest",
    "BootstrapResult",
    "ProviderConfig",
    "RefreshResult",
    "RevokeResult",
    "TokenExchangeResult",
    "OAuthStart",
    "OperationResult",
    "StoreCredentialResult",
    "SweepSummary",
    "WebhookReceipt",
]
