"""Utility modules for the credential lifecycle core."""

from .cipher import Cipher, derive_fernet_key
from .events import EventBus
from .json_utils import dumps, loads
from .logger import (
    AzureQueueHandler,
    ContextAwareLogger,
    CorrelationIdFilter,
    configure_logging,
    get_logger,
)
from .token_utils import code_challenge_s256, generate_code_verifier, generate_state_token, mask_token

__all__ = [
    "Cipher",
    "derive_fernet_key",
    "EventBus",
    "dumps",
    "loads",
    "AzureQueueHandler",
    "ContextAwareLogger",
    "CorrelationIdFilter",
    "configure_logging",
    "get_logger",
    "code_challenge_s256",
    "generate_code_verifier",
    "generate_state_token",
    "mask_token",
]
