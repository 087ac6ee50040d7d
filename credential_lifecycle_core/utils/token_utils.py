"""Helpers for handling token strings safely."""

import base64
import hashlib
import secrets
from typing import Optional


def mask_token(token: Optional[str], prefix_len: int = 4, suffix_len: int = 4) -> str:
    """
    Mask a token for logging.

    >>> mask_token("sk-abc123def456ghi789")
    'sk-a...i789'
    >>> mask_token("short")
    '***'
    """
    if not token or len(token) <= prefix_len + suffix_len:
        return "***"
    return f"{token[:prefix_len]}...{token[-suffix_len:]}"


def generate_state_token() -> str:
    """Cryptographically random, URL-safe OAuth state value."""
    return secrets.token_urlsafe(32)


def generate_code_verifier() -> str:
    """PKCE code verifier (43+ characters of URL-safe randomness)."""
    return secrets.token_urlsafe(64)


def code_challenge_s256(verifier: str) -> str:
    """PKCE S256 code challenge for a verifier."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
