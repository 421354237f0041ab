"""
Authorization primitives.

Capability tokens for cross-scope reads, run identity tokens and signed
download URLs.
"""

from artifact_vault.auth.tokens import (
    ADMIN_PERMISSION,
    ANY_REPOSITORY,
    READ_PERMISSION,
    RUN_PERMISSION,
    CapabilityToken,
    ExpiredTokenError,
    InvalidTokenError,
    TokenError,
    create_capability_token,
    decode_capability_token,
    extract_token_from_header,
    resolve_secret,
)
from artifact_vault.auth.urls import generate_download_url, validate_download_signature

__all__ = [
    "ADMIN_PERMISSION",
    "ANY_REPOSITORY",
    "READ_PERMISSION",
    "RUN_PERMISSION",
    "CapabilityToken",
    "TokenError",
    "InvalidTokenError",
    "ExpiredTokenError",
    "create_capability_token",
    "decode_capability_token",
    "extract_token_from_header",
    "resolve_secret",
    "generate_download_url",
    "validate_download_signature",
]
