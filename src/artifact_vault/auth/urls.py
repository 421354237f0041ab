"""Signed, expiring download locators for sealed artifacts."""

import hashlib
import hmac
import time
from urllib.parse import urlencode

DEFAULT_URL_EXPIRY_SECONDS = 600
DOWNLOAD_BASE_URL = "/api/v1/artifacts"


def _signature(artifact_id: int, expires_at: int, secret: str) -> str:
    message = f"{artifact_id}|{expires_at}"
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def generate_download_url(
    artifact_id: int,
    secret: str,
    *,
    expiry_seconds: int = DEFAULT_URL_EXPIRY_SECONDS,
    base_url: str = DOWNLOAD_BASE_URL,
) -> str:
    """
    Generate a signed download URL for an artifact bundle.

    Args:
        artifact_id: ID of the sealed artifact
        secret: HMAC secret key for signing
        expiry_seconds: URL lifetime in seconds
        base_url: Base path of the artifacts endpoint

    Returns:
        URL of the form ``<base>/<id>/zip?expires=..&sig=..``
    """
    expires_at = int(time.time()) + expiry_seconds
    params = urlencode({"expires": expires_at, "sig": _signature(artifact_id, expires_at, secret)})
    return f"{base_url}/{artifact_id}/zip?{params}"


def validate_download_signature(
    artifact_id: int,
    expires: str | int | None,
    signature: str | None,
    secret: str,
) -> tuple[bool, str | None]:
    """
    Validate the query parameters of a signed download URL.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if expires is None or not signature:
        return False, "missing signature"
    try:
        expires_at = int(expires)
    except (ValueError, TypeError):
        return False, "invalid expiry format"

    if time.time() > expires_at:
        return False, "URL has expired"

    expected = _signature(artifact_id, expires_at, secret)
    if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
        return False, "invalid signature"

    return True, None
