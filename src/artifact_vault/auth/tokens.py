"""
Capability tokens for cross-run and cross-repository reads.

Tokens are compact HMAC-SHA256 signed JWTs. Besides the standard claims
they carry the repository they grant (or ``*``), an optional list of run
IDs and a list of permissions. A run token is a capability token for
exactly one run carrying ``artifacts:run``; it identifies the calling job.
"""

import base64
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

logger = logging.getLogger(__name__)

# Default token lifetime (1 hour)
DEFAULT_EXPIRATION_SECONDS = int(timedelta(hours=1).total_seconds())

JWT_ALGORITHM = "HS256"
READ_PERMISSION = "artifacts:read"
RUN_PERMISSION = "artifacts:run"
ADMIN_PERMISSION = "artifacts:admin"
ANY_REPOSITORY = "*"

_DEV_SECRET = "change-this-secret-in-production"


class TokenError(Exception):
    """Base exception for token-related errors."""

    pass


class InvalidTokenError(TokenError):
    """Exception raised when a token is invalid or malformed."""

    pass


class ExpiredTokenError(TokenError):
    """Exception raised when a token has expired."""

    pass


@dataclass
class CapabilityToken:
    """
    Decoded capability token.

    Attributes:
        sub: Subject the token was issued to
        exp: Expiration timestamp (Unix epoch)
        iat: Issued at timestamp (Unix epoch)
        repository: Repository granted, or ``*`` for any
        runs: Run IDs granted; None grants every run of the repository
        permissions: Granted permissions
    """

    sub: str
    exp: int
    iat: int
    repository: str
    runs: list[int] | None = None
    permissions: list[str] = field(default_factory=lambda: [READ_PERMISSION])

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CapabilityToken":
        """Create CapabilityToken from a claims dictionary."""
        runs = data.get("runs")
        return cls(
            sub=str(data["sub"]),
            exp=int(data["exp"]),
            iat=int(data.get("iat", 0)),
            repository=str(data["repository"]),
            runs=[int(r) for r in runs] if runs is not None else None,
            permissions=[str(p) for p in data.get("permissions", [])],
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert CapabilityToken to a claims dictionary."""
        data: dict[str, Any] = {
            "sub": self.sub,
            "exp": self.exp,
            "iat": self.iat,
            "repository": self.repository,
            "permissions": list(self.permissions),
        }
        if self.runs is not None:
            data["runs"] = list(self.runs)
        return data

    def grants(self, repository_id: str, run_id: int, permission: str = READ_PERMISSION) -> bool:
        """Return True if the token grants ``permission`` on a run of a repository."""
        if permission not in self.permissions:
            return False
        if self.repository not in (ANY_REPOSITORY, repository_id):
            return False
        return self.runs is None or run_id in self.runs


def resolve_secret(secret: str | None) -> str:
    """
    Return the signing secret, falling back to a development default.

    Args:
        secret: Configured secret (AV_TOKEN_SECRET)

    Returns:
        Secret key to sign with
    """
    if not secret:
        logger.warning(
            "AV_TOKEN_SECRET is not set. "
            "Using default secret key (INSECURE - set AV_TOKEN_SECRET in production!)"
        )
        return _DEV_SECRET
    return secret


def _base64url_encode(data: bytes) -> str:
    """Encode bytes to base64url format."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("utf-8")


def _base64url_decode(data: str) -> bytes:
    """Decode base64url string to bytes."""
    padding = 4 - len(data) % 4
    if padding != 4:
        data += "=" * padding
    return base64.urlsafe_b64decode(data)


def _base64url_encode_json(data: dict[str, Any]) -> str:
    """Encode JSON dictionary to base64url string."""
    json_bytes = json.dumps(data, separators=(",", ":"), sort_keys=True).encode("utf-8")
    return _base64url_encode(json_bytes)


def _base64url_decode_json(data: str) -> dict[str, Any]:
    """Decode base64url string to JSON dictionary."""
    return json.loads(_base64url_decode(data).decode("utf-8"))


def _sign_hmac(data: str, secret: str) -> str:
    """Create HMAC-SHA256 signature."""
    digest = hmac.new(secret.encode("utf-8"), data.encode("utf-8"), hashlib.sha256).digest()
    return _base64url_encode(digest)


def create_capability_token(
    subject: str,
    repository: str,
    runs: list[int] | None = None,
    permissions: list[str] | None = None,
    expiration_seconds: int = DEFAULT_EXPIRATION_SECONDS,
    secret: str | None = None,
) -> str:
    """
    Create a signed capability token.

    Args:
        subject: Who the token is issued to
        repository: Repository granted, or ``*``
        runs: Run IDs granted (None for all runs)
        permissions: Granted permissions (default: artifacts:read)
        expiration_seconds: Token lifetime in seconds
        secret: Signing secret (development default if empty)

    Returns:
        Token string

    Raises:
        ValueError: If subject or repository is empty
    """
    if not subject:
        raise ValueError("Subject cannot be empty")
    if not repository:
        raise ValueError("Repository cannot be empty")

    secret = resolve_secret(secret)
    now = int(time.time())
    payload = CapabilityToken(
        sub=subject,
        exp=now + expiration_seconds,
        iat=now,
        repository=repository,
        runs=runs,
        permissions=permissions if permissions is not None else [READ_PERMISSION],
    )

    header_b64 = _base64url_encode_json({"alg": JWT_ALGORITHM, "typ": "JWT"})
    payload_b64 = _base64url_encode_json(payload.to_dict())
    signing_input = f"{header_b64}.{payload_b64}"

    logger.debug(f"Created capability token for subject={subject}, repository={repository}, runs={runs}")
    return f"{signing_input}.{_sign_hmac(signing_input, secret)}"


def decode_capability_token(token: str, secret: str | None = None) -> CapabilityToken:
    """
    Decode and validate a capability token.

    Args:
        token: Token string
        secret: Signing secret (development default if empty)

    Returns:
        CapabilityToken

    Raises:
        InvalidTokenError: If the token is malformed or the signature is invalid
        ExpiredTokenError: If the token has expired
    """
    if not token:
        raise InvalidTokenError("Token cannot be empty")

    secret = resolve_secret(secret)

    parts = token.split(".")
    if len(parts) != 3:
        raise InvalidTokenError("Invalid token format")

    header_b64, payload_b64, signature = parts
    signing_input = f"{header_b64}.{payload_b64}"
    expected = _sign_hmac(signing_input, secret)
    if not hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8")):
        raise InvalidTokenError("Invalid token signature")

    try:
        claims = _base64url_decode_json(payload_b64)
    except (ValueError, UnicodeDecodeError) as e:
        raise InvalidTokenError(f"Cannot decode token payload: {e}") from e
    if not isinstance(claims, dict):
        raise InvalidTokenError("Token payload must be an object")

    exp = claims.get("exp")
    if exp is None:
        raise InvalidTokenError("Token missing expiration claim")
    try:
        expires_at = int(exp)
    except (TypeError, ValueError) as e:
        raise InvalidTokenError(f"Invalid expiration claim: {exp!r}") from e
    if int(time.time()) >= expires_at:
        raise ExpiredTokenError(f"Token expired at {exp}")

    for claim in ("sub", "repository"):
        if claim not in claims:
            raise InvalidTokenError(f"Token missing {claim} claim")

    try:
        return CapabilityToken.from_dict(claims)
    except (TypeError, ValueError) as e:
        raise InvalidTokenError(f"Invalid token claims: {e}") from e


def extract_token_from_header(auth_header: str | None) -> str | None:
    """
    Extract a token from an Authorization header.

    Args:
        auth_header: The Authorization header value

    Returns:
        The token string or None if the header is missing or malformed
    """
    if not auth_header:
        return None

    parts = auth_header.split()
    if len(parts) != 2:
        return None

    scheme, token = parts
    if scheme.lower() != "bearer":
        return None

    return token
