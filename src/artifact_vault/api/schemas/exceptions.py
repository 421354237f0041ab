"""
Exception classes for API error handling.

Domain errors raised by the service are mapped to HTTP statuses here, so
every error response has the same ``{"error": {...}}`` shape.
"""

from artifact_vault.core.exceptions import (
    ArtifactNotFoundError,
    ArtifactVaultError,
    ConfigurationError,
    CorruptArtifactError,
    EmptyMatchError,
    InvalidStateError,
    MultipleArtifactsError,
    NameCollisionError,
    OperationCancelledError,
    QuotaExceededError,
    UnauthorizedError,
    ValidationError,
)

# Domain error class -> (HTTP status, error type)
ERROR_STATUS: dict[type[ArtifactVaultError], tuple[int, str]] = {
    ValidationError: (400, "validation_error"),
    UnauthorizedError: (403, "unauthorized"),
    ArtifactNotFoundError: (404, "not_found"),
    NameCollisionError: (409, "name_collision"),
    MultipleArtifactsError: (409, "multiple_artifacts"),
    InvalidStateError: (409, "invalid_state"),
    EmptyMatchError: (422, "empty_match"),
    QuotaExceededError: (429, "quota_exceeded"),
    OperationCancelledError: (499, "cancelled"),
    CorruptArtifactError: (500, "corrupt_artifact"),
    ConfigurationError: (500, "configuration_error"),
}


def status_for(error: ArtifactVaultError) -> tuple[int, str]:
    """Return (status code, error type) for a domain error."""
    for cls in type(error).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 500, "internal_error"


class APIException(Exception):
    """
    Base exception for API errors.

    Raised by route handlers for request-level problems that have no
    domain error counterpart.
    """

    status_code: int = 500
    error_type: str = "api_error"
    message: str = "An error occurred"
    detail: str | None = None

    def __init__(
        self,
        message: str | None = None,
        detail: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.message = message or self.message
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class BadRequestError(APIException):
    """Exception raised when request parameters are inconsistent."""

    status_code = 400
    error_type = "bad_request"
    message = "Invalid request"


class MissingIdentityError(APIException):
    """Exception raised when no run token identifies the caller."""

    status_code = 401
    error_type = "missing_identity"
    message = "An X-Run-Token header is required"
