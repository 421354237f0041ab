"""
Artifact Vault Exception Hierarchy.

Defines all custom exceptions used across the Artifact Vault system.
Provides consistent error handling and debugging information.
"""

from typing import Any


class ArtifactVaultError(Exception):
    """
    Base exception for all Artifact Vault errors.

    All custom exceptions inherit from this class, allowing
    generic catch blocks and consistent error handling.
    """

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        """
        Initialize an ArtifactVaultError.

        Args:
            message: Human-readable error message
            details: Optional structured data for debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation with details."""
        base = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{base} ({details_str})"
        return base

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ArtifactError(ArtifactVaultError):
    """
    Errors tied to a specific artifact or artifact key.

    Raised by the registry and the components built on it, including:
    - Name collisions between sealed artifacts
    - Lookups that match nothing
    - Lifecycle violations
    - Per-run quota exhaustion
    - Corrupt or unreadable content
    """

    def __init__(
        self,
        message: str,
        *,
        artifact_id: int | None = None,
        run_id: int | None = None,
        name: str | None = None,
        operation: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize an ArtifactError.

        Args:
            message: Human-readable error message
            artifact_id: ID of the artifact involved
            run_id: Run the artifact belongs to
            name: Artifact name involved
            operation: Operation being performed
            details: Optional structured data for debugging
        """
        details = details or {}
        if artifact_id is not None:
            details["artifact_id"] = artifact_id
        if run_id is not None:
            details["run_id"] = run_id
        if name:
            details["name"] = name
        if operation:
            details["operation"] = operation

        super().__init__(message, details=details)
        self.artifact_id = artifact_id
        self.run_id = run_id
        self.name = name
        self.operation = operation


class NameCollisionError(ArtifactError):
    """Raised when a sealed artifact already holds the name and overwrite was not requested."""

    def __init__(
        self,
        message: str = "An artifact with this name already exists in the run",
        *,
        run_id: int | None = None,
        name: str | None = None,
        existing_id: int | None = None,
    ):
        details = {}
        if existing_id is not None:
            details["existing_id"] = existing_id
        super().__init__(
            message,
            run_id=run_id,
            name=name,
            operation="seal",
            details=details,
        )
        self.existing_id = existing_id


class ArtifactNotFoundError(ArtifactError):
    """Raised when no artifact matches a selector within a scope."""

    def __init__(
        self,
        message: str = "Artifact not found",
        *,
        artifact_id: int | None = None,
        run_id: int | None = None,
        name: str | None = None,
        pattern: str | None = None,
    ):
        details = {}
        if pattern:
            details["pattern"] = pattern
        super().__init__(
            message,
            artifact_id=artifact_id,
            run_id=run_id,
            name=name,
            operation="read",
            details=details,
        )
        self.pattern = pattern


class InvalidStateError(ArtifactError):
    """Raised when a lifecycle transition is not allowed from the current state."""

    def __init__(
        self,
        message: str = "Invalid artifact state for this operation",
        *,
        artifact_id: int | None = None,
        expected: str | None = None,
        actual: str | None = None,
        operation: str | None = None,
    ):
        details = {"expected": expected, "actual": actual}
        super().__init__(
            message,
            artifact_id=artifact_id,
            operation=operation,
            details=details,
        )
        self.expected = expected
        self.actual = actual


class QuotaExceededError(ArtifactError):
    """Raised when a run already holds the maximum number of artifacts."""

    def __init__(
        self,
        message: str = "Artifact count limit reached for run",
        *,
        run_id: int | None = None,
        limit: int | None = None,
    ):
        details = {}
        if limit is not None:
            details["limit"] = limit
        super().__init__(message, run_id=run_id, operation="create", details=details)
        self.limit = limit


class CorruptArtifactError(ArtifactError):
    """Raised when artifact content fails digest verification or cannot be read."""

    def __init__(
        self,
        message: str = "Artifact content is corrupt",
        *,
        artifact_id: int | None = None,
        name: str | None = None,
        expected: str | None = None,
        actual: str | None = None,
    ):
        details = {}
        if expected:
            details["expected"] = expected
        if actual:
            details["actual"] = actual
        super().__init__(
            message,
            artifact_id=artifact_id,
            name=name,
            operation="verify",
            details=details,
        )
        self.expected = expected
        self.actual = actual


class EmptyMatchError(ArtifactVaultError):
    """
    Raised when include/exclude patterns select no files.

    Only raised when the caller configured ``if_no_files_found=error``.
    """

    def __init__(
        self,
        message: str = "No files were found with the provided path patterns",
        *,
        include_patterns: list[str] | None = None,
        exclude_patterns: list[str] | None = None,
    ):
        details: dict[str, Any] = {}
        if include_patterns:
            details["include_patterns"] = include_patterns
        if exclude_patterns:
            details["exclude_patterns"] = exclude_patterns
        super().__init__(message, details=details)
        self.include_patterns = include_patterns or []
        self.exclude_patterns = exclude_patterns or []


class UnauthorizedError(ArtifactVaultError):
    """
    Raised when a cross-run or cross-repository request is not authorized.

    Covers missing, malformed, expired and insufficiently scoped
    capability tokens. Authorization always fails closed.
    """

    def __init__(
        self,
        message: str = "Not authorized for the requested scope",
        *,
        scope: str | None = None,
        reason: str | None = None,
    ):
        details = {}
        if scope:
            details["scope"] = scope
        if reason:
            details["reason"] = reason
        super().__init__(message, details=details)
        self.scope = scope
        self.reason = reason


class MultipleArtifactsError(ArtifactVaultError):
    """Raised when a pattern matches several artifacts and merge mode is off."""

    def __init__(
        self,
        message: str = "Pattern matched multiple artifacts; enable merge mode to combine them",
        *,
        pattern: str | None = None,
        names: list[str] | None = None,
    ):
        details: dict[str, Any] = {}
        if pattern:
            details["pattern"] = pattern
        if names:
            details["names"] = names
        super().__init__(message, details=details)
        self.pattern = pattern
        self.names = names or []


class OperationCancelledError(ArtifactVaultError):
    """Raised when the caller cancels an upload, download or merge in flight."""

    def __init__(
        self,
        message: str = "Operation cancelled",
        *,
        operation: str | None = None,
    ):
        details = {}
        if operation:
            details["operation"] = operation
        super().__init__(message, details=details)
        self.operation = operation


class ConfigurationError(ArtifactVaultError):
    """
    Errors in configuration loading or validation.

    Raised when:
    - Configuration files are missing or malformed
    - Environment variables hold invalid values
    - Configuration values are out of range
    """

    def __init__(
        self,
        message: str,
        *,
        config_file: str | None = None,
        env_var: str | None = None,
        config_key: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize a ConfigurationError.

        Args:
            message: Human-readable error message
            config_file: Path to configuration file if applicable
            env_var: Environment variable name if applicable
            config_key: Configuration key if applicable
            details: Optional structured data for debugging
        """
        details = details or {}
        if config_file:
            details["config_file"] = config_file
        if env_var:
            details["env_var"] = env_var
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, details=details)
        self.config_file = config_file
        self.env_var = env_var
        self.config_key = config_key


class ValidationError(ArtifactVaultError):
    """
    Errors during request validation.

    Raised when:
    - Retention days or compression level are out of range
    - An artifact name or path pattern is malformed
    - Option values are not one of the enumerated choices
    """

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        validation_errors: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize a ValidationError.

        Args:
            message: Human-readable error message
            field: Field name that failed validation
            validation_errors: List of specific validation errors
            details: Optional structured data for debugging
        """
        details = details or {}
        if field:
            details["field"] = field
        if validation_errors:
            details["validation_errors"] = validation_errors

        super().__init__(message, details=details)
        self.field = field
        self.validation_errors = validation_errors or []

    @classmethod
    def from_errors(cls, errors: list[dict[str, Any]]) -> "ValidationError":
        """Build from a list of pydantic-style error dictionaries."""
        messages = []
        first_field = None
        for error in errors:
            location = ".".join(str(part) for part in error.get("loc", ()))
            if first_field is None and location:
                first_field = location
            messages.append(f"{location}: {error.get('msg', 'invalid value')}")
        return cls(
            f"Validation failed for {len(messages)} field(s)",
            field=first_field,
            validation_errors=messages,
        )


def format_exception(error: Exception) -> str:
    """
    Format an exception for user-friendly display.

    Args:
        error: The exception to format

    Returns:
        Formatted error message string
    """
    if isinstance(error, ArtifactVaultError):
        return str(error)
    return f"{error.__class__.__name__}: {error}"


def is_retriable_error(error: Exception) -> bool:
    """
    Determine if an error is suitable for retry.

    Domain errors repeat identically on retry, so none of them qualify.

    Args:
        error: The exception to check

    Returns:
        True if the error should be retried
    """
    if isinstance(error, ArtifactVaultError):
        return False
    return isinstance(error, (ConnectionError, TimeoutError))
