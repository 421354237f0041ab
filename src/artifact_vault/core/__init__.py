"""
Artifact Vault Core Module.

Provides the exception hierarchy, settings and cancellation primitives.
"""

__all__ = [
    "CancellationToken",
    "ServiceSettings",
    "get_settings",
    "load_settings",
    # Exceptions
    "ArtifactVaultError",
    "ArtifactError",
    "NameCollisionError",
    "ArtifactNotFoundError",
    "InvalidStateError",
    "QuotaExceededError",
    "CorruptArtifactError",
    "EmptyMatchError",
    "UnauthorizedError",
    "MultipleArtifactsError",
    "OperationCancelledError",
    "ConfigurationError",
    "ValidationError",
]

from artifact_vault.core.cancellation import CancellationToken
from artifact_vault.core.config import ServiceSettings, get_settings, load_settings
from artifact_vault.core.exceptions import (
    ArtifactError,
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
