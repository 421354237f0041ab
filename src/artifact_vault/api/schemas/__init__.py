"""API request, response and error schemas."""

from artifact_vault.api.schemas.exceptions import (
    APIException,
    BadRequestError,
    MissingIdentityError,
    status_for,
)
from artifact_vault.api.schemas.requests import (
    DownloadRequest,
    MergeRequest,
    ScopeSpec,
    SelectorSpec,
    UploadRequest,
)
from artifact_vault.api.schemas.responses import (
    ArtifactListResponse,
    ArtifactResponse,
    DeleteResponse,
    HealthResponse,
)

__all__ = [
    "APIException",
    "BadRequestError",
    "MissingIdentityError",
    "status_for",
    "DownloadRequest",
    "MergeRequest",
    "ScopeSpec",
    "SelectorSpec",
    "UploadRequest",
    "ArtifactListResponse",
    "ArtifactResponse",
    "DeleteResponse",
    "HealthResponse",
]
