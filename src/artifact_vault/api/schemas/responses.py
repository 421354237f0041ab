"""
Pydantic response schemas for API endpoints.

All API responses conform to these schemas for consistent output.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from artifact_vault.artifacts.models import ArtifactRecord, ManifestEntry


class ArtifactResponse(BaseModel):
    """Metadata of a single artifact."""

    id: int = Field(..., description="Artifact ID")
    name: str = Field(..., description="Artifact name")
    run_id: int = Field(..., description="Owning run")
    repository_id: str = Field(..., description="Owning repository")
    state: str = Field(..., description="Lifecycle state")
    digest: str | None = Field(None, description="sha256 digest of the bundle")
    size_bytes: int = Field(..., description="Bundle size in bytes")
    file_count: int = Field(..., description="Number of files")
    compression_level: int = Field(..., description="Deflate level")
    created_at: datetime = Field(..., description="Creation time")
    sealed_at: datetime | None = Field(None, description="Seal time")
    retention_expiry: datetime = Field(..., description="Retention expiry")
    manifest: list[ManifestEntry] | None = Field(None, description="Bundle entries (detail view only)")
    url: str | None = Field(None, description="Signed download locator")

    @classmethod
    def from_record(
        cls,
        record: ArtifactRecord,
        *,
        include_manifest: bool = False,
        url: str | None = None,
    ) -> "ArtifactResponse":
        """Build from a registry record."""
        return cls(
            id=record.id,
            name=record.name,
            run_id=record.run_id,
            repository_id=record.repository_id,
            state=record.state.value,
            digest=record.digest,
            size_bytes=record.size_bytes,
            file_count=record.file_count,
            compression_level=record.compression_level,
            created_at=record.created_at,
            sealed_at=record.sealed_at,
            retention_expiry=record.retention_expiry,
            manifest=list(record.manifest) if include_manifest else None,
            url=url,
        )


class ArtifactListResponse(BaseModel):
    """Artifacts of a run."""

    artifacts: list[ArtifactResponse] = Field(default_factory=list, description="Artifacts in creation order")
    total: int = Field(..., description="Number of artifacts returned")


class DeleteResponse(BaseModel):
    """Result of retiring an artifact."""

    id: int = Field(..., description="Retired artifact ID")
    name: str = Field(..., description="Retired artifact name")
    deleted: bool = Field(default=True, description="Whether the artifact was retired")


class HealthResponse(BaseModel):
    """Service health."""

    status: str = Field(..., description="Overall status")
    version: str = Field(..., description="Service version")
    timestamp: datetime = Field(..., description="Check time")
    components: dict[str, str] = Field(default_factory=dict, description="Component statuses")
