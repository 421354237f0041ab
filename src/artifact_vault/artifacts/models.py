"""
Pydantic models for artifact storage and retrieval.

Defines schemas for artifact records, manifests, upload options,
selectors, scopes and operation results used throughout the
artifacts module.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from artifact_vault.core.config import MAX_RETENTION_DAYS, MIN_RETENTION_DAYS

MAX_NAME_LENGTH = 256
MIN_COMPRESSION_LEVEL = 0
MAX_COMPRESSION_LEVEL = 9
DEFAULT_COMPRESSION_LEVEL = 6

# Path separators, glob metacharacters and characters that are unsafe in
# file names on common filesystems.
_FORBIDDEN_NAME_CHARS = re.compile(r'[\\/:<>|*?"\[\]\r\n\x00]')


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def validate_artifact_name(name: str) -> str:
    """
    Validate an artifact name.

    Raises:
        ValueError: If the name is empty, too long or contains forbidden characters
    """
    if not name or not name.strip():
        raise ValueError("artifact name cannot be empty")
    if len(name) > MAX_NAME_LENGTH:
        raise ValueError(f"artifact name exceeds {MAX_NAME_LENGTH} characters")
    if name in (".", ".."):
        raise ValueError("artifact name cannot be '.' or '..'")
    match = _FORBIDDEN_NAME_CHARS.search(name)
    if match:
        raise ValueError(f"artifact name contains forbidden character {match.group()!r}")
    return name


class ArtifactState(str, Enum):
    """Lifecycle state of an artifact."""

    PENDING = "pending"
    SEALED = "sealed"
    EXPIRED = "expired"


class IfNoFilesFound(str, Enum):
    """What to do when the include/exclude patterns select nothing."""

    ERROR = "error"
    WARN = "warn"
    IGNORE = "ignore"


class ManifestEntry(BaseModel):
    """A single path recorded in an artifact manifest."""

    relative_path: str = Field(description="POSIX path relative to the artifact root")
    size_bytes: int = Field(default=0, ge=0, description="File size, 0 for directories")
    is_directory: bool = Field(default=False, description="Whether the entry is a directory")


class ArtifactRecord(BaseModel):
    """Snapshot of an artifact's metadata as stored in the registry."""

    model_config = {"frozen": True}

    id: int = Field(description="Process-wide unique artifact ID")
    name: str = Field(description="Artifact name, unique among sealed artifacts of a run")
    run_id: int = Field(description="Run that owns the artifact")
    repository_id: str = Field(description="Repository that owns the run")
    state: ArtifactState = Field(description="Lifecycle state")
    manifest: list[ManifestEntry] = Field(
        default_factory=list, description="Entries in the sealed bundle"
    )
    compression_level: int = Field(description="Deflate level 0-9 used for the bundle")
    digest: str | None = Field(default=None, description="sha256 digest of the sealed bundle")
    size_bytes: int = Field(default=0, description="Size of the sealed bundle in bytes")
    retention_expiry: datetime = Field(description="When the artifact becomes eligible for expiry")
    created_at: datetime = Field(description="When the pending record was created")
    sealed_at: datetime | None = Field(default=None, description="When the artifact was sealed")
    expired_at: datetime | None = Field(default=None, description="When the artifact was retired")

    @property
    def is_sealed(self) -> bool:
        """Return True if the artifact is discoverable."""
        return self.state == ArtifactState.SEALED

    @property
    def file_count(self) -> int:
        """Number of file entries in the manifest."""
        return sum(1 for entry in self.manifest if not entry.is_directory)

    def to_summary(self) -> dict[str, object]:
        """Convert to summary for listing."""
        return {
            "id": self.id,
            "name": self.name,
            "run_id": self.run_id,
            "repository_id": self.repository_id,
            "state": self.state.value,
            "files": self.file_count,
            "size_bytes": self.size_bytes,
            "created_at": self.created_at.isoformat(),
            "retention_expiry": self.retention_expiry.isoformat(),
        }


class UploadOptions(BaseModel):
    """Validated options for an upload."""

    model_config = {"extra": "forbid"}

    name: str = Field(description="Artifact name")
    include_patterns: list[str] = Field(min_length=1, description="Glob patterns to include, in order")
    exclude_patterns: list[str] = Field(default_factory=list, description="Glob patterns to exclude")
    retention_days: int | None = Field(
        default=None,
        ge=MIN_RETENTION_DAYS,
        le=MAX_RETENTION_DAYS,
        description="Retention in days (repository default if None)",
    )
    compression_level: int = Field(
        default=DEFAULT_COMPRESSION_LEVEL,
        ge=MIN_COMPRESSION_LEVEL,
        le=MAX_COMPRESSION_LEVEL,
        description="Deflate level, 0 stores without compression",
    )
    if_no_files_found: IfNoFilesFound = Field(
        default=IfNoFilesFound.WARN, description="Policy when nothing matches"
    )
    overwrite: bool = Field(default=False, description="Retire an existing artifact with the same name")
    include_hidden: bool = Field(default=False, description="Include dot-files and dot-directories")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Reject malformed artifact names."""
        return validate_artifact_name(v)

    @field_validator("include_patterns", "exclude_patterns")
    @classmethod
    def validate_patterns(cls, v: list[str]) -> list[str]:
        """Strip patterns and reject blank ones."""
        patterns = [p.strip() for p in v]
        if any(not p for p in patterns):
            raise ValueError("path patterns cannot be blank")
        return patterns


class MergeOptions(BaseModel):
    """Validated options for merging artifacts into a new one."""

    model_config = {"extra": "forbid"}

    artifact_ids: list[int] = Field(min_length=1, description="Sealed artifacts to combine, in order")
    name: str = Field(description="Name of the merged artifact")
    retention_days: int | None = Field(
        default=None,
        ge=MIN_RETENTION_DAYS,
        le=MAX_RETENTION_DAYS,
        description="Retention in days (repository default if None)",
    )
    compression_level: int = Field(
        default=DEFAULT_COMPRESSION_LEVEL,
        ge=MIN_COMPRESSION_LEVEL,
        le=MAX_COMPRESSION_LEVEL,
        description="Deflate level, 0 stores without compression",
    )
    separate_directories: bool = Field(
        default=False, description="Place each source under a directory named after it"
    )
    delete_merged: bool = Field(default=False, description="Retire the sources once merged")
    overwrite: bool = Field(default=False, description="Retire an existing artifact with the same name")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Reject malformed artifact names."""
        return validate_artifact_name(v)


class UploadResult(BaseModel):
    """Result of an upload or merge."""

    artifact_id: int = Field(description="ID of the sealed artifact")
    name: str = Field(description="Artifact name")
    digest: str = Field(description="sha256 digest of the sealed bundle")
    url: str = Field(description="Signed retrieval locator")
    size_bytes: int = Field(description="Size of the sealed bundle")
    file_count: int = Field(description="Number of files in the bundle")
    warnings: list[str] = Field(default_factory=list, description="Non-fatal warnings")


class DownloadResult(BaseModel):
    """Result of a download."""

    destination: Path = Field(description="Directory the artifacts were extracted into")
    files_written: list[str] = Field(
        default_factory=list, description="Paths written, relative to destination"
    )
    artifact_ids: list[int] = Field(default_factory=list, description="Artifacts extracted, in order")
    warnings: list[str] = Field(default_factory=list, description="Non-fatal warnings")


class ReapResult(BaseModel):
    """Result of a retention reaper pass."""

    success: bool = Field(default=True, description="Whether the pass completed without errors")
    expired_count: int = Field(default=0, description="Artifacts retired for retention")
    reclaimed_bytes: int = Field(default=0, description="Bundle bytes deleted")
    purged_count: int = Field(default=0, description="Expired records removed")
    discarded_pending_count: int = Field(default=0, description="Stale uploads discarded")
    errors: list[str] = Field(default_factory=list, description="Any errors encountered")


# Selectors


@dataclass(frozen=True)
class ByName:
    """Select the sealed artifact with this exact name."""

    name: str


@dataclass(frozen=True)
class ById:
    """Select an artifact by numeric ID."""

    artifact_id: int


@dataclass(frozen=True)
class ByPattern:
    """Select every sealed artifact whose name matches a glob."""

    pattern: str


Selector = ByName | ById | ByPattern


# Scopes


@dataclass(frozen=True)
class SameRun:
    """The caller's own run."""


@dataclass(frozen=True)
class OtherRun:
    """Another run of the caller's repository."""

    run_id: int


@dataclass(frozen=True)
class OtherRepository:
    """A run of another repository."""

    repository_id: str
    run_id: int


Scope = SameRun | OtherRun | OtherRepository


@dataclass(frozen=True)
class CallerContext:
    """Identity of the job making a request, supplied by the orchestrator."""

    run_id: int
    repository_id: str
