"""
Artifact Vault Artifacts Module.

Packaging, registry, resolution, retrieval and retention of run-scoped
artifact bundles.
"""

from artifact_vault.artifacts.lifecycle import ReaperStatus, RetentionReaper
from artifact_vault.artifacts.models import (
    ArtifactRecord,
    ArtifactState,
    ById,
    ByName,
    ByPattern,
    CallerContext,
    DownloadResult,
    IfNoFilesFound,
    ManifestEntry,
    MergeOptions,
    OtherRepository,
    OtherRun,
    ReapResult,
    SameRun,
    Scope,
    Selector,
    UploadOptions,
    UploadResult,
)
from artifact_vault.artifacts.packager import Packager
from artifact_vault.artifacts.resolver import Resolver
from artifact_vault.artifacts.retrieval import ExtractLayout, RetrievalEngine
from artifact_vault.artifacts.service import ArtifactService, get_service
from artifact_vault.artifacts.storage import ArtifactRegistry, KeyedLock

__all__ = [
    # Models
    "ArtifactRecord",
    "ArtifactState",
    "ManifestEntry",
    "IfNoFilesFound",
    "UploadOptions",
    "MergeOptions",
    "UploadResult",
    "DownloadResult",
    "ReapResult",
    "ByName",
    "ById",
    "ByPattern",
    "Selector",
    "SameRun",
    "OtherRun",
    "OtherRepository",
    "Scope",
    "CallerContext",
    # Components
    "ArtifactRegistry",
    "KeyedLock",
    "Packager",
    "Resolver",
    "RetrievalEngine",
    "ExtractLayout",
    "RetentionReaper",
    "ReaperStatus",
    "ArtifactService",
    "get_service",
]
