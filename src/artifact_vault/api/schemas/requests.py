"""
Pydantic request schemas for API endpoints.

Ranges and names are validated again by the service; these schemas only
fix the request shape.
"""

from pydantic import BaseModel, Field, model_validator

from artifact_vault.artifacts.models import (
    ById,
    ByName,
    ByPattern,
    IfNoFilesFound,
    OtherRepository,
    OtherRun,
    SameRun,
    Scope,
    Selector,
)


class SelectorSpec(BaseModel):
    """Exactly one of name, id or pattern."""

    name: str | None = Field(None, description="Exact artifact name")
    id: int | None = Field(None, description="Artifact ID")
    pattern: str | None = Field(None, description="Glob over artifact names", examples=["bin-*"])

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def check_exactly_one(self) -> "SelectorSpec":
        """Require exactly one selector field."""
        given = [v for v in (self.name, self.id, self.pattern) if v is not None]
        if len(given) != 1:
            raise ValueError("exactly one of name, id or pattern is required")
        return self

    def to_selector(self) -> Selector:
        """Convert to a service selector."""
        if self.name is not None:
            return ByName(self.name)
        if self.id is not None:
            return ById(self.id)
        return ByPattern(self.pattern)


class ScopeSpec(BaseModel):
    """Target run; omit both fields for the caller's own run."""

    run_id: int | None = Field(None, description="Target run ID")
    repository_id: str | None = Field(None, description="Target repository ID")

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def check_run_given(self) -> "ScopeSpec":
        """A repository without a run is ambiguous."""
        if self.repository_id is not None and self.run_id is None:
            raise ValueError("run_id is required when repository_id is given")
        return self

    def to_scope(self) -> Scope:
        """Convert to a service scope."""
        if self.run_id is None:
            return SameRun()
        if self.repository_id is None:
            return OtherRun(self.run_id)
        return OtherRepository(self.repository_id, self.run_id)


class UploadRequest(BaseModel):
    """Request to package workspace files into a new artifact."""

    name: str = Field(..., description="Artifact name", examples=["build-output"])
    include_patterns: list[str] = Field(..., description="Ordered include globs", examples=[["dist/**"]])
    workspace: str = Field(..., description="Workspace directory on the service host")
    exclude_patterns: list[str] = Field(default_factory=list, description="Exclude globs")
    retention_days: int | None = Field(None, description="Retention in days (1-90)")
    compression_level: int = Field(default=6, description="Deflate level (0-9)")
    if_no_files_found: IfNoFilesFound = Field(default=IfNoFilesFound.WARN, description="Empty match policy")
    overwrite: bool = Field(default=False, description="Replace an existing artifact with the same name")
    include_hidden: bool = Field(default=False, description="Include dot-files and dot-directories")

    model_config = {"extra": "forbid"}


class DownloadRequest(BaseModel):
    """Request to extract artifacts into a directory on the service host."""

    selector: SelectorSpec | None = Field(None, description="Single selector")
    selectors: list[SelectorSpec] | None = Field(
        None, description="Several name or ID selectors, each requested separately"
    )
    scope: ScopeSpec = Field(default_factory=ScopeSpec, description="Where to look")
    destination: str = Field(..., description="Destination directory")
    merge_multiple: bool = Field(default=False, description="Extract all matches into one directory")

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def check_selector_form(self) -> "DownloadRequest":
        """Require either selector or selectors."""
        if (self.selector is None) == (self.selectors is None):
            raise ValueError("exactly one of selector or selectors is required")
        return self


class MergeRequest(BaseModel):
    """Request to combine artifacts of the caller's run."""

    artifact_ids: list[int] = Field(..., description="Artifacts to combine, in order")
    new_name: str = Field(..., description="Name of the merged artifact")
    retention_days: int | None = Field(None, description="Retention in days (1-90)")
    compression_level: int = Field(default=6, description="Deflate level (0-9)")
    separate_directories: bool = Field(default=False, description="Place each source under its own name")
    delete_merged: bool = Field(default=False, description="Retire the sources after merging")
    overwrite: bool = Field(default=False, description="Replace an existing artifact with the same name")

    model_config = {"extra": "forbid"}
