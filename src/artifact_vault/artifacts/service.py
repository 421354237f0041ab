"""
Artifact service facade.

Entry point used by the HTTP API and the CLI: upload, download, merge and
the supporting list/get/delete operations, wired onto a single registry.
"""

import logging
import sqlite3
from collections.abc import Callable
from datetime import datetime, timedelta
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from artifact_vault.artifacts.globbing import match_name
from artifact_vault.artifacts.lifecycle import RetentionReaper
from artifact_vault.artifacts.models import (
    ArtifactRecord,
    ById,
    ByName,
    ByPattern,
    CallerContext,
    DownloadResult,
    IfNoFilesFound,
    MergeOptions,
    ReapResult,
    SameRun,
    Scope,
    Selector,
    UploadOptions,
    UploadResult,
    utcnow,
)
from artifact_vault.artifacts.packager import Packager
from artifact_vault.artifacts.resolver import Resolver
from artifact_vault.artifacts.retrieval import ExtractLayout, RetrievalEngine
from artifact_vault.artifacts.storage import ArtifactRegistry
from artifact_vault.auth.tokens import (
    ADMIN_PERMISSION,
    ANY_REPOSITORY,
    DEFAULT_EXPIRATION_SECONDS,
    RUN_PERMISSION,
    CapabilityToken,
    TokenError,
    create_capability_token,
    decode_capability_token,
    resolve_secret,
)
from artifact_vault.auth.urls import generate_download_url, validate_download_signature
from artifact_vault.core.cancellation import CancellationToken
from artifact_vault.core.config import ServiceSettings, get_settings
from artifact_vault.core.exceptions import (
    ArtifactNotFoundError,
    ArtifactVaultError,
    MultipleArtifactsError,
    UnauthorizedError,
    ValidationError,
    format_exception,
)

logger = logging.getLogger(__name__)


def _validated(model: type[BaseModel], **values: Any) -> Any:
    """Build a pydantic model, converting its errors to ValidationError."""
    try:
        return model(**values)
    except PydanticValidationError as e:
        raise ValidationError.from_errors(e.errors()) from e


class ArtifactService:
    """
    Artifact storage and retrieval service.

    Owns one registry plus the packager, resolver, retrieval engine and
    retention reaper built on it.
    """

    def __init__(
        self,
        settings: ServiceSettings | None = None,
        registry: ArtifactRegistry | None = None,
    ):
        self._settings = settings or get_settings()
        self._registry = registry or ArtifactRegistry(
            self._settings.registry_path,
            self._settings.blobs_dir,
            max_artifacts_per_run=self._settings.max_artifacts_per_run,
        )
        self._secret = resolve_secret(self._settings.token_secret)
        self._packager = Packager(self._registry)
        self._resolver = Resolver(self._registry, self._secret)
        self._engine = RetrievalEngine(self._registry)
        self._reaper = RetentionReaper(
            self._registry,
            interval_seconds=self._settings.reaper_interval_seconds,
            expired_grace=timedelta(hours=self._settings.expired_grace_hours),
            stale_pending=timedelta(hours=self._settings.stale_pending_hours),
        )

    @property
    def settings(self) -> ServiceSettings:
        return self._settings

    @property
    def registry(self) -> ArtifactRegistry:
        return self._registry

    @property
    def reaper(self) -> RetentionReaper:
        return self._reaper

    def _retention_expiry(self, caller: CallerContext, retention_days: int | None) -> datetime:
        days = retention_days or self._settings.retention_days_for(caller.repository_id)
        return utcnow() + timedelta(days=days)

    def _upload_result(self, record: ArtifactRecord, warnings: list[str]) -> UploadResult:
        return UploadResult(
            artifact_id=record.id,
            name=record.name,
            digest=record.digest or "",
            url=self.download_url(record.id),
            size_bytes=record.size_bytes,
            file_count=record.file_count,
            warnings=warnings,
        )

    def download_url(self, artifact_id: int) -> str:
        """Signed, expiring locator for an artifact bundle."""
        return generate_download_url(
            artifact_id,
            self._secret,
            expiry_seconds=self._settings.url_expiry_seconds,
        )

    # Write path

    def upload(
        self,
        caller: CallerContext,
        name: str,
        include_patterns: list[str],
        workspace: Path,
        exclude_patterns: list[str] | tuple[str, ...] = (),
        retention_days: int | None = None,
        compression_level: int = 6,
        if_no_files_found: IfNoFilesFound | str = IfNoFilesFound.WARN,
        overwrite: bool = False,
        include_hidden: bool = False,
        cancel_token: CancellationToken | None = None,
    ) -> UploadResult:
        """
        Package workspace files into a new sealed artifact.

        Args:
            caller: Uploading run and repository
            name: Artifact name
            include_patterns: Ordered include globs, relative to the workspace
            workspace: Root directory of the job's files
            exclude_patterns: Exclude globs, applied after all includes
            retention_days: 1..90, repository default if None
            compression_level: 0..9
            if_no_files_found: error, warn or ignore
            overwrite: Replace an existing artifact with the same name
            include_hidden: Include dot-files and dot-directories
            cancel_token: Optional cancellation flag

        Returns:
            UploadResult with ID, digest and signed URL

        Raises:
            ValidationError: If any option is invalid
            EmptyMatchError: If nothing matched and the policy is error
            NameCollisionError: If the name is taken and overwrite is off
            QuotaExceededError: If the run is at its artifact limit
            OperationCancelledError: If cancelled before sealing
        """
        options: UploadOptions = _validated(
            UploadOptions,
            name=name,
            include_patterns=list(include_patterns),
            exclude_patterns=list(exclude_patterns),
            retention_days=retention_days,
            compression_level=compression_level,
            if_no_files_found=if_no_files_found,
            overwrite=overwrite,
            include_hidden=include_hidden,
        )
        workspace = Path(workspace)
        if not workspace.is_dir():
            raise ValidationError(f"Workspace is not a directory: {workspace}", field="workspace")

        record, warnings = self._packager.package(
            caller,
            options,
            workspace,
            retention_expiry=self._retention_expiry(caller, options.retention_days),
            cancel_token=cancel_token,
        )
        logger.info(
            f"Uploaded artifact '{record.name}' id={record.id} run={caller.run_id} "
            f"files={record.file_count} size={record.size_bytes}"
        )
        return self._upload_result(record, warnings)

    def merge(
        self,
        caller: CallerContext,
        artifact_ids: list[int],
        new_name: str,
        retention_days: int | None = None,
        compression_level: int = 6,
        separate_directories: bool = False,
        delete_merged: bool = False,
        overwrite: bool = False,
        cancel_token: CancellationToken | None = None,
    ) -> UploadResult:
        """
        Combine sealed artifacts of the caller's run into a new artifact.

        Later artifacts win on identical paths; each collision is returned
        as a warning.

        Raises:
            ValidationError: If any option is invalid
            ArtifactNotFoundError: If a source is not sealed in the caller's run
            NameCollisionError: If the name is taken and overwrite is off
            QuotaExceededError: If the run is at its artifact limit
        """
        options: MergeOptions = _validated(
            MergeOptions,
            artifact_ids=list(artifact_ids),
            name=new_name,
            retention_days=retention_days,
            compression_level=compression_level,
            separate_directories=separate_directories,
            delete_merged=delete_merged,
            overwrite=overwrite,
        )

        sources = [
            self._resolver.resolve(ById(artifact_id), caller)[0]
            for artifact_id in options.artifact_ids
        ]
        record, warnings = self._packager.merge_bundles(
            caller,
            options.name,
            sources,
            open_bundle=self._engine.open_bundle,
            compression_level=options.compression_level,
            retention_expiry=self._retention_expiry(caller, options.retention_days),
            separate_directories=options.separate_directories,
            overwrite=options.overwrite,
            cancel_token=cancel_token,
        )

        if options.delete_merged:
            for source in sources:
                try:
                    self._registry.retire(source.id)
                except (ArtifactVaultError, sqlite3.Error) as e:
                    logger.error(f"Failed to retire merged artifact '{source.name}' id={source.id}: {e}")
                    warnings.append(f"{source.name}: not deleted after merge ({format_exception(e)})")

        logger.info(
            f"Merged {len(sources)} artifact(s) into '{record.name}' id={record.id} run={caller.run_id}"
        )
        return self._upload_result(record, warnings)

    # Read path

    def _resolve_for_download(
        self,
        selector: Selector,
        caller: CallerContext,
        scope: Scope | None,
        token: str | None,
        merge_multiple: bool,
    ) -> list[ArtifactRecord]:
        records = self._resolver.resolve(selector, caller, scope, token)

        if isinstance(selector, ByPattern):
            if not records:
                raise ArtifactNotFoundError(
                    f"No artifacts matched pattern '{selector.pattern}'",
                    pattern=selector.pattern,
                )
            if len(records) > 1 and not merge_multiple:
                names = [record.name for record in records]
                logger.warning(f"Pattern '{selector.pattern}' matched {len(names)} artifacts without merge")
                raise MultipleArtifactsError(pattern=selector.pattern, names=names)
        return records

    def _extract(
        self,
        resolve: Callable[[], list[ArtifactRecord]],
        by_name: bool,
        destination: Path,
        layout: ExtractLayout,
        cancel_token: CancellationToken | None,
    ) -> DownloadResult:
        """
        Resolve and extract, resolving once more if a named artifact was replaced.

        An overwrite retires the record a reader resolved while a new sealed
        record takes the name, so a name lookup is retried once. Artifacts
        selected by ID are not.
        """
        records = resolve()
        try:
            return self._engine.extract(records, Path(destination), layout, cancel_token)
        except ArtifactNotFoundError as e:
            if not by_name:
                raise
            logger.info(f"Resolved artifact retired during download ({e}); resolving again")
        return self._engine.extract(resolve(), Path(destination), layout, cancel_token)

    def download(
        self,
        caller: CallerContext,
        selector: Selector,
        destination: Path,
        scope: Scope | None = None,
        token: str | None = None,
        merge_multiple: bool = False,
        cancel_token: CancellationToken | None = None,
    ) -> DownloadResult:
        """
        Resolve a selector and extract the matching artifact(s).

        A pattern matching several artifacts requires ``merge_multiple``;
        with it every match is extracted into the destination in creation
        order, later files winning.

        Raises:
            UnauthorizedError: If the scope is not authorized
            ArtifactNotFoundError: If nothing matched
            MultipleArtifactsError: If a pattern matched several and merge is off
            CorruptArtifactError: If a bundle fails verification
            OperationCancelledError: If cancelled; created files are removed
        """
        layout = ExtractLayout.MERGED if merge_multiple else ExtractLayout.DIRECT
        return self._extract(
            lambda: self._resolve_for_download(selector, caller, scope, token, merge_multiple),
            not isinstance(selector, ById),
            destination,
            layout,
            cancel_token,
        )

    def download_each(
        self,
        caller: CallerContext,
        selectors: list[Selector],
        destination: Path,
        scope: Scope | None = None,
        token: str | None = None,
        merge_multiple: bool = False,
        cancel_token: CancellationToken | None = None,
    ) -> DownloadResult:
        """
        Download several artifacts requested individually.

        Without merge each artifact lands in a subdirectory named after it;
        with merge they share the destination.

        Raises:
            ValidationError: If no selectors are given or one is a pattern
        """
        if not selectors:
            raise ValidationError("At least one selector is required", field="selectors")
        if any(isinstance(selector, ByPattern) for selector in selectors):
            raise ValidationError(
                "Patterns are not allowed here; use download with merge_multiple",
                field="selectors",
            )

        def resolve() -> list[ArtifactRecord]:
            records = []
            for selector in selectors:
                records.extend(self._resolver.resolve(selector, caller, scope, token))
            return records

        layout = ExtractLayout.MERGED if merge_multiple else ExtractLayout.PER_ARTIFACT
        return self._extract(
            resolve,
            any(isinstance(selector, ByName) for selector in selectors),
            destination,
            layout,
            cancel_token,
        )

    def list_artifacts(
        self,
        caller: CallerContext,
        scope: Scope | None = None,
        token: str | None = None,
        name: str | None = None,
        pattern: str | None = None,
        include_expired: bool = False,
    ) -> list[ArtifactRecord]:
        """List artifacts of a run, optionally filtered by exact name or name glob."""
        repository_id, run_id = self._resolver.authorize(scope or SameRun(), caller, token)
        records = [
            record
            for record in self._registry.list_run(run_id, include_expired=include_expired)
            if record.repository_id == repository_id
        ]
        if name is not None:
            records = [record for record in records if record.name == name]
        if pattern is not None:
            records = [record for record in records if match_name(pattern, record.name)]
        return records

    def get_artifact(
        self,
        caller: CallerContext,
        artifact_id: int,
        scope: Scope | None = None,
        token: str | None = None,
    ) -> ArtifactRecord:
        """Get one sealed artifact visible in the scope."""
        return self._resolver.resolve(ById(artifact_id), caller, scope, token)[0]

    def delete_artifact(self, caller: CallerContext, name: str) -> ArtifactRecord:
        """
        Retire the sealed artifact with a name in the caller's run.

        Its content is reclaimed by the next reaper pass.
        """
        record = self._resolver.resolve(ByName(name), caller)[0]
        self._registry.retire(record.id)
        logger.info(f"Deleted artifact '{name}' id={record.id} run={caller.run_id}")
        return record

    def open_blob(self, record: ArtifactRecord) -> Path:
        """Verified path of a sealed record's bundle."""
        return self._engine.verified_blob(record)

    def verify_download_url(self, artifact_id: int, expires: str | int | None, signature: str | None) -> ArtifactRecord:
        """
        Check a signed locator and return the sealed record it points at.

        Raises:
            UnauthorizedError: If the signature is missing, invalid or expired
            ArtifactNotFoundError: If the artifact is no longer sealed
        """
        valid, error = validate_download_signature(artifact_id, expires, signature, self._secret)
        if not valid:
            raise UnauthorizedError(
                f"Download URL rejected: {error}",
                scope=f"artifact {artifact_id}",
                reason=error,
            )
        record = self._registry.lookup_by_id(artifact_id)
        if not record.is_sealed:
            raise ArtifactNotFoundError(f"Artifact {artifact_id} not found", artifact_id=artifact_id)
        return record

    # Administration

    def issue_token(
        self,
        subject: str,
        repository: str,
        runs: list[int] | None = None,
        permissions: list[str] | None = None,
        expiration_seconds: int = DEFAULT_EXPIRATION_SECONDS,
    ) -> str:
        """Issue a capability token signed with the service secret."""
        return create_capability_token(
            subject,
            repository,
            runs=runs,
            permissions=permissions,
            expiration_seconds=expiration_seconds,
            secret=self._secret,
        )

    def issue_run_token(
        self,
        repository_id: str,
        run_id: int,
        expiration_seconds: int = DEFAULT_EXPIRATION_SECONDS,
    ) -> str:
        """Issue the token a job presents to act as the caller of its run."""
        return create_capability_token(
            f"run:{repository_id}#{run_id}",
            repository_id,
            runs=[run_id],
            permissions=[RUN_PERMISSION],
            expiration_seconds=expiration_seconds,
            secret=self._secret,
        )

    def authenticate_run(self, token: str) -> CallerContext:
        """
        Resolve the calling job from a run token.

        Raises:
            UnauthorizedError: If the token is invalid, expired or not a run token
        """
        try:
            capability = decode_capability_token(token, self._secret)
        except TokenError as e:
            raise UnauthorizedError("Run token rejected", scope="caller", reason=str(e)) from e
        if (
            RUN_PERMISSION not in capability.permissions
            or capability.repository == ANY_REPOSITORY
            or capability.runs is None
            or len(capability.runs) != 1
        ):
            raise UnauthorizedError(
                "Token does not identify a single run",
                scope="caller",
                reason="not a run token",
            )
        return CallerContext(run_id=capability.runs[0], repository_id=capability.repository)

    def authorize_admin(self, token: str | None) -> CapabilityToken:
        """
        Check a token for the administrative permission.

        Raises:
            UnauthorizedError: If the token is missing, invalid or lacks the permission
        """
        if not token:
            raise UnauthorizedError(
                "A capability token is required for administrative operations",
                scope="admin",
                reason="missing token",
            )
        try:
            capability = decode_capability_token(token, self._secret)
        except TokenError as e:
            raise UnauthorizedError("Capability token rejected", scope="admin", reason=str(e)) from e
        if ADMIN_PERMISSION not in capability.permissions:
            raise UnauthorizedError(
                "Capability token does not grant administrative access",
                scope="admin",
                reason="insufficient scope",
            )
        return capability

    def reap(self, now: datetime | None = None) -> ReapResult:
        """Run one retention pass."""
        return self._reaper.reap_once(now)

    def stats(self) -> dict[str, Any]:
        """Registry statistics."""
        return self._registry.stats()

    def close(self) -> None:
        """Stop the reaper and close the registry."""
        self._reaper.stop()
        self._registry.close()


@lru_cache(maxsize=1)
def get_service() -> ArtifactService:
    """Get the process-wide artifact service."""
    return ArtifactService(get_settings())
