"""
Artifact packaging.

Turns include/exclude globs over a workspace into a sealed zip bundle,
and combines existing bundles into a new one for merge requests.
"""

import logging
import zipfile
from collections.abc import Callable, Iterable
from contextlib import ExitStack
from datetime import datetime
from pathlib import Path, PurePosixPath

from artifact_vault.artifacts.globbing import select_files
from artifact_vault.artifacts.models import (
    ArtifactRecord,
    CallerContext,
    IfNoFilesFound,
    ManifestEntry,
    UploadOptions,
)
from artifact_vault.artifacts.storage import ArtifactRegistry, compute_digest
from artifact_vault.core.cancellation import CancellationToken
from artifact_vault.core.exceptions import (
    ArtifactNotFoundError,
    EmptyMatchError,
    NameCollisionError,
)

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024

# Writes entries into an open bundle and returns (path, size) per file
BundleWriter = Callable[[zipfile.ZipFile, CancellationToken], list[tuple[str, int]]]


def build_manifest(files: Iterable[tuple[str, int]]) -> list[ManifestEntry]:
    """
    Build a sorted manifest from file entries.

    Parent directories of every file are added as directory entries.
    """
    entries: dict[str, ManifestEntry] = {}
    for relative_path, size in files:
        entries[relative_path] = ManifestEntry(relative_path=relative_path, size_bytes=size)
        for parent in PurePosixPath(relative_path).parents:
            key = parent.as_posix()
            if key == "." or key in entries:
                continue
            entries[key] = ManifestEntry(relative_path=key, is_directory=True)
    return [entries[key] for key in sorted(entries)]


def _copy_stream(source, dest, cancel_token: CancellationToken) -> int:
    """Copy between file objects in chunks, polling for cancellation."""
    written = 0
    while True:
        cancel_token.raise_if_cancelled()
        chunk = source.read(CHUNK_SIZE)
        if not chunk:
            return written
        dest.write(chunk)
        written += len(chunk)


class Packager:
    """
    Builds sealed bundles through the registry's create/seal lifecycle.

    A pending record is reserved before any content is written. Every
    failure or cancellation after that point discards the record and its
    staging file before the error propagates.
    """

    def __init__(self, registry: ArtifactRegistry):
        self._registry = registry

    def package(
        self,
        caller: CallerContext,
        options: UploadOptions,
        workspace: Path,
        retention_expiry: datetime,
        cancel_token: CancellationToken | None = None,
    ) -> tuple[ArtifactRecord, list[str]]:
        """
        Package workspace files selected by the upload options.

        Args:
            caller: Run and repository uploading the artifact
            options: Validated upload options
            workspace: Directory the patterns are relative to
            retention_expiry: Expiry timestamp for the new artifact
            cancel_token: Optional cancellation flag

        Returns:
            Tuple of (sealed record, warnings)

        Raises:
            EmptyMatchError: If nothing matched and the policy is ``error``
            NameCollisionError: If the name is taken and overwrite is off
            QuotaExceededError: If the run is at its artifact limit
            OperationCancelledError: If cancelled before sealing
        """
        cancel_token = cancel_token or CancellationToken(operation="upload")
        warnings: list[str] = []

        selected = select_files(
            workspace,
            options.include_patterns,
            options.exclude_patterns,
            include_hidden=options.include_hidden,
        )

        if not selected:
            if options.if_no_files_found == IfNoFilesFound.ERROR:
                logger.warning(
                    f"Upload '{options.name}' in run {caller.run_id} matched no files"
                )
                raise EmptyMatchError(
                    include_patterns=options.include_patterns,
                    exclude_patterns=options.exclude_patterns,
                )
            if options.if_no_files_found == IfNoFilesFound.WARN:
                message = (
                    "No files were found with the provided path patterns: "
                    f"{', '.join(options.include_patterns)}. No artifact content will be uploaded."
                )
                logger.warning(f"Upload '{options.name}' in run {caller.run_id}: {message}")
                warnings.append(message)

        def write_files(bundle: zipfile.ZipFile, token: CancellationToken) -> list[tuple[str, int]]:
            written = []
            for relative_path, path in selected.items():
                with open(path, "rb") as source, bundle.open(relative_path, "w", force_zip64=True) as dest:
                    size = _copy_stream(source, dest, token)
                written.append((relative_path, size))
            return written

        record = self._seal_new(
            caller,
            options.name,
            compression_level=options.compression_level,
            retention_expiry=retention_expiry,
            overwrite=options.overwrite,
            writer=write_files,
            cancel_token=cancel_token,
        )
        return record, warnings

    def merge_bundles(
        self,
        caller: CallerContext,
        name: str,
        sources: list[ArtifactRecord],
        open_bundle: Callable[[ArtifactRecord], zipfile.ZipFile],
        compression_level: int,
        retention_expiry: datetime,
        separate_directories: bool = False,
        overwrite: bool = False,
        cancel_token: CancellationToken | None = None,
    ) -> tuple[ArtifactRecord, list[str]]:
        """
        Combine existing bundles into one new sealed artifact.

        Sources are applied in order; on identical paths the later source
        wins and the collision is reported as a warning. With
        ``separate_directories`` each source lands under its own name.

        Args:
            caller: Run and repository creating the artifact
            name: Name of the new artifact
            sources: Sealed records to combine, in order
            open_bundle: Returns a verified, open zip for a record
            compression_level: Deflate level for the new bundle
            retention_expiry: Expiry timestamp for the new artifact
            separate_directories: Prefix entries with the source name
            overwrite: Replace an existing artifact with the same name
            cancel_token: Optional cancellation flag

        Returns:
            Tuple of (sealed record, warnings)
        """
        cancel_token = cancel_token or CancellationToken(operation="merge")
        warnings: list[str] = []

        def write_merged(bundle: zipfile.ZipFile, token: CancellationToken) -> list[tuple[str, int]]:
            with ExitStack() as stack:
                opened = [stack.enter_context(open_bundle(record)) for record in sources]

                winners: dict[str, tuple[int, str]] = {}
                for index, (record, source) in enumerate(zip(sources, opened)):
                    for member in source.namelist():
                        if member.endswith("/"):
                            continue
                        target = f"{record.name}/{member}" if separate_directories else member
                        if target in winners:
                            earlier = sources[winners[target][0]].name
                            warnings.append(f"{target}: {earlier} overwritten by {record.name}")
                        winners[target] = (index, member)

                written = []
                for target in sorted(winners):
                    index, member = winners[target]
                    with opened[index].open(member) as src, bundle.open(target, "w", force_zip64=True) as dest:
                        size = _copy_stream(src, dest, token)
                    written.append((target, size))
                return written

        record = self._seal_new(
            caller,
            name,
            compression_level=compression_level,
            retention_expiry=retention_expiry,
            overwrite=overwrite,
            writer=write_merged,
            cancel_token=cancel_token,
        )
        for warning in warnings:
            logger.warning(f"Merge into '{name}' in run {caller.run_id}: {warning}")
        return record, warnings

    def _ensure_name_free(self, run_id: int, name: str) -> None:
        """Fail before compressing anything if the name is already sealed."""
        try:
            existing = self._registry.lookup_by_name(run_id, name)
        except ArtifactNotFoundError:
            return
        logger.warning(f"Artifact '{name}' already exists in run {run_id} (id={existing.id})")
        raise NameCollisionError(
            f"Artifact '{name}' already exists in run {run_id}",
            run_id=run_id,
            name=name,
            existing_id=existing.id,
        )

    def _seal_new(
        self,
        caller: CallerContext,
        name: str,
        *,
        compression_level: int,
        retention_expiry: datetime,
        overwrite: bool,
        writer: BundleWriter,
        cancel_token: CancellationToken,
    ) -> ArtifactRecord:
        """Reserve a pending record, write its bundle and seal it."""
        if not overwrite:
            self._ensure_name_free(caller.run_id, name)

        record = self._registry.create(
            run_id=caller.run_id,
            repository_id=caller.repository_id,
            name=name,
            compression_level=compression_level,
            retention_expiry=retention_expiry,
        )
        staging = self._registry.staging_path(record.id)

        if compression_level == 0:
            compression, level = zipfile.ZIP_STORED, None
        else:
            compression, level = zipfile.ZIP_DEFLATED, compression_level

        try:
            with zipfile.ZipFile(staging, "w", compression=compression, compresslevel=level) as bundle:
                files = writer(bundle, cancel_token)
            cancel_token.raise_if_cancelled()
            digest = compute_digest(staging)
            return self._registry.seal(
                record.id,
                build_manifest(files),
                staging,
                digest,
                overwrite=overwrite,
            )
        except BaseException:
            self._registry.discard(record.id)
            raise
