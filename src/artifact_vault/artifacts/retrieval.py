"""
Artifact retrieval and merge engine.

Verifies sealed bundles and materializes them into a destination
directory. Every file is written to a temporary sibling and renamed into
place, so an interrupted extraction never leaves a truncated file under
its final name.
"""

import logging
import os
import secrets
import zipfile
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum
from pathlib import Path

from artifact_vault.artifacts.models import ArtifactRecord, DownloadResult
from artifact_vault.artifacts.storage import ArtifactRegistry, digest_stream
from artifact_vault.core.cancellation import CancellationToken
from artifact_vault.core.exceptions import (
    ArtifactNotFoundError,
    CorruptArtifactError,
    ValidationError,
)

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
PARTIAL_SUFFIX = ".partial"


class ExtractLayout(str, Enum):
    """How resolved artifacts are laid out under the destination."""

    DIRECT = "direct"
    MERGED = "merged"
    PER_ARTIFACT = "per_artifact"


class PathTraversalError(ValueError):
    """Raised when a path escapes the intended base directory."""


def safe_join(base: Path, relative: str) -> Path:
    """
    Join ``relative`` to ``base`` while preventing path traversal.

    The result must resolve within ``base``; absolute paths or ``..``
    segments that would escape it raise ``PathTraversalError``.
    """
    base_resolved = base.resolve()
    rel_path = Path(relative)
    if rel_path.is_absolute() or relative.startswith(("/", "\\")):
        raise PathTraversalError("absolute paths not allowed")

    candidate = (base_resolved / rel_path).resolve()
    if candidate == base_resolved or base_resolved in candidate.parents:
        return candidate

    raise PathTraversalError("path traversal detected")


class RetrievalEngine:
    """Extracts verified bundles into destination directories."""

    def __init__(self, registry: ArtifactRegistry):
        self._registry = registry

    def _ensure_sealed(self, record: ArtifactRecord) -> None:
        """Treat a record retired since resolution as missing."""
        current = self._registry.lookup_by_id(record.id)
        if not current.is_sealed:
            raise ArtifactNotFoundError(
                f"Artifact '{record.name}' is no longer available",
                artifact_id=record.id,
                run_id=record.run_id,
                name=record.name,
            )

    @contextmanager
    def open_bundle(self, record: ArtifactRecord) -> Iterator[zipfile.ZipFile]:
        """
        Open a sealed bundle after verifying its digest.

        The bundle is hashed and read through one file handle, so the
        content checked is the content extracted.

        Raises:
            ArtifactNotFoundError: If the artifact was retired or its blob is gone
            CorruptArtifactError: If the digest does not match or the zip is unreadable
        """
        self._ensure_sealed(record)
        try:
            handle = open(self._registry.blob_path(record.id), "rb")
        except FileNotFoundError as e:
            raise ArtifactNotFoundError(
                f"Artifact '{record.name}' content is no longer available",
                artifact_id=record.id,
                run_id=record.run_id,
                name=record.name,
            ) from e

        with handle:
            actual = digest_stream(handle)
            if actual != record.digest:
                logger.error(f"Digest mismatch for artifact id={record.id}: expected {record.digest}, got {actual}")
                raise CorruptArtifactError(
                    f"Artifact '{record.name}' failed digest verification",
                    artifact_id=record.id,
                    name=record.name,
                    expected=record.digest,
                    actual=actual,
                )
            handle.seek(0)
            try:
                bundle = zipfile.ZipFile(handle)
            except zipfile.BadZipFile as e:
                raise CorruptArtifactError(
                    f"Artifact '{record.name}' is not a readable bundle: {e}",
                    artifact_id=record.id,
                    name=record.name,
                ) from e
            with bundle:
                yield bundle

    def verified_blob(self, record: ArtifactRecord) -> Path:
        """Return the blob path of a record after verifying its digest."""
        with self.open_bundle(record):
            pass
        return self._registry.blob_path(record.id)

    def extract(
        self,
        records: list[ArtifactRecord],
        destination: Path,
        layout: ExtractLayout,
        cancel_token: CancellationToken | None = None,
    ) -> DownloadResult:
        """
        Extract resolved artifacts into a destination directory.

        Args:
            records: Sealed records in resolution order
            destination: Directory to extract into (created if missing)
            layout: DIRECT, MERGED or PER_ARTIFACT
            cancel_token: Optional cancellation flag

        Returns:
            DownloadResult with files written and merge warnings

        Raises:
            ArtifactNotFoundError: If an artifact was retired after resolution
            CorruptArtifactError: If a bundle fails verification or holds unsafe paths
            OperationCancelledError: If cancelled; files created so far are removed
        """
        if layout == ExtractLayout.DIRECT and len(records) != 1:
            raise ValidationError(
                f"Direct extraction takes exactly one artifact, got {len(records)}",
                field="layout",
            )

        cancel_token = cancel_token or CancellationToken(operation="download")
        destination = Path(destination)
        created_files: list[Path] = []
        created_dirs: list[Path] = []
        written: dict[str, str] = {}
        warnings: list[str] = []

        try:
            _make_dirs(destination, created_dirs)
            for record in records:
                with self.open_bundle(record) as bundle:
                    for info in bundle.infolist():
                        cancel_token.raise_if_cancelled()
                        relative = info.filename.rstrip("/")
                        if layout == ExtractLayout.PER_ARTIFACT:
                            relative = f"{record.name}/{relative}"
                        try:
                            target = safe_join(destination, relative)
                        except PathTraversalError as e:
                            raise CorruptArtifactError(
                                f"Artifact '{record.name}' contains an unsafe path: {info.filename}",
                                artifact_id=record.id,
                                name=record.name,
                            ) from e

                        if info.is_dir():
                            _make_dirs(target, created_dirs)
                            continue

                        if relative in written:
                            warnings.append(f"{relative}: {written[relative]} overwritten by {record.name}")

                        existed = target.exists()
                        _make_dirs(target.parent, created_dirs)
                        try:
                            self._write_member(bundle, info, target, cancel_token)
                        except zipfile.BadZipFile as e:
                            raise CorruptArtifactError(
                                f"Artifact '{record.name}' entry {info.filename} is unreadable: {e}",
                                artifact_id=record.id,
                                name=record.name,
                            ) from e
                        if not existed:
                            created_files.append(target)
                        written[relative] = record.name
        except BaseException:
            _rollback(created_files, created_dirs)
            raise

        for warning in warnings:
            logger.warning(f"Merge collision in {destination}: {warning}")
        logger.info(
            f"Extracted {len(records)} artifact(s) into {destination} "
            f"({len(written)} files, layout={layout.value})"
        )
        return DownloadResult(
            destination=destination,
            files_written=sorted(written),
            artifact_ids=[record.id for record in records],
            warnings=warnings,
        )

    def _write_member(
        self,
        bundle: zipfile.ZipFile,
        info: zipfile.ZipInfo,
        target: Path,
        cancel_token: CancellationToken,
    ) -> None:
        """Stream one entry to a temp sibling, then rename it into place."""
        temp = target.parent / f"{target.name}.{secrets.token_hex(6)}{PARTIAL_SUFFIX}"
        try:
            with bundle.open(info) as source, open(temp, "wb") as dest:
                while True:
                    cancel_token.raise_if_cancelled()
                    chunk = source.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    dest.write(chunk)
            os.replace(temp, target)
        except BaseException:
            temp.unlink(missing_ok=True)
            raise


def _make_dirs(path: Path, created: list[Path]) -> None:
    """Create a directory and its parents, recording the ones that were missing."""
    missing = []
    current = path
    while not current.exists():
        missing.append(current)
        if current.parent == current:
            break
        current = current.parent
    path.mkdir(parents=True, exist_ok=True)
    created.extend(reversed(missing))


def _rollback(files: list[Path], directories: list[Path]) -> None:
    """Remove files and now-empty directories created by a failed extraction."""
    for path in reversed(files):
        path.unlink(missing_ok=True)
    for directory in reversed(directories):
        if directory.is_dir() and not any(directory.iterdir()):
            directory.rmdir()
    if files:
        logger.info(f"Rolled back {len(files)} partially extracted file(s)")
