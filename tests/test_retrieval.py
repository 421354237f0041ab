"""Tests for verified extraction of sealed bundles."""

import zipfile
from datetime import timedelta
from pathlib import Path

import pytest

from artifact_vault.artifacts.models import (
    ArtifactRecord,
    CallerContext,
    ManifestEntry,
    UploadOptions,
    utcnow,
)
from artifact_vault.artifacts.packager import Packager
from artifact_vault.artifacts.retrieval import (
    ExtractLayout,
    PathTraversalError,
    RetrievalEngine,
    safe_join,
)
from artifact_vault.artifacts.storage import ArtifactRegistry, compute_digest
from artifact_vault.core.cancellation import CancellationToken
from artifact_vault.core.exceptions import (
    ArtifactNotFoundError,
    CorruptArtifactError,
    OperationCancelledError,
    ValidationError,
)

from conftest import write_files


@pytest.fixture
def engine(registry: ArtifactRegistry) -> RetrievalEngine:
    return RetrievalEngine(registry)


@pytest.fixture
def upload(registry: ArtifactRegistry, caller: CallerContext, temp_dir: Path):
    """Seal an artifact holding the given files."""
    packager = Packager(registry)

    def _upload(name: str, files: dict[str, str]) -> ArtifactRecord:
        root = write_files(temp_dir / "src" / name, files)
        options = UploadOptions(name=name, include_patterns=["**"])
        record, _ = packager.package(caller, options, root, utcnow() + timedelta(days=1))
        return record

    return _upload


# =============================================================================
# safe_join
# =============================================================================


class TestSafeJoin:
    """Tests for safe_join."""

    def test_relative_path(self, temp_dir: Path) -> None:
        assert safe_join(temp_dir, "a/b.txt") == (temp_dir / "a" / "b.txt").resolve()

    @pytest.mark.parametrize("relative", ["../x", "a/../../x", "/etc/passwd"])
    def test_escape_rejected(self, temp_dir: Path, relative: str) -> None:
        with pytest.raises(PathTraversalError):
            safe_join(temp_dir, relative)


# =============================================================================
# Layouts
# =============================================================================


class TestExtractLayouts:
    """Tests for the extraction layouts."""

    def test_direct(self, engine: RetrievalEngine, upload, temp_dir: Path) -> None:
        """A single artifact extracts its files under the destination."""
        record = upload("build", {"bin/app": "binary", "README": "docs"})
        dest = temp_dir / "out"

        result = engine.extract([record], dest, ExtractLayout.DIRECT)

        assert result.files_written == ["README", "bin/app"]
        assert result.artifact_ids == [record.id]
        assert (dest / "bin" / "app").read_text() == "binary"
        assert not list(dest.rglob("*.partial"))

    def test_direct_requires_one_record(self, engine: RetrievalEngine, upload, temp_dir: Path) -> None:
        """Direct extraction rejects several artifacts."""
        records = [upload("a", {"x": "1"}), upload("b", {"y": "2"})]
        with pytest.raises(ValidationError):
            engine.extract(records, temp_dir / "out", ExtractLayout.DIRECT)

    def test_merged_later_wins(self, engine: RetrievalEngine, upload, temp_dir: Path) -> None:
        """Merged extraction overwrites earlier files and warns."""
        first = upload("bin-a", {"shared.txt": "A", "only-a.txt": "a"})
        second = upload("bin-b", {"shared.txt": "B"})
        dest = temp_dir / "out"

        result = engine.extract([first, second], dest, ExtractLayout.MERGED)

        assert (dest / "shared.txt").read_text() == "B"
        assert (dest / "only-a.txt").read_text() == "a"
        assert result.warnings == ["shared.txt: bin-a overwritten by bin-b"]
        assert result.files_written == ["only-a.txt", "shared.txt"]

    def test_per_artifact(self, engine: RetrievalEngine, upload, temp_dir: Path) -> None:
        """Each artifact lands in a directory named after it."""
        first = upload("bin-a", {"shared.txt": "A"})
        second = upload("bin-b", {"shared.txt": "B"})
        dest = temp_dir / "out"

        result = engine.extract([first, second], dest, ExtractLayout.PER_ARTIFACT)

        assert result.warnings == []
        assert (dest / "bin-a" / "shared.txt").read_text() == "A"
        assert (dest / "bin-b" / "shared.txt").read_text() == "B"


# =============================================================================
# Failures
# =============================================================================


class TestExtractFailures:
    """Tests for verification, cancellation and rollback."""

    def test_digest_mismatch(
        self, engine: RetrievalEngine, registry: ArtifactRegistry, upload, temp_dir: Path
    ) -> None:
        """Tampered bundles are rejected and nothing is left behind."""
        record = upload("build", {"file.txt": "original"})
        with open(registry.blob_path(record.id), "ab") as blob:
            blob.write(b"tampered")
        dest = temp_dir / "out"

        with pytest.raises(CorruptArtifactError) as exc_info:
            engine.extract([record], dest, ExtractLayout.DIRECT)

        assert exc_info.value.expected == record.digest
        assert not dest.exists()

    def test_missing_blob(
        self, engine: RetrievalEngine, registry: ArtifactRegistry, upload, temp_dir: Path
    ) -> None:
        """A sealed record without content reports not found."""
        record = upload("build", {"file.txt": "x"})
        registry.blob_path(record.id).unlink()
        with pytest.raises(ArtifactNotFoundError):
            engine.extract([record], temp_dir / "out", ExtractLayout.DIRECT)

    def test_retired_after_resolution(
        self, engine: RetrievalEngine, registry: ArtifactRegistry, upload, temp_dir: Path
    ) -> None:
        """A record retired after it was resolved is treated as missing."""
        record = upload("build", {"file.txt": "x"})
        registry.retire(record.id)
        with pytest.raises(ArtifactNotFoundError):
            engine.extract([record], temp_dir / "out", ExtractLayout.DIRECT)

    def test_cancel_rolls_back(self, engine: RetrievalEngine, upload, temp_dir: Path) -> None:
        """Cancellation removes files the extraction created but keeps existing ones."""
        record = upload("build", {"a/b.txt": "x"})
        dest = temp_dir / "out"
        dest.mkdir()
        (dest / "keep.txt").write_text("existing")
        token = CancellationToken(operation="download")
        token.cancel()

        with pytest.raises(OperationCancelledError):
            engine.extract([record], dest, ExtractLayout.DIRECT, cancel_token=token)

        assert sorted(p.name for p in dest.iterdir()) == ["keep.txt"]

    def test_unsafe_member_path(
        self, engine: RetrievalEngine, registry: ArtifactRegistry, caller: CallerContext, temp_dir: Path
    ) -> None:
        """Bundles with escaping entries are rejected before anything escapes."""
        record = registry.create(caller.run_id, caller.repository_id, "evil", 6, utcnow() + timedelta(days=1))
        staged = registry.staging_path(record.id)
        with zipfile.ZipFile(staged, "w") as bundle:
            bundle.writestr("ok.txt", "fine")
            bundle.writestr("../escaped.txt", "bad")
        sealed = registry.seal(
            record.id,
            [ManifestEntry(relative_path="ok.txt", size_bytes=4)],
            staged,
            compute_digest(staged),
        )
        dest = temp_dir / "out"

        with pytest.raises(CorruptArtifactError):
            engine.extract([sealed], dest, ExtractLayout.DIRECT)

        assert not (temp_dir / "escaped.txt").exists()
        assert not dest.exists()

    def test_verified_blob(self, engine: RetrievalEngine, registry: ArtifactRegistry, upload) -> None:
        """verified_blob returns the bundle path after checking it."""
        record = upload("build", {"file.txt": "x"})
        assert engine.verified_blob(record) == registry.blob_path(record.id)
