"""Tests for artifact packaging and bundle merging."""

import zipfile
from datetime import timedelta
from pathlib import Path

import pytest

from artifact_vault.artifacts.models import (
    ArtifactState,
    CallerContext,
    IfNoFilesFound,
    UploadOptions,
    utcnow,
)
from artifact_vault.artifacts.packager import Packager, build_manifest
from artifact_vault.artifacts.retrieval import RetrievalEngine
from artifact_vault.artifacts.storage import ArtifactRegistry, compute_digest
from artifact_vault.core.cancellation import CancellationToken
from artifact_vault.core.exceptions import (
    EmptyMatchError,
    NameCollisionError,
    OperationCancelledError,
)

from conftest import write_files


@pytest.fixture
def packager(registry: ArtifactRegistry) -> Packager:
    return Packager(registry)


def _expiry():
    return utcnow() + timedelta(days=1)


def _members(registry: ArtifactRegistry, artifact_id: int) -> dict[str, bytes]:
    with zipfile.ZipFile(registry.blob_path(artifact_id)) as bundle:
        return {name: bundle.read(name) for name in bundle.namelist()}


# =============================================================================
# Manifest
# =============================================================================


class TestBuildManifest:
    """Tests for build_manifest."""

    def test_adds_parent_directories(self) -> None:
        """Every ancestor directory appears once as a directory entry."""
        manifest = build_manifest([("a/b/c.txt", 3), ("a/d.txt", 1)])
        paths = [(e.relative_path, e.is_directory) for e in manifest]
        assert paths == [
            ("a", True),
            ("a/b", True),
            ("a/b/c.txt", False),
            ("a/d.txt", False),
        ]

    def test_empty(self) -> None:
        """No files yields an empty manifest."""
        assert build_manifest([]) == []


# =============================================================================
# Packaging
# =============================================================================


class TestPackage:
    """Tests for Packager.package."""

    def test_package_directory(
        self, packager: Packager, registry: ArtifactRegistry, caller: CallerContext, workspace: Path
    ) -> None:
        """A directory pattern packages its files under their relative paths."""
        options = UploadOptions(name="build", include_patterns=["dist"])
        record, warnings = packager.package(caller, options, workspace, _expiry())

        assert warnings == []
        assert record.state == ArtifactState.SEALED
        assert record.file_count == 2
        assert [e.relative_path for e in record.manifest] == [
            "dist",
            "dist/app.bin",
            "dist/lib",
            "dist/lib/core.so",
        ]
        assert record.digest == compute_digest(registry.blob_path(record.id))
        assert _members(registry, record.id) == {
            "dist/app.bin": b"\x7fELF binary",
            "dist/lib/core.so": b"shared object",
        }

    def test_compression_level_zero_stores(
        self, packager: Packager, registry: ArtifactRegistry, caller: CallerContext, workspace: Path
    ) -> None:
        """Level 0 writes entries without compression."""
        options = UploadOptions(name="raw", include_patterns=["logs/*.log"], compression_level=0)
        record, _ = packager.package(caller, options, workspace, _expiry())

        with zipfile.ZipFile(registry.blob_path(record.id)) as bundle:
            assert [i.compress_type for i in bundle.infolist()] == [zipfile.ZIP_STORED]

    def test_error_policy_creates_nothing(
        self, packager: Packager, registry: ArtifactRegistry, caller: CallerContext, workspace: Path
    ) -> None:
        """With the error policy an empty match leaves no record behind."""
        options = UploadOptions(
            name="missing",
            include_patterns=["nothing/**"],
            if_no_files_found=IfNoFilesFound.ERROR,
        )
        with pytest.raises(EmptyMatchError) as exc_info:
            packager.package(caller, options, workspace, _expiry())

        assert exc_info.value.include_patterns == ["nothing/**"]
        assert registry.count_live(caller.run_id) == 0

    def test_warn_policy_seals_empty_artifact(
        self, packager: Packager, caller: CallerContext, workspace: Path
    ) -> None:
        """With the warn policy an empty artifact is sealed and a warning returned."""
        options = UploadOptions(name="empty", include_patterns=["nothing/**"])
        record, warnings = packager.package(caller, options, workspace, _expiry())

        assert record.state == ArtifactState.SEALED
        assert record.manifest == []
        assert len(warnings) == 1
        assert warnings[0].startswith("No files were found with the provided path patterns")

    def test_ignore_policy_is_silent(
        self, packager: Packager, caller: CallerContext, workspace: Path
    ) -> None:
        """With the ignore policy no warning is reported."""
        options = UploadOptions(
            name="empty",
            include_patterns=["nothing/**"],
            if_no_files_found=IfNoFilesFound.IGNORE,
        )
        record, warnings = packager.package(caller, options, workspace, _expiry())
        assert warnings == []
        assert record.file_count == 0

    def test_collision_fails_before_reserving(
        self, packager: Packager, registry: ArtifactRegistry, caller: CallerContext, workspace: Path
    ) -> None:
        """A taken name fails without creating a pending record."""
        options = UploadOptions(name="build", include_patterns=["dist"])
        packager.package(caller, options, workspace, _expiry())

        with pytest.raises(NameCollisionError):
            packager.package(caller, options, workspace, _expiry())
        assert registry.count_live(caller.run_id) == 1

    def test_overwrite_replaces_content(
        self, packager: Packager, registry: ArtifactRegistry, caller: CallerContext, workspace: Path
    ) -> None:
        """Overwrite seals the new content and retires the old artifact."""
        first, _ = packager.package(
            caller, UploadOptions(name="out", include_patterns=["logs"]), workspace, _expiry()
        )
        second, _ = packager.package(
            caller,
            UploadOptions(name="out", include_patterns=["dist/app.bin"], overwrite=True),
            workspace,
            _expiry(),
        )

        assert registry.lookup_by_name(caller.run_id, "out").id == second.id
        assert registry.lookup_by_id(first.id).state == ArtifactState.EXPIRED
        assert list(_members(registry, second.id)) == ["dist/app.bin"]

    def test_cancel_discards_pending_record(
        self, packager: Packager, registry: ArtifactRegistry, caller: CallerContext, workspace: Path
    ) -> None:
        """Cancellation removes the pending record and its staging file."""
        token = CancellationToken(operation="upload")
        token.cancel()
        options = UploadOptions(name="build", include_patterns=["dist"])

        with pytest.raises(OperationCancelledError):
            packager.package(caller, options, workspace, _expiry(), cancel_token=token)

        assert registry.count_live(caller.run_id) == 0
        assert list(registry.list_stale_pending(utcnow() + timedelta(days=1))) == []
        assert not any(p.name.endswith(".staging") for p in registry.blob_path(1).parent.iterdir())


# =============================================================================
# Merging
# =============================================================================


class TestMergeBundles:
    """Tests for Packager.merge_bundles."""

    def _upload(self, packager: Packager, caller: CallerContext, root: Path, name: str, files: dict[str, str]):
        write_files(root / name, files)
        options = UploadOptions(name=name, include_patterns=["**"])
        record, _ = packager.package(caller, options, root / name, _expiry())
        return record

    def test_later_source_wins(
        self,
        packager: Packager,
        registry: ArtifactRegistry,
        caller: CallerContext,
        temp_dir: Path,
    ) -> None:
        """Identical paths take the later source and report a warning."""
        first = self._upload(packager, caller, temp_dir, "bin-a", {"shared.txt": "A", "a.txt": "a"})
        second = self._upload(packager, caller, temp_dir, "bin-b", {"shared.txt": "B"})

        merged, warnings = packager.merge_bundles(
            caller,
            "bin-all",
            [first, second],
            RetrievalEngine(registry).open_bundle,
            compression_level=6,
            retention_expiry=_expiry(),
        )

        assert warnings == ["shared.txt: bin-a overwritten by bin-b"]
        assert _members(registry, merged.id) == {"a.txt": b"a", "shared.txt": b"B"}
        assert merged.file_count == 2

    def test_separate_directories(
        self,
        packager: Packager,
        registry: ArtifactRegistry,
        caller: CallerContext,
        temp_dir: Path,
    ) -> None:
        """Separate directories keep every source without collisions."""
        first = self._upload(packager, caller, temp_dir, "bin-a", {"shared.txt": "A"})
        second = self._upload(packager, caller, temp_dir, "bin-b", {"shared.txt": "B"})

        merged, warnings = packager.merge_bundles(
            caller,
            "bin-all",
            [first, second],
            RetrievalEngine(registry).open_bundle,
            compression_level=6,
            retention_expiry=_expiry(),
            separate_directories=True,
        )

        assert warnings == []
        assert _members(registry, merged.id) == {
            "bin-a/shared.txt": b"A",
            "bin-b/shared.txt": b"B",
        }
