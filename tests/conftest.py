"""Pytest configuration and fixtures."""

import tempfile
from pathlib import Path
from typing import Generator

import pytest

from artifact_vault.artifacts.models import CallerContext
from artifact_vault.artifacts.service import ArtifactService
from artifact_vault.artifacts.storage import ArtifactRegistry
from artifact_vault.core.config import ServiceSettings

TEST_SECRET = "test-secret-for-capability-tokens"


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that is cleaned up after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def workspace(temp_dir: Path) -> Path:
    """Provide a job workspace with a typical build layout."""
    root = temp_dir / "workspace"
    (root / "dist").mkdir(parents=True)
    (root / "dist" / "app.bin").write_bytes(b"\x7fELF binary")
    (root / "dist" / "lib").mkdir()
    (root / "dist" / "lib" / "core.so").write_bytes(b"shared object")
    (root / "reports" / "unit").mkdir(parents=True)
    (root / "reports" / "unit" / "results.xml").write_text("<testsuite/>")
    (root / "reports" / "unit" / "scratch.tmp").write_text("temporary")
    (root / "reports" / "summary.xml").write_text("<summary/>")
    (root / "logs").mkdir()
    (root / "logs" / "build.log").write_text("build ok\n")
    (root / ".cache").mkdir()
    (root / ".cache" / "state").write_text("cached")
    (root / ".env").write_text("SECRET=1")
    return root


@pytest.fixture
def settings(temp_dir: Path) -> ServiceSettings:
    """Provide settings rooted in a temporary data directory."""
    return ServiceSettings(
        data_dir=temp_dir / "data",
        token_secret=TEST_SECRET,
        max_artifacts_per_run=20,
        reaper_enabled=False,
    )


@pytest.fixture
def registry(settings: ServiceSettings) -> Generator[ArtifactRegistry, None, None]:
    """Provide a registry in the temporary data directory."""
    reg = ArtifactRegistry(
        settings.registry_path,
        settings.blobs_dir,
        max_artifacts_per_run=settings.max_artifacts_per_run,
    )
    yield reg
    reg.close()


@pytest.fixture
def service(settings: ServiceSettings) -> Generator[ArtifactService, None, None]:
    """Provide an artifact service in the temporary data directory."""
    svc = ArtifactService(settings)
    yield svc
    svc.close()


@pytest.fixture
def caller() -> CallerContext:
    """Identity of a job in run 100 of repository octo/app."""
    return CallerContext(run_id=100, repository_id="octo/app")


def write_files(root: Path, files: dict[str, str]) -> Path:
    """Create text files under ``root`` from a relative-path mapping."""
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return root
