"""Tests for the retention reaper."""

from datetime import timedelta

import pytest

from artifact_vault.artifacts.lifecycle import ReaperStatus, RetentionReaper
from artifact_vault.artifacts.models import ArtifactRecord, ArtifactState, ManifestEntry, utcnow
from artifact_vault.artifacts.storage import ArtifactRegistry, compute_digest
from artifact_vault.core.exceptions import ArtifactNotFoundError


def _sealed(registry: ArtifactRegistry, name: str, days: float = 1) -> ArtifactRecord:
    record = registry.create(1, "octo/app", name, 6, utcnow() + timedelta(days=days))
    staged = registry.staging_path(record.id)
    staged.write_bytes(b"0123456789")
    return registry.seal(
        record.id,
        [ManifestEntry(relative_path="f", size_bytes=10)],
        staged,
        compute_digest(staged),
    )


@pytest.fixture
def reaper(registry: ArtifactRegistry) -> RetentionReaper:
    return RetentionReaper(registry, interval_seconds=3600)


class TestReapOnce:
    """Tests for a single reaper pass."""

    def test_nothing_due(self, reaper: RetentionReaper, registry: ArtifactRegistry) -> None:
        """Fresh artifacts are untouched."""
        record = _sealed(registry, "fresh")
        result = reaper.reap_once()

        assert result.success
        assert result.expired_count == 0
        assert registry.lookup_by_id(record.id).state == ArtifactState.SEALED

    def test_expires_after_retention(self, reaper: RetentionReaper, registry: ArtifactRegistry) -> None:
        """Artifacts past retention are retired and their content deleted."""
        record = _sealed(registry, "short", days=1)
        _sealed(registry, "long", days=30)

        result = reaper.reap_once(utcnow() + timedelta(days=2))

        assert result.expired_count == 1
        assert result.reclaimed_bytes == 10
        assert registry.lookup_by_id(record.id).state == ArtifactState.EXPIRED
        assert not registry.blob_path(record.id).exists()
        with pytest.raises(ArtifactNotFoundError):
            registry.lookup_by_name(1, "short")
        assert registry.lookup_by_name(1, "long").is_sealed
        assert reaper.last_result == result

    def test_purges_after_grace(self, reaper: RetentionReaper, registry: ArtifactRegistry) -> None:
        """Expired metadata is kept for the grace period, then removed."""
        record = _sealed(registry, "old")
        registry.retire(record.id)

        assert reaper.reap_once(utcnow() + timedelta(hours=1)).purged_count == 0
        assert reaper.reap_once(utcnow() + timedelta(hours=25)).purged_count == 1
        with pytest.raises(ArtifactNotFoundError):
            registry.lookup_by_id(record.id)

    def test_discards_stale_pending(self, reaper: RetentionReaper, registry: ArtifactRegistry) -> None:
        """Uploads that never sealed are discarded once stale."""
        pending = registry.create(1, "octo/app", "abandoned", 6, utcnow() + timedelta(days=1))
        registry.staging_path(pending.id).write_bytes(b"partial")

        assert reaper.reap_once().discarded_pending_count == 0
        result = reaper.reap_once(utcnow() + timedelta(hours=7))

        assert result.discarded_pending_count == 1
        assert not registry.staging_path(pending.id).exists()
        assert registry.count_live(1) == 0


class TestReaperThread:
    """Tests for the background reaper thread."""

    def test_start_stop(self, reaper: RetentionReaper) -> None:
        """The reaper reports its status across start and stop."""
        assert reaper.status == ReaperStatus.STOPPED
        assert reaper.start() is True
        assert reaper.status == ReaperStatus.RUNNING
        assert reaper.start() is True

        reaper.stop(timeout=5)
        assert reaper.status == ReaperStatus.STOPPED

    def test_stop_when_stopped(self, reaper: RetentionReaper) -> None:
        """Stopping an idle reaper is a no-op."""
        reaper.stop()
        assert reaper.status == ReaperStatus.STOPPED
