"""
Artifact retention lifecycle.

The reaper retires sealed artifacts past their retention expiry, deletes
their bundles, purges expired metadata once the audit grace period has
passed and discards uploads that never sealed.
"""

import logging
import sqlite3
import threading
from datetime import datetime, timedelta
from enum import Enum

from artifact_vault.artifacts.models import ReapResult, utcnow
from artifact_vault.artifacts.storage import ArtifactRegistry
from artifact_vault.core.exceptions import ArtifactVaultError

logger = logging.getLogger(__name__)


class ReaperStatus(Enum):
    """Status of the retention reaper."""

    STOPPED = "stopped"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


class RetentionReaper:
    """
    Periodic retention enforcement against the registry.

    Retirement goes through ``ArtifactRegistry.retire`` like any other
    caller, so a reader racing the reaper sees either the sealed record or
    a missing one.
    """

    def __init__(
        self,
        registry: ArtifactRegistry,
        interval_seconds: float = 300.0,
        expired_grace: timedelta = timedelta(hours=24),
        stale_pending: timedelta = timedelta(hours=6),
    ):
        """
        Initialize the reaper.

        Args:
            registry: Registry to enforce retention on
            interval_seconds: Seconds between background passes
            expired_grace: How long expired metadata is kept for auditing
            stale_pending: Age after which unsealed uploads are discarded
        """
        self._registry = registry
        self._interval = interval_seconds
        self._expired_grace = expired_grace
        self._stale_pending = stale_pending
        self._status = ReaperStatus.STOPPED
        self._thread: threading.Thread | None = None
        self._shutdown_event = threading.Event()
        self._pass_lock = threading.Lock()
        self._last_result: ReapResult | None = None

    @property
    def status(self) -> ReaperStatus:
        """Get current reaper status."""
        return self._status

    @property
    def last_result(self) -> ReapResult | None:
        """Result of the most recent pass, if any."""
        return self._last_result

    def reap_once(self, now: datetime | None = None) -> ReapResult:
        """
        Run a single retention pass.

        Each step continues past per-record failures and collects them in
        the result.

        Args:
            now: Reference time (defaults to the current UTC time)

        Returns:
            ReapResult with counts and errors
        """
        now = now or utcnow()
        result = ReapResult()

        with self._pass_lock:
            for record in self._registry.list_expired_due(now):
                try:
                    if self._registry.retire(record.id):
                        result.expired_count += 1
                    result.reclaimed_bytes += self._registry.reclaim_blob(record.id)
                except (ArtifactVaultError, sqlite3.Error, OSError) as e:
                    result.errors.append(f"Failed to expire artifact {record.id}: {e}")

            for record in self._registry.list_purgeable(now - self._expired_grace):
                try:
                    if self._registry.purge(record.id):
                        result.purged_count += 1
                except (sqlite3.Error, OSError) as e:
                    result.errors.append(f"Failed to purge artifact {record.id}: {e}")

            for record in self._registry.list_stale_pending(now - self._stale_pending):
                try:
                    if self._registry.discard(record.id):
                        result.discarded_pending_count += 1
                except (sqlite3.Error, OSError) as e:
                    result.errors.append(f"Failed to discard pending artifact {record.id}: {e}")

        result.success = not result.errors
        self._last_result = result

        if result.expired_count or result.purged_count or result.discarded_pending_count:
            logger.info(
                f"Reaper pass: expired={result.expired_count} reclaimed={result.reclaimed_bytes}B "
                f"purged={result.purged_count} discarded_pending={result.discarded_pending_count}"
            )
        for error in result.errors:
            logger.warning(error)
        return result

    def start(self) -> bool:
        """
        Start the background reaper thread.

        Returns:
            True if the reaper is running
        """
        if self._status == ReaperStatus.RUNNING:
            return True

        self._shutdown_event.clear()
        self._thread = threading.Thread(
            target=self._reaper_loop,
            name="RetentionReaper",
            daemon=True,
        )
        self._thread.start()
        self._status = ReaperStatus.RUNNING
        logger.info(f"Retention reaper started (interval={self._interval}s)")
        return True

    def stop(self, timeout: float = 30.0) -> None:
        """Stop the background reaper thread."""
        if self._status == ReaperStatus.STOPPED:
            return

        self._status = ReaperStatus.STOPPING
        self._shutdown_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self._thread = None
        self._status = ReaperStatus.STOPPED
        logger.info("Retention reaper stopped")

    def _reaper_loop(self) -> None:
        """Main reaper loop."""
        while not self._shutdown_event.is_set():
            try:
                self.reap_once()
            except (sqlite3.Error, OSError):
                logger.exception("Retention reaper pass failed")
                self._status = ReaperStatus.ERROR
            else:
                if self._status == ReaperStatus.ERROR:
                    self._status = ReaperStatus.RUNNING

            self._shutdown_event.wait(self._interval)
