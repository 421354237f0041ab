"""
Artifact registry backend.

Tracks artifact metadata in a SQLite index and sealed bundles on disk,
enforces lifecycle transitions, per-run quotas and the one-sealed-artifact-
per-name invariant.
"""

import hashlib
import json
import logging
import os
import sqlite3
import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, BinaryIO

from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from artifact_vault.artifacts.globbing import match_name
from artifact_vault.artifacts.models import (
    ArtifactRecord,
    ArtifactState,
    ManifestEntry,
    utcnow,
)
from artifact_vault.core.exceptions import (
    ArtifactNotFoundError,
    InvalidStateError,
    NameCollisionError,
    QuotaExceededError,
)

logger = logging.getLogger(__name__)

DIGEST_ALGORITHM = "sha256"
_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def to_db_time(value: datetime) -> str:
    """Serialize a datetime as a sortable UTC string."""
    return value.astimezone(timezone.utc).strftime(_TIMESTAMP_FORMAT)


def from_db_time(value: str | None) -> datetime | None:
    """Parse a timestamp written by ``to_db_time``."""
    if value is None:
        return None
    return datetime.strptime(value, _TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def digest_stream(stream: BinaryIO, chunk_size: int = 1024 * 1024) -> str:
    """Compute the ``sha256:<hex>`` digest of a binary stream from its current position."""
    hasher = hashlib.sha256()
    for chunk in iter(lambda: stream.read(chunk_size), b""):
        hasher.update(chunk)
    return f"{DIGEST_ALGORITHM}:{hasher.hexdigest()}"


def compute_digest(file_path: Path) -> str:
    """Compute the ``sha256:<hex>`` digest of a file."""
    with open(file_path, "rb") as f:
        return digest_stream(f)


def _is_locked_error(error: BaseException) -> bool:
    return isinstance(error, sqlite3.OperationalError) and "locked" in str(error).lower()


class KeyedLock:
    """
    One mutex per key, created on demand and dropped when unused.

    Serializes work on a single ``(run_id, name)`` key without a global
    lock across unrelated keys.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, list[Any]] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1

        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class ArtifactRegistry:
    """
    Artifact registry backend.

    Manages the data directory structure:
    - {data_dir}/registry.db (SQLite index, WAL mode)
    - {data_dir}/blobs/{artifact_id}.zip (sealed bundles)
    - {data_dir}/blobs/{artifact_id}.zip.staging (bundles being written)

    Writes run in ``BEGIN IMMEDIATE`` transactions on thread-local
    connections; create/seal/retire/discard for one ``(run_id, name)`` key
    additionally hold that key's lock.
    """

    def __init__(
        self,
        registry_path: Path,
        blobs_dir: Path,
        max_artifacts_per_run: int = 500,
    ):
        """
        Initialize the registry.

        Args:
            registry_path: Path to the SQLite index
            blobs_dir: Directory for sealed bundles
            max_artifacts_per_run: Hard cap on live artifacts per run
        """
        self._registry_path = registry_path
        self._blobs_dir = blobs_dir
        self._max_artifacts_per_run = max_artifacts_per_run
        self._local = threading.local()
        self._key_locks = KeyedLock()
        self._connections: list[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()

        self._registry_path.parent.mkdir(parents=True, exist_ok=True)
        self._blobs_dir.mkdir(parents=True, exist_ok=True)

        self._init_registry()

    @property
    def max_artifacts_per_run(self) -> int:
        """Live artifact cap per run."""
        return self._max_artifacts_per_run

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local SQLite connection."""
        if not hasattr(self._local, "conn") or self._local.conn is None:
            conn = sqlite3.connect(
                str(self._registry_path),
                timeout=30.0,
                isolation_level=None,
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            self._local.conn = conn
            with self._connections_lock:
                self._connections.append(conn)
        return self._local.conn

    def _init_registry(self) -> None:
        """Initialize the SQLite registry schema."""
        conn = self._get_connection()
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS artifacts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                run_id INTEGER NOT NULL,
                repository_id TEXT NOT NULL,
                name TEXT NOT NULL,
                state TEXT NOT NULL,
                compression_level INTEGER NOT NULL,
                manifest TEXT NOT NULL DEFAULT '[]',
                digest TEXT,
                size_bytes INTEGER NOT NULL DEFAULT 0,
                retention_expiry TEXT NOT NULL,
                created_at TEXT NOT NULL,
                sealed_at TEXT,
                expired_at TEXT
            )
            """
        )

        indexes = [
            ("idx_run_name", "run_id, name"),
            ("idx_state", "state"),
            ("idx_retention_expiry", "retention_expiry"),
            ("idx_created_at", "created_at"),
        ]
        for idx_name, cols in indexes:
            conn.execute(f"CREATE INDEX IF NOT EXISTS {idx_name} ON artifacts({cols})")

        # Backstop for the uniqueness invariant across processes
        conn.execute(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS idx_sealed_name
            ON artifacts(run_id, name) WHERE state = 'sealed'
            """
        )

    @retry(
        stop=stop_after_attempt(5),
        wait=wait_exponential(multiplier=0.05, min=0.05, max=2),
        retry=retry_if_exception(_is_locked_error),
        reraise=True,
    )
    def _begin(self, conn: sqlite3.Connection) -> None:
        """Start a write transaction, retrying while the database is locked."""
        conn.execute("BEGIN IMMEDIATE")

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block inside a write transaction."""
        conn = self._get_connection()
        self._begin(conn)
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")

    def _row_to_record(self, row: sqlite3.Row) -> ArtifactRecord:
        """Convert database row to ArtifactRecord."""
        return ArtifactRecord(
            id=row["id"],
            name=row["name"],
            run_id=row["run_id"],
            repository_id=row["repository_id"],
            state=ArtifactState(row["state"]),
            manifest=[ManifestEntry(**entry) for entry in json.loads(row["manifest"])],
            compression_level=row["compression_level"],
            digest=row["digest"],
            size_bytes=row["size_bytes"],
            retention_expiry=from_db_time(row["retention_expiry"]),
            created_at=from_db_time(row["created_at"]),
            sealed_at=from_db_time(row["sealed_at"]),
            expired_at=from_db_time(row["expired_at"]),
        )

    def _fetch(self, conn: sqlite3.Connection, artifact_id: int) -> sqlite3.Row | None:
        return conn.execute("SELECT * FROM artifacts WHERE id = ?", (artifact_id,)).fetchone()

    def blob_path(self, artifact_id: int) -> Path:
        """Location of a sealed bundle."""
        return self._blobs_dir / f"{artifact_id}.zip"

    def staging_path(self, artifact_id: int) -> Path:
        """Location a pending bundle is written to before sealing."""
        return self._blobs_dir / f"{artifact_id}.zip.staging"

    # Lifecycle

    def create(
        self,
        run_id: int,
        repository_id: str,
        name: str,
        compression_level: int,
        retention_expiry: datetime,
    ) -> ArtifactRecord:
        """
        Reserve an ID and insert a pending artifact.

        Args:
            run_id: Owning run
            repository_id: Owning repository
            name: Artifact name
            compression_level: Deflate level for the bundle
            retention_expiry: Fixed expiry timestamp

        Returns:
            The pending ArtifactRecord

        Raises:
            QuotaExceededError: If the run already holds the maximum live artifacts
        """
        now = utcnow()
        with self._key_locks.hold((run_id, name)):
            with self._transaction() as conn:
                live = conn.execute(
                    "SELECT COUNT(*) AS count FROM artifacts WHERE run_id = ? AND state != ?",
                    (run_id, ArtifactState.EXPIRED.value),
                ).fetchone()["count"]
                if live >= self._max_artifacts_per_run:
                    raise QuotaExceededError(
                        f"Run {run_id} already holds {live} artifacts "
                        f"(limit {self._max_artifacts_per_run})",
                        run_id=run_id,
                        limit=self._max_artifacts_per_run,
                    )

                cursor = conn.execute(
                    """
                    INSERT INTO artifacts (
                        run_id, repository_id, name, state, compression_level,
                        retention_expiry, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        run_id,
                        repository_id,
                        name,
                        ArtifactState.PENDING.value,
                        compression_level,
                        to_db_time(retention_expiry),
                        to_db_time(now),
                    ),
                )
                row = self._fetch(conn, cursor.lastrowid)

        logger.debug(f"Created pending artifact id={row['id']} run={run_id} name={name}")
        return self._row_to_record(row)

    def seal(
        self,
        artifact_id: int,
        manifest: list[ManifestEntry],
        staged_blob: Path,
        digest: str,
        overwrite: bool = False,
    ) -> ArtifactRecord:
        """
        Transition a pending artifact to sealed.

        The staged bundle is moved to its final location and the record
        sealed inside one transaction. With ``overwrite`` an existing sealed
        artifact of the same name is retired in that same transaction.

        Args:
            artifact_id: ID of the pending artifact
            manifest: Manifest entries of the bundle
            staged_blob: Path of the finished bundle
            digest: Digest of the finished bundle
            overwrite: Retire an existing sealed artifact with the same name

        Returns:
            The sealed ArtifactRecord

        Raises:
            ArtifactNotFoundError: If the artifact does not exist
            InvalidStateError: If the artifact is not pending
            NameCollisionError: If the name is taken and overwrite is False
        """
        initial = self._fetch(self._get_connection(), artifact_id)
        if initial is None:
            raise ArtifactNotFoundError(
                f"Artifact {artifact_id} not found",
                artifact_id=artifact_id,
            )

        run_id, name = initial["run_id"], initial["name"]
        final_blob = self.blob_path(artifact_id)
        replaced_id = None
        now = utcnow()

        with self._key_locks.hold((run_id, name)):
            try:
                with self._transaction() as conn:
                    row = self._fetch(conn, artifact_id)
                    if row is None:
                        raise ArtifactNotFoundError(
                            f"Artifact {artifact_id} not found",
                            artifact_id=artifact_id,
                        )
                    if row["state"] != ArtifactState.PENDING.value:
                        raise InvalidStateError(
                            f"Artifact {artifact_id} cannot be sealed from state {row['state']}",
                            artifact_id=artifact_id,
                            expected=ArtifactState.PENDING.value,
                            actual=row["state"],
                            operation="seal",
                        )

                    existing = conn.execute(
                        "SELECT id FROM artifacts WHERE run_id = ? AND name = ? AND state = ?",
                        (run_id, name, ArtifactState.SEALED.value),
                    ).fetchone()
                    if existing is not None and not overwrite:
                        raise NameCollisionError(
                            f"Artifact '{name}' already exists in run {run_id}",
                            run_id=run_id,
                            name=name,
                            existing_id=existing["id"],
                        )

                    size_bytes = staged_blob.stat().st_size
                    os.replace(staged_blob, final_blob)

                    if existing is not None:
                        replaced_id = existing["id"]
                        conn.execute(
                            "UPDATE artifacts SET state = ?, expired_at = ? WHERE id = ?",
                            (ArtifactState.EXPIRED.value, to_db_time(now), replaced_id),
                        )

                    conn.execute(
                        """
                        UPDATE artifacts SET
                            state = ?, manifest = ?, digest = ?, size_bytes = ?, sealed_at = ?
                        WHERE id = ?
                        """,
                        (
                            ArtifactState.SEALED.value,
                            json.dumps([entry.model_dump() for entry in manifest]),
                            digest,
                            size_bytes,
                            to_db_time(now),
                            artifact_id,
                        ),
                    )
                    row = self._fetch(conn, artifact_id)
            except sqlite3.IntegrityError as e:
                final_blob.unlink(missing_ok=True)
                raise NameCollisionError(
                    f"Artifact '{name}' already exists in run {run_id}",
                    run_id=run_id,
                    name=name,
                ) from e
            except sqlite3.Error:
                final_blob.unlink(missing_ok=True)
                raise

        if replaced_id is not None:
            logger.info(f"Artifact '{name}' in run {run_id}: id={replaced_id} replaced by id={artifact_id}")
        logger.info(f"Sealed artifact id={artifact_id} run={run_id} name={name} digest={digest}")
        return self._row_to_record(row)

    def retire(self, artifact_id: int) -> bool:
        """
        Transition an artifact to expired.

        Idempotent: retiring an expired or missing artifact is a no-op.

        Args:
            artifact_id: ID of artifact to retire

        Returns:
            True if the state changed
        """
        row = self._fetch(self._get_connection(), artifact_id)
        if row is None:
            return False

        with self._key_locks.hold((row["run_id"], row["name"])):
            with self._transaction() as conn:
                cursor = conn.execute(
                    "UPDATE artifacts SET state = ?, expired_at = ? WHERE id = ? AND state != ?",
                    (
                        ArtifactState.EXPIRED.value,
                        to_db_time(utcnow()),
                        artifact_id,
                        ArtifactState.EXPIRED.value,
                    ),
                )
                changed = cursor.rowcount == 1

        if changed:
            logger.info(f"Retired artifact id={artifact_id} run={row['run_id']} name={row['name']}")
        return changed

    def discard(self, artifact_id: int) -> bool:
        """
        Delete a pending artifact and any partial bundle.

        Sealed and expired artifacts are left untouched.

        Returns:
            True if a pending record was removed
        """
        row = self._fetch(self._get_connection(), artifact_id)
        removed = False
        if row is not None:
            with self._key_locks.hold((row["run_id"], row["name"])):
                with self._transaction() as conn:
                    cursor = conn.execute(
                        "DELETE FROM artifacts WHERE id = ? AND state = ?",
                        (artifact_id, ArtifactState.PENDING.value),
                    )
                    removed = cursor.rowcount == 1

        self.staging_path(artifact_id).unlink(missing_ok=True)
        if removed:
            self.blob_path(artifact_id).unlink(missing_ok=True)
            logger.debug(f"Discarded pending artifact id={artifact_id}")
        return removed

    def reclaim_blob(self, artifact_id: int) -> int:
        """
        Delete the bundle of an expired artifact.

        Returns:
            Bytes freed (0 if nothing was deleted)

        Raises:
            InvalidStateError: If the artifact is not expired
        """
        row = self._fetch(self._get_connection(), artifact_id)
        if row is None:
            return 0
        if row["state"] != ArtifactState.EXPIRED.value:
            raise InvalidStateError(
                f"Artifact {artifact_id} content can only be reclaimed once expired",
                artifact_id=artifact_id,
                expected=ArtifactState.EXPIRED.value,
                actual=row["state"],
                operation="reclaim",
            )

        path = self.blob_path(artifact_id)
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            return 0
        path.unlink(missing_ok=True)
        return size

    def purge(self, artifact_id: int) -> bool:
        """
        Remove an expired artifact's metadata and bundle.

        Returns:
            True if a record was removed
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM artifacts WHERE id = ? AND state = ?",
                (artifact_id, ArtifactState.EXPIRED.value),
            )
            removed = cursor.rowcount == 1
        if removed:
            self.blob_path(artifact_id).unlink(missing_ok=True)
            logger.debug(f"Purged artifact id={artifact_id}")
        return removed

    # Lookups

    def lookup_by_name(self, run_id: int, name: str) -> ArtifactRecord:
        """
        Get the sealed artifact with a name in a run.

        Raises:
            ArtifactNotFoundError: If no sealed artifact holds the name
        """
        row = self._get_connection().execute(
            "SELECT * FROM artifacts WHERE run_id = ? AND name = ? AND state = ?",
            (run_id, name, ArtifactState.SEALED.value),
        ).fetchone()
        if row is None:
            raise ArtifactNotFoundError(
                f"Artifact '{name}' not found in run {run_id}",
                run_id=run_id,
                name=name,
            )
        return self._row_to_record(row)

    def lookup_by_id(self, artifact_id: int) -> ArtifactRecord:
        """
        Get an artifact by ID in any state.

        Authorization is the caller's responsibility.

        Raises:
            ArtifactNotFoundError: If no record exists
        """
        row = self._fetch(self._get_connection(), artifact_id)
        if row is None:
            raise ArtifactNotFoundError(
                f"Artifact {artifact_id} not found",
                artifact_id=artifact_id,
            )
        return self._row_to_record(row)

    def scan(self, run_id: int, pattern: str) -> Iterator[ArtifactRecord]:
        """
        Iterate sealed artifacts of a run whose names match a glob.

        Ordered by creation time, then ID. The matching rows are read in a
        single query so the sequence reflects one consistent snapshot.
        """
        rows = self._get_connection().execute(
            """
            SELECT * FROM artifacts
            WHERE run_id = ? AND state = ?
            ORDER BY created_at ASC, id ASC
            """,
            (run_id, ArtifactState.SEALED.value),
        ).fetchall()
        for row in rows:
            if match_name(pattern, row["name"]):
                yield self._row_to_record(row)

    def list_run(self, run_id: int, include_expired: bool = False) -> list[ArtifactRecord]:
        """List artifacts of a run in creation order."""
        states = [ArtifactState.SEALED.value]
        if include_expired:
            states.append(ArtifactState.EXPIRED.value)
        placeholders = ",".join("?" * len(states))
        rows = self._get_connection().execute(
            f"""
            SELECT * FROM artifacts
            WHERE run_id = ? AND state IN ({placeholders})
            ORDER BY created_at ASC, id ASC
            """,
            (run_id, *states),
        ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def count_live(self, run_id: int) -> int:
        """Count pending and sealed artifacts of a run."""
        row = self._get_connection().execute(
            "SELECT COUNT(*) AS count FROM artifacts WHERE run_id = ? AND state != ?",
            (run_id, ArtifactState.EXPIRED.value),
        ).fetchone()
        return row["count"]

    def list_expired_due(self, now: datetime) -> list[ArtifactRecord]:
        """Sealed artifacts whose retention expiry is at or before ``now``."""
        rows = self._get_connection().execute(
            """
            SELECT * FROM artifacts
            WHERE state = ? AND retention_expiry <= ?
            ORDER BY retention_expiry ASC, id ASC
            """,
            (ArtifactState.SEALED.value, to_db_time(now)),
        ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def list_purgeable(self, expired_before: datetime | None = None) -> list[ArtifactRecord]:
        """Expired artifacts, optionally only those retired before a cutoff."""
        sql = "SELECT * FROM artifacts WHERE state = ?"
        params: list[Any] = [ArtifactState.EXPIRED.value]
        if expired_before is not None:
            sql += " AND expired_at <= ?"
            params.append(to_db_time(expired_before))
        sql += " ORDER BY expired_at ASC, id ASC"
        rows = self._get_connection().execute(sql, params).fetchall()
        return [self._row_to_record(row) for row in rows]

    def list_stale_pending(self, created_before: datetime) -> list[ArtifactRecord]:
        """Pending artifacts created before a cutoff."""
        rows = self._get_connection().execute(
            """
            SELECT * FROM artifacts
            WHERE state = ? AND created_at <= ?
            ORDER BY created_at ASC, id ASC
            """,
            (ArtifactState.PENDING.value, to_db_time(created_before)),
        ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def stats(self) -> dict[str, Any]:
        """Get statistics about artifact storage."""
        conn = self._get_connection()
        row = conn.execute(
            """
            SELECT
                COUNT(*) as total_count,
                SUM(CASE WHEN state = 'sealed' THEN size_bytes ELSE 0 END) as sealed_size,
                COUNT(CASE WHEN state = 'pending' THEN 1 END) as pending_count,
                COUNT(CASE WHEN state = 'sealed' THEN 1 END) as sealed_count,
                COUNT(CASE WHEN state = 'expired' THEN 1 END) as expired_count,
                COUNT(DISTINCT run_id) as run_count
            FROM artifacts
            """
        ).fetchone()

        return {
            "total_count": row["total_count"] or 0,
            "sealed_size_bytes": row["sealed_size"] or 0,
            "pending_count": row["pending_count"] or 0,
            "sealed_count": row["sealed_count"] or 0,
            "expired_count": row["expired_count"] or 0,
            "run_count": row["run_count"] or 0,
            "storage_path": str(self._blobs_dir),
        }

    def close(self) -> None:
        """Close database connections (call on shutdown)."""
        with self._connections_lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
        self._local = threading.local()
