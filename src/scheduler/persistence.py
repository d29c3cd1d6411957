"""
Persistence Adapter for the Job Scheduler.

One SQLite file (WAL mode) shared by every process on the host:
- jobs:    version -> JSON-serialized Job
- sched:   FIFO queue; auto-incrementing seq gives the order
- running: single row naming the job the slot owner is executing
- lease:   single row, only used by the store-backed execution lock

Every mutation runs in one BEGIN IMMEDIATE transaction, so concurrent
invocations contend at the transaction layer and never interleave
partial read-modify-write sequences.
"""

import json
import os
import socket
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from .entities import Job, LockHolder, RunMarker, now_iso
from .errors import DuplicateJobError, QueueOrderError, StoreError


# Seconds a connection waits on a locked database before failing
DEFAULT_STORE_TIMEOUT = 30.0


class JobStore:
    """
    SQLite-based persistence for jobs, queue and running marker.

    - Does NOT contain scheduling logic
    - Does NOT validate identifiers (QueueManager's responsibility)
    - Wraps every sqlite3 failure in StoreError with call-site context
    """

    def __init__(self, db_path: str | Path, timeout: float = DEFAULT_STORE_TIMEOUT):
        """
        Initialize the job store.

        Args:
            db_path: Path to SQLite database file. Parent directories are created.
            timeout: Seconds to wait for a competing transaction to finish
        """
        self.db_path = str(db_path)
        self.timeout = timeout
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with WAL mode enabled."""
        # isolation_level=None: transactions are opened explicitly below
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    @contextmanager
    def _connection(self, context: str) -> Iterator[sqlite3.Connection]:
        """Context manager for read-only access."""
        try:
            conn = self._get_connection()
        except sqlite3.Error as e:
            raise StoreError(f"{context}: {e}") from e
        try:
            yield conn
        except sqlite3.Error as e:
            raise StoreError(f"{context}: {e}") from e
        finally:
            conn.close()

    @contextmanager
    def _transaction(self, context: str) -> Iterator[sqlite3.Connection]:
        """Context manager for one atomic read-modify-write transaction."""
        try:
            conn = self._get_connection()
        except sqlite3.Error as e:
            raise StoreError(f"{context}: {e}") from e
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.rollback()
            raise StoreError(f"{context}: {e}") from e
        except Exception:
            if conn.in_transaction:
                conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction("init schema") as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    version TEXT PRIMARY KEY,
                    data TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS sched (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    version TEXT NOT NULL UNIQUE,
                    queued_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS running (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    version TEXT NOT NULL,
                    pid INTEGER NOT NULL,
                    hostname TEXT NOT NULL,
                    started_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS lease (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    holder TEXT NOT NULL
                )
            """)

    # =========================================================================
    # Job Operations
    # =========================================================================

    def get_job(self, version: str) -> Optional[Job]:
        """Get a job by version."""
        with self._connection(f"get job {version}") as conn:
            row = conn.execute(
                "SELECT data FROM jobs WHERE version = ?",
                (version,),
            ).fetchone()

        if row is None:
            return None

        return Job.from_json(row["data"])

    def list_jobs(self) -> list[Job]:
        """List all jobs. Order is by key, not by submission."""
        with self._connection("list jobs") as conn:
            rows = conn.execute("SELECT data FROM jobs ORDER BY version").fetchall()

        return [Job.from_json(row["data"]) for row in rows]

    def save_job(self, job: Job) -> Job:
        """Upsert a job keyed by its version."""
        with self._transaction(f"save job {job.version}") as conn:
            conn.execute(
                """
                INSERT INTO jobs (version, data) VALUES (?, ?)
                ON CONFLICT(version) DO UPDATE SET data = excluded.data
                """,
                (job.version, job.to_json()),
            )
        return job

    def update_job(self, job: Job) -> bool:
        """
        Overwrite an existing job; never creates one.

        Returns:
            False if the record is gone (the job was removed)
        """
        with self._transaction(f"update job {job.version}") as conn:
            cursor = conn.execute(
                "UPDATE jobs SET data = ? WHERE version = ?",
                (job.to_json(), job.version),
            )
            return cursor.rowcount > 0

    def delete_jobs(self, *versions: str) -> list[str]:
        """
        Delete jobs by version.

        Returns:
            The requested versions that were actually present
        """
        if not versions:
            return []

        placeholders = ", ".join("?" for _ in versions)
        with self._transaction("delete jobs") as conn:
            rows = conn.execute(
                f"SELECT version FROM jobs WHERE version IN ({placeholders})",
                versions,
            ).fetchall()
            conn.execute(
                f"DELETE FROM jobs WHERE version IN ({placeholders})",
                versions,
            )

        present = {row["version"] for row in rows}
        return [v for v in versions if v in present]

    # =========================================================================
    # Queue Operations
    # =========================================================================

    def enqueue(self, version: str) -> None:
        """
        Append a version to the tail of the queue.

        Raises:
            DuplicateJobError: If the version is already queued
        """
        with self._transaction(f"enqueue {version}") as conn:
            try:
                conn.execute(
                    "INSERT INTO sched (version, queued_at) VALUES (?, ?)",
                    (version, now_iso()),
                )
            except sqlite3.IntegrityError as e:
                raise DuplicateJobError(version, "is already queued") from e

    def peek_front(self) -> Optional[str]:
        """Get the oldest queued version without removing it."""
        with self._connection("peek queue") as conn:
            row = conn.execute(
                "SELECT version FROM sched ORDER BY seq ASC LIMIT 1"
            ).fetchone()

        return row["version"] if row is not None else None

    def pop_front(self, version: str) -> None:
        """
        Remove the front entry of the queue.

        The caller must have just peeked this same version.

        Raises:
            QueueOrderError: If version is not at the front (queue untouched)
        """
        with self._transaction(f"pop {version}") as conn:
            row = conn.execute(
                "SELECT seq, version FROM sched ORDER BY seq ASC LIMIT 1"
            ).fetchone()

            front = row["version"] if row is not None else None
            if front != version:
                raise QueueOrderError(version, front)

            conn.execute("DELETE FROM sched WHERE seq = ?", (row["seq"],))

    def list_queue(self) -> list[str]:
        """List queued versions, oldest first."""
        with self._connection("list queue") as conn:
            rows = conn.execute(
                "SELECT version FROM sched ORDER BY seq ASC"
            ).fetchall()

        return [row["version"] for row in rows]

    def remove_from_queue(self, *versions: str) -> list[str]:
        """
        Remove versions from anywhere in the queue.

        Relative order of the remaining entries is unchanged.

        Returns:
            The requested versions that were actually queued
        """
        if not versions:
            return []

        placeholders = ", ".join("?" for _ in versions)
        with self._transaction("remove from queue") as conn:
            rows = conn.execute(
                f"SELECT version FROM sched WHERE version IN ({placeholders})",
                versions,
            ).fetchall()
            conn.execute(
                f"DELETE FROM sched WHERE version IN ({placeholders})",
                versions,
            )

        present = {row["version"] for row in rows}
        return [v for v in versions if v in present]

    def clear(self) -> None:
        """Delete every job and every queue entry in one transaction."""
        with self._transaction("clear store") as conn:
            conn.execute("DELETE FROM jobs")
            conn.execute("DELETE FROM sched")

    # =========================================================================
    # Running Marker
    # =========================================================================

    def start_run(self, job: Job, require_record: bool = False) -> Optional[RunMarker]:
        """
        Save a fresh job record and mark it running, in one transaction.

        Args:
            job: The job about to start
            require_record: Only start if a record exists (a dequeued job
                whose record is gone was removed and must not run)

        Returns:
            The running marker, or None if the record was required but gone
        """
        marker = RunMarker(
            version=job.version,
            pid=os.getpid(),
            hostname=socket.gethostname(),
            started_at=now_iso(),
        )
        with self._transaction(f"start {job.version}") as conn:
            if require_record:
                row = conn.execute(
                    "SELECT 1 FROM jobs WHERE version = ?", (job.version,)
                ).fetchone()
                if row is None:
                    return None

            conn.execute(
                """
                INSERT INTO jobs (version, data) VALUES (?, ?)
                ON CONFLICT(version) DO UPDATE SET data = excluded.data
                """,
                (job.version, job.to_json()),
            )
            conn.execute(
                """
                INSERT OR REPLACE INTO running (id, version, pid, hostname, started_at)
                VALUES (1, ?, ?, ?, ?)
                """,
                (marker.version, marker.pid, marker.hostname, marker.started_at),
            )
        return marker

    def get_running(self) -> Optional[RunMarker]:
        """Get the running marker, if any."""
        with self._connection("get running marker") as conn:
            row = conn.execute(
                "SELECT version, pid, hostname, started_at FROM running WHERE id = 1"
            ).fetchone()

        if row is None:
            return None

        return RunMarker(
            version=row["version"],
            pid=row["pid"],
            hostname=row["hostname"],
            started_at=row["started_at"],
        )

    def clear_running(self) -> None:
        """Remove the running marker."""
        with self._transaction("clear running marker") as conn:
            conn.execute("DELETE FROM running")

    # =========================================================================
    # Lease (store-backed execution lock)
    # =========================================================================

    def try_take_lease(self, holder: LockHolder) -> bool:
        """
        Insert the lease row.

        Returns:
            True if taken, False if another holder already has it
        """
        with self._transaction("take lease") as conn:
            try:
                conn.execute(
                    "INSERT INTO lease (id, holder) VALUES (1, ?)",
                    (holder.to_json(),),
                )
            except sqlite3.IntegrityError:
                return False
        return True

    def get_lease(self) -> Optional[LockHolder]:
        """Get the current lease holder, if any."""
        with self._connection("get lease") as conn:
            row = conn.execute("SELECT holder FROM lease WHERE id = 1").fetchone()

        if row is None:
            return None

        try:
            return LockHolder.from_json(row["holder"])
        except (ValueError, KeyError) as e:
            raise StoreError(f"get lease: corrupt holder record: {e}") from e

    def drop_lease(self, token: Optional[str] = None) -> bool:
        """
        Delete the lease row.

        Args:
            token: Only drop the lease taken with this token (None = any holder)

        Returns:
            True if a lease was dropped
        """
        with self._transaction("drop lease") as conn:
            if token is not None:
                row = conn.execute("SELECT holder FROM lease WHERE id = 1").fetchone()
                if row is None:
                    return False
                try:
                    current = LockHolder.from_json(row["holder"]).token
                except (ValueError, KeyError) as e:
                    raise StoreError(f"drop lease: corrupt holder record: {e}") from e
                if current != token:
                    return False

            cursor = conn.execute("DELETE FROM lease")
            return cursor.rowcount > 0
