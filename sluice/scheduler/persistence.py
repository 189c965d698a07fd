"""
Persistence Adapter for the submission scheduler.

- SQLite snapshot storage with WAL mode
- One snapshot per database: a single run_state row plus its jobs
- Queue order kept in the position column (FIFO contract)
- save_snapshot() replaces the whole snapshot in one transaction, so a
  crash leaves either the previous or the new snapshot, never a mix
- Retired external ids live in their own table and survive clear(), so
  remote items resolved by an earlier run never match a later job

A job saved as SUBMITTED is "maybe submitted": the submission call may or
may not have reached the remote service before the process died.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from .entities import (
    Job,
    JobPayload,
    JobStatus,
    Phase,
    RunState,
    RunStats,
    SchedulerState,
    now_iso,
    parse_iso,
)


logger = logging.getLogger(__name__)


class PersistenceAdapter:
    """
    SQLite-based snapshot store for RunState.

    - Does NOT contain scheduling logic
    - Does NOT validate beyond schema constraints
    - Callers hold RunState.lock while saving so the snapshot is consistent
    """

    def __init__(self, db_path: str | Path):
        """
        Initialize persistence adapter.

        Args:
            db_path: Path to SQLite database file. Parent directories are created.
        """
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with WAL mode enabled."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections."""
        conn = self._get_connection()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            # Single-row run state (id is always 1)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS run_state (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    phase TEXT NOT NULL,
                    burst_size INTEGER NOT NULL,
                    burst_sent INTEGER NOT NULL DEFAULT 0,
                    is_running INTEGER NOT NULL DEFAULT 0,
                    is_paused INTEGER NOT NULL DEFAULT 0,
                    scheduler_state TEXT NOT NULL,
                    stats TEXT NOT NULL DEFAULT '{}',
                    saved_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    job_id TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    status TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    max_attempts INTEGER,
                    submitted_at TEXT,
                    fingerprint TEXT NOT NULL,
                    external_id TEXT,
                    readiness_failures INTEGER NOT NULL DEFAULT 0,
                    rate_limit_failures INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT,
                    created_at TEXT NOT NULL,
                    finished_at TEXT
                )
            """)

            # Index for queue ordering
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_status_position
                ON jobs (status, position ASC)
            """)

            # Remote items already resolved; outlives the snapshot
            conn.execute("""
                CREATE TABLE IF NOT EXISTS retired_ids (
                    external_id TEXT PRIMARY KEY,
                    retired_at TEXT NOT NULL
                )
            """)

            self._migrate_schema(conn)

    def _migrate_schema(self, conn: sqlite3.Connection) -> None:
        """Add columns missing from databases created by older versions."""
        columns = (
            ("jobs", "rate_limit_failures INTEGER NOT NULL DEFAULT 0"),
        )
        for table, column in columns:
            try:
                conn.execute(f"ALTER TABLE {table} ADD COLUMN {column}")
                logger.info(f"Added column to {table}: {column.split()[0]}")
            except sqlite3.OperationalError:
                pass  # Column already exists

    # =========================================================================
    # Snapshot Operations
    # =========================================================================

    def save_snapshot(self, state: RunState) -> None:
        """
        Replace the stored snapshot with `state`.

        Positions: queue jobs use their queue index; in-flight and terminal
        jobs keep insertion order after the queue.
        """
        rows = []
        for position, job in enumerate(state.all_jobs()):
            rows.append(self._job_to_row(job, position))

        with self._transaction() as conn:
            conn.execute("DELETE FROM jobs")
            conn.execute("DELETE FROM run_state")

            conn.execute(
                """
                INSERT INTO run_state
                (id, phase, burst_size, burst_sent, is_running, is_paused,
                 scheduler_state, stats, saved_at)
                VALUES (1, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    state.phase.value,
                    state.burst_size,
                    state.burst_sent,
                    1 if state.is_running else 0,
                    1 if state.is_paused else 0,
                    state.scheduler_state.value,
                    json.dumps(state.stats.to_dict()),
                    now_iso(),
                ),
            )

            conn.executemany(
                """
                INSERT INTO jobs
                (job_id, payload, status, position, attempts, max_attempts,
                 submitted_at, fingerprint, external_id, readiness_failures,
                 rate_limit_failures,
                 last_error, created_at, finished_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )

            retired_at = now_iso()
            conn.executemany(
                "INSERT OR IGNORE INTO retired_ids (external_id, retired_at) VALUES (?, ?)",
                [(external_id, retired_at) for external_id in state.retired_external_ids],
            )

    def load_snapshot(self) -> Optional[RunState]:
        """
        Load the stored snapshot.

        Returns:
            A fresh RunState (new lock, no submissions in progress),
            or None if nothing is stored
        """
        with self._connection() as conn:
            meta = conn.execute("SELECT * FROM run_state WHERE id = 1").fetchone()
            if meta is None:
                return None

            rows = conn.execute(
                "SELECT * FROM jobs ORDER BY position ASC"
            ).fetchall()
            retired = self._load_retired_ids(conn)

        state = RunState(
            phase=Phase(meta["phase"]),
            burst_size=meta["burst_size"],
            burst_sent=meta["burst_sent"],
            is_running=bool(meta["is_running"]),
            is_paused=bool(meta["is_paused"]),
            scheduler_state=SchedulerState(meta["scheduler_state"]),
            stats=RunStats.from_dict(json.loads(meta["stats"])),
            retired_external_ids=retired,
        )

        for row in rows:
            job = self._row_to_job(row)
            if job.status == JobStatus.PENDING:
                state.queue.append(job)
            elif job.status == JobStatus.SUBMITTED:
                state.in_flight[job.job_id] = job
            elif job.status == JobStatus.COMPLETED:
                state.completed.append(job)
            else:
                state.failed.append(job)

        return state

    def has_snapshot(self) -> bool:
        """Check whether a snapshot is stored."""
        with self._connection() as conn:
            row = conn.execute("SELECT 1 FROM run_state WHERE id = 1").fetchone()
        return row is not None

    def snapshot_saved_at(self) -> Optional[datetime]:
        """Time the stored snapshot was written, or None."""
        with self._connection() as conn:
            row = conn.execute("SELECT saved_at FROM run_state WHERE id = 1").fetchone()
        if row is None:
            return None
        return parse_iso(row["saved_at"])

    def load_retired_ids(self) -> set[str]:
        """External ids resolved by any earlier run."""
        with self._connection() as conn:
            return self._load_retired_ids(conn)

    def _load_retired_ids(self, conn: sqlite3.Connection) -> set[str]:
        rows = conn.execute("SELECT external_id FROM retired_ids").fetchall()
        return {row["external_id"] for row in rows}

    def clear(self) -> None:
        """Remove the stored snapshot. Retired external ids are kept."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM jobs")
            conn.execute("DELETE FROM run_state")

    def count_jobs_by_status(self, status: JobStatus) -> int:
        """Count stored jobs with the given status."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) as count FROM jobs WHERE status = ?",
                (status.value,),
            ).fetchone()
        return row["count"]

    # =========================================================================
    # Row Mapping
    # =========================================================================

    def _job_to_row(self, job: Job, position: int) -> tuple:
        return (
            job.job_id,
            json.dumps(job.payload.to_dict()),
            job.status.value,
            position,
            job.attempts,
            job.max_attempts,
            job.submitted_at,
            job.fingerprint,
            job.external_id,
            job.readiness_failures,
            job.rate_limit_failures,
            job.last_error,
            job.created_at,
            job.finished_at,
        )

    def _row_to_job(self, row: sqlite3.Row) -> Job:
        """Convert a database row to a Job entity."""
        return Job(
            job_id=row["job_id"],
            payload=JobPayload.from_dict(json.loads(row["payload"])),
            status=JobStatus(row["status"]),
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
            submitted_at=row["submitted_at"],
            fingerprint=row["fingerprint"],
            external_id=row["external_id"],
            readiness_failures=row["readiness_failures"],
            rate_limit_failures=row["rate_limit_failures"],
            last_error=row["last_error"],
            created_at=row["created_at"],
            finished_at=row["finished_at"],
        )
