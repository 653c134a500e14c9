"""
Checkpoint ledger for callers that drive long runs across processes.
Stores the latest opaque checkpoint token per run in SQLite so a later
invocation (e.g. the CLI with --resume) can hand it back to the Runner.
"""

import sqlite3
import json
import logging
from datetime import datetime
from typing import Dict, List, Optional, Any

logger = logging.getLogger(__name__)


class CheckpointManager:
    """
    Manages persisted checkpoint tokens for long runs.

    Features:
    - Create runs with unique IDs
    - Save the token returned by each paused invocation
    - Resume from the last saved token
    - Track cumulative counters per run
    - Clean up old completed runs
    """

    def __init__(self, db_path: str):
        """
        Initialize checkpoint manager.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._ensure_database_exists()

    def _ensure_database_exists(self):
        """Create database and tables if they don't exist."""
        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS long_runs (
                    run_id TEXT PRIMARY KEY,
                    job_type TEXT NOT NULL,
                    record_filter TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    completed_at TEXT,
                    last_checkpoint TEXT,
                    checkpoint TEXT,
                    invocations INTEGER DEFAULT 0,
                    items_processed INTEGER DEFAULT 0,
                    items_failed INTEGER DEFAULT 0,
                    items_skipped INTEGER DEFAULT 0,
                    status TEXT DEFAULT 'running',
                    error_message TEXT,
                    created_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_job_status
                ON long_runs(job_type, status)
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_started_at
                ON long_runs(started_at DESC)
            """)

            conn.commit()
            logger.debug(f"Checkpoint database initialized at {self.db_path}")
        finally:
            conn.close()

    def create_run(self, job_type: str, record_filter: Any) -> str:
        """
        Create a new run.

        Args:
            job_type: Job type being run
            record_filter: Record filter of the job ("all", a type or a list)

        Returns:
            Unique run ID
        """
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        run_id = f"{job_type}_{timestamp}"

        now = datetime.now().isoformat()

        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO long_runs
                (run_id, job_type, record_filter, started_at, created_at, status)
                VALUES (?, ?, ?, ?, ?, 'running')
            """, (run_id, job_type, json.dumps(record_filter), now, now))
            conn.commit()

            logger.info(f"Created run: {run_id} (filter {record_filter!r})")
            return run_id
        finally:
            conn.close()

    def get_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        """
        Get run details.

        Args:
            run_id: Run ID

        Returns:
            Dictionary with run details or None if not found
        """
        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT run_id, job_type, record_filter, started_at, completed_at,
                       last_checkpoint, checkpoint, invocations, items_processed,
                       items_failed, items_skipped, status, error_message
                FROM long_runs
                WHERE run_id = ?
            """, (run_id,))

            row = cursor.fetchone()
            if not row:
                return None

            return {
                'run_id': row[0],
                'job_type': row[1],
                'record_filter': json.loads(row[2]),
                'started_at': row[3],
                'completed_at': row[4],
                'last_checkpoint': row[5],
                'checkpoint': row[6],
                'invocations': row[7],
                'items_processed': row[8],
                'items_failed': row[9],
                'items_skipped': row[10],
                'status': row[11],
                'error_message': row[12],
            }
        finally:
            conn.close()

    def save_checkpoint(self, run_id: str, checkpoint: str, summary: Dict[str, int]):
        """
        Save the token of a paused invocation.

        Args:
            run_id: Run ID
            checkpoint: Opaque checkpoint token, stored verbatim
            summary: Cumulative counters ('processed', 'failed', 'skipped')
        """
        now = datetime.now().isoformat()

        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.cursor()
            cursor.execute("""
                UPDATE long_runs
                SET last_checkpoint = ?,
                    checkpoint = ?,
                    invocations = invocations + 1,
                    items_processed = ?,
                    items_failed = ?,
                    items_skipped = ?,
                    status = 'paused'
                WHERE run_id = ?
            """, (now, checkpoint, summary.get('processed', 0), summary.get('failed', 0),
                  summary.get('skipped', 0), run_id))
            conn.commit()

            logger.debug(f"Checkpoint saved: {run_id} - {summary.get('processed', 0)} processed, "
                         f"{summary.get('failed', 0)} failed")
        finally:
            conn.close()

    def resume_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        """
        Get the data needed to resume a run.

        Args:
            run_id: Run ID to resume

        Returns:
            Resume data dictionary or None if the run doesn't exist or is done
        """
        run = self.get_run(run_id)
        if not run:
            logger.warning(f"Cannot resume run {run_id}: not found")
            return None

        if run['status'] == 'completed':
            logger.info(f"Run {run_id} already completed")
            return None

        logger.info(f"Resuming run {run_id}, {run['items_processed']} items processed")

        return {
            'run_id': run['run_id'],
            'job_type': run['job_type'],
            'record_filter': run['record_filter'],
            'checkpoint': run['checkpoint'],
            'items_processed': run['items_processed'],
            'items_failed': run['items_failed'],
        }

    def complete_run(self, run_id: str, summary: Dict[str, int]):
        """
        Mark a run as completed.

        Args:
            run_id: Run ID
            summary: Final cumulative counters
        """
        now = datetime.now().isoformat()

        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.cursor()
            cursor.execute("""
                UPDATE long_runs
                SET status = 'completed',
                    completed_at = ?,
                    checkpoint = NULL,
                    invocations = invocations + 1,
                    items_processed = ?,
                    items_failed = ?,
                    items_skipped = ?
                WHERE run_id = ?
            """, (now, summary.get('processed', 0), summary.get('failed', 0),
                  summary.get('skipped', 0), run_id))
            conn.commit()

            logger.info(f"Run completed: {run_id} - {summary.get('processed', 0)} processed, "
                        f"{summary.get('failed', 0)} failed")
        finally:
            conn.close()

    def fail_run(self, run_id: str, error_message: str):
        """
        Mark a run as failed. The last saved token is kept.

        Args:
            run_id: Run ID
            error_message: Error description
        """
        now = datetime.now().isoformat()

        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.cursor()
            cursor.execute("""
                UPDATE long_runs
                SET status = 'failed',
                    completed_at = ?,
                    error_message = ?
                WHERE run_id = ?
            """, (now, error_message, run_id))
            conn.commit()

            logger.error(f"Run failed: {run_id} - {error_message}")
        finally:
            conn.close()

    def record_outcome(self, run_id: str, outcome) -> None:
        """Store a RunOutcome: complete the run, or save its checkpoint."""
        summary = outcome.summary.to_dict()
        if outcome.is_complete:
            self.complete_run(run_id, summary)
        else:
            self.save_checkpoint(run_id, outcome.checkpoint, summary)

    def list_runs(self, job_type: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        List all runs, optionally filtered by job type.

        Args:
            job_type: Optional job type to filter by

        Returns:
            List of run dictionaries, newest first
        """
        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.cursor()

            if job_type:
                cursor.execute("""
                    SELECT run_id, job_type, started_at, completed_at, status,
                           items_processed, items_failed, invocations
                    FROM long_runs
                    WHERE job_type = ?
                    ORDER BY started_at DESC
                """, (job_type,))
            else:
                cursor.execute("""
                    SELECT run_id, job_type, started_at, completed_at, status,
                           items_processed, items_failed, invocations
                    FROM long_runs
                    ORDER BY started_at DESC
                """)

            runs = []
            for row in cursor.fetchall():
                runs.append({
                    'run_id': row[0],
                    'job_type': row[1],
                    'started_at': row[2],
                    'completed_at': row[3],
                    'status': row[4],
                    'items_processed': row[5],
                    'items_failed': row[6],
                    'invocations': row[7]
                })

            return runs
        finally:
            conn.close()

    def get_latest_run(self, job_type: str) -> Optional[Dict[str, Any]]:
        """
        Get the most recent run for a job type.

        Args:
            job_type: Job type

        Returns:
            Run dictionary or None
        """
        runs = self.list_runs(job_type)
        return self.get_run(runs[0]['run_id']) if runs else None

    def cleanup_old_runs(self, keep_recent: int = 10) -> int:
        """
        Delete old completed runs, keeping only the most recent ones.

        Args:
            keep_recent: Number of recent runs to keep per job type

        Returns:
            Number of runs deleted
        """
        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.cursor()

            cursor.execute("""
                SELECT run_id
                FROM (
                    SELECT run_id, job_type, started_at,
                           ROW_NUMBER() OVER (
                               PARTITION BY job_type
                               ORDER BY started_at DESC
                           ) as rn
                    FROM long_runs
                    WHERE status = 'completed'
                )
                WHERE rn > ?
            """, (keep_recent,))

            runs_to_delete = [row[0] for row in cursor.fetchall()]

            if runs_to_delete:
                placeholders = ','.join('?' * len(runs_to_delete))
                cursor.execute(f"""
                    DELETE FROM long_runs
                    WHERE run_id IN ({placeholders})
                """, runs_to_delete)
                conn.commit()

                logger.info(f"Cleaned up {len(runs_to_delete)} old runs")

            return len(runs_to_delete)
        finally:
            conn.close()
