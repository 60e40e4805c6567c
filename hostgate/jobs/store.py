"""SQLite-backed persistence for job snapshots."""
from __future__ import annotations

from typing import List, Optional

import aiosqlite

from .models import Job

_COLUMNS = (
    "job_id",
    "job_type",
    "target",
    "status",
    "progress",
    "message",
    "error",
    "started_at",
    "completed_at",
)


class JobStore:
    """Async SQLite store holding the latest snapshot of every job."""

    def __init__(self, db_path: str = "hostgate_jobs.db") -> None:
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None

    async def initialize(self) -> None:
        """Create the jobs table if it doesn't exist."""
        if self._db is not None:
            return
        self._db = await aiosqlite.connect(self.db_path)
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS jobs (
                job_id TEXT PRIMARY KEY,
                job_type TEXT NOT NULL,
                target TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'queued',
                progress INTEGER,
                message TEXT,
                error TEXT,
                started_at TEXT NOT NULL,
                completed_at TEXT
            )
        """)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    # ── Writes ───────────────────────────────────────────────────────

    async def upsert(self, job: Job) -> None:
        """Insert or replace the stored snapshot for ``job.job_id``."""
        if self._db is None:
            await self.initialize()
        row = job.model_dump(mode="json")
        placeholders = ",".join("?" for _ in _COLUMNS)
        updates = ", ".join(f"{c} = excluded.{c}" for c in _COLUMNS[1:])
        await self._db.execute(
            f"INSERT INTO jobs ({', '.join(_COLUMNS)}) VALUES ({placeholders}) "
            f"ON CONFLICT(job_id) DO UPDATE SET {updates}",
            tuple(row[c] for c in _COLUMNS),
        )
        await self._db.commit()

    # ── Reads ────────────────────────────────────────────────────────

    async def get_job(self, job_id: str) -> Optional[Job]:
        """Fetch a single job by ID."""
        if self._db is None:
            await self.initialize()
        async with self._db.execute("SELECT * FROM jobs WHERE job_id = ?", (job_id,)) as cur:
            row = await cur.fetchone()
            desc = cur.description
        if row is None:
            return None
        return self._row_to_job(row, desc)

    async def list_jobs(self, limit: int = 50) -> List[Job]:
        """List jobs ordered by start time (newest first)."""
        if self._db is None:
            await self.initialize()
        async with self._db.execute(
            "SELECT * FROM jobs ORDER BY started_at DESC LIMIT ?", (limit,)
        ) as cur:
            rows = await cur.fetchall()
            desc = cur.description
        return [self._row_to_job(r, desc) for r in rows]

    @staticmethod
    def _row_to_job(row, description) -> Job:
        cols = [d[0] for d in description]
        return Job.model_validate(dict(zip(cols, row)))
