"""In-memory job registry with push subscriptions.

The registry owns the canonical state of every job.  Executors drive it
through ``start`` / ``update_progress`` / ``complete`` / ``fail``; readers use
``get`` (poll) or ``subscribe`` (push).  Each mutation replaces the stored
snapshot, wakes subscribers, then persists to the optional ``JobStore``.

All methods must run on the event loop thread.  Worker threads report
progress through ``asyncio.run_coroutine_threadsafe`` (see ``JobRunner``).
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Dict, List, Optional

from .models import Job, JobStatus
from .store import JobStore

logger = logging.getLogger(__name__)


class JobNotFoundError(Exception):
    """Requested job ID is unknown or has expired."""


class InvalidJobTransitionError(Exception):
    """A mutation would break the monotonic job lifecycle."""


class JobRegistry:
    """Single source of truth for job state."""

    def __init__(self, store: Optional[JobStore] = None, abandon_after: Optional[float] = 300.0) -> None:
        self._store = store
        self._abandon_after = abandon_after
        self._jobs: Dict[str, Job] = {}
        self._subscribers: Dict[str, List[asyncio.Queue]] = {}

    # ── Writers ──────────────────────────────────────────────────────

    async def create(self, job_type: str, target: str, message: Optional[str] = None) -> Job:
        """Register a new queued job and return its first snapshot."""
        job = Job(
            job_id=uuid.uuid4().hex,
            job_type=getattr(job_type, "value", job_type),
            target=target,
            message=message,
        )
        self._jobs[job.job_id] = job
        logger.info("Queued job %s (%s) for %s", job.job_id, job.job_type, target)
        await self._persist(job)
        return job

    async def start(self, job_id: str, message: Optional[str] = None) -> Job:
        current = self._require(job_id)
        self._check_move(current, JobStatus.running)
        changes = {"status": JobStatus.running, "progress": 0}
        if message is not None:
            changes["message"] = message
        return await self._apply(job_id, changes)

    async def update_progress(self, job_id: str, progress: int, message: Optional[str] = None) -> Job:
        """Record progress for a running job.

        Values are clamped to 0-100 and never move backwards; a lower value
        keeps the current percentage but still updates ``message``.
        """
        current = self._require(job_id)
        if current.status is not JobStatus.running:
            raise InvalidJobTransitionError(
                f"Job '{job_id}' is {current.status.value}; progress is only accepted while running"
            )
        clamped = max(0, min(100, int(progress)))
        changes = {"progress": max(current.progress or 0, clamped)}
        if message is not None:
            changes["message"] = message
        return await self._apply(job_id, changes)

    async def complete(self, job_id: str, message: Optional[str] = None) -> Job:
        current = self._require(job_id)
        self._check_move(current, JobStatus.succeeded)
        changes = {
            "status": JobStatus.succeeded,
            "progress": 100,
            "completed_at": datetime.now(timezone.utc),
        }
        if message is not None:
            changes["message"] = message
        job = await self._apply(job_id, changes)
        logger.info("Job %s completed successfully", job_id)
        return job

    async def fail(self, job_id: str, error: str) -> Job:
        if not error or not error.strip():
            raise ValueError("A failed job requires a non-empty error")
        current = self._require(job_id)
        self._check_move(current, JobStatus.failed)
        job = await self._apply(job_id, {
            "status": JobStatus.failed,
            "error": error,
            "completed_at": datetime.now(timezone.utc),
        })
        logger.warning("Job %s failed: %s", job_id, error)
        return job

    # ── Readers ──────────────────────────────────────────────────────

    async def get(self, job_id: str) -> Job:
        """Return the current snapshot, falling back to the store."""
        job = self._jobs.get(job_id)
        if job is not None:
            return job
        return await self._load(job_id)

    async def list_jobs(self, limit: int = 50) -> List[Job]:
        """List jobs ordered by start time (newest first)."""
        if self._store is not None:
            return await self._store.list_jobs(limit=limit)
        jobs = sorted(self._jobs.values(), key=lambda j: j.started_at, reverse=True)
        return jobs[:limit]

    async def subscribe(self, job_id: str) -> AsyncIterator[Job]:
        """Yield the current snapshot, then every change until the job ends.

        The sequence finishes after a terminal snapshot, or when no change
        arrives within ``abandon_after`` seconds (abandoned job).
        Earlier history is never replayed.
        """
        job = self._jobs.get(job_id)
        if job is None:
            # Only jobs already evicted from memory end up here; nothing
            # will ever update them again.
            yield await self._load(job_id)
            return
        if job.is_terminal:
            yield job
            return

        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(job_id, []).append(queue)
        try:
            yield job
            while True:
                try:
                    update = await asyncio.wait_for(queue.get(), timeout=self._abandon_after)
                except asyncio.TimeoutError:
                    logger.warning(
                        "Job %s idle for %.0fs; treating as abandoned", job_id, self._abandon_after
                    )
                    return
                yield update
                if update.is_terminal:
                    return
        finally:
            subs = self._subscribers.get(job_id, [])
            if queue in subs:
                subs.remove(queue)
            if not subs:
                self._subscribers.pop(job_id, None)

    def subscriber_count(self, job_id: str) -> int:
        return len(self._subscribers.get(job_id, ()))

    # ── Retention ────────────────────────────────────────────────────

    def prune(self, retention: float) -> int:
        """Evict terminal jobs completed more than *retention* seconds ago.

        Jobs with live subscribers are kept.  Evicted jobs remain readable
        through the store when one is configured.
        """
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=retention)
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if job.is_terminal
            and job.completed_at is not None
            and job.completed_at <= cutoff
            and job_id not in self._subscribers
        ]
        for job_id in expired:
            self._jobs.pop(job_id, None)
        if expired:
            logger.debug("Pruned %d completed jobs", len(expired))
        return len(expired)

    # ── Helpers ──────────────────────────────────────────────────────

    def _require(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job '{job_id}' not found")
        return job

    @staticmethod
    def _check_move(job: Job, status: JobStatus) -> None:
        if not job.can_move_to(status):
            raise InvalidJobTransitionError(
                f"Job '{job.job_id}' cannot move from {job.status.value} to {status.value}"
            )

    async def _apply(self, job_id: str, changes: dict) -> Job:
        job = self._jobs[job_id].model_copy(update=changes)
        self._jobs[job_id] = job
        for queue in self._subscribers.get(job_id, ()):
            queue.put_nowait(job)
        # The write finishes even if the caller is cancelled mid-way, so the
        # store never lags behind a snapshot subscribers have already seen.
        await asyncio.shield(self._persist(job))
        return job

    async def _persist(self, job: Job) -> None:
        if self._store is not None:
            await self._store.upsert(job)

    async def _load(self, job_id: str) -> Job:
        if self._store is not None:
            job = await self._store.get_job(job_id)
            if job is not None:
                return job
        raise JobNotFoundError(f"Job '{job_id}' not found")
