"""Job data models."""
from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, enum.Enum):
    queued = "queued"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.succeeded, JobStatus.failed)


class JobType(str, enum.Enum):
    """Known job categories.  The registry accepts any string."""

    backup = "backup"
    restore = "restore"
    archive = "archive"
    package_install = "package-install"
    migration = "migration"


# Allowed forward moves.  Terminal states have no entry.
TRANSITIONS = {
    JobStatus.queued: {JobStatus.running, JobStatus.failed},
    JobStatus.running: {JobStatus.succeeded, JobStatus.failed},
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Job(BaseModel):
    """Immutable point-in-time snapshot of a tracked host operation."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    job_type: str
    target: str
    status: JobStatus = JobStatus.queued
    progress: Optional[int] = None
    message: Optional[str] = None
    error: Optional[str] = None
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def can_move_to(self, status: JobStatus) -> bool:
        return status in TRANSITIONS.get(self.status, ())
