"""Job lifecycle tracking for long-running host operations."""
from .models import Job, JobStatus, JobType
from .registry import InvalidJobTransitionError, JobNotFoundError, JobRegistry
from .runner import JobCancelled, JobQueueFullError, JobRunner, check_cancelled
from .store import JobStore

__all__ = [
    "InvalidJobTransitionError",
    "Job",
    "JobCancelled",
    "JobNotFoundError",
    "JobQueueFullError",
    "JobRegistry",
    "JobRunner",
    "JobStatus",
    "JobStore",
    "JobType",
    "check_cancelled",
]
