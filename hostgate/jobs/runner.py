"""Async job runner that drives the registry from worker threads."""
from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
import traceback
from functools import partial
from typing import Any, Callable, Dict, Optional

from .models import Job
from .registry import JobRegistry

logger = logging.getLogger(__name__)

CANCELLED_ERROR = "Job was cancelled"


class JobCancelled(Exception):
    """Raised by job functions when cooperative cancellation is detected."""


class JobQueueFullError(Exception):
    """Raised when the job queue is at capacity."""


def _log_dropped_progress(job_id: str, future: concurrent.futures.Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.warning("Progress update for job %s dropped: %s", job_id, exc)


def check_cancelled(cancel_event: Optional[threading.Event]) -> None:
    """Raise ``JobCancelled`` if the cancellation event is set."""
    if cancel_event is not None and cancel_event.is_set():
        raise JobCancelled(CANCELLED_ERROR)


class JobRunner:
    """Executes job functions in background threads with bounded concurrency.

    A job function is called as ``fn(*args, progress_callback=..., cancel_event=..., **kwargs)``.
    ``progress_callback(percent, message="")`` may be called from the worker
    thread; it is marshalled back onto the event loop.
    """

    def __init__(self, registry: JobRegistry, max_concurrent: int = 2, max_queued: int = 20) -> None:
        self._registry = registry
        self._sem = asyncio.Semaphore(max_concurrent)
        self._active_tasks: Dict[str, asyncio.Task] = {}
        self._cancel_events: Dict[str, threading.Event] = {}
        self._max_queued = max_queued

    # ── Submit & Run ─────────────────────────────────────────────────

    @property
    def pending_count(self) -> int:
        """Number of jobs queued or running."""
        return len(self._active_tasks)

    async def submit(
        self,
        job_type: str,
        target: str,
        fn: Callable[..., Any],
        *args: Any,
        **kwargs: Any,
    ) -> Job:
        """Create a job for *target* and schedule *fn* to run in a thread.

        Raises
        ------
        JobQueueFullError
            If the number of pending jobs exceeds ``max_queued``.
        """
        if len(self._active_tasks) >= self._max_queued:
            raise JobQueueFullError(
                f"Job queue full. {self._max_queued} jobs pending. Try again later."
            )
        job = await self._registry.create(job_type, target)
        cancel_event = threading.Event()
        self._cancel_events[job.job_id] = cancel_event
        task = asyncio.create_task(
            self._run(job.job_id, fn, *args, cancel_event=cancel_event, **kwargs)
        )
        self._active_tasks[job.job_id] = task
        return job

    async def _run(
        self,
        job_id: str,
        fn: Callable,
        *args: Any,
        cancel_event: threading.Event,
        **kwargs: Any,
    ) -> None:
        try:
            async with self._sem:
                await self._registry.start(job_id)
                loop = asyncio.get_running_loop()

                def progress_callback(pct: int, msg: str = "") -> None:
                    future = asyncio.run_coroutine_threadsafe(
                        self._on_progress(job_id, pct, msg), loop
                    )
                    future.add_done_callback(partial(_log_dropped_progress, job_id))

                await asyncio.to_thread(
                    fn, *args,
                    progress_callback=progress_callback,
                    cancel_event=cancel_event,
                    **kwargs,
                )
                await self._registry.complete(job_id)
        except (asyncio.CancelledError, JobCancelled):
            logger.warning("Job %s was cancelled", job_id)
            await self._fail_unless_terminal(job_id, CANCELLED_ERROR)
        except Exception as exc:
            logger.error("Job %s failed: %s\n%s", job_id, exc, traceback.format_exc())
            await self._fail_unless_terminal(job_id, str(exc) or type(exc).__name__)
        finally:
            self._active_tasks.pop(job_id, None)
            self._cancel_events.pop(job_id, None)

    async def _fail_unless_terminal(self, job_id: str, error: str) -> None:
        # A cancel can land after complete() already recorded success.
        job = await self._registry.get(job_id)
        if job.is_terminal:
            logger.info("Job %s already %s; not marking failed", job_id, job.status.value)
            return
        await self._registry.fail(job_id, error)

    async def _on_progress(self, job_id: str, pct: int, msg: str) -> None:
        job = await self._registry.get(job_id)
        # Late callbacks from a thread that outlived its job are dropped.
        if job.is_terminal:
            return
        await self._registry.update_progress(job_id, pct, msg or None)

    # ── Cancel ───────────────────────────────────────────────────────

    async def cancel(self, job_id: str) -> bool:
        """Cancel a queued or running job.

        Sets the cooperative cancellation event so the thread-side function
        can detect cancellation, and also cancels the asyncio wrapper task.
        Returns ``False`` when the job has already finished.
        """
        await self._registry.get(job_id)
        cancel_event = self._cancel_events.get(job_id)
        if cancel_event is not None:
            cancel_event.set()
        task = self._active_tasks.get(job_id)
        if task and not task.done():
            task.cancel()
            return True
        return False

    async def shutdown(self) -> None:
        """Cancel every pending job and wait for the wrappers to settle."""
        for event in self._cancel_events.values():
            event.set()
        tasks = list(self._active_tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
