"""Tests for the job system: registry, store, runner, lifecycle."""
import asyncio
import logging
import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from hostgate.jobs.models import Job, JobStatus, JobType
from hostgate.jobs.registry import InvalidJobTransitionError, JobNotFoundError, JobRegistry
from hostgate.jobs.runner import JobQueueFullError, JobRunner, check_cancelled
from hostgate.jobs.store import JobStore


@pytest.fixture
async def store(tmp_path):
    s = JobStore(str(tmp_path / "jobs.db"))
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def registry():
    return JobRegistry(abandon_after=2.0)


async def _collect(registry, job_id):
    return [snap async for snap in registry.subscribe(job_id)]


# ── Registry lifecycle ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_job_is_queued(registry):
    job = await registry.create(JobType.backup, "alpha")
    assert job.status == JobStatus.queued
    assert job.job_type == "backup"
    assert job.target == "alpha"
    assert job.progress is None
    assert job.completed_at is None
    assert job.started_at.tzinfo is not None


@pytest.mark.asyncio
async def test_job_ids_are_unique(registry):
    ids = {(await registry.create("backup", "alpha")).job_id for _ in range(20)}
    assert len(ids) == 20


@pytest.mark.asyncio
async def test_any_job_type_string_is_accepted(registry):
    job = await registry.create("world-reset", "alpha")
    assert job.job_type == "world-reset"


@pytest.mark.asyncio
async def test_snapshots_are_immutable(registry):
    job = await registry.create("backup", "alpha")
    with pytest.raises(Exception):
        job.status = JobStatus.running
    await registry.start(job.job_id)
    assert job.status == JobStatus.queued


@pytest.mark.asyncio
async def test_happy_path(registry):
    job = await registry.create("restore", "alpha")
    running = await registry.start(job.job_id, "restoring")
    assert running.status == JobStatus.running
    assert running.progress == 0
    assert running.message == "restoring"

    halfway = await registry.update_progress(job.job_id, 50, "halfway")
    assert halfway.progress == 50

    done = await registry.complete(job.job_id)
    assert done.status == JobStatus.succeeded
    assert done.progress == 100
    assert done.completed_at is not None
    assert done.error is None


@pytest.mark.asyncio
async def test_progress_is_clamped_and_never_decreases(registry):
    job = await registry.create("archive", "alpha")
    await registry.start(job.job_id)
    assert (await registry.update_progress(job.job_id, 60)).progress == 60
    lowered = await registry.update_progress(job.job_id, 20, "still going")
    assert lowered.progress == 60
    assert lowered.message == "still going"
    assert (await registry.update_progress(job.job_id, 250)).progress == 100
    assert (await registry.update_progress(job.job_id, -5)).progress == 100


@pytest.mark.asyncio
async def test_progress_rejected_unless_running(registry):
    job = await registry.create("backup", "alpha")
    with pytest.raises(InvalidJobTransitionError):
        await registry.update_progress(job.job_id, 10)
    await registry.start(job.job_id)
    await registry.complete(job.job_id)
    with pytest.raises(InvalidJobTransitionError):
        await registry.update_progress(job.job_id, 10)


@pytest.mark.asyncio
async def test_complete_requires_running(registry):
    job = await registry.create("backup", "alpha")
    with pytest.raises(InvalidJobTransitionError):
        await registry.complete(job.job_id)


@pytest.mark.asyncio
async def test_queued_job_can_fail(registry):
    job = await registry.create("migration", "alpha")
    failed = await registry.fail(job.job_id, "cancelled before start")
    assert failed.status == JobStatus.failed
    assert failed.progress is None
    assert failed.completed_at is not None


@pytest.mark.asyncio
async def test_terminal_state_is_final(registry):
    job = await registry.create("backup", "alpha")
    await registry.start(job.job_id)
    await registry.fail(job.job_id, "disk full")
    with pytest.raises(InvalidJobTransitionError):
        await registry.complete(job.job_id)
    with pytest.raises(InvalidJobTransitionError):
        await registry.start(job.job_id)
    with pytest.raises(InvalidJobTransitionError):
        await registry.fail(job.job_id, "again")
    assert (await registry.get(job.job_id)).error == "disk full"


@pytest.mark.asyncio
async def test_fail_requires_error_message(registry):
    job = await registry.create("backup", "alpha")
    await registry.start(job.job_id)
    with pytest.raises(ValueError):
        await registry.fail(job.job_id, "   ")
    assert (await registry.get(job.job_id)).status == JobStatus.running


@pytest.mark.asyncio
async def test_get_unknown_job(registry):
    with pytest.raises(JobNotFoundError):
        await registry.get("nonexistent")
    with pytest.raises(JobNotFoundError):
        await registry.start("nonexistent")


@pytest.mark.asyncio
async def test_list_jobs_newest_first(registry):
    first = await registry.create("backup", "alpha")
    await asyncio.sleep(0.01)
    second = await registry.create("backup", "beta")
    jobs = await registry.list_jobs()
    assert [j.job_id for j in jobs] == [second.job_id, first.job_id]
    assert len(await registry.list_jobs(limit=1)) == 1


# ── Subscriptions ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_subscription_sees_every_change_in_order(registry):
    job = await registry.create("backup", "alpha")
    consumer = asyncio.create_task(_collect(registry, job.job_id))
    await asyncio.sleep(0.01)

    await registry.start(job.job_id)
    await registry.update_progress(job.job_id, 50)
    await registry.complete(job.job_id)

    snaps = await asyncio.wait_for(consumer, timeout=2)
    assert [s.status for s in snaps] == [
        JobStatus.queued,
        JobStatus.running,
        JobStatus.running,
        JobStatus.succeeded,
    ]
    assert [s.progress for s in snaps] == [None, 0, 50, 100]
    assert registry.subscriber_count(job.job_id) == 0


@pytest.mark.asyncio
async def test_subscribe_to_terminal_job_yields_once(registry):
    job = await registry.create("backup", "alpha")
    await registry.start(job.job_id)
    await registry.fail(job.job_id, "boom")

    snaps = await asyncio.wait_for(_collect(registry, job.job_id), timeout=1)
    assert len(snaps) == 1
    assert snaps[0].status == JobStatus.failed


@pytest.mark.asyncio
async def test_resubscribe_starts_from_current_state(registry):
    job = await registry.create("backup", "alpha")
    await registry.start(job.job_id)
    await registry.update_progress(job.job_id, 70)

    consumer = asyncio.create_task(_collect(registry, job.job_id))
    await asyncio.sleep(0.01)
    await registry.complete(job.job_id)

    snaps = await asyncio.wait_for(consumer, timeout=2)
    assert [s.progress for s in snaps] == [70, 100]


@pytest.mark.asyncio
async def test_subscribers_are_independent(registry):
    job = await registry.create("backup", "alpha")
    first = asyncio.create_task(_collect(registry, job.job_id))
    second = asyncio.create_task(_collect(registry, job.job_id))
    await asyncio.sleep(0.01)
    assert registry.subscriber_count(job.job_id) == 2

    await registry.start(job.job_id)
    await registry.complete(job.job_id)

    a, b = await asyncio.wait_for(asyncio.gather(first, second), timeout=2)
    assert [s.status for s in a] == [s.status for s in b]


@pytest.mark.asyncio
async def test_abandoned_job_ends_subscription():
    registry = JobRegistry(abandon_after=0.05)
    job = await registry.create("backup", "alpha")
    await registry.start(job.job_id)

    snaps = await asyncio.wait_for(_collect(registry, job.job_id), timeout=1)
    assert len(snaps) == 1
    assert snaps[0].status == JobStatus.running
    assert registry.subscriber_count(job.job_id) == 0


@pytest.mark.asyncio
async def test_subscribe_unknown_job(registry):
    with pytest.raises(JobNotFoundError):
        await _collect(registry, "nonexistent")


# ── Retention ────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_prune_drops_only_old_terminal_jobs(registry):
    done = await registry.create("backup", "alpha")
    await registry.start(done.job_id)
    await registry.complete(done.job_id)
    active = await registry.create("backup", "beta")
    await registry.start(active.job_id)

    assert registry.prune(retention=3600) == 0
    assert registry.prune(retention=0) == 1

    with pytest.raises(JobNotFoundError):
        await registry.get(done.job_id)
    assert (await registry.get(active.job_id)).status == JobStatus.running


@pytest.mark.asyncio
async def test_prune_keeps_jobs_with_subscribers(registry):
    job = await registry.create("backup", "alpha")
    await registry.start(job.job_id)
    # Terminal snapshot not yet delivered: the subscriber is still attached.
    gen = registry.subscribe(job.job_id)
    await gen.__anext__()
    await registry.complete(job.job_id)

    assert registry.prune(retention=0) == 0
    last = await gen.__anext__()
    assert last.status == JobStatus.succeeded
    await gen.aclose()
    assert registry.prune(retention=0) == 1


# ── Store ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_store_upsert_and_get(store):
    job = Job(job_id="j1", job_type="backup", target="alpha")
    await store.upsert(job)
    await store.upsert(job.model_copy(update={"status": JobStatus.running, "progress": 10}))

    fetched = await store.get_job("j1")
    assert fetched.status == JobStatus.running
    assert fetched.progress == 10
    assert fetched.started_at == job.started_at


@pytest.mark.asyncio
async def test_store_list_jobs(store):
    now = datetime.now(timezone.utc)
    await store.upsert(Job(job_id="old", job_type="backup", target="a", started_at=now - timedelta(hours=1)))
    await store.upsert(Job(job_id="new", job_type="backup", target="b", started_at=now))
    jobs = await store.list_jobs()
    assert [j.job_id for j in jobs] == ["new", "old"]


@pytest.mark.asyncio
async def test_store_get_nonexistent(store):
    assert await store.get_job("nonexistent") is None


@pytest.mark.asyncio
async def test_registry_persists_every_change(store):
    registry = JobRegistry(store)
    job = await registry.create("restore", "alpha")
    await registry.start(job.job_id)
    await registry.update_progress(job.job_id, 30)
    assert (await store.get_job(job.job_id)).progress == 30


@pytest.mark.asyncio
async def test_pruned_job_still_readable_from_store(store):
    registry = JobRegistry(store)
    job = await registry.create("archive", "alpha")
    await registry.start(job.job_id)
    await registry.complete(job.job_id)
    registry.prune(retention=0)

    fetched = await registry.get(job.job_id)
    assert fetched.status == JobStatus.succeeded
    snaps = await asyncio.wait_for(_collect(registry, job.job_id), timeout=1)
    assert len(snaps) == 1


# ── Runner ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_job_runner_succeeds(registry):
    runner = JobRunner(registry)

    def my_job(progress_callback=None, cancel_event=None):
        progress_callback(30, "copying")
        time.sleep(0.1)

    job = await runner.submit("backup", "alpha", my_job)
    snaps = await asyncio.wait_for(_collect(registry, job.job_id), timeout=2)

    assert snaps[-1].status == JobStatus.succeeded
    progresses = [s.progress for s in snaps if s.progress is not None]
    assert 30 in progresses
    assert progresses == sorted(progresses)
    assert runner.pending_count == 0


@pytest.mark.asyncio
async def test_job_runner_failure(registry):
    runner = JobRunner(registry)

    def failing_job(progress_callback=None, cancel_event=None):
        raise ValueError("boom")

    job = await runner.submit("restore", "alpha", failing_job)
    snaps = await asyncio.wait_for(_collect(registry, job.job_id), timeout=2)
    assert snaps[-1].status == JobStatus.failed
    assert "boom" in snaps[-1].error


@pytest.mark.asyncio
async def test_job_runner_cancel(registry):
    runner = JobRunner(registry)
    started = threading.Event()

    def slow_job(progress_callback=None, cancel_event=None):
        started.set()
        cancel_event.wait(5)
        check_cancelled(cancel_event)

    job = await runner.submit("migration", "alpha", slow_job)
    await asyncio.to_thread(started.wait, 2)
    assert await runner.cancel(job.job_id) is True

    snaps = await asyncio.wait_for(_collect(registry, job.job_id), timeout=2)
    assert snaps[-1].status == JobStatus.failed
    assert snaps[-1].error == "Job was cancelled"
    assert await runner.cancel(job.job_id) is False


@pytest.mark.asyncio
async def test_job_runner_cancel_unknown(registry):
    runner = JobRunner(registry)
    with pytest.raises(JobNotFoundError):
        await runner.cancel("nonexistent")


@pytest.mark.asyncio
async def test_job_runner_queue_full(registry):
    runner = JobRunner(registry, max_concurrent=1, max_queued=1)
    release = threading.Event()

    def blocking_job(progress_callback=None, cancel_event=None):
        release.wait(5)

    await runner.submit("backup", "alpha", blocking_job)
    with pytest.raises(JobQueueFullError):
        await runner.submit("backup", "beta", blocking_job)
    release.set()
    await runner.shutdown()


class _SlowStore(JobStore):
    """Holds the success write open so a cancel can arrive mid-persist."""

    def __init__(self, db_path: str) -> None:
        super().__init__(db_path)
        self.writing_success = asyncio.Event()

    async def upsert(self, job: Job) -> None:
        if job.status is JobStatus.succeeded:
            self.writing_success.set()
            await asyncio.sleep(0.2)
        await super().upsert(job)


@pytest.mark.asyncio
async def test_cancel_during_success_write_keeps_job_succeeded(tmp_path):
    store = _SlowStore(str(tmp_path / "jobs.db"))
    await store.initialize()
    registry = JobRegistry(store)
    runner = JobRunner(registry)

    def quick_job(progress_callback=None, cancel_event=None):
        pass

    job = await runner.submit("backup", "alpha", quick_job)
    await asyncio.wait_for(store.writing_success.wait(), timeout=2)
    task = runner._active_tasks[job.job_id]
    assert await runner.cancel(job.job_id) is True
    await asyncio.gather(task, return_exceptions=True)

    assert (await registry.get(job.job_id)).status == JobStatus.succeeded
    for _ in range(50):
        persisted = await store.get_job(job.job_id)
        if persisted.status is JobStatus.succeeded:
            break
        await asyncio.sleep(0.02)
    assert persisted.status == JobStatus.succeeded
    assert persisted.error is None
    await store.close()


@pytest.mark.asyncio
async def test_rejected_progress_update_is_logged(registry, caplog):
    caplog.set_level(logging.WARNING, logger="hostgate.jobs.runner")
    runner = JobRunner(registry)

    def bad_progress_job(progress_callback=None, cancel_event=None):
        progress_callback("not-a-number")
        time.sleep(0.1)

    job = await runner.submit("backup", "alpha", bad_progress_job)
    snaps = await asyncio.wait_for(_collect(registry, job.job_id), timeout=2)

    assert snaps[-1].status == JobStatus.succeeded
    assert f"Progress update for job {job.job_id} dropped" in caplog.text
