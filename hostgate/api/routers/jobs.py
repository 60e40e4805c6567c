"""Job endpoints served by the job service (the gateway's upstream side)."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sse_starlette.sse import EventSourceResponse

from ...jobs.registry import JobRegistry
from ...jobs.runner import JobRunner
from ..deps.auth import authenticate
from ..deps.providers import get_job_registry, get_job_runner
from ..schemas.envelope import ApiResponse

router = APIRouter(prefix="/api/v1/jobs", tags=["jobs"], dependencies=[Depends(authenticate)])


@router.get("")
async def list_jobs(
    limit: int = Query(50, ge=1, le=500),
    registry: JobRegistry = Depends(get_job_registry),
) -> ApiResponse:
    jobs = await registry.list_jobs(limit=limit)
    return ApiResponse.success([j.model_dump(mode="json") for j in jobs])


@router.get("/{job_id}")
async def get_job(
    job_id: str,
    registry: JobRegistry = Depends(get_job_registry),
) -> ApiResponse:
    job = await registry.get(job_id)
    return ApiResponse.success(job.model_dump(mode="json"))


@router.get("/{job_id}/stream")
async def stream_job(
    job_id: str,
    registry: JobRegistry = Depends(get_job_registry),
):
    """Push one ``status`` event per snapshot until the job is terminal."""
    # Unknown ids are a plain 404 before the event stream starts.
    await registry.get(job_id)

    async def _generate():
        async for job in registry.subscribe(job_id):
            yield {"event": "status", "data": job.model_dump_json()}

    return EventSourceResponse(_generate())


@router.post("/{job_id}/cancel")
async def cancel_job(
    job_id: str,
    runner: JobRunner = Depends(get_job_runner),
) -> ApiResponse:
    cancelled = await runner.cancel(job_id)
    return ApiResponse.success({"cancelled": cancelled})
