"""Recent gateway log records."""
from __future__ import annotations

import time

from fastapi import APIRouter, Depends, Query

from ...utils.logging import LogBuffer
from ..deps.auth import authenticate
from ..deps.providers import get_log_buffer
from ..schemas.envelope import ApiResponse

router = APIRouter(prefix="/api/gateway/logs", tags=["logs"], dependencies=[Depends(authenticate)])


@router.get("")
async def get_logs(
    last_n: int = Query(100, ge=1, le=500),
    buffer: LogBuffer = Depends(get_log_buffer),
) -> ApiResponse:
    t0 = time.monotonic()
    entries = buffer.entries(last_n)
    elapsed = (time.monotonic() - t0) * 1000
    return ApiResponse.success(entries, elapsed_ms=elapsed)
