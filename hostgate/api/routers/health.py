"""Liveness endpoint shared by the gateway and the job service."""
from __future__ import annotations

from fastapi import APIRouter, Request

from ... import __version__
from ..schemas.envelope import ApiResponse

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("")
async def health(request: Request) -> ApiResponse:
    """Public liveness check.  Never touches the upstream."""
    return ApiResponse.success({
        "status": "ok",
        "service": request.app.state.service_name,
        "version": __version__,
    })
