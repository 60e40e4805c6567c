"""Route modules for the two applications."""
from __future__ import annotations

from typing import List

from fastapi import APIRouter


def gateway_routers() -> List[APIRouter]:
    """Routers of the gateway app.  The proxy catch-all must come last."""
    from . import health, logs, proxy

    return [health.router, logs.router, proxy.router]


def service_routers() -> List[APIRouter]:
    """Routers of the job service app."""
    from . import health, jobs

    return [health.router, jobs.router]
