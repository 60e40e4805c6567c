"""Custom exceptions and FastAPI error handler registration."""
from __future__ import annotations

import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..jobs.registry import InvalidJobTransitionError, JobNotFoundError
from ..jobs.runner import JobQueueFullError
from .schemas.envelope import ApiResponse

logger = logging.getLogger(__name__)


# ── Custom Exceptions ────────────────────────────────────────────────


class UnauthorizedError(Exception):
    """No credential presented on a protected path."""


class ForbiddenError(Exception):
    """Credential presented but invalid, expired or revoked."""


class GatewayMisconfiguredError(Exception):
    """Required gateway configuration (e.g. the upstream key) is missing."""


class UpstreamUnavailableError(Exception):
    """Upstream could not be reached, or failed before producing data."""


class UpstreamTimeoutError(UpstreamUnavailableError):
    """Upstream did not answer within the configured timeout."""


class StreamAbortedError(Exception):
    """Upstream or downstream closed mid-stream after data had flowed.

    Never mapped to a status: by the time it happens the response has
    already started.
    """


# ── Error → HTTP mapping ────────────────────────────────────────────

_EXCEPTION_STATUS = {
    UnauthorizedError: 401,
    ForbiddenError: 403,
    JobNotFoundError: 404,
    InvalidJobTransitionError: 409,
    JobQueueFullError: 429,
    GatewayMisconfiguredError: 500,
    UpstreamUnavailableError: 502,
    UpstreamTimeoutError: 504,
}

_EXTRA_HEADERS = {
    UnauthorizedError: {"WWW-Authenticate": "Bearer"},
}


def _make_handler(exc_cls: type, status_code: int):
    """Create a handler that wraps an exception in ApiResponse."""
    headers = _EXTRA_HEADERS.get(exc_cls)

    async def _handler(request: Request, exc: Exception) -> JSONResponse:
        resp = ApiResponse.fail(str(exc))
        return JSONResponse(status_code=status_code, content=resp.model_dump(), headers=headers)

    return _handler


def register_error_handlers(app: FastAPI) -> None:
    """Register custom exception handlers on the FastAPI app."""
    for exc_cls, status in _EXCEPTION_STATUS.items():
        app.add_exception_handler(exc_cls, _make_handler(exc_cls, status))

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled error: %s\n%s", exc, traceback.format_exc())
        resp = ApiResponse.fail("Internal server error")
        return JSONResponse(status_code=500, content=resp.model_dump())
