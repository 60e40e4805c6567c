"""Authentication dependency for protected endpoints."""
from __future__ import annotations

from fastapi import Depends, Request

from ..gateway.auth import AuthGateway, RequestContext
from .providers import get_auth_gateway


async def authenticate(
    request: Request,
    gateway: AuthGateway = Depends(get_auth_gateway),
) -> RequestContext:
    """FastAPI dependency that runs the auth gateway for this request.

    Raises
    ------
    UnauthorizedError
        No session, API key or bearer token was presented (401).
    ForbiddenError
        A credential was presented but is invalid or revoked (403).
    """
    return await gateway.authenticate(request.url.path, request.headers, request.cookies)
