"""One request in, one response out."""
from __future__ import annotations

import logging
from typing import AsyncIterator

import httpx
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import Response, StreamingResponse

from ..errors import StreamAbortedError
from .auth import AuthGateway, RequestContext
from .routing import UnaryRoute
from .upstream import forwarded_headers, passthrough_headers, translate_transport_error, upstream_target

logger = logging.getLogger(__name__)

_BODYLESS_METHODS = {"GET", "HEAD", "DELETE", "OPTIONS"}
_EMPTY_STATUSES = {204, 205, 304}


class UnaryProxy:
    """Forwards a single request and relays exactly one response.

    Method, rewritten path, query string and body pass through verbatim.
    Request and response bodies are streamed, never held in memory whole.
    """

    def __init__(self, client: httpx.AsyncClient, auth: AuthGateway) -> None:
        self._client = client
        self._auth = auth

    async def forward(self, request: Request, route: UnaryRoute, context: RequestContext) -> Response:
        method = request.method.upper()
        target = upstream_target(route.upstream_path, request.url.query)
        headers = forwarded_headers(request.headers, self._auth.upstream_headers(context))
        content = None if method in _BODYLESS_METHODS else request.stream()

        upstream_request = self._client.build_request(method, target, headers=headers, content=content)
        try:
            upstream = await self._client.send(upstream_request, stream=True)
        except httpx.TransportError as exc:
            logger.warning("Upstream %s %s failed: %s", method, route.upstream_path, type(exc).__name__)
            raise translate_transport_error(exc, route.upstream_path) from exc

        logger.debug("%s %s -> %d", method, route.upstream_path, upstream.status_code)
        out_headers = passthrough_headers(upstream.headers)
        if upstream.status_code in _EMPTY_STATUSES or method == "HEAD":
            await upstream.aclose()
            return Response(status_code=upstream.status_code, headers=out_headers)

        return StreamingResponse(
            self._relay_body(upstream, route.upstream_path),
            status_code=upstream.status_code,
            headers=out_headers,
            background=BackgroundTask(upstream.aclose),
        )

    @staticmethod
    async def _relay_body(upstream: httpx.Response, path: str) -> AsyncIterator[bytes]:
        try:
            async for chunk in upstream.aiter_raw():
                yield chunk
        except httpx.TransportError as exc:
            logger.warning("Upstream body for %s aborted: %s", path, type(exc).__name__)
            raise StreamAbortedError(f"Upstream aborted response body: {path}") from exc
        finally:
            await upstream.aclose()
