"""Long-lived event stream bridging.

A stream session pairs one downstream connection with one upstream
``text/event-stream`` response for the lifetime of a single HTTP exchange::

    opening -> streaming -> closed_clean | closed_error | closed_client_abort

Opening happens before any downstream byte is sent, so an unreachable
upstream surfaces as a plain error response.  Once streaming, two tasks share
one cancel scope: the relay task moves frames upstream -> downstream, one
frame written before the next is read, and the watcher task waits for the
client to disconnect.  Whichever finishes first cancels the other, and the
upstream response is always closed on the way out.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import time
from typing import Dict

import anyio
import httpx
from starlette.requests import ClientDisconnect, Request
from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from ..errors import StreamAbortedError, UpstreamTimeoutError, UpstreamUnavailableError
from .auth import AuthGateway, RequestContext
from .frames import error_frame, iter_frames
from .routing import EVENT_STREAM_MEDIA_TYPE, StreamRoute
from .upstream import passthrough_headers, translate_transport_error, upstream_target

logger = logging.getLogger(__name__)

STREAM_HEADERS: Dict[str, str] = {
    "cache-control": "no-cache",
    "connection": "keep-alive",
    "x-accel-buffering": "no",
}


class SessionState(str, enum.Enum):
    opening = "opening"
    streaming = "streaming"
    closed_clean = "closed_clean"
    closed_error = "closed_error"
    closed_client_abort = "closed_client_abort"


class EventStreamRelay(Response):
    """ASGI response that pumps an open upstream stream to the client."""

    media_type = EVENT_STREAM_MEDIA_TYPE

    def __init__(self, upstream: httpx.Response, path: str) -> None:
        self.upstream = upstream
        self.path = path
        self.status_code = upstream.status_code
        self.background = None
        self.state = SessionState.opening
        self.frames_sent = 0
        headers = passthrough_headers(upstream.headers)
        # Body is relayed decoded and always as an event stream.
        headers.pop("content-type", None)
        headers.pop("content-encoding", None)
        headers.update(STREAM_HEADERS)
        self.init_headers(headers)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        started = time.monotonic()
        try:
            await send({
                "type": "http.response.start",
                "status": self.status_code,
                "headers": self.raw_headers,
            })
            self.state = SessionState.streaming
            async with anyio.create_task_group() as tg:
                tg.start_soon(self._watch_client, receive, tg.cancel_scope)
                tg.start_soon(self._relay, send, tg.cancel_scope)
        except (OSError, ClientDisconnect):
            self._mark_client_abort()
        finally:
            with anyio.CancelScope(shield=True):
                await self.upstream.aclose()
            duration = time.monotonic() - started
            logger.info(
                "Stream %s closed: %s after %d frames in %.1fs",
                self.path, self.state.value, self.frames_sent, duration,
                extra={"session": {
                    "path": self.path,
                    "state": self.state.value,
                    "frames": self.frames_sent,
                    "duration_s": round(duration, 3),
                }},
            )

    async def _relay(self, send: Send, cancel_scope: anyio.CancelScope) -> None:
        try:
            await self._pump(send)
        finally:
            cancel_scope.cancel()

    async def _pump(self, send: Send) -> None:
        try:
            async for frame in iter_frames(self.upstream.aiter_bytes()):
                if not await self._write(send, frame):
                    return
                self.frames_sent += 1
        except httpx.TransportError as exc:
            self.state = SessionState.closed_error
            aborted = StreamAbortedError(f"Upstream stream {self.path} aborted")
            logger.warning("%s after %d frames: %s", aborted, self.frames_sent, type(exc).__name__)
            if not await self._write(send, error_frame(str(aborted), code="upstream_aborted")):
                return
        else:
            self.state = SessionState.closed_clean
        await self._write(send, b"", more_body=False)

    async def _watch_client(self, receive: Receive, cancel_scope: anyio.CancelScope) -> None:
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                self._mark_client_abort()
                cancel_scope.cancel()
                return

    async def _write(self, send: Send, body: bytes, more_body: bool = True) -> bool:
        try:
            await send({"type": "http.response.body", "body": body, "more_body": more_body})
        except (OSError, ClientDisconnect):
            self._mark_client_abort()
            return False
        return True

    def _mark_client_abort(self) -> None:
        if self.state in (SessionState.opening, SessionState.streaming):
            self.state = SessionState.closed_client_abort


class StreamProxy:
    """Opens upstream event streams and hands them to ``EventStreamRelay``."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        auth: AuthGateway,
        connect_timeout: float = 5.0,
        open_timeout: float = 15.0,
    ) -> None:
        self._client = client
        self._auth = auth
        self._connect_timeout = connect_timeout
        self._open_timeout = open_timeout

    async def open(self, request: Request, route: StreamRoute, context: RequestContext) -> Response:
        """Open the upstream stream for *route*.

        Raises ``UpstreamUnavailableError`` / ``UpstreamTimeoutError`` before
        anything is sent downstream.  Upstream 4xx answers are relayed as a
        plain response with the same status.
        """
        headers = self._auth.upstream_headers(context)
        headers["Accept"] = EVENT_STREAM_MEDIA_TYPE
        query = request.url.query

        path = route.upstream_path
        upstream = await self._connect(path, query, headers)
        if upstream.status_code == 404 and route.fallback_path:
            await upstream.aclose()
            path = route.fallback_path
            upstream = await self._connect(path, query, headers)

        if upstream.status_code >= 500:
            await upstream.aclose()
            logger.warning("Upstream refused stream %s with %d", path, upstream.status_code)
            raise UpstreamUnavailableError(f"Upstream refused stream {path}: HTTP {upstream.status_code}")
        if upstream.status_code >= 400:
            try:
                body = await upstream.aread()
            finally:
                await upstream.aclose()
            return Response(body, status_code=upstream.status_code, headers=passthrough_headers(upstream.headers))

        logger.info("Stream %s opened (%s)", path, route.reason)
        return EventStreamRelay(upstream, path)

    async def _connect(self, path: str, query: str, headers: Dict[str, str]) -> httpx.Response:
        target = upstream_target(path, query)
        upstream_request = self._client.build_request(
            "GET",
            target,
            headers=headers,
            timeout=httpx.Timeout(None, connect=self._connect_timeout),
        )
        try:
            return await asyncio.wait_for(
                self._client.send(upstream_request, stream=True),
                timeout=self._open_timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.warning("Upstream stream %s did not open within %.0fs", path, self._open_timeout)
            raise UpstreamTimeoutError(f"Upstream timed out: {path}") from exc
        except httpx.TransportError as exc:
            logger.warning("Upstream stream %s failed to open: %s", path, type(exc).__name__)
            raise translate_transport_error(exc, path) from exc
