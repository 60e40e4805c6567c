"""Shared test fixtures for the hostgate test suite."""
from __future__ import annotations

import asyncio
import json as _json
from typing import Any, Callable, Dict, Iterable, List, Optional

import httpx
import pytest

UPSTREAM_KEY = "upstream-shared-secret"
CALLER_KEY = "caller-key-1"
REVOKED_KEY = "caller-key-revoked"
BEARER_TOKEN = "bearer-token-1"
SESSION_TOKEN = "session-token-1"


@pytest.fixture(autouse=True)
def _reset_sse_app_status():
    """sse-starlette keeps a process-wide exit event bound to the first loop."""
    from sse_starlette.sse import AppStatus

    if hasattr(AppStatus, "should_exit_event"):
        AppStatus.should_exit_event = None
    yield


# ── Fake upstream ────────────────────────────────────────────────────


class FakeByteStream(httpx.AsyncByteStream):
    """Upstream body that yields *chunks*, then ends, fails or idles forever.

    Responses built from ``json=`` or ``content=`` arrive already read, which
    the proxies cannot relay with ``aiter_raw``; every fake body goes through here.
    """

    def __init__(
        self,
        chunks: Iterable[bytes],
        *,
        error: Optional[Exception] = None,
        endless: bool = False,
        delay: float = 0.0,
    ) -> None:
        self.chunks = list(chunks)
        self.error = error
        self.endless = endless
        self.delay = delay
        self.closed = False
        self.chunks_read = 0

    async def __aiter__(self):
        for chunk in self.chunks:
            if self.delay:
                await asyncio.sleep(self.delay)
            self.chunks_read += 1
            yield chunk
        if self.error is not None:
            raise self.error
        while self.endless:
            await asyncio.sleep(0.01)
            self.chunks_read += 1
            yield b": keep-alive\n\n"

    async def aclose(self) -> None:
        self.closed = True


class FakeUpstream:
    """Records every request reaching the upstream and answers via ``handler``."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.handler: Callable = lambda request: upstream_reply(200, json={"ok": True})

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.handler(request)
        if asyncio.iscoroutine(response):
            response = await response
        return response

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


def upstream_reply(
    status_code: int = 200,
    *,
    json: Any = None,
    text: Optional[str] = None,
    content: bytes = b"",
    headers: Optional[Dict[str, str]] = None,
) -> httpx.Response:
    """An unread upstream response, the way a real streamed ``send`` returns one."""
    reply_headers = dict(headers or {})
    if json is not None:
        content = _json.dumps(json).encode()
        reply_headers.setdefault("content-type", "application/json")
    elif text is not None:
        content = text.encode()
        reply_headers.setdefault("content-type", "text/plain; charset=utf-8")
    return httpx.Response(status_code, headers=reply_headers, stream=FakeByteStream([content] if content else []))


def event_stream_response(stream: FakeByteStream, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, headers={"content-type": "text/event-stream"}, stream=stream)


# ── App fixtures ─────────────────────────────────────────────────────


@pytest.fixture
def settings(tmp_path):
    from hostgate.api.config import ApiSettings

    return ApiSettings(
        upstream_base_url="http://upstream.test",
        upstream_api_key=UPSTREAM_KEY,
        api_keys={"ops-bot": CALLER_KEY, "retired-bot": REVOKED_KEY},
        bearer_tokens={"alice": BEARER_TOKEN},
        sessions={"bob": SESSION_TOKEN},
        revoked_credentials=[REVOKED_KEY],
        stream_open_timeout=0.5,
        job_db_path=str(tmp_path / "jobs.db"),
        job_abandon_seconds=5.0,
    )


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def app(settings, upstream):
    """Gateway app whose upstream is the in-process ``FakeUpstream``."""
    from hostgate.api.main import create_app

    return create_app(settings, upstream_transport=httpx.MockTransport(upstream))


@pytest.fixture
async def client(app):
    """Async HTTP client bound to the gateway app."""
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
    ) as ac:
        yield ac
    await app.state.upstream_client.aclose()


@pytest.fixture
def auth_headers():
    return {"X-Api-Key": CALLER_KEY}
