"""Shared helpers for talking to the upstream execution service."""
from __future__ import annotations

from typing import Dict, Mapping, Optional

import httpx

from ..errors import UpstreamTimeoutError, UpstreamUnavailableError

# Caller headers that survive the hop.  Credentials never do.
FORWARDED_REQUEST_HEADERS = ("content-type", "accept", "content-length")

# Upstream headers relayed back to the caller.
PASSTHROUGH_RESPONSE_HEADERS = (
    "content-type",
    "content-disposition",
    "content-encoding",
    "cache-control",
    "etag",
    "last-modified",
)


def create_upstream_client(settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """Build the pooled client shared by the unary and stream proxies."""
    return httpx.AsyncClient(
        base_url=settings.upstream_base_url,
        timeout=httpx.Timeout(settings.request_timeout, connect=settings.connect_timeout),
        limits=httpx.Limits(max_connections=settings.max_upstream_connections),
        transport=transport,
    )


def upstream_target(path: str, query: str) -> str:
    return f"{path}?{query}" if query else path


def forwarded_headers(incoming: Mapping[str, str], injected: Mapping[str, str]) -> Dict[str, str]:
    headers = {name: incoming[name] for name in FORWARDED_REQUEST_HEADERS if incoming.get(name)}
    headers.update(injected)
    return headers


def passthrough_headers(upstream: Mapping[str, str]) -> Dict[str, str]:
    return {name: upstream[name] for name in PASSTHROUGH_RESPONSE_HEADERS if upstream.get(name)}


def translate_transport_error(exc: httpx.TransportError, target: str) -> UpstreamUnavailableError:
    """Map an httpx failure to the gateway taxonomy (timeouts -> 504, rest -> 502)."""
    if isinstance(exc, httpx.TimeoutException):
        return UpstreamTimeoutError(f"Upstream timed out: {target}")
    return UpstreamUnavailableError(f"Upstream unavailable: {target}")
