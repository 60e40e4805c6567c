"""Request classification: unary vs. stream.

``classify`` is pure: it looks at the method, the path and the declared
``Accept`` value only, never the body, and returns a tagged route consumed by
the single dispatch point in ``routers.proxy``.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Mapping, Optional, Pattern, Tuple, Union
from urllib.parse import quote, unquote

EVENT_STREAM_MEDIA_TYPE = "text/event-stream"
STREAM_SUFFIX = "/stream"

_SEGMENT_SAFE = ":@!$&'()*+,;=-._~"
_DOT_SEGMENTS = frozenset({".", ".."})


@dataclass(frozen=True)
class LiveResource:
    """A live-data resource whose plain GET is served by a dedicated stream path."""

    name: str
    pattern: Pattern[str]
    stream_path: str
    fallback_path: Optional[str] = None


# Matched against the path relative to the downstream prefix.
LIVE_RESOURCES: Tuple[LiveResource, ...] = (
    LiveResource(
        name="console",
        pattern=re.compile(r"^servers/(?P<name>[^/]+)/console$"),
        stream_path="servers/{name}/console/stream",
    ),
    LiveResource(
        name="performance",
        pattern=re.compile(r"^servers/(?P<name>[^/]+)/performance/stream$"),
        stream_path="servers/{name}/performance/stream",
        fallback_path="servers/{name}/performance/streaming",
    ),
)


@dataclass(frozen=True)
class UnaryRoute:
    upstream_path: str


@dataclass(frozen=True)
class StreamRoute:
    upstream_path: str
    reason: str
    fallback_path: Optional[str] = None


Route = Union[UnaryRoute, StreamRoute]


def has_dot_segments(path: str) -> bool:
    """True when *path* holds a ``.`` or ``..`` segment, raw or percent-encoded.

    Such paths are never matched against the public allow-list nor forwarded,
    since the upstream side may collapse them into a different resource.
    """
    seen = None
    while path != seen:
        if any(segment in _DOT_SEGMENTS for segment in path.replace("\\", "/").split("/")):
            return True
        seen, path = path, unquote(path)
    return False


@dataclass(frozen=True)
class RouteTable:
    """Downstream -> upstream prefix rewrites plus known live resources."""

    rewrites: Mapping[str, str]
    live_resources: Tuple[LiveResource, ...] = field(default=LIVE_RESOURCES)

    def rewrite(self, path: str) -> Tuple[str, str, str]:
        """Return ``(downstream_prefix, upstream_prefix, remainder)`` for *path*.

        The longest matching prefix wins.  Raises ``LookupError`` when no
        prefix matches or the path contains dot segments.
        """
        if has_dot_segments(path):
            raise LookupError(f"No upstream mapping for {path}")
        for prefix in sorted(self.rewrites, key=len, reverse=True):
            if path == prefix or path.startswith(prefix.rstrip("/") + "/"):
                remainder = path[len(prefix):].lstrip("/")
                return prefix, self.rewrites[prefix], remainder
        raise LookupError(f"No upstream mapping for {path}")


def _quote_segment(segment: str) -> str:
    if segment in _DOT_SEGMENTS:
        return segment.replace(".", "%2E")
    return quote(segment, safe=_SEGMENT_SAFE)


def _join(upstream_prefix: str, remainder: str) -> str:
    base = upstream_prefix.rstrip("/")
    if not remainder:
        return base or "/"
    return base + "/" + "/".join(_quote_segment(s) for s in remainder.split("/"))


def accepts_event_stream(accept: Optional[str]) -> bool:
    if not accept:
        return False
    media_types = (part.split(";", 1)[0].strip().lower() for part in accept.split(","))
    return EVENT_STREAM_MEDIA_TYPE in media_types


def classify(method: str, path: str, accept: Optional[str], table: RouteTable) -> Route:
    """Classify one inbound request.

    Only GET requests can stream; a GET is a stream when the client accepts
    ``text/event-stream``, when the path ends with ``/stream``, or when it
    names a known live resource.  Everything else is unary.
    """
    _, upstream_prefix, remainder = table.rewrite(path)
    upstream_path = _join(upstream_prefix, remainder)

    if method.upper() != "GET":
        return UnaryRoute(upstream_path)

    for resource in table.live_resources:
        match = resource.pattern.match(remainder)
        if match is None:
            continue
        params = match.groupdict()
        fallback = None
        if resource.fallback_path is not None:
            fallback = _join(upstream_prefix, resource.fallback_path.format(**params))
        return StreamRoute(
            upstream_path=_join(upstream_prefix, resource.stream_path.format(**params)),
            reason=f"live:{resource.name}",
            fallback_path=fallback,
        )

    if path.rstrip("/").endswith(STREAM_SUFFIX):
        return StreamRoute(upstream_path, reason="suffix")
    if accepts_event_stream(accept):
        return StreamRoute(upstream_path, reason="accept")
    return UnaryRoute(upstream_path)
