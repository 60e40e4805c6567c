"""Incremental event-frame splitting for ``text/event-stream`` bodies."""
from __future__ import annotations

import json
from typing import Any, AsyncIterable, AsyncIterator, Dict, Optional

from sse_starlette.sse import ServerSentEvent

# A frame ends at the first blank line, whichever line ending is used.
_TERMINATORS = (b"\r\n\r\n", b"\n\n", b"\r\r")


def _frame_end(buffer: bytearray) -> int:
    """Index just past the earliest frame terminator, or -1."""
    best = -1
    for term in _TERMINATORS:
        idx = buffer.find(term)
        if idx != -1 and (best == -1 or idx + len(term) < best):
            best = idx + len(term)
    return best


async def iter_frames(chunks: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
    """Regroup arbitrary byte chunks into complete event frames.

    Each yielded value ends with its blank-line terminator, so frames are
    relayed byte-for-byte.  An unterminated tail is flushed when the source
    ends.
    """
    buffer = bytearray()
    async for chunk in chunks:
        if not chunk:
            continue
        buffer.extend(chunk)
        while True:
            end = _frame_end(buffer)
            if end == -1:
                break
            frame = bytes(buffer[:end])
            del buffer[:end]
            yield frame
    if buffer:
        yield bytes(buffer)


def error_frame(message: str, code: Optional[str] = None) -> bytes:
    """Encode the terminal ``error`` event sent when upstream fails mid-stream."""
    payload: Dict[str, Any] = {"error": message}
    if code:
        payload["code"] = code
    return ServerSentEvent(data=json.dumps(payload), event="error").encode()
