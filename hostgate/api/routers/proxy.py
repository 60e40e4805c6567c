"""Single dispatch point for everything forwarded to the upstream service."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.responses import Response

from ..deps.auth import authenticate
from ..deps.providers import get_route_table, get_stream_proxy, get_unary_proxy
from ..gateway.auth import RequestContext
from ..gateway.routing import RouteTable, StreamRoute, classify
from ..gateway.stream import StreamProxy
from ..gateway.unary import UnaryProxy
from ..schemas.envelope import ApiResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["proxy"])

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


@router.api_route("/api/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
async def proxy(
    path: str,
    request: Request,
    context: RequestContext = Depends(authenticate),
    table: RouteTable = Depends(get_route_table),
    unary: UnaryProxy = Depends(get_unary_proxy),
    stream: StreamProxy = Depends(get_stream_proxy),
) -> Response:
    try:
        route = classify(request.method, request.url.path, request.headers.get("accept"), table)
    except LookupError as exc:
        return JSONResponse(status_code=404, content=ApiResponse.fail(str(exc)).model_dump())

    logger.debug("%s %s classified as %s", request.method, request.url.path, type(route).__name__)
    if isinstance(route, StreamRoute):
        return await stream.open(request, route, context)
    return await unary.forward(request, route, context)
