"""Gateway application factory and server entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..utils.logging import LogBuffer, configure_logging
from .config import ApiSettings
from .errors import register_error_handlers
from .gateway.auth import AuthGateway
from .gateway.credentials import CredentialStore
from .gateway.routing import RouteTable
from .gateway.stream import StreamProxy
from .gateway.unary import UnaryProxy
from .gateway.upstream import create_upstream_client

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    settings: ApiSettings = app.state.settings
    configure_logging(settings.log_level, settings.log_format)
    logger.info(
        "Starting hostgate gateway on %s:%s -> %s",
        settings.host, settings.port, settings.upstream_base_url,
    )
    if settings.require_upstream_key and not settings.upstream_key:
        logger.error("HOSTGATE_UPSTREAM_API_KEY is not set; proxied routes will fail with 500")

    app.state.log_buffer.attach("hostgate")

    yield

    await app.state.upstream_client.aclose()
    app.state.log_buffer.detach()
    logger.info("Shutting down hostgate gateway")


def create_app(
    settings: Optional[ApiSettings] = None,
    *,
    upstream_transport: Optional[httpx.AsyncBaseTransport] = None,
    credential_store: Optional[CredentialStore] = None,
) -> FastAPI:
    """Build the gateway application.

    Every collaborator is created here and attached to ``app.state``;
    ``upstream_transport`` and ``credential_store`` replace the real ones in
    tests.
    """
    if settings is None:
        settings = ApiSettings()

    app = FastAPI(
        title="Hostgate Gateway",
        description="Authenticated gateway in front of the game-server host execution service.",
        version=__version__,
        lifespan=_lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    client = create_upstream_client(settings, transport=upstream_transport)
    auth = AuthGateway.from_settings(settings, store=credential_store)
    app.state.service_name = "gateway"
    app.state.settings = settings
    app.state.upstream_client = client
    app.state.auth_gateway = auth
    app.state.route_table = RouteTable(settings.path_rewrites)
    app.state.log_buffer = LogBuffer(maxlen=500)
    app.state.unary_proxy = UnaryProxy(client, auth)
    app.state.stream_proxy = StreamProxy(
        client,
        auth,
        connect_timeout=settings.connect_timeout,
        open_timeout=settings.stream_open_timeout,
    )

    # CORS
    origins = [o.strip() for o in settings.cors_origins.split(",")]
    allow_creds = "*" not in origins
    if not allow_creds:
        logger.warning(
            "CORS origins contain '*'. Credentials will NOT be allowed. "
            "Set explicit origins for credentialed cross-origin requests."
        )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=allow_creds,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    from .routers import gateway_routers

    for router in gateway_routers():
        app.include_router(router)

    return app


def run_server() -> None:
    """CLI entry point: ``python -m hostgate.api.main``."""
    import uvicorn

    settings = ApiSettings()
    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run_server()
