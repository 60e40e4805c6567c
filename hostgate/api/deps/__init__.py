"""Dependency injection providers."""
from .auth import authenticate
from .providers import (
    get_auth_gateway,
    get_job_registry,
    get_job_runner,
    get_log_buffer,
    get_route_table,
    get_settings,
    get_stream_proxy,
    get_unary_proxy,
)

__all__ = [
    "authenticate",
    "get_auth_gateway",
    "get_job_registry",
    "get_job_runner",
    "get_log_buffer",
    "get_route_table",
    "get_settings",
    "get_stream_proxy",
    "get_unary_proxy",
]
