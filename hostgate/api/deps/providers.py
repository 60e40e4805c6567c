"""Dependency providers for FastAPI ``Depends()``.

Every component is built by the app factory and parked on ``app.state``, so
several apps with different settings can live in one process (tests do).
"""
from __future__ import annotations

from fastapi import Request

from ...jobs.registry import JobRegistry
from ...jobs.runner import JobRunner
from ...utils.logging import LogBuffer
from ..config import ApiSettings
from ..gateway.auth import AuthGateway
from ..gateway.routing import RouteTable
from ..gateway.stream import StreamProxy
from ..gateway.unary import UnaryProxy


def get_settings(request: Request) -> ApiSettings:
    return request.app.state.settings


def get_auth_gateway(request: Request) -> AuthGateway:
    return request.app.state.auth_gateway


def get_route_table(request: Request) -> RouteTable:
    return request.app.state.route_table


def get_unary_proxy(request: Request) -> UnaryProxy:
    return request.app.state.unary_proxy


def get_stream_proxy(request: Request) -> StreamProxy:
    return request.app.state.stream_proxy


def get_log_buffer(request: Request) -> LogBuffer:
    return request.app.state.log_buffer


def get_job_registry(request: Request) -> JobRegistry:
    return request.app.state.job_registry


def get_job_runner(request: Request) -> JobRunner:
    return request.app.state.job_runner
