"""Authenticated reverse proxy: auth, classification and the two proxies."""
from .auth import AuthGateway, RequestContext
from .credentials import CredentialKind, CredentialStore, InMemoryCredentialStore, Principal
from .routing import RouteTable, StreamRoute, UnaryRoute, classify
from .stream import EventStreamRelay, SessionState, StreamProxy
from .unary import UnaryProxy
from .upstream import create_upstream_client

__all__ = [
    "AuthGateway",
    "CredentialKind",
    "CredentialStore",
    "EventStreamRelay",
    "InMemoryCredentialStore",
    "Principal",
    "RequestContext",
    "RouteTable",
    "SessionState",
    "StreamProxy",
    "StreamRoute",
    "UnaryProxy",
    "UnaryRoute",
    "classify",
    "create_upstream_client",
]
