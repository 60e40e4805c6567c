"""Auth gateway: decides per request whether and how a caller is admitted.

Decision order, first match wins:

1. public allow-list path            -> anonymous context
2. session cookie resolving to a principal -> session context
3. credential header (api key, then bearer) -> principal, or ``ForbiddenError``
4. nothing presented                 -> ``UnauthorizedError``

The caller's credential stops here.  Upstream requests carry the
server-held shared secret plus the principal's subject instead.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional

from ..errors import ForbiddenError, GatewayMisconfiguredError, UnauthorizedError
from .credentials import CredentialStore, InMemoryCredentialStore, Principal
from .routing import has_dot_segments

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestContext:
    """Outcome of authentication, handed explicitly to the proxies."""

    principal: Optional[Principal] = None
    public: bool = False


def _header_value(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _bearer_token(headers: Mapping[str, str]) -> Optional[str]:
    """Token from an ``Authorization: Bearer`` header, None when absent.

    Raises ``ForbiddenError`` for any other scheme or an empty token.
    """
    value = _header_value(headers, "authorization")
    if value is None:
        return None
    scheme, _, token = value.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise ForbiddenError("Unsupported authorization scheme.")
    return token.strip()


class AuthGateway:
    """Admits or rejects inbound requests and builds upstream credentials."""

    def __init__(
        self,
        store: CredentialStore,
        *,
        upstream_key: str = "",
        require_upstream_key: bool = True,
        public_paths: Iterable[str] = (),
        session_cookie: str = "auth_token",
        api_key_header: str = "X-Api-Key",
        principal_header: str = "X-Forwarded-User",
    ) -> None:
        self._store = store
        self._upstream_key = upstream_key
        self._require_upstream_key = require_upstream_key
        self._public_exact = {p for p in public_paths if not p.endswith("/")}
        self._public_prefixes = tuple(p for p in public_paths if p.endswith("/"))
        self._session_cookie = session_cookie
        self._api_key_header = api_key_header
        self._principal_header = principal_header

    @classmethod
    def from_settings(cls, settings, store: Optional[CredentialStore] = None) -> "AuthGateway":
        return cls(
            store or InMemoryCredentialStore.from_settings(settings),
            upstream_key=settings.upstream_key,
            require_upstream_key=settings.require_upstream_key,
            public_paths=settings.public_paths,
            session_cookie=settings.session_cookie,
            api_key_header=settings.api_key_header,
            principal_header=settings.principal_header,
        )

    @property
    def api_key_header(self) -> str:
        return self._api_key_header

    def is_public(self, path: str) -> bool:
        if has_dot_segments(path):
            return False
        return path in self._public_exact or path.startswith(self._public_prefixes)

    async def authenticate(
        self,
        path: str,
        headers: Mapping[str, str],
        cookies: Mapping[str, str],
    ) -> RequestContext:
        """Apply the decision order and return the request context.

        Raises
        ------
        UnauthorizedError
            No credential was presented on a protected path.
        ForbiddenError
            A credential was presented but did not validate.
        """
        if self.is_public(path):
            return RequestContext(public=True)

        session = cookies.get(self._session_cookie)
        if session:
            principal = await self._store.resolve_session(session)
            if principal is not None:
                return RequestContext(principal=principal)
            logger.info("Ignoring unknown session cookie on %s", path)

        api_key = _header_value(headers, self._api_key_header.lower())
        if api_key is not None:
            principal = await self._store.validate_api_key(api_key)
            if principal is None:
                logger.warning("Rejected api key credential on %s", path)
                raise ForbiddenError("Invalid API key.")
            return RequestContext(principal=principal)

        token = _bearer_token(headers)
        if token is not None:
            principal = await self._store.validate_bearer(token)
            if principal is None:
                logger.warning("Rejected bearer credential on %s", path)
                raise ForbiddenError("Invalid bearer token.")
            return RequestContext(principal=principal)

        raise UnauthorizedError("Missing credentials.")

    def upstream_headers(self, context: RequestContext) -> Dict[str, str]:
        """Headers identifying the gateway (and the caller) to the upstream.

        Raises ``GatewayMisconfiguredError`` when the shared secret is
        required but not configured.
        """
        if self._require_upstream_key and not self._upstream_key:
            logger.error("Upstream API key is required but not configured")
            raise GatewayMisconfiguredError("Missing upstream API key")
        headers: Dict[str, str] = {}
        if self._upstream_key:
            headers[self._api_key_header] = self._upstream_key
        if context.principal is not None:
            headers[self._principal_header] = context.principal.subject
        return headers
