"""Credential validation seam.

Credential storage is owned elsewhere; the gateway only asks a
``CredentialStore`` whether a presented value maps to a principal.
"""
from __future__ import annotations

import enum
import hmac
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Protocol

from pydantic import SecretStr


class CredentialKind(str, enum.Enum):
    api_key = "api_key"
    bearer = "bearer"
    session = "session"


@dataclass(frozen=True)
class Principal:
    """Identity established for a request."""

    subject: str
    kind: CredentialKind


class CredentialStore(Protocol):
    """Validates presented credentials.  Returns ``None`` for unknown or revoked values."""

    async def validate_api_key(self, key: str) -> Optional[Principal]:
        ...

    async def validate_bearer(self, token: str) -> Optional[Principal]:
        ...

    async def resolve_session(self, token: str) -> Optional[Principal]:
        ...


def _secret(value) -> str:
    return value.get_secret_value() if isinstance(value, SecretStr) else str(value)


class InMemoryCredentialStore:
    """Credential store backed by static subject -> secret mappings.

    Comparisons are constant-time.  A value listed in *revoked* is rejected
    even if it is still mapped to a subject.
    """

    def __init__(
        self,
        api_keys: Optional[Mapping[str, object]] = None,
        bearer_tokens: Optional[Mapping[str, object]] = None,
        sessions: Optional[Mapping[str, object]] = None,
        revoked: Optional[Iterable[object]] = None,
    ) -> None:
        self._api_keys = {s: _secret(v) for s, v in (api_keys or {}).items()}
        self._bearer_tokens = {s: _secret(v) for s, v in (bearer_tokens or {}).items()}
        self._sessions = {s: _secret(v) for s, v in (sessions or {}).items()}
        self._revoked = [_secret(v) for v in (revoked or ())]

    @classmethod
    def from_settings(cls, settings) -> "InMemoryCredentialStore":
        api_keys = dict(settings.api_keys)
        # The shared service secret is itself a valid caller credential
        # for service-to-service traffic.
        if settings.upstream_key:
            api_keys.setdefault("service", settings.upstream_key)
        return cls(
            api_keys=api_keys,
            bearer_tokens=settings.bearer_tokens,
            sessions=settings.sessions,
            revoked=settings.revoked_credentials,
        )

    async def validate_api_key(self, key: str) -> Optional[Principal]:
        return self._match(self._api_keys, key, CredentialKind.api_key)

    async def validate_bearer(self, token: str) -> Optional[Principal]:
        return self._match(self._bearer_tokens, token, CredentialKind.bearer)

    async def resolve_session(self, token: str) -> Optional[Principal]:
        return self._match(self._sessions, token, CredentialKind.session)

    def _match(self, table: Mapping[str, str], presented: str, kind: CredentialKind) -> Optional[Principal]:
        candidate = presented.encode()
        if any(hmac.compare_digest(candidate, r.encode()) for r in self._revoked):
            return None
        for subject, secret in table.items():
            if hmac.compare_digest(candidate, secret.encode()):
                return Principal(subject=subject, kind=kind)
        return None
