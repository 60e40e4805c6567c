"""Settings for the gateway and the job service."""
from __future__ import annotations

from typing import Dict, List

from pydantic import SecretStr
from pydantic_settings import BaseSettings

# Paths reachable without credentials.  Entries ending in "/" match as
# prefixes; all others must match exactly.
DEFAULT_PUBLIC_PATHS: List[str] = [
    "/api/health",
    "/docs",
    "/redoc",
    "/openapi.json",
    "/api/auth/",
]

# Downstream prefix -> upstream prefix, longest match wins.
DEFAULT_PATH_REWRITES: Dict[str, str] = {
    "/api/auth": "/api/auth",
    "/api": "/api/v1",
}


class ApiSettings(BaseSettings):
    """Immutable settings loaded from environment / .env file.

    Complex fields (lists, dicts) are read from the environment as JSON,
    e.g. ``HOSTGATE_API_KEYS='{"ops-bot": "k-123"}'``.
    """

    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: str = "http://localhost:5173,http://localhost:8000"
    log_level: str = "INFO"
    log_format: str = "structured"

    # Upstream execution service
    upstream_base_url: str = "http://localhost:5078"
    path_rewrites: Dict[str, str] = DEFAULT_PATH_REWRITES
    upstream_api_key: SecretStr = SecretStr("")
    require_upstream_key: bool = True
    connect_timeout: float = 5.0
    request_timeout: float = 30.0
    stream_open_timeout: float = 15.0
    max_upstream_connections: int = 100

    # Inbound authentication
    public_paths: List[str] = DEFAULT_PUBLIC_PATHS
    session_cookie: str = "auth_token"
    api_key_header: str = "X-Api-Key"
    principal_header: str = "X-Forwarded-User"
    api_keys: Dict[str, SecretStr] = {}
    bearer_tokens: Dict[str, SecretStr] = {}
    sessions: Dict[str, SecretStr] = {}
    revoked_credentials: List[SecretStr] = []

    # Job service
    job_db_path: str = "hostgate_jobs.db"
    job_retention_seconds: float = 3600.0
    job_abandon_seconds: float = 300.0
    job_prune_interval: float = 60.0
    job_max_concurrent: int = 2
    job_max_queued: int = 20

    model_config = {"env_prefix": "HOSTGATE_"}

    @property
    def upstream_key(self) -> str:
        return self.upstream_api_key.get_secret_value()
