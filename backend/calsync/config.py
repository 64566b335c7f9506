"""Process configuration read from the environment.

Optional .env loading is opt-in via APP_LOAD_DOTENV, existing environment
variables always win.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import List
import os

from .domain.enums import CacheBackend

_TRUTHY = {"1", "true", "TRUE", "yes", "on"}


def load_dotenv_if_enabled() -> None:
    if os.getenv("APP_LOAD_DOTENV") in _TRUTHY:  # pragma: no cover
        from dotenv import load_dotenv
        load_dotenv(override=False)


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw in _TRUTHY


@dataclass
class Settings:
    cache_backend: CacheBackend = CacheBackend.MEMORY
    redis_url: str = "redis://localhost:6379/0"
    redis_ssl_verify: bool = True
    redis_socket_timeout: float = 5.0
    cache_ttl_seconds: int = 24 * 60 * 60
    google_token_path: str = "credentials/google-oauth-tokens.json"
    google_client_id: str | None = None
    google_client_secret: str | None = None
    sync_interval_minutes: int = 15
    sync_startup_delay_seconds: float = 2.0
    sync_autostart: bool = True
    cors_allow_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv_if_enabled()
        backend = os.getenv("CACHE_BACKEND")
        if backend is None:
            # REDIS_URL alone is enough to opt into redis
            backend = CacheBackend.REDIS.value if os.getenv("REDIS_URL") else CacheBackend.MEMORY.value
        origins_env = os.getenv("CORS_ALLOW_ORIGINS")
        defaults = cls()
        return cls(
            cache_backend=CacheBackend(backend.lower()),
            redis_url=os.getenv("REDIS_URL", defaults.redis_url),
            redis_ssl_verify=_bool_env("REDIS_SSL_VERIFY", True),
            google_token_path=os.getenv("GOOGLE_TOKEN_PATH", defaults.google_token_path),
            google_client_id=os.getenv("GOOGLE_CLIENT_ID"),
            google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET"),
            sync_interval_minutes=max(1, int(os.getenv("CALENDAR_SYNC_INTERVAL_MINUTES", "15"))),
            sync_startup_delay_seconds=float(os.getenv("CALENDAR_SYNC_STARTUP_DELAY_SECONDS", "2")),
            sync_autostart=_bool_env("CALENDAR_SYNC_AUTOSTART", True),
            cors_allow_origins=(
                [o.strip() for o in origins_env.split(",") if o.strip()]
                if origins_env else defaults.cors_allow_origins
            ),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
        )
