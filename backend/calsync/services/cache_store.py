"""Key/value cache backends with per-key expiry.

Redis is the production backend; the in-memory store serves tests and single
process development setups.
"""
from __future__ import annotations
from typing import Protocol, Optional, Dict, Any, List, Callable
import logging
import time

import redis
from redis.exceptions import RedisError

from ..config import Settings
from ..domain.enums import CacheBackend
from ..errors import CacheUnavailableError

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...
    def set(self, key: str, value: str, ttl_seconds: int) -> None: ...
    def keys(self, prefix: str) -> List[str]: ...
    def ping(self) -> bool: ...
    def close(self) -> None: ...


class MemoryKeyValueStore:
    def __init__(self, time_provider: Optional[Callable[[], float]] = None):
        self._data: Dict[str, Dict[str, Any]] = {}
        self.time_provider = time_provider or time.time

    def get(self, key: str) -> Optional[str]:
        self.prune()
        entry = self._data.get(key)
        return entry["value"] if entry else None

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._data[key] = {"value": value, "expires_at": self.time_provider() + ttl_seconds}

    def keys(self, prefix: str) -> List[str]:
        self.prune()
        return [k for k in self._data if k.startswith(prefix)]

    def prune(self) -> None:
        now_ts = self.time_provider()
        expired = [k for k, v in self._data.items() if v["expires_at"] <= now_ts]
        for k in expired:
            self._data.pop(k, None)

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        self._data.clear()


class RedisKeyValueStore:
    """Redis-backed implementation.

    Values are plain strings written with `SET key value EX ttl`. Key
    enumeration uses SCAN so large keyspaces are walked incrementally.
    Every Redis failure surfaces as CacheUnavailableError.
    """

    def __init__(self, redis_client):
        self.redis = redis_client

    def get(self, key: str) -> Optional[str]:
        try:
            val = self.redis.get(key)
        except RedisError as e:
            raise CacheUnavailableError(f"redis GET failed: {e}")
        if val is None:
            return None
        return val.decode() if isinstance(val, bytes) else val

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            self.redis.set(key, value, ex=ttl_seconds)
        except RedisError as e:
            raise CacheUnavailableError(f"redis SET failed: {e}")

    def keys(self, prefix: str) -> List[str]:
        try:
            members = list(self.redis.scan_iter(match=prefix + "*", count=100))
        except RedisError as e:
            raise CacheUnavailableError(f"redis SCAN failed: {e}")
        return [m.decode() if isinstance(m, bytes) else m for m in members]

    def ping(self) -> bool:
        try:
            return bool(self.redis.ping())
        except RedisError:
            return False

    def close(self) -> None:
        try:
            self.redis.close()
        except RedisError as e:  # pragma: no cover
            logger.warning("Error closing redis connection: %s", e)


def create_cache_store(settings: Settings) -> KeyValueStore:
    if settings.cache_backend == CacheBackend.REDIS:
        kwargs: Dict[str, Any] = {"socket_timeout": settings.redis_socket_timeout}
        if settings.redis_url.startswith("rediss://") and not settings.redis_ssl_verify:
            kwargs["ssl_cert_reqs"] = "none"
        client = redis.from_url(settings.redis_url, **kwargs)
        logger.info("Using redis cache store")
        return RedisKeyValueStore(client)
    logger.info("Using in-memory cache store")
    return MemoryKeyValueStore()
