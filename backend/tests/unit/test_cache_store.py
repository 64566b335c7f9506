from unittest.mock import Mock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from calsync.config import Settings
from calsync.domain.enums import CacheBackend
from calsync.errors import CacheUnavailableError
from calsync.services.cache_store import MemoryKeyValueStore, RedisKeyValueStore, create_cache_store


def test_memory_store_expiry_uses_time_provider():
    virtual = [0.0]
    store = MemoryKeyValueStore(time_provider=lambda: virtual[0])
    store.set("calendar:a", "x", ttl_seconds=10)
    assert store.get("calendar:a") == "x"
    virtual[0] = 10.0
    assert store.get("calendar:a") is None
    assert store.keys("calendar:") == []


def test_redis_store_set_uses_expiry():
    client = Mock()
    RedisKeyValueStore(client).set("calendar:a", "{}", 86400)
    client.set.assert_called_once_with("calendar:a", "{}", ex=86400)


def test_redis_store_decodes_bytes():
    client = Mock()
    client.get.return_value = b"payload"
    client.scan_iter.return_value = iter([b"calendar:a", "calendar:b"])
    store = RedisKeyValueStore(client)
    assert store.get("calendar:a") == "payload"
    assert store.keys("calendar:") == ["calendar:a", "calendar:b"]
    client.scan_iter.assert_called_once_with(match="calendar:*", count=100)


def test_redis_errors_become_cache_unavailable():
    client = Mock()
    client.get.side_effect = RedisConnectionError("down")
    client.set.side_effect = RedisConnectionError("down")
    client.scan_iter.side_effect = RedisConnectionError("down")
    client.ping.side_effect = RedisConnectionError("down")
    store = RedisKeyValueStore(client)
    with pytest.raises(CacheUnavailableError):
        store.get("k")
    with pytest.raises(CacheUnavailableError):
        store.set("k", "v", 1)
    with pytest.raises(CacheUnavailableError):
        store.keys("calendar:")
    assert store.ping() is False


def test_create_cache_store_defaults_to_memory():
    assert isinstance(create_cache_store(Settings()), MemoryKeyValueStore)


def test_create_cache_store_redis_tls_without_verification():
    settings = Settings(cache_backend=CacheBackend.REDIS, redis_url="rediss://cache:6380/0", redis_ssl_verify=False)
    with patch("calsync.services.cache_store.redis.from_url") as from_url:
        store = create_cache_store(settings)
    assert isinstance(store, RedisKeyValueStore)
    args, kwargs = from_url.call_args
    assert args == ("rediss://cache:6380/0",)
    assert kwargs["ssl_cert_reqs"] == "none"
