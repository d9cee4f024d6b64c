"""
Shared cache backend (Redis preferred, in-memory fallback).

Holds the bundle-detail cache and the rate-limit counters.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Dict, Optional

import redis

from bookstore import config

logger = logging.getLogger(__name__)


class CacheBackend:
    backend: str = "none"

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def incr(self, key: str, ttl_seconds: int = 60) -> int:
        raise NotImplementedError

    def get_json(self, key: str) -> Optional[Any]:
        try:
            raw = self.get(key)
        except Exception as exc:
            logger.debug("cache get %s failed: %s", key, exc)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return None

    def set_json(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        try:
            self.set(key, json.dumps(value, default=str), ttl_seconds=ttl_seconds)
        except Exception as exc:
            logger.debug("cache set %s failed: %s", key, exc)


class MemoryCacheBackend(CacheBackend):
    backend = "memory"

    def __init__(self) -> None:
        self._store: Dict[str, tuple[str, Optional[float]]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        now = time.time()
        with self._lock:
            hit = self._store.get(key)
            if not hit:
                return None
            value, expires_at = hit
            if expires_at is not None and now > expires_at:
                self._store.pop(key, None)
                return None
            return value

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        expires_at = None
        if ttl_seconds is not None:
            expires_at = time.time() + max(1, ttl_seconds)
        with self._lock:
            self._store[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def incr(self, key: str, ttl_seconds: int = 60) -> int:
        now = time.time()
        with self._lock:
            hit = self._store.get(key)
            expires_at: Optional[float] = None
            current = 0
            if hit:
                value, expires_at = hit
                if expires_at is not None and now > expires_at:
                    expires_at = None
                else:
                    try:
                        current = int(value)
                    except ValueError:
                        current = 0
            current += 1
            if expires_at is None:
                expires_at = now + max(1, ttl_seconds)
            self._store[key] = (str(current), expires_at)
            return current


class RedisCacheBackend(CacheBackend):
    backend = "redis"

    def __init__(self, url: str, prefix: str = "") -> None:
        self._prefix = prefix
        self._client = redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=1,
            socket_timeout=1,
            retry_on_timeout=False,
        )
        # Fail fast at startup so we can fall back to the memory cache.
        self._client.ping()

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get(self, key: str) -> Optional[str]:
        return self._client.get(self._key(key))

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        if ttl_seconds:
            self._client.setex(self._key(key), max(1, int(ttl_seconds)), value)
        else:
            self._client.set(self._key(key), value)

    def delete(self, key: str) -> None:
        self._client.delete(self._key(key))

    def incr(self, key: str, ttl_seconds: int = 60) -> int:
        value = int(self._client.incr(self._key(key)))
        if value == 1:
            self._client.expire(self._key(key), max(1, int(ttl_seconds)))
        return value


_backend_singleton: Optional[CacheBackend] = None
_backend_lock = threading.Lock()


def get_cache_backend() -> CacheBackend:
    global _backend_singleton
    if _backend_singleton is not None:
        return _backend_singleton

    with _backend_lock:
        if _backend_singleton is not None:
            return _backend_singleton

        if config.REDIS_URL:
            try:
                _backend_singleton = RedisCacheBackend(config.REDIS_URL, prefix=config.CACHE_KEY_PREFIX)
                return _backend_singleton
            except (redis.RedisError, OSError) as exc:
                logger.warning("Redis unavailable (%s); using in-memory cache", exc)

        _backend_singleton = MemoryCacheBackend()
        return _backend_singleton


def reset_cache_backend_for_tests() -> None:
    """Test helper to clear singleton cache backend."""
    global _backend_singleton
    with _backend_lock:
        _backend_singleton = None
