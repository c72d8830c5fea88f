"""
Read-through cache over Redis.

Every value is a JSON document. With no REDIS_URL configured the cache is a
pass-through: reads always miss and writes are dropped. Redis failures are
logged and behave like a miss, so a cache outage never fails a request.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Callable, TypeVar

import redis

from .config import CACHE_DEFAULT_TTL, REDIS_URL

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Cache:
    def __init__(self, client: "redis.Redis | None", default_ttl: int = CACHE_DEFAULT_TTL) -> None:
        self.client = client
        self.default_ttl = default_ttl

    @classmethod
    def from_url(cls, url: str, default_ttl: int = CACHE_DEFAULT_TTL) -> "Cache":
        if not url:
            logger.info("REDIS_URL not set, caching disabled")
            return cls(None, default_ttl)
        return cls(redis.Redis.from_url(url, decode_responses=True), default_ttl)

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def get(self, key: str) -> Any | None:
        if self.client is None:
            return None
        try:
            raw = self.client.get(key)
        except redis.RedisError as e:
            logger.warning("cache get failed for %s: %s", key, e)
            return None
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        if self.client is None:
            return False
        try:
            self.client.set(key, json.dumps(value, default=str), ex=ttl or self.default_ttl)
        except redis.RedisError as e:
            logger.warning("cache set failed for %s: %s", key, e)
            return False
        return True

    def delete(self, key: str) -> bool:
        if self.client is None:
            return False
        try:
            self.client.delete(key)
        except redis.RedisError as e:
            logger.warning("cache delete failed for %s: %s", key, e)
            return False
        return True

    def invalidate(self, pattern: str) -> int:
        """Delete every key matching a glob pattern (e.g. ``patients:*``)."""
        if self.client is None:
            return 0
        try:
            keys = list(self.client.scan_iter(match=pattern))
            if keys:
                self.client.delete(*keys)
        except redis.RedisError as e:
            logger.warning("cache invalidate failed for %s: %s", pattern, e)
            return 0
        logger.debug("cache invalidated %d keys for %s", len(keys), pattern)
        return len(keys)

    def remember(self, key: str, fn: Callable[[], T], ttl: int | None = None) -> T:
        cached = self.get(key)
        if cached is not None:
            return cached
        value = fn()
        self.set(key, value, ttl)
        return value


cache = Cache.from_url(REDIS_URL)
