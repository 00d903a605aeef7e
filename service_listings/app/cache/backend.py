"""
Cache backends for the Listings Service.

Every backend raises ``CacheBackendError`` when an operation fails. Deciding
what a failure means (miss, skipped write) is up to the caller.
"""

import asyncio
import re
import time
from typing import Callable, Dict, List, Optional, Protocol, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import CacheBackendError
from shared.logging import get_logger


class CacheBackend(Protocol):
    """Key-value contract the listing read path depends on."""

    async def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None on a miss or expired entry."""
        ...

    async def put(self, key: str, value: str, ttl: int) -> None:
        """Store a value that stops being returned after ``ttl`` seconds."""
        ...

    async def delete(self, key: str) -> int:
        ...

    async def delete_by_prefix(self, prefix: str) -> int:
        """Delete every key starting with ``prefix``; returns the number removed."""
        ...

    async def health_check(self) -> bool:
        ...

    async def start(self) -> None:
        ...

    async def stop(self) -> None:
        ...


_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def escape_glob(text: str) -> str:
    """Escape Redis MATCH glob metacharacters."""
    return _GLOB_SPECIAL.sub(r"\\\1", text)


class RedisCacheBackend:
    """Redis-backed cache with circuit breaker protection."""

    def __init__(
        self,
        redis_url: str,
        *,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        socket_timeout: float = 0.5,
        scan_count: int = 500,
    ):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.scan_count = scan_count
        self.logger = get_logger("listings.cache.redis")
        self.breaker = CircuitBreaker(
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_timeout,
            name="listings_cache",
        )
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=self.socket_timeout,
                socket_timeout=self.socket_timeout,
                health_check_interval=30,
            )
        return self._redis

    async def start(self) -> None:
        """Connect eagerly; an unreachable Redis is logged, not fatal."""
        try:
            client = await self._get_redis()
            await client.ping()
            self.logger.info("Redis cache started", redis_url=self.redis_url)
        except (RedisError, OSError) as e:
            self.logger.warning("Redis cache unavailable at startup", error=str(e))

    async def stop(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            self.logger.info("Redis cache stopped")

    async def _call(self, operation: str, func: Callable, *args):
        try:
            return await self.breaker.call(func, *args)
        except CircuitBreakerOpenException as e:
            raise CacheBackendError(operation, "circuit open") from e
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise CacheBackendError(operation, str(e)) from e

    async def get(self, key: str) -> Optional[str]:
        client = await self._get_redis()
        return await self._call("get", client.get, key)

    async def put(self, key: str, value: str, ttl: int) -> None:
        client = await self._get_redis()

        async def _set():
            await client.set(key, value, ex=ttl)

        await self._call("put", _set)

    async def delete(self, key: str) -> int:
        client = await self._get_redis()
        return await self._call("delete", client.delete, key)

    async def delete_by_prefix(self, prefix: str) -> int:
        client = await self._get_redis()
        pattern = f"{escape_glob(prefix)}*"
        return await self._call("delete_by_prefix", self._delete_matching, client, pattern)

    async def _delete_matching(self, client: redis.Redis, pattern: str) -> int:
        """SCAN for matching keys and UNLINK them in batches."""
        deleted = 0
        batch: List[str] = []
        async for key in client.scan_iter(match=pattern, count=self.scan_count):
            batch.append(key)
            if len(batch) >= self.scan_count:
                deleted += await client.unlink(*batch)
                batch = []
        if batch:
            deleted += await client.unlink(*batch)
        return deleted

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            client = await self._get_redis()
            await client.ping()
            return True
        except (RedisError, OSError, asyncio.TimeoutError):
            return False


class MemoryCacheBackend:
    """In-process cache honouring TTLs; used for local runs and tests."""

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.monotonic
        self._entries: Dict[str, Tuple[str, float]] = {}

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        self._entries.clear()

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def put(self, key: str, value: str, ttl: int) -> None:
        self._entries[key] = (value, self._clock() + ttl)

    async def delete(self, key: str) -> int:
        return 1 if self._entries.pop(key, None) is not None else 0

    async def delete_by_prefix(self, prefix: str) -> int:
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    async def health_check(self) -> bool:
        return True

    def keys(self) -> List[str]:
        """Keys that have not yet expired."""
        now = self._clock()
        return sorted(key for key, (_, expires_at) in self._entries.items() if now < expires_at)
