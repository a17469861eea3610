"""
Cache clients backing ``cache_fn``.
Path: kumascript/cache.py

A real Redis backend is used when the server options name one; otherwise an
in-process dictionary stands in so templates still work without a cache
service. Both share the read-through logic in ``CacheClient``, which
collapses concurrent misses for the same key into a single computation.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from kumascript.config import ConfigNode
from kumascript.errors import CacheError
from kumascript.utils.logging import get_logger

logger = get_logger()

DEFAULT_KEY_PREFIX = "kumascript:"

# Returned by get() for absent keys; a stored None is a hit
MISSING = object()


class SingleFlight:
    """
    At most one in-flight computation per key.

    The first caller for a key starts the computation as a task owned by the
    flight; every caller, the first included, awaits it through a shield.
    Cancelling one caller's wait (a deadline, say) leaves the computation and
    the other callers untouched. Must only be used from a single event loop.
    """

    def __init__(self):
        self._calls: Dict[str, asyncio.Task] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._calls

    async def do(self, key: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        call = self._calls.get(key)
        if call is None:
            call = asyncio.get_running_loop().create_task(fn())
            self._calls[key] = call
            call.add_done_callback(lambda task: self._finish(key, task))
        else:
            logger.debug("cache.single_flight.joined", key=key)
        return await asyncio.shield(call)

    def _finish(self, key: str, call: asyncio.Task) -> None:
        if self._calls.get(key) is call:
            del self._calls[key]
        if not call.cancelled():
            # Mark retrieved so a flight whose callers all gave up doesn't warn on GC
            call.exception()


class CacheClient(ABC):
    """Key/value store with TTL semantics."""

    def __init__(self):
        self.flights = SingleFlight()

    @abstractmethod
    async def get(self, key: str) -> Any:
        """Return the stored value, or MISSING if absent. Raises CacheError on backend failure."""
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[float]) -> bool:
        """Store value under key for ttl seconds. Raises CacheError on backend failure."""
        ...

    async def close(self) -> None:
        pass

    async def read_through(self, key: str, ttl: Optional[float], produce: Callable[[], Awaitable[Any]]) -> Any:
        """
        Return the cached value for key, computing and storing it on a miss.

        Args:
            key: Cache key
            ttl: Expiry in seconds for a freshly computed value
            produce: Coroutine function computing the value on a miss

        Returns:
            Cached or freshly computed value
        """
        return await self.flights.do(key, lambda: self._read_through(key, ttl, produce))

    async def _read_through(self, key: str, ttl: Optional[float], produce: Callable[[], Awaitable[Any]]) -> Any:
        try:
            cached = await self.get(key)
        except CacheError as e:
            logger.warning("cache.get_failed", key=key, error=str(e))
            cached = MISSING

        if cached is not MISSING:
            logger.debug("cache.hit", key=key)
            return cached

        logger.debug("cache.miss", key=key)
        value = await produce()
        try:
            await self.set(key, value, ttl)
        except CacheError as e:
            logger.warning("cache.set_failed", key=key, error=str(e))
        return value


class MemoryCache(CacheClient):
    """In-process fallback used when no cache service is configured. TTLs are ignored."""

    def __init__(self):
        super().__init__()
        self._cache: Dict[str, Any] = {}

    async def get(self, key: str) -> Any:
        return self._cache.get(key, MISSING)

    async def set(self, key: str, value: Any, ttl: Optional[float]) -> bool:
        self._cache[key] = value
        return True

    def __len__(self) -> int:
        return len(self._cache)


class RedisCache(CacheClient):
    """Redis-backed cache storing JSON-serialized values."""

    def __init__(self, client: Any = None, url: Optional[str] = None, key_prefix: str = DEFAULT_KEY_PREFIX):
        """
        Initialize the Redis cache.

        Args:
            client: Existing ``redis.asyncio.Redis`` client
            url: Redis URL used to create a client when none is given
            key_prefix: Prefix applied to every key
        """
        super().__init__()
        if client is None:
            if not url:
                raise ValueError("RedisCache requires either a client or a url")
            client = aioredis.Redis.from_url(url)
        self._client = client
        self.key_prefix = key_prefix

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def get(self, key: str) -> Any:
        try:
            raw = await self._client.get(self._key(key))
        except RedisError as e:
            raise CacheError("get", key, e) from e
        if raw is None:
            return MISSING
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            raise CacheError("decode", key, e) from e

    async def set(self, key: str, value: Any, ttl: Optional[float]) -> bool:
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise CacheError("encode", key, e) from e
        expiry = max(1, int(ttl)) if ttl and ttl > 0 else None
        try:
            await self._client.set(self._key(key), payload, ex=expiry)
        except RedisError as e:
            raise CacheError("set", key, e) from e
        return True

    async def close(self) -> None:
        await self._client.aclose()


def create_cache_client(server_options: Dict[str, Any]) -> CacheClient:
    """
    Build the cache client described by the server options.

    Args:
        server_options: Server options; ``cache.url`` selects Redis

    Returns:
        RedisCache when a URL is configured, MemoryCache otherwise
    """
    options = ConfigNode(server_options)
    url = options.get_value("cache.url")
    if not url:
        logger.info("cache.using_memory_fallback")
        return MemoryCache()
    key_prefix = options.get_value("cache.key_prefix") or DEFAULT_KEY_PREFIX
    logger.info("cache.using_redis", key_prefix=key_prefix)
    return RedisCache(url=url, key_prefix=key_prefix)
