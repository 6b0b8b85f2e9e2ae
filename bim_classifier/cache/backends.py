"""
Backing stores for the classification cache.

Every backend offers string get/set-with-TTL/delete. Multi-key reads and
atomic hash counters are optional capabilities advertised through
``supports_multi_get`` and ``supports_counters``. Backends raise
``CacheDegraded`` when the store is unreachable.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from ..exceptions import CacheDegraded

logger = logging.getLogger(__name__)


class CacheBackend(Protocol):
    """String-keyed distributed cache contract."""

    supports_multi_get: bool
    supports_counters: bool

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def mget(self, keys: Sequence[str]) -> List[Optional[str]]: ...

    async def incr_counter(self, key: str, field: str, amount: int = 1) -> int: ...

    async def get_counters(self, key: str) -> Dict[str, int]: ...

    async def count_keys(self, prefix: str) -> int: ...


class InMemoryCacheBackend:
    """
    Process-local backend with TTL expiry.

    Counter updates happen under an asyncio lock so concurrent coroutines in
    one process never lose increments. Capabilities can be switched off to
    emulate simpler stores.
    """

    def __init__(
        self,
        multi_get: bool = True,
        counters: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.supports_multi_get = multi_get
        self.supports_counters = counters
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._hashes: Dict[str, Dict[str, int]] = {}
        self._lock = asyncio.Lock()

    def _live_value(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        return self._live_value(key)

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        self._data[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def mget(self, keys: Sequence[str]) -> List[Optional[str]]:
        if not self.supports_multi_get:
            raise NotImplementedError("multi-get disabled for this backend")
        return [self._live_value(k) for k in keys]

    async def incr_counter(self, key: str, field: str, amount: int = 1) -> int:
        if not self.supports_counters:
            raise NotImplementedError("counters disabled for this backend")
        async with self._lock:
            counters = self._hashes.setdefault(key, {})
            counters[field] = counters.get(field, 0) + amount
            return counters[field]

    async def get_counters(self, key: str) -> Dict[str, int]:
        if not self.supports_counters:
            raise NotImplementedError("counters disabled for this backend")
        return dict(self._hashes.get(key, {}))

    async def count_keys(self, prefix: str) -> int:
        return sum(1 for k in list(self._data) if k.startswith(prefix) and self._live_value(k) is not None)


class RedisCacheBackend:
    """
    Redis backend using ``redis.asyncio``.

    MGET serves multi-key reads in one round trip and HINCRBY keeps the
    shared hit/miss counters exact across orchestrator processes.
    """

    supports_multi_get = True
    supports_counters = True

    def __init__(
        self,
        redis_url: Optional[str] = None,
        client: Optional[redis.Redis] = None,
        socket_timeout: float = 5.0,
    ) -> None:
        if client is None and not redis_url:
            raise ValueError("Either redis_url or client must be provided")

        self.redis_url = redis_url
        self.client = client or redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=socket_timeout,
            socket_timeout=socket_timeout,
            retry_on_timeout=True,
            max_connections=20,
        )

    async def ping(self) -> bool:
        """Check connectivity; False rather than raising when unreachable."""
        try:
            return bool(await self.client.ping())
        except (RedisError, OSError) as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def close(self) -> None:
        await self.client.aclose()

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.client.get(key)
        except (RedisError, OSError) as e:
            raise CacheDegraded(str(e), operation="get") from e

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        try:
            await self.client.set(key, value, ex=ttl_seconds)
        except (RedisError, OSError) as e:
            raise CacheDegraded(str(e), operation="set") from e

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(key)
        except (RedisError, OSError) as e:
            raise CacheDegraded(str(e), operation="delete") from e

    async def mget(self, keys: Sequence[str]) -> List[Optional[str]]:
        if not keys:
            return []
        try:
            return await self.client.mget(list(keys))
        except (RedisError, OSError) as e:
            raise CacheDegraded(str(e), operation="mget") from e

    async def incr_counter(self, key: str, field: str, amount: int = 1) -> int:
        try:
            return int(await self.client.hincrby(key, field, amount))
        except (RedisError, OSError) as e:
            raise CacheDegraded(str(e), operation="hincrby") from e

    async def get_counters(self, key: str) -> Dict[str, int]:
        try:
            raw = await self.client.hgetall(key)
        except (RedisError, OSError) as e:
            raise CacheDegraded(str(e), operation="hgetall") from e
        return {field: int(value) for field, value in raw.items()}

    async def count_keys(self, prefix: str) -> int:
        try:
            count = 0
            async for _ in self.client.scan_iter(match=f"{prefix}*", count=500):
                count += 1
            return count
        except (RedisError, OSError) as e:
            raise CacheDegraded(str(e), operation="scan") from e
