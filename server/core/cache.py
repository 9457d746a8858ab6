"""Cache service with Redis (shared) or in-process (single instance) backend.

Redis is used when REDIS_URL is configured and reachable at startup; otherwise
the process keeps a bounded in-memory map. The backend is picked once in
``CacheService.startup`` and business code only ever talks to CacheService.

Both backends store the same tagged byte encoding so raw bytes (screenshots)
and structured JSON (render results, API-key records) never get confused:

    b"b" + <raw bytes>
    b"j" + <orjson payload>
"""

import asyncio
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Callable, Optional, Tuple

import orjson
import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import NoBackoff
from redis.exceptions import RedisError

from constants import EVICT_FIRST_KEY_PREFIXES, PINNED_KEY_PREFIXES
from core.config import Settings
from core.exceptions import CacheBackendError
from core.logging import get_logger, log_cache_operation

logger = get_logger(__name__)

TAG_BYTES = b"b"
TAG_JSON = b"j"


def encode_value(value: Any) -> bytes:
    """Serialize a cache value into its tagged wire form."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return TAG_BYTES + bytes(value)
    return TAG_JSON + orjson.dumps(value, default=str)


def decode_value(data: bytes) -> Any:
    """Inverse of encode_value.

    A JSON payload that cannot be parsed comes back as text.
    """
    tag, payload = data[:1], data[1:]
    if tag == TAG_BYTES:
        return payload
    if tag != TAG_JSON:
        payload = data  # untagged value written by another client
    try:
        return orjson.loads(payload)
    except orjson.JSONDecodeError:
        return payload.decode("utf-8", errors="replace")


class CacheBackend(ABC):
    """Key/value storage with per-entry TTL.

    ``ttl`` is in seconds; ``0`` stores the entry without expiry.
    ``get`` returns None on a miss and never raises for it.
    """

    name: str = "abstract"

    async def startup(self) -> None:
        pass

    async def shutdown(self) -> None:
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        ...


class MemoryCacheBackend(CacheBackend):
    """Bounded in-process map with timer-based expiry.

    Entries are checked lazily on read and swept every ``check_period``
    seconds once ``startup`` has run. State is per-process and lost on
    restart.

    When the map is full, entries are evicted oldest first in this order:
    keys under ``evict_first`` (render results), then any other entry with a
    TTL, then non-expiring entries. Keys under ``pinned`` (API keys) are
    never evicted and do not count against ``max_entries``; they only leave
    by expiry or delete. The entry being written is never the victim.
    Screenshots handed to clients outlive the results that reference them.
    """

    name = "memory"

    def __init__(self, max_entries: int = 1000, check_period: int = 60,
                 clock: Callable[[], float] = time.monotonic,
                 pinned: Tuple[str, ...] = PINNED_KEY_PREFIXES,
                 evict_first: Tuple[str, ...] = EVICT_FIRST_KEY_PREFIXES):
        self.max_entries = max_entries
        self.check_period = check_period
        self.pinned = pinned
        self.evict_first = evict_first
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[bytes, Optional[float]]]" = OrderedDict()
        self._pinned_count = 0
        self._sweeper: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def evictable_count(self) -> int:
        return len(self._entries) - self._pinned_count

    def _is_pinned(self, key: str) -> bool:
        return key.startswith(self.pinned) if self.pinned else False

    def _remove(self, key: str) -> bool:
        if self._entries.pop(key, None) is None:
            return False
        if self._is_pinned(key):
            self._pinned_count -= 1
        return True

    async def startup(self) -> None:
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_loop())

    async def shutdown(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        self._entries.clear()
        self._pinned_count = 0

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        data, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            self._remove(key)
            return None
        return decode_value(data)

    async def set(self, key: str, value: Any, ttl: int) -> None:
        expires_at = self._clock() + ttl if ttl > 0 else None
        self._remove(key)
        self._entries[key] = (encode_value(value), expires_at)
        if self._is_pinned(key):
            self._pinned_count += 1
            return
        if self.evictable_count > self.max_entries:
            self.purge_expired()
        while self.evictable_count > self.max_entries:
            self._evict_one(spare=key)

    async def delete(self, key: str) -> bool:
        return self._remove(key)

    def purge_expired(self) -> int:
        """Drop every expired entry, returning how many were removed."""
        now = self._clock()
        expired = [k for k, (_, exp) in self._entries.items() if exp is not None and exp <= now]
        for key in expired:
            self._remove(key)
        return len(expired)

    def _evict_one(self, spare: str) -> None:
        victim = None
        fallback_ttl = None
        fallback_any = None
        for key, (_, expires_at) in self._entries.items():
            if key == spare or self._is_pinned(key):
                continue
            if self.evict_first and key.startswith(self.evict_first):
                victim = key
                break
            if fallback_ttl is None and expires_at is not None:
                fallback_ttl = key
            if fallback_any is None:
                fallback_any = key
        victim = victim or fallback_ttl or fallback_any
        self._remove(victim)
        logger.debug("Cache entry evicted", cache_key=victim)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.check_period)
            removed = self.purge_expired()
            if removed:
                logger.debug("Expired cache entries swept", removed=removed)


class RedisCacheBackend(CacheBackend):
    """Shared backend on Redis native key expiry.

    Every call is a single network round trip; failures surface as
    CacheBackendError and are never retried.
    """

    name = "redis"

    def __init__(self, url: str):
        self.url = url
        self.redis: Optional[redis.Redis] = None

    async def startup(self) -> None:
        self.redis = redis.from_url(
            self.url,
            decode_responses=False,
            socket_timeout=5,
            socket_connect_timeout=5,
            retry_on_timeout=False,
            retry=Retry(NoBackoff(), 0),
        )
        await self.redis.ping()

    async def shutdown(self) -> None:
        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None

    async def get(self, key: str) -> Optional[Any]:
        try:
            data = await self.redis.get(key)
        except RedisError as e:
            raise CacheBackendError("get", key, e) from e
        if data is None:
            return None
        return decode_value(data)

    async def set(self, key: str, value: Any, ttl: int) -> None:
        data = encode_value(value)
        try:
            if ttl > 0:
                await self.redis.set(key, data, ex=ttl)
            else:
                await self.redis.set(key, data)
        except RedisError as e:
            raise CacheBackendError("set", key, e) from e

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self.redis.delete(key))
        except RedisError as e:
            raise CacheBackendError("delete", key, e) from e


class CacheService:
    """Async cache facade over the backend selected at startup.

    Backend selection:
    - Redis: when REDIS_URL is set and answers PING (multi-instance)
    - Memory: when REDIS_URL is unset or unreachable (single instance, dev)
    """

    def __init__(self, settings: Settings, backend: Optional[CacheBackend] = None):
        self.settings = settings
        self.backend = backend

    @property
    def backend_name(self) -> str:
        return self.backend.name if self.backend is not None else "uninitialized"

    @property
    def is_shared(self) -> bool:
        return isinstance(self.backend, RedisCacheBackend)

    async def startup(self):
        """Initialize cache connection."""
        if self.backend is None:
            self.backend = await self._select_backend()
        else:
            await self.backend.startup()
        logger.info("Cache initialized", backend=self.backend.name)

    async def _select_backend(self) -> CacheBackend:
        if self.settings.redis_url:
            backend = RedisCacheBackend(self.settings.redis_url)
            try:
                await backend.startup()
                return backend
            except (RedisError, OSError) as e:
                logger.warning("Redis connection failed, falling back to in-memory cache",
                               error=str(e))
                await backend.shutdown()
        else:
            logger.warning("No REDIS_URL provided - using in-memory cache (not for production)")

        memory = MemoryCacheBackend(
            max_entries=self.settings.local_cache_max_entries,
            check_period=self.settings.local_cache_check_period,
        )
        await memory.startup()
        return memory

    async def shutdown(self):
        """Close cache connections."""
        if self.backend is not None:
            await self.backend.shutdown()
            logger.info("Cache connections closed", backend=self.backend.name)

    def _require_backend(self) -> CacheBackend:
        if self.backend is None:
            raise RuntimeError("CacheService used before startup()")
        return self.backend

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache, None when absent or expired."""
        value = await self._require_backend().get(key)
        log_cache_operation(logger, "get", key, cache_hit=value is not None)
        return value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Set value in cache. ``ttl=None`` uses CACHE_TTL_SECONDS, ``0`` never expires."""
        ttl = self.settings.cache_ttl_seconds if ttl is None else ttl
        await self._require_backend().set(key, value, ttl)
        log_cache_operation(logger, "set", key, ttl=ttl)

    async def delete(self, key: str) -> bool:
        """Delete value from cache."""
        deleted = await self._require_backend().delete(key)
        log_cache_operation(logger, "delete", key, deleted=deleted)
        return deleted
