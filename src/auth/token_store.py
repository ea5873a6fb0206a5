"""
Expiring token stores.

Bounded, time-limited key -> value caches used for temporary login tokens and setup
tokens. Two backends:

- MemoryTokenStore: in-process LRU with per-entry expiry (single instance deployments)
- RedisTokenStore: shared cache for multi-instance deployments, with in-memory
  fallback when Redis is unavailable

Single use is enforced with ``take``, an atomic lookup-and-delete, so two concurrent
requests presenting the same token can never both receive it.
"""
import asyncio
import json
import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, Generic, Iterable, List, Optional, Tuple, TypeVar

import redis

from ..utils.secrets import mask_secret

logger = logging.getLogger(__name__)

V = TypeVar("V")


@dataclass
class TokenStoreStats:
    size: int
    capacity: int


class ExpiringTokenStore(ABC, Generic[V]):
    """Interface shared by all token store backends."""

    def __init__(self, name: str, capacity: int, ttl_seconds: float):
        self.name = name
        self.capacity = capacity
        self.ttl_seconds = ttl_seconds

    @abstractmethod
    def put(self, key: str, value: V, ttl_seconds: Optional[float] = None) -> None:
        """Store a value, overwriting any existing entry for the key."""

    @abstractmethod
    def get(self, key: str) -> Optional[V]:
        """Return the live value for the key, or None if missing or expired."""

    @abstractmethod
    def take(self, key: str) -> Optional[V]:
        """Atomically return and remove the live value for the key."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove the key. Missing keys are ignored."""

    @abstractmethod
    def list_all(self) -> List[V]:
        """Snapshot of live values (diagnostics only)."""

    @abstractmethod
    def stats(self) -> TokenStoreStats:
        """Current size and configured capacity."""

    @abstractmethod
    def sweep_expired(self) -> int:
        """Purge expired entries. Returns the number removed."""


class MemoryTokenStore(ExpiringTokenStore[V]):
    """
    In-process bounded LRU store with TTL expiry.

    Reads refresh an entry's recency but not its age. When capacity is exceeded the
    least recently used entry is evicted.

    Example usage:
        store = MemoryTokenStore("temp-login", capacity=1000, ttl_seconds=300)
        store.put(token, data)
        data = store.take(token)  # None on the second call
    """

    def __init__(
        self,
        name: str,
        capacity: int,
        ttl_seconds: float,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(name, capacity, ttl_seconds)
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[V, float]]" = OrderedDict()
        self._lock = threading.Lock()

    def put(self, key: str, value: V, ttl_seconds: Optional[float] = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        expires_at = self._clock() + ttl

        with self._lock:
            self._entries[key] = (value, expires_at)
            self._entries.move_to_end(key)

            while len(self._entries) > self.capacity:
                evicted_key, _ = self._entries.popitem(last=False)
                logger.debug(f"[{self.name}] Evicted token {mask_secret(evicted_key)} (capacity {self.capacity})")

    def _live_entry(self, key: str) -> Optional[V]:
        # Caller holds the lock
        entry = self._entries.get(key)
        if entry is None:
            return None

        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def get(self, key: str) -> Optional[V]:
        with self._lock:
            value = self._live_entry(key)
            if value is not None:
                self._entries.move_to_end(key)
            return value

    def take(self, key: str) -> Optional[V]:
        with self._lock:
            value = self._live_entry(key)
            if value is not None:
                del self._entries[key]
            return value

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def list_all(self) -> List[V]:
        now = self._clock()
        with self._lock:
            return [value for value, expires_at in self._entries.values() if now < expires_at]

    def stats(self) -> TokenStoreStats:
        with self._lock:
            return TokenStoreStats(size=len(self._entries), capacity=self.capacity)

    def sweep_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, (_, expires_at) in self._entries.items() if now >= expires_at]
            for key in expired:
                del self._entries[key]

        if expired:
            logger.debug(f"[{self.name}] Swept {len(expired)} expired tokens")
        return len(expired)


class RedisTokenStore(ExpiringTokenStore[V]):
    """
    Redis-backed token store with in-memory fallback.

    Values are stored as JSON under ``gatekeeper:<name>:<token>`` with SETEX, so Redis
    handles expiry. ``take`` uses GETDEL, which is atomic across all API instances.
    Capacity is only enforced on the fallback store.
    """

    def __init__(
        self,
        name: str,
        capacity: int,
        ttl_seconds: float,
        redis_client: redis.Redis,
        encode: Callable[[V], Dict[str, Any]],
        decode: Callable[[Dict[str, Any]], V],
    ):
        super().__init__(name, capacity, ttl_seconds)
        self.redis = redis_client
        self._encode = encode
        self._decode = decode
        self._prefix = f"gatekeeper:{name}:"
        self._fallback: MemoryTokenStore[V] = MemoryTokenStore(name, capacity, ttl_seconds)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def _load(self, raw: Optional[str]) -> Optional[V]:
        if raw is None:
            return None
        return self._decode(json.loads(raw))

    def put(self, key: str, value: V, ttl_seconds: Optional[float] = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        try:
            self.redis.setex(self._key(key), max(1, math.ceil(ttl)), json.dumps(self._encode(value)))
            return
        except redis.RedisError as e:
            logger.warning(f"Redis error storing {self.name} token: {e}. Using in-memory fallback.")
        self._fallback.put(key, value, ttl_seconds)

    def get(self, key: str) -> Optional[V]:
        try:
            value = self._load(self.redis.get(self._key(key)))
            if value is not None:
                return value
        except redis.RedisError as e:
            logger.warning(f"Redis error reading {self.name} token: {e}")
        return self._fallback.get(key)

    def take(self, key: str) -> Optional[V]:
        try:
            value = self._load(self.redis.getdel(self._key(key)))
            if value is not None:
                return value
        except redis.RedisError as e:
            logger.warning(f"Redis error taking {self.name} token: {e}")
        return self._fallback.take(key)

    def delete(self, key: str) -> None:
        try:
            self.redis.delete(self._key(key))
        except redis.RedisError as e:
            logger.warning(f"Redis error deleting {self.name} token: {e}")
        self._fallback.delete(key)

    def _scan_keys(self) -> Iterable[str]:
        return self.redis.scan_iter(match=f"{self._prefix}*")

    def list_all(self) -> List[V]:
        values: List[V] = []
        try:
            keys = list(self._scan_keys())
            if keys:
                values = [self._load(raw) for raw in self.redis.mget(keys) if raw is not None]
        except redis.RedisError as e:
            logger.warning(f"Redis error listing {self.name} tokens: {e}")
        return values + self._fallback.list_all()

    def stats(self) -> TokenStoreStats:
        size = 0
        try:
            size = sum(1 for _ in self._scan_keys())
        except redis.RedisError as e:
            logger.warning(f"Redis error counting {self.name} tokens: {e}")
        return TokenStoreStats(size=size + self._fallback.stats().size, capacity=self.capacity)

    def sweep_expired(self) -> int:
        # Redis expires keys on its own; only the fallback needs sweeping.
        return self._fallback.sweep_expired()


# ============================================
# Maintenance
# ============================================

async def sweep_expired_tokens(
    stores: Iterable[ExpiringTokenStore],
    interval_seconds: float,
) -> None:
    """
    Periodically purge expired tokens from every store.

    Runs until cancelled; the host process owns the task.
    """
    stores = list(stores)
    while True:
        await asyncio.sleep(interval_seconds)
        for store in stores:
            purged = store.sweep_expired()
            if purged:
                logger.info(f"Token sweep removed {purged} expired entries from {store.name}")


class TokenLocks:
    """
    Per-token asyncio locks.

    Attempts that take a token and may put it back run one at a time per token, so a
    concurrent attempt never sees the token missing while another is being checked.
    Serialization is per process; instances sharing a Redis store are not coordinated.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, token: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(token, asyncio.Lock())
        self._holders[token] = self._holders.get(token, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[token] -= 1
            if not self._holders[token]:
                del self._holders[token]
                del self._locks[token]
