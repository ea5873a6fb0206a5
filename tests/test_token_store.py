"""
Tests for expiring token stores.

Covers:
- TTL expiry and single-use take
- LRU eviction at capacity
- Sweeping and stats
- Redis backend and its in-memory fallback
"""
import asyncio
import json
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
import redis

from src.auth.token_store import MemoryTokenStore, RedisTokenStore, TokenLocks, sweep_expired_tokens


class FakeRedis:
    """Just enough of redis.Redis for RedisTokenStore."""

    def __init__(self):
        self.data = {}
        self.ttls = {}

    def setex(self, key, ttl, value):
        self.data[key] = value
        self.ttls[key] = ttl

    def get(self, key):
        return self.data.get(key)

    def getdel(self, key):
        self.ttls.pop(key, None)
        return self.data.pop(key, None)

    def delete(self, key):
        self.data.pop(key, None)

    def scan_iter(self, match=None):
        prefix = match.rstrip("*")
        return [key for key in list(self.data) if key.startswith(prefix)]

    def mget(self, keys):
        return [self.data.get(key) for key in keys]


class BrokenRedis:
    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise redis.ConnectionError("connection refused")
        return fail


def encode(value):
    return {"value": value}


def decode(data):
    return data["value"]


# ============================================
# MemoryTokenStore
# ============================================

class TestMemoryTokenStore:

    def test_get_returns_value_before_expiry(self, clock):
        store = MemoryTokenStore("test", capacity=10, ttl_seconds=300, clock=clock)
        store.put("k", "v")

        clock.advance(299)
        assert store.get("k") == "v"

    def test_entry_expires_at_ttl(self, clock):
        store = MemoryTokenStore("test", capacity=10, ttl_seconds=300, clock=clock)
        store.put("k", "v")

        clock.advance(300)
        assert store.get("k") is None
        assert store.stats().size == 0

    def test_per_entry_ttl_overrides_default(self, clock):
        store = MemoryTokenStore("test", capacity=10, ttl_seconds=300, clock=clock)
        store.put("short", "v", ttl_seconds=10)

        clock.advance(10)
        assert store.get("short") is None

    def test_put_overwrites_and_resets_age(self, clock):
        store = MemoryTokenStore("test", capacity=10, ttl_seconds=100, clock=clock)
        store.put("k", "old")
        clock.advance(90)
        store.put("k", "new")
        clock.advance(50)

        assert store.get("k") == "new"

    def test_take_is_single_use(self, clock):
        store = MemoryTokenStore("test", capacity=10, ttl_seconds=300, clock=clock)
        store.put("k", "v")

        assert store.take("k") == "v"
        assert store.take("k") is None
        assert store.get("k") is None

    def test_take_of_expired_entry_returns_none(self, clock):
        store = MemoryTokenStore("test", capacity=10, ttl_seconds=5, clock=clock)
        store.put("k", "v")
        clock.advance(6)

        assert store.take("k") is None

    def test_delete_missing_key_is_ignored(self, clock):
        store = MemoryTokenStore("test", capacity=10, ttl_seconds=5, clock=clock)
        store.delete("missing")
        assert store.stats().size == 0

    def test_capacity_evicts_least_recently_used(self, clock):
        store = MemoryTokenStore("test", capacity=2, ttl_seconds=300, clock=clock)
        store.put("a", 1)
        store.put("b", 2)

        # Reading "a" makes "b" the eviction candidate
        assert store.get("a") == 1
        store.put("c", 3)

        assert store.get("b") is None
        assert store.get("a") == 1
        assert store.get("c") == 3
        assert store.stats().size == 2

    def test_size_never_exceeds_capacity(self, clock):
        store = MemoryTokenStore("test", capacity=5, ttl_seconds=300, clock=clock)
        for i in range(50):
            store.put(f"k{i}", i)

        stats = store.stats()
        assert stats.size == 5
        assert stats.capacity == 5
        assert sorted(store.list_all()) == [45, 46, 47, 48, 49]

    def test_sweep_removes_only_expired(self, clock):
        store = MemoryTokenStore("test", capacity=10, ttl_seconds=100, clock=clock)
        store.put("old", 1)
        clock.advance(60)
        store.put("new", 2)
        clock.advance(50)

        assert store.sweep_expired() == 1
        assert store.list_all() == [2]

    def test_list_all_skips_expired(self, clock):
        store = MemoryTokenStore("test", capacity=10, ttl_seconds=100, clock=clock)
        store.put("a", 1)
        store.put("b", 2, ttl_seconds=10)
        clock.advance(20)

        assert store.list_all() == [1]

    def test_concurrent_take_hands_out_value_once(self):
        store = MemoryTokenStore("test", capacity=10, ttl_seconds=300)
        store.put("k", "v")
        barrier = threading.Barrier(8)

        def take():
            barrier.wait()
            return store.take("k")

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: take(), range(8)))

        assert results.count("v") == 1
        assert results.count(None) == 7


# ============================================
# RedisTokenStore
# ============================================

class TestRedisTokenStore:

    def test_put_uses_setex_with_prefix(self):
        client = FakeRedis()
        store = RedisTokenStore("twofa_temp", 10, 300, client, encode, decode)

        store.put("abc", "v")

        assert client.ttls["gatekeeper:twofa_temp:abc"] == 300
        assert json.loads(client.data["gatekeeper:twofa_temp:abc"]) == {"value": "v"}

    def test_fractional_ttl_rounds_up(self):
        client = FakeRedis()
        store = RedisTokenStore("twofa_temp", 10, 300, client, encode, decode)

        store.put("abc", "v", ttl_seconds=12.2)

        assert client.ttls["gatekeeper:twofa_temp:abc"] == 13

    def test_take_is_single_use(self):
        store = RedisTokenStore("twofa_temp", 10, 300, FakeRedis(), encode, decode)
        store.put("abc", "v")

        assert store.get("abc") == "v"
        assert store.take("abc") == "v"
        assert store.take("abc") is None

    def test_list_all_and_stats(self):
        store = RedisTokenStore("twofa_setup", 10, 300, FakeRedis(), encode, decode)
        store.put("a", 1)
        store.put("b", 2)

        assert sorted(store.list_all()) == [1, 2]
        assert store.stats().size == 2

    def test_falls_back_to_memory_when_redis_fails(self):
        store = RedisTokenStore("twofa_temp", 10, 300, BrokenRedis(), encode, decode)

        store.put("abc", "v")

        assert store.get("abc") == "v"
        assert store.take("abc") == "v"
        assert store.take("abc") is None
        assert store.stats().size == 0


# ============================================
# Background sweep
# ============================================

class TestSweepTask:

    @pytest.mark.asyncio
    async def test_sweep_task_purges_expired_entries(self, clock):
        store = MemoryTokenStore("test", capacity=10, ttl_seconds=5, clock=clock)
        store.put("a", 1)
        store.put("b", 2)
        clock.advance(10)

        task = asyncio.create_task(sweep_expired_tokens([store], interval_seconds=0))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert store.stats().size == 0


class TestTokenLocks:

    @pytest.mark.asyncio
    async def test_same_token_runs_one_at_a_time(self):
        locks = TokenLocks()
        events = []

        async def attempt(name):
            async with locks.hold("token-1"):
                events.append(f"{name}-start")
                await asyncio.sleep(0.01)
                events.append(f"{name}-end")

        await asyncio.gather(attempt("a"), attempt("b"))

        assert events == ["a-start", "a-end", "b-start", "b-end"]
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_different_tokens_do_not_wait(self):
        locks = TokenLocks()
        events = []

        async def attempt(token):
            async with locks.hold(token):
                events.append(f"{token}-start")
                await asyncio.sleep(0.01)
                events.append(f"{token}-end")

        await asyncio.gather(attempt("x"), attempt("y"))

        assert events[:2] == ["x-start", "y-start"]

    @pytest.mark.asyncio
    async def test_lock_released_on_error(self):
        locks = TokenLocks()

        with pytest.raises(RuntimeError):
            async with locks.hold("token-1"):
                raise RuntimeError("boom")

        assert len(locks) == 0
