"""
Tests for cache stores and the cache-backed rate limiter.
"""

import time

import pytest

from dispatchkit.caching import CacheEntry, FileCache, MemoryCache, NullCache, create_cache
from dispatchkit.ratelimit import CacheRateLimiter, RateLimiter, RateLimitInfo, limiter_key


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    if request.param == "memory":
        return MemoryCache(prefix="t:")
    return FileCache(tmp_path / "cache", prefix="t:")


# ============================================================================
# Store contract
# ============================================================================


class TestCacheStore:
    def test_set_get_delete(self, store):
        store.set("a", {"x": 1})
        assert store.get("a") == {"x": 1}
        assert store.has("a")

        assert store.delete("a") is True
        assert store.delete("a") is False
        assert store.get("a", "default") == "default"

    def test_expiry(self, store):
        store.set("short", 1, ttl=0.05)
        assert store.get("short") == 1
        time.sleep(0.1)
        assert store.get("short") is None
        assert not store.has("short")

    def test_zero_ttl_means_no_expiry(self, store):
        store.set("k", 1, ttl=0)
        assert store.ttl("k") is None
        assert store.get("k") == 1

    def test_ttl_remaining(self, store):
        store.set("k", 1, ttl=60)
        assert 59 < store.ttl("k") <= 60
        assert store.ttl("missing") is None

    def test_increment_keeps_window(self, store):
        assert store.increment("n", ttl=60) == 1
        assert store.increment("n", ttl=1) == 2
        assert store.increment("n", 5) == 7
        assert store.ttl("n") > 50

    def test_increment_restarts_non_numeric(self, store):
        store.set("n", "abc")
        assert store.increment("n") == 1

    def test_batch_operations(self, store):
        store.set_many({"a": 1, "b": 2})
        assert store.get_many(["a", "b", "c"]) == {"a": 1, "b": 2, "c": None}
        assert store.delete_many(["a", "c"]) == 1

    def test_clear(self, store):
        store.set_many({"a": 1, "b": 2})
        assert store.clear() == 2
        assert store.get("a") is None

    def test_stats(self, store):
        store.set("a", 1)
        store.get("a")
        store.get("missing")
        assert store.stats.hits == 1
        assert store.stats.misses == 1
        assert store.stats.sets == 1
        assert store.stats.hit_rate == 50.0


class TestMemoryCache:
    def test_clear_respects_prefix(self):
        shared = MemoryCache(prefix="a:")
        shared._store["b:other"] = CacheEntry(value=1)
        shared.set("mine", 1)

        assert shared.clear() == 1
        assert len(shared) == 1

    def test_expired_entries_are_swept_on_write(self):
        limiter = CacheRateLimiter(MemoryCache())
        for i in range(200):
            limiter.hit(limiter_key("m:C@h", f"10.0.0.{i}", by_ip=True), 10, 1)
        assert len(limiter.store) == 200

        time.sleep(1.1)
        limiter.hit(limiter_key("m:C@h", "10.9.9.9", by_ip=True), 10, 1)
        assert len(limiter.store) == 1

    def test_entries_without_expiry_are_kept_by_sweep(self):
        cache = MemoryCache()
        cache.set("forever", 1)
        cache.set("short", 1, ttl=0.05)
        time.sleep(0.1)

        cache.set("next", 2)
        assert len(cache) == 2
        assert cache.get("forever") == 1

    def test_least_recently_used_is_evicted(self):
        cache = MemoryCache(max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)

        assert cache.get("b") is None
        assert cache.get("a") == 1 and cache.get("c") == 3
        assert cache.stats.evictions == 1

    def test_overwrite_does_not_evict(self):
        cache = MemoryCache(max_size=1)
        cache.set("a", 1)
        cache.set("a", 2)
        assert cache.get("a") == 2
        assert cache.stats.evictions == 0

    def test_invalid_max_size(self):
        with pytest.raises(ValueError):
            MemoryCache(max_size=0)


class TestFileCache:
    def test_shared_between_instances(self, tmp_path):
        FileCache(tmp_path, prefix="p:").set("k", [1, 2])
        assert FileCache(tmp_path, prefix="p:").get("k") == [1, 2]

    def test_corrupt_file_is_discarded(self, tmp_path):
        cache = FileCache(tmp_path)
        cache.set("k", 1)
        cache._path("k").write_text("{broken")

        assert cache.get("k") is None
        assert not cache._path("k").exists()

    def test_no_temporary_files_left(self, tmp_path):
        cache = FileCache(tmp_path)
        cache.set("k", 1)
        assert not list(tmp_path.glob("*.tmp"))


class TestNullCache:
    def test_stores_nothing(self):
        cache = NullCache()
        cache.set("k", 1)
        assert cache.get("k") is None
        assert cache.delete("k") is False
        assert cache.clear() == 0


class TestCreateCache:
    def test_backends(self, tmp_path):
        assert isinstance(create_cache("memory"), MemoryCache)
        assert isinstance(create_cache("file", directory=str(tmp_path)), FileCache)
        assert isinstance(create_cache("null"), NullCache)

    @pytest.mark.parametrize("backend, kwargs", [("redis", {}), ("file", {})])
    def test_invalid(self, backend, kwargs):
        with pytest.raises(ValueError):
            create_cache(backend, **kwargs)


# ============================================================================
# Rate limiter
# ============================================================================


class TestCacheRateLimiter:
    def test_counts_down(self):
        limiter = CacheRateLimiter(MemoryCache())

        first = limiter.hit("k", 2, 60)
        assert first == RateLimitInfo(total=2, remaining=1, retry_after=60)
        assert not limiter.hit("k", 2, 60).exceeded
        third = limiter.hit("k", 2, 60)
        assert third.remaining == -1
        assert third.exceeded

    def test_window_expires(self):
        limiter = CacheRateLimiter(MemoryCache())
        limiter.hit("k", 1, 1)
        assert limiter.hit("k", 1, 1).exceeded

        time.sleep(1.05)
        assert not limiter.hit("k", 1, 1).exceeded

    def test_reset(self):
        limiter = CacheRateLimiter(MemoryCache())
        limiter.hit("k", 1, 60)
        assert limiter.reset("k")
        assert not limiter.hit("k", 1, 60).exceeded

    def test_satisfies_protocol(self):
        assert isinstance(CacheRateLimiter(MemoryCache()), RateLimiter)

    def test_limiter_key(self):
        assert limiter_key("m:C@h") == "m:C@h"
        assert limiter_key("m:C@h", "1.2.3.4", by_ip=True) == "m:C@h@1.2.3.4"
