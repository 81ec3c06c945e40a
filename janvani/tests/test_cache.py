"""
CacheStore tests: TTL boundary with an injected clock, in-flight coalescing,
selective invalidation and clears that race in-flight requests.
"""

import asyncio

import pytest

from janvani.cache import CacheStore, make_signature, signature_path
from janvani.errors import NetworkError

pytestmark = pytest.mark.asyncio


class Upstream:
    """Stand-in for a gateway call: counts invocations, optionally slow or failing."""

    def __init__(self, delay: float = 0, error: Exception = None):
        self.calls = 0
        self.delay = delay
        self.error = error

    async def __call__(self):
        self.calls += 1
        await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return {"success": True, "call": self.calls}


# ═══════════════════════════════════════════════════════════════════════════════
# SIGNATURES
# ═══════════════════════════════════════════════════════════════════════════════

class TestSignature:
    async def test_query_is_sorted_and_none_dropped(self):
        a = make_signature("/complaints", {"status": "Resolved", "ward": 3, "search": None})
        b = make_signature("/complaints", {"ward": 3, "status": "Resolved"})
        assert a == b == "/complaints?status=Resolved&ward=3"

    async def test_distinct_filters_cache_independently(self):
        assert make_signature("/complaints", {"status": "Resolved"}) != make_signature("/complaints")

    async def test_path_part(self):
        assert signature_path("/complaints?status=Resolved") == "/complaints"
        assert signature_path(make_signature("/x", body={"a": 1})) == "/x"


# ═══════════════════════════════════════════════════════════════════════════════
# TTL
# ═══════════════════════════════════════════════════════════════════════════════

class TestTTL:
    async def test_hit_just_inside_ttl(self, clock):
        cache, upstream = CacheStore(ttl=15, clock=clock), Upstream()
        first = await cache.fetch("/complaints", upstream)
        clock.advance(15 - 0.001)
        assert await cache.fetch("/complaints", upstream) == first
        assert upstream.calls == 1

    async def test_refetch_just_past_ttl(self, clock):
        cache, upstream = CacheStore(ttl=15, clock=clock), Upstream()
        await cache.fetch("/complaints", upstream)
        clock.advance(15 + 0.001)
        assert (await cache.fetch("/complaints", upstream))["call"] == 2
        assert upstream.calls == 2

    async def test_expired_entry_is_deleted(self, clock):
        cache = CacheStore(ttl=15, clock=clock)
        cache.put("/complaints", {"x": 1})
        clock.advance(16)
        assert cache.get("/complaints") is None
        assert len(cache) == 0


# ═══════════════════════════════════════════════════════════════════════════════
# COALESCING
# ═══════════════════════════════════════════════════════════════════════════════

class TestCoalescing:
    async def test_concurrent_fetches_share_one_call(self, clock):
        cache, upstream = CacheStore(clock=clock), Upstream(delay=0.01)
        results = await asyncio.gather(*(cache.fetch("/complaints", upstream) for _ in range(5)))
        assert upstream.calls == 1
        assert all(r == results[0] for r in results)
        assert not cache.is_in_flight("/complaints")

    async def test_concurrent_fetches_share_one_rejection(self, clock):
        error = NetworkError("down")
        cache, upstream = CacheStore(clock=clock), Upstream(delay=0.01, error=error)
        results = await asyncio.gather(*(cache.fetch("/complaints", upstream) for _ in range(3)),
                                       return_exceptions=True)
        assert upstream.calls == 1
        assert all(r is error for r in results)
        assert not cache.is_in_flight("/complaints")

    async def test_failure_does_not_populate(self, clock):
        cache = CacheStore(clock=clock)
        with pytest.raises(NetworkError):
            await cache.fetch("/complaints", Upstream(error=NetworkError("down")))
        assert cache.get("/complaints") is None
        upstream = Upstream()
        await cache.fetch("/complaints", upstream)
        assert upstream.calls == 1

    async def test_different_signatures_do_not_coalesce(self, clock):
        cache, upstream = CacheStore(clock=clock), Upstream(delay=0.01)
        await asyncio.gather(cache.fetch("/complaints", upstream), cache.fetch("/complaints/stats", upstream))
        assert upstream.calls == 2


# ═══════════════════════════════════════════════════════════════════════════════
# INVALIDATION
# ═══════════════════════════════════════════════════════════════════════════════

class TestInvalidation:
    async def test_invalidate_matches_path_exactly(self, clock):
        cache = CacheStore(clock=clock)
        for sig in ("/complaints", "/complaints?status=Resolved", "/complaints/stats",
                    "/complaints/abc", "/users/leaderboard"):
            cache.put(sig, {"sig": sig})
        cache.invalidate("/complaints")
        assert cache.get("/complaints") is None
        assert cache.get("/complaints?status=Resolved") is None
        assert cache.get("/complaints/stats") is not None
        assert cache.get("/complaints/abc") is not None
        assert cache.get("/users/leaderboard") is not None

    async def test_clear_discards_in_flight_result(self, clock):
        cache, upstream = CacheStore(clock=clock), Upstream(delay=0.01)
        pending = asyncio.ensure_future(cache.fetch("/complaints", upstream))
        await asyncio.sleep(0)
        assert cache.is_in_flight("/complaints")
        cache.clear()
        assert (await pending)["call"] == 1
        assert cache.get("/complaints") is None

    async def test_invalidate_discards_in_flight_result(self, clock):
        cache, upstream = CacheStore(clock=clock), Upstream(delay=0.01)
        pending = asyncio.ensure_future(cache.fetch("/complaints/stats", upstream))
        await asyncio.sleep(0)
        cache.invalidate("/complaints/stats")
        await pending
        assert cache.get("/complaints/stats") is None
        await cache.fetch("/complaints/stats", upstream)
        assert upstream.calls == 2

