"""
Tests for the versioned analytics result cache.
"""

import asyncio

import pytest

from cache.analytics import AnalyticsCache
from cache.bus import InvalidationBus
from cache.store import CacheStore
from fakes import MsClock
from models.signals import Signal, SignalKind


@pytest.fixture
def clock():
    return MsClock()


@pytest.fixture
def store(clock):
    return CacheStore(clock=clock)


@pytest.fixture
def analytics(store):
    return AnalyticsCache(store, ttl_ms=300_000)


def counting_compute(calls, value="result"):
    async def compute():
        calls.append(1)
        return {"value": value, "run": len(calls)}

    return compute


class TestAnalyticsCache:
    """Tests for AnalyticsCache."""

    def test_caches_per_type(self, analytics):
        calls = []
        compute = counting_compute(calls)

        async def scenario():
            await analytics.get("u1", "salary", "v1", compute)
            await analytics.get("u1", "salary", "v1", compute)
            await analytics.get("u1", "skills-gap", "v1", compute)

        asyncio.run(scenario())

        assert len(calls) == 2
        assert analytics.cached_types("u1") == ["salary", "skills-gap"]

    def test_newer_profile_version_recomputes(self, analytics):
        calls = []
        compute = counting_compute(calls)

        async def scenario():
            first = await analytics.get("u1", "salary", "v1", compute)
            second = await analytics.get("u1", "salary", "v2", compute)
            return first, second

        first, second = asyncio.run(scenario())

        assert (first["run"], second["run"]) == (1, 2)
        assert analytics.entry("u1", "salary").version == "v2"

    def test_expires_after_ttl(self, analytics, clock):
        calls = []
        compute = counting_compute(calls)

        asyncio.run(analytics.get("u1", "salary", None, compute))
        clock.advance(300_000)
        asyncio.run(analytics.get("u1", "salary", None, compute))

        assert len(calls) == 2

    def test_invalidate_one_type(self, analytics):
        compute = counting_compute([])

        async def scenario():
            await analytics.get("u1", "salary", None, compute)
            await analytics.get("u1", "market", None, compute)

        asyncio.run(scenario())

        assert analytics.invalidate("u1", "salary") == 1
        assert analytics.cached_types("u1") == ["market"]

    def test_invalidate_all_for_user(self, analytics):
        compute = counting_compute([])

        async def scenario():
            await analytics.get("u1", "salary", None, compute)
            await analytics.get("u1", "market", None, compute)
            await analytics.get("u2", "salary", None, compute)

        asyncio.run(scenario())

        assert analytics.invalidate("u1") == 2
        assert analytics.cached_types("u1") == []
        assert analytics.cached_types("u2") == ["salary"]

    @pytest.mark.parametrize(
        "kind",
        [SignalKind.PROFILE_CHANGED, SignalKind.SKILLS_CHANGED, SignalKind.RECORD_MOVED, SignalKind.ANALYTICS_CHANGED],
    )
    def test_signals_evict_results(self, analytics, store, kind):
        bus = InvalidationBus(store)
        asyncio.run(analytics.get("u1", "salary", None, counting_compute([])))

        bus.publish(Signal(kind=kind, user_id="u1"))

        assert analytics.cached_types("u1") == []

    def test_interview_signal_keeps_results(self, analytics, store):
        bus = InvalidationBus(store)
        asyncio.run(analytics.get("u1", "salary", None, counting_compute([])))

        bus.publish(Signal(kind=SignalKind.INTERVIEWS_CHANGED, user_id="u1"))

        assert analytics.cached_types("u1") == ["salary"]
