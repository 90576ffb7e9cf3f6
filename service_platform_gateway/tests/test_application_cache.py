"""
Unit tests for the application route cache.
"""

import asyncio

import pytest

from service_platform_gateway.app.caching.application_cache import ApplicationCache
from service_platform_gateway.app.domain.models import ApplicationRecord
from service_platform_gateway.app.permissions.store import InMemoryPermissionStore
from shared.metrics import MetricsCollector


class CountingStore(InMemoryPermissionStore):
    def __init__(self, *args, gate=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.loads = 0
        self.gate = gate

    async def list_applications(self):
        self.loads += 1
        if self.gate is not None:
            await self.gate.wait()
        return await super().list_applications()


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def applications():
    return [
        ApplicationRecord(key="budgets", route="/budgets", id=1),
        ApplicationRecord(key="budget-reports", route="budgets/reports/", id=2),
        ApplicationRecord(key="prayer", route="/prayer", requires_auth=False, id=3),
        ApplicationRecord(key="home", route="/", id=4),
    ]


class TestApplicationCache:
    """Test cases for ApplicationCache."""

    @pytest.mark.asyncio
    async def test_longest_route_prefix_wins(self):
        cache = ApplicationCache(CountingStore(applications()))

        assert (await cache.application_for_path("/budgets")).key == "budgets"
        assert (await cache.application_for_path("/budgets/12")).key == "budgets"
        assert (await cache.application_for_path("/budgets/reports/2024")).key == "budget-reports"
        assert await cache.application_for_path("/budgetsextra") is None
        assert await cache.application_for_path("/events") is None

    @pytest.mark.asyncio
    async def test_public_routes(self):
        cache = ApplicationCache(CountingStore(applications()))

        assert await cache.public_routes() == frozenset({"/prayer"})
        assert (await cache.get("prayer")).requires_auth is False

    @pytest.mark.asyncio
    async def test_reloads_after_ttl(self):
        clock = FakeClock()
        store = CountingStore(applications())
        metrics = MetricsCollector("gateway-test")
        cache = ApplicationCache(store, ttl=60, clock=clock, metrics=metrics)

        await cache.snapshot()
        clock.now = 59.9
        await cache.snapshot()
        assert store.loads == 1

        store.add_application(ApplicationRecord(key="events", route="/events", id=5))
        clock.now = 60.0
        assert (await cache.application_for_path("/events")).key == "events"
        assert store.loads == 2
        assert metrics.registry.get_sample_value("cache_hits_total", {"cache_type": "applications"}) == 1.0
        assert metrics.registry.get_sample_value("cache_misses_total", {"cache_type": "applications"}) == 2.0

    @pytest.mark.asyncio
    async def test_concurrent_misses_share_one_load(self):
        gate = asyncio.Event()
        store = CountingStore(applications(), gate=gate)
        cache = ApplicationCache(store)

        waiters = [asyncio.ensure_future(cache.snapshot()) for _ in range(10)]
        await asyncio.sleep(0.01)
        gate.set()
        snapshots = await asyncio.gather(*waiters)

        assert store.loads == 1
        assert all(snapshot is snapshots[0] for snapshot in snapshots)

    @pytest.mark.asyncio
    async def test_invalidate_forces_reload(self):
        store = CountingStore(applications())
        cache = ApplicationCache(store)

        await cache.snapshot()
        cache.invalidate()
        await cache.snapshot()

        assert store.loads == 2

    @pytest.mark.asyncio
    async def test_failed_load_is_retried_on_next_call(self):
        store = CountingStore(applications())
        cache = ApplicationCache(store)
        original = store.list_applications

        async def broken():
            raise RuntimeError("database unavailable")

        store.list_applications = broken
        with pytest.raises(RuntimeError):
            await cache.snapshot()

        store.list_applications = original
        assert (await cache.get("budgets")).id == 1
