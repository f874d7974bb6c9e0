"""Unit tests for snapshot persistence and the cache-first refresh path."""
from datetime import timedelta

import pytest

from marketpulse.core.data.cache.snapshot_cache import SnapshotCache
from marketpulse.core.data.cache.snapshot_store import SnapshotStore
from marketpulse.core.data.providers.rentcast import normalize
from marketpulse.core.data.types import PropertyType
from marketpulse.core.errors import ProviderHTTPError, QuotaExhausted, UpstreamNoData
from marketpulse.core.markets.registry import MarketRegistry
from marketpulse.core.usage.budget import BudgetGuard
from marketpulse.core.usage.ledger import UsageLedger
from tests.fakes import RENTALS, SALES, FakeProvider

TTL = timedelta(hours=24)


@pytest.fixture
def parts(session_factory, clock):
    provider = FakeProvider(clock=clock)
    guard = BudgetGuard(UsageLedger(session_factory), 5, clock=clock)
    store = SnapshotStore(session_factory)
    cache = SnapshotCache(store, guard, provider, clock=clock)
    return provider, guard, store, cache


# ── SnapshotStore ────────────────────────────────────────────────────────


class TestSnapshotStore:

    @pytest.mark.asyncio
    async def test_append_registers_market_in_same_write(self, session_factory, clock):
        store = SnapshotStore(session_factory)
        agg = normalize("zip:18504", PropertyType.SFH, SALES, RENTALS, as_of=clock())

        snap = await store.append("zip:18504", agg, register_market=True)

        market = await MarketRegistry(session_factory).get("zip:18504")
        assert market is not None
        assert market.hidden is False
        assert snap.market_id == "zip:18504"
        assert snap.kpis.median_price == 250000

    @pytest.mark.asyncio
    async def test_latest_filters_by_type_and_orders_by_as_of(self, session_factory, clock):
        store = SnapshotStore(session_factory)
        old = normalize("zip:18504", PropertyType.SFH, SALES, [], as_of=clock() - timedelta(days=3))
        new = normalize("zip:18504", PropertyType.SFH, SALES, RENTALS, as_of=clock())
        other = normalize("zip:18504", PropertyType.ALL, SALES, RENTALS, as_of=clock() - timedelta(days=1))
        await store.append("zip:18504", new, register_market=True)
        await store.append("zip:18504", old)
        await store.append("zip:18504", other)

        latest_sfh = await store.latest("zip:18504", PropertyType.SFH)
        assert latest_sfh.as_of == clock()
        assert latest_sfh.kpis.median_rent == 1400

        latest_all = await store.latest("zip:18504", PropertyType.ALL)
        assert latest_all.property_type == PropertyType.ALL

        assert (await store.latest("zip:18504")).as_of == clock()
        assert await store.latest("zip:99999") is None
        assert await store.count("zip:18504") == 3

    @pytest.mark.asyncio
    async def test_round_trips_series_and_breakdown(self, session_factory, clock):
        store = SnapshotStore(session_factory)
        agg = normalize("zip:18504", PropertyType.ALL, SALES, RENTALS, as_of=clock())
        await store.append("zip:18504", agg, register_market=True)

        snap = await store.latest("zip:18504", PropertyType.ALL)

        assert snap.series == agg.series
        assert snap.source_meta == agg.source_meta
        assert snap.as_of.tzinfo is not None


# ── SnapshotCache ────────────────────────────────────────────────────────


class TestSnapshotCache:

    @pytest.mark.asyncio
    async def test_miss_fetches_and_stores(self, parts):
        provider, guard, store, cache = parts

        result = await cache.get_or_refresh("zip:18504", PropertyType.SFH, TTL, register_market=True)

        assert result.refreshed is True
        assert result.stale is False
        assert provider.call_count == 1
        assert await store.count("zip:18504") == 1
        assert await guard.remaining() == 4

    @pytest.mark.asyncio
    async def test_fresh_snapshot_served_without_budget(self, parts, clock):
        provider, guard, store, cache = parts
        first = await cache.get_or_refresh("zip:18504", PropertyType.SFH, TTL, register_market=True)
        clock.advance(hours=23)

        second = await cache.get_or_refresh("zip:18504", PropertyType.SFH, TTL, register_market=True)

        assert second.snapshot.id == first.snapshot.id
        assert second.refreshed is False
        assert provider.call_count == 1
        assert await store.count("zip:18504") == 1
        assert await guard.remaining() == 4

    @pytest.mark.asyncio
    async def test_expired_snapshot_refreshes(self, parts, clock):
        provider, guard, store, cache = parts
        await cache.get_or_refresh("zip:18504", PropertyType.SFH, TTL, register_market=True)
        clock.advance(hours=25)

        result = await cache.get_or_refresh("zip:18504", PropertyType.SFH, TTL)

        assert result.refreshed is True
        assert result.snapshot.as_of == clock()
        assert provider.call_count == 2
        assert await store.count("zip:18504") == 2

    @pytest.mark.asyncio
    async def test_failed_refresh_serves_stale_without_writing(self, parts, clock):
        provider, guard, store, cache = parts
        first = await cache.get_or_refresh("zip:18504", PropertyType.SFH, TTL, register_market=True)
        clock.advance(days=2)
        provider.outcomes.append(ProviderHTTPError(503, "Service Unavailable"))

        result = await cache.get_or_refresh("zip:18504", PropertyType.SFH, TTL)

        assert result.stale is True
        assert result.snapshot.id == first.snapshot.id
        assert result.error == "RentCast request failed (503). Try again later."
        assert result.error_code == "RENTCAST_PROVIDER_ERROR"
        assert await store.count("zip:18504") == 1
        assert await guard.remaining() == 4   # 503 refunded

    @pytest.mark.asyncio
    async def test_failed_refresh_without_snapshot_raises(self, parts, session_factory):
        provider, guard, store, cache = parts
        provider.outcomes.append(ProviderHTTPError(404, "Not Found"))

        with pytest.raises(UpstreamNoData):
            await cache.get_or_refresh("zip:00501", PropertyType.SFH, TTL, register_market=True)

        assert await store.count("zip:00501") == 0
        assert await MarketRegistry(session_factory).get("zip:00501") is None

    @pytest.mark.asyncio
    async def test_exhausted_budget_serves_stale(self, session_factory, clock):
        provider = FakeProvider(clock=clock)
        guard = BudgetGuard(UsageLedger(session_factory), 1, clock=clock)
        cache = SnapshotCache(SnapshotStore(session_factory), guard, provider, clock=clock)
        await cache.get_or_refresh("zip:18504", PropertyType.SFH, TTL, register_market=True)
        clock.advance(days=2)

        result = await cache.get_or_refresh("zip:18504", PropertyType.SFH, TTL)

        assert result.stale is True
        assert result.error_code == QuotaExhausted.code
        assert provider.call_count == 1
