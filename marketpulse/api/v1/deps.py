"""Service wiring — snapshot-cache-first access to RentCast.

Design: every market read goes through the MarketService built here, whose
SnapshotCache checks the snapshots table first and only on a miss (or a
snapshot older than the caller's TTL) calls RentCast, always through the
BudgetGuard.  This means:
  • Repeat reads inside the TTL never spend budget.
  • The monthly cap holds no matter how many requests race for a refresh.
  • A failed refresh degrades to the last stored snapshot, flagged stale.
"""
from __future__ import annotations

from datetime import timedelta

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketpulse.core.config import Settings
from marketpulse.core.data.cache.snapshot_cache import SnapshotCache
from marketpulse.core.data.cache.snapshot_store import SnapshotStore
from marketpulse.core.data.geo import ZipResolver
from marketpulse.core.data.providers.base import MarketDataProvider
from marketpulse.core.data.providers.rentcast import RentCastConfig, RentCastProvider
from marketpulse.core.markets.registry import MarketRegistry
from marketpulse.core.markets.service import MarketService
from marketpulse.core.usage.budget import BudgetGuard, utcnow
from marketpulse.core.usage.ledger import UsageLedger


def build_provider(settings: Settings) -> MarketDataProvider:
    """Raises ConfigError when RENTCAST_API_KEY is missing."""
    return RentCastProvider(RentCastConfig.from_settings(settings))


def build_service(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    provider: MarketDataProvider | None = None,
    geocoder: ZipResolver | None = None,
    clock=utcnow,
) -> MarketService:
    provider = provider or build_provider(settings)
    guard = BudgetGuard(
        UsageLedger(session_factory, provider=provider.name),
        settings.rentcast_monthly_limit,
        clock=clock,
    )
    store = SnapshotStore(session_factory)
    return MarketService(
        registry=MarketRegistry(session_factory),
        store=store,
        cache=SnapshotCache(store, guard, provider, clock=clock),
        guard=guard,
        geocoder=geocoder or ZipResolver(settings.geocoder_base_url),
        add_market_ttl=timedelta(hours=settings.add_market_ttl_hours),
        summary_ttl=timedelta(days=settings.summary_ttl_days),
    )


def get_service(request: Request) -> MarketService:
    return request.app.state.service
