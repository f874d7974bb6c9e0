"""SnapshotCache — serve a stored snapshot while fresh, refresh through the budget guard otherwise."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

import structlog

from marketpulse.core.data.cache.snapshot_store import SnapshotStore
from marketpulse.core.data.providers.base import MarketDataProvider
from marketpulse.core.data.types import PropertyType, SnapshotRecord
from marketpulse.core.errors import MarketDataError
from marketpulse.core.usage.budget import BudgetGuard, utcnow

logger = structlog.get_logger()


@dataclass(frozen=True)
class CacheResult:
    snapshot: SnapshotRecord
    stale: bool = False
    error: str | None = None
    error_code: str | None = None
    refreshed: bool = False

    def to_dict(self) -> dict:
        return {"snapshot": self.snapshot.to_dict(), "stale": self.stale, "error": self.error}


class SnapshotCache:

    def __init__(
        self,
        store: SnapshotStore,
        guard: BudgetGuard,
        provider: MarketDataProvider,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._guard = guard
        self._provider = provider
        self._clock = clock

    def is_fresh(self, snapshot: SnapshotRecord, ttl: timedelta) -> bool:
        return self._clock() - snapshot.as_of < ttl

    async def get_or_refresh(
        self,
        market_id: str,
        property_type: PropertyType,
        ttl: timedelta,
        register_market: bool = False,
    ) -> CacheResult:
        log = logger.bind(market_id=market_id, property_type=property_type.value)
        current = await self._store.latest(market_id, property_type)

        if current is not None and self.is_fresh(current, ttl):
            log.info("cache.hit", as_of=current.as_of.isoformat())
            return CacheResult(snapshot=current)

        log.info("cache.refresh", reason="stale" if current else "missing")
        try:
            aggregate = await self._guard.run(
                lambda: self._provider.fetch_aggregate(market_id, property_type)
            )
        except MarketDataError as e:
            if current is None:
                raise
            log.warning("cache.stale", code=e.code, error=e.message, as_of=current.as_of.isoformat())
            return CacheResult(snapshot=current, stale=True, error=e.message, error_code=e.code)

        snapshot = await self._store.append(market_id, aggregate, register_market=register_market)
        log.info("cache.stored", snapshot_id=snapshot.id, as_of=snapshot.as_of.isoformat())
        return CacheResult(snapshot=snapshot, refreshed=True)
