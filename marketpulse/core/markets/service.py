"""MarketService — the operations behind the /markets and /admin routes."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

import structlog

from marketpulse.core.data.cache.snapshot_cache import CacheResult, SnapshotCache
from marketpulse.core.data.cache.snapshot_store import SnapshotStore
from marketpulse.core.data.geo import ZipResolver
from marketpulse.core.data.types import MarketRecord, PropertyType, SnapshotRecord
from marketpulse.core.errors import GeocodingError, NotFound, QuotaExhausted, MarketDataError
from marketpulse.core.markets.registry import (
    CORE_MARKET_IDS,
    MarketRegistry,
    canonical_zip_id,
    parse_market_id,
    resolve_alias,
)
from marketpulse.core.usage.budget import BudgetGuard

logger = structlog.get_logger()


@dataclass(frozen=True)
class AddMarketResult:
    market: MarketRecord
    cached: CacheResult

    def to_dict(self) -> dict:
        return {"market": self.market.to_dict(), **self.cached.to_dict()}


def card_summary(snapshot: SnapshotRecord | None) -> dict | None:
    if snapshot is None:
        return None
    return {
        "asOf": snapshot.as_of.isoformat(),
        "medianPrice": snapshot.kpis.median_price,
        "medianRent": snapshot.kpis.median_rent,
        "dom": snapshot.kpis.dom,
    }


class MarketService:

    def __init__(
        self,
        registry: MarketRegistry,
        store: SnapshotStore,
        cache: SnapshotCache,
        guard: BudgetGuard,
        geocoder: ZipResolver,
        add_market_ttl: timedelta = timedelta(hours=24),
        summary_ttl: timedelta = timedelta(days=7),
    ):
        self.registry = registry
        self.store = store
        self.cache = cache
        self.guard = guard
        self.geocoder = geocoder
        self.add_market_ttl = add_market_ttl
        self.summary_ttl = summary_ttl

    async def _require_market(self, market_id: str) -> MarketRecord:
        market = await self.registry.get(resolve_alias(market_id))
        if market is None:
            raise NotFound(f"Market {market_id!r} not found")
        return market

    async def _locate(self, market_id: str) -> tuple[str | None, str | None]:
        """(city, state code) for a zip market; geocoder failures degrade to (None, None)."""
        zip_code = parse_market_id(market_id).zip
        if zip_code is None:
            return None, None
        try:
            loc = await self.geocoder.resolve(zip_code)
        except GeocodingError as e:
            logger.warning("geo.resolve_failed", market_id=market_id, error=str(e))
            return None, None
        if loc is None:
            return None, None
        return loc.city, loc.state_code

    async def add_market(self, zip_code: str, property_type: PropertyType = PropertyType.SFH) -> AddMarketResult:
        market_id = canonical_zip_id(zip_code)   # ValidationError before any budget use
        log = logger.bind(market_id=market_id, property_type=property_type.value)

        # Brand-new ids get their market row in the snapshot's transaction, never before.
        cached = await self.cache.get_or_refresh(
            market_id, property_type, self.add_market_ttl, register_market=True,
        )

        city, state = await self._locate(market_id)
        market = await self.registry.upsert(market_id, city=city, state=state)
        log.info("market.added", stale=cached.stale, refreshed=cached.refreshed)
        return AddMarketResult(market=market, cached=cached)

    async def summary(self, market_id: str, property_type: PropertyType = PropertyType.ALL) -> CacheResult:
        market = await self._require_market(market_id)
        return await self.cache.get_or_refresh(market.id, property_type, self.summary_ttl)

    async def market_detail(self, market_id: str) -> tuple[MarketRecord, SnapshotRecord]:
        """Read-only: latest stored snapshot of any property type, no refresh."""
        market = await self._require_market(market_id)
        snapshot = await self.store.latest(market.id)
        if snapshot is None:
            raise NotFound("No snapshot for this market yet")
        return market, snapshot

    async def list_markets(self) -> list[dict]:
        items = []
        for m in await self.registry.list_visible():
            items.append({
                "id": m.id,
                "city": m.city,
                "state": m.state,
                "hidden": m.hidden,
                "summary": card_summary(await self.store.latest(m.id)),
            })
        return items

    async def hide_market(self, market_id: str) -> None:
        await self.registry.hide(resolve_alias(market_id))

    async def usage(self) -> dict:
        calls = await self.guard.used()
        return {
            "provider": self.guard.provider,
            "period": str(self.guard.period()),
            "calls": calls,
            "limit": self.guard.limit,
            "remaining": max(self.guard.limit - calls, 0),
        }

    async def _register_core(self, market_id: str) -> None:
        known = await self.registry.get(market_id)
        city = state = None
        if known is None or known.city is None:
            city, state = await self._locate(market_id)
        await self.registry.upsert(market_id, city=city, state=state, scope="core", unhide=False)

    async def refresh_core(self, market_ids: list[str] | None = None) -> list[dict]:
        """Refresh the ALL snapshot of each core market; stop once the budget is gone."""
        results = []
        for raw_id in market_ids or CORE_MARKET_IDS:
            market_id = resolve_alias(raw_id)
            try:
                cached = await self.cache.get_or_refresh(
                    market_id, PropertyType.ALL, self.add_market_ttl, register_market=True,
                )
            except QuotaExhausted as e:
                results.append({"marketId": market_id, "ok": False, "error": e.message})
                logger.warning("refresh_core.quota_exhausted", market_id=market_id)
                break
            except MarketDataError as e:
                results.append({"marketId": market_id, "ok": False, "error": e.message})
                continue
            await self._register_core(market_id)
            results.append({
                "marketId": market_id,
                "ok": not cached.stale,
                "stale": cached.stale,
                "refreshed": cached.refreshed,
                **({"error": cached.error} if cached.error else {}),
            })
            if cached.error_code == QuotaExhausted.code:
                break
        return results
