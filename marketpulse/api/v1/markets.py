"""Markets endpoints — cards, add-by-ZIP, detail, cached summary, soft delete."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from marketpulse.api.v1.deps import get_service
from marketpulse.api.v1.models import AddMarketRequest, HideMarketRequest
from marketpulse.core.data.types import PropertyType
from marketpulse.core.markets.service import MarketService

router = APIRouter(tags=["Markets"])


@router.get("/markets")
async def list_markets(service: MarketService = Depends(get_service)):
    """Visible markets with the latest snapshot summary for each card."""
    return await service.list_markets()


@router.post("/markets")
async def add_market(body: AddMarketRequest, service: MarketService = Depends(get_service)):
    """Add a ZIP: ensure a fresh snapshot exists, then register the market."""
    result = await service.add_market(
        "" if body.zip is None else str(body.zip), body.property_type,
    )
    return result.to_dict()


@router.post("/markets/hide")
async def hide_market(body: HideMarketRequest, service: MarketService = Depends(get_service)):
    await service.hide_market(body.id)
    return {"ok": True}


@router.get("/markets/{market_id}")
async def get_market_detail(market_id: str, service: MarketService = Depends(get_service)):
    """Stored market + latest snapshot. Legacy city ids resolve to their ZIP."""
    market, snapshot = await service.market_detail(market_id)
    return {"market": market.to_dict(), "snapshot": snapshot.to_dict()}


@router.get("/markets/{market_id}/summary")
async def get_market_summary(
    market_id: str,
    property_type: PropertyType = Query(PropertyType.ALL, alias="propertyType"),
    service: MarketService = Depends(get_service),
):
    """Latest snapshot, refreshed when older than the summary TTL; stale on refresh failure."""
    result = await service.summary(market_id, property_type)
    return result.to_dict()
