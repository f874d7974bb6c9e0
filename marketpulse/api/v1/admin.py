"""Admin endpoints — RentCast budget status and core market refresh."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from marketpulse.api.v1.deps import get_service
from marketpulse.api.v1.models import RefreshCoreRequest
from marketpulse.core.markets.service import MarketService

router = APIRouter(tags=["Admin"])


@router.get("/admin/usage")
async def get_usage(service: MarketService = Depends(get_service)):
    """Calls reserved against this month's RentCast budget."""
    return await service.usage()


@router.post("/admin/rentcast/refresh-core")
async def refresh_core(
    body: RefreshCoreRequest | None = None,
    service: MarketService = Depends(get_service),
):
    """Refresh every core market's ALL snapshot; stops early once the budget is exhausted."""
    results = await service.refresh_core(body.market_ids if body else None)
    return {"ok": True, "results": results}
