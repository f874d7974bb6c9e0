"""RentCast provider — sale and long-term rental listings aggregated per ZIP/city."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

import aiohttp
import structlog
from aiolimiter import AsyncLimiter

from marketpulse.core.config import Settings
from marketpulse.core.data.aggregation import summarize
from marketpulse.core.data.providers.base import MarketDataProvider
from marketpulse.core.data.types import (
    BREAKDOWN_TYPES,
    Aggregate,
    PropertyType,
    SourceMeta,
    TypeBreakdown,
)
from marketpulse.core.errors import ConfigError, MalformedResponse, ProviderHTTPError, ValidationError
from marketpulse.core.markets.registry import parse_market_id

logger = structlog.get_logger()

SALE_LISTINGS_PATH = "/v1/listings/sale"
RENTAL_LISTINGS_PATH = "/v1/listings/rental/long-term"

RENTCAST_PROPERTY_TYPES: dict[PropertyType, str] = {
    PropertyType.SFH: "Single Family",
    PropertyType.CONDO: "Condo",
    PropertyType.MULTI: "Multi-Family",
}
_FROM_RENTCAST = {v: k for k, v in RENTCAST_PROPERTY_TYPES.items()}


@dataclass(frozen=True)
class RentCastConfig:
    api_key: str
    base_url: str = "https://api.rentcast.io"
    requests_per_minute: int = 20
    sample_limit: int = 50
    timeout_seconds: float = 20

    @classmethod
    def from_settings(cls, s: Settings) -> RentCastConfig:
        return cls(
            api_key=s.rentcast_api_key.strip(),
            base_url=s.rentcast_base_url.rstrip("/"),
            requests_per_minute=s.rentcast_requests_per_minute,
            sample_limit=s.rentcast_sample_limit,
            timeout_seconds=s.rentcast_timeout_seconds,
        )

    def validate(self) -> RentCastConfig:
        if not self.api_key:
            raise ConfigError("RENTCAST_API_KEY is not set")
        if self.requests_per_minute <= 0 or self.sample_limit <= 0:
            raise ConfigError("RentCast pacing and sample limits must be positive")
        return self


class RentCastProvider(MarketDataProvider):

    def __init__(self, config: RentCastConfig, session_factory=aiohttp.ClientSession):
        self._config = config.validate()
        self._session_factory = session_factory
        self._limiter = AsyncLimiter(config.requests_per_minute, 60)

    @property
    def name(self) -> str:
        return "rentcast"

    def _headers(self) -> dict[str, str]:
        return {"X-Api-Key": self._config.api_key, "Accept": "application/json"}

    def _location_params(self, market_id: str) -> dict[str, str]:
        location = parse_market_id(market_id)
        if location.zip:
            return {"zipCode": location.zip}
        if location.city and location.state:
            return {"city": location.city, "state": location.state}
        raise ValidationError(f"Unsupported market id {market_id!r}", code="INVALID_MARKET_ID")

    async def _get(self, session: aiohttp.ClientSession, path: str, params: dict[str, str]) -> list[dict]:
        url = f"{self._config.base_url}{path}"
        async with self._limiter:
            async with session.get(url, params=params) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    raise ProviderHTTPError(resp.status, resp.reason or "", body)
                try:
                    data = await resp.json(content_type=None)
                except ValueError as e:
                    raise MalformedResponse(f"{path}: response is not JSON ({e})") from e

        if data is None:
            return []
        if not isinstance(data, list):
            raise MalformedResponse(f"{path}: expected a list, got {type(data).__name__}")
        return [r for r in data if isinstance(r, dict)]

    async def fetch_aggregate(self, market_id: str, property_type: PropertyType) -> Aggregate:
        params = {**self._location_params(market_id), "limit": str(self._config.sample_limit)}
        if property_type in RENTCAST_PROPERTY_TYPES:
            params["propertyType"] = RENTCAST_PROPERTY_TYPES[property_type]

        timeout = aiohttp.ClientTimeout(total=self._config.timeout_seconds)
        async with self._session_factory(headers=self._headers(), timeout=timeout) as session:
            sales = await self._get(session, SALE_LISTINGS_PATH, {**params, "status": "Inactive"})
            rentals = await self._get(session, RENTAL_LISTINGS_PATH, {**params, "status": "Active"})

        logger.info(
            "provider.ok", provider=self.name, market_id=market_id,
            property_type=property_type.value, sales=len(sales), rentals=len(rentals),
        )
        return normalize(market_id, property_type, sales, rentals, provider=self.name)


def record_type(rec: dict) -> PropertyType | None:
    return _FROM_RENTCAST.get(rec.get("propertyType"))


def normalize(
    market_id: str,
    property_type: PropertyType,
    sales: list[dict],
    rentals: list[dict],
    provider: str = "rentcast",
    as_of: datetime | None = None,
) -> Aggregate:
    """Raw listings -> Aggregate. The ALL dimension also gets a per-type breakdown."""
    kpis, series = summarize(sales, rentals)

    per_type: dict[PropertyType, TypeBreakdown] = {}
    if property_type == PropertyType.ALL:
        for pt in BREAKDOWN_TYPES:
            pt_sales = [s for s in sales if record_type(s) == pt]
            pt_rentals = [r for r in rentals if record_type(r) == pt]
            if pt_sales or pt_rentals:
                pt_kpis, pt_series = summarize(pt_sales, pt_rentals)
                per_type[pt] = TypeBreakdown(kpis=pt_kpis, series=pt_series)

    return Aggregate(
        as_of=as_of or datetime.now(timezone.utc),
        property_type=property_type,
        kpis=kpis,
        series=series,
        source_meta=SourceMeta(
            provider=provider,
            zip=parse_market_id(market_id).zip,
            sale_samples=len(sales),
            rental_samples=len(rentals),
            per_type=per_type,
        ),
    )
