"""Typed market payloads.

Provider output is normalized into these records before it reaches the cache,
and JSON columns are decoded back into them when read. Wire/JSON keys stay
camelCase (medianPrice, asOf, ...) for the front end.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class PropertyType(str, Enum):
    ALL = "all"
    SFH = "sfh"       # single family
    CONDO = "condo"
    MULTI = "2to4"    # 2-4 unit multi-family


# Breakdown buckets under source_meta.perType (excludes ALL)
BREAKDOWN_TYPES = (PropertyType.SFH, PropertyType.CONDO, PropertyType.MULTI)


def _num(value) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


@dataclass(frozen=True)
class Kpis:
    median_price: float | None = None
    median_rent: float | None = None
    ppsf: float | None = None
    dom: float | None = None
    confidence: float | None = None

    def to_dict(self) -> dict:
        return {
            "medianPrice": self.median_price,
            "medianRent": self.median_rent,
            "ppsf": self.ppsf,
            "dom": self.dom,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: dict | None) -> Kpis:
        data = data or {}
        return cls(
            median_price=_num(data.get("medianPrice")),
            median_rent=_num(data.get("medianRent")),
            ppsf=_num(data.get("ppsf")),
            dom=_num(data.get("dom")),
            confidence=_num(data.get("confidence")),
        )


@dataclass(frozen=True)
class SeriesPoint:
    date: str   # YYYY-MM-01
    median_price: float | None = None
    median_rent: float | None = None

    def to_dict(self) -> dict:
        return {"date": self.date, "medianPrice": self.median_price, "medianRent": self.median_rent}

    @classmethod
    def from_dict(cls, data: dict) -> SeriesPoint:
        return cls(
            date=str(data["date"]),
            median_price=_num(data.get("medianPrice")),
            median_rent=_num(data.get("medianRent")),
        )


@dataclass(frozen=True)
class TypeBreakdown:
    kpis: Kpis
    series: list[SeriesPoint] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"kpis": self.kpis.to_dict(), "series": [p.to_dict() for p in self.series]}

    @classmethod
    def from_dict(cls, data: dict) -> TypeBreakdown:
        return cls(
            kpis=Kpis.from_dict(data.get("kpis")),
            series=[SeriesPoint.from_dict(p) for p in data.get("series") or []],
        )


@dataclass(frozen=True)
class SourceMeta:
    provider: str
    zip: str | None = None
    sale_samples: int = 0
    rental_samples: int = 0
    per_type: dict[PropertyType, TypeBreakdown] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "provider": self.provider,
            "zip": self.zip,
            "saleSamples": self.sale_samples,
            "rentalSamples": self.rental_samples,
            "perType": {pt.value: b.to_dict() for pt, b in self.per_type.items()},
        }

    @classmethod
    def from_dict(cls, data: dict | None) -> SourceMeta | None:
        if not data:
            return None
        return cls(
            provider=data.get("provider", ""),
            zip=data.get("zip"),
            sale_samples=int(data.get("saleSamples") or 0),
            rental_samples=int(data.get("rentalSamples") or 0),
            per_type={
                PropertyType(k): TypeBreakdown.from_dict(v)
                for k, v in (data.get("perType") or {}).items()
                if k in PropertyType._value2member_map_
            },
        )


@dataclass(frozen=True)
class Aggregate:
    """Normalized provider result for one (market, property type)."""
    as_of: datetime
    property_type: PropertyType
    kpis: Kpis
    series: list[SeriesPoint] = field(default_factory=list)
    source_meta: SourceMeta | None = None


@dataclass(frozen=True)
class SnapshotRecord:
    id: int
    market_id: str
    property_type: PropertyType
    as_of: datetime
    kpis: Kpis
    series: list[SeriesPoint]
    source_meta: SourceMeta | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "marketId": self.market_id,
            "propertyType": self.property_type.value,
            "asOf": self.as_of.isoformat(),
            "kpis": self.kpis.to_dict(),
            "series": [p.to_dict() for p in self.series],
            "sourceMeta": self.source_meta.to_dict() if self.source_meta else None,
        }


@dataclass(frozen=True)
class MarketRecord:
    id: str
    scope: str
    city: str | None
    state: str | None
    hidden: bool
    created_at: datetime

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "scope": self.scope,
            "city": self.city,
            "state": self.state,
            "hidden": self.hidden,
            "createdAt": self.created_at.isoformat(),
        }
