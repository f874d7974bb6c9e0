"""Aggregation policy for raw sale/rental listings.

Medians (never means) of the sampled values, a coarse sample-size confidence
score, and a monthly series keyed on the first day of each month.
"""
from __future__ import annotations

import math
from datetime import datetime

import polars as pl

from marketpulse.core.data.types import Kpis, SeriesPoint

# (minimum sample size, confidence), checked top-down
CONFIDENCE_TIERS: list[tuple[int, float]] = [
    (50, 0.9),
    (20, 0.7),
    (1, 0.5),
]
FLOOR_CONFIDENCE = 0.2


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def median(values) -> float | None:
    clean = [float(v) for v in values if _is_number(v)]
    if not clean:
        return None
    return pl.Series(clean, dtype=pl.Float64).median()


def confidence_for(sample_size: int) -> float:
    for threshold, score in CONFIDENCE_TIERS:
        if sample_size >= threshold:
            return score
    return FLOOR_CONFIDENCE


def month_key(value) -> str | None:
    """'2024-01-17T00:00:00.000Z' -> '2024-01-01'; None when unparseable."""
    if not isinstance(value, str) or not value:
        return None
    try:
        d = datetime.fromisoformat(value)
    except ValueError:
        return None
    return f"{d.year:04d}-{d.month:02d}-01"


def _first(record: dict, *keys):
    for k in keys:
        v = record.get(k)
        if v is not None:
            return v
    return None


# ── Field extraction (RentCast names first, older/alternate names after) ─────


def sale_price(rec: dict):
    return _first(rec, "price", "lastSalePrice")


def sale_ppsf(rec: dict):
    explicit = _first(rec, "pricePerSquareFoot", "price_per_sqft")
    if explicit is not None:
        return explicit
    price, sqft = sale_price(rec), rec.get("squareFootage")
    if _is_number(price) and _is_number(sqft) and sqft > 0:
        return price / sqft
    return None


def sale_dom(rec: dict):
    return _first(rec, "daysOnMarket", "days_on_market")


def sale_date(rec: dict):
    return _first(rec, "closeDate", "lastSaleDate", "listedDate")


def rental_rent(rec: dict):
    return _first(rec, "rent", "price", "listPrice", "monthly_rent")


def rental_date(rec: dict):
    return _first(rec, "listDate", "listedDate", "lastSeenDate")


def build_series(sales: list[dict], rentals: list[dict]) -> list[SeriesPoint]:
    rows = []
    for s in sales:
        key = month_key(sale_date(s))
        price = sale_price(s)
        if key:
            rows.append({"month": key, "price": float(price) if _is_number(price) else None, "rent": None})
    for r in rentals:
        key = month_key(rental_date(r))
        rent = rental_rent(r)
        if key:
            rows.append({"month": key, "price": None, "rent": float(rent) if _is_number(rent) else None})

    if not rows:
        return []

    df = pl.DataFrame(rows, schema={"month": pl.Utf8, "price": pl.Float64, "rent": pl.Float64})
    monthly = (
        df.group_by("month")
        .agg(pl.col("price").median(), pl.col("rent").median())
        .sort("month")
    )
    return [
        SeriesPoint(date=row["month"], median_price=row["price"], median_rent=row["rent"])
        for row in monthly.to_dicts()
    ]


def summarize(sales: list[dict], rentals: list[dict]) -> tuple[Kpis, list[SeriesPoint]]:
    prices = [p for p in map(sale_price, sales) if _is_number(p)]
    rents = [r for r in map(rental_rent, rentals) if _is_number(r)]
    kpis = Kpis(
        median_price=median(prices),
        median_rent=median(rents),
        ppsf=median(sale_ppsf(s) for s in sales),
        dom=median(sale_dom(s) for s in sales),
        confidence=confidence_for(len(prices) + len(rents)),
    )
    return kpis, build_series(sales, rentals)
