"""Append-only snapshot persistence."""
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketpulse.core.data.types import (
    Aggregate,
    Kpis,
    PropertyType,
    SeriesPoint,
    SnapshotRecord,
    SourceMeta,
)
from marketpulse.core.db.models import Snapshot
from marketpulse.core.markets.registry import insert_identity


def as_utc(dt: datetime) -> datetime:
    # sqlite hands back naive datetimes
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


def _record(row: Snapshot) -> SnapshotRecord:
    return SnapshotRecord(
        id=row.id,
        market_id=row.market_id,
        property_type=PropertyType(row.property_type),
        as_of=as_utc(row.as_of),
        kpis=Kpis.from_dict(row.kpis),
        series=[SeriesPoint.from_dict(p) for p in row.series or []],
        source_meta=SourceMeta.from_dict(row.source_meta),
    )


class SnapshotStore:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    async def latest(self, market_id: str, property_type: PropertyType | None = None) -> SnapshotRecord | None:
        """Most recent snapshot by as_of; any property type when none is given."""
        stmt = select(Snapshot).where(Snapshot.market_id == market_id)
        if property_type is not None:
            stmt = stmt.where(Snapshot.property_type == property_type.value)
        stmt = stmt.order_by(Snapshot.as_of.desc(), Snapshot.id.desc()).limit(1)
        async with self._sessions() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        return _record(row) if row else None

    async def append(self, market_id: str, aggregate: Aggregate, register_market: bool = False) -> SnapshotRecord:
        """Insert a new snapshot row. With register_market the market identity row is
        created in the same transaction, so a market never exists without data."""
        async with self._sessions() as session, session.begin():
            if register_market:
                await insert_identity(session, market_id)
            row = Snapshot(
                market_id=market_id,
                property_type=aggregate.property_type.value,
                as_of=aggregate.as_of,
                kpis=aggregate.kpis.to_dict(),
                series=[p.to_dict() for p in aggregate.series],
                source_meta=aggregate.source_meta.to_dict() if aggregate.source_meta else None,
            )
            session.add(row)
            await session.flush()
            record = _record(row)
        return record

    async def count(self, market_id: str, property_type: PropertyType | None = None) -> int:
        stmt = select(func.count()).select_from(Snapshot).where(Snapshot.market_id == market_id)
        if property_type is not None:
            stmt = stmt.where(Snapshot.property_type == property_type.value)
        async with self._sessions() as session:
            return (await session.execute(stmt)).scalar_one()
