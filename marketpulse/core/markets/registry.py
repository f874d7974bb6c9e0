"""
Market Registry — market identity, legacy-id aliases and the persisted markets table.

Canonical ids are "zip:<5 digits>"; legacy "city:<ST>:<City>" ids still
resolve through MARKET_ALIASES at read time.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from urllib.parse import unquote

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketpulse.core.data.types import MarketRecord
from marketpulse.core.db.models import Market
from marketpulse.core.db.session import dialect_insert
from marketpulse.core.errors import NotFound, ValidationError

logger = structlog.get_logger()

ZIP_RE = re.compile(r"^\d{5}$")

MARKET_ALIASES: dict[str, str] = {
    "city:PA:Scranton": "zip:18504",
    "city:NY:Queens":   "zip:11368",
}

# Refreshed by POST /admin/rentcast/refresh-core
CORE_MARKET_IDS: list[str] = [
    "zip:18504",   # Scranton, PA
    "zip:18508",
    "zip:18509",
    "zip:11368",   # Queens, NY
]


@dataclass(frozen=True)
class MarketLocation:
    zip: str | None = None
    city: str | None = None
    state: str | None = None


def validate_zip(raw) -> str:
    zip_code = str(raw if raw is not None else "").strip()
    if not ZIP_RE.match(zip_code):
        raise ValidationError("zip (5 digits) is required")
    return zip_code


def canonical_zip_id(zip_code: str) -> str:
    return f"zip:{validate_zip(zip_code)}"


def resolve_alias(market_id: str) -> str:
    raw = unquote(market_id or "").strip()
    return MARKET_ALIASES.get(raw, raw)


def parse_market_id(market_id: str) -> MarketLocation:
    kind, _, rest = (market_id or "").partition(":")
    if kind == "zip" and ZIP_RE.match(rest):
        return MarketLocation(zip=rest)
    if kind == "city":
        state, _, city = rest.partition(":")
        if state and city:
            return MarketLocation(city=unquote(city), state=state)
    return MarketLocation()


def _record(row: Market) -> MarketRecord:
    return MarketRecord(
        id=row.id,
        scope=row.scope,
        city=row.city,
        state=row.state,
        hidden=row.hidden,
        created_at=row.created_at,
    )


async def insert_identity(session: AsyncSession, market_id: str, scope: str = "city") -> None:
    """Create a bare market row if absent; used in the same transaction as its first snapshot."""
    stmt = dialect_insert(session, Market).values(id=market_id, scope=scope, hidden=False)
    await session.execute(stmt.on_conflict_do_nothing(index_elements=[Market.id]))


class MarketRegistry:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    async def upsert(
        self,
        market_id: str,
        city: str | None = None,
        state: str | None = None,
        scope: str | None = None,
        unhide: bool = True,
    ) -> MarketRecord:
        """Create or update. Null city/state/scope never overwrite known values.

        New rows default to scope "city". ``unhide=False`` leaves a hidden row hidden.
        """
        async with self._sessions() as session, session.begin():
            stmt = dialect_insert(session, Market).values(
                id=market_id, scope=scope or "city", city=city, state=state, hidden=False,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[Market.id],
                set_={
                    "city": stmt.excluded.city if city is not None else Market.city,
                    "state": stmt.excluded.state if state is not None else Market.state,
                    "scope": stmt.excluded.scope if scope is not None else Market.scope,
                    "hidden": False if unhide else Market.hidden,
                    "updated_at": datetime.now(timezone.utc),
                },
            )
            await session.execute(stmt)
            row = await session.get(Market, market_id, populate_existing=True)
        logger.info("market.upserted", market_id=market_id, city=city, state=state, scope=row.scope)
        return _record(row)

    async def get(self, market_id: str) -> MarketRecord | None:
        async with self._sessions() as session:
            row = await session.get(Market, market_id)
        return _record(row) if row else None

    async def hide(self, market_id: str) -> None:
        async with self._sessions() as session, session.begin():
            result = await session.execute(
                update(Market)
                .where(Market.id == market_id)
                .values(hidden=True)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise NotFound(f"Market {market_id!r} not found")
        logger.info("market.hidden", market_id=market_id)

    async def list_visible(self) -> list[MarketRecord]:
        async with self._sessions() as session:
            rows = (
                await session.execute(
                    select(Market).where(Market.hidden.is_(False)).order_by(Market.created_at.desc())
                )
            ).scalars().all()
        return [_record(r) for r in rows]
