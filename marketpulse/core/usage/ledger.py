"""Usage Ledger — per (provider, year, month) call counter with a hard cap.

reserve() is one conditional UPDATE ... WHERE calls < limit RETURNING calls.
Never read the row, compare in Python and write it back: two concurrent
callers would both see room under the cap and both increment.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

import structlog
from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketpulse.core.db.models import UsageCounter
from marketpulse.core.db.session import dialect_insert

logger = structlog.get_logger()


@dataclass(frozen=True, order=True)
class Period:
    year: int
    month: int

    @classmethod
    def of(cls, moment: datetime) -> Period:
        moment = moment.astimezone(timezone.utc) if moment.tzinfo else moment
        return cls(moment.year, moment.month)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


@dataclass(frozen=True)
class Reservation:
    ok: bool
    calls: int
    period: Period


class UsageLedger:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], provider: str = "rentcast"):
        self._sessions = session_factory
        self.provider = provider

    def _row(self, period: Period):
        return and_(
            UsageCounter.provider == self.provider,
            UsageCounter.year == period.year,
            UsageCounter.month == period.month,
        )

    async def ensure(self, period: Period) -> None:
        async with self._sessions() as session, session.begin():
            stmt = dialect_insert(session, UsageCounter).values(
                provider=self.provider, year=period.year, month=period.month, calls=0,
            )
            await session.execute(
                stmt.on_conflict_do_nothing(
                    index_elements=[UsageCounter.provider, UsageCounter.year, UsageCounter.month]
                )
            )

    async def reserve(self, period: Period, limit: int) -> Reservation:
        async with self._sessions() as session, session.begin():
            calls = (
                await session.execute(
                    update(UsageCounter)
                    .where(self._row(period), UsageCounter.calls < limit)
                    .values(calls=UsageCounter.calls + 1, updated_at=datetime.now(timezone.utc))
                    .returning(UsageCounter.calls)
                    .execution_options(synchronize_session=False)
                )
            ).scalar_one_or_none()

        if calls is None:
            # Reporting only; the decision was made by the conditional update.
            return Reservation(ok=False, calls=await self.current(period), period=period)
        logger.info("budget.reserved", provider=self.provider, period=str(period), calls=calls, limit=limit)
        return Reservation(ok=True, calls=calls, period=period)

    async def refund(self, period: Period) -> None:
        async with self._sessions() as session, session.begin():
            calls = (
                await session.execute(
                    update(UsageCounter)
                    .where(self._row(period), UsageCounter.calls > 0)
                    .values(calls=UsageCounter.calls - 1, updated_at=datetime.now(timezone.utc))
                    .returning(UsageCounter.calls)
                    .execution_options(synchronize_session=False)
                )
            ).scalar_one_or_none()
        logger.info("budget.refunded", provider=self.provider, period=str(period), calls=calls)

    async def current(self, period: Period) -> int:
        async with self._sessions() as session:
            calls = (
                await session.execute(select(UsageCounter.calls).where(self._row(period)))
            ).scalar_one_or_none()
        return calls or 0
