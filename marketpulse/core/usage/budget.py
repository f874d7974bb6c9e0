"""Budget Guard — reserve one unit of monthly budget, run the upstream call, keep or refund.

The reservation is the only atomic step. The upstream call runs outside any
transaction, and its failure is classified into the error taxonomy, which
also decides whether the unit is refunded:

    ProviderHTTPError 429        -> refund, UpstreamRateLimited
    ProviderHTTPError 404        -> refund, UpstreamNoData
    ProviderHTTPError 401/403    -> refund, ConfigError (key rejected)
    ProviderHTTPError other      -> refund, UpstreamServerError
    ConfigError / ValidationError-> refund, re-raised unchanged
    anything else                -> refund, UpstreamUnknown (message preserved)
    cancellation                 -> refund, cancellation re-raised
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, TypeVar

import structlog

from marketpulse.core.errors import (
    ConfigError,
    MarketDataError,
    ProviderHTTPError,
    QuotaExhausted,
    UpstreamNoData,
    UpstreamRateLimited,
    UpstreamServerError,
    UpstreamUnknown,
)
from marketpulse.core.usage.ledger import Period, UsageLedger

logger = structlog.get_logger()

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def classify(exc: BaseException) -> tuple[bool, BaseException]:
    """-> (refund?, error to raise)"""
    if isinstance(exc, ProviderHTTPError):
        s = exc.status
        raw = str(exc)
        if s == 429:
            return True, UpstreamRateLimited(detail=raw)
        if s == 404:
            return True, UpstreamNoData(detail=raw)
        if s in (401, 403):
            return True, ConfigError("RentCast rejected the API key", detail=raw)
        return True, UpstreamServerError(f"RentCast request failed ({s}). Try again later.", detail=raw)
    if isinstance(exc, MarketDataError):
        return True, exc
    msg = str(exc)
    return True, UpstreamUnknown(
        f"Upstream request failed: {msg}" if msg else None,
        detail=msg or type(exc).__name__,
    )


class BudgetGuard:

    def __init__(
        self,
        ledger: UsageLedger,
        limit: int,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._ledger = ledger
        self.limit = limit
        self._clock = clock

    @property
    def provider(self) -> str:
        return self._ledger.provider

    def period(self) -> Period:
        return Period.of(self._clock())

    async def used(self) -> int:
        return await self._ledger.current(self.period())

    async def remaining(self) -> int:
        return max(self.limit - await self.used(), 0)

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        period = self.period()
        await self._ledger.ensure(period)

        reservation = await self._ledger.reserve(period, self.limit)
        if not reservation.ok:
            logger.warning(
                "budget.exhausted", provider=self._ledger.provider,
                period=str(period), calls=reservation.calls, limit=self.limit,
            )
            raise QuotaExhausted()

        try:
            return await operation()
        except asyncio.CancelledError:
            logger.warning("budget.cancelled", provider=self._ledger.provider, period=str(period))
            await asyncio.shield(self._ledger.refund(period))
            raise
        except Exception as e:
            logger.error(
                "provider.error", provider=self._ledger.provider, period=str(period),
                error_type=type(e).__name__, raw=str(e),
            )
            refund, translated = classify(e)
            if refund:
                await self._ledger.refund(period)
            if translated is e:
                raise
            raise translated from e
