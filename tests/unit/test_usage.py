"""Unit tests for the usage ledger and budget guard."""
import asyncio

import pytest

from marketpulse.core.errors import (
    ConfigError,
    MalformedResponse,
    ProviderHTTPError,
    QuotaExhausted,
    UpstreamNoData,
    UpstreamRateLimited,
    UpstreamServerError,
    UpstreamUnknown,
)
from marketpulse.core.usage.budget import BudgetGuard, classify
from marketpulse.core.usage.ledger import Period, UsageLedger
from tests.fakes import T0

PERIOD = Period.of(T0)


# ── Ledger ───────────────────────────────────────────────────────────────


class TestUsageLedger:

    @pytest.mark.asyncio
    async def test_ensure_is_idempotent(self, session_factory):
        ledger = UsageLedger(session_factory)
        await ledger.ensure(PERIOD)
        await ledger.ensure(PERIOD)
        assert await ledger.current(PERIOD) == 0

    @pytest.mark.asyncio
    async def test_reserve_up_to_limit(self, session_factory):
        ledger = UsageLedger(session_factory)
        await ledger.ensure(PERIOD)

        results = [await ledger.reserve(PERIOD, 2) for _ in range(3)]

        assert [r.ok for r in results] == [True, True, False]
        assert [r.calls for r in results] == [1, 2, 2]
        assert await ledger.current(PERIOD) == 2

    @pytest.mark.asyncio
    async def test_concurrent_reservations_never_exceed_limit(self, session_factory):
        ledger = UsageLedger(session_factory)
        await ledger.ensure(PERIOD)

        results = await asyncio.gather(*(ledger.reserve(PERIOD, 5) for _ in range(10)))

        assert sum(r.ok for r in results) == 5
        assert await ledger.current(PERIOD) == 5

    @pytest.mark.asyncio
    async def test_refund_never_goes_negative(self, session_factory):
        ledger = UsageLedger(session_factory)
        await ledger.ensure(PERIOD)
        await ledger.reserve(PERIOD, 5)

        await ledger.refund(PERIOD)
        await ledger.refund(PERIOD)

        assert await ledger.current(PERIOD) == 0

    @pytest.mark.asyncio
    async def test_periods_and_providers_are_independent(self, session_factory):
        rentcast = UsageLedger(session_factory, provider="rentcast")
        other = UsageLedger(session_factory, provider="other")
        april = Period(2024, 4)
        for ledger, period in [(rentcast, PERIOD), (rentcast, april), (other, PERIOD)]:
            await ledger.ensure(period)
        await rentcast.reserve(PERIOD, 5)

        assert await rentcast.current(PERIOD) == 1
        assert await rentcast.current(april) == 0
        assert await other.current(PERIOD) == 0

    def test_period_formatting(self):
        assert str(Period(2024, 3)) == "2024-03"
        assert Period(2023, 12) < Period(2024, 1)


# ── classify ─────────────────────────────────────────────────────────────


@pytest.mark.parametrize("exc,refund,expected", [
    (ProviderHTTPError(429, "Too Many Requests"), True, UpstreamRateLimited),
    (ProviderHTTPError(404, "Not Found"), True, UpstreamNoData),
    (ProviderHTTPError(500, "Internal Server Error"), True, UpstreamServerError),
    (ProviderHTTPError(503, "Service Unavailable"), True, UpstreamServerError),
    (ProviderHTTPError(401, "Unauthorized"), True, ConfigError),
    (ProviderHTTPError(403, "Forbidden"), True, ConfigError),
    (ProviderHTTPError(400, "Bad Request"), True, UpstreamServerError),
    (MalformedResponse("expected a list"), True, UpstreamUnknown),
    (ConnectionError("connection reset"), True, UpstreamUnknown),
])
def test_classify(exc, refund, expected):
    should_refund, translated = classify(exc)
    assert should_refund is refund
    assert isinstance(translated, expected)


def test_classify_keeps_upstream_text():
    _, translated = classify(ProviderHTTPError(503, "Service Unavailable", "maintenance"))
    assert translated.message == "RentCast request failed (503). Try again later."
    assert "maintenance" in translated.detail

    _, translated = classify(ConnectionError("connection reset"))
    assert translated.message == "Upstream request failed: connection reset"


def test_rejected_key_is_a_config_error():
    _, translated = classify(ProviderHTTPError(401, "Unauthorized", "invalid api key"))
    assert translated.status_code == 500
    assert translated.code == "SERVER_ERROR"
    assert "invalid api key" in translated.detail


def test_classify_passes_domain_errors_through():
    err = ConfigError("RENTCAST_API_KEY is not set")
    should_refund, translated = classify(err)
    assert should_refund is True
    assert translated is err


# ── BudgetGuard ──────────────────────────────────────────────────────────


def make_guard(session_factory, clock, limit=5):
    return BudgetGuard(UsageLedger(session_factory), limit, clock=clock)


class TestBudgetGuard:

    @pytest.mark.asyncio
    async def test_success_keeps_reservation(self, session_factory, clock):
        guard = make_guard(session_factory, clock)

        async def op():
            return "payload"

        assert await guard.run(op) == "payload"
        assert await guard.remaining() == 4

    @pytest.mark.asyncio
    async def test_exhausted_does_not_call_operation(self, session_factory, clock):
        guard = make_guard(session_factory, clock, limit=1)
        calls = []

        async def op():
            calls.append(1)
            return "payload"

        await guard.run(op)
        with pytest.raises(QuotaExhausted):
            await guard.run(op)

        assert len(calls) == 1
        assert await guard.remaining() == 0

    @pytest.mark.asyncio
    async def test_zero_limit_rejects_first_call(self, session_factory, clock):
        guard = make_guard(session_factory, clock, limit=0)

        async def op():
            raise AssertionError("must not be called")

        with pytest.raises(QuotaExhausted):
            await guard.run(op)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,expected,remaining", [
        (404, UpstreamNoData, 5),
        (429, UpstreamRateLimited, 5),
        (502, UpstreamServerError, 5),
        (400, UpstreamServerError, 5),
        (401, ConfigError, 5),
        (403, ConfigError, 5),
    ])
    async def test_provider_failures_refund_per_classification(
        self, session_factory, clock, status, expected, remaining,
    ):
        guard = make_guard(session_factory, clock)

        async def op():
            raise ProviderHTTPError(status, "err")

        with pytest.raises(expected):
            await guard.run(op)
        assert await guard.remaining() == remaining

    @pytest.mark.asyncio
    async def test_unknown_failure_refunds_and_wraps(self, session_factory, clock):
        guard = make_guard(session_factory, clock)

        async def op():
            raise RuntimeError("boom")

        with pytest.raises(UpstreamUnknown) as info:
            await guard.run(op)

        assert isinstance(info.value.__cause__, RuntimeError)
        assert await guard.remaining() == 5

    @pytest.mark.asyncio
    async def test_cancellation_refunds(self, session_factory, clock):
        guard = make_guard(session_factory, clock)
        started = asyncio.Event()

        async def op():
            started.set()
            await asyncio.Event().wait()

        task = asyncio.create_task(guard.run(op))
        await started.wait()
        assert await guard.remaining() == 4

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert await guard.remaining() == 5

    @pytest.mark.asyncio
    async def test_new_month_starts_fresh(self, session_factory, clock):
        guard = make_guard(session_factory, clock, limit=1)

        async def op():
            return None

        await guard.run(op)
        clock.advance(days=20)
        assert str(guard.period()) == "2024-04"
        await guard.run(op)
        assert await guard.remaining() == 0
