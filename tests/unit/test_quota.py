"""Tests for the in-memory rate limiter, credit ledger and budget limits."""

import asyncio
from datetime import date

import pytest

from guidedlook.quota import (
    HISTORY_LIMIT,
    SWEEP_EVERY,
    InMemoryCreditLedger,
    InMemoryRateLimiter,
    PostgresQuotaGateway,
    QuotaUnavailable,
    budget_limit_message,
    resolve_limits,
)


@pytest.mark.asyncio
async def test_rate_limiter_blocks_after_max_requests():
    limiter = InMemoryRateLimiter()
    assert (await limiter.check("u1", "chat-stylist", 60, 2)).allowed
    assert (await limiter.check("u1", "chat-stylist", 60, 2)).allowed
    denied = await limiter.check("u1", "chat-stylist", 60, 2)
    assert denied.allowed is False
    assert denied.reason == "rate_limited"
    assert 0 < denied.retry_after_seconds <= 61
    # other users are counted separately
    assert (await limiter.check("u2", "chat-stylist", 60, 2)).allowed


@pytest.mark.asyncio
async def test_ledger_debits_only_when_balance_covers():
    ledger = InMemoryCreditLedger(balance=3)
    assert await ledger.can_spend("u1", 3)
    assert await ledger.increment("u1", 2) is True
    assert await ledger.can_spend("u1", 2) is False
    assert await ledger.increment("u1", 2) is False
    assert ledger.balance("u1") == 1
    assert ledger.increments == [("u1", 2)]


@pytest.mark.asyncio
async def test_concurrent_increments_never_overdraw():
    ledger = InMemoryCreditLedger(balance=4)
    results = await asyncio.gather(*(ledger.increment("u1", 2) for _ in range(5)))
    assert results.count(True) == 2
    assert ledger.balance("u1") == 0


@pytest.mark.asyncio
async def test_daily_budget_reservation():
    ledger = InMemoryCreditLedger(daily_credits=4)
    assert (await ledger.reserve("u1", "generate-fashion-image", 2)).allowed
    assert (await ledger.reserve("u1", "generate-fashion-image", 2)).allowed
    denied = await ledger.reserve("u1", "generate-fashion-image", 2)
    assert denied.allowed is False
    assert denied.reason == "daily_credits_limit"


@pytest.mark.asyncio
async def test_reservations_reset_on_a_new_day():
    ledger = InMemoryCreditLedger(daily_credits=2)
    assert (await ledger.reserve("u1", "chat-stylist", 2)).allowed
    assert (await ledger.reserve("u1", "chat-stylist", 1)).allowed is False
    ledger._day = date(2000, 1, 1)
    assert (await ledger.reserve("u1", "chat-stylist", 2)).allowed


@pytest.mark.asyncio
async def test_reservation_reports_the_ledger_tier():
    decision = await InMemoryCreditLedger(tier="premium").reserve("u1", "chat-stylist", 1)
    assert decision.tier == "premium"


@pytest.mark.asyncio
async def test_ledger_history_is_bounded():
    ledger = InMemoryCreditLedger(balance=HISTORY_LIMIT * 2)
    for _ in range(HISTORY_LIMIT + 5):
        await ledger.increment("u1", 1)
        await ledger.record_success("u1", "chat-stylist", 1)
    assert len(ledger.increments) == HISTORY_LIMIT
    assert len(ledger.successes) == HISTORY_LIMIT
    assert ledger.balance("u1") == HISTORY_LIMIT - 5


@pytest.mark.asyncio
async def test_rate_limiter_drops_idle_windows():
    limiter = InMemoryRateLimiter()
    for index in range(SWEEP_EVERY - 1):
        await limiter.check(f"user-{index}", "chat-stylist", 0, 5)
    assert len(limiter._requests) == SWEEP_EVERY - 1
    await limiter.check("last", "chat-stylist", 60, 5)
    assert list(limiter._requests) == [("last", "chat-stylist")]
    for _ in range(HISTORY_LIMIT + 1):
        await limiter.record_result("last", "chat-stylist", True)
    assert len(limiter.results) == HISTORY_LIMIT


def test_feature_limits_fall_back_to_tier_defaults():
    assert resolve_limits("virtual-try-on", "free").daily_requests == 10
    assert resolve_limits("chat-stylist", "pro").daily_credits == 160
    assert resolve_limits("chat-stylist", "unknown").daily_requests == 40


def test_budget_limit_messages():
    assert "presupuesto diario" in budget_limit_message("daily_credits_limit")
    assert "generaciones exitosas" in budget_limit_message("daily_success_limit")
    assert budget_limit_message(None) == "Llegaste al límite diario de solicitudes de IA. Reintentá mañana."


@pytest.mark.asyncio
async def test_postgres_gateway_fails_open_for_guards_and_closed_for_balance():
    gateway = PostgresQuotaGateway("postgresql://nobody@127.0.0.1:1/none")
    assert (await gateway.check("u1", "chat-stylist", 60, 20)).allowed
    decision = await gateway.reserve("u1", "chat-stylist", 1)
    assert decision.allowed is True
    assert decision.guard_error is True
    assert await gateway.increment("u1", 1) is False
    with pytest.raises(QuotaUnavailable):
        await gateway.can_spend("u1", 1)
