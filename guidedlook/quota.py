"""Rate limiting and credit/budget ledger collaborators.

The production counters live in PostgreSQL and are only reached through
stored procedures; the in-memory implementations back tests and local runs.
Guard lookups fail open (logged) so an unavailable guard never blocks a user,
while the credit balance check fails closed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict, deque
from datetime import date, datetime, timezone
from typing import Any, Deque, Dict, List, Literal, Optional, Protocol, Tuple

import asyncpg
from pydantic import BaseModel

logger = logging.getLogger(__name__)

Tier = Literal["free", "pro", "premium"]


class QuotaUnavailable(Exception):
    """The credit ledger could not be consulted."""


class RateLimitDecision(BaseModel):
    allowed: bool
    reason: Optional[Literal["blocked", "rate_limited"]] = None
    retry_after_seconds: Optional[int] = None


class BudgetLimits(BaseModel):
    daily_requests: int
    daily_successes: int
    daily_credits: int


class BudgetDecision(BaseModel):
    allowed: bool
    tier: Tier = "free"
    limits: Optional[BudgetLimits] = None
    reason: Optional[str] = None
    retry_after_seconds: Optional[int] = None
    guard_error: bool = False


DEFAULT_LIMITS_BY_TIER: Dict[str, BudgetLimits] = {
    "free": BudgetLimits(daily_requests=40, daily_successes=24, daily_credits=40),
    "pro": BudgetLimits(daily_requests=120, daily_successes=80, daily_credits=160),
    "premium": BudgetLimits(daily_requests=300, daily_successes=220, daily_credits=500),
}

FEATURE_LIMITS: Dict[str, Dict[str, BudgetLimits]] = {
    "virtual-try-on": {
        "free": BudgetLimits(daily_requests=10, daily_successes=8, daily_credits=24),
        "pro": BudgetLimits(daily_requests=30, daily_successes=24, daily_credits=96),
        "premium": BudgetLimits(daily_requests=80, daily_successes=60, daily_credits=300),
    },
    "generate-fashion-image": {
        "free": BudgetLimits(daily_requests=12, daily_successes=10, daily_credits=20),
        "pro": BudgetLimits(daily_requests=40, daily_successes=30, daily_credits=90),
        "premium": BudgetLimits(daily_requests=120, daily_successes=90, daily_credits=270),
    },
}


def resolve_limits(feature: str, tier: str) -> BudgetLimits:
    return FEATURE_LIMITS.get(feature, {}).get(tier) or DEFAULT_LIMITS_BY_TIER.get(tier, DEFAULT_LIMITS_BY_TIER["free"])


def budget_limit_message(reason: Optional[str]) -> str:
    if reason == "daily_credits_limit":
        return "Llegaste al presupuesto diario de IA para hoy. Reintentá mañana o upgradeá tu plan."
    if reason == "daily_success_limit":
        return "Llegaste al máximo diario de generaciones exitosas. Reintentá mañana o upgradeá tu plan."
    return "Llegaste al límite diario de solicitudes de IA. Reintentá mañana."


class RateLimiter(Protocol):
    async def check(self, user_id: str, feature: str, window_seconds: int, max_requests: int) -> RateLimitDecision:
        """Count one request and decide whether it may proceed."""

    async def record_result(self, user_id: str, feature: str, success: bool) -> None:
        """Record the outcome of an allowed request."""


class CreditLedger(Protocol):
    async def reserve(self, user_id: str, feature: str, expected_credits: int) -> BudgetDecision:
        """Reserve daily AI budget for a billable call."""

    async def record_success(self, user_id: str, feature: str, credits_used: int) -> None:
        """Record a successful billable call against the daily budget."""

    async def can_spend(self, user_id: str, amount: int) -> bool:
        """Whether the user's credit balance covers ``amount``."""

    async def increment(self, user_id: str, amount: int) -> bool:
        """Debit ``amount`` credits; ``True`` when the debit was applied."""


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------

HISTORY_LIMIT = 1000
SWEEP_EVERY = 256


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


class InMemoryRateLimiter:
    """Sliding-window request counter held in process memory."""

    def __init__(self) -> None:
        self._requests: Dict[Tuple[str, str], Deque[float]] = defaultdict(deque)
        self._windows: Dict[Tuple[str, str], int] = {}
        self._checks = 0
        self.results: List[Tuple[str, str, bool]] = []

    def _sweep(self, now: float) -> None:
        for key in list(self._requests):
            window = self._requests[key]
            if not window or now - window[-1] >= self._windows.get(key, 0):
                del self._requests[key]
                self._windows.pop(key, None)

    async def check(self, user_id: str, feature: str, window_seconds: int, max_requests: int) -> RateLimitDecision:
        now = time.monotonic()
        self._checks += 1
        if self._checks % SWEEP_EVERY == 0:
            self._sweep(now)
        self._windows[(user_id, feature)] = window_seconds
        window = self._requests[(user_id, feature)]
        while window and now - window[0] >= window_seconds:
            window.popleft()
        if len(window) >= max_requests:
            retry_after = int(window_seconds - (now - window[0])) + 1
            return RateLimitDecision(allowed=False, reason="rate_limited", retry_after_seconds=retry_after)
        window.append(now)
        return RateLimitDecision(allowed=True)

    async def record_result(self, user_id: str, feature: str, success: bool) -> None:
        self.results.append((user_id, feature, success))
        del self.results[:-HISTORY_LIMIT]


class InMemoryCreditLedger:
    """Credit balance and daily budget held in process memory."""

    def __init__(self, balance: int = 100, daily_credits: Optional[int] = None, tier: Tier = "free") -> None:
        self.default_balance = balance
        self.daily_credits = daily_credits
        self.tier = tier
        self._spent: Dict[str, int] = defaultdict(int)
        self._reserved: Dict[str, int] = defaultdict(int)
        self._day = _utc_today()
        self.increments: List[Tuple[str, int]] = []
        self.successes: List[Tuple[str, str, int]] = []
        self._lock = asyncio.Lock()

    def balance(self, user_id: str) -> int:
        return self.default_balance - self._spent[user_id]

    async def reserve(self, user_id: str, feature: str, expected_credits: int) -> BudgetDecision:
        today = _utc_today()
        if today != self._day:
            self._reserved.clear()
            self._day = today
        if self.daily_credits is not None and self._reserved[user_id] + expected_credits > self.daily_credits:
            return BudgetDecision(allowed=False, tier=self.tier, reason="daily_credits_limit", retry_after_seconds=3600)
        self._reserved[user_id] += max(0, expected_credits)
        return BudgetDecision(allowed=True, tier=self.tier)

    async def record_success(self, user_id: str, feature: str, credits_used: int) -> None:
        self.successes.append((user_id, feature, credits_used))
        del self.successes[:-HISTORY_LIMIT]

    async def can_spend(self, user_id: str, amount: int) -> bool:
        return self.balance(user_id) >= amount

    async def increment(self, user_id: str, amount: int) -> bool:
        async with self._lock:
            if self.balance(user_id) < amount:
                return False
            self._spent[user_id] += amount
            self.increments.append((user_id, amount))
            del self.increments[:-HISTORY_LIMIT]
            return True


# ---------------------------------------------------------------------------
# PostgreSQL stored-procedure gateway
# ---------------------------------------------------------------------------


def _first_row(rows: Any) -> Any:
    if isinstance(rows, list):
        return rows[0] if rows else None
    return rows


class PostgresQuotaGateway:
    """Rate limiter and credit ledger backed by stored procedures."""

    def __init__(self, dsn: str, error_threshold: int = 10, error_window_seconds: int = 300, block_seconds: int = 900):
        self._dsn = dsn
        self.error_threshold = error_threshold
        self.error_window_seconds = error_window_seconds
        self.block_seconds = block_seconds

    async def _fetch(self, query: str, *params: Any) -> list:
        conn = await asyncpg.connect(self._dsn)
        try:
            return await conn.fetch(query, *params)
        finally:
            await conn.close()

    async def _tier(self, user_id: str) -> Tier:
        try:
            rows = await self._fetch(
                """
                SELECT tier FROM subscriptions
                WHERE user_id = $1 AND status IN ('active', 'trialing')
                ORDER BY updated_at DESC LIMIT 1
                """,
                user_id,
            )
        except (asyncpg.PostgresError, OSError) as exc:
            logger.error(f"Subscription tier lookup failed for {user_id}: {exc}")
            return "free"
        tier = rows[0]["tier"] if rows else None
        return tier if tier in ("pro", "premium") else "free"

    async def check(self, user_id: str, feature: str, window_seconds: int, max_requests: int) -> RateLimitDecision:
        try:
            row = _first_row(
                await self._fetch(
                    "SELECT * FROM check_ai_rate_limit($1, $2, $3, $4)",
                    user_id,
                    feature,
                    window_seconds,
                    max_requests,
                )
            )
        except (asyncpg.PostgresError, OSError) as exc:
            logger.error(f"Rate limit check failed for {user_id}/{feature}: {exc}")
            return RateLimitDecision(allowed=True)
        if row is None or row["allowed"]:
            return RateLimitDecision(allowed=True)
        return RateLimitDecision(
            allowed=False,
            reason=row["reason"] or "rate_limited",
            retry_after_seconds=row["retry_after_seconds"] or None,
        )

    async def record_result(self, user_id: str, feature: str, success: bool) -> None:
        try:
            await self._fetch(
                "SELECT record_ai_request_result($1, $2, $3, $4, $5, $6)",
                user_id,
                feature,
                success,
                self.error_threshold,
                self.error_window_seconds,
                self.block_seconds,
            )
        except (asyncpg.PostgresError, OSError) as exc:
            logger.error(f"Failed to record request result for {user_id}/{feature}: {exc}")

    async def reserve(self, user_id: str, feature: str, expected_credits: int) -> BudgetDecision:
        tier = await self._tier(user_id)
        limits = resolve_limits(feature, tier)
        try:
            row = _first_row(
                await self._fetch(
                    "SELECT * FROM check_and_reserve_ai_budget($1, $2, $3, $4, $5, $6)",
                    user_id,
                    feature,
                    max(0, int(expected_credits)),
                    limits.daily_requests,
                    limits.daily_successes,
                    limits.daily_credits,
                )
            )
        except (asyncpg.PostgresError, OSError) as exc:
            logger.error(f"Budget reservation failed for {user_id}/{feature}: {exc}")
            return BudgetDecision(allowed=True, tier=tier, limits=limits, guard_error=True)
        if row is None or not row["allowed"]:
            return BudgetDecision(
                allowed=False,
                tier=tier,
                limits=limits,
                reason=row["reason"] if row is not None else None,
                retry_after_seconds=row["retry_after_seconds"] if row is not None else None,
            )
        return BudgetDecision(allowed=True, tier=tier, limits=limits)

    async def record_success(self, user_id: str, feature: str, credits_used: int) -> None:
        try:
            await self._fetch(
                "SELECT record_ai_budget_success($1, $2, $3)",
                user_id,
                feature,
                max(0, int(credits_used)),
            )
        except (asyncpg.PostgresError, OSError) as exc:
            logger.error(f"Budget success recording failed for {user_id}/{feature}: {exc}")

    async def can_spend(self, user_id: str, amount: int) -> bool:
        try:
            rows = await self._fetch("SELECT can_user_generate_outfit($1, $2) AS allowed", user_id, amount)
        except (asyncpg.PostgresError, OSError) as exc:
            raise QuotaUnavailable(f"Credit check failed for {user_id}") from exc
        return bool(rows and rows[0]["allowed"])

    async def increment(self, user_id: str, amount: int) -> bool:
        try:
            rows = await self._fetch("SELECT increment_ai_generation_usage($1, $2) AS incremented", user_id, amount)
        except (asyncpg.PostgresError, OSError) as exc:
            logger.error(f"Credit increment failed for {user_id}: {exc}")
            return False
        return bool(rows and rows[0]["incremented"])
