"""Transport-level errors raised by request handling and mapped to HTTP responses."""

from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for errors that carry an HTTP status and a stable code."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, retry_after_seconds: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.retry_after_seconds = retry_after_seconds


class BadRequest(ServiceError):
    status_code = 400
    code = "bad_request"


class Unauthorized(ServiceError):
    status_code = 401
    code = "unauthorized"


class PaymentRequired(ServiceError):
    status_code = 402
    code = "insufficient_credits"


class RateLimited(ServiceError):
    status_code = 429
    code = "rate_limited"

    def __init__(self, message: str, retry_after_seconds: Optional[int] = 60, reason: str = "rate_limited") -> None:
        super().__init__(message, retry_after_seconds=retry_after_seconds)
        if reason == "blocked":
            self.code = "blocked"


class BudgetLimited(RateLimited):
    code = "budget_limited"

    def __init__(self, message: str, retry_after_seconds: Optional[int] = 60) -> None:
        super().__init__(message, retry_after_seconds=retry_after_seconds)
