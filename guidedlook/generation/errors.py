"""Structured errors raised at the generation client boundary."""

from __future__ import annotations


class GenerationError(Exception):
    """Base class for failures reported by a generation client."""


class GenerationTimeout(GenerationError):
    """The provider did not answer within the allotted time."""


class InsufficientCredits(GenerationError):
    """The provider refused the request for lack of credits or budget."""


class ProviderFailure(GenerationError):
    """Any other provider-reported failure."""

    def __init__(self, detail: str, retryable: bool = False) -> None:
        super().__init__(detail)
        self.detail = detail
        self.retryable = retryable
