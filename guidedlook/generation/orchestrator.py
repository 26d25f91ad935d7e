"""Retry, backoff and timeout handling around the generation client."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

from ..config import GenerationConfig
from ..utils import retry
from ..workflow.messages import GENERATION_ERRORS, TRYON_ERRORS
from .client import GenerationClient
from .errors import GenerationTimeout, InsufficientCredits, ProviderFailure

logger = logging.getLogger(__name__)


class GenerationRequest(BaseModel):
    """A single content or try-on generation to run."""

    kind: Literal["image", "tryon"] = "image"
    prompt: str = ""
    style_preferences: Dict[str, Any] = Field(default_factory=dict)
    selfie_ref: Optional[str] = None
    garment_ref: Optional[str] = None
    slot: Optional[str] = None
    authorization: Optional[str] = None


class GenerationOutcome(BaseModel):
    ok: bool
    image_ref: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    attempts: int = 0


class GenerationOrchestrator:
    """Invoke the generation client with bounded retries and per-attempt timeouts."""

    def __init__(self, client: GenerationClient, config: Optional[GenerationConfig] = None) -> None:
        self.client = client
        self.config = config or GenerationConfig()

    def _call(self, request: GenerationRequest):
        if request.kind == "tryon":
            return self.client.try_on(
                request.selfie_ref or "",
                request.garment_ref or "",
                request.slot or "top_base",
                authorization=request.authorization,
            )
        return self.client.generate_image(
            request.prompt,
            style_preferences=request.style_preferences or None,
            authorization=request.authorization,
        )

    async def generate(self, request: GenerationRequest) -> GenerationOutcome:
        """Run ``request`` until it succeeds, fails permanently or runs out of attempts.

        Only timeouts and retryable provider failures are retried. Cancellation
        of the caller propagates unchanged.
        """
        tryon = request.kind == "tryon"
        copy = TRYON_ERRORS if tryon else GENERATION_ERRORS
        failure_code = "TRYON_FAILED" if tryon else "GENERATION_FAILED"
        max_attempts = self.config.tryon_max_attempts if tryon else self.config.max_attempts
        timeout = self.config.tryon_timeout_seconds if tryon else self.config.generation_timeout_seconds

        error_code = failure_code
        error_message = copy[failure_code]
        for attempt in range(1, max_attempts + 1):
            try:
                image_ref = await asyncio.wait_for(self._call(request), timeout=timeout)
                logger.info(f"{request.kind} generation succeeded on attempt {attempt}")
                return GenerationOutcome(ok=True, image_ref=image_ref, attempts=attempt)
            except (asyncio.TimeoutError, GenerationTimeout):
                # try-on timeouts surface as a try-on failure with the timeout copy
                error_code = failure_code if tryon else "GENERATION_TIMEOUT"
                error_message = copy["GENERATION_TIMEOUT"]
                logger.warning(f"{request.kind} generation timed out on attempt {attempt}/{max_attempts}")
            except InsufficientCredits as exc:
                logger.info(f"{request.kind} generation refused for credits: {exc}")
                return GenerationOutcome(
                    ok=False,
                    error_code="INSUFFICIENT_CREDITS",
                    error_message=copy["INSUFFICIENT_CREDITS"],
                    attempts=attempt,
                )
            except ProviderFailure as exc:
                error_code = failure_code
                error_message = copy[failure_code]
                if not exc.retryable:
                    logger.warning(f"{request.kind} generation failed permanently: {exc.detail}")
                    return GenerationOutcome(
                        ok=False, error_code=error_code, error_message=error_message, attempts=attempt
                    )
                logger.warning(f"{request.kind} generation failed on attempt {attempt}/{max_attempts}: {exc.detail}")

            if attempt < max_attempts:
                await retry.schedule_retry(attempt, base=self.config.backoff_base_seconds)

        return GenerationOutcome(ok=False, error_code=error_code, error_message=error_message, attempts=max_attempts)
