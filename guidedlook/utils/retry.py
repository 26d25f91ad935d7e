from __future__ import annotations

import asyncio
import random


def compute_backoff(attempt: int, base: float = 0.7, jitter: float = 0.0) -> float:
    """Compute exponential backoff for the given 1-based attempt, with optional jitter."""
    delay = base * (2 ** max(attempt - 1, 0))
    if jitter:
        delay += random.uniform(0, jitter)
    return delay


async def schedule_retry(attempt: int, base: float = 0.7) -> None:
    """Sleep for computed backoff delay before retrying."""
    delay = compute_backoff(attempt, base=base)
    await asyncio.sleep(delay)
