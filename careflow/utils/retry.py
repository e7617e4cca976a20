from __future__ import annotations

import asyncio
import random


def compute_backoff(
    attempt: int, base: float = 1.5, jitter: float = 0.5, cap: float = 300.0
) -> float:
    """Compute exponential backoff with jitter, capped at ``cap`` seconds."""
    delay = min(base ** attempt, cap)
    return delay + random.uniform(0, jitter)


async def sleep_backoff(attempt: int, cap: float = 300.0) -> float:
    """Sleep for the backoff delay of ``attempt`` and return it."""
    delay = compute_backoff(attempt, cap=cap)
    await asyncio.sleep(delay)
    return delay
