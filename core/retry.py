"""Bounded retry for transient failures on constrained clients."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from core.models import Result

LOGGER = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """``retries`` extra attempts, waiting ``backoff * attempt`` seconds before each."""

    retries: int = 0
    backoff: float = 0.5

    @classmethod
    def none(cls) -> "RetryPolicy":
        return cls(retries=0)

    def delay_for(self, attempt: int) -> float:
        return self.backoff * attempt


async def call_with_retry(
    op: Callable[[], Awaitable[Result]],
    policy: RetryPolicy,
    sleep: Sleep = asyncio.sleep,
    label: str = "call",
) -> Result:
    """Run ``op`` and retry while it fails transiently and budget remains.

    Non-transient failures (no pool, RPC error, malformed data) return at once.
    """

    result = await op()
    attempt = 0
    while not result.ok and result.failure.reason.transient and attempt < policy.retries:
        attempt += 1
        delay = policy.delay_for(attempt)
        LOGGER.debug("Retrying %s after %s (attempt %s, %.2fs)", label, result.failure, attempt, delay)
        await sleep(delay)
        result = await op()
    return result


__all__ = ["RetryPolicy", "call_with_retry"]
