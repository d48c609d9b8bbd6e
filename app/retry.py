"""Retry helper shared by outbound network calls."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from .errors import TransientNetworkError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Retry a coroutine factory with linear backoff on transient failures.

    The delay before attempt ``n + 1`` is ``n * base_delay`` seconds. Only
    exceptions listed in ``retry_on`` are retried; anything else propagates
    immediately.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    retry_on: tuple[type[BaseException], ...] = (TransientNetworkError,)

    def delay_for(self, attempt: int) -> float:
        return max(0.0, attempt * self.base_delay)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        description: str = "request",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> T:
        attempts = max(1, self.max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except self.retry_on as exc:
                if attempt >= attempts:
                    logger.warning(
                        "Giving up on %s after %s attempts: %s",
                        description,
                        attempts,
                        exc,
                    )
                    raise
                backoff = self.delay_for(attempt)
                logger.info(
                    "Transient error during %s (%s). Retrying in %.1fs",
                    description,
                    exc.__class__.__name__,
                    backoff,
                )
                await sleep(backoff)
        raise RuntimeError("unreachable")  # pragma: no cover
