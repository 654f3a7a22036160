"""
Bounded retry for whole ledger operations.

A retried operation re-runs its idempotency guards, so a retry after a
conflict can never charge twice. Only `TransactionConflictError` is retried;
every other error propagates on the first occurrence.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

from ..errors import ConflictRetryExhaustedError, ErrorContext, TransactionConflictError


logger = logging.getLogger(__name__)

T = TypeVar("T")


class ConflictRetryPolicy:
    def __init__(
        self,
        max_attempts: int = 5,
        base_delay_ms: int = 10,
        max_delay_ms: int = 500,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms

    def backoff_ms(self, attempt: int) -> int:
        """Exponential backoff with +/-25% jitter."""
        delay = min(self.max_delay_ms, (2 ** attempt) * self.base_delay_ms)
        return int(delay * random.uniform(0.75, 1.25))  # nosec B311

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        context: Optional[ErrorContext] = None,
    ) -> T:
        for attempt in range(self.max_attempts):
            try:
                return await operation()
            except TransactionConflictError as exc:
                if attempt + 1 >= self.max_attempts:
                    raise ConflictRetryExhaustedError(self.max_attempts, context) from exc
                delay = self.backoff_ms(attempt)
                logger.warning(
                    "Ledger transaction conflict, retrying in %sms",
                    delay,
                    extra={"attempt": attempt + 1},
                )
                await asyncio.sleep(delay / 1000)
        raise ConflictRetryExhaustedError(self.max_attempts, context)


async def run_with_conflict_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 5,
    base_delay_ms: int = 10,
    max_delay_ms: int = 500,
) -> T:
    policy = ConflictRetryPolicy(max_attempts, base_delay_ms, max_delay_ms)
    return await policy.run(operation)
