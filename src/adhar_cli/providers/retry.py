"""Retry with exponential backoff for provider API calls."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from ..errors import CancellationError, OperationTimeoutError, is_retryable
from ..shared.cancel import CancelReason, CancelToken
from ..shared.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Backoff bounds for a retried operation."""

    max_attempts: int = 5
    initial_delay: float = 1.0
    max_delay: float = 30.0
    factor: float = 2.0
    timeout: float = 300.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number `attempt` (1-based)."""
        return min(self.initial_delay * (self.factor ** (attempt - 1)), self.max_delay)


DEFAULT_RETRY_POLICY = RetryPolicy()


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    token: CancelToken | None = None,
    description: str = "operation",
) -> T:
    """Run an async operation, retrying transient failures.

    Args:
        operation: Zero-argument coroutine factory
        policy: Attempt count, backoff and overall timeout
        token: Optional cancellation token checked between attempts
        description: Name used in logs and timeout errors

    Returns:
        The operation's result

    Raises:
        The last error when it is not retryable or attempts run out,
        OperationTimeoutError when the overall timeout passes,
        CancellationError when the user interrupts between attempts.
    """
    deadline = time.monotonic() + policy.timeout
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not is_retryable(e) or attempt >= policy.max_attempts:
                raise
            delay = policy.delay_for(attempt)
            if time.monotonic() + delay > deadline:
                raise OperationTimeoutError(
                    operation=description, timeout_seconds=policy.timeout
                ) from e
            logger.warning(
                "retrying after transient failure",
                operation=description,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                delay=delay,
                error=str(e),
            )
            if token is None:
                await asyncio.sleep(delay)
                continue
            slept_from = time.monotonic()
            if await token.sleep(delay):
                if token.reason is CancelReason.INTERRUPTED:
                    raise CancellationError(reason=CancelReason.INTERRUPTED.value) from e
                # A synced run still backs off before the next attempt
                await asyncio.sleep(max(0.0, delay - (time.monotonic() - slept_from)))
