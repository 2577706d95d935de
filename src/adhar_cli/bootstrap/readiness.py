"""Readiness polling used by every "wait for X" step.

A poller runs a check at a fixed interval until it reports ready, the time
budget runs out, or the run is cancelled. Waits between checks wake early on
cancellation.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Union

from ..errors import CancellationError, OperationTimeoutError
from ..shared.cancel import CancelToken
from ..shared.logging import get_logger

logger = get_logger(__name__)

# A check returns ready, or (ready, detail)
CheckResult = Union[bool, tuple[bool, str]]
Check = Callable[[], Awaitable[CheckResult]]


@dataclass
class ReadinessResult:
    """Result of a readiness wait."""

    ready: bool
    description: str = ""
    attempts: int = 0
    elapsed_seconds: float = 0.0
    cancelled: bool = False
    error: str | None = None

    def raise_for_status(self, timeout_seconds: float = 0.0) -> None:
        """Turn a failed wait into the matching error.

        Raises:
            CancellationError: The wait was cut short by cancellation.
            OperationTimeoutError: The condition never held.
        """
        if self.ready:
            return
        if self.cancelled:
            raise CancellationError(message=f"cancelled while waiting for {self.description}")
        message = f"timed out after {self.elapsed_seconds:.1f}s waiting for {self.description}"
        if self.error:
            message += f". Last error: {self.error}"
        raise OperationTimeoutError(
            operation=self.description, timeout_seconds=timeout_seconds, message=message
        )


class ReadinessPoller:
    """Poll a condition at a fixed interval within a time budget."""

    def __init__(
        self,
        timeout_seconds: float = 300.0,
        interval_seconds: float = 10.0,
        max_attempts: int | None = None,
    ):
        """Initialize readiness poller.

        Args:
            timeout_seconds: Overall budget for the wait.
            interval_seconds: Seconds between checks.
            max_attempts: Optional cap on the number of checks.
        """
        self.timeout_seconds = timeout_seconds
        self.interval_seconds = interval_seconds
        self.max_attempts = max_attempts

    async def wait_until(
        self,
        check: Check,
        description: str = "condition",
        token: CancelToken | None = None,
        on_attempt: Callable[[int, str | None], None] | None = None,
    ) -> ReadinessResult:
        """Run `check` until it reports ready or the budget is spent.

        Args:
            check: Coroutine factory returning a bool or (bool, detail).
            description: What is being waited for, used in logs and errors.
            token: Cancellation token; the wait stops as soon as it fires.
            on_attempt: Optional callback called with (attempt, error)
                for progress reporting.

        Returns:
            ReadinessResult with status information.
        """
        start = time.monotonic()
        attempt = 0
        last_error: str | None = None

        while True:
            if token is not None and token.cancelled:
                return self._result(False, description, attempt, start, last_error, cancelled=True)

            attempt += 1
            try:
                outcome = await check()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                outcome = (False, str(e))

            ready, detail = outcome if isinstance(outcome, tuple) else (bool(outcome), "")
            if ready:
                logger.debug("ready", target=description, attempts=attempt)
                return self._result(True, description, attempt, start, None)
            last_error = detail or None

            if on_attempt:
                on_attempt(attempt, last_error)

            if self.max_attempts is not None and attempt >= self.max_attempts:
                break
            remaining = self.timeout_seconds - (time.monotonic() - start)
            if remaining <= 0:
                break

            delay = min(self.interval_seconds, remaining)
            if token is not None:
                if await token.sleep(delay):
                    return self._result(
                        False, description, attempt, start, last_error, cancelled=True
                    )
            else:
                await asyncio.sleep(delay)

        logger.debug(
            "readiness wait timed out", target=description, attempts=attempt, error=last_error
        )
        return self._result(False, description, attempt, start, last_error)

    async def require(
        self,
        check: Check,
        description: str = "condition",
        token: CancelToken | None = None,
    ) -> ReadinessResult:
        """Like wait_until, but raise when the condition never held.

        Raises:
            OperationTimeoutError: The budget ran out.
            CancellationError: The token fired first.
        """
        result = await self.wait_until(check, description, token)
        result.raise_for_status(self.timeout_seconds)
        return result

    def _result(
        self,
        ready: bool,
        description: str,
        attempts: int,
        start: float,
        error: str | None,
        cancelled: bool = False,
    ) -> ReadinessResult:
        return ReadinessResult(
            ready=ready,
            description=description,
            attempts=attempts,
            elapsed_seconds=time.monotonic() - start,
            cancelled=cancelled,
            error=error,
        )
