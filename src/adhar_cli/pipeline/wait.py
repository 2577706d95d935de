"""Terminal wait of the local pipeline.

The controller manager runs in a background task. The wait ends on one of
three edges:

- the manager task finishes (cleanly or with an error)
- the shared token is cancelled: by the manager or the safety-net poll once
  the platform is ready ("synced"), or by the user ("interrupted")
- the safety-net poll sees the platform ready and cancels the token itself

After cancellation the manager gets a bounded grace window to stop. A manager
that outlives the window is logged and abandoned; it never fails a run that
otherwise succeeded.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum

from ..bootstrap.readiness import Check, ReadinessPoller
from ..errors import AdharError, CancellationError
from ..shared.cancel import CancelReason, CancelToken
from ..shared.logging import get_logger

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL = 10.0
DEFAULT_GRACE_SECONDS = 20.0


class WaitState(Enum):
    RUNNING = "running"
    DRAINING = "draining"
    DONE = "done"
    FAILED = "failed"


@dataclass
class WaitOutcome:
    """How the wait ended."""

    state: WaitState
    reason: str = ""
    error: BaseException | None = None
    grace_expired: bool = False


class ReadinessWait:
    """Wait for the controller manager, cancellation or observed readiness."""

    def __init__(
        self,
        manager_task: asyncio.Task,
        token: CancelToken,
        check: Check | None = None,
        exit_on_sync: bool = True,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
    ):
        """Initialize wait.

        Args:
            manager_task: Background task running the controller manager.
            token: Run-wide cancellation token.
            check: Platform readiness check for the safety-net poll.
            exit_on_sync: Finish once the platform is ready; otherwise keep
                watching until the manager stops or the user interrupts.
            poll_interval_seconds: Safety-net poll interval.
            grace_seconds: How long the manager may take to stop after cancellation.
        """
        self.manager_task = manager_task
        self.token = token
        self.check = check
        self.exit_on_sync = exit_on_sync
        self.poll_interval_seconds = poll_interval_seconds
        self.grace_seconds = grace_seconds
        self.state = WaitState.RUNNING

    async def _safety_net(self, check: Check) -> None:
        """Poll readiness independently of the manager's own signal."""
        poller = ReadinessPoller(
            timeout_seconds=float("inf"), interval_seconds=self.poll_interval_seconds
        )

        def on_attempt(attempt: int, error: str | None) -> None:
            logger.info("waiting for platform controller to finish initial sync", attempt=attempt)

        result = await poller.wait_until(check, "platform readiness", self.token, on_attempt)
        if not result.ready:
            return
        if self.exit_on_sync:
            logger.info("platform is ready (detected by CLI)")
            self.token.cancel(CancelReason.SYNCED)
        else:
            logger.info("platform is ready; still watching")

    def _finish(
        self, state: WaitState, reason: str, error: BaseException | None = None
    ) -> WaitOutcome:
        self.state = state
        logger.info("readiness wait finished", state=state.value, reason=reason)
        return WaitOutcome(state=state, reason=reason, error=error)

    def _manager_result(self) -> WaitOutcome:
        if self.manager_task.cancelled():
            return self._finish(WaitState.DONE, "manager stopped")
        error = self.manager_task.exception()
        if error is not None:
            return self._finish(WaitState.FAILED, "manager failed", error)
        return self._finish(WaitState.DONE, "manager completed")

    async def _drain(self) -> bool:
        """Give the manager its grace window; False when it did not stop in time."""
        self.state = WaitState.DRAINING
        done, _ = await asyncio.wait({self.manager_task}, timeout=self.grace_seconds)
        if done:
            return True
        logger.warning(
            "controller shutdown timed out (non-fatal)", grace_seconds=self.grace_seconds
        )
        self.manager_task.cancel()
        return False

    async def run(self) -> WaitOutcome:
        """Drive the wait to DONE or FAILED.

        Returns:
            WaitOutcome in state DONE

        Raises:
            CancellationError: Interrupted by the user while waiting for sync.
            AdharError: The manager failed.
        """
        poll = (
            asyncio.ensure_future(self._safety_net(self.check)) if self.check is not None else None
        )
        waiter = asyncio.ensure_future(self.token.wait())
        try:
            await asyncio.wait(
                {self.manager_task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
            if not self.token.cancelled:
                outcome = self._manager_result()
            else:
                # A manager stopping because the token fired is judged by the token's reason
                reason = self.token.reason
                if reason is None:
                    raise RuntimeError("token cancelled without a reason")
                stopped = await self._drain()
                if reason is CancelReason.SYNCED:
                    outcome = self._finish(WaitState.DONE, "platform synced")
                elif self.exit_on_sync:
                    outcome = self._finish(
                        WaitState.FAILED, "interrupted", CancellationError(reason=reason.value)
                    )
                else:
                    outcome = self._finish(WaitState.DONE, "stopped watching")
                outcome.grace_expired = not stopped
                if stopped and not self.manager_task.cancelled():
                    # Shutdown errors after a requested stop are not failures
                    shutdown_error = self.manager_task.exception()
                    if shutdown_error is not None:
                        logger.debug(
                            "manager exited with error on shutdown", error=str(shutdown_error)
                        )
        finally:
            waiter.cancel()
            if poll is not None:
                poll.cancel()
                await asyncio.gather(poll, return_exceptions=True)

        if outcome.state is WaitState.FAILED:
            error = outcome.error
            if isinstance(error, AdharError):
                raise error
            raise AdharError(message=f"controller manager failed: {error}") from error
        return outcome
