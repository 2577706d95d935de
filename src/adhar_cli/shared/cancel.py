"""Cancellation token shared by every phase of a provisioning run.

Two parties cancel a run: the user (SIGINT/SIGTERM) and the run itself once
the platform is confirmed ready ("exit on sync"). Both look the same to a
waiting task, so the token records why it fired. The first cancel wins;
a later cancel with a different reason is ignored and logged.
"""

from __future__ import annotations

import asyncio
import signal
from enum import Enum

from ..errors import CancellationError
from .logging import get_logger

logger = get_logger(__name__)


class CancelReason(Enum):
    """Why a run was cancelled."""

    INTERRUPTED = "interrupted"
    SYNCED = "synced"


class CancelToken:
    """One-shot cancellation signal carrying a reason."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: CancelReason | None = None

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> CancelReason | None:
        return self._reason

    @property
    def self_cancelled(self) -> bool:
        """True when the run cancelled itself after confirming readiness."""
        return self._reason is CancelReason.SYNCED

    def cancel(self, reason: CancelReason = CancelReason.INTERRUPTED) -> bool:
        """Cancel the run.

        Args:
            reason: Why the run is being cancelled

        Returns:
            True if this call cancelled the token, False if it was already cancelled
        """
        if self._reason is not None:
            if reason is not self._reason:
                logger.debug(
                    "cancel ignored, token already cancelled",
                    reason=reason.value,
                    first_reason=self._reason.value,
                )
            return False
        self._reason = reason
        self._event.set()
        logger.info("run cancelled", reason=reason.value)
        return True

    async def wait(self) -> CancelReason:
        """Suspend until the token is cancelled."""
        await self._event.wait()
        if self._reason is None:
            raise RuntimeError("cancel event set without a reason")
        return self._reason

    async def sleep(self, seconds: float) -> bool:
        """Sleep, waking early on cancellation.

        Returns:
            True if the token was cancelled before the delay elapsed
        """
        if self.cancelled:
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    def raise_if_cancelled(self) -> None:
        if self._reason is not None:
            raise CancellationError(reason=self._reason.value)


def install_signal_handlers(token: CancelToken) -> None:
    """Turn SIGINT/SIGTERM into token cancellation on the running loop."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, token.cancel, CancelReason.INTERRUPTED)
        except (NotImplementedError, RuntimeError):
            # Not available on this platform or outside the main thread
            logger.debug("signal handler not installed", signal=sig.name)
