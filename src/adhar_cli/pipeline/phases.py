"""Ordered, cancellable phase execution.

A Pipeline runs its phases strictly in order. A phase that fails stops the
run unless it is marked non-fatal, in which case the failure is reported as
a warning and the next phase starts. A phase may also skip itself by raising
PhaseSkipped. Every transition is reported to a ProgressSink.

A user interrupt on the shared CancelToken aborts the phase in flight (its
task is cancelled, which kills any running subprocess) and fails the run.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

import click

from ..errors import AdharError, CancellationError, PhaseError
from ..shared.cancel import CancelReason, CancelToken
from ..shared.logging import get_logger

logger = get_logger(__name__)


class PhaseSkipped(Exception):
    """Raised by a phase executor to report that it had nothing to do."""

    def __init__(self, reason: str = ""):
        super().__init__(reason)
        self.reason = reason


class PhaseStatus(Enum):
    """Terminal state of a phase."""

    PENDING = "pending"
    COMPLETED = "completed"
    WARNED = "warned"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class Phase:
    """One named step of a pipeline."""

    name: str
    run: Callable[[], Awaitable[None]]
    description: str = ""
    non_fatal: bool = False
    # Phases that handle cancellation themselves opt out of being aborted
    cancellable: bool = True


@dataclass
class PhaseOutcome:
    name: str
    status: PhaseStatus = PhaseStatus.PENDING
    message: str = ""
    elapsed_seconds: float = 0.0


@dataclass
class PipelineResult:
    """Result of a pipeline run."""

    name: str
    outcomes: list[PhaseOutcome] = field(default_factory=list)
    failed_index: int | None = None
    error: AdharError | None = None

    @property
    def success(self) -> bool:
        return self.failed_index is None

    @property
    def completed(self) -> int:
        done = (PhaseStatus.COMPLETED, PhaseStatus.WARNED, PhaseStatus.SKIPPED)
        return sum(1 for outcome in self.outcomes if outcome.status in done)

    @property
    def warnings(self) -> list[PhaseOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status is PhaseStatus.WARNED]

    @property
    def summary(self) -> str:
        return f"{self.completed} of {len(self.outcomes)} steps completed"

    def raise_for_status(self) -> None:
        if self.error is not None:
            raise self.error


class ProgressSink(Protocol):
    """Receives phase transitions; rendering is up to the implementation."""

    def phase_started(self, index: int, total: int, phase: Phase) -> None: ...

    def phase_completed(self, index: int, phase: Phase) -> None: ...

    def phase_failed(self, index: int, phase: Phase, error: BaseException) -> None: ...

    def phase_skipped(self, index: int, phase: Phase, reason: str) -> None: ...

    def warning(self, message: str) -> None: ...

    def info(self, message: str) -> None: ...


class NullProgress:
    """Discards every event."""

    def phase_started(self, index: int, total: int, phase: Phase) -> None:
        pass

    def phase_completed(self, index: int, phase: Phase) -> None:
        pass

    def phase_failed(self, index: int, phase: Phase, error: BaseException) -> None:
        pass

    def phase_skipped(self, index: int, phase: Phase, reason: str) -> None:
        pass

    def warning(self, message: str) -> None:
        pass

    def info(self, message: str) -> None:
        pass


class LoggingProgress:
    """Reports events through structlog."""

    def phase_started(self, index: int, total: int, phase: Phase) -> None:
        logger.info("phase started", phase=phase.name, step=f"{index + 1}/{total}")

    def phase_completed(self, index: int, phase: Phase) -> None:
        logger.info("phase completed", phase=phase.name)

    def phase_failed(self, index: int, phase: Phase, error: BaseException) -> None:
        logger.error("phase failed", phase=phase.name, error=str(error))

    def phase_skipped(self, index: int, phase: Phase, reason: str) -> None:
        logger.info("phase skipped", phase=phase.name, reason=reason)

    def warning(self, message: str) -> None:
        logger.warning(message)

    def info(self, message: str) -> None:
        logger.info(message)


class EchoProgress:
    """Terminal progress lines with ✓/✗/⚠/→ marks."""

    def __init__(self, suppress_output: bool = False, indent: str = "  "):
        self.suppress_output = suppress_output
        self.indent = indent

    def _echo(self, message: str, err: bool = False) -> None:
        if not self.suppress_output:
            click.echo(f"{self.indent}{message}", err=err)

    def phase_started(self, index: int, total: int, phase: Phase) -> None:
        self._echo(f"→ [{index + 1}/{total}] {phase.description or phase.name}")

    def phase_completed(self, index: int, phase: Phase) -> None:
        self._echo(f"✓ {phase.name}")

    def phase_failed(self, index: int, phase: Phase, error: BaseException) -> None:
        self._echo(f"✗ {phase.name}: {error}", err=True)

    def phase_skipped(self, index: int, phase: Phase, reason: str) -> None:
        self._echo(f"⚠ {phase.name} skipped: {reason}" if reason else f"⚠ {phase.name} skipped")

    def warning(self, message: str) -> None:
        self._echo(f"⚠ {message}")

    def info(self, message: str) -> None:
        self._echo(message)


class Pipeline:
    """Run phases in order under a shared cancellation token."""

    def __init__(
        self,
        name: str,
        phases: list[Phase],
        token: CancelToken | None = None,
        progress: ProgressSink | None = None,
    ):
        self.name = name
        self.phases = phases
        self.token = token or CancelToken()
        self.progress: ProgressSink = progress or NullProgress()

    async def _run_phase(self, phase: Phase) -> None:
        """Run one executor, aborting it on user interrupt.

        Self-cancellation ("synced") does not abort a phase; only an
        interrupt does.

        Raises:
            CancellationError: The run was interrupted.
        """
        if not phase.cancellable:
            await phase.run()
            return

        if self.token.reason is CancelReason.INTERRUPTED:
            raise CancellationError(reason=CancelReason.INTERRUPTED.value)

        task = asyncio.ensure_future(phase.run())
        waiter = asyncio.ensure_future(self.token.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
            if task not in done and waiter.result() is CancelReason.INTERRUPTED:
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
                raise CancellationError(reason=CancelReason.INTERRUPTED.value)
            await task
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

    async def run(self) -> PipelineResult:
        """Execute every phase.

        Returns:
            PipelineResult; failed_index and error are set when a fatal phase failed.
        """
        result = PipelineResult(name=self.name)
        result.outcomes = [PhaseOutcome(name=phase.name) for phase in self.phases]
        total = len(self.phases)

        for index, phase in enumerate(self.phases):
            outcome = result.outcomes[index]
            self.progress.phase_started(index, total, phase)
            start = time.monotonic()
            try:
                await self._run_phase(phase)
            except PhaseSkipped as skipped:
                outcome.status = PhaseStatus.SKIPPED
                outcome.message = skipped.reason
                self.progress.phase_skipped(index, phase, skipped.reason)
            except Exception as e:
                outcome.elapsed_seconds = time.monotonic() - start
                outcome.message = str(e)
                if phase.non_fatal and not isinstance(e, CancellationError):
                    outcome.status = PhaseStatus.WARNED
                    logger.warning("non-fatal phase failed", phase=phase.name, error=str(e))
                    self.progress.warning(f"{phase.name}: {e}")
                    continue
                outcome.status = PhaseStatus.FAILED
                result.failed_index = index
                result.error = PhaseError(phase=phase.name, index=index, cause=e)
                logger.error(
                    "phase failed", pipeline=self.name, phase=phase.name, index=index, error=str(e)
                )
                self.progress.phase_failed(index, phase, e)
                break
            else:
                outcome.status = PhaseStatus.COMPLETED
                self.progress.phase_completed(index, phase)
            outcome.elapsed_seconds = time.monotonic() - start

        logger.info(
            "pipeline finished", pipeline=self.name, success=result.success, summary=result.summary
        )
        return result
