"""Unit tests for the local pipeline's terminal wait."""

from __future__ import annotations

import asyncio

import pytest
from mocks import FakeControllerManager

from adhar_cli.errors import AdharError, CancellationError, ResourceError
from adhar_cli.pipeline.wait import ReadinessWait, WaitState
from adhar_cli.shared.cancel import CancelReason


def _readiness(ready_on: int | None):
    checks = []

    async def check():
        checks.append(True)
        if ready_on is not None and len(checks) >= ready_on:
            return True, "platform ready"
        return False, "gitea not ready"

    check.checks = checks  # type: ignore
    return check


async def _wait(manager, token, check=None, **kwargs) -> ReadinessWait:
    task = await manager.start(token)
    options = {"poll_interval_seconds": 0.01, "grace_seconds": 0.5, **kwargs}
    return ReadinessWait(task, token, check=check, **options)


class TestReadinessWait:
    """Tests for ReadinessWait."""

    @pytest.mark.asyncio
    async def test_manager_signals_synced(self, token):
        """Test the manager's own sync signal ends the wait."""
        manager = FakeControllerManager("sync", delay=0.01)
        wait = await _wait(manager, token)

        outcome = await wait.run()

        assert outcome.state is WaitState.DONE
        assert token.reason is CancelReason.SYNCED
        assert manager.stopped

    @pytest.mark.asyncio
    async def test_safety_net_detects_readiness(self, token):
        """Test the poll cancels with synced when the manager never signals."""
        manager = FakeControllerManager("idle")
        check = _readiness(ready_on=3)
        wait = await _wait(manager, token, check=check)

        outcome = await wait.run()

        assert outcome.state is WaitState.DONE
        assert outcome.reason == "platform synced"
        assert token.self_cancelled
        assert len(check.checks) == 3
        assert manager.stopped

    @pytest.mark.asyncio
    async def test_manager_failure(self, token):
        """Test a failing manager fails the wait with its error."""
        manager = FakeControllerManager("fail", error=ResourceError(message="gitea broke"))
        wait = await _wait(manager, token, check=_readiness(ready_on=None))

        with pytest.raises(ResourceError, match="gitea broke"):
            await wait.run()
        assert wait.state is WaitState.FAILED

    @pytest.mark.asyncio
    async def test_manager_non_adhar_failure_is_wrapped(self, token):
        """Test unexpected manager exceptions are wrapped in AdharError."""
        manager = FakeControllerManager("fail", error=RuntimeError("segfault"))
        wait = await _wait(manager, token)

        with pytest.raises(AdharError, match="controller manager failed: segfault"):
            await wait.run()

    @pytest.mark.asyncio
    async def test_manager_completes(self, token):
        """Test a manager that returns on its own finishes the wait."""
        manager = FakeControllerManager("idle")
        wait = await _wait(manager, token)
        asyncio.get_running_loop().call_later(0.01, wait.manager_task.cancel)

        outcome = await wait.run()
        assert outcome.state is WaitState.DONE
        assert outcome.reason == "manager stopped"

    @pytest.mark.asyncio
    async def test_interrupt(self, token):
        """Test a user interrupt fails the wait with CancellationError."""
        manager = FakeControllerManager("idle")
        wait = await _wait(manager, token, check=_readiness(ready_on=None))
        asyncio.get_running_loop().call_later(0.01, token.cancel, CancelReason.INTERRUPTED)

        with pytest.raises(CancellationError, match="interrupted"):
            await wait.run()
        assert manager.stopped

    @pytest.mark.asyncio
    async def test_interrupt_while_watching(self, token):
        """Test an interrupt without exit-on-sync simply stops watching."""
        manager = FakeControllerManager("idle")
        wait = await _wait(manager, token, check=_readiness(ready_on=1), exit_on_sync=False)
        asyncio.get_running_loop().call_later(0.05, token.cancel, CancelReason.INTERRUPTED)

        outcome = await wait.run()
        assert outcome.state is WaitState.DONE
        assert outcome.reason == "stopped watching"

    @pytest.mark.asyncio
    async def test_grace_window_expires(self, token):
        """Test a manager ignoring cancellation is abandoned without failing the run."""
        manager = FakeControllerManager("stubborn")
        wait = await _wait(manager, token, check=_readiness(ready_on=1), grace_seconds=0.01)

        outcome = await wait.run()

        assert outcome.state is WaitState.DONE
        assert outcome.grace_expired
        await asyncio.gather(wait.manager_task, return_exceptions=True)
        assert wait.manager_task.cancelled()
