"""Unit tests for adhar_cli.shared.cancel module."""

from __future__ import annotations

import asyncio

import pytest

from adhar_cli.errors import CancellationError
from adhar_cli.shared.cancel import CancelReason, CancelToken, install_signal_handlers


class TestCancelToken:
    """Tests for CancelToken."""

    def test_initial_state(self):
        """Test a new token is not cancelled."""
        token = CancelToken()
        assert not token.cancelled
        assert token.reason is None
        assert not token.self_cancelled

    def test_cancel_defaults_to_interrupted(self):
        """Test cancel without reason is a user interrupt."""
        token = CancelToken()
        assert token.cancel() is True
        assert token.reason is CancelReason.INTERRUPTED
        assert not token.self_cancelled

    def test_self_cancel(self):
        """Test cancelling with SYNCED marks the token self-cancelled."""
        token = CancelToken()
        token.cancel(CancelReason.SYNCED)
        assert token.self_cancelled

    def test_first_cancel_wins(self):
        """Test a later cancel keeps the first reason."""
        token = CancelToken()
        token.cancel(CancelReason.SYNCED)
        assert token.cancel(CancelReason.INTERRUPTED) is False
        assert token.reason is CancelReason.SYNCED

    def test_raise_if_cancelled(self):
        """Test raise_if_cancelled carries the reason."""
        token = CancelToken()
        token.raise_if_cancelled()
        token.cancel()
        with pytest.raises(CancellationError, match="interrupted"):
            token.raise_if_cancelled()

    @pytest.mark.asyncio
    async def test_wait_returns_reason(self):
        """Test waiters wake with the cancel reason."""
        token = CancelToken()
        waiter = asyncio.ensure_future(token.wait())
        await asyncio.sleep(0)
        assert not waiter.done()
        token.cancel(CancelReason.SYNCED)
        assert await asyncio.wait_for(waiter, 1) is CancelReason.SYNCED

    @pytest.mark.asyncio
    async def test_sleep_elapses(self):
        """Test sleep returns False when not cancelled."""
        assert await CancelToken().sleep(0.01) is False

    @pytest.mark.asyncio
    async def test_sleep_wakes_on_cancel(self):
        """Test sleep returns early when the token fires."""
        token = CancelToken()
        loop = asyncio.get_running_loop()
        loop.call_later(0.01, token.cancel)
        start = loop.time()
        assert await token.sleep(10) is True
        assert loop.time() - start < 5

    @pytest.mark.asyncio
    async def test_sleep_already_cancelled(self):
        """Test sleep on a cancelled token returns immediately."""
        token = CancelToken()
        token.cancel()
        assert await token.sleep(10) is True

    @pytest.mark.asyncio
    async def test_install_signal_handlers(self):
        """Test handlers install on the running loop without error."""
        token = CancelToken()
        install_signal_handlers(token)
        assert not token.cancelled
