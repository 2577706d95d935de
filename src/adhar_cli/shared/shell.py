"""Subprocess execution for external tooling (kubectl, helm, kind, git, cloud CLIs).

Commands are stateless, blocking from the caller's point of view and never
retried here. Cancelling the awaiting task kills the child process, so a
cancelled phase returns promptly instead of waiting out a long `kubectl wait`.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from typing import Protocol

from ..errors import CommandError, OperationTimeoutError, ToolNotFoundError
from .logging import get_logger

logger = get_logger(__name__)


@dataclass
class CommandResult:
    """Outcome of one external command."""

    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr, as a terminal would show it."""
        return (self.stdout + self.stderr).strip()

    def check(self) -> CommandResult:
        """Raise CommandError unless the command exited with 0."""
        if not self.ok:
            raise CommandError(command=self.args, returncode=self.returncode, stderr=self.stderr)
        return self


class CommandRunner(Protocol):
    """Anything that can run an external command."""

    async def __call__(
        self,
        args: list[str],
        input: str | None = None,
        timeout: float | None = None,
        env: dict[str, str] | None = None,
        cwd: str | None = None,
    ) -> CommandResult: ...


async def run_command(
    args: list[str],
    input: str | None = None,
    timeout: float | None = None,
    env: dict[str, str] | None = None,
    cwd: str | None = None,
) -> CommandResult:
    """Run an external command and capture its output.

    Args:
        args: Program and arguments
        input: Optional text written to stdin
        timeout: Seconds before the process is killed
        env: Extra environment variables layered over os.environ
        cwd: Working directory

    Returns:
        CommandResult, whatever the exit code

    Raises:
        ToolNotFoundError: The program is not installed
        OperationTimeoutError: The command outlived its timeout
    """
    logger.debug("running command", command=" ".join(args))
    merged_env = {**os.environ, **env} if env else None
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=merged_env,
            cwd=cwd,
        )
    except FileNotFoundError as e:
        raise ToolNotFoundError(tool=args[0]) from e

    data = input.encode() if input is not None else None
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(data), timeout)
    except asyncio.TimeoutError as e:
        _kill(process)
        await process.wait()
        raise OperationTimeoutError(
            operation=" ".join(args[:3]), timeout_seconds=timeout or 0
        ) from e
    except asyncio.CancelledError:
        _kill(process)
        await process.wait()
        raise

    result = CommandResult(
        args=list(args),
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode(errors="replace") if stdout else "",
        stderr=stderr.decode(errors="replace") if stderr else "",
    )
    if not result.ok:
        logger.debug("command failed", command=args[0], returncode=result.returncode)
    return result


def _kill(process: asyncio.subprocess.Process) -> None:
    try:
        process.kill()
    except ProcessLookupError:
        pass

