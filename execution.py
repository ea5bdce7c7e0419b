"""Subprocess execution for the agent helper binary."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

logger = logging.getLogger("slackzc.execution")

STREAM_LIMIT = 1024 * 1024


@dataclass
class ProcessResult:
    """Captured output of a short-lived command."""

    stdout: str = ""
    stderr: str = ""
    returncode: int = 0

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def _decode(raw: bytes | None) -> str:
    return raw.decode(errors="replace").strip() if raw else ""


def kill_process_group(pid: int, sig: int = signal.SIGKILL) -> None:
    """Send *sig* to the process group led by *pid*, ignoring dead groups."""
    with contextlib.suppress(ProcessLookupError, PermissionError, OSError):
        os.killpg(pid, sig)


@runtime_checkable
class SubprocessRunner(Protocol):
    """How the agent runner starts, runs and stops helper processes."""

    async def spawn(
        self, cmd: Sequence[str], *, env: dict[str, str] | None = None
    ) -> asyncio.subprocess.Process:
        """Start a long-lived child in its own process group.

        stdout and stderr are piped; the caller must keep draining both.
        """
        ...

    async def run(
        self, cmd: Sequence[str], *, timeout: float = 30.0
    ) -> ProcessResult:
        """Run *cmd* to completion.

        Raises ``TimeoutError`` after *timeout* seconds and
        ``FileNotFoundError`` when the executable does not exist.
        """
        ...

    async def terminate(
        self, proc: asyncio.subprocess.Process, *, grace: float = 3.0
    ) -> None:
        """SIGTERM the child's group, escalating to SIGKILL after *grace*."""
        ...


class HostRunner:
    """Runs helper processes directly on this machine."""

    async def spawn(
        self, cmd: Sequence[str], *, env: dict[str, str] | None = None
    ) -> asyncio.subprocess.Process:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=STREAM_LIMIT,
            start_new_session=True,
        )
        logger.debug("Spawned %s (pid %s)", cmd[0], proc.pid)
        return proc

    async def run(
        self, cmd: Sequence[str], *, timeout: float = 30.0
    ) -> ProcessResult:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            out, err = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except TimeoutError:
            proc.kill()
            await proc.wait()
            raise
        code = proc.returncode
        return ProcessResult(
            stdout=_decode(out),
            stderr=_decode(err),
            returncode=-1 if code is None else code,
        )

    async def terminate(
        self, proc: asyncio.subprocess.Process, *, grace: float = 3.0
    ) -> None:
        """Stop *proc* and its process group; always reaps the child."""
        if proc.returncode is not None:
            return
        kill_process_group(proc.pid, signal.SIGTERM)
        try:
            await asyncio.wait_for(proc.wait(), timeout=grace)
            return
        except TimeoutError:
            logger.warning("Process %d ignored SIGTERM, killing", proc.pid)
        kill_process_group(proc.pid, signal.SIGKILL)
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()


_default_runner: HostRunner | None = None


def get_default_runner() -> HostRunner:
    """Return a module-level ``HostRunner`` singleton."""
    global _default_runner  # noqa: PLW0603
    if _default_runner is None:
        _default_runner = HostRunner()
    return _default_runner
