"""Shared test helpers for slack-zc tests."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

from websockets.exceptions import ConnectionClosedOK

from config import SlackZcConfig


class AsyncLineIter:
    """Async iterator yielding raw bytes lines for mock proc.stdout."""

    def __init__(self, lines: list[bytes]) -> None:
        self._it = iter(lines)

    def __aiter__(self):  # noqa: ANN204
        return self

    async def __anext__(self) -> bytes:
        try:
            return next(self._it)
        except StopIteration:
            raise StopAsyncIteration from None


class BlockingLineIter(AsyncLineIter):
    """Like :class:`AsyncLineIter` but never reaches EOF, like a live child."""

    async def __anext__(self) -> bytes:
        try:
            return next(self._it)
        except StopIteration:
            await asyncio.Event().wait()
            raise StopAsyncIteration from None


def make_proc(
    *,
    stdout: list[str] | None = None,
    stderr: list[str] | None = None,
    blocking: bool = False,
    pid: int = 2_000_000_000,
) -> MagicMock:
    """Build a mock ``asyncio.subprocess.Process`` with line-iterable pipes."""
    iter_cls = BlockingLineIter if blocking else AsyncLineIter
    proc = MagicMock()
    proc.pid = pid
    proc.returncode = None
    proc.stdout = iter_cls([(ln + "\n").encode() for ln in stdout or []])
    proc.stderr = iter_cls([(ln + "\n").encode() for ln in stderr or []])
    proc.wait = AsyncMock(return_value=0)
    return proc


def make_runner(proc: MagicMock | None = None, *, version_rc: int = 0) -> MagicMock:
    """Build a mock ``SubprocessRunner`` returning *proc* for streaming spawns."""
    from execution import ProcessResult

    runner = MagicMock()
    runner.run = AsyncMock(
        return_value=ProcessResult(stdout="zeroclaw 1.0", returncode=version_rc)
    )
    runner.spawn = AsyncMock(return_value=proc)

    async def terminate(p: Any, *, grace: float = 3.0) -> None:
        p.returncode = -15

    runner.terminate = AsyncMock(side_effect=terminate)
    return runner


class FakeWebSocket:
    """Scripted websocket: ``recv`` replays *frames*, then closes cleanly."""

    def __init__(self, frames: list[Any]) -> None:
        self._frames = list(frames)
        self.sent: list[dict[str, Any]] = []

    async def recv(self) -> str:
        if not self._frames:
            raise ConnectionClosedOK(None, None)
        frame = self._frames.pop(0)
        if isinstance(frame, BaseException):
            raise frame
        return frame if isinstance(frame, str | bytes) else json.dumps(frame)

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def __aenter__(self) -> FakeWebSocket:
        return self

    async def __aexit__(self, *exc: object) -> None:
        return None


def make_slack_client(**responses: Any) -> MagicMock:
    """Build a mock ``AsyncWebClient`` whose methods return *responses*.

    Values may be dicts (returned), exceptions (raised) or lists of either
    (one per call).
    """
    client = MagicMock()
    for name, value in responses.items():
        if isinstance(value, BaseException | list):
            setattr(client, name, AsyncMock(side_effect=value))
        else:
            setattr(client, name, AsyncMock(return_value=value))
    return client


def user_payload(uid: str, name: str, display: str = "") -> dict[str, Any]:
    return {"id": uid, "name": name, "profile": {"display_name": display, "real_name": ""}}


def message_payload(ts: str, user: str, text: str, **extra: Any) -> dict[str, Any]:
    return {"ts": ts, "user": user, "text": text, **extra}


class ConfigFactory:
    """Factory for SlackZcConfig instances."""

    @staticmethod
    def create(
        *,
        data_dir: Path,
        slack_client_id: str = "",
        slack_client_secret: str = "",
        agent_auto_start: bool = False,
        pairing_timeout: float = 5.0,
        gateway_settle_time: float = 0.0,
        agent_command_timeout: float = 15.0,
        max_retries: int = 3,
        retry_base_delay: float = 0.0,
        directory_ttl: float = 600.0,
        history_limit: int = 50,
    ) -> SlackZcConfig:
        return SlackZcConfig(
            data_dir=data_dir,
            slack_client_id=slack_client_id,
            slack_client_secret=slack_client_secret,
            agent_auto_start=agent_auto_start,
            pairing_timeout=pairing_timeout,
            gateway_settle_time=gateway_settle_time,
            agent_command_timeout=agent_command_timeout,
            max_retries=max_retries,
            retry_base_delay=retry_base_delay,
            directory_ttl=directory_ttl,
            history_limit=history_limit,
        )
