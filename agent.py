"""Agent helper supervisor: spawns the gateway, pairs, and keeps it alive."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import re
import signal
import weakref
from collections.abc import AsyncIterable, Callable
from enum import StrEnum

from execution import SubprocessRunner, get_default_runner, kill_process_group
from gateway import GatewayClient, GatewayError

logger = logging.getLogger("slackzc.agent")

PAIRING_CODE_RE = re.compile(r"pairing\s+code[:\s]+(\d{6})", re.IGNORECASE)

DEFAULT_PAIRING_TIMEOUT = 5.0
DEFAULT_SETTLE_TIME = 0.5
DEFAULT_SHUTDOWN_GRACE = 3.0

GatewayFactory = Callable[[int, str | None], GatewayClient]


class AgentBinaryError(RuntimeError):
    """Raised when the helper binary is missing or not executable."""


class PairingError(RuntimeError):
    """Raised when no pairing code shows up on the helper's stdout in time."""


class AgentStatus(StrEnum):
    """What the UI shows for the agent helper."""

    UNAVAILABLE = "unavailable"
    STARTING = "starting"
    PAIRING = "pairing"
    ACTIVE = "active"
    ERROR = "error"


class AgentPhase(StrEnum):
    """Lifecycle of the supervised child process."""

    IDLE = "idle"
    SPAWNED = "spawned"
    AWAITING_CODE = "awaiting_code"
    SUPERVISED = "supervised"
    TERMINATED = "terminated"


def find_pairing_code(line: str) -> str | None:
    """Return the 6-digit pairing code in *line*, if any."""
    match = PAIRING_CODE_RE.search(line)
    return match.group(1) if match else None


async def scan_for_pairing_code(stream: AsyncIterable[bytes]) -> str:
    """Read lines from *stream* until one carries a pairing code.

    Raises :class:`PairingError` when the stream ends first.
    """
    async for raw in stream:
        line = raw.decode(errors="replace").rstrip()
        code = find_pairing_code(line)
        if code is not None:
            return code
        logger.debug("Agent stdout: %s", line)
    raise PairingError("Pairing code not found in output")


async def _drain(stream: AsyncIterable[bytes], label: str) -> None:
    """Discard *stream* so the child never blocks on a full pipe."""
    async for raw in stream:
        logger.debug("Agent %s: %s", label, raw.decode(errors="replace").rstrip())


def _kill_orphan(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        kill_process_group(proc.pid, signal.SIGKILL)


class AgentRunner:
    """Owns the agent helper process and the gateway client bound to it.

    A runner that is garbage-collected while its child is still running
    kills the child's process group.
    """

    def __init__(
        self,
        binary_path: str = "zeroclaw",
        gateway_port: int = 8080,
        *,
        pairing_timeout: float = DEFAULT_PAIRING_TIMEOUT,
        settle_time: float = DEFAULT_SETTLE_TIME,
        shutdown_grace: float = DEFAULT_SHUTDOWN_GRACE,
        runner: SubprocessRunner | None = None,
        gateway_factory: GatewayFactory | None = None,
    ) -> None:
        self._binary = binary_path
        self._port = gateway_port
        self._pairing_timeout = pairing_timeout
        self._settle_time = settle_time
        self._shutdown_grace = shutdown_grace
        self._runner = runner or get_default_runner()
        self._gateway_factory = gateway_factory or (
            lambda port, bearer: GatewayClient(port, bearer=bearer)
        )
        self._proc: asyncio.subprocess.Process | None = None
        self._gateway: GatewayClient | None = None
        self._drains: set[asyncio.Task[None]] = set()
        self._finalizer: weakref.finalize | None = None
        self._phase = AgentPhase.IDLE

    @property
    def phase(self) -> AgentPhase:
        return self._phase

    @property
    def gateway(self) -> GatewayClient | None:
        return self._gateway

    @property
    def process(self) -> asyncio.subprocess.Process | None:
        return self._proc

    def status(self) -> AgentStatus:
        if self._gateway is None:
            return AgentStatus.UNAVAILABLE
        if not self._gateway.is_paired():
            return AgentStatus.PAIRING
        return AgentStatus.ACTIVE

    async def check_binary(self) -> str:
        """Run ``<binary> --version`` and return its output.

        Raises :class:`AgentBinaryError` when the binary cannot be run or
        exits non-zero.
        """
        try:
            result = await self._runner.run([self._binary, "--version"], timeout=10.0)
        except (OSError, TimeoutError) as exc:
            raise AgentBinaryError(
                f"Agent binary not found or not executable: {self._binary}"
            ) from exc
        if not result.ok:
            raise AgentBinaryError(
                f"Agent binary not found or not executable: {self._binary}"
            )
        return result.stdout

    async def _spawn(self) -> asyncio.subprocess.Process:
        if self._proc is not None:
            await self.shutdown()
        cmd = [self._binary, "gateway", "--port", str(self._port)]
        try:
            proc = await self._runner.spawn(cmd)
        except OSError as exc:
            raise AgentBinaryError(f"Failed to start {self._binary}: {exc}") from exc
        self._proc = proc
        self._finalizer = weakref.finalize(self, _kill_orphan, proc)
        self._phase = AgentPhase.SPAWNED
        logger.info("Started agent gateway (pid %s) on port %d", proc.pid, self._port)
        return proc

    def _start_drain(self, stream: AsyncIterable[bytes] | None, label: str) -> None:
        if stream is None:
            return
        task = asyncio.create_task(_drain(stream, label), name=f"agent-{label}-drain")
        self._drains.add(task)
        task.add_done_callback(self._drains.discard)

    async def start_and_pair(self) -> GatewayClient:
        """Spawn the gateway, scrape its pairing code and exchange it for a bearer.

        On :class:`PairingError` the child is left running and still owned
        by this runner; call :meth:`shutdown` to dispose of it.
        """
        proc = await self._spawn()
        self._start_drain(proc.stderr, "stderr")
        self._phase = AgentPhase.AWAITING_CODE
        if proc.stdout is None:
            raise PairingError("Failed to capture stdout")
        try:
            code = await asyncio.wait_for(
                scan_for_pairing_code(proc.stdout), timeout=self._pairing_timeout
            )
        except TimeoutError as exc:
            raise PairingError("Timeout waiting for pairing code") from exc
        finally:
            self._start_drain(proc.stdout, "stdout")
        logger.info("Agent pairing code obtained (redacted)")

        gateway = self._gateway_factory(self._port, None)
        await gateway.pair(code)
        self._gateway = gateway
        self._phase = AgentPhase.SUPERVISED
        return gateway

    async def start_with_bearer(self, bearer: str) -> GatewayClient:
        """Spawn the gateway and reuse a stored *bearer*.

        Raises :class:`~gateway.GatewayError` when the health check fails so
        the caller can fall back to :meth:`start_and_pair`.
        """
        proc = await self._spawn()
        self._start_drain(proc.stdout, "stdout")
        self._start_drain(proc.stderr, "stderr")
        await asyncio.sleep(self._settle_time)
        gateway = self._gateway_factory(self._port, bearer)
        if not await gateway.health_check():
            raise GatewayError("Gateway health check failed")
        self._gateway = gateway
        self._phase = AgentPhase.SUPERVISED
        logger.info("Agent gateway started and authenticated")
        return gateway

    async def is_healthy(self) -> bool:
        """Check the gateway; ``False`` when the child died or /health fails."""
        if self._gateway is None or self._proc is None:
            return False
        if self._proc.returncode is not None:
            return False
        return await self._gateway.health_check()

    async def send_command(self, payload: dict) -> str:
        if self._gateway is None:
            raise GatewayError("Agent gateway is not running")
        return await self._gateway.send_to_agent(payload)

    async def shutdown(self) -> None:
        """Terminate the child (SIGTERM, bounded wait, SIGKILL) and forget the gateway."""
        for task in list(self._drains):
            task.cancel()
        for task in list(self._drains):
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._drains.clear()
        proc, self._proc = self._proc, None
        if self._finalizer is not None:
            self._finalizer.detach()
            self._finalizer = None
        if proc is not None:
            await self._runner.terminate(proc, grace=self._shutdown_grace)
            logger.info("Agent gateway stopped")
        self._gateway = None
        self._phase = AgentPhase.TERMINATED
