"""Non-blocking hand-off between background tasks and the render loop."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Coroutine
from typing import Any

from errors import redact_sensitive
from events import AppEvent, TaskFailed

logger = logging.getLogger("slackzc.task_bridge")


class TaskBridge:
    """Many-producer, single-consumer relay of :class:`~events.AppEvent` results.

    Background work is scheduled with :meth:`spawn`; whatever event the
    coroutine returns is queued.  The presentation loop calls
    :meth:`drain` once per tick and applies the results itself.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[AppEvent] = asyncio.Queue()
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        """Number of in-flight tasks."""
        return len(self._tasks)

    def publish(self, event: AppEvent) -> None:
        """Queue a ready result."""
        self._queue.put_nowait(event)

    def spawn(
        self,
        coro: Coroutine[Any, Any, AppEvent | None],
        *,
        name: str = "background task",
    ) -> asyncio.Task[None]:
        """Schedule *coro*; its returned event (if any) is queued.

        An exception escaping *coro* is converted to a
        :class:`~events.TaskFailed` result instead of being lost.
        """
        task = asyncio.create_task(self._run(coro, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(
        self, coro: Coroutine[Any, Any, AppEvent | None], name: str
    ) -> None:
        try:
            event = await coro
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Background task %r failed", name)
            self.publish(TaskFailed(context=name, error=redact_sensitive(str(exc))))
            return
        if event is not None:
            self.publish(event)

    def drain(self) -> list[AppEvent]:
        """Return every queued result without waiting."""
        events: list[AppEvent] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return events

    async def wait_idle(self) -> None:
        """Wait until all in-flight tasks have finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        """Cancel in-flight work and wait for the cancellations to land."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()
