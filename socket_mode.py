"""Slack Socket Mode client with handshake, acks and reconnect-forever."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Mapping
from contextlib import AbstractAsyncContextManager
from enum import StrEnum
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosedOK

from events import (
    ChannelJoined,
    ChannelLeft,
    Connected,
    Disconnected,
    MessageReceived,
    SlackEvent,
    UserTyping,
)
from models import Message
from slack_api import SlackApi

logger = logging.getLogger("slackzc.socket_mode")

DEFAULT_IDLE_TIMEOUT = 60.0
DEFAULT_INITIAL_BACKOFF = 1.0
DEFAULT_MAX_BACKOFF = 30.0

Connector = Callable[[str], AbstractAsyncContextManager[Any]]


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    HANDSHAKING = "handshaking"
    LIVE = "live"


class SocketModeClient:
    """Keeps one workspace's Socket Mode stream open and decodes its events.

    Decoded events are put on *events* without blocking.  :meth:`run`
    never returns on its own; the owner cancels its task to stop it.
    """

    def __init__(
        self,
        api: SlackApi,
        app_token: str,
        user_token: str,
        events: asyncio.Queue[SlackEvent],
        *,
        team_id: str = "",
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
        max_backoff: float = DEFAULT_MAX_BACKOFF,
        connect: Connector | None = None,
    ) -> None:
        self._api = api
        self._app_token = app_token
        self._user_token = user_token
        self._events = events
        self._team_id = team_id
        self._idle_timeout = idle_timeout
        self._initial_backoff = initial_backoff
        self._max_backoff = max_backoff
        self._connect = connect or websockets.connect
        self._state = ConnectionState.DISCONNECTED
        self._reached_live = False

    @property
    def state(self) -> ConnectionState:
        return self._state

    def _emit(self, event: SlackEvent) -> None:
        self._events.put_nowait(event)

    async def run(self) -> None:
        """Connect, listen and reconnect with exponential backoff, forever."""
        backoff = self._initial_backoff
        while True:
            self._reached_live = False
            try:
                await self.run_session()
                logger.info(
                    "Socket mode connection closed", extra={"workspace": self._team_id}
                )
            except asyncio.CancelledError:
                self._state = ConnectionState.DISCONNECTED
                raise
            except Exception as exc:
                logger.warning(
                    "Socket mode error: %s. Reconnecting in %.1fs",
                    exc,
                    backoff if not self._reached_live else self._initial_backoff,
                    extra={"workspace": self._team_id},
                )
            self._state = ConnectionState.DISCONNECTED
            if self._reached_live:
                backoff = self._initial_backoff
            await asyncio.sleep(backoff)
            backoff = min(backoff * 2, self._max_backoff)

    async def run_session(self) -> None:
        """Run one connection from URL minting to close.

        Returns normally when the server closes cleanly or asks us to
        disconnect; raises on transport errors.
        """
        self._state = ConnectionState.CONNECTING
        url = await self._api.open_connection_url(self._app_token)
        logger.debug("Connecting to Socket Mode", extra={"workspace": self._team_id})
        async with self._connect(url) as ws:
            self._state = ConnectionState.HANDSHAKING
            try:
                await self._listen(ws)
            except ConnectionClosedOK:
                logger.debug("WebSocket closed by server")
            finally:
                if self._reached_live:
                    self._emit(Disconnected(team_id=self._team_id))

    async def _listen(self, ws: Any) -> None:
        while True:
            try:
                raw = await asyncio.wait_for(ws.recv(), timeout=self._idle_timeout)
            except TimeoutError:
                # Keep-alive check only; the websocket layer pings on its own
                logger.debug("Socket mode idle for %.0fs", self._idle_timeout)
                continue
            if not await self.handle_frame(ws, raw):
                return

    async def handle_frame(self, ws: Any, raw: str | bytes) -> bool:
        """Process one frame; return ``False`` when the session should end."""
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("Ignoring non-JSON frame")
            return True
        if not isinstance(data, dict):
            return True

        frame_type = data.get("type")
        if frame_type == "disconnect":
            logger.info(
                "Server requested disconnect (%s)",
                data.get("reason", "unknown"),
                extra={"workspace": self._team_id},
            )
            return False

        if self._state is ConnectionState.HANDSHAKING:
            if frame_type == "hello":
                self._state = ConnectionState.LIVE
                self._reached_live = True
                logger.info(
                    "Socket mode handshake successful", extra={"workspace": self._team_id}
                )
                self._emit(Connected(team_id=self._team_id))
            return True

        envelope_id = data.get("envelope_id")
        if isinstance(envelope_id, str) and envelope_id:
            await ws.send(json.dumps({"envelope_id": envelope_id}))

        if frame_type == "events_api":
            payload = data.get("payload")
            if isinstance(payload, Mapping):
                await self.dispatch_event(payload.get("event"))
        return True

    async def dispatch_event(self, event: Any) -> None:
        """Translate an Events API ``event`` object into a :class:`SlackEvent`."""
        if not isinstance(event, Mapping):
            return
        event_type = event.get("type")
        channel = event.get("channel")
        if not isinstance(channel, str):
            return

        if event_type == "message":
            if "subtype" in event:
                return
            message = await self._parse_message(event)
            if message is not None:
                self._emit(
                    MessageReceived(team_id=self._team_id, channel=channel, message=message)
                )
        elif event_type == "user_typing":
            user = event.get("user")
            if isinstance(user, str):
                self._emit(UserTyping(team_id=self._team_id, channel=channel, user=user))
        elif event_type == "member_joined_channel":
            self._emit(ChannelJoined(team_id=self._team_id, channel=channel))
        elif event_type == "member_left_channel":
            self._emit(ChannelLeft(team_id=self._team_id, channel=channel))

    async def _parse_message(self, event: Mapping[str, Any]) -> Message | None:
        names = await self._api.user_directory(self._user_token)
        return Message.from_api(event, names)
