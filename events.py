"""Immutable events flowing from background work to the presentation loop.

Two families exist: :class:`SlackEvent` values decoded from the Socket
Mode stream, and :class:`AppEvent` results produced by tasks scheduled on
the :class:`~task_bridge.TaskBridge`.  Both are frozen pydantic models.
"""

from __future__ import annotations

import itertools
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from models import Channel, Message, Workspace

_event_counter = itertools.count()


def _now() -> str:
    return datetime.now(UTC).isoformat()


# --- Socket Mode stream ---


class SlackEventType(StrEnum):
    """Categories of events decoded from the live stream."""

    MESSAGE = "message"
    USER_TYPING = "user_typing"
    CHANNEL_JOINED = "channel_joined"
    CHANNEL_LEFT = "channel_left"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class SlackEvent(BaseModel):
    """A single event from one workspace's stream."""

    model_config = ConfigDict(frozen=True)

    type: SlackEventType
    team_id: str = ""
    timestamp: str = Field(default_factory=_now)


class MessageReceived(SlackEvent):
    type: SlackEventType = SlackEventType.MESSAGE
    channel: str
    message: Message


class UserTyping(SlackEvent):
    type: SlackEventType = SlackEventType.USER_TYPING
    channel: str
    user: str


class ChannelJoined(SlackEvent):
    type: SlackEventType = SlackEventType.CHANNEL_JOINED
    channel: str


class ChannelLeft(SlackEvent):
    type: SlackEventType = SlackEventType.CHANNEL_LEFT
    channel: str


class Connected(SlackEvent):
    type: SlackEventType = SlackEventType.CONNECTED


class Disconnected(SlackEvent):
    type: SlackEventType = SlackEventType.DISCONNECTED


# --- Background task results ---


class AppEventType(StrEnum):
    """Categories of results delivered through the task bridge."""

    SLACK_SEND_RESULT = "slack_send_result"
    CHANNELS_LOADED = "channels_loaded"
    CHANNEL_HISTORY_LOADED = "channel_history_loaded"
    THREAD_REPLIES_LOADED = "thread_replies_loaded"
    AGENT_COMMAND_FINISHED = "agent_command_finished"
    OAUTH_COMPLETED = "oauth_completed"
    PAIRING_FINISHED = "pairing_finished"
    AGENT_HEALTH_CHECKED = "agent_health_checked"
    TASK_FAILED = "task_failed"


class AppEvent(BaseModel):
    """Outcome of one unit of background work.

    ``error`` carries a redacted summary on failure; success payload
    fields are left at their defaults in that case.
    """

    model_config = ConfigDict(frozen=True)

    id: int = Field(default_factory=lambda: next(_event_counter))
    type: AppEventType
    timestamp: str = Field(default_factory=_now)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class SlackSendResult(AppEvent):
    """Result of a write (send, edit, delete, react, upload)."""

    type: AppEventType = AppEventType.SLACK_SEND_RESULT
    context: str


class ChannelsLoaded(AppEvent):
    type: AppEventType = AppEventType.CHANNELS_LOADED
    team_id: str
    channels: list[Channel] = Field(default_factory=list)


class ChannelHistoryLoaded(AppEvent):
    type: AppEventType = AppEventType.CHANNEL_HISTORY_LOADED
    team_id: str
    channel_id: str
    messages: list[Message] = Field(default_factory=list)


class ThreadRepliesLoaded(AppEvent):
    type: AppEventType = AppEventType.THREAD_REPLIES_LOADED
    team_id: str
    channel_id: str
    thread_ts: str
    messages: list[Message] = Field(default_factory=list)


class AgentCommandFinished(AppEvent):
    type: AppEventType = AppEventType.AGENT_COMMAND_FINISHED
    command: str
    response: str | None = None


class OAuthCompleted(AppEvent):
    type: AppEventType = AppEventType.OAUTH_COMPLETED
    workspace: Workspace | None = None


class PairingFinished(AppEvent):
    """The agent gateway handed out (or re-confirmed) a bearer token."""

    type: AppEventType = AppEventType.PAIRING_FINISHED
    bearer: str | None = None


class AgentHealthChecked(AppEvent):
    type: AppEventType = AppEventType.AGENT_HEALTH_CHECKED
    healthy: bool = True


class TaskFailed(AppEvent):
    """A background task raised instead of producing its result."""

    type: AppEventType = AppEventType.TASK_FAILED
    context: str
