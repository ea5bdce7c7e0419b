"""Application core: UI-owned state plus the once-per-tick event drain.

Every user action schedules background work on the :class:`TaskBridge`
and returns immediately.  Results come back as immutable events that
:meth:`App.process_events` applies to the state on the caller's
schedule.  Background tasks never touch this state themselves.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from agent import AgentBinaryError, AgentRunner, AgentStatus
from auth import Session, SessionStore, exchange_oauth_code
from commands import CommandType, is_agent_mention
from config import SlackZcConfig
from errors import SessionError, classify_error, classify_text, redact_sensitive
from events import (
    AgentCommandFinished,
    AgentHealthChecked,
    AppEvent,
    ChannelHistoryLoaded,
    ChannelJoined,
    ChannelLeft,
    ChannelsLoaded,
    Connected,
    Disconnected,
    MessageReceived,
    OAuthCompleted,
    PairingFinished,
    SlackEvent,
    SlackSendResult,
    TaskFailed,
    ThreadRepliesLoaded,
    UserTyping,
)
from gateway import GatewayError
from models import Channel, Message, Thread, Workspace
from slack_api import SlackApi
from socket_mode import SocketModeClient
from task_bridge import TaskBridge

logger = logging.getLogger("slackzc.app")

MAX_AGENT_RESPONSES = 50
DEFAULT_REACTION = "+1"
DATE_HISTORY_LIMIT = 100
UNKNOWN_USER = "UNKNOWN_USER"

SocketFactory = Callable[[Workspace], SocketModeClient]
AgentFactory = Callable[[], AgentRunner]


@dataclass
class WorkspaceState:
    """Per-workspace view state plus the handle of its stream task."""

    workspace: Workspace
    channels: list[Channel] = field(default_factory=list)
    connected: bool = False
    socket_task: asyncio.Task[None] | None = None


@dataclass
class AgentResponse:
    command: str
    response: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class EditState:
    channel_id: str
    ts: str
    original_text: str


def _describe(exc: BaseException) -> str:
    return redact_sensitive(str(exc) or exc.__class__.__name__)


async def _reap(task: asyncio.Task[None]) -> None:
    with contextlib.suppress(asyncio.CancelledError):
        await task


class App:
    """State and actions of the terminal client, independent of rendering."""

    def __init__(
        self,
        config: SlackZcConfig,
        *,
        api: SlackApi | None = None,
        store: SessionStore | None = None,
        socket_factory: SocketFactory | None = None,
        agent_factory: AgentFactory | None = None,
    ) -> None:
        self.config = config
        self.api = api or SlackApi(config)
        self.store = store or SessionStore(config.data_dir)
        self.bridge = TaskBridge()
        self.slack_events: asyncio.Queue[SlackEvent] = asyncio.Queue()
        self._socket_factory = socket_factory or self._default_socket_client
        self._agent_factory = agent_factory or self._default_agent_runner

        self.session: Session | None = None
        self.onboarding = False
        self.workspaces: list[WorkspaceState] = []
        self.active_workspace = 0
        self.channels: list[Channel] = []
        self.selected_channel: int | None = None
        self.messages: dict[str, list[Message]] = {}
        self.threads: dict[str, list[Thread]] = {}
        self.active_threads: dict[str, str] = {}
        self.typing_users: dict[str, list[str]] = {}
        self.edit_state: EditState | None = None
        self.input_buffer = ""

        self.agent_runner: AgentRunner | None = None
        self.agent_status = AgentStatus.UNAVAILABLE
        self.agent_error: str | None = None
        self.agent_processing = False
        self.agent_responses: deque[AgentResponse] = deque(maxlen=MAX_AGENT_RESPONSES)

        self.last_error: str | None = None
        self.error_hint: str | None = None

    # --- Factories ---

    def _default_socket_client(self, workspace: Workspace) -> SocketModeClient:
        return SocketModeClient(
            self.api,
            workspace.app_token,
            workspace.user_token,
            self.slack_events,
            team_id=workspace.team_id,
            idle_timeout=self.config.socket_idle_timeout,
            initial_backoff=self.config.reconnect_initial_delay,
            max_backoff=self.config.reconnect_max_delay,
        )

    def _default_agent_runner(self) -> AgentRunner:
        return AgentRunner(
            self.config.agent_binary,
            self.config.gateway_port,
            pairing_timeout=self.config.pairing_timeout,
            settle_time=self.config.gateway_settle_time,
        )

    # --- Errors ---

    def report_error(self, context: str, error: BaseException | str) -> None:
        """Record ``"<context>: <redacted detail>"`` as the visible error."""
        detail = _describe(error) if isinstance(error, BaseException) else redact_sensitive(error)
        self.last_error = f"{context}: {detail}"
        if isinstance(error, BaseException):
            self.error_hint = classify_error(error).user_message()
        else:
            self.error_hint = classify_text(error).user_message()
        logger.warning("%s", self.last_error)

    def clear_error(self) -> None:
        self.last_error = None
        self.error_hint = None

    # --- Accessors ---

    @property
    def current_workspace(self) -> WorkspaceState | None:
        if 0 <= self.active_workspace < len(self.workspaces):
            return self.workspaces[self.active_workspace]
        return None

    @property
    def active_channel_id(self) -> str | None:
        if self.selected_channel is None:
            return None
        if 0 <= self.selected_channel < len(self.channels):
            return self.channels[self.selected_channel].id
        return None

    def _user_token(self) -> str | None:
        ws = self.current_workspace
        return ws.workspace.user_token if ws is not None else None

    def _own_last_message(self) -> tuple[str, Message] | None:
        """Return the active channel's last message when the user wrote it."""
        channel_id = self.active_channel_id
        ws = self.current_workspace
        if channel_id is None or ws is None:
            return None
        messages = self.messages.get(channel_id)
        if not messages:
            return None
        last = messages[-1]
        if ws.workspace.user_id is None or last.user_id != ws.workspace.user_id:
            return None
        return channel_id, last

    def _last_message(self) -> tuple[str, Message] | None:
        channel_id = self.active_channel_id
        if channel_id is None:
            return None
        messages = self.messages.get(channel_id)
        if not messages:
            return None
        return channel_id, messages[-1]

    # --- Startup / shutdown ---

    async def init(self) -> None:
        """Load the session and bring every stored workspace online.

        A missing or unreadable session puts the app into onboarding.
        Raises :class:`OSError` when the data directory cannot be created.
        """
        self.config.data_dir.mkdir(parents=True, exist_ok=True)
        try:
            session = await asyncio.to_thread(self.store.load)
        except SessionError as exc:
            self.report_error("Failed to load session", exc)
            self.onboarding = True
            return
        if session is None:
            self.onboarding = True
            return

        self.session = session
        for workspace in session.workspaces:
            self._add_workspace_state(workspace)
        for idx, state in enumerate(self.workspaces):
            if state.workspace.active:
                self.active_workspace = idx
                break
        self.onboarding = not self.workspaces
        if self.config.agent_auto_start and self.workspaces:
            self.start_agent_pairing()

    def _add_workspace_state(self, workspace: Workspace) -> WorkspaceState:
        state = WorkspaceState(workspace=workspace)
        self.workspaces.append(state)
        self._load_channels(state)
        self._start_stream(state)
        return state

    def _start_stream(self, state: WorkspaceState) -> None:
        if not state.workspace.app_token:
            logger.info(
                "No app token, live events disabled",
                extra={"workspace": state.workspace.team_id},
            )
            return
        client = self._socket_factory(state.workspace)
        state.socket_task = asyncio.create_task(
            client.run(), name=f"socket-mode-{state.workspace.team_id}"
        )

    def _detach_stream(self, state: WorkspaceState) -> asyncio.Task[None] | None:
        """Cancel the stream task and unhook it from *state* without waiting."""
        task, state.socket_task = state.socket_task, None
        if task is None:
            return None
        task.cancel()
        state.connected = False
        return task

    async def _stop_stream(self, state: WorkspaceState) -> None:
        task = self._detach_stream(state)
        if task is not None:
            await _reap(task)

    async def shutdown(self) -> None:
        """Cancel streams and background work, then stop the agent helper."""
        for state in self.workspaces:
            await self._stop_stream(state)
        await self.bridge.cancel_all()
        if self.agent_runner is not None:
            await self.agent_runner.shutdown()
            self.agent_runner = None
        self.agent_status = AgentStatus.UNAVAILABLE

    # --- Event application ---

    def process_events(self) -> list[SlackEvent | AppEvent]:
        """Drain and apply every pending stream event and task result.

        Never blocks.  Returns the applied events in order.
        """
        applied: list[SlackEvent | AppEvent] = []
        while True:
            try:
                event = self.slack_events.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._apply_slack_event(event)
            applied.append(event)
        for result in self.bridge.drain():
            self._apply_app_event(result)
            applied.append(result)
        return applied

    def _apply_slack_event(self, event: SlackEvent) -> None:
        if isinstance(event, MessageReceived):
            thread_ts = event.message.thread_ts
            if thread_ts is not None:
                self.active_threads[event.channel] = thread_ts
                self.threads.setdefault(event.channel, [])
            self.messages.setdefault(event.channel, []).append(event.message)
        elif isinstance(event, UserTyping):
            users = self.typing_users.setdefault(event.channel, [])
            if event.user not in users:
                users.append(event.user)
        elif isinstance(event, ChannelJoined | ChannelLeft):
            logger.debug(
                "Membership change (%s)", event.type, extra={"channel": event.channel}
            )
        elif isinstance(event, Connected | Disconnected):
            connected = isinstance(event, Connected)
            for state in self.workspaces:
                if state.workspace.team_id == event.team_id:
                    state.connected = connected
            logger.info(
                "Socket Mode %s",
                "connected" if connected else "disconnected",
                extra={"workspace": event.team_id},
            )

    def _apply_app_event(self, event: AppEvent) -> None:
        if isinstance(event, SlackSendResult | TaskFailed):
            if event.error is not None:
                self.report_error(event.context, event.error)
            else:
                self.clear_error()
        elif isinstance(event, ChannelsLoaded):
            self._apply_channels(event)
        elif isinstance(event, ChannelHistoryLoaded):
            if event.error is not None:
                self.report_error("Failed to load channel history", event.error)
            else:
                self.messages[event.channel_id] = list(event.messages)
                self.clear_error()
        elif isinstance(event, ThreadRepliesLoaded):
            self._apply_thread_replies(event)
        elif isinstance(event, AgentCommandFinished):
            self.agent_processing = False
            if event.error is not None:
                self.report_error("Agent command failed", event.error)
                self.check_agent_health()
            else:
                if event.response is not None:
                    self.agent_responses.appendleft(
                        AgentResponse(command=event.command, response=event.response)
                    )
                self.clear_error()
        elif isinstance(event, OAuthCompleted):
            self._apply_oauth(event)
        elif isinstance(event, AgentHealthChecked):
            self._apply_agent_health(event)
        elif isinstance(event, PairingFinished):
            if event.error is not None:
                self.agent_status = AgentStatus.ERROR
                self.agent_error = event.error
                self.report_error("Agent pairing failed", event.error)
            else:
                self.agent_status = AgentStatus.ACTIVE
                self.agent_error = None
                if self.session is not None and event.bearer is not None:
                    self.session.agent_bearer = event.bearer
                    self._persist_session()
                self.clear_error()

    def _apply_agent_health(self, event: AgentHealthChecked) -> None:
        if event.healthy or self.agent_status is not AgentStatus.ACTIVE:
            return
        self.agent_status = AgentStatus.ERROR
        self.agent_error = event.error or "Agent gateway is unhealthy"
        self.report_error("Agent health check failed", self.agent_error)
        logger.warning("Agent gateway unhealthy, restarting")
        self.start_agent_pairing()

    def _apply_channels(self, event: ChannelsLoaded) -> None:
        if event.error is not None:
            self.report_error("Failed to load channels", event.error)
            return
        for idx, state in enumerate(self.workspaces):
            if state.workspace.team_id == event.team_id:
                state.channels = list(event.channels)
                if idx == self.active_workspace:
                    self.channels = list(event.channels)
                    self.selected_channel = None
        self.clear_error()

    def _apply_thread_replies(self, event: ThreadRepliesLoaded) -> None:
        if event.error is not None:
            self.report_error("Failed to load thread replies", event.error)
            return
        if not event.messages:
            return
        threads = self.threads.setdefault(event.channel_id, [])
        for thread in threads:
            if thread.parent_ts == event.thread_ts:
                thread.replies = list(event.messages)
                break
        else:
            threads.append(
                Thread(
                    parent_ts=event.thread_ts,
                    channel_id=event.channel_id,
                    replies=list(event.messages),
                )
            )
        self.clear_error()

    def _apply_oauth(self, event: OAuthCompleted) -> None:
        if event.error is not None:
            self.report_error("OAuth completion failed", event.error)
            return
        if event.workspace is None:
            return
        session = self.session or Session()
        for ws in session.workspaces:
            ws.active = False
        workspace = event.workspace.model_copy(update={"active": True})
        session.add_workspace(workspace)
        self.session = session

        existing = next(
            (s for s in self.workspaces if s.workspace.team_id == workspace.team_id),
            None,
        )
        if existing is not None:
            old = self._detach_stream(existing)
            existing.workspace = workspace
            self._start_stream(existing)
            if old is not None:
                self._spawn(_reap(old), "Failed to stop stream")
        else:
            self._add_workspace_state(workspace)
        self.active_workspace = next(
            i for i, s in enumerate(self.workspaces) if s.workspace.team_id == workspace.team_id
        )
        self.channels = list(self.workspaces[self.active_workspace].channels)
        self.selected_channel = None
        self.onboarding = False
        self._persist_session("Failed to persist OAuth session")
        self.clear_error()

    # --- Background helpers ---

    def _spawn(self, coro: Coroutine[Any, Any, AppEvent | None], name: str) -> None:
        self.bridge.spawn(coro, name=name)

    async def _save_session(self, session: Session) -> None:
        await asyncio.to_thread(self.store.save, session)

    def _persist_session(self, context: str = "Failed to save session") -> None:
        if self.session is None:
            return
        # Snapshot so later in-memory edits cannot race the write
        snapshot = self.session.model_copy(deep=True)
        self._spawn(self._save_session(snapshot), context)

    async def _send_result(
        self, context: str, coro: Coroutine[Any, Any, Any]
    ) -> SlackSendResult:
        try:
            await coro
        except Exception as exc:
            return SlackSendResult(context=context, error=_describe(exc))
        return SlackSendResult(context=context)

    def _load_channels(self, state: WorkspaceState) -> None:
        token = state.workspace.user_token
        team_id = state.workspace.team_id

        async def load() -> ChannelsLoaded:
            try:
                channels = list(await self.api.list_channels(token))
                channels.extend(await self.api.list_dms(token))
            except Exception as exc:
                return ChannelsLoaded(team_id=team_id, error=_describe(exc))
            return ChannelsLoaded(team_id=team_id, channels=channels)

        self._spawn(load(), "Failed to load channels")

    def _load_history(
        self, channel_id: str, limit: int, *, oldest: str | None = None
    ) -> None:
        token = self._user_token()
        ws = self.current_workspace
        if token is None or ws is None:
            return
        team_id = ws.workspace.team_id

        async def load() -> ChannelHistoryLoaded:
            try:
                messages = await self.api.get_history(token, channel_id, limit, oldest=oldest)
            except Exception as exc:
                return ChannelHistoryLoaded(
                    team_id=team_id, channel_id=channel_id, error=_describe(exc)
                )
            return ChannelHistoryLoaded(
                team_id=team_id, channel_id=channel_id, messages=messages
            )

        self._spawn(load(), "Failed to load channel history")

    async def _restart_stream(self, state: WorkspaceState, workspace: Workspace) -> None:
        await self._stop_stream(state)
        state.workspace = workspace
        self._start_stream(state)

    # --- Actions ---

    def select_channel(self, idx: int) -> None:
        if not 0 <= idx < len(self.channels):
            return
        self.selected_channel = idx
        self._load_history(self.channels[idx].id, self.config.history_limit)

    def load_history(self, since: datetime | None = None) -> None:
        """Reload the active channel, optionally starting at *since*."""
        channel_id = self.active_channel_id
        if channel_id is None:
            return
        oldest = f"{since.timestamp():.6f}" if since is not None else None
        self._load_history(channel_id, DATE_HISTORY_LIMIT, oldest=oldest)

    def submit(self, text: str) -> None:
        """Dispatch the input line: edit, agent command, mention or message."""
        if not text:
            return
        if self.edit_state is not None:
            self.save_edited_message(text)
            return
        if text.startswith("/"):
            self.handle_agent_command(text)
        else:
            if is_agent_mention(text):
                self.send_message(text, context="Failed to send mention")
            else:
                self.send_message(text)
        self.input_buffer = ""

    def send_message(self, text: str, *, context: str = "Failed to send message") -> None:
        channel_id = self.active_channel_id
        token = self._user_token()
        if channel_id is None or token is None:
            return
        self._spawn(
            self._send_result(context, self.api.send_message(token, channel_id, text)),
            context,
        )

    def handle_agent_command(self, text: str) -> None:
        command = CommandType.parse(text)
        if command is None:
            return
        channel_id = self.active_channel_id
        ws = self.current_workspace
        user_id = (ws.workspace.user_id if ws is not None else None) or UNKNOWN_USER
        payload = command.to_webhook_payload(channel_id or "", user_id)

        runner = self.agent_runner
        if runner is None or runner.gateway is None:
            self.report_error("Agent command failed", "agent not connected")
            return
        self.agent_processing = True
        thread_ts = self.active_threads.get(channel_id) if channel_id else None
        token = self._user_token()
        self._spawn(
            self._run_agent_command(runner, text, payload, channel_id, token, thread_ts),
            "Agent command failed",
        )

    async def _run_agent_command(
        self,
        runner: AgentRunner,
        command_text: str,
        payload: dict[str, Any],
        channel_id: str | None,
        token: str | None,
        thread_ts: str | None,
    ) -> AgentCommandFinished:
        timeout = self.config.agent_command_timeout
        try:
            response = await asyncio.wait_for(runner.send_command(payload), timeout=timeout)
        except TimeoutError:
            return AgentCommandFinished(
                command=command_text, error=f"timed out after {timeout:.0f}s"
            )
        except Exception as exc:
            return AgentCommandFinished(command=command_text, error=_describe(exc))

        if channel_id is not None and token is not None:
            try:
                if thread_ts is not None:
                    await self.api.send_message_to_thread(token, channel_id, response, thread_ts)
                else:
                    await self.api.send_message(token, channel_id, response)
            except Exception as exc:
                return AgentCommandFinished(
                    command=command_text,
                    error=f"Failed to post agent response: {_describe(exc)}",
                )
        return AgentCommandFinished(command=command_text, response=response)

    def load_thread(self, channel_id: str | None = None) -> None:
        """Fetch replies for every message in the channel that has any."""
        channel_id = channel_id or self.active_channel_id
        token = self._user_token()
        ws = self.current_workspace
        if channel_id is None or token is None or ws is None:
            return
        team_id = ws.workspace.team_id
        for message in self.messages.get(channel_id, []):
            if not message.reply_count:
                continue
            self._spawn(
                self._load_replies(team_id, token, channel_id, message.ts),
                "Failed to load thread replies",
            )

    async def _load_replies(
        self, team_id: str, token: str, channel_id: str, thread_ts: str
    ) -> ThreadRepliesLoaded:
        try:
            replies = await self.api.get_thread_replies(token, channel_id, thread_ts)
        except Exception as exc:
            return ThreadRepliesLoaded(
                team_id=team_id, channel_id=channel_id, thread_ts=thread_ts, error=_describe(exc)
            )
        return ThreadRepliesLoaded(
            team_id=team_id, channel_id=channel_id, thread_ts=thread_ts, messages=replies
        )

    def toggle_thread_collapse(self, channel_id: str) -> None:
        for thread in self.threads.get(channel_id, []):
            thread.toggle_collapse()

    def reply_in_thread(self) -> None:
        """Target the active channel's last message for agent replies."""
        last = self._last_message()
        if last is not None:
            channel_id, message = last
            self.active_threads[channel_id] = message.ts

    def start_edit_message(self) -> bool:
        """Begin editing the user's own last message; ``False`` if there is none."""
        own = self._own_last_message()
        if own is None:
            return False
        channel_id, message = own
        self.edit_state = EditState(
            channel_id=channel_id, ts=message.ts, original_text=message.text
        )
        self.input_buffer = message.text
        return True

    def save_edited_message(self, text: str) -> None:
        edit, self.edit_state = self.edit_state, None
        self.input_buffer = ""
        token = self._user_token()
        if edit is None or token is None:
            return
        context = "Failed to update message"
        self._spawn(
            self._send_result(
                context, self.api.update_message(token, edit.channel_id, edit.ts, text)
            ),
            context,
        )

    def delete_selected_message(self) -> bool:
        own = self._own_last_message()
        token = self._user_token()
        if own is None or token is None:
            return False
        channel_id, message = own
        context = "Failed to delete message"
        self._spawn(
            self._send_result(context, self.api.delete_message(token, channel_id, message.ts)),
            context,
        )
        return True

    def add_reaction_to_message(self, name: str = DEFAULT_REACTION) -> None:
        last = self._last_message()
        token = self._user_token()
        if last is None or token is None:
            return
        channel_id, message = last
        context = "Failed to add reaction"
        self._spawn(
            self._send_result(
                context, self.api.add_reaction(token, channel_id, message.ts, name)
            ),
            context,
        )

    def upload_file(
        self, path: str | Path, *, title: str | None = None, comment: str | None = None
    ) -> None:
        channel_id = self.active_channel_id
        token = self._user_token()
        if channel_id is None or token is None:
            return
        context = "Failed to upload file"
        self._spawn(
            self._send_result(
                context,
                self.api.upload_file(token, channel_id, path, title=title, comment=comment),
            ),
            context,
        )

    def switch_workspace(self, idx: int) -> None:
        if not 0 <= idx < len(self.workspaces):
            return
        self.active_workspace = idx
        self.channels = list(self.workspaces[idx].channels)
        self.selected_channel = None
        if self.session is not None:
            self.session.set_active_workspace(self.workspaces[idx].workspace.team_id)
            self._persist_session("Failed to save workspace selection")

    async def disconnect_workspace(self, team_id: str) -> None:
        """Stop the workspace's stream and forget it in the session."""
        state = next((s for s in self.workspaces if s.workspace.team_id == team_id), None)
        if state is None:
            return
        await self._stop_stream(state)
        self.workspaces.remove(state)
        if self.session is not None:
            self.session.remove_workspace(team_id)
            self._persist_session("Failed to save session")
        if not self.workspaces:
            self.active_workspace = 0
            self.channels = []
            self.selected_channel = None
            self.onboarding = True
            return
        active_team = self.session.active_workspace() if self.session is not None else None
        self.active_workspace = next(
            (
                i
                for i, s in enumerate(self.workspaces)
                if active_team is not None and s.workspace.team_id == active_team.team_id
            ),
            0,
        )
        self.channels = list(self.workspaces[self.active_workspace].channels)
        self.selected_channel = None

    async def rotate_tokens(self, team_id: str, user_token: str, app_token: str) -> None:
        """Swap in new credentials and reconnect the workspace's stream."""
        if self.session is None:
            self.report_error("Failed to rotate tokens", "no session")
            return
        try:
            self.session.rotate_token(team_id, user_token, app_token)
        except SessionError as exc:
            self.report_error("Failed to rotate tokens", exc)
            return
        updated = self.session.find_workspace(team_id)
        state = next((s for s in self.workspaces if s.workspace.team_id == team_id), None)
        if state is not None and updated is not None:
            await self._restart_stream(state, updated.model_copy())
        self._persist_session("Failed to persist rotated tokens")
        self.clear_error()

    def complete_oauth(self, code: str) -> None:
        client_id = self.config.slack_client_id
        client_secret = self.config.slack_client_secret
        if not client_id or not client_secret:
            self.report_error(
                "OAuth completion failed", "Slack client id and secret are not configured"
            )
            return
        redirect_uri = self.config.oauth_redirect_uri

        async def exchange() -> OAuthCompleted:
            try:
                workspace = await exchange_oauth_code(
                    self.api, client_id, client_secret, code, redirect_uri
                )
            except Exception as exc:
                return OAuthCompleted(error=_describe(exc))
            return OAuthCompleted(workspace=workspace)

        self._spawn(exchange(), "OAuth completion failed")

    def start_agent_pairing(self) -> None:
        """Start the agent helper: reuse the stored bearer, else pair afresh."""
        previous = self.agent_runner
        runner = self._agent_factory()
        self.agent_runner = runner
        self.agent_status = AgentStatus.STARTING
        bearer = self.session.agent_bearer if self.session is not None else None
        self._spawn(self._pair_agent(runner, previous, bearer), "Agent pairing failed")

    def check_agent_health(self) -> None:
        """Health-check a running agent helper; an unhealthy one is restarted."""
        runner = self.agent_runner
        if runner is None or self.agent_status is not AgentStatus.ACTIVE:
            return

        async def check() -> AgentHealthChecked:
            try:
                healthy = await runner.is_healthy()
            except Exception as exc:
                return AgentHealthChecked(healthy=False, error=_describe(exc))
            return AgentHealthChecked(healthy=healthy)

        self._spawn(check(), "Agent health check failed")

    async def _pair_agent(
        self,
        runner: AgentRunner,
        previous: AgentRunner | None,
        bearer: str | None,
    ) -> PairingFinished:
        if previous is not None:
            await previous.shutdown()
        try:
            await runner.check_binary()
        except AgentBinaryError as exc:
            return PairingFinished(error=f"Agent startup failed: {_describe(exc)}")
        if bearer:
            try:
                await runner.start_with_bearer(bearer)
                return PairingFinished(bearer=bearer)
            except (GatewayError, AgentBinaryError, OSError) as exc:
                logger.info("Stored agent bearer rejected, pairing again: %s", exc)
        try:
            gateway = await runner.start_and_pair()
        except Exception as exc:
            return PairingFinished(error=_describe(exc))
        return PairingFinished(bearer=gateway.bearer)


