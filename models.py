"""Data models for slack-zc."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

# --- Session ---


class Workspace(BaseModel):
    """A connected Slack workspace and its two credentials."""

    team_id: str
    team_name: str = ""
    user_token: str = Field(default="", description="xoxp- user token")
    app_token: str = Field(default="", description="xapp- app-level token")
    user_id: str | None = None
    active: bool = False


class AuthInfo(BaseModel):
    """Result of ``auth.test``."""

    team_id: str = ""
    team: str = ""
    user_id: str = ""


# --- Directory ---


class User(BaseModel):
    """A member of the workspace directory."""

    id: str
    name: str
    display_name: str = ""
    real_name: str = ""
    email: str | None = None

    @property
    def resolved_name(self) -> str:
        """Display name, else real name, else username."""
        return self.display_name or self.real_name or self.name

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> User | None:
        """Parse a ``users.list`` member; ``None`` when id, name or profile is missing."""
        profile = data.get("profile")
        user_id = data.get("id")
        name = data.get("name")
        if not isinstance(profile, Mapping) or not isinstance(user_id, str):
            return None
        if not isinstance(name, str):
            return None
        return cls(
            id=user_id,
            name=name,
            display_name=_str_or(profile.get("display_name"), ""),
            real_name=_str_or(profile.get("real_name"), ""),
            email=_opt_str(profile.get("email")),
        )


# --- Conversations ---


class Channel(BaseModel):
    """A channel, private group or direct message."""

    id: str
    name: str
    is_dm: bool = False
    is_group: bool = False
    is_im: bool = False
    unread_count: int = 0
    purpose: str | None = None
    topic: str | None = None
    user: str | None = None

    @property
    def display_name(self) -> str:
        return f"@ {self.name}" if self.is_dm else f"# {self.name}"

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> Channel | None:
        """Parse a ``conversations.list`` channel entry."""
        channel_id = data.get("id")
        name = data.get("name")
        if not isinstance(channel_id, str) or not isinstance(name, str):
            return None
        return cls(
            id=channel_id,
            name=name,
            is_group=bool(data.get("is_group", False)),
            purpose=_nested_value(data.get("purpose")),
            topic=_nested_value(data.get("topic")),
        )

    @classmethod
    def from_im(cls, data: Mapping[str, Any]) -> Channel | None:
        """Parse an ``im`` conversation; the peer user id doubles as its name."""
        channel_id = data.get("id")
        peer = data.get("user")
        if not isinstance(channel_id, str) or not isinstance(peer, str):
            return None
        return cls(id=channel_id, name=peer, is_dm=True, is_im=True, user=peer)


class Reaction(BaseModel):
    name: str
    count: int
    users: list[str] = Field(default_factory=list)


class File(BaseModel):
    """A file attached to a message."""

    id: str
    name: str
    mimetype: str | None = None
    url_private: str | None = None
    url_private_download: str | None = None
    size: int = 0


class FileInfo(File):
    """A file as returned by ``files.info``."""

    title: str | None = None
    filetype: str | None = None

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> FileInfo:
        size = data.get("size")
        return cls(
            id=_str_or(data.get("id"), ""),
            name=_str_or(data.get("name"), ""),
            mimetype=_opt_str(data.get("mimetype")),
            url_private=_opt_str(data.get("url_private")),
            url_private_download=_opt_str(data.get("url_private_download")),
            size=size if isinstance(size, int) and size >= 0 else 0,
            title=_opt_str(data.get("title")),
            filetype=_opt_str(data.get("filetype")),
        )


class Message(BaseModel):
    """A chat message with its author name resolved at parse time."""

    ts: str
    user_id: str
    username: str
    text: str
    thread_ts: str | None = None
    timestamp: datetime
    is_agent: bool = False
    reactions: list[Reaction] = Field(default_factory=list)
    is_edited: bool = False
    is_deleted: bool = False
    files: list[File] = Field(default_factory=list)
    reply_count: int | None = None
    last_read: str | None = None

    @classmethod
    def from_api(
        cls, data: Mapping[str, Any], names: Mapping[str, str]
    ) -> Message | None:
        """Parse a raw message payload.

        Returns ``None`` when ``ts``, ``user`` or ``text`` is missing, or when
        ``ts`` does not start with integer seconds.  *names* maps user ids to
        display names; unknown authors keep their id as the name.
        """
        ts = data.get("ts")
        user_id = data.get("user")
        text = data.get("text")
        if not isinstance(ts, str) or not isinstance(user_id, str):
            return None
        if not isinstance(text, str):
            return None
        timestamp = ts_to_datetime(ts)
        if timestamp is None:
            return None

        reply_count = data.get("reply_count")
        return cls(
            ts=ts,
            user_id=user_id,
            username=names.get(user_id, user_id),
            text=text,
            thread_ts=_opt_str(data.get("thread_ts")),
            timestamp=timestamp,
            reactions=_parse_reactions(data.get("reactions")),
            is_edited="edited" in data,
            is_deleted="deleted_at" in data or data.get("is_deleted") is True,
            files=_parse_files(data.get("files")),
            reply_count=reply_count
            if isinstance(reply_count, int) and reply_count >= 0
            else None,
            last_read=_opt_str(data.get("last_read")),
        )


class Thread(BaseModel):
    """Replies under a parent message, loaded on demand."""

    parent_ts: str
    channel_id: str
    replies: list[Message] = Field(default_factory=list)
    is_collapsed: bool = False

    def toggle_collapse(self) -> None:
        self.is_collapsed = not self.is_collapsed


# --- Helpers ---


def ts_to_datetime(ts: str) -> datetime | None:
    """Convert the integer-seconds part of a Slack ``ts`` to a UTC datetime."""
    seconds = ts.split(".", 1)[0]
    try:
        return datetime.fromtimestamp(int(seconds), tz=UTC)
    except (ValueError, OverflowError, OSError):
        return None


def _opt_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _str_or(value: Any, default: str) -> str:
    return value if isinstance(value, str) else default


def _nested_value(value: Any) -> str | None:
    if isinstance(value, Mapping):
        return _opt_str(value.get("value"))
    return None


def _parse_reactions(raw: Any) -> list[Reaction]:
    if not isinstance(raw, list):
        return []
    reactions: list[Reaction] = []
    for item in raw:
        if not isinstance(item, Mapping):
            continue
        name = item.get("name")
        count = item.get("count")
        if not isinstance(name, str) or not isinstance(count, int):
            continue
        users = item.get("users")
        reactions.append(
            Reaction(
                name=name,
                count=count,
                users=[u for u in users if isinstance(u, str)]
                if isinstance(users, list)
                else [],
            )
        )
    return reactions


def _parse_files(raw: Any) -> list[File]:
    if not isinstance(raw, list):
        return []
    files: list[File] = []
    for item in raw:
        if not isinstance(item, Mapping):
            continue
        file_id = item.get("id")
        name = item.get("name")
        size = item.get("size")
        if not isinstance(file_id, str) or not isinstance(name, str):
            continue
        if not isinstance(size, int):
            continue
        files.append(
            File(
                id=file_id,
                name=name,
                mimetype=_opt_str(item.get("mimetype")),
                url_private=_opt_str(item.get("url_private")),
                url_private_download=_opt_str(item.get("url_private_download")),
                size=size,
            )
        )
    return files
