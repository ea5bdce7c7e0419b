"""Slash-command parsing and agent webhook payloads."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict

AGENT_MENTIONS = ("@zeroclaw", "@zc")


def process_command(text: str) -> tuple[str, list[str]] | None:
    """Split ``"/name arg1 arg2"`` into ``("name", ["arg1", "arg2"])``.

    Returns ``None`` for text that is not a slash command.
    """
    if not text.startswith("/"):
        return None
    parts = text[1:].split()
    if not parts:
        return None
    return parts[0], parts[1:]


def is_agent_mention(text: str) -> bool:
    lower = text.lower()
    return any(mention in lower for mention in AGENT_MENTIONS)


class CommandType(BaseModel):
    """A slash command addressed to the agent."""

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_command(cls, name: str, args: list[str]) -> CommandType:
        key = name.lower()
        if key in ("resume", "résume", "summarize"):
            channel = args[0].removeprefix("#") if args else None
            return Resume(channel=channel)
        if key == "draft":
            return Draft(intent=" ".join(args))
        if key in ("cherche", "search"):
            return Search(query=" ".join(args))
        return Unknown(name=name)

    @classmethod
    def parse(cls, text: str) -> CommandType | None:
        """Parse a full ``/command`` line, or return ``None``."""
        parsed = process_command(text)
        if parsed is None:
            return None
        return cls.from_command(*parsed)

    def to_webhook_payload(self, active_channel: str, user: str) -> dict[str, Any]:
        raise NotImplementedError


class Resume(CommandType):
    channel: str | None = None

    def to_webhook_payload(self, active_channel: str, user: str) -> dict[str, Any]:
        if self.channel:
            target, message = self.channel, f"/resume #{self.channel}"
        else:
            target, message = active_channel, "/resume"
        return {"command": "resume", "channel": target, "user": user, "message": message}


class Draft(CommandType):
    intent: str

    def to_webhook_payload(self, active_channel: str, user: str) -> dict[str, Any]:
        return {
            "command": "draft",
            "intent": self.intent,
            "user": user,
            "channel": active_channel,
            "message": f"/draft {self.intent}",
        }


class Search(CommandType):
    query: str

    def to_webhook_payload(self, active_channel: str, user: str) -> dict[str, Any]:
        return {
            "command": "cherche",
            "query": self.query,
            "user": user,
            "channel": active_channel,
            "message": f"/cherche {self.query}",
        }


class Unknown(CommandType):
    name: str

    def to_webhook_payload(self, active_channel: str, user: str) -> dict[str, Any]:
        return {
            "command": "unknown",
            "raw": self.name,
            "user": user,
            "channel": active_channel,
        }
