"""Tests for commands.py."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from commands import (
    CommandType,
    Draft,
    Resume,
    Search,
    Unknown,
    is_agent_mention,
    process_command,
)


class TestProcessCommand:
    def test_splits_name_and_args(self) -> None:
        assert process_command("/draft reply to bob") == ("draft", ["reply", "to", "bob"])

    def test_not_a_command(self) -> None:
        assert process_command("hello") is None

    def test_bare_slash(self) -> None:
        assert process_command("/") is None
        assert process_command("/   ") is None


class TestMentions:
    @pytest.mark.parametrize("text", ["hey @zeroclaw", "@ZC help", "ping @zc"])
    def test_detected(self, text: str) -> None:
        assert is_agent_mention(text)

    def test_plain_text(self) -> None:
        assert not is_agent_mention("hello team")


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class TestParse:
    def test_resume_with_channel(self) -> None:
        assert CommandType.parse("/resume #general") == Resume(channel="general")

    def test_resume_aliases(self) -> None:
        assert isinstance(CommandType.parse("/summarize"), Resume)
        assert isinstance(CommandType.parse("/RÉSUME"), Resume)

    def test_draft(self) -> None:
        assert CommandType.parse("/draft a polite no") == Draft(intent="a polite no")

    def test_search_aliases(self) -> None:
        assert CommandType.parse("/cherche budget q3") == Search(query="budget q3")
        assert CommandType.parse("/search budget") == Search(query="budget")

    def test_unknown(self) -> None:
        assert CommandType.parse("/dance now") == Unknown(name="dance")

    def test_non_command(self) -> None:
        assert CommandType.parse("just text") is None

    def test_commands_are_frozen(self) -> None:
        cmd = Draft(intent="x")
        with pytest.raises(ValidationError):
            cmd.intent = "y"  # type: ignore[misc]


# ---------------------------------------------------------------------------
# Webhook payloads
# ---------------------------------------------------------------------------


class TestWebhookPayload:
    def test_resume_targets_named_channel(self) -> None:
        payload = Resume(channel="general").to_webhook_payload("C1", "U1")
        assert payload == {
            "command": "resume",
            "channel": "general",
            "user": "U1",
            "message": "/resume #general",
        }

    def test_resume_defaults_to_active_channel(self) -> None:
        payload = Resume().to_webhook_payload("C1", "U1")
        assert payload == {"command": "resume", "channel": "C1", "user": "U1", "message": "/resume"}

    def test_draft(self) -> None:
        assert Draft(intent="say hi").to_webhook_payload("C1", "U1") == {
            "command": "draft",
            "intent": "say hi",
            "user": "U1",
            "channel": "C1",
            "message": "/draft say hi",
        }

    def test_search(self) -> None:
        assert Search(query="q3").to_webhook_payload("C1", "U1") == {
            "command": "cherche",
            "query": "q3",
            "user": "U1",
            "channel": "C1",
            "message": "/cherche q3",
        }

    def test_unknown(self) -> None:
        assert Unknown(name="dance").to_webhook_payload("C1", "U1") == {
            "command": "unknown",
            "raw": "dance",
            "user": "U1",
            "channel": "C1",
        }
