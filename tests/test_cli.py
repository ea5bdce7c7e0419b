"""Tests for cli.py: argument parsing, command handlers and signal handling."""

from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from auth import Session, SessionStore
from cli import (
    _active_workspace,
    _cmd_agent,
    _cmd_history,
    _cmd_listen,
    _cmd_logout,
    _cmd_oauth,
    _cmd_send,
    _run_main,
    config_from_args,
    format_message,
    main,
    parse_args,
)
from config import SlackZcConfig
from errors import AuthError, SessionError
from models import Message, Workspace, ts_to_datetime


def _session(*, bearer: str | None = None) -> Session:
    return Session(
        workspaces=[
            Workspace(
                team_id="T1",
                team_name="Acme",
                user_token="xoxp-T1",
                app_token="xapp-T1",
                user_id="U1",
                active=True,
            )
        ],
        agent_bearer=bearer,
    )


def _msg(text: str, **extra: object) -> Message:
    return Message(
        ts="1700000000.000100",
        user_id="U1",
        username="ali",
        text=text,
        timestamp=ts_to_datetime("1700000000.000100"),
        **extra,
    )


# ---------------------------------------------------------------------------
# parse_args
# ---------------------------------------------------------------------------


class TestParseArgs:
    def test_listen(self) -> None:
        args = parse_args(["listen"])
        assert args.command == "listen"
        assert args.data_dir is None
        assert not args.verbose
        assert not args.json_logs

    def test_global_flags(self, tmp_path: Path) -> None:
        args = parse_args(
            ["--data-dir", str(tmp_path), "--verbose", "--json-logs", "logout"]
        )
        assert args.data_dir == tmp_path
        assert args.verbose
        assert args.json_logs

    def test_history(self) -> None:
        args = parse_args(["history", "C1", "--limit", "20"])
        assert (args.channel, args.limit) == ("C1", 20)

    def test_send_with_thread(self) -> None:
        args = parse_args(["send", "C1", "hello there", "--thread", "1.0"])
        assert (args.channel, args.text, args.thread) == ("C1", "hello there", "1.0")

    def test_agent_default_channel(self) -> None:
        args = parse_args(["agent", "/resume"])
        assert args.text == "/resume"
        assert args.channel == ""

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            parse_args([])

    def test_config_from_args(self, tmp_path: Path) -> None:
        config = config_from_args(parse_args(["--data-dir", str(tmp_path), "listen"]))
        assert config.data_dir == tmp_path
        assert config.log_file is None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_format_message(self) -> None:
        line = format_message(_msg("hi"))
        assert line.endswith("] ali: hi")
        assert line.startswith("[2023-11-")

    def test_format_edited_message(self) -> None:
        assert format_message(_msg("hi", is_edited=True)).endswith("ali: hi (edited)")

    def test_active_workspace_requires_session(self) -> None:
        with pytest.raises(SessionError, match="No workspace connected"):
            _active_workspace(None)
        with pytest.raises(SessionError):
            _active_workspace(Session())

    def test_active_workspace(self) -> None:
        assert _active_workspace(_session()).team_id == "T1"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class TestCommands:
    @pytest.mark.asyncio
    async def test_history_prints_messages(
        self, config: SlackZcConfig, capsys: pytest.CaptureFixture[str]
    ) -> None:
        SessionStore(config.data_dir).save(_session())
        api = MagicMock()
        api.get_history = AsyncMock(return_value=[_msg("one"), _msg("two")])
        with patch("cli.SlackApi", return_value=api):
            assert await _cmd_history(config, "C1", 10) == 0
        api.get_history.assert_awaited_once_with("xoxp-T1", "C1", 10)
        out = capsys.readouterr().out.splitlines()
        assert [line.split(": ", 1)[1] for line in out] == ["one", "two"]

    @pytest.mark.asyncio
    async def test_history_without_session(self, config: SlackZcConfig) -> None:
        with pytest.raises(SessionError):
            await _cmd_history(config, "C1", None)

    @pytest.mark.asyncio
    async def test_send_prints_ts(
        self, config: SlackZcConfig, capsys: pytest.CaptureFixture[str]
    ) -> None:
        SessionStore(config.data_dir).save(_session())
        api = MagicMock()
        api.send_message = AsyncMock(return_value="1700000001.000200")
        with patch("cli.SlackApi", return_value=api):
            assert await _cmd_send(config, "C1", "hi", "1.0") == 0
        api.send_message.assert_awaited_once_with("xoxp-T1", "C1", "hi", thread_ts="1.0")
        assert capsys.readouterr().out.strip() == "1700000001.000200"

    @pytest.mark.asyncio
    async def test_oauth_requires_credentials(self, config: SlackZcConfig) -> None:
        assert await _cmd_oauth(config, "code") == 2

    @pytest.mark.asyncio
    async def test_agent_rejects_plain_text(self, config: SlackZcConfig) -> None:
        assert await _cmd_agent(config, "hello", "") == 2

    @pytest.mark.asyncio
    async def test_agent_requires_pairing(self, config: SlackZcConfig) -> None:
        SessionStore(config.data_dir).save(_session())
        assert await _cmd_agent(config, "/resume", "C1") == 1

    @pytest.mark.asyncio
    async def test_agent_sends_command(
        self, config: SlackZcConfig, capsys: pytest.CaptureFixture[str]
    ) -> None:
        SessionStore(config.data_dir).save(_session(bearer="zc_1"))
        runner = MagicMock()
        runner.start_with_bearer = AsyncMock()
        runner.send_command = AsyncMock(return_value="summary")
        runner.shutdown = AsyncMock()
        with patch("cli._agent_runner", return_value=runner):
            assert await _cmd_agent(config, "/resume", "C1") == 0
        runner.start_with_bearer.assert_awaited_once_with("zc_1")
        runner.send_command.assert_awaited_once_with(
            {"command": "resume", "channel": "C1", "user": "U1", "message": "/resume"}
        )
        runner.shutdown.assert_awaited_once()
        assert capsys.readouterr().out.strip() == "summary"

    @pytest.mark.asyncio
    async def test_agent_timeout_reported(
        self, config: SlackZcConfig, capsys: pytest.CaptureFixture[str]
    ) -> None:
        SessionStore(config.data_dir).save(_session(bearer="zc_1"))
        config.agent_command_timeout = 0.6

        async def hang(payload: dict) -> str:
            await asyncio.Event().wait()
            return ""

        runner = MagicMock()
        runner.start_with_bearer = AsyncMock()
        runner.send_command = AsyncMock(side_effect=hang)
        runner.shutdown = AsyncMock()
        with patch("cli._agent_runner", return_value=runner):
            assert await _cmd_agent(config, "/resume", "C1") == 1
        runner.shutdown.assert_awaited_once()
        captured = capsys.readouterr()
        assert captured.out == ""
        assert captured.err.strip() == "Agent command timed out after 1s"

    @pytest.mark.asyncio
    async def test_logout_clears_session(self, config: SlackZcConfig) -> None:
        store = SessionStore(config.data_dir)
        store.save(_session())
        assert await _cmd_logout(config) == 0
        assert store.load() is None

    @pytest.mark.asyncio
    async def test_listen_without_session(
        self, config: SlackZcConfig, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert await _cmd_listen(config) == 1
        assert "No workspace connected" in capsys.readouterr().err


# ---------------------------------------------------------------------------
# _run_main
# ---------------------------------------------------------------------------


class TestRunMain:
    @pytest.mark.asyncio
    async def test_registers_and_removes_signal_handlers(self) -> None:
        mock_loop = MagicMock()
        with patch("cli.asyncio.get_running_loop", return_value=mock_loop):
            assert await _run_main(AsyncMock(return_value=0)) == 0

        registered = {c.args[0] for c in mock_loop.add_signal_handler.call_args_list}
        removed = {c.args[0] for c in mock_loop.remove_signal_handler.call_args_list}
        assert registered == removed == {signal.SIGINT, signal.SIGTERM}

    @pytest.mark.asyncio
    async def test_signal_cancels_run(self) -> None:
        handlers: dict[int, object] = {}
        mock_loop = MagicMock()
        mock_loop.add_signal_handler = MagicMock(
            side_effect=lambda sig, cb: handlers.__setitem__(sig, cb)
        )

        async def run() -> int:
            handlers[signal.SIGINT]()  # type: ignore[operator]
            await asyncio.sleep(10)
            return 5

        with patch("cli.asyncio.get_running_loop", return_value=mock_loop):
            assert await _run_main(run) == 0

    @pytest.mark.asyncio
    async def test_api_error_prints_hint(self, capsys: pytest.CaptureFixture[str]) -> None:
        with patch("cli.asyncio.get_running_loop", return_value=MagicMock()):
            code = await _run_main(AsyncMock(side_effect=AuthError("invalid_auth")))
        assert code == 1
        assert capsys.readouterr().err.strip() == AuthError.summary

    @pytest.mark.asyncio
    async def test_other_error_redacted(self, capsys: pytest.CaptureFixture[str]) -> None:
        with patch("cli.asyncio.get_running_loop", return_value=MagicMock()):
            code = await _run_main(AsyncMock(side_effect=RuntimeError("bad xoxp-1-2")))
        assert code == 1
        assert capsys.readouterr().err.strip() == "bad xoxp-[REDACTED]"


# ---------------------------------------------------------------------------
# main
# ---------------------------------------------------------------------------


class TestMain:
    def test_logout_exits_zero(self, tmp_path: Path) -> None:
        try:
            with pytest.raises(SystemExit) as exc_info:
                main(["--data-dir", str(tmp_path / "data"), "logout"])
            assert exc_info.value.code == 0
            assert (tmp_path / "data").is_dir()
        finally:
            logger = logging.getLogger("slackzc")
            for handler in logger.handlers[:]:
                handler.close()
            logger.handlers.clear()
            logger.filters.clear()
