"""CLI entry point for slack-zc."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path

from agent import AgentRunner
from app import App
from auth import Session, SessionStore, exchange_oauth_code
from commands import CommandType
from config import SlackZcConfig, build_config
from errors import ApiError, SessionError, redact_sensitive, user_message
from events import MessageReceived
from gateway import GatewayError
from log import setup_logging
from models import Message, Workspace
from slack_api import SlackApi

logger = logging.getLogger("slackzc.cli")

TICK_SECONDS = 0.1


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="slack-zc",
        description="Terminal Slack client with an agent helper",
    )
    parser.add_argument(
        "--config-file",
        type=Path,
        default=None,
        help="JSON config file (values are overridden by flags)",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Directory for the encrypted session (default: ~/.local/share/slack-zc)",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Also write JSON logs to this file (rotated at 10 MB)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug-level logging",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit console logs as JSON lines",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("listen", help="Connect every workspace and print live messages")

    history = sub.add_parser("history", help="Print recent messages of a channel")
    history.add_argument("channel", help="Channel id")
    history.add_argument("--limit", type=int, default=None, help="Messages to fetch")

    send = sub.add_parser("send", help="Post a message to a channel")
    send.add_argument("channel", help="Channel id")
    send.add_argument("text", help="Message text")
    send.add_argument("--thread", default=None, help="Parent ts to reply under")

    oauth = sub.add_parser("oauth", help="Finish OAuth with the code from the redirect")
    oauth.add_argument("code", help="OAuth authorization code")

    sub.add_parser("pair", help="Start the agent helper and pair with its gateway")

    agent = sub.add_parser("agent", help="Send a slash command to the agent")
    agent.add_argument("text", help='Command line, e.g. "/resume #general"')
    agent.add_argument("--channel", default="", help="Channel the command refers to")

    sub.add_parser("logout", help="Delete the stored session")

    return parser.parse_args(argv)


def config_from_args(args: argparse.Namespace) -> SlackZcConfig:
    """Convert parsed CLI args into a :class:`SlackZcConfig`.

    Only explicitly-provided values are passed through.
    """
    return build_config(
        args.config_file,
        data_dir=args.data_dir,
        log_file=args.log_file,
    )


def format_message(message: Message) -> str:
    stamp = message.timestamp.strftime("%Y-%m-%d %H:%M")
    marker = " (edited)" if message.is_edited else ""
    return f"[{stamp}] {message.username}: {message.text}{marker}"


def _active_workspace(session: Session | None) -> Workspace:
    if session is None or not session.workspaces:
        raise SessionError("No workspace connected; run `slack-zc oauth <code>` first")
    return session.active_workspace() or session.workspaces[0]


async def _load_session(store: SessionStore) -> Session | None:
    return await asyncio.to_thread(store.load)


# --- Commands ---


async def _cmd_listen(config: SlackZcConfig) -> int:
    app = App(config)
    try:
        await app.init()
        if app.onboarding:
            print(app.last_error or "No workspace connected", file=sys.stderr)
            return 1
        while True:
            for event in app.process_events():
                if isinstance(event, MessageReceived):
                    print(f"#{event.channel} {format_message(event.message)}", flush=True)
            if app.last_error:
                print(app.last_error, file=sys.stderr, flush=True)
                app.clear_error()
            await asyncio.sleep(TICK_SECONDS)
    finally:
        await app.shutdown()


async def _cmd_history(config: SlackZcConfig, channel: str, limit: int | None) -> int:
    workspace = _active_workspace(await _load_session(SessionStore(config.data_dir)))
    api = SlackApi(config)
    for message in await api.get_history(workspace.user_token, channel, limit):
        print(format_message(message))
    return 0


async def _cmd_send(
    config: SlackZcConfig, channel: str, text: str, thread_ts: str | None
) -> int:
    workspace = _active_workspace(await _load_session(SessionStore(config.data_dir)))
    api = SlackApi(config)
    ts = await api.send_message(workspace.user_token, channel, text, thread_ts=thread_ts)
    print(ts)
    return 0


async def _cmd_oauth(config: SlackZcConfig, code: str) -> int:
    if not config.slack_client_id or not config.slack_client_secret:
        print("Slack client id and secret are not configured", file=sys.stderr)
        return 2
    store = SessionStore(config.data_dir)
    session = await _load_session(store) or Session()
    workspace = await exchange_oauth_code(
        SlackApi(config),
        config.slack_client_id,
        config.slack_client_secret,
        code,
        config.oauth_redirect_uri,
    )
    for ws in session.workspaces:
        ws.active = False
    session.add_workspace(workspace)
    await asyncio.to_thread(store.save, session)
    print(f"Connected to {workspace.team_name or workspace.team_id}")
    return 0


def _agent_runner(config: SlackZcConfig) -> AgentRunner:
    return AgentRunner(
        config.agent_binary,
        config.gateway_port,
        pairing_timeout=config.pairing_timeout,
        settle_time=config.gateway_settle_time,
    )


async def _cmd_pair(config: SlackZcConfig) -> int:
    store = SessionStore(config.data_dir)
    session = await _load_session(store) or Session()
    runner = _agent_runner(config)
    try:
        await runner.check_binary()
        gateway = await runner.start_and_pair()
        session.agent_bearer = gateway.bearer
        await asyncio.to_thread(store.save, session)
    finally:
        await runner.shutdown()
    print("Agent paired")
    return 0


async def _cmd_agent(config: SlackZcConfig, text: str, channel: str) -> int:
    command = CommandType.parse(text)
    if command is None:
        print(f"Not a slash command: {text}", file=sys.stderr)
        return 2
    session = await _load_session(SessionStore(config.data_dir))
    if session is None or not session.agent_bearer:
        print("Agent is not paired; run `slack-zc pair` first", file=sys.stderr)
        return 1
    workspace = session.active_workspace()
    user_id = (workspace.user_id if workspace is not None else None) or "UNKNOWN_USER"
    runner = _agent_runner(config)
    try:
        await runner.start_with_bearer(session.agent_bearer)
        response = await asyncio.wait_for(
            runner.send_command(command.to_webhook_payload(channel, user_id)),
            timeout=config.agent_command_timeout,
        )
    except TimeoutError:
        print(
            f"Agent command timed out after {config.agent_command_timeout:.0f}s",
            file=sys.stderr,
        )
        return 1
    finally:
        await runner.shutdown()
    print(response)
    return 0


async def _cmd_logout(config: SlackZcConfig) -> int:
    await asyncio.to_thread(SessionStore(config.data_dir).clear)
    print("Session removed")
    return 0


def _dispatch(args: argparse.Namespace, config: SlackZcConfig) -> Callable[[], Awaitable[int]]:
    command = args.command
    if command == "listen":
        return lambda: _cmd_listen(config)
    if command == "history":
        return lambda: _cmd_history(config, args.channel, args.limit)
    if command == "send":
        return lambda: _cmd_send(config, args.channel, args.text, args.thread)
    if command == "oauth":
        return lambda: _cmd_oauth(config, args.code)
    if command == "pair":
        return lambda: _cmd_pair(config)
    if command == "agent":
        return lambda: _cmd_agent(config, args.text, args.channel)
    return lambda: _cmd_logout(config)


async def _run_main(run: Callable[[], Awaitable[int]]) -> int:
    """Run *run* until it finishes or SIGINT/SIGTERM cancels it."""
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    assert task is not None
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, task.cancel)
    try:
        return await run()
    except asyncio.CancelledError:
        logger.info("Interrupted, shutting down")
        return 0
    except (ApiError, SessionError, GatewayError, RuntimeError, TimeoutError) as exc:
        logger.error("Command failed: %s", exc)
        hint = user_message(exc) if isinstance(exc, ApiError) else redact_sensitive(str(exc))
        print(hint, file=sys.stderr)
        return 1
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)


def main(argv: list[str] | None = None) -> None:
    """Entry point."""
    args = parse_args(argv)
    config = config_from_args(args)

    level = logging.DEBUG if args.verbose else logging.INFO
    setup_logging(level=level, json_output=args.json_logs, log_file=config.log_file)

    try:
        config.data_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        print(f"Cannot create data directory {config.data_dir}: {exc}", file=sys.stderr)
        sys.exit(1)

    sys.exit(asyncio.run(_run_main(_dispatch(args, config))))


if __name__ == "__main__":
    main()
