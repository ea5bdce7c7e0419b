"""slack-zc configuration via Pydantic."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger("slackzc.config")


class SlackZcConfig(BaseModel):
    """Configuration for the slack-zc client."""

    # Slack OAuth
    slack_client_id: str = Field(default="", description="Slack app client id")
    slack_client_secret: str = Field(
        default="", description="Slack app client secret"
    )
    oauth_redirect_port: int = Field(
        default=3000, ge=1, le=65535, description="Local OAuth redirect port"
    )

    # Agent helper
    agent_binary: str = Field(
        default="zeroclaw", description="Path or name of the agent helper binary"
    )
    gateway_port: int = Field(
        default=8080, ge=1, le=65535, description="Loopback port for the agent gateway"
    )
    agent_auto_start: bool = Field(
        default=True, description="Start the agent helper when the client starts"
    )
    pairing_timeout: float = Field(
        default=5.0,
        ge=5.0,
        le=10.0,
        description="Seconds to wait for the pairing code on helper stdout",
    )
    gateway_settle_time: float = Field(
        default=0.5,
        ge=0,
        le=10,
        description="Seconds to wait after spawn before probing /health",
    )
    agent_command_timeout: float = Field(
        default=15.0, ge=1, le=120, description="Agent command round-trip bound"
    )

    # Web API
    api_timeout: float = Field(
        default=20.0, ge=1, le=300, description="Per-request timeout in seconds"
    )
    connect_timeout: float = Field(
        default=5.0, ge=0.5, le=60, description="Connect timeout in seconds"
    )
    max_retries: int = Field(
        default=3, ge=0, le=10, description="Retries after the first attempt"
    )
    retry_base_delay: float = Field(
        default=1.0, ge=0, le=30, description="Base delay for exponential backoff"
    )
    retry_max_delay: float = Field(
        default=30.0, ge=1, le=300, description="Backoff cap in seconds"
    )
    rate_limit_fallback: int = Field(
        default=60,
        ge=1,
        le=600,
        description="Wait used when a rate limit carries no retry hint",
    )
    directory_ttl: float = Field(
        default=600.0, ge=1, le=86_400, description="User directory cache TTL"
    )
    history_limit: int = Field(
        default=50, ge=1, le=1000, description="Messages fetched on channel select"
    )

    # Socket mode
    socket_idle_timeout: float = Field(
        default=60.0, ge=1, le=600, description="Receive idle timeout (keep-alive)"
    )
    reconnect_initial_delay: float = Field(
        default=1.0, ge=0.1, le=60, description="First reconnect backoff"
    )
    reconnect_max_delay: float = Field(
        default=30.0, ge=1, le=600, description="Reconnect backoff cap"
    )

    # Paths
    data_dir: Path = Field(
        default=Path("."), description="Directory for the encrypted session and logs"
    )
    log_file: Path | None = Field(default=None, description="Optional log file")
    config_file: Path | None = Field(
        default=None, description="JSON config file path"
    )

    model_config = {"arbitrary_types_allowed": True}

    @property
    def oauth_redirect_uri(self) -> str:
        return f"http://localhost:{self.oauth_redirect_port}"

    @model_validator(mode="after")
    def resolve_defaults(self) -> SlackZcConfig:
        """Resolve paths and apply env var overrides.

        Environment variables (checked only while the field is at its default):
            SLACKZC_DATA_DIR          → data_dir
            SLACKZC_CLIENT_ID         → slack_client_id
            SLACKZC_CLIENT_SECRET     → slack_client_secret
            SLACKZC_AGENT_BINARY      → agent_binary
            SLACKZC_GATEWAY_PORT      → gateway_port
            SLACKZC_PAIRING_TIMEOUT   → pairing_timeout
            SLACKZC_MAX_RETRIES       → max_retries
            SLACKZC_DIRECTORY_TTL     → directory_ttl
        """
        # Paths
        if self.data_dir == Path("."):
            env_dir = os.environ.get("SLACKZC_DATA_DIR", "")
            if env_dir:
                object.__setattr__(self, "data_dir", Path(env_dir))
            else:
                object.__setattr__(self, "data_dir", _default_data_dir())

        # Credentials: explicit value → env var
        if not self.slack_client_id:
            env_id = os.environ.get("SLACKZC_CLIENT_ID", "")
            if env_id:
                object.__setattr__(self, "slack_client_id", env_id)
        if not self.slack_client_secret:
            env_secret = os.environ.get("SLACKZC_CLIENT_SECRET", "")
            if env_secret:
                object.__setattr__(self, "slack_client_secret", env_secret)

        env_binary = os.environ.get("SLACKZC_AGENT_BINARY")
        if env_binary and self.agent_binary == "zeroclaw":
            object.__setattr__(self, "agent_binary", env_binary)

        if self.gateway_port == 8080:  # still at default
            port = _env_number("SLACKZC_GATEWAY_PORT", int, 1, 65535)
            if port is not None:
                object.__setattr__(self, "gateway_port", port)

        if self.pairing_timeout == 5.0:  # still at default
            pairing = _env_number("SLACKZC_PAIRING_TIMEOUT", float, 5.0, 10.0)
            if pairing is not None:
                object.__setattr__(self, "pairing_timeout", pairing)

        if self.max_retries == 3:  # still at default
            retries = _env_number("SLACKZC_MAX_RETRIES", int, 0, 10)
            if retries is not None:
                object.__setattr__(self, "max_retries", retries)

        if self.directory_ttl == 600.0:  # still at default
            ttl = _env_number("SLACKZC_DIRECTORY_TTL", float, 1, 86_400)
            if ttl is not None:
                object.__setattr__(self, "directory_ttl", ttl)

        return self


def _env_number(
    name: str, cast: type[int] | type[float], low: float, high: float
) -> int | float | None:
    """Parse a numeric env override; ``None`` unless it is set and within bounds."""
    raw = os.environ.get(name)
    if raw is None:
        return None
    try:
        value = cast(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
        return None
    if not low <= value <= high:
        logger.warning("Ignoring %s=%s outside [%s, %s]", name, raw, low, high)
        return None
    return value


def _default_data_dir() -> Path:
    """Return ``$XDG_DATA_HOME/slack-zc`` (``~/.local/share/slack-zc``)."""
    base = os.environ.get("XDG_DATA_HOME", "")
    root = Path(base) if base else Path.home() / ".local" / "share"
    return root / "slack-zc"


def load_config_file(path: Path | None) -> dict[str, Any]:
    """Load a JSON config file and return its contents as a dict.

    Returns an empty dict if the file is missing, unreadable, or invalid.
    """
    if path is None:
        return {}
    try:
        data = json.loads(path.read_text())
        if not isinstance(data, dict):
            return {}
        return data
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        return {}


def build_config(
    config_file: Path | None = None, **overrides: Any
) -> SlackZcConfig:
    """Merge the JSON config file with explicit *overrides* (which win)."""
    values = load_config_file(config_file)
    values.update({k: v for k, v in overrides.items() if v is not None})
    if config_file is not None:
        values["config_file"] = config_file
    return SlackZcConfig(**values)
