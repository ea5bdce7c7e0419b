"""Tests for config.py."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from config import SlackZcConfig, build_config, load_config_file

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


class TestDefaults:
    def test_defaults(self, tmp_path: Path) -> None:
        cfg = SlackZcConfig(data_dir=tmp_path)
        assert cfg.gateway_port == 8080
        assert cfg.pairing_timeout == 5.0
        assert cfg.max_retries == 3
        assert cfg.directory_ttl == 600.0
        assert cfg.history_limit == 50
        assert cfg.rate_limit_fallback == 60

    def test_oauth_redirect_uri(self, tmp_path: Path) -> None:
        cfg = SlackZcConfig(data_dir=tmp_path)
        assert cfg.oauth_redirect_uri == "http://localhost:3000"

    def test_default_data_dir_uses_xdg(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))
        assert SlackZcConfig().data_dir == tmp_path / "slack-zc"

    @pytest.mark.parametrize("value", [4.9, 10.1])
    def test_pairing_timeout_bounds(self, tmp_path: Path, value: float) -> None:
        with pytest.raises(ValidationError):
            SlackZcConfig(data_dir=tmp_path, pairing_timeout=value)


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------


class TestEnvOverrides:
    def test_data_dir_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SLACKZC_DATA_DIR", str(tmp_path / "env"))
        assert SlackZcConfig().data_dir == tmp_path / "env"

    def test_explicit_value_wins_over_env(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("SLACKZC_GATEWAY_PORT", "9999")
        monkeypatch.setenv("SLACKZC_CLIENT_ID", "env-id")
        cfg = SlackZcConfig(data_dir=tmp_path, gateway_port=7000, slack_client_id="cli-id")
        assert cfg.gateway_port == 7000
        assert cfg.slack_client_id == "cli-id"

    def test_env_applies_at_default(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("SLACKZC_GATEWAY_PORT", "9999")
        monkeypatch.setenv("SLACKZC_CLIENT_SECRET", "s3cret")
        monkeypatch.setenv("SLACKZC_AGENT_BINARY", "/opt/zc")
        monkeypatch.setenv("SLACKZC_MAX_RETRIES", "5")
        monkeypatch.setenv("SLACKZC_DIRECTORY_TTL", "30")
        cfg = SlackZcConfig(data_dir=tmp_path)
        assert cfg.gateway_port == 9999
        assert cfg.slack_client_secret == "s3cret"
        assert cfg.agent_binary == "/opt/zc"
        assert cfg.max_retries == 5
        assert cfg.directory_ttl == 30.0

    def test_invalid_env_ignored(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SLACKZC_GATEWAY_PORT", "not-a-port")
        assert SlackZcConfig(data_dir=tmp_path).gateway_port == 8080

    @pytest.mark.parametrize(("raw", "expected"), [("7.5", 7.5), ("30", 5.0), ("x", 5.0)])
    def test_pairing_timeout_env_range(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, raw: str, expected: float
    ) -> None:
        monkeypatch.setenv("SLACKZC_PAIRING_TIMEOUT", raw)
        assert SlackZcConfig(data_dir=tmp_path).pairing_timeout == expected

    @pytest.mark.parametrize(
        ("name", "raw"),
        [
            ("SLACKZC_MAX_RETRIES", "-1"),
            ("SLACKZC_MAX_RETRIES", "50"),
            ("SLACKZC_DIRECTORY_TTL", "0"),
            ("SLACKZC_DIRECTORY_TTL", "-5"),
            ("SLACKZC_GATEWAY_PORT", "70000"),
        ],
    )
    def test_out_of_range_env_ignored(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, name: str, raw: str
    ) -> None:
        monkeypatch.setenv(name, raw)
        cfg = SlackZcConfig(data_dir=tmp_path)
        assert cfg.max_retries == 3
        assert cfg.directory_ttl == 600.0
        assert cfg.gateway_port == 8080

    def test_env_bounds_inclusive(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SLACKZC_MAX_RETRIES", "0")
        monkeypatch.setenv("SLACKZC_DIRECTORY_TTL", "86400")
        cfg = SlackZcConfig(data_dir=tmp_path)
        assert cfg.max_retries == 0
        assert cfg.directory_ttl == 86_400.0


# ---------------------------------------------------------------------------
# Config file
# ---------------------------------------------------------------------------


class TestConfigFile:
    def test_load_missing_returns_empty(self, tmp_path: Path) -> None:
        assert load_config_file(tmp_path / "nope.json") == {}
        assert load_config_file(None) == {}

    def test_load_invalid_returns_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "cfg.json"
        path.write_text("[1, 2]")
        assert load_config_file(path) == {}

    def test_build_config_overrides_win(self, tmp_path: Path) -> None:
        path = tmp_path / "cfg.json"
        path.write_text(json.dumps({"gateway_port": 9000, "history_limit": 20}))
        cfg = build_config(path, data_dir=tmp_path, history_limit=None, gateway_port=9100)
        assert cfg.gateway_port == 9100
        assert cfg.history_limit == 20
        assert cfg.config_file == path
