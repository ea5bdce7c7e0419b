"""Shared fixtures for slack-zc tests."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

# Ensure the project root is importable when pytest runs from elsewhere
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
sys.path.insert(0, str(Path(__file__).resolve().parent))

from config import SlackZcConfig  # noqa: E402
from helpers import ConfigFactory  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer SLACKZC_* settings out of the tests."""
    for key in list(os.environ):
        if key.startswith("SLACKZC_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def config(tmp_path: Path) -> SlackZcConfig:
    return ConfigFactory.create(data_dir=tmp_path / "data")
