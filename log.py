"""Structured JSON logging for slack-zc.

Every handler installed here carries a :class:`RedactingFilter`, so
tokens never reach the console or the log file even when a caller
formats one into a message by mistake.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TextIO

from errors import redact_sensitive

LOGGER_NAME = "slackzc"
EXTRA_KEYS = ("workspace", "channel", "command", "attempt")
PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5


class RedactingFilter(logging.Filter):
    """Render the message once, scrub credentials, and drop the args."""

    def filter(self, record: logging.LogRecord) -> bool:
        rendered = record.getMessage()
        cleaned = redact_sensitive(rendered)
        if cleaned != rendered or record.args:
            record.msg = cleaned
            record.args = None
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with the ``extra=`` context keys merged in."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "ts": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "msg": record.getMessage(),
            "logger": record.name,
        }
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = redact_sensitive(self.formatException(record.exc_info))
        entry.update(
            (key, value)
            for key in EXTRA_KEYS
            if (value := getattr(record, key, None)) is not None
        )
        return json.dumps(entry, default=str)


def _attach(
    logger: logging.Logger,
    handler: logging.Handler,
    level: int,
    formatter: logging.Formatter,
) -> None:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(RedactingFilter())
    logger.addHandler(handler)


def setup_logging(
    *,
    level: int = logging.INFO,
    json_output: bool = True,
    log_file: str | Path | None = None,
    stream: TextIO | None = None,
) -> logging.Logger:
    """Configure and return the ``slackzc`` logger.

    Parameters
    ----------
    level:
        Threshold for the logger and all of its handlers.
    json_output:
        JSON lines on the console when *True*, plain text otherwise.
    log_file:
        Optional rotating log file (10 MB, 5 backups).  The file is
        always written as JSON lines.
    stream:
        Console stream, ``sys.stderr`` by default so logs stay out of
        command output.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()
    logger.filters.clear()
    logger.addFilter(RedactingFilter())

    console_format: logging.Formatter = (
        JSONFormatter() if json_output else logging.Formatter(PLAIN_FORMAT)
    )
    _attach(logger, logging.StreamHandler(stream or sys.stderr), level, console_format)

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            path, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS
        )
        _attach(logger, handler, level, JSONFormatter())

    return logger
