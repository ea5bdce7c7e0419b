"""Error taxonomy, classification and redaction for slack-zc."""

from __future__ import annotations

import re

import aiohttp
import httpx
from slack_sdk.errors import SlackApiError

RATE_LIMIT_FALLBACK_SECONDS = 60

_TOKEN_RE = re.compile(r"\b(xox[abpors]|xapp)-[A-Za-z0-9-]+")
_BEARER_RE = re.compile(r"\b(Bearer)\s+[^\s\"',;]+", re.IGNORECASE)
_RETRY_AFTER_RE = re.compile(r"retry_after[:=]\s*(\d+)", re.IGNORECASE)


def redact_sensitive(text: str) -> str:
    """Replace Slack tokens and bearer credentials in *text* with ``[REDACTED]``."""
    text = _TOKEN_RE.sub(r"\1-[REDACTED]", text)
    return _BEARER_RE.sub(r"\1 [REDACTED]", text)


def parse_retry_after(text: str) -> int | None:
    """Extract ``N`` from a ``retry_after:N`` hint, or ``None``."""
    match = _RETRY_AFTER_RE.search(text)
    return int(match.group(1)) if match else None


class ApiError(Exception):
    """Base class for failures talking to the chat API."""

    retryable = False
    summary = "Server error. Please try again later."

    def user_message(self) -> str:
        """Short, user-facing description of this kind of failure."""
        return self.summary


class AuthError(ApiError):
    """Raised when a token is missing, revoked or rejected."""

    summary = "Authentication failed. Please re-authenticate."

    def __str__(self) -> str:
        return f"Authentication failed: {super().__str__()}"


class RateLimitedError(ApiError):
    """Raised when the remote asks the caller to slow down.

    Attributes
    ----------
    retry_after:
        Seconds to wait before the next attempt, or ``None`` when the
        server gave no hint.
    """

    retryable = True
    summary = "Rate limited. Please slow down."

    def __init__(self, message: str = "", *, retry_after: int | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after

    def __str__(self) -> str:
        detail = super().__str__()
        base = "rate_limited"
        if self.retry_after is not None and parse_retry_after(detail) is None:
            base = f"rate_limited retry_after:{self.retry_after}"
        return f"{base} {detail}".rstrip()


class NetworkError(ApiError):
    """Raised on connection-level failures (reset, refused, DNS)."""

    retryable = True
    summary = "Network error. Check your connection."

    def __str__(self) -> str:
        return f"Network error: connection failure: {super().__str__()}"


class ValidationError(ApiError):
    """Raised when the remote rejects the request arguments."""

    summary = "Invalid input. Please check your message."

    def __str__(self) -> str:
        return f"Validation error: {super().__str__()}"


class ApiCallError(ApiError):
    """Raised for application-level failures that fit no other kind."""

    def __str__(self) -> str:
        return f"API error: {super().__str__()}"


class ApiTimeoutError(ApiError):
    """Raised when a request exceeds its deadline."""

    retryable = True
    summary = "Request timed out. Please try again."

    def __str__(self) -> str:
        return f"Timeout: {super().__str__()}"


class SessionError(RuntimeError):
    """Raised when the persisted session or its key cannot be used."""


def _parse_header_seconds(raw: object) -> int | None:
    if raw is None:
        return None
    try:
        return int(float(str(raw)))
    except ValueError:
        return None


def _from_slack_error(exc: SlackApiError) -> ApiError:
    response = exc.response
    status = getattr(response, "status_code", None)
    code = ""
    retry_after: int | None = None
    if response is not None:
        code = str(response.get("error", "") or "")
        headers = getattr(response, "headers", None) or {}
        retry_after = _parse_header_seconds(
            headers.get("Retry-After") or headers.get("retry-after")
        )
    if status == 429 or code in ("ratelimited", "rate_limited"):
        return RateLimitedError(
            code or "429",
            retry_after=retry_after if retry_after is not None else RATE_LIMIT_FALLBACK_SECONDS,
        )
    return classify_text(code or str(exc))


def classify_text(message: str) -> ApiError:
    """Map a raw error string onto the taxonomy by substring matching."""
    lower = message.lower()
    if "429" in lower or "rate_limit" in lower or "ratelimited" in lower:
        hint = parse_retry_after(message)
        return RateLimitedError(
            message, retry_after=hint if hint is not None else RATE_LIMIT_FALLBACK_SECONDS
        )
    if "not_authed" in lower or "invalid_auth" in lower or "token" in lower:
        return AuthError(message)
    if "timeout" in lower or "timed out" in lower:
        return ApiTimeoutError(message)
    if "validation" in lower or "invalid" in lower:
        return ValidationError(message)
    return ApiCallError(message)


def classify_error(exc: BaseException) -> ApiError:
    """Convert any exception raised by a remote call into an :class:`ApiError`.

    Transport-level information (HTTP status, error code, exception type)
    takes precedence over text matching.
    """
    if isinstance(exc, ApiError):
        return exc
    if isinstance(exc, SlackApiError):
        return _from_slack_error(exc)
    if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code == 429:
        hint = _parse_header_seconds(exc.response.headers.get("Retry-After"))
        return RateLimitedError(
            "429", retry_after=hint if hint is not None else RATE_LIMIT_FALLBACK_SECONDS
        )
    if isinstance(exc, TimeoutError | httpx.TimeoutException | aiohttp.ServerTimeoutError):
        return ApiTimeoutError(str(exc) or exc.__class__.__name__)
    if isinstance(exc, aiohttp.ClientConnectionError | httpx.TransportError | ConnectionError):
        return NetworkError(str(exc) or exc.__class__.__name__)
    return classify_text(str(exc))


def user_message(exc: BaseException) -> str:
    """Return the actionable one-liner for *exc*."""
    return classify_error(exc).user_message()
