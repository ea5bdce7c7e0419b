"""Backoff decisions and the async retry wrapper used for every API call."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import NamedTuple, TypeVar

from errors import ApiError, parse_retry_after

logger = logging.getLogger("slackzc.retry")

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 30.0
DEFAULT_RATE_LIMIT_DELAY = 60.0
MAX_JITTER = 0.5

_RATE_LIMIT_PATTERNS = ("429", "rate_limit", "ratelimited", "rate limit")
_TRANSIENT_PATTERNS = ("connection", "connect", "timeout", "timed out", "reset")


class RetryDecision(NamedTuple):
    """Outcome of :func:`decide_retry`: retry after *delay* seconds, or fail."""

    retry: bool
    delay: float = 0.0

    @classmethod
    def after(cls, delay: float) -> RetryDecision:
        return cls(True, delay)


FAIL = RetryDecision(False)


def is_rate_limited(text: str) -> bool:
    """Check if *text* carries a rate-limit marker."""
    lower = text.lower()
    return any(p in lower for p in _RATE_LIMIT_PATTERNS)


def is_transient(text: str) -> bool:
    """Check if *text* looks like a transient network failure."""
    lower = text.lower()
    return any(p in lower for p in _TRANSIENT_PATTERNS)


def backoff_delay(
    attempt: int,
    *,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
) -> float:
    """Exponential delay for *attempt* (0-based), capped, plus 0-500 ms jitter."""
    # Clamp the exponent so huge attempt numbers cannot overflow a float
    exp = min(attempt, 32)
    delay = min(base_delay * (2**exp), max_delay)
    return delay + random.uniform(0, MAX_JITTER)  # noqa: S311


def decide_retry(
    error_text: str,
    attempt: int,
    *,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    rate_limit_delay: float = DEFAULT_RATE_LIMIT_DELAY,
) -> RetryDecision:
    """Decide whether a failure described by *error_text* should be retried.

    Rate limits wait exactly the server's ``retry_after`` hint (or
    *rate_limit_delay* without one).  Transient network failures back off
    exponentially.  Anything else fails immediately.
    """
    if is_rate_limited(error_text):
        hint = parse_retry_after(error_text)
        return RetryDecision.after(float(hint) if hint is not None else rate_limit_delay)
    if is_transient(error_text):
        return RetryDecision.after(
            backoff_delay(attempt, base_delay=base_delay, max_delay=max_delay)
        )
    return FAIL


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    context: str = "",
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    rate_limit_delay: float = DEFAULT_RATE_LIMIT_DELAY,
) -> T:
    """Await ``fn()`` with up to *max_retries* retries on retryable failures.

    Typed :class:`~errors.ApiError` instances that are not retryable are
    raised on the first failure.  The last error is re-raised once the
    retry cap is exceeded.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as exc:
            if isinstance(exc, ApiError) and not exc.retryable:
                raise
            error_msg = str(exc)
            decision = decide_retry(
                error_msg,
                attempt,
                base_delay=base_delay,
                max_delay=max_delay,
                rate_limit_delay=rate_limit_delay,
            )
            if not decision.retry or attempt >= max_retries:
                raise
            logger.warning(
                "%s: retryable error (attempt %d/%d), retrying in %.1fs: %s",
                context or "request",
                attempt + 1,
                max_retries,
                decision.delay,
                error_msg[:200],
                extra={"attempt": attempt + 1},
            )
            await asyncio.sleep(decision.delay)
            attempt += 1
