"""Retry and concurrency limiting for remote API calls.

Every call to GitHub (and every branch push made on behalf of sync) goes
through a RetryRunner. The runner admits at most `concurrency` calls at a
time through an asyncio.Semaphore, whose waiters are woken in FIFO order, so
fan-out with asyncio.gather never exceeds the host's limits. Admitted calls
are retried on transient failures with exponential backoff and jitter; an
explicit "retry after N" hint in a rate-limit failure replaces the backoff.
"""

import asyncio
import logging
import math
import random
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ..config.models import ToolConfig

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Wait used when the host says we are rate limited without saying for how long
DEFAULT_RATE_LIMIT_WAIT = 60

RETRYABLE_PATTERNS = [
    "rate limit",
    "secondary rate limit",
    "api rate limit exceeded",
    "timeout",
    "timed out",
    "etimedout",
    "econnreset",
    "econnrefused",
    "connection reset",
    "connectionreset",
    "connection refused",
    "connectionrefused",
    "connection aborted",
    "remote end closed connection",
    "socket hang up",
    "502",
    "503",
    "504",
]

retry_after_regex = re.compile(r'retry\s*after\s*(\d+)', re.IGNORECASE)


class RateLimitError(Exception):
    """Rate limited and all retries exhausted."""
    def __init__(self, retry_after_seconds: Optional[int] = None, message: Optional[str] = None):
        super().__init__(message or "GitHub API rate limit exceeded")
        self.retry_after_seconds = retry_after_seconds


@dataclass(frozen=True)
class RetryOptions:
    """Retry policy; waits are in seconds."""
    max_attempts: int = 3
    base_wait: float = 1.0
    max_wait: float = 30.0
    jitter: float = 0.2
    concurrency: int = 5

    @classmethod
    def from_config(cls, tool: ToolConfig) -> 'RetryOptions':
        return cls(max_attempts=max(1, tool.max_attempts), base_wait=tool.base_wait,
                   max_wait=tool.max_wait, jitter=tool.jitter,
                   concurrency=max(1, tool.concurrency))


def calculate_backoff(attempt: int, base_wait: float, max_wait: float, jitter: float) -> float:
    """Exponential backoff with jitter: min(max_wait, base * 2^attempt * (1 + random * jitter))."""
    exponential_wait = base_wait * math.pow(2, attempt)
    with_jitter = exponential_wait * (1 + random.random() * jitter)
    return min(with_jitter, max_wait)


def parse_rate_limit_error(text: str) -> Optional[int]:
    """Seconds to wait if `text` describes a rate limit, None otherwise."""
    lower = text.lower()
    if "rate limit" not in lower:
        return None
    match = retry_after_regex.search(text)
    if match:
        return int(match.group(1))
    return DEFAULT_RATE_LIMIT_WAIT


def is_retryable_error(text: str) -> bool:
    """Check if a failure description looks transient."""
    lower = text.lower()
    return any(pattern in lower for pattern in RETRYABLE_PATTERNS)


def describe_failure(error: BaseException) -> str:
    """Text the failure classifiers look at: exception type plus message.

    A Retry-After response header (PyGithub exceptions carry `headers`) is
    appended so parse_rate_limit_error can honour it.
    """
    text = f"{type(error).__name__}: {error}"
    headers = getattr(error, "headers", None)
    if isinstance(headers, dict):
        retry_after = {k.lower(): v for k, v in headers.items()}.get("retry-after")
        if retry_after and str(retry_after).isdigit():
            text += f" (retry after {retry_after})"
    return text


def format_rate_limit_message(wait_seconds: float) -> str:
    """Format a user-friendly message for rate limit waits."""
    seconds = math.ceil(wait_seconds)
    if seconds < 60:
        return f"Rate limited. Waiting {seconds}s..."
    return f"Rate limited. Waiting {math.ceil(seconds / 60)}m..."


def format_retry_message(attempt: int, max_attempts: int, wait_seconds: float) -> str:
    """Format a user-friendly message for retry waits."""
    return f"Retry {attempt}/{max_attempts - 1} in {round(wait_seconds)}s..."


class RetryRunner:
    """Runs remote calls with bounded concurrency and retries."""

    def __init__(self, options: Optional[RetryOptions] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.options = options or RetryOptions()
        self.semaphore = asyncio.Semaphore(self.options.concurrency)
        self._sleep = sleep

    async def run(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Await func(*args, **kwargs) under the semaphore, retrying transient failures.

        func is called afresh on every attempt.

        Raises:
            RateLimitError: still rate limited after the last attempt
            Exception: the original failure if it is not retryable, or the
                last one once the attempts are used up
        """
        async with self.semaphore:
            return await self._run_with_retry(func, *args, **kwargs)

    async def run_blocking(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Like run, for a blocking callable executed in a worker thread."""
        return await self.run(asyncio.to_thread, func, *args, **kwargs)

    async def _run_with_retry(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        opts = self.options
        attempt = 0
        while True:
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                text = describe_failure(e)
                last_attempt = attempt >= opts.max_attempts - 1

                rate_limit_seconds = parse_rate_limit_error(text)
                if rate_limit_seconds is not None:
                    if last_attempt:
                        raise RateLimitError(rate_limit_seconds) from e
                    wait = min(float(rate_limit_seconds), opts.max_wait)
                    logger.warning(format_rate_limit_message(wait))
                elif not is_retryable_error(text):
                    raise
                elif last_attempt:
                    raise
                else:
                    wait = calculate_backoff(attempt, opts.base_wait, opts.max_wait, opts.jitter)
                    logger.warning(f"{format_retry_message(attempt + 1, opts.max_attempts, wait)} ({text.strip()})")

                attempt += 1
                await self._sleep(wait)
