#!/usr/bin/env python3
"""
Retry/Backoff Executor

Wraps a single network call with retry semantics shared by the network
tools (fetch today, anything HTTP-shaped later).

Rules:
- Any 4xx response is retried while budget remains.
- 429 additionally turns on "slow mode": from then on every attempt is
  preceded by an extra fixed delay. Slow mode never turns off again for the
  life of the executor.
- A 429 with a `retry-after` header waits exactly that long (seconds or an
  HTTP date); otherwise exponential backoff with +/-20% jitter, capped at 30s.
- Exceptions raised by the call itself (connection refused, timeouts, DNS)
  consume the same retry budget as 4xx responses.
- When the budget is exhausted, RetryExhaustedError is raised naming the
  last status or network error.

Usage:
    from tools.retry import RetryExecutor, HttpResponse

    executor = RetryExecutor(max_retries=3, base_delay=1.0)
    outcome = await executor.run(send_once)
    print(outcome.response.status, outcome.retries, outcome.slow_mode_enabled)
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp

from agent.errors import RetryExhaustedError

logger = logging.getLogger(__name__)

MAX_BACKOFF = 30.0
SLOW_MODE_DELAY = 2.0
JITTER = 0.2

# Failures with no response at all; they share the 4xx retry budget.
NETWORK_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)


@dataclass
class HttpResponse:
    """Transport-neutral view of one HTTP response."""
    status: int
    reason: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None


@dataclass
class RetryOutcome:
    response: HttpResponse
    retries: int
    slow_mode_enabled: bool


def calculate_backoff(attempt: int, base_delay: float) -> float:
    """Exponential backoff with +/-20% jitter, in seconds, capped at 30s."""
    exp_backoff = base_delay * (2 ** attempt)
    jitter = exp_backoff * JITTER * (random.random() * 2 - 1)
    return min(exp_backoff + jitter, MAX_BACKOFF)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """
    Parse a retry-after header into seconds.

    Accepts either a number of seconds or an HTTP date. Returns None when the
    header is missing or unparsable; dates in the past yield 0.
    """
    if not value:
        return None
    value = value.strip()
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    return max(when.timestamp() - time.time(), 0.0)


def _header(headers: Dict[str, str], name: str) -> Optional[str]:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


class RetryExecutor:
    """Runs one network call under the shared retry/backoff policy."""

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        slow_mode: bool = False,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        log: Optional[logging.Logger] = None,
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.slow_mode_enabled = slow_mode
        self.retries = 0
        self._sleep = sleep
        self._log = log or logger

    async def run(self, send: Callable[[], Awaitable[HttpResponse]]) -> RetryOutcome:
        """
        Call `send` until it yields a non-4xx response or the budget runs out.

        Args:
            send: Zero-argument coroutine function performing exactly one attempt

        Returns:
            RetryOutcome with the final response, the retries used and the
            slow mode flag

        Raises:
            RetryExhaustedError: every allowed attempt failed
        """
        while True:
            if self.slow_mode_enabled and self.retries > 0:
                self._log.debug("Slow mode enabled, waiting %.1fs before request", SLOW_MODE_DELAY)
                await self._sleep(SLOW_MODE_DELAY)

            try:
                response = await send()
            except NETWORK_ERRORS as e:
                self._log.error("Request failed: %s", e)
                self._check_budget(f"{type(e).__name__}: {e}", None)
                await self._backoff(self.base_delay, "Network error")
                continue

            if not 400 <= response.status < 500:
                return RetryOutcome(response, self.retries, self.slow_mode_enabled)

            label = f"HTTP {response.status}"
            if response.reason:
                label += f" ({response.reason})"
            self._check_budget(label, response.status)

            if response.status == 429:
                self.slow_mode_enabled = True
                retry_after = parse_retry_after(_header(response.headers, "retry-after"))
                self.retries += 1
                delay = retry_after if retry_after is not None else calculate_backoff(self.retries, self.base_delay)
                self._log.warning(
                    "429 Rate Limit Exceeded. Enabling slow mode and retrying in %.1fs (%d/%d)",
                    delay, self.retries, self.max_retries,
                )
                await self._sleep(delay)
                continue

            await self._backoff(self.base_delay, f"{response.status} Error")

    def _check_budget(self, label: str, status: Optional[int]):
        if self.retries >= self.max_retries:
            raise RetryExhaustedError(
                f"Failed after {self.max_retries} retries: {label}",
                status=status,
                retries=self.retries,
            )

    async def _backoff(self, base_delay: float, reason: str):
        self.retries += 1
        delay = calculate_backoff(self.retries, base_delay)
        self._log.warning(
            "%s. Retrying in %.1fs (%d/%d)", reason, delay, self.retries, self.max_retries
        )
        await self._sleep(delay)
