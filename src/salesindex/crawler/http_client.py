"""
JSON-over-HTTP client for the marketplace API with classified, bounded retries.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable, Optional

import aiohttp
import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt

from salesindex.config import CrawlerConfig
from salesindex.observability import increment
from salesindex.protocols import (
    ClientError,
    HttpError,
    NetworkError,
    PayloadError,
    RateLimitError,
    ServerError,
)

logger = structlog.get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[Any]]

RETRYABLE_ERRORS = (RateLimitError, ServerError, NetworkError)

# Seconds
RATE_LIMIT_BACKOFF_BASE = 5.0
RATE_LIMIT_BACKOFF_CAP = 30.0
SERVER_BACKOFF_BASE = 2.0
SERVER_BACKOFF_CAP = 10.0


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Return the Retry-After header as seconds when it is a non-negative number."""
    if value is None:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def backoff_seconds(error: BaseException, attempt: int) -> float:
    """
    Delay before the next attempt after ``error`` on the 0-based ``attempt``.

    Rate limits honour ``Retry-After`` when the server sent one, otherwise they
    back off from 5s doubling up to 30s. Server and network errors back off from
    2s doubling up to 10s.
    """
    if isinstance(error, RateLimitError):
        if error.retry_after is not None:
            return error.retry_after
        return min(RATE_LIMIT_BACKOFF_BASE * 2**attempt, RATE_LIMIT_BACKOFF_CAP)
    return min(SERVER_BACKOFF_BASE * 2**attempt, SERVER_BACKOFF_CAP)


def _retry_reason(error: Optional[BaseException]) -> str:
    if isinstance(error, RateLimitError):
        return "rate_limit"
    if isinstance(error, ServerError):
        return "server_error"
    return "network_error"


class HttpClient:
    """Sequential JSON client. Only one request is ever in flight."""

    def __init__(self, config: CrawlerConfig, sleep: Optional[SleepFunc] = None):
        self.config = config
        self._sleep: SleepFunc = sleep or asyncio.sleep
        self.session: Optional[aiohttp.ClientSession] = None

    async def initialize(self) -> None:
        """Initialize the HTTP client session."""
        if self.session is None:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout)
            self.session = aiohttp.ClientSession(
                timeout=timeout,
                headers={"User-Agent": self.config.user_agent, "Accept": "application/json"},
            )
            logger.debug("HTTP client session initialized", timeout=self.config.timeout)

    async def close(self) -> None:
        """Close the HTTP client session."""
        if self.session:
            await self.session.close()
            self.session = None
            logger.debug("HTTP client closed")

    async def __aenter__(self) -> "HttpClient":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _get_json(self, url: str, attempt: int) -> Any:
        if self.session is None:
            await self.initialize()
        assert self.session is not None

        try:
            async with self.session.get(url) as response:
                status = response.status
                if status == 429:
                    raise RateLimitError(
                        url=url,
                        attempts=attempt,
                        retry_after=parse_retry_after(response.headers.get("Retry-After")),
                    )
                if 500 <= status < 600:
                    raise ServerError(status, url=url, attempts=attempt)
                if 400 <= status < 500:
                    raise ClientError(status, url=url, attempts=attempt)
                if not 200 <= status < 300:
                    raise HttpError(status, url=url, attempts=attempt)
                body = await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(f"{type(e).__name__}: {e}", url=url, attempts=attempt) from e

        # json.loads detects UTF-8/16/32 from bytes; UnicodeDecodeError is a ValueError
        try:
            return json.loads(body)
        except ValueError as e:
            raise PayloadError(f"Invalid JSON body: {e}", url=url, attempts=attempt) from e

    def _wait(self, retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        if error is None:
            return 0.0
        return backoff_seconds(error, retry_state.attempt_number - 1)

    def _before_sleep(self, max_retries: int) -> Callable[[RetryCallState], None]:
        def log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            increment("fetch_retries", labels={"reason": _retry_reason(error)})
            logger.warning(
                "Request failed, retrying",
                url=getattr(error, "url", None),
                error=str(error),
                attempt=retry_state.attempt_number,
                max_attempts=max_retries,
                delay_ms=int(delay * 1000),
            )

        return log_retry

    async def fetch_json(self, url: str, max_retries: Optional[int] = None) -> Any:
        """
        GET ``url`` and decode its JSON body.

        Retries rate limits, server errors and transport failures up to
        ``max_retries`` total attempts. Client errors and undecodable bodies are
        raised immediately. On exhaustion the last classified error is raised.

        Raises:
            RateLimitError, ServerError, ClientError, HttpError, NetworkError, PayloadError
        """
        attempts = max_retries or self.config.max_retries
        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=self._wait,
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before_sleep=self._before_sleep(attempts),
            sleep=self._sleep,
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                payload = await self._get_json(url, attempt.retry_state.attempt_number)
        return payload
