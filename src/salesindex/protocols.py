"""
Core contracts shared across the sales indexer.

This module holds the enums, the crawl entity and the exception taxonomy that
the crawler, recovery and pipeline layers agree on. It has no dependencies on
the rest of the package so that every layer can import it freely.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

# ============================================================================
# Enums and Constants
# ============================================================================


class CrawlState(Enum):
    """Lifecycle states of a crawl run."""

    IDLE = "idle"
    RUNNING = "running"
    CHECKPOINTING = "checkpointing"
    COMPLETED = "completed"
    INTERRUPTED = "interrupted"


class RunMode(Enum):
    """How a run treats an existing checkpoint."""

    AUTO = "auto"
    FRESH = "fresh"
    RESUME = "resume"


class ErrorType(str, Enum):
    """Classification of a failed entity fetch."""

    RATE_LIMIT = "RATE_LIMIT"
    SERVER_ERROR = "SERVER_ERROR"
    CLIENT_ERROR = "CLIENT_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    UNKNOWN = "UNKNOWN"


# ============================================================================
# Crawl Entities
# ============================================================================


@dataclass(frozen=True)
class Entity:
    """One collection item to crawl: the local id and the marketplace launcher id."""

    internal_id: str
    launcher: str


# ============================================================================
# Exceptions
# ============================================================================


class FetchError(Exception):
    """Base class for failures while fetching an entity from the marketplace API."""

    def __init__(self, message: str, url: Optional[str] = None, attempts: int = 1) -> None:
        super().__init__(message)
        self.url = url
        self.attempts = attempts


class HttpError(FetchError):
    """Raised when the API answers with a non-2xx status."""

    def __init__(self, status: int, url: Optional[str] = None, attempts: int = 1, message: Optional[str] = None) -> None:
        super().__init__(message or f"HTTP {status}", url=url, attempts=attempts)
        self.status = status


class RateLimitError(HttpError):
    """HTTP 429. Recoverable, drives the adaptive rate limiter."""

    def __init__(
        self,
        url: Optional[str] = None,
        attempts: int = 1,
        retry_after: Optional[float] = None,
    ) -> None:
        super().__init__(429, url=url, attempts=attempts, message="HTTP 429: rate limited")
        self.retry_after = retry_after


class ServerError(HttpError):
    """HTTP 5xx. Recoverable via retry."""


class ClientError(HttpError):
    """HTTP 4xx other than 429. Never retried."""


class NetworkError(FetchError):
    """Transport-level failure (connection reset, DNS, timeout)."""


class PayloadError(FetchError):
    """A 2xx response whose body is not valid JSON."""


class FatalPreconditionError(Exception):
    """Raised when a required input (the launcher map) is missing or unusable."""

    pass
