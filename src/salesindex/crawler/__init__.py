"""HTTP fetching and request pacing."""

from .http_client import HttpClient, backoff_seconds, parse_retry_after
from .rate_limiter import AdaptiveRateLimiter, RateLimiterState

__all__ = ["HttpClient", "backoff_seconds", "parse_retry_after", "AdaptiveRateLimiter", "RateLimiterState"]
