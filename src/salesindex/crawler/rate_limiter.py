"""
Adaptive rate limiter with a consecutive-failure circuit breaker.

A single inter-request delay is tuned from observed outcomes: it creeps down
after sustained success, doubles on HTTP 429 and grows by half on other
recoverable failures. Five rate limits in a row trip the circuit breaker,
which pins the delay at its maximum and asks the caller to pause.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog
from pydantic import BaseModel

from salesindex.config import RateLimiterConfig
from salesindex.observability import gauge

logger = structlog.get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[Any]]


class RateLimiterState(BaseModel):
    """Serializable limiter state, persisted inside checkpoints."""

    current_delay_ms: float
    success_streak: int = 0
    failure_streak: int = 0
    rate_limit_count: int = 0


class AdaptiveRateLimiter:
    """Sequential pacing for a single upstream API."""

    def __init__(self, config: Optional[RateLimiterConfig] = None, sleep: Optional[SleepFunc] = None) -> None:
        self.config = config or RateLimiterConfig()
        self._sleep: SleepFunc = sleep or asyncio.sleep
        self.state = RateLimiterState(current_delay_ms=self.config.initial_delay_ms)

    @property
    def current_delay_ms(self) -> float:
        return self.state.current_delay_ms

    def _set_delay(self, delay_ms: float) -> None:
        self.state.current_delay_ms = min(self.config.max_delay_ms, max(self.config.min_delay_ms, delay_ms))
        gauge("rate_limiter_delay_ms", self.state.current_delay_ms)

    async def wait(self) -> None:
        """Sleep for the current delay."""
        await self._sleep(self.state.current_delay_ms / 1000)

    async def pause(self) -> None:
        """Sleep for the full maximum delay (circuit breaker pause)."""
        await self._sleep(self.config.max_delay_ms / 1000)

    def on_success(self) -> None:
        self.state.success_streak += 1
        self.state.failure_streak = 0
        if self.state.success_streak >= self.config.success_streak_target:
            self._set_delay(self.state.current_delay_ms - self.config.success_step_ms)
            self.state.success_streak = 0

    def on_rate_limit(self) -> bool:
        """Record a 429. Returns True when the circuit breaker asks for a pause."""
        self.state.rate_limit_count += 1
        self.state.failure_streak += 1
        self.state.success_streak = 0
        self._set_delay(self.state.current_delay_ms * self.config.rate_limit_multiplier)

        if self.state.failure_streak >= self.config.circuit_breaker_threshold:
            self._set_delay(self.config.max_delay_ms)
            logger.warning(
                "Circuit breaker tripped",
                failure_streak=self.state.failure_streak,
                pause_ms=self.config.max_delay_ms,
            )
            return True
        return False

    def on_error(self) -> None:
        """Record a server or network failure."""
        self.state.failure_streak += 1
        self.state.success_streak = 0
        self._set_delay(self.state.current_delay_ms * self.config.error_multiplier)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "current_delay_ms": self.state.current_delay_ms,
            "rate_limit_count": self.state.rate_limit_count,
            "success_streak": self.state.success_streak,
            "failure_streak": self.state.failure_streak,
        }

    def snapshot(self) -> RateLimiterState:
        return self.state.model_copy()

    def reset(self) -> None:
        self.state = RateLimiterState(current_delay_ms=self.config.initial_delay_ms)
        gauge("rate_limiter_delay_ms", self.state.current_delay_ms)

    def restore(self, state: RateLimiterState) -> None:
        """Adopt a checkpointed state verbatim, clamped to the configured bounds."""
        self.state = state.model_copy()
        self._set_delay(self.state.current_delay_ms)
