"""
Token bucket rate limiter for streaming-platform API calls.

Hey future me - this is the SELF-IMPOSED throttle in front of the platform's own limits.
Token bucket with adaptive backoff:

- Bucket holds max_tokens, refilled at refill_rate tokens/sec
- Every request consumes 1 token, an empty bucket means waiting
- On 429: wait Retry-After if the platform sent one, else the current backoff
  (1s -> 2s -> 4s ...), and drain the bucket so the next request waits too
- After a successful response the caller calls reset_backoff()

There are NO module-level singletons here. One limiter instance per platform client, created by
the SyncContainer, so tests get a fresh bucket and two containers never share throttle state.

USAGE:
    limiter = RateLimiter.for_spotify()

    async with limiter:
        response = await client.get(url)

    # On 429:
    await limiter.handle_rate_limit_response(retry_after)
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class RateLimiterConfig:
    """Configuration for rate limiter.

    The defaults are tuned for Spotify (roughly 180 requests / minute); we
    stay at 2 req/sec sustained to keep a buffer. max_backoff_seconds must be
    high because Spotify can send Retry-After values of several minutes.
    """

    max_tokens: int = 10
    refill_rate: float = 2.0
    max_backoff_seconds: float = 600.0
    initial_backoff_seconds: float = 1.0
    backoff_multiplier: float = 2.0


@dataclass
class RateLimiter:
    """Token bucket rate limiter with adaptive backoff."""

    config: RateLimiterConfig = field(default_factory=RateLimiterConfig)
    name: str = "default"
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    _tokens: float = field(default=0.0, init=False)
    _last_refill: float = field(default_factory=time.monotonic, init=False)
    _current_backoff: float = field(default=0.0, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)

    def __post_init__(self) -> None:
        """Start with a full bucket."""
        self._tokens = float(self.config.max_tokens)
        self._current_backoff = self.config.initial_backoff_seconds

    @classmethod
    def for_spotify(
        cls, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ) -> "RateLimiter":
        """Create rate limiter tuned for the Spotify Web API (2 req/sec, burst 10)."""
        return cls(
            config=RateLimiterConfig(
                max_tokens=10,
                refill_rate=2.0,
                max_backoff_seconds=600.0,
                initial_backoff_seconds=1.0,
            ),
            name="spotify",
            sleep=sleep,
        )

    def _refill_tokens(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_refill
        self._tokens = min(
            self.config.max_tokens, self._tokens + elapsed * self.config.refill_rate
        )
        self._last_refill = now

    async def acquire(self) -> None:
        """Acquire one token, waiting if necessary."""
        async with self._lock:
            self._refill_tokens()
            while self._tokens < 1.0:
                wait_time = (1.0 - self._tokens) / self.config.refill_rate
                logger.debug(
                    "RateLimiter[%s]: bucket empty, waiting %.2fs", self.name, wait_time
                )
                await self.sleep(wait_time)
                self._refill_tokens()
            self._tokens -= 1.0

    async def handle_rate_limit_response(self, retry_after: float | None = None) -> float:
        """Wait after a 429 response using Retry-After or adaptive backoff.

        Args:
            retry_after: Retry-After header value in seconds, if provided

        Returns:
            The wait time actually used
        """
        wait_time = retry_after if retry_after is not None else self._current_backoff
        wait_time = min(wait_time, self.config.max_backoff_seconds)

        logger.warning(
            "RateLimiter[%s]: 429 received, waiting %.1fs (backoff level %.1fs)",
            self.name,
            wait_time,
            self._current_backoff,
        )
        self._current_backoff = min(
            self._current_backoff * self.config.backoff_multiplier,
            self.config.max_backoff_seconds,
        )
        self._tokens = 0.0
        self._last_refill = time.monotonic()

        await self.sleep(wait_time)
        return wait_time

    def reset_backoff(self) -> None:
        """Reset backoff after a successful request."""
        self._current_backoff = self.config.initial_backoff_seconds

    async def __aenter__(self) -> "RateLimiter":
        """Enter async context - acquire token."""
        await self.acquire()
        return self

    async def __aexit__(
        self, exc_type: type | None, exc_val: BaseException | None, exc_tb: object
    ) -> None:
        """Exit async context (the token is already consumed)."""
        return None

    @property
    def available_tokens(self) -> float:
        """Current available tokens (for debugging)."""
        self._refill_tokens()
        return self._tokens


__all__ = ["RateLimiter", "RateLimiterConfig"]
