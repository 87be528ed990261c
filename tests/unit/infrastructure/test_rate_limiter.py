"""Tests for the token bucket rate limiter."""

from tracksync.infrastructure.rate_limiter import RateLimiter, RateLimiterConfig


class TestRateLimiter:
    """Test token consumption and 429 backoff."""

    async def test_full_bucket_does_not_wait(self, sleep_recorder) -> None:
        limiter = RateLimiter(config=RateLimiterConfig(max_tokens=3), sleep=sleep_recorder)

        for _ in range(3):
            await limiter.acquire()

        assert sleep_recorder.calls == []
        assert limiter.available_tokens < 1.0

    async def test_empty_bucket_waits_for_refill(self, sleep_recorder) -> None:
        limiter = RateLimiter(
            config=RateLimiterConfig(max_tokens=1, refill_rate=10_000.0), sleep=sleep_recorder
        )

        await limiter.acquire()
        await limiter.acquire()

        assert sleep_recorder.calls
        assert all(delay <= 0.0001 for delay in sleep_recorder.calls)

    async def test_context_manager_consumes_a_token(self, sleep_recorder) -> None:
        limiter = RateLimiter(config=RateLimiterConfig(max_tokens=2), sleep=sleep_recorder)

        async with limiter:
            pass

        assert limiter.available_tokens < 2.0

    async def test_retry_after_is_honoured_and_capped(self, sleep_recorder) -> None:
        limiter = RateLimiter(
            config=RateLimiterConfig(max_backoff_seconds=60.0), sleep=sleep_recorder
        )

        assert await limiter.handle_rate_limit_response(5.0) == 5.0
        assert await limiter.handle_rate_limit_response(600.0) == 60.0
        assert sleep_recorder.calls == [5.0, 60.0]

    async def test_backoff_grows_without_retry_after_and_resets(self, sleep_recorder) -> None:
        limiter = RateLimiter.for_spotify(sleep=sleep_recorder)

        await limiter.handle_rate_limit_response()
        await limiter.handle_rate_limit_response()
        await limiter.handle_rate_limit_response()
        limiter.reset_backoff()
        await limiter.handle_rate_limit_response()

        assert sleep_recorder.calls == [1.0, 2.0, 4.0, 1.0]

    async def test_429_drains_the_bucket(self, sleep_recorder) -> None:
        limiter = RateLimiter.for_spotify(sleep=sleep_recorder)

        await limiter.handle_rate_limit_response(0.0)

        assert limiter.available_tokens < 1.0

    def test_spotify_preset(self) -> None:
        limiter = RateLimiter.for_spotify()

        assert limiter.name == "spotify"
        assert limiter.config.max_tokens == 10
        assert limiter.config.refill_rate == 2.0
