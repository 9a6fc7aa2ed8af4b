"""
Tests for rate limiting

Covers the per-operation limiter (window counting, user and IP budgets,
fail-open behaviour) and the slowapi global ceiling configuration.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from slowapi import Limiter

from ptsa.exceptions import RateLimitExceededError
from ptsa.middleware.rate_limit import (
    PRIVACY_RATE_LIMITS,
    RATE_LIMITS,
    MemoryRateLimitStore,
    RateLimitConfig,
    RateLimiter,
    RedisRateLimitStore,
    configure_rate_limiting,
    create_store,
    get_client_ip,
    get_rate_limiter,
    hash_ip,
    limiter,
    rate_limiter,
)


class FakeClock:
    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_request(headers: dict | None = None, host: str = "10.0.0.1"):
    request = MagicMock()
    request.headers = headers or {}
    request.client.host = host
    return request


class TestWindowCounting:
    async def test_allows_max_requests_then_rejects(self):
        clock = FakeClock()
        limiter_ = RateLimiter(MemoryRateLimitStore(), clock=clock)

        results = [await limiter_.check("user:abc", max_requests=3, window_ms=60_000) for _ in range(3)]
        assert all(result.allowed for result in results)
        assert [result.remaining for result in results] == [2, 1, 0]

        rejected = await limiter_.check("user:abc", max_requests=3, window_ms=60_000)
        assert rejected.allowed is False
        assert rejected.remaining == 0

    async def test_window_expiry_resets_budget(self):
        clock = FakeClock()
        limiter_ = RateLimiter(MemoryRateLimitStore(), clock=clock)
        for _ in range(2):
            await limiter_.check("ip:1", max_requests=2, window_ms=1_000)
        assert (await limiter_.check("ip:1", max_requests=2, window_ms=1_000)).allowed is False

        clock.advance(1.0)
        result = await limiter_.check("ip:1", max_requests=2, window_ms=1_000)
        assert result.allowed is True
        assert result.remaining == 1

    async def test_identifiers_are_independent(self):
        limiter_ = RateLimiter(MemoryRateLimitStore(), clock=FakeClock())
        await limiter_.check("user:a", max_requests=1)
        assert (await limiter_.check("user:b", max_requests=1)).allowed is True

    async def test_reset_single_identifier(self):
        limiter_ = RateLimiter(MemoryRateLimitStore(), clock=FakeClock())
        await limiter_.check("user:a", max_requests=1)
        await limiter_.reset("user:a")
        assert (await limiter_.check("user:a", max_requests=1)).allowed is True

    async def test_expired_one_off_keys_are_pruned(self):
        clock = FakeClock()
        limiter_ = RateLimiter(MemoryRateLimitStore(prune_every=100), clock=clock)
        for n in range(500):
            await limiter_.check(f"ip:{n}", max_requests=5, window_ms=1_000)

        clock.advance(3600)
        for n in range(100):
            await limiter_.check(f"user:{n}", max_requests=5, window_ms=1_000)

        assert limiter_.stats() == {"backend": "memory", "total_entries": 100, "active_entries": 100}

    async def test_prune_keeps_open_windows(self):
        store = MemoryRateLimitStore()
        await store.hit("user:old", 5, 1_000, now_ms=0)
        await store.hit("user:new", 5, 60_000, now_ms=0)

        assert store.prune(now_ms=5_000) == 1
        assert store.stats(now_ms=5_000)["total_entries"] == 1

    async def test_store_failure_fails_open(self):
        store = MagicMock()
        store.hit = AsyncMock(side_effect=ConnectionError("redis down"))
        limiter_ = RateLimiter(store, clock=FakeClock())

        result = await limiter_.check("user:a", max_requests=1)
        assert result.allowed is True


class TestEnforce:
    async def test_user_budget_exhaustion_raises_429(self):
        limiter_ = RateLimiter(MemoryRateLimitStore(), clock=FakeClock())
        config = RateLimitConfig("demo", user_limit=2, ip_limit=100, message="Slow down")
        request = make_request()

        await limiter_.enforce(request, config, "user_1")
        await limiter_.enforce(request, config, "user_1")
        with pytest.raises(RateLimitExceededError) as exc_info:
            await limiter_.enforce(request, config, "user_1")

        error = exc_info.value
        assert error.status_code == 429
        assert error.message == "Slow down"
        assert error.headers["Retry-After"] == "60"
        assert error.headers["X-RateLimit-Remaining"] == "0"

    async def test_ip_budget_applies_across_users(self):
        limiter_ = RateLimiter(MemoryRateLimitStore(), clock=FakeClock())
        config = RateLimitConfig("demo", user_limit=5, ip_limit=2)
        request = make_request()

        await limiter_.enforce(request, config, "user_1")
        await limiter_.enforce(request, config, "user_2")
        with pytest.raises(RateLimitExceededError):
            await limiter_.enforce(request, config, "user_3")

    async def test_anonymous_requests_use_ip_with_user_limit(self):
        limiter_ = RateLimiter(MemoryRateLimitStore(), clock=FakeClock())
        config = RateLimitConfig("demo", user_limit=1)

        await limiter_.enforce(make_request(), config)
        with pytest.raises(RateLimitExceededError):
            await limiter_.enforce(make_request(), config)
        # A different client address has its own budget
        await limiter_.enforce(make_request(host="10.0.0.2"), config)


class TestClientIp:
    def test_forwarded_for_first_hop(self):
        request = make_request({"x-forwarded-for": "203.0.113.5, 10.0.0.1"})
        assert get_client_ip(request) == "203.0.113.5"

    def test_real_ip_then_peer(self):
        assert get_client_ip(make_request({"x-real-ip": "198.51.100.7"})) == "198.51.100.7"
        assert get_client_ip(make_request(host="192.0.2.1")) == "192.0.2.1"

    def test_ip_is_hashed(self):
        hashed = hash_ip("203.0.113.5")
        assert len(hashed) == 16
        assert "203" not in hashed


class TestConfiguration:
    def test_operation_budgets(self):
        assert RATE_LIMITS["event_mutation"].user_limit == 5
        assert RATE_LIMITS["event_mutation"].ip_limit == 10
        assert RATE_LIMITS["read_operations"].user_limit == 60
        assert RATE_LIMITS["payments"].message == "Too many requests. Please try again later."

    def test_privacy_budgets(self):
        deletion = PRIVACY_RATE_LIMITS["data_deletion"]
        assert deletion.user_limit == 1
        assert deletion.window_ms == 24 * 60 * 60 * 1000
        assert PRIVACY_RATE_LIMITS["data_export"].user_limit == 3

    def test_store_selection(self):
        assert isinstance(create_store("memory://"), MemoryRateLimitStore)
        assert isinstance(create_store("redis://localhost:6379/0"), RedisRateLimitStore)

    def test_get_rate_limiter_returns_singleton(self):
        assert get_rate_limiter() is rate_limiter

    def test_global_limiter_is_slowapi(self):
        assert isinstance(limiter, Limiter)

    def test_configure_rate_limiting_sets_app_state(self):
        from slowapi.errors import RateLimitExceeded

        class MockApp:
            def __init__(self):
                self.state = type("State", (), {})()
                self._exception_handlers = {}
                self.middleware = []

            def add_exception_handler(self, exc_class, handler):
                self._exception_handlers[exc_class] = handler

            def add_middleware(self, middleware_class, **kwargs):
                self.middleware.append(middleware_class)

        app = MockApp()
        configure_rate_limiting(app)

        assert app.state.limiter is limiter
        assert RateLimitExceeded in app._exception_handlers
        assert len(app.middleware) == 1
