"""
Rate Limiting for FastAPI

Two layers:

* a coarse global per-IP ceiling enforced by slowapi's middleware, and
* a per-operation limiter (``RateLimiter``) that routes call explicitly after
  their authentication and role checks. It counts requests per identifier
  (``user:<id>`` and ``ip:<hashed ip>``) inside a fixed window and rejects
  once the window's budget is spent.

Counters live behind a small store interface: an in-process dict for a single
instance, or Redis (atomic INCR + PEXPIRE) when several instances share limits.
"""

import hashlib
import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Request
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from ptsa.config import settings
from ptsa.exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS


@dataclass(frozen=True)
class RateLimitConfig:
    """Budget for one operation. ``ip_limit=None`` means the IP is only used when no user is known."""

    name: str
    user_limit: int
    ip_limit: int | None = None
    window_ms: int = MINUTE_MS
    message: str = "Too many requests"


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_time: int  # epoch milliseconds
    limit: int


RATE_LIMITS: dict[str, RateLimitConfig] = {
    "event_mutation": RateLimitConfig("event_mutation", 5, 10),
    "event_read": RateLimitConfig("event_read", 30, 60),
    "rsvp": RateLimitConfig("rsvp", 10, 20),
    "volunteer": RateLimitConfig("volunteer", 10, 20),
    "announcements": RateLimitConfig("announcements", 5, 10),
    "emails": RateLimitConfig("emails", 5, 10),
    "preferences": RateLimitConfig("preferences", 5, 10),
    "unsubscribe": RateLimitConfig("unsubscribe", 3, 5),
    "read_operations": RateLimitConfig("read_operations", 60, 100),
    "payments": RateLimitConfig(
        "payments", 5, 10, message="Too many requests. Please try again later."
    ),
}

PRIVACY_RATE_LIMITS: dict[str, RateLimitConfig] = {
    "data_export": RateLimitConfig(
        "data_export", 3, window_ms=DAY_MS,
        message="Too many data export requests. Please try again tomorrow.",
    ),
    "data_deletion": RateLimitConfig(
        "data_deletion", 1, window_ms=DAY_MS,
        message="A deletion request was already submitted today. Please contact support if you need assistance.",
    ),
    "consent_update": RateLimitConfig(
        "consent_update", 10, window_ms=HOUR_MS,
        message="Too many consent updates. Please try again later.",
    ),
    "coppa_verification": RateLimitConfig(
        "coppa_verification", 5, window_ms=HOUR_MS,
        message="Too many verification attempts. Please try again later.",
    ),
    "privacy_settings_read": RateLimitConfig(
        "privacy_settings_read", 30, message="Too many requests. Please slow down.",
    ),
    "privacy_settings_update": RateLimitConfig(
        "privacy_settings_update", 10, message="Too many settings updates. Please try again shortly.",
    ),
    "audit_log_access": RateLimitConfig(
        "audit_log_access", 20, message="Too many audit log requests. Please slow down.",
    ),
    "audit_log_export": RateLimitConfig(
        "audit_log_export", 5, window_ms=HOUR_MS,
        message="Too many audit log exports. Please try again later.",
    ),
}


def hash_ip(ip_address: str) -> str:
    """Hash an IP address so raw addresses never become storage keys."""
    return hashlib.sha256(ip_address.encode()).hexdigest()[:16]


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


# ============================================================================
# Counter storage
# ============================================================================


class MemoryRateLimitStore:
    """In-process counters; correct for a single instance only."""

    def __init__(self, prune_every: int = 1000):
        self._entries: dict[str, tuple[int, int]] = {}
        self._prune_every = prune_every
        self._hits_since_prune = 0

    def prune(self, now_ms: int) -> int:
        """Drop every entry whose window has closed. Returns the number removed."""
        expired = [key for key, (_, reset_time) in self._entries.items() if reset_time <= now_ms]
        for key in expired:
            del self._entries[key]
        self._hits_since_prune = 0
        return len(expired)

    async def hit(self, key: str, max_requests: int, window_ms: int, now_ms: int) -> RateLimitResult:
        self._hits_since_prune += 1
        if self._hits_since_prune >= self._prune_every:
            self.prune(now_ms)

        entry = self._entries.get(key)
        if entry is not None and entry[1] <= now_ms:
            del self._entries[key]
            entry = None

        if entry is None:
            reset_time = now_ms + window_ms
            self._entries[key] = (1, reset_time)
            return RateLimitResult(True, max_requests - 1, reset_time, max_requests)

        count, reset_time = entry
        if count >= max_requests:
            return RateLimitResult(False, 0, reset_time, max_requests)

        count += 1
        self._entries[key] = (count, reset_time)
        return RateLimitResult(True, max_requests - count, reset_time, max_requests)

    async def reset(self, key: str | None = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def stats(self, now_ms: int) -> dict:
        active = sum(1 for _, reset_time in self._entries.values() if reset_time > now_ms)
        return {"backend": "memory", "total_entries": len(self._entries), "active_entries": active}


_INCR_WITH_EXPIRY = """
local current = redis.call('INCR', KEYS[1])
if current == 1 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
end
return {current, redis.call('PTTL', KEYS[1])}
"""


class RedisRateLimitStore:
    """Shared counters in Redis, so limits hold across server instances."""

    def __init__(self, client, prefix: str = "ptsa:ratelimit:"):
        self._client = client
        self._prefix = prefix
        self._script = client.register_script(_INCR_WITH_EXPIRY)

    async def hit(self, key: str, max_requests: int, window_ms: int, now_ms: int) -> RateLimitResult:
        count, ttl_ms = await self._script(keys=[self._prefix + key], args=[window_ms])
        count = int(count)
        ttl_ms = int(ttl_ms) if int(ttl_ms) > 0 else window_ms
        reset_time = now_ms + ttl_ms
        if count > max_requests:
            return RateLimitResult(False, 0, reset_time, max_requests)
        return RateLimitResult(True, max_requests - count, reset_time, max_requests)

    async def reset(self, key: str | None = None) -> None:
        if key is not None:
            await self._client.delete(self._prefix + key)
            return
        async for redis_key in self._client.scan_iter(match=f"{self._prefix}*"):
            await self._client.delete(redis_key)

    def stats(self, now_ms: int) -> dict:
        return {"backend": "redis"}


def create_store(storage_uri: str):
    if storage_uri.startswith(("redis://", "rediss://")):
        import redis.asyncio as redis

        return RedisRateLimitStore(redis.from_url(storage_uri))
    return MemoryRateLimitStore()


# ============================================================================
# Limiter
# ============================================================================


class RateLimiter:
    def __init__(self, store=None, clock: Callable[[], float] = time.time):
        self.store = store or MemoryRateLimitStore()
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def check(self, identifier: str, max_requests: int = 5, window_ms: int = MINUTE_MS) -> RateLimitResult:
        """Count one request for ``identifier`` and report whether it fits the window."""
        now_ms = self._now_ms()
        try:
            return await self.store.hit(identifier, max_requests, window_ms, now_ms)
        except Exception as e:
            # A broken shared store must not take the API down with it
            logger.warning(f"Rate limit store unavailable, allowing request: {e}")
            return RateLimitResult(True, max_requests, now_ms + window_ms, max_requests)

    async def enforce(
        self,
        request: Request,
        config: RateLimitConfig,
        user_id: str | None = None,
    ) -> RateLimitResult:
        """
        Check the user and/or IP budgets for ``config``.

        Raises:
            RateLimitExceededError: if either budget is exhausted
        """
        checks: list[tuple[str, int]] = []
        if user_id:
            checks.append((f"user:{user_id}", config.user_limit))
        ip_identifier = f"ip:{hash_ip(get_client_ip(request))}"
        if config.ip_limit is not None:
            checks.append((ip_identifier, config.ip_limit))
        elif not user_id:
            checks.append((ip_identifier, config.user_limit))

        result = None
        for identifier, limit in checks:
            result = await self.check(f"{config.name}:{identifier}", limit, config.window_ms)
            if not result.allowed:
                retry_after = max(1, math.ceil((result.reset_time - self._now_ms()) / 1000))
                logger.warning(f"Rate limit exceeded for {config.name} ({identifier.split(':')[0]})")
                raise RateLimitExceededError(
                    message=config.message,
                    retry_after=retry_after,
                    headers={
                        "X-RateLimit-Limit": str(limit),
                        "X-RateLimit-Remaining": "0",
                        "X-RateLimit-Reset": str(result.reset_time),
                    },
                )
        return result

    async def reset(self, identifier: str | None = None) -> None:
        await self.store.reset(identifier)

    def stats(self) -> dict:
        return self.store.stats(self._now_ms())


rate_limiter = RateLimiter(create_store(settings.rate_limit_storage_uri))


def get_rate_limiter() -> RateLimiter:
    """Get the per-operation rate limiter instance."""
    return rate_limiter


# ============================================================================
# Global ceiling (slowapi)
# ============================================================================

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.global_rate_limit],
    storage_uri=settings.rate_limit_storage_uri,
    headers_enabled=False,
    enabled=settings.global_rate_limit_enabled,
)


def configure_rate_limiting(app):
    """
    Configure the global rate limit for the FastAPI application.

    Args:
        app: FastAPI application instance
    """
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)
