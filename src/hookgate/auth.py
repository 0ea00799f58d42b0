"""API key authentication and rate limiting for Hookgate.

Provides:
- API key hashing and Bearer header parsing
- API key authentication against hashed credentials
- Per-key fixed-window rate limiting, in-memory or Redis-based

The FastAPI dependencies built on these live in hookgate.api.auth.
"""

from __future__ import annotations

import asyncio
import hashlib
import heapq
import math
import secrets
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache, partial
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from hookgate.exceptions import CredentialExpiredError, InvalidCredentialError
from hookgate.logging import get_logger
from hookgate.models import Credential, utc_now

if TYPE_CHECKING:
    from hookgate.storage import Storage

logger = get_logger(__name__)

# Track if Redis is available (optional dependency)
try:
    import redis

    REDIS_AVAILABLE = True
except ImportError:
    REDIS_AVAILABLE = False

API_KEY_PREFIX = "hk_"

Clock = Callable[[], int]


def hash_api_key(raw_key: str) -> str:
    """Digest a raw API key for storage and lookup.

    Args:
        raw_key: The key as presented by the caller.

    Returns:
        Lowercase hex SHA-256 digest (64 characters).
    """
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def extract_api_key(authorization: str | None) -> str | None:
    """Extract the raw key from an ``Authorization: Bearer <key>`` header.

    Anything other than exactly two space-separated parts with the
    ``Bearer`` scheme is treated as no credential.
    """
    if not authorization:
        return None

    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        return None

    return parts[1]


class AuthenticatedKey(BaseModel):
    """Identity established by a valid API key.

    Attributes:
        user_id: User who owns the key.
        key_id: Credential identifier, used as the rate-limit key.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    user_id: str = Field(description="User who owns the key")
    key_id: str = Field(description="Credential identifier")


class ApiKeyAuthenticator:
    """Validates API keys against stored credential digests.

    A successful authentication schedules a ``last_used_at`` update in the
    background; the caller does not wait for it.
    """

    def __init__(
        self,
        storage: Storage,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._storage = storage
        self._clock = clock
        self._pending: set[asyncio.Task[None]] = set()

    async def authenticate(self, raw_key: str) -> AuthenticatedKey:
        """Authenticate a raw API key.

        Args:
            raw_key: The key as presented by the caller.

        Returns:
            AuthenticatedKey for the owning user.

        Raises:
            InvalidCredentialError: No credential has this digest.
            CredentialExpiredError: The matching credential has expired.
        """
        credential = await self._storage.get_credential_by_hash(hash_api_key(raw_key))
        if credential is None:
            logger.info("API key rejected", reason=InvalidCredentialError.reason)
            raise InvalidCredentialError()

        now = self._clock()
        if credential.is_expired(now):
            logger.info(
                "API key rejected",
                reason=CredentialExpiredError.reason,
                key_id=credential.id,
                user_id=credential.user_id,
            )
            raise CredentialExpiredError()

        self._schedule_touch(credential.id, now)
        return AuthenticatedKey(user_id=credential.user_id, key_id=credential.id)

    async def authenticate_header(self, authorization: str | None) -> AuthenticatedKey | None:
        """Authenticate from a raw Authorization header.

        Returns:
            None when the header is absent or malformed (storage is not queried).
        """
        raw_key = extract_api_key(authorization)
        if raw_key is None:
            return None
        return await self.authenticate(raw_key)

    async def wait_pending(self) -> None:
        """Wait for scheduled last-used updates to finish."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    def _schedule_touch(self, credential_id: str, when: datetime) -> None:
        task = asyncio.create_task(self._storage.touch_credential(credential_id, when))
        self._pending.add(task)
        task.add_done_callback(partial(self._touch_done, credential_id))

    def _touch_done(self, credential_id: str, task: asyncio.Task[None]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(
                "Failed to record API key use",
                key_id=credential_id,
                error=str(error),
            )


async def issue_api_key(
    storage: Storage,
    user_id: str,
    name: str | None = None,
    expires_at: datetime | None = None,
) -> tuple[str, Credential]:
    """Create and store a new API key.

    Only the digest is stored. The raw key is returned once and cannot be
    recovered later.

    Args:
        storage: Credential storage.
        user_id: User who will own the key.
        name: Human-readable label.
        expires_at: Optional expiry.

    Returns:
        Tuple of (raw key, stored credential).
    """
    raw_key = f"{API_KEY_PREFIX}{secrets.token_urlsafe(32)}"
    credential = Credential(
        user_id=user_id,
        key_hash=hash_api_key(raw_key),
        name=name,
        expires_at=expires_at,
    )
    await storage.store_credential(credential)
    logger.info("API key issued", key_id=credential.id, user_id=user_id, name=name)
    return raw_key, credential


class RateLimitInfo(BaseModel):
    """Rate limit decision for one request.

    Attributes:
        limit: Maximum requests allowed per window.
        remaining: Requests remaining in current window.
        reset_at: Epoch milliseconds when the window resets.
        allowed: Whether this request was admitted.
        retry_after: Seconds until a denied caller may retry.
    """

    model_config = ConfigDict(extra="forbid")

    limit: int = Field(ge=0, description="Maximum requests allowed per window")
    remaining: int = Field(ge=0, description="Requests remaining in current window")
    reset_at: int = Field(description="Epoch milliseconds when the window resets")
    allowed: bool = Field(default=True, description="Whether the request was admitted")
    retry_after: int = Field(default=0, ge=0, description="Seconds until retry")


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def _retry_after(reset_at: int, now: int) -> int:
    return max(1, math.ceil((reset_at - now) / 1000))


class RateLimiter(ABC):
    """Abstract base class for fixed-window rate limiters.

    A window starts on the first request for a key and lasts ``window_ms``.
    Requests are admitted while the window count is below ``limit``; denied
    requests do not increment the count. The first request after the window
    ends starts a new one.
    """

    @abstractmethod
    def acquire(self, key: str, limit: int = 100, window_ms: int = 60_000) -> RateLimitInfo:
        """Count a request against ``key`` and decide whether to admit it.

        Args:
            key: Rate-limit key (the credential ID).
            limit: Maximum requests per window.
            window_ms: Window length in milliseconds.

        Returns:
            RateLimitInfo with the decision and window state.
        """
        ...

    def allow(self, key: str, limit: int = 100, window_ms: int = 60_000) -> bool:
        """Return True if a request for ``key`` is admitted."""
        return self.acquire(key, limit, window_ms).allowed


@dataclass
class _Window:
    count: int
    reset_at: int


class InMemoryRateLimiter(RateLimiter):
    """In-memory fixed-window rate limiter.

    Counters live in process memory, so limits are per instance.
    Not suitable for multi-instance deployments - use RedisRateLimiter instead.
    """

    def __init__(self, clock: Clock = _now_ms, max_keys: int = 10_000) -> None:
        self._clock = clock
        self._max_keys = max_keys
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()

    def acquire(self, key: str, limit: int = 100, window_ms: int = 60_000) -> RateLimitInfo:
        with self._lock:
            now = self._clock()
            window = self._windows.get(key)

            if window is None or now > window.reset_at:
                if window is None and len(self._windows) >= self._max_keys:
                    self._make_room(now)
                window = _Window(count=1, reset_at=now + window_ms)
                self._windows[key] = window
                allowed = True
            elif window.count >= limit:
                allowed = False
            else:
                window.count += 1
                allowed = True

            count, reset_at = window.count, window.reset_at

        if not allowed:
            logger.warning("Rate limit exceeded", key=key, limit=limit, reset_at=reset_at)

        return RateLimitInfo(
            limit=limit,
            remaining=max(limit - count, 0),
            reset_at=reset_at,
            allowed=allowed,
            retry_after=0 if allowed else _retry_after(reset_at, now),
        )

    def _make_room(self, now: int) -> None:
        """Drop expired windows, then the soonest-resetting ones while still at capacity."""
        expired = [k for k, w in self._windows.items() if now > w.reset_at]
        for k in expired:
            del self._windows[k]

        overflow = len(self._windows) - self._max_keys + 1
        if overflow > 0:
            soonest = heapq.nsmallest(
                overflow, self._windows, key=lambda k: self._windows[k].reset_at
            )
            for k in soonest:
                del self._windows[k]
            logger.warning("Rate limiter at capacity, evicted live windows", evicted=overflow)


class RedisRateLimiter(RateLimiter):
    """Redis-based fixed-window rate limiter using an atomic Lua script.

    Uses Redis for distributed rate limiting across multiple instances.
    Requires the 'redis' extra: pip install hookgate[redis]

    One counter key per rate-limit key, created with a PX expiry equal to
    the window. The script reads, admits or denies, and increments in a
    single atomic step.
    """

    _RATE_LIMIT_SCRIPT = """
    local key = KEYS[1]
    local limit = tonumber(ARGV[1])
    local window_ms = tonumber(ARGV[2])

    local count = tonumber(redis.call('GET', key) or '0')
    if count == 0 then
        redis.call('SET', key, 1, 'PX', window_ms)
        return {1, 1, window_ms}
    end

    local ttl = redis.call('PTTL', key)
    if count >= limit then
        return {0, count, ttl}  -- Rejected without incrementing
    end

    count = redis.call('INCR', key)
    return {1, count, ttl}
    """

    def __init__(
        self,
        redis_url: str | None = None,
        client: redis.Redis | None = None,
        clock: Clock = _now_ms,
    ) -> None:
        if client is None:
            if not REDIS_AVAILABLE:
                raise ImportError("Redis is not installed. Install with: pip install hookgate[redis]")
            if not redis_url:
                raise ValueError("redis_url is required when no client is given")
            client = redis.Redis.from_url(redis_url, decode_responses=True)
            try:
                client.ping()
            except redis.ConnectionError as e:
                raise RuntimeError(f"Failed to connect to Redis at {redis_url}: {e}") from e

        self._redis = client
        self._clock = clock
        self._key_prefix = "hookgate:ratelimit:"
        self._script = self._redis.register_script(self._RATE_LIMIT_SCRIPT)

        logger.info("Redis rate limiter initialized", redis_url=redis_url)

    def _get_key(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    def acquire(self, key: str, limit: int = 100, window_ms: int = 60_000) -> RateLimitInfo:
        """Count a request in Redis and decide whether to admit it.

        Returns:
            RateLimitInfo with the decision and window state.
        """
        now = self._clock()
        result = self._script(keys=[self._get_key(key)], args=[limit, window_ms])

        # Result is [allowed (0/1), count, ttl_ms]
        allowed, count, ttl = (int(v) for v in result)
        if ttl < 0:
            ttl = window_ms
        reset_at = now + ttl

        if not allowed:
            logger.warning(
                "Rate limit exceeded",
                key=key,
                limit=limit,
                reset_at=reset_at,
                backend="redis",
            )

        return RateLimitInfo(
            limit=limit,
            remaining=max(limit - count, 0),
            reset_at=reset_at,
            allowed=bool(allowed),
            retry_after=0 if allowed else _retry_after(reset_at, now),
        )


@lru_cache(maxsize=1)
def get_rate_limiter(redis_url: str | None = None) -> RateLimiter:
    """Get or create the rate limiter singleton.

    If redis_url is provided, uses RedisRateLimiter for distributed rate limiting.
    Otherwise, uses InMemoryRateLimiter (not suitable for multi-instance deployments).

    Args:
        redis_url: Optional Redis URL for distributed rate limiting.

    Returns:
        RateLimiter instance.
    """
    if redis_url:
        logger.info("Using Redis rate limiter", redis_url=redis_url)
        return RedisRateLimiter(redis_url)
    logger.info("Using in-memory rate limiter (not distributed)")
    return InMemoryRateLimiter()


def reset_auth_singletons() -> None:
    """Reset the cached rate limiter (for testing)."""
    get_rate_limiter.cache_clear()
