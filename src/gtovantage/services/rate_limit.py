"""Sliding-window rate limits for the verification endpoints.

Two kinds of subject are limited: the client IP on every endpoint, and the
target email address on issuance so that one inbox cannot be flooded from
many addresses.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum

from fastapi import Request

from gtovantage.config import settings


class RateLimitType(str, Enum):
    """Rate limit types for different endpoint categories."""

    ISSUE = "issue"
    REDEEM = "redeem"
    ISSUE_PER_EMAIL = "issue_per_email"


@dataclass(frozen=True)
class RateLimitConfig:
    """Configuration for a rate limit type."""

    requests: int
    window_seconds: int


def get_rate_limit_config(limit_type: RateLimitType) -> RateLimitConfig:
    """Resolve the budget for a limit type from settings."""
    match limit_type:
        case RateLimitType.ISSUE:
            return RateLimitConfig(settings.rate_limit_issue_per_minute, 60)
        case RateLimitType.REDEEM:
            return RateLimitConfig(settings.rate_limit_redeem_per_minute, 60)
        case RateLimitType.ISSUE_PER_EMAIL:
            return RateLimitConfig(settings.rate_limit_issue_per_email_per_hour, 60 * 60)


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""

    success: bool
    limit: int
    remaining: int
    reset: int  # Unix timestamp in seconds


# How often check() sweeps keys whose windows have gone quiet
CLEANUP_INTERVAL_SECONDS = 60


class InMemoryRateLimiter:
    """In-process sliding window limiter.

    Counts are per process, so a multi-worker deployment gets one budget
    per worker. Subjects with no hits left in their window are forgotten,
    so one-off addresses do not accumulate.
    """

    def __init__(self) -> None:
        self._hits: dict[tuple[RateLimitType, str], deque[float]] = {}
        self._lock = asyncio.Lock()
        self._last_cleanup = 0.0

    async def check(self, subject: str, limit_type: RateLimitType) -> RateLimitResult:
        """Record a hit for ``subject`` unless its window is already full.

        Args:
            subject: What is being limited (e.g. "ip:1.2.3.4", "email:a@b.com")
            limit_type: Which budget applies

        Returns:
            RateLimitResult with success status and limit info
        """
        config = get_rate_limit_config(limit_type)
        key = (limit_type, subject)
        now = time.time()

        async with self._lock:
            if now - self._last_cleanup >= CLEANUP_INTERVAL_SECONDS:
                self._prune(now)

            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= now - config.window_seconds:
                hits.popleft()

            if len(hits) >= config.requests:
                return RateLimitResult(
                    success=False,
                    limit=config.requests,
                    remaining=0,
                    reset=int(hits[0] + config.window_seconds),
                )

            hits.append(now)
            return RateLimitResult(
                success=True,
                limit=config.requests,
                remaining=config.requests - len(hits),
                reset=int(hits[0] + config.window_seconds),
            )

    async def release(self, subject: str, limit_type: RateLimitType) -> None:
        """Give back the most recent hit, for work that turned out not to happen."""
        key = (limit_type, subject)
        async with self._lock:
            hits = self._hits.get(key)
            if hits:
                hits.pop()
                if not hits:
                    del self._hits[key]

    async def cleanup_old_entries(self) -> int:
        """Drop hits outside their window and forget idle subjects.

        Returns:
            Number of subjects removed
        """
        async with self._lock:
            return self._prune(time.time())

    def _prune(self, now: float) -> int:
        removed = 0
        for key in list(self._hits):
            window = get_rate_limit_config(key[0]).window_seconds
            hits = self._hits[key]
            while hits and hits[0] <= now - window:
                hits.popleft()
            if not hits:
                del self._hits[key]
                removed += 1
        self._last_cleanup = now
        return removed

    def reset(self) -> None:
        """Forget all recorded hits."""
        self._hits.clear()


_rate_limiter = InMemoryRateLimiter()


def get_rate_limiter() -> InMemoryRateLimiter:
    """Get the global rate limiter instance."""
    return _rate_limiter


def get_client_ip(request: Request) -> str | None:
    """Extract client IP, preferring proxy headers."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        # First entry is the original client
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return None


async def check_rate_limit(request: Request, limit_type: RateLimitType) -> RateLimitResult:
    """Check rate limit for a request, keyed by client IP."""
    ip = get_client_ip(request)
    return await get_rate_limiter().check(f"ip:{ip or 'unknown'}", limit_type)


def _email_subject(email: str) -> str:
    return f"email:{email.strip().lower()}"


async def check_email_rate_limit(email: str) -> RateLimitResult:
    """Check the issuance budget for a target email address."""
    return await get_rate_limiter().check(_email_subject(email), RateLimitType.ISSUE_PER_EMAIL)


async def release_email_rate_limit(email: str) -> None:
    """Refund an issuance hit when no token was actually created."""
    await get_rate_limiter().release(_email_subject(email), RateLimitType.ISSUE_PER_EMAIL)


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    """Generate rate limit headers for response."""
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset),
    }

    if not result.success:
        headers["Retry-After"] = str(max(0, result.reset - int(time.time())))

    return headers
