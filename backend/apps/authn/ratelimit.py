"""
Redis-backed rate limiter.

Implements both fixed window (uploads) and token bucket (questions)
algorithms as atomic Lua scripts on redis.asyncio. When Redis cannot be
reached the limiter fails open.
"""
import time
import logging
import functools
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import redis
import redis.asyncio as aioredis
from django.conf import settings
from django.http import JsonResponse

from .audit import audit_ratelimit_exceeded

logger = logging.getLogger(__name__)


# Default rate limit configurations (overridable in settings)
UPLOAD_RATE_LIMIT = {
    'algorithm': 'fixed_window',
    'window_seconds': 60,
    'max_requests': 10,
}

ASK_RATE_LIMIT = {
    'algorithm': 'token_bucket',
    'bucket_capacity': 5,
    'refill_rate': 0.2,  # tokens per second (12/minute)
}


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""
    allowed: bool
    limit: int
    remaining: int
    reset_at: int  # Unix timestamp
    retry_after: Optional[int] = None  # seconds to wait if blocked


def get_redis_client() -> aioredis.Redis:
    """Get an async Redis client from the configured URL."""
    redis_url = getattr(settings, 'REDIS_URL', 'redis://redis:6379/0')
    return aioredis.from_url(redis_url, decode_responses=True)


def is_rate_limiting_enabled() -> bool:
    """RATELIMIT_ENABLED=False turns every check into an allow."""
    return getattr(settings, 'RATELIMIT_ENABLED', True)


# Lua script for atomic fixed window rate limiting
FIXED_WINDOW_SCRIPT = """
local key = KEYS[1]
local limit = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local now = tonumber(ARGV[3])

local window_start = math.floor(now / window) * window
local window_key = key .. ":" .. window_start

local current = tonumber(redis.call('GET', window_key) or '0')

if current >= limit then
    local reset_at = window_start + window
    local retry_after = reset_at - now
    return {0, limit, 0, reset_at, retry_after}
end

redis.call('INCR', window_key)
redis.call('EXPIRE', window_key, window + 1)

local remaining = limit - current - 1
local reset_at = window_start + window
return {1, limit, remaining, reset_at, 0}
"""


# Lua script for atomic token bucket rate limiting
TOKEN_BUCKET_SCRIPT = """
local key = KEYS[1]
local capacity = tonumber(ARGV[1])
local refill_rate = tonumber(ARGV[2])
local now = tonumber(ARGV[3])

local state = redis.call('HMGET', key, 'tokens', 'last_refill')
local tokens = tonumber(state[1]) or capacity
local last_refill = tonumber(state[2]) or now

local elapsed = now - last_refill
tokens = math.min(capacity, tokens + elapsed * refill_rate)

if tokens < 1 then
    local retry_after = math.ceil((1 - tokens) / refill_rate)
    return {0, capacity, math.floor(tokens), 0, retry_after}
end

tokens = tokens - 1

redis.call('HMSET', key, 'tokens', tokens, 'last_refill', now)
redis.call('EXPIRE', key, 3600)

return {1, capacity, math.floor(tokens), 0, 0}
"""


class RateLimiter:
    """Redis-backed rate limiter."""

    def __init__(self, client: Optional[aioredis.Redis] = None):
        self._redis = client
        self._fixed_window_script = None
        self._token_bucket_script = None

    @property
    def redis(self) -> aioredis.Redis:
        if self._redis is None:
            self._redis = get_redis_client()
        return self._redis

    async def check_fixed_window(
        self,
        key: str,
        limit: int,
        window_seconds: int
    ) -> RateLimitResult:
        """
        Check rate limit using fixed window algorithm.

        Args:
            key: Rate limit key (e.g., "upload:user123")
            limit: Maximum requests per window
            window_seconds: Window size in seconds

        Returns:
            RateLimitResult with allow/deny and metadata
        """
        if self._fixed_window_script is None:
            self._fixed_window_script = self.redis.register_script(FIXED_WINDOW_SCRIPT)

        now = int(time.time())
        result = await self._fixed_window_script(
            keys=[f"ratelimit:{key}"],
            args=[limit, window_seconds, now]
        )

        allowed, limit, remaining, reset_at, retry_after = result

        return RateLimitResult(
            allowed=bool(allowed),
            limit=limit,
            remaining=remaining,
            reset_at=reset_at,
            retry_after=retry_after if retry_after > 0 else None
        )

    async def check_token_bucket(
        self,
        key: str,
        capacity: int,
        refill_rate: float
    ) -> RateLimitResult:
        """
        Check rate limit using token bucket algorithm.

        Args:
            key: Rate limit key (e.g., "ask:user123")
            capacity: Maximum tokens (burst capacity)
            refill_rate: Tokens added per second

        Returns:
            RateLimitResult with allow/deny and metadata
        """
        if self._token_bucket_script is None:
            self._token_bucket_script = self.redis.register_script(TOKEN_BUCKET_SCRIPT)

        now = time.time()
        result = await self._token_bucket_script(
            keys=[f"ratelimit:{key}"],
            args=[capacity, refill_rate, now]
        )

        allowed, limit, remaining, _, retry_after = result

        return RateLimitResult(
            allowed=bool(allowed),
            limit=limit,
            remaining=remaining,
            reset_at=0,  # Token bucket doesn't have fixed reset
            retry_after=retry_after if retry_after > 0 else None
        )


_limiter: Optional[RateLimiter] = None


def get_limiter() -> RateLimiter:
    """Get the shared rate limiter instance."""
    global _limiter
    if _limiter is None:
        _limiter = RateLimiter()
    return _limiter


def _unlimited() -> RateLimitResult:
    return RateLimitResult(allowed=True, limit=0, remaining=0, reset_at=0)


async def check_upload_rate_limit(user_id: str) -> RateLimitResult:
    """Check rate limit for document upload."""
    if not is_rate_limiting_enabled():
        return _unlimited()

    config = getattr(settings, 'UPLOAD_RATE_LIMIT', UPLOAD_RATE_LIMIT)
    try:
        return await get_limiter().check_fixed_window(
            key=f"upload:{user_id}",
            limit=config['max_requests'],
            window_seconds=config['window_seconds']
        )
    except redis.RedisError as e:
        logger.error(f"Redis error in rate limiting: {e}")
        return _unlimited()


async def check_ask_rate_limit(user_id: str) -> RateLimitResult:
    """Check rate limit for the ask endpoints (buffered and streaming)."""
    if not is_rate_limiting_enabled():
        return _unlimited()

    config = getattr(settings, 'ASK_RATE_LIMIT', ASK_RATE_LIMIT)
    try:
        return await get_limiter().check_token_bucket(
            key=f"ask:{user_id}",
            capacity=config['bucket_capacity'],
            refill_rate=config['refill_rate']
        )
    except redis.RedisError as e:
        logger.error(f"Redis error in rate limiting: {e}")
        return _unlimited()


def add_rate_limit_headers(response, result: RateLimitResult):
    """Add standard rate limit headers to a response."""
    if result.limit <= 0:
        return response
    response['X-RateLimit-Limit'] = str(result.limit)
    response['X-RateLimit-Remaining'] = str(result.remaining)
    if result.reset_at > 0:
        response['X-RateLimit-Reset'] = str(result.reset_at)
    return response


def rate_limit_response(result: RateLimitResult) -> JsonResponse:
    """Generate a 429 rate limit exceeded response."""
    retry_after = result.retry_after or 60
    response = JsonResponse(
        {
            'error': 'Rate limit exceeded',
            'code': 'RATE_LIMITED',
            'retryAfter': retry_after
        },
        status=429
    )
    response['Retry-After'] = str(retry_after)
    add_rate_limit_headers(response, result)
    return response


def rate_limited(check_func: Callable[[str], Awaitable[RateLimitResult]], endpoint: str = ''):
    """
    Decorator to apply rate limiting to an async view.

    Must sit below @auth_required so request.user_claims is set.

    Usage:
        @auth_required
        @rate_limited(check_upload_rate_limit, 'upload')
        async def upload_document(request):
            ...

    Args:
        check_func: Coroutine function taking user_id, returning RateLimitResult
        endpoint: Name recorded in the audit event
    """
    def decorator(view_func):
        @functools.wraps(view_func)
        async def wrapper(request, *args, **kwargs):
            user_id = getattr(getattr(request, 'user_claims', None), 'sub', None)
            if not user_id:
                return await view_func(request, *args, **kwargs)

            result = await check_func(user_id)

            if not result.allowed:
                logger.warning(f"Rate limit exceeded for user {user_id} on {endpoint or request.path}")
                audit_ratelimit_exceeded(
                    request,
                    endpoint=endpoint or request.path,
                    limit=result.limit,
                    window=result.retry_after or 0,
                )
                return rate_limit_response(result)

            response = await view_func(request, *args, **kwargs)
            add_rate_limit_headers(response, result)
            return response

        return wrapper
    return decorator
