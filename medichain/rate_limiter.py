"""
Redis-backed rate limiting for anonymous QR token lookups.

The verify and data endpoints are public, so the only identity available is
the client IP. Each IP gets a fixed budget of lookups per window.
"""
import logging
import time
import uuid
from typing import Any, Callable, Dict, Iterable, Optional

from fastapi import HTTPException, Request, status
from redis.asyncio import Redis
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from .auth_dependencies import get_client_ip

logger = logging.getLogger(__name__)

STRATEGIES = ("sliding_window", "fixed_window")


class RateLimitExceeded(HTTPException):
    """Raised when a client exhausts its request budget."""

    def __init__(
        self,
        detail: str = "Too many requests",
        retry_after: int = 0,
        limit: int = 0,
        window: int = 0,
    ):
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=detail,
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Limit": str(limit),
                "X-RateLimit-Window": str(window),
            },
        )
        self.retry_after = retry_after


class RateLimiter:
    """
    Counts requests per identifier in Redis.

    Strategies:
    - sliding_window: sorted set of request timestamps trimmed to the window
    - fixed_window: one counter per identifier and window slot
    """

    def __init__(
        self,
        redis_client: Redis,
        requests: int = 30,
        window: int = 60,
        strategy: str = "sliding_window",
        key_prefix: str = "qr_rate_limit",
    ):
        if strategy not in STRATEGIES:
            raise ValueError(f"Unsupported rate limit strategy: {strategy}")
        self.redis = redis_client
        self.requests = requests
        self.window = window
        self.strategy = strategy
        self.key_prefix = key_prefix

    async def check_rate_limit(self, identifier: str) -> Dict[str, Any]:
        """
        Count one request for the identifier.

        Returns:
            Dict with allowed, remaining, reset and retry_after

        Raises:
            RateLimitExceeded: If the identifier is over its budget
        """
        if self.strategy == "fixed_window":
            return await self._fixed_window(identifier)
        return await self._sliding_window(identifier)

    async def _sliding_window(self, identifier: str) -> Dict[str, Any]:
        key = f"{self.key_prefix}:sw:{identifier}"
        now = time.time()
        member = f"{now}:{uuid.uuid4().hex}"

        pipe = self.redis.pipeline()
        pipe.zremrangebyscore(key, 0, now - self.window)
        pipe.zcard(key)
        pipe.zadd(key, {member: now})
        pipe.expire(key, self.window)
        _, count, _, _ = await pipe.execute()

        if count >= self.requests:
            await self.redis.zrem(key, member)
            oldest = await self.redis.zrange(key, 0, 0, withscores=True)
            oldest_at = oldest[0][1] if oldest else now
            retry_after = max(1, int(oldest_at + self.window - now + 0.999))
            raise RateLimitExceeded(retry_after=retry_after, limit=self.requests, window=self.window)

        return {
            "allowed": True,
            "remaining": self.requests - count - 1,
            "reset": int(now + self.window),
            "retry_after": 0,
        }

    async def _fixed_window(self, identifier: str) -> Dict[str, Any]:
        now = time.time()
        slot = int(now // self.window)
        key = f"{self.key_prefix}:fw:{identifier}:{slot}"
        reset = (slot + 1) * self.window

        pipe = self.redis.pipeline()
        pipe.incr(key)
        pipe.expireat(key, reset)
        count, _ = await pipe.execute()

        if count > self.requests:
            retry_after = max(1, int(reset - now + 0.999))
            raise RateLimitExceeded(retry_after=retry_after, limit=self.requests, window=self.window)

        return {
            "allowed": True,
            "remaining": self.requests - count,
            "reset": reset,
            "retry_after": 0,
        }


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Applies per-IP limits to requests under the guarded path prefixes.

    The Redis client is resolved per request so it can be swapped after the
    app is built. If Redis is unreachable the request is let through.
    """

    def __init__(
        self,
        app,
        redis_client: Callable[[], Redis],
        requests: int = 30,
        window: int = 60,
        strategy: str = "sliding_window",
        include_paths: Optional[Iterable[str]] = None,
    ):
        super().__init__(app)
        self.redis_client = redis_client
        self.requests = requests
        self.window = window
        self.strategy = strategy
        self.include_paths = tuple(include_paths or ())

    def _guarded_prefix(self, path: str) -> Optional[str]:
        for prefix in self.include_paths:
            if path.startswith(prefix):
                return prefix
        return None

    async def dispatch(self, request: Request, call_next) -> Response:
        prefix = self._guarded_prefix(request.url.path)
        if prefix is None:
            return await call_next(request)

        limiter = RateLimiter(
            self.redis_client(),
            requests=self.requests,
            window=self.window,
            strategy=self.strategy,
        )
        identifier = f"ip:{get_client_ip(request)}"

        try:
            result = await limiter.check_rate_limit(identifier)
        except RateLimitExceeded as exc:
            logger.warning("Rate limit exceeded for %s on %s", identifier, prefix)
            return JSONResponse(
                status_code=exc.status_code,
                content={"detail": exc.detail},
                headers=exc.headers,
            )
        except RedisError as exc:
            logger.warning("Rate limiter unavailable, allowing request: %s", exc)
            return await call_next(request)

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limiter.requests)
        response.headers["X-RateLimit-Remaining"] = str(result["remaining"])
        return response
