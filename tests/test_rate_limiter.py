"""
Tests for the per-IP rate limiter guarding public token lookups.

Tests cover:
- Sliding and fixed window budgets, and recovery after the window
- Retry headers on exhaustion
- Middleware path guarding, IP keying, and fail-open on Redis errors
"""
import asyncio
import logging
import time
from typing import Optional
from unittest.mock import AsyncMock

import pytest
from fastapi import Request, status
from redis.exceptions import ConnectionError as RedisConnectionError
from starlette.responses import Response

from medichain.rate_limiter import RateLimitExceeded, RateLimiter, RateLimitMiddleware


class FakeTime:
    """Deterministic clock for rate limiter tests."""

    def __init__(self, start: Optional[float] = None):
        self._current = float(start or time.time())

    def time(self) -> float:
        return self._current

    def advance(self, seconds: float) -> None:
        self._current += seconds


def build_request(path: str, client_ip: str = "127.0.0.1", forwarded_for: Optional[str] = None) -> Request:
    headers = []
    if forwarded_for:
        headers.append((b"x-forwarded-for", forwarded_for.encode()))
    scope = {
        "type": "http",
        "method": "GET",
        "path": path,
        "root_path": "",
        "scheme": "http",
        "query_string": b"",
        "headers": headers,
        "client": (client_ip, 12345),
        "server": ("testserver", 80),
    }

    async def receive():
        return {"type": "http.request", "body": b"", "more_body": False}

    return Request(scope, receive=receive)


def _middleware(fake_redis, requests: int = 2) -> RateLimitMiddleware:
    return RateLimitMiddleware(
        app=AsyncMock(),
        redis_client=lambda: fake_redis,
        requests=requests,
        window=60,
        include_paths=["/api/qraccess/verify/", "/api/qraccess/data/"],
    )


# ============================================================================
# Rate limiter primitives
# ============================================================================

def test_invalid_strategy(fake_redis):
    with pytest.raises(ValueError):
        RateLimiter(fake_redis, strategy="token_bucket_deluxe")


def test_sliding_window_trips_and_recovers(fake_redis, monkeypatch: pytest.MonkeyPatch):
    fake_time = FakeTime(1_000_000)
    monkeypatch.setattr("medichain.rate_limiter.time", fake_time)
    limiter = RateLimiter(fake_redis, requests=3, window=5, strategy="sliding_window")

    async def _run():
        for expected_remaining in (2, 1, 0):
            result = await limiter.check_rate_limit("ip:198.51.100.10")
            assert result["allowed"] is True
            assert result["remaining"] == expected_remaining
            fake_time.advance(1)

        with pytest.raises(RateLimitExceeded) as exc:
            await limiter.check_rate_limit("ip:198.51.100.10")
        assert exc.value.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert int(exc.value.headers["Retry-After"]) >= 1

        other = await limiter.check_rate_limit("ip:198.51.100.11")
        assert other["allowed"] is True

        fake_time.advance(5)
        recovered = await limiter.check_rate_limit("ip:198.51.100.10")
        assert recovered["remaining"] == limiter.requests - 1

    asyncio.run(_run())


def test_rejected_requests_do_not_extend_the_window(fake_redis, monkeypatch: pytest.MonkeyPatch):
    fake_time = FakeTime(2_000_000)
    monkeypatch.setattr("medichain.rate_limiter.time", fake_time)
    limiter = RateLimiter(fake_redis, requests=1, window=10)

    async def _run():
        await limiter.check_rate_limit("ip:a")
        for _ in range(5):
            with pytest.raises(RateLimitExceeded):
                await limiter.check_rate_limit("ip:a")
        assert len(fake_redis.sorted_sets["qr_rate_limit:sw:ip:a"]) == 1

    asyncio.run(_run())


def test_fixed_window_resets_on_next_slot(fake_redis, monkeypatch: pytest.MonkeyPatch):
    fake_time = FakeTime(3_000_000)
    monkeypatch.setattr("medichain.rate_limiter.time", fake_time)
    limiter = RateLimiter(fake_redis, requests=2, window=60, strategy="fixed_window")

    async def _run():
        assert (await limiter.check_rate_limit("ip:b"))["remaining"] == 1
        assert (await limiter.check_rate_limit("ip:b"))["remaining"] == 0
        with pytest.raises(RateLimitExceeded) as exc:
            await limiter.check_rate_limit("ip:b")
        assert exc.value.headers["Retry-After"] == "60"

        fake_time.advance(60)
        assert (await limiter.check_rate_limit("ip:b"))["allowed"] is True

    asyncio.run(_run())


@pytest.mark.parametrize("retry_after", [0, 1, 9])
def test_rate_limit_exceeded_headers(retry_after: int):
    exc = RateLimitExceeded(retry_after=retry_after, limit=10, window=60)
    assert exc.status_code == status.HTTP_429_TOO_MANY_REQUESTS
    assert exc.headers["Retry-After"] == str(retry_after)
    assert exc.headers["X-RateLimit-Limit"] == "10"


# ============================================================================
# Middleware
# ============================================================================

def test_middleware_keys_on_forwarded_ip_and_stamps_headers(fake_redis):
    middleware = _middleware(fake_redis)
    request = build_request("/api/qraccess/verify/abc", client_ip="10.0.0.1", forwarded_for="203.0.113.5")
    call_next = AsyncMock(return_value=Response(content=b"ok", status_code=200))

    response = asyncio.run(middleware.dispatch(request, call_next))

    assert response.headers["X-RateLimit-Limit"] == "2"
    assert response.headers["X-RateLimit-Remaining"] == "1"
    assert "qr_rate_limit:sw:ip:203.0.113.5" in fake_redis.sorted_sets


def test_middleware_skips_unguarded_paths(fake_redis):
    middleware = _middleware(fake_redis, requests=1)
    call_next = AsyncMock(return_value=Response(content=b"ok", status_code=200))

    for _ in range(3):
        response = asyncio.run(middleware.dispatch(build_request("/api/qraccess/active"), call_next))
        assert response.status_code == 200

    assert not fake_redis.sorted_sets
    assert call_next.await_count == 3


def test_middleware_throttles_without_calling_route(fake_redis, caplog: pytest.LogCaptureFixture):
    middleware = _middleware(fake_redis, requests=1)
    call_next = AsyncMock(return_value=Response(content=b"ok", status_code=200))

    asyncio.run(middleware.dispatch(build_request("/api/qraccess/data/secret-token/full", "192.0.2.5"), call_next))
    with caplog.at_level(logging.WARNING):
        response = asyncio.run(
            middleware.dispatch(build_request("/api/qraccess/data/secret-token/full", "192.0.2.5"), call_next)
        )

    assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
    assert int(response.headers["Retry-After"]) >= 1
    assert call_next.await_count == 1
    assert "Rate limit exceeded for ip:192.0.2.5" in caplog.text
    assert "secret-token" not in caplog.text


def test_middleware_allows_requests_when_redis_is_down(fake_redis):
    fake_redis.fail_with = RedisConnectionError("connection refused")
    middleware = _middleware(fake_redis, requests=1)
    call_next = AsyncMock(return_value=Response(content=b"ok", status_code=200))

    for _ in range(3):
        response = asyncio.run(middleware.dispatch(build_request("/api/qraccess/verify/abc"), call_next))
        assert response.status_code == 200
