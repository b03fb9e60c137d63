"""Rate limiting middleware for API endpoints."""

import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from productgen.config import settings

# Paths that call the AI provider synchronously get the stricter limit
AI_PATHS = frozenset([
    "/api/v1/generate/",
])


@dataclass
class RateLimitBucket:
    """Sliding window of request timestamps."""
    requests: list[float] = field(default_factory=list)

    def is_allowed(self, max_requests: int, window_seconds: int) -> bool:
        """Check if request is allowed and record it."""
        now = time.time()
        cutoff = now - window_seconds
        self.requests = [t for t in self.requests if t > cutoff]

        if len(self.requests) >= max_requests:
            return False

        self.requests.append(now)
        return True

    def remaining(self, max_requests: int) -> int:
        return max(0, max_requests - len(self.requests))

    def time_until_reset(self, window_seconds: int) -> float:
        """Get seconds until oldest request expires."""
        if not self.requests:
            return 0
        return max(0, self.requests[0] + window_seconds - time.time())


class RateLimiter:
    """In-memory rate limiter, one bucket per client and limit class."""

    def __init__(self):
        self.buckets: dict[str, RateLimitBucket] = defaultdict(RateLimitBucket)

    def check(self, key: str, max_requests: int, window_seconds: int) -> tuple[bool, float, int]:
        """
        Record a request.

        Returns:
            Tuple of (is_allowed, seconds_until_reset, remaining)
        """
        bucket = self.buckets[key]
        allowed = bucket.is_allowed(max_requests, window_seconds)
        return allowed, bucket.time_until_reset(window_seconds), bucket.remaining(max_requests)

    def reset(self) -> None:
        self.buckets.clear()


rate_limiter = RateLimiter()


def get_client_ip(request: Request) -> str:
    """Get client IP address from request."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def limits_for(path: str) -> tuple[str, int, int]:
    """Limit class, max requests and window for a request path."""
    if any(path.startswith(p) for p in AI_PATHS):
        return "generate", settings.ai_rate_limit_requests, settings.ai_rate_limit_window
    return "api", settings.rate_limit_requests, settings.rate_limit_window


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Applies per-client rate limits to API requests."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if not settings.rate_limit_enabled or not path.startswith("/api/"):
            return await call_next(request)

        limit_class, max_requests, window = limits_for(path)
        key = f"{get_client_ip(request)}:{limit_class}"
        allowed, reset_time, remaining = rate_limiter.check(key, max_requests, window)

        if not allowed:
            return JSONResponse(
                status_code=429,
                content={
                    "detail": "Rate limit exceeded",
                    "code": "rate_limited",
                    "retry_after": round(reset_time, 1),
                },
                headers={
                    "Retry-After": str(int(reset_time) + 1),
                    "X-RateLimit-Limit": str(max_requests),
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(max_requests)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response
