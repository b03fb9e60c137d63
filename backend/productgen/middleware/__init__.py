"""Middleware modules for productgen."""

from productgen.middleware.rate_limit import RateLimitMiddleware, rate_limiter

__all__ = [
    "RateLimitMiddleware",
    "rate_limiter",
]
