"""Per-client fixed window rate limiting backed by Redis counters."""

import time
from typing import Any

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from learnhub.redis_client import count_hit

logger = structlog.get_logger(__name__)

# Liveness checks and Daraja's payment callbacks are never throttled
EXEMPT_PATHS = frozenset({"/health", "/ready", "/api/v1/payments/mpesa/callback"})


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Allow ``requests_per_window`` requests per client IP in each window.

    Without Redis every request passes and no rate-limit headers are set.
    """

    def __init__(self, app: Any, requests_per_window: int = 100, window_seconds: int = 60) -> None:  # noqa: ANN401
        super().__init__(app)
        self.requests_per_window = requests_per_window
        self.window_seconds = window_seconds

    def window_key(self, request: Request) -> str:
        client_ip = request.client.host if request.client else "unknown"
        return f"ratelimit:{client_ip}:{int(time.time()) // self.window_seconds}"

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        hits = await count_hit(self.window_key(request), self.window_seconds + 1)
        if hits is None:
            return await call_next(request)

        limit = str(self.requests_per_window)
        if hits > self.requests_per_window:
            logger.warning("rate_limited", path=request.url.path, hits=hits)
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded. Try again later."},
                headers={
                    "Retry-After": str(self.window_seconds),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Limit": limit,
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Remaining"] = str(self.requests_per_window - hits)
        response.headers["X-RateLimit-Limit"] = limit
        return response
