# rate limit — per-ip fixed-window request limiting for every route
# counts live in process memory; a restart starts every window fresh

import logging
import math
import time
from typing import Callable

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import settings

logger = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = "Too many requests from this IP, please try again later."

# expired windows are swept once the table grows past this
PRUNE_THRESHOLD = 10_000


class FixedWindowLimiter:
    """at most max_requests per key in each window_seconds window"""

    def __init__(self, max_requests: int, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self._windows: dict[str, tuple[float, int]] = {}

    def hit(self, key: str) -> tuple[bool, int, float]:
        """count one request. returns (allowed, remaining, seconds until reset)"""
        now = self.clock()
        if len(self._windows) > PRUNE_THRESHOLD:
            self._prune(now)

        started, count = self._windows.get(key, (now, 0))
        if now - started >= self.window_seconds:
            started, count = now, 0
        count += 1
        self._windows[key] = (started, count)

        reset_in = started + self.window_seconds - now
        return count <= self.max_requests, max(0, self.max_requests - count), reset_in

    def reset(self):
        self._windows.clear()

    def _prune(self, now: float):
        expired = [k for k, (started, _) in self._windows.items() if now - started >= self.window_seconds]
        for key in expired:
            del self._windows[key]


# shared by the middleware for the life of the process
request_limiter = FixedWindowLimiter(
    max_requests=settings.RATE_LIMIT_REQUESTS,
    window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """rejects a client ip with 429 once it exceeds its window"""

    def __init__(self, app, limiter: FixedWindowLimiter = request_limiter):
        super().__init__(app)
        self.limiter = limiter

    async def dispatch(self, request: Request, call_next):
        if not settings.RATE_LIMIT_ENABLED:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        allowed, remaining, reset_in = self.limiter.hit(f"ip:{client_ip}")
        headers = {
            "X-RateLimit-Limit": str(self.limiter.max_requests),
            "X-RateLimit-Remaining": str(remaining),
            "X-RateLimit-Reset": str(math.ceil(reset_in)),
        }

        if not allowed:
            logger.warning(f"Rate limit exceeded for {client_ip} on {request.url.path}")
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"error": RATE_LIMIT_MESSAGE},
                headers={**headers, "Retry-After": str(math.ceil(reset_in))},
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response
