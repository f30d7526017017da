from __future__ import annotations

import math
import threading
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from .constants import LOGGER

EXEMPT_PATHS = {"/health"}
# Payment session ids travel in the query string of /success.
UNLOGGED_PATHS = {"/success"}


class FixedWindowLimiter:
    def __init__(self, limit: int, window_seconds: float, *, clock=time.monotonic) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: dict[str, tuple[float, int]] = {}

    def hit(self, key: str) -> float | None:
        """Count one request. Returns seconds to wait when over the limit."""
        now = self._clock()
        with self._lock:
            started, count = self._windows.get(key, (now, 0))
            if now - started >= self.window_seconds:
                started, count = now, 0
            if count >= self.limit:
                return self.window_seconds - (now - started)
            self._windows[key] = (started, count + 1)
            if len(self._windows) > 10_000:
                self._drop_stale(now)
        return None

    def _drop_stale(self, now: float) -> None:
        stale = [
            key
            for key, (started, _) in self._windows.items()
            if now - started >= self.window_seconds
        ]
        for key in stale:
            del self._windows[key]


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, *, limiter: FixedWindowLimiter) -> None:
        super().__init__(app)
        self.limiter = limiter

    async def dispatch(self, request, call_next):
        if request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        client_key = request.client.host if request.client else "unknown"
        wait_seconds = self.limiter.hit(client_key)
        if wait_seconds is not None:
            LOGGER.warning("Rate limit exceeded client=%s path=%s", client_key, request.url.path)
            return JSONResponse(
                {"error": "rate_limited", "error_description": "Too many requests."},
                status_code=429,
                headers={"Retry-After": str(max(1, math.ceil(wait_seconds)))},
            )
        return await call_next(request)


class RequestLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        if request.url.path not in UNLOGGED_PATHS:
            LOGGER.info(
                "%s %s -> %s (%.1f ms)",
                request.method,
                request.url.path,
                response.status_code,
                (time.perf_counter() - started) * 1000,
            )
        return response
