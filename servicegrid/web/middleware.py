"""ASGI middleware: request ID injection and per-endpoint rate limiting."""

from __future__ import annotations

import math
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response

logger = structlog.get_logger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Adds a unique X-Request-ID header to every response."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id", str(uuid.uuid4()))
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["x-request-id"] = request_id
        return response


@dataclass
class _Window:
    count: int
    reset_at: float
    violations: int = 0


class RateLimitMiddleware(BaseHTTPMiddleware):
    """In-memory fixed-window rate limiter keyed by client IP and endpoint.

    Each ``ip:path`` gets `max_requests` per `window_seconds`. A client that
    is refused `max_violations` times in one endpoint is blocked on every
    endpoint for `block_seconds`.
    """

    def __init__(
        self,
        app: object,
        max_requests: int = 60,
        window_seconds: int = 60,
        max_violations: int = 5,
        block_seconds: int = 300,
        prefix: str = "/functions/",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(app)  # type: ignore[arg-type]
        self._max_requests = max_requests
        self._window = window_seconds
        self._max_violations = max_violations
        self._block_seconds = block_seconds
        self._prefix = prefix
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._blocked: dict[str, float] = {}

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if request.method == "OPTIONS" or not path.startswith(self._prefix):
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        retry_after = self._check(client_ip, path)
        if retry_after is not None:
            return JSONResponse(
                {"error": "Rate limit exceeded. Try again later."},
                status_code=429,
                headers={"Retry-After": str(max(1, math.ceil(retry_after)))},
            )
        return await call_next(request)

    def _check(self, ip: str, path: str) -> float | None:
        """Count one request; returns seconds to wait when refused."""
        now = self._clock()
        blocked_until = self._blocked.get(ip)
        if blocked_until is not None:
            if now < blocked_until:
                return blocked_until - now
            del self._blocked[ip]

        key = f"{ip}:{path}"
        window = self._windows.get(key)
        if window is None or now >= window.reset_at:
            violations = window.violations if window else 0
            self._windows[key] = _Window(count=1, reset_at=now + self._window, violations=violations)
            return None

        if window.count >= self._max_requests:
            window.violations += 1
            if window.violations >= self._max_violations:
                self._blocked[ip] = now + self._block_seconds
                logger.error("rate_limit_ip_blocked", ip=ip, violations=window.violations)
                return float(self._block_seconds)
            logger.warning("rate_limit_exceeded", ip=ip, path=path)
            return window.reset_at - now

        window.count += 1
        return None
