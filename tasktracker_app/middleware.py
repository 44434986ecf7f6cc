"""ASGI middleware for request logging, per-client rate limiting and security headers."""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING, Callable, Iterable

from fastapi.responses import JSONResponse
from starlette.datastructures import MutableHeaders

from . import schemas
from .errors import RateLimitError

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger("tasktracker_app.requests")


class RequestLoggingMiddleware:
    """Log one line per HTTP request: method, path, status and duration."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        started = time.perf_counter()
        status = {"code": 500}

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                status["code"] = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.info(
                "%s %s %s %.1fms",
                scope.get("method", "-"),
                scope.get("path", ""),
                status["code"],
                elapsed_ms,
            )


class FixedWindowCounter:
    """Request counts per key, reset every ``window_seconds``."""

    _PRUNE_THRESHOLD = 10_000

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: dict[str, tuple[float, int]] = {}

    def hit(self, key: str) -> tuple[bool, int, float]:
        """Count one request for ``key``; return (allowed, remaining, seconds until reset)."""
        now = self._clock()
        with self._lock:
            start, count = self._windows.get(key, (now, 0))
            if now - start >= self.window_seconds:
                start, count = now, 0
            count += 1
            self._windows[key] = (start, count)
            if len(self._windows) > self._PRUNE_THRESHOLD:
                self._prune(now)
        reset = max(0.0, self.window_seconds - (now - start))
        return count <= self.max_requests, max(0, self.max_requests - count), reset

    def _prune(self, now: float) -> None:
        stale = [k for k, (start, _) in self._windows.items() if now - start >= self.window_seconds]
        for k in stale:
            del self._windows[k]


class RateLimitMiddleware:
    """
    Reject clients that exceed ``max_requests`` per window with 429.

    Clients are keyed by remote address. ``max_requests == 0`` disables the
    limiter. Every limited response carries RateLimit-* headers.
    """

    def __init__(
        self,
        app: ASGIApp,
        max_requests: int,
        window_seconds: int,
        exempt_paths: Iterable[str] = ("/health",),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.app = app
        self.counter = FixedWindowCounter(max_requests, window_seconds, clock=clock)
        self.exempt_paths = frozenset(exempt_paths)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if (
            scope["type"] != "http"
            or self.counter.max_requests <= 0
            or scope.get("path") in self.exempt_paths
        ):
            await self.app(scope, receive, send)
            return

        client = scope.get("client")
        key = client[0] if client else "unknown"
        allowed, remaining, reset = self.counter.hit(key)
        rate_headers = {
            "RateLimit-Limit": str(self.counter.max_requests),
            "RateLimit-Remaining": str(remaining),
            "RateLimit-Reset": str(int(reset + 0.999)),
        }

        if not allowed:
            logger.warning("rate limit exceeded for %s", key)
            err = RateLimitError()
            body = schemas.ErrorEnvelope(
                error=err.message,
                code=err.code,
                path=scope.get("path"),
                method=scope.get("method"),
            )
            response = JSONResponse(
                status_code=err.status_code,
                content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
                headers={**rate_headers, "Retry-After": rate_headers["RateLimit-Reset"]},
            )
            await response(scope, receive, send)
            return

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for name, value in rate_headers.items():
                    headers[name] = value
            await send(message)

        await self.app(scope, receive, send_with_headers)


SECURITY_HEADERS = {
    "Content-Security-Policy": (
        "default-src 'self'; style-src 'self' 'unsafe-inline'; script-src 'self'; "
        "img-src 'self' data: https:"
    ),
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Origin-Agent-Cluster": "?1",
    "Referrer-Policy": "no-referrer",
    "X-Content-Type-Options": "nosniff",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Frame-Options": "SAMEORIGIN",
    "X-Permitted-Cross-Domain-Policies": "none",
    "X-XSS-Protection": "0",
}


class SecurityHeadersMiddleware:
    """Add browser hardening headers to every HTTP response.

    Headers already set by the route are left alone.
    """

    def __init__(self, app: ASGIApp, headers: dict[str, str] | None = None) -> None:
        self.app = app
        self.headers = dict(SECURITY_HEADERS if headers is None else headers)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for name, value in self.headers.items():
                    headers.setdefault(name, value)
            await send(message)

        await self.app(scope, receive, send_with_headers)
