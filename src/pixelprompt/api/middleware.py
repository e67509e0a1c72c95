"""HTTP middleware for the PixelPrompt API.

Middleware
----------
SecurityHeadersMiddleware
    Adds a restrictive Content-Security-Policy plus the usual hardening
    headers to every response.
RequestLoggingMiddleware
    Logs method, path, status, duration, and client address for every
    request (WARNING for status >= 400).
RateLimitMiddleware
    Per-address fixed-window quota around all or part of the app, backed by
    :class:`FixedWindowRateLimiter`.

Rate limiting is a wrapper around the ASGI app, independent of the route
handlers and of the retry wrapper used for outbound calls.  Two instances
are installed: a general quota on every route and a tighter quota on
``POST /api/image/generate``.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

logger = logging.getLogger(__name__)

CONTENT_SECURITY_POLICY = "; ".join(
    [
        "default-src 'self'",
        "style-src 'self' 'unsafe-inline'",
        "script-src 'self'",
        "img-src 'self' data: https:",
        "connect-src 'self'",
        "font-src 'self'",
        "object-src 'none'",
        "media-src 'self'",
        "frame-src 'none'",
    ]
)

SECURITY_HEADERS: dict[str, str] = {
    "Content-Security-Policy": CONTENT_SECURITY_POLICY,
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "X-DNS-Prefetch-Control": "off",
}

GENERAL_RATE_LIMIT_MESSAGE = "Too many requests from this IP, please try again later."
GENERATION_RATE_LIMIT_MESSAGE = "Too many image generation requests, please wait before trying again."


def client_address(request: Request) -> str:
    """Source address used for logging and rate limiting."""
    return request.client.host if request.client else "unknown"


# ---------------------------------------------------------------------------
# Security headers and request logging.
# ---------------------------------------------------------------------------


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        if "x-powered-by" in response.headers:
            del response.headers["x-powered-by"]
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log one line per request once the response status is known."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000

        level = logging.WARNING if response.status_code >= 400 else logging.INFO
        logger.log(
            level,
            f"{request.method} {request.url.path} {response.status_code} "
            f"{duration_ms:.1f}ms ip={client_address(request)}",
        )
        return response


# ---------------------------------------------------------------------------
# Rate limiting.
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one counted request.

    Attributes:
        allowed: Whether the request fits in the current window.
        limit: Requests allowed per window.
        remaining: Requests left in the current window.
        reset_seconds: Seconds until the current window ends.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_seconds: int

    def headers(self) -> dict[str, str]:
        return {
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": str(self.remaining),
            "RateLimit-Reset": str(self.reset_seconds),
        }


class FixedWindowRateLimiter:
    """In-memory fixed-window counter keyed by client address.

    The first request from a key opens a window of ``window_ms``
    milliseconds; every request in that window increments the counter, and
    requests beyond ``limit`` are refused until the window expires.

    Args:
        limit: Maximum requests per window.
        window_ms: Window length in milliseconds.
        clock: Monotonic clock in seconds.  Tests pass a fake.
    """

    def __init__(self, limit: int, window_ms: int, *, clock: Callable[[], float] = time.monotonic) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window_ms < 1:
            raise ValueError("window_ms must be at least 1")
        self.limit = limit
        self.window = window_ms / 1000
        self._clock = clock
        self._windows: dict[str, tuple[float, int]] = {}

    def hit(self, key: str) -> RateLimitDecision:
        """Count one request for ``key`` and decide whether it is allowed."""
        now = self._clock()
        self._prune(now)

        started, count = self._windows.get(key, (now, 0))
        count += 1
        self._windows[key] = (started, count)

        reset = max(0, math.ceil(started + self.window - now))
        return RateLimitDecision(
            allowed=count <= self.limit,
            limit=self.limit,
            remaining=max(0, self.limit - count),
            reset_seconds=reset,
        )

    def reset(self, key: str | None = None) -> None:
        """Forget one key, or every key when ``key`` is ``None``."""
        if key is None:
            self._windows.clear()
        else:
            self._windows.pop(key, None)

    def _prune(self, now: float) -> None:
        expired = [key for key, (started, _) in self._windows.items() if now - started >= self.window]
        for key in expired:
            del self._windows[key]


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Apply a :class:`FixedWindowRateLimiter` to matching requests.

    Args:
        app: Wrapped ASGI app.
        limiter: Counter shared by all matching requests.
        message: Message returned in the 429 envelope.
        path: Only count requests to this exact path (all paths if ``None``).
        methods: Only count these HTTP methods (all methods if ``None``).
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        limiter: FixedWindowRateLimiter,
        message: str,
        path: str | None = None,
        methods: Iterable[str] | None = None,
    ) -> None:
        super().__init__(app)
        self.limiter = limiter
        self.message = message
        self.path = path
        self.methods = {method.upper() for method in methods} if methods else None

    def _applies_to(self, request: Request) -> bool:
        if self.path is not None and request.url.path != self.path:
            return False
        if self.methods is not None and request.method not in self.methods:
            return False
        return True

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self._applies_to(request):
            return await call_next(request)

        address = client_address(request)
        decision = self.limiter.hit(address)
        if not decision.allowed:
            logger.warning(f"Rate limit exceeded for {address} on {request.method} {request.url.path}")
            return JSONResponse(
                status_code=429,
                content={"success": False, "message": self.message, "code": 429},
                headers=decision.headers(),
            )

        response = await call_next(request)
        response.headers.update(decision.headers())
        return response
