# helpdesk/core/middleware.py
from __future__ import annotations

import math
import threading
import time

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.datastructures import Headers
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from helpdesk.core.errors import error_body, request_too_large_response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        logger.info("{} {}", request.method, request.url.path)
        return await call_next(request)


class BodySizeLimitMiddleware:
    """Reject request bodies larger than ``max_bytes`` with 413.

    The declared Content-Length is checked up front; chunked bodies are
    counted as they are received.
    """

    def __init__(self, app: ASGIApp, max_bytes: int):
        self.app = app
        self.max_bytes = max_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        declared = Headers(scope=scope).get("content-length")
        if declared is not None:
            try:
                too_large = int(declared) > self.max_bytes
            except ValueError:
                response = JSONResponse(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    content=error_body("Invalid Content-Length header"),
                )
                await response(scope, receive, send)
                return
            if too_large:
                logger.warning("Rejected {} {}: body of {} bytes", scope["method"], scope["path"], declared)
                await request_too_large_response()(scope, receive, send)
                return

        received = 0
        response_started = False

        async def limited_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_bytes:
                    logger.warning("Rejected {} {}: body over {} bytes", scope["method"], scope["path"], self.max_bytes)
                    # FastAPI lets HTTPException raised while reading the body through to its handlers
                    raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE)
            return message

        async def tracking_send(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, limited_receive, tracking_send)
        except HTTPException as exc:
            if exc.status_code != status.HTTP_413_REQUEST_ENTITY_TOO_LARGE or response_started:
                raise
            await request_too_large_response()(scope, receive, send)


class RateLimiter:
    """Fixed window request counter keyed by client address."""

    def __init__(self, max_requests: int, window_seconds: int, clock=time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self._windows: dict[str, tuple[float, int]] = {}
        self._lock = threading.Lock()

    def hit(self, key: str) -> float | None:
        """Count one request; return seconds to wait when over the limit."""
        now = self.clock()
        with self._lock:
            started, count = self._windows.get(key, (now, 0))
            if now - started >= self.window_seconds:
                started, count = now, 0
            if count >= self.max_requests:
                return started + self.window_seconds - now
            self._windows[key] = (started, count + 1)
            self._evict(now)
        return None

    def _evict(self, now: float) -> None:
        expired = [k for k, (started, _) in self._windows.items() if now - started >= self.window_seconds]
        for key in expired:
            del self._windows[key]


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, limiter: RateLimiter, path_prefix: str = ""):
        super().__init__(app)
        self.limiter = limiter
        self.path_prefix = path_prefix

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not request.url.path.startswith(self.path_prefix):
            return await call_next(request)

        client = request.client.host if request.client else "unknown"
        retry_after = self.limiter.hit(client)
        if retry_after is not None:
            wait = max(1, math.ceil(retry_after))
            logger.warning("Rate limit exceeded for {}", client)
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content=error_body(
                    "Too many requests from this IP, please try again later.",
                    [f"Retry after {wait} seconds"],
                ),
                headers={"Retry-After": str(wait)},
            )
        return await call_next(request)
