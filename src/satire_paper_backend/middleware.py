from __future__ import annotations

import secrets
import time
from typing import Callable, Dict, Iterable, Optional, Sequence, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response


class RateLimiter:
    """
    Simple in-memory rate limiter using a fixed window algorithm.
    Tracks requests per client address within a time window.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        message: str = "Too many requests, please try again later",
        clock: Callable[[], float] = time.time,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.message = message
        self._clock = clock
        # identifier -> (count, window_start_time)
        self.requests: Dict[str, Tuple[int, float]] = {}

    def is_allowed(self, identifier: str) -> bool:
        now = self._clock()
        count, start_time = self.requests.get(identifier, (0, now))

        if now - start_time > self.window_seconds:
            # New window
            self.requests[identifier] = (1, now)
            return True

        if count >= self.max_requests:
            return False

        self.requests[identifier] = (count + 1, start_time)
        return True

    def cleanup(self) -> None:
        """Cleanup old entries to prevent memory leak"""
        now = self._clock()
        keys_to_delete = [k for k, v in self.requests.items() if now - v[1] > self.window_seconds]
        for k in keys_to_delete:
            del self.requests[k]


def client_identifier(request: Request, trusted_hops: int = 1) -> str:
    """
    Address of the client as seen by the outermost trusted proxy.

    Each trusted proxy appends the address it received the request from to
    X-Forwarded-For, so entries are read from the right. Anything further
    left was written by the client and is ignored. With ``trusted_hops=0``
    the socket peer is used.
    """
    peer = request.client.host if request.client else "unknown"
    if trusted_hops <= 0:
        return peer

    forwarded = request.headers.get("x-forwarded-for", "")
    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    if not hops:
        return peer
    return hops[max(len(hops) - trusted_hops, 0)]


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Apply a chain of rate limiters to selected routes.

    Limiters are checked in order; the first one that rejects a request
    answers 429 and later limiters do not count it.
    """

    def __init__(
        self,
        app,
        limiters: Sequence[RateLimiter],
        paths: Iterable[str],
        methods: Iterable[str] = ("POST",),
        trusted_hops: int = 1,
    ) -> None:
        super().__init__(app)
        self.trusted_hops = trusted_hops
        self.limiters = list(limiters)
        self.paths = set(paths)
        self.methods = {method.upper() for method in methods}

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in self.paths and request.method in self.methods:
            identifier = client_identifier(request, self.trusted_hops)
            for limiter in self.limiters:
                limiter.cleanup()
                if not limiter.is_allowed(identifier):
                    return JSONResponse(status_code=429, content={"error": limiter.message})
        return await call_next(request)


def has_bearer_token(request: Request, expected: Optional[str]) -> bool:
    """Check the Authorization header against ``Bearer <expected>``."""
    if not expected:
        return False
    header = request.headers.get("authorization", "")
    return secrets.compare_digest(header.encode(), f"Bearer {expected}".encode())
