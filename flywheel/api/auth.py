from __future__ import annotations

import hmac
import logging
import time
from collections import deque
from typing import Awaitable, Callable

from fastapi import HTTPException, Request, status

from flywheel.common import log_event


class SlidingWindowRateLimiter:
    """In-memory per-client request log over a sliding time window."""

    def __init__(
        self,
        *,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max(1, max_requests)
        self.window_seconds = max(0.001, window_seconds)
        self._clock = clock
        self._requests: dict[str, deque[float]] = {}
        self._last_sweep = clock()

    @property
    def tracked_clients(self) -> int:
        return len(self._requests)

    def _sweep(self, window_start: float) -> None:
        idle = [key for key, timestamps in self._requests.items() if not timestamps or timestamps[-1] <= window_start]
        for key in idle:
            del self._requests[key]

    def hit(self, client_key: str) -> bool:
        now = self._clock()
        window_start = now - self.window_seconds
        if now - self._last_sweep >= self.window_seconds:
            self._sweep(window_start)
            self._last_sweep = now
        timestamps = self._requests.setdefault(client_key, deque())
        while timestamps and timestamps[0] <= window_start:
            timestamps.popleft()

        if len(timestamps) >= self.max_requests:
            return False
        timestamps.append(now)
        return True

    def retry_after_seconds(self, client_key: str) -> float:
        timestamps = self._requests.get(client_key)
        if not timestamps:
            return 0.0
        return max(0.0, timestamps[0] + self.window_seconds - self._clock())


class BearerTokenAuth:
    def __init__(self, token: str) -> None:
        self._token = token.strip()

    @property
    def configured(self) -> bool:
        return bool(self._token)

    def verify(self, authorization: str | None) -> bool:
        if not self._token or not authorization:
            return False
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() != "bearer":
            return False
        return hmac.compare_digest(credentials.strip().encode("utf-8"), self._token.encode("utf-8"))


def client_key(request: Request) -> str:
    host = request.client.host if request.client else "unknown"
    return f"ip:{host}"


def admin_guard(
    *,
    auth: BearerTokenAuth,
    limiter: SlidingWindowRateLimiter,
    logger: logging.Logger,
) -> Callable[[Request], Awaitable[None]]:
    async def require_admin(request: Request) -> None:
        key = client_key(request)
        if not limiter.hit(key):
            log_event(
                logger,
                level="warning",
                event="admin_rate_limited",
                message="Admin rate limit exceeded",
                client_key=key,
                path=request.url.path,
            )
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="rate limit exceeded",
                headers={"Retry-After": str(int(limiter.retry_after_seconds(key)) + 1)},
            )

        if not auth.verify(request.headers.get("authorization")):
            log_event(
                logger,
                level="warning",
                event="admin_auth_failed",
                message="Admin authentication failed",
                client_key=key,
                path=request.url.path,
            )
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="unauthorized",
                headers={"WWW-Authenticate": "Bearer"},
            )

    return require_admin
