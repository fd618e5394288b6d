from __future__ import annotations

from collections import deque
from time import monotonic
from typing import Callable, Deque, Dict

from fastapi import HTTPException, Request, status

from monke.core.errors import error_response


class RateLimiter:
    """Sliding-window limiter keyed by client address."""

    def __init__(self, limit: int, window: float, clock: Callable[[], float] = monotonic) -> None:
        self.limit = limit
        self.window = window
        self._clock = clock
        self.calls: Dict[str, Deque[float]] = {}

    def hit(self, key: str) -> bool:
        """Record a call for ``key``; return False once the window is full."""
        now = self._clock()
        self._prune(now)
        calls = self.calls.setdefault(key, deque())
        if len(calls) >= self.limit:
            return False
        calls.append(now)
        return True

    def retry_after(self, key: str) -> int:
        calls = self.calls.get(key)
        if not calls:
            return 0
        return max(0, int(self.window - (self._clock() - calls[0])) + 1)

    def reset(self) -> None:
        self.calls.clear()

    def _prune(self, now: float) -> None:
        """Drop expired calls, and clients left with none."""
        for key in list(self.calls):
            calls = self.calls[key]
            while calls and now - calls[0] >= self.window:
                calls.popleft()
            if not calls:
                del self.calls[key]

    async def __call__(self, request: Request) -> None:
        key = request.client.host if request.client else "?"
        if not self.hit(key):
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=error_response(
                    "rate_limited", "Too many text-to-speech requests, please try again later."
                ),
                headers={"Retry-After": str(self.retry_after(key))},
            )
