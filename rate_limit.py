"""
Fixed-window request limiting, used as a FastAPI dependency.

Counters live in process memory, so each worker process limits on its own.
"""

import threading
import time
from typing import Callable, Dict, Tuple

from fastapi import HTTPException, Request


class RateLimiter:
    def __init__(self, max_requests: int, window_seconds: int, message: str,
                 enabled: bool = True, clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.message = message
        self.enabled = enabled
        self.clock = clock
        self._hits: Dict[str, Tuple[float, int]] = {}
        self._last_sweep = clock()
        self._lock = threading.Lock()

    def hit(self, key: str) -> bool:
        """Count one request for key; False once the window's budget is spent."""
        now = self.clock()
        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(now)
            started, count = self._hits.get(key, (now, 0))
            if now - started >= self.window_seconds:
                started, count = now, 0
            count += 1
            self._hits[key] = (started, count)
            return count <= self.max_requests

    def _sweep(self, now: float) -> None:
        # caller holds the lock
        expired = [k for k, (started, _) in self._hits.items() if now - started >= self.window_seconds]
        for k in expired:
            del self._hits[k]
        self._last_sweep = now

    def __call__(self, request: Request) -> None:
        if not self.enabled:
            return
        key = request.client.host if request.client else "unknown"
        if not self.hit(key):
            raise HTTPException(status_code=429, detail=self.message)
