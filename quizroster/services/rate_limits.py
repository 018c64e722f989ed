from __future__ import annotations

import math
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, Optional, Protocol, Tuple

from quizroster.errors import RateLimited
from quizroster.logger import get_logger

_logger = get_logger("services.rate_limits")


@dataclass
class Window:
    count: int
    reset_at: float


class WindowStore(Protocol):
    def get(self, key: str) -> Optional[Window]: ...

    def put(self, key: str, window: Window) -> None: ...


class InMemoryWindowStore:
    """Process-local counters. Lost on restart, which only affects fairness."""

    def __init__(self) -> None:
        self._windows: Dict[str, Window] = {}

    def get(self, key: str) -> Optional[Window]:
        return self._windows.get(key)

    def put(self, key: str, window: Window) -> None:
        self._windows[key] = window

    def clear(self) -> None:
        self._windows.clear()


class FixedWindowRateLimiter:
    """At most ``max_requests`` hits per key per ``window_seconds``.

    Windows reset lazily: the first hit at or after ``reset_at`` opens a new
    window, so no background sweep is needed.
    """

    def __init__(
        self,
        *,
        max_requests: int = 10,
        window_seconds: int = 60,
        store: Optional[WindowStore] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_requests = max(1, max_requests)
        self._window_seconds = max(1, window_seconds)
        self._store: WindowStore = store if store is not None else InMemoryWindowStore()
        self._clock = clock
        self._lock = Lock()

    @property
    def max_requests(self) -> int:
        return self._max_requests

    def hit(self, key: str) -> Tuple[bool, int]:
        now = self._clock()
        with self._lock:
            window = self._store.get(key)
            if window is None or now >= window.reset_at:
                self._store.put(key, Window(count=1, reset_at=now + self._window_seconds))
                return True, 0
            if window.count >= self._max_requests:
                return False, max(1, math.ceil(window.reset_at - now))
            window.count += 1
            self._store.put(key, window)
            return True, 0

    def enforce(self, key: str) -> None:
        allowed, retry_after = self.hit(key)
        if not allowed:
            _logger.warning(
                "rate_limit.reject",
                "Rate limit exceeded",
                key=key,
                limit=self._max_requests,
                window_seconds=self._window_seconds,
                retry_after=retry_after,
            )
            raise RateLimited("Too many requests, please retry later", retry_after=retry_after)
