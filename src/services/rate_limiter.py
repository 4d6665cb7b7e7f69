from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable


@dataclass(frozen=True)
class RateLimitWindow:
    window_start: float
    call_count: int
    max_calls: int
    window_seconds: float


class FixedWindowRateLimiter:
    """Per-provider call counter over fixed windows.

    The window is reset lazily the first time it is observed to be stale.
    ``try_acquire`` never increments; callers invoke ``record_call`` once a
    provider call has actually succeeded, so cache hits cost nothing.
    """

    def __init__(
        self,
        *,
        max_calls: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_calls <= 0:
            msg = "max_calls must be > 0"
            raise ValueError(msg)
        if window_seconds <= 0:
            msg = "window_seconds must be > 0"
            raise ValueError(msg)

        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._window_start = clock()
        self._call_count = 0

    def try_acquire(self) -> bool:
        with self._lock:
            self._roll_window()
            return self._call_count < self.max_calls

    def record_call(self) -> None:
        with self._lock:
            self._roll_window()
            self._call_count += 1

    def remaining(self) -> int:
        with self._lock:
            self._roll_window()
            return max(0, self.max_calls - self._call_count)

    def snapshot(self) -> RateLimitWindow:
        with self._lock:
            self._roll_window()
            return RateLimitWindow(
                window_start=self._window_start,
                call_count=self._call_count,
                max_calls=self.max_calls,
                window_seconds=self.window_seconds,
            )

    def _roll_window(self) -> None:
        now = self._clock()
        if now - self._window_start >= self.window_seconds:
            self._window_start = now
            self._call_count = 0
