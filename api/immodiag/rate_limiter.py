import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, List

from .config import RATE_MAX_CALLS, RATE_MIN_INTERVAL_SECONDS, RATE_WINDOW_SECONDS


class RateLimiter:
    """
    Per-process outbound throttle: at most one call per ``min_interval`` seconds
    and at most ``max_calls`` calls in any trailing ``window`` seconds.

    ``admit()`` never fails, it only blocks. The lock is held while waiting so
    admissions are strictly serialized across worker threads.
    """

    def __init__(self,
                 min_interval: float = RATE_MIN_INTERVAL_SECONDS,
                 max_calls: int = RATE_MAX_CALLS,
                 window: float = RATE_WINDOW_SECONDS,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.min_interval = min_interval
        self.max_calls = max_calls
        self.window = window
        self._clock = clock
        self._sleep = sleep
        self._calls: Deque[float] = deque()
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        cutoff = now - self.window
        while self._calls and self._calls[0] <= cutoff:
            self._calls.popleft()

    def _required_wait(self, now: float) -> float:
        wait = 0.0
        if len(self._calls) >= self.max_calls:
            wait = self._calls[0] + self.window - now
        if self._calls:
            wait = max(wait, self._calls[-1] + self.min_interval - now)
        return wait

    def admit(self) -> float:
        """Block until the next outbound call may go out. Returns the seconds waited."""
        waited = 0.0
        with self._lock:
            while True:
                now = self._clock()
                self._prune(now)
                wait = self._required_wait(now)
                if wait <= 0:
                    break
                logging.info("Rate limiter holding outbound call for %.2fs", wait)
                self._sleep(wait)
                waited += wait
            self._calls.append(now)
        return waited

    def recent_calls(self) -> List[float]:
        with self._lock:
            self._prune(self._clock())
            return list(self._calls)
