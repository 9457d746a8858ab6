"""Fixed-window request limiter keyed by client identity.

Counts are kept per process; with several workers each enforces its own
budget.
"""

import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Tuple

# Stale windows are dropped once this many identities are tracked
_PRUNE_THRESHOLD = 10_000


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_after: int  # seconds until the current window closes


class FixedWindowRateLimiter:

    def __init__(self, limit: int, window_seconds: int = 60,
                 clock: Callable[[], float] = time.time):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, Tuple[int, int]] = {}  # identity -> (window index, count)

    def hit(self, identity: str) -> RateLimitDecision:
        """Record one request for ``identity`` and decide whether to admit it."""
        now = self._clock()
        window = int(now // self.window_seconds)
        reset_after = max(1, math.ceil((window + 1) * self.window_seconds - now))

        current_window, count = self._windows.get(identity, (window, 0))
        if current_window != window:
            count = 0
        count += 1
        self._windows[identity] = (window, count)

        if len(self._windows) > _PRUNE_THRESHOLD:
            self._prune(window)

        return RateLimitDecision(
            allowed=count <= self.limit,
            limit=self.limit,
            remaining=max(0, self.limit - count),
            reset_after=reset_after,
        )

    def _prune(self, window: int) -> None:
        stale = [k for k, (w, _) in self._windows.items() if w != window]
        for key in stale:
            del self._windows[key]
