"""
ratelimit.py – API call-rate bookkeeping.

Poloniex limits requests per second separately for four categories:

    riPub    resource-intensive public calls
    nriPub   non-resource-intensive public calls
    riPriv   resource-intensive private calls
    nriPriv  non-resource-intensive private calls

The SDK only *reports* how many calls of each category were made within
the last window; it never delays or rejects a request.
"""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Mapping
from enum import Enum, unique
from typing import Callable, Optional


@unique
class CallCategory(str, Enum):
    RI_PUB   = "riPub"
    NRI_PUB  = "nriPub"
    RI_PRIV  = "riPriv"
    NRI_PRIV = "nriPriv"


# Requests per second published by the exchange
DEFAULT_LIMITS: dict[CallCategory, int] = {
    CallCategory.RI_PUB:   10,
    CallCategory.NRI_PUB:  200,
    CallCategory.RI_PRIV:  10,
    CallCategory.NRI_PRIV: 50,
}


class CallRateTracker:
    """
    Sliding-window call counter.

    Parameters
    ----------
    window : window length in seconds
    limits : per-category limits reported by info()
    clock  : monotonic clock, injectable for tests
    """

    def __init__(
        self,
        window: float = 1.0,
        limits: Optional[Mapping[CallCategory, int]] = None,
        clock:  Callable[[], float] = time.monotonic,
    ) -> None:
        self._window = window
        self._limits = dict(DEFAULT_LIMITS if limits is None else limits)
        self._clock  = clock
        self._calls: dict[CallCategory, deque[float]] = {c: deque() for c in CallCategory}

    def record(self, category: CallCategory) -> int:
        """Record one call and return the count inside the current window."""
        now   = self._clock()
        calls = self._calls[category]
        calls.append(now)
        self._prune(calls, now)
        return len(calls)

    def count(self, category: CallCategory) -> int:
        calls = self._calls[category]
        self._prune(calls, self._clock())
        return len(calls)

    def snapshot(self) -> dict[str, int]:
        """Counts keyed by the exchange's category names."""
        return {category.value: self.count(category) for category in CallCategory}

    def info(self, category: CallCategory) -> tuple[str, int, int]:
        """(category name, calls in window, limit per window)."""
        return category.value, self.count(category), self._limits.get(category, 0)

    def reset(self) -> None:
        for calls in self._calls.values():
            calls.clear()

    def _prune(self, calls: deque[float], now: float) -> None:
        cutoff = now - self._window
        while calls and calls[0] <= cutoff:
            calls.popleft()
