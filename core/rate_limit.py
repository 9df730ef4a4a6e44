"""
Rate Limiter

Tracks the weight consumed against each exchange quota and tells callers how
long to wait before sending a request. The limiter never sleeps itself:
``reserve()`` returns a wait in milliseconds and the adapter suspends, then
reserves again (see ExchangeInterface.check_limits).

Window rules (per limit key):
    - window elapsed since its start: weight := requested weight * multiplier,
      start := now (floored to the window boundary when aligned), skew := 0,
      no wait
    - otherwise the weight accumulates; over the ceiling the caller waits for
      the rest of the window plus a skew that grows by ``skew_step`` on every
      overflow, so queued callers do not all wake at the same instant
    - a non-overflowing reservation resets the skew
    - while a ban deadline is in the future the caller waits until it passes

Every read-modify-write runs under a KeyedMutex key named after the limiter.

Usage:
    limiter = RateLimiter("hyperliquid", {"weight": LimitWindow(1200, 60_000, multiplier=1.2)})
    wait = await limiter.reserve("weight", 20)
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from core.logging import get_logger
from core.mutex import KeyedMutex
from core.schemas import UsageItem
from core.utils.time import floor_to_window, now_ms

logger = get_logger(__name__)


@dataclass(frozen=True)
class LimitWindow:
    """
    Quota of one limit type.

    Attributes:
        ceiling: Weight allowed per window
        window: Window length in milliseconds
        multiplier: Safety factor applied to every reserved weight
        align: Floor window starts to multiples of ``window`` (fixed windows)
    """

    ceiling: float
    window: int
    multiplier: float = 1.0
    align: bool = True


@dataclass
class LimitState:
    weight: float = 0.0
    window_start: Optional[int] = None
    skew: int = 0
    banned_until: int = 0


class RateLimiter:
    """
    Weight-based limiter for one exchange (or one market of an exchange).

    Args:
        name: Limiter name, used as mutex key and in log lines
        windows: Limit key -> LimitWindow
        clock: Returns the current time in epoch milliseconds
        mutex: Shared KeyedMutex (a private one is created when omitted)
        aggregate_usage: Report usage as one "usage" item summing all keys
        skew_step: Milliseconds added to the skew on every overflow
        usage_keys: Limit keys reported by get_usage (all keys when omitted)
    """

    def __init__(
        self,
        name: str,
        windows: Dict[str, LimitWindow],
        clock: Callable[[], int] = now_ms,
        mutex: Optional[KeyedMutex] = None,
        aggregate_usage: bool = False,
        skew_step: int = 1,
        usage_keys: Optional[List[str]] = None
    ):
        if not windows:
            raise ValueError(f"Limiter {name} needs at least one limit window")
        self.name = name
        self.windows = dict(windows)
        self.clock = clock
        self.mutex = mutex or KeyedMutex()
        self.aggregate_usage = aggregate_usage
        self.skew_step = skew_step
        self.usage_keys = list(usage_keys) if usage_keys else list(self.windows)
        self._states: Dict[str, LimitState] = {key: LimitState() for key in self.windows}

    def _window(self, limit_key: str) -> LimitWindow:
        try:
            return self.windows[limit_key]
        except KeyError:
            raise KeyError(f"Limiter {self.name} has no limit '{limit_key}'") from None

    def _elapsed(self, state: LimitState, window: LimitWindow, now: int) -> bool:
        return state.window_start is None or now - state.window_start >= window.window

    # ============================================
    # Reservation
    # ============================================

    async def reserve(self, limit_key: str, weight: float = 1) -> int:
        """
        Account ``weight`` against ``limit_key``.

        Returns:
            int: Milliseconds to wait before reserving again (0 = go ahead)
        """
        window = self._window(limit_key)
        async with self.mutex.lock(self.name):
            now = self.clock()
            state = self._states[limit_key]

            if state.banned_until:
                if state.banned_until > now:
                    return state.banned_until - now
                state.banned_until = 0

            w = weight * window.multiplier
            if self._elapsed(state, window, now):
                state.window_start = floor_to_window(now, window.window) if window.align else now
                state.weight = w
                state.skew = 0
                return 0

            state.weight += w
            if state.weight > window.ceiling:
                wait = max(1, state.window_start + window.window - now + state.skew)
                state.skew += self.skew_step
                return int(wait)

            state.skew = 0
            return 0

    async def sync_weight(self, limit_key: str, weight: float) -> None:
        """Overwrite the tracked weight with a server-reported value."""
        window = self._window(limit_key)
        async with self.mutex.lock(self.name):
            now = self.clock()
            state = self._states[limit_key]
            if self._elapsed(state, window, now):
                state.window_start = floor_to_window(now, window.window) if window.align else now
                state.skew = 0
            state.weight = float(weight)

    async def ban(self, limit_key: str, until_ms: int) -> None:
        """Block ``limit_key`` until ``until_ms`` (exchange-imposed ban)."""
        self._window(limit_key)
        async with self.mutex.lock(self.name):
            state = self._states[limit_key]
            state.banned_until = max(state.banned_until, int(until_ms))
        logger.warning(f"{self.name} {limit_key} banned until {until_ms}")

    async def fill(self) -> None:
        """Mark every limit as exhausted for the current window."""
        async with self.mutex.lock(self.name):
            now = self.clock()
            for key, window in self.windows.items():
                state = self._states[key]
                state.window_start = now
                state.weight = window.ceiling

    # ============================================
    # Inspection
    # ============================================

    def weight(self, limit_key: str) -> float:
        return self._states[limit_key].weight

    def banned_for(self, limit_key: str) -> int:
        state = self._states[limit_key]
        return max(0, state.banned_until - self.clock())

    def get_usage(self) -> List[UsageItem]:
        """
        Usage snapshot: weight / ceiling per limit key, 0 once the window elapsed.

        Aggregate limiters report a single "usage" item: the sum of current
        weights over the sum of ceilings.
        """
        now = self.clock()
        current = {}
        for key in self.usage_keys:
            window = self.windows[key]
            state = self._states[key]
            current[key] = 0.0 if self._elapsed(state, window, now) else state.weight

        if self.aggregate_usage:
            total = sum(self.windows[key].ceiling for key in self.usage_keys)
            return [UsageItem(type="usage", value=sum(current.values()) / total if total else 0.0)]

        return [
            UsageItem(type=key, value=current[key] / self.windows[key].ceiling if self.windows[key].ceiling else 0.0)
            for key in self.usage_keys
        ]
