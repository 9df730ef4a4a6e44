"""
Kucoin Rate Limits

Kucoin meters requests per resource pool over 30 second windows:

    pool         quota
    spot         3000 / 30s
    futures      2000 / 30s
    management   2000 / 30s
    public       2000 / 30s

Every reservation is inflated by 1.2. Windows start at the first request
(not aligned to the clock) and usage is reported as a single "usage" ratio
over all pools. On rate-limit errors the adapter fills every pool so queued
calls wait for the next window.
"""

from typing import Optional

from core.mutex import KeyedMutex
from core.rate_limit import LimitWindow, RateLimiter

SPOT = "spot"
FUTURES = "futures"
MANAGEMENT = "management"
PUBLIC = "public"

WINDOWS = {
    SPOT: LimitWindow(ceiling=3000, window=30_000, multiplier=1.2, align=False),
    FUTURES: LimitWindow(ceiling=2000, window=30_000, multiplier=1.2, align=False),
    MANAGEMENT: LimitWindow(ceiling=2000, window=30_000, multiplier=1.2, align=False),
    PUBLIC: LimitWindow(ceiling=2000, window=30_000, multiplier=1.2, align=False),
}

_mutex = KeyedMutex()
_limiter: Optional[RateLimiter] = None


def get_limiter() -> RateLimiter:
    """Process-wide Kucoin limiter shared by spot and futures adapters."""
    global _limiter
    if _limiter is None:
        _limiter = RateLimiter("kucoin", WINDOWS, mutex=_mutex, aggregate_usage=True, skew_step=0)
    return _limiter
