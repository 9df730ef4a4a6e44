"""
Coinbase Rate Limits

Coinbase Advanced Trade allows 30 public and 10 private requests per
second. Both windows are aligned to the second.
"""

from typing import Optional

from core.mutex import KeyedMutex
from core.rate_limit import LimitWindow, RateLimiter

PRIVATE = "private"
PUBLIC = "public"

WINDOWS = {
    PRIVATE: LimitWindow(ceiling=10, window=1_000),
    PUBLIC: LimitWindow(ceiling=30, window=1_000),
}

_mutex = KeyedMutex()
_limiter: Optional[RateLimiter] = None


def get_limiter() -> RateLimiter:
    """Process-wide Coinbase limiter."""
    global _limiter
    if _limiter is None:
        _limiter = RateLimiter("coinbase", WINDOWS, mutex=_mutex)
    return _limiter
