"""
Bybit Rate Limits

Bybit allows 600 requests per 5 seconds per IP. The connector counts every
request as one and keeps to 550 requests per 5.5 seconds across all regional
hosts and categories.
"""

from typing import Optional

from core.mutex import KeyedMutex
from core.rate_limit import LimitWindow, RateLimiter

WINDOWS = {
    "requests": LimitWindow(ceiling=550, window=5_500),
}

_mutex = KeyedMutex()
_limiter: Optional[RateLimiter] = None


def get_limiter() -> RateLimiter:
    """Process-wide Bybit limiter."""
    global _limiter
    if _limiter is None:
        _limiter = RateLimiter("bybit", WINDOWS, mutex=_mutex)
    return _limiter
