"""
Bitget Rate Limits

Two layers of quotas, both inflated by 1.2:

    requests     6000 requests per minute, clock aligned
    endpoints    20 requests per second for the heavy public and
                 configuration endpoints, window opened by the first call

Only the "requests" quota is reported as usage.
"""

from typing import Optional

from core.mutex import KeyedMutex
from core.rate_limit import LimitWindow, RateLimiter

REQUESTS = "requests"

ENDPOINT_QUOTA = 20

ENDPOINTS = (
    "getAllExchangeInfo",
    "getFuturesAllTickers",
    "getFuturesHistoricCandles",
    "getSpotHistoricCandles",
    "getSpotSymbolInfo",
    "getSpotTicker",
    "setFuturesMarginMode",
    "setFuturesPositionMode",
)

WINDOWS = {
    REQUESTS: LimitWindow(ceiling=6000, window=60_000, multiplier=1.2),
    **{
        endpoint: LimitWindow(ceiling=ENDPOINT_QUOTA, window=1_000, multiplier=1.2, align=False)
        for endpoint in ENDPOINTS
    },
}

_mutex = KeyedMutex()
_limiter: Optional[RateLimiter] = None


def get_limiter() -> RateLimiter:
    """Process-wide Bitget limiter."""
    global _limiter
    if _limiter is None:
        _limiter = RateLimiter("bitget", WINDOWS, mutex=_mutex, usage_keys=[REQUESTS])
    return _limiter
