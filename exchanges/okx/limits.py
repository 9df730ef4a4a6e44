"""
OKX Rate Limits

OKX limits every endpoint separately. The connector keeps one 3 second
window per endpoint, opened by the first request (not clock aligned):

    openOrder, cancelOrder, getOrderDetails, getOrderList    25
    getCandles                                               30
    getAffiliate                                             15
    getInstruments, getTickers, getHistoricCandles,
    setLeverage                                              10
    getBalance, getPositions                                  5
    getFeeRates, getAccountConfiguration, setPositionMode     3

Callers over a quota wait for the rest of the window plus a skew that grows
by one millisecond per queued caller.
"""

from typing import Optional

from core.mutex import KeyedMutex
from core.rate_limit import LimitWindow, RateLimiter

FRAME_MS = 3_000

QUOTAS = {
    "openOrder": 25,
    "cancelOrder": 25,
    "getOrderDetails": 25,
    "getOrderList": 25,
    "getCandles": 30,
    "getAffiliate": 15,
    "getInstruments": 10,
    "getTickers": 10,
    "getHistoricCandles": 10,
    "setLeverage": 10,
    "getBalance": 5,
    "getPositions": 5,
    "getFeeRates": 3,
    "getAccountConfiguration": 3,
    "setPositionMode": 3,
}

WINDOWS = {key: LimitWindow(ceiling=quota, window=FRAME_MS, align=False) for key, quota in QUOTAS.items()}

_mutex = KeyedMutex()
_limiter: Optional[RateLimiter] = None


def get_limiter() -> RateLimiter:
    """Process-wide OKX limiter."""
    global _limiter
    if _limiter is None:
        _limiter = RateLimiter("okx", WINDOWS, mutex=_mutex)
    return _limiter
