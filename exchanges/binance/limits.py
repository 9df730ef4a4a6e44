"""
Binance Rate Limits

Binance meters every request in "weight" per minute and counts new orders in
a short window. Spot (.com and .us), USD-M and COIN-M have separate quotas
and are tracked by separate process-wide limiters.

    market   weight        orders
    com/us   4500 / 60s    80 / 11s
    usdm     2000 / 60s    250 / 10s
    coinm    2000 / 60s    1000 / 60s

IP bans (-1003 / -1008 with a "banned until" timestamp) are recorded on the
"weight" limit of the affected market.
A WAF block (HTTP 403) or a -1008 throttle fills every limiter of the domain.
"""

from typing import Dict

from core.mutex import KeyedMutex
from core.rate_limit import LimitWindow, RateLimiter

WINDOWS: Dict[str, Dict[str, LimitWindow]] = {
    "com": {
        "weight": LimitWindow(ceiling=4500, window=60_000),
        "orders": LimitWindow(ceiling=80, window=11_000),
    },
    "us": {
        "weight": LimitWindow(ceiling=4500, window=60_000),
        "orders": LimitWindow(ceiling=80, window=11_000),
    },
    "usdm": {
        "weight": LimitWindow(ceiling=2000, window=60_000),
        "orders": LimitWindow(ceiling=250, window=10_000),
    },
    "coinm": {
        "weight": LimitWindow(ceiling=2000, window=60_000),
        "orders": LimitWindow(ceiling=1000, window=60_000),
    },
}

_mutex = KeyedMutex()
_limiters: Dict[str, RateLimiter] = {}


def get_limiter(market: str = "com") -> RateLimiter:
    """
    Process-wide limiter of one Binance market ("com", "us", "usdm", "coinm").

    Example:
        >>> get_limiter("usdm").windows["weight"].ceiling
        2000
    """
    if market not in WINDOWS:
        raise ValueError(f"Unknown Binance market: {market}")
    if market not in _limiters:
        _limiters[market] = RateLimiter(f"binance-{market}", WINDOWS[market], mutex=_mutex)
    return _limiters[market]
