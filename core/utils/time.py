"""
Time Utilities

Every timestamp inside the connector is an integer number of milliseconds since
the Unix epoch. Exchanges disagree on this (Binance and Bybit use milliseconds,
Coinbase uses ISO strings and seconds, OKX uses millisecond strings), so the
helpers below convert everything into one representation before it reaches the
time profile, the rate limiter or a normalized record.

The rate limiter and the reference-data cache accept a ``clock`` callable so
tests can drive time explicitly; ``now_ms`` is the default clock everywhere.
"""

import time
from datetime import datetime, timezone
from typing import Optional, Union


def now_ms() -> int:
    """
    Current wall-clock time in epoch milliseconds.

    Example:
        >>> now_ms()
        1704110400000
    """
    return int(time.time() * 1000)


def floor_to_window(timestamp: int, window: int) -> int:
    """
    Floor a millisecond timestamp to the start of its fixed window.

    Args:
        timestamp: Epoch milliseconds
        window: Window length in milliseconds

    Returns:
        int: Start of the window containing ``timestamp``

    Example:
        >>> floor_to_window(1704110412345, 60000)
        1704110400000
    """
    if window <= 0:
        return timestamp
    return timestamp - (timestamp % window)


def to_milliseconds(value: Union[int, float, str, datetime, None]) -> Optional[int]:
    """
    Normalize an exchange timestamp into epoch milliseconds.

    Accepts seconds, milliseconds, numeric strings, ISO-8601 strings and
    datetime objects. Values below 1e11 are treated as seconds.

    Args:
        value: Raw timestamp as returned by an exchange

    Returns:
        Epoch milliseconds, or None when ``value`` is empty

    Examples:
        >>> to_milliseconds(1704110400)
        1704110400000
        >>> to_milliseconds("1704110400000")
        1704110400000
        >>> to_milliseconds("2024-01-01T12:00:00Z")
        1704110400000
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)

    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            return to_milliseconds(parsed)

    if value < 1e11:
        return int(value * 1000)
    return int(value)
