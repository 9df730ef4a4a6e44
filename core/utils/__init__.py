"""
Core Utilities Package

Modules:
    - time: Millisecond clock and timestamp normalization
    - numbers: Tick-size precision and decimal formatting
"""

from core.utils.numbers import convert_number_to_string, get_price_precision, round_number
from core.utils.time import now_ms

__all__ = ["now_ms", "get_price_precision", "convert_number_to_string", "round_number"]
