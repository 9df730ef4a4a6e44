"""
Numeric Helpers

Exchanges publish tick sizes and lot steps as strings ("0.00025", "1e-7",
"0.10000000"). Adapters use these helpers to derive the decimal precision an
exchange expects and to format quantities and prices without floating-point
drift or exponent notation leaking into request payloads.
"""

from decimal import Decimal, InvalidOperation, ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP
from typing import Union


def _plain(value: str) -> str:
    """Render a numeric string without exponent notation."""
    try:
        text = format(Decimal(value), "f")
    except InvalidOperation:
        return value
    if "." in text:
        text = text.rstrip("0")
        if text.endswith("."):
            text += "0"
    return text


def get_price_precision(tick: str) -> int:
    """
    Number of decimal places implied by a tick-size string.

    The position of the first significant digit decides the precision, so
    ``"0.00025"`` and ``"0.0001"`` both resolve to 4 and ``"0.5"`` resolves
    to 1. Integral ticks resolve to 0.

    Args:
        tick: Tick or step size as published by the exchange

    Returns:
        int: Number of decimal places

    Examples:
        >>> get_price_precision("0.00025")
        4
        >>> get_price_precision("1e-7")
        7
        >>> get_price_precision("1")
        0
        >>> get_price_precision("0.10000000")
        1
    """
    plain = _plain(str(tick).strip())

    if "." not in plain:
        return 0

    integer, decimals = plain.split(".", 1)
    if integer.strip("-0"):
        return len(decimals.rstrip("0"))

    significant = decimals.lstrip("0")
    if not significant:
        return 0
    return len(decimals) - len(significant) + 1


def convert_number_to_string(number: Union[int, float, str, Decimal]) -> str:
    """
    Format a number for a request payload without exponent notation.

    Examples:
        >>> convert_number_to_string(1e-7)
        '0.0000001'
        >>> convert_number_to_string(2.5e21)
        '2500000000000000000000'
        >>> convert_number_to_string(0.1)
        '0.1'
    """
    if isinstance(number, float):
        number = repr(number)
    text = _plain(str(number))
    if text.endswith(".0"):
        text = text[:-2]
    return text


def round_number(value: Union[int, float, str], precision: int = 2, down: bool = False, up: bool = False) -> float:
    """
    Round ``value`` to ``precision`` decimals using decimal arithmetic.

    Args:
        value: Number to round
        precision: Decimal places to keep
        down: Always round toward negative infinity (quantity truncation)
        up: Always round toward positive infinity

    Examples:
        >>> round_number(1.005, 2)
        1.01
        >>> round_number(0.12999, 3, down=True)
        0.129
    """
    quantum = Decimal(1).scaleb(-precision)
    rounding = ROUND_FLOOR if down else ROUND_CEILING if up else ROUND_HALF_UP
    return float(Decimal(str(value)).quantize(quantum, rounding=rounding))


def to_float(value, default: float = 0.0) -> float:
    """Parse an exchange numeric field, returning ``default`` for empty values."""
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default
