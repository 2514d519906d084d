"""Small numeric helpers shared by the scorer, parsers and prompt builder."""

import math


def round_half_up(value: float, ndigits: int = 0) -> float:
    """Round with ties toward +infinity (``2.5 -> 3``, ``-1.5 -> -1``).

    Python's ``round`` uses banker's rounding, which would make the daily
    movement depend on the parity of the last digit.
    """
    factor = 10 ** ndigits
    return math.floor(value * factor + 0.5) / factor


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def format_number(value: float) -> str:
    """Render ``500.0`` as ``"500"`` and ``12.5`` as ``"12.5"``."""
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def format_signed(value: float) -> str:
    """``2 -> "+2"``, ``-1.5 -> "-1.5"``, ``0 -> "0"``."""
    text = format_number(value)
    return f"+{text}" if value > 0 else text
