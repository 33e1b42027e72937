"""
Display formatting for engine results.
"""

import math
from typing import Tuple

from .mutation import MutationAttribute, multiplier_to_percent


def format_number(value: float, max_fraction_digits: int = 2) -> str:
    """
    Format with thousands separators and at most `max_fraction_digits` decimals.

    Trailing zeros are dropped: 1234.5 -> "1,234.5", 2.0 -> "2".
    """
    if math.isinf(value):
        return "∞" if value > 0 else "-∞"
    text = f"{value:,.{max_fraction_digits}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if text == "-0":
        text = "0"
    return text


def format_duration(seconds: float) -> str:
    """
    Format a capacitor duration.

    Examples:
        inf -> "∞", 12.34 -> "12.3s", 245 -> "4m 05s", 7380 -> "2h 03m"
    """
    if math.isinf(seconds) or math.isnan(seconds):
        return "∞"
    seconds = max(seconds, 0.0)
    if seconds < 60:
        return f"{seconds:.1f}s"

    total = int(seconds)
    if total < 3600:
        minutes, secs = divmod(total, 60)
        return f"{minutes}m {secs:02d}s"

    hours, remainder = divmod(total, 3600)
    return f"{hours}h {remainder // 60:02d}m"


def _compact(value: float, decimals: int) -> str:
    if value == int(value):
        return f"{value:.0f}"
    return f"{value:.{decimals}f}"


def format_firepower(value: float) -> str:
    """
    Compact firepower figure.

    Values under 100,000 are shown in full; larger ones use k, M or B.
    """
    if value == 0:
        return "0"
    if value >= 1_000_000_000:
        return _compact(value / 1_000_000_000, 1) + "B"
    if value >= 10_000_000:
        return _compact(value / 1_000_000, 1) + "M"
    if value >= 1_000_000:
        return _compact(value / 1_000_000, 2) + "M"
    if value >= 100_000:
        return _compact(value / 1000, 1) + "k"
    return _compact(value, 1)


def format_ratio(fraction: float) -> str:
    """Damage type share: 0.452 -> "45.2%"."""
    return f"{fraction * 100:.1f}%"


def format_mutation_percent(multiplier: float, signed: bool = True) -> str:
    """
    Mutation multiplier as a percentage: 1.15 -> "+15%", 0.9 -> "-10%".

    Args:
        multiplier: Raw multiplier.
        signed: Prefix non-negative values with "+".
    """
    percent = multiplier_to_percent(multiplier)
    text = format_number(percent)
    if signed and not text.startswith("-"):
        text = "+" + text
    return text + "%"


def format_mutation_range(attribute: MutationAttribute) -> Tuple[str, str]:
    """Bounds of an attribute as ("worst", "best"), e.g. ("-10.00%", "+15.00%")."""
    worst, best = attribute.percent_range()
    return f"{worst:+.2f}%", f"{best:+.2f}%"
