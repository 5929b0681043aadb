"""Rounding helpers shared by the export parser and the metrics engine."""

import math


def round_half_up(value: float, digits: int = 0) -> float:
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


def percentage(numerator: float, denominator: float) -> float:
    """Return numerator / denominator as a percentage with two decimals.

    A zero denominator yields 0.0 rather than a division error.
    """
    if not denominator:
        return 0.0
    return round_half_up(numerator / denominator * 100, 2)
