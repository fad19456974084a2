from __future__ import annotations

EPSILON = 1e-3
# Sums are rounded only to drop float noise; comparisons use EPSILON.
PRECISION = 6


def quantize(value: float) -> float:
    """Round a capacity fraction to strip float noise from sums."""
    return round(float(value), PRECISION)


def exceeds(value: float, limit: float) -> bool:
    return float(value) > float(limit) + EPSILON


def at_limit(value: float, limit: float) -> bool:
    return abs(float(value) - float(limit)) <= EPSILON


def as_percent(fraction: float) -> float:
    return round(float(fraction) * 100, 2)
