"""
Numeric helpers shared by every engine.

Engines never raise on bad numbers: missing or non-finite inputs are
replaced by a fallback and results are clamped into policy bounds.
"""

from __future__ import annotations

import math
from typing import Any, Sequence

import numpy as np

WEEKS_PER_YEAR = 52


def safe_number(value: Any, fallback: float = 0.0) -> float:
    """Coerce ``value`` to a finite float, returning ``fallback`` otherwise."""
    if value is None or isinstance(value, bool):
        return float(fallback)
    try:
        num = float(value)
    except (TypeError, ValueError):
        return float(fallback)
    if not math.isfinite(num):
        return float(fallback)
    return num


def clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))


def lerp(a: float, b: float, t: float) -> float:
    return a + (b - a) * t


def softmax(values: Sequence[float] | np.ndarray, temperature: float) -> np.ndarray:
    """Numerically stable softmax with temperature scaling.

    An empty input yields an empty array. ``temperature <= 0`` degrades
    to an argmax one-hot vector.
    """
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        return arr
    if temperature <= 0:
        result = np.zeros_like(arr)
        result[np.argmax(arr)] = 1.0
        return result

    scaled = (arr - arr.max()) / temperature
    exp_vals = np.exp(scaled)
    return exp_vals / exp_vals.sum()


# ---------------------------------------------------------------------------
# Calendar
# ---------------------------------------------------------------------------

def week_index(year: int, week: int) -> int:
    """Absolute week number, 1-based within year 1."""
    return (int(year) - 1) * WEEKS_PER_YEAR + int(week)


def next_week(year: int, week: int) -> tuple[int, int]:
    """Advance one week, rolling to the next year past week 52."""
    if week >= WEEKS_PER_YEAR:
        return year + 1, 1
    return year, week + 1


def add_weeks(year: int, week: int, delta: int) -> tuple[int, int]:
    """Shift a (year, week) pair by ``delta`` weeks on the 52-week calendar."""
    idx = week_index(year, week) - 1 + int(delta)
    return idx // WEEKS_PER_YEAR + 1, idx % WEEKS_PER_YEAR + 1


def month_index(week: int) -> int:
    """Map a 1..52 week onto a 0..11 month bucket."""
    idx = math.floor((int(week) - 1) / WEEKS_PER_YEAR * 12)
    return int(clamp(idx, 0, 11))


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves towards +infinity."""
    return math.floor(value + 0.5)
