"""
Deterministic pseudo-randomness for the weekly tick.

A ``RandomSource`` is constructed once per tick from
``(world_id, year, week)`` and handed to every engine that needs noise.
Each engine asks for a named stream (``source.stream(sector_id)``), so
the same world, week and key always reproduce the same numbers, no
matter which other engines ran first.

Seeds are FNV-1a hashes of the key parts; streams are mulberry32.
"""

from __future__ import annotations

import math
from typing import Callable, Sequence

_MASK32 = 0xFFFFFFFF
_FNV_OFFSET = 0x811C9DC5
_FNV_PRIME = 0x01000193
_SEPARATOR = "|"

Rng = Callable[[], float]


def seed_from_parts(parts: Sequence[object]) -> int:
    """FNV-1a over the ``|``-joined string form of ``parts``."""
    h = _FNV_OFFSET
    for ch in _SEPARATOR.join(str(p) for p in parts):
        h ^= ord(ch)
        h = (h * _FNV_PRIME) & _MASK32
    return h


def _imul(a: int, b: int) -> int:
    return (a * b) & _MASK32


def mulberry32(seed: int) -> Rng:
    """Return a generator of floats in ``[0, 1)`` from a 32-bit seed."""
    state = seed & _MASK32

    def next_float() -> float:
        nonlocal state
        state = (state + 0x6D2B79F5) & _MASK32
        t = state
        t = _imul(t ^ (t >> 15), t | 1)
        t = (t ^ (t + _imul(t ^ (t >> 7), t | 61))) & _MASK32
        return ((t ^ (t >> 14)) & _MASK32) / 4294967296.0

    return next_float


class RandomSource:
    """Seeded randomness scoped to one world week."""

    def __init__(self, world_id: str, year: int, week: int):
        self.world_id = str(world_id)
        self.year = int(year)
        self.week = int(week)

    def __repr__(self) -> str:
        return f"RandomSource({self.world_id!r}, {self.year}, {self.week})"

    def at(self, year: int, week: int) -> RandomSource:
        """Same world, different week (used for purchase-time draws)."""
        return RandomSource(self.world_id, year, week)

    def seed(self, *key: object) -> int:
        return seed_from_parts((self.world_id, self.year, self.week, *key))

    def stream(self, *key: object) -> Rng:
        """A fresh generator for ``(world, year, week, *key)``."""
        return mulberry32(self.seed(*key))

    # ---- Convenience draws ----

    def pick_range(
        self, key: Sequence[object], low: float, high: float,
        fallback: float | None = None,
    ) -> float:
        """Uniform float in ``[low, high]``; ``fallback`` if the range is invalid."""
        if not (math.isfinite(low) and math.isfinite(high)) or high < low:
            return low if fallback is None else fallback
        if high == low:
            return low
        return low + self.stream(*key)() * (high - low)

    def pick_int_range(self, key: Sequence[object], low: int, high: int) -> int:
        low, high = int(low), int(high)
        if high <= low:
            return low
        return low + math.floor(self.stream(*key)() * (high - low + 1))

    @staticmethod
    def jitter(rng: Rng, magnitude: float) -> float:
        """Symmetric noise in ``[-magnitude, magnitude)``."""
        return (rng() * 2 - 1) * magnitude
