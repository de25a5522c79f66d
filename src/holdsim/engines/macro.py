"""
MacroEngine: weekly evolution of the world's economic indicators.

Interest rate, inflation and wage index each take one seeded noise draw
per week, scaled by the macro volatility, plus optional seasonal deltas.
Results are clamped into fixed policy bounds, so the engine always
produces a valid economy state.
"""

from __future__ import annotations

from dataclasses import replace

from holdsim.core.config import EconomyConfig
from holdsim.core.models import Season, WorldEconomyState
from holdsim.core.numeric import clamp, safe_number
from holdsim.core.random_source import RandomSource


class MacroEngine:
    """Pure function of (economy, season, random source)."""

    STREAM_KEY = "MACRO"

    def __init__(self, config: EconomyConfig | None = None):
        self.config = config or EconomyConfig()

    def volatility(self, season: Season | None = None) -> float:
        base = safe_number(self.config.macro["volatility"], 0.15)
        boost = season.volatility_boost if season else 0.0
        return clamp(base + safe_number(boost), 0.0, 1.0)

    def tick(
        self,
        economy: WorldEconomyState,
        source: RandomSource,
        season: Season | None = None,
    ) -> WorldEconomyState:
        cfg = self.config.macro
        rng = source.stream(self.STREAM_KEY)
        vol = self.volatility(season)

        def noise() -> float:
            return (rng() - 0.5) * 2

        interest = safe_number(economy.base_interest_rate, cfg["default_interest_rate"])
        inflation = safe_number(economy.inflation_rate, cfg["default_inflation_rate"])
        wage_index = safe_number(economy.base_wage_index, cfg["default_wage_index"])

        interest_delta = (
            cfg["interest_drift"] + noise() * cfg["interest_noise"] * vol
            + (season.interest_delta if season else 0.0)
        )
        inflation_delta = (
            cfg["inflation_drift"] + noise() * cfg["inflation_noise"] * vol
            + (season.inflation_delta if season else 0.0)
        )
        wage_lo, wage_hi = self.config.bounds("macro", "wage_multiplier_bounds")
        wage_mul = clamp(
            cfg["wage_multiplier_base"] + noise() * cfg["wage_multiplier_noise"] * vol,
            wage_lo, wage_hi,
        ) * (season.wage_multiplier if season else 1.0)

        return replace(
            economy,
            base_interest_rate=clamp(
                interest + interest_delta, *self.config.bounds("macro", "interest_bounds"),
            ),
            inflation_rate=clamp(
                inflation + inflation_delta, *self.config.bounds("macro", "inflation_bounds"),
            ),
            base_wage_index=clamp(
                wage_index * wage_mul, *self.config.bounds("macro", "wage_index_bounds"),
            ),
        )
