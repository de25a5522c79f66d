"""
BotMarketEngine: a per-niche competitive-pressure proxy.

No bot companies are simulated here. Each (world, niche, week) gets a
seeded bundle of pressure signals derived from the niche's competition
type, volatility and price elasticity; the company engine turns them
into demand multipliers.
"""

from __future__ import annotations

from dataclasses import dataclass

from holdsim.core.config import EconomyConfig
from holdsim.core.models import Niche
from holdsim.core.numeric import clamp, safe_number
from holdsim.core.random_source import RandomSource


@dataclass(frozen=True)
class BotMarketPressure:
    competition_pressure: float = 0.0  # 0..1
    price_pressure: float = 0.0  # -1..1
    demand_noise: float = 0.0  # 0..1
    volatility_boost: float = 0.0  # 0..0.5

    @classmethod
    def neutral(cls) -> BotMarketPressure:
        return cls()


class BotMarketEngine:

    STREAM_KEY = "BOT_MARKET"

    def __init__(self, config: EconomyConfig | None = None):
        self.config = config or EconomyConfig()

    def competition_baseline(self, competition_type: str) -> float:
        cfg = self.config.bot_market
        return float(cfg["competition_baselines"].get(
            str(competition_type).upper(), cfg["competition_default"],
        ))

    def tick(
        self,
        niche: Niche,
        source: RandomSource,
        sector_volatility: float | None = None,
    ) -> BotMarketPressure:
        cfg = self.config.bot_market

        niche_vol = clamp(safe_number(niche.demand_volatility, cfg["default_demand_volatility"]), 0, 1)
        world_vol = clamp(
            safe_number(sector_volatility, cfg["default_sector_volatility"]) * 2, 0, 1,
        )
        base_vol = clamp((niche_vol + world_vol) / 2, 0, 1)

        rng = source.stream(self.STREAM_KEY, niche.id)

        competition = clamp(
            self.competition_baseline(niche.competition_type or "FRAGMENTED")
            + base_vol * 0.2
            + RandomSource.jitter(rng, cfg["competition_jitter"]),
            0, 1,
        )

        elasticity = clamp(safe_number(niche.price_elasticity, cfg["default_price_elasticity"]), 0, 1.5)
        price_bias = clamp(0.4 - elasticity, -0.6, 0.4)
        price_pressure = clamp(
            price_bias - competition * 0.2 + RandomSource.jitter(rng, cfg["price_jitter"]),
            -1, 1,
        )

        demand_noise = clamp(rng() * (0.3 + base_vol * 0.7), 0, 1)
        volatility_boost = clamp(0.1 + base_vol * 0.35 + competition * 0.1, 0, 0.5)

        return BotMarketPressure(
            competition_pressure=competition,
            price_pressure=price_pressure,
            demand_noise=demand_noise,
            volatility_boost=volatility_boost,
        )
