"""
SectorEngine: weekly per-sector demand.

Demand compounds a gentle trend, follows the niches' monthly seasonality,
reacts to macro and seasonal demand factors, takes one seeded shock, and
is smoothed exponentially against last week's value.

Also home of ``compute_market_shares``, the clamped temperature softmax
used by the simple-mode company allocator.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Sequence

from holdsim.core.config import EconomyConfig
from holdsim.core.models import Niche, Season, Sector, WorldEconomyState, WorldSectorState
from holdsim.core.numeric import clamp, month_index, safe_number, softmax
from holdsim.core.random_source import RandomSource


@dataclass
class SectorTickResult:
    next_state: WorldSectorState
    demand: float
    volatility_shock: float


class SectorEngine:
    """Pure per-sector demand model."""

    def __init__(self, config: EconomyConfig | None = None):
        self.config = config or EconomyConfig()

    # ------------------------------------------------------------------
    # Demand
    # ------------------------------------------------------------------
    def base_demand(self, niches: Sequence[Niche]) -> float:
        default = self.config.sector["default_base_demand"]
        levels = [safe_number(n.base_demand_level, default) for n in niches]
        return sum(levels) / len(levels) if levels else default

    @staticmethod
    def seasonality_factor(niches: Sequence[Niche], week: int) -> float:
        idx = month_index(week)
        factors = [
            safe_number(n.seasonality[idx], 1.0) if len(n.seasonality) == 12 else 1.0
            for n in niches
        ]
        return sum(factors) / len(factors) if factors else 1.0

    def tick(
        self,
        sector: Sector,
        niches: Sequence[Niche],
        prev_state: WorldSectorState | None,
        economy: WorldEconomyState,
        source: RandomSource,
        season: Season | None = None,
    ) -> SectorTickResult:
        cfg = self.config.sector
        prev_state = self._inputs_for_week(prev_state, source)
        prev_demand = safe_number(prev_state.current_demand if prev_state else None, 0.0)
        prev_trend = safe_number(prev_state.trend_factor if prev_state else None, 1.0)
        prev_vol = safe_number(
            prev_state.volatility if prev_state else None, cfg["default_volatility"],
        )

        base_demand = self.base_demand(niches)
        seasonality = self.seasonality_factor(niches, source.week)

        trend = clamp(
            prev_trend * (1 + cfg["trend_per_week"]), *self.config.bounds("sector", "trend_bounds"),
        )
        season_vol = season.sector_factor(sector.id, "volatility_factor") if season else 1.0
        vol = clamp(prev_vol * season_vol, *self.config.bounds("sector", "volatility_bounds"))

        rng = source.stream(sector.id)
        shock = (rng() * 2 - 1) * vol

        global_factor = economy.macro_factor("demand_global_factor")
        season_demand = season.sector_factor(sector.id, "demand_factor") if season else 1.0

        target = base_demand * trend * seasonality * global_factor * season_demand * (1 + shock)
        alpha = cfg["demand_smoothing"]
        demand = clamp((1 - alpha) * prev_demand + alpha * target, 0.0, cfg["demand_max"])

        delta = demand - prev_demand
        next_state = WorldSectorState(
            world_id=source.world_id,
            sector_id=sector.id,
            current_demand=demand,
            trend_factor=trend,
            volatility=vol,
            last_round_metrics={
                "demand_delta": delta,
                "demand_delta_pct": delta / prev_demand if prev_demand > 0 else 0.0,
                "volatility_shock": shock,
                "prev_demand": prev_demand,
                "prev_trend": prev_trend,
                "prev_volatility": prev_vol,
            },
            year=source.year,
            week=source.week,
        )
        return SectorTickResult(next_state=next_state, demand=demand, volatility_shock=shock)

    @staticmethod
    def _inputs_for_week(
        prev_state: WorldSectorState | None, source: RandomSource,
    ) -> WorldSectorState | None:
        """Return the state this week's demand should be computed from.

        A stored state stamped with the current week was written by an
        earlier attempt at the same week that later failed. Its recorded
        inputs are replayed so a retry reproduces the same demand.
        """
        if prev_state is None or (prev_state.year, prev_state.week) != (source.year, source.week):
            return prev_state
        metrics = prev_state.last_round_metrics or {}
        if "prev_demand" not in metrics:
            return prev_state
        return WorldSectorState(
            world_id=prev_state.world_id,
            sector_id=prev_state.sector_id,
            current_demand=metrics["prev_demand"],
            trend_factor=metrics.get("prev_trend", 1.0),
            volatility=metrics.get("prev_volatility", prev_state.volatility),
        )

    # ------------------------------------------------------------------
    # Market shares
    # ------------------------------------------------------------------
    def compute_market_shares(self, utilities: Mapping[str, float]) -> dict[str, float]:
        """Clamped temperature softmax over ``{id: utility}``.

        Shares sum to 1 for non-empty input; empty input gives ``{}``.
        """
        if not utilities:
            return {}
        cfg = self.config.market_share
        ids = list(utilities)
        values = [
            clamp(safe_number(utilities[i]), cfg["utility_min"], cfg["utility_max"])
            for i in ids
        ]
        temperature = max(cfg["min_temperature"], cfg["softmax_temperature"])
        probs = softmax(values, temperature)
        return {cid: float(p) for cid, p in zip(ids, probs)}
