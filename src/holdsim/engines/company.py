"""
CompanyEngine: market allocation and weekly P&L for one niche group.

Given every company competing in a (sector, niche) pairing, the engine

1. resolves each company's effective parameters (state x modifiers),
2. allocates demand, either
   - *simple mode*: one utility per company, softmax shares of the
     bot-adjusted sector demand, volume capped by capacity; or
   - *segment mode*: per demand segment, up to ``max_rounds`` greedy
     rounds in which saturated firms drop out and leftover demand
     reflows to competitors with spare capacity,
3. prices revenue, COGS, opex and refunds, and
4. evolves awareness, reputation, efficiency and utilisation.

Interest and tax are left to the FinanceEngine. Missing numbers fall back
to configured defaults; zero capacity means zero utility and zero sales.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Mapping, Sequence

from holdsim.core.config import EconomyConfig
from holdsim.core.models import (
    Company,
    CompanyFinancials,
    CompanyState,
    Niche,
    WorldEconomyState,
)
from holdsim.core.modifiers import EffectModifiers
from holdsim.core.numeric import clamp, lerp, safe_number, softmax
from holdsim.engines.bot_market import BotMarketPressure
from holdsim.engines.sector import SectorEngine

_EPS = 1e-9


# ---------------------------------------------------------------------------
# Score transforms
# ---------------------------------------------------------------------------

def price_score(price_level: float) -> float:
    p = clamp(safe_number(price_level, 1.0), 0.4, 2.5)
    return 1 / p ** 0.8


def quality_score(q: float) -> float:
    return clamp(safe_number(q, 1.0), 0.2, 3.0)


def marketing_score(m: float) -> float:
    return 1 + math.log10(1 + clamp(safe_number(m), 0, 10_000))


def reputation_score(r: float) -> float:
    return clamp(safe_number(r, 0.5), 0.1, 1.5)


def refund_pct(quality: float, brackets: Sequence[Mapping[str, float]]) -> float:
    """Refund share of gross revenue for a quality score.

    Linear interpolation inside the first bracket containing ``quality``
    (``quality_min <= q < quality_max``); 0 when no bracket matches.
    """
    q = safe_number(quality, 1.0)
    for b in brackets:
        lo, hi = float(b["quality_min"]), float(b["quality_max"])
        if lo <= q < hi and hi > lo:
            t = (q - lo) / (hi - lo)
            return max(0.0, lerp(float(b["pct_at_min"]), float(b["pct_at_max"]), t))
    return 0.0


# ---------------------------------------------------------------------------
# Inputs / outputs
# ---------------------------------------------------------------------------

@dataclass
class DemandSegment:
    """A demand sub-population of a niche for segment-mode allocation."""
    name: str
    demand: float
    reference_price: float
    elasticity: float | None = None
    min_quality: float = 0.0
    # company_id -> unit price offered to this segment (defaults to list price)
    prices: dict[str, float] = field(default_factory=dict)
    excluded: frozenset[str] = frozenset()


@dataclass
class SegmentAllocation:
    name: str
    demand: float
    delivered: dict[str, float]
    rounds: int

    @property
    def total_delivered(self) -> float:
        return sum(self.delivered.values())


@dataclass
class CompanyGroupInput:
    niche: Niche
    economy: WorldEconomyState
    year: int
    week: int
    companies: Sequence[Company]
    states: Mapping[str, CompanyState | None]
    sector_demand: float
    bot_pressure: BotMarketPressure | None = None
    modifiers: Mapping[str, EffectModifiers] = field(default_factory=dict)
    extra_opex: Mapping[str, float] = field(default_factory=dict)
    segments: Sequence[DemandSegment] | None = None


@dataclass
class CompanyGroupResult:
    next_states: dict[str, CompanyState]
    financials: dict[str, CompanyFinancials]
    market_shares: dict[str, float]
    sold_volumes: dict[str, float]
    utilities: dict[str, float] = field(default_factory=dict)
    effective_demand: float = 0.0
    segment_allocations: list[SegmentAllocation] = field(default_factory=list)


@dataclass
class _Effective:
    """Per-company parameters after modifiers, used for one tick."""
    state: CompanyState
    price_level: float
    unit_price: float
    capacity: float
    quality: float
    marketing_spend: float
    reputation: float
    awareness: float
    demand_factor: float


class CompanyEngine:

    def __init__(self, config: EconomyConfig | None = None):
        self.config = config or EconomyConfig()
        self._sector_engine = SectorEngine(self.config)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def initial_state(self, company: Company, year: int, week: int) -> CompanyState:
        """Default state for a company that has never been simulated."""
        d = self.config.company_defaults
        return CompanyState(
            company_id=company.id,
            world_id=company.world_id,
            year=year,
            week=week,
            price_level=d["price_level"],
            capacity=d["capacity"],
            quality_score=d["quality"],
            marketing_level=d["marketing_level"],
            awareness_score=d["awareness"],
            employees=int(d["employees"]),
            fixed_cost_base=d["fixed_cost_base"],
            variable_cost_base=d["variable_cost_base"],
            reputation_score=d["reputation"],
            operational_efficiency_score=d["operational_efficiency"],
            utilisation_rate=d["utilisation"],
        )

    def effective_demand(self, sector_demand: float, pressure: BotMarketPressure | None) -> float:
        if pressure is None:
            return max(0.0, safe_number(sector_demand))
        bot_factor = clamp(
            1 - pressure.competition_pressure * 0.35 + pressure.demand_noise * 0.2,
            *self.config.bounds("bot_market", "bot_demand_bounds"),
        )
        price_factor = clamp(
            1 + pressure.price_pressure, *self.config.bounds("bot_market", "price_demand_bounds"),
        )
        return max(0.0, safe_number(sector_demand) * bot_factor * price_factor)

    def efficiency_cost_factor(self, score: float) -> float:
        """Cost multiplier from operational efficiency (neutral score -> 1.0)."""
        cfg = self.config.efficiency
        neutral = cfg["neutral_score"]
        effect = cfg["cost_effect"]
        offset = (safe_number(score, neutral) - neutral) / neutral if neutral else 0.0
        return clamp(1 - effect * offset, 1 - effect, 1 + effect)

    def _resolve(self, state: CompanyState, mod: EffectModifiers, niche: Niche) -> _Effective:
        d = self.config.company_defaults
        price_level = safe_number(state.price_level, d["price_level"]) * mod.price_level
        base_price = safe_number(niche.base_price, d["base_price"])
        if state.unit_price_override is not None:
            unit_price = safe_number(state.unit_price_override, base_price * price_level)
        else:
            unit_price = base_price * price_level

        buffer = clamp(
            safe_number(state.buffer_weeks), 0, self.config.decisions["buffer_weeks_max"],
        )
        capacity = (
            max(0.0, safe_number(state.capacity))
            * mod.capacity
            * (1 + buffer * self.config.decisions["buffer_capacity_per_week"])
        )
        marketing = max(
            0.0,
            (safe_number(state.marketing_level) + mod.marketing_level_delta) * mod.marketing,
        )
        return _Effective(
            state=state,
            price_level=price_level,
            unit_price=max(0.0, unit_price),
            capacity=capacity,
            quality=safe_number(state.quality_score, d["quality"]) * mod.quality,
            marketing_spend=marketing,
            reputation=safe_number(state.reputation_score, d["reputation"]) * mod.reputation,
            awareness=safe_number(state.awareness_score, d["awareness"]),
            demand_factor=max(0.0, mod.demand),
        )

    # ------------------------------------------------------------------
    # Simple mode
    # ------------------------------------------------------------------
    def utility(self, eff: _Effective, elasticity: float) -> float:
        if eff.capacity <= 0:
            return 0.0
        w = self.config.attractiveness
        return (
            price_score(eff.price_level) ** (1 + elasticity)
            * quality_score(eff.quality) ** w["quality_weight"]
            * marketing_score(eff.marketing_spend) ** w["marketing_weight"]
            * reputation_score(eff.reputation) ** w["reputation_weight"]
            * eff.demand_factor
        )

    def _allocate_simple(
        self, effective: dict[str, _Effective], niche: Niche, demand: float,
    ) -> tuple[dict[str, float], dict[str, float], dict[str, float]]:
        elasticity = safe_number(niche.price_elasticity, self.config.attractiveness["default_elasticity"])
        utilities = {cid: self.utility(eff, elasticity) for cid, eff in effective.items()}
        shares = self._sector_engine.compute_market_shares(utilities)
        sold = {
            cid: min(demand * shares.get(cid, 0.0), effective[cid].capacity)
            for cid in effective
        }
        # a firm without capacity still draws softmax weight but reports no share
        reported = {
            cid: share if effective[cid].capacity > 0 else 0.0
            for cid, share in shares.items()
        }
        return utilities, reported, sold

    # ------------------------------------------------------------------
    # Segment mode
    # ------------------------------------------------------------------
    def _segment_score(
        self, eff: _Effective, price: float, segment: DemandSegment,
        remaining_capacity: float,
    ) -> float:
        cfg = self.config.segment_allocation
        elasticity = safe_number(segment.elasticity, cfg["default_elasticity"])
        ref = safe_number(segment.reference_price, 0.0)
        if ref > 0 and price > 0:
            price_factor = (price / ref) ** (-elasticity)
        else:
            price_factor = 1.0
        price_factor = clamp(price_factor, *self.config.bounds("segment_allocation", "price_factor_bounds"))
        reach = 0.5 + 0.5 * clamp(eff.awareness / 100.0, 0.0, 1.0)
        availability = clamp(
            remaining_capacity / eff.capacity if eff.capacity > 0 else 0.0,
            cfg["min_availability"], 1.0,
        )
        return (
            cfg["price_weight"] * math.log(price_factor)
            + cfg["quality_weight"] * math.log(quality_score(eff.quality))
            + cfg["marketing_weight"] * math.log(marketing_score(eff.marketing_spend) * reach)
            + cfg["reputation_weight"] * math.log(reputation_score(eff.reputation))
            + cfg["availability_weight"] * math.log(availability)
            + math.log(max(eff.demand_factor, _EPS))
        )

    def allocate_segment(
        self,
        segment: DemandSegment,
        effective: Mapping[str, _Effective],
        remaining_capacity: dict[str, float],
    ) -> SegmentAllocation:
        """Greedy multi-round allocation of one segment.

        ``remaining_capacity`` is shared across segments and is decremented
        in place by the delivered volume.
        """
        cfg = self.config.segment_allocation
        remaining = max(0.0, safe_number(segment.demand))
        delivered = {cid: 0.0 for cid in effective}
        rounds = 0

        while rounds < int(cfg["max_rounds"]) and remaining > _EPS:
            eligible = [
                cid for cid, eff in effective.items()
                if cid not in segment.excluded
                and remaining_capacity.get(cid, 0.0) > _EPS
                and eff.quality >= segment.min_quality
            ]
            if not eligible:
                break
            rounds += 1

            scores = [
                self._segment_score(
                    effective[cid], segment.prices.get(cid, effective[cid].unit_price),
                    segment, remaining_capacity[cid],
                )
                for cid in eligible
            ]
            shares = softmax(scores, max(cfg["softmax_temperature"], 1e-4))

            round_total = 0.0
            for cid, share in zip(eligible, shares):
                take = min(remaining * float(share), remaining_capacity[cid])
                delivered[cid] += take
                remaining_capacity[cid] -= take
                round_total += take
            remaining = max(0.0, remaining - round_total)

            if round_total <= _EPS:
                break

        return SegmentAllocation(
            name=segment.name, demand=max(0.0, safe_number(segment.demand)),
            delivered=delivered, rounds=rounds,
        )

    # ------------------------------------------------------------------
    # Simulation
    # ------------------------------------------------------------------
    def simulate(self, inp: CompanyGroupInput) -> CompanyGroupResult:
        niche = inp.niche
        identity = EffectModifiers.identity()

        states: dict[str, CompanyState] = {}
        effective: dict[str, _Effective] = {}
        for c in inp.companies:
            state = inp.states.get(c.id) or self.initial_state(c, inp.year, inp.week)
            states[c.id] = state
            effective[c.id] = self._resolve(state, inp.modifiers.get(c.id, identity), niche)

        demand = self.effective_demand(inp.sector_demand, inp.bot_pressure)
        revenue_by_company: dict[str, float] = {}
        allocations: list[SegmentAllocation] = []

        if inp.segments:
            remaining_capacity = {cid: eff.capacity for cid, eff in effective.items()}
            sold = {cid: 0.0 for cid in effective}
            revenue_by_company = {cid: 0.0 for cid in effective}
            for segment in inp.segments:
                alloc = self.allocate_segment(segment, effective, remaining_capacity)
                allocations.append(alloc)
                for cid, volume in alloc.delivered.items():
                    sold[cid] += volume
                    price = segment.prices.get(cid, effective[cid].unit_price)
                    revenue_by_company[cid] += volume * price
            total_sold = sum(sold.values())
            shares = {cid: (v / total_sold if total_sold > 0 else 0.0) for cid, v in sold.items()}
            utilities: dict[str, float] = {}
            demand = sum(a.demand for a in allocations)
        else:
            utilities, shares, sold = self._allocate_simple(effective, niche, demand)
            revenue_by_company = {cid: sold[cid] * effective[cid].unit_price for cid in effective}

        next_states: dict[str, CompanyState] = {}
        financials: dict[str, CompanyFinancials] = {}
        for c in inp.companies:
            eff = effective[c.id]
            next_state, fin = self._resolve_financials(
                c, eff, niche, inp, sold[c.id], revenue_by_company[c.id],
                shares.get(c.id, 0.0),
            )
            next_states[c.id] = next_state
            financials[c.id] = fin

        return CompanyGroupResult(
            next_states=next_states,
            financials=financials,
            market_shares=shares,
            sold_volumes=sold,
            utilities=utilities,
            effective_demand=demand,
            segment_allocations=allocations,
        )

    def _resolve_financials(
        self,
        company: Company,
        eff: _Effective,
        niche: Niche,
        inp: CompanyGroupInput,
        sold: float,
        gross_revenue: float,
        share: float,
    ) -> tuple[CompanyState, CompanyFinancials]:
        d = self.config.company_defaults
        economy = inp.economy
        mod = inp.modifiers.get(company.id, EffectModifiers.identity())
        state = eff.state

        inflation = safe_number(economy.inflation_rate, self.config.macro["default_inflation_rate"])
        wage_index = safe_number(economy.base_wage_index, self.config.macro["default_wage_index"])
        energy = economy.macro_factor("cost_energy_factor")
        labour_factor = economy.macro_factor("cost_labour_factor")
        efficiency = self.efficiency_cost_factor(state.operational_efficiency_score)

        var_base = safe_number(state.variable_cost_base, safe_number(niche.variable_cost, d["variable_cost"]))
        var_cost = var_base * (1 + inflation) * energy * mod.variable_cost * efficiency
        fixed = safe_number(state.fixed_cost_base, safe_number(niche.fixed_costs, d["fixed_costs"])) * efficiency

        labour_intensity = safe_number(niche.labour_intensity, d["labour_intensity"])
        skill_intensity = safe_number(niche.skill_intensity, d["skill_intensity"])
        labour = (
            max(0, int(safe_number(state.employees)))
            * d["wage_per_employee"]
            * wage_index
            * labour_intensity
            * (0.8 + 0.4 * skill_intensity)
            * labour_factor
            * mod.labour
            * efficiency
        )

        pct = refund_pct(eff.quality, self.config.refunds)
        refunds = gross_revenue * pct
        revenue = gross_revenue - refunds
        cogs = var_cost * sold
        opex = fixed + labour + eff.marketing_spend + max(0.0, safe_number(inp.extra_opex.get(company.id)))
        net_profit = revenue - cogs - opex

        utilisation = sold / eff.capacity if eff.capacity > 0 else 0.0

        next_state = CompanyState(
            company_id=company.id,
            world_id=company.world_id,
            year=inp.year,
            week=inp.week,
            price_level=state.price_level,
            capacity=max(0.0, safe_number(state.capacity)),
            quality_score=state.quality_score,
            marketing_level=state.marketing_level,
            awareness_score=self._next_awareness(eff.awareness, eff.marketing_spend),
            employees=state.employees,
            fixed_cost_base=state.fixed_cost_base,
            variable_cost_base=state.variable_cost_base,
            reputation_score=self._next_reputation(
                safe_number(state.reputation_score, d["reputation"]), net_profit, eff.quality, pct,
            ),
            operational_efficiency_score=self._next_efficiency(
                safe_number(state.operational_efficiency_score, d["operational_efficiency"]),
                utilisation,
            ),
            utilisation_rate=utilisation,
            unit_price_override=state.unit_price_override,
            buffer_weeks=state.buffer_weeks,
        )
        financials = CompanyFinancials(
            company_id=company.id,
            world_id=company.world_id,
            year=inp.year,
            week=inp.week,
            revenue=revenue,
            cogs=cogs,
            opex=opex,
            net_profit=net_profit,
            cash_change=net_profit,
            sold_volume=sold,
            market_share=share,
            refunds=refunds,
        )
        return next_state, financials

    # ------------------------------------------------------------------
    # State drift
    # ------------------------------------------------------------------
    def _next_awareness(self, awareness: float, marketing_spend: float) -> float:
        cfg = self.config.awareness
        drift = cfg["gain"] * math.log1p(max(0.0, marketing_spend) / cfg["spend_scale"]) - cfg["decay"]
        drift = clamp(drift, -cfg["max_weekly_drift"], cfg["max_weekly_drift"])
        return clamp(awareness + drift, *self.config.bounds("awareness", "bounds"))

    def _next_reputation(self, prev: float, net_profit: float, quality: float, refund: float) -> float:
        cfg = self.config.reputation
        lo, hi = self.config.bounds("reputation", "bounds")
        if net_profit > 0:
            target = clamp(prev + cfg["profit_bonus"], lo, hi)
        else:
            target = clamp(prev - abs(cfg["loss_penalty"]), lo, hi)
        smoothed = lerp(prev, target, cfg["smoothing"])
        review = clamp(
            cfg["review_weight"] * (quality - 1.0) - refund * cfg["refund_weight"],
            -cfg["review_cap"], cfg["review_cap"],
        )
        return clamp(smoothed + review, lo, hi)

    def _next_efficiency(self, prev: float, utilisation: float) -> float:
        cfg = self.config.efficiency
        target = clamp(utilisation, 0.0, 1.0) * 100.0
        delta = clamp(target - prev, -cfg["max_weekly_delta"], cfg["max_weekly_delta"])
        return clamp(prev + delta, *self.config.bounds("efficiency", "bounds"))
