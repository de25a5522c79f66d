"""
Domain records for the holding-company economy.

These are plain dataclasses shared by the engines, the orchestrator and
the store. Engines treat them as values: they return new instances
(``dataclasses.replace``) rather than mutating what they were given.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class WorldStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    ARCHIVED = "ARCHIVED"


class CompanyStatus(str, Enum):
    ACTIVE = "ACTIVE"
    LIQUIDATING = "LIQUIDATING"
    BANKRUPT = "BANKRUPT"
    SOLD = "SOLD"


class LoanStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAID_OFF = "PAID_OFF"
    DEFAULTED = "DEFAULTED"


class ProgramStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class RoundStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class EventScope(str, Enum):
    WORLD = "WORLD"
    SECTOR = "SECTOR"
    COMPANY = "COMPANY"
    HOLDING = "HOLDING"


class OfferStatus(str, Enum):
    OPEN = "OPEN"
    COUNTERED = "COUNTERED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    WITHDRAWN = "WITHDRAWN"
    EXPIRED = "EXPIRED"
    FAILED_FUNDS = "FAILED_FUNDS"


class OfferParty(str, Enum):
    """Whose move it is on an offer, or who made the last one."""
    BUYER = "BUYER"
    SELLER = "SELLER"
    NONE = "NONE"


# ---------------------------------------------------------------------------
# World
# ---------------------------------------------------------------------------

@dataclass
class Season:
    """Optional seasonal adjustments applied to macro and sector engines."""
    name: str = "neutral"
    interest_delta: float = 0.0
    inflation_delta: float = 0.0
    wage_multiplier: float = 1.0
    volatility_boost: float = 0.0
    demand_factor: float = 1.0
    sector_volatility_factor: float = 1.0
    # sector_id -> {"demand_factor", "volatility_factor"}
    sector_overrides: dict[str, dict[str, float]] = field(default_factory=dict)

    def sector_factor(self, sector_id: str, name: str) -> float:
        override = self.sector_overrides.get(sector_id, {})
        if name in override:
            return float(override[name])
        return self.demand_factor if name == "demand_factor" else self.sector_volatility_factor

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> Season | None:
        if not d:
            return None
        return cls(**{k: v for k, v in d.items() if k in cls.__dataclass_fields__})


@dataclass
class World:
    id: str
    name: str
    status: WorldStatus = WorldStatus.ACTIVE
    mode: str = "standard"
    base_round_interval_seconds: int = 3600
    season: dict[str, Any] | None = None
    created_at: datetime | None = None


@dataclass
class WorldEconomyState:
    """Clock, macro indicators and the tick lock for one world."""
    world_id: str
    current_year: int = 1
    current_week: int = 1
    base_interest_rate: float = 0.02
    inflation_rate: float = 0.02
    base_wage_index: float = 1.0
    # demand_global_factor, cost_energy_factor, cost_labour_factor, risk_global_factor
    macro_modifiers: dict[str, float] = field(default_factory=dict)
    is_ticking: bool = False
    last_tick_started_at: datetime | None = None
    last_tick_at: datetime | None = None
    decision_cutoff_seq: int | None = None
    # cutoff of the last completed tick; later decisions for past weeks carry over
    last_applied_decision_seq: int = 0

    def macro_factor(self, name: str) -> float:
        value = self.macro_modifiers.get(name)
        if value is None:
            return 1.0
        try:
            return float(value)
        except (TypeError, ValueError):
            return 1.0


@dataclass
class WorldRound:
    world_id: str
    year: int
    week: int
    status: RoundStatus = RoundStatus.PENDING
    seed: str = ""
    engine_version: str = ""
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error: str | None = None


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

@dataclass
class Sector:
    id: str
    code: str
    name: str


@dataclass
class Niche:
    """A business archetype inside a sector, with its market configuration."""
    id: str
    sector_id: str
    code: str
    name: str
    base_demand_level: float | None = None
    # 12 monthly demand multipliers; empty means flat
    seasonality: list[float] = field(default_factory=list)
    demand_volatility: float | None = None
    price_elasticity: float | None = None
    competition_type: str = "FRAGMENTED"
    base_price: float | None = None
    variable_cost: float | None = None
    fixed_costs: float | None = None
    labour_intensity: float | None = None
    skill_intensity: float | None = None
    startup_cost: float | None = None
    # Demand segments: name, demand_share, reference_price, elasticity, min_quality
    segments: list[dict[str, Any]] = field(default_factory=list)
    # Operations model (lanes, staffing, energy modes, maintenance); empty disables it
    ops: dict[str, Any] = field(default_factory=dict)


@dataclass
class NicheUpgrade:
    """A purchasable permanent modifier bundle for companies of one niche."""
    id: str
    niche_id: str
    code: str
    name: str
    tier: int = 1
    cost: float | None = None
    capex_pct_range: list[float] | None = None
    opex_pct_range: list[float] | None = None
    delay_weeks: dict[str, int] = field(default_factory=dict)
    effects: list[dict[str, Any]] = field(default_factory=list)
    risks: list[dict[str, Any]] = field(default_factory=list)


# ---------------------------------------------------------------------------
# World-scoped state
# ---------------------------------------------------------------------------

@dataclass
class WorldSectorState:
    world_id: str
    sector_id: str
    current_demand: float
    trend_factor: float = 1.0
    volatility: float = 0.12
    last_round_metrics: dict[str, float] = field(default_factory=dict)
    # week this state was computed for; None for seeded states
    year: int | None = None
    week: int | None = None


@dataclass
class Player:
    id: str
    name: str
    brand_level: int = 1
    brand_xp: float = 0.0
    credit_level: int = 1
    credit_xp: float = 0.0


@dataclass
class Holding:
    id: str
    world_id: str
    name: str
    player_id: str | None = None
    cash_balance: float = 0.0
    total_equity: float = 0.0
    total_debt: float = 0.0
    prestige_level: int = 1


@dataclass
class Bot:
    id: str
    world_id: str
    holding_id: str
    archetype: str = "BALANCED"
    aggressiveness: float = 0.5
    risk_tolerance: float = 0.5


@dataclass
class Company:
    id: str
    world_id: str
    holding_id: str
    sector_id: str
    niche_id: str
    name: str
    status: CompanyStatus = CompanyStatus.ACTIVE


@dataclass
class CompanyState:
    """Operational state of a company for one (year, week)."""
    company_id: str
    world_id: str
    year: int
    week: int
    price_level: float = 1.0
    capacity: float = 100.0
    quality_score: float = 1.0
    marketing_level: float = 0.0
    awareness_score: float = 20.0
    employees: int = 3
    fixed_cost_base: float = 500.0
    variable_cost_base: float = 2.0
    reputation_score: float = 0.5
    operational_efficiency_score: float = 50.0
    utilisation_rate: float = 0.0
    unit_price_override: float | None = None
    buffer_weeks: float = 0.0


@dataclass
class CompanyFinancials:
    company_id: str
    world_id: str
    year: int
    week: int
    revenue: float = 0.0
    cogs: float = 0.0
    opex: float = 0.0
    interest_expense: float = 0.0
    tax_expense: float = 0.0
    net_profit: float = 0.0
    cash_change: float = 0.0
    sold_volume: float = 0.0
    market_share: float = 0.0
    refunds: float = 0.0

    @property
    def profit_before_tax(self) -> float:
        return self.revenue - self.cogs - self.opex - self.interest_expense


@dataclass
class Loan:
    """A loan owned by exactly one of a holding or a company."""
    id: str
    world_id: str
    principal: float
    outstanding_balance: float
    interest_rate: float
    term_weeks: int
    remaining_weeks: int
    holding_id: str | None = None
    company_id: str | None = None
    status: LoanStatus = LoanStatus.ACTIVE
    created_year: int = 1
    created_week: int = 1

    @property
    def is_holding_loan(self) -> bool:
        return self.company_id is None


@dataclass
class CompanyDecision:
    world_id: str
    company_id: str
    year: int
    week: int
    payload: dict[str, Any]
    id: int | None = None
    created_at: datetime | None = None


@dataclass
class HoldingDecision:
    world_id: str
    holding_id: str
    year: int
    week: int
    payload: dict[str, Any]
    id: int | None = None
    created_at: datetime | None = None


@dataclass
class CompanyProgram:
    """A time-boxed effect bundle; ``payload`` holds effects and weekly_cost."""
    id: str
    world_id: str
    company_id: str
    program_type: str
    start_year: int
    start_week: int
    duration_weeks: int
    status: ProgramStatus = ProgramStatus.ACTIVE
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class CompanyUpgrade:
    id: str
    world_id: str
    company_id: str
    upgrade_id: str
    purchased_year: int
    purchased_week: int
    status: str = "ACTIVE"


@dataclass
class AcquisitionOffer:
    """A negotiated bid by one holding for a company owned by another.

    ``turn`` names the party expected to answer next; ``history`` keeps one
    entry per action (action, by, price, message, year, week).
    """
    id: str
    world_id: str
    company_id: str
    buyer_holding_id: str
    seller_holding_id: str
    offer_price: float
    expires_year: int
    expires_week: int
    status: OfferStatus = OfferStatus.OPEN
    turn: OfferParty = OfferParty.SELLER
    last_action: OfferParty = OfferParty.BUYER
    counter_count: int = 0
    message: str | None = None
    history: list[dict[str, Any]] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.status in (OfferStatus.OPEN, OfferStatus.COUNTERED)


@dataclass
class GameEvent:
    world_id: str
    year: int
    week: int
    scope: EventScope
    type: str
    severity: float = 1.0
    payload: dict[str, Any] = field(default_factory=dict)
    sector_id: str | None = None
    company_id: str | None = None
    holding_id: str | None = None
    id: int | None = None
