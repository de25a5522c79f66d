"""
Master economy configuration for the holding-company simulation.

ALL tunable parameters live here. The engines read every constant from an
``EconomyConfig`` instance; nothing in the weekly pipeline is hardcoded.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass
class EconomyConfig:
    """
    Economy configuration covering the bounds, weights and rates of the weekly tick.

    Sections are plain dicts so a partial override (``from_dict``) only
    needs to name the keys it changes inside a section.
    Use ``to_dict()`` / ``from_dict()`` for serialization and comparison.
    """

    # === Identity ===
    config_name: str = "default"
    engine_version: str = "engine-v1"
    weeks_per_year: int = 52

    # === Macro economy ===
    macro: dict[str, Any] = field(default_factory=lambda: {
        "volatility": 0.15,
        "interest_drift": 0.0,
        "interest_noise": 0.002,
        "inflation_drift": 0.0,
        "inflation_noise": 0.003,
        "wage_multiplier_base": 1.002,
        "wage_multiplier_noise": 0.002,
        "wage_multiplier_bounds": [0.95, 1.05],
        "interest_bounds": [0.0, 0.5],
        "inflation_bounds": [-0.25, 1.0],
        "wage_index_bounds": [0.5, 5.0],
        "default_interest_rate": 0.02,
        "default_inflation_rate": 0.02,
        "default_wage_index": 1.0,
    })

    # === Sector demand ===
    sector: dict[str, Any] = field(default_factory=lambda: {
        "trend_per_week": 0.0008,
        "trend_bounds": [0.75, 1.35],
        "volatility_bounds": [0.02, 0.35],
        "default_volatility": 0.12,
        "demand_max": 1_000_000.0,
        "demand_smoothing": 0.35,
        "default_base_demand": 100.0,
    })

    # === Simple-mode market shares ===
    market_share: dict[str, float] = field(default_factory=lambda: {
        "softmax_temperature": 0.85,
        "utility_min": -6.0,
        "utility_max": 6.0,
        "min_temperature": 0.0001,
    })

    attractiveness: dict[str, float] = field(default_factory=lambda: {
        "price_weight": 0.9,
        "quality_weight": 0.8,
        "marketing_weight": 0.55,
        "reputation_weight": 0.7,
        "location_weight": 0.35,
        "default_elasticity": 1.0,
    })

    # === Segment-mode allocation ===
    segment_allocation: dict[str, Any] = field(default_factory=lambda: {
        "max_rounds": 4,
        "price_factor_bounds": [0.65, 1.45],
        "softmax_temperature": 1.0,
        "price_weight": 1.0,
        "quality_weight": 0.8,
        "marketing_weight": 0.55,
        "reputation_weight": 0.7,
        "availability_weight": 0.6,
        "default_elasticity": 1.0,
        "min_availability": 0.05,
    })

    # === Company cost and state defaults ===
    company_defaults: dict[str, float] = field(default_factory=lambda: {
        "base_price": 100.0,
        "variable_cost": 40.0,
        "fixed_costs": 1000.0,
        "wage_per_employee": 500.0,
        "labour_intensity": 1.0,
        "skill_intensity": 1.0,
        # initial CompanyState
        "price_level": 1.0,
        "capacity": 100.0,
        "quality": 1.0,
        "marketing_level": 0.0,
        "awareness": 20.0,
        "employees": 3,
        "fixed_cost_base": 500.0,
        "variable_cost_base": 2.0,
        "reputation": 0.5,
        "operational_efficiency": 50.0,
        "utilisation": 0.0,
    })

    reputation: dict[str, Any] = field(default_factory=lambda: {
        "smoothing": 0.35,
        "profit_bonus": 2.0,
        "loss_penalty": 2.4,
        "bounds": [0.0, 1.2],
        "review_weight": 0.05,
        "refund_weight": 0.5,
        "review_cap": 0.05,
    })

    awareness: dict[str, Any] = field(default_factory=lambda: {
        "gain": 2.0,
        "spend_scale": 100.0,
        "decay": 0.5,
        "max_weekly_drift": 5.0,
        "bounds": [0.0, 100.0],
    })

    efficiency: dict[str, Any] = field(default_factory=lambda: {
        "max_weekly_delta": 5.0,
        "bounds": [0.0, 100.0],
        "neutral_score": 50.0,
        "cost_effect": 0.1,
    })

    # Quality -> refund percentage brackets (linear inside a bracket, 0 outside)
    refunds: list[dict[str, float]] = field(default_factory=lambda: [
        {"quality_min": 0.0, "quality_max": 0.6, "pct_at_min": 0.15, "pct_at_max": 0.08},
        {"quality_min": 0.6, "quality_max": 1.0, "pct_at_min": 0.08, "pct_at_max": 0.02},
    ])

    # === Bot market proxy ===
    bot_market: dict[str, Any] = field(default_factory=lambda: {
        "default_demand_volatility": 0.2,
        "default_sector_volatility": 0.02,
        "default_price_elasticity": 0.6,
        "competition_baselines": {
            "MONOPOLY_LIKE": 0.15,
            "OLIGOPOLY": 0.35,
            "FRAGMENTED": 0.55,
        },
        "competition_default": 0.45,
        "competition_jitter": 0.15,
        "price_jitter": 0.25,
        "bot_demand_bounds": [0.4, 1.3],
        "price_demand_bounds": [0.1, 1.5],
    })

    # === Finance ===
    finance: dict[str, Any] = field(default_factory=lambda: {
        "corporate_tax_rate": 0.19,
        "loan_rate_bounds": [0.0, 0.18],
        "paid_off_epsilon": 0.0001,
        "repay_paid_off_epsilon": 0.01,
        "loan_term_bounds": [12, 260],
        "loan_spread_min": 0.01,
        "credit_rate_span": 0.04,
    })

    # === Player progression ===
    progression: dict[str, Any] = field(default_factory=lambda: {
        "xp_per_profitable_company": 6.0,
        "profit_to_xp_divisor": 2500.0,
        "max_profit_bonus": 35.0,
        "max_loss_penalty": 35.0,
        "stability_bonus": 6.0,
        "bankruptcy_penalty": 18.0,
        "event_positive": 8.0,
        "event_negative": 10.0,
        "weekly_cap_up": 80.0,
        "weekly_cap_down": 80.0,
        "xp_curve_base": 110.0,
        "xp_curve_exponent": 1.34,
        "max_level": 999,
        "positive_keywords": ["BOOST", "PRIZE", "AWARD", "HYPE", "INNOVATION"],
        "negative_keywords": ["CRASH", "FINE", "STRIKE", "SHOCK", "PANIC", "CRISIS"],
        "credit_positive_factor": 0.5,
        "credit_negative_factor": 0.7,
        "brand_bankruptcy_factor": 0.75,
        "credit_profit_factor": 0.35,
        "weekly_profit_bonus": 2.0,
        "weekly_loss_penalty": -2.4,
        "credit_weekly_profit_factor": 0.4,
        "brand_weekly_loss_factor": 0.5,
    })

    # === Decisions ===
    decisions: dict[str, Any] = field(default_factory=lambda: {
        "price_level_bounds": [0.4, 2.5],
        "quality_bounds": [0.2, 3.0],
        "buffer_weeks_max": 8,
        "buffer_capacity_per_week": 0.05,
    })

    # === Scheduler ===
    scheduler: dict[str, float] = field(default_factory=lambda: {
        "poll_interval_seconds": 5.0,
        "min_poll_interval_seconds": 1.0,
        "stale_tick_floor_seconds": 300.0,
    })

    # ------------------------------------------------------------------
    # Derived
    # ------------------------------------------------------------------
    def bounds(self, section: str, key: str) -> tuple[float, float]:
        """Return a ``(low, high)`` pair from a section, as floats."""
        low, high = getattr(self, section)[key]
        return float(low), float(high)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------
    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        d: dict[str, Any] = {}
        for k, v in self.__dict__.items():
            if k.startswith("_"):
                continue
            d[k] = v
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> EconomyConfig:
        """
        Deserialize from a dict.

        Dict-valued sections are merged over the defaults, so
        ``{"finance": {"corporate_tax_rate": 0.25}}`` keeps every other
        finance key.
        """
        base = cls()
        kwargs: dict[str, Any] = {}
        for k, v in d.items():
            if k.startswith("_") or not hasattr(base, k):
                continue
            current = getattr(base, k)
            if isinstance(current, dict) and isinstance(v, dict):
                merged = dict(current)
                merged.update(v)
                kwargs[k] = merged
            else:
                kwargs[k] = v
        return cls(**kwargs)

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, default=str)

    @classmethod
    def from_json(cls, s: str) -> EconomyConfig:
        return cls.from_dict(json.loads(s))

    def diff(self, other: EconomyConfig) -> dict[str, tuple[Any, Any]]:
        """Return parameters that differ between two configs."""
        diffs: dict[str, tuple[Any, Any]] = {}
        for k in self.to_dict():
            v1 = getattr(self, k)
            v2 = getattr(other, k)
            if v1 != v2:
                diffs[k] = (v1, v2)
        return diffs
