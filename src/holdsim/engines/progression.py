"""
ProgressionEngine: weekly brand and credit reputation for a player.

Two independent XP tracks share one level curve
(``xp_to_next = base * level ** exponent``). Weekly XP comes from
profitable companies, total profit, stability, bankruptcies and events;
each track's weekly delta is capped, and XP never pushes a level down.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Mapping, Sequence

from holdsim.core.config import EconomyConfig
from holdsim.core.models import (
    Company,
    CompanyFinancials,
    CompanyStatus,
    GameEvent,
    Player,
)
from holdsim.core.numeric import clamp, round_half_up, safe_number


@dataclass
class ProgressionTickResult:
    player: Player
    brand_delta_xp: float
    credit_delta_xp: float
    brand_levels_gained: int
    credit_levels_gained: int

    @property
    def delta_xp(self) -> float:
        return (self.brand_delta_xp + self.credit_delta_xp) / 2


class ProgressionEngine:

    def __init__(self, config: EconomyConfig | None = None):
        self.config = config or EconomyConfig()

    # ------------------------------------------------------------------
    # Level curve
    # ------------------------------------------------------------------
    def xp_for_next_level(self, level: int) -> float:
        cfg = self.config.progression
        return cfg["xp_curve_base"] * level ** cfg["xp_curve_exponent"]

    def apply_xp(self, level: int, xp: float, delta: float) -> tuple[int, float]:
        """Add ``delta`` XP and resolve any number of level-ups."""
        max_level = int(self.config.progression["max_level"])
        level = int(level)
        xp = xp + delta
        while level < max_level:
            required = self.xp_for_next_level(level)
            if xp < required:
                break
            xp -= required
            level += 1
        return level, max(0.0, xp)

    # ------------------------------------------------------------------
    # Event classification
    # ------------------------------------------------------------------
    def classify_event(self, event_type: str) -> tuple[bool, bool]:
        cfg = self.config.progression
        t = str(event_type).upper()
        positive = any(k in t for k in cfg["positive_keywords"])
        negative = any(k in t for k in cfg["negative_keywords"])
        return positive, negative

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------
    def tick(
        self,
        player: Player,
        companies: Sequence[Company],
        financials: Mapping[str, CompanyFinancials | None],
        events: Sequence[GameEvent] = (),
    ) -> ProgressionTickResult:
        cfg = self.config.progression

        active = [c for c in companies if c.status == CompanyStatus.ACTIVE]
        profits = [
            safe_number(financials[c.id].net_profit) if financials.get(c.id) else 0.0
            for c in active
        ]
        profitable = sum(1 for p in profits if p > 0)
        total_profit = sum(profits)
        bankruptcies = sum(1 for c in companies if c.status == CompanyStatus.BANKRUPT)
        stable = bankruptcies == 0 and len(active) > 0

        event_brand = 0.0
        event_credit = 0.0
        for event in events:
            severity = safe_number(event.severity, 1.0)
            positive, negative = self.classify_event(event.type)
            if positive:
                event_brand += cfg["event_positive"] * severity
                event_credit += round_half_up(cfg["event_positive"] * severity * cfg["credit_positive_factor"])
            if negative:
                event_brand -= cfg["event_negative"] * severity
                event_credit -= round_half_up(cfg["event_negative"] * severity * cfg["credit_negative_factor"])

        divisor = cfg["profit_to_xp_divisor"]
        profit_pos = clamp(total_profit / divisor, 0, cfg["max_profit_bonus"])
        profit_neg = clamp(total_profit / divisor, -cfg["max_loss_penalty"], 0)

        brand = profitable * cfg["xp_per_profitable_company"] + profit_pos + event_brand
        credit = profit_neg + event_credit

        if stable:
            brand += cfg["stability_bonus"]
            credit += cfg["stability_bonus"]
            if total_profit > 0:
                credit += round_half_up(profit_pos * cfg["credit_profit_factor"])
        else:
            brand -= bankruptcies * round_half_up(cfg["bankruptcy_penalty"] * cfg["brand_bankruptcy_factor"])
            credit -= bankruptcies * cfg["bankruptcy_penalty"]

        if total_profit > 0:
            brand += cfg["weekly_profit_bonus"]
            credit += round_half_up(cfg["weekly_profit_bonus"] * cfg["credit_weekly_profit_factor"])
        elif total_profit < 0:
            brand += round_half_up(cfg["weekly_loss_penalty"] * cfg["brand_weekly_loss_factor"])
            credit += cfg["weekly_loss_penalty"]

        brand = clamp(brand, -cfg["weekly_cap_down"], cfg["weekly_cap_up"])
        credit = clamp(credit, -cfg["weekly_cap_down"], cfg["weekly_cap_up"])

        brand_level, brand_xp = self.apply_xp(player.brand_level, safe_number(player.brand_xp), brand)
        credit_level, credit_xp = self.apply_xp(player.credit_level, safe_number(player.credit_xp), credit)

        return ProgressionTickResult(
            player=replace(
                player,
                brand_level=brand_level,
                brand_xp=brand_xp,
                credit_level=credit_level,
                credit_xp=credit_xp,
            ),
            brand_delta_xp=brand,
            credit_delta_xp=credit,
            brand_levels_gained=brand_level - int(player.brand_level),
            credit_levels_gained=credit_level - int(player.credit_level),
        )
