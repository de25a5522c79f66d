"""
Program and upgrade effects for one tick.

Programs contribute their effect bundle (plus their weekly cost as extra
opex) while ``start <= week_index < start + duration``. Upgrades contribute
once matured, i.e. from ``purchase_week_index + delay`` on. The delay, the
effect magnitudes and the capex of an upgrade are seeded draws keyed by the
purchase week, so they are fixed the moment the upgrade is bought.

Niches with an operations model add one more bundle per company, built
from its staffing, opening hours and energy mode for the week.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from holdsim.core.modifiers import EffectModifiers
from holdsim.core.models import (
    CompanyProgram,
    CompanyState,
    CompanyUpgrade,
    Niche,
    NicheUpgrade,
    ProgramStatus,
)
from holdsim.core.numeric import clamp, round_half_up, safe_number, week_index
from holdsim.core.random_source import RandomSource

logger = logging.getLogger(__name__)

WEEKS_PER_MONTH = 52 / 12


# ---------------------------------------------------------------------------
# Programs
# ---------------------------------------------------------------------------

def program_window(program: CompanyProgram) -> tuple[int, int]:
    """``(first, end)`` absolute week indices; ``end`` is exclusive."""
    start = week_index(program.start_year, program.start_week)
    return start, start + max(1, int(program.duration_weeks))


def program_is_active(program: CompanyProgram, year: int, week: int) -> bool:
    if program.status != ProgramStatus.ACTIVE:
        return False
    start, end = program_window(program)
    return start <= week_index(year, week) < end


def program_has_ended(program: CompanyProgram, year: int, week: int) -> bool:
    return week_index(year, week) >= program_window(program)[1]


def program_modifiers(program: CompanyProgram) -> EffectModifiers:
    payload = program.payload or {}
    bundle = EffectModifiers.from_effects(payload.get("effects") or ())
    weekly_cost = max(0.0, safe_number(payload.get("weekly_cost")))
    if weekly_cost:
        bundle = bundle.compose(EffectModifiers(extra_opex=weekly_cost))
    return bundle


# ---------------------------------------------------------------------------
# Upgrades
# ---------------------------------------------------------------------------

def _purchase_source(source: RandomSource, owned: CompanyUpgrade) -> RandomSource:
    return source.at(owned.purchased_year, owned.purchased_week)


def _range(value: Any) -> tuple[float, float] | None:
    if isinstance(value, Mapping):
        low, high = value.get("min"), value.get("max")
    elif isinstance(value, (list, tuple)) and len(value) == 2:
        low, high = value
    else:
        return None
    if low is None or high is None:
        return None
    return safe_number(low), safe_number(high)


def upgrade_delay_weeks(
    upgrade: NicheUpgrade, owned: CompanyUpgrade, source: RandomSource,
) -> int:
    bounds = _range(upgrade.delay_weeks)
    if bounds is None:
        return 0
    return max(0, _purchase_source(source, owned).pick_int_range(
        (owned.company_id, upgrade.id, "delay"), int(bounds[0]), int(bounds[1]),
    ))


def upgrade_is_mature(
    upgrade: NicheUpgrade, owned: CompanyUpgrade, source: RandomSource,
    year: int, week: int,
) -> bool:
    if owned.status != "ACTIVE":
        return False
    matures_at = (
        week_index(owned.purchased_year, owned.purchased_week)
        + upgrade_delay_weeks(upgrade, owned, source)
    )
    return week_index(year, week) >= matures_at


def upgrade_modifiers(
    upgrade: NicheUpgrade, owned: CompanyUpgrade, source: RandomSource,
) -> EffectModifiers:
    """Effect bundle of a matured upgrade, with magnitudes drawn at purchase."""
    purchase = _purchase_source(source, owned)
    bundles = []
    for effect in upgrade.effects:
        variable = str(effect.get("variable", ""))
        op = str(effect.get("op", "mul"))
        bounds = _range(effect.get("range"))
        if bounds is not None:
            neutral = 0.0 if op == "add" else 1.0
            value = purchase.pick_range(
                (owned.company_id, upgrade.id, variable), bounds[0], bounds[1], fallback=neutral,
            )
        elif "value" in effect:
            value = safe_number(effect["value"], 0.0 if op == "add" else 1.0)
        else:
            continue
        bundles.append(EffectModifiers.from_effect(variable, value, op))
    return EffectModifiers.fold(bundles)


def upgrade_capex(
    upgrade: NicheUpgrade, owned: CompanyUpgrade, startup_cost: float | None,
    source: RandomSource,
) -> float:
    """One-off purchase cost.

    A share of the niche's startup cost drawn from ``capex_pct_range`` when
    both are known, otherwise the upgrade's flat ``cost``.
    """
    startup = safe_number(startup_cost)
    bounds = _range(upgrade.capex_pct_range)
    if startup > 0 and bounds is not None:
        pct = _purchase_source(source, owned).pick_range(
            (owned.company_id, upgrade.id, "capex"), bounds[0], bounds[1], fallback=bounds[0],
        )
        return max(0.0, startup * pct)
    return max(0.0, safe_number(upgrade.cost))


def upgrade_weekly_opex(upgrade: NicheUpgrade, last_weekly_revenue: float) -> float:
    """Running cost as a share of monthly revenue, spread over the month's weeks."""
    bounds = _range(upgrade.opex_pct_range)
    revenue = safe_number(last_weekly_revenue)
    if bounds is None or revenue <= 0:
        return 0.0
    pct = (bounds[0] + bounds[1]) / 2
    return max(0.0, revenue * pct / WEEKS_PER_MONTH)


# ---------------------------------------------------------------------------
# Folding
# ---------------------------------------------------------------------------

@dataclass
class CompanyEffects:
    modifiers: EffectModifiers
    extra_opex: float = 0.0


def fold_company_effects(
    programs: Iterable[CompanyProgram],
    owned_upgrades: Iterable[CompanyUpgrade],
    upgrade_catalog: Mapping[str, NicheUpgrade],
    source: RandomSource,
    year: int,
    week: int,
    last_weekly_revenue: float = 0.0,
) -> CompanyEffects:
    """Compose every active program and matured upgrade of one company."""
    bundles: list[EffectModifiers] = []
    for program in programs:
        if program_is_active(program, year, week):
            bundles.append(program_modifiers(program))

    upgrade_opex = 0.0
    for owned in owned_upgrades:
        upgrade = upgrade_catalog.get(owned.upgrade_id)
        if upgrade is None:
            logger.debug("Owned upgrade %s is not in the catalog", owned.upgrade_id)
            continue
        if owned.status == "ACTIVE":
            upgrade_opex += upgrade_weekly_opex(upgrade, last_weekly_revenue)
        if upgrade_is_mature(upgrade, owned, source, year, week):
            bundles.append(upgrade_modifiers(upgrade, owned, source))

    modifiers = EffectModifiers.fold(bundles)
    return CompanyEffects(
        modifiers=modifiers,
        extra_opex=max(0.0, modifiers.extra_opex) + upgrade_opex,
    )


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

def _energy_mode(intensity: float) -> str:
    if intensity <= 0.33:
        return "eco"
    if intensity >= 0.75:
        return "peak_avoid"
    return "normal"


def resolve_ops_modifiers(
    niche: Niche,
    state: CompanyState,
    ops_intensity: float | None = None,
    availability: float | None = None,
) -> CompanyEffects | None:
    """Capacity, quality and cost effects of running a niche's service lanes.

    Only niches with an ``ops`` block take part. The company's planned
    capacity is split into lanes; staffing below the lanes' needs, shorter
    opening hours, the energy mode picked by ``ops_intensity`` and expected
    breakdown downtime all scale capacity, while the maintenance tier
    (driven by quality, one step lower when running hot) adds opex.
    """
    ops = niche.ops or {}
    if not isinstance(ops, dict) or not ops:
        return None
    staffing = ops.get("staffing") or {}
    energy_modes = ops.get("energy_modes") or {}
    maintenance = ops.get("maintenance") or {}

    ticks = max(1.0, safe_number(ops.get("ticks_per_week"), 1008))
    lane_throughput = max(0.1, safe_number(ops.get("lane_throughput_per_tick"), 2))
    lanes = max(1.0, max(0.0, safe_number(state.capacity)) / max(1.0, lane_throughput * ticks))

    staff_needed = lanes * max(0.1, safe_number(staffing.get("lane_fte_per_lane"), 1))
    staff_ratio = max(0.0, safe_number(state.employees)) / staff_needed
    staff_floor = clamp(safe_number(staffing.get("staff_shortage_capacity_floor"), 0.4), 0.1, 1.0)
    staff_factor = clamp(staff_ratio, staff_floor, 1.0)

    open_hours = clamp(availability, 0.4, 1.2) if availability is not None else 1.0
    intensity = clamp(ops_intensity, 0.0, 1.0) if ops_intensity is not None else 0.5
    energy = energy_modes.get(_energy_mode(intensity)) or {}

    quality_norm = clamp((safe_number(state.quality_score, 0.6) - 0.4) / 0.6, 0.0, 1.0)
    level = round_half_up(quality_norm * 3)
    if intensity > 0.75:
        level = max(0, level - 1)
    levels = maintenance.get("levels") or []
    tier = next((lv for lv in levels if int(safe_number(lv.get("level"), -1)) == level), None)
    tier = tier or (levels[0] if levels else {})

    breakdown_pct = max(0.0, safe_number(tier.get("breakdown_chance_pct"), 0.2))
    downtime_range = maintenance.get("downtime_ticks_range") or {}
    avg_downtime = (
        safe_number(downtime_range.get("min"), 2) + safe_number(downtime_range.get("max"), 12)
    ) / 2
    expected_downtime = lanes * ticks * (breakdown_pct / 100) * avg_downtime
    downtime_factor = clamp(1 - expected_downtime / ticks, 0.0, 1.0)

    maintenance_cost = max(0.0, safe_number(tier.get("cost_per_lane_per_tick"))) * lanes * ticks
    overstaff_boost = min(0.06, (staff_ratio - 1) * 0.05) if staff_ratio > 1 else 0.0

    modifiers = EffectModifiers(
        capacity=staff_factor * open_hours * safe_number(energy.get("throughput_multiplier"), 1.0)
        * downtime_factor,
        quality=safe_number(energy.get("quality_multiplier"), 1.0) * (1 + overstaff_boost),
        variable_cost=safe_number(energy.get("energy_cost_multiplier"), 1.0),
    )
    return CompanyEffects(modifiers=modifiers, extra_opex=maintenance_cost)
