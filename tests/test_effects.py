"""Tests for the weekly operations model of lane-based niches."""

import pytest

from holdsim.core.models import CompanyState, Niche
from holdsim.tick.effects import resolve_ops_modifiers

OPS = {
    "ticks_per_week": 100,
    "lane_throughput_per_tick": 1,
    "staffing": {"lane_fte_per_lane": 2, "staff_shortage_capacity_floor": 0.4},
    "energy_modes": {
        "eco": {"energy_cost_multiplier": 0.8, "throughput_multiplier": 0.9, "quality_multiplier": 0.97},
        "normal": {},
        "peak_avoid": {"energy_cost_multiplier": 1.2, "throughput_multiplier": 1.1},
    },
    "maintenance": {
        "levels": [
            {"level": 0, "breakdown_chance_pct": 0.1, "cost_per_lane_per_tick": 0.5},
            {"level": 3, "breakdown_chance_pct": 0.0, "cost_per_lane_per_tick": 1.0},
            {"level": 2, "breakdown_chance_pct": 0.05, "cost_per_lane_per_tick": 0.8},
        ],
        "downtime_ticks_range": {"min": 2, "max": 6},
    },
}


def _make_niche(ops=None) -> Niche:
    return Niche(id="n1", sector_id="s1", code="N1", name="Car wash", ops=OPS if ops is None else ops)


def _make_state(**kwargs) -> CompanyState:
    # two lanes of 100 units, fully staffed, top maintenance tier
    defaults = {"capacity": 200.0, "employees": 4, "quality_score": 1.0}
    defaults.update(kwargs)
    return CompanyState(company_id="c1", world_id="w1", year=1, week=1, **defaults)


class TestOperations:
    def test_niche_without_ops(self):
        assert resolve_ops_modifiers(_make_niche(ops={}), _make_state()) is None

    def test_defaults_only_charge_maintenance(self):
        ops = resolve_ops_modifiers(_make_niche(), _make_state())
        assert ops.modifiers.capacity == pytest.approx(1.0)
        assert ops.modifiers.quality == pytest.approx(1.0)
        assert ops.modifiers.variable_cost == pytest.approx(1.0)
        assert ops.extra_opex == pytest.approx(200.0)

    def test_understaffing_hits_floor(self):
        ops = resolve_ops_modifiers(_make_niche(), _make_state(employees=1))
        assert ops.modifiers.capacity == pytest.approx(0.4)

    def test_overstaffing_lifts_quality(self):
        ops = resolve_ops_modifiers(_make_niche(), _make_state(employees=8))
        assert ops.modifiers.capacity == pytest.approx(1.0)
        assert ops.modifiers.quality == pytest.approx(1.05)

    def test_eco_mode(self):
        ops = resolve_ops_modifiers(_make_niche(), _make_state(), ops_intensity=0.2)
        assert ops.modifiers.capacity == pytest.approx(0.9)
        assert ops.modifiers.variable_cost == pytest.approx(0.8)
        assert ops.modifiers.quality == pytest.approx(0.97)

    def test_running_hot_drops_maintenance_tier(self):
        ops = resolve_ops_modifiers(_make_niche(), _make_state(), ops_intensity=0.9)
        # tier 2: 2 lanes * 100 ticks * 0.05% * 4 ticks of downtime each
        assert ops.modifiers.capacity == pytest.approx(1.1 * (1 - 0.4 / 100))
        assert ops.modifiers.variable_cost == pytest.approx(1.2)
        assert ops.extra_opex == pytest.approx(160.0)

    def test_opening_hours_clamped(self):
        short = resolve_ops_modifiers(_make_niche(), _make_state(), availability=0.1)
        assert short.modifiers.capacity == pytest.approx(0.4)
        longer = resolve_ops_modifiers(_make_niche(), _make_state(), availability=1.1)
        assert longer.modifiers.capacity == pytest.approx(1.1)

    def test_unknown_tier_uses_first_level(self):
        ops = resolve_ops_modifiers(_make_niche(), _make_state(quality_score=0.6))
        assert ops.modifiers.capacity == pytest.approx(1 - 0.8 / 100)
        assert ops.extra_opex == pytest.approx(100.0)
