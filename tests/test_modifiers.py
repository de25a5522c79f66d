"""Tests for the effect modifier algebra."""

import pytest

from holdsim.core.modifiers import EffectModifiers


class TestAlgebra:
    def test_identity(self):
        ident = EffectModifiers.identity()
        assert ident.is_identity()
        assert ident.capacity == 1.0
        assert ident.extra_opex == 0.0

    def test_identity_is_neutral(self):
        m = EffectModifiers(capacity=1.2, extra_opex=50.0)
        assert m.compose(EffectModifiers.identity()) == m
        assert EffectModifiers.identity().compose(m) == m

    def test_compose_multiplies_and_sums(self):
        a = EffectModifiers(capacity=1.2, marketing_level_delta=10.0)
        b = EffectModifiers(capacity=1.5, marketing_level_delta=5.0, variable_cost=0.9)
        c = a * b
        assert c.capacity == pytest.approx(1.8)
        assert c.variable_cost == pytest.approx(0.9)
        assert c.marketing_level_delta == pytest.approx(15.0)

    def test_compose_associative(self):
        a = EffectModifiers(capacity=1.1, extra_opex=3.0)
        b = EffectModifiers(capacity=0.9, quality=1.2)
        c = EffectModifiers(quality=1.05, extra_opex=7.0)
        left = (a * b) * c
        right = a * (b * c)
        assert left.capacity == pytest.approx(right.capacity)
        assert left.quality == pytest.approx(right.quality)
        assert left.extra_opex == pytest.approx(right.extra_opex)

    def test_fold_empty_is_identity(self):
        assert EffectModifiers.fold([]).is_identity()

    def test_fold_many(self):
        m = EffectModifiers.fold([EffectModifiers(demand=1.1)] * 3)
        assert m.demand == pytest.approx(1.331)

    def test_apply(self):
        assert EffectModifiers(capacity=1.5).apply("capacity", 100.0) == pytest.approx(150.0)


class TestFromEffects:
    def test_alias_mapping(self):
        m = EffectModifiers.from_effect("unit_cost", 0.9)
        assert m.variable_cost == pytest.approx(0.9)
        m = EffectModifiers.from_effect("avg_ticket", 1.05)
        assert m.price_level == pytest.approx(1.05)

    def test_add_on_multiplier_is_percentage(self):
        m = EffectModifiers.from_effect("capacity", 0.2, op="add")
        assert m.capacity == pytest.approx(1.2)

    def test_additive_fields(self):
        m = EffectModifiers.from_effect("fixed_costs", 120.0)
        assert m.extra_opex == pytest.approx(120.0)
        m = EffectModifiers.from_effect("marketing_level", 25.0)
        assert m.marketing_level_delta == pytest.approx(25.0)

    def test_unknown_variable_is_identity(self):
        assert EffectModifiers.from_effect("teleportation", 3.0).is_identity()

    def test_from_effects_skips_entries_without_value(self):
        m = EffectModifiers.from_effects([
            {"variable": "capacity", "value": 1.1},
            {"variable": "demand", "range": [1.0, 2.0]},
            {"variable": "quality", "op": "add", "value": 0.1},
        ])
        assert m.capacity == pytest.approx(1.1)
        assert m.demand == 1.0
        assert m.quality == pytest.approx(1.1)
