"""
Effect modifier algebra.

An ``EffectModifiers`` bundle carries multiplicative factors (identity 1.0)
and additive deltas (identity 0.0). ``compose`` multiplies factors and sums
deltas, so folding any number of program and upgrade effects is an
associative ``reduce`` starting from ``EffectModifiers.identity()``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from functools import reduce
from typing import Any, Iterable

from holdsim.core.numeric import safe_number

logger = logging.getLogger(__name__)

MULTIPLIER_FIELDS = (
    "capacity",
    "variable_cost",
    "price_level",
    "marketing",
    "reputation",
    "quality",
    "demand",
    "labour",
)
ADDITIVE_FIELDS = ("marketing_level_delta", "extra_opex")

# Effect variable names used by catalog upgrades and programs
VARIABLE_ALIASES: dict[str, str] = {
    "capacity": "capacity",
    "unit_cost": "variable_cost",
    "variable_cost": "variable_cost",
    "avg_ticket": "price_level",
    "price": "price_level",
    "price_level": "price_level",
    "conversion": "marketing",
    "marketing": "marketing",
    "repeat": "reputation",
    "churn": "reputation",
    "reputation": "reputation",
    "quality": "quality",
    "demand": "demand",
    "labour": "labour",
    "labor": "labour",
    "fixed_costs": "extra_opex",
    "opex": "extra_opex",
    "marketing_level": "marketing_level_delta",
}


@dataclass(frozen=True)
class EffectModifiers:
    capacity: float = 1.0
    variable_cost: float = 1.0
    price_level: float = 1.0
    marketing: float = 1.0
    reputation: float = 1.0
    quality: float = 1.0
    demand: float = 1.0
    labour: float = 1.0
    marketing_level_delta: float = 0.0
    extra_opex: float = 0.0

    @classmethod
    def identity(cls) -> EffectModifiers:
        return cls()

    def compose(self, other: EffectModifiers) -> EffectModifiers:
        values: dict[str, float] = {}
        for name in MULTIPLIER_FIELDS:
            values[name] = getattr(self, name) * getattr(other, name)
        for name in ADDITIVE_FIELDS:
            values[name] = getattr(self, name) + getattr(other, name)
        return EffectModifiers(**values)

    __mul__ = compose

    @classmethod
    def fold(cls, bundles: Iterable[EffectModifiers]) -> EffectModifiers:
        return reduce(lambda acc, m: acc.compose(m), bundles, cls.identity())

    def is_identity(self) -> bool:
        return self == EffectModifiers.identity()

    def apply(self, name: str, base: float) -> float:
        """``base * factor`` for a multiplier field."""
        return base * getattr(self, name)

    def to_dict(self) -> dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    # ---- Construction from catalog effects ----

    @classmethod
    def from_effect(cls, variable: str, value: float, op: str = "mul") -> EffectModifiers:
        """Build a single-field bundle from one effect entry.

        ``op="mul"`` values are factors (1.1 = +10%); ``op="add"`` values on
        a multiplier field are percentage deltas (0.1 = +10%). Unknown
        variables yield the identity.
        """
        target = VARIABLE_ALIASES.get(str(variable).lower())
        if target is None:
            logger.debug("Ignoring unknown effect variable %r", variable)
            return cls.identity()
        value = safe_number(value, 0.0 if target in ADDITIVE_FIELDS or op == "add" else 1.0)
        if target in ADDITIVE_FIELDS:
            return cls(**{target: value})
        if op == "add":
            value = 1.0 + value
        return cls(**{target: max(0.0, value)})

    @classmethod
    def from_effects(cls, effects: Iterable[dict[str, Any]]) -> EffectModifiers:
        """Fold a list of ``{variable, op, value}`` entries with fixed values."""
        bundles = []
        for effect in effects or ():
            if "value" not in effect:
                continue
            bundles.append(cls.from_effect(
                effect.get("variable", ""), effect["value"], effect.get("op", "mul"),
            ))
        return cls.fold(bundles)
