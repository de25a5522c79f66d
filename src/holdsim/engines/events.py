"""
Events engine interface.

Event triggers and narrative content live outside the tick core. The
orchestrator only needs something that, given a holding's weekly context,
returns the ``GameEvent`` records to store for that week. ``NullEventsEngine``
is the default and produces nothing.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Mapping, Sequence

from holdsim.core.models import (
    Company,
    CompanyFinancials,
    GameEvent,
    Holding,
    WorldEconomyState,
    WorldSectorState,
)
from holdsim.core.random_source import RandomSource


@dataclass
class EventContext:
    """What an events engine may look at for one holding in one week."""
    world_id: str
    year: int
    week: int
    economy: WorldEconomyState
    holding: Holding
    companies: Sequence[Company]
    financials: Mapping[str, CompanyFinancials]
    sector_states: Mapping[str, WorldSectorState]
    source: RandomSource
    extra: dict = field(default_factory=dict)


class EventsEngine(ABC):

    @abstractmethod
    def generate(self, ctx: EventContext) -> list[GameEvent]:
        """Return pending events for ``ctx.holding`` in ``(ctx.year, ctx.week)``."""


class NullEventsEngine(EventsEngine):

    def generate(self, ctx: EventContext) -> list[GameEvent]:
        return []
