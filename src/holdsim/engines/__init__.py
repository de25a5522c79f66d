"""Weekly simulation sub-engines."""

from holdsim.engines.bot_market import BotMarketEngine, BotMarketPressure
from holdsim.engines.company import CompanyEngine, CompanyGroupInput, DemandSegment
from holdsim.engines.events import EventContext, EventsEngine, NullEventsEngine
from holdsim.engines.finance import FinanceEngine
from holdsim.engines.macro import MacroEngine
from holdsim.engines.progression import ProgressionEngine
from holdsim.engines.sector import SectorEngine

__all__ = [
    "BotMarketEngine",
    "BotMarketPressure",
    "CompanyEngine",
    "CompanyGroupInput",
    "DemandSegment",
    "EventContext",
    "EventsEngine",
    "NullEventsEngine",
    "FinanceEngine",
    "MacroEngine",
    "ProgressionEngine",
    "SectorEngine",
]
