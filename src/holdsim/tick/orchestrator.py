"""
Weekly world tick.

``run_world_tick`` is the single entry point: it takes the world's tick
lock, runs one week of the pipeline, persists the outcome and releases the
lock. A second caller while the lock is held gets ``False`` back and
changes nothing.

Pipeline per tick:
1.  Load last week's state and this week's decisions (up to the cutoff
    recorded when the lock was taken)
2.  Apply company decisions to working copies, expire finished programs
3.  Fold program, upgrade and operations effects into per-company modifiers
4.  MacroEngine (once per world)
5.  SectorEngine (once per sector, persisted immediately)
6.  BotMarketEngine (once per niche with active companies)
7.  CompanyEngine (once per sector/niche group)
8.  Expire lapsed acquisition offers, then holding decisions (cash
    transfers, loans, acquisition negotiations)
9.  FinanceEngine (once per holding)
10. EventsEngine (once per holding)
11. ProgressionEngine (once per player-owned holding)
12. Persist everything else in one transaction, advance the clock and
    mark the round COMPLETED
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime

from holdsim.core.config import EconomyConfig
from holdsim.core.errors import DataIntegrityError
from holdsim.core.models import (
    Company,
    CompanyFinancials,
    CompanyProgram,
    CompanyState,
    CompanyStatus,
    GameEvent,
    Niche,
    Player,
    ProgramStatus,
    RoundStatus,
    Season,
    World,
    WorldEconomyState,
)
from holdsim.core.numeric import next_week, safe_number
from holdsim.core.random_source import RandomSource
from holdsim.engines.bot_market import BotMarketEngine
from holdsim.engines.company import CompanyEngine, CompanyGroupInput, DemandSegment
from holdsim.engines.events import EventContext, EventsEngine, NullEventsEngine
from holdsim.engines.finance import FinanceEngine
from holdsim.engines.macro import MacroEngine
from holdsim.engines.progression import ProgressionEngine
from holdsim.engines.sector import SectorEngine
from holdsim.persistence.serializers import utcnow
from holdsim.persistence.store import WorldStore
from holdsim.tick.decision_applier import (
    CompanyWorkingSet,
    HoldingLedger,
    apply_company_decisions,
    apply_holding_decisions,
    expire_stale_offers,
)
from holdsim.tick.effects import (
    CompanyEffects,
    fold_company_effects,
    program_has_ended,
    resolve_ops_modifiers,
)

logger = logging.getLogger(__name__)


def round_seed(world_id: str, year: int, week: int) -> str:
    return f"{world_id}:{year}:{week}"


@dataclass
class TickReport:
    """What one tick did, for logging and callers that want detail."""
    world_id: str
    year: int
    week: int
    companies_simulated: int = 0
    company_decisions_applied: int = 0
    holding_decisions_applied: int = 0
    events: int = 0
    sector_demand: dict[str, float] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# One week of one world
# ---------------------------------------------------------------------------

class WorldTick:
    """Runs the pipeline for a world whose tick lock is already held."""

    def __init__(
        self,
        store: WorldStore,
        world: World,
        economy: WorldEconomyState,
        config: EconomyConfig,
        events_engine: EventsEngine,
        now: datetime,
    ):
        self.store = store
        self.world = world
        self.economy = economy
        self.config = config
        self.events_engine = events_engine
        self.now = now

        self.year = economy.current_year
        self.week = economy.current_week
        self.source = RandomSource(world.id, self.year, self.week)
        self.season = Season.from_dict(world.season)

        self.macro_engine = MacroEngine(config)
        self.sector_engine = SectorEngine(config)
        self.bot_engine = BotMarketEngine(config)
        self.company_engine = CompanyEngine(config)
        self.finance_engine = FinanceEngine(config)
        self.progression_engine = ProgressionEngine(config)

        self.report = TickReport(world_id=world.id, year=self.year, week=self.week)

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------
    def run(self) -> TickReport:
        store = self.store
        world_id = self.world.id

        # -- Load --
        niches = {n.id: n for n in store.list_niches()}
        upgrade_catalog = {u.id: u for u in store.list_niche_upgrades()}
        companies = store.list_companies(world_id)
        active = [c for c in companies if c.status == CompanyStatus.ACTIVE]
        latest_states = store.latest_company_states(world_id)
        last_revenue: dict[str, float] = {}
        for company in active:
            fin = store.get_latest_company_financials(company.id)
            if fin is not None:
                last_revenue[company.id] = fin.revenue

        # -- Company decisions, programs, upgrades --
        working = self._build_working_sets(active, niches, latest_states)
        programs_to_save = self._expire_programs(working)
        self._apply_company_decisions(working, upgrade_catalog)
        effects = {
            cid: self._with_operations(ws, fold_company_effects(
                ws.programs.values(), ws.upgrades.values(), upgrade_catalog,
                self.source, self.year, self.week, last_revenue.get(cid, 0.0),
            ))
            for cid, ws in working.items()
        }

        # -- Macro --
        next_economy = self.macro_engine.tick(self.economy, self.source, self.season)

        # -- Sectors --
        sector_states, sector_demand = self._run_sectors(next_economy, niches)

        # -- Market --
        next_states, financials = self._run_market(
            working, effects, niches, next_economy, sector_states, sector_demand,
        )

        # -- Holdings --
        ledger = HoldingLedger(
            holdings={h.id: h for h in store.list_holdings(world_id)},
            companies={c.id: c for c in companies},
            loans={loan.id: loan for loan in store.list_loans(world_id)},
            offers={o.id: o for o in store.list_acquisition_offers(world_id, open_only=True)},
        )
        ledger.players = self._load_players(ledger)
        expired = expire_stale_offers(ledger, self.year, self.week)
        if expired:
            logger.debug("Expired %d acquisition offers in %s", expired, world_id)
        self._apply_holding_decisions(ledger, next_economy)
        financials = self._run_finance(ledger, next_economy, financials)

        # -- Events and progression --
        events = self._run_events(ledger, next_economy, financials, sector_states)
        players = self._run_progression(ledger, financials, events)

        # -- Persist --
        next_year, next_wk = next_week(self.year, self.week)
        with store.transaction():
            for state in next_states.values():
                store.upsert_company_state(state)
            for fin in financials.values():
                store.upsert_company_financials(fin)
            for ws in working.values():
                for pid in ws.touched_programs:
                    programs_to_save[pid] = ws.programs[pid]
                for owned in ws.new_upgrades:
                    store.upsert_company_upgrade(owned)
            for program in programs_to_save.values():
                store.upsert_program(program)
            for company in ledger.companies.values():
                store.save_company(company)
            for holding in ledger.holdings.values():
                store.save_holding(holding)
            for loan in ledger.loans.values():
                store.save_loan(loan)
            for offer_id in sorted(ledger.touched_offers):
                offer = ledger.offers[offer_id]
                store.save_acquisition_offer(replace(
                    offer, created_at=offer.created_at or self.now, updated_at=self.now,
                ))
            store.delete_events_for_week(world_id, self.year, self.week)
            store.insert_events(events)
            for player in players.values():
                store.patch_player_reputation(player)
            store.save_economy_state(replace(
                next_economy,
                current_year=next_year,
                current_week=next_wk,
                last_tick_at=self.now,
                last_applied_decision_seq=self.economy.decision_cutoff_seq or 0,
            ))
            store.finish_round(
                world_id, self.year, self.week, RoundStatus.COMPLETED, now=self.now,
            )

        self.report.companies_simulated = len(next_states)
        self.report.events = len(events)
        return self.report

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------
    def _build_working_sets(
        self,
        active: list[Company],
        niches: dict[str, Niche],
        latest_states: dict[str, CompanyState],
    ) -> dict[str, CompanyWorkingSet]:
        programs_by_company: dict[str, dict[str, CompanyProgram]] = defaultdict(dict)
        for program in self.store.list_active_programs(self.world.id):
            programs_by_company[program.company_id][program.id] = program
        upgrades_by_company: dict[str, dict] = defaultdict(dict)
        for owned in self.store.list_company_upgrades(self.world.id):
            upgrades_by_company[owned.company_id][owned.upgrade_id] = owned

        working: dict[str, CompanyWorkingSet] = {}
        for company in active:
            niche = niches.get(company.niche_id)
            if niche is None:
                raise DataIntegrityError("Niche", company.niche_id)
            state = latest_states.get(company.id) or self.company_engine.initial_state(
                company, self.year, self.week,
            )
            working[company.id] = CompanyWorkingSet(
                company=company,
                state=state,
                niche=niche,
                programs=programs_by_company.get(company.id, {}),
                upgrades=upgrades_by_company.get(company.id, {}),
            )
        return working

    @staticmethod
    def _with_operations(ws: CompanyWorkingSet, effects: CompanyEffects) -> CompanyEffects:
        ops = resolve_ops_modifiers(ws.niche, ws.state, ws.ops_intensity, ws.availability)
        if ops is None:
            return effects
        return CompanyEffects(
            modifiers=effects.modifiers.compose(ops.modifiers),
            extra_opex=effects.extra_opex + ops.extra_opex,
        )

    def _expire_programs(self, working: dict[str, CompanyWorkingSet]) -> dict[str, CompanyProgram]:
        expired: dict[str, CompanyProgram] = {}
        for ws in working.values():
            for pid, program in list(ws.programs.items()):
                if program.status == ProgramStatus.ACTIVE and program_has_ended(program, self.year, self.week):
                    done = replace(program, status=ProgramStatus.COMPLETED)
                    ws.programs[pid] = done
                    expired[pid] = done
        return expired

    def _apply_company_decisions(self, working: dict[str, CompanyWorkingSet], upgrade_catalog) -> None:
        decisions = self.store.list_company_decisions(
            self.world.id, self.year, self.week, cutoff_seq=self.economy.decision_cutoff_seq,
            carry_over_after=self.economy.last_applied_decision_seq,
        )
        by_company: dict[str, list] = defaultdict(list)
        for decision in decisions:
            if decision.company_id not in working:
                logger.debug("Decision %s targets inactive company %s", decision.id, decision.company_id)
                continue
            by_company[decision.company_id].append(decision)

        for cid in sorted(by_company):
            self.report.company_decisions_applied += apply_company_decisions(
                working[cid], by_company[cid], upgrade_catalog, self.source, self.config,
            )

    def _run_sectors(self, economy: WorldEconomyState, niches: dict[str, Niche]):
        prev_states = self.store.list_sector_states(self.world.id)
        next_states = dict(prev_states)
        demand: dict[str, float] = {}
        for sector in self.store.list_sectors():
            sector_niches = [n for n in niches.values() if n.sector_id == sector.id]
            result = self.sector_engine.tick(
                sector, sector_niches, prev_states.get(sector.id), economy, self.source, self.season,
            )
            # Sector checkpoint: persisted before the rest of the tick.
            self.store.upsert_sector_state(replace(result.next_state, world_id=self.world.id))
            next_states[sector.id] = result.next_state
            demand[sector.id] = result.demand
        self.report.sector_demand = demand
        return next_states, demand

    def _segments_for(self, niche: Niche, demand: float) -> list[DemandSegment] | None:
        if not niche.segments:
            return None
        total_share = sum(max(0.0, safe_number(s.get("demand_share"))) for s in niche.segments)
        if total_share <= 0:
            return None
        default_price = safe_number(niche.base_price, self.config.company_defaults["base_price"])
        return [
            DemandSegment(
                name=str(seg["name"]),
                demand=demand * max(0.0, safe_number(seg.get("demand_share"))) / total_share,
                reference_price=safe_number(seg.get("reference_price"), default_price),
                elasticity=seg.get("elasticity"),
                min_quality=safe_number(seg.get("min_quality")),
            )
            for seg in niche.segments
        ]

    def _run_market(
        self,
        working: dict[str, CompanyWorkingSet],
        effects: dict[str, CompanyEffects],
        niches: dict[str, Niche],
        economy: WorldEconomyState,
        sector_states,
        sector_demand: dict[str, float],
    ) -> tuple[dict[str, CompanyState], dict[str, CompanyFinancials]]:
        groups: dict[tuple[str, str], list[Company]] = defaultdict(list)
        for ws in working.values():
            groups[(ws.company.sector_id, ws.company.niche_id)].append(ws.company)

        next_states: dict[str, CompanyState] = {}
        financials: dict[str, CompanyFinancials] = {}
        for (sector_id, niche_id) in sorted(groups):
            members = sorted(groups[(sector_id, niche_id)], key=lambda c: c.id)
            niche = niches[niche_id]
            sector_state = sector_states.get(sector_id)
            pressure = self.bot_engine.tick(
                niche, self.source, sector_state.volatility if sector_state else None,
            )
            demand = sector_demand.get(sector_id, 0.0)
            segments = None
            if niche.segments:
                segments = self._segments_for(
                    niche, self.company_engine.effective_demand(demand, pressure),
                )

            result = self.company_engine.simulate(CompanyGroupInput(
                niche=niche,
                economy=economy,
                year=self.year,
                week=self.week,
                companies=members,
                states={c.id: working[c.id].state for c in members},
                sector_demand=demand,
                bot_pressure=pressure,
                modifiers={c.id: effects[c.id].modifiers for c in members},
                extra_opex={
                    c.id: effects[c.id].extra_opex + working[c.id].one_off_opex for c in members
                },
                segments=segments,
            ))
            next_states.update(result.next_states)
            financials.update(result.financials)
            logger.debug(
                "Niche %s: demand %.1f, %d companies", niche_id, result.effective_demand, len(members),
            )
        return next_states, financials

    def _load_players(self, ledger: HoldingLedger) -> dict[str, Player]:
        players: dict[str, Player] = {}
        for holding in ledger.holdings.values():
            if holding.player_id and holding.player_id not in players:
                players[holding.player_id] = self.store.get_player(holding.player_id)
        return players

    def _apply_holding_decisions(self, ledger: HoldingLedger, economy: WorldEconomyState) -> None:
        decisions = self.store.list_holding_decisions(
            self.world.id, self.year, self.week, cutoff_seq=self.economy.decision_cutoff_seq,
            carry_over_after=self.economy.last_applied_decision_seq,
        )
        by_holding: dict[str, list] = defaultdict(list)
        for decision in decisions:
            by_holding[decision.holding_id].append(decision)
        for holding_id in sorted(by_holding):
            self.report.holding_decisions_applied += apply_holding_decisions(
                holding_id, by_holding[holding_id], ledger, economy,
                self.year, self.week, self.config,
            )

    def _owned(self, ledger: HoldingLedger, holding_id: str) -> list[Company]:
        return sorted(
            (c for c in ledger.companies.values() if c.holding_id == holding_id),
            key=lambda c: c.id,
        )

    def _run_finance(
        self,
        ledger: HoldingLedger,
        economy: WorldEconomyState,
        financials: dict[str, CompanyFinancials],
    ) -> dict[str, CompanyFinancials]:
        result_financials = dict(financials)
        for holding_id in sorted(ledger.holdings):
            holding = ledger.holdings[holding_id]
            owned = self._owned(ledger, holding_id)
            owned_ids = {c.id for c in owned}
            loans = [
                loan for loan in ledger.loans.values()
                if loan.holding_id == holding_id or loan.company_id in owned_ids
            ]
            result = self.finance_engine.tick(
                economy, holding, owned,
                {cid: fin for cid, fin in result_financials.items() if cid in owned_ids},
                loans,
            )
            ledger.holdings[holding_id] = result.holding
            for loan in result.loans:
                ledger.loans[loan.id] = loan
            result_financials.update(result.financials)
        return result_financials

    def _run_events(
        self,
        ledger: HoldingLedger,
        economy: WorldEconomyState,
        financials: dict[str, CompanyFinancials],
        sector_states,
    ) -> list[GameEvent]:
        events: list[GameEvent] = []
        for holding_id in sorted(ledger.holdings):
            owned = self._owned(ledger, holding_id)
            ctx = EventContext(
                world_id=self.world.id,
                year=self.year,
                week=self.week,
                economy=economy,
                holding=ledger.holdings[holding_id],
                companies=owned,
                financials={c.id: financials[c.id] for c in owned if c.id in financials},
                sector_states=sector_states,
                source=self.source,
            )
            for event in self.events_engine.generate(ctx):
                events.append(replace(
                    event,
                    world_id=self.world.id,
                    year=self.year,
                    week=self.week,
                    holding_id=event.holding_id or holding_id,
                ))
        return events

    def _run_progression(
        self,
        ledger: HoldingLedger,
        financials: dict[str, CompanyFinancials],
        events: list[GameEvent],
    ) -> dict[str, Player]:
        players = dict(ledger.players)
        for holding_id in sorted(ledger.holdings):
            player_id = ledger.holdings[holding_id].player_id
            if not player_id or player_id not in players:
                continue
            owned = self._owned(ledger, holding_id)
            result = self.progression_engine.tick(
                players[player_id],
                owned,
                {c.id: financials.get(c.id) for c in owned},
                [e for e in events if e.holding_id == holding_id],
            )
            players[player_id] = result.player
        return players


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def run_world_tick(
    store: WorldStore,
    world_id: str,
    *,
    config: EconomyConfig | None = None,
    events_engine: EventsEngine | None = None,
    now: datetime | None = None,
) -> bool:
    """Run one week for ``world_id``.

    Returns True when the world advanced a week, False when another tick
    already held the lock. Any failure marks the round FAILED, releases the
    lock and re-raises, so the next poll can retry the same week.
    """
    config = config or EconomyConfig()
    events_engine = events_engine or NullEventsEngine()
    now = now or utcnow()

    world = store.get_world(world_id)
    economy = store.try_lock(world_id, now)
    if economy is None:
        logger.debug("World %s is already ticking, skipping", world_id)
        return False

    year, week = economy.current_year, economy.current_week
    try:
        store.start_round(
            world_id, year, week, round_seed(world_id, year, week), config.engine_version, now=now,
        )
        logger.info("Tick started: world=%s year=%d week=%d", world_id, year, week)
        report = WorldTick(store, world, economy, config, events_engine, now).run()
        logger.info(
            "Tick completed: world=%s year=%d week=%d companies=%d decisions=%d/%d events=%d",
            world_id, year, week, report.companies_simulated,
            report.company_decisions_applied, report.holding_decisions_applied, report.events,
        )
    except Exception as exc:
        logger.exception("Tick failed: world=%s year=%d week=%d", world_id, year, week)
        store.finish_round(world_id, year, week, RoundStatus.FAILED, error=str(exc), now=utcnow())
        raise
    finally:
        store.unlock(world_id)
    return True
