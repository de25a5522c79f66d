"""
SQLite-backed world store.

Owns every piece of shared mutable state of the simulation: worlds and
their economy row (which doubles as the tick lock), catalog, sector
states, holdings, companies and their weekly states/financials,
decisions, programs, upgrades, loans, events and players.

Thread-safety: one connection opened with ``check_same_thread=False`` and
guarded by an ``RLock``; the connection runs in autocommit mode and
``transaction()`` wraps multi-statement checkpoints in BEGIN/COMMIT.
The tick lock itself is a conditional UPDATE on the economy row, so it
also holds across processes sharing the same database file.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Any, Iterable, Iterator

from holdsim.core.catalog import Catalog
from holdsim.core.errors import DataIntegrityError
from holdsim.core.models import (
    AcquisitionOffer,
    Bot,
    Company,
    CompanyDecision,
    CompanyFinancials,
    CompanyProgram,
    CompanyState,
    CompanyStatus,
    CompanyUpgrade,
    EventScope,
    GameEvent,
    Holding,
    HoldingDecision,
    Loan,
    LoanStatus,
    Niche,
    NicheUpgrade,
    OfferParty,
    OfferStatus,
    Player,
    ProgramStatus,
    RoundStatus,
    Sector,
    World,
    WorldEconomyState,
    WorldRound,
    WorldSectorState,
    WorldStatus,
)
from holdsim.persistence.serializers import (
    dumps,
    enum_or,
    loads,
    record_data,
    record_from_row,
    str_to_ts,
    ts_to_str,
    utcnow,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA = """
CREATE TABLE IF NOT EXISTS worlds (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'ACTIVE',
    mode TEXT NOT NULL DEFAULT 'standard',
    base_round_interval_seconds INTEGER NOT NULL DEFAULT 3600,
    season_json TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS world_economy_state (
    world_id TEXT PRIMARY KEY,
    current_year INTEGER NOT NULL DEFAULT 1,
    current_week INTEGER NOT NULL DEFAULT 1,
    base_interest_rate REAL NOT NULL,
    inflation_rate REAL NOT NULL,
    base_wage_index REAL NOT NULL,
    macro_modifiers_json TEXT NOT NULL DEFAULT '{}',
    is_ticking INTEGER NOT NULL DEFAULT 0,
    last_tick_started_at TEXT,
    last_tick_at TEXT,
    decision_cutoff_seq INTEGER,
    last_applied_decision_seq INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS world_rounds (
    world_id TEXT NOT NULL,
    year INTEGER NOT NULL,
    week INTEGER NOT NULL,
    status TEXT NOT NULL,
    seed TEXT NOT NULL,
    engine_version TEXT NOT NULL,
    started_at TEXT,
    finished_at TEXT,
    error TEXT,
    PRIMARY KEY (world_id, year, week)
);

CREATE TABLE IF NOT EXISTS sectors (
    id TEXT PRIMARY KEY,
    code TEXT NOT NULL,
    name TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS niches (
    id TEXT PRIMARY KEY,
    sector_id TEXT NOT NULL,
    code TEXT NOT NULL,
    name TEXT NOT NULL,
    data TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS niche_upgrades (
    id TEXT PRIMARY KEY,
    niche_id TEXT NOT NULL,
    code TEXT NOT NULL,
    name TEXT NOT NULL,
    data TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS world_sector_states (
    world_id TEXT NOT NULL,
    sector_id TEXT NOT NULL,
    current_demand REAL NOT NULL,
    trend_factor REAL NOT NULL,
    volatility REAL NOT NULL,
    last_round_metrics_json TEXT NOT NULL DEFAULT '{}',
    year INTEGER,
    week INTEGER,
    PRIMARY KEY (world_id, sector_id)
);

CREATE TABLE IF NOT EXISTS players (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    brand_level INTEGER NOT NULL DEFAULT 1,
    brand_xp REAL NOT NULL DEFAULT 0,
    credit_level INTEGER NOT NULL DEFAULT 1,
    credit_xp REAL NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS holdings (
    id TEXT PRIMARY KEY,
    world_id TEXT NOT NULL,
    player_id TEXT,
    name TEXT NOT NULL,
    cash_balance REAL NOT NULL DEFAULT 0,
    total_equity REAL NOT NULL DEFAULT 0,
    total_debt REAL NOT NULL DEFAULT 0,
    prestige_level INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS bots (
    id TEXT PRIMARY KEY,
    world_id TEXT NOT NULL,
    holding_id TEXT NOT NULL,
    archetype TEXT NOT NULL,
    aggressiveness REAL NOT NULL,
    risk_tolerance REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS companies (
    id TEXT PRIMARY KEY,
    world_id TEXT NOT NULL,
    holding_id TEXT NOT NULL,
    sector_id TEXT NOT NULL,
    niche_id TEXT NOT NULL,
    name TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'ACTIVE'
);

CREATE TABLE IF NOT EXISTS company_states (
    company_id TEXT NOT NULL,
    world_id TEXT NOT NULL,
    year INTEGER NOT NULL,
    week INTEGER NOT NULL,
    data TEXT NOT NULL,
    PRIMARY KEY (company_id, year, week)
);

CREATE TABLE IF NOT EXISTS company_financials (
    company_id TEXT NOT NULL,
    world_id TEXT NOT NULL,
    year INTEGER NOT NULL,
    week INTEGER NOT NULL,
    data TEXT NOT NULL,
    PRIMARY KEY (company_id, year, week)
);

CREATE TABLE IF NOT EXISTS decisions (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    world_id TEXT NOT NULL,
    scope TEXT NOT NULL,
    target_id TEXT NOT NULL,
    year INTEGER NOT NULL,
    week INTEGER NOT NULL,
    payload_json TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_decisions_round ON decisions (world_id, year, week, scope);

CREATE TABLE IF NOT EXISTS company_programs (
    id TEXT PRIMARY KEY,
    world_id TEXT NOT NULL,
    company_id TEXT NOT NULL,
    program_type TEXT NOT NULL,
    start_year INTEGER NOT NULL,
    start_week INTEGER NOT NULL,
    duration_weeks INTEGER NOT NULL,
    status TEXT NOT NULL,
    payload_json TEXT NOT NULL DEFAULT '{}'
);

CREATE TABLE IF NOT EXISTS company_upgrades (
    id TEXT PRIMARY KEY,
    world_id TEXT NOT NULL,
    company_id TEXT NOT NULL,
    upgrade_id TEXT NOT NULL,
    purchased_year INTEGER NOT NULL,
    purchased_week INTEGER NOT NULL,
    status TEXT NOT NULL DEFAULT 'ACTIVE',
    UNIQUE (company_id, upgrade_id)
);

CREATE TABLE IF NOT EXISTS loans (
    id TEXT PRIMARY KEY,
    world_id TEXT NOT NULL,
    holding_id TEXT,
    company_id TEXT,
    principal REAL NOT NULL,
    outstanding_balance REAL NOT NULL,
    interest_rate REAL NOT NULL,
    term_weeks INTEGER NOT NULL,
    remaining_weeks INTEGER NOT NULL,
    status TEXT NOT NULL,
    created_year INTEGER NOT NULL DEFAULT 1,
    created_week INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS acquisition_offers (
    id TEXT PRIMARY KEY,
    world_id TEXT NOT NULL,
    company_id TEXT NOT NULL,
    buyer_holding_id TEXT NOT NULL,
    seller_holding_id TEXT NOT NULL,
    status TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_offers_world_status ON acquisition_offers (world_id, status);

CREATE TABLE IF NOT EXISTS game_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    world_id TEXT NOT NULL,
    year INTEGER NOT NULL,
    week INTEGER NOT NULL,
    scope TEXT NOT NULL,
    type TEXT NOT NULL,
    severity REAL NOT NULL DEFAULT 1,
    payload_json TEXT NOT NULL DEFAULT '{}',
    sector_id TEXT,
    company_id TEXT,
    holding_id TEXT
);
"""

_STATE_KEYS = ("company_id", "world_id", "year", "week")
_NICHE_KEYS = ("id", "sector_id", "code", "name")
_OFFER_KEYS = ("id", "world_id", "company_id", "buyer_holding_id", "seller_holding_id", "status")


class WorldStore:
    """SQLite persistence for worlds and everything a tick reads or writes.

    Parameters
    ----------
    db_path : str
        Path to the SQLite database file, or ``":memory:"``.
    """

    def __init__(self, db_path: str = "data/holdsim.db"):
        self.db_path = db_path
        self._lock = threading.RLock()
        self._tx_depth = 0
        try:
            self._conn = sqlite3.connect(
                db_path, check_same_thread=False, isolation_level=None,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.executescript(_SCHEMA)
        except sqlite3.Error:
            logger.warning("Failed to open SQLite database at %s", db_path, exc_info=True)
            raise

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------
    def _execute(self, sql: str, params: Iterable[Any] = ()) -> sqlite3.Cursor:
        with self._lock:
            return self._conn.execute(sql, tuple(params))

    def _fetchone(self, sql: str, params: Iterable[Any] = ()) -> sqlite3.Row | None:
        with self._lock:
            return self._conn.execute(sql, tuple(params)).fetchone()

    def _fetchall(self, sql: str, params: Iterable[Any] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, tuple(params)).fetchall()

    @contextmanager
    def transaction(self) -> Iterator[WorldStore]:
        """All-or-nothing block; nested use joins the outer transaction."""
        with self._lock:
            if self._tx_depth:
                self._tx_depth += 1
                try:
                    yield self
                finally:
                    self._tx_depth -= 1
                return

            self._conn.execute("BEGIN")
            self._tx_depth = 1
            try:
                yield self
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            else:
                self._conn.execute("COMMIT")
            finally:
                self._tx_depth = 0

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ------------------------------------------------------------------
    # Worlds
    # ------------------------------------------------------------------
    def create_world(
        self,
        world: World,
        economy: WorldEconomyState | None = None,
    ) -> World:
        """Insert a world and its single economy-state row."""
        created = world.created_at or utcnow()
        economy = economy or WorldEconomyState(world_id=world.id)
        with self.transaction():
            self._execute(
                """
                INSERT INTO worlds
                    (id, name, status, mode, base_round_interval_seconds, season_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    world.id, world.name, WorldStatus(world.status).value, world.mode,
                    int(world.base_round_interval_seconds),
                    dumps(world.season) if world.season else None,
                    ts_to_str(created),
                ),
            )
            self.save_economy_state(replace(economy, world_id=world.id))
        return replace(world, created_at=created)

    def set_world_status(self, world_id: str, status: WorldStatus) -> None:
        self._execute(
            "UPDATE worlds SET status = ? WHERE id = ?", (WorldStatus(status).value, world_id),
        )

    @staticmethod
    def _world_from_row(row: sqlite3.Row) -> World:
        return World(
            id=row["id"],
            name=row["name"],
            status=enum_or(row["status"], WorldStatus, WorldStatus.ACTIVE),
            mode=row["mode"],
            base_round_interval_seconds=int(row["base_round_interval_seconds"]),
            season=loads(row["season_json"]),
            created_at=str_to_ts(row["created_at"]),
        )

    def get_world(self, world_id: str) -> World:
        row = self._fetchone("SELECT * FROM worlds WHERE id = ?", (world_id,))
        if row is None:
            raise DataIntegrityError("World", world_id)
        return self._world_from_row(row)

    def list_worlds(self, status: WorldStatus | None = None) -> list[World]:
        if status is None:
            rows = self._fetchall("SELECT * FROM worlds ORDER BY created_at, id")
        else:
            rows = self._fetchall(
                "SELECT * FROM worlds WHERE status = ? ORDER BY created_at, id",
                (WorldStatus(status).value,),
            )
        return [self._world_from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Economy state + tick lock
    # ------------------------------------------------------------------
    @staticmethod
    def _economy_from_row(row: sqlite3.Row) -> WorldEconomyState:
        return WorldEconomyState(
            world_id=row["world_id"],
            current_year=int(row["current_year"]),
            current_week=int(row["current_week"]),
            base_interest_rate=float(row["base_interest_rate"]),
            inflation_rate=float(row["inflation_rate"]),
            base_wage_index=float(row["base_wage_index"]),
            macro_modifiers=loads(row["macro_modifiers_json"], {}) or {},
            is_ticking=bool(row["is_ticking"]),
            last_tick_started_at=str_to_ts(row["last_tick_started_at"]),
            last_tick_at=str_to_ts(row["last_tick_at"]),
            decision_cutoff_seq=row["decision_cutoff_seq"],
            last_applied_decision_seq=int(row["last_applied_decision_seq"] or 0),
        )

    def get_economy_state(self, world_id: str) -> WorldEconomyState:
        row = self._fetchone("SELECT * FROM world_economy_state WHERE world_id = ?", (world_id,))
        if row is None:
            raise DataIntegrityError("WorldEconomyState", world_id)
        return self._economy_from_row(row)

    def save_economy_state(self, economy: WorldEconomyState) -> None:
        """Upsert the economy row, leaving the lock columns untouched on update."""
        self._execute(
            """
            INSERT INTO world_economy_state
                (world_id, current_year, current_week, base_interest_rate,
                 inflation_rate, base_wage_index, macro_modifiers_json,
                 is_ticking, last_tick_started_at, last_tick_at, decision_cutoff_seq,
                 last_applied_decision_seq)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(world_id) DO UPDATE SET
                current_year = excluded.current_year,
                current_week = excluded.current_week,
                base_interest_rate = excluded.base_interest_rate,
                inflation_rate = excluded.inflation_rate,
                base_wage_index = excluded.base_wage_index,
                macro_modifiers_json = excluded.macro_modifiers_json,
                last_tick_at = excluded.last_tick_at,
                last_applied_decision_seq = excluded.last_applied_decision_seq
            """,
            (
                economy.world_id, int(economy.current_year), int(economy.current_week),
                float(economy.base_interest_rate), float(economy.inflation_rate),
                float(economy.base_wage_index), dumps(economy.macro_modifiers or {}),
                int(bool(economy.is_ticking)), ts_to_str(economy.last_tick_started_at),
                ts_to_str(economy.last_tick_at), economy.decision_cutoff_seq,
                int(economy.last_applied_decision_seq or 0),
            ),
        )

    def try_lock(self, world_id: str, now: datetime | None = None) -> WorldEconomyState | None:
        """Atomically take the tick lock.

        Succeeds only if the lock flag is clear. Records the start time and
        the highest decision sequence number visible at this moment; returns
        the locked economy state, or ``None`` if another tick holds the lock.
        """
        now = now or utcnow()
        with self._lock:
            cur = self._conn.execute(
                """
                UPDATE world_economy_state
                SET is_ticking = 1,
                    last_tick_started_at = ?,
                    decision_cutoff_seq = (SELECT COALESCE(MAX(seq), 0) FROM decisions)
                WHERE world_id = ? AND is_ticking = 0
                """,
                (ts_to_str(now), world_id),
            )
            if cur.rowcount != 1:
                return None
            return self.get_economy_state(world_id)

    def unlock(self, world_id: str) -> None:
        self._execute(
            "UPDATE world_economy_state SET is_ticking = 0 WHERE world_id = ?", (world_id,),
        )

    def reset_stale_lock(self, world_id: str, started_before: datetime) -> bool:
        """Clear a lock whose tick started before ``started_before``."""
        cur = self._execute(
            """
            UPDATE world_economy_state SET is_ticking = 0
            WHERE world_id = ? AND is_ticking = 1
              AND (last_tick_started_at IS NULL OR last_tick_started_at < ?)
            """,
            (world_id, ts_to_str(started_before)),
        )
        return cur.rowcount == 1

    # ------------------------------------------------------------------
    # Rounds
    # ------------------------------------------------------------------
    @staticmethod
    def _round_from_row(row: sqlite3.Row) -> WorldRound:
        return WorldRound(
            world_id=row["world_id"],
            year=int(row["year"]),
            week=int(row["week"]),
            status=enum_or(row["status"], RoundStatus, RoundStatus.PENDING),
            seed=row["seed"],
            engine_version=row["engine_version"],
            started_at=str_to_ts(row["started_at"]),
            finished_at=str_to_ts(row["finished_at"]),
            error=row["error"],
        )

    def start_round(
        self, world_id: str, year: int, week: int, seed: str, engine_version: str,
        now: datetime | None = None,
    ) -> WorldRound:
        """Create the round marker, or resume a PENDING/FAILED one, as RUNNING."""
        self._execute(
            """
            INSERT INTO world_rounds
                (world_id, year, week, status, seed, engine_version, started_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(world_id, year, week) DO UPDATE SET
                status = excluded.status,
                seed = excluded.seed,
                engine_version = excluded.engine_version,
                started_at = excluded.started_at,
                finished_at = NULL,
                error = NULL
            """,
            (
                world_id, int(year), int(week), RoundStatus.RUNNING.value, seed,
                engine_version, ts_to_str(now or utcnow()),
            ),
        )
        return self.get_round(world_id, year, week)

    def finish_round(
        self, world_id: str, year: int, week: int, status: RoundStatus,
        error: str | None = None, now: datetime | None = None,
    ) -> None:
        self._execute(
            """
            UPDATE world_rounds SET status = ?, finished_at = ?, error = ?
            WHERE world_id = ? AND year = ? AND week = ?
            """,
            (RoundStatus(status).value, ts_to_str(now or utcnow()), error, world_id, int(year), int(week)),
        )

    def get_round(self, world_id: str, year: int, week: int) -> WorldRound:
        row = self._fetchone(
            "SELECT * FROM world_rounds WHERE world_id = ? AND year = ? AND week = ?",
            (world_id, int(year), int(week)),
        )
        if row is None:
            raise DataIntegrityError("WorldRound", f"{world_id}:{year}:{week}")
        return self._round_from_row(row)

    def list_rounds(self, world_id: str) -> list[WorldRound]:
        rows = self._fetchall(
            "SELECT * FROM world_rounds WHERE world_id = ? ORDER BY year, week", (world_id,),
        )
        return [self._round_from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------
    def save_catalog(self, catalog: Catalog) -> None:
        with self.transaction():
            for sector in catalog.sectors:
                self.save_sector(sector)
            for niche in catalog.niches:
                self.save_niche(niche)
            for upgrade in catalog.upgrades:
                self.save_niche_upgrade(upgrade)

    def save_sector(self, sector: Sector) -> None:
        self._execute(
            """
            INSERT INTO sectors (id, code, name) VALUES (?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET code = excluded.code, name = excluded.name
            """,
            (sector.id, sector.code, sector.name),
        )

    def save_niche(self, niche: Niche) -> None:
        self._execute(
            """
            INSERT INTO niches (id, sector_id, code, name, data) VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                sector_id = excluded.sector_id, code = excluded.code,
                name = excluded.name, data = excluded.data
            """,
            (niche.id, niche.sector_id, niche.code, niche.name, record_data(niche, _NICHE_KEYS)),
        )

    def save_niche_upgrade(self, upgrade: NicheUpgrade) -> None:
        keys = ("id", "niche_id", "code", "name")
        self._execute(
            """
            INSERT INTO niche_upgrades (id, niche_id, code, name, data) VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                niche_id = excluded.niche_id, code = excluded.code,
                name = excluded.name, data = excluded.data
            """,
            (upgrade.id, upgrade.niche_id, upgrade.code, upgrade.name, record_data(upgrade, keys)),
        )

    def list_sectors(self) -> list[Sector]:
        rows = self._fetchall("SELECT * FROM sectors ORDER BY id")
        return [Sector(id=r["id"], code=r["code"], name=r["name"]) for r in rows]

    def list_niches(self, sector_id: str | None = None) -> list[Niche]:
        if sector_id is None:
            rows = self._fetchall("SELECT * FROM niches ORDER BY id")
        else:
            rows = self._fetchall("SELECT * FROM niches WHERE sector_id = ? ORDER BY id", (sector_id,))
        return [record_from_row(Niche, r, _NICHE_KEYS) for r in rows]

    def list_niche_upgrades(self, niche_id: str | None = None) -> list[NicheUpgrade]:
        keys = ("id", "niche_id", "code", "name")
        if niche_id is None:
            rows = self._fetchall("SELECT * FROM niche_upgrades ORDER BY id")
        else:
            rows = self._fetchall(
                "SELECT * FROM niche_upgrades WHERE niche_id = ? ORDER BY id", (niche_id,),
            )
        return [record_from_row(NicheUpgrade, r, keys) for r in rows]

    # ------------------------------------------------------------------
    # Sector states
    # ------------------------------------------------------------------
    def list_sector_states(self, world_id: str) -> dict[str, WorldSectorState]:
        rows = self._fetchall("SELECT * FROM world_sector_states WHERE world_id = ?", (world_id,))
        return {
            r["sector_id"]: WorldSectorState(
                world_id=r["world_id"],
                sector_id=r["sector_id"],
                current_demand=float(r["current_demand"]),
                trend_factor=float(r["trend_factor"]),
                volatility=float(r["volatility"]),
                last_round_metrics=loads(r["last_round_metrics_json"], {}) or {},
                year=r["year"],
                week=r["week"],
            )
            for r in rows
        }

    def upsert_sector_state(self, state: WorldSectorState) -> None:
        self._execute(
            """
            INSERT INTO world_sector_states
                (world_id, sector_id, current_demand, trend_factor, volatility,
                 last_round_metrics_json, year, week)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(world_id, sector_id) DO UPDATE SET
                current_demand = excluded.current_demand,
                trend_factor = excluded.trend_factor,
                volatility = excluded.volatility,
                last_round_metrics_json = excluded.last_round_metrics_json,
                year = excluded.year,
                week = excluded.week
            """,
            (
                state.world_id, state.sector_id, float(state.current_demand),
                float(state.trend_factor), float(state.volatility),
                dumps(state.last_round_metrics or {}),
                state.year, state.week,
            ),
        )

    # ------------------------------------------------------------------
    # Players
    # ------------------------------------------------------------------
    def save_player(self, player: Player) -> None:
        self._execute(
            """
            INSERT INTO players (id, name, brand_level, brand_xp, credit_level, credit_xp)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                brand_level = excluded.brand_level, brand_xp = excluded.brand_xp,
                credit_level = excluded.credit_level, credit_xp = excluded.credit_xp
            """,
            (
                player.id, player.name, int(player.brand_level), float(player.brand_xp),
                int(player.credit_level), float(player.credit_xp),
            ),
        )

    def get_player(self, player_id: str) -> Player:
        row = self._fetchone("SELECT * FROM players WHERE id = ?", (player_id,))
        if row is None:
            raise DataIntegrityError("Player", player_id)
        return Player(
            id=row["id"], name=row["name"],
            brand_level=int(row["brand_level"]), brand_xp=float(row["brand_xp"]),
            credit_level=int(row["credit_level"]), credit_xp=float(row["credit_xp"]),
        )

    def patch_player_reputation(self, player: Player) -> None:
        cur = self._execute(
            """
            UPDATE players SET brand_level = ?, brand_xp = ?, credit_level = ?, credit_xp = ?
            WHERE id = ?
            """,
            (
                int(player.brand_level), float(player.brand_xp),
                int(player.credit_level), float(player.credit_xp), player.id,
            ),
        )
        if cur.rowcount != 1:
            raise DataIntegrityError("Player", player.id)

    # ------------------------------------------------------------------
    # Holdings, bots, companies
    # ------------------------------------------------------------------
    def save_holding(self, holding: Holding) -> None:
        self._execute(
            """
            INSERT INTO holdings
                (id, world_id, player_id, name, cash_balance, total_equity, total_debt, prestige_level)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                world_id = excluded.world_id, player_id = excluded.player_id,
                name = excluded.name, cash_balance = excluded.cash_balance,
                total_equity = excluded.total_equity, total_debt = excluded.total_debt,
                prestige_level = excluded.prestige_level
            """,
            (
                holding.id, holding.world_id, holding.player_id, holding.name,
                float(holding.cash_balance), float(holding.total_equity),
                float(holding.total_debt), int(holding.prestige_level),
            ),
        )

    @staticmethod
    def _holding_from_row(row: sqlite3.Row) -> Holding:
        return Holding(
            id=row["id"], world_id=row["world_id"], name=row["name"],
            player_id=row["player_id"], cash_balance=float(row["cash_balance"]),
            total_equity=float(row["total_equity"]), total_debt=float(row["total_debt"]),
            prestige_level=int(row["prestige_level"]),
        )

    def get_holding(self, holding_id: str) -> Holding:
        row = self._fetchone("SELECT * FROM holdings WHERE id = ?", (holding_id,))
        if row is None:
            raise DataIntegrityError("Holding", holding_id)
        return self._holding_from_row(row)

    def list_holdings(self, world_id: str) -> list[Holding]:
        rows = self._fetchall("SELECT * FROM holdings WHERE world_id = ? ORDER BY id", (world_id,))
        return [self._holding_from_row(r) for r in rows]

    def save_bot(self, bot: Bot) -> None:
        self._execute(
            """
            INSERT INTO bots (id, world_id, holding_id, archetype, aggressiveness, risk_tolerance)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                holding_id = excluded.holding_id, archetype = excluded.archetype,
                aggressiveness = excluded.aggressiveness, risk_tolerance = excluded.risk_tolerance
            """,
            (bot.id, bot.world_id, bot.holding_id, bot.archetype,
             float(bot.aggressiveness), float(bot.risk_tolerance)),
        )

    def list_bots(self, world_id: str) -> list[Bot]:
        rows = self._fetchall("SELECT * FROM bots WHERE world_id = ? ORDER BY id", (world_id,))
        return [
            Bot(id=r["id"], world_id=r["world_id"], holding_id=r["holding_id"],
                archetype=r["archetype"], aggressiveness=float(r["aggressiveness"]),
                risk_tolerance=float(r["risk_tolerance"]))
            for r in rows
        ]

    def save_company(self, company: Company) -> None:
        self._execute(
            """
            INSERT INTO companies (id, world_id, holding_id, sector_id, niche_id, name, status)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                holding_id = excluded.holding_id, sector_id = excluded.sector_id,
                niche_id = excluded.niche_id, name = excluded.name, status = excluded.status
            """,
            (
                company.id, company.world_id, company.holding_id, company.sector_id,
                company.niche_id, company.name, CompanyStatus(company.status).value,
            ),
        )

    @staticmethod
    def _company_from_row(row: sqlite3.Row) -> Company:
        return Company(
            id=row["id"], world_id=row["world_id"], holding_id=row["holding_id"],
            sector_id=row["sector_id"], niche_id=row["niche_id"], name=row["name"],
            status=enum_or(row["status"], CompanyStatus, CompanyStatus.ACTIVE),
        )

    def get_company(self, company_id: str) -> Company:
        row = self._fetchone("SELECT * FROM companies WHERE id = ?", (company_id,))
        if row is None:
            raise DataIntegrityError("Company", company_id)
        return self._company_from_row(row)

    def list_companies(self, world_id: str, holding_id: str | None = None) -> list[Company]:
        if holding_id is None:
            rows = self._fetchall("SELECT * FROM companies WHERE world_id = ? ORDER BY id", (world_id,))
        else:
            rows = self._fetchall(
                "SELECT * FROM companies WHERE world_id = ? AND holding_id = ? ORDER BY id",
                (world_id, holding_id),
            )
        return [self._company_from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Company states / financials
    # ------------------------------------------------------------------
    def upsert_company_state(self, state: CompanyState) -> None:
        self._execute(
            """
            INSERT INTO company_states (company_id, world_id, year, week, data)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(company_id, year, week) DO UPDATE SET data = excluded.data
            """,
            (state.company_id, state.world_id, int(state.year), int(state.week),
             record_data(state, _STATE_KEYS)),
        )

    def get_latest_company_state(self, company_id: str) -> CompanyState | None:
        row = self._fetchone(
            """
            SELECT * FROM company_states WHERE company_id = ?
            ORDER BY year DESC, week DESC LIMIT 1
            """,
            (company_id,),
        )
        return record_from_row(CompanyState, row, _STATE_KEYS) if row else None

    def latest_company_states(self, world_id: str) -> dict[str, CompanyState]:
        rows = self._fetchall(
            """
            SELECT s.* FROM company_states s
            JOIN (
                SELECT company_id, MAX(year * 100 + week) AS k
                FROM company_states WHERE world_id = ? GROUP BY company_id
            ) latest
              ON latest.company_id = s.company_id AND (s.year * 100 + s.week) = latest.k
            """,
            (world_id,),
        )
        return {r["company_id"]: record_from_row(CompanyState, r, _STATE_KEYS) for r in rows}

    def upsert_company_financials(self, fin: CompanyFinancials) -> None:
        self._execute(
            """
            INSERT INTO company_financials (company_id, world_id, year, week, data)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(company_id, year, week) DO UPDATE SET data = excluded.data
            """,
            (fin.company_id, fin.world_id, int(fin.year), int(fin.week),
             record_data(fin, _STATE_KEYS)),
        )

    def get_latest_company_financials(self, company_id: str) -> CompanyFinancials | None:
        row = self._fetchone(
            """
            SELECT * FROM company_financials WHERE company_id = ?
            ORDER BY year DESC, week DESC LIMIT 1
            """,
            (company_id,),
        )
        return record_from_row(CompanyFinancials, row, _STATE_KEYS) if row else None

    def list_company_financials(self, company_id: str) -> list[CompanyFinancials]:
        rows = self._fetchall(
            "SELECT * FROM company_financials WHERE company_id = ? ORDER BY year, week",
            (company_id,),
        )
        return [record_from_row(CompanyFinancials, r, _STATE_KEYS) for r in rows]

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------
    def _add_decision(
        self, scope: str, world_id: str, target_id: str, year: int, week: int,
        payload: dict[str, Any], created_at: datetime | None,
    ) -> int:
        cur = self._execute(
            """
            INSERT INTO decisions (world_id, scope, target_id, year, week, payload_json, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (world_id, scope, target_id, int(year), int(week), dumps(payload),
             ts_to_str(created_at or utcnow())),
        )
        return int(cur.lastrowid)

    def add_company_decision(self, decision: CompanyDecision) -> int:
        """Append a company decision; returns its sequence number."""
        return self._add_decision(
            "COMPANY", decision.world_id, decision.company_id,
            decision.year, decision.week, decision.payload, decision.created_at,
        )

    def add_holding_decision(self, decision: HoldingDecision) -> int:
        """Append a holding decision; returns its sequence number."""
        return self._add_decision(
            "HOLDING", decision.world_id, decision.holding_id,
            decision.year, decision.week, decision.payload, decision.created_at,
        )

    def _list_decisions(
        self, scope: str, world_id: str, year: int, week: int,
        cutoff_seq: int | None, created_before: datetime | None,
        carry_over_after: int | None,
    ) -> list[sqlite3.Row]:
        if carry_over_after is None:
            sql = "SELECT * FROM decisions WHERE world_id = ? AND scope = ? AND year = ? AND week = ?"
            params: list[Any] = [world_id, scope, int(year), int(week)]
        else:
            # Decisions that missed an earlier week's cutoff join this round.
            sql = """
                SELECT * FROM decisions WHERE world_id = ? AND scope = ? AND (
                    (year = ? AND week = ?)
                    OR ((year * 52 + week) < (? * 52 + ?) AND seq > ?)
                )
            """
            params = [
                world_id, scope, int(year), int(week), int(year), int(week), int(carry_over_after),
            ]
        if cutoff_seq is not None:
            sql += " AND seq <= ?"
            params.append(int(cutoff_seq))
        if created_before is not None:
            sql += " AND created_at <= ?"
            params.append(ts_to_str(created_before))
        sql += " ORDER BY seq"
        return self._fetchall(sql, params)

    def list_company_decisions(
        self, world_id: str, year: int, week: int,
        cutoff_seq: int | None = None, created_before: datetime | None = None,
        carry_over_after: int | None = None,
    ) -> list[CompanyDecision]:
        """This round's company decisions in submission order.

        ``cutoff_seq`` drops decisions submitted after the tick took its
        lock; ``carry_over_after`` adds earlier weeks' decisions with a
        sequence number above the previous tick's cutoff.
        """
        rows = self._list_decisions(
            "COMPANY", world_id, year, week, cutoff_seq, created_before, carry_over_after,
        )
        return [
            CompanyDecision(
                world_id=r["world_id"], company_id=r["target_id"], year=int(r["year"]),
                week=int(r["week"]), payload=loads(r["payload_json"], {}),
                id=int(r["seq"]), created_at=str_to_ts(r["created_at"]),
            )
            for r in rows
        ]

    def list_holding_decisions(
        self, world_id: str, year: int, week: int,
        cutoff_seq: int | None = None, created_before: datetime | None = None,
        carry_over_after: int | None = None,
    ) -> list[HoldingDecision]:
        rows = self._list_decisions(
            "HOLDING", world_id, year, week, cutoff_seq, created_before, carry_over_after,
        )
        return [
            HoldingDecision(
                world_id=r["world_id"], holding_id=r["target_id"], year=int(r["year"]),
                week=int(r["week"]), payload=loads(r["payload_json"], {}),
                id=int(r["seq"]), created_at=str_to_ts(r["created_at"]),
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Programs
    # ------------------------------------------------------------------
    @staticmethod
    def _program_from_row(row: sqlite3.Row) -> CompanyProgram:
        return CompanyProgram(
            id=row["id"], world_id=row["world_id"], company_id=row["company_id"],
            program_type=row["program_type"], start_year=int(row["start_year"]),
            start_week=int(row["start_week"]), duration_weeks=int(row["duration_weeks"]),
            status=enum_or(row["status"], ProgramStatus, ProgramStatus.ACTIVE),
            payload=loads(row["payload_json"], {}) or {},
        )

    def upsert_program(self, program: CompanyProgram) -> None:
        self._execute(
            """
            INSERT INTO company_programs
                (id, world_id, company_id, program_type, start_year, start_week,
                 duration_weeks, status, payload_json)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                program_type = excluded.program_type,
                start_year = excluded.start_year,
                start_week = excluded.start_week,
                status = excluded.status,
                duration_weeks = excluded.duration_weeks,
                payload_json = excluded.payload_json
            """,
            (
                program.id, program.world_id, program.company_id, program.program_type,
                int(program.start_year), int(program.start_week), int(program.duration_weeks),
                ProgramStatus(program.status).value, dumps(program.payload or {}),
            ),
        )

    def get_program(self, program_id: str) -> CompanyProgram | None:
        row = self._fetchone("SELECT * FROM company_programs WHERE id = ?", (program_id,))
        return self._program_from_row(row) if row else None

    def list_active_programs(self, world_id: str) -> list[CompanyProgram]:
        rows = self._fetchall(
            "SELECT * FROM company_programs WHERE world_id = ? AND status = ? ORDER BY id",
            (world_id, ProgramStatus.ACTIVE.value),
        )
        return [self._program_from_row(r) for r in rows]

    def cancel_program(self, program_id: str) -> bool:
        cur = self._execute(
            "UPDATE company_programs SET status = ? WHERE id = ? AND status = ?",
            (ProgramStatus.CANCELLED.value, program_id, ProgramStatus.ACTIVE.value),
        )
        return cur.rowcount == 1

    # ------------------------------------------------------------------
    # Upgrades
    # ------------------------------------------------------------------
    def upsert_company_upgrade(self, upgrade: CompanyUpgrade) -> None:
        """Record a purchase; one row per (company, upgrade)."""
        self._execute(
            """
            INSERT INTO company_upgrades
                (id, world_id, company_id, upgrade_id, purchased_year, purchased_week, status)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(company_id, upgrade_id) DO UPDATE SET status = excluded.status
            """,
            (
                upgrade.id, upgrade.world_id, upgrade.company_id, upgrade.upgrade_id,
                int(upgrade.purchased_year), int(upgrade.purchased_week), upgrade.status,
            ),
        )

    def list_company_upgrades(self, world_id: str) -> list[CompanyUpgrade]:
        rows = self._fetchall(
            "SELECT * FROM company_upgrades WHERE world_id = ? ORDER BY id", (world_id,),
        )
        return [
            CompanyUpgrade(
                id=r["id"], world_id=r["world_id"], company_id=r["company_id"],
                upgrade_id=r["upgrade_id"], purchased_year=int(r["purchased_year"]),
                purchased_week=int(r["purchased_week"]), status=r["status"],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Loans
    # ------------------------------------------------------------------
    @staticmethod
    def _loan_from_row(row: sqlite3.Row) -> Loan:
        return Loan(
            id=row["id"], world_id=row["world_id"],
            principal=float(row["principal"]),
            outstanding_balance=float(row["outstanding_balance"]),
            interest_rate=float(row["interest_rate"]),
            term_weeks=int(row["term_weeks"]),
            remaining_weeks=int(row["remaining_weeks"]),
            holding_id=row["holding_id"], company_id=row["company_id"],
            status=enum_or(row["status"], LoanStatus, LoanStatus.ACTIVE),
            created_year=int(row["created_year"]), created_week=int(row["created_week"]),
        )

    def save_loan(self, loan: Loan) -> None:
        """Create a loan or patch an existing one."""
        if loan.holding_id is None and loan.company_id is None:
            raise ValueError(f"Loan {loan.id} must belong to a holding or a company")
        self._execute(
            """
            INSERT INTO loans
                (id, world_id, holding_id, company_id, principal, outstanding_balance,
                 interest_rate, term_weeks, remaining_weeks, status, created_year, created_week)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                outstanding_balance = excluded.outstanding_balance,
                interest_rate = excluded.interest_rate,
                remaining_weeks = excluded.remaining_weeks,
                status = excluded.status
            """,
            (
                loan.id, loan.world_id, loan.holding_id, loan.company_id,
                float(loan.principal), float(loan.outstanding_balance),
                float(loan.interest_rate), int(loan.term_weeks), int(loan.remaining_weeks),
                LoanStatus(loan.status).value, int(loan.created_year), int(loan.created_week),
            ),
        )

    def get_loan(self, loan_id: str) -> Loan:
        row = self._fetchone("SELECT * FROM loans WHERE id = ?", (loan_id,))
        if row is None:
            raise DataIntegrityError("Loan", loan_id)
        return self._loan_from_row(row)

    def list_loans(
        self, world_id: str, holding_id: str | None = None, company_id: str | None = None,
    ) -> list[Loan]:
        sql = "SELECT * FROM loans WHERE world_id = ?"
        params: list[Any] = [world_id]
        if holding_id is not None:
            sql += " AND holding_id = ?"
            params.append(holding_id)
        if company_id is not None:
            sql += " AND company_id = ?"
            params.append(company_id)
        sql += " ORDER BY id"
        return [self._loan_from_row(r) for r in self._fetchall(sql, params)]

    # ------------------------------------------------------------------
    # Acquisition offers
    # ------------------------------------------------------------------
    def save_acquisition_offer(self, offer: AcquisitionOffer) -> None:
        """Create an offer or overwrite its negotiation state."""
        offer = replace(offer, updated_at=offer.updated_at or utcnow())
        self._execute(
            """
            INSERT INTO acquisition_offers
                (id, world_id, company_id, buyer_holding_id, seller_holding_id, status, data)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                seller_holding_id = excluded.seller_holding_id,
                status = excluded.status,
                data = excluded.data
            """,
            (
                offer.id, offer.world_id, offer.company_id, offer.buyer_holding_id,
                offer.seller_holding_id, OfferStatus(offer.status).value,
                record_data(offer, _OFFER_KEYS),
            ),
        )

    @staticmethod
    def _offer_from_row(row: sqlite3.Row) -> AcquisitionOffer:
        offer = record_from_row(AcquisitionOffer, row, _OFFER_KEYS)
        return replace(
            offer,
            status=enum_or(offer.status, OfferStatus, OfferStatus.EXPIRED),
            turn=enum_or(offer.turn, OfferParty, OfferParty.NONE),
            last_action=enum_or(offer.last_action, OfferParty, OfferParty.NONE),
            created_at=str_to_ts(offer.created_at),
            updated_at=str_to_ts(offer.updated_at),
        )

    def get_acquisition_offer(self, offer_id: str) -> AcquisitionOffer:
        row = self._fetchone("SELECT * FROM acquisition_offers WHERE id = ?", (offer_id,))
        if row is None:
            raise DataIntegrityError("AcquisitionOffer", offer_id)
        return self._offer_from_row(row)

    def list_acquisition_offers(
        self, world_id: str, holding_id: str | None = None, open_only: bool = False,
    ) -> list[AcquisitionOffer]:
        """Offers in a world, optionally only those a holding is party to."""
        sql = "SELECT * FROM acquisition_offers WHERE world_id = ?"
        params: list[Any] = [world_id]
        if holding_id is not None:
            sql += " AND (buyer_holding_id = ? OR seller_holding_id = ?)"
            params.extend([holding_id, holding_id])
        if open_only:
            sql += " AND status IN (?, ?)"
            params.extend([OfferStatus.OPEN.value, OfferStatus.COUNTERED.value])
        sql += " ORDER BY id"
        return [self._offer_from_row(r) for r in self._fetchall(sql, params)]

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    def delete_events_for_week(self, world_id: str, year: int, week: int) -> int:
        cur = self._execute(
            "DELETE FROM game_events WHERE world_id = ? AND year = ? AND week = ?",
            (world_id, int(year), int(week)),
        )
        return cur.rowcount

    def insert_events(self, events: Iterable[GameEvent]) -> None:
        with self._lock:
            self._conn.executemany(
                """
                INSERT INTO game_events
                    (world_id, year, week, scope, type, severity, payload_json,
                     sector_id, company_id, holding_id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        e.world_id, int(e.year), int(e.week), EventScope(e.scope).value,
                        e.type, float(e.severity), dumps(e.payload or {}),
                        e.sector_id, e.company_id, e.holding_id,
                    )
                    for e in events
                ],
            )

    def list_events(self, world_id: str, year: int, week: int) -> list[GameEvent]:
        rows = self._fetchall(
            "SELECT * FROM game_events WHERE world_id = ? AND year = ? AND week = ? ORDER BY id",
            (world_id, int(year), int(week)),
        )
        return [
            GameEvent(
                world_id=r["world_id"], year=int(r["year"]), week=int(r["week"]),
                scope=enum_or(r["scope"], EventScope, EventScope.WORLD), type=r["type"],
                severity=float(r["severity"]), payload=loads(r["payload_json"], {}) or {},
                sector_id=r["sector_id"], company_id=r["company_id"],
                holding_id=r["holding_id"], id=int(r["id"]),
            )
            for r in rows
        ]
