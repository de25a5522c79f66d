"""
Polling scheduler for world ticks.

One ``WorldScheduler`` polls every ACTIVE world on an interval and runs a
tick for each world whose round interval has elapsed since its last
completed tick. The per-world lock lives in the store, so several
schedulers (threads or processes) can poll the same database safely.
A lock left behind by a crashed tick is cleared once it is older than
``max(2 * round interval, stale floor)``.
"""

from __future__ import annotations

import logging
import os
import threading
from datetime import datetime, timedelta

from holdsim.core.config import EconomyConfig
from holdsim.core.models import World, WorldEconomyState, WorldStatus
from holdsim.engines.events import EventsEngine
from holdsim.persistence.serializers import utcnow
from holdsim.persistence.store import WorldStore
from holdsim.tick.orchestrator import run_world_tick

logger = logging.getLogger(__name__)


class WorldScheduler:
    """Background poller driving ``run_world_tick``.

    Parameters
    ----------
    store : WorldStore
        Shared store.
    config : EconomyConfig | None
        Economy configuration passed to every tick.
    poll_interval : float | None
        Seconds between polls. Defaults to ``HOLDSIM_POLL_INTERVAL_SECONDS``
        or the config's scheduler section.
    stale_after : float | None
        Floor, in seconds, before a held lock counts as stale. Defaults to
        ``HOLDSIM_TICK_STALE_SECONDS`` or the config's scheduler section.
    """

    def __init__(
        self,
        store: WorldStore,
        config: EconomyConfig | None = None,
        events_engine: EventsEngine | None = None,
        poll_interval: float | None = None,
        stale_after: float | None = None,
    ):
        self.store = store
        self.config = config or EconomyConfig()
        self.events_engine = events_engine
        cfg = self.config.scheduler

        if poll_interval is None:
            poll_interval = float(os.environ.get(
                "HOLDSIM_POLL_INTERVAL_SECONDS", cfg["poll_interval_seconds"],
            ))
        if stale_after is None:
            stale_after = float(os.environ.get(
                "HOLDSIM_TICK_STALE_SECONDS", cfg["stale_tick_floor_seconds"],
            ))
        self.poll_interval = max(float(cfg["min_poll_interval_seconds"]), poll_interval)
        self.stale_after = stale_after

        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------
    @staticmethod
    def is_due(world: World, economy: WorldEconomyState, now: datetime) -> bool:
        if economy.is_ticking:
            return False
        if economy.last_tick_at is None:
            return True
        elapsed = (now - economy.last_tick_at).total_seconds()
        return elapsed >= world.base_round_interval_seconds

    def stale_threshold(self, world: World) -> timedelta:
        return timedelta(seconds=max(2 * world.base_round_interval_seconds, self.stale_after))

    def is_stale(self, world: World, economy: WorldEconomyState, now: datetime) -> bool:
        if not economy.is_ticking:
            return False
        if economy.last_tick_started_at is None:
            return True
        return now - economy.last_tick_started_at > self.stale_threshold(world)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------
    def poll_once(self, now: datetime | None = None) -> list[str]:
        """Check every active world once; returns the ids that advanced."""
        now = now or utcnow()
        ticked: list[str] = []
        for world in self.store.list_worlds(WorldStatus.ACTIVE):
            economy = self.store.get_economy_state(world.id)

            if self.is_stale(world, economy, now):
                if self.store.reset_stale_lock(world.id, now - self.stale_threshold(world)):
                    logger.warning("Reset stale tick lock for world %s", world.id)
                    economy = self.store.get_economy_state(world.id)

            if not self.is_due(world, economy, now):
                continue

            logger.info("Triggering tick for world %s", world.id)
            try:
                if run_world_tick(
                    self.store, world.id,
                    config=self.config, events_engine=self.events_engine, now=now,
                ):
                    ticked.append(world.id)
            except Exception:
                logger.exception("Scheduled tick failed for world %s", world.id)
        return ticked

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.poll_once()
            except Exception:
                logger.exception("Scheduler poll failed")
            self._stop.wait(self.poll_interval)

    def start(self) -> None:
        """Start polling on a daemon thread (no-op if already running)."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="holdsim-scheduler", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
