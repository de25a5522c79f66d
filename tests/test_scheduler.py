"""Tests for the polling WorldScheduler."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from holdsim.core.catalog import load_catalog
from holdsim.core.models import Company, Holding, World, WorldEconomyState, WorldStatus
from holdsim.engines.events import EventsEngine
from holdsim.persistence.store import WorldStore
from holdsim.tick.scheduler import WorldScheduler

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

CATALOG = {"sectors": [{
    "id": "s1", "code": "S1", "name": "Services",
    "niches": [{"id": "n1", "code": "N1", "name": "Laundry", "base_demand_level": 400}],
}]}


@pytest.fixture
def store(tmp_path):
    s = WorldStore(str(tmp_path / "sched.db"))
    s.save_catalog(load_catalog(CATALOG))
    for wid in ("a", "b"):
        s.create_world(World(id=wid, name=wid, base_round_interval_seconds=60))
        s.save_holding(Holding(id=f"h-{wid}", world_id=wid, name=wid))
        s.save_company(Company(id=f"c-{wid}", world_id=wid, holding_id=f"h-{wid}",
                               sector_id="s1", niche_id="n1", name=wid))
    yield s
    s.close()


def _make_world(interval: int = 60) -> World:
    return World(id="w", name="w", base_round_interval_seconds=interval)


class _RaisingEvents(EventsEngine):
    def generate(self, ctx):
        raise RuntimeError("boom")


class TestPolicy:
    def test_never_ticked_is_due(self):
        assert WorldScheduler.is_due(_make_world(), WorldEconomyState(world_id="w"), T0)

    def test_due_after_interval(self):
        econ = WorldEconomyState(world_id="w", last_tick_at=T0)
        assert not WorldScheduler.is_due(_make_world(), econ, T0 + timedelta(seconds=59))
        assert WorldScheduler.is_due(_make_world(), econ, T0 + timedelta(seconds=60))

    def test_ticking_world_not_due(self):
        econ = WorldEconomyState(world_id="w", is_ticking=True)
        assert not WorldScheduler.is_due(_make_world(), econ, T0)

    def test_stale_threshold(self, store):
        sched = WorldScheduler(store, poll_interval=1, stale_after=300)
        assert sched.stale_threshold(_make_world(60)) == timedelta(seconds=300)
        assert sched.stale_threshold(_make_world(3600)) == timedelta(seconds=7200)

    def test_is_stale(self, store):
        sched = WorldScheduler(store, poll_interval=1, stale_after=0)
        econ = WorldEconomyState(world_id="w", is_ticking=True, last_tick_started_at=T0)
        assert not sched.is_stale(_make_world(60), econ, T0 + timedelta(seconds=120))
        assert sched.is_stale(_make_world(60), econ, T0 + timedelta(seconds=121))
        assert not sched.is_stale(_make_world(60), WorldEconomyState(world_id="w"), T0)

    def test_poll_interval_floor(self, store):
        assert WorldScheduler(store, poll_interval=0.01).poll_interval == 1.0

    def test_env_overrides(self, store, monkeypatch):
        monkeypatch.setenv("HOLDSIM_POLL_INTERVAL_SECONDS", "12")
        monkeypatch.setenv("HOLDSIM_TICK_STALE_SECONDS", "45")
        sched = WorldScheduler(store)
        assert sched.poll_interval == 12.0
        assert sched.stale_after == 45.0


class TestPolling:
    def test_poll_ticks_due_worlds(self, store):
        sched = WorldScheduler(store, poll_interval=1)
        assert sched.poll_once(T0) == ["a", "b"]
        assert sched.poll_once(T0 + timedelta(seconds=30)) == []
        assert sched.poll_once(T0 + timedelta(seconds=61)) == ["a", "b"]
        assert store.get_economy_state("a").current_week == 3

    def test_paused_world_skipped(self, store):
        store.set_world_status("b", WorldStatus.PAUSED)
        assert WorldScheduler(store, poll_interval=1).poll_once(T0) == ["a"]

    def test_stale_lock_recovered(self, store):
        store.try_lock("a", T0)
        sched = WorldScheduler(store, poll_interval=1, stale_after=0)
        assert "a" not in sched.poll_once(T0 + timedelta(seconds=60))
        assert "a" in sched.poll_once(T0 + timedelta(seconds=200))
        assert store.get_economy_state("a").current_week == 2

    def test_failed_tick_does_not_stop_poll(self, store):
        sched = WorldScheduler(store, events_engine=_RaisingEvents(), poll_interval=1)
        assert sched.poll_once(T0) == []
        assert store.get_economy_state("a").is_ticking is False
        assert store.get_economy_state("b").is_ticking is False

    def test_start_stop(self, store):
        sched = WorldScheduler(store, poll_interval=1)
        sched.start()
        assert sched.running
        sched.start()
        sched.stop(timeout=5)
        assert not sched.running
