"""Integration tests for the holdsim REST API."""

import uuid

import pytest
from fastapi.testclient import TestClient

from holdsim.api.app import create_app
from holdsim.core.catalog import load_catalog
from holdsim.core.models import Company, Holding, World

CATALOG = {"sectors": [{
    "id": "api-s1", "code": "S1", "name": "Services",
    "niches": [{"id": "api-n1", "code": "N1", "name": "Laundry", "base_demand_level": 400}],
}]}


@pytest.fixture
def client():
    app = create_app()
    return TestClient(app)


@pytest.fixture
def world_id(client):
    """Seed a fresh world; the database file is shared for the whole session."""
    wid = f"w-{uuid.uuid4().hex[:8]}"
    store = client.app.state.store
    store.save_catalog(load_catalog(CATALOG))
    store.create_world(World(id=wid, name="API World"))
    store.save_holding(Holding(id=f"{wid}-h1", world_id=wid, name="H1", cash_balance=1_000))
    store.save_company(Company(id=f"{wid}-c1", world_id=wid, holding_id=f"{wid}-h1",
                               sector_id="api-s1", niche_id="api-n1", name="C1"))
    return wid


class TestHealthCheck:
    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


class TestWorlds:
    def test_list_worlds(self, client, world_id):
        resp = client.get("/api/worlds")
        assert resp.status_code == 200
        summary = next(w for w in resp.json() if w["id"] == world_id)
        assert summary["current_week"] == 1
        assert summary["is_ticking"] is False

    def test_get_economy(self, client, world_id):
        resp = client.get(f"/api/worlds/{world_id}/economy")
        assert resp.status_code == 200
        data = resp.json()
        assert data["world_id"] == world_id
        assert data["base_interest_rate"] == pytest.approx(0.02)

    def test_economy_not_found(self, client):
        resp = client.get("/api/worlds/nonexistent/economy")
        assert resp.status_code == 404


class TestTick:
    def test_tick_advances(self, client, world_id):
        resp = client.post(f"/api/worlds/{world_id}/tick")
        assert resp.status_code == 200
        assert resp.json() == {"ran": True, "year": 1, "week": 2}

        rounds = client.get(f"/api/worlds/{world_id}/rounds").json()
        assert [(r["week"], r["status"]) for r in rounds] == [(1, "COMPLETED")]

    def test_tick_not_found(self, client):
        assert client.post("/api/worlds/nonexistent/tick").status_code == 404

    def test_financials_after_tick(self, client, world_id):
        client.post(f"/api/worlds/{world_id}/tick")
        resp = client.get(f"/api/worlds/{world_id}/companies/{world_id}-c1/financials")
        assert resp.status_code == 200
        data = resp.json()
        assert len(data) == 1
        assert data[0]["week"] == 1
        assert data[0]["market_share"] == pytest.approx(1.0)

    def test_financials_wrong_world(self, client, world_id):
        resp = client.get(f"/api/worlds/other/companies/{world_id}-c1/financials")
        assert resp.status_code == 404


class TestDecisions:
    def test_submit_company_decision(self, client, world_id):
        resp = client.post(
            f"/api/worlds/{world_id}/companies/{world_id}-c1/decisions",
            json={"payload": {"type": "SET_PRICE", "price_level": 1.4}},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["type"] == "SET_PRICE"
        assert (data["year"], data["week"]) == (1, 1)

        client.post(f"/api/worlds/{world_id}/tick")
        state = client.app.state.store.get_latest_company_state(f"{world_id}-c1")
        assert state.price_level == pytest.approx(1.4)

    def test_submit_for_later_week(self, client, world_id):
        resp = client.post(
            f"/api/worlds/{world_id}/companies/{world_id}-c1/decisions",
            json={"payload": {"type": "SET_STAFFING", "employees": 4}, "week": 3},
        )
        assert resp.json()["week"] == 3

    def test_invalid_payload(self, client, world_id):
        resp = client.post(
            f"/api/worlds/{world_id}/companies/{world_id}-c1/decisions",
            json={"payload": {"type": "SET_PRICE"}},
        )
        assert resp.status_code == 400

    def test_unknown_company(self, client, world_id):
        resp = client.post(
            f"/api/worlds/{world_id}/companies/ghost/decisions",
            json={"payload": {"type": "SET_PRICE", "price_level": 1.0}},
        )
        assert resp.status_code == 404

    def test_submit_holding_decision(self, client, world_id):
        resp = client.post(
            f"/api/worlds/{world_id}/holdings/{world_id}-h1/decisions",
            json={"payload": {"type": "TAKE_HOLDING_LOAN", "principal": 500}},
        )
        assert resp.status_code == 200
        assert resp.json()["type"] == "TAKE_HOLDING_LOAN"

        client.post(f"/api/worlds/{world_id}/tick")
        holding = client.app.state.store.get_holding(f"{world_id}-h1")
        assert holding.cash_balance == pytest.approx(1_500)

    def test_holding_rejects_company_decision(self, client, world_id):
        resp = client.post(
            f"/api/worlds/{world_id}/holdings/{world_id}-h1/decisions",
            json={"payload": {"type": "SET_PRICE", "price_level": 1.0}},
        )
        assert resp.status_code == 400


class TestOffers:
    def test_offer_listed_after_tick(self, client, world_id):
        store = client.app.state.store
        store.save_holding(Holding(id=f"{world_id}-h2", world_id=world_id, name="H2", cash_balance=5_000))
        resp = client.post(
            f"/api/worlds/{world_id}/holdings/{world_id}-h2/decisions",
            json={"payload": {
                "type": "SUBMIT_ACQUISITION_OFFER", "company_id": f"{world_id}-c1", "offer_price": 800,
            }},
        )
        assert resp.status_code == 200
        client.post(f"/api/worlds/{world_id}/tick")

        resp = client.get(f"/api/worlds/{world_id}/offers", params={"holding_id": f"{world_id}-h1"})
        assert resp.status_code == 200
        offers = resp.json()
        assert len(offers) == 1
        assert offers[0]["status"] == "OPEN"
        assert offers[0]["turn"] == "SELLER"
        assert offers[0]["offer_price"] == 800

    def test_bad_offer_price_rejected(self, client, world_id):
        resp = client.post(
            f"/api/worlds/{world_id}/holdings/{world_id}-h1/decisions",
            json={"payload": {"type": "SUBMIT_ACQUISITION_OFFER", "company_id": "x", "offer_price": 0}},
        )
        assert resp.status_code == 400

    def test_offers_unknown_world(self, client):
        assert client.get("/api/worlds/nope/offers").status_code == 404
