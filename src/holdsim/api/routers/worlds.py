"""World status, tick, decision and acquisition-offer endpoints."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, HTTPException, Request

from holdsim.api.schemas import (
    DecisionRequest,
    DecisionResponse,
    EconomyResponse,
    FinancialsResponse,
    OfferResponse,
    RoundResponse,
    TickResponse,
    WorldSummary,
)
from holdsim.core.decisions import parse_company_decision, parse_holding_decision
from holdsim.core.models import CompanyDecision, HoldingDecision
from holdsim.tick.orchestrator import run_world_tick

router = APIRouter()


def _store(request: Request):
    return request.app.state.store


def _economy_or_404(store, world_id: str):
    try:
        store.get_world(world_id)
        return store.get_economy_state(world_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"World '{world_id}' not found")


@router.get("", response_model=list[WorldSummary])
def list_worlds(request: Request):
    store = _store(request)
    summaries = []
    for world in store.list_worlds():
        economy = store.get_economy_state(world.id)
        summaries.append({
            "id": world.id,
            "name": world.name,
            "status": world.status.value,
            "mode": world.mode,
            "base_round_interval_seconds": world.base_round_interval_seconds,
            "current_year": economy.current_year,
            "current_week": economy.current_week,
            "is_ticking": economy.is_ticking,
            "last_tick_at": economy.last_tick_at,
        })
    return summaries


@router.get("/{world_id}/economy", response_model=EconomyResponse)
def get_economy(world_id: str, request: Request):
    economy = _economy_or_404(_store(request), world_id)
    return asdict(economy)


@router.post("/{world_id}/tick", response_model=TickResponse)
def tick_world(world_id: str, request: Request):
    store = _store(request)
    _economy_or_404(store, world_id)
    ran = run_world_tick(
        store, world_id,
        config=request.app.state.config,
        events_engine=request.app.state.events_engine,
    )
    economy = store.get_economy_state(world_id)
    return {"ran": ran, "year": economy.current_year, "week": economy.current_week}


@router.get("/{world_id}/rounds", response_model=list[RoundResponse])
def list_rounds(world_id: str, request: Request):
    store = _store(request)
    _economy_or_404(store, world_id)
    return [
        {**asdict(r), "status": r.status.value}
        for r in store.list_rounds(world_id)
    ]


@router.get(
    "/{world_id}/companies/{company_id}/financials",
    response_model=list[FinancialsResponse],
)
def company_financials(world_id: str, company_id: str, request: Request):
    store = _store(request)
    try:
        company = store.get_company(company_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Company '{company_id}' not found")
    if company.world_id != world_id:
        raise HTTPException(status_code=404, detail=f"Company '{company_id}' not found")
    return [asdict(f) for f in store.list_company_financials(company_id)]


@router.post(
    "/{world_id}/companies/{company_id}/decisions",
    response_model=DecisionResponse,
)
def submit_company_decision(
    world_id: str, company_id: str, req: DecisionRequest, request: Request,
):
    store = _store(request)
    economy = _economy_or_404(store, world_id)
    try:
        company = store.get_company(company_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Company '{company_id}' not found")
    if company.world_id != world_id:
        raise HTTPException(status_code=404, detail=f"Company '{company_id}' not found")
    try:
        parsed = parse_company_decision(req.payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    year = req.year or economy.current_year
    week = req.week or economy.current_week
    seq = store.add_company_decision(CompanyDecision(
        world_id=world_id, company_id=company_id, year=year, week=week, payload=req.payload,
    ))
    return {"seq": seq, "year": year, "week": week, "type": parsed.KIND}


@router.post(
    "/{world_id}/holdings/{holding_id}/decisions",
    response_model=DecisionResponse,
)
def submit_holding_decision(
    world_id: str, holding_id: str, req: DecisionRequest, request: Request,
):
    store = _store(request)
    economy = _economy_or_404(store, world_id)
    try:
        holding = store.get_holding(holding_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Holding '{holding_id}' not found")
    if holding.world_id != world_id:
        raise HTTPException(status_code=404, detail=f"Holding '{holding_id}' not found")
    try:
        parsed = parse_holding_decision(req.payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    year = req.year or economy.current_year
    week = req.week or economy.current_week
    seq = store.add_holding_decision(HoldingDecision(
        world_id=world_id, holding_id=holding_id, year=year, week=week, payload=req.payload,
    ))
    return {"seq": seq, "year": year, "week": week, "type": parsed.KIND}


@router.get("/{world_id}/offers", response_model=list[OfferResponse])
def list_offers(
    world_id: str, request: Request, holding_id: str | None = None, open_only: bool = False,
):
    store = _store(request)
    _economy_or_404(store, world_id)
    return [
        {
            **asdict(o),
            "status": o.status.value,
            "turn": o.turn.value,
            "last_action": o.last_action.value,
        }
        for o in store.list_acquisition_offers(world_id, holding_id=holding_id, open_only=open_only)
    ]
