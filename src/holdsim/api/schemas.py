"""
Pydantic models for API request/response validation.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


# === Worlds ===

class WorldSummary(BaseModel):
    id: str
    name: str
    status: str
    mode: str
    base_round_interval_seconds: int
    current_year: int
    current_week: int
    is_ticking: bool
    last_tick_at: datetime | None = None


class EconomyResponse(BaseModel):
    world_id: str
    current_year: int
    current_week: int
    base_interest_rate: float
    inflation_rate: float
    base_wage_index: float
    macro_modifiers: dict[str, float] = Field(default_factory=dict)
    is_ticking: bool
    last_tick_started_at: datetime | None = None
    last_tick_at: datetime | None = None
    decision_cutoff_seq: int | None = None


# === Ticks ===

class TickResponse(BaseModel):
    ran: bool
    year: int
    week: int


class RoundResponse(BaseModel):
    world_id: str
    year: int
    week: int
    status: str
    seed: str
    engine_version: str
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error: str | None = None


# === Companies ===

class FinancialsResponse(BaseModel):
    company_id: str
    year: int
    week: int
    revenue: float
    cogs: float
    opex: float
    interest_expense: float
    tax_expense: float
    net_profit: float
    cash_change: float
    sold_volume: float
    market_share: float
    refunds: float


# === Decisions ===

class DecisionRequest(BaseModel):
    payload: dict[str, Any]
    year: int | None = None
    week: int | None = None


class DecisionResponse(BaseModel):
    seq: int
    year: int
    week: int
    type: str


# === Acquisitions ===

class OfferResponse(BaseModel):
    id: str
    company_id: str
    buyer_holding_id: str
    seller_holding_id: str
    offer_price: float
    status: str
    turn: str
    last_action: str
    counter_count: int
    expires_year: int
    expires_week: int
    message: str | None = None
    history: list[dict[str, Any]] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None
