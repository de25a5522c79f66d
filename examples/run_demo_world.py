#!/usr/bin/env python3
"""Seed a small holdsim world in memory, run a few weekly ticks and print results."""

import logging
from datetime import datetime, timedelta, timezone

from holdsim.core.catalog import load_catalog
from holdsim.core.models import (
    Company,
    CompanyDecision,
    Holding,
    HoldingDecision,
    Player,
    World,
)
from holdsim.persistence.store import WorldStore
from holdsim.tick.orchestrator import run_world_tick

CATALOG = {
    "sectors": [
        {
            "id": "auto", "code": "AUTO", "name": "Automotive",
            "niches": [
                {
                    "id": "auto-carwash", "code": "CAR_WASH", "name": "Car Wash",
                    "base_demand_level": 800, "base_price": 25, "variable_cost": 6,
                    "fixed_costs": 900, "demand_volatility": 0.15, "price_elasticity": 0.8,
                    "competition_type": "FRAGMENTED", "startup_cost": 40000,
                    "seasonality": [0.8, 0.8, 0.9, 1.0, 1.1, 1.2, 1.25, 1.2, 1.05, 0.95, 0.85, 0.8],
                    "upgrades": [
                        {
                            "id": "auto-carwash-tunnel", "code": "TUNNEL", "name": "Tunnel line",
                            "capex_pct_range": [0.1, 0.2], "opex_pct_range": [0.01, 0.02],
                            "delay_weeks": {"min": 1, "max": 3},
                            "effects": [{"variable": "capacity", "op": "mul", "range": [1.2, 1.4]}],
                        },
                    ],
                },
            ],
        },
        {
            "id": "food", "code": "FOOD", "name": "Food & Beverage",
            "niches": [
                {
                    "id": "food-bakery", "code": "BAKERY", "name": "Bakery",
                    "base_demand_level": 1200, "base_price": 8, "variable_cost": 3,
                    "fixed_costs": 600, "competition_type": "OLIGOPOLY",
                    "segments": [
                        {"name": "budget", "demand_share": 0.6, "reference_price": 6, "elasticity": 1.4},
                        {"name": "premium", "demand_share": 0.4, "reference_price": 11,
                         "elasticity": 0.6, "min_quality": 1.1},
                    ],
                },
            ],
        },
    ],
}


def seed(store: WorldStore) -> None:
    store.save_catalog(load_catalog(CATALOG))
    store.create_world(World(id="demo", name="Demo World", base_round_interval_seconds=60))

    store.save_player(Player(id="p1", name="Alice"))
    store.save_holding(Holding(id="h1", world_id="demo", name="Alice Holdings",
                               player_id="p1", cash_balance=50_000))
    store.save_holding(Holding(id="h2", world_id="demo", name="Bot Holdings", cash_balance=20_000))

    companies = [
        Company(id="c1", world_id="demo", holding_id="h1", sector_id="auto",
                niche_id="auto-carwash", name="Sparkle Wash"),
        Company(id="c2", world_id="demo", holding_id="h2", sector_id="auto",
                niche_id="auto-carwash", name="Quick Suds"),
        Company(id="c3", world_id="demo", holding_id="h1", sector_id="food",
                niche_id="food-bakery", name="Morning Crumb"),
        Company(id="c4", world_id="demo", holding_id="h2", sector_id="food",
                niche_id="food-bakery", name="Dough Bros"),
    ]
    for company in companies:
        store.save_company(company)

    store.add_company_decision(CompanyDecision(
        world_id="demo", company_id="c1", year=1, week=1,
        payload={"type": "SET_MARKETING", "marketing_level": 300},
    ))
    store.add_company_decision(CompanyDecision(
        world_id="demo", company_id="c1", year=1, week=1,
        payload={"type": "BUY_UPGRADE", "upgrade_id": "auto-carwash-tunnel"},
    ))
    store.add_company_decision(CompanyDecision(
        world_id="demo", company_id="c3", year=1, week=1,
        payload={"type": "INVEST_QUALITY", "amount": 0.3},
    ))
    store.add_holding_decision(HoldingDecision(
        world_id="demo", holding_id="h1", year=1, week=1,
        payload={"type": "TAKE_HOLDING_LOAN", "principal": 10_000, "term_weeks": 52},
    ))


def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    store = WorldStore(":memory:")
    seed(store)

    weeks = 8
    start = datetime(2025, 1, 6, tzinfo=timezone.utc)
    print(f"=== holdsim demo: {weeks} weeks ===")
    for i in range(weeks):
        run_world_tick(store, "demo", now=start + timedelta(minutes=i))

    economy = store.get_economy_state("demo")
    print()
    print(f"Clock: year {economy.current_year}, week {economy.current_week}")
    print(f"Interest {economy.base_interest_rate:.4f}  inflation {economy.inflation_rate:.4f}  "
          f"wage index {economy.base_wage_index:.4f}")

    print()
    print(f"{'Company':<16} {'Wk':>3} {'Revenue':>10} {'Sold':>8} {'Share':>6} {'Net':>10}")
    print("-" * 58)
    for company in store.list_companies("demo"):
        for fin in store.list_company_financials(company.id):
            print(f"{company.name:<16} {fin.week:3d} {fin.revenue:10.1f} {fin.sold_volume:8.1f} "
                  f"{fin.market_share:6.2f} {fin.net_profit:10.1f}")

    print()
    for holding in store.list_holdings("demo"):
        print(f"{holding.name:<16} cash {holding.cash_balance:10.1f}  debt {holding.total_debt:10.1f}")
    player = store.get_player("p1")
    print(f"\nPlayer {player.name}: brand L{player.brand_level} ({player.brand_xp:.0f} xp), "
          f"credit L{player.credit_level} ({player.credit_xp:.0f} xp)")


if __name__ == "__main__":
    main()
