"""Tests for FinanceEngine and ProgressionEngine."""

import pytest

from holdsim.core.models import (
    Company,
    CompanyFinancials,
    CompanyStatus,
    GameEvent,
    EventScope,
    Holding,
    Loan,
    LoanStatus,
    Player,
    WorldEconomyState,
)
from holdsim.engines.finance import FinanceEngine
from holdsim.engines.progression import ProgressionEngine


def _make_loan(loan_id: str = "l1", principal: float = 10_000.0, rate: float = 0.12,
               weeks: int = 52, **kwargs) -> Loan:
    defaults = {"holding_id": "h1"}
    defaults.update(kwargs)
    return Loan(
        id=loan_id, world_id="w1", principal=principal, outstanding_balance=principal,
        interest_rate=rate, term_weeks=weeks, remaining_weeks=weeks, **defaults,
    )


def _make_company(cid: str = "c1", status: CompanyStatus = CompanyStatus.ACTIVE) -> Company:
    return Company(id=cid, world_id="w1", holding_id="h1", sector_id="s1",
                   niche_id="n1", name=cid, status=status)


def _make_financials(cid: str = "c1", revenue=10_000.0, cogs=2_000.0, opex=3_000.0) -> CompanyFinancials:
    return CompanyFinancials(
        company_id=cid, world_id="w1", year=1, week=1,
        revenue=revenue, cogs=cogs, opex=opex, net_profit=revenue - cogs - opex,
    )


def _make_holding() -> Holding:
    return Holding(id="h1", world_id="w1", name="Holding", player_id="p1")


# =====================================================================
# Finance
# =====================================================================

class TestAmortization:
    def test_loan_pays_off_over_term(self):
        engine = FinanceEngine()
        loan = _make_loan()
        balances = []
        for _ in range(52):
            loan, _payment = engine.amortize(loan, 0.02)
            balances.append(loan.outstanding_balance)
        assert loan.outstanding_balance == 0.0
        assert loan.remaining_weeks == 0
        assert loan.status == LoanStatus.PAID_OFF
        assert all(a >= b for a, b in zip(balances, balances[1:]))

    def test_first_week_interest(self):
        _loan, payment = FinanceEngine().amortize(_make_loan(), 0.02)
        assert payment.interest == pytest.approx(10_000 * 0.12 / 52)
        assert payment.principal == pytest.approx(10_000 / 52)

    def test_missing_rate_uses_fallback(self):
        loan = _make_loan(rate=float("nan"))
        updated, payment = FinanceEngine().amortize(loan, 0.05)
        assert updated.interest_rate == 0.05
        assert payment.interest == pytest.approx(10_000 * 0.05 / 52)

    def test_base_rate_clamped(self):
        engine = FinanceEngine()
        assert engine.base_rate(WorldEconomyState(world_id="w1", base_interest_rate=0.4)) == 0.18


class TestFinanceTick:
    def test_tax_on_positive_profit(self):
        result = FinanceEngine().tick(
            WorldEconomyState(world_id="w1"), _make_holding(), [_make_company()],
            {"c1": _make_financials()}, [],
        )
        fin = result.financials["c1"]
        assert fin.tax_expense == pytest.approx(5_000 * 0.19)
        assert fin.net_profit == pytest.approx(5_000 * 0.81)
        assert fin.cash_change == fin.net_profit

    def test_no_tax_on_loss(self):
        result = FinanceEngine().tick(
            WorldEconomyState(world_id="w1"), _make_holding(), [_make_company()],
            {"c1": _make_financials(revenue=1_000.0)}, [],
        )
        assert result.financials["c1"].tax_expense == 0.0
        assert result.financials["c1"].net_profit == pytest.approx(-4_000.0)

    def test_company_loan_interest_on_company(self):
        loan = _make_loan(holding_id=None, company_id="c1")
        result = FinanceEngine().tick(
            WorldEconomyState(world_id="w1"), _make_holding(), [_make_company()],
            {"c1": _make_financials()}, [loan],
        )
        assert result.financials["c1"].interest_expense == pytest.approx(10_000 * 0.12 / 52)
        assert result.holding_debt_total == 0.0

    def test_holding_debt_rollup(self):
        loans = [
            _make_loan("l1"),
            _make_loan("l2", principal=500.0, status=LoanStatus.PAID_OFF),
        ]
        loans[1].outstanding_balance = 0.0
        result = FinanceEngine().tick(
            WorldEconomyState(world_id="w1"), _make_holding(), [], {}, loans,
        )
        assert result.holding.total_debt == pytest.approx(result.loans[0].outstanding_balance)
        assert result.loans[1].status == LoanStatus.PAID_OFF
        assert len(result.payments) == 1
        assert result.holding_interest > 0


# =====================================================================
# Progression
# =====================================================================

class TestLevelCurve:
    def test_single_level(self):
        engine = ProgressionEngine()
        assert engine.apply_xp(1, 0.0, 110.0) == (2, pytest.approx(0.0))

    def test_multi_level_jump(self):
        engine = ProgressionEngine()
        level, xp = engine.apply_xp(1, 0.0, 400.0)
        assert level == 3
        assert xp == pytest.approx(400.0 - 110.0 - 110.0 * 2 ** 1.34)

    def test_negative_xp_never_lowers_level(self):
        level, xp = ProgressionEngine().apply_xp(4, 10.0, -500.0)
        assert level == 4
        assert xp == 0.0

    def test_max_level(self):
        engine = ProgressionEngine()
        max_level = engine.config.progression["max_level"]
        assert engine.apply_xp(max_level, 0.0, 1e12)[0] == max_level


class TestProgressionTick:
    def _player(self) -> Player:
        return Player(id="p1", name="P")

    def test_profitable_week(self):
        result = ProgressionEngine().tick(
            self._player(), [_make_company()], {"c1": _make_financials()},
        )
        # 6 per profitable company + 2 from profit + 6 stability + 2 weekly bonus
        assert result.brand_delta_xp == pytest.approx(6 + 2 + 6 + 2)
        assert result.credit_delta_xp > 0

    def test_weekly_cap(self):
        events = [
            GameEvent(world_id="w1", year=1, week=1, scope=EventScope.HOLDING, type="MEDIA_HYPE")
            for _ in range(20)
        ]
        result = ProgressionEngine().tick(
            self._player(), [_make_company()], {"c1": _make_financials()}, events,
        )
        assert result.brand_delta_xp == 80.0

    def test_bankruptcy_penalized(self):
        companies = [_make_company("c1"), _make_company("c2", CompanyStatus.BANKRUPT)]
        result = ProgressionEngine().tick(
            self._player(), companies, {"c1": _make_financials(revenue=5_000.0)},
        )
        assert result.credit_delta_xp < 0
        assert result.player.credit_level == 1

    def test_event_classification(self):
        engine = ProgressionEngine()
        assert engine.classify_event("industry_award") == (True, False)
        assert engine.classify_event("MARKET_CRASH") == (False, True)
        assert engine.classify_event("QUIET_WEEK") == (False, False)

    def test_no_companies_no_change(self):
        result = ProgressionEngine().tick(self._player(), [], {})
        assert result.brand_delta_xp == 0.0
        assert result.credit_delta_xp == 0.0
        assert result.player.brand_level == 1
