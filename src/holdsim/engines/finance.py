"""
FinanceEngine: loans, interest and corporate tax for one holding.

Runs after the CompanyEngine. Each ACTIVE loan accrues a week of interest
and pays an equal share of its outstanding balance over the remaining
weeks. Company-level interest lands on that company's financials; holding
loan balances roll up into the holding's total debt. A flat corporate tax
applies to positive profit before tax, and ``cash_change`` is net profit.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Mapping, Sequence

from holdsim.core.config import EconomyConfig
from holdsim.core.models import (
    Company,
    CompanyFinancials,
    Holding,
    Loan,
    LoanStatus,
    WorldEconomyState,
)
from holdsim.core.numeric import WEEKS_PER_YEAR, clamp, safe_number


@dataclass
class LoanPayment:
    loan_id: str
    interest: float
    principal: float


@dataclass
class FinanceTickResult:
    holding: Holding
    financials: dict[str, CompanyFinancials]
    loans: list[Loan]
    holding_debt_total: float
    holding_interest: float = 0.0
    payments: list[LoanPayment] = field(default_factory=list)


class FinanceEngine:

    def __init__(self, config: EconomyConfig | None = None):
        self.config = config or EconomyConfig()

    def base_rate(self, economy: WorldEconomyState) -> float:
        return clamp(
            safe_number(economy.base_interest_rate, self.config.macro["default_interest_rate"]),
            *self.config.bounds("finance", "loan_rate_bounds"),
        )

    def amortize(self, loan: Loan, fallback_rate: float) -> tuple[Loan, LoanPayment]:
        """One week of interest plus equal-principal amortization."""
        outstanding = max(0.0, safe_number(loan.outstanding_balance))
        rate = safe_number(loan.interest_rate, fallback_rate)
        interest = outstanding * rate / WEEKS_PER_YEAR

        remaining = max(1, int(safe_number(loan.remaining_weeks, 1)))
        principal = clamp(outstanding / remaining, 0.0, outstanding)

        new_outstanding = max(0.0, outstanding + interest - principal)
        new_remaining = max(0, remaining - 1)

        status = LoanStatus.ACTIVE
        if new_outstanding <= self.config.finance["paid_off_epsilon"] or new_remaining == 0:
            status = LoanStatus.PAID_OFF
            # The final instalment settles the last week's accrued interest too.
            principal += new_outstanding
            new_outstanding = 0.0

        updated = replace(
            loan,
            outstanding_balance=new_outstanding,
            remaining_weeks=new_remaining,
            interest_rate=rate,
            status=status,
        )
        return updated, LoanPayment(loan_id=loan.id, interest=interest, principal=principal)

    def tick(
        self,
        economy: WorldEconomyState,
        holding: Holding,
        companies: Sequence[Company],
        financials: Mapping[str, CompanyFinancials],
        loans: Sequence[Loan],
    ) -> FinanceTickResult:
        fallback_rate = self.base_rate(economy)
        tax_rate = self.config.finance["corporate_tax_rate"]

        next_loans: list[Loan] = []
        payments: list[LoanPayment] = []
        interest_by_company: dict[str, float] = {}
        holding_debt = 0.0
        holding_interest = 0.0

        for loan in loans:
            if loan.status != LoanStatus.ACTIVE:
                next_loans.append(loan)
                if loan.is_holding_loan:
                    holding_debt += max(0.0, safe_number(loan.outstanding_balance))
                continue

            updated, payment = self.amortize(loan, fallback_rate)
            next_loans.append(updated)
            payments.append(payment)

            if loan.is_holding_loan:
                holding_debt += updated.outstanding_balance
                holding_interest += payment.interest
            else:
                cid = str(loan.company_id)
                interest_by_company[cid] = interest_by_company.get(cid, 0.0) + payment.interest

        next_financials = dict(financials)
        for company in companies:
            fin = next_financials.get(company.id)
            if fin is None:
                continue
            interest = interest_by_company.get(company.id, 0.0)
            profit_before_tax = fin.revenue - fin.cogs - fin.opex - interest
            tax = max(0.0, profit_before_tax) * tax_rate
            net = profit_before_tax - tax
            next_financials[company.id] = replace(
                fin,
                interest_expense=interest,
                tax_expense=tax,
                net_profit=net,
                cash_change=net,
            )

        return FinanceTickResult(
            holding=replace(holding, total_debt=holding_debt),
            financials=next_financials,
            loans=next_loans,
            holding_debt_total=holding_debt,
            holding_interest=holding_interest,
            payments=payments,
        )
