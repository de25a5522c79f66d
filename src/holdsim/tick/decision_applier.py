"""
Apply this week's decisions to working copies of tick state.

Company decisions run before the market (they shape the state the
CompanyEngine sees); holding decisions run after it as cash transfers,
loans and acquisition negotiations.
Invalid or stale player input (not enough cash, an upgrade already owned,
a program that is no longer active) is skipped and logged at DEBUG; it is
never an error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Mapping

from holdsim.core.config import EconomyConfig
from holdsim.core.decisions import (
    DEFAULT_OFFER_EXPIRY_WEEKS,
    AcceptAcquisitionOffer,
    AdjustOpeningHours,
    BuyCompany,
    BuyUpgrade,
    CancelProgram,
    CompanyDecisionVisitor,
    CounterAcquisitionOffer,
    HoldingDecisionVisitor,
    InvestCapacity,
    InvestQuality,
    RejectAcquisitionOffer,
    RepayHoldingLoan,
    SetMarketing,
    SetOperationsIntensity,
    SetPrice,
    SetProductPlan,
    SetStaffing,
    StartProgram,
    SubmitAcquisitionOffer,
    TakeHoldingLoan,
    WithdrawAcquisitionOffer,
    dispatch,
    parse_company_decision,
    parse_holding_decision,
)
from holdsim.core.models import (
    AcquisitionOffer,
    Company,
    CompanyDecision,
    CompanyProgram,
    CompanyState,
    CompanyStatus,
    CompanyUpgrade,
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
    WorldEconomyState,
)
from holdsim.core.numeric import add_weeks, clamp, safe_number, week_index
from holdsim.core.random_source import RandomSource
from holdsim.tick.effects import upgrade_capex

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Company decisions
# ---------------------------------------------------------------------------

@dataclass
class CompanyWorkingSet:
    """Mutable per-company view for one tick."""
    company: Company
    state: CompanyState
    niche: Niche | None = None
    programs: dict[str, CompanyProgram] = field(default_factory=dict)
    upgrades: dict[str, CompanyUpgrade] = field(default_factory=dict)
    one_off_opex: float = 0.0
    touched_programs: set[str] = field(default_factory=set)
    new_upgrades: list[CompanyUpgrade] = field(default_factory=list)
    # this week's operations inputs; None leaves the niche defaults
    ops_intensity: float | None = None
    availability: float | None = None


class CompanyDecisionApplier(CompanyDecisionVisitor[bool]):
    """Writes one company's decisions onto its working set.

    Each ``visit_*`` returns True when the decision changed something.
    """

    def __init__(
        self,
        working: CompanyWorkingSet,
        upgrade_catalog: Mapping[str, NicheUpgrade],
        source: RandomSource,
        config: EconomyConfig,
    ):
        self.working = working
        self.upgrade_catalog = upgrade_catalog
        self.source = source
        self.config = config
        self._programs_started = 0

    @property
    def state(self) -> CompanyState:
        return self.working.state

    def _set(self, **changes) -> bool:
        self.working.state = replace(self.working.state, **changes)
        return True

    def visit_set_price(self, decision: SetPrice) -> bool:
        lo, hi = self.config.bounds("decisions", "price_level_bounds")
        return self._set(price_level=clamp(decision.price_level, lo, hi))

    def visit_set_marketing(self, decision: SetMarketing) -> bool:
        return self._set(marketing_level=max(0.0, decision.marketing_level))

    def visit_set_staffing(self, decision: SetStaffing) -> bool:
        return self._set(employees=max(0, int(decision.employees)))

    def visit_invest_capacity(self, decision: InvestCapacity) -> bool:
        capacity = max(0.0, safe_number(self.state.capacity) + decision.amount)
        return self._set(capacity=capacity)

    def visit_invest_quality(self, decision: InvestQuality) -> bool:
        lo, hi = self.config.bounds("decisions", "quality_bounds")
        quality = clamp(safe_number(self.state.quality_score, 1.0) + decision.amount, lo, hi)
        return self._set(quality_score=quality)

    def visit_set_product_plan(self, decision: SetProductPlan) -> bool:
        buffer = clamp(decision.buffer_weeks, 0, self.config.decisions["buffer_weeks_max"])
        return self._set(unit_price_override=decision.unit_price, buffer_weeks=buffer)

    def visit_start_program(self, decision: StartProgram) -> bool:
        self._programs_started += 1
        company = self.working.company
        program_id = decision.program_id or (
            f"prg-{company.id}-{self.source.year}-{self.source.week}-{self._programs_started}"
        )
        existing = self.working.programs.get(program_id)
        if existing is not None and existing.status == ProgramStatus.ACTIVE:
            logger.debug("Program %s already running for %s", program_id, company.id)
            return False

        self.working.programs[program_id] = CompanyProgram(
            id=program_id,
            world_id=company.world_id,
            company_id=company.id,
            program_type=decision.program_type,
            start_year=self.source.year,
            start_week=self.source.week,
            duration_weeks=decision.duration_weeks,
            status=ProgramStatus.ACTIVE,
            payload={
                "effects": [dict(e) for e in decision.effects],
                "weekly_cost": decision.weekly_cost,
                "one_off_cost": decision.one_off_cost,
            },
        )
        self.working.touched_programs.add(program_id)
        self.working.one_off_opex += decision.one_off_cost
        return True

    def visit_cancel_program(self, decision: CancelProgram) -> bool:
        program = self.working.programs.get(decision.program_id)
        if program is None or program.status != ProgramStatus.ACTIVE:
            logger.debug(
                "Cancel skipped: program %s is not active for %s",
                decision.program_id, self.working.company.id,
            )
            return False
        self.working.programs[program.id] = replace(program, status=ProgramStatus.CANCELLED)
        self.working.touched_programs.add(program.id)
        return True

    def visit_buy_upgrade(self, decision: BuyUpgrade) -> bool:
        company = self.working.company
        if decision.upgrade_id in self.working.upgrades:
            logger.debug("Upgrade %s already owned by %s", decision.upgrade_id, company.id)
            return False
        upgrade = self.upgrade_catalog.get(decision.upgrade_id)
        if upgrade is None or upgrade.niche_id != company.niche_id:
            logger.debug("Upgrade %s not available to %s", decision.upgrade_id, company.id)
            return False

        owned = CompanyUpgrade(
            id=f"upg-{company.id}-{upgrade.id}",
            world_id=company.world_id,
            company_id=company.id,
            upgrade_id=upgrade.id,
            purchased_year=self.source.year,
            purchased_week=self.source.week,
        )
        startup = self.working.niche.startup_cost if self.working.niche else None
        self.working.upgrades[upgrade.id] = owned
        self.working.new_upgrades.append(owned)
        self.working.one_off_opex += upgrade_capex(upgrade, owned, startup, self.source)
        return True

    def visit_set_operations_intensity(self, decision: SetOperationsIntensity) -> bool:
        self.working.ops_intensity = clamp(decision.intensity, 0.0, 1.0)
        return True

    def visit_adjust_opening_hours(self, decision: AdjustOpeningHours) -> bool:
        self.working.availability = clamp(decision.availability, 0.1, 1.2)
        return True


def apply_company_decisions(
    working: CompanyWorkingSet,
    decisions: list[CompanyDecision],
    upgrade_catalog: Mapping[str, NicheUpgrade],
    source: RandomSource,
    config: EconomyConfig,
) -> int:
    """Apply decisions in submission order; returns how many took effect."""
    applier = CompanyDecisionApplier(working, upgrade_catalog, source, config)
    applied = 0
    for decision in decisions:
        try:
            parsed = parse_company_decision(decision.payload)
        except ValueError:
            logger.warning(
                "Skipping malformed decision %s for company %s",
                decision.id, decision.company_id, exc_info=True,
            )
            continue
        if dispatch(parsed, applier):
            applied += 1
    return applied


# ---------------------------------------------------------------------------
# Holding decisions
# ---------------------------------------------------------------------------

@dataclass
class HoldingLedger:
    """World-wide cash, ownership and loan view shared by holding decisions."""
    holdings: dict[str, Holding]
    companies: dict[str, Company]
    loans: dict[str, Loan]
    players: dict[str, Player] = field(default_factory=dict)
    new_loans: list[str] = field(default_factory=list)
    offers: dict[str, AcquisitionOffer] = field(default_factory=dict)
    touched_offers: set[str] = field(default_factory=set)

    def put_offer(self, offer: AcquisitionOffer) -> None:
        self.offers[offer.id] = offer
        self.touched_offers.add(offer.id)


class HoldingDecisionApplier(HoldingDecisionVisitor[bool]):

    def __init__(
        self,
        holding_id: str,
        ledger: HoldingLedger,
        economy: WorldEconomyState,
        year: int,
        week: int,
        config: EconomyConfig,
    ):
        self.holding_id = holding_id
        self.ledger = ledger
        self.economy = economy
        self.year = year
        self.week = week
        self.config = config
        self._loans_taken = 0
        self._offers_made = 0

    @property
    def holding(self) -> Holding:
        return self.ledger.holdings[self.holding_id]

    def _set_cash(self, holding_id: str, cash: float) -> None:
        self.ledger.holdings[holding_id] = replace(
            self.ledger.holdings[holding_id], cash_balance=cash,
        )

    def visit_buy_company(self, decision: BuyCompany) -> bool:
        company = self.ledger.companies.get(decision.company_id)
        buyer = self.holding
        if company is None or company.status != CompanyStatus.ACTIVE:
            logger.debug("Purchase skipped: company %s unavailable", decision.company_id)
            return False
        if company.holding_id == buyer.id:
            logger.debug("Purchase skipped: %s already owns %s", buyer.id, company.id)
            return False
        if safe_number(buyer.cash_balance) < decision.price:
            logger.debug("Purchase skipped: %s cannot afford %s", buyer.id, company.id)
            return False

        self._set_cash(buyer.id, safe_number(buyer.cash_balance) - decision.price)
        seller = self.ledger.holdings.get(company.holding_id)
        if seller is not None:
            self._set_cash(seller.id, safe_number(seller.cash_balance) + decision.price)
        self.ledger.companies[company.id] = replace(company, holding_id=buyer.id)
        self._expire_competing_offers(company.id)
        return True

    def visit_repay_holding_loan(self, decision: RepayHoldingLoan) -> bool:
        loan = self.ledger.loans.get(decision.loan_id)
        if (
            loan is None
            or loan.holding_id != self.holding_id
            or not loan.is_holding_loan
            or loan.status != LoanStatus.ACTIVE
        ):
            logger.debug("Repayment skipped: %s is not an active loan of %s",
                         decision.loan_id, self.holding_id)
            return False

        cash = safe_number(self.holding.cash_balance)
        outstanding = max(0.0, safe_number(loan.outstanding_balance))
        amount = min(decision.amount, cash, outstanding)
        if amount <= 0:
            return False

        remaining = outstanding - amount
        status = LoanStatus.ACTIVE
        if remaining <= self.config.finance["repay_paid_off_epsilon"]:
            remaining = 0.0
            status = LoanStatus.PAID_OFF
        self.ledger.loans[loan.id] = replace(loan, outstanding_balance=remaining, status=status)
        self._set_cash(self.holding_id, cash - amount)
        return True

    def loan_rate(self) -> float:
        """Annual rate offered to this holding, priced off its owner's credit level."""
        cfg = self.config.finance
        player = self.ledger.players.get(self.holding.player_id or "")
        credit_level = player.credit_level if player else 1
        credit_score = clamp((credit_level - 1) / 998, 0, 1)
        credit_delta = (0.5 - credit_score) * cfg["credit_rate_span"]
        base = safe_number(self.economy.base_interest_rate, self.config.macro["default_interest_rate"])
        return clamp(
            base + cfg["loan_spread_min"] + credit_delta,
            *self.config.bounds("finance", "loan_rate_bounds"),
        )

    def visit_take_holding_loan(self, decision: TakeHoldingLoan) -> bool:
        if decision.principal <= 0:
            return False
        lo, hi = self.config.bounds("finance", "loan_term_bounds")
        term = int(clamp(decision.term_weeks, lo, hi))
        self._loans_taken += 1
        loan = Loan(
            id=f"loan-{self.holding_id}-{self.year}-{self.week}-{self._loans_taken}",
            world_id=self.holding.world_id,
            principal=decision.principal,
            outstanding_balance=decision.principal,
            interest_rate=self.loan_rate(),
            term_weeks=term,
            remaining_weeks=term,
            holding_id=self.holding_id,
            status=LoanStatus.ACTIVE,
            created_year=self.year,
            created_week=self.week,
        )
        self.ledger.loans[loan.id] = loan
        self.ledger.new_loans.append(loan.id)
        self._set_cash(self.holding_id, safe_number(self.holding.cash_balance) + decision.principal)
        return True

    # ------------------------------------------------------------------
    # Acquisition offers
    # ------------------------------------------------------------------
    def _party(self, offer: AcquisitionOffer) -> OfferParty | None:
        if offer.buyer_holding_id == self.holding_id:
            return OfferParty.BUYER
        if offer.seller_holding_id == self.holding_id:
            return OfferParty.SELLER
        return None

    def _history(self, action: str, by: OfferParty, price: float, message: str | None = None) -> dict:
        return {
            "action": action,
            "by": OfferParty(by).value,
            "price": price,
            "message": message,
            "year": self.year,
            "week": self.week,
        }

    def _close(
        self,
        offer: AcquisitionOffer,
        status: OfferStatus,
        action: str,
        by: OfferParty,
        message: str | None = None,
    ) -> None:
        self.ledger.put_offer(replace(
            offer,
            status=status,
            turn=OfferParty.NONE,
            last_action=by,
            history=[*offer.history, self._history(action, by, offer.offer_price, message)],
        ))

    def _expire_competing_offers(self, company_id: str, keep: str | None = None) -> None:
        for offer in list(self.ledger.offers.values()):
            if offer.company_id == company_id and offer.id != keep and offer.is_open:
                self._close(offer, OfferStatus.EXPIRED, "EXPIRE", OfferParty.NONE)

    def _offer_on_turn(self, offer_id: str, action: str) -> tuple[AcquisitionOffer, OfferParty] | None:
        offer = self.ledger.offers.get(offer_id)
        if offer is None or not offer.is_open:
            logger.debug("%s skipped: offer %s is not open", action, offer_id)
            return None
        party = self._party(offer)
        if party is None or party != offer.turn:
            logger.debug("%s skipped: not %s's turn on offer %s", action, self.holding_id, offer_id)
            return None
        return offer, party

    def visit_submit_acquisition_offer(self, decision: SubmitAcquisitionOffer) -> bool:
        company = self.ledger.companies.get(decision.company_id)
        if company is None or company.status != CompanyStatus.ACTIVE:
            logger.debug("Offer skipped: company %s unavailable", decision.company_id)
            return False
        if company.holding_id == self.holding_id or company.holding_id not in self.ledger.holdings:
            logger.debug("Offer skipped: %s cannot bid for %s", self.holding_id, company.id)
            return False

        expires_year, expires_week = add_weeks(self.year, self.week, decision.expires_in_weeks)
        entry = self._history("SUBMIT", OfferParty.BUYER, decision.offer_price, decision.message)
        existing = next(
            (
                o for o in self.ledger.offers.values()
                if o.is_open and o.company_id == company.id and o.buyer_holding_id == self.holding_id
            ),
            None,
        )
        if existing is not None:
            self.ledger.put_offer(replace(
                existing,
                seller_holding_id=company.holding_id,
                offer_price=decision.offer_price,
                status=OfferStatus.OPEN,
                turn=OfferParty.SELLER,
                last_action=OfferParty.BUYER,
                message=decision.message,
                expires_year=expires_year,
                expires_week=expires_week,
                history=[*existing.history, entry],
            ))
            return True

        self._offers_made += 1
        self.ledger.put_offer(AcquisitionOffer(
            id=f"offer-{company.id}-{self.holding_id}-{self.year}-{self.week}-{self._offers_made}",
            world_id=company.world_id,
            company_id=company.id,
            buyer_holding_id=self.holding_id,
            seller_holding_id=company.holding_id,
            offer_price=decision.offer_price,
            expires_year=expires_year,
            expires_week=expires_week,
            message=decision.message,
            history=[entry],
        ))
        return True

    def visit_withdraw_acquisition_offer(self, decision: WithdrawAcquisitionOffer) -> bool:
        offer = self.ledger.offers.get(decision.offer_id)
        if offer is None or not offer.is_open or offer.buyer_holding_id != self.holding_id:
            logger.debug("Withdraw skipped: %s has no open offer %s", self.holding_id, decision.offer_id)
            return False
        self._close(offer, OfferStatus.WITHDRAWN, "WITHDRAW", OfferParty.BUYER)
        return True

    def visit_reject_acquisition_offer(self, decision: RejectAcquisitionOffer) -> bool:
        found = self._offer_on_turn(decision.offer_id, "Reject")
        if found is None:
            return False
        offer, party = found
        self._close(offer, OfferStatus.REJECTED, "REJECT", party, decision.reason)
        return True

    def visit_counter_acquisition_offer(self, decision: CounterAcquisitionOffer) -> bool:
        found = self._offer_on_turn(decision.offer_id, "Counter")
        if found is None:
            return False
        offer, party = found
        expires_year, expires_week = add_weeks(self.year, self.week, DEFAULT_OFFER_EXPIRY_WEEKS)
        self.ledger.put_offer(replace(
            offer,
            status=OfferStatus.COUNTERED,
            offer_price=decision.counter_price,
            turn=OfferParty.SELLER if party == OfferParty.BUYER else OfferParty.BUYER,
            last_action=party,
            counter_count=offer.counter_count + 1,
            message=decision.message,
            expires_year=expires_year,
            expires_week=expires_week,
            history=[
                *offer.history,
                self._history("COUNTER", party, decision.counter_price, decision.message),
            ],
        ))
        return True

    def visit_accept_acquisition_offer(self, decision: AcceptAcquisitionOffer) -> bool:
        found = self._offer_on_turn(decision.offer_id, "Accept")
        if found is None:
            return False
        offer, party = found
        buyer = self.ledger.holdings.get(offer.buyer_holding_id)
        seller = self.ledger.holdings.get(offer.seller_holding_id)
        company = self.ledger.companies.get(offer.company_id)
        if (
            buyer is None
            or seller is None
            or company is None
            or company.status != CompanyStatus.ACTIVE
            or company.holding_id != seller.id
        ):
            logger.debug("Offer %s lapsed: company %s changed hands", offer.id, offer.company_id)
            self._close(offer, OfferStatus.EXPIRED, "EXPIRE", party)
            return False
        if safe_number(buyer.cash_balance) < offer.offer_price:
            logger.debug("Offer %s failed: %s cannot pay %.2f", offer.id, buyer.id, offer.offer_price)
            self._close(offer, OfferStatus.FAILED_FUNDS, "FAIL_FUNDS", party)
            return False

        self._set_cash(buyer.id, safe_number(buyer.cash_balance) - offer.offer_price)
        self._set_cash(seller.id, safe_number(seller.cash_balance) + offer.offer_price)
        self.ledger.companies[company.id] = replace(company, holding_id=buyer.id)
        self._close(offer, OfferStatus.ACCEPTED, "ACCEPT", party)
        self._expire_competing_offers(company.id, keep=offer.id)
        return True


def offer_is_expired(offer: AcquisitionOffer, year: int, week: int) -> bool:
    return week_index(offer.expires_year, offer.expires_week) < week_index(year, week)


def expire_stale_offers(ledger: HoldingLedger, year: int, week: int) -> int:
    """Close open offers whose expiry week has passed; returns how many."""
    expired = 0
    for offer in list(ledger.offers.values()):
        if offer.is_open and offer_is_expired(offer, year, week):
            ledger.put_offer(replace(
                offer,
                status=OfferStatus.EXPIRED,
                turn=OfferParty.NONE,
                history=[*offer.history, {
                    "action": "EXPIRE", "by": OfferParty.NONE.value, "price": offer.offer_price,
                    "message": None, "year": year, "week": week,
                }],
            ))
            expired += 1
    return expired


def apply_holding_decisions(
    holding_id: str,
    decisions: list[HoldingDecision],
    ledger: HoldingLedger,
    economy: WorldEconomyState,
    year: int,
    week: int,
    config: EconomyConfig,
) -> int:
    if holding_id not in ledger.holdings:
        return 0
    applier = HoldingDecisionApplier(holding_id, ledger, economy, year, week, config)
    applied = 0
    for decision in decisions:
        try:
            parsed = parse_holding_decision(decision.payload)
        except ValueError:
            logger.warning(
                "Skipping malformed decision %s for holding %s",
                decision.id, holding_id, exc_info=True,
            )
            continue
        if dispatch(parsed, applier):
            applied += 1
    return applied
