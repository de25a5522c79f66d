"""
Decision payloads as a closed set of tagged variants.

Stored decisions carry a ``{"type": ..., ...}`` payload. ``parse_company_decision``
and ``parse_holding_decision`` turn those dicts into frozen dataclasses, and
``dispatch`` routes a parsed decision to the matching ``visit_*`` method of a
visitor. The visitor base classes declare one abstract method per variant,
and the variant registries are checked against them at import time, so a new
decision kind without a handler fails loudly instead of being ignored.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Generic, TypeVar

from holdsim.core.numeric import clamp, safe_number

T = TypeVar("T")


def _require(payload: dict[str, Any], key: str) -> Any:
    value = payload.get(key)
    if value is None or value == "":
        raise ValueError(f"{payload.get('type')} decision is missing '{key}'")
    return value


# ---------------------------------------------------------------------------
# Company decision variants
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SetPrice:
    KIND: ClassVar[str] = "SET_PRICE"
    VISIT: ClassVar[str] = "visit_set_price"
    price_level: float

    @classmethod
    def from_payload(cls, p: dict[str, Any]) -> SetPrice:
        return cls(price_level=safe_number(_require(p, "price_level"), 1.0))


@dataclass(frozen=True)
class SetMarketing:
    KIND: ClassVar[str] = "SET_MARKETING"
    VISIT: ClassVar[str] = "visit_set_marketing"
    marketing_level: float

    @classmethod
    def from_payload(cls, p: dict[str, Any]) -> SetMarketing:
        return cls(marketing_level=max(0.0, safe_number(_require(p, "marketing_level"))))


@dataclass(frozen=True)
class SetStaffing:
    KIND: ClassVar[str] = "SET_STAFFING"
    VISIT: ClassVar[str] = "visit_set_staffing"
    employees: int

    @classmethod
    def from_payload(cls, p: dict[str, Any]) -> SetStaffing:
        return cls(employees=max(0, int(safe_number(_require(p, "employees")))))


@dataclass(frozen=True)
class InvestCapacity:
    KIND: ClassVar[str] = "INVEST_CAPACITY"
    VISIT: ClassVar[str] = "visit_invest_capacity"
    amount: float

    @classmethod
    def from_payload(cls, p: dict[str, Any]) -> InvestCapacity:
        return cls(amount=safe_number(_require(p, "amount")))


@dataclass(frozen=True)
class InvestQuality:
    KIND: ClassVar[str] = "INVEST_QUALITY"
    VISIT: ClassVar[str] = "visit_invest_quality"
    amount: float

    @classmethod
    def from_payload(cls, p: dict[str, Any]) -> InvestQuality:
        return cls(amount=safe_number(_require(p, "amount")))


@dataclass(frozen=True)
class SetProductPlan:
    KIND: ClassVar[str] = "SET_PRODUCT_PLAN"
    VISIT: ClassVar[str] = "visit_set_product_plan"
    unit_price: float | None = None
    buffer_weeks: float = 0.0

    @classmethod
    def from_payload(cls, p: dict[str, Any]) -> SetProductPlan:
        price = p.get("unit_price")
        return cls(
            unit_price=None if price is None else max(0.0, safe_number(price)),
            buffer_weeks=max(0.0, safe_number(p.get("buffer_weeks"))),
        )


@dataclass(frozen=True)
class StartProgram:
    KIND: ClassVar[str] = "START_PROGRAM"
    VISIT: ClassVar[str] = "visit_start_program"
    program_type: str
    duration_weeks: int
    effects: tuple[dict[str, Any], ...] = field(default_factory=tuple)
    weekly_cost: float = 0.0
    one_off_cost: float = 0.0
    program_id: str | None = None

    @classmethod
    def from_payload(cls, p: dict[str, Any]) -> StartProgram:
        return cls(
            program_type=str(_require(p, "program_type")),
            duration_weeks=max(1, int(safe_number(p.get("duration_weeks"), 1))),
            effects=tuple(dict(e) for e in p.get("effects") or ()),
            weekly_cost=max(0.0, safe_number(p.get("weekly_cost"))),
            one_off_cost=max(0.0, safe_number(p.get("one_off_cost"))),
            program_id=p.get("program_id"),
        )


@dataclass(frozen=True)
class CancelProgram:
    KIND: ClassVar[str] = "CANCEL_PROGRAM"
    VISIT: ClassVar[str] = "visit_cancel_program"
    program_id: str

    @classmethod
    def from_payload(cls, p: dict[str, Any]) -> CancelProgram:
        return cls(program_id=str(_require(p, "program_id")))


@dataclass(frozen=True)
class BuyUpgrade:
    KIND: ClassVar[str] = "BUY_UPGRADE"
    VISIT: ClassVar[str] = "visit_buy_upgrade"
    upgrade_id: str

    @classmethod
    def from_payload(cls, p: dict[str, Any]) -> BuyUpgrade:
        return cls(upgrade_id=str(_require(p, "upgrade_id")))


@dataclass(frozen=True)
class SetOperationsIntensity:
    KIND: ClassVar[str] = "SET_OPERATIONS_INTENSITY"
    VISIT: ClassVar[str] = "visit_set_operations_intensity"
    intensity: float = 0.5

    @classmethod
    def from_payload(cls, p: dict[str, Any]) -> SetOperationsIntensity:
        return cls(intensity=clamp(safe_number(p.get("intensity"), 0.5), 0.0, 1.0))


@dataclass(frozen=True)
class AdjustOpeningHours:
    KIND: ClassVar[str] = "ADJUST_OPENING_HOURS"
    VISIT: ClassVar[str] = "visit_adjust_opening_hours"
    availability: float = 1.0

    @classmethod
    def from_payload(cls, p: dict[str, Any]) -> AdjustOpeningHours:
        return cls(availability=clamp(safe_number(p.get("availability"), 1.0), 0.1, 1.2))


CompanyDecisionPayload = (
    SetPrice | SetMarketing | SetStaffing | InvestCapacity | InvestQuality
    | SetProductPlan | StartProgram | CancelProgram | BuyUpgrade
    | SetOperationsIntensity | AdjustOpeningHours
)

COMPANY_DECISION_TYPES: dict[str, type] = {
    cls.KIND: cls
    for cls in (
        SetPrice, SetMarketing, SetStaffing, InvestCapacity, InvestQuality,
        SetProductPlan, StartProgram, CancelProgram, BuyUpgrade,
        SetOperationsIntensity, AdjustOpeningHours,
    )
}


# ---------------------------------------------------------------------------
# Holding decision variants
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BuyCompany:
    KIND: ClassVar[str] = "BUY_COMPANY"
    VISIT: ClassVar[str] = "visit_buy_company"
    company_id: str
    price: float

    @classmethod
    def from_payload(cls, p: dict[str, Any]) -> BuyCompany:
        return cls(
            company_id=str(_require(p, "company_id")),
            price=max(0.0, safe_number(_require(p, "price"))),
        )


@dataclass(frozen=True)
class RepayHoldingLoan:
    KIND: ClassVar[str] = "REPAY_HOLDING_LOAN"
    VISIT: ClassVar[str] = "visit_repay_holding_loan"
    loan_id: str
    amount: float

    @classmethod
    def from_payload(cls, p: dict[str, Any]) -> RepayHoldingLoan:
        return cls(
            loan_id=str(_require(p, "loan_id")),
            amount=max(0.0, safe_number(_require(p, "amount"))),
        )


@dataclass(frozen=True)
class TakeHoldingLoan:
    KIND: ClassVar[str] = "TAKE_HOLDING_LOAN"
    VISIT: ClassVar[str] = "visit_take_holding_loan"
    principal: float
    term_weeks: int

    @classmethod
    def from_payload(cls, p: dict[str, Any]) -> TakeHoldingLoan:
        return cls(
            principal=max(0.0, safe_number(_require(p, "principal"))),
            term_weeks=int(safe_number(p.get("term_weeks"), 52)),
        )


DEFAULT_OFFER_EXPIRY_WEEKS = 4


def _message(p: dict[str, Any], key: str = "message") -> str | None:
    value = p.get(key)
    return None if value is None else str(value)


@dataclass(frozen=True)
class SubmitAcquisitionOffer:
    KIND: ClassVar[str] = "SUBMIT_ACQUISITION_OFFER"
    VISIT: ClassVar[str] = "visit_submit_acquisition_offer"
    company_id: str
    offer_price: float
    expires_in_weeks: int = DEFAULT_OFFER_EXPIRY_WEEKS
    message: str | None = None

    @classmethod
    def from_payload(cls, p: dict[str, Any]) -> SubmitAcquisitionOffer:
        price = safe_number(_require(p, "offer_price"))
        if price <= 0:
            raise ValueError("SUBMIT_ACQUISITION_OFFER needs a positive offer_price")
        return cls(
            company_id=str(_require(p, "company_id")),
            offer_price=price,
            expires_in_weeks=max(
                1, int(safe_number(p.get("expires_in_weeks"), DEFAULT_OFFER_EXPIRY_WEEKS)),
            ),
            message=_message(p),
        )


@dataclass(frozen=True)
class WithdrawAcquisitionOffer:
    KIND: ClassVar[str] = "WITHDRAW_ACQUISITION_OFFER"
    VISIT: ClassVar[str] = "visit_withdraw_acquisition_offer"
    offer_id: str

    @classmethod
    def from_payload(cls, p: dict[str, Any]) -> WithdrawAcquisitionOffer:
        return cls(offer_id=str(_require(p, "offer_id")))


@dataclass(frozen=True)
class RejectAcquisitionOffer:
    KIND: ClassVar[str] = "REJECT_ACQUISITION_OFFER"
    VISIT: ClassVar[str] = "visit_reject_acquisition_offer"
    offer_id: str
    reason: str | None = None

    @classmethod
    def from_payload(cls, p: dict[str, Any]) -> RejectAcquisitionOffer:
        return cls(offer_id=str(_require(p, "offer_id")), reason=_message(p, "reason"))


@dataclass(frozen=True)
class CounterAcquisitionOffer:
    KIND: ClassVar[str] = "COUNTER_ACQUISITION_OFFER"
    VISIT: ClassVar[str] = "visit_counter_acquisition_offer"
    offer_id: str
    counter_price: float
    message: str | None = None

    @classmethod
    def from_payload(cls, p: dict[str, Any]) -> CounterAcquisitionOffer:
        price = safe_number(_require(p, "counter_price"))
        if price <= 0:
            raise ValueError("COUNTER_ACQUISITION_OFFER needs a positive counter_price")
        return cls(offer_id=str(_require(p, "offer_id")), counter_price=price, message=_message(p))


@dataclass(frozen=True)
class AcceptAcquisitionOffer:
    KIND: ClassVar[str] = "ACCEPT_ACQUISITION_OFFER"
    VISIT: ClassVar[str] = "visit_accept_acquisition_offer"
    offer_id: str

    @classmethod
    def from_payload(cls, p: dict[str, Any]) -> AcceptAcquisitionOffer:
        return cls(offer_id=str(_require(p, "offer_id")))


HoldingDecisionPayload = (
    BuyCompany | RepayHoldingLoan | TakeHoldingLoan
    | SubmitAcquisitionOffer | WithdrawAcquisitionOffer | RejectAcquisitionOffer
    | CounterAcquisitionOffer | AcceptAcquisitionOffer
)

HOLDING_DECISION_TYPES: dict[str, type] = {
    cls.KIND: cls
    for cls in (
        BuyCompany, RepayHoldingLoan, TakeHoldingLoan,
        SubmitAcquisitionOffer, WithdrawAcquisitionOffer, RejectAcquisitionOffer,
        CounterAcquisitionOffer, AcceptAcquisitionOffer,
    )
}


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _parse(payload: dict[str, Any], registry: dict[str, type], family: str):
    kind = str(payload.get("type", "")).upper()
    cls = registry.get(kind)
    if cls is None:
        raise ValueError(f"Unknown {family} decision type: {payload.get('type')!r}")
    return cls.from_payload(payload)


def parse_company_decision(payload: dict[str, Any]) -> CompanyDecisionPayload:
    """Parse a stored company decision payload; raises ``ValueError`` if invalid."""
    return _parse(payload, COMPANY_DECISION_TYPES, "company")


def parse_holding_decision(payload: dict[str, Any]) -> HoldingDecisionPayload:
    """Parse a stored holding decision payload; raises ``ValueError`` if invalid."""
    return _parse(payload, HOLDING_DECISION_TYPES, "holding")


# ---------------------------------------------------------------------------
# Visitors
# ---------------------------------------------------------------------------

class CompanyDecisionVisitor(ABC, Generic[T]):
    """One handler per company decision kind."""

    @abstractmethod
    def visit_set_price(self, decision: SetPrice) -> T: ...

    @abstractmethod
    def visit_set_marketing(self, decision: SetMarketing) -> T: ...

    @abstractmethod
    def visit_set_staffing(self, decision: SetStaffing) -> T: ...

    @abstractmethod
    def visit_invest_capacity(self, decision: InvestCapacity) -> T: ...

    @abstractmethod
    def visit_invest_quality(self, decision: InvestQuality) -> T: ...

    @abstractmethod
    def visit_set_product_plan(self, decision: SetProductPlan) -> T: ...

    @abstractmethod
    def visit_start_program(self, decision: StartProgram) -> T: ...

    @abstractmethod
    def visit_cancel_program(self, decision: CancelProgram) -> T: ...

    @abstractmethod
    def visit_buy_upgrade(self, decision: BuyUpgrade) -> T: ...

    @abstractmethod
    def visit_set_operations_intensity(self, decision: SetOperationsIntensity) -> T: ...

    @abstractmethod
    def visit_adjust_opening_hours(self, decision: AdjustOpeningHours) -> T: ...


class HoldingDecisionVisitor(ABC, Generic[T]):
    """One handler per holding decision kind."""

    @abstractmethod
    def visit_buy_company(self, decision: BuyCompany) -> T: ...

    @abstractmethod
    def visit_repay_holding_loan(self, decision: RepayHoldingLoan) -> T: ...

    @abstractmethod
    def visit_take_holding_loan(self, decision: TakeHoldingLoan) -> T: ...

    @abstractmethod
    def visit_submit_acquisition_offer(self, decision: SubmitAcquisitionOffer) -> T: ...

    @abstractmethod
    def visit_withdraw_acquisition_offer(self, decision: WithdrawAcquisitionOffer) -> T: ...

    @abstractmethod
    def visit_reject_acquisition_offer(self, decision: RejectAcquisitionOffer) -> T: ...

    @abstractmethod
    def visit_counter_acquisition_offer(self, decision: CounterAcquisitionOffer) -> T: ...

    @abstractmethod
    def visit_accept_acquisition_offer(self, decision: AcceptAcquisitionOffer) -> T: ...


def dispatch(decision: Any, visitor: Any) -> Any:
    """Call the visitor method that handles ``decision``'s variant."""
    return getattr(visitor, decision.VISIT)(decision)


def _check_exhaustive(visitor_cls: type, registry: dict[str, type]) -> None:
    handlers = set(visitor_cls.__abstractmethods__)
    variants = {cls.VISIT for cls in registry.values()}
    missing = variants - handlers
    extra = handlers - variants
    if missing or extra:
        raise TypeError(
            f"{visitor_cls.__name__} out of sync with decision variants: "
            f"missing={sorted(missing)} extra={sorted(extra)}"
        )


_check_exhaustive(CompanyDecisionVisitor, COMPANY_DECISION_TYPES)
_check_exhaustive(HoldingDecisionVisitor, HOLDING_DECISION_TYPES)
