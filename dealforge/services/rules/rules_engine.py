"""
Deterministic deal structuring engine.

Turns verified analysis figures and a loan program into deal terms:
eligibility, approved amount, rate, payment, fees, covenants and closing
conditions. This module is the only source of numbers for generated
documents. It never calls the generative service and identical inputs
always produce identical output.
"""
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from dealforge.exceptions import ValidationError
from dealforge.services.rules.loan_programs import LoanProgram, get_loan_program
from dealforge.services.rules.state_rules import UsuryCapResult, apply_usury_cap

# Static fallbacks; callers pass live rates when they have them.
BASE_RATES: Mapping[str, float] = {
    "prime": 0.0675,
    "sofr": 0.0430,
    "treasury": 0.0415,
}

# SBA 7(a) spread ceilings by loan size: (upper bound, max spread)
SBA_7A_SPREAD_TIERS = (
    (50_000, 0.065),
    (250_000, 0.060),
    (350_000, 0.045),
    (float("inf"), 0.030),
)

# Position within the spread range by risk rating
RISK_SPREAD_POSITION = {
    "low": 0.0,
    "moderate": 0.33,
    "elevated": 0.67,
    "high": 1.0,
}

PRICING_GRID = 800  # 0.125% steps


@dataclass(frozen=True)
class RulesInput:
    """Verified inputs the engine structures from."""
    requested_amount: float
    global_dscr: Optional[float] = None
    back_end_dti: Optional[float] = None
    risk_rating: Optional[str] = None
    months_of_reserves: float = 0.0
    qualifying_income: Optional[float] = None
    property_value: Optional[float] = None
    collateral_value: Optional[float] = None
    requested_term_months: Optional[int] = None
    is_commercial: bool = True


@dataclass
class EligibilityFailure:
    rule: str
    required: str
    actual: str
    message: str


@dataclass
class Eligibility:
    eligible: bool
    failures: List[EligibilityFailure] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class RateCalculation:
    base_rate_type: str
    base_rate_value: float
    spread: float
    total_rate: float
    usury_adjusted: bool = False
    usury_limit: Optional[float] = None
    usury_message: str = ""


@dataclass
class FeeCalculation:
    name: str
    type: str
    rate: float
    amount: float
    description: str


@dataclass
class Condition:
    category: str  # prior_to_closing | prior_to_funding | post_closing
    description: str
    priority: str = "required"
    source: str = "rules_engine"


@dataclass
class RulesEngineResult:
    program_id: str
    state: Optional[str]
    eligibility: Eligibility
    approved_amount: float
    ltv: Optional[float]
    rate: RateCalculation
    term_months: int
    amortization_months: int
    monthly_payment: float
    interest_only: bool
    prepayment_penalty: bool
    personal_guaranty: bool
    requires_appraisal: bool
    late_fee_percent: float
    late_fee_grace_days: int
    covenants: List[Dict[str, Any]]
    conditions: List[Condition]
    fees: List[FeeCalculation]
    total_fees: float
    projected_dscr: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RulesEngineResult":
        """Rebuild terms persisted with to_dict()."""
        eligibility = data.get("eligibility") or {}
        return cls(
            program_id=data["program_id"],
            state=data.get("state"),
            eligibility=Eligibility(
                eligible=bool(eligibility.get("eligible", True)),
                failures=[EligibilityFailure(**f) for f in eligibility.get("failures", [])],
                warnings=list(eligibility.get("warnings", [])),
            ),
            approved_amount=float(data["approved_amount"]),
            ltv=data.get("ltv"),
            rate=RateCalculation(**data["rate"]),
            term_months=int(data["term_months"]),
            amortization_months=int(data["amortization_months"]),
            monthly_payment=float(data["monthly_payment"]),
            interest_only=bool(data["interest_only"]),
            prepayment_penalty=bool(data["prepayment_penalty"]),
            personal_guaranty=bool(data["personal_guaranty"]),
            requires_appraisal=bool(data["requires_appraisal"]),
            late_fee_percent=float(data["late_fee_percent"]),
            late_fee_grace_days=int(data["late_fee_grace_days"]),
            covenants=list(data.get("covenants", [])),
            conditions=[Condition(**c) for c in data.get("conditions", [])],
            fees=[FeeCalculation(**f) for f in data.get("fees", [])],
            total_fees=float(data.get("total_fees", 0.0)),
            projected_dscr=data.get("projected_dscr"),
        )


def _money(value: float) -> str:
    return f"${value:,.0f}"


def check_eligibility(inputs: RulesInput, program: LoanProgram) -> Eligibility:
    rules = program.structuring
    failures: List[EligibilityFailure] = []
    warnings: List[str] = []

    if rules.min_dscr > 0:
        dscr = inputs.global_dscr
        if dscr is None:
            warnings.append("DSCR could not be calculated; manual review required")
        elif dscr < rules.min_dscr:
            failures.append(EligibilityFailure(
                "Minimum DSCR", f"{rules.min_dscr}", f"{dscr:.2f}",
                f"DSCR {dscr:.2f}x is below program minimum of {rules.min_dscr}x",
            ))
        elif dscr < rules.min_dscr * 1.1:
            warnings.append(f"DSCR {dscr:.2f}x is close to the minimum of {rules.min_dscr}x; limited cushion")

    if rules.max_dti > 0:
        dti = inputs.back_end_dti
        if dti is None:
            warnings.append("DTI could not be calculated; manual review required")
        elif dti > rules.max_dti:
            failures.append(EligibilityFailure(
                "Maximum DTI", f"<={rules.max_dti * 100:.0f}%", f"{dti * 100:.1f}%",
                f"DTI {dti * 100:.1f}% exceeds program maximum of {rules.max_dti * 100:.0f}%",
            ))

    amount = inputs.requested_amount
    if rules.max_loan_amount is not None and amount > rules.max_loan_amount:
        failures.append(EligibilityFailure(
            "Maximum Loan Amount", f"<={_money(rules.max_loan_amount)}", _money(amount),
            f"Requested amount {_money(amount)} exceeds program maximum of {_money(rules.max_loan_amount)}",
        ))
    if amount < rules.min_loan_amount:
        failures.append(EligibilityFailure(
            "Minimum Loan Amount", f">={_money(rules.min_loan_amount)}", _money(amount),
            f"Requested amount {_money(amount)} is below program minimum of {_money(rules.min_loan_amount)}",
        ))

    if inputs.property_value and inputs.property_value > 0:
        proposed_ltv = amount / inputs.property_value
        if proposed_ltv > rules.max_ltv:
            failures.append(EligibilityFailure(
                "Maximum LTV", f"<={rules.max_ltv * 100:.0f}%", f"{proposed_ltv * 100:.1f}%",
                f"LTV {proposed_ltv * 100:.1f}% exceeds program maximum of {rules.max_ltv * 100:.0f}%",
            ))

    if inputs.risk_rating == "high":
        warnings.append("Borrower risk rating is HIGH; manual review strongly recommended")
    elif inputs.risk_rating == "elevated":
        warnings.append("Borrower risk rating is ELEVATED; additional conditions may be warranted")

    if inputs.months_of_reserves < 3:
        warnings.append(
            f"Only {inputs.months_of_reserves:.1f} months of reserves; consider requiring additional reserves"
        )

    return Eligibility(eligible=not failures, failures=failures, warnings=warnings)


def calculate_approved_amount(inputs: RulesInput, program: LoanProgram):
    """Smallest of requested, collateral-limited and program-limited amounts, with LTV."""
    rules = program.structuring
    value = inputs.property_value or inputs.collateral_value
    limits = [inputs.requested_amount]
    if value and value > 0:
        limits.append(value * rules.max_ltv)
    if rules.max_loan_amount is not None:
        limits.append(rules.max_loan_amount)

    approved = round(min(limits), 2)
    ltv = approved / value if value and value > 0 else None
    return approved, ltv


def max_spread_for(program: LoanProgram, amount: float) -> float:
    if program.id == "sba_7a":
        for upper, spread in SBA_7A_SPREAD_TIERS:
            if amount <= upper:
                return spread
    return program.structuring.spread_range[1]


def calculate_rate(
    inputs: RulesInput,
    program: LoanProgram,
    state: Optional[str],
    approved_amount: float,
    base_rates: Mapping[str, float],
) -> RateCalculation:
    rules = program.structuring
    base = base_rates[rules.base_rate]
    min_spread = rules.spread_range[0]
    max_spread = max_spread_for(program, inputs.requested_amount)

    position = RISK_SPREAD_POSITION.get(inputs.risk_rating or "", 0.5)
    spread = round((min_spread + (max_spread - min_spread) * position) * PRICING_GRID) / PRICING_GRID
    spread = min(spread, max_spread)
    total = round(base + spread, 6)

    cap: UsuryCapResult = apply_usury_cap(total, state, approved_amount, inputs.is_commercial)
    return RateCalculation(
        base_rate_type=rules.base_rate,
        base_rate_value=base,
        spread=spread,
        total_rate=cap.rate,
        usury_adjusted=cap.adjusted,
        usury_limit=cap.limit,
        usury_message=cap.message,
    )


def calculate_monthly_payment(principal: float, annual_rate: float, amortization_months: int,
                              interest_only: bool) -> float:
    """Level monthly payment, or interest only; 4 decimal places."""
    if principal <= 0:
        return 0.0
    if interest_only or amortization_months <= 0:
        return round(principal * annual_rate / 12, 4)
    monthly_rate = annual_rate / 12
    if monthly_rate == 0:
        return round(principal / amortization_months, 4)
    factor = (1 + monthly_rate) ** amortization_months
    return round(principal * monthly_rate * factor / (factor - 1), 4)


def calculate_fees(approved_amount: float, program: LoanProgram) -> List[FeeCalculation]:
    return [
        FeeCalculation(
            name=fee.name,
            type=fee.type,
            rate=fee.value,
            amount=round(approved_amount * fee.value, 2) if fee.type == "percent" else fee.value,
            description=fee.description,
        )
        for fee in program.fees
    ]


def generate_conditions(program: LoanProgram) -> List[Condition]:
    rules = program.structuring
    conditions: List[Condition] = []
    if rules.requires_appraisal:
        conditions.append(Condition("prior_to_closing", "Obtain current appraisal from approved appraiser"))
    if rules.requires_personal_guaranty:
        conditions.append(Condition(
            "prior_to_closing", "Execute personal guaranty agreement from all owners with 20% or more ownership",
        ))
    conditions.append(Condition("prior_to_closing", "Title search and title insurance commitment"))
    conditions.append(Condition(
        "prior_to_closing", "Proof of property/casualty insurance with lender named as loss payee",
    ))
    if "flood_zone" in program.compliance_checks:
        conditions.append(Condition(
            "prior_to_closing", "Flood zone determination; if in flood zone, obtain flood insurance",
        ))
    if program.id.startswith("sba_"):
        conditions.append(Condition("prior_to_closing", "SBA Authorization letter and all required SBA forms"))
        conditions.append(Condition("prior_to_closing", "Verification of borrower eligibility per SBA size standards"))

    conditions.append(Condition("prior_to_funding", "UCC filing or mortgage/deed of trust recording confirmation"))
    if "bsa_aml" in program.compliance_checks:
        conditions.append(Condition(
            "prior_to_funding", "BSA/AML compliance verification: CIP, CDD and beneficial ownership",
        ))
    if "ofac_screening" in program.compliance_checks:
        conditions.append(Condition("prior_to_funding", "OFAC screening completed with no matches"))

    conditions.append(Condition("post_closing", "Annual financial statements due within 120 days of fiscal year end"))
    conditions.append(Condition("post_closing", "Annual tax returns due within 30 days of filing"))
    conditions.append(Condition("post_closing", "Maintain required insurance coverage throughout loan term"))
    return conditions


def project_dscr(qualifying_income: Optional[float], monthly_payment: float) -> Optional[float]:
    """Borrower-level payment coverage from qualifying income."""
    if not qualifying_income or qualifying_income <= 0 or monthly_payment <= 0:
        return None
    return round(qualifying_income / 12 / monthly_payment, 2)


def run_rules_engine(
    inputs: RulesInput,
    program_id: str,
    state: Optional[str],
    base_rates: Mapping[str, float] = BASE_RATES,
) -> RulesEngineResult:
    """
    Structure a deal.

    Args:
        inputs: Verified figures from analysis and intake.
        program_id: Loan program identifier.
        state: Two-letter jurisdiction code for the usury cap.
        base_rates: Index rates by name.

    Raises:
        ValidationError: Unknown loan program.
    """
    program = get_loan_program(program_id)
    if program is None:
        raise ValidationError(
            f"Unknown loan program: {program_id}",
            errors=[{"field": "loan_program", "message": "Unknown loan program"}],
        )
    rules = program.structuring
    state = state.strip().upper() if state else None

    eligibility = check_eligibility(inputs, program)
    approved_amount, ltv = calculate_approved_amount(inputs, program)
    rate = calculate_rate(inputs, program, state, approved_amount, base_rates)

    term_months = min(inputs.requested_term_months or rules.max_term, rules.max_term)
    interest_only = rules.interest_only
    amortization_months = 0 if interest_only else rules.max_amortization

    monthly_payment = calculate_monthly_payment(approved_amount, rate.total_rate, amortization_months, interest_only)
    fees = calculate_fees(approved_amount, program)

    return RulesEngineResult(
        program_id=program.id,
        state=state,
        eligibility=eligibility,
        approved_amount=approved_amount,
        ltv=round(ltv, 4) if ltv is not None else None,
        rate=rate,
        term_months=term_months,
        amortization_months=amortization_months,
        monthly_payment=monthly_payment,
        interest_only=interest_only,
        prepayment_penalty=rules.prepayment_penalty,
        personal_guaranty=rules.requires_personal_guaranty,
        requires_appraisal=rules.requires_appraisal,
        late_fee_percent=program.late_fee_percent,
        late_fee_grace_days=program.late_fee_grace_days,
        covenants=[
            {
                "name": c.name,
                "description": c.description,
                "frequency": c.frequency,
                "threshold": c.threshold,
                "source": "program_standard",
            }
            for c in program.covenants
        ],
        conditions=generate_conditions(program),
        fees=fees,
        total_fees=round(sum(f.amount for f in fees), 2),
        projected_dscr=project_dscr(inputs.qualifying_income, monthly_payment),
    )
