"""
Deterministic compliance review of structured deal terms.

Runs after the rules engine. Regulatory findings (usury, SBA caps, TILA,
disclosures, prepayment, ECOA) come back as ComplianceIssue records and
internal consistency checks on the terms come back as RegulatoryCheck
records. Nothing is auto-fixed: a critical finding sends the deal to
term review.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from dealforge.exceptions import ValidationError
from dealforge.models.findings import ComplianceIssue, RegulatoryCheck
from dealforge.models.generated_document import ComplianceStatus
from dealforge.services.rules.loan_programs import LoanProgram, get_loan_program
from dealforge.services.rules.rules_engine import RulesEngineResult, calculate_monthly_payment, max_spread_for
from dealforge.services.rules.state_rules import check_usury, get_disclosure_requirements

logger = structlog.get_logger(__name__)

PAYMENT_TOLERANCE = 1.0
RATE_TOLERANCE = 0.0001

SBA_MAX_AMOUNT = 5_000_000


@dataclass
class ComplianceReviewResult:
    status: ComplianceStatus
    issues: List[ComplianceIssue] = field(default_factory=list)
    checks: List[RegulatoryCheck] = field(default_factory=list)
    decline_reasons: List[str] = field(default_factory=list)

    @property
    def requires_term_review(self) -> bool:
        return self.status == ComplianceStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "issues": [i.to_dict() for i in self.issues],
            "checks": [c.to_dict() for c in self.checks],
            "decline_reasons": list(self.decline_reasons),
        }


def _pct(rate: float, places: int = 2) -> str:
    return f"{rate * 100:.{places}f}%"


def _regulatory_issues(deal, terms: RulesEngineResult, program: LoanProgram) -> List[ComplianceIssue]:
    issues: List[ComplianceIssue] = []
    state = terms.state
    amount = terms.approved_amount
    total_rate = terms.rate.total_rate
    is_commercial = bool(getattr(deal, "is_commercial", True))

    if state:
        usury = check_usury(state, total_rate, amount, is_commercial)
        if usury.violates:
            issues.append(ComplianceIssue(
                "critical", f"State Usury ({state})", usury.message,
                f"Reduce rate to at most {_pct(usury.limit)} or verify a commercial exemption applies",
            ))
        if terms.rate.usury_adjusted:
            issues.append(ComplianceIssue(
                "info", f"State Usury ({state})", terms.rate.usury_message,
                "Confirm the capped rate with pricing before approval",
            ))

    if program.id == "sba_7a":
        if amount > SBA_MAX_AMOUNT:
            issues.append(ComplianceIssue(
                "critical", "SBA 7(a) 13 CFR 120.151", "SBA 7(a) loans may not exceed $5,000,000",
                "Reduce loan amount to $5,000,000 or less",
            ))
        prime = terms.rate.base_rate_value
        if amount <= 50_000:
            cap, band = 0.065, "up to $50K"
        elif amount <= 250_000:
            cap, band = 0.06, "$50K to $250K"
        else:
            cap, band = 0.0275, "over $250K"
        if total_rate > prime + cap + RATE_TOLERANCE:
            issues.append(ComplianceIssue(
                "critical", f"SBA 7(a) Rate Cap ({band})",
                f"Rate {_pct(total_rate)} exceeds SBA cap of Prime + {_pct(cap)} = {_pct(prime + cap)}",
                "Reduce rate to within SBA maximum spread",
            ))

    if program.id == "sba_504" and amount > SBA_MAX_AMOUNT:
        issues.append(ComplianceIssue(
            "critical", "SBA 504 13 CFR 120.932",
            "SBA 504 CDC portion may not exceed $5,000,000 ($5,500,000 for manufacturing/energy)",
            "Verify loan qualifies for manufacturing/energy exception or reduce amount",
        ))

    consumer = program.category == "residential" or any(
        (r.startswith("TILA/Reg Z") and "(" not in r) or r.startswith("RESPA") for r in program.regulations
    )
    if consumer and amount > 0:
        term_years = terms.term_months / 12
        apr = total_rate + (terms.total_fees / amount / term_years) if term_years > 0 else total_rate
        if apr > total_rate * 1.5:
            issues.append(ComplianceIssue(
                "warning", "TILA/Reg Z High-cost mortgage test",
                f"Effective APR including fees (~{_pct(apr)}) significantly exceeds note rate",
                "Review fee structure; perform full Reg Z Appendix J APR calculation before closing",
            ))

    if state:
        disclosures = get_disclosure_requirements(state)
        if disclosures:
            issues.append(ComplianceIssue(
                "info", f"State Disclosure ({state})",
                f"Required disclosures for {state}: {', '.join(disclosures)}",
                "Ensure all required state disclosures are included in loan documents",
            ))

    if terms.prepayment_penalty and any("Dodd-Frank" in r or "ATR" in r for r in program.regulations):
        issues.append(ComplianceIssue(
            "warning", "Dodd-Frank prepayment penalty restrictions",
            "Prepayment penalties on covered mortgages are restricted under Dodd-Frank/ATR rules",
            "Verify the prepayment structure meets QM/ATR requirements or the business purpose exemption",
        ))

    issues.append(ComplianceIssue(
        "info", "ECOA/Reg B",
        "Ensure pricing and terms do not result in disparate treatment or disparate impact",
        "Document legitimate, non-discriminatory business reasons for all term decisions",
    ))
    return issues


def _check(name: str, passed: bool, description: str, severity: str = "critical", **details) -> RegulatoryCheck:
    return RegulatoryCheck(
        name=name,
        regulation="Program structuring rules",
        category="terms",
        passed=passed,
        description=description,
        severity="info" if passed else severity,
        details=details,
    )


def check_terms_consistency(terms: RulesEngineResult, program: LoanProgram) -> List[RegulatoryCheck]:
    """Recompute the terms and confirm they agree with themselves and the program."""
    rules = program.structuring
    checks: List[RegulatoryCheck] = []

    payment = calculate_monthly_payment(
        terms.approved_amount, terms.rate.total_rate, terms.amortization_months, terms.interest_only,
    )
    checks.append(_check(
        "monthly_payment", abs(payment - terms.monthly_payment) <= PAYMENT_TOLERANCE,
        "Monthly payment matches recalculation from rate, amount and amortization",
        expected=payment, actual=terms.monthly_payment,
    ))

    if terms.rate.usury_adjusted:
        expected_rate = terms.rate.usury_limit
        rate_description = "Total rate equals the state usury ceiling"
    else:
        expected_rate = round(terms.rate.base_rate_value + terms.rate.spread, 6)
        rate_description = "Total rate equals base rate plus spread"
    checks.append(_check(
        "total_rate", abs(expected_rate - terms.rate.total_rate) <= RATE_TOLERANCE,
        rate_description, expected=expected_rate, actual=terms.rate.total_rate,
    ))

    min_spread = rules.spread_range[0]
    max_spread = max_spread_for(program, terms.approved_amount)
    checks.append(_check(
        "spread_range",
        min_spread - RATE_TOLERANCE <= terms.rate.spread <= max_spread + RATE_TOLERANCE,
        "Spread is inside the program range", expected=[min_spread, max_spread], actual=terms.rate.spread,
    ))

    within_max = rules.max_loan_amount is None or terms.approved_amount <= rules.max_loan_amount
    checks.append(_check(
        "approved_amount",
        within_max and rules.min_loan_amount <= terms.approved_amount and terms.approved_amount > 0,
        "Approved amount is positive and inside program limits",
        minimum=rules.min_loan_amount, maximum=rules.max_loan_amount, actual=terms.approved_amount,
    ))
    checks.append(_check(
        "term_months", 0 < terms.term_months <= rules.max_term,
        "Term is positive and inside the program maximum", maximum=rules.max_term, actual=terms.term_months,
    ))
    checks.append(_check(
        "amortization_months",
        terms.interest_only or terms.amortization_months <= rules.max_amortization,
        "Amortization is inside the program maximum",
        maximum=rules.max_amortization, actual=terms.amortization_months,
    ))
    checks.append(_check(
        "interest_only", not (terms.interest_only and terms.amortization_months > 0),
        "Interest-only terms carry no amortization", severity="warning",
        actual=terms.amortization_months,
    ))
    checks.append(_check(
        "ltv", terms.ltv is None or terms.ltv <= rules.max_ltv + 0.001,
        "LTV is inside the program maximum", maximum=rules.max_ltv, actual=terms.ltv,
    ))
    fee_total = round(sum(f.amount for f in terms.fees), 2)
    checks.append(_check(
        "total_fees", abs(fee_total - terms.total_fees) <= 0.01,
        "Total fees equal the sum of individual fees", expected=fee_total, actual=terms.total_fees,
    ))
    checks.append(_check(
        "total_rate_positive", terms.rate.total_rate > 0, "Total rate is positive", actual=terms.rate.total_rate,
    ))
    if terms.projected_dscr is not None and rules.min_dscr > 0:
        checks.append(_check(
            "projected_dscr", terms.projected_dscr >= rules.min_dscr,
            "Projected DSCR with the proposed payment meets the program minimum", severity="warning",
            minimum=rules.min_dscr, actual=terms.projected_dscr,
        ))
    return checks


def review_deal_compliance(deal, terms: RulesEngineResult) -> ComplianceReviewResult:
    """
    Review structured terms for a deal.

    Status is FAILED when any eligibility failure, critical regulatory
    issue or critical consistency check exists, NEEDS_REVIEW when only
    warnings exist, and PASSED otherwise.
    """
    program: Optional[LoanProgram] = get_loan_program(terms.program_id)
    if program is None:
        raise ValidationError(f"Unknown loan program: {terms.program_id}")

    issues = _regulatory_issues(deal, terms, program)
    for failure in terms.eligibility.failures:
        issues.insert(0, ComplianceIssue(
            "critical", f"Eligibility: {failure.rule}", failure.message,
            f"Required {failure.required}; actual {failure.actual}",
        ))
    for warning in terms.eligibility.warnings:
        issues.append(ComplianceIssue("warning", "Eligibility", warning, None))

    checks = check_terms_consistency(terms, program)

    decline_reasons = [f.message for f in terms.eligibility.failures]
    decline_reasons.extend(
        f"[Compliance] {i.description}" for i in issues
        if i.severity == "critical" and not i.section.startswith("Eligibility")
    )
    decline_reasons.extend(
        f"[Verification] {c.description}" for c in checks if not c.passed and c.severity == "critical"
    )

    if decline_reasons:
        status = ComplianceStatus.FAILED
    elif any(i.severity == "warning" for i in issues) or any(not c.passed for c in checks):
        status = ComplianceStatus.NEEDS_REVIEW
    else:
        status = ComplianceStatus.PASSED

    logger.info(
        "deal_compliance_reviewed",
        deal_id=str(getattr(deal, "id", "")),
        program=program.id,
        status=status.value,
        critical=sum(1 for i in issues if i.severity == "critical"),
        failed_checks=sum(1 for c in checks if not c.passed),
    )
    return ComplianceReviewResult(status=status, issues=issues, checks=checks, decline_reasons=decline_reasons)
