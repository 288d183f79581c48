"""
Deterministic per-program compliance checks for generated documents.

Each loan program lists the checks it needs by label; labels resolve
through CHECK_REGISTRY. LTV and term limits always run. Advisory checks
pass with a warning so the reviewer sees them without blocking the
document.
"""
from typing import Callable, Dict, List

import structlog

from dealforge.models.findings import RegulatoryCheck
from dealforge.services.rules.loan_programs import LoanProgram, get_loan_program
from dealforge.services.rules.rules_engine import RulesEngineResult
from dealforge.services.rules.state_rules import check_usury

logger = structlog.get_logger(__name__)

HPML_ADVISORY_RATE = 0.085
SBA_7A_MAX = 5_000_000
SBA_504_MAX = 5_500_000

CheckFn = Callable[[LoanProgram, object, RulesEngineResult], RegulatoryCheck]


def _result(name: str, regulation: str, passed: bool, description: str, severity: str,
            category: str = "program") -> RegulatoryCheck:
    return RegulatoryCheck(
        name=name,
        regulation=regulation,
        category=category,
        passed=passed,
        description=description,
        severity=severity,
    )


def _advisory(name: str, regulation: str, description: str, severity: str = "warning") -> CheckFn:
    def check(program, deal, terms):
        return _result(name, regulation, True, description, severity)
    return check


def check_usury_compliance(program: LoanProgram, deal, terms: RulesEngineResult) -> RegulatoryCheck:
    name, regulation = "Usury Compliance", "State usury statutes"
    if not terms.state:
        return _result(name, regulation, True,
                       "No state specified on deal. Usury check cannot be performed; manual review required.",
                       "warning")
    usury = check_usury(terms.state, terms.rate.total_rate, terms.approved_amount,
                        bool(getattr(deal, "is_commercial", True)))
    if usury.violates:
        return _result(name, regulation, False,
                       f"{usury.message}. Loan may be unenforceable or subject to penalties.", "critical")
    return _result(name, regulation, True, usury.message, "info")


def check_sba_size_standard(program: LoanProgram, deal, terms: RulesEngineResult) -> RegulatoryCheck:
    amount = terms.approved_amount
    if program.id == "sba_7a":
        passed = amount <= SBA_7A_MAX
        return _result(
            "SBA Size Standard (7(a) Loan Limit)", "13 CFR 120.151; SBA SOP 50 10", passed,
            f"Loan amount of ${amount:,.0f} {'is within' if passed else 'EXCEEDS'} the SBA 7(a) "
            f"maximum of ${SBA_7A_MAX:,.0f}.",
            "info" if passed else "critical",
        )
    if program.id == "sba_504":
        passed = amount <= SBA_504_MAX
        return _result(
            "SBA Size Standard (504 Loan Limit)", "13 CFR 120.931; SBA SOP 50 10", passed,
            f"Loan amount of ${amount:,.0f} {'is within' if passed else 'EXCEEDS'} the SBA 504 "
            f"maximum of ${SBA_504_MAX:,.0f} (manufacturing/energy cap).",
            "info" if passed else "critical",
        )
    return _result("SBA Size Standard", "13 CFR 120", True,
                   "SBA size standard check not applicable to this program.", "info")


def check_sba_504_eligibility(program: LoanProgram, deal, terms: RulesEngineResult) -> RegulatoryCheck:
    fixed_asset = any(
        "real_estate" in t or "heavy_equipment" in t for t in program.structuring.collateral_types
    )
    notes = []
    if not fixed_asset:
        notes.append("SBA 504 requires fixed-asset collateral (real estate or heavy equipment).")
    notes.append(
        "Borrower tangible net worth must not exceed $15M and average net income must not exceed $5M "
        "for the two preceding years per 13 CFR 121.301(c)."
    )
    return _result("SBA 504 Eligibility", "13 CFR 120.100-120.111; 13 CFR 121.301", fixed_asset,
                   " ".join(notes), "warning" if fixed_asset else "critical")


def check_hpml(program: LoanProgram, deal, terms: RulesEngineResult) -> RegulatoryCheck:
    rate = terms.rate.total_rate
    likely = rate > HPML_ADVISORY_RATE
    if likely:
        description = (
            f"Interest rate of {rate * 100:.3f}% may exceed the APOR threshold for HPML designation. "
            "Escrow, appraisal and balloon restrictions apply if confirmed against the current APOR table."
        )
    else:
        description = f"Interest rate of {rate * 100:.3f}% is unlikely to trigger HPML designation."
    # Advisory only: the APOR comparison happens at closing.
    return _result("Higher-Priced Mortgage Loan (HPML) Check", "12 CFR 1026.35", True, description,
                   "warning" if likely else "info")


def check_ability_to_repay(program: LoanProgram, deal, terms: RulesEngineResult) -> RegulatoryCheck:
    max_ltv = program.structuring.max_ltv
    non_qm = program.id in ("dscr", "bank_statement")
    notes = []
    passed = True
    if terms.ltv is not None and max_ltv > 0 and terms.ltv > max_ltv:
        notes.append(f"LTV of {terms.ltv * 100:.1f}% exceeds program maximum of {max_ltv * 100:.1f}%.")
        passed = False
    if non_qm:
        basis = "property cash flow analysis" if program.id == "dscr" else "bank statement deposit analysis"
        notes.append(f"Non-QM loan; ATR must be documented through {basis} per 12 CFR 1026.43(c).")
    if passed:
        severity = "warning" if non_qm else "info"
    else:
        severity = "critical"
    return _result(
        "Ability to Repay (ATR)", "12 CFR 1026.43; CFPB ATR/QM Rule", passed,
        " ".join(notes) or "ATR requirements satisfied.", severity,
    )


def check_ltv_limit(program: LoanProgram, deal, terms: RulesEngineResult) -> RegulatoryCheck:
    max_ltv = program.structuring.max_ltv
    if terms.ltv is None:
        return _result("LTV Limit", "Program structuring rules", True,
                       "No collateral value on file; LTV not computed.", "warning")
    passed = terms.ltv <= max_ltv + 0.001
    return _result(
        "LTV Limit", "Program structuring rules", passed,
        f"LTV of {terms.ltv * 100:.1f}% {'is within' if passed else 'exceeds'} the "
        f"{program.name} maximum of {max_ltv * 100:.1f}%.",
        "info" if passed else "critical",
    )


def check_term_limit(program: LoanProgram, deal, terms: RulesEngineResult) -> RegulatoryCheck:
    max_term = program.structuring.max_term
    passed = terms.term_months <= max_term
    return _result(
        "Term Limit", "Program structuring rules", passed,
        f"Term of {terms.term_months} months {'is within' if passed else 'exceeds'} the "
        f"{program.name} maximum of {max_term} months.",
        "info" if passed else "critical",
    )


CHECK_REGISTRY: Dict[str, CheckFn] = {
    "usury_check": check_usury_compliance,
    "sba_size_standard": check_sba_size_standard,
    "sba_credit_elsewhere": _advisory(
        "SBA Credit Elsewhere Test", "13 CFR 120.101",
        "Lender must certify that credit is not available elsewhere on reasonable terms; document on SBA Form 1919.",
    ),
    "sba_use_of_proceeds": _advisory(
        "SBA Use of Proceeds", "13 CFR 120.120",
        "Proceeds must fund eligible business purposes; verify against the stated loan purpose.",
    ),
    "sba_504_eligibility": check_sba_504_eligibility,
    "job_creation": _advisory(
        "SBA 504 Job Creation/Retention", "13 CFR 120.861-120.862",
        "One job must be created or retained per $95,000 of debenture funding; document and report annually.",
    ),
    "ofac_screening": _advisory(
        "OFAC Screening", "31 CFR Part 501",
        "Borrower, guarantors and principals must be screened against the SDN list before closing.",
    ),
    "flood_zone": _advisory(
        "Flood Zone Determination", "42 USC 4012a; Flood Disaster Protection Act",
        "A Standard Flood Hazard Determination is required for improved real property collateral.",
        severity="info",
    ),
    "hpml_check": check_hpml,
    "atr_check": check_ability_to_repay,
    "environmental_phase1": _advisory(
        "Environmental Phase I", "CERCLA 42 U.S.C. 9601(35)(B)",
        "A Phase I Environmental Site Assessment (ASTM E1527-21) is required before closing.",
    ),
    "bsa_aml": _advisory(
        "BSA/AML Review", "31 CFR Chapter X",
        "Customer due diligence and beneficial ownership certification must be on file.",
    ),
    "source_of_funds": _advisory(
        "Source of Funds", "31 CFR 1010.230",
        "Source of pledged collateral must be documented and traced.",
    ),
    "ucc_lien_search": _advisory(
        "UCC Lien Search", "UCC 9-501",
        "A UCC lien search in the debtor's state of organization must show no prior conflicting liens.",
    ),
}


def run_program_checks(program_id: str, deal, terms: RulesEngineResult) -> List[RegulatoryCheck]:
    """Run the program's configured checks plus LTV and term limits."""
    program = get_loan_program(program_id)
    if program is None:
        return [_result(
            "Program Validation", "Program structuring rules", False,
            f"Loan program '{program_id}' not found; compliance checks could not run.", "critical",
        )]

    checks: List[RegulatoryCheck] = []
    for label in program.compliance_checks:
        check = CHECK_REGISTRY.get(label)
        if check is None:
            checks.append(_result(label, "Unknown", True, "Not implemented; manual review required.", "warning"))
            continue
        checks.append(check(program, deal, terms))

    checks.append(check_ltv_limit(program, deal, terms))
    checks.append(check_term_limit(program, deal, terms))

    logger.debug(
        "program_checks_completed",
        program=program_id,
        total=len(checks),
        failed=sum(1 for c in checks if not c.passed),
    )
    return checks
