"""Deterministic deal structuring: programs, state rules, terms and compliance."""
from dealforge.services.rules.compliance_review import ComplianceReviewResult, review_deal_compliance
from dealforge.services.rules.loan_programs import LOAN_PROGRAMS, LoanProgram, get_loan_program
from dealforge.services.rules.rules_engine import BASE_RATES, RulesEngineResult, RulesInput, run_rules_engine
from dealforge.services.rules.state_rules import STATE_RULES, apply_usury_cap, check_usury

__all__ = [
    "BASE_RATES",
    "LOAN_PROGRAMS",
    "STATE_RULES",
    "ComplianceReviewResult",
    "LoanProgram",
    "RulesEngineResult",
    "RulesInput",
    "apply_usury_cap",
    "check_usury",
    "get_loan_program",
    "review_deal_compliance",
    "run_rules_engine",
]
