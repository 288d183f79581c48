"""Deterministic verification of extracted financial data."""
from dealforge.services.verification.engine import (
    VerificationInput,
    VerificationReport,
    collect_discrepancies,
    verify_deal,
)
from dealforge.services.verification.review_gate import ReviewGateResult, ReviewItem, evaluate_review_gate

__all__ = [
    "VerificationInput",
    "VerificationReport",
    "ReviewGateResult",
    "ReviewItem",
    "collect_discrepancies",
    "evaluate_review_gate",
    "verify_deal",
]
