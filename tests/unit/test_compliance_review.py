"""
Unit tests for the deterministic compliance review of deal terms.
"""
from types import SimpleNamespace

import pytest

from dealforge.exceptions import ValidationError
from dealforge.models.generated_document import ComplianceStatus
from dealforge.services.rules.compliance_review import review_deal_compliance
from dealforge.services.rules.rules_engine import RulesInput, run_rules_engine


def deal(is_commercial=True):
    return SimpleNamespace(id="deal-1", is_commercial=is_commercial)


def terms(program="conventional_business", state="TX", **overrides):
    fields = dict(
        requested_amount=500_000, global_dscr=2.0, back_end_dti=0.30,
        risk_rating="low", months_of_reserves=6, requested_term_months=60,
    )
    fields.update(overrides)
    return run_rules_engine(RulesInput(**fields), program, state)


class TestReviewDealCompliance:
    """Tests for review_deal_compliance."""

    def test_clean_terms_pass(self):
        """Test consistent, eligible terms pass."""
        result = review_deal_compliance(deal(), terms())

        assert result.status == ComplianceStatus.PASSED
        assert result.requires_term_review is False
        assert all(c.passed for c in result.checks)
        assert any(i.section == "State Disclosure (TX)" for i in result.issues)

    def test_eligibility_failure_fails(self):
        """Test eligibility failures send the deal to term review."""
        result = review_deal_compliance(deal(), terms(global_dscr=1.0))

        assert result.status == ComplianceStatus.FAILED
        assert result.requires_term_review is True
        assert result.issues[0].section == "Eligibility: Minimum DSCR"
        assert "below program minimum" in result.decline_reasons[0]

    def test_warnings_need_review(self):
        """Test warnings alone need review but do not fail."""
        result = review_deal_compliance(deal(), terms(risk_rating="elevated"))

        assert result.status == ComplianceStatus.NEEDS_REVIEW

    def test_capped_rate_is_consistent(self):
        """Test a usury-capped rate is checked against the ceiling."""
        capped = terms(state="PA", is_commercial=False)

        result = review_deal_compliance(deal(is_commercial=False), capped)

        total_rate = [c for c in result.checks if c.name == "total_rate"][0]
        assert total_rate.passed is True
        assert any(i.severity == "info" and "capped" in i.description for i in result.issues)

    def test_tampered_payment_fails(self):
        """Test a payment that does not recompute is a critical failure."""
        tampered = terms()
        tampered.monthly_payment += 50

        result = review_deal_compliance(deal(), tampered)

        assert result.status == ComplianceStatus.FAILED
        assert any(r.startswith("[Verification] Monthly payment") for r in result.decline_reasons)

    def test_sba_rate_cap(self):
        """Test SBA 7(a) loans over $250K are held to prime + 2.75%."""
        result = review_deal_compliance(deal(), terms(program="sba_7a", risk_rating="high"))

        assert result.status == ComplianceStatus.FAILED
        assert any(i.section == "SBA 7(a) Rate Cap (over $250K)" for i in result.issues)

    def test_unknown_program(self):
        """Test terms for an unknown program are rejected."""
        bad = terms()
        bad.program_id = "payday"

        with pytest.raises(ValidationError):
            review_deal_compliance(deal(), bad)

    def test_serializes(self):
        """Test the review persists as JSON-ready data."""
        data = review_deal_compliance(deal(), terms()).to_dict()

        assert data["status"] == "PASSED"
        assert data["checks"]
