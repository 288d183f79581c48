"""
Unit tests for drafting, reviewing, checking and rendering loan documents.
"""
from types import SimpleNamespace

import pytest

from dealforge.models.findings import ComplianceIssue, RegulatoryCheck
from dealforge.models.generated_document import DocVerificationStatus
from dealforge.services.documents.feedback import build_feedback_text
from dealforge.services.documents.legal_review import LegalReviewer, extract_regulation, parse_review
from dealforge.services.documents.program_compliance import run_program_checks
from dealforge.services.documents.prose import (
    REQUIRED_KEYS,
    ProseGenerator,
    normalize_prose,
    placeholder,
)
from dealforge.services.documents.render import (
    amortization_rows,
    build_document,
    document_text,
    format_rate,
    render_docx,
)
from dealforge.services.documents.verify_doc import verify_document
from dealforge.services.rules.rules_engine import RulesInput, run_rules_engine
from tests.fakes import FakeLLM


def make_terms(program="conventional_business", state="TX"):
    inputs = RulesInput(
        requested_amount=500_000, global_dscr=2.0, back_end_dti=0.30,
        risk_rating="low", months_of_reserves=6, requested_term_months=60,
    )
    return run_rules_engine(inputs, program, state)


def drafted(doc_type):
    return {key: f"Drafted {key} language." for key in REQUIRED_KEYS[doc_type]}


@pytest.fixture
def deal():
    return SimpleNamespace(
        id="deal-1", organization_id="org-1", borrower_name="Acme Holdings LLC",
        loan_purpose="Equipment purchase", is_commercial=True, property_value=None,
    )


@pytest.fixture
def terms():
    return make_terms()


class TestProse:
    """Tests for prose generation."""

    def test_normalize_coerces_shapes(self):
        """Test arrays, strings and gaps are normalized."""
        prose = normalize_prose("loan_agreement", {
            "recitals": ["First.", "Second."],
            "eventsOfDefault": "Failure to pay.",
            "representations": [],
            "governingLaw": "  Texas law.  ",
        })

        assert prose["recitals"] == "First.\nSecond."
        assert prose["eventsOfDefault"] == ["Failure to pay."]
        assert prose["representations"] == [placeholder("representations")]
        assert prose["governingLaw"] == "Texas law."
        assert prose["noticeProvisions"] == placeholder("noticeProvisions")

    def test_prompt_carries_rules_engine_figures(self, deal, terms):
        """Test the drafter sees the fixed figures and the feedback block."""
        llm = FakeLLM({"prose": drafted("promissory_note")})

        prose = ProseGenerator(llm).generate("promissory_note", deal, terms, feedback="- fix the late fee")

        prompt = llm.calls[0]["prompt"]
        assert "Principal amount: $500,000.00" in prompt
        assert "Interest rate: 7.750%" in prompt
        assert "=== MANDATORY CORRECTIONS ===" in prompt
        assert "- fix the late fee" in prompt
        assert prose == drafted("promissory_note")

    def test_provider_failure_falls_back(self, deal, terms):
        """Test a provider failure leaves placeholders."""
        llm = FakeLLM({"prose": RuntimeError("provider down")})

        prose = ProseGenerator(llm).generate("guaranty", deal, terms)

        assert prose["guarantyScope"] == placeholder("guarantyScope")

    def test_provider_failure_strict(self, deal, terms):
        """Test strict generation propagates provider failures."""
        llm = FakeLLM({"prose": RuntimeError("provider down")})

        with pytest.raises(RuntimeError):
            ProseGenerator(llm).generate("guaranty", deal, terms, strict=True)

    def test_unconfigured_service(self, deal, terms, unconfigured_llm):
        """Test an unconfigured service yields placeholders without a call."""
        prose = ProseGenerator(unconfigured_llm).generate("promissory_note", deal, terms)

        assert set(prose) == set(REQUIRED_KEYS["promissory_note"])
        assert unconfigured_llm.calls == []

    def test_templated_forms_have_no_prose(self, deal, terms):
        """Test templated forms never call the service."""
        llm = FakeLLM()

        assert ProseGenerator(llm).generate("settlement_statement", deal, terms) == {}
        assert llm.calls == []

    def test_generic_documents(self, deal, terms):
        """Test documents without a template get boilerplate."""
        prose = ProseGenerator(FakeLLM()).generate("assignment_of_leases", deal, terms)

        assert "Acme Holdings LLC" in prose["generalProvisions"]
        assert "TX" in prose["governingLaw"]


class TestFeedback:
    """Tests for regeneration feedback."""

    def test_nothing_to_report(self):
        """Test empty input yields no feedback."""
        assert build_feedback_text() is None
        assert build_feedback_text(notes="   ") is None

    def test_persisted_findings(self):
        """Test persisted dicts are rendered and passed checks skipped."""
        text = build_feedback_text(
            compliance_issues=[{"severity": "critical", "section": "Late Fee", "description": "Missing",
                                "recommendation": "Add grace period"}],
            failed_checks=[
                {"name": "Usury Compliance", "regulation": "State usury statutes", "passed": False,
                 "description": "Too high"},
                {"name": "Term Limit", "passed": True},
            ],
            verification_findings=[{"severity": "warning", "field": "fees", "description": "Fee missing"}],
            notes="Use Texas venue.",
        )

        assert "- [critical] Late Fee: Missing (Fix: Add grace period)" in text
        assert "- Usury Compliance (State usury statutes): Too high" in text
        assert "Term Limit" not in text
        assert "- [warning] fees: Fee missing" in text
        assert text.endswith("LOAN OFFICER INSTRUCTIONS:\nUse Texas venue.")

    def test_dataclass_findings(self):
        """Test finding dataclasses are accepted as is."""
        text = build_feedback_text(compliance_issues=[ComplianceIssue("warning", "Notices", "Add address")])

        assert text == "LEGAL REVIEW ISSUES FROM PREVIOUS VERSION:\n- [warning] Notices: Add address"


class TestLegalReview:
    """Tests for the legal review."""

    def test_corrections_apply_to_existing_sections(self):
        """Test corrections only replace sections that exist."""
        prose = {"recitals": "Old.", "eventsOfDefault": ["Old default."]}
        raw = {
            "issues_found": [{"severity": "critical", "section": "recitals", "description": "Wrong party",
                              "fix_applied": "Rewrote recitals"}],
            "corrected_sections": {"recitals": "New.", "eventsOfDefault": "Payment default.", "invented": "x"},
        }

        review = parse_review(raw, prose)

        assert review.prose == {"recitals": "New.", "eventsOfDefault": ["Payment default."]}
        assert review.corrections_applied == 2
        assert review.passed is True
        assert review.issues[0].recommendation == "Rewrote recitals"

    def test_uncorrected_critical_fails(self):
        """Test a critical issue without corrections fails the review."""
        review = parse_review({"issues_found": [{"severity": "CRITICAL", "section": "x", "description": "y"}]}, {})

        assert review.passed is False

    def test_unknown_severity_becomes_warning(self):
        """Test unrecognized severities are treated as warnings."""
        review = parse_review({"issues_found": [{"severity": "blocker"}, "junk"]}, {})

        assert [i.severity for i in review.issues] == ["warning"]
        assert review.passed is True

    def test_checklist_results(self):
        """Test checklist provisions become regulatory checks."""
        raw = {"checklist_results": [
            {"provision": "Perfection by filing under UCC 9-501", "category": "required", "passed": False},
            {"provision": "Notice provisions", "category": "standard", "passed": False},
            {"provision": "Governing law clause", "category": "required", "passed": True},
        ]}

        checks = parse_review(raw, {}).checks

        assert [c.severity for c in checks] == ["critical", "warning", "info"]
        assert checks[0].regulation == "UCC Article 9"

    def test_regulation_keywords(self):
        """Test regulation names from provision text."""
        assert extract_regulation("State usury limits") == "State usury law"
        assert extract_regulation("Severability clause") == "Commercial Lending Standards"

    def test_review_failure_is_critical(self, deal, terms):
        """Test a failed review call never approves the document."""
        llm = FakeLLM({"legal_review": RuntimeError("timeout")})

        review = LegalReviewer(llm).review("guaranty", deal, terms, drafted("guaranty"))

        assert review.passed is False
        assert review.issues[0].section == "system"

    def test_unconfigured_review(self, deal, terms, unconfigured_llm):
        """Test an unconfigured service skips review with a warning."""
        review = LegalReviewer(unconfigured_llm).review("guaranty", deal, terms, drafted("guaranty"))

        assert review.passed is True
        assert review.issues[0].severity == "warning"

    def test_nothing_to_review(self, deal, terms):
        """Test templated forms are not reviewed."""
        llm = FakeLLM()

        assert LegalReviewer(llm).review("settlement_statement", deal, terms, {}).passed is True
        assert llm.calls == []


class TestProgramChecks:
    """Tests for per-program compliance checks."""

    def test_configured_checks_plus_limits(self, deal, terms):
        """Test a clean deal passes every configured check."""
        checks = run_program_checks("conventional_business", deal, terms)

        assert [c.name for c in checks] == [
            "OFAC Screening", "Usury Compliance", "Flood Zone Determination", "LTV Limit", "Term Limit",
        ]
        assert all(c.passed for c in checks)

    def test_usury_violation(self, deal, terms):
        """Test a rate above the state ceiling fails critically."""
        terms.rate.total_rate = 0.30

        usury = [c for c in run_program_checks("conventional_business", deal, terms) if c.name == "Usury Compliance"]

        assert usury[0].passed is False
        assert usury[0].severity == "critical"

    def test_term_limit(self, deal, terms):
        """Test a term beyond the program maximum fails."""
        terms.term_months = 120

        term = run_program_checks("conventional_business", deal, terms)[-1]

        assert term.passed is False

    def test_sba_checks(self, deal):
        """Test SBA programs run the size standard check."""
        checks = run_program_checks("sba_7a", deal, make_terms("sba_7a"))

        assert checks[0].name == "SBA Size Standard (7(a) Loan Limit)"
        assert checks[0].passed is True

    def test_unknown_program(self, deal, terms):
        """Test an unknown program yields one failed check."""
        checks = run_program_checks("payday", deal, terms)

        assert len(checks) == 1
        assert checks[0].passed is False
        assert isinstance(checks[0], RegulatoryCheck)


class TestVerifyDocument:
    """Tests for deterministic document verification."""

    def test_rendered_document_passes(self, deal, terms):
        """Test a fully drafted document carries every figure."""
        prose = drafted("promissory_note")
        text = document_text(build_document("promissory_note", deal, terms, prose))

        status, findings = verify_document("promissory_note", deal, terms, prose, text)

        assert status == DocVerificationStatus.PASSED
        assert findings == []

    def test_covenant_thresholds_checked(self, deal, terms):
        """Test covenant thresholds are found in covenant documents."""
        prose = drafted("loan_agreement")
        text = document_text(build_document("loan_agreement", deal, terms, prose))

        assert "Threshold: 1.20x." in text
        assert verify_document("loan_agreement", deal, terms, prose, text)[0] == DocVerificationStatus.PASSED

    def test_missing_figures_fail(self, deal, terms):
        """Test a document missing the amount and rate fails."""
        status, findings = verify_document("promissory_note", deal, terms, drafted("promissory_note"), "")

        assert status == DocVerificationStatus.FAILED
        assert {"loan_amount", "interest_rate"} <= {f.field for f in findings if f.severity == "critical"}

    def test_placeholders_warn(self, deal, terms):
        """Test placeholder sections need manual drafting."""
        prose = normalize_prose("guaranty", {})
        text = document_text(build_document("guaranty", deal, terms, prose))

        status, findings = verify_document("guaranty", deal, terms, prose, text)

        assert status == DocVerificationStatus.WARNINGS
        assert len(findings) == len(REQUIRED_KEYS["guaranty"])

    def test_missing_section_is_critical(self, deal, terms):
        """Test an empty required section is critical."""
        prose = drafted("guaranty")
        prose["guarantyScope"] = " "
        text = document_text(build_document("guaranty", deal, terms, prose))

        status, _ = verify_document("guaranty", deal, terms, prose, text)

        assert status == DocVerificationStatus.FAILED

    def test_templated_forms_skip_figures(self, deal, terms):
        """Test templated forms are not checked for figures."""
        assert verify_document("irs_w9", deal, terms, {}, "")[0] == DocVerificationStatus.PASSED


class TestRender:
    """Tests for DOCX rendering."""

    def test_docx_bytes(self, deal, terms):
        """Test rendering produces a DOCX package."""
        assert render_docx("promissory_note", deal, terms, drafted("promissory_note"))[:2] == b"PK"

    def test_numbers_come_from_terms(self, deal, terms):
        """Test the renderer writes the figures and prose headings."""
        text = document_text(build_document("promissory_note", deal, terms, drafted("promissory_note")))

        assert "Promissory Note" in text
        assert "$500,000.00" in text
        assert format_rate(terms.rate.total_rate) in text
        assert "Default Provisions" in text
        assert "Acme Holdings LLC" in text

    def test_amortization_rows(self, terms):
        """Test the first schedule row splits interest and principal."""
        rows = amortization_rows(terms)

        assert len(rows) == 12
        assert rows[0][2] == "$3,229.17"
