"""
Unit tests for the verification engine and review gate.
"""
from dealforge.models.verification_issue import IssueCheckType, IssueSeverity
from dealforge.services.extraction.ocr import KeyValuePair
from dealforge.services.extraction.textract_compare import compare_textract_to_structured, is_metadata_field
from dealforge.services.verification.engine import (
    STATUS_FAIL,
    STATUS_PASS,
    STATUS_WARNING,
    VerificationInput,
    collect_discrepancies,
    verify_deal,
)
from dealforge.services.verification.review_gate import fmt_dollar


def kv(key, value, page=1, confidence=0.98):
    return KeyValuePair(key=key, value=value, confidence=confidence, page=page)


def income_1040(total=80000, wages=80000, doc_id="doc-1", key_values=()):
    return VerificationInput(
        document_id=doc_id,
        doc_type="FORM_1040",
        data={"income": {"wages_line1": wages, "totalIncome_line9": total, "agi_line11": total}},
        key_values=key_values,
    )


def bank(begin, end, end_date, doc_id):
    return VerificationInput(
        document_id=doc_id,
        doc_type="BANK_STATEMENT_CHECKING",
        data={
            "summary": {"beginningBalance": begin, "endingBalance": end},
            "statementPeriod": {"startDate": end_date[:8] + "01", "endDate": end_date},
        },
    )


class TestFormatting:
    """Tests for dollar formatting in issue descriptions."""

    def test_whole_dollars(self):
        """Test trailing cents are dropped."""
        assert fmt_dollar(80500) == "$80,500"

    def test_cents_kept(self):
        """Test non-zero cents remain."""
        assert fmt_dollar(1234.5) == "$1,234.5"

    def test_negative(self):
        """Test negatives are labelled."""
        assert fmt_dollar(-50) == "$50 (negative)"


class TestTextractComparison:
    """Tests for the OCR comparison."""

    def test_mismatch_detected(self):
        """Test a labelled OCR value more than $1 away is a mismatch."""
        comparisons = compare_textract_to_structured(
            "FORM_1040",
            {"income": {"wages_line1": 80000}},
            [kv("Wages, salaries, tips", "85,000")],
        )

        assert len(comparisons) == 1
        assert comparisons[0].matched is False
        assert comparisons[0].difference == 5000
        assert comparisons[0].textract_key == "Wages, salaries, tips"

    def test_match_within_a_dollar(self):
        """Test values within $1 match."""
        comparisons = compare_textract_to_structured(
            "FORM_1040",
            {"income": {"wages_line1": 80000}},
            [kv("Line 1 Wages", "80,000.50")],
        )

        assert comparisons[0].matched is True

    def test_unlabelled_field(self):
        """Test a field with no OCR label is informational."""
        comparisons = compare_textract_to_structured(
            "FORM_1040",
            {"income": {"agi_line11": 70000}},
            [kv("Wages, salaries, tips", "85,000")],
        )

        assert comparisons[0].textract_value is None

    def test_metadata_fields_skipped(self):
        """Test years and counts are not compared."""
        assert is_metadata_field("metadata.pages") is True
        assert is_metadata_field("summary.totalUnits") is True
        assert is_metadata_field("income.wages_line1") is False


class TestVerifyDeal:
    """Tests for the engine and gate together."""

    def test_clean_deal_proceeds(self):
        """Test a consistent document produces no review items."""
        report, gate = verify_deal([income_1040()])

        assert gate.can_proceed is True
        assert report.overall_status == STATUS_PASS

    def test_small_math_difference_auto_passed(self):
        """Test a $20 total mismatch is auto-passed."""
        report, gate = verify_deal([income_1040(total=80020)])

        assert gate.can_proceed is True
        assert gate.auto_passed_count == 1
        assert report.summary["auto_passed"] == 1
        assert report.overall_status == STATUS_PASS

    def test_math_failure_becomes_review_item(self):
        """Test a large mismatch blocks the deal."""
        report, gate = verify_deal([income_1040(total=90000)])

        assert gate.can_proceed is False
        item = gate.review_items[0]
        assert item.check_type == IssueCheckType.MATH
        assert item.severity == IssueSeverity.FAIL
        assert item.document_id == "doc-1"
        assert "Expected $80,000" in item.description
        assert report.overall_status == STATUS_FAIL

    def test_ocr_disagreement(self):
        """Test an OCR disagreement over $1000 is a FAIL item and a WARNING overall."""
        report, gate = verify_deal([income_1040(key_values=[kv("Wages, salaries, tips", "85,000")])])

        assert len(gate.review_items) == 1
        item = gate.review_items[0]
        assert item.check_type == IssueCheckType.EXTRACTION_DISAGREEMENT
        assert item.severity == IssueSeverity.FAIL
        assert report.overall_status == STATUS_WARNING

    def test_cross_document_warning_blocks(self):
        """Test WARN cross-document checks still need operator review."""
        w2 = VerificationInput(document_id="w2", doc_type="W2", data={"wagesTips": 83000})

        report, gate = verify_deal([income_1040(), w2])

        assert gate.can_proceed is False
        item = gate.review_items[0]
        assert item.check_type == IssueCheckType.CROSS_DOC
        assert item.severity == IssueSeverity.WARN
        assert item.field_path == "wagesTips (sum) vs income.wages_line1"
        assert item.document_id is None
        assert report.overall_status == STATUS_WARNING

    def test_cross_document_auto_pass(self):
        """Test a $50 statement chain gap is auto-passed."""
        docs = [
            bank(5000, 5000, "2024-01-31", "jan"),
            bank(5050, 5050, "2024-02-29", "feb"),
        ]

        report, gate = verify_deal(docs)

        assert gate.can_proceed is True
        assert gate.auto_passed_count == 1

    def test_extractor_disagreement_raised(self):
        """Test a reconciler disagreement becomes an item even when the OCR comparison is silent."""
        doc = income_1040()
        doc.disagreements = [{
            "path": "tax.federalWithholding_line25a", "textract_value": 12000.0, "ai_value": 0,
            "pct_difference": 1.0, "severity": "FAIL", "provenance": "disagreement",
        }]

        report, gate = verify_deal([doc])

        assert gate.can_proceed is False
        item = gate.review_items[0]
        assert item.check_type == IssueCheckType.EXTRACTION_DISAGREEMENT
        assert item.severity == IssueSeverity.FAIL
        assert item.field_path == "tax.federalWithholding_line25a"
        assert item.document_id == "doc-1"
        assert item.difference == 12000
        assert item.expected_value == "$12,000"
        assert report.overall_status == STATUS_FAIL
        assert report.to_dict()["documents"][0]["extraction_disagreements"][0]["path"] == "tax.federalWithholding_line25a"

    def test_extractor_disagreement_not_duplicated(self):
        """Test a field already flagged by the OCR comparison is raised once."""
        doc = income_1040(key_values=[kv("Wages, salaries, tips", "85,000")])
        doc.disagreements = [{
            "path": "income.wages_line1", "textract_value": 85000.0, "ai_value": 80000,
            "pct_difference": 0.0588, "severity": "WARN",
        }]

        _, gate = verify_deal([doc])

        assert [i.field_path for i in gate.review_items] == ["income.wages_line1"]
        assert gate.summary["extraction_disagreed"] == 0

    def test_text_disagreement_is_warning(self):
        """Test a WARN text disagreement makes the deal WARNING overall."""
        doc = income_1040()
        doc.disagreements = [{
            "path": "metadata.filingStatus", "textract_value": "single", "ai_value": "joint",
            "severity": "WARN",
        }]

        report, gate = verify_deal([doc])

        item = gate.review_items[0]
        assert item.severity == IssueSeverity.WARN
        assert item.difference is None
        assert item.extracted_value == "joint"
        assert report.overall_status == STATUS_WARNING

    def test_report_serializes(self):
        """Test to_dict carries per-document results."""
        report, _ = verify_deal([income_1040()])

        data = report.to_dict()
        assert data["overall_status"] == STATUS_PASS
        assert data["documents"][0]["document_id"] == "doc-1"
        assert data["documents"][0]["math_checks"]


class TestCollectDiscrepancies:
    """Tests for self-resolution input."""

    def test_groups_by_document(self):
        """Test failed checks and OCR mismatches are collected per document."""
        report, _ = verify_deal([
            income_1040(total=90000, doc_id="a"),
            income_1040(doc_id="b", key_values=[kv("Wages, salaries, tips", "85,000", page=2)]),
        ])

        found = collect_discrepancies(report)

        assert set(found) == {"a", "b"}
        assert found["a"][0].check_type == "math"
        mismatch = found["b"][0]
        assert mismatch.check_type == "textract_mismatch"
        assert mismatch.expected_value == 85000
        assert mismatch.document_page == 2
