"""
Verification engine.

Runs the math checks and the OCR comparison per document, then the
cross-document checks across the deal. Disagreements the reconciler found
between the two extractors ride along per document so the review gate can
raise them. Deterministic; no generative calls.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog

from dealforge.services.extraction.classifier import normalize_doc_type
from dealforge.services.extraction.ocr import KeyValuePair
from dealforge.services.extraction.resolver import Discrepancy
from dealforge.services.extraction.textract_compare import (
    TextractComparison,
    compare_textract_to_structured,
    unlabelled_count,
)
from dealforge.services.verification.cross_document import (
    CrossDocCheck,
    DocumentExtraction,
    run_cross_document_checks,
)
from dealforge.services.verification.math_checks import MathCheck, run_math_checks
from dealforge.services.verification.review_gate import ReviewGateResult, evaluate_review_gate

logger = structlog.get_logger(__name__)

STATUS_PASS = "PASS"
STATUS_WARNING = "WARNING"
STATUS_FAIL = "FAIL"

# More disagreeing OCR reads than this fails the deal outright
TEXTRACT_DISAGREEMENT_LIMIT = 2


@dataclass
class VerificationInput:
    """One source document as the engine sees it."""
    document_id: Optional[str]
    doc_type: Optional[str]
    data: Dict[str, Any]
    key_values: Sequence[KeyValuePair] = ()
    year: Optional[int] = None
    # Reconciler disagreements between the OCR and generative extractions
    disagreements: Sequence[Dict[str, Any]] = ()


@dataclass
class DocumentVerification:
    document_id: Optional[str]
    doc_type: Optional[str]
    math_checks: List[MathCheck] = field(default_factory=list)
    textract_comparisons: List[TextractComparison] = field(default_factory=list)
    extraction_disagreements: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_id": self.document_id,
            "doc_type": self.doc_type,
            "math_checks": [c.to_dict() for c in self.math_checks],
            "textract_comparisons": [c.to_dict() for c in self.textract_comparisons],
            "unlabelled_fields": unlabelled_count(self.textract_comparisons),
            "extraction_disagreements": list(self.extraction_disagreements),
        }


@dataclass
class VerificationReport:
    documents: List[DocumentVerification] = field(default_factory=list)
    cross_doc_checks: List[CrossDocCheck] = field(default_factory=list)
    overall_status: str = STATUS_PASS
    summary: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_status": self.overall_status,
            "summary": dict(self.summary),
            "documents": [d.to_dict() for d in self.documents],
            "cross_doc_checks": [c.to_dict() for c in self.cross_doc_checks],
        }


def overall_status(summary: Dict[str, int]) -> str:
    if (
        summary.get("math_checks_failed", 0) > 0
        or summary.get("cross_doc_failed", 0) > 0
        or summary.get("textract_disagreed", 0) > TEXTRACT_DISAGREEMENT_LIMIT
        or summary.get("extraction_disagreed_failed", 0) > 0
    ):
        return STATUS_FAIL
    if any(summary.get(key, 0) > 0 for key in ("cross_doc_warnings", "textract_disagreed", "extraction_disagreed")):
        return STATUS_WARNING
    return STATUS_PASS


def verify_deal(docs: Sequence[VerificationInput]) -> Tuple[VerificationReport, ReviewGateResult]:
    """
    Verify every document of a deal.

    Returns:
        The report and the review gate evaluated over it.
    """
    report = VerificationReport()
    for doc in docs:
        doc_type = normalize_doc_type(doc.doc_type)
        report.documents.append(DocumentVerification(
            document_id=doc.document_id,
            doc_type=doc_type,
            math_checks=run_math_checks(doc_type, doc.data),
            textract_comparisons=compare_textract_to_structured(doc_type, doc.data, doc.key_values),
            extraction_disagreements=[d for d in doc.disagreements if d.get("severity") in ("FAIL", "WARN")],
        ))

    report.cross_doc_checks = run_cross_document_checks([
        DocumentExtraction(doc_type=doc.doc_type or "", data=doc.data, year=doc.year, document_id=doc.document_id)
        for doc in docs
    ])

    gate = evaluate_review_gate(report)
    report.summary = dict(gate.summary, auto_passed=gate.auto_passed_count)
    report.overall_status = overall_status(gate.summary)

    logger.info(
        "deal_verified",
        document_count=len(report.documents),
        overall_status=report.overall_status,
        review_items=len(gate.review_items),
        auto_passed=gate.auto_passed_count,
    )
    return report, gate


def collect_discrepancies(report: VerificationReport) -> Dict[Optional[str], List[Discrepancy]]:
    """
    Failed math checks and OCR mismatches per document, as self-resolution input.
    """
    by_document: Dict[Optional[str], List[Discrepancy]] = {}
    for doc in report.documents:
        items = [
            Discrepancy(
                field_path=check.field_path,
                extracted_value=check.actual,
                expected_value=check.expected,
                check_type="math",
                description=check.description,
                document_page=check.document_page,
            )
            for check in doc.math_checks if not check.passed
        ]
        items.extend(
            Discrepancy(
                field_path=comparison.field_path,
                extracted_value=comparison.structured_value,
                expected_value=comparison.textract_value,
                check_type="textract_mismatch",
                description=f'OCR label "{comparison.textract_key}" disagrees',
                document_page=comparison.page,
            )
            for comparison in doc.textract_comparisons
            if not comparison.matched and comparison.textract_value is not None
        )
        if items:
            by_document[doc.document_id] = items
    return by_document
