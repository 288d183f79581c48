"""
Review gate.

Turns a verification report into the list of items an operator has to
resolve before the deal may leave verification. Small discrepancies from
OCR rounding or formatting are counted as auto-passed; everything else
becomes a PENDING issue. A deal proceeds only when no item is produced.
"""
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from dealforge.models.verification_issue import IssueCheckType, IssueSeverity
from dealforge.services.verification.cross_document import CHECK_FAIL, CHECK_PASS, CHECK_WARNING, percent_diff

# (absolute $, percent) bands inside which a failed check is auto-passed
MATH_AUTO_PASS = (50.0, 0.02)
CROSS_DOC_AUTO_PASS = (100.0, 0.05)
TEXTRACT_AUTO_PASS = (25.0, 0.03)

TEXTRACT_FAIL_DIFFERENCE = 1000.0


@dataclass
class ReviewItem:
    field_path: str
    extracted_value: str
    expected_value: str
    check_type: IssueCheckType
    severity: IssueSeverity
    description: str
    difference: Optional[float] = None
    document_page: Optional[int] = None
    document_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["check_type"] = self.check_type.value
        data["severity"] = self.severity.value
        return data


@dataclass
class ReviewGateResult:
    can_proceed: bool
    review_items: List[ReviewItem] = field(default_factory=list)
    auto_passed_count: int = 0
    summary: Dict[str, int] = field(default_factory=dict)


def fmt_dollar(value: float) -> str:
    text = f"{abs(value):,.2f}".rstrip("0").rstrip(".")
    return f"${text}" + (" (negative)" if value < 0 else "")


def _within(band, difference: float, pct: float) -> bool:
    return abs(difference) <= band[0] and pct <= band[1]


def _display(value: Any) -> str:
    if isinstance(value, bool) or value is None:
        return str(value)
    if isinstance(value, (int, float)):
        return fmt_dollar(float(value))
    return str(value)


def evaluate_review_gate(report) -> ReviewGateResult:
    """
    Decide whether a verified deal may proceed to analysis.

    Args:
        report: VerificationReport from the verification engine.
    """
    items: List[ReviewItem] = []
    auto_passed = 0
    summary = {
        "math_checks_passed": 0,
        "math_checks_failed": 0,
        "cross_doc_passed": 0,
        "cross_doc_failed": 0,
        "cross_doc_warnings": 0,
        "textract_agreed": 0,
        "textract_disagreed": 0,
        "extraction_disagreed": 0,
        "extraction_disagreed_failed": 0,
    }

    for doc in report.documents:
        for check in doc.math_checks:
            if check.passed:
                summary["math_checks_passed"] += 1
            elif _within(MATH_AUTO_PASS, check.difference, percent_diff(check.expected, check.actual)):
                summary["math_checks_passed"] += 1
                auto_passed += 1
            else:
                summary["math_checks_failed"] += 1
                items.append(ReviewItem(
                    field_path=check.field_path,
                    extracted_value=fmt_dollar(check.actual),
                    expected_value=fmt_dollar(check.expected),
                    check_type=IssueCheckType.MATH,
                    severity=IssueSeverity.FAIL,
                    description=(
                        f"{check.description}. Expected {fmt_dollar(check.expected)}, "
                        f"got {fmt_dollar(check.actual)}. Difference: {fmt_dollar(check.difference)}"
                    ),
                    difference=check.difference,
                    document_page=check.document_page,
                    document_id=doc.document_id,
                ))

        for comparison in doc.textract_comparisons:
            if comparison.matched:
                summary["textract_agreed"] += 1
                continue
            # No OCR label at all: informational only
            if comparison.textract_value is None:
                continue
            pct = percent_diff(comparison.structured_value, comparison.textract_value)
            if _within(TEXTRACT_AUTO_PASS, comparison.difference, pct):
                summary["textract_agreed"] += 1
                auto_passed += 1
                continue
            summary["textract_disagreed"] += 1
            items.append(ReviewItem(
                field_path=comparison.field_path,
                extracted_value=fmt_dollar(comparison.structured_value),
                expected_value=fmt_dollar(comparison.textract_value),
                check_type=IssueCheckType.EXTRACTION_DISAGREEMENT,
                severity=(
                    IssueSeverity.FAIL if comparison.difference > TEXTRACT_FAIL_DIFFERENCE
                    else IssueSeverity.WARN
                ),
                description=(
                    f'OCR reads "{comparison.textract_key}" as {fmt_dollar(comparison.textract_value)} '
                    f"but extraction shows {fmt_dollar(comparison.structured_value)}. "
                    f"Difference: {fmt_dollar(comparison.difference)}"
                ),
                difference=comparison.difference,
                document_page=comparison.page,
                document_id=doc.document_id,
            ))

        raised = {item.field_path for item in items if item.document_id == doc.document_id}
        for disagreement in doc.extraction_disagreements:
            path = disagreement.get("path")
            if not path or path in raised:
                continue
            summary["extraction_disagreed"] += 1
            severity = IssueSeverity.FAIL if disagreement.get("severity") == "FAIL" else IssueSeverity.WARN
            if severity == IssueSeverity.FAIL:
                summary["extraction_disagreed_failed"] += 1
            ocr_value, ai_value = disagreement.get("textract_value"), disagreement.get("ai_value")
            difference = None
            if isinstance(ocr_value, (int, float)) and isinstance(ai_value, (int, float)):
                difference = abs(float(ai_value) - float(ocr_value))
            items.append(ReviewItem(
                field_path=path,
                extracted_value=_display(ai_value),
                expected_value=_display(ocr_value),
                check_type=IssueCheckType.EXTRACTION_DISAGREEMENT,
                severity=severity,
                description=(
                    f"OCR extraction reads {_display(ocr_value)} but the generative extraction "
                    f"reads {_display(ai_value)}"
                    + (f" ({disagreement['pct_difference'] * 100:.1f}% apart)"
                       if disagreement.get("pct_difference") is not None else "")
                ),
                difference=difference,
                document_id=doc.document_id,
            ))
            raised.add(path)

    for check in report.cross_doc_checks:
        if check.status == CHECK_PASS:
            summary["cross_doc_passed"] += 1
            continue
        if check.status == CHECK_FAIL and _within(CROSS_DOC_AUTO_PASS, check.difference, check.percent_diff):
            summary["cross_doc_passed"] += 1
            auto_passed += 1
            continue
        if check.status == CHECK_WARNING:
            summary["cross_doc_warnings"] += 1
            severity = IssueSeverity.WARN
        else:
            summary["cross_doc_failed"] += 1
            severity = IssueSeverity.FAIL
        items.append(ReviewItem(
            field_path=f"{check.doc1_field} vs {check.doc2_field}",
            extracted_value=fmt_dollar(check.doc1_value),
            expected_value=fmt_dollar(check.doc2_value),
            check_type=IssueCheckType.CROSS_DOC,
            severity=severity,
            description=(
                f"{check.description}. {check.doc1_type} shows {fmt_dollar(check.doc1_value)} "
                f"but {check.doc2_type} shows {fmt_dollar(check.doc2_value)}. "
                f"Difference: {fmt_dollar(check.difference)} ({check.percent_diff * 100:.1f}%)"
            ),
            difference=check.difference,
        ))

    return ReviewGateResult(
        can_proceed=not items,
        review_items=items,
        auto_passed_count=auto_passed,
        summary=summary,
    )
