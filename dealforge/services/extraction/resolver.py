"""
Self-resolution of verification discrepancies.

Before a failed check becomes a review item, cheap deterministic
strategies try to explain it away (formatting, rounding, a second look
at the OCR key-value pairs). Only then, and only when the page is known,
is the generative service asked to read the page section. A mismatch is
never resolved just because the OCR read was confident.
"""
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import structlog

from dealforge.exceptions import ExternalServiceError
from dealforge.services.extraction.ocr import KeyValuePair, OCRResult
from dealforge.services.extraction.values import parse_dollar_amount

logger = structlog.get_logger(__name__)

ROUNDING_TOLERANCE = 1.0
PERCENTAGE_TOLERANCE = 0.005
ALTERNATIVE_MIN_CONFIDENCE = 0.8
GENERATIVE_MIN_CONFIDENCE = 0.7

METHOD_FORMAT = "format_normalization"
METHOD_ROUNDING = "rounding_tolerance"
METHOD_REREAD = "textract_reread"
METHOD_ALTERNATIVE = "textract_alternative"
METHOD_GENERATIVE = "generative_section"

_LINE_NUMBER_RE = re.compile(r"_line(\w+)$")
_RATE_HINTS = ("rate", "margin", "percent")


@dataclass
class Discrepancy:
    """A failed check on one field of one document."""
    field_path: str
    extracted_value: Any
    expected_value: Any
    check_type: str
    description: str = ""
    document_page: Optional[int] = None


@dataclass
class Resolution:
    discrepancy: Discrepancy
    resolved: bool
    resolved_value: Optional[float] = None
    confidence: float = 0.0
    method: Optional[str] = None
    explanation: str = ""
    attempted_methods: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ResolutionReport:
    resolved: List[Resolution] = field(default_factory=list)
    unresolved: List[Resolution] = field(default_factory=list)


def line_number_for(field_path: str) -> Optional[str]:
    """"income.agi_line11" -> "11"."""
    match = _LINE_NUMBER_RE.search(field_path.split(".")[-1])
    return match.group(1).lower() if match else None


def _numbers(discrepancy: Discrepancy):
    return parse_dollar_amount(discrepancy.extracted_value), parse_dollar_amount(discrepancy.expected_value)


def try_format_normalization(discrepancy: Discrepancy) -> Optional[Resolution]:
    extracted, expected = _numbers(discrepancy)
    if extracted is None or expected is None or extracted != expected:
        return None
    return Resolution(
        discrepancy=discrepancy,
        resolved=True,
        resolved_value=extracted,
        confidence=0.99,
        method=METHOD_FORMAT,
        explanation=(
            f'Values match after format normalization: "{discrepancy.extracted_value}" and '
            f'"{discrepancy.expected_value}" both equal {extracted}'
        ),
    )


def try_rounding_tolerance(discrepancy: Discrepancy) -> Optional[Resolution]:
    extracted, expected = _numbers(discrepancy)
    if extracted is None or expected is None:
        return None

    difference = abs(extracted - expected)
    if difference <= ROUNDING_TOLERANCE:
        return Resolution(
            discrepancy=discrepancy,
            resolved=True,
            resolved_value=extracted,
            confidence=0.95,
            method=METHOD_ROUNDING,
            explanation=f"Difference of ${difference:.2f} is within rounding tolerance (${ROUNDING_TOLERANCE:.0f})",
        )

    path = discrepancy.field_path.lower()
    if any(hint in path for hint in _RATE_HINTS) and difference <= PERCENTAGE_TOLERANCE:
        return Resolution(
            discrepancy=discrepancy,
            resolved=True,
            resolved_value=extracted,
            confidence=0.9,
            method=METHOD_ROUNDING,
            explanation=f"Percentage difference of {difference * 100:.3f}% is within tolerance",
        )
    return None


def try_textract_reread(discrepancy: Discrepancy, key_values: Sequence[KeyValuePair]) -> Optional[Resolution]:
    """Look the field up again by its form line number on the same page."""
    if discrepancy.document_page is None:
        return None
    line = line_number_for(discrepancy.field_path)
    _, expected = _numbers(discrepancy)
    if line is None or expected is None:
        return None

    for kv in key_values:
        if kv.page != discrepancy.document_page:
            continue
        key = kv.key.lower().strip()
        if not (key == line or key.startswith(f"{line} ") or key.startswith(f"{line}.")
                or re.search(rf"line {re.escape(line)}(?![a-z0-9])", key)):
            continue
        parsed = parse_dollar_amount(kv.value)
        if parsed is not None and parsed == expected:
            return Resolution(
                discrepancy=discrepancy,
                resolved=True,
                resolved_value=parsed,
                confidence=kv.confidence,
                method=METHOD_REREAD,
                explanation=(
                    f'Re-read page {kv.page}: line "{kv.key}" = "{kv.value}" '
                    f"(confidence {kv.confidence * 100:.1f}%)"
                ),
            )
    return None


def try_textract_alternative(discrepancy: Discrepancy, key_values: Sequence[KeyValuePair]) -> Optional[Resolution]:
    """Find the expected value printed under a different label."""
    _, expected = _numbers(discrepancy)
    if expected is None:
        return None

    candidates = [
        kv for kv in key_values
        if (discrepancy.document_page is None or kv.page == discrepancy.document_page)
        and parse_dollar_amount(kv.value) == expected
    ]
    if not candidates:
        return None

    best = max(candidates, key=lambda kv: kv.confidence)
    if best.confidence < ALTERNATIVE_MIN_CONFIDENCE:
        return None
    return Resolution(
        discrepancy=discrepancy,
        resolved=True,
        resolved_value=expected,
        confidence=round(best.confidence * 0.9, 4),
        method=METHOD_ALTERNATIVE,
        explanation=f'Found matching value under alternative label "{best.key}" on page {best.page}',
    )


SECTION_PROMPT = """You are a financial document verification specialist. Read page {page} of the document below and determine the correct value of one field.

Field: "{field_path}"
Extracted value: "{extracted}"
Expected value: "{expected}"
Issue: {description}

Return JSON: {{"value": <number or null>, "confidence": <0-1>, "explanation": "<brief>"}}
Use numbers only. Return null if the page does not show the value clearly.

=== DOCUMENT TEXT (Page {page}) ===
{page_text}

=== KEY-VALUE PAIRS (Page {page}) ===
{kv_text}
"""


def try_generative_section(discrepancy: Discrepancy, ocr: OCRResult, llm) -> Resolution:
    page = discrepancy.document_page
    page_text = "\n".join(p.text for p in ocr.pages if p.page_number == page)
    kv_text = "\n".join(f'  "{kv.key}": "{kv.value}"' for kv in ocr.key_values if kv.page == page)
    prompt = SECTION_PROMPT.format(
        page=page,
        field_path=discrepancy.field_path,
        extracted=discrepancy.extracted_value,
        expected=discrepancy.expected_value if discrepancy.expected_value is not None else "unknown",
        description=discrepancy.description,
        page_text=page_text[:8000],
        kv_text=kv_text,
    )

    try:
        parsed = llm.complete_json(prompt, max_tokens=500, label="resolve_section")
    except (ExternalServiceError, ValueError) as e:
        logger.warning("section_resolution_failed", field_path=discrepancy.field_path, error=str(e))
        return Resolution(
            discrepancy=discrepancy,
            resolved=False,
            method=METHOD_GENERATIVE,
            explanation=f"Section analysis failed: {e}",
        )

    value = parse_dollar_amount(parsed.get("value"))
    confidence = parse_dollar_amount(parsed.get("confidence")) or 0.0
    explanation = str(parsed.get("explanation") or "")
    if value is not None and confidence >= GENERATIVE_MIN_CONFIDENCE:
        return Resolution(
            discrepancy=discrepancy,
            resolved=True,
            resolved_value=value,
            confidence=confidence,
            method=METHOD_GENERATIVE,
            explanation=explanation or "Resolved by section analysis",
        )
    return Resolution(
        discrepancy=discrepancy,
        resolved=False,
        method=METHOD_GENERATIVE,
        explanation=f"Section analysis inconclusive (confidence {confidence}): {explanation}",
    )


def resolve_discrepancy(discrepancy: Discrepancy, ocr: Optional[OCRResult], llm=None) -> Resolution:
    """Run the strategies in order and return the first resolution."""
    key_values = ocr.key_values if ocr else []
    attempted: List[str] = []

    attempted.append(METHOD_FORMAT)
    result = try_format_normalization(discrepancy)
    if result is None:
        attempted.append(METHOD_ROUNDING)
        result = try_rounding_tolerance(discrepancy)
    if result is None:
        attempted.append(METHOD_REREAD)
        result = try_textract_reread(discrepancy, key_values)
    if result is None:
        attempted.append(METHOD_ALTERNATIVE)
        result = try_textract_alternative(discrepancy, key_values)

    last_note = ""
    if result is None and llm is not None and ocr is not None and discrepancy.document_page is not None:
        attempted.append(METHOD_GENERATIVE)
        section = try_generative_section(discrepancy, ocr, llm)
        if section.resolved:
            result = section
        else:
            last_note = f" {section.explanation}"

    if result is not None:
        result.attempted_methods = attempted
        return result

    return Resolution(
        discrepancy=discrepancy,
        resolved=False,
        attempted_methods=attempted,
        explanation=(
            f'Could not self-resolve "{discrepancy.field_path}" after trying: '
            f"{', '.join(attempted)}.{last_note}"
        ),
    )


def resolve_discrepancies(discrepancies: Sequence[Discrepancy], ocr: Optional[OCRResult], llm=None) -> ResolutionReport:
    """
    Attempt resolution for every discrepancy of one document.

    Args:
        discrepancies: Failed checks for the document.
        ocr: The document's OCR result, or None when it has none.
        llm: Optional GenerativeService for the section re-read.
    """
    report = ResolutionReport()
    for discrepancy in discrepancies:
        resolution = resolve_discrepancy(discrepancy, ocr, llm)
        if resolution.resolved:
            report.resolved.append(resolution)
        else:
            report.unresolved.append(resolution)

    logger.info(
        "discrepancies_resolved",
        total=len(discrepancies),
        resolved=len(report.resolved),
        unresolved=len(report.unresolved),
    )
    return report
