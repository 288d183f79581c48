"""
Deterministic verification of a rendered document.

Confirms the rules-engine figures actually appear in the document text
and that every drafted section is present. Templated forms skip the
figure checks.
"""
from typing import Any, Dict, List, Tuple

import structlog

from dealforge.models.findings import VerificationFinding
from dealforge.models.generated_document import DocVerificationStatus
from dealforge.services.documents.prose import REQUIRED_KEYS, ZERO_PROSE_DOCS, placeholder
from dealforge.services.documents.render import COVENANT_DOCS, format_money, format_rate, format_threshold
from dealforge.services.rules.rules_engine import RulesEngineResult

logger = structlog.get_logger(__name__)


def flatten_prose(prose: Dict[str, Any]) -> str:
    parts = []
    for value in prose.values():
        if isinstance(value, list):
            parts.extend(str(v) for v in value)
        elif value is not None:
            parts.append(str(value))
    return "\n".join(parts)


def _contains(haystack: str, *candidates: str) -> bool:
    lower = haystack.lower()
    return any(c.lower() in lower for c in candidates if c)


def threshold_candidates(threshold: float) -> List[str]:
    return [
        format_threshold(threshold),
        f"{threshold}x",
        f"{threshold:.2f}",
        f"{threshold * 100:.0f}%",
        f"{threshold * 100:.1f}%",
    ]


def verify_document(
    doc_type: str,
    deal,
    terms: RulesEngineResult,
    prose: Dict[str, Any],
    text: str,
) -> Tuple[DocVerificationStatus, List[VerificationFinding]]:
    """
    Verify one rendered document.

    Args:
        text: Full text of the rendered document.

    Returns:
        (status, findings). FAILED when any critical finding exists,
        WARNINGS when only warnings exist.
    """
    findings: List[VerificationFinding] = []
    full_text = f"{text}\n{flatten_prose(prose)}"

    for key in REQUIRED_KEYS.get(doc_type, []):
        value = prose.get(key)
        empty = value is None or (isinstance(value, str) and not value.strip()) or (
            isinstance(value, list) and not value
        )
        if empty:
            findings.append(VerificationFinding("critical", key, f"Required section '{key}' is missing or empty"))
        elif value == placeholder(key) or value == [placeholder(key)]:
            findings.append(VerificationFinding("warning", key, f"Section '{key}' requires manual drafting"))

    if doc_type not in ZERO_PROSE_DOCS:
        amount = terms.approved_amount
        if not _contains(full_text, format_money(amount), f"${amount:,.0f}"):
            findings.append(VerificationFinding(
                "critical", "loan_amount", f"Loan amount {format_money(amount)} not found in document",
            ))
        rate = terms.rate.total_rate
        if not _contains(full_text, format_rate(rate), f"{rate * 100:.2f}%"):
            findings.append(VerificationFinding(
                "critical", "interest_rate", f"Interest rate {format_rate(rate)} not found in document",
            ))
        if not _contains(full_text, f"{terms.term_months} months"):
            findings.append(VerificationFinding(
                "warning", "term_months", f"Term of {terms.term_months} months not found in document",
            ))
        if not _contains(full_text, deal.borrower_name):
            findings.append(VerificationFinding(
                "warning", "borrower_name", f"Borrower name '{deal.borrower_name}' not found in document",
            ))
        for fee in terms.fees:
            if not _contains(full_text, fee.name):
                findings.append(VerificationFinding("warning", "fees", f"Fee '{fee.name}' not found in document"))

        if doc_type in COVENANT_DOCS:
            for covenant in terms.covenants:
                threshold = covenant.get("threshold")
                if threshold is None:
                    continue
                if not _contains(full_text, *threshold_candidates(threshold)):
                    findings.append(VerificationFinding(
                        "warning", "covenants",
                        f"Covenant '{covenant['name']}' threshold {threshold} not found in document",
                    ))

    if any(f.severity == "critical" for f in findings):
        status = DocVerificationStatus.FAILED
    elif findings:
        status = DocVerificationStatus.WARNINGS
    else:
        status = DocVerificationStatus.PASSED

    logger.debug("document_verified", doc_type=doc_type, status=status.value, findings=len(findings))
    return status, findings
