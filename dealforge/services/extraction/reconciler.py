"""
Extraction reconciler.

Merges the OCR-derived (primary) extraction and the generative (secondary)
extraction of the same source document into one record and flags every
field where the two disagree beyond tolerance.
"""
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from dealforge.services.extraction.values import (
    deep_copy,
    is_number,
    iter_leaves,
    normalize_text,
    parse_dollar_amount,
    set_path,
)

logger = structlog.get_logger(__name__)

AGREED_CONFIDENCE = 0.99
DISAGREEMENT_CONFIDENCE = 0.5
SINGLE_SOURCE_CONFIDENCE = 0.7

PROVENANCE_AGREED = "agreed"
PROVENANCE_DISAGREEMENT = "disagreement"
PROVENANCE_PRIMARY_ONLY = "textract-only"
PROVENANCE_SECONDARY_ONLY = "ai-only"


@dataclass(frozen=True)
class ReconcileTolerance:
    """Numeric agreement thresholds."""
    abs_tol: float = 1.0
    pct_tol: float = 0.02
    fail_pct: float = 0.20


@dataclass
class ReconciledField:
    """One leaf of the merged record."""
    path: str
    value: Any
    provenance: str
    confidence: float
    textract_value: Any = None
    ai_value: Any = None
    pct_difference: Optional[float] = None
    severity: Optional[str] = None  # FAIL | WARN on disagreement


@dataclass
class ReconciliationResult:
    merged: Dict[str, Any]
    fields: List[ReconciledField] = field(default_factory=list)
    disagreements: List[ReconciledField] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fields": [asdict(f) for f in self.fields],
            "disagreements": [asdict(f) for f in self.disagreements],
            "agreed_count": sum(1 for f in self.fields if f.provenance == PROVENANCE_AGREED),
            "single_source_count": sum(
                1 for f in self.fields
                if f.provenance in (PROVENANCE_PRIMARY_ONLY, PROVENANCE_SECONDARY_ONLY)
            ),
        }


def _as_number(value: Any) -> Optional[float]:
    if is_number(value):
        return float(value)
    if isinstance(value, str):
        return parse_dollar_amount(value)
    return None


def percent_difference(a: float, b: float) -> float:
    """|a-b| relative to the larger magnitude; 0 when both are zero."""
    denominator = max(abs(a), abs(b))
    if denominator == 0:
        return 0.0
    return abs(a - b) / denominator


def _compare(path: str, primary: Any, secondary: Any, tolerance: ReconcileTolerance) -> ReconciledField:
    a_num, b_num = _as_number(primary), _as_number(secondary)
    if a_num is not None and b_num is not None:
        diff = abs(a_num - b_num)
        pct = percent_difference(a_num, b_num)
        allowed = max(tolerance.abs_tol, tolerance.pct_tol * max(abs(a_num), abs(b_num)))
        if diff <= allowed:
            return ReconciledField(
                path=path,
                value=secondary if is_number(secondary) else b_num,
                provenance=PROVENANCE_AGREED,
                confidence=AGREED_CONFIDENCE,
                textract_value=primary,
                ai_value=secondary,
                pct_difference=round(pct, 4),
            )
        return ReconciledField(
            path=path,
            value=secondary,
            provenance=PROVENANCE_DISAGREEMENT,
            confidence=DISAGREEMENT_CONFIDENCE,
            textract_value=primary,
            ai_value=secondary,
            pct_difference=round(pct, 4),
            severity="FAIL" if pct > tolerance.fail_pct else "WARN",
        )

    if normalize_text(primary) == normalize_text(secondary):
        return ReconciledField(
            path=path,
            value=secondary,
            provenance=PROVENANCE_AGREED,
            confidence=AGREED_CONFIDENCE,
            textract_value=primary,
            ai_value=secondary,
        )
    return ReconciledField(
        path=path,
        value=secondary,
        provenance=PROVENANCE_DISAGREEMENT,
        confidence=DISAGREEMENT_CONFIDENCE,
        textract_value=primary,
        ai_value=secondary,
        severity="FAIL",
    )


def reconcile_extractions(
    primary: Optional[Dict[str, Any]],
    secondary: Optional[Dict[str, Any]],
    tolerance: Optional[ReconcileTolerance] = None,
) -> ReconciliationResult:
    """
    Reconcile two extraction payloads for the same document.

    Args:
        primary: OCR/key-value derived extraction.
        secondary: Generative structured extraction.
        tolerance: Numeric agreement thresholds.

    Returns:
        ReconciliationResult with the merged record, every field's
        provenance, and the list of disagreements. Inputs are not mutated.
    """
    tolerance = tolerance or ReconcileTolerance()
    primary_leaves = dict(iter_leaves(primary or {}))
    secondary_leaves = dict(iter_leaves(secondary or {}))

    merged = deep_copy(secondary or {})
    fields: List[ReconciledField] = []

    for path in sorted(set(primary_leaves) | set(secondary_leaves)):
        in_primary = path in primary_leaves
        in_secondary = path in secondary_leaves

        if in_primary and in_secondary:
            reconciled = _compare(path, primary_leaves[path], secondary_leaves[path], tolerance)
            set_path(merged, path, reconciled.value)
        elif in_primary:
            reconciled = ReconciledField(
                path=path,
                value=primary_leaves[path],
                provenance=PROVENANCE_PRIMARY_ONLY,
                confidence=SINGLE_SOURCE_CONFIDENCE,
                textract_value=primary_leaves[path],
            )
            set_path(merged, path, deep_copy(primary_leaves[path]))
        else:
            reconciled = ReconciledField(
                path=path,
                value=secondary_leaves[path],
                provenance=PROVENANCE_SECONDARY_ONLY,
                confidence=SINGLE_SOURCE_CONFIDENCE,
                ai_value=secondary_leaves[path],
            )
        fields.append(reconciled)

    disagreements = [f for f in fields if f.provenance == PROVENANCE_DISAGREEMENT]
    logger.info(
        "extractions_reconciled",
        field_count=len(fields),
        disagreement_count=len(disagreements),
        fail_count=sum(1 for f in disagreements if f.severity == "FAIL"),
    )
    return ReconciliationResult(merged=merged, fields=fields, disagreements=disagreements)
