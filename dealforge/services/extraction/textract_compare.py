"""
Structured extraction vs OCR key-value comparison.

Every numeric field of the merged extraction is looked up among the OCR
key-value pairs by label. A field whose closest labelled value is more
than $1 away is a mismatch; a field with no label at all is reported as
unverifiable, which is informational only.
"""
import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence

from dealforge.services.extraction.field_maps import fuzzy_match_key
from dealforge.services.extraction.ocr import KeyValuePair
from dealforge.services.extraction.values import flatten_numeric, parse_dollar_amount

ABSOLUTE_TOLERANCE = 1.0

METADATA_SEGMENTS = (
    "page", "confidence", "status", "type", "name", "address",
    "ein", "ssn", "tin", "filingstatus", "taxyear", "year", "month",
    "businesscode", "accountnumber", "routingnumber", "description",
    "label", "category", "date", "id", "index", "count", "unit",
    "nsfcount", "totalunits", "occupiedunits", "vacantunits",
)


@dataclass
class TextractComparison:
    field_path: str
    structured_value: float
    textract_value: Optional[float]
    textract_key: Optional[str]
    matched: bool
    difference: float
    page: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def is_metadata_field(path: str) -> bool:
    last = re.sub(r"\[\d+\]$", "", path.split(".")[-1]).lower()
    if path.split(".")[0].lower() == "metadata":
        return True
    return any(
        last == segment or last.startswith(segment + "_") or last.endswith("_" + segment)
        for segment in METADATA_SEGMENTS
    )


def compare_textract_to_structured(
    doc_type: Optional[str],
    structured: Optional[Dict[str, Any]],
    key_values: Sequence[KeyValuePair],
) -> List[TextractComparison]:
    """
    Compare each numeric structured field with its OCR reading.

    Args:
        doc_type: Classified document type, selecting the label table.
        structured: Merged extraction payload.
        key_values: OCR key-value pairs for the same document.

    Returns:
        One comparison per non-zero, non-metadata numeric field.
    """
    if not structured or not key_values:
        return []

    parsed = [(kv, parse_dollar_amount(kv.value)) for kv in key_values]
    comparisons: List[TextractComparison] = []

    for path, value in flatten_numeric(structured):
        if value == 0 or is_metadata_field(path):
            continue

        best = None
        best_diff = None
        for kv, number in parsed:
            if number is None or not fuzzy_match_key(kv.key, path, doc_type):
                continue
            diff = abs(value - number)
            if best_diff is None or diff < best_diff:
                best, best_diff = (kv, number), diff

        if best is not None:
            kv, number = best
            comparisons.append(TextractComparison(
                field_path=path,
                structured_value=value,
                textract_value=number,
                textract_key=kv.key,
                matched=best_diff <= ABSOLUTE_TOLERANCE,
                difference=round(best_diff, 2),
                page=kv.page,
            ))
        else:
            comparisons.append(TextractComparison(
                field_path=path,
                structured_value=value,
                textract_value=None,
                textract_key=None,
                matched=False,
                difference=round(abs(value), 2),
            ))

    return comparisons


def unlabelled_count(comparisons: Sequence[TextractComparison]) -> int:
    """Fields with no OCR label at all."""
    return sum(1 for c in comparisons if c.textract_value is None)
