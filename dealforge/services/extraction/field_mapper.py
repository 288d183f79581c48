"""
Deterministic extraction from OCR key-value pairs.

Maps each printed label onto the structured field it names, using the
label tables for the document type. This is the primary extraction that
the generative extraction is reconciled against.
"""
from typing import Any, Dict, Iterable, Optional

import structlog

from dealforge.services.extraction.field_maps import FORM_FIELD_LABELS, best_label_match
from dealforge.services.extraction.ocr import KeyValuePair
from dealforge.services.extraction.values import parse_dollar_amount, set_path

logger = structlog.get_logger(__name__)


def map_key_values(doc_type: Optional[str], key_values: Iterable[KeyValuePair]) -> Dict[str, Any]:
    """
    Build a structured payload from OCR key-value pairs.

    The first readable value per field wins, in page order; later
    duplicates (carry-forward totals, summaries) are ignored.

    Args:
        doc_type: Classified document type.
        key_values: OCR key-value pairs.

    Returns:
        Nested dict keyed like the generative extraction. Empty when the
        document type has no label table.
    """
    table = FORM_FIELD_LABELS.get(doc_type or "")
    if not table:
        return {}

    payload: Dict[str, Any] = {}
    filled = set()
    for kv in sorted(key_values, key=lambda kv: kv.page):
        path = best_label_match(kv.key, table)
        if path is None or path in filled:
            continue
        value = parse_dollar_amount(kv.value)
        if value is None:
            continue
        set_path(payload, path, value)
        filled.add(path)

    logger.info("key_values_mapped", doc_type=doc_type, field_count=len(filled))
    return payload
