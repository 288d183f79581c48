"""
Deterministic document classifier.

Classifies financial documents by keywords in the OCR text and the labels
of detected key-value pairs, before any generative call. Three tiers are
tried in order: literal titles (high confidence), key-value labels
(medium), and contextual term combinations (medium). When nothing
matches, the caller may fall back to the generative service.
"""
import re
from dataclasses import dataclass
from typing import Iterable, Optional

import structlog

logger = structlog.get_logger(__name__)

DOC_TYPES = (
    "FORM_1040",
    "FORM_1120",
    "FORM_1120S",
    "FORM_1065",
    "SCHEDULE_K1",
    "W2",
    "BANK_STATEMENT_CHECKING",
    "BANK_STATEMENT_SAVINGS",
    "PROFIT_AND_LOSS",
    "BALANCE_SHEET",
    "RENT_ROLL",
)

DOC_TYPE_ALIASES = {
    "W-2": "W2",
    "W_2": "W2",
    "FORM_W2": "W2",
    "FORM_W-2": "W2",
    "1040": "FORM_1040",
    "1120": "FORM_1120",
    "1120S": "FORM_1120S",
    "1120-S": "FORM_1120S",
    "FORM_1120-S": "FORM_1120S",
    "1065": "FORM_1065",
    "SCHEDULE_C": "PROFIT_AND_LOSS",
    "SCHEDULE_E": "FORM_1040",
    "INCOME_STATEMENT": "PROFIT_AND_LOSS",
    "P&L": "PROFIT_AND_LOSS",
    "PNL": "PROFIT_AND_LOSS",
    "K-1": "SCHEDULE_K1",
    "K1": "SCHEDULE_K1",
    "SCHEDULE_K-1": "SCHEDULE_K1",
    "BANK_STATEMENT": "BANK_STATEMENT_CHECKING",
    "BANK_STATEMENTS": "BANK_STATEMENT_CHECKING",
    "TAX_RETURN_1040": "FORM_1040",
    "TAX_RETURN_1120": "FORM_1120",
    "TAX_RETURN_1120S": "FORM_1120S",
    "TAX_RETURN_1065": "FORM_1065",
    "1120_S": "FORM_1120S",
    "K_1": "SCHEDULE_K1",
    "FORM_K1": "SCHEDULE_K1",
}

BANK_NAMES = (
    "chase", "wells fargo", "bank of america", "citibank", "citi bank", "pnc",
    "us bank", "u.s. bank", "capital one", "td bank", "truist", "fifth third",
    "regions bank", "citizens bank", "huntington", "m&t bank", "keybank",
    "ally bank", "discover bank", "synchrony", "bmo", "first republic",
    "silicon valley bank", "comerica", "zions", "webster bank", "east west bank",
    "popular bank", "new york community bank", "valley national bank",
)


@dataclass
class ClassificationResult:
    doc_type: Optional[str]
    confidence: str  # high | medium | none
    method: str      # keyword | kv_key | generative | none

    @property
    def score(self) -> float:
        return {"high": 0.95, "medium": 0.75}.get(self.confidence, 0.0)


def normalize_doc_type(raw: Optional[str]) -> Optional[str]:
    """Map a free-form type label onto a known document type, or None."""
    if not raw:
        return None
    doc_type = str(raw).strip().upper()
    if doc_type in DOC_TYPES:
        return doc_type
    if doc_type in DOC_TYPE_ALIASES:
        return DOC_TYPE_ALIASES[doc_type]
    normalized = re.sub(r"[-\s]", "_", doc_type)
    if normalized in DOC_TYPE_ALIASES:
        return DOC_TYPE_ALIASES[normalized]
    normalized = re.sub(r"^FORM(?!_)", "FORM_", normalized)
    return normalized if normalized in DOC_TYPES else None


def _tier1(text: str) -> Optional[str]:
    # 1120-S must be checked before the generic 1120
    if re.search(r"form\s*1120[\s-]*s\b", text) or re.search(r"\b1120s\b", text) \
            or "income tax return for an s corporation" in text:
        return "FORM_1120S"
    if re.search(r"form\s*1120\b", text) or "u.s. corporation income tax return" in text:
        return "FORM_1120"
    if re.search(r"form\s*1065\b", text) or "return of partnership income" in text:
        return "FORM_1065"
    # K-1s reference 1040 in their instructions
    if re.search(r"schedule\s*k[\s-]*1\b", text) or "partner's share of income" in text \
            or "shareholder's share of income" in text:
        return "SCHEDULE_K1"
    if re.search(r"form\s*1040\b", text) or "u.s. individual income tax return" in text \
            or re.search(r"\b1040\b", text):
        return "FORM_1040"
    if re.search(r"schedule\s*c\b", text) or "profit or loss from business" in text:
        return "PROFIT_AND_LOSS"
    if re.search(r"schedule\s*e\b", text) or "supplemental income and loss" in text:
        return "FORM_1040"
    if re.search(r"\bw[\s-]*2\b", text) or "wage and tax statement" in text:
        return "W2"
    if re.search(r"rent\s*roll", text) or (re.search(r"tenant", text) and re.search(r"monthly\s*rent", text)):
        return "RENT_ROLL"
    return None


def _tier2(keys: Iterable[str]) -> Optional[str]:
    joined = " ".join(keys)
    if "adjusted gross income" in joined or "filing status" in joined or "taxable income" in joined:
        return "FORM_1040"
    if ("wages, tips" in joined or "wages,tips" in joined) \
            and "federal income tax withheld" in joined and "employer" in joined:
        return "W2"
    if "ordinary business income" in joined and "partner" in joined:
        return "FORM_1065"
    if "total assets" in joined and "total liabilities" in joined:
        return "BALANCE_SHEET"
    if ("net income" in joined or "net profit" in joined) and ("revenue" in joined or "sales" in joined):
        return "PROFIT_AND_LOSS"
    if "savings" in joined and ("balance" in joined or "account" in joined):
        return "BANK_STATEMENT_SAVINGS"
    if ("beginning balance" in joined or "ending balance" in joined) and "account number" in joined:
        return "BANK_STATEMENT_CHECKING"
    return None


def _tier3(text: str) -> Optional[str]:
    if "savings account" in text or "savings statement" in text:
        return "BANK_STATEMENT_SAVINGS"
    if any(bank in text for bank in BANK_NAMES) and "statement" in text and "account" in text:
        return "BANK_STATEMENT_CHECKING"
    # Balance sheet before P&L: some P&Ls mention assets, but not equity
    if re.search(r"\bassets\b", text) and re.search(r"\bliabilities\b", text) and re.search(r"\bequity\b", text):
        return "BALANCE_SHEET"
    if re.search(r"\brevenue\b", text) and re.search(r"\bexpenses\b", text) \
            and re.search(r"\bnet\s+(income|profit|loss)\b", text):
        return "PROFIT_AND_LOSS"
    if re.search(r"\bunit\b", text) and re.search(r"\btenant\b", text) and re.search(r"\brent\b", text) \
            and re.search(r"\$[\d,]+", text):
        return "RENT_ROLL"
    return None


def classify_by_keywords(raw_text: str, keys: Iterable[str] = ()) -> ClassificationResult:
    """Classify OCR output without any generative call."""
    text = (raw_text or "").lower()

    doc_type = _tier1(text)
    if doc_type:
        return ClassificationResult(doc_type, "high", "keyword")

    doc_type = _tier2(k.lower() for k in keys)
    if doc_type:
        return ClassificationResult(doc_type, "medium", "kv_key")

    doc_type = _tier3(text)
    if doc_type:
        return ClassificationResult(doc_type, "medium", "keyword")

    return ClassificationResult(None, "none", "none")


CLASSIFIER_PROMPT = """Classify this financial document. Respond in JSON format:
{
  "docType": "FORM_1040|FORM_1120|FORM_1120S|FORM_1065|SCHEDULE_K1|W2|BANK_STATEMENT_CHECKING|BANK_STATEMENT_SAVINGS|PROFIT_AND_LOSS|BALANCE_SHEET|RENT_ROLL|OTHER",
  "year": 2023,
  "details": "Brief explanation"
}

DOCUMENT TEXT:
"""


def classify_with_fallback(raw_text: str, keys: Iterable[str] = (), llm=None) -> ClassificationResult:
    """
    Keyword classification, then an optional generative fallback.

    Args:
        raw_text: OCR text.
        keys: Key-value labels.
        llm: Optional GenerativeService for documents no keyword matches.
    """
    keys = list(keys)
    result = classify_by_keywords(raw_text, keys)
    if result.doc_type or llm is None:
        return result

    try:
        parsed = llm.complete_json(CLASSIFIER_PROMPT + (raw_text or "")[:12000], max_tokens=300, label="classify")
    except ValueError as e:
        logger.warning("classification_response_unparseable", error=str(e))
        return result

    doc_type = normalize_doc_type(parsed.get("docType"))
    if doc_type is None:
        return result
    return ClassificationResult(doc_type, "medium", "generative")
