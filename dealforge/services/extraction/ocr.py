"""
OCR service for source documents.

Extracts page text, key-value pairs and tables from uploaded files using
pdfplumber. Plain-text uploads are split on form feeds into pages. The
result is the primary (non-generative) view of the document.
"""
import io
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

import pdfplumber
import structlog

logger = structlog.get_logger(__name__)

# "Total income ........ $125,000" / "Line 9 Total income: (1,200)"
_KV_LINE_RE = re.compile(
    r"^(?P<key>.*?[A-Za-z].*?)[\s:.$]*(?P<value>\(?-?\$?\s?\d[\d,]*(?:\.\d+)?\)?%?)\s*$"
)


@dataclass
class KeyValuePair:
    """A label and the value printed next to it."""
    key: str
    value: str
    confidence: float
    page: int


@dataclass
class PageText:
    page_number: int
    text: str


@dataclass
class DetectedTable:
    page: int
    rows: List[List[str]]


@dataclass
class OCRResult:
    """Complete OCR result for a document."""
    pages: List[PageText]
    page_count: int
    key_values: List[KeyValuePair] = field(default_factory=list)
    tables: List[DetectedTable] = field(default_factory=list)

    @property
    def raw_text(self) -> str:
        return "\n".join(p.text for p in self.pages)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "page_count": self.page_count,
            "pages": [asdict(p) for p in self.pages],
            "key_values": [asdict(kv) for kv in self.key_values],
            "tables": [asdict(t) for t in self.tables],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OCRResult":
        return cls(
            pages=[PageText(**p) for p in data.get("pages", [])],
            page_count=data.get("page_count", 0),
            key_values=[KeyValuePair(**kv) for kv in data.get("key_values", [])],
            tables=[DetectedTable(**t) for t in data.get("tables", [])],
        )


def parse_key_values(text: str, page: int, confidence: float = 1.0) -> List[KeyValuePair]:
    """Detect "label value" lines in page text."""
    pairs = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        match = _KV_LINE_RE.match(line)
        if not match:
            continue
        key = match.group("key").strip().rstrip(":.").strip()
        if not key:
            continue
        pairs.append(KeyValuePair(key=key, value=match.group("value").strip(), confidence=confidence, page=page))
    return pairs


class OCRService:
    """
    Service for extracting text from source documents.

    Uses pdfplumber for PDFs; anything else is decoded as UTF-8 text.
    """

    PDF_MAGIC = b"%PDF"

    def extract(self, data: bytes, file_name: str = "") -> OCRResult:
        """
        Extract text, key-value pairs and tables.

        Args:
            data: Raw file bytes.
            file_name: Original file name, for logging.

        Returns:
            OCRResult for the document.
        """
        if data[:4] == self.PDF_MAGIC:
            result = self._extract_pdf(data, file_name)
        else:
            result = self._extract_text(data)

        logger.info(
            "ocr_completed",
            file_name=file_name,
            page_count=result.page_count,
            key_values=len(result.key_values),
            tables=len(result.tables),
        )
        return result

    def _extract_pdf(self, data: bytes, file_name: str) -> OCRResult:
        pages: List[PageText] = []
        key_values: List[KeyValuePair] = []
        tables: List[DetectedTable] = []

        try:
            with pdfplumber.open(io.BytesIO(data)) as pdf:
                for page_num, page in enumerate(pdf.pages, start=1):
                    text = page.extract_text() or ""
                    pages.append(PageText(page_number=page_num, text=text))
                    key_values.extend(parse_key_values(text, page_num))
                    for table in page.extract_tables() or []:
                        rows = [[(cell or "").strip() for cell in row] for row in table if row]
                        if rows:
                            tables.append(DetectedTable(page=page_num, rows=rows))
        except Exception as e:
            logger.error("pdf_extraction_failed", file_name=file_name, error=str(e))
            raise

        return OCRResult(pages=pages, page_count=len(pages), key_values=key_values, tables=tables)

    def _extract_text(self, data: bytes) -> OCRResult:
        text = data.decode("utf-8", errors="replace")
        chunks = text.split("\f") if "\f" in text else [text]
        pages = [PageText(page_number=i, text=chunk) for i, chunk in enumerate(chunks, start=1)]
        key_values: List[KeyValuePair] = []
        for page in pages:
            key_values.extend(parse_key_values(page.text, page.page_number))
        return OCRResult(pages=pages, page_count=len(pages), key_values=key_values)


# Singleton instance
_ocr_service_instance: Optional[OCRService] = None


def get_ocr_service() -> OCRService:
    """Get singleton OCR service instance."""
    global _ocr_service_instance
    if _ocr_service_instance is None:
        _ocr_service_instance = OCRService()
    return _ocr_service_instance
