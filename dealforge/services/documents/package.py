"""
Loan package archive.

Bundles a deal's current generated documents and its latest credit memo
into one ZIP for download.
"""
import io
import re
import zipfile
from typing import List, Optional, Tuple

import structlog

from dealforge.exceptions import NothingToDownloadError
from dealforge.models.credit_memo import CreditMemo
from dealforge.models.generated_document import GeneratedDocument
from dealforge.services.documents.render import doc_title
from dealforge.services.storage import ObjectStorage

logger = structlog.get_logger(__name__)

_UNSAFE_RE = re.compile(r"[^a-zA-Z0-9 ]")


def package_filename(borrower_name: str) -> str:
    borrower = "_".join(_UNSAFE_RE.sub("", borrower_name or "").split()) or "Deal"
    return f"{borrower}_Loan_Package.zip"


def entry_name(doc_type: str) -> str:
    return "_".join(doc_title(doc_type).split()) + ".docx"


def build_package(
    deal,
    documents: List[GeneratedDocument],
    memo: Optional[CreditMemo],
    storage: ObjectStorage,
) -> Tuple[bytes, str]:
    """
    Build the package archive.

    Returns:
        (zip bytes, download filename)

    Raises:
        NothingToDownloadError: the deal has no generated documents.
        StorageError: a stored document is missing.
    """
    if not documents:
        raise NothingToDownloadError(str(deal.id))

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        for doc in sorted(documents, key=lambda d: d.doc_type):
            zf.writestr(entry_name(doc.doc_type), storage.get(doc.storage_key))
        if memo is not None:
            zf.writestr("Credit_Memo.docx", storage.get(memo.storage_key))

    logger.info(
        "loan_package_built",
        deal_id=str(deal.id),
        documents=len(documents),
        memo_version=memo.version if memo is not None else None,
    )
    buffer.seek(0)
    return buffer.read(), package_filename(deal.borrower_name)
