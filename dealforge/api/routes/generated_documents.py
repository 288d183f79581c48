"""
Generated document routes.

Listing, operator-triggered regeneration, signed downloads of loan
documents and credit memos, and the packaged loan file.
"""
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field

from dealforge.api.dependencies import (
    get_actor_id,
    get_audit,
    get_llm,
    get_organization_id,
    get_storage,
    get_store,
)
from dealforge.exceptions import CreditMemoNotFoundError, DocumentVersionNotFoundError
from dealforge.middleware.rate_limit import rate_limit
from dealforge.models.generated_document import (
    ComplianceStatus,
    DocumentStatus,
    DocumentVersion,
    DocVerificationStatus,
    GeneratedDocument,
)
from dealforge.services.audit_sink import AuditSink
from dealforge.services.credit_memo import CreditMemoService
from dealforge.services.documents import DocumentGenerator, RegenerationService, build_package
from dealforge.services.llm_client import GenerativeService
from dealforge.services.storage import ObjectStorage
from dealforge.services.store import DealStore

logger = structlog.get_logger(__name__)

router = APIRouter()


# =============================================================================
# Request/Response Models
# =============================================================================

class RegenerateRequest(BaseModel):
    feedback: Optional[str] = Field(None, max_length=5000)
    expected_version: Optional[int] = Field(None, ge=1)


class GeneratedDocumentResponse(BaseModel):
    id: uuid.UUID
    deal_id: uuid.UUID
    doc_type: str
    version: int
    status: DocumentStatus
    compliance_status: Optional[ComplianceStatus]
    compliance_issues: Optional[List[Dict[str, Any]]]
    regulatory_checks: Optional[List[Dict[str, Any]]]
    verification_status: Optional[DocVerificationStatus]
    verification_issues: Optional[List[Dict[str, Any]]]
    compliance_cycles: int
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class GeneratedDocumentListResponse(BaseModel):
    documents: List[GeneratedDocumentResponse]
    total: int


class DownloadResponse(BaseModel):
    url: str
    version: int
    expires_in: int


class RetryResultResponse(BaseModel):
    document_id: uuid.UUID
    doc_type: str
    success: bool
    version: Optional[int] = None
    status: Optional[str] = None
    error_code: Optional[str] = None
    error: Optional[str] = None


class RetryDocumentsResponse(BaseModel):
    retried: int
    succeeded: int
    failed: int
    results: List[RetryResultResponse]


# =============================================================================
# Endpoints
# =============================================================================

@router.get(
    "/deals/{deal_id}/generated-documents",
    response_model=GeneratedDocumentListResponse,
    summary="List generated documents",
)
async def list_generated_documents(
    deal_id: uuid.UUID,
    org_id: uuid.UUID = Depends(get_organization_id),
    store: DealStore = Depends(get_store),
) -> GeneratedDocumentListResponse:
    deal = store.get_deal(deal_id, org_id)
    docs = (
        store.db.query(GeneratedDocument)
        .filter(GeneratedDocument.deal_id == deal.id)
        .order_by(GeneratedDocument.doc_type)
        .all()
    )
    return GeneratedDocumentListResponse(
        documents=[GeneratedDocumentResponse.model_validate(d) for d in docs],
        total=len(docs),
    )


@router.post(
    "/generated-documents/{document_id}/regenerate",
    response_model=GeneratedDocumentResponse,
    dependencies=[Depends(rate_limit("heavy"))],
    summary="Regenerate document",
    description=(
        "Regenerate a document as a new version with feedback from its findings. "
        "Returns 409 when another regeneration holds the document or expected_version is stale."
    ),
)
# Sync so FastAPI runs generation in its threadpool
def regenerate_document(
    document_id: uuid.UUID,
    request: RegenerateRequest,
    org_id: uuid.UUID = Depends(get_organization_id),
    actor_id: Optional[str] = Depends(get_actor_id),
    store: DealStore = Depends(get_store),
    storage: ObjectStorage = Depends(get_storage),
    llm: GenerativeService = Depends(get_llm),
    audit: AuditSink = Depends(get_audit),
) -> GeneratedDocumentResponse:
    service = RegenerationService(store, storage, DocumentGenerator(llm), audit=audit)
    doc = service.regenerate(
        document_id,
        org_id,
        actor_id,
        feedback_notes=request.feedback,
        expected_version=request.expected_version,
    )
    return GeneratedDocumentResponse.model_validate(doc)


@router.get(
    "/generated-documents/{document_id}/download",
    response_model=DownloadResponse,
    summary="Get signed download URL",
)
async def download_document(
    document_id: uuid.UUID,
    version: Optional[int] = None,
    org_id: uuid.UUID = Depends(get_organization_id),
    store: DealStore = Depends(get_store),
    storage: ObjectStorage = Depends(get_storage),
) -> DownloadResponse:
    doc = store.get_document(document_id, org_id)
    key, resolved_version = doc.storage_key, doc.version
    if version is not None and version != doc.version:
        row = (
            store.db.query(DocumentVersion)
            .filter(DocumentVersion.document_id == doc.id, DocumentVersion.version == version)
            .first()
        )
        if row is None:
            raise DocumentVersionNotFoundError(str(doc.id), version)
        key, resolved_version = row.storage_key, row.version

    logger.info("document_download_signed", doc_id=str(doc.id), version=resolved_version)
    return DownloadResponse(
        url=storage.presigned_url(key),
        version=resolved_version,
        expires_in=storage.default_ttl,
    )


@router.post(
    "/deals/{deal_id}/retry-documents",
    response_model=RetryDocumentsResponse,
    dependencies=[Depends(rate_limit("heavy"))],
    summary="Retry flagged documents",
    description="Regenerate every document that was flagged or failed compliance, one at a time.",
)
def retry_documents(
    deal_id: uuid.UUID,
    org_id: uuid.UUID = Depends(get_organization_id),
    actor_id: Optional[str] = Depends(get_actor_id),
    store: DealStore = Depends(get_store),
    storage: ObjectStorage = Depends(get_storage),
    llm: GenerativeService = Depends(get_llm),
    audit: AuditSink = Depends(get_audit),
) -> RetryDocumentsResponse:
    service = RegenerationService(store, storage, DocumentGenerator(llm), audit=audit)
    outcomes = service.retry_flagged(deal_id, org_id, actor_id)
    succeeded = sum(1 for o in outcomes if o.success)
    return RetryDocumentsResponse(
        retried=len(outcomes),
        succeeded=succeeded,
        failed=len(outcomes) - succeeded,
        results=[RetryResultResponse(**vars(o)) for o in outcomes],
    )


@router.get(
    "/deals/{deal_id}/memo",
    response_model=DownloadResponse,
    summary="Get signed credit memo URL",
)
async def download_memo(
    deal_id: uuid.UUID,
    version: Optional[int] = None,
    org_id: uuid.UUID = Depends(get_organization_id),
    store: DealStore = Depends(get_store),
    storage: ObjectStorage = Depends(get_storage),
) -> DownloadResponse:
    deal = store.get_deal(deal_id, org_id)
    memo = CreditMemoService(store.db, storage).get(deal.id, version)
    if memo is None:
        raise CreditMemoNotFoundError(str(deal.id), version)

    logger.info("credit_memo_download_signed", deal_id=str(deal.id), version=memo.version)
    return DownloadResponse(
        url=storage.presigned_url(memo.storage_key),
        version=memo.version,
        expires_in=storage.default_ttl,
    )


@router.get(
    "/deals/{deal_id}/package",
    summary="Download loan package",
    description="ZIP of the current generated documents and the latest credit memo.",
    response_class=Response,
)
def download_package(
    deal_id: uuid.UUID,
    org_id: uuid.UUID = Depends(get_organization_id),
    store: DealStore = Depends(get_store),
    storage: ObjectStorage = Depends(get_storage),
) -> Response:
    deal = store.get_deal(deal_id, org_id)
    memo = CreditMemoService(store.db, storage).get(deal.id)
    content, filename = build_package(deal, list(deal.generated_documents), memo, storage)
    return Response(
        content=content,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
