"""
Deal API routes.

Intake, source uploads, pipeline control and operator edits for deals.
Long-running pipeline work is queued on the Celery workers; the request
only checks that the deal can accept it.
"""
import uuid
from datetime import datetime
from typing import Any, List, Optional

import structlog
from fastapi import APIRouter, Depends, File, UploadFile, status
from pydantic import BaseModel, Field

from dealforge.api.dependencies import (
    TaskDispatcher,
    get_actor_id,
    get_organization_id,
    get_pipeline,
    get_store,
    get_task_dispatcher,
)
from dealforge.exceptions import ExternalServiceError, ValidationError
from dealforge.middleware.rate_limit import rate_limit
from dealforge.models.deal import DealStatus
from dealforge.models.verification_issue import IssueCheckType, IssueSeverity, IssueStatus
from dealforge.services.pipeline import DealPipeline, ensure_resumable, ensure_runnable, ensure_terms_pending
from dealforge.services.store import DealStore

logger = structlog.get_logger(__name__)

router = APIRouter()


# =============================================================================
# Request/Response Models
# =============================================================================

class CreateDealRequest(BaseModel):
    """Intake fields for a new deal."""
    borrower_name: str = Field(..., min_length=1, max_length=255)
    loan_amount: float = Field(..., gt=0)
    loan_purpose: Optional[str] = None
    property_state: Optional[str] = Field(None, min_length=2, max_length=2)
    property_value: Optional[float] = Field(None, ge=0)
    loan_program: Optional[str] = None
    is_commercial: bool = True
    requested_term_months: Optional[int] = Field(None, gt=0)


class UpdateDealRequest(BaseModel):
    """Partial intake update. Only supplied fields are written."""
    borrower_name: Optional[str] = Field(None, min_length=1, max_length=255)
    loan_amount: Optional[float] = Field(None, gt=0)
    loan_purpose: Optional[str] = None
    property_state: Optional[str] = Field(None, min_length=2, max_length=2)
    property_value: Optional[float] = Field(None, ge=0)
    loan_program: Optional[str] = None
    is_commercial: Optional[bool] = None
    requested_term_months: Optional[int] = Field(None, gt=0)


class DealResponse(BaseModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    borrower_name: str
    loan_amount: float
    loan_purpose: Optional[str]
    property_state: Optional[str]
    property_value: Optional[float]
    loan_program: Optional[str]
    is_commercial: bool
    requested_term_months: Optional[int]
    status: DealStatus
    last_step: Optional[str]
    error_step: Optional[str]
    error_message: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class SourceDocumentResponse(BaseModel):
    id: uuid.UUID
    deal_id: uuid.UUID
    file_name: str
    doc_type: Optional[str]
    classification_confidence: Optional[float]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class IssueResponse(BaseModel):
    id: uuid.UUID
    deal_id: uuid.UUID
    source_document_id: Optional[uuid.UUID]
    check_type: IssueCheckType
    field_path: str
    description: str
    expected: Optional[Any]
    actual: Optional[Any]
    difference: Optional[float]
    severity: IssueSeverity
    status: IssueStatus
    resolved_by: Optional[str]
    resolved_at: Optional[datetime]
    resolution_note: Optional[str]
    corrected_value: Optional[Any]

    class Config:
        from_attributes = True


class IssueListResponse(BaseModel):
    issues: List[IssueResponse]
    total: int
    pending: int


class PipelineAcceptedResponse(BaseModel):
    """Queued pipeline work."""
    deal_id: uuid.UUID
    status: str
    task_id: Optional[str]


class MessageResponse(BaseModel):
    message: str


def _enqueue(action: str, deal_id, org_id, actor_id, dispatch) -> Optional[str]:
    try:
        return dispatch(str(deal_id), str(org_id), actor_id)
    except Exception as e:
        logger.error("failed_to_queue_pipeline", action=action, deal_id=str(deal_id), error=str(e))
        raise ExternalServiceError("task_queue", f"Could not queue {action}: {e}")


# =============================================================================
# Deal Endpoints
# =============================================================================

@router.post(
    "/deals",
    response_model=DealResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
    summary="Create deal",
)
async def create_deal(
    request: CreateDealRequest,
    org_id: uuid.UUID = Depends(get_organization_id),
    actor_id: Optional[str] = Depends(get_actor_id),
    pipeline: DealPipeline = Depends(get_pipeline),
) -> DealResponse:
    deal = pipeline.create_deal(org_id, request.model_dump(), actor_id=actor_id)
    return DealResponse.model_validate(deal)


@router.get("/deals/{deal_id}", response_model=DealResponse, summary="Get deal")
async def get_deal(
    deal_id: uuid.UUID,
    org_id: uuid.UUID = Depends(get_organization_id),
    store: DealStore = Depends(get_store),
) -> DealResponse:
    return DealResponse.model_validate(store.get_deal(deal_id, org_id))


@router.patch(
    "/deals/{deal_id}",
    response_model=DealResponse,
    dependencies=[Depends(rate_limit("write"))],
    summary="Edit deal intake fields",
    description="Allowed only while the deal is CREATED, UPLOADED or NEEDS_REVIEW.",
)
async def update_deal(
    deal_id: uuid.UUID,
    request: UpdateDealRequest,
    org_id: uuid.UUID = Depends(get_organization_id),
    actor_id: Optional[str] = Depends(get_actor_id),
    pipeline: DealPipeline = Depends(get_pipeline),
) -> DealResponse:
    patch = request.model_dump(exclude_unset=True)
    if not patch:
        raise ValidationError("No fields to update")
    deal = pipeline.update_deal(deal_id, org_id, patch, actor_id=actor_id)
    return DealResponse.model_validate(deal)


@router.delete(
    "/deals/{deal_id}",
    response_model=MessageResponse,
    dependencies=[Depends(rate_limit("write"))],
    summary="Soft delete deal",
)
async def delete_deal(
    deal_id: uuid.UUID,
    org_id: uuid.UUID = Depends(get_organization_id),
    actor_id: Optional[str] = Depends(get_actor_id),
    pipeline: DealPipeline = Depends(get_pipeline),
) -> MessageResponse:
    pipeline.soft_delete_deal(deal_id, org_id, actor_id=actor_id)
    return MessageResponse(message="Deal deleted")


@router.post(
    "/deals/{deal_id}/documents",
    response_model=SourceDocumentResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
    summary="Upload source document",
)
async def upload_document(
    deal_id: uuid.UUID,
    file: UploadFile = File(...),
    org_id: uuid.UUID = Depends(get_organization_id),
    actor_id: Optional[str] = Depends(get_actor_id),
    pipeline: DealPipeline = Depends(get_pipeline),
) -> SourceDocumentResponse:
    data = await file.read()
    doc = pipeline.attach_document(
        deal_id, org_id, file.filename, data,
        content_type=file.content_type or "application/octet-stream",
        actor_id=actor_id,
    )
    return SourceDocumentResponse.model_validate(doc)


# =============================================================================
# Pipeline Endpoints
# =============================================================================

@router.post(
    "/deals/{deal_id}/pipeline",
    response_model=PipelineAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(rate_limit("pipeline"))],
    summary="Run pipeline",
    description="Queue the pipeline for a deal. An ERROR deal restarts at its failed step.",
)
async def run_pipeline(
    deal_id: uuid.UUID,
    org_id: uuid.UUID = Depends(get_organization_id),
    actor_id: Optional[str] = Depends(get_actor_id),
    store: DealStore = Depends(get_store),
    tasks: TaskDispatcher = Depends(get_task_dispatcher),
) -> PipelineAcceptedResponse:
    deal = store.get_deal(deal_id, org_id)
    ensure_runnable(deal)
    task_id = _enqueue("pipeline", deal.id, org_id, actor_id, tasks.run_pipeline)
    logger.info("pipeline_queued", deal_id=str(deal.id), task_id=task_id)
    return PipelineAcceptedResponse(deal_id=deal.id, status=deal.status.value, task_id=task_id)


@router.post(
    "/deals/{deal_id}/pipeline/resume",
    response_model=PipelineAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(rate_limit("pipeline"))],
    summary="Resume after review",
)
async def resume_pipeline(
    deal_id: uuid.UUID,
    org_id: uuid.UUID = Depends(get_organization_id),
    actor_id: Optional[str] = Depends(get_actor_id),
    store: DealStore = Depends(get_store),
    tasks: TaskDispatcher = Depends(get_task_dispatcher),
) -> PipelineAcceptedResponse:
    deal = store.get_deal(deal_id, org_id)
    ensure_resumable(deal, store.count_pending_issues(deal.id))
    task_id = _enqueue("resume", deal.id, org_id, actor_id, tasks.resume_pipeline)
    logger.info("pipeline_resume_queued", deal_id=str(deal.id), task_id=task_id)
    return PipelineAcceptedResponse(deal_id=deal.id, status=deal.status.value, task_id=task_id)


@router.post(
    "/deals/{deal_id}/approve-terms",
    response_model=PipelineAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(rate_limit("pipeline"))],
    summary="Approve terms held for review",
)
async def approve_terms(
    deal_id: uuid.UUID,
    org_id: uuid.UUID = Depends(get_organization_id),
    actor_id: Optional[str] = Depends(get_actor_id),
    store: DealStore = Depends(get_store),
    tasks: TaskDispatcher = Depends(get_task_dispatcher),
) -> PipelineAcceptedResponse:
    deal = store.get_deal(deal_id, org_id)
    ensure_terms_pending(deal)
    task_id = _enqueue("approve_terms", deal.id, org_id, actor_id, tasks.approve_terms)
    logger.info("terms_approval_queued", deal_id=str(deal.id), task_id=task_id)
    return PipelineAcceptedResponse(deal_id=deal.id, status=deal.status.value, task_id=task_id)


@router.get("/deals/{deal_id}/issues", response_model=IssueListResponse, summary="List verification issues")
async def list_issues(
    deal_id: uuid.UUID,
    status_filter: Optional[str] = None,
    org_id: uuid.UUID = Depends(get_organization_id),
    store: DealStore = Depends(get_store),
) -> IssueListResponse:
    deal = store.get_deal(deal_id, org_id)
    issue_status = None
    if status_filter:
        try:
            issue_status = IssueStatus(status_filter.upper())
        except ValueError:
            valid = [s.value for s in IssueStatus]
            raise ValidationError(
                message="Invalid status filter",
                errors=[{"field": "status_filter", "message": f"Must be one of: {', '.join(valid)}"}],
            )
    issues = store.list_issues(deal.id, issue_status)
    return IssueListResponse(
        issues=[IssueResponse.model_validate(i) for i in issues],
        total=len(issues),
        pending=store.count_pending_issues(deal.id),
    )
