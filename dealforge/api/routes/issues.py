"""
Verification issue routes.
"""
import uuid
from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from dealforge.api.dependencies import get_actor_id, get_organization_id, get_pipeline
from dealforge.api.routes.deals import IssueResponse
from dealforge.middleware.rate_limit import rate_limit
from dealforge.services.pipeline import DealPipeline

logger = structlog.get_logger(__name__)

router = APIRouter()


class ResolveIssueRequest(BaseModel):
    """Operator decision on a PENDING issue."""
    resolution: str = Field(..., description="CONFIRMED, CORRECTED or NOTED")
    note: Optional[str] = None
    corrected_value: Optional[Any] = None


@router.post(
    "/issues/{issue_id}/resolve",
    response_model=IssueResponse,
    dependencies=[Depends(rate_limit("write"))],
    summary="Resolve verification issue",
    description="CORRECTED requires corrected_value; the value is applied when the pipeline resumes.",
)
async def resolve_issue(
    issue_id: uuid.UUID,
    request: ResolveIssueRequest,
    org_id: uuid.UUID = Depends(get_organization_id),
    actor_id: Optional[str] = Depends(get_actor_id),
    pipeline: DealPipeline = Depends(get_pipeline),
) -> IssueResponse:
    issue = pipeline.resolve_issue(
        issue_id,
        org_id,
        request.resolution,
        actor_id=actor_id,
        note=request.note,
        corrected_value=request.corrected_value,
    )
    return IssueResponse.model_validate(issue)
