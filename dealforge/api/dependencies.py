"""
FastAPI dependencies.

Callers identify themselves with an X-Organization-ID / X-Actor-ID header
pair. Collaborators are provided through functions so tests can swap them
with dependency_overrides.
"""
import uuid
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from dealforge.database import get_db
from dealforge.exceptions import ValidationError
from dealforge.services.audit_sink import AuditSink, get_audit_sink
from dealforge.services.llm_client import GenerativeService, get_generative_service
from dealforge.services.pipeline import DealPipeline
from dealforge.services.storage import ObjectStorage, get_object_storage
from dealforge.services.store import DealStore


def parse_uuid(value: str, field: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise ValidationError(
            message=f"Invalid {field}",
            errors=[{"field": field, "message": "Invalid UUID format"}],
        )


def get_organization_id(x_organization_id: str = Header(..., alias="X-Organization-ID")) -> uuid.UUID:
    return parse_uuid(x_organization_id, "X-Organization-ID")


def get_actor_id(x_actor_id: Optional[str] = Header(None, alias="X-Actor-ID")) -> Optional[str]:
    return x_actor_id.strip() if x_actor_id and x_actor_id.strip() else None


def get_store(db: Session = Depends(get_db)) -> DealStore:
    return DealStore(db)


def get_storage() -> ObjectStorage:
    return get_object_storage()


def get_llm() -> GenerativeService:
    return get_generative_service()


def get_audit() -> AuditSink:
    return get_audit_sink()


def get_pipeline(
    store: DealStore = Depends(get_store),
    storage: ObjectStorage = Depends(get_storage),
    llm: GenerativeService = Depends(get_llm),
    audit: AuditSink = Depends(get_audit),
) -> DealPipeline:
    return DealPipeline(store, storage, llm=llm, audit=audit)


class TaskDispatcher:
    """Queues pipeline work on the Celery workers."""

    def run_pipeline(self, deal_id: str, org_id: str, actor_id: Optional[str]) -> str:
        from dealforge.tasks.pipeline_tasks import run_deal_pipeline
        return run_deal_pipeline.delay(deal_id, org_id, actor_id).id

    def resume_pipeline(self, deal_id: str, org_id: str, actor_id: Optional[str]) -> str:
        from dealforge.tasks.pipeline_tasks import resume_deal_pipeline
        return resume_deal_pipeline.delay(deal_id, org_id, actor_id).id

    def approve_terms(self, deal_id: str, org_id: str, actor_id: Optional[str]) -> str:
        from dealforge.tasks.pipeline_tasks import approve_deal_terms
        return approve_deal_terms.delay(deal_id, org_id, actor_id).id


def get_task_dispatcher() -> TaskDispatcher:
    return TaskDispatcher()
