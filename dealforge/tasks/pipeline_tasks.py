"""
Pipeline background tasks.

Celery tasks that run, resume and continue the deal pipeline. Stage
failures are recorded on the deal by the pipeline itself and are not
retried here; a retry would only restart the failed step, which is an
operator decision. Failures before any stage runs (database or broker
trouble) are retried. The task id is the deal's claim token, so a task
redelivered after its worker died takes the deal back.
"""
import uuid
from typing import Any, Callable, Dict, Optional

import structlog
from sqlalchemy.orm import Session

from dealforge.celery_app import celery_app
from dealforge.database import SessionLocal
from dealforge.exceptions import DealForgeError, UnrecoverablePipelineError
from dealforge.middleware.logging import bind_deal_context, clear_deal_context
from dealforge.models.deal import Deal
from dealforge.services.audit_sink import get_audit_sink
from dealforge.services.llm_client import get_generative_service
from dealforge.services.pipeline import DealPipeline
from dealforge.services.storage import get_object_storage
from dealforge.services.store import DealStore

logger = structlog.get_logger(__name__)


def get_db_session() -> Session:
    """Get a database session for use in Celery tasks."""
    return SessionLocal()


def build_pipeline(db: Session) -> DealPipeline:
    return DealPipeline(
        DealStore(db),
        get_object_storage(),
        llm=get_generative_service(),
        audit=get_audit_sink(),
    )


def _result(deal: Deal) -> Dict[str, Any]:
    return {"deal_id": str(deal.id), "status": deal.status.value, "last_step": deal.last_step}


def _execute(
    task,
    action: str,
    deal_id: str,
    org_id: str,
    actor_id: Optional[str],
    call: Callable[[DealPipeline, uuid.UUID, uuid.UUID, Optional[str], Optional[str]], Deal],
) -> Dict[str, Any]:
    db = get_db_session()
    bind_deal_context(deal_id, org_id)
    try:
        logger.info(f"{action}_started", deal_id=deal_id, task_id=task.request.id)
        deal = call(build_pipeline(db), uuid.UUID(deal_id), uuid.UUID(org_id), actor_id, task.request.id)
        logger.info(f"{action}_finished", deal_id=deal_id, status=deal.status.value)
        return _result(deal)

    except UnrecoverablePipelineError as e:
        logger.error(f"{action}_failed", deal_id=deal_id, step=e.details.get("step"), error=e.message)
        raise

    except DealForgeError as e:
        # Deal moved on, was deleted, or another worker holds it
        logger.warning(f"{action}_rejected", deal_id=deal_id, error_code=e.error_code, error=e.message)
        return {"deal_id": deal_id, "status": "rejected", "error_code": e.error_code, "message": e.message}

    except Exception as e:
        logger.error(f"{action}_errored", deal_id=deal_id, error=str(e))
        raise task.retry(exc=e)

    finally:
        clear_deal_context()
        db.close()


@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def run_deal_pipeline(self, deal_id: str, org_id: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Run the pipeline for a deal, or restart an ERROR deal at its failed step.

    Returns:
        Dict with the deal's status after the run or pause.
    """
    return _execute(
        self, "pipeline_run", deal_id, org_id, actor_id,
        lambda pipeline, d, o, a, t: pipeline.run(d, o, actor_id=a, claim_token=t),
    )


@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def resume_deal_pipeline(self, deal_id: str, org_id: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
    """Resume a deal after every verification issue has been resolved."""
    return _execute(
        self, "pipeline_resume", deal_id, org_id, actor_id,
        lambda pipeline, d, o, a, t: pipeline.resume_after_review(d, o, actor_id=a, claim_token=t),
    )


@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def approve_deal_terms(self, deal_id: str, org_id: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
    """Accept reviewed terms and generate documents and the credit memo."""
    return _execute(
        self, "terms_approval", deal_id, org_id, actor_id,
        lambda pipeline, d, o, a, t: pipeline.approve_terms(d, o, actor_id=a, claim_token=t),
    )
