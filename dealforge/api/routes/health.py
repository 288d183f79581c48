"""
Health and readiness endpoints.
"""
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dealforge import __version__
from dealforge.api.dependencies import get_llm, get_storage
from dealforge.database import get_db
from dealforge.services.llm_client import GenerativeService
from dealforge.services.storage import ObjectStorage

logger = structlog.get_logger(__name__)

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str = __version__


class ReadinessResponse(BaseModel):
    """Readiness check response with component status."""
    status: str
    database: str
    storage: str
    generative: str
    timestamp: str


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Basic health check endpoint.

    Returns 200 if the server is running.
    """
    return HealthResponse(status="healthy")


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
    llm: GenerativeService = Depends(get_llm),
) -> ReadinessResponse:
    """
    Readiness check for container orchestration.

    The generative service is reported but never degrades readiness; the
    pipeline runs with placeholders when it is not configured.
    """
    db_status = "healthy"
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning("readiness_database_failed", error=str(e))
        db_status = "unhealthy"

    storage_status = "healthy" if storage.root.is_dir() else "unhealthy"
    overall = "healthy" if db_status == "healthy" and storage_status == "healthy" else "degraded"

    return ReadinessResponse(
        status=overall,
        database=db_status,
        storage=storage_status,
        generative="configured" if llm.is_configured else "not_configured",
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
