"""
FastAPI application entry point.

Configures the application with routes, middleware, and settings.
"""
import os
import traceback

import sentry_sdk
import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from dealforge import __version__
from dealforge.api.routes import deals, generated_documents, health, issues, storage
from dealforge.config import get_settings
from dealforge.database import init_db
from dealforge.exceptions import DealForgeError, RateLimitExceededError
from dealforge.middleware.logging import (
    CorrelationIdMiddleware,
    RequestLoggingMiddleware,
    configure_logging,
    redact_sensitive_data,
)
from dealforge.middleware.rate_limit import rate_limit_exceeded_handler
from dealforge.services.audit_sink import get_audit_sink


def _filter_sensitive_data(event: dict) -> dict:
    """Filter borrower identifiers from Sentry events before sending."""
    if "request" in event and isinstance(event["request"].get("data"), dict):
        event["request"]["data"] = redact_sensitive_data(event["request"]["data"])
    if isinstance(event.get("extra"), dict):
        event["extra"] = redact_sensitive_data(event["extra"])
    return event


sentry_dsn = os.getenv("SENTRY_DSN")
if sentry_dsn:
    sentry_sdk.init(
        dsn=sentry_dsn,
        environment=os.getenv("ENVIRONMENT", "development"),
        release=os.getenv("APP_VERSION", __version__),
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1")),
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            LoggingIntegration(level=None, event_level="ERROR"),
        ],
        send_default_pii=False,
        before_send=lambda event, hint: _filter_sensitive_data(event),
    )

configure_logging()

logger = structlog.get_logger(__name__)

settings = get_settings()

app = FastAPI(
    title="DealForge API",
    description="""
## Verified Loan Document Pipeline

DealForge turns borrower financial documents into verified figures,
deterministic loan terms and compliance-reviewed loan documents.

### Pipeline

| Stage | Description |
|-------|-------------|
| Extraction | OCR, classification and two independent extractions, reconciled |
| Verification | Math, OCR and cross-document checks; operator review of discrepancies |
| Structuring | Deterministic rules engine and compliance review |
| Documents | Drafted, legally reviewed and verified loan documents plus a credit memo |

### Identification

Every request carries `X-Organization-ID` (UUID) and optionally `X-Actor-ID`.
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {"name": "Deals", "description": "Deal intake, uploads and pipeline control"},
        {"name": "Issues", "description": "Verification issue resolution"},
        {"name": "Documents", "description": "Generated documents, regeneration and downloads"},
        {"name": "Storage", "description": "Signed object downloads"},
        {"name": "Health", "description": "Health and readiness checks"},
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Correlation-ID", "X-RateLimit-Limit", "X-RateLimit-Remaining", "Retry-After"],
)

# Order matters: correlation ID first
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)

app.add_exception_handler(RateLimitExceededError, rate_limit_exceeded_handler)

app.include_router(deals.router, prefix="/api/v1", tags=["Deals"])
app.include_router(issues.router, prefix="/api/v1", tags=["Issues"])
app.include_router(generated_documents.router, prefix="/api/v1", tags=["Documents"])
app.include_router(storage.router, prefix="/api/v1", tags=["Storage"])
app.include_router(health.router, tags=["Health"])


@app.exception_handler(DealForgeError)
async def dealforge_exception_handler(request: Request, exc: DealForgeError):
    """Handle all DealForge custom exceptions."""
    logger.error(
        "dealforge_error",
        error_code=exc.error_code,
        message=exc.message,
        details=exc.details,
        path=str(request.url.path),
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions with consistent format."""
    sentry_sdk.capture_exception(exc)

    logger.error(
        "unhandled_error",
        error_type=type(exc).__name__,
        message=str(exc),
        path=str(request.url.path),
        traceback=traceback.format_exc(),
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": True,
            "error_code": "DFG-999",
            "message": "An unexpected error occurred. Please try again.",
            "details": {"error_type": type(exc).__name__} if settings.debug else {},
        },
    )


@app.on_event("startup")
async def startup_event() -> None:
    """Initialize application on startup."""
    logger.info("Starting DealForge API", debug=settings.debug)
    if not sentry_dsn:
        logger.warning("Sentry error tracking not configured (SENTRY_DSN not set)")

    settings.storage_dir.mkdir(parents=True, exist_ok=True)
    init_db()

    logger.info("DealForge API started successfully")


@app.on_event("shutdown")
async def shutdown_event() -> None:
    """Flush queued audit writes on shutdown."""
    logger.info("Shutting down DealForge API")
    get_audit_sink().shutdown(wait=True)
