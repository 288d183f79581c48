"""
Logging setup, request logging and log hygiene.

Every event carries the request's correlation ID and, inside pipeline
work, the deal it concerns. Borrower identifiers that show up in
extracted data (SSNs, EINs, bank account numbers) are masked down to
their last four digits; credentials are dropped entirely.
"""
import re
import time
import uuid
from contextvars import ContextVar
from typing import Any, Callable, List, Optional, Tuple

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")

logger = structlog.get_logger(__name__)

REDACTED = "[REDACTED]"
MAX_DEPTH = 5
SLOW_REQUEST_MS = 1000

# Credentials that never reach a log line
SECRET_FIELDS = {"api_key", "authorization", "secret", "signature", "dsn"}

# Borrower identifiers, masked to the last four digits
IDENTIFIER_FIELDS = {"ssn", "ein", "tin", "taxpayer_id", "account_number", "routing_number"}

DEAL_CONTEXT_KEYS = ("deal_id", "organization_id", "step")

_CAMEL_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def get_correlation_id() -> str:
    """Get the current request's correlation ID."""
    return correlation_id.get()


def bind_deal_context(deal_id, organization_id=None, step: Optional[str] = None) -> None:
    """Attach the deal being worked on to every event logged from this context."""
    values = {"deal_id": deal_id, "organization_id": organization_id, "step": step}
    structlog.contextvars.bind_contextvars(**{k: str(v) for k, v in values.items() if v is not None})


def clear_deal_context() -> None:
    structlog.contextvars.unbind_contextvars(*DEAL_CONTEXT_KEYS)


def _words(key: str) -> Tuple[str, ...]:
    return tuple(w for w in _CAMEL_RE.sub("_", key).lower().split("_") if w)


_SECRET_WORDS = [_words(f) for f in SECRET_FIELDS]
_IDENTIFIER_WORDS = [_words(f) for f in IDENTIFIER_FIELDS]


def _ends_with(words: Tuple[str, ...], candidates: List[Tuple[str, ...]]) -> bool:
    return any(words[-len(c):] == c for c in candidates if len(words) >= len(c))


def mask_identifier(value: Any) -> str:
    """
    Mask a tax or account identifier down to its last four digits.

    Values with fewer than four digits are redacted outright.
    """
    digits = [c for c in str(value) if c.isdigit()]
    if len(digits) < 4:
        return REDACTED
    return "*" * (len(digits) - 4) + "".join(digits[-4:])


def redact_sensitive_data(data: dict, depth: int = 0) -> dict:
    """
    Recursively scrub credentials and borrower identifiers from a dictionary.

    A key matches a field when the field's words end the key, so
    ``primary_routing_number`` and ``accountNumber`` match while
    ``tin_count`` does not.

    Returns:
        A new dictionary; the input is left untouched.
    """
    if depth > MAX_DEPTH or not isinstance(data, dict):
        return data

    redacted = {}
    for key, value in data.items():
        words = _words(key) if isinstance(key, str) else ()
        if words and _ends_with(words, _SECRET_WORDS):
            redacted[key] = REDACTED
        elif words and _ends_with(words, _IDENTIFIER_WORDS) and value is not None:
            redacted[key] = mask_identifier(value)
        elif isinstance(value, dict):
            redacted[key] = redact_sensitive_data(value, depth + 1)
        elif isinstance(value, list):
            redacted[key] = [
                redact_sensitive_data(item, depth + 1) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            redacted[key] = value

    return redacted


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Middleware that adds correlation ID to each request."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
        correlation_id.set(request_id)

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = request_id

        return response


def _route_template(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs each API request once it finishes.

    Events are keyed by the route template (``/api/v1/deals/{deal_id}``)
    so per-endpoint timings aggregate; the deal ID is logged separately.
    """

    SKIP_PATHS = {"/health", "/ready", "/docs", "/redoc", "/openapi.json"}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "request_failed",
                **self._request_info(request),
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=self._elapsed(start_time),
            )
            raise

        duration_ms = self._elapsed(start_time)
        info = self._request_info(request)
        logger.info("request_completed", **info, status_code=response.status_code, duration_ms=duration_ms)
        if duration_ms > SLOW_REQUEST_MS:
            logger.warning("slow_request", **info, duration_ms=duration_ms)

        return response

    @staticmethod
    def _request_info(request: Request) -> dict:
        params = request.scope.get("path_params") or {}
        return {
            "method": request.method,
            "route": _route_template(request),
            "deal_id": params.get("deal_id"),
            "organization_id": request.headers.get("X-Organization-ID"),
            "actor_id": request.headers.get("X-Actor-ID"),
        }

    @staticmethod
    def _elapsed(start_time: float) -> float:
        return round((time.perf_counter() - start_time) * 1000, 2)


def add_correlation_id_processor(
    logger: Any, method_name: str, event_dict: dict
) -> dict:
    """Structlog processor that adds correlation ID to all log entries."""
    request_id = get_correlation_id()
    if request_id:
        event_dict["correlation_id"] = request_id
    return event_dict


def redact_sensitive_processor(
    logger: Any, method_name: str, event_dict: dict
) -> dict:
    """Structlog processor that scrubs credentials and identifiers from log entries."""
    return redact_sensitive_data(event_dict)


def configure_logging() -> None:
    """Configure structlog for the API process and the pipeline workers."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            add_correlation_id_processor,
            redact_sensitive_processor,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
