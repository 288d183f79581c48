"""
Custom exceptions for DealForge.

Provides a hierarchy of exceptions with error codes for consistent error handling.
"""
from typing import Optional, Dict, Any


class DealForgeError(Exception):
    """
    Base exception for all DealForge errors.

    Attributes:
        error_code: Unique error code (e.g., DFG-001)
        message: Human-readable error message
        details: Additional error context
    """
    error_code: str = "DFG-000"
    http_status: int = 500

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ):
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code
        super().__init__(self.message)

    @property
    def status(self) -> int:
        """HTTP status, read by the retry executor to classify failures."""
        return self.http_status

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API response."""
        return {
            "error": True,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


# Validation Errors (DFG-1XX)
class ValidationError(DealForgeError):
    """Input validation failed."""
    error_code = "DFG-100"
    http_status = 400

    def __init__(self, message: str = "Validation failed", errors: list = None, **kwargs):
        details = kwargs.pop("details", None) or {}
        details["errors"] = errors or []
        super().__init__(message, details=details, **kwargs)


class InvalidTransitionError(DealForgeError):
    """Requested status change is not in the transition table."""
    error_code = "DFG-101"
    http_status = 400

    def __init__(self, current: str, requested: str, **kwargs):
        message = f"Cannot transition from {current} to {requested}"
        super().__init__(message, details={"from": current, "to": requested}, **kwargs)


class EntityNotEditableError(DealForgeError):
    """Entity is in a status that does not allow edits."""
    error_code = "DFG-102"
    http_status = 400

    def __init__(self, entity_id: str, status: str, **kwargs):
        message = f"Deal {entity_id} cannot be edited while {status}"
        super().__init__(message, details={"deal_id": entity_id, "status": status}, **kwargs)


# Not Found Errors (DFG-2XX)
class DealNotFoundError(DealForgeError):
    """Deal not found or soft-deleted."""
    error_code = "DFG-200"
    http_status = 404

    def __init__(self, deal_id: str, **kwargs):
        message = f"Deal {deal_id} not found"
        super().__init__(message, details={"deal_id": str(deal_id)}, **kwargs)


class DocumentNotFoundError(DealForgeError):
    """Generated document not found."""
    error_code = "DFG-201"
    http_status = 404

    def __init__(self, document_id: str, **kwargs):
        message = f"Document {document_id} not found"
        super().__init__(message, details={"document_id": str(document_id)}, **kwargs)


class IssueNotFoundError(DealForgeError):
    """Verification issue not found."""
    error_code = "DFG-202"
    http_status = 404

    def __init__(self, issue_id: str, **kwargs):
        message = f"Verification issue {issue_id} not found"
        super().__init__(message, details={"issue_id": str(issue_id)}, **kwargs)


class DocumentVersionNotFoundError(DealForgeError):
    """Requested historical version does not exist."""
    error_code = "DFG-203"
    http_status = 404

    def __init__(self, document_id: str, version: int, **kwargs):
        message = f"Version {version} of document {document_id} not found"
        super().__init__(
            message,
            details={"document_id": str(document_id), "version": version},
            **kwargs,
        )


class ObjectNotFoundError(DealForgeError):
    """Stored object does not exist."""
    error_code = "DFG-204"
    http_status = 404

    def __init__(self, key: str, **kwargs):
        super().__init__(f"Object {key} not found", details={"key": key}, **kwargs)


class InvalidSignatureError(DealForgeError):
    """Download URL signature is invalid or expired."""
    error_code = "DFG-205"
    http_status = 403

    def __init__(self, key: str, **kwargs):
        super().__init__("Download link is invalid or has expired", details={"key": key}, **kwargs)


class CreditMemoNotFoundError(DealForgeError):
    """Deal has no credit memo, or not the requested version."""
    error_code = "DFG-206"
    http_status = 404

    def __init__(self, deal_id: str, version: Optional[int] = None, **kwargs):
        if version is None:
            message = f"No credit memo available for deal {deal_id}"
        else:
            message = f"Version {version} of the credit memo for deal {deal_id} not found"
        super().__init__(
            message,
            details={"deal_id": str(deal_id), "version": version},
            **kwargs,
        )


class NothingToDownloadError(DealForgeError):
    """Deal has no generated documents to package."""
    error_code = "DFG-207"
    http_status = 404

    def __init__(self, deal_id: str, **kwargs):
        super().__init__(
            f"No documents to download for deal {deal_id}",
            details={"deal_id": str(deal_id)},
            **kwargs,
        )


# Conflict Errors (DFG-3XX)
class ConflictError(DealForgeError):
    """Concurrent modification detected."""
    error_code = "DFG-300"
    http_status = 409

    def __init__(self, message: str = "Resource was modified concurrently", **kwargs):
        super().__init__(message, **kwargs)


class VersionConflictError(ConflictError):
    """Caller's expected version is stale."""
    error_code = "DFG-301"

    def __init__(self, document_id: str, expected_version: int, current_version: int, **kwargs):
        message = (
            f"Document {document_id} is at version {current_version}, "
            f"expected {expected_version}. Refresh and try again."
        )
        super().__init__(
            message,
            details={
                "document_id": str(document_id),
                "expected_version": expected_version,
                "current_version": current_version,
            },
            **kwargs,
        )


class RegenerationInProgressError(ConflictError):
    """Another regeneration already holds the document."""
    error_code = "DFG-302"

    def __init__(self, document_id: str, **kwargs):
        message = f"Document {document_id} is already being regenerated. Try again later."
        super().__init__(message, details={"document_id": str(document_id)}, **kwargs)


class PipelineBusyError(ConflictError):
    """Pipeline is already running for the deal."""
    error_code = "DFG-303"

    def __init__(self, deal_id: str, status: str, **kwargs):
        message = f"Pipeline for deal {deal_id} is already running ({status})"
        super().__init__(message, details={"deal_id": str(deal_id), "status": status}, **kwargs)


# Rate Limit Errors (DFG-4XX)
class RateLimitExceededError(DealForgeError):
    """Caller exceeded its sliding-window budget."""
    error_code = "DFG-429"
    http_status = 429

    def __init__(self, limit_type: str, limit: int, reset_at: float, retry_after: int, remaining: int = 0, **kwargs):
        message = "Too many requests. Please slow down."
        self.limit = limit
        self.remaining = remaining
        self.reset_at = reset_at
        self.retry_after = retry_after
        super().__init__(
            message,
            details={
                "limit_type": limit_type,
                "limit": limit,
                "retry_after_seconds": retry_after,
            },
            **kwargs,
        )


# Pipeline Errors (DFG-5XX)
class UnrecoverablePipelineError(DealForgeError):
    """A pipeline stage failed and the deal moved to ERROR."""
    error_code = "DFG-500"
    http_status = 500

    def __init__(self, step: str, message: str = None, **kwargs):
        msg = message or f"Pipeline failed at step '{step}'"
        super().__init__(msg, details={"step": step}, **kwargs)


class UnresolvedIssuesError(DealForgeError):
    """Cannot proceed with pending verification issues."""
    error_code = "DFG-501"
    http_status = 400

    def __init__(self, pending_count: int, **kwargs):
        message = f"Cannot resume: {pending_count} unresolved verification issues"
        super().__init__(message, details={"pending_count": pending_count}, **kwargs)


# External Service Errors (DFG-9XX)
class ExternalServiceError(DealForgeError):
    """External service call failed."""
    error_code = "DFG-900"
    http_status = 502

    def __init__(self, service_name: str, message: str = None, **kwargs):
        msg = message or f"External service '{service_name}' is unavailable"
        details = kwargs.pop("details", None) or {}
        details["service"] = service_name
        super().__init__(msg, details=details, **kwargs)


class TransientProviderError(ExternalServiceError):
    """Retries against the generative provider were exhausted."""
    error_code = "DFG-901"

    def __init__(self, label: str, attempts: int, **kwargs):
        message = f"{label} failed after {attempts} attempts"
        super().__init__("generative", message, details={"label": label, "attempts": attempts}, **kwargs)


class NonRetryableProviderError(ExternalServiceError):
    """Generative provider rejected the request with a client error."""
    error_code = "DFG-902"

    def __init__(self, label: str, provider_status: int, **kwargs):
        message = f"{label} rejected by provider (status {provider_status})"
        self.provider_status = provider_status
        super().__init__(
            "generative",
            message,
            details={"label": label, "provider_status": provider_status},
            **kwargs,
        )


class StorageError(ExternalServiceError):
    """Object storage operation failed."""
    error_code = "DFG-903"

    def __init__(self, key: str, message: str = None, **kwargs):
        msg = message or f"Storage operation failed for '{key}'"
        super().__init__("storage", msg, details={"key": key}, **kwargs)
