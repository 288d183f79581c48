"""
Unit tests for custom exceptions.

Tests exception hierarchy and error formatting.
"""
import pytest

from dealforge.exceptions import (
    ConflictError,
    DealForgeError,
    DealNotFoundError,
    DocumentVersionNotFoundError,
    ExternalServiceError,
    InvalidSignatureError,
    InvalidTransitionError,
    NonRetryableProviderError,
    PipelineBusyError,
    RateLimitExceededError,
    RegenerationInProgressError,
    StorageError,
    TransientProviderError,
    UnrecoverablePipelineError,
    UnresolvedIssuesError,
    ValidationError,
    VersionConflictError,
)


class TestExceptionHierarchy:
    """Tests for exception class hierarchy."""

    def test_base_exception(self):
        """Test base DealForgeError."""
        exc = DealForgeError("Test error")

        assert exc.error_code == "DFG-000"
        assert exc.message == "Test error"
        assert exc.http_status == 500

    def test_validation_error(self):
        """Test ValidationError carries field errors."""
        exc = ValidationError("Bad input", errors=[{"field": "loan_amount"}])

        assert isinstance(exc, DealForgeError)
        assert exc.error_code == "DFG-100"
        assert exc.http_status == 400
        assert exc.details["errors"] == [{"field": "loan_amount"}]

    def test_invalid_transition_error(self):
        """Test InvalidTransitionError names both statuses."""
        exc = InvalidTransitionError("COMPLETE", "VERIFYING")

        assert exc.http_status == 400
        assert exc.details == {"from": "COMPLETE", "to": "VERIFYING"}

    def test_not_found_errors(self):
        """Test not-found errors map to 404."""
        assert DealNotFoundError("abc").http_status == 404
        exc = DocumentVersionNotFoundError("doc", 4)
        assert exc.error_code == "DFG-203"
        assert exc.details["version"] == 4

    def test_conflict_family(self):
        """Test conflict errors share 409."""
        for exc in (
            VersionConflictError("doc", 1, 2),
            RegenerationInProgressError("doc"),
            PipelineBusyError("deal", "VERIFYING"),
        ):
            assert isinstance(exc, ConflictError)
            assert exc.http_status == 409

    def test_version_conflict_details(self):
        """Test VersionConflictError reports expected and current versions."""
        exc = VersionConflictError("doc-1", expected_version=1, current_version=3)

        assert exc.details["expected_version"] == 1
        assert exc.details["current_version"] == 3
        assert "version 3" in exc.message

    def test_signature_error(self):
        """Test InvalidSignatureError is forbidden."""
        assert InvalidSignatureError("k").http_status == 403


class TestPipelineErrors:
    """Tests for pipeline errors."""

    def test_unrecoverable_pipeline_error(self):
        """Test UnrecoverablePipelineError records the step."""
        exc = UnrecoverablePipelineError("extract", "model timeout")

        assert exc.details["step"] == "extract"
        assert exc.message == "model timeout"

    def test_unrecoverable_default_message(self):
        """Test default message mentions the step."""
        exc = UnrecoverablePipelineError("ocr")

        assert "ocr" in exc.message

    def test_unresolved_issues(self):
        """Test UnresolvedIssuesError count."""
        exc = UnresolvedIssuesError(3)

        assert exc.details["pending_count"] == 3
        assert exc.http_status == 400


class TestExternalServiceErrors:
    """Tests for external service errors."""

    def test_service_name_in_details(self):
        """Test the service is recorded."""
        exc = ExternalServiceError("task_queue")

        assert exc.details["service"] == "task_queue"
        assert exc.http_status == 502

    def test_provider_errors(self):
        """Test provider errors are external service errors."""
        transient = TransientProviderError("prose", 3)
        rejected = NonRetryableProviderError("prose", 401)

        assert isinstance(transient, ExternalServiceError)
        assert transient.details["attempts"] == 3
        assert rejected.provider_status == 401
        assert rejected.details["service"] == "generative"

    def test_storage_error(self):
        """Test StorageError keeps its key."""
        exc = StorageError("org/deal/file.docx")

        assert exc.details == {"key": "org/deal/file.docx", "service": "storage"}


class TestErrorFormatting:
    """Tests for error response formatting."""

    def test_to_dict_format(self):
        """Test to_dict returns correct format."""
        exc = DealNotFoundError("deal-1")

        result = exc.to_dict()

        assert result == {
            "error": True,
            "error_code": "DFG-200",
            "message": "Deal deal-1 not found",
            "details": {"deal_id": "deal-1"},
        }

    def test_status_property_mirrors_http_status(self):
        """Test status is readable by the retry executor."""
        assert ValidationError().status == 400

    def test_rate_limit_error_fields(self):
        """Test RateLimitExceededError exposes header values."""
        exc = RateLimitExceededError("write", limit=60, reset_at=100.0, retry_after=7)

        assert exc.retry_after == 7
        assert exc.remaining == 0
        assert exc.details["limit_type"] == "write"

    def test_custom_error_code(self):
        """Test overriding the error code."""
        exc = DealForgeError("x", error_code="DFG-777")

        assert exc.error_code == "DFG-777"


def test_exceptions_can_be_raised_and_caught():
    """Test subclasses are caught by the base class."""
    with pytest.raises(DealForgeError):
        raise PipelineBusyError("deal", "EXTRACTING")
