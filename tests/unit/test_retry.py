"""
Unit tests for the retry/backoff executor.
"""
import pytest

from dealforge.exceptions import NonRetryableProviderError, TransientProviderError, ValidationError
from dealforge.services.retry import backoff_delay, call_with_retry, extract_status


class ProviderFailure(Exception):
    def __init__(self, status_code=None):
        super().__init__(f"status {status_code}")
        self.status_code = status_code


class Flaky:
    """Fails a fixed number of times, then succeeds."""

    def __init__(self, failures, error_factory=lambda: ProviderFailure(503)):
        self.failures = failures
        self.error_factory = error_factory
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error_factory()
        return "ok"


class TestBackoff:
    """Tests for the delay schedule."""

    def test_first_retry_window(self):
        """Test retry 1 waits 2-4 seconds."""
        assert backoff_delay(1, rand=lambda: 0.0) == 2.0
        assert backoff_delay(1, rand=lambda: 0.999) < 4.0

    def test_second_retry_window(self):
        """Test retry 2 waits 6-10 seconds."""
        assert backoff_delay(2, rand=lambda: 0.0) == 6.0
        assert backoff_delay(2, rand=lambda: 0.5) == 8.0


class TestCallWithRetry:
    """Tests for retry behavior."""

    def test_success_first_try(self):
        """Test no sleeping when the first attempt succeeds."""
        sleeps = []
        fn = Flaky(0)

        assert call_with_retry(fn, label="t", sleep=sleeps.append) == "ok"
        assert fn.calls == 1
        assert sleeps == []

    def test_transient_failures_retried(self):
        """Test two transient failures then success uses both retries."""
        sleeps = []
        fn = Flaky(2)

        result = call_with_retry(fn, label="t", sleep=sleeps.append, rand=lambda: 0.0)

        assert result == "ok"
        assert fn.calls == 3
        assert sleeps == [2.0, 6.0]

    def test_exhaustion_raises_transient_error(self):
        """Test three failures exhaust the default budget."""
        fn = Flaky(5)

        with pytest.raises(TransientProviderError) as exc_info:
            call_with_retry(fn, label="prose:note", sleep=lambda s: None)

        assert fn.calls == 3
        assert exc_info.value.details["attempts"] == 3
        assert isinstance(exc_info.value.__cause__, ProviderFailure)

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 413, 422])
    def test_client_errors_not_retried(self, status):
        """Test client-error statuses fail immediately."""
        fn = Flaky(5, lambda: ProviderFailure(status))

        with pytest.raises(NonRetryableProviderError) as exc_info:
            call_with_retry(fn, label="t", sleep=lambda s: None)

        assert fn.calls == 1
        assert exc_info.value.provider_status == status

    def test_errors_without_status_are_retried(self):
        """Test plain errors such as timeouts are treated as transient."""
        fn = Flaky(1, lambda: TimeoutError("slow"))

        assert call_with_retry(fn, label="t", sleep=lambda s: None) == "ok"
        assert fn.calls == 2

    def test_custom_retry_budget(self):
        """Test max_retries=0 means a single attempt."""
        fn = Flaky(1)

        with pytest.raises(TransientProviderError):
            call_with_retry(fn, label="t", max_retries=0, sleep=lambda s: None)

        assert fn.calls == 1


class TestExtractStatus:
    """Tests for status detection."""

    def test_status_code_attribute(self):
        """Test status_code is read."""
        assert extract_status(ProviderFailure(429)) == 429

    def test_response_attribute(self):
        """Test status is read from an attached response."""
        class Response:
            status_code = 502

        error = Exception("bad gateway")
        error.response = Response()

        assert extract_status(error) == 502

    def test_domain_error_status(self):
        """Test DealForge errors expose their HTTP status."""
        assert extract_status(ValidationError()) == 400

    def test_no_status(self):
        """Test errors without a status return None."""
        assert extract_status(RuntimeError("x")) is None
