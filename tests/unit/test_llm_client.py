"""
Unit tests for the generative service client.
"""
import httpx
import pytest

from dealforge.exceptions import ExternalServiceError, NonRetryableProviderError, TransientProviderError
from dealforge.services.llm_client import GenerativeService, parse_json_response


class CountingTransport:
    """Answers every request with a fixed status and counts the requests."""

    def __init__(self, status_code: int, body=None):
        self.status_code = status_code
        self.body = body or {"error": {"message": "upstream unavailable", "type": "server_error"}}
        self.requests = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests += 1
        return httpx.Response(self.status_code, json=self.body)


def make_service(transport: CountingTransport, max_retries: int = 2) -> GenerativeService:
    return GenerativeService(
        api_key="sk-test",
        model="gpt-4o-mini",
        max_retries=max_retries,
        http_client=httpx.Client(transport=httpx.MockTransport(transport)),
        sleep=lambda seconds: None,
    )


class TestRetryBudget:
    """The retry executor is the only retry layer in front of the provider."""

    def test_sdk_retries_disabled(self):
        """Test the OpenAI client is built without its own retries."""
        service = make_service(CountingTransport(200))

        assert service._client.max_retries == 0

    def test_transient_failure_hits_provider_once_per_attempt(self):
        """Test a 503 costs exactly one request per attempt."""
        transport = CountingTransport(503)
        service = make_service(transport)

        with pytest.raises(TransientProviderError):
            service.complete("Draft the note")

        assert transport.requests == 3

    def test_client_error_not_retried(self):
        """Test a 400 reaches the provider once."""
        transport = CountingTransport(400, {"error": {"message": "bad request", "type": "invalid_request_error"}})
        service = make_service(transport)

        with pytest.raises(NonRetryableProviderError):
            service.complete("Draft the note")

        assert transport.requests == 1

    def test_success_returns_message_text(self):
        """Test the first choice's message content is returned."""
        body = {
            "id": "chatcmpl-1",
            "object": "chat.completion",
            "created": 0,
            "model": "gpt-4o-mini",
            "choices": [{
                "index": 0,
                "finish_reason": "stop",
                "message": {"role": "assistant", "content": "{\"section\": \"ok\"}"},
            }],
            "usage": {"prompt_tokens": 5, "completion_tokens": 3, "total_tokens": 8},
        }
        transport = CountingTransport(200, body)
        service = make_service(transport)

        assert service.complete_json("Draft the note") == {"section": "ok"}
        assert service.get_stats() == {"call_count": 1, "total_tokens": 8}
        assert transport.requests == 1


class TestConfiguration:
    """Tests for an unconfigured service."""

    def test_unconfigured_service_raises(self):
        """Test completions fail fast without an API key."""
        service = GenerativeService(api_key=None)
        service._client = None

        assert service.is_configured is False
        with pytest.raises(ExternalServiceError):
            service.complete("x")


class TestParseJsonResponse:
    """Tests for tolerant JSON parsing."""

    def test_fenced_json(self):
        """Test markdown fences are stripped."""
        assert parse_json_response("```json\n{\"a\": 1}\n```") == {"a": 1}

    def test_embedded_object(self):
        """Test an object surrounded by prose is recovered."""
        assert parse_json_response("Here it is: {\"a\": 2} done") == {"a": 2}

    def test_empty_rejected(self):
        """Test empty output raises ValueError."""
        with pytest.raises(ValueError):
            parse_json_response("  ")
