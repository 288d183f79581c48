"""
Generative service client.

Thin wrapper around the OpenAI chat completions API. The service only
writes prose and structured text; callers never read numbers from it.
Every call goes through the retry executor.
"""
import json
import re
import time
from typing import Any, Callable, Dict, Optional

import structlog
from openai import OpenAI

from dealforge.config import get_settings
from dealforge.exceptions import ExternalServiceError
from dealforge.services.retry import call_with_retry

logger = structlog.get_logger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def parse_json_response(text: str) -> Dict[str, Any]:
    """
    Parse a JSON object from model output, tolerating markdown fences.

    Raises:
        ValueError: if no JSON object can be parsed.
    """
    if not text or not text.strip():
        raise ValueError("Empty response")
    candidate = text.strip()
    fenced = _FENCE_RE.search(candidate)
    if fenced:
        candidate = fenced.group(1).strip()
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        start, end = candidate.find("{"), candidate.rfind("}")
        if start == -1 or end <= start:
            raise ValueError(f"No JSON object in response: {text[:200]}")
        parsed = json.loads(candidate[start:end + 1])
    if not isinstance(parsed, dict):
        raise ValueError("Response JSON is not an object")
    return parsed


class GenerativeService:
    """OpenAI-backed completion service."""

    TEMPERATURE = 0.2
    DEFAULT_SYSTEM_PROMPT = "You are a careful commercial lending assistant. Respond with JSON only."

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_retries: Optional[int] = None,
        client: Optional[Any] = None,
        http_client: Optional[Any] = None,
        sleep: Callable[[float], Any] = time.sleep,
    ):
        settings = get_settings()
        self._api_key = api_key or settings.openai_api_key
        self.model = model or settings.llm_model
        self.default_max_tokens = settings.llm_max_tokens
        self._max_retries = settings.retry_max_retries if max_retries is None else max_retries
        self._client = client
        self._sleep = sleep
        self._total_tokens = 0
        self._call_count = 0

        if self._client is None and self._api_key:
            # call_with_retry owns the retry budget and backoff schedule
            self._client = OpenAI(api_key=self._api_key, max_retries=0, http_client=http_client)
            logger.info("generative_service_initialized", model=self.model)
        elif self._client is None:
            logger.warning("generative_service_unconfigured")

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    def complete(
        self,
        prompt: str,
        max_tokens: Optional[int] = None,
        system_prompt: Optional[str] = None,
        label: str = "complete",
    ) -> str:
        """
        Run one completion and return the message text.

        Raises:
            ExternalServiceError: if no API key is configured.
            TransientProviderError / NonRetryableProviderError: from the retry executor.
        """
        if self._client is None:
            raise ExternalServiceError("generative", "Generative service is not configured")

        messages = [
            {"role": "system", "content": system_prompt or self.DEFAULT_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]

        def _call():
            return self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=max_tokens or self.default_max_tokens,
                temperature=self.TEMPERATURE,
                response_format={"type": "json_object"},
            )

        response = call_with_retry(_call, label=label, max_retries=self._max_retries, sleep=self._sleep)

        self._call_count += 1
        usage = getattr(response, "usage", None)
        if usage is not None:
            self._total_tokens += getattr(usage, "total_tokens", 0) or 0

        choices = getattr(response, "choices", None) or []
        if not choices:
            return ""
        return choices[0].message.content or ""

    def complete_json(
        self,
        prompt: str,
        max_tokens: Optional[int] = None,
        system_prompt: Optional[str] = None,
        label: str = "complete_json",
    ) -> Dict[str, Any]:
        """Complete and parse a JSON object. Raises ValueError on unparseable output."""
        text = self.complete(prompt, max_tokens=max_tokens, system_prompt=system_prompt, label=label)
        return parse_json_response(text)

    def get_stats(self) -> Dict[str, int]:
        return {"call_count": self._call_count, "total_tokens": self._total_tokens}


_service_instance: Optional[GenerativeService] = None


def get_generative_service() -> GenerativeService:
    """Get singleton generative service instance."""
    global _service_instance
    if _service_instance is None:
        _service_instance = GenerativeService()
    return _service_instance
