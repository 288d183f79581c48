"""
In-memory stand-ins for the pipeline's collaborators.
"""
import json
import uuid
from typing import Any, Dict, List, Optional

ORG_ID = uuid.UUID("11111111-1111-1111-1111-111111111111")
OTHER_ORG_ID = uuid.UUID("22222222-2222-2222-2222-222222222222")


class FakeLLM:
    """
    Stand-in for GenerativeService.

    Responses are looked up by call label prefix ("prose", "legal_review", ...);
    a callable response receives the prompt.
    """

    def __init__(self, responses: Optional[Dict[str, Any]] = None, configured: bool = True):
        self.responses = responses or {}
        self.configured = configured
        self.calls: List[Dict[str, Any]] = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    def _lookup(self, label: str, prompt: str) -> Any:
        for prefix, response in self.responses.items():
            if label.startswith(prefix):
                if isinstance(response, Exception):
                    raise response
                return response(prompt) if callable(response) else response
        raise AssertionError(f"Unexpected generative call: {label}")

    def complete(self, prompt, max_tokens=None, system_prompt=None, label="complete"):
        self.calls.append({"label": label, "prompt": prompt})
        response = self._lookup(label, prompt)
        return response if isinstance(response, str) else json.dumps(response)

    def complete_json(self, prompt, max_tokens=None, system_prompt=None, label="complete_json"):
        self.calls.append({"label": label, "prompt": prompt})
        response = self._lookup(label, prompt)
        if isinstance(response, str):
            return json.loads(response)
        return response

    def labels(self) -> List[str]:
        return [c["label"] for c in self.calls]


class RecordingAudit:
    """Audit sink that keeps entries in memory."""

    def __init__(self):
        self.entries: List[Dict[str, Any]] = []

    def record(self, org_id, actor_id, action, target=None, metadata=None):
        self.entries.append({
            "org_id": org_id,
            "actor_id": actor_id,
            "action": action,
            "target": target,
            "metadata": metadata,
        })

    def actions(self) -> List[str]:
        return [e["action"] for e in self.entries]


class FakeDispatcher:
    """Task dispatcher that records queued work instead of calling Celery."""

    def __init__(self):
        self.queued: List[tuple] = []

    def run_pipeline(self, deal_id, org_id, actor_id):
        self.queued.append(("run", deal_id, org_id, actor_id))
        return "task-run"

    def resume_pipeline(self, deal_id, org_id, actor_id):
        self.queued.append(("resume", deal_id, org_id, actor_id))
        return "task-resume"

    def approve_terms(self, deal_id, org_id, actor_id):
        self.queued.append(("approve", deal_id, org_id, actor_id))
        return "task-approve"

