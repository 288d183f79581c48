"""
Tests for the Celery task wrapper around the pipeline.
"""
import uuid
from types import SimpleNamespace

import pytest

from dealforge.exceptions import PipelineBusyError, UnrecoverablePipelineError
from dealforge.models.deal import DealStatus
from dealforge.tasks import pipeline_tasks
from tests.fakes import ORG_ID


class RetryRequested(Exception):
    pass


class StubTask:
    """Bound-task stand-in that records retries."""

    def __init__(self):
        self.request = SimpleNamespace(id="task-1")
        self.retried = []

    def retry(self, exc=None):
        self.retried.append(exc)
        return RetryRequested(exc)


@pytest.fixture
def task_db(monkeypatch, session_factory):
    monkeypatch.setattr(pipeline_tasks, "get_db_session", session_factory)


def _execute(monkeypatch, call):
    monkeypatch.setattr(pipeline_tasks, "build_pipeline", lambda db: object())
    task = StubTask()
    deal_id = str(uuid.uuid4())
    return task, deal_id, lambda: pipeline_tasks._execute(task, "pipeline_run", deal_id, str(ORG_ID), None, call)


class TestExecute:
    """Tests for task outcome handling."""

    def test_success_returns_status(self, task_db, monkeypatch):
        """A finished run reports the deal's status and last step."""
        deal = SimpleNamespace(id=uuid.uuid4(), status=DealStatus.COMPLETE, last_step="generate_memo")
        _, _, run = _execute(monkeypatch, lambda pipeline, d, o, a, t: deal)

        result = run()

        assert result == {"deal_id": str(deal.id), "status": "COMPLETE", "last_step": "generate_memo"}

    def test_arguments_are_uuids(self, task_db, monkeypatch):
        """Broker identifiers are parsed and the task id is passed as the claim token."""
        seen = {}

        def call(pipeline, deal_id, org_id, actor_id, claim_token):
            seen.update(deal_id=deal_id, org_id=org_id, claim_token=claim_token)
            return SimpleNamespace(id=deal_id, status=DealStatus.NEEDS_REVIEW, last_step="gate")

        _, deal_id, run = _execute(monkeypatch, call)
        run()

        assert seen == {"deal_id": uuid.UUID(deal_id), "org_id": ORG_ID, "claim_token": "task-1"}

    def test_domain_rejection_is_not_retried(self, task_db, monkeypatch):
        """A busy or moved-on deal is reported, not retried."""

        def call(pipeline, deal_id, org_id, actor_id, claim_token):
            raise PipelineBusyError(str(deal_id), "EXTRACTING")

        task, deal_id, run = _execute(monkeypatch, call)
        result = run()

        assert result["status"] == "rejected"
        assert result["error_code"] == "DFG-303"
        assert task.retried == []

    def test_stage_failure_propagates(self, task_db, monkeypatch):
        """A stage failure is already recorded on the deal; the task fails without retry."""

        def call(pipeline, deal_id, org_id, actor_id, claim_token):
            raise UnrecoverablePipelineError("extract", "bad payload")

        task, _, run = _execute(monkeypatch, call)
        with pytest.raises(UnrecoverablePipelineError):
            run()
        assert task.retried == []

    def test_infrastructure_error_is_retried(self, task_db, monkeypatch):
        """Unexpected errors outside the stages are retried."""
        error = ConnectionError("database unavailable")

        def call(pipeline, deal_id, org_id, actor_id, claim_token):
            raise error

        task, _, run = _execute(monkeypatch, call)
        with pytest.raises(RetryRequested):
            run()
        assert task.retried == [error]
