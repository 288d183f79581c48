"""
Integration tests for deal, issue, document and storage endpoints.
"""
import inspect
import io
import uuid
import zipfile
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from dealforge.api.routes import generated_documents
from dealforge.models.credit_memo import CreditMemo
from dealforge.models.deal import DealStatus
from dealforge.models.generated_document import (
    ComplianceStatus,
    DocumentStatus,
    DocumentVersion,
    GeneratedDocument,
)
from dealforge.models.verification_issue import (
    IssueCheckType,
    IssueSeverity,
    IssueStatus,
    VerificationIssue,
)
from dealforge.services.credit_memo import memo_key
from dealforge.services.documents.generator import document_key
from dealforge.services.rules.rules_engine import RulesInput, run_rules_engine
from tests.fakes import ORG_ID, OTHER_ORG_ID


DEAL_PAYLOAD = {
    "borrower_name": "Acme Holdings LLC",
    "loan_amount": 500000,
    "loan_purpose": "Equipment purchase",
    "property_state": "tx",
    "loan_program": "conventional_business",
}


@pytest.fixture
def pending_issue(db_session, make_deal):
    deal = make_deal(status=DealStatus.NEEDS_REVIEW)
    issue = VerificationIssue(
        deal_id=deal.id,
        check_type=IssueCheckType.MATH,
        field_path="income.totalIncome_line9",
        description="Total Income (line 9) should equal sum of lines 1 through 8",
        expected="$85,000.00",
        actual="$95,000.00",
        difference=10000.0,
        severity=IssueSeverity.FAIL,
        status=IssueStatus.PENDING,
    )
    db_session.add(issue)
    db_session.commit()
    db_session.refresh(issue)
    return issue


@pytest.fixture
def generated_document(db_session, storage, make_deal):
    deal = make_deal(status=DealStatus.COMPLETE)
    keys = {}
    for version in (1, 2):
        keys[version] = document_key(deal.organization_id, deal.id, "promissory_note", version)
        storage.put(keys[version], f"version {version}".encode("utf-8"), "application/octet-stream")
    doc = GeneratedDocument(
        deal_id=deal.id,
        doc_type="promissory_note",
        storage_key=keys[2],
        version=2,
        status=DocumentStatus.REVIEWED,
        compliance_status=ComplianceStatus.PASSED,
        compliance_issues=[],
        regulatory_checks=[],
        verification_issues=[],
    )
    doc.versions.append(DocumentVersion(version=1, storage_key=keys[1], compliance_issues=[]))
    doc.versions.append(DocumentVersion(version=2, storage_key=keys[2], compliance_issues=[]))
    db_session.add(doc)
    db_session.commit()
    db_session.refresh(doc)
    return doc


class TestDealEndpoints:
    """Tests for deal intake endpoints."""

    def test_create_deal(self, client: TestClient, org_headers):
        """Test creating a deal returns it in CREATED."""
        response = client.post("/api/v1/deals", json=DEAL_PAYLOAD, headers=org_headers)

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "CREATED"
        assert data["property_state"] == "TX"
        assert data["organization_id"] == str(ORG_ID)

    def test_create_deal_invalid_amount(self, client: TestClient, org_headers):
        """Test a non-positive amount is rejected by request validation."""
        response = client.post("/api/v1/deals", json=dict(DEAL_PAYLOAD, loan_amount=0), headers=org_headers)

        assert response.status_code == 422

    def test_create_deal_unknown_program(self, client: TestClient, org_headers):
        """Test an unknown program is a DFG-100 error."""
        response = client.post("/api/v1/deals", json=dict(DEAL_PAYLOAD, loan_program="bogus"), headers=org_headers)

        assert response.status_code == 400
        assert response.json()["error_code"] == "DFG-100"

    def test_bad_organization_header(self, client: TestClient):
        """Test a malformed organization ID is a 400, not a 500."""
        response = client.post("/api/v1/deals", json=DEAL_PAYLOAD, headers={"X-Organization-ID": "not-a-uuid"})

        assert response.status_code == 400
        assert response.json()["details"]["errors"][0]["field"] == "X-Organization-ID"

    def test_get_deal(self, client: TestClient, org_headers, make_deal):
        """Test fetching a deal."""
        deal = make_deal()
        response = client.get(f"/api/v1/deals/{deal.id}", headers=org_headers)

        assert response.status_code == 200
        assert response.json()["borrower_name"] == "Acme Holdings LLC"

    def test_get_deal_other_org(self, client: TestClient, make_deal):
        """Test deals are invisible to other organizations."""
        deal = make_deal()
        response = client.get(f"/api/v1/deals/{deal.id}", headers={"X-Organization-ID": str(OTHER_ORG_ID)})

        assert response.status_code == 404
        assert response.json()["error_code"] == "DFG-200"

    def test_patch_deal(self, client: TestClient, org_headers, make_deal):
        """Test a partial update only writes supplied fields."""
        deal = make_deal()
        response = client.patch(f"/api/v1/deals/{deal.id}", json={"loan_amount": 650000}, headers=org_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["loan_amount"] == 650000
        assert data["loan_program"] == "conventional_business"

    def test_patch_empty_body(self, client: TestClient, org_headers, make_deal):
        """Test an empty patch is rejected."""
        deal = make_deal()
        response = client.patch(f"/api/v1/deals/{deal.id}", json={}, headers=org_headers)

        assert response.status_code == 400

    def test_patch_completed_deal(self, client: TestClient, org_headers, make_deal):
        """Test a completed deal is not editable."""
        deal = make_deal(status=DealStatus.COMPLETE)
        response = client.patch(f"/api/v1/deals/{deal.id}", json={"borrower_name": "New"}, headers=org_headers)

        assert response.status_code == 400
        assert response.json()["error_code"] == "DFG-102"

    def test_upload_document(self, client: TestClient, org_headers, make_deal):
        """Test uploading a source file moves the deal to UPLOADED."""
        deal = make_deal()
        response = client.post(
            f"/api/v1/deals/{deal.id}/documents",
            files={"file": ("1040.txt", b"Wages, salaries, tips 80,000\n", "text/plain")},
            headers=org_headers,
        )

        assert response.status_code == 201
        assert response.json()["file_name"] == "1040.txt"
        assert client.get(f"/api/v1/deals/{deal.id}", headers=org_headers).json()["status"] == "UPLOADED"

    def test_delete_deal(self, client: TestClient, org_headers, make_deal):
        """Test a deleted deal is no longer found."""
        deal = make_deal()
        assert client.delete(f"/api/v1/deals/{deal.id}", headers=org_headers).status_code == 200
        assert client.get(f"/api/v1/deals/{deal.id}", headers=org_headers).status_code == 404


class TestPipelineEndpoints:
    """Tests for queued pipeline control."""

    def test_run_pipeline_queues_task(self, client: TestClient, org_headers, make_deal, dispatcher):
        """Test running the pipeline returns 202 and queues the run."""
        deal = make_deal(status=DealStatus.UPLOADED)
        response = client.post(f"/api/v1/deals/{deal.id}/pipeline", headers=org_headers)

        assert response.status_code == 202
        assert response.json()["task_id"] == "task-run"
        assert dispatcher.queued == [("run", str(deal.id), str(ORG_ID), "officer@example.com")]

    def test_run_busy_deal(self, client: TestClient, org_headers, make_deal, dispatcher):
        """Test a deal already processing is a 409 and nothing is queued."""
        deal = make_deal(status=DealStatus.EXTRACTING)
        response = client.post(f"/api/v1/deals/{deal.id}/pipeline", headers=org_headers)

        assert response.status_code == 409
        assert response.json()["error_code"] == "DFG-303"
        assert dispatcher.queued == []

    def test_run_stranded_deal(self, client: TestClient, org_headers, make_deal, dispatcher):
        """Test a processing deal whose claim timed out can be queued again."""
        deal = make_deal(
            status=DealStatus.EXTRACTING,
            last_step="extract",
            claimed_at=datetime.now(timezone.utc) - timedelta(hours=3),
        )
        response = client.post(f"/api/v1/deals/{deal.id}/pipeline", headers=org_headers)

        assert response.status_code == 202
        assert dispatcher.queued[0][0] == "run"

    def test_resume_with_pending_issues(self, client: TestClient, org_headers, pending_issue, dispatcher):
        """Test resuming with unresolved issues is rejected."""
        response = client.post(f"/api/v1/deals/{pending_issue.deal_id}/pipeline/resume", headers=org_headers)

        assert response.status_code == 400
        assert response.json()["error_code"] == "DFG-501"
        assert dispatcher.queued == []

    def test_approve_terms_requires_pause(self, client: TestClient, org_headers, make_deal):
        """Test approving terms outside NEEDS_TERM_REVIEW is an invalid transition."""
        deal = make_deal(status=DealStatus.UPLOADED)
        response = client.post(f"/api/v1/deals/{deal.id}/approve-terms", headers=org_headers)

        assert response.status_code == 400
        assert response.json()["error_code"] == "DFG-101"

    def test_approve_terms_queues_task(self, client: TestClient, org_headers, make_deal, dispatcher):
        """Test approving held terms queues the continuation."""
        deal = make_deal(status=DealStatus.NEEDS_TERM_REVIEW)
        response = client.post(f"/api/v1/deals/{deal.id}/approve-terms", headers=org_headers)

        assert response.status_code == 202
        assert dispatcher.queued[0][0] == "approve"


class TestIssueEndpoints:
    """Tests for listing and resolving verification issues."""

    def test_list_issues(self, client: TestClient, org_headers, pending_issue):
        """Test listing issues with pending count."""
        response = client.get(f"/api/v1/deals/{pending_issue.deal_id}/issues", headers=org_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["pending"] == 1
        assert data["issues"][0]["field_path"] == "income.totalIncome_line9"

    def test_list_issues_bad_filter(self, client: TestClient, org_headers, pending_issue):
        """Test an unknown status filter is rejected."""
        response = client.get(
            f"/api/v1/deals/{pending_issue.deal_id}/issues",
            params={"status_filter": "bogus"},
            headers=org_headers,
        )

        assert response.status_code == 400

    def test_resolve_then_resume(self, client: TestClient, org_headers, pending_issue, dispatcher):
        """Test resolving the last issue allows the resume to be queued."""
        response = client.post(
            f"/api/v1/issues/{pending_issue.id}/resolve",
            json={"resolution": "corrected", "corrected_value": 85000, "note": "Recomputed"},
            headers=org_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "CORRECTED"
        assert data["corrected_value"] == 85000
        assert data["resolved_by"] == "officer@example.com"

        resume = client.post(f"/api/v1/deals/{pending_issue.deal_id}/pipeline/resume", headers=org_headers)
        assert resume.status_code == 202
        assert dispatcher.queued[0][0] == "resume"

    def test_resolve_unknown_issue(self, client: TestClient, org_headers):
        """Test resolving a missing issue is a 404."""
        response = client.post(
            f"/api/v1/issues/{uuid.uuid4()}/resolve", json={"resolution": "CONFIRMED"}, headers=org_headers,
        )

        assert response.status_code == 404
        assert response.json()["error_code"] == "DFG-202"


class TestGeneratedDocumentEndpoints:
    """Tests for generated document listing, regeneration and downloads."""

    def test_list_generated_documents(self, client: TestClient, org_headers, generated_document):
        """Test listing a deal's generated documents."""
        response = client.get(
            f"/api/v1/deals/{generated_document.deal_id}/generated-documents", headers=org_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["documents"][0]["version"] == 2

    def test_regenerate_stale_version(self, client: TestClient, org_headers, generated_document):
        """Test a stale expected_version is a 409."""
        response = client.post(
            f"/api/v1/generated-documents/{generated_document.id}/regenerate",
            json={"expected_version": 1},
            headers=org_headers,
        )

        assert response.status_code == 409
        assert response.json()["error_code"] == "DFG-301"

    def test_generation_routes_are_sync(self):
        """Test routes that draft or zip documents are plain functions, so they run off the event loop."""
        for endpoint in (
            generated_documents.regenerate_document,
            generated_documents.retry_documents,
            generated_documents.download_package,
        ):
            assert not inspect.iscoroutinefunction(endpoint), endpoint.__name__

    def test_regenerate_in_progress(self, client: TestClient, org_headers, generated_document, db_session):
        """Test a document already regenerating is a 409."""
        generated_document.status = DocumentStatus.REGENERATING
        db_session.commit()

        response = client.post(
            f"/api/v1/generated-documents/{generated_document.id}/regenerate", json={}, headers=org_headers,
        )

        assert response.status_code == 409
        assert response.json()["error_code"] == "DFG-302"

    def test_download_signed_url(self, client: TestClient, org_headers, generated_document):
        """Test the signed URL serves the current version's bytes."""
        response = client.get(
            f"/api/v1/generated-documents/{generated_document.id}/download", headers=org_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["version"] == 2
        assert data["expires_in"] == 300

        download = client.get(data["url"])
        assert download.status_code == 200
        assert download.content == b"version 2"

    def test_download_prior_version(self, client: TestClient, org_headers, generated_document):
        """Test a prior version is downloadable by number."""
        data = client.get(
            f"/api/v1/generated-documents/{generated_document.id}/download",
            params={"version": 1},
            headers=org_headers,
        ).json()

        assert data["version"] == 1
        assert client.get(data["url"]).content == b"version 1"

    def test_download_unknown_version(self, client: TestClient, org_headers, generated_document):
        """Test an unknown version is a 404."""
        response = client.get(
            f"/api/v1/generated-documents/{generated_document.id}/download",
            params={"version": 7},
            headers=org_headers,
        )

        assert response.status_code == 404
        assert response.json()["error_code"] == "DFG-203"

    def test_tampered_signature(self, client: TestClient, org_headers, generated_document):
        """Test a tampered signature is a 403."""
        url = client.get(
            f"/api/v1/generated-documents/{generated_document.id}/download", headers=org_headers,
        ).json()["url"]

        response = client.get(url[:-4] + "0000")

        assert response.status_code == 403
        assert response.json()["error_code"] == "DFG-205"


@pytest.fixture
def memos(db_session, storage, generated_document):
    deal_id = generated_document.deal_id
    rows = []
    for version in (1, 2):
        key = memo_key(ORG_ID, deal_id, version)
        storage.put(key, f"memo {version}".encode("utf-8"), "application/octet-stream")
        rows.append(CreditMemo(deal_id=deal_id, version=version, storage_key=key, sections={}))
    db_session.add_all(rows)
    db_session.commit()
    return rows


class TestDealOutputEndpoints:
    """Tests for credit memo links, the loan package and bulk retries."""

    def test_memo_latest(self, client: TestClient, org_headers, memos):
        """Test the latest memo version is linked by default."""
        response = client.get(f"/api/v1/deals/{memos[0].deal_id}/memo", headers=org_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["version"] == 2
        assert data["expires_in"] == 300
        assert client.get(data["url"]).content == b"memo 2"

    def test_memo_by_version(self, client: TestClient, org_headers, memos):
        """Test an earlier memo version by number."""
        data = client.get(
            f"/api/v1/deals/{memos[0].deal_id}/memo", params={"version": 1}, headers=org_headers,
        ).json()

        assert client.get(data["url"]).content == b"memo 1"

    def test_memo_unknown_version(self, client: TestClient, org_headers, memos):
        """Test an unknown memo version is a 404."""
        response = client.get(
            f"/api/v1/deals/{memos[0].deal_id}/memo", params={"version": 5}, headers=org_headers,
        )

        assert response.status_code == 404
        assert response.json()["error_code"] == "DFG-206"

    def test_memo_missing(self, client: TestClient, org_headers, make_deal):
        """Test a deal without a memo is a 404."""
        deal = make_deal(status=DealStatus.COMPLETE)

        response = client.get(f"/api/v1/deals/{deal.id}/memo", headers=org_headers)

        assert response.status_code == 404
        assert response.json()["error_code"] == "DFG-206"

    def test_package_zip(self, client: TestClient, org_headers, memos):
        """Test the package holds the current documents and the latest memo."""
        response = client.get(f"/api/v1/deals/{memos[0].deal_id}/package", headers=org_headers)

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/zip"
        assert 'filename="Acme_Holdings_LLC_Loan_Package.zip"' in response.headers["content-disposition"]
        with zipfile.ZipFile(io.BytesIO(response.content)) as archive:
            assert sorted(archive.namelist()) == ["Credit_Memo.docx", "Promissory_Note.docx"]
            assert archive.read("Promissory_Note.docx") == b"version 2"
            assert archive.read("Credit_Memo.docx") == b"memo 2"

    def test_package_without_documents(self, client: TestClient, org_headers, make_deal):
        """Test a deal with nothing generated is a 404."""
        deal = make_deal(status=DealStatus.COMPLETE)

        response = client.get(f"/api/v1/deals/{deal.id}/package", headers=org_headers)

        assert response.status_code == 404
        assert response.json()["error_code"] == "DFG-207"

    def test_package_other_org(self, client: TestClient, memos):
        """Test another organization cannot download the package."""
        response = client.get(
            f"/api/v1/deals/{memos[0].deal_id}/package", headers={"X-Organization-ID": str(OTHER_ORG_ID)},
        )

        assert response.status_code == 404

    def test_retry_flagged_documents(self, client: TestClient, org_headers, generated_document, db_session, audit):
        """Test flagged documents are regenerated and reported per document."""
        inputs = RulesInput(
            requested_amount=500_000, global_dscr=2.0, back_end_dti=0.30,
            risk_rating="low", months_of_reserves=6, requested_term_months=60,
        )
        generated_document.deal.terms = run_rules_engine(inputs, "conventional_business", "TX").to_dict()
        generated_document.status = DocumentStatus.FLAGGED
        db_session.commit()

        response = client.post(
            f"/api/v1/deals/{generated_document.deal_id}/retry-documents", headers=org_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert (data["retried"], data["succeeded"], data["failed"]) == (1, 1, 0)
        assert data["results"][0]["doc_type"] == "promissory_note"
        assert data["results"][0]["version"] == 3
        assert "doc.regenerated" in audit.actions()

    def test_retry_without_terms(self, client: TestClient, org_headers, generated_document):
        """Test a deal with no structured terms is a 400."""
        response = client.post(
            f"/api/v1/deals/{generated_document.deal_id}/retry-documents", headers=org_headers,
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "DFG-100"
