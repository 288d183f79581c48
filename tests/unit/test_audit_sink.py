"""
Unit tests for the background audit sink.
"""
from dealforge.models.audit import AuditLog
from dealforge.services.audit_sink import AuditSink
from tests.fakes import ORG_ID


class TestAuditSink:
    """Tests for AuditSink."""

    def test_writes_entry(self, db_session, session_factory):
        """Test an entry is persisted off the caller's thread."""
        sink = AuditSink(session_factory=session_factory)
        try:
            written = sink.record(ORG_ID, "officer@example.com", "deal.created", target="deal-1",
                                  metadata={"source": "test"}).result(timeout=5)
        finally:
            sink.shutdown()

        assert written is True
        entry = db_session.query(AuditLog).one()
        assert entry.action == "deal.created"
        assert entry.organization_id == str(ORG_ID)
        assert entry.extra_data == {"source": "test"}

    def test_failures_are_swallowed(self):
        """Test a broken database never reaches the caller."""
        def broken_factory():
            raise RuntimeError("database unavailable")

        sink = AuditSink(session_factory=broken_factory)
        try:
            future = sink.record(ORG_ID, None, "deal.updated")

            assert future.result(timeout=5) is False
        finally:
            sink.shutdown()

    def test_commit_failure_rolls_back(self):
        """Test a failed commit is rolled back and reported as not written."""
        class FailingSession:
            rolled_back = False
            closed = False

            def add(self, obj):
                pass

            def commit(self):
                raise RuntimeError("disk full")

            def rollback(self):
                FailingSession.rolled_back = True

            def close(self):
                FailingSession.closed = True

        sink = AuditSink(session_factory=FailingSession)
        try:
            assert sink.record(ORG_ID, None, "doc.regenerated").result(timeout=5) is False
        finally:
            sink.shutdown()

        assert FailingSession.rolled_back is True
        assert FailingSession.closed is True
