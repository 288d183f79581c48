"""
Fire-and-forget audit recording.

Audit writes happen on a background worker thread with their own
session. A failed write is logged and dropped; it never reaches the
caller's operation.
"""
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional

import structlog
from sqlalchemy.orm import Session

from dealforge.database import SessionLocal
from dealforge.models.audit import AuditLog

logger = structlog.get_logger(__name__)


class AuditSink:
    """Writes AuditLog rows off the request path."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal, max_workers: int = 1):
        self._session_factory = session_factory
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="audit")

    def record(
        self,
        org_id,
        actor_id,
        action: str,
        target: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Future:
        """Queue one audit entry. The returned future resolves to True when the row was written."""
        return self._executor.submit(self._write, org_id, actor_id, action, target, metadata)

    def _write(self, org_id, actor_id, action, target, metadata) -> bool:
        db = None
        try:
            db = self._session_factory()
            db.add(AuditLog.create_entry(
                action=action,
                organization_id=org_id,
                actor_id=actor_id,
                target=target,
                metadata=metadata,
            ))
            db.commit()
            logger.info("audit_recorded", action=action, target=target, org_id=str(org_id))
            return True
        except Exception as e:
            logger.error("audit_write_failed", action=action, target=target, error=str(e))
            if db is not None:
                db.rollback()
            return False
        finally:
            if db is not None:
                db.close()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


_sink_instance: Optional[AuditSink] = None


def get_audit_sink() -> AuditSink:
    """Get singleton audit sink instance."""
    global _sink_instance
    if _sink_instance is None:
        _sink_instance = AuditSink()
    return _sink_instance
