"""
Pytest configuration and fixtures.
"""
from pathlib import Path
from typing import Callable, Dict, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from dealforge.api import dependencies
from dealforge.database import Base, get_db
from dealforge.main import app
from dealforge.models.deal import Deal, DealStatus
from dealforge.services.storage import ObjectStorage
from tests.fakes import ORG_ID, FakeDispatcher, FakeLLM, RecordingAudit


# Create in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db_session):
    """Session factory bound to the test database, for code that opens its own sessions."""
    return TestingSessionLocal


@pytest.fixture
def storage(tmp_path: Path) -> ObjectStorage:
    return ObjectStorage(root=tmp_path / "objects", signing_secret="test-secret", default_ttl=300)


@pytest.fixture
def unconfigured_llm() -> FakeLLM:
    return FakeLLM(configured=False)


@pytest.fixture
def audit() -> RecordingAudit:
    return RecordingAudit()



@pytest.fixture
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest.fixture(scope="function")
def client(
    db_session: Session,
    storage: ObjectStorage,
    unconfigured_llm: FakeLLM,
    audit: RecordingAudit,
    dispatcher: FakeDispatcher,
) -> Generator[TestClient, None, None]:
    """Create a test client with database and collaborator overrides."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[dependencies.get_storage] = lambda: storage
    app.dependency_overrides[dependencies.get_llm] = lambda: unconfigured_llm
    app.dependency_overrides[dependencies.get_audit] = lambda: audit
    app.dependency_overrides[dependencies.get_task_dispatcher] = lambda: dispatcher

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def org_headers() -> Dict[str, str]:
    return {"X-Organization-ID": str(ORG_ID), "X-Actor-ID": "officer@example.com"}


@pytest.fixture
def make_deal(db_session: Session) -> Callable[..., Deal]:
    """Factory for persisted deals."""

    def _make(**overrides) -> Deal:
        fields = dict(
            organization_id=ORG_ID,
            borrower_name="Acme Holdings LLC",
            loan_amount=500_000.0,
            loan_purpose="Equipment purchase",
            property_state="TX",
            loan_program="conventional_business",
            is_commercial=True,
            requested_term_months=60,
            status=DealStatus.CREATED,
        )
        fields.update(overrides)
        deal = Deal(**fields)
        db_session.add(deal)
        db_session.commit()
        db_session.refresh(deal)
        return deal

    return _make


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset global singleton instances before each test for proper isolation."""
    from dealforge.middleware.rate_limit import reset_rate_limiter
    import dealforge.services.storage as storage_module
    import dealforge.services.llm_client as llm_module

    reset_rate_limiter()
    storage_module._storage_instance = None
    llm_module._service_instance = None

    yield

    reset_rate_limiter()
    storage_module._storage_instance = None
    llm_module._service_instance = None
