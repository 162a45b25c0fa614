"""Shared pytest fixtures: in-memory cache database, fake Google services, API client."""

from __future__ import annotations

import os
import sys
from collections.abc import Iterable, Iterator
from datetime import date
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool


def _insert_repo_root() -> None:
    """Make the repository root importable so ``tests.fakes`` resolves."""

    repo_root = Path(__file__).resolve().parents[1]
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))


_insert_repo_root()

import sheetledger.models  # noqa: E402,F401  # Ensure models are registered with metadata
from sheetledger import database, models  # noqa: E402
from sheetledger.config import Settings  # noqa: E402
from sheetledger.database import Base  # noqa: E402
from sheetledger.server import create_app  # noqa: E402
from tests.fakes import FakeOAuthClient, FakeSheetsGateway, sign_in  # noqa: E402

TODAY = date(2024, 3, 20)


def pytest_report_header(config: pytest.Config) -> Iterable[str]:  # pragma: no cover - pytest hook
    return [f"SheetLedger repo: {Path.cwd()}", f"SHEETLEDGER_LOG_LEVEL={os.environ.get('SHEETLEDGER_LOG_LEVEL', 'INFO')}"]


@pytest.fixture(autouse=True)
def _quiet_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep logging switches from the developer's shell out of the tests."""

    monkeypatch.delenv("SHEETLEDGER_JSON_LOGS", raising=False)
    monkeypatch.setenv("SHEETLEDGER_LOG_LEVEL", "INFO")


@pytest.fixture(scope="session")
def engine():
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )

    # pysqlite only handles SAVEPOINT correctly when SQLAlchemy emits BEGIN itself.
    @event.listens_for(test_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(test_engine, "begin")
    def _emit_begin(connection):
        connection.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture()
def db_session(engine) -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    TestingSessionLocal = sessionmaker(
        bind=connection,
        autoflush=False,
        autocommit=False,
        future=True,
        join_transaction_mode="create_savepoint",
    )
    session: Session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        environment="test",
        google_client_id="test-client-id",
        google_client_secret="test-client-secret",
        session_secret="test-session-secret-with-enough-length",
        database_url="sqlite://",
    )


@pytest.fixture()
def fake_gateway() -> FakeSheetsGateway:
    return FakeSheetsGateway()


@pytest.fixture()
def fake_oauth() -> FakeOAuthClient:
    return FakeOAuthClient()


@pytest.fixture()
def user(db_session: Session) -> models.User:
    record = models.User(google_id="google-123", email="ada@example.com", access_token="access-1", refresh_token="refresh-1")
    db_session.add(record)
    db_session.commit()
    return record


@pytest.fixture()
def app(settings, db_session, fake_gateway, fake_oauth):
    application = create_app(
        settings,
        gateway_factory=lambda credentials: fake_gateway,
        oauth_client=fake_oauth,
        today=lambda: TODAY,
    )

    def override_get_db():
        yield db_session

    application.dependency_overrides[database.get_db] = override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture()
def client(app) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def signed_in_client(client: TestClient) -> TestClient:
    sign_in(client)
    return client
