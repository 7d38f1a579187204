"""
Test fixtures for the AI core tests.
"""
import pytest
from datetime import datetime
from unittest.mock import patch
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from httpx import AsyncClient, ASGITransport

from aicore.database import Base, get_db
from aicore.main import app
from aicore.models import UsageLog
from aicore.services.actor import Actor
from aicore.services.registry import ModelRegistry


# Create test database engine (SQLite in-memory)
TEST_DATABASE_URL = "sqlite:///:memory:"

test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False}
)


# Enable foreign key constraints for SQLite
@event.listens_for(test_engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

# Midday, so "now minus a few hours" stays on the same calendar day
FIXED_NOW = datetime(2026, 3, 15, 12, 0, 0)


@pytest.fixture(scope="function")
def db_session():
    """
    Create a fresh database session for each test.
    Creates all tables before the test and drops them after.
    """
    Base.metadata.create_all(bind=test_engine)

    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def override_get_db(db_session):
    """
    Override the get_db dependency to use the test database session.
    """
    def _override_get_db():
        try:
            yield db_session
        finally:
            pass

    return _override_get_db


@pytest.fixture(scope="function")
async def client(override_get_db):
    """
    Create an async test client with the database dependency overridden.
    """
    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def frozen_now():
    """Pin the clock used by the usage meter."""
    with patch("aicore.services.usage_metering.utcnow", return_value=FIXED_NOW):
        yield FIXED_NOW


@pytest.fixture
def provider_service(db_session):
    return ModelRegistry(db_session).register_service("Mistral AI", "mistral")


@pytest.fixture
def ai_model(db_session, provider_service):
    """A priced model: $2 per 1M input tokens, $6 per 1M output tokens."""
    return ModelRegistry(db_session).register_model(
        provider_service,
        "Mistral Large",
        "mistral-large-latest",
        cost_per_input_token=0.000002,
        cost_per_output_token=0.000006,
    )


@pytest.fixture
def actor():
    return Actor(user_id=1)


@pytest.fixture
def other_actor():
    return Actor(user_id=2)


@pytest.fixture
def admin():
    return Actor(user_id=99, is_admin=True)


@pytest.fixture
def make_usage_log(db_session, ai_model):
    """Insert a usage log row directly, bypassing the meter's fan-out."""
    def _make(**overrides):
        values = dict(
            user_id=1,
            model_id=ai_model.id,
            operation_type="chat",
            input_tokens=60,
            output_tokens=40,
            cost=0.01,
            response_time_ms=100,
            status="success",
            created_at=FIXED_NOW,
        )
        values.update(overrides)
        log = UsageLog(**values)
        db_session.add(log)
        db_session.commit()
        return log

    return _make


@pytest.fixture
def file_sessions(tmp_path):
    """Two independent sessions on one on-disk database."""
    engine = create_engine(f"sqlite:///{tmp_path / 'shared.db'}")
    event.listen(engine, "connect", set_sqlite_pragma)

    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    first, second = factory(), factory()
    try:
        yield first, second
    finally:
        first.close()
        second.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
