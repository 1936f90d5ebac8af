"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database (schema created and dropped per test)
- Organization / calendar / voice agent fixtures
- HTTPX AsyncClient bound to the app with get_db overridden
"""
import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Generator

from cryptography.fernet import Fernet

# Configure the app for tests before anything imports settings.
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["TESTING"] = "1"
os.environ["ENV"] = "test"
os.environ.setdefault("FERNET_KEY", Fernet.generate_key().decode())
os.environ.setdefault("INTERNAL_SECRET", "test-internal-secret")

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.orm import Session

from app.main import app
from app.core.deps import get_db
from app.core.rate_limit import limiter
from app.db.base import Base
from app.db.session import engine, SessionLocal
from app.db.enums import AppointmentSource, AppointmentStatus
from app.db.models import Appointment, Organization
from app.services import calendar_settings_service, token_vault, voice_connection_service


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Fresh schema per test.

    App code commits freely; the whole schema is dropped afterwards.
    """
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_rate_limits() -> Generator[None, None, None]:
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture(scope="function")
def test_org(db: Session) -> Organization:
    """Create a test organization."""
    org = Organization(
        id=uuid.uuid4(),
        name="Test Organization",
        slug=f"test-org-{uuid.uuid4().hex[:8]}",
        timezone="Pacific/Auckland",
    )
    db.add(org)
    db.commit()
    return org


@pytest.fixture(scope="function")
def connected_calendar(db: Session, test_org: Organization):
    """Org with a stored Google credential (valid for an hour) and a selected calendar."""
    token_vault.save_credential(
        db,
        test_org.id,
        access_token="access-token",
        refresh_token="refresh-token",
        expires_in=3600,
        account_email="owner@example.com",
    )
    return calendar_settings_service.update_calendar_settings(
        db,
        test_org.id,
        connected=True,
        calendar_id="primary",
        account_email="owner@example.com",
    )


@pytest.fixture(scope="function")
def voice_agent(db: Session, test_org: Organization) -> tuple[str, str]:
    """Active Retell agent connection; returns (agent_id, webhook_secret)."""
    agent_id = "agent_test_123"
    _, secret = voice_connection_service.rotate_webhook_secret(
        db, test_org.id, "retell", agent_id
    )
    return agent_id, secret


@pytest.fixture(scope="function")
def make_appointment(db: Session):
    """Factory: insert a scheduled local appointment tomorrow 10:00-11:00 UTC."""

    def _make(org: Organization, **overrides) -> Appointment:
        start = datetime.now(timezone.utc).replace(
            hour=10, minute=0, second=0, microsecond=0
        ) + timedelta(days=1)
        values = {
            "organization_id": org.id,
            "customer_name": "Jane Doe",
            "customer_phone": "0211234567",
            "customer_email": "jane@example.com",
            "service_name": "Haircut",
            "starts_at": start,
            "ends_at": start + timedelta(hours=1),
            "status": AppointmentStatus.SCHEDULED.value,
            "source": AppointmentSource.LOCAL.value,
        }
        values.update(overrides)
        appointment = Appointment(**values)
        db.add(appointment)
        db.commit()
        return appointment

    return _make


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """
    Create AsyncClient for testing endpoints.
    """
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as c:
        yield c

    app.dependency_overrides.clear()
