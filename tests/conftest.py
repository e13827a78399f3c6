"""
Pytest configuration and fixtures for Campaign Portal API tests.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ["REMINDERS_ENABLED"] = "false"

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from portal.auth import AuthUser, issue_session
from portal.config import get_settings
from portal.database import Base, get_db
from portal.dependencies import get_clock, get_email_sender, get_storage
from portal.errors import DeliveryFailure
from portal.limiter import limiter
from portal.main import app
from portal.mailer import EmailMessage
from portal.models import Agency, Campaign, Tenant, User
from portal.repository import CampaignRepository
from portal.storage import LocalObjectStorage
from portal.workflow.engine import WorkflowEngine
from portal.workflow.states import CampaignStatus, PortalType

# Disable rate limiting for tests
limiter.enabled = False

# Use in-memory SQLite for tests with shared connection
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
CUSTOMER_EMAIL = "customer@example.com"
AGENCY_EMAIL = "studio@agency.example"
CS_EMAIL = "cs@example.com"

# Global session for sharing across requests
_test_session = None


def get_test_db():
    """Get the shared test database session."""
    global _test_session
    try:
        yield _test_session
    finally:
        pass


class FrozenClock:
    """Callable clock that only moves when a test moves it."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class RecordingEmailSender:
    """Stands in for EmailSender; keeps every message instead of sending."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to: str, subject: str, html: str):
        if self.fail:
            raise DeliveryFailure("Email API error: 500 - boom")
        self.sent.append(EmailMessage(to, subject, html))

    def send_message(self, message: EmailMessage):
        self.send(message.to, message.subject, message.html)

    def to(self, address: str):
        return [m for m in self.sent if m.to == address]


class RecordingHub:
    """Collects published events for assertions."""

    def __init__(self):
        self.events = []

    def publish(self, event) -> int:
        self.events.append(event)
        return 1

    def types(self):
        return [e.event_type for e in self.events]


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    global _test_session

    # Create all tables
    Base.metadata.create_all(bind=engine)

    # Create a session
    _test_session = TestingSessionLocal()

    # Override the get_db dependency
    app.dependency_overrides[get_db] = get_test_db

    yield _test_session

    # Cleanup
    app.dependency_overrides.clear()
    _test_session.close()
    _test_session = None

    # Drop all tables
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture
def hub():
    return RecordingHub()


@pytest.fixture
def storage(tmp_path):
    return LocalObjectStorage(str(tmp_path / "uploads"), "test-bucket", "test-secret")


@pytest.fixture(scope="function")
def client(db, email_sender, clock, storage):
    """Create a test client."""
    app.dependency_overrides[get_email_sender] = lambda: email_sender
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_storage] = lambda: storage
    with TestClient(app) as c:
        yield c


@pytest.fixture
def workflow(db, hub, email_sender, storage, clock, settings):
    """Workflow engine bound to the test session and recording collaborators."""
    return WorkflowEngine(
        CampaignRepository(db),
        hub=hub,
        email_sender=email_sender,
        storage=storage,
        settings=settings,
        clock=clock,
    )


# ============================================================
# DATA
# ============================================================

@pytest.fixture
def tenant(db):
    # TestClient sends Host: testserver
    tenant = Tenant(domain="testserver", name="Test Tenant", is_active=True)
    db.add(tenant)
    db.commit()
    db.refresh(tenant)
    return tenant


@pytest.fixture
def other_tenant(db):
    tenant = Tenant(domain="other.example", name="Other Tenant", is_active=True)
    db.add(tenant)
    db.commit()
    db.refresh(tenant)
    return tenant


@pytest.fixture
def cs_user(db, tenant):
    user = User(tenant_id=tenant.id, email=CS_EMAIL, display_name="Casey", role="cs", is_active=True)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def agency(db, tenant):
    agency = Agency(tenant_id=tenant.id, name="Studio North", email=AGENCY_EMAIL, contact_name="Nora", is_active=True)
    db.add(agency)
    db.commit()
    db.refresh(agency)
    return agency


@pytest.fixture
def make_campaign(db, tenant, cs_user, agency):
    """Factory for campaigns in any status, deadlines relative to NOW."""
    def factory(
        status: CampaignStatus = CampaignStatus.AWAITING_ASSETS,
        asset_deadline: datetime = None,
        go_live_date: datetime = None,
        customer_email: str = CUSTOMER_EMAIL,
        tenant_id: int = None,
        agency_id: int = None,
        cs_user_id: int = None,
    ) -> Campaign:
        campaign = Campaign(
            tenant_id=tenant_id or tenant.id,
            customer_name="Bakery Hansen",
            customer_email=customer_email,
            campaign_type="social_media",
            agency_id=agency_id or agency.id,
            cs_user_id=cs_user_id or cs_user.id,
            status=CampaignStatus(status).value,
            asset_deadline=asset_deadline or NOW + timedelta(days=10),
            go_live_date=go_live_date or NOW + timedelta(days=20),
        )
        db.add(campaign)
        db.commit()
        db.refresh(campaign)
        return campaign

    return factory


@pytest.fixture
def campaign(make_campaign):
    return make_campaign()


# ============================================================
# SESSIONS
# ============================================================

@pytest.fixture
def session_for(tenant):
    """Build an AuthUser for the test tenant."""
    def factory(portal_type: PortalType, email: str, campaign_id: int = None, tenant_id: int = None) -> AuthUser:
        return AuthUser(
            email=email,
            tenant_id=tenant_id or tenant.id,
            portal_type=PortalType(portal_type),
            campaign_id=campaign_id,
        )

    return factory


@pytest.fixture
def headers_for(session_for):
    """Bearer headers for a signed session."""
    def factory(portal_type: PortalType, email: str, campaign_id: int = None, tenant_id: int = None) -> dict:
        token = issue_session(session_for(portal_type, email, campaign_id, tenant_id))
        return {"Authorization": f"Bearer {token}"}

    return factory


@pytest.fixture
def cs_headers(headers_for, cs_user):
    return headers_for(PortalType.CS, CS_EMAIL)


@pytest.fixture
def customer_headers(headers_for, campaign):
    return headers_for(PortalType.CUSTOMER, CUSTOMER_EMAIL, campaign.id)


@pytest.fixture
def agency_headers(headers_for, agency):
    return headers_for(PortalType.AGENCY, AGENCY_EMAIL)
