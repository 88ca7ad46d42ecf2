import os
import re
import sys
import tempfile
from datetime import timedelta
from decimal import Decimal
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

_DB_DIR = tempfile.mkdtemp(prefix="attendance-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR}/test.db"
os.environ["TOKEN_HASH_SECRET"] = "test-token-secret"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["PAYMENT_WEBHOOK_TOKEN"] = "test-callback-token"
os.environ["CHECKIN_TOKEN_VALIDITY_MINUTES"] = "15"
os.environ["SCHEDULER_ENABLED"] = "false"

from attendance_service.config import get_config  # noqa: E402
from attendance_service.database import Base, get_engine, get_session, init_engine, utcnow  # noqa: E402
from attendance_service.integrations.base import IntegrationError  # noqa: E402
from attendance_service.integrations.payment_gateway import (  # noqa: E402
    GATEWAY_EXPIRED,
    GATEWAY_PENDING,
    GatewayInvoice,
)
from attendance_service.main import app  # noqa: E402
from attendance_service.models import Event, User  # noqa: E402
from attendance_service.services.auth import AuthService  # noqa: E402
from attendance_service.services.checkin import CheckInService  # noqa: E402
from attendance_service.services.notifications import NotificationDispatcher  # noqa: E402
from attendance_service.services.payments import PaymentService  # noqa: E402
from attendance_service.services.registrations import RegistrationService  # noqa: E402
from attendance_service.services.user_events import UserEventService  # noqa: E402

TOKEN_PATTERN = re.compile(r"letter-spacing: 6px;\">([A-Z0-9]+)</p>")


class StubPaymentGateway:
    """In-memory stand-in for the invoice API."""

    def __init__(self):
        self.invoices = {}
        self.created = []
        self.expired = []
        self.fail_create = False
        self.fail_get = False
        self.expiry_date = None

    def create_invoice(self, **kwargs):
        if self.fail_create:
            raise IntegrationError("gateway unavailable", status_code=503)
        invoice_id = f"inv_{len(self.created) + 1}"
        self.created.append(kwargs)
        self.invoices[invoice_id] = GATEWAY_PENDING
        return GatewayInvoice(
            id=invoice_id,
            status=GATEWAY_PENDING,
            invoice_url=f"https://checkout.test/{invoice_id}",
            expiry_date=self.expiry_date,
        )

    def get_invoice(self, invoice_id):
        if self.fail_get:
            raise IntegrationError("gateway timeout")
        return GatewayInvoice(id=invoice_id, status=self.invoices.get(invoice_id, GATEWAY_PENDING))

    def expire_invoice(self, invoice_id):
        self.expired.append(invoice_id)
        self.invoices[invoice_id] = GATEWAY_EXPIRED
        return GatewayInvoice(id=invoice_id, status=GATEWAY_EXPIRED)

    def set_status(self, invoice_id, status):
        self.invoices[invoice_id] = status


class StubEmailClient:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to, subject, body):
        if self.fail:
            raise IntegrationError("email service unavailable", status_code=502)
        self.sent.append({"to": to, "subject": subject, "body": body})
        return {"status": "queued"}

    def last_token(self):
        match = TOKEN_PATTERN.search(self.sent[-1]["body"])
        assert match is not None
        return match.group(1)


@pytest.fixture(scope="session")
def database_url():
    return os.environ["DATABASE_URL"]


@pytest.fixture(scope="session", autouse=True)
def setup_database(database_url):
    engine = init_engine(database_url)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(autouse=True)
def clean_database():
    engine = get_engine()
    with engine.begin() as connection:
        for table in reversed(Base.metadata.sorted_tables):
            connection.execute(table.delete())
    yield


@pytest.fixture
def config():
    return get_config()


@pytest.fixture
def session():
    db_session = get_session()
    try:
        yield db_session
    finally:
        db_session.close()


@pytest.fixture
def gateway():
    return StubPaymentGateway()


@pytest.fixture
def email_client():
    return StubEmailClient()


@pytest.fixture
def notifier(email_client):
    return NotificationDispatcher(email_client)


@pytest.fixture
def registration_service(session, notifier, config):
    return RegistrationService(session, notifier=notifier, config=config)


@pytest.fixture
def payment_service(session, gateway, notifier, config):
    return PaymentService(session, gateway=gateway, notifier=notifier, config=config)


@pytest.fixture
def checkin_service(session, config):
    return CheckInService(session, config=config)


@pytest.fixture
def user_event_service(session, config):
    return UserEventService(session, config=config)


@pytest.fixture
def make_user(session):
    counter = {"value": 0}

    def factory(email=None, full_name="Alex Martin"):
        counter["value"] += 1
        user = User(email=email or f"user{counter['value']}@example.com", full_name=full_name)
        session.add(user)
        session.commit()
        return user

    return factory


@pytest.fixture
def make_event(session):
    def factory(
        *,
        title="Atelier Python",
        capacity=10,
        price="0",
        starts_in=timedelta(days=2),
        duration=timedelta(hours=3),
        start_time=None,
    ):
        start = start_time or utcnow() + starts_in
        event = Event(
            title=title,
            capacity=capacity,
            price=Decimal(price),
            start_time=start,
            end_time=start + duration,
            location="Jakarta",
        )
        session.add(event)
        session.commit()
        return event

    return factory


@pytest.fixture
def client(gateway, email_client):
    app.config["TESTING"] = True
    app.config["PAYMENT_GATEWAY_CLIENT"] = gateway
    app.config["EMAIL_CLIENT"] = email_client
    with app.test_client() as test_client:
        yield test_client
    app.config.pop("PAYMENT_GATEWAY_CLIENT", None)
    app.config.pop("EMAIL_CLIENT", None)


@pytest.fixture
def auth_headers(session, config):
    def factory(user):
        token = AuthService(session, config=config).issue_access_token(user.id)
        return {"Authorization": f"Bearer {token}"}

    return factory
