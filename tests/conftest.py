from datetime import date, datetime, timedelta

import pytest
from sqlalchemy.pool import NullPool

from app import create_app
from config import Config
from engine.bookings import BookingEngine, BookingRequest
from engine.policy import current_policy
from models import db

ADMIN_KEY = "test-admin-key"
GATEWAY_TOKEN = "test-gateway-token"

# Naive UTC, a Monday morning in Nairobi
NOW = datetime(2026, 3, 2, 6, 0)


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def app(tmp_path):
    """App bound to a throwaway SQLite file shared by every thread in a test."""
    test_config = type("TestConfig", (Config,), {
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///" + str(tmp_path / "test.db"),
        "SQLALCHEMY_ENGINE_OPTIONS": {
            "poolclass": NullPool,
            "connect_args": {"timeout": 30, "check_same_thread": False},
        },
        "ADMIN_API_KEY": ADMIN_KEY,
        "GATEWAY_SHARED_SECRET": GATEWAY_TOKEN,
        "STRIPE_WEBHOOK_SECRET": "whsec_test",
    })
    app = create_app(test_config)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_headers():
    return {"X-Admin-Key": ADMIN_KEY, "X-Admin-User": "jane"}


@pytest.fixture
def policy(app):
    return current_policy()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(app, policy, clock):
    return BookingEngine(policy, clock=clock)


@pytest.fixture
def make_booking(engine, clock):
    """Create a booking through the engine; each call takes the next free hour."""
    hours = iter(range(8, 20))

    def _make(**overrides):
        payload = {
            "name": "Amina Otieno",
            "email": "amina@example.com",
            "phone": "+254700000001",
            "service": "Classic full set",
            "date": (clock.now.date() + timedelta(days=10)).isoformat(),
            "timeSlot": f"{next(hours):02d}:00",
            "originalPrice": 5000,
        }
        payload.update(overrides)
        return engine.create(BookingRequest.from_payload(payload)).booking

    return _make


def future_date(days: int = 10) -> str:
    return (date.today() + timedelta(days=days)).isoformat()
