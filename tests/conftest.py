"""
Pytest fixtures for MotorLog notifier tests.
"""

import os
import sys
import pytest

# Add notifier to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'notifier'))

# Set DATABASE_URL BEFORE importing app to use SQLite for tests
os.environ['DATABASE_URL'] = 'sqlite:///:memory:'
os.environ['SCHEDULER_ENABLED'] = 'false'
os.environ['RATELIMIT_ENABLED'] = 'false'
os.environ.setdefault('SECRET_KEY', 'test-secret-key')

from app import app as flask_app  # noqa: E402
from database import SessionLocal, engine  # noqa: E402
from models import Base  # noqa: E402
from tests.test_helpers import FakeTransport  # noqa: E402

TEST_VAPID_PUBLIC_KEY = 'BTestPublicKey-not-a-real-key'
TEST_VAPID_PRIVATE_KEY = 'test-private-key-not-a-real-key'


@pytest.fixture
def app():
    """Create application for testing."""
    flask_app.config['TESTING'] = True

    # Create all tables in the test database
    Base.metadata.create_all(engine)

    yield flask_app

    # Clean up tables after test
    SessionLocal.remove()
    Base.metadata.drop_all(engine)


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def db_session(app):
    """Provide a database session for tests."""
    session = SessionLocal()
    yield session
    session.rollback()
    SessionLocal.remove()


@pytest.fixture
def vapid_keys(monkeypatch):
    """Configure a VAPID key pair."""
    monkeypatch.setattr('config.Config.VAPID_PUBLIC_KEY', TEST_VAPID_PUBLIC_KEY)
    monkeypatch.setattr('config.Config.VAPID_PRIVATE_KEY', TEST_VAPID_PRIVATE_KEY)


@pytest.fixture
def no_vapid_keys(monkeypatch):
    """Remove the VAPID key pair from configuration."""
    monkeypatch.setattr('config.Config.VAPID_PUBLIC_KEY', None)
    monkeypatch.setattr('config.Config.VAPID_PRIVATE_KEY', None)


@pytest.fixture
def fake_transport():
    """Transport that delivers everything unless told otherwise."""
    return FakeTransport()


@pytest.fixture
def subscription_json():
    """Browser PushSubscription JSON."""
    return {
        'endpoint': 'https://fcm.googleapis.com/fcm/send/abc:def?x=1',
        'expirationTime': None,
        'keys': {'p256dh': 'BNcRdreALRFXTkOOUHK1EtK2wtaz5Ry4YfYCA', 'auth': 'tBHItJI5svbpez7KI4CCXg'},
    }
