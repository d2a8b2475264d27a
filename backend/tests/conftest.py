"""Shared pytest fixtures for test suite"""
import hashlib
import hmac
import json
import os
import sys
import time
from pathlib import Path
from typing import Generator
from unittest.mock import Mock, patch

import pytest
import stripe

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["ENCRYPTION_KEY"] = "test-encryption-secret"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_PRO_PRICE_ID"] = "price_pro_yearly"
os.environ["STRIPE_PRO_MONTHLY_PRICE_ID"] = "price_pro_monthly"
os.environ["SENANGPAY_MERCHANT_ID"] = "merchant123"
os.environ["SENANGPAY_SECRET_KEY"] = "senangpay-test-secret"
os.environ["GROQ_API_KEY"] = ""
os.environ["OTEL_EXPORTER_OTLP_ENDPOINT"] = ""

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.core.security import create_access_token
from app.db.session import get_db
from app.models import Base
from app.models.user import User
from app.services.auth_service import create_user
from app.utils.encryption import AmountCipher, get_amount_cipher


# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine with StaticPool for in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

TEST_PASSWORD = "TestPassword123!"
STRIPE_WEBHOOK_SECRET = "whsec_test_secret"
SENANGPAY_SECRET_KEY = "senangpay-test-secret"


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    # Create all tables
    Base.metadata.create_all(bind=test_engine)

    # Create session
    session = TestSessionLocal()

    try:
        yield session
    finally:
        session.close()
        # Drop all tables after test
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def cipher() -> AmountCipher:
    """Amount cipher with a fixed test key"""
    return AmountCipher.from_secret("fixed-test-key")


@pytest.fixture(scope="function")
def client(db_session: Session, cipher: AmountCipher) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database and a fixed amount cipher"""

    # Override get_db dependency to use test database
    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_amount_cipher] = lambda: cipher

    try:
        # Unhandled errors come back as the global handler's 500 response
        with TestClient(app, raise_server_exceptions=False) as test_client:
            yield test_client
    finally:
        # Cleanup - always clear overrides
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def test_user(db_session: Session) -> User:
    """Create a test user"""
    return create_user(email="rumina.user@example.com", password=TEST_PASSWORD, db=db_session, name="Test User")


@pytest.fixture(scope="function")
def test_user_2(db_session: Session) -> User:
    """Create a second test user for ownership tests"""
    return create_user(email="rumina.other@example.com", password=TEST_PASSWORD, db=db_session)


@pytest.fixture(scope="function")
def auth_headers(test_user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(test_user.id, test_user.email)}"}


@pytest.fixture(scope="function")
def authenticated_client(client: TestClient, auth_headers: dict) -> TestClient:
    """Client that sends the test user's bearer token"""
    client.headers.update(auth_headers)
    return client


@pytest.fixture(scope="function", autouse=True)
def auto_mock_stripe():
    """Automatically mock outbound Stripe calls; signature verification stays real"""
    with patch('app.services.stripe_service.stripe') as mock_stripe_module:
        mock_stripe_module.Customer.create = Mock(return_value=Mock(id="cus_test123"))
        mock_stripe_module.checkout.Session.create = Mock(return_value=Mock(
            id="cs_test123",
            url="https://checkout.stripe.com/test"
        ))

        # Keep the real verifier and error classes
        mock_stripe_module.WebhookSignature = stripe.WebhookSignature
        mock_stripe_module.SignatureVerificationError = stripe.SignatureVerificationError
        mock_stripe_module.StripeError = stripe.StripeError

        yield mock_stripe_module


# ============================================================================
# WEBHOOK HELPERS
# ============================================================================

def stripe_signature_header(payload: str, secret: str = STRIPE_WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a ``Stripe-Signature`` header the way Stripe signs deliveries"""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def stripe_event(event_type: str, obj: dict, event_id: str = "evt_test123") -> str:
    return json.dumps({"id": event_id, "type": event_type, "data": {"object": obj}})


def senangpay_signature(body: bytes, secret: str = SENANGPAY_SECRET_KEY) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


@pytest.fixture
def post_stripe_event(client: TestClient):
    """Send a correctly signed Stripe webhook"""
    def _post(event_type: str, obj: dict, event_id: str = "evt_test123"):
        payload = stripe_event(event_type, obj, event_id)
        return client.post(
            "/api/stripe/webhook",
            content=payload,
            headers={"stripe-signature": stripe_signature_header(payload), "Content-Type": "application/json"},
        )
    return _post


@pytest.fixture
def post_senangpay(client: TestClient):
    """Send a correctly signed SenangPay callback"""
    def _post(fields: dict):
        body = json.dumps(fields).encode("utf-8")
        return client.post(
            "/api/senangpay/webhook",
            content=body,
            headers={"X-Signature": senangpay_signature(body), "Content-Type": "application/json"},
        )
    return _post
