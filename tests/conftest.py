"""Shared test fixtures and configuration."""

import os
import hmac
import json
import time
import hashlib
import pytest
from typing import Any, Dict, Optional

# Set up test environment variables before importing modules
os.environ.setdefault("STRIPE_TEST_SECRET_KEY", "sk_test_dummy_key_for_testing")
os.environ.setdefault("STRIPE_TEST_PUBLISHABLE_KEY", "pk_test_dummy_key_for_testing")
os.environ.setdefault("API_KEY", "test_api_key_12345")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from intent_adapter.config import ProviderConfig
from intent_adapter.database import Base, Transaction, create_async_engine, get_async_session_factory
from intent_adapter.gateway import SimulatorGateway
from intent_adapter.orders import Order, CustomerData
from intent_adapter.provider import StripeIntentProvider, PROVIDER


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing."""
    engine = create_async_engine(
        database_url="sqlite+aiosqlite:///:memory:",
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Create a database session for testing."""
    session_factory = get_async_session_factory(db_engine)
    async with session_factory() as session:
        yield session


@pytest.fixture
def simulator():
    """Gateway simulator in test mode."""
    return SimulatorGateway()


@pytest.fixture
def config():
    """Provider configuration without a webhook secret."""
    return ProviderConfig(
        test_secret_key="sk_test_dummy_key_for_testing",
        test_publishable_key="pk_test_dummy_key_for_testing",
        app_url="https://shop.example.com",
    )


@pytest.fixture
def provider(db_session, config, simulator):
    """Provider wired to the simulator."""
    return StripeIntentProvider(db_session, config, gateway=simulator)


@pytest.fixture
def order():
    return Order(orderable_id="1001", amount=2500, currency="GBP", description="Two tickets")


@pytest.fixture
def guest():
    return CustomerData(user_type="guest", email="guest@example.com")


@pytest.fixture
def member():
    return CustomerData(user_type="member", user_id="42", email="member@example.com")


@pytest.fixture
def make_transaction(db_session):
    """Factory persisting a ledger row with sensible defaults."""

    async def _make(**overrides) -> Transaction:
        values = {
            "payment_provider": PROVIDER,
            "transaction_family": "payment",
            "transaction_family_id": "pi_test_1",
            "orderable_id": "1001",
            "orderable_amount": 2500,
            "amount": 0,
            "currency": "gbp",
            "success": False,
            "livemode": False,
        }
        values.update(overrides)
        transaction = Transaction(**values)
        db_session.add(transaction)
        await db_session.flush()
        return transaction

    return _make


@pytest.fixture
async def paid_transaction(provider, simulator, order, guest):
    """A transaction initialised, confirmed with a card and charged."""
    init = await provider.init(order, guest)
    pm = simulator.add_payment_method()
    simulator.confirm_payment_intent(init.transaction.transaction_family_id, payment_method=pm.id)
    charged = await provider.charge(init.transaction)
    assert charged.success
    simulator.clear_calls()
    return charged.transaction


def sign_payload(payload: str, secret: str, timestamp: Optional[int] = None) -> str:
    """Build a Stripe-Signature header for a payload."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_event(event_type: str, obj: Dict[str, Any], event_id: str = "evt_test_1") -> str:
    """Serialize a webhook event envelope."""
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    })


@pytest.fixture
def signer():
    return sign_payload


@pytest.fixture
def event_payload():
    return make_event
