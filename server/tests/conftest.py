"""Shared test configuration and fixtures for checkout tests"""

import asyncio
import json
import logging
import os
from dataclasses import replace
from typing import Dict, Optional

from tests.config import test_config

# Must be set before rh_checkout.models.database is imported
os.environ["DATABASE_URL"] = test_config["database_url"]
os.environ["SESSION_STORE_BACKEND"] = "memory"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from rh_checkout.backends.stripe_gateway import GatewayIntent, PaymentGateway
from rh_checkout.errors import InvalidRequestError
from rh_checkout.main import app
from rh_checkout.models import DiscountCode, DiscountType
from rh_checkout.models.database import get_db
from rh_checkout.services.discount_service import DiscountService
from rh_checkout.services.email_service import get_email_service
from rh_checkout.services.payment_intent_manager import (
    PaymentIntentManager,
    get_payment_intent_manager,
)
from rh_checkout.services.registration_service import RegistrationService
from rh_checkout.services.session_store import InMemorySessionStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class FakeClock:
    """Controllable replacement for time.time"""

    def __init__(self, now: float):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGateway(PaymentGateway):
    """In-process payment gateway that counts every call it receives"""

    def __init__(self):
        self.intents: Dict[str, GatewayIntent] = {}
        self.idempotency_keys: Dict[str, str] = {}
        self.create_calls = 0
        self.retrieve_calls = 0
        self.cancel_calls = 0
        self.create_delay = 0.0
        self.create_error: Optional[Exception] = None
        self.retrieve_error: Optional[Exception] = None

    @property
    def total_calls(self) -> int:
        return self.create_calls + self.retrieve_calls + self.cancel_calls

    def live_intents(self, session_key: str) -> list:
        return [
            intent
            for intent in self.intents.values()
            if intent.metadata.get("session_key") == session_key
            and intent.status not in ("canceled", "succeeded")
        ]

    def seed(
        self,
        intent_id: str,
        amount: int,
        status: str = "succeeded",
        metadata: Optional[dict] = None,
    ) -> GatewayIntent:
        intent = GatewayIntent(
            id=intent_id,
            client_secret=f"{intent_id}_secret",
            status=status,
            amount=amount,
            metadata=dict(metadata or {}),
        )
        self.intents[intent_id] = intent
        return intent

    def succeed(self, intent_id: str) -> None:
        self.intents[intent_id].status = "succeeded"

    async def create_intent(self, amount, currency, metadata, idempotency_key):
        self.create_calls += 1
        if self.create_delay:
            await asyncio.sleep(self.create_delay)
        if self.create_error is not None:
            error, self.create_error = self.create_error, None
            raise error
        if idempotency_key in self.idempotency_keys:
            return replace(self.intents[self.idempotency_keys[idempotency_key]])
        intent_id = f"pi_test_{len(self.intents) + 1}"
        intent = self.seed(
            intent_id, amount, status="requires_payment_method", metadata=metadata
        )
        intent.currency = currency
        self.idempotency_keys[idempotency_key] = intent_id
        return replace(intent)

    async def retrieve_intent(self, intent_id):
        self.retrieve_calls += 1
        if self.retrieve_error is not None:
            raise self.retrieve_error
        if intent_id not in self.intents:
            raise InvalidRequestError(f"No such payment_intent: '{intent_id}'")
        return replace(self.intents[intent_id])

    async def cancel_intent(self, intent_id, reason):
        self.cancel_calls += 1
        intent = self.intents[intent_id]
        if intent.status in ("canceled", "succeeded"):
            raise InvalidRequestError(
                f"You cannot cancel this PaymentIntent because it has a status of {intent.status}."
            )
        intent.status = "canceled"
        return replace(intent)

    def construct_webhook_event(self, payload, signature):
        if signature != test_config["webhook_signature"]:
            raise ValueError("No signatures found matching the expected signature")
        return json.loads(payload)


@pytest.fixture
def clock():
    return FakeClock(test_config["clock_start"])


@pytest.fixture
def session_store(clock):
    return InMemorySessionStore(ttl_seconds=900, lock_wait_seconds=2.0, clock=clock)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def manager(gateway, session_store):
    return PaymentIntentManager(gateway, session_store, max_attempts=3)


@pytest.fixture
def engine():
    """In-memory SQLite shared by every connection of one test"""
    engine = create_engine(
        test_config["database_url"],
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def db_session(engine):
    session = Session(engine)
    yield session
    session.close()


@pytest.fixture
def registration_service(db_session):
    return RegistrationService(db_session)


@pytest.fixture
def discount_service(db_session):
    return DiscountService(db_session)


@pytest.fixture
def discount_codes(discount_service):
    """Codes used across the suite"""
    codes = [
        DiscountCode(
            code="FREE100",
            discount_type=DiscountType.PERCENTAGE,
            discount_value=100,
            description="Full scholarship",
        ),
        DiscountCode(
            code="SAVE20",
            discount_type=DiscountType.PERCENTAGE,
            discount_value=20,
            description="20% off",
        ),
        DiscountCode(
            code="TENOFF",
            discount_type=DiscountType.FIXED,
            discount_value=1000,
            description="$10 off",
        ),
    ]
    return {code.code: discount_service.create_code(code) for code in codes}


@pytest.fixture
def client(db_session, manager):
    """Test client wired to the test database and the fake gateway"""

    original_overrides = app.dependency_overrides.copy()

    def get_test_db():
        yield db_session

    app.dependency_overrides.clear()
    app.dependency_overrides[get_db] = get_test_db
    app.dependency_overrides[get_payment_intent_manager] = lambda: manager
    app.dependency_overrides[get_email_service] = lambda: None

    yield TestClient(app)

    app.dependency_overrides.clear()
    app.dependency_overrides.update(original_overrides)


@pytest.fixture
def registration_data():
    return {
        "firstName": "Jordan",
        "lastName": "Burroughs",
        "email": "Parent@Example.com",
        "phone": "555-0100",
        "contactName": "Pat Burroughs",
        "grade": "10",
        "tShirtSize": "M",
    }
