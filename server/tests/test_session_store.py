"""Tests for checkout session keys and the in-memory session store"""

import asyncio

import pytest

from rh_checkout.errors import SessionLockedError
from rh_checkout.models.checkout_state import CheckoutState
from rh_checkout.services.session_store import (
    IntentStatus,
    PaymentIntentRecord,
    RegistrationSession,
    derive_session_key,
)
from tests.config import test_config

START = test_config["clock_start"]


class TestDeriveSessionKey:
    """Repeated submissions collide; different attempts do not"""

    def test_same_bucket_same_key(self):
        first = derive_session_key("a@example.com", 1, "full", now=START)
        second = derive_session_key("A@Example.com ", 1, "full", now=START + 299)
        assert first == second
        assert len(first) == 32

    def test_new_bucket_new_key(self):
        first = derive_session_key("a@example.com", 1, "full", now=START)
        later = derive_session_key("a@example.com", 1, "full", now=START + 300)
        assert first != later

    def test_option_and_event_separate_keys(self):
        base = derive_session_key("a@example.com", 1, "full", now=START)
        assert base != derive_session_key("a@example.com", 1, "single", now=START)
        assert base != derive_session_key("a@example.com", 2, "full", now=START)

    def test_checkout_token_replaces_time_bucket(self):
        first = derive_session_key(
            "a@example.com", 1, "full", now=START, checkout_token="tok-1"
        )
        later = derive_session_key(
            "a@example.com", 1, "full", now=START + 3600, checkout_token="tok-1"
        )
        other = derive_session_key(
            "a@example.com", 1, "full", now=START, checkout_token="tok-2"
        )
        assert first == later
        assert first != other


class TestRegistrationSession:
    def test_illegal_transition_raises(self):
        session = RegistrationSession(session_key="k", created_at=START)
        with pytest.raises(ValueError):
            session.advance(CheckoutState.SUCCEEDED)

    def test_flow_through_payment(self):
        session = RegistrationSession(session_key="k", created_at=START)
        session.advance(CheckoutState.PRICING)
        session.advance(CheckoutState.AWAITING_PAYMENT)
        session.advance(CheckoutState.FAILED)
        session.advance(CheckoutState.PRICING)
        assert session.state == CheckoutState.PRICING

    def test_serialized_form_restores_intent(self):
        session = RegistrationSession(session_key="k", created_at=START, locked=True)
        session.advance(CheckoutState.PRICING)
        session.intent = PaymentIntentRecord(
            external_intent_id="pi_1",
            client_secret="pi_1_secret",
            amount=24900,
            status=IntentStatus.FAILED,
            created_at=START,
        )
        restored = RegistrationSession.from_dict(session.to_dict())
        assert restored == session


class TestInMemorySessionStore:
    """Per-key locking, expiry and stats"""

    async def test_try_lock_is_check_and_set(self, session_store):
        assert await session_store.try_lock("key-1") is True
        assert await session_store.try_lock("key-1") is False
        assert await session_store.try_lock("key-2") is True

    async def test_concurrent_try_lock_only_one_wins(self, session_store):
        results = await asyncio.gather(
            *[session_store.try_lock("key-1") for _ in range(10)]
        )
        assert results.count(True) == 1

    async def test_guard_serializes_same_key(self, session_store):
        order = []

        async def worker(name):
            async with session_store.guard("key-1"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert order in (
            ["a-in", "a-out", "b-in", "b-out"],
            ["b-in", "b-out", "a-in", "a-out"],
        )

    async def test_guard_times_out_with_session_locked(self, session_store):
        session_store.lock_wait_seconds = 0.05
        async with session_store.guard("key-1"):
            with pytest.raises(SessionLockedError):
                async with session_store.guard("key-1"):
                    pass

    async def test_sessions_expire_even_when_locked(self, session_store, clock):
        assert await session_store.try_lock("key-1")
        clock.advance(899)
        assert (await session_store.get("key-1")).locked
        clock.advance(2)
        assert await session_store.get("key-1") is None
        assert await session_store.try_lock("key-1") is True

    async def test_saved_sessions_are_copies(self, session_store):
        session = session_store.new_session("key-1")
        await session_store.save(session)
        session.locked = True
        assert (await session_store.get("key-1")).locked is False

    async def test_stats(self, session_store, clock):
        await session_store.try_lock("key-1")
        await session_store.save(session_store.new_session("key-2"))
        stats = await session_store.stats()
        assert stats["activeSessions"] == 2
        assert stats["lockedSessions"] == 1
        assert stats["backend"] == "memory"

        clock.advance(1000)
        assert (await session_store.stats())["activeSessions"] == 0
