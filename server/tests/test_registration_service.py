"""Tests for RegistrationService"""

import pytest
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from rh_checkout.models.payment import (
    Payment,
    PaymentMethod,
    PaymentStatus,
    free_payment_token,
)
from rh_checkout.models.registration import Registration, RegistrationStatus


def pending_fields(**overrides):
    fields = {
        "event_id": 1,
        "option": "full",
        "first_name": "Jordan",
        "last_name": "Burroughs",
        "email": "parent@example.com",
        "session_key": "session-abc",
        "base_price": 24900,
        "discount_amount": 0,
        "final_price": 24900,
    }
    fields.update(overrides)
    return fields


class TestCreatePendingRegistration:
    def test_creates_pending_registration(self, registration_service):
        registration = registration_service.create_pending_registration(
            pending_fields(additional_data={"grade": "10"})
        )

        assert registration.status == RegistrationStatus.PENDING
        assert registration.final_price == 24900
        assert registration.additional_data == {"grade": "10"}

    def test_same_session_refreshes_existing_row(self, registration_service, db_session):
        first = registration_service.create_pending_registration(pending_fields())
        second = registration_service.create_pending_registration(
            pending_fields(discount_code=" save20 ", discount_amount=4980, final_price=19920)
        )

        assert second.id == first.id
        assert second.final_price == 19920
        assert second.discount_code == "SAVE20"
        rows = db_session.exec(select(Registration)).all()
        assert len(rows) == 1

    def test_lookup_by_id_accepts_strings(self, registration_service):
        registration = registration_service.create_pending_registration(pending_fields())

        assert registration_service.get_registration_by_id(str(registration.id)).id == registration.id
        assert registration_service.get_registration_by_id("not-a-uuid") is None


class TestRecordPaymentSuccess:
    def test_completes_pending_registration(self, registration_service):
        pending = registration_service.create_pending_registration(pending_fields())

        recorded = registration_service.record_payment_success(
            "pi_123", {"session_key": "session-abc"}, 24900
        )

        assert not recorded.replayed
        assert recorded.registration.id == pending.id
        assert recorded.registration.status == RegistrationStatus.COMPLETED
        assert recorded.registration.completed_at is not None
        assert recorded.payment.status == PaymentStatus.COMPLETED
        assert recorded.payment.payment_method == PaymentMethod.STRIPE

    def test_replay_writes_nothing(self, registration_service):
        registration_service.create_pending_registration(pending_fields())

        first = registration_service.record_payment_success(
            "pi_123", {"session_key": "session-abc"}, 24900
        )
        second = registration_service.record_payment_success(
            "pi_123", {"session_key": "session-abc"}, 24900
        )

        assert second.replayed
        assert second.registration.id == first.registration.id
        payments = registration_service.get_payments_for_registration(first.registration.id)
        assert len(payments) == 1
        assert payments[0].status == PaymentStatus.COMPLETED

    def test_creates_registration_when_none_pending(self, registration_service):
        recorded = registration_service.record_payment_success(
            "pi_456", pending_fields(session_key="other-session"), 24900
        )

        assert recorded.registration.status == RegistrationStatus.COMPLETED
        assert recorded.registration.email == "parent@example.com"

    def test_missing_fields_cannot_create_registration(self, registration_service):
        with pytest.raises(ValueError, match="missing fields"):
            registration_service.record_payment_success(
                "pi_789", {"email": "parent@example.com"}, 24900
            )
        assert registration_service.get_payment_by_external_id("pi_789") is None

    def test_free_token_records_free_payment(self, registration_service):
        pending = registration_service.create_pending_registration(
            pending_fields(discount_code="FREE100", discount_amount=24900, final_price=0)
        )
        token = free_payment_token(pending.id)

        recorded = registration_service.record_payment_success(
            token, {"registration_id": pending.id}, 0
        )

        assert recorded.payment.payment_method == PaymentMethod.FREE
        assert recorded.payment.amount == 0
        assert recorded.registration.status == RegistrationStatus.COMPLETED

    def test_discount_usage_counted_once(
        self, registration_service, discount_service, discount_codes
    ):
        registration_service.create_pending_registration(
            pending_fields(discount_code="SAVE20", discount_amount=4980, final_price=19920)
        )

        registration_service.record_payment_success(
            "pi_123", {"session_key": "session-abc"}, 19920
        )
        registration_service.record_payment_success(
            "pi_123", {"session_key": "session-abc"}, 19920
        )

        assert discount_service.get_by_code("SAVE20").current_uses == 1

    def test_second_payment_for_completed_registration_is_flagged(
        self, registration_service, discount_service, discount_codes
    ):
        pending = registration_service.create_pending_registration(
            pending_fields(discount_code="SAVE20", discount_amount=4980, final_price=19920)
        )
        registration_service.record_payment_success(
            "pi_123", {"registration_id": pending.id}, 19920
        )

        recorded = registration_service.record_payment_success(
            "pi_999", {"registration_id": pending.id}, 19920
        )

        assert not recorded.replayed
        assert len(registration_service.get_payments_for_registration(pending.id)) == 2
        assert discount_service.get_by_code("SAVE20").current_uses == 1

    def test_cancelled_registration_rejects_payment(self, registration_service, db_session):
        pending = registration_service.create_pending_registration(pending_fields())
        pending.status = RegistrationStatus.CANCELLED
        db_session.add(pending)
        db_session.commit()

        with pytest.raises(ValueError, match="cancelled"):
            registration_service.record_payment_success(
                "pi_123", {"registration_id": pending.id}, 24900
            )

    def test_concurrent_insert_returns_existing_record(
        self, registration_service, db_session, monkeypatch
    ):
        """A unique-constraint loss is resolved by reading the winner's row"""
        pending = registration_service.create_pending_registration(pending_fields())
        winner = registration_service.record_payment_success(
            "pi_123", {"registration_id": pending.id}, 24900
        )

        # Hide the winner from the first lookup, as a racing request would see it
        real_lookup = registration_service.get_payment_by_external_id
        calls = []

        def racing_lookup(external_id):
            calls.append(external_id)
            if len(calls) == 1:
                return None
            return real_lookup(external_id)

        def failing_commit():
            raise IntegrityError("INSERT INTO payments", {}, Exception("duplicate key"))

        monkeypatch.setattr(registration_service, "get_payment_by_external_id", racing_lookup)
        monkeypatch.setattr(db_session, "commit", failing_commit)

        recorded = registration_service.record_payment_success(
            "pi_123", {"registration_id": pending.id}, 24900
        )

        assert recorded.replayed
        assert recorded.payment.id == winner.payment.id

    def test_mark_confirmation_sent(self, registration_service):
        pending = registration_service.create_pending_registration(pending_fields())
        assert pending.confirmation_sent_at is None

        updated = registration_service.mark_confirmation_sent(pending)

        assert updated.confirmation_sent_at is not None

    def test_payment_rows_unique_per_intent(self, registration_service, db_session):
        pending = registration_service.create_pending_registration(pending_fields())
        registration_service.record_payment_success(
            "pi_123", {"registration_id": pending.id}, 24900
        )

        rows = db_session.exec(
            select(Payment).where(Payment.external_payment_intent_id == "pi_123")
        ).all()
        assert len(rows) == 1
