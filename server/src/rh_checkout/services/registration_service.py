"""Registration persistence and idempotent payment recording"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from rh_checkout.logging_config import get_reconciliation_logger
from rh_checkout.models.payment import (
    Payment,
    PaymentMethod,
    PaymentStatus,
    is_free_payment_token,
)
from rh_checkout.models.registration import Registration, RegistrationStatus
from rh_checkout.services.discount_service import DiscountService, normalize_code

logger = logging.getLogger(__name__)
reconciliation_logger = get_reconciliation_logger()

REGISTRATION_FIELDS = (
    "event_id",
    "option",
    "first_name",
    "last_name",
    "email",
    "phone",
    "contact_name",
    "session_key",
    "base_price",
    "discount_code",
    "discount_amount",
    "final_price",
    "additional_data",
)


@dataclass
class RecordedPayment:
    registration: Registration
    payment: Payment
    # True when the payment had already been recorded by an earlier call
    replayed: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_uuid(value: Any) -> Optional[uuid.UUID]:
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class RegistrationService:
    """Service for managing event registrations and the payments that fund them"""

    def __init__(self, db_session: Session):
        self.db = db_session

    def create_pending_registration(self, fields: Dict[str, Any]) -> Registration:
        """
        Create the pending registration for a checkout session, or refresh it.

        A checkout session re-requesting an intent (page reload, discount
        applied) updates its existing pending registration instead of adding
        another one.

        Args:
            fields: Registration columns; see REGISTRATION_FIELDS

        Returns:
            Registration: The pending registration
        """
        values = {k: fields[k] for k in REGISTRATION_FIELDS if k in fields}
        if values.get("discount_code"):
            values["discount_code"] = normalize_code(values["discount_code"])

        session_key = values.get("session_key")
        registration = (
            self.get_pending_by_session_key(session_key) if session_key else None
        )

        if registration is None:
            registration = Registration(**values)
            logger.info(
                f"Created pending registration {registration.id} for event {registration.event_id}"
            )
        else:
            for key, value in values.items():
                setattr(registration, key, value)
            registration.updated_at = _utcnow()
            logger.info(f"Refreshed pending registration {registration.id}")

        self.db.add(registration)
        self.db.commit()
        self.db.refresh(registration)
        return registration

    def get_registration_by_id(
        self, registration_id: uuid.UUID
    ) -> Optional[Registration]:
        """Get a registration by ID"""
        registration_id = _parse_uuid(registration_id)
        if registration_id is None:
            return None
        stmt = select(Registration).where(Registration.id == registration_id)
        return self.db.exec(stmt).first()

    def get_pending_by_session_key(self, session_key: str) -> Optional[Registration]:
        stmt = (
            select(Registration)
            .where(Registration.session_key == session_key)
            .where(Registration.status == RegistrationStatus.PENDING)
            .order_by(Registration.created_at.desc())
        )
        return self.db.exec(stmt).first()

    def get_by_session_key(self, session_key: str) -> Optional[Registration]:
        """Latest registration for a checkout session, in any status"""
        stmt = (
            select(Registration)
            .where(Registration.session_key == session_key)
            .order_by(Registration.created_at.desc())
        )
        return self.db.exec(stmt).first()

    def get_payment_by_external_id(self, external_payment_intent_id: str) -> Optional[Payment]:
        stmt = select(Payment).where(
            Payment.external_payment_intent_id == external_payment_intent_id
        )
        return self.db.exec(stmt).first()

    def get_payments_for_registration(self, registration_id: uuid.UUID) -> list[Payment]:
        stmt = select(Payment).where(Payment.registration_id == registration_id)
        return list(self.db.exec(stmt).all())

    def record_payment_success(
        self,
        external_payment_intent_id: str,
        registration_fields: Dict[str, Any],
        amount: int,
        currency: str = "usd",
    ) -> RecordedPayment:
        """
        Record a confirmed payment and complete its registration.

        Keyed by the external payment intent id: replaying the same id returns
        the registration recorded the first time and writes nothing. Free
        registrations use a ``free_`` token as their id and go through the
        same path.

        Args:
            external_payment_intent_id: Gateway intent id, or a free token
            registration_fields: Used to find the registration (``registration_id``,
                then pending ``session_key``) or, failing both, to create it
            amount: Amount charged in cents
            currency: ISO currency code

        Returns:
            RecordedPayment with ``replayed`` set when nothing was written

        Raises:
            ValueError: Registration cannot be found or created, or was cancelled
            SQLAlchemyError: The write failed; the transaction is rolled back
        """
        payment = self.get_payment_by_external_id(external_payment_intent_id)
        if payment is not None and payment.status == PaymentStatus.COMPLETED:
            return self._replayed(payment)

        try:
            registration = self._resolve_registration(payment, registration_fields)
            if registration.status == RegistrationStatus.CANCELLED:
                raise ValueError(
                    f"Registration {registration.id} is cancelled; "
                    f"cannot apply payment {external_payment_intent_id}"
                )

            now = _utcnow()
            if payment is None:
                payment = Payment(
                    registration_id=registration.id,
                    external_payment_intent_id=external_payment_intent_id,
                    amount=amount,
                    currency=currency,
                    payment_method=(
                        PaymentMethod.FREE
                        if is_free_payment_token(external_payment_intent_id)
                        else PaymentMethod.STRIPE
                    ),
                )
            payment.amount = amount
            payment.status = PaymentStatus.COMPLETED
            payment.payment_date = now
            payment.updated_at = now

            if registration.status == RegistrationStatus.COMPLETED:
                reconciliation_logger.warning(
                    f"Registration {registration.id} already completed; "
                    f"additional payment {external_payment_intent_id} of {amount} recorded"
                )
            else:
                registration.status = RegistrationStatus.COMPLETED
                registration.completed_at = now
                if registration.discount_code:
                    DiscountService(self.db).increment_usage(registration.discount_code)
            registration.updated_at = now

            self.db.add(registration)
            self.db.add(payment)
            self.db.commit()
        except IntegrityError:
            # A concurrent call recorded the same intent first
            self.db.rollback()
            existing = self.get_payment_by_external_id(external_payment_intent_id)
            if existing is not None and existing.status == PaymentStatus.COMPLETED:
                return self._replayed(existing)
            raise
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(registration)
        self.db.refresh(payment)
        logger.info(
            f"Recorded payment {external_payment_intent_id} for registration {registration.id}"
        )
        return RecordedPayment(registration=registration, payment=payment)

    def mark_confirmation_sent(self, registration: Registration) -> Registration:
        registration.confirmation_sent_at = _utcnow()
        self.db.add(registration)
        self.db.commit()
        self.db.refresh(registration)
        return registration

    def _replayed(self, payment: Payment) -> RecordedPayment:
        registration = self.get_registration_by_id(payment.registration_id)
        logger.info(
            f"Payment {payment.external_payment_intent_id} already recorded "
            f"for registration {payment.registration_id}"
        )
        return RecordedPayment(registration=registration, payment=payment, replayed=True)

    def _resolve_registration(
        self, payment: Optional[Payment], fields: Dict[str, Any]
    ) -> Registration:
        if payment is not None:
            registration = self.get_registration_by_id(payment.registration_id)
            if registration is not None:
                return registration

        if fields.get("registration_id"):
            registration = self.get_registration_by_id(fields["registration_id"])
            if registration is not None:
                return registration

        if fields.get("session_key"):
            registration = self.get_pending_by_session_key(fields["session_key"])
            if registration is not None:
                return registration

        values = {k: fields[k] for k in REGISTRATION_FIELDS if k in fields}
        missing = [
            k
            for k in ("event_id", "email", "first_name", "last_name", "base_price", "final_price")
            if values.get(k) is None
        ]
        if missing:
            raise ValueError(
                f"Cannot create registration, missing fields: {', '.join(missing)}"
            )
        if values.get("discount_code"):
            values["discount_code"] = normalize_code(values["discount_code"])
        registration = Registration(**values)
        self.db.add(registration)
        logger.info(
            f"No pending registration found; creating {registration.id} at payment time"
        )
        return registration
