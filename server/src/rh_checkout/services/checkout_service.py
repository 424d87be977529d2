"""Checkout flow: ties the payment intent manager to registration persistence"""

import logging
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from rh_checkout.backends.stripe_gateway import GatewayIntent, intent_from_object
from rh_checkout.errors import InvalidRequestError
from rh_checkout.models.payment import (
    FREE_PAYMENT_PREFIX,
    free_payment_token,
    is_free_payment_token,
)
from rh_checkout.models.registration import Registration
from rh_checkout.services.discount_service import DiscountService
from rh_checkout.services.email_service import EmailService
from rh_checkout.services.payment_intent_manager import (
    PaymentIntentManager,
    PaymentIntentResult,
    Registrant,
)
from rh_checkout.services.pricing_service import require_event
from rh_checkout.services.registration_service import (
    RecordedPayment,
    RegistrationService,
)

logger = logging.getLogger(__name__)

# Fields a client may supply when confirming; prices always come from the server
IDENTITY_FIELDS = (
    "first_name",
    "last_name",
    "email",
    "phone",
    "contact_name",
    "additional_data",
)


def _int_or_none(value: Optional[str]) -> Optional[int]:
    return int(value) if value not in (None, "") else None


class CheckoutService:
    def __init__(
        self,
        db_session: Session,
        manager: PaymentIntentManager,
        email_service: Optional[EmailService] = None,
    ):
        self.db = db_session
        self.manager = manager
        self.registrations = RegistrationService(db_session)
        self.discounts = DiscountService(db_session)
        self.email_service = email_service

    async def start_checkout(
        self,
        event_id: Any,
        option: str,
        registration_data: Dict[str, Any],
        discount_code: Optional[str] = None,
        discounted_amount: Optional[int] = None,
        checkout_token: Optional[str] = None,
    ) -> Tuple[PaymentIntentResult, Registration]:
        """Issue (or reuse) the payment intent and save the pending registration"""
        registrant = Registrant(
            email=registration_data.get("email") or "",
            first_name=registration_data.get("first_name") or "",
            last_name=registration_data.get("last_name") or "",
            phone=registration_data.get("phone"),
        )
        result = await self.manager.request_payment_intent(
            event_id,
            option,
            registrant,
            discount_code=discount_code,
            discounted_amount=discounted_amount,
            checkout_token=checkout_token,
            discounts=self.discounts,
            selected_dates=registration_data.get("selected_dates"),
            athlete_count=registration_data.get("athlete_count"),
        )

        quote = result.quote
        fields = {k: registration_data.get(k) for k in IDENTITY_FIELDS}
        fields.update(
            event_id=quote.event_id,
            option=quote.option,
            email=registrant.email.strip().lower(),
            session_key=result.session_key,
            base_price=quote.base_price,
            discount_code=quote.discount_code,
            discount_amount=quote.discount_amount,
            final_price=quote.final_price,
        )
        # Written outside the session guard, after the intent exists
        try:
            registration = self.registrations.create_pending_registration(fields)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                f"Pending registration write failed for session {result.session_key} "
                f"(intent {result.payment_intent_id or 'free'}): {e}"
            )
            await self.manager.cancel(result.session_key)
            raise
        return result, registration

    async def confirm_payment(
        self,
        event_id: Any,
        payment_intent_id: Optional[str],
        registration_data: Optional[Dict[str, Any]] = None,
        free_registration: bool = False,
        registration_id: Optional[str] = None,
        session_key: Optional[str] = None,
        checkout_token: Optional[str] = None,
    ) -> RecordedPayment:
        """Record a completed checkout. Safe to call repeatedly.

        Raises:
            InvalidRequestError: free confirmation for a registration that is
                not free, or no payment reference
            VerificationError, PaymentIncompleteError: the gateway did not
                confirm the payment
            PaymentSucceededRecordFailedError: money moved but the write failed
        """
        registration_data = registration_data or {}
        if free_registration or (
            payment_intent_id and is_free_payment_token(payment_intent_id)
        ):
            if not registration_id and payment_intent_id:
                registration_id = payment_intent_id[len(FREE_PAYMENT_PREFIX):]
            return await self._confirm_free(
                event_id, registration_data, registration_id, session_key, checkout_token
            )

        if not payment_intent_id:
            raise InvalidRequestError("Payment intent ID is required")

        intent = await self.manager.verify_payment(payment_intent_id)
        fields = self._fields_from_intent(intent)
        fields.update(
            {k: registration_data[k] for k in IDENTITY_FIELDS if registration_data.get(k)}
        )
        if registration_id:
            fields["registration_id"] = registration_id
        return await self._record(
            intent.id, fields, intent.amount, intent.currency, fields.get("session_key")
        )

    async def _confirm_free(
        self,
        event_id: Any,
        registration_data: Dict[str, Any],
        registration_id: Optional[str],
        session_key: Optional[str],
        checkout_token: Optional[str] = None,
    ) -> RecordedPayment:
        registration = None
        if registration_id:
            registration = self.registrations.get_registration_by_id(registration_id)
        if registration is None and session_key:
            registration = self.registrations.get_by_session_key(session_key)
        if registration is None:
            registration = self._free_registration_from_form(
                event_id, registration_data, checkout_token
            )

        if registration.final_price != 0:
            logger.warning(
                f"Free confirmation refused for registration {registration.id} "
                f"priced at {registration.final_price}"
            )
            raise InvalidRequestError(
                "This registration is not eligible for free checkout"
            )

        return await self._record(
            free_payment_token(registration.id),
            {"registration_id": registration.id},
            0,
            self.manager.currency,
            registration.session_key,
        )

    def _free_registration_from_form(
        self,
        event_id: Any,
        registration_data: Dict[str, Any],
        checkout_token: Optional[str],
    ) -> Registration:
        """Find or create the registration for a free confirmation sent without ids.

        The form is priced again and mapped to its checkout session, so a
        replayed confirmation lands on the registration the first one used.
        """
        email = (registration_data.get("email") or "").strip().lower()
        if not email:
            raise InvalidRequestError("Registrant email is required")
        event = require_event(event_id)
        option = (registration_data.get("option") or "full").strip().lower()

        session_key = self.manager.session_key_for(
            email, event.id, option, checkout_token
        )
        registration = self.registrations.get_by_session_key(session_key)
        if registration is not None:
            return registration

        quote = self.manager.quote(
            event.id,
            option,
            discount_code=registration_data.get("discount_code"),
            discounts=self.discounts,
            selected_dates=registration_data.get("selected_dates"),
            athlete_count=registration_data.get("athlete_count"),
        )
        if not quote.is_free:
            raise InvalidRequestError(
                "This registration is not eligible for free checkout"
            )

        fields = {k: registration_data.get(k) for k in IDENTITY_FIELDS}
        fields.update(
            event_id=quote.event_id,
            option=quote.option,
            email=email,
            session_key=session_key,
            base_price=quote.base_price,
            discount_code=quote.discount_code,
            discount_amount=quote.discount_amount,
            final_price=0,
        )
        return self.registrations.create_pending_registration(fields)

    async def _record(
        self,
        external_id: str,
        fields: Dict[str, Any],
        amount: int,
        currency: str,
        session_key: Optional[str],
    ) -> RecordedPayment:
        try:
            recorded = self.registrations.record_payment_success(
                external_id, fields, amount, currency
            )
        except (SQLAlchemyError, ValueError) as e:
            if is_free_payment_token(external_id):
                # No money moved; an ordinary failure
                raise
            raise await self.manager.escalate_record_failure(
                session_key, external_id, amount, e
            ) from e

        await self.manager.complete(session_key)
        await self._send_confirmation(recorded)
        return recorded

    async def _send_confirmation(self, recorded: RecordedPayment) -> None:
        registration = recorded.registration
        if self.email_service is None or registration.confirmation_sent_at is not None:
            return
        sent = await self.email_service.send_registration_confirmation(
            registration, recorded.payment.external_payment_intent_id
        )
        if not sent:
            return
        try:
            self.registrations.mark_confirmation_sent(registration)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(
                f"Confirmation sent for {registration.id} but not marked: {e}"
            )

    def _fields_from_intent(self, intent: GatewayIntent) -> Dict[str, Any]:
        metadata = intent.metadata
        return {
            "session_key": metadata.get("session_key") or None,
            "event_id": _int_or_none(metadata.get("event_id")),
            "option": metadata.get("option") or "full",
            "email": metadata.get("email") or None,
            "first_name": metadata.get("first_name") or None,
            "last_name": metadata.get("last_name") or None,
            "base_price": _int_or_none(metadata.get("base_price")) or intent.amount,
            "discount_code": metadata.get("discount_code") or None,
            "discount_amount": _int_or_none(metadata.get("discount_amount")) or 0,
            "final_price": intent.amount,
        }

    async def handle_gateway_event(self, event: Any) -> Dict[str, Any]:
        """Apply a verified gateway webhook event"""
        event_type = event["type"]
        intent = intent_from_object(event["data"]["object"])
        session_key = intent.metadata.get("session_key")

        if event_type == "payment_intent.succeeded":
            recorded = await self._record(
                intent.id,
                self._fields_from_intent(intent),
                intent.amount,
                intent.currency,
                session_key,
            )
            return {
                "status": "recorded",
                "registrationId": str(recorded.registration.id),
                "replayed": recorded.replayed,
            }

        if event_type == "payment_intent.payment_failed":
            updated = session_key is not None and await self.manager.mark_failed(
                session_key, intent.id
            )
            return {"status": "failed_recorded" if updated else "ignored"}

        if event_type == "payment_intent.canceled":
            updated = session_key is not None and await self.manager.cancel(
                session_key, reason="abandoned", notify_gateway=False
            )
            return {"status": "cancelled" if updated else "ignored"}

        logger.info(f"Ignoring webhook event {event_type}")
        return {"status": "ignored"}
