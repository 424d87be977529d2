"""Payment intent manager.

Turns a registration request into exactly one of:

- the intent already issued for this checkout session (reload, double-click)
- a newly created intent
- a free-registration marker, without creating any charge

and guarantees a checkout session never has two live intents. Every change to
a session happens inside ``store.guard(session_key)``.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from rh_checkout.backends.stripe_gateway import (
    GatewayIntent,
    PaymentGateway,
    StripeGateway,
    make_idempotency_key,
)
from rh_checkout.config import config
from rh_checkout.errors import (
    CheckoutError,
    InvalidRequestError,
    PaymentIncompleteError,
    PaymentSucceededRecordFailedError,
    SessionLockedError,
    TooManyAttemptsError,
    VerificationError,
)
from rh_checkout.logging_config import get_reconciliation_logger
from rh_checkout.models.checkout_state import CheckoutState
from rh_checkout.services.discount_service import DiscountService, normalize_code
from rh_checkout.services.pricing_service import require_event, resolve_base_price
from rh_checkout.services.session_store import (
    InMemorySessionStore,
    IntentStatus,
    PaymentIntentRecord,
    RedisSessionStore,
    RegistrationSession,
    SessionStore,
    derive_session_key,
)

logger = logging.getLogger(__name__)
reconciliation_logger = get_reconciliation_logger()

DEFAULT_MAX_ATTEMPTS = 3


@dataclass
class Registrant:
    email: str
    first_name: str = ""
    last_name: str = ""
    phone: Optional[str] = None


@dataclass
class PriceQuote:
    event_id: int
    option: str
    base_price: int
    final_price: int
    discount_amount: int = 0
    discount_code: Optional[str] = None

    @property
    def is_free(self) -> bool:
        return self.final_price == 0


@dataclass
class PaymentIntentResult:
    session_key: str
    quote: PriceQuote
    free_registration: bool = False
    payment_intent_id: Optional[str] = None
    client_secret: Optional[str] = None
    reused: bool = False

    @property
    def amount(self) -> int:
        return self.quote.final_price


class PaymentIntentManager:
    def __init__(
        self,
        gateway: PaymentGateway,
        store: SessionStore,
        currency: str = "usd",
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        bucket_seconds: int = 300,
    ):
        self.gateway = gateway
        self.store = store
        self.currency = currency
        self.max_attempts = max_attempts
        self.bucket_seconds = bucket_seconds

    def quote(
        self,
        event_id: Any,
        option: str = "full",
        discount_code: Optional[str] = None,
        discounted_amount: Optional[int] = None,
        discounts: Optional[DiscountService] = None,
        selected_dates: Optional[Sequence[str]] = None,
        athlete_count: Optional[int] = None,
    ) -> PriceQuote:
        """Resolve the amount to charge.

        The price is the base price less any discount code, validated against
        the discount store. A ``discounted_amount`` sent by the client must
        equal that price.

        Raises:
            InvalidRequestError: unknown event or option, a discount code that
                does not apply, or a discounted amount the server does not
                arrive at
        """
        event = require_event(event_id)
        option = (option or "full").strip().lower()
        base_price = resolve_base_price(event.id, option, selected_dates, athlete_count)
        code = normalize_code(discount_code) or None

        if discounted_amount is not None and (
            discounted_amount < 0 or discounted_amount > base_price
        ):
            raise InvalidRequestError(
                "Discounted amount is out of range",
                discounted_amount=discounted_amount,
            )

        final_price = base_price
        if code and discounts is not None:
            result = discounts.validate(code, base_price, event.id)
            if not result.valid:
                raise InvalidRequestError(result.error, discount_code=code)
            final_price = result.final_amount

        # A client-side amount is only a cross-check of the server's price
        if discounted_amount is not None and discounted_amount != final_price:
            logger.warning(
                f"Discounted amount {discounted_amount} for event {event.id} does not "
                f"match server price {final_price} (code {code or 'none'})"
            )
            raise InvalidRequestError(
                "Discounted amount does not match the price for this registration",
                discounted_amount=discounted_amount,
            )

        return PriceQuote(
            event_id=event.id,
            option=option,
            base_price=base_price,
            final_price=final_price,
            discount_amount=base_price - final_price,
            discount_code=code if final_price != base_price else None,
        )

    def session_key_for(
        self,
        email: str,
        event_id: int,
        option: str,
        checkout_token: Optional[str] = None,
    ) -> str:
        return derive_session_key(
            email,
            event_id,
            option,
            now=self.store.clock(),
            bucket_seconds=self.bucket_seconds,
            checkout_token=checkout_token,
        )

    async def request_payment_intent(
        self,
        event_id: Any,
        option: str,
        registrant: Registrant,
        discount_code: Optional[str] = None,
        discounted_amount: Optional[int] = None,
        checkout_token: Optional[str] = None,
        discounts: Optional[DiscountService] = None,
        selected_dates: Optional[Sequence[str]] = None,
        athlete_count: Optional[int] = None,
    ) -> PaymentIntentResult:
        """
        Create or reuse the payment intent for a registration attempt.

        Returns:
            PaymentIntentResult: a reusable intent, a new intent, or a free
                registration marker

        Raises:
            InvalidRequestError: missing email or bad pricing input
            SessionLockedError: another request for this session holds the lock
                without an intent, or a payment is already being processed
            TooManyAttemptsError: the session used up its creation attempts
            CardDeclinedError, GatewayUnavailableError: gateway failures; the
                session is unlocked so the registrant can retry
        """
        email = (registrant.email or "").strip().lower()
        if not email:
            raise InvalidRequestError("Registrant email is required")

        quote = self.quote(
            event_id,
            option,
            discount_code=discount_code,
            discounted_amount=discounted_amount,
            discounts=discounts,
            selected_dates=selected_dates,
            athlete_count=athlete_count,
        )
        session_key = self.session_key_for(email, quote.event_id, quote.option, checkout_token)

        async with self.store.guard(session_key):
            session = await self.store.get(session_key) or self.store.new_session(session_key)
            session.event_id = quote.event_id
            session.option = quote.option
            session.email = email

            if quote.is_free:
                return await self._confirm_free(session, quote)

            if session.locked:
                reused = await self._reuse_locked(session, quote)
                if reused is not None:
                    return reused

            if session.attempts >= self.max_attempts:
                logger.warning(
                    f"Session {session_key} reached {session.attempts} payment attempts"
                )
                await self.store.save(session)
                raise TooManyAttemptsError(session_key=session_key)

            self._enter_pricing(session)

            if session.intent is not None and session.intent.is_live:
                if session.intent.amount == quote.final_price:
                    reused = await self._reuse_payable(session, quote)
                    if reused is not None:
                        return reused
                await self._supersede(session, reason="duplicate")
            elif session.intent is not None and session.intent.status == IntentStatus.FAILED:
                # Still payable at the gateway after a decline
                await self._supersede(session, reason="abandoned")

            return await self._create(session, quote, registrant)

    async def _reuse_locked(
        self, session: RegistrationSession, quote: PriceQuote
    ) -> Optional[PaymentIntentResult]:
        """Handle a request arriving while a payment attempt is in flight.

        Returns the stored intent when it still matches the price, None when a
        changed price means it must be superseded.
        """
        intent = session.intent
        if intent is None:
            raise SessionLockedError(session_key=session.session_key)
        if intent.status == IntentStatus.SUCCEEDED:
            raise SessionLockedError(
                "A payment for this registration has already been received.",
                session_key=session.session_key,
                payment_intent_id=intent.external_intent_id,
            )
        if intent.is_live and intent.amount == quote.final_price:
            logger.info(
                f"Returning in-flight intent {intent.external_intent_id} for session {session.session_key}"
            )
            return self._result(session, quote, reused=True)

        logger.info(
            f"Price for session {session.session_key} changed "
            f"{intent.amount} -> {quote.final_price}; superseding intent"
        )
        self._enter_pricing(session)
        await self._supersede(session, reason="duplicate")
        session.locked = False
        return None

    async def _reuse_payable(
        self, session: RegistrationSession, quote: PriceQuote
    ) -> Optional[PaymentIntentResult]:
        intent = session.intent
        remote = await self.gateway.retrieve_intent(intent.external_intent_id)
        if not remote.is_payable or remote.amount != quote.final_price:
            return None
        session.locked = True
        session.advance(CheckoutState.AWAITING_PAYMENT)
        await self.store.save(session)
        logger.info(f"Reusing payable intent {intent.external_intent_id}")
        return self._result(session, quote, reused=True)

    async def _create(
        self, session: RegistrationSession, quote: PriceQuote, registrant: Registrant
    ) -> PaymentIntentResult:
        session.locked = True
        session.attempts += 1
        await self.store.save(session)

        idempotency_key = make_idempotency_key(
            "registration_intent",
            session_key=session.session_key,
            session_created_ms=int(session.created_at * 1000),
            generation=session.generation,
            amount=quote.final_price,
            currency=self.currency,
        )
        metadata = {
            "session_key": session.session_key,
            "event_id": str(quote.event_id),
            "option": quote.option,
            "email": session.email or "",
            "first_name": registrant.first_name or "",
            "last_name": registrant.last_name or "",
            "base_price": str(quote.base_price),
            "discount_code": quote.discount_code or "",
            "discount_amount": str(quote.discount_amount),
        }

        try:
            gateway_intent = await self.gateway.create_intent(
                quote.final_price, self.currency, metadata, idempotency_key
            )
        except Exception as e:
            logger.warning(
                f"Intent creation failed for session {session.session_key} "
                f"(attempt {session.attempts}): {getattr(e, 'code', type(e).__name__)}"
            )
            session.locked = False
            session.advance(CheckoutState.FAILED)
            await self.store.save(session)
            raise

        session.intent = PaymentIntentRecord(
            external_intent_id=gateway_intent.id,
            client_secret=gateway_intent.client_secret,
            amount=quote.final_price,
            created_at=self.store.clock(),
        )
        session.advance(CheckoutState.AWAITING_PAYMENT)
        await self.store.save(session)
        logger.info(
            f"Issued intent {gateway_intent.id} for session {session.session_key} "
            f"({quote.final_price} {self.currency})"
        )
        return self._result(session, quote)

    async def _confirm_free(
        self, session: RegistrationSession, quote: PriceQuote
    ) -> PaymentIntentResult:
        if session.intent is not None and session.intent.status == IntentStatus.SUCCEEDED:
            raise SessionLockedError(
                "A payment for this registration has already been received.",
                session_key=session.session_key,
                payment_intent_id=session.intent.external_intent_id,
            )
        if session.intent is not None and not session.intent.is_terminal:
            self._enter_pricing(session)
            await self._supersede(session, reason="duplicate")
        if session.state != CheckoutState.FREE_CONFIRMING:
            self._enter_pricing(session)
            session.advance(CheckoutState.FREE_CONFIRMING)
        session.locked = False
        await self.store.save(session)
        logger.info(f"Session {session.session_key} resolved to a free registration")
        return PaymentIntentResult(
            session_key=session.session_key, quote=quote, free_registration=True
        )

    async def _supersede(self, session: RegistrationSession, reason: str) -> None:
        """Cancel the session's current intent at the gateway before replacing it.

        Raises:
            SessionLockedError: the intent can no longer be cancelled because
                the registrant is already paying it
            GatewayUnavailableError: the gateway could not be reached; nothing
                is changed so the registrant can retry
        """
        intent = session.intent
        try:
            await self.gateway.cancel_intent(intent.external_intent_id, reason)
        except InvalidRequestError:
            remote = await self.gateway.retrieve_intent(intent.external_intent_id)
            if remote.status != "canceled":
                logger.warning(
                    f"Intent {intent.external_intent_id} is {remote.status}; cannot supersede"
                )
                raise SessionLockedError(
                    "A payment for this registration is already being processed.",
                    session_key=session.session_key,
                    payment_intent_id=intent.external_intent_id,
                )
        intent.status = IntentStatus.CANCELLED
        session.generation += 1
        logger.info(
            f"Superseded intent {intent.external_intent_id} for session {session.session_key}"
        )

    def _enter_pricing(self, session: RegistrationSession) -> None:
        if session.state != CheckoutState.PRICING:
            session.advance(CheckoutState.PRICING)

    def _result(
        self, session: RegistrationSession, quote: PriceQuote, reused: bool = False
    ) -> PaymentIntentResult:
        return PaymentIntentResult(
            session_key=session.session_key,
            quote=quote,
            payment_intent_id=session.intent.external_intent_id,
            client_secret=session.intent.client_secret,
            reused=reused,
        )

    async def verify_payment(self, payment_intent_id: str) -> GatewayIntent:
        """Confirm with the gateway that an intent has succeeded.

        Raises:
            VerificationError: the gateway could not be asked
            PaymentIncompleteError: the intent exists but has not succeeded
        """
        try:
            intent = await self.gateway.retrieve_intent(payment_intent_id)
        except CheckoutError as e:
            logger.error(f"Could not verify payment {payment_intent_id}: {e.code}")
            raise VerificationError(payment_intent_id=payment_intent_id) from e
        if not intent.succeeded:
            raise PaymentIncompleteError(
                f"Payment status is {intent.status}",
                payment_intent_id=payment_intent_id,
                status=intent.status,
            )
        return intent

    async def complete(self, session_key: Optional[str]) -> None:
        """Release a session after its registration has been recorded"""
        if not session_key:
            return
        async with self.store.guard(session_key):
            session = await self.store.get(session_key)
            if session is None:
                return
            if session.intent is not None:
                session.intent.status = IntentStatus.SUCCEEDED
            if session.state in (
                CheckoutState.AWAITING_PAYMENT,
                CheckoutState.FREE_CONFIRMING,
            ):
                session.advance(CheckoutState.SUCCEEDED)
            await self.store.delete(session_key)
            logger.info(f"Checkout session {session_key} completed")

    async def escalate_record_failure(
        self,
        session_key: Optional[str],
        payment_intent_id: str,
        amount: int,
        error: Exception,
    ) -> PaymentSucceededRecordFailedError:
        """Flag a payment that succeeded but could not be recorded.

        The session stays locked with its intent marked succeeded so the
        registrant cannot be charged again; the webhook or a retried callback
        records it once the datastore is back.
        """
        reconciliation_logger.error(
            f"PAYMENT_SUCCEEDED_RECORD_FAILED payment_intent={payment_intent_id} "
            f"amount={amount} session={session_key} error={error!r}"
        )
        if session_key:
            async with self.store.guard(session_key):
                session = await self.store.get(session_key)
                if session is not None and session.intent is not None:
                    session.intent.status = IntentStatus.SUCCEEDED
                    session.locked = True
                    await self.store.save(session)
        return PaymentSucceededRecordFailedError(
            payment_intent_id=payment_intent_id, session_key=session_key
        )

    async def mark_failed(self, session_key: str, payment_intent_id: str) -> bool:
        """Record a declined payment: unlock so the next attempt supersedes it"""
        async with self.store.guard(session_key):
            session = await self.store.get(session_key)
            if (
                session is None
                or session.intent is None
                or session.intent.external_intent_id != payment_intent_id
            ):
                logger.info(f"No session intent matches failed payment {payment_intent_id}")
                return False
            if session.intent.status != IntentStatus.CREATED:
                return False
            session.intent.status = IntentStatus.FAILED
            session.locked = False
            session.generation += 1
            session.advance(CheckoutState.FAILED)
            await self.store.save(session)
            logger.info(f"Payment {payment_intent_id} failed; session {session_key} unlocked")
            return True

    async def handle_payment_failed(self, payment_intent_id: str) -> bool:
        """Client-reported decline; the session is found through intent metadata"""
        try:
            intent = await self.gateway.retrieve_intent(payment_intent_id)
        except CheckoutError as e:
            raise VerificationError(payment_intent_id=payment_intent_id) from e
        session_key = intent.metadata.get("session_key")
        if not session_key:
            return False
        return await self.mark_failed(session_key, payment_intent_id)

    async def cancel(
        self,
        session_key: str,
        reason: str = "abandoned",
        notify_gateway: bool = True,
    ) -> bool:
        """Abandon a session's intent and unlock the session early.

        Gateway cancellation is best effort; the local session is released
        either way.
        """
        async with self.store.guard(session_key):
            session = await self.store.get(session_key)
            if session is None:
                return False
            intent = session.intent
            if intent is not None and not intent.is_terminal:
                if notify_gateway:
                    try:
                        await self.gateway.cancel_intent(intent.external_intent_id, reason)
                    except CheckoutError as e:
                        logger.warning(
                            f"Could not cancel intent {intent.external_intent_id}: {e.code}"
                        )
                intent.status = IntentStatus.CANCELLED
                session.generation += 1
            elif intent is not None and intent.status == IntentStatus.SUCCEEDED:
                # Paid but not yet recorded; keep the lock
                return False
            session.locked = False
            if session.state == CheckoutState.AWAITING_PAYMENT:
                session.advance(CheckoutState.FAILED)
            await self.store.save(session)
            logger.info(f"Cancelled checkout session {session_key} ({reason})")
            return True

    async def status(self, session_key: str) -> Optional[Dict[str, Any]]:
        session = await self.store.get(session_key)
        if session is None:
            return None
        intent = session.intent
        return {
            "sessionKey": session.session_key,
            "state": session.state.value,
            "locked": session.locked,
            "attempts": session.attempts,
            "maxAttempts": self.max_attempts,
            "eventId": session.event_id,
            "option": session.option,
            "paymentIntentId": intent.external_intent_id if intent else None,
            "paymentIntentStatus": intent.status.value if intent else None,
            "amount": intent.amount if intent else None,
        }

    async def stats(self) -> Dict[str, Any]:
        stats = await self.store.stats()
        stats["maxAttempts"] = self.max_attempts
        stats["sessionTtlSeconds"] = self.store.ttl_seconds
        return stats


_manager_lock = threading.Lock()
_manager: Optional[PaymentIntentManager] = None


def build_session_store() -> SessionStore:
    options = dict(
        ttl_seconds=config["session_ttl_seconds"],
        lock_wait_seconds=config["session_lock_wait_seconds"],
    )
    if config["session_store_backend"] == "redis":
        from rh_checkout.models.database import get_redis

        return RedisSessionStore(get_redis(), **options)
    return InMemorySessionStore(**options)


def get_payment_intent_manager() -> PaymentIntentManager:
    """Get the singleton payment intent manager"""
    global _manager
    if _manager is None:
        with _manager_lock:
            if _manager is None:
                _manager = PaymentIntentManager(
                    gateway=StripeGateway(
                        config["stripe_secret_key"], config["stripe_webhook_secret"]
                    ),
                    store=build_session_store(),
                    currency=config["stripe_currency"],
                    max_attempts=config["max_payment_attempts"],
                    bucket_seconds=config["session_bucket_seconds"],
                )
                logger.info(
                    f"Initialized payment intent manager ({config['session_store_backend']} session store)"
                )
    return _manager
