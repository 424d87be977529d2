"""Payment gateway adapter.

The checkout core talks to the gateway through ``PaymentGateway``; the Stripe
implementation runs the blocking SDK calls in a worker thread and maps SDK
errors onto the checkout error taxonomy.
"""

import asyncio
import hashlib
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from rh_checkout.errors import (
    CardDeclinedError,
    CheckoutError,
    GatewayUnavailableError,
    InvalidRequestError,
)

logger = logging.getLogger(__name__)

# Gateway statuses in which the customer can still pay the intent
PAYABLE_STATUSES = {"requires_payment_method", "requires_confirmation", "requires_action"}


@dataclass
class GatewayIntent:
    id: str
    client_secret: Optional[str]
    status: str
    amount: int
    currency: str = "usd"
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def is_payable(self) -> bool:
        return self.status in PAYABLE_STATUSES

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


def make_idempotency_key(purpose: str, **parts: Any) -> str:
    """Deterministic idempotency key for a gateway mutation.

    The same inputs always give the same key, so a retried request is
    de-duplicated by the gateway instead of creating a second object.
    Format: ``<purpose prefix>-<sha256 hex, 32 chars>``
    """
    raw = "|".join(
        [purpose]
        + [
            f"{name}:{json.dumps(parts[name], sort_keys=True, default=str)}"
            for name in sorted(parts)
        ]
    )
    digest = hashlib.sha256(raw.encode()).hexdigest()[:32]
    prefix = purpose[:8].replace("_", "-").rstrip("-")
    return f"{prefix}-{digest}"


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _as_dict(value: Any) -> Dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, dict):
        return dict(value)
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return dict(value)


def intent_from_object(obj: Any) -> GatewayIntent:
    """Build a GatewayIntent from an SDK object or a webhook payload dict"""
    metadata = _as_dict(_field(obj, "metadata"))
    return GatewayIntent(
        id=_field(obj, "id"),
        client_secret=_field(obj, "client_secret"),
        status=_field(obj, "status"),
        amount=_field(obj, "amount"),
        currency=_field(obj, "currency") or "usd",
        metadata={k: str(v) for k, v in metadata.items()},
    )


class PaymentGateway(ABC):
    """Narrow gateway interface used by the payment intent manager"""

    @abstractmethod
    async def create_intent(
        self,
        amount: int,
        currency: str,
        metadata: Dict[str, str],
        idempotency_key: str,
    ) -> GatewayIntent:
        pass

    @abstractmethod
    async def retrieve_intent(self, intent_id: str) -> GatewayIntent:
        pass

    @abstractmethod
    async def cancel_intent(self, intent_id: str, reason: str) -> GatewayIntent:
        pass

    def construct_webhook_event(self, payload: bytes, signature: Optional[str]) -> Any:
        raise NotImplementedError("Gateway does not deliver webhooks")


class StripeGateway(PaymentGateway):
    # Stripe only accepts these cancellation reasons
    CANCELLATION_REASONS = {"duplicate", "fraudulent", "requested_by_customer", "abandoned"}

    def __init__(
        self,
        secret_key: Optional[str],
        webhook_secret: Optional[str] = None,
        stripe_sdk: Any = None,
    ):
        if stripe_sdk is None:
            import stripe as stripe_sdk

        self.stripe = stripe_sdk
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret

    def classify_error(self, error: Exception) -> CheckoutError:
        """Map an SDK exception onto the checkout error taxonomy"""
        user_message = getattr(error, "user_message", None)
        if isinstance(error, self.stripe.CardError):
            return CardDeclinedError(
                user_message, decline_code=getattr(error, "code", None)
            )
        if isinstance(error, self.stripe.InvalidRequestError):
            return InvalidRequestError(user_message)
        return GatewayUnavailableError()

    async def _call(self, fn: Callable[..., Any], *args, **kwargs) -> Any:
        if not self.secret_key:
            raise ValueError("Stripe secret key not configured")
        self.stripe.api_key = self.secret_key
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except self.stripe.StripeError as e:
            logger.warning(f"Stripe call {getattr(fn, '__name__', fn)} failed: {e}")
            raise self.classify_error(e) from e

    async def create_intent(
        self,
        amount: int,
        currency: str,
        metadata: Dict[str, str],
        idempotency_key: str,
    ) -> GatewayIntent:
        if amount <= 0:
            raise InvalidRequestError("Payment amount must be positive")
        obj = await self._call(
            self.stripe.PaymentIntent.create,
            amount=amount,
            currency=currency,
            metadata=metadata,
            automatic_payment_methods={"enabled": True},
            idempotency_key=idempotency_key,
        )
        intent = intent_from_object(obj)
        logger.info(f"Created payment intent {intent.id} for {amount} {currency}")
        return intent

    async def retrieve_intent(self, intent_id: str) -> GatewayIntent:
        obj = await self._call(self.stripe.PaymentIntent.retrieve, intent_id)
        return intent_from_object(obj)

    async def cancel_intent(self, intent_id: str, reason: str) -> GatewayIntent:
        if reason not in self.CANCELLATION_REASONS:
            reason = "abandoned"
        obj = await self._call(
            self.stripe.PaymentIntent.cancel, intent_id, cancellation_reason=reason
        )
        logger.info(f"Cancelled payment intent {intent_id} ({reason})")
        return intent_from_object(obj)

    def construct_webhook_event(self, payload: bytes, signature: Optional[str]) -> Any:
        """Verify a webhook signature and parse the event.

        Raises:
            ValueError: missing secret or signature, or a payload that is not a
                valid event
            stripe.SignatureVerificationError: signature mismatch
        """
        if not self.webhook_secret:
            raise ValueError("Stripe webhook secret not configured")
        if not signature:
            raise ValueError("Missing Stripe signature header")
        return self.stripe.Webhook.construct_event(
            payload, signature, self.webhook_secret
        )
