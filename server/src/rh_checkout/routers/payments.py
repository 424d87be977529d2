"""Checkout endpoints: payment intents, discounts, payment confirmation"""

import logging
from typing import Any, Dict, List, Optional

import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlmodel import Session

from rh_checkout.errors import CheckoutError
from rh_checkout.models.database import get_db
from rh_checkout.models.payment import free_payment_token
from rh_checkout.services.checkout_service import CheckoutService
from rh_checkout.services.discount_service import DiscountService
from rh_checkout.services.email_service import get_email_service
from rh_checkout.services.payment_intent_manager import (
    PaymentIntentManager,
    get_payment_intent_manager,
)

router = APIRouter()

logger = logging.getLogger(__name__)


class RegistrationData(BaseModel):
    """Registrant details collected by the form; unknown fields are kept"""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    first_name: str = Field("", alias="firstName")
    last_name: str = Field("", alias="lastName")
    email: str = ""
    phone: Optional[str] = None
    contact_name: Optional[str] = Field(None, alias="contactName")
    option: Optional[str] = None
    selected_dates: Optional[List[str]] = Field(None, alias="selectedDates")
    athlete_count: Optional[int] = Field(None, alias="numberOfAthletes")
    discount_code: Optional[str] = Field(None, alias="discountCode")

    def to_fields(self) -> Dict[str, Any]:
        return {
            "first_name": self.first_name.strip(),
            "last_name": self.last_name.strip(),
            "email": self.email.strip().lower(),
            "phone": self.phone,
            "contact_name": self.contact_name,
            "option": self.option,
            "selected_dates": self.selected_dates,
            "athlete_count": self.athlete_count,
            "discount_code": self.discount_code,
            "additional_data": dict(self.model_extra) if self.model_extra else None,
        }


class CreatePaymentIntentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    option: str = "full"
    registration_data: RegistrationData = Field(..., alias="registrationData")
    discounted_amount: Optional[int] = Field(
        None, alias="discountedAmount", description="Final amount in cents"
    )
    discount_code: Optional[str] = Field(None, alias="discountCode")
    checkout_token: Optional[str] = Field(
        None,
        alias="checkoutToken",
        description="Client-generated token identifying one checkout attempt",
    )


class ValidateDiscountRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    discount_code: str = Field(..., alias="discountCode")
    original_price: int = Field(..., alias="originalPrice", ge=0)
    event_id: Optional[int] = Field(None, alias="eventId")


class PaymentSuccessRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payment_intent_id: Optional[str] = Field(None, alias="paymentIntentId")
    registration_data: Optional[RegistrationData] = Field(None, alias="registrationData")
    free_registration: bool = Field(False, alias="freeRegistration")
    registration_id: Optional[str] = Field(None, alias="registrationId")
    session_key: Optional[str] = Field(None, alias="sessionKey")
    checkout_token: Optional[str] = Field(None, alias="checkoutToken")


class CancelPaymentIntentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_key: str = Field(..., alias="sessionKey")
    reason: str = "requested_by_customer"


class PaymentFailedRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payment_intent_id: str = Field(..., alias="paymentIntentId")


def _http_error(error: CheckoutError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.to_detail())


def get_checkout_service(
    db: Session = Depends(get_db),
    manager: PaymentIntentManager = Depends(get_payment_intent_manager),
    email_service=Depends(get_email_service),
) -> CheckoutService:
    return CheckoutService(db, manager, email_service)


@router.post("/events/{event_id}/create-payment-intent")
async def create_payment_intent(
    event_id: str,
    request: CreatePaymentIntentRequest,
    checkout: CheckoutService = Depends(get_checkout_service),
):
    """Create or reuse the payment intent for a registration, or mark it free"""
    registration_data = request.registration_data.to_fields()
    logger.info(
        f"Payment intent requested for event {event_id} ({request.option}) by {registration_data['email']}"
    )
    try:
        result, registration = await checkout.start_checkout(
            event_id,
            request.option,
            registration_data,
            discount_code=request.discount_code or registration_data.get("discount_code"),
            discounted_amount=request.discounted_amount,
            checkout_token=request.checkout_token,
        )
    except CheckoutError as e:
        raise _http_error(e)

    if result.free_registration:
        return {
            "isFreeRegistration": True,
            "amount": 0,
            "originalAmount": result.quote.base_price,
            "discountAmount": result.quote.discount_amount,
            "sessionKey": result.session_key,
            "registrationId": str(registration.id),
            "paymentIntentId": free_payment_token(registration.id),
        }

    return {
        "clientSecret": result.client_secret,
        "paymentIntentId": result.payment_intent_id,
        "amount": result.amount,
        "originalAmount": result.quote.base_price,
        "discountAmount": result.quote.discount_amount,
        "sessionKey": result.session_key,
        "registrationId": str(registration.id),
        "reused": result.reused,
    }


@router.post("/validate-discount")
async def validate_discount(
    request: ValidateDiscountRequest, db: Session = Depends(get_db)
):
    """Check a discount code against a price in cents"""
    result = DiscountService(db).validate(
        request.discount_code, request.original_price, request.event_id
    )
    if not result.valid:
        return {"valid": False, "message": result.error}
    return {
        "valid": True,
        "discount": {
            "code": result.code,
            "description": result.description,
            "discountAmount": result.discount_amount,
            "finalPrice": result.final_amount,
        },
    }


@router.post("/events/{event_id}/stripe-payment-success")
async def stripe_payment_success(
    event_id: str,
    request: PaymentSuccessRequest,
    checkout: CheckoutService = Depends(get_checkout_service),
):
    """Record a completed payment (or free registration). Safe to replay."""
    registration_data = (
        request.registration_data.to_fields() if request.registration_data else {}
    )
    try:
        recorded = await checkout.confirm_payment(
            event_id,
            request.payment_intent_id,
            registration_data,
            free_registration=request.free_registration,
            registration_id=request.registration_id,
            session_key=request.session_key,
            checkout_token=request.checkout_token,
        )
    except CheckoutError as e:
        raise _http_error(e)

    return {
        "registrationId": str(recorded.registration.id),
        "status": recorded.registration.status.value,
        "replayed": recorded.replayed,
    }


@router.post("/events/{event_id}/cancel-payment-intent")
async def cancel_payment_intent(
    event_id: str,
    request: CancelPaymentIntentRequest,
    manager: PaymentIntentManager = Depends(get_payment_intent_manager),
):
    """Abandon the checkout session's intent and unlock the session"""
    try:
        cancelled = await manager.cancel(request.session_key, request.reason)
    except CheckoutError as e:
        raise _http_error(e)
    if not cancelled:
        raise HTTPException(
            status_code=404, detail="No cancellable payment session found"
        )
    return {"success": True, "sessionKey": request.session_key}


@router.post("/events/{event_id}/payment-failed")
async def payment_failed(
    event_id: str,
    request: PaymentFailedRequest,
    manager: PaymentIntentManager = Depends(get_payment_intent_manager),
):
    """Client-reported payment failure; unlocks the session for another attempt"""
    try:
        updated = await manager.handle_payment_failed(request.payment_intent_id)
    except CheckoutError as e:
        raise _http_error(e)
    return {"success": True, "sessionUpdated": updated}


@router.get("/payment-sessions/{session_key}")
async def get_payment_session(
    session_key: str,
    manager: PaymentIntentManager = Depends(get_payment_intent_manager),
):
    status = await manager.status(session_key)
    if status is None:
        raise HTTPException(status_code=404, detail="Payment session not found")
    return status


@router.get("/payment-sessions")
async def get_payment_session_stats(
    manager: PaymentIntentManager = Depends(get_payment_intent_manager),
):
    return await manager.stats()


@router.post("/stripe-webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    """Payment intent events from Stripe, verified by signature"""
    payload = await request.body()
    try:
        event = checkout.manager.gateway.construct_webhook_event(
            payload, stripe_signature
        )
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning(f"Rejected webhook: {e}")
        raise HTTPException(status_code=400, detail="Invalid webhook payload")

    logger.info(f"Received webhook event {event['type']}")
    try:
        return await checkout.handle_gateway_event(event)
    except CheckoutError as e:
        raise _http_error(e)
