"""Checkout error taxonomy.

Each error carries a stable ``code`` the frontend switches on, the HTTP status
the routers answer with, and whether the caller may retry the same request.
"""

from typing import Any, Dict, Optional


class CheckoutError(Exception):
    """Base class for errors surfaced to the registrant"""

    code = "CHECKOUT_ERROR"
    status_code = 400
    retryable = False
    default_message = "Unable to process registration. Please try again."

    def __init__(self, message: Optional[str] = None, **context: Any):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def to_detail(self) -> Dict[str, Any]:
        detail = {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        detail.update({k: v for k, v in self.context.items() if v is not None})
        return detail


class SessionLockedError(CheckoutError):
    code = "SESSION_LOCKED"
    status_code = 409
    retryable = True
    default_message = "Payment session is locked. Please wait and try again."


class TooManyAttemptsError(CheckoutError):
    code = "TOO_MANY_ATTEMPTS"
    status_code = 429
    default_message = (
        "Too many payment attempts. Please refresh the page and try again."
    )


class CardDeclinedError(CheckoutError):
    code = "CARD_DECLINED"
    status_code = 402
    default_message = "Card was declined. Please try a different payment method."


class InvalidRequestError(CheckoutError):
    code = "INVALID_REQUEST"
    status_code = 400
    default_message = (
        "Invalid payment request. Please check your information and try again."
    )


class GatewayUnavailableError(CheckoutError):
    code = "PAYMENT_ERROR"
    status_code = 503
    retryable = True
    default_message = "Unable to process payment. Please try again."


class VerificationError(CheckoutError):
    code = "VERIFICATION_ERROR"
    status_code = 502
    default_message = (
        "We could not confirm your payment status. Please contact support "
        "with your payment reference before trying again."
    )


class PaymentIncompleteError(CheckoutError):
    code = "PAYMENT_INCOMPLETE"
    status_code = 409
    default_message = "Payment has not completed yet."


class PaymentSucceededRecordFailedError(CheckoutError):
    """The gateway took the money but the registration could not be saved.

    Never retried automatically: retrying the charge would double-charge.
    """

    code = "PAYMENT_SUCCEEDED_RECORD_FAILED"
    status_code = 503
    default_message = (
        "Your payment was received but we could not finish saving your "
        "registration. Do not pay again; our team has been notified and will "
        "confirm your spot."
    )
