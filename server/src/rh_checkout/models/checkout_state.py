"""Checkout flow states and the transitions allowed between them"""

from enum import Enum


class CheckoutState(str, Enum):
    """Where a checkout session is in the registration flow"""

    COLLECTING = "collecting"
    PRICING = "pricing"
    AWAITING_PAYMENT = "awaiting_payment"
    FREE_CONFIRMING = "free_confirming"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TRANSITIONS = {
    CheckoutState.COLLECTING: {CheckoutState.PRICING},
    CheckoutState.PRICING: {
        CheckoutState.AWAITING_PAYMENT,
        CheckoutState.FREE_CONFIRMING,
        CheckoutState.FAILED,
    },
    CheckoutState.AWAITING_PAYMENT: {
        # Discount applied after the intent was issued
        CheckoutState.PRICING,
        CheckoutState.SUCCEEDED,
        CheckoutState.FAILED,
    },
    CheckoutState.FREE_CONFIRMING: {
        # Discount removed before the free registration was confirmed
        CheckoutState.PRICING,
        CheckoutState.SUCCEEDED,
        CheckoutState.FAILED,
    },
    CheckoutState.FAILED: {CheckoutState.PRICING},
    CheckoutState.SUCCEEDED: set(),
}


def can_transition(current: CheckoutState, target: CheckoutState) -> bool:
    return target in TRANSITIONS[current]
