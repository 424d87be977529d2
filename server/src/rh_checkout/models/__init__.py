"""Database models for the checkout service"""

from rh_checkout.models.discount_code import DiscountCode, DiscountType
from rh_checkout.models.payment import Payment, PaymentMethod, PaymentStatus
from rh_checkout.models.registration import Registration, RegistrationStatus

__all__ = [
    "Registration",
    "RegistrationStatus",
    "Payment",
    "PaymentMethod",
    "PaymentStatus",
    "DiscountCode",
    "DiscountType",
]
