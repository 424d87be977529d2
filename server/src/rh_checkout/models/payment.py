"""SQLModel Payment model"""

import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, UniqueConstraint
from sqlalchemy import Enum as SAEnum
from sqlmodel import Field, SQLModel

# Synthetic intent ids for free registrations share the payments table with
# real gateway ids; the prefix keeps them from ever colliding.
FREE_PAYMENT_PREFIX = "free_"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentMethod(str, enum.Enum):
    STRIPE = "stripe"
    FREE = "free"


def free_payment_token(registration_id: uuid.UUID) -> str:
    return f"{FREE_PAYMENT_PREFIX}{registration_id}"


def is_free_payment_token(external_payment_intent_id: str) -> bool:
    return external_payment_intent_id.startswith(FREE_PAYMENT_PREFIX)


class Payment(SQLModel, table=True):
    """The payment that funded a registration."""

    __tablename__ = "payments"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    registration_id: uuid.UUID = Field(foreign_key="registrations.id", index=True)
    external_payment_intent_id: str = Field(index=True)
    amount: int  # cents
    currency: str = Field(default="usd")
    payment_method: PaymentMethod = Field(
        default=PaymentMethod.STRIPE,
        sa_column=Column(
            SAEnum(
                PaymentMethod,
                name="payment_method",
                native_enum=True,
                values_callable=lambda enum: [e.value for e in enum],
            ),
            nullable=False,
        ),
    )
    status: PaymentStatus = Field(
        default=PaymentStatus.PENDING,
        sa_column=Column(
            SAEnum(
                PaymentStatus,
                name="payment_status",
                native_enum=True,
                values_callable=lambda enum: [e.value for e in enum],
            ),
            nullable=False,
            server_default=PaymentStatus.PENDING.value,
        ),
    )
    payment_date: Optional[datetime] = None
    created_at: Optional[datetime] = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    updated_at: Optional[datetime] = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        UniqueConstraint(
            "external_payment_intent_id",
            name="uq_payments_external_payment_intent_id",
        ),
    )
