"""SQLModel Registration model"""

import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Column
from sqlalchemy import Enum as SAEnum
from sqlmodel import Field, SQLModel


class RegistrationStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Registration(SQLModel, table=True):
    """A registrant's seat at an event.

    Created ``pending`` when the form is submitted, moved to ``completed``
    exactly once by a verified payment or the free-registration path.
    """

    __tablename__ = "registrations"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    event_id: int = Field(index=True)
    option: str = Field(default="full")
    first_name: str
    last_name: str
    email: str = Field(index=True)
    phone: Optional[str] = Field(default="")
    contact_name: Optional[str] = None  # Parent/guardian
    # Checkout session that produced this registration
    session_key: Optional[str] = Field(default=None, index=True)
    base_price: int  # cents
    discount_code: Optional[str] = None
    discount_amount: int = Field(default=0)  # cents
    final_price: int  # cents
    status: RegistrationStatus = Field(
        default=RegistrationStatus.PENDING,
        sa_column=Column(
            SAEnum(
                RegistrationStatus,
                name="registration_status",
                native_enum=True,
                values_callable=lambda enum: [e.value for e in enum],
            ),
            nullable=False,
            server_default=RegistrationStatus.PENDING.value,
        ),
    )
    additional_data: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: Optional[datetime] = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    updated_at: Optional[datetime] = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    completed_at: Optional[datetime] = None
    confirmation_sent_at: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
