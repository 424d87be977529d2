"""SQLModel DiscountCode model"""

import enum
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import JSON, Column
from sqlalchemy import Enum as SQLEnum
from sqlmodel import Field, SQLModel


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"  # cents


class DiscountCode(SQLModel, table=True):
    """Promotional or admin discount code"""

    __tablename__ = "discount_codes"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    code: str = Field(unique=True, index=True)
    discount_type: DiscountType = Field(
        sa_column=Column(
            SQLEnum(
                DiscountType,
                name="discount_type",
                values_callable=lambda x: [e.value for e in x],
            ),
            nullable=False,
        )
    )
    discount_value: int  # percent for PERCENTAGE, cents for FIXED
    description: Optional[str] = None
    active: bool = Field(default=True)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    max_uses: Optional[int] = None  # None means unlimited
    current_uses: int = Field(default=0)
    event_ids: Optional[List[int]] = Field(
        default=None, sa_column=Column(JSON)
    )  # None means every event
    created_at: Optional[datetime] = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
