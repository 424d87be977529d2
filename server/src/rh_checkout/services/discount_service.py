"""Discount code validation"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Session, select

from rh_checkout.models.discount_code import DiscountCode, DiscountType

logger = logging.getLogger(__name__)


@dataclass
class DiscountResult:
    valid: bool
    original_amount: int
    final_amount: int
    discount_amount: int = 0
    code: Optional[str] = None
    description: Optional[str] = None
    error: Optional[str] = None


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def validate_discount(
    discount: Optional[DiscountCode],
    original_amount: int,
    event_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> DiscountResult:
    """Apply a discount code to an amount in cents.

    Pure: the caller loads the code; nothing is written. An invalid code
    leaves the amount unchanged and carries the reason in ``error``.
    """

    def _reject(error: str) -> DiscountResult:
        return DiscountResult(
            valid=False,
            original_amount=original_amount,
            final_amount=original_amount,
            error=error,
        )

    if discount is None:
        return _reject("Invalid discount code")
    if not discount.active:
        return _reject("This discount code is no longer active")

    now = now or datetime.now(timezone.utc)
    if discount.valid_from and now < _as_utc(discount.valid_from):
        return _reject("This discount code is not active yet")
    if discount.valid_until and now > _as_utc(discount.valid_until):
        return _reject("This discount code has expired")
    if discount.max_uses is not None and discount.current_uses >= discount.max_uses:
        return _reject("This discount code has reached its usage limit")
    if event_id is not None and discount.event_ids and event_id not in discount.event_ids:
        return _reject("This discount code is not valid for this event")

    if discount.discount_type == DiscountType.PERCENTAGE:
        percent = min(max(discount.discount_value, 0), 100)
        discount_amount = round(original_amount * percent / 100)
    else:
        discount_amount = max(discount.discount_value, 0)

    discount_amount = min(discount_amount, original_amount)
    return DiscountResult(
        valid=True,
        original_amount=original_amount,
        final_amount=original_amount - discount_amount,
        discount_amount=discount_amount,
        code=discount.code,
        description=discount.description,
    )


class DiscountService:
    """Service for looking up discount codes and tracking their usage"""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get_by_code(self, code: str) -> Optional[DiscountCode]:
        normalized = normalize_code(code)
        if not normalized:
            return None
        stmt = select(DiscountCode).where(DiscountCode.code == normalized)
        return self.db.exec(stmt).first()

    def validate(
        self, code: str, original_amount: int, event_id: Optional[int] = None
    ) -> DiscountResult:
        result = validate_discount(self.get_by_code(code), original_amount, event_id)
        if result.valid:
            logger.info(
                f"Discount {result.code} applied: {original_amount} -> {result.final_amount}"
            )
        else:
            logger.info(f"Discount code rejected: {result.error}")
        return result

    def create_code(self, discount: DiscountCode) -> DiscountCode:
        discount.code = normalize_code(discount.code)
        self.db.add(discount)
        self.db.commit()
        self.db.refresh(discount)
        logger.info(f"Created discount code {discount.code}")
        return discount

    def increment_usage(self, code: str) -> None:
        """Count one use of a code. Does not commit; runs inside the caller's transaction."""
        discount = self.get_by_code(code)
        if discount is not None:
            discount.current_uses += 1
            self.db.add(discount)
