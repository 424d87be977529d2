"""Tests for discount code validation"""

from datetime import datetime, timedelta, timezone

from rh_checkout.models import DiscountCode, DiscountType
from rh_checkout.services.discount_service import validate_discount


def _code(**overrides) -> DiscountCode:
    values = dict(
        code="SAVE20",
        discount_type=DiscountType.PERCENTAGE,
        discount_value=20,
    )
    values.update(overrides)
    return DiscountCode(**values)


class TestValidateDiscount:
    """Pure validation of a code against an amount"""

    def test_percentage_discount(self):
        result = validate_discount(_code(), 24900)
        assert result.valid
        assert result.discount_amount == 4980
        assert result.final_amount == 19920

    def test_full_percentage_discount_makes_registration_free(self):
        result = validate_discount(_code(code="FREE100", discount_value=100), 24900)
        assert result.valid
        assert result.final_amount == 0

    def test_fixed_discount_never_goes_below_zero(self):
        result = validate_discount(
            _code(discount_type=DiscountType.FIXED, discount_value=50000), 24900
        )
        assert result.final_amount == 0
        assert result.discount_amount == 24900

    def test_unknown_code(self):
        result = validate_discount(None, 24900)
        assert not result.valid
        assert result.final_amount == 24900
        assert result.error

    def test_inactive_and_expired_codes(self):
        now = datetime.now(timezone.utc)
        assert not validate_discount(_code(active=False), 24900).valid
        assert not validate_discount(
            _code(valid_until=now - timedelta(days=1)), 24900
        ).valid
        assert not validate_discount(
            _code(valid_from=now + timedelta(days=1)), 24900
        ).valid

    def test_naive_datetimes_are_treated_as_utc(self):
        tomorrow = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(days=1)
        assert validate_discount(_code(valid_until=tomorrow), 24900).valid

    def test_usage_limit(self):
        assert not validate_discount(_code(max_uses=5, current_uses=5), 24900).valid
        assert validate_discount(_code(max_uses=5, current_uses=4), 24900).valid

    def test_event_restriction(self):
        code = _code(event_ids=[2])
        assert validate_discount(code, 29900, event_id=2).valid
        assert not validate_discount(code, 24900, event_id=1).valid


class TestDiscountService:
    """Lookup and usage tracking against the datastore"""

    def test_lookup_is_case_insensitive(self, discount_service, discount_codes):
        result = discount_service.validate(" free100 ", 24900, event_id=1)
        assert result.valid
        assert result.code == "FREE100"
        assert result.final_amount == 0

    def test_increment_usage(self, discount_service, discount_codes, db_session):
        discount_service.increment_usage("SAVE20")
        db_session.commit()
        assert discount_service.get_by_code("SAVE20").current_uses == 1
