"""Event catalogue and registration pricing.

All prices are in cents. Pricing is a pure function of the event and the
registration option; discounts are applied afterwards by the discount service.

Options
- full: every day of the event
- single / 1day: one day; half of the full price unless the event lists an
  explicit one-day price
- 2day: two selected days (only events that list a 2-day price)
- team: full price per athlete
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Union

from rh_checkout.errors import InvalidRequestError

SINGLE_DAY_OPTIONS = {"single", "1day"}
REGISTRATION_OPTIONS = {"full", "single", "1day", "2day", "team"}


@dataclass(frozen=True)
class EventPricing:
    full: int
    one_day: Optional[int] = None
    two_day: Optional[int] = None


@dataclass(frozen=True)
class EventInfo:
    id: int
    slug: str
    title: str
    dates: str
    location: str
    pricing: EventPricing
    camp_days: List[str] = field(default_factory=list)


EVENTS: Dict[int, EventInfo] = {
    1: EventInfo(
        id=1,
        slug="birmingham-slam-camp",
        title="Birmingham Slam Camp",
        dates="June 19-21, 2025",
        location="Clay-Chalkville Middle School, Birmingham, AL",
        pricing=EventPricing(full=24900),
    ),
    2: EventInfo(
        id=2,
        slug="national-champ-camp",
        title="National Champ Camp",
        dates="June 5-7, 2025",
        location="Roy Martin Middle School, Las Vegas, NV",
        pricing=EventPricing(full=29900, one_day=11900, two_day=23800),
        camp_days=["June 5", "June 6", "June 7"],
    ),
    3: EventInfo(
        id=3,
        slug="texas-recruiting-clinic",
        title="Texas Recruiting Clinic",
        dates="June 12-13, 2025",
        location="Arlington Martin High School, Arlington, TX",
        pricing=EventPricing(full=24900),
    ),
    4: EventInfo(
        id=4,
        slug="panther-train-tour",
        title="Panther Train Tour",
        dates="July 23-25, 2025",
        location="Various locations",
        pricing=EventPricing(full=20000),
    ),
}


def get_event(event_ref: Union[int, str]) -> Optional[EventInfo]:
    """Look an event up by numeric id or slug"""
    if isinstance(event_ref, int):
        return EVENTS.get(event_ref)
    ref = str(event_ref).strip()
    if ref.isdigit():
        return EVENTS.get(int(ref))
    for event in EVENTS.values():
        if event.slug == ref:
            return event
    return None


def require_event(event_ref: Union[int, str]) -> EventInfo:
    event = get_event(event_ref)
    if event is None:
        raise InvalidRequestError(
            "The event you're trying to register for could not be found.",
            event_id=str(event_ref),
        )
    return event


def resolve_base_price(
    event_ref: Union[int, str],
    option: str = "full",
    selected_dates: Optional[Sequence[str]] = None,
    athlete_count: Optional[int] = None,
) -> int:
    """Return the undiscounted price in cents for an event registration option.

    Raises:
        InvalidRequestError: unknown event, unknown option, or option details
            (selected dates, athlete count) that do not match the option
    """
    event = require_event(event_ref)
    pricing = event.pricing
    option = (option or "full").strip().lower()

    if option not in REGISTRATION_OPTIONS:
        raise InvalidRequestError(f"Invalid registration option '{option}'")

    if option in SINGLE_DAY_OPTIONS:
        if pricing.one_day is not None:
            return pricing.one_day
        return round(pricing.full * 0.5)

    if option == "2day":
        if pricing.two_day is None:
            raise InvalidRequestError(
                f"2-day pricing not available for event {event.id}"
            )
        _validate_selected_days(event, selected_dates, expected=2)
        return pricing.two_day

    if option == "team":
        if not athlete_count or athlete_count < 1:
            raise InvalidRequestError("Team registrations need at least one athlete")
        return pricing.full * athlete_count

    return pricing.full


def _validate_selected_days(
    event: EventInfo, selected_dates: Optional[Sequence[str]], expected: int
) -> None:
    if not selected_dates or len(selected_dates) != expected:
        count = len(selected_dates) if selected_dates else 0
        raise InvalidRequestError(
            f"Selected dates count {count} doesn't match required days {expected}"
        )
    for day in selected_dates:
        if day not in event.camp_days:
            raise InvalidRequestError(f"Invalid date selected: {day}")
    if len(set(selected_dates)) != len(selected_dates):
        raise InvalidRequestError("Selected dates must be different days")


def price_table(event: EventInfo) -> Dict[str, int]:
    """Every option an event can be bought with, priced in cents"""
    table = {
        "full": event.pricing.full,
        "single": resolve_base_price(event.id, "single"),
    }
    if event.pricing.two_day is not None:
        table["2day"] = event.pricing.two_day
    return table
