"""Event catalogue and pricing endpoints"""

from fastapi import APIRouter, HTTPException

from rh_checkout.services.pricing_service import EVENTS, get_event, price_table

router = APIRouter()


def _event_summary(event) -> dict:
    return {
        "id": event.id,
        "slug": event.slug,
        "title": event.title,
        "dates": event.dates,
        "location": event.location,
        "campDays": event.camp_days,
    }


@router.get("/events")
async def list_events():
    """All events open for registration, with prices in cents"""
    return [
        {**_event_summary(event), "pricing": price_table(event)}
        for event in EVENTS.values()
    ]


@router.get("/events/{event_id}/pricing")
async def get_event_pricing(event_id: str):
    event = get_event(event_id)
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return {"eventId": event.id, "title": event.title, "pricing": price_table(event)}
