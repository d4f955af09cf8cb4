"""Demo tool API routes called by bridge business tools.

Handlers return static fixtures so tool wiring can be exercised end to end
without a real booking or weather provider behind them.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from shared import schemas
from ..config import settings

_LOGGER = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/tools")

_BOOKINGS: dict[str, schemas.Booking] = {
    "ABC123": schemas.Booking(
        locator="ABC123",
        status=schemas.BookingStatus.CONFIRMED,
        lead_traveler="Maria Garcia",
        check_in="2024-06-15",
        check_out="2024-06-18",
        total_price="540.00",
        currency="EUR",
        history=[
            schemas.BookingEvent(ts="2024-05-01T10:15:00Z", event="Created from partner API"),
            schemas.BookingEvent(ts="2024-05-05T08:00:00Z", event="Payment confirmed"),
        ],
    ),
    "ZX9001": schemas.Booking(
        locator="ZX9001",
        status=schemas.BookingStatus.PENDING,
        lead_traveler="Daniel Ortega",
        check_in="2024-07-10",
        check_out="2024-07-12",
        total_price="210.00",
        currency="EUR",
        history=[schemas.BookingEvent(ts="2024-05-20T09:30:00Z", event="Reservation requested")],
    ),
}

_CONDITIONS = (
    "clear sky",
    "partly cloudy",
    "light rain",
    "overcast",
    "breezy with mild temperatures",
)


def require_auth(authorization: str | None = Header(default=None)) -> None:
    """Validates bearer-token authentication for tool endpoints.

    An empty ``TOOL_API_TOKEN`` leaves the demo routes open.

    Args:
        authorization: Raw Authorization header value.

    Raises:
        HTTPException: If the caller token does not match the configured token.
    """
    if not settings.TOOL_API_TOKEN:
        return
    if authorization != f"Bearer {settings.TOOL_API_TOKEN}":
        _LOGGER.debug("Tool request auth failed.")
        raise HTTPException(status_code=401, detail="Unauthorized")


def _stable_index(value: str, size: int) -> int:
    return sum(value.encode("utf-8")) % size


@router.get("/bookings/{locator}", dependencies=[Depends(require_auth)])
async def get_booking(locator: str) -> schemas.Booking:
    """Returns a fixture booking by locator (case-insensitive)."""
    booking = _BOOKINGS.get(locator.upper())
    if booking is None:
        raise HTTPException(status_code=404, detail=f"Booking {locator.upper()} not found.")
    return booking


@router.post("/products/check-availability", dependencies=[Depends(require_auth)])
async def check_availability(body: schemas.CheckAvailabilityRequest) -> schemas.CheckAvailabilityResponse:
    """Returns fixture availability for the requested date range."""
    return schemas.CheckAvailabilityResponse(
        product_id=body.product_id,
        start_date=body.start_date,
        end_date=body.end_date,
        timezone=settings.DEMO_TIMEZONE,
        available_slots=[
            schemas.AvailabilitySlot(date=body.start_date, seats=5 + _stable_index(body.start_date, 10)),
            schemas.AvailabilitySlot(date=body.end_date, seats=5 + _stable_index(body.end_date, 10)),
        ],
        currency=settings.DEMO_CURRENCY,
        price_from="45.00",
        meta={"source": "demo backend"},
    )


@router.get("/weather", dependencies=[Depends(require_auth)])
async def get_weather(city: str = Query(default="")) -> schemas.WeatherReport:
    """Returns a fixture weather report for ``city``."""
    city = city.strip()
    if not city:
        raise HTTPException(status_code=400, detail="Missing required query parameter 'city'.")
    name = city[:1].upper() + city[1:].lower()
    condition = _CONDITIONS[_stable_index(name.lower(), len(_CONDITIONS))]
    return schemas.WeatherReport(
        city=name,
        condition=condition,
        temperature_c=22,
        temperature_f=72,
        humidity_percent=55,
        wind_kph=12,
        source="demo-mock",
        summary=f"In {name} right now the weather is {condition}, around 22C, with a light breeze.",
    )
