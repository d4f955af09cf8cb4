from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class BookingStatus(str, Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    PENDING = "pending"


class BookingEvent(BaseModel):
    ts: str
    event: str


class Booking(BaseModel):
    locator: str
    status: BookingStatus
    lead_traveler: str
    check_in: str
    check_out: str
    total_price: str
    currency: str = Field(min_length=3, max_length=3)
    history: list[BookingEvent] = Field(default_factory=list)


def _validate_iso_date(value: str) -> str:
    # YYYY-MM-DD basic validation
    if len(value) != 10 or value[4] != "-" or value[7] != "-":
        raise ValueError("Invalid date format")
    return value


class CheckAvailabilityRequest(BaseModel):
    product_id: str = Field(min_length=1)
    start_date: str
    end_date: str

    @field_validator("start_date", "end_date")
    @classmethod
    def validate_date(cls, value: str) -> str:
        return _validate_iso_date(value)

    @model_validator(mode="after")
    def validate_range(self) -> "CheckAvailabilityRequest":
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class AvailabilitySlot(BaseModel):
    date: str
    seats: int = Field(ge=0)


class CheckAvailabilityResponse(BaseModel):
    product_id: str
    start_date: str
    end_date: str
    timezone: str
    available_slots: list[AvailabilitySlot]
    currency: str
    price_from: str
    meta: Optional[dict] = None


class WeatherReport(BaseModel):
    city: str
    condition: str
    temperature_c: float
    temperature_f: float
    humidity_percent: int = Field(ge=0, le=100)
    wind_kph: float = Field(ge=0)
    source: str
    summary: str
