from __future__ import annotations

import pytest
from pydantic import ValidationError

from shared.schemas import Booking, BookingStatus, CheckAvailabilityRequest, WeatherReport


def test_check_availability_rejects_malformed_dates() -> None:
    with pytest.raises(ValidationError):
        CheckAvailabilityRequest(product_id="tour-1", start_date="06/01/2024", end_date="2024-06-02")


def test_check_availability_rejects_start_after_end() -> None:
    with pytest.raises(ValidationError):
        CheckAvailabilityRequest(product_id="tour-1", start_date="2024-06-03", end_date="2024-06-02")


def test_check_availability_accepts_single_day_range() -> None:
    request = CheckAvailabilityRequest(product_id="tour-1", start_date="2024-06-02", end_date="2024-06-02")

    assert request.start_date == request.end_date


def test_booking_requires_three_letter_currency() -> None:
    with pytest.raises(ValidationError):
        Booking(
            locator="ABC123",
            status=BookingStatus.CONFIRMED,
            lead_traveler="Maria Garcia",
            check_in="2024-06-15",
            check_out="2024-06-18",
            total_price="540.00",
            currency="EURO",
        )


def test_weather_report_bounds_humidity() -> None:
    with pytest.raises(ValidationError):
        WeatherReport(
            city="Madrid",
            condition="clear sky",
            temperature_c=22,
            temperature_f=72,
            humidity_percent=120,
            wind_kph=5,
            source="demo-mock",
            summary="",
        )
