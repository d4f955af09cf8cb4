"""Static responses for demo tools that have no live backend route."""

from __future__ import annotations

from typing import Any


def _lookup_booking(args: dict[str, Any]) -> dict[str, Any]:
    include_history = bool(args.get("include_history"))
    return {
        "locator": args.get("locator") or "UNKNOWN",
        "status": "confirmed",
        "lead_traveler": "Maria Garcia",
        "check_in": "2024-06-15",
        "check_out": "2024-06-18",
        "total_price": "EUR 540.00",
        "currency": "EUR",
        "include_history": include_history,
        "history": [
            {"ts": "2024-05-01T10:15:00Z", "event": "Created by partner API"},
            {"ts": "2024-05-05T08:00:00Z", "event": "Payment confirmed"},
        ]
        if include_history
        else [],
    }


def _check_availability(args: dict[str, Any]) -> dict[str, Any]:
    return {
        "product_id": args.get("product_id") or "unknown-product",
        "start_date": args.get("start_date"),
        "end_date": args.get("end_date"),
        "timezone": "Europe/Madrid",
        "available_slots": [
            {"date": args.get("start_date"), "seats": 12, "price": "EUR 45.00"},
            {"date": args.get("end_date"), "seats": 8, "price": "EUR 45.00"},
        ],
        "message": "Demo availability response (static data).",
    }


_SIMULATIONS = {
    "lookup_booking": _lookup_booking,
    "check_availability": _check_availability,
}


def simulate_tool_response(name: str, args: dict[str, Any]) -> dict[str, Any]:
    """Returns the fixture output for ``name``."""
    simulation = _SIMULATIONS.get(name)
    if simulation is None:
        return {"message": f"No simulation defined for {name}."}
    return simulation(args)
