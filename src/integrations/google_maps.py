"""Google Maps integration — travel time with live traffic.

Uses the Distance Matrix API to estimate driving time between an origin
and an event address, with ``departure_time`` so traffic is considered,
and classifies traffic by the ratio of in-traffic to free-flow duration.

Gracefully degrades: returns None on any failure (no API key, timeout,
invalid response, no route, etc.).
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from urllib.parse import quote_plus

import httpx

from src.core.timeutils import now_brt
from src.ports.travel_port import TravelEstimate

logger = logging.getLogger(__name__)

_DISTANCE_MATRIX_URL = "https://maps.googleapis.com/maps/api/distancematrix/json"
_TIMEOUT_SECONDS = 5

# Departures closer than this are queried as "now"
_DEPARTURE_MIN_LEAD = timedelta(minutes=5)


def classify_traffic(in_traffic_minutes: int, free_flow_minutes: int) -> str:
    """``leve`` below 1.2×, ``moderado`` below 1.5×, else ``pesado``."""
    if free_flow_minutes <= 0:
        return "leve"
    ratio = in_traffic_minutes / free_flow_minutes
    if ratio < 1.2:
        return "leve"
    if ratio < 1.5:
        return "moderado"
    return "pesado"


def navigation_links(address: str) -> tuple[str, str]:
    """(Waze, Google Maps) deep links for an address."""
    encoded = quote_plus(address)
    return (
        f"https://waze.com/ul?q={encoded}&navigate=yes",
        f"https://www.google.com/maps/search/?api=1&query={encoded}",
    )


async def estimate_travel(
    origin: str,
    destination: str,
    departure: datetime,
    api_key: str,
    now: datetime | None = None,
) -> TravelEstimate | None:
    """Driving estimate from *origin* to *destination* leaving at *departure*.

    Returns a TravelEstimate (minutes rounded up, distance in km, traffic
    level) — or None on any failure.
    """
    if not origin or not destination or not api_key:
        return None

    now = now or now_brt()
    params = {
        "origins": origin,
        "destinations": destination,
        "mode": "driving",
        "language": "pt-BR",
        "key": api_key,
    }
    if departure > now + _DEPARTURE_MIN_LEAD:
        params["departure_time"] = str(int(departure.timestamp()))
        params["traffic_model"] = "best_guess"
    else:
        params["departure_time"] = "now"

    try:
        async with httpx.AsyncClient(timeout=_TIMEOUT_SECONDS) as client:
            resp = await client.get(_DISTANCE_MATRIX_URL, params=params)
            resp.raise_for_status()
            data = resp.json()

        if data.get("status") != "OK":
            logger.warning("Distance Matrix API status: %s", data.get("status"))
            return None

        rows = data.get("rows", [])
        if not rows:
            return None

        element = rows[0].get("elements", [{}])[0]
        if element.get("status") != "OK":
            logger.info(
                "Distance Matrix element status: %s for %s → %s",
                element.get("status"), origin, destination,
            )
            return None

        free_flow_seconds = element["duration"]["value"]
        traffic_seconds = element.get("duration_in_traffic", {}).get("value", free_flow_seconds)
        free_flow_minutes = (free_flow_seconds + 59) // 60   # round up
        traffic_minutes = (traffic_seconds + 59) // 60

        return TravelEstimate(
            minutes=traffic_minutes,
            distance_km=round(element["distance"]["value"] / 1000, 1),
            traffic=classify_traffic(traffic_minutes, free_flow_minutes),
        )
    except Exception as exc:
        logger.warning(
            "Distance Matrix API failed for '%s' → '%s': %s",
            origin, destination, exc,
        )
        return None


class GoogleMapsTravel:
    """TravelPort implementation backed by the Distance Matrix API."""

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key

    async def estimate(
        self, origin: str, destination: str, departure: datetime,
    ) -> TravelEstimate | None:
        return await estimate_travel(origin, destination, departure, self._api_key)
