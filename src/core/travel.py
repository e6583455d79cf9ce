"""Leave-by calculator — pure business logic.

Given an event start and a travel estimate, works out when the user has to
leave (travel time plus a fixed buffer) and how urgent that is right now.
Also decides when a stored travel estimate is stale enough to refresh.

No I/O: this module only transforms data.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from src.core.timeutils import parse_timestamp, to_brt
from src.data.models import Event

logger = logging.getLogger(__name__)

TRAVEL_BUFFER_MINUTES = 5
LEAVE_NOW_MINUTES = 5
LEAVE_SOON_MINUTES = 15

STALE_AFTER = timedelta(hours=1)
REFRESH_HORIZON = timedelta(hours=4)

_TRAFFIC_LABELS = {
    "leve": "🟢 trânsito leve",
    "moderado": "🟡 trânsito moderado",
    "pesado": "🔴 trânsito pesado",
}


@dataclass
class LeaveAdvice:
    """When to leave for an event, and the line shown in the reminder."""

    leave_by: datetime
    minutes_to_leave: int      # negative once leave_by has passed
    urgency: str               # "late" | "now" | "soon" | "planned"
    message: str


def calculate_leave_by(event_start: datetime, travel_minutes: int) -> datetime:
    """event_start − (travel_minutes + buffer)."""
    return to_brt(event_start) - timedelta(minutes=travel_minutes + TRAVEL_BUFFER_MINUTES)


def build_leave_advice(event_start: datetime, travel_minutes: int, now: datetime) -> LeaveAdvice:
    """Classify how close *now* is to the leave-by instant."""
    leave_by = calculate_leave_by(event_start, travel_minutes)
    seconds_left = (leave_by - to_brt(now)).total_seconds()
    minutes_left = int(seconds_left // 60)
    hhmm = leave_by.strftime("%H:%M")

    if seconds_left < 0:
        urgency = "late"
        message = f"⚠️ Você já deveria ter saído! (saída ideal: {hhmm})"
    elif minutes_left <= LEAVE_NOW_MINUTES:
        urgency = "now"
        message = "🚨 Saia agora!"
    elif minutes_left <= LEAVE_SOON_MINUTES:
        urgency = "soon"
        message = f"🚗 Saia em {minutes_left} minutos (até {hhmm})"
    else:
        urgency = "planned"
        message = f"🚗 Saia às {hhmm}"

    return LeaveAdvice(
        leave_by=leave_by, minutes_to_leave=minutes_left, urgency=urgency, message=message,
    )


def describe_trip(event: Event) -> str | None:
    """``🚗 25 min (12.4 km) · 🟡 trânsito moderado`` or None without an estimate."""
    if event.travel_minutes is None:
        return None
    text = f"🚗 {event.travel_minutes} min"
    if event.travel_distance_km is not None:
        text += f" ({event.travel_distance_km:.1f} km)"
    label = _TRAFFIC_LABELS.get(event.travel_traffic or "")
    if label:
        text += f" · {label}"
    return text


def needs_travel_refresh(event: Event, now: datetime) -> bool:
    """True when the event has an address, starts within REFRESH_HORIZON and
    its estimate was never computed or is older than STALE_AFTER.
    """
    if not event.address:
        return False

    start = event.start
    if start <= now or start - now > REFRESH_HORIZON:
        return False

    if not event.travel_last_computed:
        return True
    try:
        computed = parse_timestamp(event.travel_last_computed)
    except ValueError:
        logger.warning("Event #%d has a malformed travel timestamp", event.id)
        return True
    return now - computed > STALE_AFTER
