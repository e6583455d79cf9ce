"""
Lembra Assistant — Reminder Scheduler.

Evaluates every pending event due in the next few days against the
per-kind reminder windows, enriches timed reminders with travel advice,
drops anything already in the sent-log, applies the anti-spam gate and
hands the rest to the notifier.

run_reminder_tick is invoked by the periodic trigger (the Telegram job
queue). It never raises: per-event failures are logged and counted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from src.config import settings
from src.core.places import home_address
from src.core.timeutils import local_date, now_brt, parse_timestamp, start_of_today, to_iso
from src.core.travel import build_leave_advice, describe_trip, needs_travel_refresh
from src.data.models import Event, EventKind, EventStatus
from src.integrations.google_maps import navigation_links

if TYPE_CHECKING:
    from src.data.db import ReminderLogDB, Store
    from src.ports.notification_port import NotificationPort
    from src.ports.travel_port import TravelPort

logger = logging.getLogger(__name__)

# Stable identifiers: dedup keys in the sent-log and template selectors
KIND_7D = "7d"
KIND_3D = "3d"
KIND_1D = "1d"
KIND_0D = "0d"
KIND_3H = "3h"
KIND_1H = "1h"
KIND_CHECKLIST = "30min_checklist"
KIND_NOW = "0min"

LOOKAHEAD_DAYS = 8


@dataclass
class ReminderCandidate:
    event: Event
    kind: str
    message: str


@dataclass
class TickReport:
    """Counters for one scheduler run."""

    events: int = 0
    candidates: int = 0
    sent: int = 0
    duplicates: int = 0
    blocked: int = 0
    failed: int = 0
    travel_refreshed: int = 0


# ---------------------------------------------------------------------------
# Rule table
# ---------------------------------------------------------------------------


def _birthday_candidates(event: Event, now: datetime) -> list[ReminderCandidate]:
    start = event.start
    days_left = (start - now) // timedelta(days=1)
    event_day = local_date(start)
    today = local_date(now)
    who = event.person or event.title
    day_label = f"{start.day}/{start.month}"

    out: list[ReminderCandidate] = []
    if days_left in (6, 7):
        out.append(ReminderCandidate(event, KIND_7D, (
            f"🎂 Próxima semana: aniversário de {who} (dia {day_label})\n\n"
            "📋 Lembrete:\n□ Presente comprado?\n□ Cartão/mensagem?\n□ Confirmou presença?"
        )))
    if days_left in (2, 3):
        out.append(ReminderCandidate(event, KIND_3D, f"🎂 Em 3 dias: aniversário de {who}"))
    if event_day == today + timedelta(days=1):
        out.append(ReminderCandidate(event, KIND_1D, f"🎂 Amanhã: aniversário de {who}"))
    if event_day == today:
        out.append(ReminderCandidate(event, KIND_0D, f"🎂 Hoje: aniversário de {who}!"))
    return out


def _location_block(event: Event, now: datetime) -> str:
    """Address, travel advice and navigation links appended to timed reminders."""
    if not event.address:
        return ""
    lines = [f"📍 {event.address}"]
    trip = describe_trip(event)
    if trip:
        lines.append(trip)
        lines.append(build_leave_advice(event.start, event.travel_minutes, now).message)
    waze, maps = navigation_links(event.address)
    lines.append(f"🗺️ Waze: {waze}")
    lines.append(f"🗺️ Maps: {maps}")
    return "\n" + "\n".join(lines)


def _timed_candidates(event: Event, now: datetime) -> list[ReminderCandidate]:
    start = event.start
    if local_date(start) != local_date(now):
        return []
    hours_left = (start - now).total_seconds() / 3600
    if hours_left <= 0:
        return []

    extra = _location_block(event, now)
    hhmm = start.strftime("%H:%M")

    out: list[ReminderCandidate] = []
    if 2.5 < hours_left <= 3.5:
        out.append(ReminderCandidate(event, KIND_3H, f"⏰ Em 3h: {event.title} ({hhmm}){extra}"))
    if 0.75 < hours_left <= 1.25:
        out.append(ReminderCandidate(event, KIND_1H, f"⏰ Em 1h: {event.title}{extra}"))
    if event.checklist and 0.4 < hours_left <= 0.6:
        items = "\n".join(f"□ {item}" for item in event.checklist)
        out.append(ReminderCandidate(event, KIND_CHECKLIST, (
            f"⏰ {event.title} em 30 minutos!\n\n📋 Já pegou:\n{items}\n\nTudo pronto?{extra}"
        )))
    if 0 < hours_left <= 0.17:
        out.append(ReminderCandidate(event, KIND_NOW, f"⏰ AGORA: {event.title}!{extra}"))
    return out


def build_candidates(event: Event, now: datetime) -> list[ReminderCandidate]:
    """Reminders whose window contains *now* for this event (dedup not applied)."""
    if event.status != EventStatus.PENDING:
        return []
    if event.kind == EventKind.BIRTHDAY:
        return _birthday_candidates(event, now)
    return _timed_candidates(event, now)


# ---------------------------------------------------------------------------
# Anti-spam gate
# ---------------------------------------------------------------------------


def is_critical(kind: str) -> bool:
    return kind in settings.CRITICAL_REMINDER_KINDS


def can_send(
    owner: str,
    critical: bool,
    log_db: ReminderLogDB,
    now: datetime | None = None,
) -> bool:
    """Throttle non-critical reminders while the last delivery sits unread.

    Unread for less than ANTISPAM_BLOCK_MINUTES → block. Unread for
    ANTISPAM_FAILOPEN_MINUTES or more → allow, so a broken read-receipt
    pipeline cannot silence the user forever. In between → block.
    """
    if critical:
        return True

    last = log_db.latest_for_owner(owner)
    if last is None or last.read_at:
        return True

    now = now or now_brt()
    age_minutes = (now - parse_timestamp(last.sent_at)).total_seconds() / 60
    if age_minutes < settings.ANTISPAM_BLOCK_MINUTES:
        return False
    if age_minutes >= settings.ANTISPAM_FAILOPEN_MINUTES:
        return True
    return False


# ---------------------------------------------------------------------------
# Travel refresh
# ---------------------------------------------------------------------------


async def refresh_travel(store: Store, travel: TravelPort, event: Event, now: datetime) -> bool:
    """Re-estimate travel time for *event* and persist it. Returns success."""
    origin = event.travel_origin or home_address(store.places, event.owner)
    if not origin:
        logger.info("Event #%d: no travel origin (no 'casa' favorite)", event.id)
        return False

    estimate = await travel.estimate(origin, event.address, event.start)
    if estimate is None:
        logger.warning("Event #%d: travel estimate unavailable", event.id)
        return False

    computed_at = to_iso(now)
    store.events.update_travel(
        event.id, estimate.minutes, estimate.distance_km, estimate.traffic, origin, computed_at,
    )
    event.travel_minutes = estimate.minutes
    event.travel_distance_km = estimate.distance_km
    event.travel_traffic = estimate.traffic
    event.travel_origin = origin
    event.travel_last_computed = computed_at
    return True


# ---------------------------------------------------------------------------
# Tick
# ---------------------------------------------------------------------------


async def run_reminder_tick(
    store: Store,
    notifier: NotificationPort,
    travel: TravelPort | None = None,
    now: datetime | None = None,
) -> TickReport:
    """One scheduler pass over the events of the next LOOKAHEAD_DAYS."""
    now = now or now_brt()
    today = start_of_today(now)
    events = store.events.list_in_range(
        to_iso(today), to_iso(today + timedelta(days=LOOKAHEAD_DAYS)),
    )
    report = TickReport(events=len(events))

    for event in events:
        try:
            handle = store.users.handle_for(event.owner)
            if not handle:
                logger.debug("Owner %s has no active channel, skipping #%d", event.owner, event.id)
                continue

            if travel is not None and needs_travel_refresh(event, now):
                if await refresh_travel(store, travel, event, now):
                    report.travel_refreshed += 1

            for candidate in build_candidates(event, now):
                report.candidates += 1
                await _dispatch(store, notifier, handle, candidate, now, report)
        except Exception as exc:
            report.failed += 1
            logger.error("Reminder processing failed for event #%d: %s", event.id, exc)

    logger.info(
        "Reminder tick: %d events, %d candidates, %d sent, %d blocked, %d failed",
        report.events, report.candidates, report.sent, report.blocked, report.failed,
    )
    return report


async def _dispatch(
    store: Store,
    notifier: NotificationPort,
    handle: str,
    candidate: ReminderCandidate,
    now: datetime,
    report: TickReport,
) -> None:
    event = candidate.event
    if store.sent.was_sent(event.id, candidate.kind):
        report.duplicates += 1
        return

    if not can_send(event.owner, is_critical(candidate.kind), store.sent, now):
        report.blocked += 1
        logger.warning("Anti-spam blocked %s for event #%d", candidate.kind, event.id)
        return

    result = await notifier.send_message(handle, candidate.message)
    if not result.ok:
        report.failed += 1
        logger.error("Send failed for %s on event #%d: %s", candidate.kind, event.id, result.error)
        return

    store.sent.record_sent(event.id, event.owner, candidate.kind, to_iso(now), result.delivery_id)
    report.sent += 1
    logger.info("Reminder %s sent for event #%d '%s'", candidate.kind, event.id, event.title)
