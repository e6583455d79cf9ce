"""
Lembra Assistant — Follow-up Ladder.

Keeps asking "did you do it?" about events whose time has passed while
they are still pending. Each ticket walks an escalation ladder
(3h → 6h → 12h → next morning at 09:00) until the user confirms, the
deadline passes or max attempts is reached.

run_followup_tick is invoked by the periodic trigger. A failed send leaves
the ticket untouched so the next tick retries it.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import TYPE_CHECKING

from src.config import settings
from src.core.timeutils import (
    BRT,
    format_interval,
    now_brt,
    parse_timestamp,
    to_iso,
)
from src.data.models import Event, EventKind, EventStatus, FollowupTicket

if TYPE_CHECKING:
    from src.data.db import Store
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

# Ticket creation for events that went past due
GRACE_MINUTES = 15
TICKET_LIFETIME = timedelta(days=3)
TICKET_MAX_ATTEMPTS = 7
CANDIDATE_LOOKBACK = timedelta(days=3)

# Tickets created by "lembra de X"
STANDALONE_FIRST_ASK_MINUTES = 180
STANDALONE_LIFETIME = timedelta(days=7)
STANDALONE_MAX_ATTEMPTS = 10

LADDER_MINUTES = (180, 360, 720)
MORNING_HOUR = 9
MIN_INTERVAL_MINUTES = 60

FOLLOWUP_KIND_PREFIX = "followup_"


@dataclass
class FollowupReport:
    created: int = 0
    due: int = 0
    sent: int = 0
    completed: int = 0
    expired: int = 0
    failed: int = 0


# ---------------------------------------------------------------------------
# Ladder math
# ---------------------------------------------------------------------------


def next_interval_minutes(attempts: int, now: datetime) -> int:
    """Minutes until the next ask after *attempts* previous asks."""
    if attempts < len(LADDER_MINUTES):
        return LADDER_MINUTES[attempts]
    tomorrow_nine = datetime.combine(
        now.astimezone(BRT).date() + timedelta(days=1), time(MORNING_HOUR), tzinfo=BRT,
    )
    minutes = math.ceil((tomorrow_nine - now).total_seconds() / 60)
    return max(minutes, MIN_INTERVAL_MINUTES)


def compose_followup_message(ticket: FollowupTicket, event: Event, now: datetime) -> str:
    """Prompt text; varies with the attempt count and whether the event had a time."""
    timed = event.kind != EventKind.REMINDER and not event.is_all_day
    attempts = ticket.attempts

    if attempts == 0:
        if timed:
            return f"👋 E aí? Como foi?\n\n📝 {event.title} ({event.start.strftime('%H:%M')})\n\nJá fez?"
        return f"👋 E aí? Já fez isso?\n\n📝 {event.title}"
    if attempts == 1:
        return f"👋 Conseguiu fazer?\n\n📝 {event.title}"
    if attempts == 2 or timed:
        return f"👋 E esse lembrete?\n\n📝 {event.title}"

    created = parse_timestamp(ticket.created_at) if ticket.created_at else now
    days = (now - created) // timedelta(days=1)
    return f"☀️ Bom dia!\n\n📝 Lembra disso? (dia {days})\n{event.title}"


def _advance(store: Store, ticket: FollowupTicket, now: datetime) -> bool:
    """Move a ticket one rung up. Returns False when it expired instead."""
    interval = next_interval_minutes(ticket.attempts, now)
    next_due = now + timedelta(minutes=interval)
    attempts = ticket.attempts + 1

    if next_due > parse_timestamp(ticket.deadline) or attempts >= ticket.max_attempts:
        store.followups.deactivate(ticket.id, attempts=attempts, last_asked=to_iso(now))
        return False

    store.followups.update_progress(ticket.id, attempts, to_iso(next_due), interval, to_iso(now))
    ticket.attempts = attempts
    ticket.next_due = to_iso(next_due)
    ticket.interval_minutes = interval
    ticket.last_asked = to_iso(now)
    return True


# ---------------------------------------------------------------------------
# Ticket creation
# ---------------------------------------------------------------------------


def _first_ask(event: Event, now: datetime) -> datetime:
    """All-day events are not asked about before MORNING_HOUR of their day."""
    if not event.is_all_day:
        return now
    morning = datetime.combine(event.start.astimezone(BRT).date(), time(MORNING_HOUR), tzinfo=BRT)
    return max(now, morning)


def ensure_tickets(store: Store, now: datetime | None = None) -> int:
    """Open a ticket for each past-due pending event that never had one.

    Only events from the last CANDIDATE_LOOKBACK are considered; an event
    whose ticket already expired is not re-opened.
    """
    now = now or now_brt()
    events = store.events.list_in_range(
        to_iso(now - CANDIDATE_LOOKBACK),
        to_iso(now - timedelta(minutes=GRACE_MINUTES)),
    )

    created = 0
    for event in events:
        if event.kind == EventKind.BIRTHDAY:
            continue
        try:
            if store.followups.get_for_event(event.id) is not None:
                continue
            handle = store.users.handle_for(event.owner)
            if not handle:
                continue
            ticket = store.followups.create_ticket(
                event_id=event.id,
                owner=event.owner,
                handle=handle,
                next_due=to_iso(_first_ask(event, now)),
                deadline=to_iso(now + TICKET_LIFETIME),
                max_attempts=TICKET_MAX_ATTEMPTS,
                created_at=to_iso(now),
            )
            if ticket is not None:
                created += 1
        except Exception as exc:
            logger.error("Could not open follow-up for event #%d: %s", event.id, exc)
    return created


def create_standalone_reminder(store: Store, owner: str, handle: str, title: str | None, now: datetime | None = None) -> str:
    """Create a reminder event at noon today plus its follow-up ticket.

    Returns the reply text.
    """
    if not title or not title.strip():
        return '❌ Me diga o que precisa lembrar.\nEx: "lembra de comprar leite"'

    now = now or now_brt()
    noon = now.astimezone(BRT).replace(hour=12, minute=0, second=0, microsecond=0)
    event = store.events.add_event(
        owner=owner, kind=EventKind.REMINDER, title=title.strip(), timestamp=to_iso(noon),
    )
    first_ask = now + timedelta(minutes=STANDALONE_FIRST_ASK_MINUTES)
    store.followups.create_ticket(
        event_id=event.id,
        owner=owner,
        handle=handle,
        next_due=to_iso(first_ask),
        deadline=to_iso(now + STANDALONE_LIFETIME),
        max_attempts=STANDALONE_MAX_ATTEMPTS,
        interval_minutes=STANDALONE_FIRST_ASK_MINUTES,
        created_at=to_iso(now),
    )
    hour = first_ask.astimezone(BRT)
    return (
        f"✅ *Lembrete criado:*\n📝 {event.title}\n\n"
        f"💡 Vou perguntar daqui 3h ({hour.hour}h{hour.minute:02d}) se você fez!"
    )


# ---------------------------------------------------------------------------
# Tick
# ---------------------------------------------------------------------------


async def run_followup_tick(
    store: Store,
    notifier: NotificationPort,
    now: datetime | None = None,
    batch_size: int | None = None,
) -> FollowupReport:
    """Open new tickets, then ask about every due one (bounded batch)."""
    now = now or now_brt()
    report = FollowupReport(created=ensure_tickets(store, now))

    due = store.followups.list_due(to_iso(now), limit=batch_size or settings.FOLLOWUP_BATCH_SIZE)
    report.due = len(due)

    for ticket in due:
        try:
            event = store.events.get_event(ticket.event_id)
            if event is None or event.status != EventStatus.PENDING:
                if event is not None and event.status == EventStatus.DONE:
                    store.followups.complete(ticket.id)
                    report.completed += 1
                else:
                    store.followups.deactivate(ticket.id)
                    report.expired += 1
                continue

            message = compose_followup_message(ticket, event, now)
            result = await notifier.send_message(ticket.handle, message)
            if not result.ok:
                report.failed += 1
                logger.error("Follow-up #%d send failed: %s", ticket.id, result.error)
                continue

            store.sent.record_sent(
                event.id, event.owner, f"{FOLLOWUP_KIND_PREFIX}{ticket.attempts + 1}",
                to_iso(now), result.delivery_id,
            )
            report.sent += 1
            if not _advance(store, ticket, now):
                report.expired += 1
                logger.info("Follow-up for '%s' expired", event.title)
        except Exception as exc:
            report.failed += 1
            logger.error("Follow-up #%d failed: %s", ticket.id, exc)

    logger.info(
        "Follow-up tick: %d created, %d due, %d sent, %d expired, %d failed",
        report.created, report.due, report.sent, report.expired, report.failed,
    )
    return report


# ---------------------------------------------------------------------------
# User answers
# ---------------------------------------------------------------------------


def decline_followup(store: Store, ticket: FollowupTicket, now: datetime | None = None) -> str:
    """User said they haven't done it yet: push the ticket up the ladder."""
    now = now or now_brt()
    interval = next_interval_minutes(ticket.attempts, now)
    if not _advance(store, ticket, now):
        return "⏰ Ok! Esse lembrete expirou.\n\nQuer criar um novo?"
    logger.info("Follow-up #%d rescheduled in %d min", ticket.id, interval)
    return f"✅ Sem problema!\n\n⏰ Vou perguntar {format_interval(interval)}"


def complete_event(store: Store, event: Event) -> None:
    """Mark *event* done and close its follow-up ticket, if any."""
    store.events.set_status(event.id, EventStatus.DONE)
    store.followups.complete_for_event(event.id)
    event.status = EventStatus.DONE
