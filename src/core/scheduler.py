"""
Lembra Assistant — Periodic Jobs.

Snooze tick: delivers the one-shot "me lembra em N minutos" reminders that
came due, and purges old delivered rows in bounded batches.

Morning agenda: a proactive daily push at MORNING_AGENDA_HOUR listing each
active user's events for today.

Weekly summary: once a week, the next seven days starting tomorrow.

run_periodic_tick bundles the reminder, follow-up and snooze ticks so the
bot's job queue has a single callback per interval.

This module is provider-agnostic: it depends on NotificationPort and
TravelPort protocols, not on specific implementations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from src.core.agenda import (
    format_morning_agenda,
    format_weekly_summary,
    period_bounds,
    weekly_bounds,
)
from src.core.followup import run_followup_tick
from src.core.reminders import run_reminder_tick
from src.core.timeutils import now_brt, to_iso

if TYPE_CHECKING:
    from src.data.db import Store
    from src.ports.notification_port import NotificationPort
    from src.ports.travel_port import TravelPort

logger = logging.getLogger(__name__)

SNOOZE_BATCH_SIZE = 50
SNOOZE_RETENTION = timedelta(days=7)
SNOOZE_PURGE_LIMIT = 100


@dataclass
class SnoozeReport:
    due: int = 0
    sent: int = 0
    failed: int = 0
    purged: int = 0


# ---------------------------------------------------------------------------
# Snoozes
# ---------------------------------------------------------------------------


async def run_snooze_tick(
    store: Store,
    notifier: NotificationPort,
    now: datetime | None = None,
) -> SnoozeReport:
    """Send due snoozes (bounded batch), then purge old delivered ones.

    A failed send leaves the row unsent so the next tick retries it.
    """
    now = now or now_brt()
    due = store.snoozes.list_due(to_iso(now), limit=SNOOZE_BATCH_SIZE)
    report = SnoozeReport(due=len(due))

    for snooze in due:
        try:
            result = await notifier.send_message(snooze.handle, snooze.message)
            if not result.ok:
                report.failed += 1
                logger.error("Snooze #%d send failed: %s", snooze.id, result.error)
                continue
            store.snoozes.mark_sent(snooze.id)
            report.sent += 1
        except Exception as exc:
            report.failed += 1
            logger.error("Snooze #%d failed: %s", snooze.id, exc)

    try:
        report.purged = store.snoozes.purge_sent_before(
            to_iso(now - SNOOZE_RETENTION), limit=SNOOZE_PURGE_LIMIT,
        )
    except Exception as exc:
        logger.error("Snooze housekeeping failed: %s", exc)

    if report.due:
        logger.info("Snooze tick: %d due, %d sent, %d failed", report.due, report.sent, report.failed)
    return report


# ---------------------------------------------------------------------------
# Morning agenda
# ---------------------------------------------------------------------------


async def send_morning_agenda(
    store: Store,
    notifier: NotificationPort,
    now: datetime | None = None,
) -> int:
    """Push today's agenda to every active user. Returns how many were sent."""
    now = now or now_brt()
    start, end = period_bounds("hoje", now)
    sent = 0

    for user in store.users.list_active():
        try:
            events = store.events.list_in_range(to_iso(start), to_iso(end), owner=user.owner_id)
            result = await notifier.send_message(user.handle, format_morning_agenda(events))
            if result.ok:
                sent += 1
                logger.info("Morning agenda sent to %s", user.owner_id)
            else:
                logger.error("Morning agenda to %s failed: %s", user.owner_id, result.error)
        except Exception as exc:
            logger.error("Failed to send morning agenda to %s: %s", user.owner_id, exc)
    return sent


async def send_weekly_summary(
    store: Store,
    notifier: NotificationPort,
    now: datetime | None = None,
) -> int:
    """Push the coming week to every active user. Returns how many were sent."""
    now = now or now_brt()
    start, end = weekly_bounds(now)
    sent = 0

    for user in store.users.list_active():
        try:
            events = store.events.list_in_range(to_iso(start), to_iso(end), owner=user.owner_id)
            result = await notifier.send_message(user.handle, format_weekly_summary(events))
            if result.ok:
                sent += 1
                logger.info("Weekly summary sent to %s (%d events)", user.owner_id, len(events))
            else:
                logger.error("Weekly summary to %s failed: %s", user.owner_id, result.error)
        except Exception as exc:
            logger.error("Failed to send weekly summary to %s: %s", user.owner_id, exc)
    return sent


# ---------------------------------------------------------------------------
# Combined periodic tick)
# ---------------------------------------------------------------------------


async def run_periodic_tick(
    store: Store,
    notifier: NotificationPort,
    travel: TravelPort | None = None,
    now: datetime | None = None,
) -> None:
    """Reminder, follow-up and snooze ticks in sequence; one failing does not stop the rest."""
    now = now or now_brt()
    try:
        await run_reminder_tick(store, notifier, travel, now)
    except Exception as exc:
        logger.error("Reminder tick failed: %s", exc)
    try:
        await run_followup_tick(store, notifier, now)
    except Exception as exc:
        logger.error("Follow-up tick failed: %s", exc)
    try:
        await run_snooze_tick(store, notifier, now)
    except Exception as exc:
        logger.error("Snooze tick failed: %s", exc)
