"""Tests for src.core.followup — ticket creation, escalation ladder, tick."""

from datetime import timedelta

import pytest
from unittest.mock import AsyncMock

from conftest import NOW, OWNER, brt
from src.core.followup import (
    compose_followup_message,
    complete_event,
    create_standalone_reminder,
    decline_followup,
    ensure_tickets,
    next_interval_minutes,
    run_followup_tick,
)
from src.core.timeutils import to_iso
from src.data.models import EventKind, EventStatus
from src.ports.notification_port import DeliveryResult


def _add(store, start, kind=EventKind.APPOINTMENT, title="Dentista"):
    return store.events.add_event(owner=OWNER, kind=kind, title=title, timestamp=to_iso(start))


class TestLadder:
    def test_first_three_rungs(self):
        assert [next_interval_minutes(a, NOW) for a in range(3)] == [180, 360, 720]

    def test_then_next_morning_at_nine(self):
        assert next_interval_minutes(3, NOW) == 23 * 60
        assert next_interval_minutes(5, brt(2025, 2, 4, 8, 30)) == 24 * 60 + 30

    def test_never_below_one_hour(self):
        assert next_interval_minutes(3, brt(2025, 2, 3, 8, 30)) >= 60


class TestComposeMessage:
    def test_first_ask_for_timed_event(self, store):
        event = _add(store, brt(2025, 2, 3, 9))
        ticket = store.followups.create_ticket(event.id, OWNER, "12345", to_iso(NOW), to_iso(NOW))
        assert compose_followup_message(ticket, event, NOW) == (
            "👋 E aí? Como foi?\n\n📝 Dentista (09:00)\n\nJá fez?"
        )

    def test_later_asks_for_reminder(self, store):
        event = _add(store, brt(2025, 2, 3, 12), kind=EventKind.REMINDER, title="comprar leite")
        ticket = store.followups.create_ticket(
            event.id, OWNER, "12345", to_iso(NOW), to_iso(NOW), created_at=to_iso(brt(2025, 2, 1, 10)),
        )
        ticket.attempts = 1
        assert compose_followup_message(ticket, event, NOW) == "👋 Conseguiu fazer?\n\n📝 comprar leite"
        ticket.attempts = 4
        assert compose_followup_message(ticket, event, NOW) == (
            "☀️ Bom dia!\n\n📝 Lembra disso? (dia 2)\ncomprar leite"
        )


    def test_all_day_event_gets_untimed_phrasing(self, store):
        event = _add(store, brt(2025, 2, 3), kind=EventKind.HEALTH, title="Vacina")
        ticket = store.followups.create_ticket(event.id, OWNER, "12345", to_iso(NOW), to_iso(NOW))
        assert compose_followup_message(ticket, event, NOW) == "👋 E aí? Já fez isso?\n\n📝 Vacina"


class TestEnsureTickets:
    def test_opens_ticket_after_grace(self, store):
        past = _add(store, brt(2025, 2, 3, 9))
        _add(store, brt(2025, 2, 3, 9, 50))                          # inside grace
        _add(store, brt(2025, 1, 30, 9))                             # before lookback
        _add(store, brt(2025, 2, 2, 9), kind=EventKind.BIRTHDAY)
        done = _add(store, brt(2025, 2, 3, 8))
        store.events.set_status(done.id, EventStatus.DONE)

        assert ensure_tickets(store, NOW) == 1
        ticket = store.followups.get_for_event(past.id)
        assert ticket.next_due == to_iso(NOW)
        assert ticket.deadline == to_iso(NOW + timedelta(days=3))
        assert ticket.max_attempts == 7

    def test_expired_ticket_is_not_reopened(self, store):
        event = _add(store, brt(2025, 2, 3, 9))
        ensure_tickets(store, NOW)
        store.followups.deactivate(store.followups.get_for_event(event.id).id)
        assert ensure_tickets(store, NOW + timedelta(minutes=5)) == 0


    def test_all_day_event_first_ask_waits_for_morning(self, store):
        event = _add(store, brt(2025, 2, 3), kind=EventKind.HEALTH, title="Vacina")
        assert ensure_tickets(store, brt(2025, 2, 3, 0, 20)) == 1
        assert store.followups.get_for_event(event.id).next_due == to_iso(brt(2025, 2, 3, 9))

    def test_all_day_event_after_morning_is_asked_now(self, store):
        event = _add(store, brt(2025, 2, 3), kind=EventKind.HEALTH, title="Vacina")
        ensure_tickets(store, NOW)
        assert store.followups.get_for_event(event.id).next_due == to_iso(NOW)


class TestRunFollowupTick:
    @pytest.mark.asyncio
    async def test_asks_and_advances(self, store, notifier):
        event = _add(store, brt(2025, 2, 3, 9))

        report = await run_followup_tick(store, notifier, now=NOW)

        assert (report.created, report.sent) == (1, 1)
        notifier.send_message.assert_awaited_once()
        assert store.sent.find_by_delivery_id("msg-1").reminder_kind == "followup_1"
        ticket = store.followups.get_for_event(event.id)
        assert ticket.attempts == 1
        assert ticket.interval_minutes == 180
        assert ticket.next_due == to_iso(NOW + timedelta(minutes=180))

    @pytest.mark.asyncio
    async def test_all_day_event_not_asked_overnight(self, store, notifier):
        _add(store, brt(2025, 2, 3), kind=EventKind.HEALTH, title="Vacina")

        report = await run_followup_tick(store, notifier, now=brt(2025, 2, 3, 0, 20))
        assert (report.created, report.sent) == (1, 0)

        report = await run_followup_tick(store, notifier, now=brt(2025, 2, 3, 9, 0))
        assert report.sent == 1
        notifier.send_message.assert_awaited_once_with("12345", "👋 E aí? Já fez isso?\n\n📝 Vacina")

    @pytest.mark.asyncio
    async def test_not_due_yet(self, store, notifier):
        _add(store, brt(2025, 2, 3, 9))
        await run_followup_tick(store, notifier, now=NOW)
        report = await run_followup_tick(store, notifier, now=NOW + timedelta(minutes=30))
        assert report.due == 0
        assert notifier.send_message.await_count == 1

    @pytest.mark.asyncio
    async def test_done_event_completes_ticket(self, store, notifier):
        event = _add(store, brt(2025, 2, 3, 9))
        ensure_tickets(store, NOW)
        store.events.set_status(event.id, EventStatus.DONE)

        report = await run_followup_tick(store, notifier, now=NOW)
        assert report.completed == 1
        assert store.followups.get_for_event(event.id).completed is True
        notifier.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_canceled_event_deactivates_ticket(self, store, notifier):
        event = _add(store, brt(2025, 2, 3, 9))
        ensure_tickets(store, NOW)
        store.events.set_status(event.id, EventStatus.CANCELED)

        report = await run_followup_tick(store, notifier, now=NOW)
        ticket = store.followups.get_for_event(event.id)
        assert report.expired == 1
        assert (ticket.active, ticket.completed) == (False, False)

    @pytest.mark.asyncio
    async def test_failed_send_leaves_ticket_untouched(self, store):
        event = _add(store, brt(2025, 2, 3, 9))
        failing = AsyncMock()
        failing.send_message = AsyncMock(return_value=DeliveryResult(ok=False, error="down"))

        report = await run_followup_tick(store, failing, now=NOW)
        assert report.failed == 1
        ticket = store.followups.get_for_event(event.id)
        assert ticket.attempts == 0
        assert ticket.active is True

    @pytest.mark.asyncio
    async def test_last_attempt_expires_ticket(self, store, notifier):
        event = _add(store, brt(2025, 2, 3, 9))
        ensure_tickets(store, NOW)
        ticket = store.followups.get_for_event(event.id)
        store.followups.update_progress(ticket.id, 6, to_iso(NOW), 720, to_iso(NOW - timedelta(hours=1)))

        report = await run_followup_tick(store, notifier, now=NOW)
        assert report.sent == 1
        assert report.expired == 1
        ticket = store.followups.get_for_event(event.id)
        assert ticket.active is False
        assert ticket.attempts == 7


class TestUserAnswers:
    def test_decline_reschedules(self, store):
        event = _add(store, brt(2025, 2, 3, 9))
        ensure_tickets(store, NOW)
        ticket = store.followups.get_for_event(event.id)

        reply = decline_followup(store, ticket, NOW)
        assert reply == "✅ Sem problema!\n\n⏰ Vou perguntar daqui 3h"
        assert store.followups.get_for_event(event.id).attempts == 1

    def test_decline_past_deadline_expires(self, store):
        event = _add(store, brt(2025, 2, 3, 9))
        ensure_tickets(store, NOW)
        ticket = store.followups.get_for_event(event.id)

        reply = decline_followup(store, ticket, NOW + timedelta(days=3))
        assert "expirou" in reply
        assert store.followups.get_for_event(event.id).active is False

    def test_complete_event_closes_ticket(self, store):
        event = _add(store, brt(2025, 2, 3, 9))
        ensure_tickets(store, NOW)
        complete_event(store, event)
        assert event.status == EventStatus.DONE
        assert store.events.get_event(event.id).status == EventStatus.DONE
        assert store.followups.get_for_event(event.id).completed is True


class TestStandaloneReminder:
    def test_creates_event_and_ticket(self, store):
        reply = create_standalone_reminder(store, OWNER, "12345", "comprar leite", NOW)

        events = store.events.list_in_range(to_iso(brt(2025, 2, 3)), to_iso(brt(2025, 2, 4)))
        assert len(events) == 1
        assert events[0].kind == EventKind.REMINDER
        assert events[0].timestamp == "2025-02-03T12:00:00-03:00"

        ticket = store.followups.get_for_event(events[0].id)
        assert ticket.next_due == to_iso(brt(2025, 2, 3, 13))
        assert ticket.deadline == to_iso(NOW + timedelta(days=7))
        assert ticket.max_attempts == 10
        assert "13h00" in reply

    def test_empty_title(self, store):
        assert create_standalone_reminder(store, OWNER, "12345", "  ", NOW).startswith("❌")
        assert store.events.count_for_owner(OWNER) == 0
