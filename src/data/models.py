"""
Lembra Assistant — Data Models.

Plain records mirrored 1:1 by the SQLite tables in src.data.db.
Timestamps are ISO strings with an explicit -03:00 offset; dates are
ISO ``YYYY-MM-DD`` strings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from src.core.timeutils import parse_timestamp


class EventKind(str, Enum):
    BIRTHDAY = "birthday"
    APPOINTMENT = "appointment"
    TASK = "task"
    HEALTH = "health"
    REMINDER = "reminder"

    @classmethod
    def from_label(cls, label: str | None) -> EventKind:
        """Map an English or Portuguese label to a kind.

        Anything unrecognised falls back to DEFAULT_EVENT_KIND.
        """
        if not label:
            return DEFAULT_EVENT_KIND
        key = label.strip().lower()
        try:
            return cls(key)
        except ValueError:
            return _PT_KIND_LABELS.get(key, DEFAULT_EVENT_KIND)


DEFAULT_EVENT_KIND = EventKind.APPOINTMENT

_PT_KIND_LABELS = {
    "aniversario": EventKind.BIRTHDAY,
    "aniversário": EventKind.BIRTHDAY,
    "compromisso": EventKind.APPOINTMENT,
    "tarefa": EventKind.TASK,
    "saude": EventKind.HEALTH,
    "saúde": EventKind.HEALTH,
    "lembrete": EventKind.REMINDER,
}

KIND_EMOJI = {
    EventKind.BIRTHDAY: "🎂",
    EventKind.APPOINTMENT: "📅",
    EventKind.TASK: "📝",
    EventKind.HEALTH: "💊",
    EventKind.REMINDER: "🔔",
}


class EventStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"
    CANCELED = "canceled"


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass
class User:
    """A channel identity bound to an owner id."""

    owner_id: str
    handle: str               # Telegram chat id or WhatsApp phone number
    display_name: str = ""
    active: bool = True
    created_at: str = ""


@dataclass
class Event:
    """A schedulable item owned by one user."""

    id: int
    owner: str
    kind: EventKind
    title: str
    timestamp: str                         # e.g. "2025-02-14T16:00:00-03:00"
    description: str | None = None
    person: str | None = None
    address: str | None = None
    status: EventStatus = EventStatus.PENDING
    is_recurring: bool = False
    recurrence_ref: int | None = None
    checklist: list[str] = field(default_factory=list)
    travel_minutes: int | None = None
    travel_origin: str | None = None
    travel_last_computed: str | None = None
    travel_distance_km: float | None = None
    travel_traffic: str | None = None
    created_at: str = ""

    @property
    def start(self) -> datetime:
        return parse_timestamp(self.timestamp)

    @property
    def is_all_day(self) -> bool:
        """Midnight start means the event has a date but no time."""
        start = self.start
        return start.hour == 0 and start.minute == 0


@dataclass
class RecurrenceRule:
    """How a template event repeats."""

    id: int
    owner: str
    origin_event_id: int
    frequency: Frequency
    start_date: str
    interval: int = 1
    weekdays: list[int] | None = None      # 0 = Sunday … 6 = Saturday
    month_day: int | None = None
    end_date: str | None = None
    occurrence_count: int | None = None
    active: bool = True
    created_at: str = ""


@dataclass
class Occurrence:
    """Links a generated event to the rule and calendar date it represents."""

    id: int
    rule_id: int
    event_id: int
    occurrence_date: str
    excluded: bool = False


@dataclass
class SentReminder:
    """Append-only dispatch log row; (event_id, reminder_kind) is unique."""

    id: int
    event_id: int
    owner: str
    reminder_kind: str
    sent_at: str
    delivery_id: str | None = None
    read_at: str | None = None


@dataclass
class FollowupTicket:
    """Retry state of the "did you do it?" prompts for one event."""

    id: int
    event_id: int
    owner: str
    handle: str
    next_due: str
    deadline: str
    attempts: int = 0
    interval_minutes: int = 0
    max_attempts: int = 7
    active: bool = True
    completed: bool = False
    last_asked: str | None = None
    created_at: str = ""


@dataclass
class ConversationTurn:
    """One persisted exchange; context_json carries the resolver state blob."""

    id: int
    owner: str
    user_message: str
    assistant_message: str
    context_json: str = "{}"
    created_at: str = ""


@dataclass
class FavoritePlace:
    id: int
    owner: str
    nickname: str
    address: str


@dataclass
class Snooze:
    """A transient one-shot reminder the user asked for ("me lembra em 10 min")."""

    id: int
    owner: str
    handle: str
    message: str
    send_at: str
    sent: bool = False
    event_id: int | None = None
