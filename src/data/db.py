"""
Lembra Assistant — SQLite storage.

One small DB class per aggregate. Each class owns its table, creates it on
start and converts rows to the dataclasses in src.data.models.

Timestamps are written through src.core.timeutils.to_iso, so every stored
instant has the same ``-03:00`` shape and text comparison is chronological.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path

from src.core.timeutils import now_brt
from src.data.models import (
    ConversationTurn,
    Event,
    EventKind,
    EventStatus,
    FavoritePlace,
    FollowupTicket,
    Frequency,
    Occurrence,
    RecurrenceRule,
    SentReminder,
    Snooze,
    User,
)

logger = logging.getLogger(__name__)


class _SQLiteDB:
    """Connection handling shared by every table class."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        raise NotImplementedError


def _now_iso() -> str:
    return now_brt().replace(microsecond=0).isoformat()


# ---------------------------------------------------------------------------
# Users / channel bindings
# ---------------------------------------------------------------------------


class UserDB(_SQLiteDB):
    """Maps an owner id to the channel handle reminders are sent to."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    owner_id      TEXT PRIMARY KEY,
                    handle        TEXT NOT NULL,
                    display_name  TEXT NOT NULL DEFAULT '',
                    active        INTEGER NOT NULL DEFAULT 1,
                    created_at    TEXT NOT NULL
                )
            """)
        logger.debug("Users table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            owner_id=row["owner_id"],
            handle=row["handle"],
            display_name=row["display_name"],
            active=bool(row["active"]),
            created_at=row["created_at"],
        )

    def add_user(self, owner_id: str, handle: str, display_name: str = "") -> User:
        """Register (or re-activate) a user. Existing rows keep created_at."""
        now = _now_iso()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO users (owner_id, handle, display_name, active, created_at)
                VALUES (?, ?, ?, 1, ?)
                ON CONFLICT(owner_id) DO UPDATE SET
                    handle = excluded.handle,
                    display_name = excluded.display_name,
                    active = 1
                """,
                (owner_id, handle, display_name, now),
            )
        logger.info("User registered: %s (%s)", owner_id, display_name)
        return self.get_user(owner_id)

    def get_user(self, owner_id: str) -> User | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE owner_id = ?", (owner_id,),
            ).fetchone()
        return self._row_to_user(row) if row else None

    def get_by_handle(self, handle: str) -> User | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE handle = ? AND active = 1", (handle,),
            ).fetchone()
        return self._row_to_user(row) if row else None

    def handle_for(self, owner_id: str) -> str | None:
        """Active channel handle for an owner, or None when unbound."""
        user = self.get_user(owner_id)
        if user is None or not user.active:
            return None
        return user.handle

    def list_active(self) -> list[User]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM users WHERE active = 1 ORDER BY created_at",
            ).fetchall()
        return [self._row_to_user(r) for r in rows]

    def deactivate(self, owner_id: str) -> None:
        with self._connect() as conn:
            conn.execute("UPDATE users SET active = 0 WHERE owner_id = ?", (owner_id,))
        logger.info("User %s deactivated", owner_id)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

_EVENT_UPDATABLE = {
    "title", "timestamp", "description", "person", "address",
    "recurrence_ref", "travel_origin",
}


class EventDB(_SQLiteDB):
    """Storage for schedulable events. Events are never hard-deleted."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner                 TEXT    NOT NULL,
                    kind                  TEXT    NOT NULL,
                    title                 TEXT    NOT NULL,
                    timestamp             TEXT    NOT NULL,
                    description           TEXT,
                    person                TEXT,
                    address               TEXT,
                    status                TEXT    NOT NULL DEFAULT 'pending',
                    is_recurring          INTEGER NOT NULL DEFAULT 0,
                    recurrence_ref        INTEGER,
                    checklist             TEXT    NOT NULL DEFAULT '[]',
                    travel_minutes        INTEGER,
                    travel_origin         TEXT,
                    travel_last_computed  TEXT,
                    travel_distance_km    REAL,
                    travel_traffic        TEXT,
                    created_at            TEXT    NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_owner_ts ON events (owner, timestamp)"
            )
        logger.debug("Events table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> Event:
        return Event(
            id=row["id"],
            owner=row["owner"],
            kind=EventKind(row["kind"]),
            title=row["title"],
            timestamp=row["timestamp"],
            description=row["description"],
            person=row["person"],
            address=row["address"],
            status=EventStatus(row["status"] or EventStatus.PENDING.value),
            is_recurring=bool(row["is_recurring"]),
            recurrence_ref=row["recurrence_ref"],
            checklist=json.loads(row["checklist"] or "[]"),
            travel_minutes=row["travel_minutes"],
            travel_origin=row["travel_origin"],
            travel_last_computed=row["travel_last_computed"],
            travel_distance_km=row["travel_distance_km"],
            travel_traffic=row["travel_traffic"],
            created_at=row["created_at"],
        )

    def add_event(
        self,
        owner: str,
        kind: EventKind,
        title: str,
        timestamp: str,
        description: str | None = None,
        person: str | None = None,
        address: str | None = None,
        checklist: list[str] | None = None,
        is_recurring: bool = False,
        recurrence_ref: int | None = None,
        travel_origin: str | None = None,
    ) -> Event:
        """Insert a new pending event and return it."""
        now = _now_iso()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO events
                    (owner, kind, title, timestamp, description, person, address,
                     status, is_recurring, recurrence_ref, checklist, travel_origin,
                     created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?, ?, ?, ?)
                """,
                (
                    owner, kind.value, title, timestamp, description, person, address,
                    int(is_recurring), recurrence_ref, json.dumps(checklist or []),
                    travel_origin, now,
                ),
            )
            event_id = cursor.lastrowid

        logger.info("Event added: #%d '%s' at %s", event_id, title, timestamp)
        return Event(
            id=event_id,
            owner=owner,
            kind=kind,
            title=title,
            timestamp=timestamp,
            description=description,
            person=person,
            address=address,
            is_recurring=is_recurring,
            recurrence_ref=recurrence_ref,
            checklist=list(checklist or []),
            travel_origin=travel_origin,
            created_at=now,
        )

    def get_event(self, event_id: int) -> Event | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM events WHERE id = ?", (event_id,)).fetchone()
        return self._row_to_event(row) if row else None

    def set_status(self, event_id: int, status: EventStatus) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE events SET status = ? WHERE id = ?", (status.value, event_id),
            )
        changed = cursor.rowcount > 0
        if changed:
            logger.info("Event #%d status → %s", event_id, status.value)
        return changed

    def update_fields(self, event_id: int, **fields: object) -> None:
        """Update editable columns (title, timestamp, person, address, …)."""
        unknown = set(fields) - _EVENT_UPDATABLE
        if unknown:
            raise ValueError(f"Not updatable: {sorted(unknown)}")
        if not fields:
            return
        assignments = ", ".join(f"{name} = ?" for name in fields)
        with self._connect() as conn:
            conn.execute(
                f"UPDATE events SET {assignments} WHERE id = ?",
                (*fields.values(), event_id),
            )
        logger.info("Event #%d updated: %s", event_id, ", ".join(fields))

    def update_travel(
        self,
        event_id: int,
        minutes: int,
        distance_km: float | None,
        traffic: str | None,
        origin: str,
        computed_at: str,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE events
                SET travel_minutes = ?, travel_distance_km = ?, travel_traffic = ?,
                    travel_origin = ?, travel_last_computed = ?
                WHERE id = ?
                """,
                (minutes, distance_km, traffic, origin, computed_at, event_id),
            )
        logger.info("Event #%d travel refreshed: %d min from %s", event_id, minutes, origin)

    def list_in_range(
        self,
        start: str,
        end: str,
        owner: str | None = None,
        statuses: tuple[EventStatus, ...] | None = (EventStatus.PENDING,),
        title_contains: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Event]:
        """Events with start <= timestamp <= end, filtered and ordered by time.

        title_contains is a case-insensitive substring match done in Python
        (casefold), so accented titles compare correctly.
        """
        query = "SELECT * FROM events WHERE timestamp >= ? AND timestamp <= ?"
        params: list = [start, end]
        if owner is not None:
            query += " AND owner = ?"
            params.append(owner)
        if statuses:
            query += f" AND status IN ({', '.join('?' for _ in statuses)})"
            params.extend(s.value for s in statuses)
        query += " ORDER BY timestamp " + ("DESC" if descending else "ASC") + ", id"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()

        events = [self._row_to_event(r) for r in rows]
        if title_contains is not None:
            needle = title_contains.casefold()
            events = [e for e in events if needle in e.title.casefold()]
        if limit is not None:
            events = events[:limit]
        return events

    def count_for_owner(self, owner: str) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM events WHERE owner = ?", (owner,),
            ).fetchone()
        return row[0]


# ---------------------------------------------------------------------------
# Recurrence rules + occurrence links
# ---------------------------------------------------------------------------


class RecurrenceDB(_SQLiteDB):
    """Storage for recurrence rules and the (rule, date) occurrence links."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS recurrence_rules (
                    id                INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner             TEXT    NOT NULL,
                    origin_event_id   INTEGER NOT NULL,
                    frequency         TEXT    NOT NULL,
                    interval          INTEGER NOT NULL DEFAULT 1,
                    weekdays          TEXT,
                    month_day         INTEGER,
                    start_date        TEXT    NOT NULL,
                    end_date          TEXT,
                    occurrence_count  INTEGER,
                    active            INTEGER NOT NULL DEFAULT 1,
                    created_at        TEXT    NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS occurrences (
                    id               INTEGER PRIMARY KEY AUTOINCREMENT,
                    rule_id          INTEGER NOT NULL,
                    event_id         INTEGER NOT NULL,
                    occurrence_date  TEXT    NOT NULL,
                    excluded         INTEGER NOT NULL DEFAULT 0,
                    UNIQUE (rule_id, occurrence_date)
                )
            """)
        logger.debug("Recurrence tables initialized at %s", self._db_path)

    @staticmethod
    def _row_to_rule(row: sqlite3.Row) -> RecurrenceRule:
        return RecurrenceRule(
            id=row["id"],
            owner=row["owner"],
            origin_event_id=row["origin_event_id"],
            frequency=Frequency(row["frequency"]),
            interval=row["interval"],
            weekdays=json.loads(row["weekdays"]) if row["weekdays"] else None,
            month_day=row["month_day"],
            start_date=row["start_date"],
            end_date=row["end_date"],
            occurrence_count=row["occurrence_count"],
            active=bool(row["active"]),
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_occurrence(row: sqlite3.Row) -> Occurrence:
        return Occurrence(
            id=row["id"],
            rule_id=row["rule_id"],
            event_id=row["event_id"],
            occurrence_date=row["occurrence_date"],
            excluded=bool(row["excluded"]),
        )

    def add_rule(
        self,
        owner: str,
        origin_event_id: int,
        frequency: Frequency,
        start_date: str,
        interval: int = 1,
        weekdays: list[int] | None = None,
        month_day: int | None = None,
        end_date: str | None = None,
        occurrence_count: int | None = None,
    ) -> RecurrenceRule:
        now = _now_iso()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO recurrence_rules
                    (owner, origin_event_id, frequency, interval, weekdays, month_day,
                     start_date, end_date, occurrence_count, active, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 1, ?)
                """,
                (
                    owner, origin_event_id, frequency.value, interval,
                    json.dumps(weekdays) if weekdays else None, month_day,
                    start_date, end_date, occurrence_count, now,
                ),
            )
            rule_id = cursor.lastrowid
        logger.info("Recurrence rule #%d added (%s every %d)", rule_id, frequency.value, interval)
        return RecurrenceRule(
            id=rule_id,
            owner=owner,
            origin_event_id=origin_event_id,
            frequency=frequency,
            interval=interval,
            weekdays=weekdays,
            month_day=month_day,
            start_date=start_date,
            end_date=end_date,
            occurrence_count=occurrence_count,
            created_at=now,
        )

    def get_rule(self, rule_id: int) -> RecurrenceRule | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM recurrence_rules WHERE id = ?", (rule_id,),
            ).fetchone()
        return self._row_to_rule(row) if row else None

    def add_occurrence(self, rule_id: int, event_id: int, occurrence_date: str) -> Occurrence:
        """Link an event to (rule, date). Raises sqlite3.IntegrityError on duplicates."""
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO occurrences (rule_id, event_id, occurrence_date) VALUES (?, ?, ?)",
                (rule_id, event_id, occurrence_date),
            )
        return Occurrence(
            id=cursor.lastrowid, rule_id=rule_id, event_id=event_id,
            occurrence_date=occurrence_date,
        )

    def has_occurrence(self, rule_id: int, occurrence_date: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM occurrences WHERE rule_id = ? AND occurrence_date = ?",
                (rule_id, occurrence_date),
            ).fetchone()
        return row is not None

    def exclude_occurrence(self, rule_id: int, occurrence_date: str) -> bool:
        """Mark a single occurrence excluded without disabling the rule."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE occurrences SET excluded = 1 WHERE rule_id = ? AND occurrence_date = ?",
                (rule_id, occurrence_date),
            )
        return cursor.rowcount > 0

    def list_occurrences(self, rule_id: int) -> list[Occurrence]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM occurrences WHERE rule_id = ? ORDER BY occurrence_date",
                (rule_id,),
            ).fetchall()
        return [self._row_to_occurrence(r) for r in rows]


# ---------------------------------------------------------------------------
# Sent-reminder log
# ---------------------------------------------------------------------------


class ReminderLogDB(_SQLiteDB):
    """Append-only log of dispatched reminders, with read receipts."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS sent_reminders (
                    id             INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_id       INTEGER NOT NULL,
                    owner          TEXT    NOT NULL,
                    reminder_kind  TEXT    NOT NULL,
                    sent_at        TEXT    NOT NULL,
                    delivery_id    TEXT,
                    read_at        TEXT,
                    UNIQUE (event_id, reminder_kind)
                )
            """)
        logger.debug("Sent reminders table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_sent(row: sqlite3.Row) -> SentReminder:
        return SentReminder(
            id=row["id"],
            event_id=row["event_id"],
            owner=row["owner"],
            reminder_kind=row["reminder_kind"],
            sent_at=row["sent_at"],
            delivery_id=row["delivery_id"],
            read_at=row["read_at"],
        )

    def was_sent(self, event_id: int, reminder_kind: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM sent_reminders WHERE event_id = ? AND reminder_kind = ?",
                (event_id, reminder_kind),
            ).fetchone()
        return row is not None

    def record_sent(
        self,
        event_id: int,
        owner: str,
        reminder_kind: str,
        sent_at: str,
        delivery_id: str | None = None,
    ) -> bool:
        """Record a dispatch. Returns False if the pair was already logged."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO sent_reminders
                    (event_id, owner, reminder_kind, sent_at, delivery_id)
                VALUES (?, ?, ?, ?, ?)
                """,
                (event_id, owner, reminder_kind, sent_at, delivery_id),
            )
        return cursor.rowcount > 0

    def latest_for_owner(self, owner: str, since: str | None = None) -> SentReminder | None:
        """Most recent delivery to an owner, optionally no older than *since*."""
        query = "SELECT * FROM sent_reminders WHERE owner = ?"
        params: list = [owner]
        if since is not None:
            query += " AND sent_at >= ?"
            params.append(since)
        query += " ORDER BY sent_at DESC, id DESC LIMIT 1"
        with self._connect() as conn:
            row = conn.execute(query, params).fetchone()
        return self._row_to_sent(row) if row else None

    def find_by_delivery_id(self, delivery_id: str) -> SentReminder | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM sent_reminders WHERE delivery_id = ?", (delivery_id,),
            ).fetchone()
        return self._row_to_sent(row) if row else None

    def mark_read(self, delivery_id: str, read_at: str | None = None) -> bool:
        """Stamp a read receipt. Returns False for unknown delivery ids."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE sent_reminders SET read_at = ? WHERE delivery_id = ?",
                (read_at or _now_iso(), delivery_id),
            )
        marked = cursor.rowcount > 0
        if marked:
            logger.info("Delivery %s marked as read", delivery_id)
        return marked


# ---------------------------------------------------------------------------
# Follow-up tickets
# ---------------------------------------------------------------------------


class FollowupDB(_SQLiteDB):
    """Storage for follow-up tickets — at most one per event."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS followup_tickets (
                    id                INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_id          INTEGER NOT NULL UNIQUE,
                    owner             TEXT    NOT NULL,
                    handle            TEXT    NOT NULL,
                    attempts          INTEGER NOT NULL DEFAULT 0,
                    interval_minutes  INTEGER NOT NULL DEFAULT 0,
                    next_due          TEXT    NOT NULL,
                    deadline          TEXT    NOT NULL,
                    max_attempts      INTEGER NOT NULL DEFAULT 7,
                    active            INTEGER NOT NULL DEFAULT 1,
                    completed         INTEGER NOT NULL DEFAULT 0,
                    last_asked        TEXT,
                    created_at        TEXT    NOT NULL
                )
            """)
        logger.debug("Follow-up table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_ticket(row: sqlite3.Row) -> FollowupTicket:
        return FollowupTicket(
            id=row["id"],
            event_id=row["event_id"],
            owner=row["owner"],
            handle=row["handle"],
            attempts=row["attempts"],
            interval_minutes=row["interval_minutes"],
            next_due=row["next_due"],
            deadline=row["deadline"],
            max_attempts=row["max_attempts"],
            active=bool(row["active"]),
            completed=bool(row["completed"]),
            last_asked=row["last_asked"],
            created_at=row["created_at"],
        )

    def create_ticket(
        self,
        event_id: int,
        owner: str,
        handle: str,
        next_due: str,
        deadline: str,
        max_attempts: int = 7,
        interval_minutes: int = 0,
        created_at: str | None = None,
    ) -> FollowupTicket | None:
        """Insert a ticket. Returns None if the event already has one."""
        created = created_at or _now_iso()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO followup_tickets
                    (event_id, owner, handle, attempts, interval_minutes, next_due,
                     deadline, max_attempts, active, completed, created_at)
                VALUES (?, ?, ?, 0, ?, ?, ?, ?, 1, 0, ?)
                """,
                (event_id, owner, handle, interval_minutes, next_due, deadline,
                 max_attempts, created),
            )
        if cursor.rowcount == 0:
            return None
        logger.info("Follow-up ticket #%d created for event #%d", cursor.lastrowid, event_id)
        return FollowupTicket(
            id=cursor.lastrowid,
            event_id=event_id,
            owner=owner,
            handle=handle,
            interval_minutes=interval_minutes,
            next_due=next_due,
            deadline=deadline,
            max_attempts=max_attempts,
            created_at=created,
        )

    def get_for_event(self, event_id: int) -> FollowupTicket | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM followup_tickets WHERE event_id = ?", (event_id,),
            ).fetchone()
        return self._row_to_ticket(row) if row else None

    def list_due(self, now: str, limit: int = 50) -> list[FollowupTicket]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM followup_tickets
                WHERE active = 1 AND completed = 0 AND next_due <= ?
                ORDER BY next_due
                LIMIT ?
                """,
                (now, limit),
            ).fetchall()
        return [self._row_to_ticket(r) for r in rows]

    def latest_active_for_owner(self, owner: str) -> FollowupTicket | None:
        """Open ticket the user was asked about most recently; never-asked ones are skipped."""
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM followup_tickets
                WHERE owner = ? AND active = 1 AND completed = 0 AND last_asked IS NOT NULL
                ORDER BY last_asked DESC, id DESC
                LIMIT 1
                """,
                (owner,),
            ).fetchone()
        return self._row_to_ticket(row) if row else None

    def update_progress(
        self,
        ticket_id: int,
        attempts: int,
        next_due: str,
        interval_minutes: int,
        last_asked: str,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE followup_tickets
                SET attempts = ?, next_due = ?, interval_minutes = ?, last_asked = ?
                WHERE id = ?
                """,
                (attempts, next_due, interval_minutes, last_asked, ticket_id),
            )

    def deactivate(self, ticket_id: int, attempts: int | None = None, last_asked: str | None = None) -> None:
        """Expire a ticket (active = 0, not completed)."""
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE followup_tickets
                SET active = 0,
                    attempts = COALESCE(?, attempts),
                    last_asked = COALESCE(?, last_asked)
                WHERE id = ?
                """,
                (attempts, last_asked, ticket_id),
            )
        logger.info("Follow-up ticket #%d expired", ticket_id)

    def complete(self, ticket_id: int) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE followup_tickets SET completed = 1, active = 0 WHERE id = ?",
                (ticket_id,),
            )
        logger.info("Follow-up ticket #%d completed", ticket_id)

    def complete_for_event(self, event_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE followup_tickets SET completed = 1, active = 0
                WHERE event_id = ? AND completed = 0
                """,
                (event_id,),
            )
        return cursor.rowcount > 0


# ---------------------------------------------------------------------------
# Conversation turns
# ---------------------------------------------------------------------------


class ConversationDB(_SQLiteDB):
    """Per-owner dialogue history; the newest turn carries the resolver state."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS conversation_turns (
                    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner              TEXT NOT NULL,
                    user_message       TEXT NOT NULL,
                    assistant_message  TEXT NOT NULL,
                    context_json       TEXT NOT NULL DEFAULT '{}',
                    created_at         TEXT NOT NULL
                )
            """)
        logger.debug("Conversation table initialized at %s", self._db_path)

    def add_turn(
        self, owner: str, user_message: str, assistant_message: str, context: dict | None = None,
    ) -> ConversationTurn:
        now = _now_iso()
        context_json = json.dumps(context or {}, ensure_ascii=False)
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO conversation_turns
                    (owner, user_message, assistant_message, context_json, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (owner, user_message, assistant_message, context_json, now),
            )
        return ConversationTurn(
            id=cursor.lastrowid,
            owner=owner,
            user_message=user_message,
            assistant_message=assistant_message,
            context_json=context_json,
            created_at=now,
        )

    def recent_turns(self, owner: str, limit: int = 10) -> list[ConversationTurn]:
        """Last *limit* turns, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM conversation_turns WHERE owner = ?
                ORDER BY id DESC LIMIT ?
                """,
                (owner, limit),
            ).fetchall()
        turns = [
            ConversationTurn(
                id=r["id"],
                owner=r["owner"],
                user_message=r["user_message"],
                assistant_message=r["assistant_message"],
                context_json=r["context_json"],
                created_at=r["created_at"],
            )
            for r in rows
        ]
        turns.reverse()
        return turns


# ---------------------------------------------------------------------------
# Favorite places
# ---------------------------------------------------------------------------


class PlaceDB(_SQLiteDB):
    """Named addresses ("casa", "clínica") per owner."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS favorite_places (
                    id        INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner     TEXT NOT NULL,
                    nickname  TEXT NOT NULL,
                    address   TEXT NOT NULL,
                    UNIQUE (owner, nickname)
                )
            """)
        logger.debug("Favorite places table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_place(row: sqlite3.Row) -> FavoritePlace:
        return FavoritePlace(
            id=row["id"], owner=row["owner"], nickname=row["nickname"], address=row["address"],
        )

    def upsert_place(self, owner: str, nickname: str, address: str) -> tuple[FavoritePlace, bool]:
        """Insert or update by nickname. Returns (place, created)."""
        existing = self.get_place(owner, nickname)
        with self._connect() as conn:
            if existing is not None:
                conn.execute(
                    "UPDATE favorite_places SET address = ? WHERE id = ?",
                    (address, existing.id),
                )
                place_id = existing.id
            else:
                cursor = conn.execute(
                    "INSERT INTO favorite_places (owner, nickname, address) VALUES (?, ?, ?)",
                    (owner, nickname, address),
                )
                place_id = cursor.lastrowid
        logger.info("Favorite place %s for %s: '%s'", "updated" if existing else "saved", owner, nickname)
        return FavoritePlace(id=place_id, owner=owner, nickname=nickname, address=address), existing is None

    def get_place(self, owner: str, nickname: str) -> FavoritePlace | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM favorite_places WHERE owner = ? AND nickname = ?",
                (owner, nickname),
            ).fetchone()
        return self._row_to_place(row) if row else None

    def list_places(self, owner: str) -> list[FavoritePlace]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM favorite_places WHERE owner = ? ORDER BY nickname", (owner,),
            ).fetchall()
        return [self._row_to_place(r) for r in rows]

    def delete_place(self, place_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM favorite_places WHERE id = ?", (place_id,))
        return cursor.rowcount > 0


# ---------------------------------------------------------------------------
# Snoozes (transient)
# ---------------------------------------------------------------------------


class SnoozeDB(_SQLiteDB):
    """One-shot reminders requested by the user; purged after delivery."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS snoozes (
                    id        INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner     TEXT    NOT NULL,
                    handle    TEXT    NOT NULL,
                    message   TEXT    NOT NULL,
                    send_at   TEXT    NOT NULL,
                    sent      INTEGER NOT NULL DEFAULT 0,
                    event_id  INTEGER
                )
            """)
        logger.debug("Snooze table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_snooze(row: sqlite3.Row) -> Snooze:
        return Snooze(
            id=row["id"],
            owner=row["owner"],
            handle=row["handle"],
            message=row["message"],
            send_at=row["send_at"],
            sent=bool(row["sent"]),
            event_id=row["event_id"],
        )

    def add_snooze(
        self, owner: str, handle: str, message: str, send_at: str, event_id: int | None = None,
    ) -> Snooze:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO snoozes (owner, handle, message, send_at, sent, event_id)
                VALUES (?, ?, ?, ?, 0, ?)
                """,
                (owner, handle, message, send_at, event_id),
            )
        return Snooze(
            id=cursor.lastrowid, owner=owner, handle=handle, message=message,
            send_at=send_at, event_id=event_id,
        )

    def list_due(self, now: str, limit: int = 50) -> list[Snooze]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM snoozes WHERE sent = 0 AND send_at <= ? ORDER BY send_at LIMIT ?",
                (now, limit),
            ).fetchall()
        return [self._row_to_snooze(r) for r in rows]

    def mark_sent(self, snooze_id: int) -> None:
        with self._connect() as conn:
            conn.execute("UPDATE snoozes SET sent = 1 WHERE id = ?", (snooze_id,))

    def purge_sent_before(self, cutoff: str, limit: int = 100) -> int:
        """Delete at most *limit* delivered snoozes scheduled before *cutoff*."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                DELETE FROM snoozes WHERE id IN (
                    SELECT id FROM snoozes WHERE sent = 1 AND send_at < ?
                    ORDER BY send_at LIMIT ?
                )
                """,
                (cutoff, limit),
            )
        if cursor.rowcount:
            logger.info("Purged %d delivered snoozes", cursor.rowcount)
        return cursor.rowcount


# ---------------------------------------------------------------------------
# Aggregate
# ---------------------------------------------------------------------------


class Store:
    """Bundle of every table class over one SQLite file.

    Core modules receive a Store and never open connections themselves.
    """

    def __init__(self, db_path: str | None = None) -> None:
        self.users = UserDB(db_path)
        self.events = EventDB(db_path)
        self.recurrence = RecurrenceDB(db_path)
        self.sent = ReminderLogDB(db_path)
        self.followups = FollowupDB(db_path)
        self.conversations = ConversationDB(db_path)
        self.places = PlaceDB(db_path)
        self.snoozes = SnoozeDB(db_path)
