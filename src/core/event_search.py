"""Event search — exact-then-fuzzy title lookup over a user's events.

Used by the edit, cancel and mark-status flows. Stage 1 is a
case-insensitive substring match; stage 2 keeps events whose title
contains every query word longer than two characters.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from src.core.timeutils import format_date_br, now_brt, start_of_today, to_iso
from src.data.db import EventDB
from src.data.models import KIND_EMOJI, Event, EventStatus

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 10
STATUS_SEARCH_LIMIT = 5
STATUS_LOOKBACK_DAYS = 7

_ACTIVE = (EventStatus.PENDING,)
_NOT_CANCELED = (EventStatus.PENDING, EventStatus.DONE)


@dataclass
class SearchResult:
    events: list[Event] = field(default_factory=list)
    was_fuzzy: bool = False


def tokenize(query: str) -> list[str]:
    """Lower-cased whitespace tokens longer than two characters."""
    return [word for word in query.lower().split() if len(word) > 2]


def _title_has_all(event: Event, tokens: list[str]) -> bool:
    title = event.title.lower()
    return all(token in title for token in tokens)


def _search(
    event_db: EventDB,
    owner: str,
    query: str,
    start: datetime,
    end: datetime,
    statuses: tuple[EventStatus, ...],
    descending: bool,
    limit: int,
) -> SearchResult:
    query = query.strip()
    window = dict(
        start=to_iso(start), end=to_iso(end), owner=owner,
        statuses=statuses, descending=descending,
    )

    exact = event_db.list_in_range(title_contains=query, limit=limit, **window)
    if exact:
        logger.debug("Search '%s': %d exact hits", query, len(exact))
        return SearchResult(events=exact, was_fuzzy=False)

    tokens = tokenize(query)
    if not tokens:
        return SearchResult(events=[], was_fuzzy=False)

    candidates = event_db.list_in_range(**window)
    matches = [e for e in candidates if _title_has_all(e, tokens)]
    logger.debug("Search '%s': %d fuzzy hits on %s", query, len(matches), tokens)
    return SearchResult(events=matches[:limit], was_fuzzy=True)


def find_events(
    event_db: EventDB,
    owner: str,
    query: str,
    horizon_days: int = 30,
    now: datetime | None = None,
) -> SearchResult:
    """Pending events from today 00:00 to *horizon_days* ahead, oldest first."""
    today = start_of_today(now or now_brt())
    return _search(
        event_db, owner, query,
        start=today,
        end=today + timedelta(days=horizon_days),
        statuses=_ACTIVE,
        descending=False,
        limit=SEARCH_LIMIT,
    )


def find_recent_events(
    event_db: EventDB,
    owner: str,
    query: str,
    now: datetime | None = None,
) -> SearchResult:
    """Lookup for status marking: last week through end of tomorrow, newest first.

    Done events stay searchable so they can be re-marked; canceled ones don't.
    """
    now = now or now_brt()
    today = start_of_today(now)
    return _search(
        event_db, owner, query,
        start=today - timedelta(days=STATUS_LOOKBACK_DAYS),
        end=today + timedelta(days=2) - timedelta(seconds=1),
        statuses=_NOT_CANCELED,
        descending=True,
        limit=STATUS_SEARCH_LIMIT,
    )


def list_period(
    event_db: EventDB,
    owner: str,
    start: datetime,
    end: datetime,
    include_done: bool = True,
) -> list[Event]:
    """All events of an owner in [start, end], canceled excluded."""
    return event_db.list_in_range(
        to_iso(start), to_iso(end), owner=owner,
        statuses=_NOT_CANCELED if include_done else _ACTIVE,
    )


def format_event_menu(events: list[Event], max_items: int = 5) -> str:
    """Numbered list used when several events match.

    1. 📅 *Consulta dentista*
       Seg 03/02 às 14:00
    """
    lines = []
    for i, event in enumerate(events[:max_items], start=1):
        emoji = KIND_EMOJI.get(event.kind, "📌")
        lines.append(f"{i}. {emoji} *{event.title}*\n   {format_date_br(event.start)}")
    return "\n\n".join(lines)
