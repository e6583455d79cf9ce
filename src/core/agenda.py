"""Agenda views — period windows and the text listing of a user's events.

Used by the "o que tenho hoje?" query, the daily morning push and the
weekly summary.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from src.core.timeutils import WEEKDAY_SHORT, local_date, start_of_today, weekday_sun0
from src.data.models import KIND_EMOJI, Event, EventStatus

PERIOD_DAYS = {"hoje": 1, "amanha": 1, "semana": 7, "todos": 30}
WEEKLY_SUMMARY_DAYS = 7
PERIOD_TITLES = {
    "hoje": "hoje",
    "amanha": "amanhã",
    "semana": "próximos 7 dias",
    "todos": "próximos 30 dias",
}


def period_bounds(period: str, now: datetime) -> tuple[datetime, datetime]:
    """[start, end] for an agenda period; unknown periods read as "hoje"."""
    today = start_of_today(now)
    start = today + timedelta(days=1) if period == "amanha" else today
    days = PERIOD_DAYS.get(period, 1)
    return start, start + timedelta(days=days) - timedelta(seconds=1)


def format_event_line(event: Event) -> str:
    mark = "✅" if event.status == EventStatus.DONE else KIND_EMOJI.get(event.kind, "📌")
    when = "Dia todo" if event.is_all_day else event.start.strftime("%H:%M")
    return f"{mark} {when} {event.title}"


def _day_sections(events: list[Event]) -> list[str]:
    lines: list[str] = []
    current_day = None
    for event in events:
        day = local_date(event.start)
        if day != current_day:
            current_day = day
            lines.append("")
            lines.append(f"*{WEEKDAY_SHORT[weekday_sun0(day)]} {day.day:02d}/{day.month:02d}*")
        lines.append(format_event_line(event))
    return lines


def format_agenda(events: list[Event], period: str) -> str:
    """Events grouped by day, with pending/done counters."""
    title = PERIOD_TITLES.get(period, PERIOD_TITLES["hoje"])
    if not events:
        return f"📅 Nada marcado para {title}."

    lines = [f"📅 *Agenda — {title}*", *_day_sections(events)]
    done = sum(1 for e in events if e.status == EventStatus.DONE)
    pending = len(events) - done
    lines.append("")
    lines.append(f"⏳ {pending} pendente(s) · ✅ {done} feito(s)")
    return "\n".join(lines)


def format_morning_agenda(events: list[Event]) -> str:
    if not events:
        return "📅 Bom dia! Nada marcado para hoje. Aproveite! ☀️"
    body = "\n".join(format_event_line(e) for e in events)
    return f"📅 Bom dia! Hoje:\n\n{body}"


def weekly_bounds(now: datetime) -> tuple[datetime, datetime]:
    """The seven days starting tomorrow."""
    start = start_of_today(now) + timedelta(days=1)
    return start, start + timedelta(days=WEEKLY_SUMMARY_DAYS) - timedelta(seconds=1)


def format_weekly_summary(events: list[Event]) -> str:
    if not events:
        return "📊 Sua semana está livre! Sem compromissos agendados."
    lines = ["📊 *Sua semana:*", *_day_sections(events)]
    lines.append("")
    lines.append(f"📌 {len(events)} compromisso(s)")
    return "\n".join(lines)
