"""Recurrence engine — expands a recurrence rule into concrete occurrence dates.

The pure part (duration parsing, the step function, expansion) does no I/O.
generate_occurrences / create_recurring persist through the Store and are
best-effort: the first failed insert stops generation and whatever was
created so far is returned.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from dataclasses import dataclass, field
from datetime import date

from dateutil.relativedelta import relativedelta

from src.core.timeutils import (
    compose_timestamp,
    format_date_br,
    local_date,
    now_brt,
    parse_hhmm,
    weekday_sun0,
)
from src.data.models import Event, EventKind, EventStatus, Frequency, RecurrenceRule

logger = logging.getLogger(__name__)

RECURRING_MARKER = " 🔁"
MAX_OCCURRENCES = 100
DEFAULT_WINDOW_MONTHS = 3

_COUNT_RE = re.compile(r"(\d+)\s*vez(?:es)?")
_PERIOD_RE = re.compile(r"(\d+)\s*(m[eê]s(?:es)?|semanas?|dias?)")
_MONTHS = {
    "janeiro": 1, "fevereiro": 2, "março": 3, "marco": 3, "abril": 4,
    "maio": 5, "junho": 6, "julho": 7, "agosto": 8, "setembro": 9,
    "outubro": 10, "novembro": 11, "dezembro": 12,
}
_MONTH_RE = re.compile(r"\b(" + "|".join(_MONTHS) + r")\b")


@dataclass
class DurationBounds:
    """Normalised termination condition of a recurrence."""

    end_date: date | None = None
    occurrence_count: int | None = None


@dataclass
class RecurringResult:
    template: Event
    rule: RecurrenceRule
    occurrences: list[Event] = field(default_factory=list)
    reply: str = ""


# ---------------------------------------------------------------------------
# Duration phrases
# ---------------------------------------------------------------------------


def is_duration_phrase(text: str | None) -> bool:
    """True if *text* contains something parse_duration understands."""
    lowered = (text or "").lower()
    return bool(
        _COUNT_RE.search(lowered)
        or _PERIOD_RE.search(lowered)
        or _MONTH_RE.search(lowered)
        or "fim do ano" in lowered
    )


def parse_duration(text: str | None, today: date | None = None) -> DurationBounds:
    """Map "10 vezes" / "3 meses" / "até dezembro" to end date and/or count.

    A count is clamped to 1..MAX_OCCURRENCES. A named month snaps to the
    last day of that month (this year if not yet over, else next year).
    Nothing recognisable defaults to DEFAULT_WINDOW_MONTHS from today.
    """
    today = today or local_date(now_brt())
    lowered = (text or "").lower()
    bounds = DurationBounds()

    count_match = _COUNT_RE.search(lowered)
    if count_match:
        bounds.occurrence_count = min(max(int(count_match.group(1)), 1), MAX_OCCURRENCES)

    period_match = _PERIOD_RE.search(lowered)
    if period_match:
        quantity = int(period_match.group(1))
        unit = period_match.group(2)
        if unit.startswith("m"):
            bounds.end_date = today + relativedelta(months=quantity)
        elif unit.startswith("semana"):
            bounds.end_date = today + relativedelta(weeks=quantity)
        else:
            bounds.end_date = today + relativedelta(days=quantity)

    if "fim do ano" in lowered:
        bounds.end_date = date(today.year, 12, 31)
    else:
        month_match = _MONTH_RE.search(lowered)
        if month_match:
            month = _MONTHS[month_match.group(1)]
            year = today.year if month >= today.month else today.year + 1
            bounds.end_date = date(year, month, 1) + relativedelta(day=31)

    if bounds.end_date is None and bounds.occurrence_count is None:
        bounds.end_date = today + relativedelta(months=DEFAULT_WINDOW_MONTHS)
    return bounds


# ---------------------------------------------------------------------------
# Step function + expansion
# ---------------------------------------------------------------------------


def next_date(current: date, rule: RecurrenceRule) -> date:
    """The occurrence after *current* under *rule*.

    Weekly: the smallest target weekday strictly after the current one; the
    wrap to next week advances 7*interval - current + target days, while a
    step inside the same week ignores interval.
    """
    interval = max(rule.interval or 1, 1)

    if rule.frequency == Frequency.DAILY:
        return current + relativedelta(days=interval)

    if rule.frequency == Frequency.WEEKLY:
        targets = sorted(set(rule.weekdays or [])) or [weekday_sun0(current)]
        today_wd = weekday_sun0(current)
        later = [wd for wd in targets if wd > today_wd]
        if later:
            return current + relativedelta(days=later[0] - today_wd)
        return current + relativedelta(days=7 * interval - today_wd + targets[0])

    # Monthly: relativedelta clamps day 31 to the month's last day
    if rule.month_day:
        return current + relativedelta(months=interval, day=rule.month_day)
    return current + relativedelta(months=interval)


def expand(
    rule: RecurrenceRule,
    template_date: date,
    today: date | None = None,
) -> list[date]:
    """Ordered occurrence dates after *template_date* (which is excluded).

    Stops after occurrence_count - 1 dates or past end_date. With neither
    set, end_date defaults to DEFAULT_WINDOW_MONTHS after *today*.
    """
    end = date.fromisoformat(rule.end_date) if rule.end_date else None
    if end is None and rule.occurrence_count is None:
        today = today or local_date(now_brt())
        end = today + relativedelta(months=DEFAULT_WINDOW_MONTHS)

    count = rule.occurrence_count if rule.occurrence_count is not None else MAX_OCCURRENCES
    limit = min(count, MAX_OCCURRENCES) - 1

    dates: list[date] = []
    current = next_date(template_date, rule)
    while len(dates) < limit and (end is None or current <= end):
        dates.append(current)
        current = next_date(current, rule)
    return dates


def first_occurrence(
    frequency: Frequency,
    today: date,
    weekdays: list[int] | None = None,
    month_day: int | None = None,
) -> date:
    """Date of the template event for a brand-new recurrence.

    Weekly: the next target weekday strictly after today (wrapping one week).
    Monthly: this month's month_day unless already passed, else next month's.
    """
    if frequency == Frequency.WEEKLY and weekdays:
        targets = sorted(set(weekdays))
        today_wd = weekday_sun0(today)
        later = [wd for wd in targets if wd > today_wd]
        if later:
            return today + relativedelta(days=later[0] - today_wd)
        return today + relativedelta(days=7 - today_wd + targets[0])

    if frequency == Frequency.MONTHLY and month_day:
        if today.day > month_day:
            return today + relativedelta(months=1, day=month_day)
        return today + relativedelta(day=month_day)

    return today


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def generate_occurrences(store, template: Event, rule: RecurrenceRule, today: date | None = None) -> list[Event]:
    """Insert one event + occurrence link per expanded date.

    Dates already linked to the rule are skipped. The first failure aborts
    the remaining dates; events created before it are kept and returned.
    """
    start = template.start
    hhmm = f"{start.hour:02d}:{start.minute:02d}"
    title = template.title.replace(RECURRING_MARKER, "").strip()

    created: list[Event] = []
    for day in expand(rule, start.date(), today=today):
        day_iso = day.isoformat()
        try:
            if store.recurrence.has_occurrence(rule.id, day_iso):
                continue
            event = store.events.add_event(
                owner=template.owner,
                kind=template.kind,
                title=title,
                timestamp=compose_timestamp(day, hhmm),
                person=template.person,
                address=template.address,
                checklist=template.checklist,
                is_recurring=True,
                recurrence_ref=rule.id,
                travel_origin=template.travel_origin,
            )
            store.recurrence.add_occurrence(rule.id, event.id, day_iso)
        except (sqlite3.Error, ValueError) as exc:
            logger.error("Occurrence %s of rule #%d failed, stopping: %s", day_iso, rule.id, exc)
            break
        created.append(event)

    logger.info("Rule #%d: %d occurrences generated", rule.id, len(created))
    return created


def create_recurring(
    store,
    owner: str,
    title: str,
    hhmm: str,
    frequency: Frequency,
    kind: EventKind = EventKind.TASK,
    interval: int = 1,
    weekdays: list[int] | None = None,
    month_day: int | None = None,
    duration: str | None = None,
    person: str | None = None,
    address: str | None = None,
    today: date | None = None,
) -> RecurringResult:
    """Create the template event, its rule and the generated occurrences.

    Raises ValueError on a malformed *hhmm* before anything is written.
    Storage errors on the template or the rule propagate.
    """
    parse_hhmm(hhmm)
    today = today or local_date(now_brt())
    bounds = parse_duration(duration, today)
    first = first_occurrence(frequency, today, weekdays, month_day)

    template = store.events.add_event(
        owner=owner,
        kind=kind,
        title=f"{title}{RECURRING_MARKER}",
        timestamp=compose_timestamp(first, hhmm),
        person=person,
        address=address,
        is_recurring=True,
    )
    rule = store.recurrence.add_rule(
        owner=owner,
        origin_event_id=template.id,
        frequency=frequency,
        start_date=first.isoformat(),
        interval=max(interval or 1, 1),
        weekdays=weekdays or None,
        month_day=month_day,
        end_date=bounds.end_date.isoformat() if bounds.end_date else None,
        occurrence_count=bounds.occurrence_count,
    )
    store.events.update_fields(template.id, recurrence_ref=rule.id)
    template.recurrence_ref = rule.id

    occurrences = generate_occurrences(store, template, rule, today=today)

    lines = [
        f"✅ *{title}* agendado!{RECURRING_MARKER}",
        "",
        f"📅 {len(occurrences) + 1} eventos criados",
        "",
        "Próximos:",
    ]
    lines += [f"• {format_date_br(evt.start)}" for evt in occurrences[:3]]
    if len(occurrences) > 3:
        lines.append(f"• ... e mais {len(occurrences) - 3} eventos")

    return RecurringResult(
        template=template, rule=rule, occurrences=occurrences, reply="\n".join(lines),
    )


def exclude_occurrence(store, rule_id: int, occurrence_date: str) -> bool:
    """Skip one date of a rule: flag its link and cancel the linked event.

    The rule stays active, and the flagged date is never generated again.
    Returns False when the rule has no occurrence on that date.
    """
    if not store.recurrence.exclude_occurrence(rule_id, occurrence_date):
        return False
    for occurrence in store.recurrence.list_occurrences(rule_id):
        if occurrence.occurrence_date == occurrence_date:
            store.events.set_status(occurrence.event_id, EventStatus.CANCELED)
    logger.info("Rule #%d: occurrence %s excluded", rule_id, occurrence_date)
    return True
