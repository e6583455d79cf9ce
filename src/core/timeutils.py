"""Fixed-offset (Brasília, UTC-3) date helpers — pure business logic.

Every instant this project persists carries an explicit ``-03:00`` offset.
There is no DST handling: Brazil abolished it and the offset is fixed.

No I/O: this module only transforms data.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

BRT = timezone(timedelta(hours=-3), "BRT")

WEEKDAY_SHORT = ["Dom", "Seg", "Ter", "Qua", "Qui", "Sex", "Sáb"]
WEEKDAY_LONG = ["domingo", "segunda", "terça", "quarta", "quinta", "sexta", "sábado"]


def now_brt() -> datetime:
    return datetime.now(BRT)


def to_brt(dt: datetime) -> datetime:
    """Return *dt* expressed in Brasília time. Naive datetimes are taken as local."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=BRT)
    return dt.astimezone(BRT)


def to_iso(dt: datetime) -> str:
    """Serialize an instant as ``YYYY-MM-DDTHH:MM:SS-03:00``."""
    return to_brt(dt).replace(microsecond=0).isoformat()


def parse_timestamp(raw: str) -> datetime:
    """Parse a stored timestamp string into an aware Brasília datetime.

    Raises ValueError on malformed input.
    """
    if not raw:
        raise ValueError("Empty timestamp")
    return to_brt(datetime.fromisoformat(raw))


def parse_hhmm(raw: str) -> tuple[int, int]:
    """Extract (hour, minute) from ``HH:MM`` or ``HH``.

    Raises ValueError on malformed input.
    """
    text = (raw or "").strip().lower().replace("h", ":")
    if not text:
        raise ValueError("Empty time string")
    parts = text.split(":")
    try:
        hour = int(parts[0])
        minute = int(parts[1]) if len(parts) > 1 and parts[1] else 0
    except ValueError as exc:
        raise ValueError(f"Malformed time string: {raw!r}") from exc
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Hour/minute out of range: {raw!r}")
    return hour, minute


def compose_timestamp(day: date, hhmm: str) -> str:
    """Build the persisted timestamp for *day* at local time *hhmm*."""
    hour, minute = parse_hhmm(hhmm)
    return to_iso(datetime.combine(day, time(hour, minute), tzinfo=BRT))


def start_of_day(dt: datetime) -> datetime:
    local = to_brt(dt)
    return local.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_today(now: datetime | None = None) -> datetime:
    return start_of_day(now or now_brt())


def local_date(dt: datetime) -> date:
    return to_brt(dt).date()


def weekday_sun0(day: date) -> int:
    """Weekday number with Sunday = 0 … Saturday = 6."""
    return (day.weekday() + 1) % 7


def format_date_br(dt: datetime) -> str:
    """``Seg 03/02 às 14:00``."""
    local = to_brt(dt)
    return (
        f"{WEEKDAY_SHORT[weekday_sun0(local.date())]} "
        f"{local.day:02d}/{local.month:02d} às {local.hour:02d}:{local.minute:02d}"
    )


def format_interval(minutes: int) -> str:
    """Human-readable offset used when telling the user when we'll ask again."""
    if minutes < 60:
        return f"em {minutes} minutos"
    if minutes < 1440:
        return f"daqui {minutes // 60}h"
    return "amanhã de manhã (9h)"


def format_remaining(minutes: int) -> str:
    """``1h05`` / ``2h`` / ``40min``."""
    hours, mins = divmod(max(minutes, 0), 60)
    if hours:
        return f"{hours}h{mins:02d}" if mins else f"{hours}h"
    return f"{mins}min"
