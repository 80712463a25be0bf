from datetime import datetime, date, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def date_key(d: date) -> str:
    """Return the UTC calendar day as YYYY-MM-DD."""
    return f"{d.year:04d}-{d.month:02d}-{d.day:02d}"


def start_of_day(d: date) -> datetime:
    """Return midnight UTC of the given calendar day."""
    return datetime(d.year, d.month, d.day, tzinfo=timezone.utc)


def parse_calendar_date(value: str) -> date:
    """Parse 'YYYY-MM-DD' (or an ISO timestamp, keeping only its date part)."""
    raw = (value or "").strip().split("T")[0]
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise ValueError(f"Invalid date: {value!r}")


def _time_component(parts: list[str], index: int) -> int:
    if index >= len(parts):
        return 0
    try:
        return int(parts[index].strip())
    except ValueError:
        return 0


def parse_time_of_day(value: str | None) -> tuple[int, int]:
    """Split an 'HH:MM' string into (hour, minute).

    Missing or unparseable components become 0, so '7' is 07:00 and 'abc' is
    midnight.
    """
    parts = (value or "").split(":")
    return _time_component(parts, 0), _time_component(parts, 1)


def compute_event_instant(entry_date: date, time_of_day: str | None, local_offset_minutes: float) -> datetime:
    """Return the UTC instant of a local wall-clock time on the entry's day.

    The entry date is a UTC-normalized calendar day; `time_of_day` is read in the
    local zone described by `local_offset_minutes` east of UTC.
    """
    hours, minutes = parse_time_of_day(time_of_day)
    # Out-of-range components roll over like a calendar would (e.g. 24:00 -> next day).
    wall_clock = start_of_day(entry_date) + timedelta(hours=hours, minutes=minutes)
    return wall_clock - timedelta(minutes=local_offset_minutes)


def is_within_lookahead_window(instant: datetime, lookahead_days: int, now: datetime | None = None) -> bool:
    """True when `instant` lies in [start of today UTC, start of today + lookahead_days]."""
    current = now or utcnow()
    window_start = start_of_day(current.astimezone(timezone.utc).date())
    window_end = window_start + timedelta(days=lookahead_days)
    return window_start <= instant <= window_end
