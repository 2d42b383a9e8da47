from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    # Naive UTC, matching how DateTime columns are stored
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip())


def slot_start_utc(appointment_date, time_slot, tz_name: str = "UTC"):
    """
    Resolve a booking's start instant as naive UTC.

    time_slot is either a full ISO timestamp ("2026-01-20T10:00:00+03:00") or a
    wall-clock time ("10:00") on appointment_date. Naive values are read in
    tz_name. Returns None when the slot cannot be parsed.
    """
    if not time_slot:
        return None
    raw = str(time_slot).strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"

    try:
        if "T" in raw or " " in raw:
            start = datetime.fromisoformat(raw)
        else:
            start = datetime.combine(parse_date(appointment_date), time.fromisoformat(raw))
    except (TypeError, ValueError):
        return None

    if start.tzinfo is None:
        start = start.replace(tzinfo=ZoneInfo(tz_name))
    return start.astimezone(timezone.utc).replace(tzinfo=None)
