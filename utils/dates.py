import re
from datetime import date, datetime, time, timedelta, timezone

HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_iso(value: str) -> datetime:
    """
    ISO date or datetime -> naive UTC datetime. Accepts a trailing "Z".
    Raises ValueError on anything else.
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError("empty date")
    value = value.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def is_date_only(value: str) -> bool:
    return isinstance(value, str) and len(value.strip()) == 10


def parse_range(start_str: str, end_str: str):
    """
    Returns (start, end_exclusive). A date-only end covers that whole day.
    """
    start = parse_iso(start_str)
    end = parse_iso(end_str)
    if is_date_only(end_str):
        end = end + timedelta(days=1)
    return start, end


def parse_hhmm(value: str) -> time:
    if not isinstance(value, str) or not HHMM_RE.match(value.strip()):
        raise ValueError("expected HH:MM")
    hours, minutes = value.strip().split(":")
    return time(int(hours), int(minutes))


def combine(day: date, at: time) -> datetime:
    return datetime.combine(day, at)
