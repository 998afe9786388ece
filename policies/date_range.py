from datetime import date, datetime, time, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo


MAX_RANGE_DAYS = 90


class DateRangeError(ValueError):
    """Raised when a requested date range is missing, inverted or too wide."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


def validate_date_range(
    start: Optional[date],
    end: Optional[date],
    max_days: int = MAX_RANGE_DAYS,
) -> Tuple[date, date]:
    if not start or not end:
        raise DateRangeError("missing_date_range", "Please select both start and end dates")

    if end < start:
        raise DateRangeError("inverted_date_range", "End date cannot be before start date")

    if (end - start).days > max_days:
        raise DateRangeError("date_range_too_wide", f"Date range cannot exceed {max_days} days")

    return start, end


def iso_utc(dt: datetime) -> str:
    """ISO-8601 with millisecond precision and a Z suffix, as scanners store it."""
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def day_bounds(start: date, end: date, tz_name: str = "UTC") -> Tuple[str, str]:
    """
    Timestamps covering [start 00:00:00.000, end 23:59:59.999] in the
    dashboard timezone, expressed as UTC strings comparable to `timestamp`.
    """
    tz = ZoneInfo(tz_name)
    lower = datetime.combine(start, time.min, tzinfo=tz)
    upper = datetime.combine(end, time(23, 59, 59, 999000), tzinfo=tz)
    return iso_utc(lower), iso_utc(upper)


def ymd(d: date) -> str:
    return d.strftime("%Y%m%d")


def parse_ts(ts: Optional[str]) -> Optional[datetime]:
    """Safely parse ISO timestamps from Firestore"""
    if not ts or not isinstance(ts, str):
        return None
    ts = ts.replace("Z", "+00:00")
    try:
        return datetime.fromisoformat(ts)
    except ValueError:
        return None
