import re
from datetime import datetime, time, timedelta, timezone
from typing import Optional

_DAY_START = 9   # 9 AM
_DAY_END = 17    # 5 PM, "end of week"
_FRIDAY = 4

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

WORD_TO_NUMBER = {"one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6}

_WEEKDAY_RE = re.compile(r"(?:next\s+)?(" + "|".join(WEEKDAYS) + r")")
_DAYS_RE = re.compile(r"(?:in\s+)?(\d+)\s*days?\b")
_WEEKS_RE = re.compile(r"(?:in\s+)?(\d+|one|two|three|four|five|six)\s*weeks?\b")
_ISO_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")


def _now() -> datetime:
    """Current local time, timezone-aware. Extracted for test mocking."""
    return datetime.now().astimezone()


def _follows_local_clock(moment: datetime) -> bool:
    """Naive, or the system zone's fixed offset at that instant (what ``_now`` returns)."""
    if moment.tzinfo is None:
        return True
    return isinstance(moment.tzinfo, timezone) and moment.utcoffset() == moment.astimezone().utcoffset()


def _at(now: datetime, days: int, hour: int) -> datetime:
    """``hour`` o'clock, ``days`` calendar days after ``now``.

    The UTC offset is resolved for the target date, so a daylight-saving
    change in between keeps the wall-clock hour.
    """
    wall = datetime.combine(now.date() + timedelta(days=days), time(hour))
    if _follows_local_clock(now):
        return wall.astimezone()
    return wall.replace(tzinfo=now.tzinfo)


def to_crm_timestamp(moment: datetime) -> str:
    """Format as UTC ISO-8601 with nine fractional digits.

    The CRM write API rejects the usual millisecond form, so milliseconds are
    padded with six zeros: 2025-01-02T15:00:00.000000000Z
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    utc = moment.astimezone(timezone.utc)
    millis = utc.microsecond // 1000
    return f"{utc:%Y-%m-%dT%H:%M:%S}.{millis:03d}000000Z"


def _parse_iso(text: str) -> Optional[datetime]:
    candidate = text.strip()
    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        try:
            parsed = datetime.fromisoformat(candidate[:10])
        except ValueError:
            return None
    # Date-only and naive values are read as UTC.
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_deadline_datetime(text, now: Optional[datetime] = None) -> Optional[datetime]:
    """Map a natural-language deadline to an aware datetime.

    Recognised: tomorrow, next week / a week / 1 week, [next] <weekday>,
    [in] N days, [in] N weeks (digits or one..six), end of week / eow, and
    literal dates starting YYYY-MM-DD. Returns None for anything else.
    """
    if text is None:
        return None
    raw = str(text).strip()
    lower = raw.lower()
    if not lower or lower in ("undefined", "null", "none"):
        return None

    now = now or _now()

    if "tomorrow" in lower:
        return _at(now, 1, _DAY_START)

    if "next week" in lower or lower in ("1 week", "a week"):
        return _at(now, 7, _DAY_START)

    match = _WEEKDAY_RE.search(lower)
    if match:
        target = WEEKDAYS.index(match.group(1))
        days_until = target - now.weekday()
        if days_until <= 0:
            days_until += 7
        return _at(now, days_until, _DAY_START)

    match = _DAYS_RE.search(lower)
    if match:
        return _at(now, int(match.group(1)), _DAY_START)

    match = _WEEKS_RE.search(lower)
    if match:
        value = match.group(1)
        weeks = WORD_TO_NUMBER.get(value) or int(value)
        return _at(now, 7 * weeks, _DAY_START)

    if "end of week" in lower or lower == "eow":
        days_until_friday = (_FRIDAY - now.weekday()) % 7 or 7
        return _at(now, days_until_friday, _DAY_END)

    if _ISO_RE.match(raw):
        return _parse_iso(raw)

    return None


def parse_deadline(text, now: Optional[datetime] = None) -> Optional[str]:
    """Parse a deadline phrase into the CRM timestamp format, or None."""
    moment = parse_deadline_datetime(text, now)
    if moment is None:
        return None
    return to_crm_timestamp(moment)
