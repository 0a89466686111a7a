"""Natural-language date/time resolution for reminders.

All calculations happen in India Standard Time and timestamps are rendered with an
explicit ``+05:30`` offset, never ``Z``.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone

IST = timezone(timedelta(hours=5, minutes=30), name="IST")

_WEEKDAY_NAMES = {
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
}

_WEEKDAY_PATTERN = re.compile(
    r"\b(monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b",
    re.IGNORECASE,
)

# (phrase, day offset, default hour, default minute); first match wins
_RELATIVE_DAY_RULES: tuple[tuple[str, int, int, int], ...] = (
    ("tomorrow", 1, 9, 0),
    ("tonight", 0, 20, 0),
    ("evening", 0, 19, 0),
    ("afternoon", 0, 15, 0),
    ("today", 0, 9, 0),
)

_WEEKDAY_DEFAULT_TIME = time(9, 0)

_MERIDIEM_TIME_RE = re.compile(
    r"\b(\d{1,2})(?::(\d{2}))?\s*(a\.?\s?m\.?|p\.?\s?m\.?)(?![a-z])",
    re.IGNORECASE,
)
_CLOCK_TIME_RE = re.compile(r"\b(\d{1,2}):(\d{2})\b")
_AT_TIME_RE = re.compile(
    r"\bat\s+(\d{1,2}(?::\d{2})?\s*(?:a\.?\s?m\.?|p\.?\s?m\.?)?)(?![\w:])",
    re.IGNORECASE,
)

_REMINDER_COMMAND_PREFIXES = (
    re.compile(r"^add\s+(?:a\s+)?reminder\s+to\s+", re.IGNORECASE),
    re.compile(r"^remind\s+me\s+to\s+", re.IGNORECASE),
    re.compile(r"^create\s+(?:a\s+)?reminder\s+to\s+", re.IGNORECASE),
    re.compile(r"^set\s+(?:a\s+)?reminder\s+to\s+", re.IGNORECASE),
    re.compile(r"^add\s+(?:a\s+)?reminder\s+", re.IGNORECASE),
    re.compile(r"^remind\s+me\s+", re.IGNORECASE),
    re.compile(r"^create\s+(?:a\s+)?reminder\s+", re.IGNORECASE),
    re.compile(r"^set\s+(?:a\s+)?reminder\s+", re.IGNORECASE),
)

# Longer forms first so "I'm" is not consumed by "I"
_PRONOUN_REWRITES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\bI'm\b", re.IGNORECASE), "you're"),
    (re.compile(r"\bmyself\b", re.IGNORECASE), "yourself"),
    (re.compile(r"\bI\b", re.IGNORECASE), "you"),
    (re.compile(r"\bme\b", re.IGNORECASE), "you"),
    (re.compile(r"\bmy\b", re.IGNORECASE), "your"),
)


def ist_now() -> datetime:
    """Get current datetime in IST."""
    return datetime.now(IST)


def ensure_ist(dt: datetime) -> datetime:
    """Interpret naive datetimes as IST wall time; convert aware ones."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=IST)
    return dt.astimezone(IST)


def format_ist(dt: datetime) -> str:
    """Render ``YYYY-MM-DDTHH:mm:ss+05:30``."""
    local = ensure_ist(dt).replace(microsecond=0)
    return local.strftime("%Y-%m-%dT%H:%M:%S") + "+05:30"


def describe_when(when: datetime, now: datetime | None = None) -> str:
    """Speakable form of an instant relative to ``now``, e.g. "tomorrow at 5:30 pm"."""
    local = ensure_ist(when)
    days = (local.date() - ensure_ist(now or ist_now()).date()).days
    if days == 0:
        day = "today"
    elif days == 1:
        day = "tomorrow"
    else:
        day = f"on {local.strftime('%A')} {local.day} {local.strftime('%B')}"
    hour = local.hour % 12 or 12
    meridiem = "am" if local.hour < 12 else "pm"
    clock = f"{hour}:{local.minute:02d}" if local.minute else str(hour)
    return f"{day} at {clock} {meridiem}"


def parse_time(text: str | None) -> str | None:
    """Extract a clock time from free text as ``HH:MM``.

    Recognises ``H[:MM] am/pm`` and bare 24-hour ``HH:MM``. Returns ``None`` when the
    text carries no time, including bare phrases such as "tomorrow".
    """
    if not text:
        return None
    match = _MERIDIEM_TIME_RE.search(text)
    if match:
        hour = int(match.group(1))
        minute = int(match.group(2) or 0)
        if 1 <= hour <= 12 and minute < 60:
            period = match.group(3).lower().replace(".", "").replace(" ", "")
            if period == "pm" and hour != 12:
                hour += 12
            elif period == "am" and hour == 12:
                hour = 0
            return f"{hour:02d}:{minute:02d}"
    match = _CLOCK_TIME_RE.search(text)
    if match:
        hour = int(match.group(1))
        minute = int(match.group(2))
        if hour < 24 and minute < 60:
            return f"{hour:02d}:{minute:02d}"
    return None


def resolve_weekday(name: str, now: datetime | None = None) -> date:
    """Return the next date falling on ``name``, strictly after today.

    When today already is that weekday the result is one week out.
    """
    key = name.strip().lower()
    if key not in _WEEKDAY_NAMES:
        raise ValueError(f"Unknown weekday: {name!r}")
    today = ensure_ist(now or ist_now()).date()
    days_ahead = (_WEEKDAY_NAMES[key] - today.weekday()) % 7
    if days_ahead == 0:
        days_ahead = 7
    return today + timedelta(days=days_ahead)


def _first_weekday(text: str) -> str | None:
    match = _WEEKDAY_PATTERN.search(text)
    return match.group(1).lower() if match else None


def _first_relative_day(text: str) -> tuple[str, int, int, int] | None:
    lowered = text.lower()
    for phrase, offset, hour, minute in _RELATIVE_DAY_RULES:
        if re.search(rf"\b{phrase}\b", lowered):
            return phrase, offset, hour, minute
    return None


def _hhmm_to_time(value: str) -> time:
    hour, minute = value.split(":", 1)
    return time(int(hour), int(minute))


def _explicit_time(free_text: str, explicit: str | None) -> time | None:
    if explicit:
        stripped = _WEEKDAY_PATTERN.sub(" ", explicit)
        for phrase, *_ in _RELATIVE_DAY_RULES:
            stripped = re.sub(rf"\b{phrase}\b", " ", stripped, flags=re.IGNORECASE)
        parsed = parse_time(stripped)
        if parsed:
            return _hhmm_to_time(parsed)
    match = _AT_TIME_RE.search(free_text)
    if match:
        parsed = parse_time(match.group(1))
        if parsed:
            return _hhmm_to_time(parsed)
    return None


def to_absolute_timestamp(
    free_text: str,
    explicit_time: str | None = None,
    *,
    now: datetime | None = None,
) -> str:
    """Resolve a reminder phrase to an absolute IST timestamp string.

    Precedence: an explicit time (the ``explicit_time`` argument or "at <time>" in the
    text), then a named weekday, then today/tomorrow/tonight, then the bare-phrase
    defaults (tomorrow/weekday/today 09:00, tonight 20:00, evening 19:00, afternoon
    15:00), and finally "now + 1 hour". Date anchors found in ``explicit_time`` win over
    ones found in ``free_text``.
    """
    current = ensure_ist(now or ist_now()).replace(microsecond=0)
    today = current.date()
    clock = _explicit_time(free_text or "", explicit_time)

    target_day: date | None = None
    default_clock: time | None = None
    rolls_over = False
    for source in (explicit_time or "", free_text or ""):
        weekday = _first_weekday(source)
        if weekday is not None:
            target_day = resolve_weekday(weekday, current)
            default_clock = _WEEKDAY_DEFAULT_TIME
            break
        relative = _first_relative_day(source)
        if relative is not None:
            _phrase, offset, hour, minute = relative
            target_day = today + timedelta(days=offset)
            default_clock = time(hour, minute)
            rolls_over = offset == 0
            break

    if target_day is None:
        if clock is None:
            return format_ist(current + timedelta(hours=1))
        target_day = today
        rolls_over = True

    resolved = datetime.combine(target_day, clock or default_clock or _WEEKDAY_DEFAULT_TIME, tzinfo=IST)
    if rolls_over and resolved < current:
        resolved += timedelta(days=1)
    return format_ist(resolved)


def personalize_reminder_text(text: str) -> str:
    """Turn "remind me to call my mom" into "Call your mom"."""
    transformed = text.strip()
    for pattern in _REMINDER_COMMAND_PREFIXES:
        transformed = pattern.sub("", transformed)
    for pattern, replacement in _PRONOUN_REWRITES:
        transformed = pattern.sub(replacement, transformed)
    transformed = transformed.strip()
    if transformed:
        transformed = transformed[0].upper() + transformed[1:]
    return transformed
