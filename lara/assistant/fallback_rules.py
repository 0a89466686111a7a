"""Deterministic intent rules used when the NLP service is unavailable.

Rules are plain data: each has a name, a priority and a compiled pattern, and the
classifier walks them in priority order taking the first one whose extractor accepts
the text. Keeping the tables here lets tests pin their order and contents directly.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass

from lara.utils import normalize_utterance

from .intents import Intent, IntentKind

MUSIC_LANGUAGES = frozenset(
    {
        "telugu", "hindi", "tamil", "kannada", "malayalam", "punjabi", "marathi",
        "gujarati", "bengali", "urdu", "english", "spanish", "french", "german",
        "italian", "portuguese", "russian", "japanese", "korean", "chinese", "arabic",
    }
)  # fmt: skip
MUSIC_MOODS = frozenset(
    {
        "relaxing", "energetic", "sad", "happy", "romantic", "party", "workout",
        "sleep", "focus", "study", "chill", "upbeat", "mellow",
    }
)  # fmt: skip
MUSIC_GENRES = frozenset(
    {
        "acoustic", "electronic", "rock", "pop", "jazz", "classical", "blues",
        "country", "reggae", "hip-hop", "rap", "metal", "indie", "folk", "soul",
        "r&b", "rnb", "disco", "funk", "gospel", "ambient", "lo-fi", "lofi",
    }
)  # fmt: skip
MUSIC_VOCABULARY = MUSIC_LANGUAGES | MUSIC_MOODS | MUSIC_GENRES

DEGENERATE_MUSIC_QUERIES = frozenset({"a", "song", "music", "track", "a song", "a music", "a track"})

UNKNOWN_CONFIDENCE = 0.3

# Creation phrases only, so the noun "reminders" stays free for navigation
_REMINDER_TRIGGER = r"(?:\bremind\s+me\b|\b(?:add|set|create)\s+(?:a\s+)?reminder\b)"
_WEEKDAYS = r"(?:monday|tuesday|wednesday|thursday|friday|saturday|sunday)"
_CLOCK = r"\d{1,2}(?::\d{2})?\s*(?:a\.?m\.?|p\.?m\.?)?"
_DAY_WORDS = rf"(?:tomorrow|today|tonight|this\s+evening|this\s+afternoon|{_WEEKDAYS}|next\s+\w+)"
_TRAILING_DAY_RE = re.compile(rf"^(.+?)\s+({_DAY_WORDS})$")

Extractor = Callable[[re.Match[str], str], Intent | None]


@dataclass(frozen=True)
class FallbackRule:
    name: str
    priority: int
    pattern: re.Pattern[str]
    extract: Extractor


@dataclass(frozen=True)
class ReminderPattern:
    name: str
    pattern: re.Pattern[str]
    # Group indexes; multiple time groups are joined with spaces
    description_group: int
    time_groups: tuple[int, ...]


REMINDER_PATTERNS: tuple[ReminderPattern, ...] = (
    ReminderPattern(
        "at_time",
        re.compile(rf"{_REMINDER_TRIGGER}\s+(?:me\s+)?(?:to\s+)?(.+?)\s+at\s+(.+)$"),
        1,
        (2,),
    ),
    ReminderPattern(
        "comma_time",
        re.compile(rf"{_REMINDER_TRIGGER}\s+(?:me\s+)?(?:to\s+)?(.+?),\s*(.+)$"),
        1,
        (2,),
    ),
    ReminderPattern(
        "for_time_to",
        re.compile(
            r"(?:add\s+(?:a\s+)?reminder|create\s+(?:a\s+)?reminder|set\s+(?:a\s+)?reminder)\s+for\s+(.+?)\s+to\s+(.+)$"
        ),
        2,
        (1,),
    ),
    ReminderPattern(
        "weekday_time",
        re.compile(rf"{_REMINDER_TRIGGER}\s+(?:me\s+)?(?:to\s+)?(.+?)\s+({_WEEKDAYS})\s+({_CLOCK})$"),
        1,
        (2, 3),
    ),
    ReminderPattern(
        "trailing_time",
        re.compile(rf"{_REMINDER_TRIGGER}\s+(?:me\s+)?(?:to\s+)?(.+?)\s+({_DAY_WORDS}|{_CLOCK})$"),
        1,
        (2,),
    ),
)

_REMINDER_REST_RE = re.compile(rf"{_REMINDER_TRIGGER}\s+(?:me\s+)?(?:to\s+)?(.+)$")


def normalize_for_rules(text: str | None) -> str:
    """Lower-case, squeeze whitespace and drop trailing sentence punctuation."""
    return normalize_utterance(text).rstrip(".!?").strip()


def is_music_vocabulary(phrase: str) -> bool:
    return any(token in MUSIC_VOCABULARY for token in phrase.split())


def extract_reminder(text: str) -> tuple[str, str]:
    """Split a reminder command into ``(description, time)``.

    The time is empty when nothing time-like was found. A relative day that ends up
    glued to the description ("call my mom tomorrow") moves over to the time.
    """
    for candidate in REMINDER_PATTERNS:
        match = candidate.pattern.search(text)
        if not match:
            continue
        description = match.group(candidate.description_group).strip()
        time_text = " ".join(match.group(index).strip() for index in candidate.time_groups)
        trailing = _TRAILING_DAY_RE.match(description)
        if trailing and candidate.name in {"at_time", "comma_time"}:
            description = trailing.group(1).strip()
            time_text = f"{trailing.group(2)} {time_text}".strip()
        return description, time_text
    match = _REMINDER_REST_RE.search(text)
    if match:
        return match.group(1).strip(), ""
    return "", ""


def _constant(kind: IntentKind, confidence: float) -> Extractor:
    def _extract(_match: re.Match[str], text: str) -> Intent:
        return Intent(kind=kind, confidence=confidence, source_text=text)

    return _extract


def _generic_music(_match: re.Match[str], text: str) -> Intent:
    return Intent(kind=IntentKind.PLAY_MUSIC, entities={"query": None}, confidence=0.85, source_text=text)


def _genre_music(match: re.Match[str], text: str) -> Intent | None:
    descriptor = match.group(1).strip()
    if not descriptor or not is_music_vocabulary(descriptor):
        return None
    query = match.group(0)[len("play") :].strip()
    if query.startswith("some "):
        query = query[len("some ") :]
    return Intent(kind=IntentKind.PLAY_MUSIC, entities={"query": query}, confidence=0.85, source_text=text)


_SPECIFIC_SUFFIX_RE = re.compile(r"\s+(?:song|music|track|songs|by)s?$")


def _specific_music(match: re.Match[str], text: str) -> Intent | None:
    query = _SPECIFIC_SUFFIX_RE.sub("", match.group(1)).strip()
    if len(query) <= 1 or query in DEGENERATE_MUSIC_QUERIES:
        return None
    return Intent(kind=IntentKind.PLAY_MUSIC, entities={"query": query}, confidence=0.8, source_text=text)


_TASK_TITLE_RE = re.compile(r"add\s+(?:a\s+)?task\s+(?:to\s+)?(.+)")


def _task(_match: re.Match[str], text: str) -> Intent:
    title_match = _TASK_TITLE_RE.search(text)
    title = title_match.group(1).strip() if title_match else ""
    return Intent(kind=IntentKind.ADD_TASK, entities={"title": title}, confidence=0.7, source_text=text)


def _reminder(_match: re.Match[str], text: str) -> Intent:
    description, time_text = extract_reminder(text)
    return Intent(
        kind=IntentKind.ADD_REMINDER,
        entities={"description": description, "time": time_text},
        confidence=0.7,
        source_text=text,
    )


def _navigate(match: re.Match[str], text: str) -> Intent | None:
    page = match.group(1).strip()
    if not page:
        return None
    return Intent(kind=IntentKind.NAVIGATE, entities={"page": page}, confidence=0.7, source_text=text)


FALLBACK_RULES: tuple[FallbackRule, ...] = tuple(
    sorted(
        (
            FallbackRule(
                "show_tasks",
                10,
                re.compile(r"show\s+(?:all\s+)?(?:my\s+)?tasks?|open\s+tasks?"),
                _constant(IntentKind.SHOW_TASKS, 0.7),
            ),
            FallbackRule(
                "show_reminders",
                20,
                re.compile(r"show\s+(?:all\s+)?(?:my\s+)?reminders?|open\s+reminders?"),
                _constant(IntentKind.SHOW_REMINDERS, 0.7),
            ),
            FallbackRule(
                "generic_music",
                30,
                re.compile(r"^play\s+(?:a\s+)?(?:song|music|some\s+music|some\s+songs?)$"),
                _generic_music,
            ),
            FallbackRule(
                "genre_music",
                40,
                re.compile(r"^play\s+(?:some\s+)?(.+?)\s+(?:songs?|music)$"),
                _genre_music,
            ),
            FallbackRule(
                "specific_music",
                50,
                re.compile(r"^play\s+(?:me\s+)?(.+)$"),
                _specific_music,
            ),
            FallbackRule("add_task", 60, re.compile(r"add\s+(?:a\s+)?task"), _task),
            FallbackRule("add_reminder", 70, re.compile(_REMINDER_TRIGGER), _reminder),
            FallbackRule(
                "navigate",
                80,
                re.compile(r"(?:go\s+to|open|navigate\s+to)\s+(?:the\s+)?(.+?)(?:\s+page)?$"),
                _navigate,
            ),
            FallbackRule(
                "greeting",
                90,
                re.compile(r"\b(?:hey\s+lara|hello|hi\s+lara|hi\s+there)\b"),
                _constant(IntentKind.GREETING, 0.95),
            ),
        ),
        key=lambda rule: rule.priority,
    )
)


def classify_with_rules(text: str | None) -> Intent:
    """Classify ``text`` with the ordered rules; never raises."""
    normalized = normalize_for_rules(text)
    source = (text or "").strip()
    for rule in FALLBACK_RULES:
        match = rule.pattern.search(normalized)
        if not match:
            continue
        intent = rule.extract(match, normalized)
        if intent is not None:
            return Intent(intent.kind, intent.entities, intent.confidence, source or normalized)
    return Intent(kind=IntentKind.UNKNOWN, confidence=UNKNOWN_CONFIDENCE, source_text=source)
