"""Intent model shared by the classifier, router and orchestrator."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType


class IntentKind(Enum):
    ADD_TASK = "add_task"
    SHOW_TASKS = "show_tasks"
    ADD_REMINDER = "add_reminder"
    SHOW_REMINDERS = "show_reminders"
    PLAY_MUSIC = "play_music"
    NAVIGATE = "navigate"
    GREETING = "greeting"
    UNKNOWN = "unknown"


# Both label spellings seen from NLP providers map onto one kind
_LABEL_ALIASES = {
    "add_task": IntentKind.ADD_TASK,
    "task_add": IntentKind.ADD_TASK,
    "tasks_add": IntentKind.ADD_TASK,
    "create_task": IntentKind.ADD_TASK,
    "task_create": IntentKind.ADD_TASK,
    "show_tasks": IntentKind.SHOW_TASKS,
    "tasks_show": IntentKind.SHOW_TASKS,
    "show_task": IntentKind.SHOW_TASKS,
    "open_tasks": IntentKind.SHOW_TASKS,
    "add_reminder": IntentKind.ADD_REMINDER,
    "reminder_add": IntentKind.ADD_REMINDER,
    "reminders_add": IntentKind.ADD_REMINDER,
    "set_reminder": IntentKind.ADD_REMINDER,
    "create_reminder": IntentKind.ADD_REMINDER,
    "reminder_create": IntentKind.ADD_REMINDER,
    "show_reminders": IntentKind.SHOW_REMINDERS,
    "reminders_show": IntentKind.SHOW_REMINDERS,
    "show_reminder": IntentKind.SHOW_REMINDERS,
    "open_reminders": IntentKind.SHOW_REMINDERS,
    "play_music": IntentKind.PLAY_MUSIC,
    "music_play": IntentKind.PLAY_MUSIC,
    "play_song": IntentKind.PLAY_MUSIC,
    "spotify_play": IntentKind.PLAY_MUSIC,
    "navigate": IntentKind.NAVIGATE,
    "navigation": IntentKind.NAVIGATE,
    "open_page": IntentKind.NAVIGATE,
    "go_to": IntentKind.NAVIGATE,
    "greeting": IntentKind.GREETING,
    "general_greeting": IntentKind.GREETING,
    "greet": IntentKind.GREETING,
    "hello": IntentKind.GREETING,
    "unknown": IntentKind.UNKNOWN,
    "general_query": IntentKind.UNKNOWN,
}


def normalize_intent_label(label: object) -> IntentKind | None:
    """Map a provider label such as ``"tasks_show"`` onto :class:`IntentKind`."""
    if not isinstance(label, str):
        return None
    key = label.strip().lower().replace("-", "_").replace(" ", "_").replace(".", "_")
    return _LABEL_ALIASES.get(key)


@dataclass(frozen=True)
class Intent:
    kind: IntentKind
    entities: Mapping[str, str | None] = field(default_factory=dict)
    confidence: float = 0.0
    source_text: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "entities", MappingProxyType(dict(self.entities)))

    def entity(self, name: str) -> str | None:
        value = self.entities.get(name)
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return None


@dataclass(frozen=True)
class Primary:
    """Intent produced by the NLP service."""

    intent: Intent


@dataclass(frozen=True)
class Fallback:
    """Intent produced by the deterministic rules, with the reason the primary path was skipped."""

    intent: Intent
    reason: str = ""


ClassificationOutcome = Primary | Fallback
