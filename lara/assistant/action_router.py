"""Turn classified intents into side effects and a reply."""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime

from lara.datetime_utils import describe_when, personalize_reminder_text, to_absolute_timestamp

from .collaborators import LaraApiClient, Navigator
from .fallback_rules import DEGENERATE_MUSIC_QUERIES
from .intents import Intent, IntentKind
from .redirect import RedirectEngine, sanitize_music_query

LOGGER = logging.getLogger(__name__)

GREETING_REPLY = "Hello! How can I help you?"
NOT_UNDERSTOOD_REPLY = "I did not understand that. Please try again."
CLARIFY_REPLY = (
    'I can help you create a task or reminder. Please say "add task" or "add reminder" followed by your description.'
)
DEFAULT_MUSIC_QUERY = "popular songs"

# Longest pattern first so "at home" wins over "home"
PAGE_ROUTES: tuple[tuple[str, str], ...] = tuple(
    sorted(
        (
            ("home", "/dashboard"),
            ("dashboard", "/dashboard"),
            ("at home", "/at-home"),
            ("at-home", "/at-home"),
            ("professional", "/professional"),
            ("work", "/professional"),
            ("tasks", "/tasks"),
            ("task", "/tasks"),
            ("reminders", "/reminders"),
            ("reminder", "/reminders"),
            ("personal growth", "/personal-growth"),
            ("personal-growth", "/personal-growth"),
            ("growth", "/personal-growth"),
            ("healthcare", "/healthcare"),
            ("health", "/healthcare"),
            ("automotive", "/automotive"),
            ("car", "/automotive"),
            ("vehicle", "/automotive"),
            ("insights", "/insights"),
            ("profile", "/settings/profile"),
            ("settings", "/settings"),
        ),
        key=lambda item: len(item[0]),
        reverse=True,
    )
)
ADD_TASK_PATH = "/tasks/add"
ADD_REMINDER_PATH = "/reminders/add"

_DESCRIPTION_VERBS = (
    "attend", "call", "buy", "send", "check", "review", "finish", "complete", "do", "make",
    "get", "take", "read", "write", "prepare", "schedule", "book", "plan", "organize", "clean",
    "fix", "update", "create", "delete", "edit", "submit", "approve", "reject", "confirm",
    "cancel", "reschedule",
)  # fmt: skip
_DESCRIPTION_RE = re.compile(rf"^(?:to\s+|(?:{'|'.join(_DESCRIPTION_VERBS)}))")
_PAGE_SUFFIX_RE = re.compile(r"\s*page\.?$", re.IGNORECASE)

Speaker = Callable[[str], Awaitable[None]]


@dataclass(frozen=True)
class ActionResult:
    success: bool
    message: str
    effects: tuple[str, ...] = ()
    # True when the message was already spoken by the router
    spoken: bool = False


def resolve_page(text: str | None) -> str | None:
    """Map free text onto a whitelisted route path."""
    if not text:
        return None
    lowered = text.lower().strip()
    for pattern, path in PAGE_ROUTES:
        if lowered == pattern:
            return path
    for pattern, path in PAGE_ROUTES:
        if pattern in lowered:
            return path
    return None


def looks_like_description(text: str | None) -> bool:
    return bool(text) and bool(_DESCRIPTION_RE.match(text.lower().strip()))


class ActionRouter:
    """Dispatch intents to collaborators; every path ends in an :class:`ActionResult`."""

    def __init__(
        self,
        *,
        api: LaraApiClient | None = None,
        redirect: RedirectEngine | None = None,
        navigator: Navigator | None = None,
        speak: Speaker | None = None,
        user_id: str | None = None,
        now: Callable[[], datetime] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.api = api
        self.redirect = redirect
        self.navigator = navigator or Navigator()
        self.speak = speak
        self.user_id = user_id
        self._now = now
        self.logger = logger or LOGGER

    async def route(self, intent: Intent) -> ActionResult:
        self.logger.debug("[router] Routing %s entities=%s", intent.kind.value, dict(intent.entities))
        handlers = {
            IntentKind.ADD_TASK: self._add_task,
            IntentKind.SHOW_TASKS: self._show_tasks,
            IntentKind.ADD_REMINDER: self._add_reminder,
            IntentKind.SHOW_REMINDERS: self._show_reminders,
            IntentKind.PLAY_MUSIC: self._play_music,
            IntentKind.NAVIGATE: self._navigate_page,
            IntentKind.GREETING: self._greeting,
        }
        handler = handlers.get(intent.kind, self._unknown)
        try:
            return await handler(intent)
        except Exception:  # noqa: BLE001
            self.logger.exception("[router] Unhandled error routing %s", intent.kind.value)
            return ActionResult(False, "Sorry, I encountered an error processing your request")

    # ------------------------------------------------------------------
    # Tasks and reminders
    # ------------------------------------------------------------------

    async def _add_task(self, intent: Intent) -> ActionResult:
        title = intent.entity("title")
        if title and self.api is not None:
            try:
                await self.api.create_task(title)
            except Exception as exc:  # noqa: BLE001
                self.logger.warning("[router] Task creation failed: %s", exc)
                return ActionResult(False, f"Failed to add task: {title}")
            self.logger.info("[router] Task added: %s", title)
            return ActionResult(True, f"Task added: {title}", ("task_created",))
        effects = await self._navigate(ADD_TASK_PATH)
        return ActionResult(True, "Opening add task page", effects)

    async def _show_tasks(self, _intent: Intent) -> ActionResult:
        return await self._announce_then_navigate("Opening tasks page", "/tasks")

    async def _show_reminders(self, _intent: Intent) -> ActionResult:
        return await self._announce_then_navigate("Opening reminders page", "/reminders")

    async def _add_reminder(self, intent: Intent) -> ActionResult:
        description = intent.entity("description")
        time_text = intent.entity("time")
        if description and self.api is not None:
            now = self._now() if self._now else None
            try:
                timestamp = to_absolute_timestamp(intent.source_text or description, time_text, now=now)
                await self.api.create_reminder(personalize_reminder_text(description), timestamp)
            except Exception as exc:  # noqa: BLE001
                self.logger.warning("[router] Reminder creation failed: %s", exc)
                return ActionResult(False, f"Failed to set reminder: {description}")
            self.logger.info("[router] Reminder set for %s: %s", timestamp, description)
            message = f"Reminder set: {description}"
            if time_text:
                message = f"{message} {describe_when(datetime.fromisoformat(timestamp), now)}"
            return ActionResult(True, message, ("reminder_created",))
        effects = await self._navigate(ADD_REMINDER_PATH)
        return ActionResult(True, "Opening add reminder page", effects)

    # ------------------------------------------------------------------
    # Music
    # ------------------------------------------------------------------

    async def _play_music(self, intent: Intent) -> ActionResult:
        if self.redirect is None:
            return ActionResult(False, "Music playback is not available")
        query = sanitize_music_query(intent.entity("query"))
        if len(query) <= 1 or query.lower() in DEGENERATE_MUSIC_QUERIES:
            return await self._open_search(DEFAULT_MUSIC_QUERY, f"Playing {DEFAULT_MUSIC_QUERY}")

        track = None
        if self.api is not None:
            try:
                tracks = await self.api.search_tracks(query)
            except Exception as exc:  # noqa: BLE001
                self.logger.warning("[router] Track search failed for %r: %s", query, exc)
                tracks = []
            track = tracks[0] if tracks else None
        if track is None:
            return await self._open_search(query, f"Searching Spotify for {query}")

        attempt = await self.redirect.open_track(track.id, self._log_fallback)
        effects = ["track_search", "redirect_app" if attempt.app_opened else "redirect_web"]
        user_id = self.user_id or (self.api.user_id if self.api is not None else None)
        if not attempt.app_opened and user_id:
            self.redirect.schedule_auto_play(track.id, user_id, attempt.timeout_ms)
            effects.append("auto_play_scheduled")
        return ActionResult(True, f"Now playing {track.label}", tuple(effects))

    async def _open_search(self, query: str, message: str) -> ActionResult:
        try:
            attempt = await self.redirect.open_search(query, self._log_fallback)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("[router] Spotify search redirect failed: %s", exc)
            return ActionResult(False, f"Could not open Spotify for {query}")
        return ActionResult(True, message, ("redirect_app" if attempt.app_opened else "redirect_web",))

    def _log_fallback(self, reason: str) -> None:
        self.logger.info("[router] Web player fallback: %s", reason)

    # ------------------------------------------------------------------
    # Navigation and conversation
    # ------------------------------------------------------------------

    async def _navigate_page(self, intent: Intent) -> ActionResult:
        page = intent.entity("page")
        if page:
            page = _PAGE_SUFFIX_RE.sub("", page).rstrip(".").strip()
        path = resolve_page(page) or resolve_page(intent.source_text)
        if path is None:
            self.logger.info("[router] Could not determine page from %r", page or intent.source_text)
            return ActionResult(False, "Could not determine which page to open")
        label = page or path.rsplit("/", 1)[-1].replace("-", " ")
        effects = await self._navigate(path)
        return ActionResult(True, f"Opening {label} page", effects)

    async def _greeting(self, _intent: Intent) -> ActionResult:
        return ActionResult(True, GREETING_REPLY)

    async def _unknown(self, intent: Intent) -> ActionResult:
        if looks_like_description(intent.source_text):
            return ActionResult(False, CLARIFY_REPLY)
        return ActionResult(False, NOT_UNDERSTOOD_REPLY)

    async def _announce_then_navigate(self, message: str, path: str) -> ActionResult:
        spoken = False
        if self.speak is not None:
            try:
                await self.speak(message)
                spoken = True
            except Exception as exc:  # noqa: BLE001
                self.logger.warning("[router] Acknowledgement failed: %s", exc)
        effects = await self._navigate(path)
        return ActionResult(True, message, effects, spoken=spoken)

    async def _navigate(self, path: str) -> tuple[str, ...]:
        try:
            navigated = await self.navigator.navigate(path)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("[router] Navigation to %s failed: %s", path, exc)
            return ()
        return (f"navigate:{path}",) if navigated else ()
