"""Wake word detection session management."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import re
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from lara.utils import collapse_whitespace

from .recognizer import ABORTED, AUDIO_CAPTURE, NETWORK, NO_SPEECH, NOT_ALLOWED, SERVICE_NOT_ALLOWED

if TYPE_CHECKING:
    from .recognizer import StreamingRecognizer

LOGGER = logging.getLogger("lara-assistant.wake")

_PUNCTUATION_RE = re.compile(r"[.,!?;:\"']")

TERMINAL_ERROR_MESSAGES = {
    AUDIO_CAPTURE: "No microphone found. Ensure it is connected.",
    NETWORK: "Network error. Please check your connection.",
    NOT_ALLOWED: "Microphone permission denied.",
    SERVICE_NOT_ALLOWED: "Speech recognition service not allowed.",
}

TriggerCallback = Callable[[], Awaitable[None] | None]
ErrorCallback = Callable[["WakeWordError"], Awaitable[None] | None]


class WakeState(Enum):
    IDLE = "idle"
    LISTENING = "listening"
    TRIGGERED = "triggered"
    STOPPED = "stopped"


class WakeWordError(RuntimeError):
    """Terminal listener failure that needs user attention."""

    def __init__(self, reason: str, message: str | None = None) -> None:
        super().__init__(message or TERMINAL_ERROR_MESSAGES.get(reason, f"Speech recognition error: {reason}"))
        self.reason = reason


@dataclass
class WakeWordSession:
    """Listening state plus the guard flags that drive restarts."""

    state: WakeState = WakeState.IDLE
    running: bool = False
    restart_pending: bool = False
    manually_stopped: bool = False
    triggered: bool = False
    matched_phrase: str | None = None
    error: str | None = None

    @property
    def active(self) -> bool:
        return self.running and not self.manually_stopped and self.state is WakeState.LISTENING


def match_wake_phrase(text: str | None, phrases: Iterable[str]) -> str | None:
    """Return the first configured phrase contained in ``text``."""
    if not text:
        return None
    cleaned = collapse_whitespace(_PUNCTUATION_RE.sub(" ", text.lower()))
    for phrase in phrases:
        candidate = collapse_whitespace(phrase.lower())
        if candidate and re.search(rf"\b{re.escape(candidate)}\b", cleaned):
            return phrase
    return None


class WakeWordDetector:
    """Continuous wake word listener over a :class:`StreamingRecognizer`."""

    def __init__(
        self,
        recognizer: StreamingRecognizer,
        phrases: Iterable[str],
        *,
        no_speech_restart_ms: int = 500,
        end_restart_ms: int = 500,
        settle_ms: int = 500,
        logger: logging.Logger | None = None,
    ) -> None:
        self.recognizer = recognizer
        self.phrases = tuple(phrases)
        self.no_speech_restart_ms = no_speech_restart_ms
        self.end_restart_ms = end_restart_ms
        self.settle_ms = settle_ms
        self.logger = logger or LOGGER
        self._session = WakeWordSession()
        self._restart_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task] = set()
        self._on_triggered: TriggerCallback | None = None
        self._on_error: ErrorCallback | None = None
        recognizer.on_final_segment(self._handle_segment)
        recognizer.on_error(self._handle_error)
        recognizer.on_end(self._handle_end)

    @property
    def session(self) -> WakeWordSession:
        return self._session

    def set_trigger_callback(self, callback: TriggerCallback | None) -> None:
        self._on_triggered = callback

    def set_error_callback(self, callback: ErrorCallback | None) -> None:
        self._on_error = callback

    async def start(self) -> None:
        session = self._session
        if session.running:
            return
        if session.state in (WakeState.TRIGGERED, WakeState.STOPPED):
            session = WakeWordSession()
            self._session = session
        session.manually_stopped = False
        session.running = True
        session.state = WakeState.LISTENING
        self.logger.debug("[wake] Listening for %s", ", ".join(self.phrases))
        await self._start_engine(session)

    async def stop(self) -> None:
        session = self._session
        session.manually_stopped = True
        session.running = False
        if session.state is not WakeState.TRIGGERED:
            session.state = WakeState.STOPPED
        self._cancel_restart()
        await self.recognizer.stop()

    async def restart(self) -> None:
        session = self._session
        self._cancel_restart()
        session.running = False
        session.manually_stopped = False
        await self.recognizer.stop()
        await asyncio.sleep(self.settle_ms / 1000)
        if session is self._session and session.state is not WakeState.TRIGGERED:
            session.state = WakeState.STOPPED
        await self.start()

    async def _start_engine(self, session: WakeWordSession) -> None:
        try:
            await self.recognizer.start()
        except RuntimeError as exc:
            if self.recognizer.is_running:
                self.logger.debug("[wake] Recognizer already running")
                return
            self._fail(session, SERVICE_NOT_ALLOWED, f"Failed to start wake word listener: {exc}")

    def _handle_segment(self, text: str) -> None:
        session = self._session
        if session.triggered or session.state is not WakeState.LISTENING:
            return
        phrase = match_wake_phrase(text, self.phrases)
        if phrase is None:
            self.logger.debug("[wake] Ignoring speech without wake phrase: %s", text)
            return
        session.triggered = True
        session.matched_phrase = phrase
        session.running = False
        session.state = WakeState.TRIGGERED
        self._cancel_restart()
        self.logger.info("[wake] Wake phrase detected: %s", phrase)
        self._spawn(self.recognizer.stop())
        if self._on_triggered:
            result = self._on_triggered()
            if inspect.isawaitable(result):
                self._spawn(result)

    def _handle_error(self, code: str) -> None:
        session = self._session
        if code == ABORTED:
            self.logger.debug("[wake] Recognition aborted")
            return
        if code == NO_SPEECH:
            if session.active:
                self._schedule_restart(session, self.no_speech_restart_ms)
            return
        self._fail(session, code)

    def _handle_end(self) -> None:
        session = self._session
        if session.active:
            self._schedule_restart(session, self.end_restart_ms)

    def _fail(self, session: WakeWordSession, code: str, message: str | None = None) -> None:
        session.running = False
        session.error = code
        if session.state is not WakeState.TRIGGERED:
            session.state = WakeState.STOPPED
        self._cancel_restart()
        error = WakeWordError(code, message)
        self.logger.warning("[wake] Wake word listener stopped: %s", error)
        if self._on_error:
            result = self._on_error(error)
            if inspect.isawaitable(result):
                self._spawn(result)

    def _schedule_restart(self, session: WakeWordSession, delay_ms: int) -> None:
        if session.restart_pending:
            return
        session.restart_pending = True
        self._restart_task = asyncio.create_task(self._delayed_restart(session, delay_ms))

    async def _delayed_restart(self, session: WakeWordSession, delay_ms: int) -> None:
        try:
            await asyncio.sleep(delay_ms / 1000)
        finally:
            session.restart_pending = False
        if session is not self._session or not session.active or self.recognizer.is_running:
            return
        await self._start_engine(session)

    def _cancel_restart(self) -> None:
        task = self._restart_task
        self._restart_task = None
        self._session.restart_pending = False
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _spawn(self, awaitable: Awaitable[None]) -> None:
        task = asyncio.ensure_future(awaitable)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def aclose(self) -> None:
        await self.stop()
        for task in list(self._background):
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
