"""Voice command pipeline: wake word → capture → transcription → intent → action → reply."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from .action_router import ActionResult, ActionRouter
from .audio import MicrophoneError
from .capture import CommandCapture, TranscriptionError, TranscriptionGateway, Utterance
from .classifier import IntentClassifier
from .config import AssistantConfig
from .intents import Fallback, Intent
from .mqtt_publisher import AssistantMqttPublisher
from .wake_detector import WakeWordDetector, WakeWordError

LOGGER = logging.getLogger(__name__)

NOT_HEARD_REPLY = "Sorry, I did not hear that. Please try again."
BUSY_REPLY = "I am still working on your last request."
FAILED_REPLY = "Sorry, something went wrong. Please try again."

Speaker = Callable[[str], Awaitable[None]]
ErrorHandler = Callable[[Exception], None]


@dataclass
class AssistRunTracker:
    source: str
    wake_word: str | None = None
    start: float = field(default_factory=time.monotonic)
    stage_start: float = field(default_factory=time.monotonic)
    current_stage: str | None = None
    stage_durations: dict[str, int] = field(default_factory=dict)

    def begin_stage(self, stage: str) -> None:
        now = time.monotonic()
        if self.current_stage:
            self.stage_durations[self.current_stage] = int((now - self.stage_start) * 1000)
        self.current_stage = stage
        self.stage_start = now

    def finalize(self, status: str) -> dict[str, object]:
        now = time.monotonic()
        if self.current_stage:
            self.stage_durations[self.current_stage] = int((now - self.stage_start) * 1000)
        return {
            "source": self.source,
            "wake_word": self.wake_word,
            "status": status,
            "total_ms": int((now - self.start) * 1000),
            "stages": self.stage_durations,
        }


class VoiceCommandOrchestrator:
    """Drive one request/response cycle per wake word and hand the microphone back afterwards.

    A single ``_busy`` flag serialises wake runs, push-to-talk and text commands; the
    listener is always stopped before recording and restarted once the reply has been
    spoken.
    """

    def __init__(
        self,
        *,
        config: AssistantConfig,
        detector: WakeWordDetector,
        capture: CommandCapture,
        transcriber: TranscriptionGateway,
        classifier: IntentClassifier,
        router: ActionRouter,
        speaker: Speaker | None = None,
        publisher: AssistantMqttPublisher | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.detector = detector
        self.capture = capture
        self.transcriber = transcriber
        self.classifier = classifier
        self.router = router
        self.speaker = speaker
        self.publisher = publisher
        self.logger = logger or LOGGER
        self.finished = asyncio.Event()
        self._enabled = False
        self._busy = False
        self._current_tracker: AssistRunTracker | None = None
        self._error_handler: ErrorHandler | None = None
        self._runs: set[asyncio.Task] = set()

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def current_tracker(self) -> AssistRunTracker | None:
        return self._current_tracker

    def set_error_handler(self, handler: ErrorHandler | None) -> None:
        """Receive terminal listener and microphone failures."""
        self._error_handler = handler

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._enabled:
            return
        self._enabled = True
        self.finished.clear()
        self.detector.set_trigger_callback(self._on_wake)
        self.detector.set_error_callback(self._on_wake_error)
        self.logger.info("[pipeline] Assistant started; listening for %s", ", ".join(self.detector.phrases))
        self._publish_stage("idle")
        await self.detector.start()

    async def stop(self) -> None:
        self._enabled = False
        await self.detector.stop()
        for task in list(self._runs):
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._publish_stage("idle")
        self.finished.set()
        self.logger.info("[pipeline] Assistant stopped")

    async def restart(self) -> None:
        self._enabled = True
        self.finished.clear()
        await self.detector.restart()

    async def aclose(self) -> None:
        await self.stop()
        await self.detector.aclose()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def process_voice_command(self, audio: bytes | Utterance | None = None) -> ActionResult:
        """Push-to-talk: run the pipeline on ``audio`` (or a fresh recording) without a wake word."""
        if self._busy:
            return ActionResult(False, BUSY_REPLY)
        self._busy = True
        tracker = self._begin_run("push_to_talk")
        status = "error"
        try:
            await self.detector.stop()
            if audio is None:
                utterance = await self._record(tracker)
                if utterance is None:
                    result = await self._reply_not_heard()
                    status = "no_audio"
                    return result
            elif isinstance(audio, Utterance):
                utterance = audio
            else:
                utterance = self._wrap_audio(audio)
            result = await self._handle_utterance(utterance, tracker)
            status = "success" if result.success else "failed"
            return result
        except Exception:
            self.logger.exception("[pipeline] Push-to-talk run failed")
            await self._speak(FAILED_REPLY)
            return ActionResult(False, FAILED_REPLY)
        finally:
            self._busy = False
            self._finish_run(status)
            await self._resume_listening()

    async def execute_action(self, intent: Intent) -> ActionResult:
        """Route an already classified intent and speak the reply."""
        if self._busy:
            return ActionResult(False, BUSY_REPLY)
        self._busy = True
        tracker = self._begin_run("direct")
        status = "error"
        try:
            result = await self._execute(intent, tracker)
            status = "success" if result.success else "failed"
            return result
        finally:
            self._busy = False
            self._finish_run(status)

    async def execute_text_command(self, text: str) -> ActionResult:
        """Classify typed or remote text and route it like a spoken command."""
        cleaned = (text or "").strip()
        if not cleaned:
            return ActionResult(False, NOT_HEARD_REPLY)
        if self._busy:
            return ActionResult(False, BUSY_REPLY)
        self._busy = True
        tracker = self._begin_run("text")
        status = "error"
        try:
            tracker.begin_stage("thinking")
            self._publish_stage("thinking", {"source": "text"})
            self._log_transcript(cleaned, "text")
            intent = await self._classify(cleaned)
            result = await self._execute(intent, tracker)
            status = "success" if result.success else "failed"
            return result
        finally:
            self._busy = False
            self._finish_run(status)

    # ------------------------------------------------------------------
    # Wake word callbacks
    # ------------------------------------------------------------------

    def _on_wake(self) -> None:
        if not self._enabled or self._busy:
            self.logger.debug("[pipeline] Ignoring wake word while busy")
            return
        self._busy = True
        task = asyncio.create_task(self._run_wake_cycle())
        self._runs.add(task)
        task.add_done_callback(self._runs.discard)

    def _on_wake_error(self, error: WakeWordError) -> None:
        self.logger.error("[pipeline] Wake word listener failed (%s): %s", error.reason, error)
        if self.publisher:
            self.publisher.publish_error(error.reason, str(error))
        self._publish_stage("error", {"reason": error.reason})
        if self._error_handler:
            self._error_handler(error)

    async def _run_wake_cycle(self) -> None:
        tracker = self._begin_run("wake_word", wake_word=self.detector.session.matched_phrase)
        status = "error"
        try:
            await self.detector.stop()
            tracker.begin_stage("listening")
            self._publish_stage("listening", {"wake_word": tracker.wake_word})
            await self._speak(self.config.greeting_prompt)
            utterance = await self._record(tracker)
            if utterance is None:
                await self._reply_not_heard()
                status = "no_audio"
                return
            result = await self._handle_utterance(utterance, tracker)
            status = "success" if result.success else "failed"
        except Exception:
            self.logger.exception("[pipeline] Voice command run failed")
        finally:
            self._busy = False
            self._finish_run(status)
            if self.config.one_shot:
                self.logger.info("[pipeline] One-shot mode; not resuming wake word listening")
                self._enabled = False
                self.finished.set()
            else:
                await self._resume_listening()

    # ------------------------------------------------------------------
    # Pipeline steps
    # ------------------------------------------------------------------

    async def _record(self, tracker: AssistRunTracker) -> Utterance | None:
        tracker.begin_stage("listening")
        try:
            return await self.capture.record(self.config.capture.record_ms)
        except MicrophoneError as exc:
            self.logger.error("[capture] Microphone unavailable: %s", exc)
            if self.publisher:
                self.publisher.publish_error("microphone", str(exc))
            if self._error_handler:
                self._error_handler(exc)
            return None

    async def _handle_utterance(self, utterance: Utterance, tracker: AssistRunTracker) -> ActionResult:
        tracker.begin_stage("thinking")
        self._publish_stage("thinking", {"wake_word": tracker.wake_word})
        try:
            text = await self.transcriber.transcribe(utterance)
        except TranscriptionError as exc:
            self.logger.warning("[capture] Transcription failed: %s", exc)
            return await self._reply_not_heard()
        self._log_transcript(text, tracker.source)
        intent = await self._classify(text)
        return await self._execute(intent, tracker)

    async def _classify(self, text: str) -> Intent:
        outcome = await self.classifier.classify_outcome(text)
        intent = outcome.intent
        source = "fallback" if isinstance(outcome, Fallback) else "primary"
        self.logger.info(
            "[pipeline] Intent %s (%s, confidence %.2f)", intent.kind.value, source, intent.confidence
        )
        if self.publisher:
            self.publisher.publish_intent(intent.kind.value, intent.confidence, source, dict(intent.entities))
        return intent

    async def _execute(self, intent: Intent, tracker: AssistRunTracker) -> ActionResult:
        result = await self.router.route(intent)
        tracker.begin_stage("speaking")
        self._publish_stage("speaking", {"intent": intent.kind.value})
        if not result.spoken:
            await self._speak(result.message)
        self.logger.info("[pipeline] Response: %s", result.message)
        if self.publisher:
            self.publisher.publish_response(result.message, success=result.success, effects=result.effects)
        return result

    async def _reply_not_heard(self) -> ActionResult:
        result = ActionResult(False, NOT_HEARD_REPLY)
        self._publish_stage("speaking")
        await self._speak(result.message)
        if self.publisher:
            self.publisher.publish_response(result.message, success=False)
        return result

    async def _speak(self, text: str) -> None:
        if not text or self.speaker is None:
            return
        try:
            await self.speaker(text)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("[pipeline] Failed to speak response: %s", exc)

    async def _resume_listening(self) -> None:
        if not self._enabled:
            return
        try:
            await self.detector.restart()
        except RuntimeError as exc:
            self.logger.error("[pipeline] Could not resume wake word listening: %s", exc)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _wrap_audio(self, audio: bytes) -> Utterance:
        mic = self.config.mic
        bytes_per_second = mic.rate * mic.width * mic.channels
        duration_ms = int(len(audio) * 1000 / bytes_per_second) if bytes_per_second else 0
        return Utterance(audio=audio, duration_ms=duration_ms, rate=mic.rate, width=mic.width, channels=mic.channels)

    def _log_transcript(self, text: str, source: str) -> None:
        if self.config.log_transcripts:
            self.logger.info("[pipeline] Transcript [%s]: %s", source, text)
        if self.publisher:
            self.publisher.publish_transcript(text, source)

    def _begin_run(self, source: str, *, wake_word: str | None = None) -> AssistRunTracker:
        tracker = AssistRunTracker(source, wake_word)
        self._current_tracker = tracker
        return tracker

    def _finish_run(self, status: str) -> None:
        tracker = self._current_tracker
        if tracker is None:
            return
        metrics = tracker.finalize(status)
        self.logger.debug("[pipeline] Run finished: %s", metrics)
        if self.publisher:
            self.publisher.publish_metrics(metrics)
        self._publish_stage("idle", {"status": status})
        self._current_tracker = None

    def _publish_stage(self, stage: str, extra: dict | None = None) -> None:
        if self.publisher:
            self.publisher.publish_stage(stage, extra)
