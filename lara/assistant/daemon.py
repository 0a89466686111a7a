"""Process entry point for the Lara voice assistant."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
from collections.abc import Awaitable
from dataclasses import replace

from .action_router import ActionRouter
from .audio import MicrophoneStream, PcmPlayer
from .capture import CommandCapture, TranscriptionGateway
from .classifier import IntentClassifier, build_nlp_provider
from .collaborators import LaraApiClient, Navigator
from .config import AssistantConfig
from .intents import Intent, normalize_intent_label
from .mqtt import AssistantMqtt
from .mqtt_publisher import AssistantMqttPublisher
from .orchestrator import VoiceCommandOrchestrator
from .recognizer import WyomingStreamingRecognizer
from .redirect import RedirectEngine
from .wake_detector import WakeWordDetector
from .wyoming import WyomingSpeaker

LOGGER = logging.getLogger("lara-assistant")


def parse_command_payload(payload: str) -> str | None:
    """Accept either plain text or ``{"text": "..."}`` on the command topic."""
    data = payload.strip()
    if not data:
        return None
    if data.startswith("{"):
        try:
            parsed = json.loads(data)
        except json.JSONDecodeError:
            return data
        if isinstance(parsed, dict):
            text = parsed.get("text") or parsed.get("command")
            return text.strip() if isinstance(text, str) and text.strip() else None
    return data


def parse_intent_payload(payload: str) -> Intent | None:
    """Decode ``{"intent": "navigate", "entities": {"page": "insights"}}`` into an :class:`Intent`."""
    try:
        parsed = json.loads(payload)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    kind = normalize_intent_label(parsed.get("intent"))
    if kind is None:
        return None
    raw_entities = parsed.get("entities")
    entities = {
        key: value
        for key, value in (raw_entities.items() if isinstance(raw_entities, dict) else ())
        if isinstance(value, str) or value is None
    }
    return Intent(kind=kind, entities=entities, confidence=1.0, source_text=str(parsed.get("text") or ""))


class LaraAssistant:
    """Wire configuration into the voice command pipeline and run it."""

    def __init__(self, config: AssistantConfig) -> None:
        self.config = config
        self.mic = MicrophoneStream(config.mic.command, config.mic.bytes_per_chunk, LOGGER)
        self.player = PcmPlayer(config.audio_player, logger=LOGGER)
        self.mqtt = AssistantMqtt(config.mqtt, client_id=f"lara-assistant-{config.hostname}", logger=LOGGER)
        self.publisher = AssistantMqttPublisher(self.mqtt, config, logger=LOGGER)
        self.speaker = WyomingSpeaker(config.tts_endpoint, self.player, voice_name=config.tts_voice, logger=LOGGER)

        self.api = LaraApiClient(config.api) if config.api.base_url else None
        if self.api is None:
            LOGGER.warning("LARA_API_BASE_URL not set; tasks, reminders and track search are disabled")
        self.redirect = RedirectEngine(
            config.redirect,
            auto_player=self.api.auto_play if self.api else None,
            logger=LOGGER,
        )
        self.router = ActionRouter(
            api=self.api,
            redirect=self.redirect,
            navigator=Navigator(callback=self.publisher.publish_navigation),
            speak=self.speaker,
            user_id=config.api.user_id,
            logger=LOGGER,
        )
        self.classifier = IntentClassifier(
            build_nlp_provider(config.nlp, logger=LOGGER),
            timeout=config.nlp.timeout,
            logger=LOGGER,
        )
        recognizer = WyomingStreamingRecognizer(
            mic=self.mic,
            mic_config=config.mic,
            endpoint=config.stt_endpoint,
            segment_ms=config.wake.segment_ms,
            rms_floor=config.wake.rms_floor,
            language=config.language,
        )
        self.detector = WakeWordDetector(
            recognizer,
            config.wake.phrases,
            no_speech_restart_ms=config.wake.no_speech_restart_ms,
            end_restart_ms=config.wake.end_restart_ms,
            settle_ms=config.wake.settle_ms,
        )
        self.orchestrator = VoiceCommandOrchestrator(
            config=config,
            detector=self.detector,
            capture=CommandCapture(self.mic, config.mic, LOGGER),
            transcriber=TranscriptionGateway(
                config.capture,
                mic_config=config.mic,
                endpoint=config.stt_endpoint,
                logger=LOGGER,
            ),
            classifier=self.classifier,
            router=self.router,
            speaker=self.speaker,
            publisher=self.publisher,
            logger=LOGGER,
        )
        self.fatal_error: Exception | None = None
        self._stop_event: asyncio.Event | None = None
        self._command_tasks: set[asyncio.Task] = set()

    async def run(self, stop_event: asyncio.Event) -> None:
        self._stop_event = stop_event
        loop = asyncio.get_running_loop()
        self.mqtt.connect()
        self._subscribe_command_topics(loop)
        self.orchestrator.set_error_handler(self._on_fatal_error)
        await self.orchestrator.start()
        LOGGER.info("Lara assistant ready (wake phrases: %s)", ", ".join(self.config.wake.phrases))
        await self.orchestrator.finished.wait()
        stop_event.set()

    async def shutdown(self) -> None:
        for task in list(self._command_tasks):
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self.orchestrator.aclose()
        await self.redirect.aclose()
        await self.classifier.close()
        if self.api:
            await self.api.close()
        await self.mic.stop()
        await self.player.stop()
        self.mqtt.disconnect()

    def _subscribe_command_topics(self, loop: asyncio.AbstractEventLoop) -> None:
        try:
            self.mqtt.subscribe(self.config.command_topic, self._on_command_payload, loop=loop)
            self.mqtt.subscribe(self.config.ptt_topic, self._on_ptt_payload, loop=loop)
        except RuntimeError:
            LOGGER.debug("MQTT client not ready for command subscriptions")

    def _on_command_payload(self, payload: str) -> None:
        intent = parse_intent_payload(payload)
        if intent is not None:
            LOGGER.info("[mqtt] Intent command received: %s", intent.kind.value)
            self._spawn(self.orchestrator.execute_action(intent))
            return
        text = parse_command_payload(payload)
        if not text:
            return
        LOGGER.info("[mqtt] Text command received: %s", text)
        self._spawn(self.orchestrator.execute_text_command(text))

    def _on_ptt_payload(self, payload: str) -> None:
        if payload.strip().upper() not in {"ON", "1", "PRESS", "START"}:
            return
        LOGGER.info("[mqtt] Push-to-talk requested")
        self._spawn(self.orchestrator.process_voice_command())

    def _spawn(self, coro: Awaitable[object]) -> None:
        task = asyncio.ensure_future(coro)
        self._command_tasks.add(task)
        task.add_done_callback(self._command_tasks.discard)

    def _on_fatal_error(self, error: Exception) -> None:
        LOGGER.error("Assistant needs attention: %s", error)
        self.fatal_error = error
        if self._stop_event is not None:
            self._stop_event.set()


async def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Lara voice command assistant")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--one-shot", action="store_true", help="Exit after the first voice command")
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))

    config = AssistantConfig.from_env()
    if args.one_shot and not config.one_shot:
        config = replace(config, one_shot=True)
    assistant = LaraAssistant(config)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _handle_signal(signum: int) -> None:
        LOGGER.info("Received signal %s, shutting down", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    run_task = asyncio.create_task(assistant.run(stop_event))
    run_task.add_done_callback(lambda _task: stop_event.set())
    await stop_event.wait()
    await assistant.shutdown()
    run_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await run_task
    return 1 if assistant.fatal_error else 0


def run() -> int:
    try:
        return asyncio.run(main())
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(run())
