"""Tests for the end-to-end voice command pipeline."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from unittest.mock import AsyncMock, Mock

import httpx
import pytest
from lara.assistant.action_router import ActionRouter
from lara.assistant.audio import MicrophoneError
from lara.assistant.capture import CommandCapture, TranscriptionError, TranscriptionGateway, Utterance
from lara.assistant.classifier import IntentClassifier, OpenAIChatProvider
from lara.assistant.collaborators import LaraApiClient, Navigator
from lara.assistant.intents import Intent, IntentKind
from lara.assistant.mqtt_publisher import AssistantMqttPublisher
from lara.assistant.orchestrator import (
    BUSY_REPLY,
    FAILED_REPLY,
    NOT_HEARD_REPLY,
    AssistRunTracker,
    VoiceCommandOrchestrator,
)
from lara.assistant.redirect import FallbackWebOpened, Platform, RedirectAttempt, RedirectEngine
from lara.assistant.wake_detector import WakeState, WakeWordDetector

pytestmark = pytest.mark.anyio


def _web_attempt(uri: str) -> RedirectAttempt:
    attempt = RedirectAttempt(uri, "https://open.spotify.com/x", Platform.LINUX, 50)
    attempt.settle(FallbackWebOpened(attempt.web_url, "Could not launch Spotify URI on Linux"))
    return attempt


@dataclass
class Harness:
    orchestrator: VoiceCommandOrchestrator
    detector: WakeWordDetector
    capture: Mock
    transcriber: Mock
    speaker: AsyncMock
    publisher: Mock
    api: Mock
    redirect: Mock
    navigate: Mock

    def spoken(self) -> list[str]:
        return [call.args[0] for call in self.speaker.await_args_list]

    async def drain(self) -> None:
        while self.orchestrator._runs:
            await asyncio.gather(*list(self.orchestrator._runs))


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def make_harness(assistant_config, recognizer, fixed_now, mock_logger):
    def _factory(transcript: str = "show my tasks", *, classifier=None, config=None) -> Harness:
        config = config or assistant_config
        api = Mock(spec=LaraApiClient)
        api.user_id = "user-123"
        api.create_task = AsyncMock(return_value={"id": "t1"})
        api.create_reminder = AsyncMock(return_value={"id": "r1"})
        api.search_tracks = AsyncMock(return_value=[])
        redirect = Mock(spec=RedirectEngine)
        redirect.open_search = AsyncMock(side_effect=lambda query, _cb=None: _web_attempt(f"spotify:search:{query}"))
        redirect.open_track = AsyncMock(side_effect=lambda track, _cb=None: _web_attempt(f"spotify:track:{track}"))
        navigate = Mock(return_value=None)
        speaker = AsyncMock()
        publisher = Mock(spec=AssistantMqttPublisher)

        capture = Mock(spec=CommandCapture)
        capture.record = AsyncMock(
            return_value=Utterance(audio=b"\x00" * 3200, duration_ms=100, rate=16000, width=2, channels=1)
        )
        transcriber = Mock(spec=TranscriptionGateway)
        transcriber.transcribe = AsyncMock(return_value=transcript)

        detector = WakeWordDetector(recognizer, config.wake.phrases, settle_ms=0, logger=mock_logger)
        classifier = classifier or IntentClassifier(None, logger=mock_logger)
        router = ActionRouter(
            api=api,
            redirect=redirect,
            navigator=Navigator(callback=navigate),
            speak=speaker,
            user_id="user-123",
            now=lambda: fixed_now,
            logger=mock_logger,
        )
        orchestrator = VoiceCommandOrchestrator(
            config=config,
            detector=detector,
            capture=capture,
            transcriber=transcriber,
            classifier=classifier,
            router=router,
            speaker=speaker,
            publisher=publisher,
            logger=mock_logger,
        )
        return Harness(orchestrator, detector, capture, transcriber, speaker, publisher, api, redirect, navigate)

    return _factory


@pytest.fixture
def offline_classifier(nlp_config, mock_logger):
    def _refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("network unreachable", request=request)

    provider = OpenAIChatProvider(nlp_config, transport=httpx.MockTransport(_refuse))
    return IntentClassifier(provider, timeout=1.0, logger=mock_logger)


# ============================================================================
# Run tracker
# ============================================================================


class TestAssistRunTracker:
    def test_stage_durations(self):
        tracker = AssistRunTracker("wake_word", wake_word="hey lara")
        tracker.begin_stage("listening")
        tracker.begin_stage("thinking")

        metrics = tracker.finalize("success")

        assert metrics["source"] == "wake_word"
        assert metrics["wake_word"] == "hey lara"
        assert metrics["status"] == "success"
        assert set(metrics["stages"]) == {"listening", "thinking"}
        assert metrics["total_ms"] >= 0


# ============================================================================
# End-to-end commands
# ============================================================================


class TestEndToEnd:
    async def test_reminder_with_relative_day_and_time(self, make_harness):
        harness = make_harness("Remind me to call my mom tomorrow at 5:30 pm")

        result = await harness.orchestrator.process_voice_command(b"\x00" * 3200)

        harness.api.create_reminder.assert_awaited_once_with("Call your mom", "2025-01-16T17:30:00+05:30")
        assert result.success
        assert harness.spoken() == ["Reminder set: call my mom tomorrow at 5:30 pm"]

    async def test_generic_music_with_network_down(self, make_harness, offline_classifier):
        harness = make_harness("play a song", classifier=offline_classifier)
        try:
            result = await harness.orchestrator.process_voice_command(b"\x00" * 3200)
        finally:
            await offline_classifier.close()

        assert result.message == "Playing popular songs"
        assert harness.redirect.open_search.call_args[0][0] == "popular songs"
        assert harness.spoken() == ["Playing popular songs"]
        intent_call = harness.publisher.publish_intent.call_args
        assert intent_call.args[0] == "play_music"
        assert intent_call.args[2] == "fallback"

    async def test_show_tasks_speaks_once_then_navigates(self, make_harness):
        harness = make_harness("show my tasks")

        result = await harness.orchestrator.process_voice_command(b"\x00" * 3200)

        assert result.spoken
        assert harness.spoken() == ["Opening tasks page"]
        harness.navigate.assert_called_once_with("/tasks")
        harness.publisher.publish_response.assert_called_once_with(
            "Opening tasks page", success=True, effects=("navigate:/tasks",)
        )


# ============================================================================
# Wake word cycle
# ============================================================================


class TestWakeCycle:
    async def test_wake_word_runs_pipeline_and_resumes(self, make_harness, recognizer, assistant_config):
        harness = make_harness("add task buy milk")
        await harness.orchestrator.start()
        assert recognizer.start_calls == 1

        recognizer.say("hey lara")
        await asyncio.sleep(0)
        await harness.drain()

        harness.capture.record.assert_awaited_once_with(assistant_config.capture.record_ms)
        harness.api.create_task.assert_awaited_once_with("buy milk")
        assert harness.spoken() == [assistant_config.greeting_prompt, "Task added: buy milk"]
        assert recognizer.start_calls == 2
        assert harness.detector.session.state is WakeState.LISTENING
        metrics = harness.publisher.publish_metrics.call_args[0][0]
        assert metrics["wake_word"] == "hey lara"
        assert metrics["status"] == "success"
        await harness.orchestrator.aclose()

    async def test_busy_rejects_push_to_talk(self, make_harness, recognizer):
        harness = make_harness("show my tasks")
        release = asyncio.Event()
        utterance = Utterance(audio=b"\x00" * 3200, duration_ms=100, rate=16000, width=2, channels=1)

        async def _slow_record(_duration):
            await release.wait()
            return utterance

        harness.capture.record.side_effect = _slow_record
        await harness.orchestrator.start()
        recognizer.say("hey lara")
        await asyncio.sleep(0.01)

        assert harness.orchestrator.busy
        result = await harness.orchestrator.process_voice_command(b"\x00")
        assert result.message == BUSY_REPLY

        release.set()
        await harness.drain()
        assert not harness.orchestrator.busy
        await harness.orchestrator.aclose()

    async def test_one_shot_finishes_after_first_command(self, make_harness, recognizer, assistant_config):
        harness = make_harness("hello", config=replace(assistant_config, one_shot=True))
        await harness.orchestrator.start()

        recognizer.say("hey lara")
        await asyncio.sleep(0)
        await harness.drain()

        assert harness.orchestrator.finished.is_set()
        assert recognizer.start_calls == 1
        await harness.orchestrator.aclose()

    async def test_terminal_wake_error_reaches_handler(self, make_harness, recognizer):
        harness = make_harness()
        handler = Mock()
        harness.orchestrator.set_error_handler(handler)
        await harness.orchestrator.start()

        recognizer.error("audio-capture")

        handler.assert_called_once()
        harness.publisher.publish_error.assert_called_once_with(
            "audio-capture", "No microphone found. Ensure it is connected."
        )
        await harness.orchestrator.aclose()

    async def test_stop_sets_finished(self, make_harness, recognizer):
        harness = make_harness()
        await harness.orchestrator.start()

        await harness.orchestrator.stop()

        assert harness.orchestrator.finished.is_set()
        assert harness.detector.session.manually_stopped
        assert not recognizer.running


# ============================================================================
# Failure paths and other entry points
# ============================================================================


class TestFailurePaths:
    async def test_transcription_failure_asks_again(self, make_harness):
        harness = make_harness()
        harness.transcriber.transcribe.side_effect = TranscriptionError("Speech-to-text returned an empty transcript")

        result = await harness.orchestrator.process_voice_command(b"\x00" * 3200)

        assert result.success is False
        assert result.message == NOT_HEARD_REPLY
        assert harness.spoken() == [NOT_HEARD_REPLY]

    async def test_microphone_failure_reports_error(self, make_harness):
        harness = make_harness()
        handler = Mock()
        harness.orchestrator.set_error_handler(handler)
        harness.capture.record.side_effect = MicrophoneError("Unable to open microphone")

        result = await harness.orchestrator.process_voice_command()

        assert result.message == NOT_HEARD_REPLY
        handler.assert_called_once()
        harness.publisher.publish_error.assert_called_once_with("microphone", "Unable to open microphone")

    async def test_speaker_failure_does_not_break_reply(self, make_harness):
        harness = make_harness("hello")
        harness.speaker.side_effect = OSError("aplay missing")

        result = await harness.orchestrator.process_voice_command(b"\x00" * 3200)

        assert result.message == "Hello! How can I help you?"

    async def test_unexpected_speaker_error_is_contained(self, make_harness):
        harness = make_harness("hello")
        harness.speaker.side_effect = EOFError("tts connection closed")

        result = await harness.orchestrator.process_voice_command(b"\x00" * 3200)

        assert result.message == "Hello! How can I help you?"

    async def test_unexpected_failure_is_answered(self, make_harness):
        harness = make_harness("hello")
        harness.transcriber.transcribe.side_effect = ValueError("bad frame")

        result = await harness.orchestrator.process_voice_command(b"\x00" * 3200)

        assert result.success is False
        assert result.message == FAILED_REPLY
        assert harness.spoken() == [FAILED_REPLY]

        harness.transcriber.transcribe.side_effect = None
        second = await harness.orchestrator.process_voice_command(b"\x00" * 3200)
        assert second.message == "Hello! How can I help you?"

    async def test_raw_audio_is_wrapped(self, make_harness):
        harness = make_harness("hello")

        await harness.orchestrator.process_voice_command(b"\x00" * 32000)

        utterance = harness.transcriber.transcribe.call_args[0][0]
        assert utterance.duration_ms == 1000
        assert utterance.rate == 16000

    async def test_execute_action(self, make_harness):
        harness = make_harness()

        result = await harness.orchestrator.execute_action(Intent(IntentKind.NAVIGATE, {"page": "insights"}))

        assert result.effects == ("navigate:/insights",)
        assert harness.spoken() == ["Opening insights page"]
        harness.publisher.publish_metrics.assert_called_once()
        assert harness.orchestrator.current_tracker is None

    async def test_execute_action_refused_during_voice_command(self, make_harness):
        harness = make_harness("hello")
        entered = asyncio.Event()
        release = asyncio.Event()

        async def _slow_transcribe(_utterance):
            entered.set()
            await release.wait()
            return "hello"

        harness.transcriber.transcribe.side_effect = _slow_transcribe
        run = asyncio.create_task(harness.orchestrator.process_voice_command(b"\x00" * 3200))
        await asyncio.wait_for(entered.wait(), timeout=1.0)

        result = await harness.orchestrator.execute_action(Intent(IntentKind.NAVIGATE, {"page": "insights"}))

        assert result.message == BUSY_REPLY
        harness.navigate.assert_not_called()
        release.set()
        await run
        harness.publisher.publish_metrics.assert_called_once()

    async def test_execute_text_command(self, make_harness):
        harness = make_harness()

        result = await harness.orchestrator.execute_text_command("show my reminders")

        assert result.message == "Opening reminders page"
        harness.transcriber.transcribe.assert_not_awaited()
        harness.publisher.publish_transcript.assert_called_once_with("show my reminders", "text")

    async def test_blank_text_command(self, make_harness):
        harness = make_harness()

        result = await harness.orchestrator.execute_text_command("   ")

        assert result.message == NOT_HEARD_REPLY
