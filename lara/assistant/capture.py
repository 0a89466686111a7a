"""Bounded command capture and speech-to-text gateway."""

from __future__ import annotations

import io
import logging
import wave
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx

from .audio import MicrophoneError, read_window
from .wyoming import transcribe_audio

if TYPE_CHECKING:
    from .audio import MicrophoneStream
    from .config import CaptureConfig, MicConfig, WyomingEndpoint

LOGGER = logging.getLogger(__name__)


class TranscriptionError(RuntimeError):
    """Raised when the speech-to-text service fails or returns nothing usable."""


@dataclass
class Utterance:
    audio: bytes
    duration_ms: int
    rate: int
    width: int
    channels: int
    transcribed: bool = False

    def to_wav(self) -> bytes:
        buffer = io.BytesIO()
        with wave.open(buffer, "wb") as handle:
            handle.setnchannels(self.channels)
            handle.setsampwidth(self.width)
            handle.setframerate(self.rate)
            handle.writeframes(self.audio)
        return buffer.getvalue()


class CommandCapture:
    """Record a fixed window of audio from the shared microphone stream."""

    def __init__(self, mic: MicrophoneStream, mic_config: MicConfig, logger: logging.Logger | None = None) -> None:
        self.mic = mic
        self.mic_config = mic_config
        self.logger = logger or LOGGER

    async def record(self, duration_ms: int) -> Utterance:
        if duration_ms <= 0:
            raise ValueError("Recording duration must be positive")
        if self.mic.is_running:
            raise MicrophoneError("Microphone is already owned by another listener")
        audio = await read_window(
            self.mic, self.mic_config.bytes_for(duration_ms), self.mic_config.bytes_per_chunk
        )
        self.logger.debug("[capture] Recorded %d bytes (%d ms)", len(audio), duration_ms)
        return Utterance(
            audio=audio,
            duration_ms=duration_ms,
            rate=self.mic_config.rate,
            width=self.mic_config.width,
            channels=self.mic_config.channels,
        )


class TranscriptionGateway:
    """Turn an :class:`Utterance` into text via Wyoming or an OpenAI Whisper endpoint."""

    def __init__(
        self,
        config: CaptureConfig,
        *,
        mic_config: MicConfig,
        endpoint: WyomingEndpoint | None = None,
        http_client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.mic_config = mic_config
        self.endpoint = endpoint
        self._http_client = http_client
        self.logger = logger or LOGGER

    async def transcribe(self, utterance: Utterance) -> str:
        if utterance.transcribed:
            raise TranscriptionError("Utterance was already transcribed")
        utterance.transcribed = True
        try:
            if self.config.backend == "openai":
                text = await self._transcribe_openai(utterance)
            else:
                text = await self._transcribe_wyoming(utterance)
        except TranscriptionError:
            raise
        except (OSError, TimeoutError, ValueError, httpx.HTTPError) as exc:
            raise TranscriptionError(f"Speech-to-text request failed: {exc}") from exc
        cleaned = (text or "").strip()
        if not cleaned:
            raise TranscriptionError("Speech-to-text returned an empty transcript")
        return cleaned

    async def _transcribe_wyoming(self, utterance: Utterance) -> str | None:
        if self.endpoint is None:
            raise TranscriptionError("No Wyoming STT endpoint configured")
        return await transcribe_audio(
            utterance.audio,
            endpoint=self.endpoint,
            mic=self.mic_config,
            language=self.config.language,
            timeout=self.config.timeout,
            logger=self.logger,
        )

    async def _transcribe_openai(self, utterance: Utterance) -> str | None:
        if not self.config.openai_api_key:
            raise TranscriptionError("OPENAI_API_KEY is not set")
        client = self._http_client or httpx.AsyncClient(timeout=self.config.timeout)
        try:
            response = await client.post(
                f"{self.config.openai_base_url.rstrip('/')}/audio/transcriptions",
                headers={"Authorization": f"Bearer {self.config.openai_api_key}"},
                data={"model": self.config.openai_model, "language": self.config.language},
                files={"file": ("audio.wav", utterance.to_wav(), "audio/wav")},
            )
            if response.status_code >= 400:
                raise TranscriptionError(f"Speech-to-text HTTP error: {response.status_code}")
            payload = response.json()
        finally:
            if self._http_client is None:
                await client.aclose()
        return payload.get("text") if isinstance(payload, dict) else None
