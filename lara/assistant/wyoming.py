"""Wyoming protocol calls: faster-whisper transcription and Piper speech output."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from wyoming.asr import Transcribe, Transcript
from wyoming.audio import AudioChunk, AudioStart, AudioStop
from wyoming.client import AsyncTcpClient
from wyoming.event import Eventable
from wyoming.tts import Synthesize, SynthesizeVoice

from lara.utils import await_with_timeout, chunk_bytes

if TYPE_CHECKING:
    from .audio import PcmPlayer
    from .config import MicConfig, WyomingEndpoint

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def _connected(endpoint: WyomingEndpoint, timeout: float | None) -> AsyncIterator[AsyncTcpClient]:
    client = AsyncTcpClient(endpoint.host, endpoint.port)
    await await_with_timeout(client.connect(), timeout)
    try:
        yield client
    finally:
        await client.disconnect()


async def _send(client: AsyncTcpClient, message: Eventable, timeout: float | None) -> None:
    await await_with_timeout(client.write_event(message.event()), timeout)


async def transcribe_audio(
    audio_bytes: bytes,
    *,
    endpoint: WyomingEndpoint,
    mic: MicConfig,
    language: str | None = None,
    model: str | None = None,
    timeout: float | None = None,
    logger: logging.Logger | None = None,
) -> str | None:
    """Stream one PCM buffer to the STT server and wait for its transcript.

    Returns ``None`` when the server hangs up without answering.
    """
    async with _connected(endpoint, timeout) as client:
        await _send(client, Transcribe(name=model or endpoint.model, language=language), timeout)
        await _send(client, AudioStart(rate=mic.rate, width=mic.width, channels=mic.channels), timeout)
        for chunk in chunk_bytes(audio_bytes, mic.bytes_per_chunk):
            await _send(client, AudioChunk(rate=mic.rate, width=mic.width, channels=mic.channels, audio=chunk), timeout)
        await _send(client, AudioStop(), timeout)
        while True:
            event = await await_with_timeout(client.read_event(), timeout)
            if event is None:
                (logger or LOGGER).debug("[capture] Wyoming STT closed the connection without a transcript")
                return None
            if Transcript.is_type(event.type):
                return Transcript.from_event(event).text


async def play_tts_stream(
    text: str,
    *,
    endpoint: WyomingEndpoint,
    sink: PcmPlayer,
    voice_name: str | None = None,
    timeout: float | None = None,
    logger: logging.Logger | None = None,
) -> None:
    """Synthesize ``text`` and pipe the audio into ``sink`` as it arrives."""
    voice = SynthesizeVoice(name=voice_name) if voice_name else None
    started = False
    async with _connected(endpoint, timeout) as client:
        try:
            await _send(client, Synthesize(text=text, voice=voice), timeout)
            while True:
                event = await await_with_timeout(client.read_event(), timeout)
                if event is None or AudioStop.is_type(event.type):
                    break
                if AudioStart.is_type(event.type):
                    fmt = AudioStart.from_event(event)
                    await sink.start(fmt.rate, fmt.width, fmt.channels)
                    started = True
                elif AudioChunk.is_type(event.type):
                    await sink.write(AudioChunk.from_event(event).audio)
        finally:
            if started:
                await sink.stop()
    if not started:
        (logger or LOGGER).debug("[pipeline] Wyoming TTS returned no audio for %r", text)


class WyomingSpeaker:
    """Async callable that speaks replies, or only logs them when TTS is not configured."""

    def __init__(
        self,
        endpoint: WyomingEndpoint | None,
        sink: PcmPlayer,
        *,
        voice_name: str | None = None,
        timeout: float | None = 30.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.sink = sink
        self.voice_name = voice_name
        self.timeout = timeout
        self.logger = logger or LOGGER

    async def __call__(self, text: str) -> None:
        if not text:
            return
        if self.endpoint is None:
            self.logger.info("[pipeline] Response (no TTS configured): %s", text)
            return
        await play_tts_stream(
            text,
            endpoint=self.endpoint,
            sink=self.sink,
            voice_name=self.voice_name,
            timeout=self.timeout,
            logger=self.logger,
        )
