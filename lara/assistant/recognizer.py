"""Streaming speech recognition used for wake word listening.

A recognizer delivers finalized text segments, error codes and an end-of-recognition
signal to registered handlers. Error codes follow the familiar browser speech API
vocabulary so listener logic can treat every backend alike.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import sys
from array import array
from collections.abc import Callable
from typing import TYPE_CHECKING

from .audio import MicrophoneError, read_window
from .wyoming import transcribe_audio

if TYPE_CHECKING:
    from .audio import MicrophoneStream
    from .config import MicConfig, WyomingEndpoint

LOGGER = logging.getLogger(__name__)

ABORTED = "aborted"
NO_SPEECH = "no-speech"
AUDIO_CAPTURE = "audio-capture"
NETWORK = "network"
NOT_ALLOWED = "not-allowed"
SERVICE_NOT_ALLOWED = "service-not-allowed"

SegmentHandler = Callable[[str], None]
ErrorHandler = Callable[[str], None]
EndHandler = Callable[[], None]


def compute_rms(chunk: bytes, sample_width: int) -> int:
    """Compute RMS (Root Mean Square) for an audio chunk."""
    if not chunk or sample_width <= 0:
        return 0
    frames = len(chunk) // sample_width
    if frames <= 0:
        return 0
    trimmed = chunk[: frames * sample_width]
    typecode = {1: "b", 2: "h", 4: "i"}.get(sample_width)
    if typecode:
        samples = array(typecode)
        samples.frombytes(trimmed)
        if sample_width > 1 and sys.byteorder != "little":
            samples.byteswap()
        total = math.fsum(value * value for value in samples)
    else:
        total = 0.0
        for i in range(0, len(trimmed), sample_width):
            sample = int.from_bytes(trimmed[i : i + sample_width], "little", signed=True)
            total += sample * sample
    return int(math.sqrt(total / frames))


class StreamingRecognizer:
    """Interface for continuous recognizers feeding the wake word session."""

    def __init__(self) -> None:
        self._segment_handler: SegmentHandler | None = None
        self._error_handler: ErrorHandler | None = None
        self._end_handler: EndHandler | None = None

    def on_final_segment(self, handler: SegmentHandler | None) -> None:
        self._segment_handler = handler

    def on_error(self, handler: ErrorHandler | None) -> None:
        self._error_handler = handler

    def on_end(self, handler: EndHandler | None) -> None:
        self._end_handler = handler

    @property
    def is_running(self) -> bool:
        raise NotImplementedError

    async def start(self) -> None:
        raise NotImplementedError

    async def stop(self) -> None:
        raise NotImplementedError

    def _emit_segment(self, text: str) -> None:
        if self._segment_handler:
            self._segment_handler(text)

    def _emit_error(self, code: str) -> None:
        if self._error_handler:
            self._error_handler(code)

    def _emit_end(self) -> None:
        if self._end_handler:
            self._end_handler()


class WyomingStreamingRecognizer(StreamingRecognizer):
    """Recognize short microphone windows through a Wyoming STT server.

    Each :meth:`start` captures one window, transcribes it and ends, like a
    single-utterance browser session. The wake word session restarts it.
    """

    def __init__(
        self,
        *,
        mic: MicrophoneStream,
        mic_config: MicConfig,
        endpoint: WyomingEndpoint,
        segment_ms: int,
        rms_floor: int = 0,
        language: str | None = None,
        timeout: float | None = 10.0,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__()
        self.mic = mic
        self.mic_config = mic_config
        self.endpoint = endpoint
        self.segment_ms = segment_ms
        self.rms_floor = rms_floor
        self.language = language
        self.timeout = timeout
        self.logger = logger or LOGGER
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            raise RuntimeError("Recognizer already started")
        self._running = True
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        task = self._task
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        self._running = False
        self._task = None
        await self.mic.stop()

    async def _run(self) -> None:
        try:
            audio = await self._capture_window()
            if audio is None:
                return
            if compute_rms(audio, self.mic_config.width) < self.rms_floor:
                self._emit_error(NO_SPEECH)
                return
            try:
                text = await transcribe_audio(
                    audio,
                    endpoint=self.endpoint,
                    mic=self.mic_config,
                    language=self.language,
                    timeout=self.timeout,
                    logger=self.logger,
                )
            except (OSError, TimeoutError) as exc:
                self.logger.debug("[wake] Recognition request failed: %s", exc)
                self._emit_error(NETWORK)
                return
            cleaned = (text or "").strip()
            if not cleaned:
                self._emit_error(NO_SPEECH)
                return
            self._emit_segment(cleaned)
        except asyncio.CancelledError:
            self._emit_error(ABORTED)
            raise
        finally:
            await self.mic.stop()
            self._running = False
            self._task = None
            self._emit_end()

    async def _capture_window(self) -> bytes | None:
        try:
            return await read_window(
                self.mic, self.mic_config.bytes_for(self.segment_ms), self.mic_config.bytes_per_chunk
            )
        except MicrophoneError as exc:
            self.logger.debug("[wake] Microphone failure: %s", exc)
            self._emit_error(NOT_ALLOWED if exc.permission_denied else AUDIO_CAPTURE)
            return None
