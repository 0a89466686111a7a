"""Microphone and speaker subprocesses shared by wake listening, capture and TTS."""

from __future__ import annotations

import asyncio
import contextlib
import errno
import logging
import shutil
from asyncio.subprocess import Process

LOGGER = logging.getLogger(__name__)

_ALSA_FORMATS = {1: "U8", 2: "S16_LE", 3: "S24_LE", 4: "S32_LE"}
_PULSE_FORMATS = {1: "u8", 2: "s16le", 3: "s24le", 4: "s32le"}


class MicrophoneError(RuntimeError):
    """The capture device could not be opened or stopped delivering audio."""

    def __init__(self, message: str, *, permission_denied: bool | None = None) -> None:
        super().__init__(message)
        if permission_denied is None:
            permission_denied = "permission denied" in message.lower()
        self.permission_denied = permission_denied


class MicrophoneStream:
    """Raw PCM from a recorder subprocess (``arecord`` by default).

    Only one reader may hold the stream; the wake listener and command capture
    take turns, and :func:`read_window` always hands it back.
    """

    def __init__(
        self,
        command: list[str],
        bytes_per_chunk: int,
        logger: logging.Logger | None = None,
    ) -> None:
        self.command = command
        self.bytes_per_chunk = bytes_per_chunk
        self.logger = logger or LOGGER
        self._proc: Process | None = None

    @property
    def is_running(self) -> bool:
        return self._proc is not None

    async def start(self) -> None:
        if self._proc is not None:
            return
        self.logger.debug("[capture] Opening microphone: %s", " ".join(self.command))
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *self.command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise MicrophoneError(
                f"Unable to open microphone ({exc})",
                permission_denied=exc.errno in (errno.EACCES, errno.EPERM),
            ) from exc

    async def read_chunk(self, size: int | None = None) -> bytes:
        proc = self._proc
        if proc is None or proc.stdout is None:
            raise MicrophoneError("Microphone stream is not running")
        try:
            return await proc.stdout.readexactly(size or self.bytes_per_chunk)
        except asyncio.IncompleteReadError as exc:
            detail = await self._recorder_stderr()
            message = "Microphone stream ended unexpectedly"
            raise MicrophoneError(f"{message} ({detail})" if detail else message) from exc

    async def stop(self) -> None:
        proc = self._proc
        if proc is None:
            return
        self._proc = None
        self.logger.debug("[capture] Releasing microphone")
        with contextlib.suppress(ProcessLookupError):
            proc.terminate()
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(proc.wait(), timeout=2)

    async def _recorder_stderr(self) -> str:
        proc = self._proc
        if proc is None or proc.stderr is None:
            return ""
        try:
            data = await asyncio.wait_for(proc.stderr.read(), timeout=0.5)
        except (asyncio.TimeoutError, OSError):
            return ""
        return data.decode("utf-8", errors="ignore").strip()


async def read_window(mic: MicrophoneStream, total_bytes: int, chunk_bytes: int) -> bytes:
    """Open ``mic``, read exactly ``total_bytes`` and release it on every exit path."""
    buffer = bytearray()
    await mic.start()
    try:
        while len(buffer) < total_bytes:
            buffer.extend(await mic.read_chunk(min(chunk_bytes, total_bytes - len(buffer))))
    finally:
        await mic.stop()
    return bytes(buffer)


def player_command(player: str, rate: int, width: int, channels: int) -> list[str]:
    """Command line that plays raw PCM from stdin with ``paplay`` or ``aplay``."""
    if player.rsplit("/", 1)[-1] == "paplay":
        return [
            player,
            "--raw",
            f"--rate={rate}",
            f"--channels={channels}",
            f"--format={_PULSE_FORMATS.get(width, 's16le')}",
        ]
    fmt = _ALSA_FORMATS.get(width, "S16_LE")
    return [player, "-q", "-t", "raw", "-f", fmt, "-c", str(channels), "-r", str(rate), "-"]


def find_player(preferred: str | None = None) -> str:
    if preferred and shutil.which(preferred):
        return preferred
    if preferred:
        LOGGER.warning("Audio player %r not found; trying paplay/aplay", preferred)
    for candidate in ("paplay", "aplay"):
        if shutil.which(candidate):
            return candidate
    return "aplay"


class PcmPlayer:
    """Stream synthesized speech into a player subprocess."""

    def __init__(self, binary: str | None = None, logger: logging.Logger | None = None) -> None:
        self.binary = binary
        self.logger = logger or LOGGER
        self._proc: Process | None = None

    async def start(self, rate: int, width: int, channels: int) -> None:
        await self.stop()
        cmd = player_command(find_player(self.binary), rate, width, channels)
        self.logger.debug("[pipeline] Starting playback: %s", " ".join(cmd))
        self._proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )

    async def write(self, chunk: bytes) -> None:
        proc = self._proc
        if proc is None or proc.stdin is None:
            raise RuntimeError("Playback is not active")
        try:
            proc.stdin.write(chunk)
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            await self.stop()
            raise RuntimeError("Playback process exited unexpectedly") from exc

    async def stop(self) -> None:
        proc = self._proc
        if proc is None:
            return
        self._proc = None
        if proc.stdin is not None:
            proc.stdin.close()
            with contextlib.suppress(BrokenPipeError, ConnectionResetError):
                await proc.stdin.wait_closed()
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(proc.wait(), timeout=2)
