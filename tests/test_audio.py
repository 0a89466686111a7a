"""Tests for microphone and player helpers."""

from __future__ import annotations

import errno
from unittest.mock import AsyncMock, Mock, patch

import pytest
from lara.assistant.audio import MicrophoneError, MicrophoneStream, find_player, player_command, read_window

pytestmark = pytest.mark.anyio


@pytest.fixture
def mic():
    mic = Mock()
    mic.start = AsyncMock()
    mic.stop = AsyncMock()
    mic.read_chunk = AsyncMock(side_effect=lambda size: b"\x02" * size)
    return mic


class TestMicrophoneError:
    def test_permission_inferred_from_message(self):
        assert MicrophoneError("arecord: Permission denied").permission_denied
        assert not MicrophoneError("No such device").permission_denied

    def test_explicit_flag_wins(self):
        assert MicrophoneError("Unable to open microphone", permission_denied=True).permission_denied


class TestReadWindow:
    async def test_reads_exact_size(self, mic):
        audio = await read_window(mic, 2500, 1000)

        assert len(audio) == 2500
        assert [call.args[0] for call in mic.read_chunk.call_args_list] == [1000, 1000, 500]
        mic.stop.assert_awaited_once()

    async def test_releases_on_failure(self, mic):
        mic.read_chunk.side_effect = MicrophoneError("Microphone stream ended unexpectedly")

        with pytest.raises(MicrophoneError):
            await read_window(mic, 2500, 1000)

        mic.stop.assert_awaited_once()


class TestMicrophoneStream:
    async def test_recorder_permission_denied(self):
        stream = MicrophoneStream(["arecord"], 960)
        failure = PermissionError(errno.EACCES, "Permission denied")
        with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=failure)):
            with pytest.raises(MicrophoneError) as excinfo:
                await stream.start()

        assert excinfo.value.permission_denied
        assert not stream.is_running

    async def test_read_before_start(self):
        with pytest.raises(MicrophoneError, match="not running"):
            await MicrophoneStream(["arecord"], 960).read_chunk()

    async def test_stop_when_idle(self):
        await MicrophoneStream(["arecord"], 960).stop()


class TestPlayer:
    def test_aplay_command(self):
        assert player_command("aplay", 22050, 2, 1) == [
            "aplay", "-q", "-t", "raw", "-f", "S16_LE", "-c", "1", "-r", "22050", "-",
        ]  # fmt: skip

    def test_paplay_command(self):
        cmd = player_command("/usr/bin/paplay", 16000, 2, 1)
        assert cmd[0] == "/usr/bin/paplay"
        assert "--format=s16le" in cmd

    def test_find_player_prefers_configured(self):
        with patch("shutil.which", return_value="/usr/bin/aplay"):
            assert find_player("aplay") == "aplay"

    def test_find_player_falls_back(self):
        with patch("shutil.which", side_effect=lambda name: "/usr/bin/paplay" if name == "paplay" else None):
            assert find_player("pw-play") == "paplay"
