"""Open Spotify content in the native app, falling back to the web player.

An attempt launches the app URI and watches for our window losing focus. If focus
moves within the platform timeout the app took over; otherwise the web URL opens in
a new browser tab. Auto-play is a separate, later step that never re-enters the URI
path.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import re
import shutil
import sys
import webbrowser
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from urllib.parse import quote

from .config import RedirectConfig

LOGGER = logging.getLogger(__name__)

_TRACK_ID_RE = re.compile(r"^[A-Za-z0-9]{22}$")
_TRACK_URI_RE = re.compile(r"spotify:track:([A-Za-z0-9]+)")
_TRACK_URL_RE = re.compile(r"open\.spotify\.com/track/([A-Za-z0-9]+)")
_QUERY_PUNCTUATION_RE = re.compile(r"[.,!?;:'\"]")

FallbackCallback = Callable[[str], None]
AutoPlayer = Callable[[str, str], Awaitable[bool]]


class Platform(Enum):
    ANDROID = "Android"
    IOS = "iOS"
    WINDOWS = "Windows"
    MACOS = "macOS"
    LINUX = "Linux"
    UNKNOWN = "Unknown"


_PLATFORM_OVERRIDES = {
    "android": Platform.ANDROID,
    "ios": Platform.IOS,
    "windows": Platform.WINDOWS,
    "macos": Platform.MACOS,
    "linux": Platform.LINUX,
    "unknown": Platform.UNKNOWN,
}


def detect_platform(
    user_agent: str | None = None,
    *,
    override: str | None = None,
    system: str | None = None,
) -> Platform:
    """Classify the host from an override, a user agent string or ``sys.platform``."""
    if override:
        return _PLATFORM_OVERRIDES.get(override.strip().lower(), Platform.UNKNOWN)
    if user_agent:
        if re.search(r"Android", user_agent, re.I):
            return Platform.ANDROID
        if re.search(r"iPhone|iPad|iPod", user_agent, re.I):
            return Platform.IOS
        if re.search(r"Windows", user_agent, re.I):
            return Platform.WINDOWS
        if re.search(r"Macintosh|Mac OS X", user_agent, re.I):
            return Platform.MACOS
        if re.search(r"Linux", user_agent, re.I):
            return Platform.LINUX
        return Platform.UNKNOWN
    name = system if system is not None else sys.platform
    if name.startswith("linux"):
        return Platform.LINUX
    if name == "darwin":
        return Platform.MACOS
    if name in ("win32", "cygwin"):
        return Platform.WINDOWS
    return Platform.UNKNOWN


def sanitize_music_query(query: str | None) -> str:
    if not query:
        return ""
    return " ".join(_QUERY_PUNCTUATION_RE.sub("", query).split())


def is_valid_track_id(track_id: object) -> bool:
    return isinstance(track_id, str) and bool(_TRACK_ID_RE.match(track_id))


def extract_track_id(url: str | None) -> str | None:
    """Pull a track id out of a ``spotify:track:`` URI or an open.spotify.com URL."""
    if not url:
        return None
    match = _TRACK_URI_RE.search(url) or _TRACK_URL_RE.search(url)
    return match.group(1) if match else None


# ============================================================================
# Visibility watchers
# ============================================================================


class VisibilityWatcher:
    """Reports when our window stops being the visible foreground surface."""

    def __init__(self) -> None:
        self._subscribers: list[Callable[[], None]] = []

    def subscribe(self, callback: Callable[[], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._subscribers.remove(callback)

        return _unsubscribe

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None

    def _notify_hidden(self) -> None:
        for callback in list(self._subscribers):
            callback()


class ManualVisibilityWatcher(VisibilityWatcher):
    """Watcher driven by hand, for tests and headless hosts."""

    def hide(self) -> None:
        self._notify_hidden()


class ForegroundWindowWatcher(VisibilityWatcher):
    """Poll the OS foreground window and report when it changes."""

    def __init__(
        self,
        platform: Platform,
        *,
        poll_interval_ms: int = 100,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__()
        self.platform = platform
        self.poll_interval_ms = poll_interval_ms
        self.logger = logger or LOGGER
        self._task: asyncio.Task[None] | None = None

    def probe_command(self) -> list[str] | None:
        if self.platform is Platform.LINUX and shutil.which("xdotool"):
            return ["xdotool", "getactivewindow"]
        if self.platform is Platform.MACOS and shutil.which("osascript"):
            return [
                "osascript",
                "-e",
                'tell application "System Events" to get name of first application process whose frontmost is true',
            ]
        return None

    async def start(self) -> None:
        if self._task and not self._task.done():
            return
        command = self.probe_command()
        if command is None:
            self.logger.debug("[redirect] No foreground probe available on %s", self.platform.value)
            return
        baseline = await self._probe(command)
        if baseline is None:
            return
        self._task = asyncio.create_task(self._poll(command, baseline))

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _poll(self, command: list[str], baseline: str) -> None:
        while True:
            await asyncio.sleep(self.poll_interval_ms / 1000)
            current = await self._probe(command)
            if current is not None and current != baseline:
                self.logger.debug("[redirect] Foreground changed from %s to %s", baseline, current)
                self._notify_hidden()
                return

    async def _probe(self, command: list[str]) -> str | None:
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
            stdout, _ = await proc.communicate()
        except OSError as exc:
            self.logger.debug("[redirect] Foreground probe failed: %s", exc)
            return None
        if proc.returncode != 0:
            return None
        return stdout.decode("utf-8", errors="ignore").strip() or None


# ============================================================================
# Launcher
# ============================================================================


class UriLauncher:
    """Hand app URIs to the platform opener and web URLs to the browser."""

    def __init__(
        self,
        platform: Platform,
        command: list[str] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.platform = platform
        self.command = command
        self.logger = logger or LOGGER

    def opener_command(self, uri: str) -> list[str] | None:
        if self.command:
            return [*self.command, uri]
        if self.platform is Platform.MACOS:
            return ["open", uri]
        if self.platform is Platform.WINDOWS:
            return ["cmd", "/c", "start", "", uri]
        if shutil.which("xdg-open"):
            return ["xdg-open", uri]
        return None

    async def open_app(self, uri: str) -> bool:
        """Launch ``uri``; returns False when no opener accepted it."""
        command = self.opener_command(uri)
        if command is None:
            self.logger.debug("[redirect] No URI opener available for %s", self.platform.value)
            return False
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            returncode = await proc.wait()
        except OSError as exc:
            self.logger.debug("[redirect] URI opener failed: %s", exc)
            return False
        return returncode == 0

    async def open_web(self, url: str) -> bool:
        return await asyncio.to_thread(webbrowser.open_new_tab, url)


# ============================================================================
# Redirect engine
# ============================================================================


@dataclass(frozen=True)
class AppOpened:
    uri: str


@dataclass(frozen=True)
class FallbackWebOpened:
    url: str
    reason: str


RedirectOutcome = AppOpened | FallbackWebOpened


@dataclass
class RedirectAttempt:
    target_uri: str
    web_url: str
    platform: Platform
    timeout_ms: int
    outcome: RedirectOutcome | None = None

    def settle(self, outcome: RedirectOutcome) -> bool:
        """Record the terminal outcome; later calls are ignored."""
        if self.outcome is not None:
            return False
        self.outcome = outcome
        return True

    @property
    def app_opened(self) -> bool:
        return isinstance(self.outcome, AppOpened)


def track_links(track_id: str) -> tuple[str, str]:
    return f"spotify:track:{track_id}", f"https://open.spotify.com/track/{track_id}"


def search_links(query: str) -> tuple[str, str]:
    encoded = quote(query, safe="")
    return f"spotify:search:{encoded}", f"https://open.spotify.com/search/{encoded}"


class RedirectEngine:
    """Run URI → web attempts and the optional auto-play follow-up."""

    def __init__(
        self,
        config: RedirectConfig,
        *,
        launcher: UriLauncher | None = None,
        watcher: VisibilityWatcher | None = None,
        auto_player: AutoPlayer | None = None,
        platform: Platform | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.logger = logger or LOGGER
        self.platform = platform or detect_platform(override=config.platform)
        self.launcher = launcher or UriLauncher(self.platform, config.launcher, logger=self.logger)
        self.watcher = watcher or ForegroundWindowWatcher(
            self.platform, poll_interval_ms=config.poll_interval_ms, logger=self.logger
        )
        self.auto_player = auto_player
        self._background: set[asyncio.Task] = set()

    @property
    def timeout_ms(self) -> int:
        if self.platform is Platform.ANDROID:
            return self.config.android_timeout_ms
        return self.config.default_timeout_ms

    async def open_track(self, track_id: str, on_fallback: FallbackCallback | None = None) -> RedirectAttempt:
        track_id = (track_id or "").strip()
        if not track_id:
            raise ValueError("Track ID is required")
        # Accept pasted share links as well as bare ids
        track_id = extract_track_id(track_id) or track_id
        if not is_valid_track_id(track_id):
            self.logger.warning("[redirect] Track id %r does not look like a Spotify id", track_id)
        uri, web_url = track_links(track_id)
        return await self._attempt(uri, web_url, on_fallback)

    async def open_search(self, query: str, on_fallback: FallbackCallback | None = None) -> RedirectAttempt:
        query = (query or "").strip()
        if not query:
            raise ValueError("Search query is required")
        uri, web_url = search_links(query)
        return await self._attempt(uri, web_url, on_fallback)

    async def _attempt(self, uri: str, web_url: str, on_fallback: FallbackCallback | None) -> RedirectAttempt:
        attempt = RedirectAttempt(uri, web_url, self.platform, self.timeout_ms)
        self.logger.info(
            "[redirect] Opening %s (platform=%s timeout=%sms)", uri, self.platform.value, attempt.timeout_ms
        )
        hidden = asyncio.Event()
        unsubscribe = self.watcher.subscribe(hidden.set)
        try:
            await self.watcher.start()
            launched = await self.launcher.open_app(uri)
            if launched:
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(hidden.wait(), timeout=attempt.timeout_ms / 1000)
            if hidden.is_set() and attempt.settle(AppOpened(uri)):
                self.logger.info("[redirect] Spotify app opened (window lost focus)")
                return attempt
            if launched:
                reason = f"Spotify app not found on {self.platform.value} after {attempt.timeout_ms}ms"
            else:
                reason = f"Could not launch Spotify URI on {self.platform.value}"
            if attempt.settle(FallbackWebOpened(web_url, reason)):
                self.logger.info("[redirect] %s; opening web player %s", reason, web_url)
                if on_fallback:
                    on_fallback(reason)
                try:
                    opened = await self.launcher.open_web(web_url)
                except webbrowser.Error as exc:
                    self.logger.warning("[redirect] Browser failed for %s: %s", web_url, exc)
                    opened = True
                if not opened:
                    self.logger.warning("[redirect] Browser refused to open %s", web_url)
            return attempt
        finally:
            unsubscribe()
            await self.watcher.stop()

    async def auto_play(self, track_id: str, user_id: str | None) -> bool:
        """Ask the server to start playback on the user's active device."""
        if not track_id or not track_id.strip():
            self.logger.error("[redirect] Invalid track id for auto-play")
            return False
        if not user_id or not user_id.strip():
            self.logger.error("[redirect] User id required for auto-play")
            return False
        if self.auto_player is None:
            return False
        try:
            success = await self.auto_player(track_id, user_id)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("[redirect] Auto-play failed: %s", exc)
            return False
        if success:
            self.logger.info("[redirect] Auto-play started for %s", track_id)
        else:
            self.logger.warning("[redirect] Auto-play returned success=false for %s", track_id)
        return bool(success)

    def schedule_auto_play(self, track_id: str, user_id: str, delay_ms: int) -> asyncio.Task[bool]:
        """Fire one delayed auto-play call without waiting for it."""

        async def _delayed() -> bool:
            await asyncio.sleep(delay_ms / 1000)
            return await self.auto_play(track_id, user_id)

        task = asyncio.create_task(_delayed())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def aclose(self) -> None:
        for task in list(self._background):
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self.watcher.stop()
