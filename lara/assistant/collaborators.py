"""Clients for the Lara web API and in-app navigation."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from .config import ApiConfig

LOGGER = logging.getLogger(__name__)


class CollaboratorError(RuntimeError):
    """The Lara API rejected or failed a request."""


@dataclass(frozen=True)
class Track:
    id: str
    name: str
    artists: tuple[str, ...] = ()
    album: str | None = None

    @property
    def label(self) -> str:
        if self.artists:
            return f"{self.name} by {', '.join(self.artists)}"
        return self.name


@dataclass(slots=True)
class LaraApiClient:
    config: ApiConfig
    transport: httpx.AsyncBaseTransport | None = None
    _client: httpx.AsyncClient = field(init=False, repr=False)
    _closed: bool = field(init=False, default=True, repr=False)

    def __post_init__(self) -> None:
        if not self.config.base_url:
            raise ValueError("Lara API base URL is not configured")
        headers = {"Content-Type": "application/json"}
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"
        self._client = httpx.AsyncClient(
            base_url=self.config.base_url.rstrip("/"),
            headers=headers,
            timeout=self.config.timeout,
            transport=self.transport,
            trust_env=False,
        )
        self._closed = False

    @property
    def user_id(self) -> str | None:
        return self.config.user_id

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._client.aclose()

    async def create_task(self, title: str) -> dict[str, Any]:
        """Create a pending task and return the stored record."""
        payload = {
            "title": title,
            "description": "",
            "userId": self.config.user_id,
            "status": "pending",
            "priority": "medium",
            "ai_generated": True,
        }
        data = await self._request("POST", "/api/tasks", json=payload)
        return _record(data)

    async def create_reminder(self, title: str, reminder_time: str) -> dict[str, Any]:
        payload = {
            "title": title,
            "description": "",
            "reminder_time": reminder_time,
            "userId": self.config.user_id,
            "status": "pending",
            "is_recurring": False,
        }
        data = await self._request("POST", "/api/reminders/create", json=payload)
        return _record(data)

    async def search_tracks(self, query: str, *, limit: int | None = None) -> list[Track]:
        params: dict[str, Any] = {"q": query, "type": "track", "limit": limit or self.config.search_limit}
        if self.config.user_id:
            params["userId"] = self.config.user_id
        data = await self._request("GET", "/api/spotify/search", params=params)
        tracks: list[Track] = []
        for item in data.get("tracks") or []:
            if not isinstance(item, dict) or not item.get("id"):
                continue
            artists = item.get("artists") or []
            tracks.append(
                Track(
                    id=str(item["id"]),
                    name=str(item.get("name") or "Unknown track"),
                    artists=tuple(str(artist) for artist in artists if artist),
                    album=item.get("album"),
                )
            )
        return tracks

    async def auto_play(self, track_id: str, user_id: str) -> bool:
        """Start playback on the user's active Spotify device."""
        try:
            await self._request("POST", "/api/spotify/play", json={"trackId": track_id, "userId": user_id})
        except CollaboratorError as exc:
            LOGGER.warning("[router] Auto-play request failed: %s", exc)
            return False
        return True

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.RequestError as exc:
            raise CollaboratorError(f"Failed to contact Lara API: {exc}") from exc
        if response.status_code >= 400:
            raise CollaboratorError(f"Lara API error {response.status_code}: {response.text}")
        try:
            data = response.json()
        except ValueError as exc:
            raise CollaboratorError(f"Lara API returned invalid JSON for {path}") from exc
        if not isinstance(data, dict):
            raise CollaboratorError(f"Lara API returned a non-object payload for {path}")
        if data.get("success") is False:
            raise CollaboratorError(str(data.get("error") or f"Lara API rejected {path}"))
        return data


def _record(data: dict[str, Any]) -> dict[str, Any]:
    record = data.get("data")
    return record if isinstance(record, dict) else data


class PageRouter(Protocol):
    def push(self, path: str) -> Awaitable[None] | None: ...


class Navigator:
    """Route changes through either a callback or a router handle, never both."""

    def __init__(
        self,
        callback: Callable[[str], Awaitable[None] | None] | None = None,
        router: PageRouter | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.callback = callback
        self.router = router
        self.logger = logger or LOGGER

    @property
    def available(self) -> bool:
        return self.callback is not None or self.router is not None

    async def navigate(self, path: str) -> bool:
        if self.callback is not None:
            result = self.callback(path)
        elif self.router is not None:
            result = self.router.push(path)
        else:
            self.logger.debug("[router] No navigation target for %s", path)
            return False
        if inspect.isawaitable(result):
            await result
        return True
