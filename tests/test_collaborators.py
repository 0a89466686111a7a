"""Tests for the Lara API client and the navigator."""

from __future__ import annotations

import json
from dataclasses import replace
from unittest.mock import AsyncMock, Mock

import httpx
import pytest
from lara.assistant.collaborators import CollaboratorError, LaraApiClient, Navigator, Track

pytestmark = pytest.mark.anyio


@pytest.fixture
def requests_seen() -> list[httpx.Request]:
    return []


def _client(api_config, json_transport, handler, seen=None) -> LaraApiClient:
    return LaraApiClient(api_config, transport=json_transport(handler, seen))


# ============================================================================
# LaraApiClient
# ============================================================================


class TestLaraApiClient:
    def test_requires_base_url(self, api_config):
        with pytest.raises(ValueError):
            LaraApiClient(replace(api_config, base_url=None))

    async def test_create_task(self, api_config, json_transport, requests_seen):
        client = _client(
            api_config,
            json_transport,
            lambda request: httpx.Response(201, json={"success": True, "data": {"id": "t1", "title": "buy milk"}}),
            requests_seen,
        )
        try:
            record = await client.create_task("buy milk")
        finally:
            await client.close()

        assert record == {"id": "t1", "title": "buy milk"}
        request = requests_seen[0]
        assert request.method == "POST"
        assert request.url.path == "/api/tasks"
        assert request.headers["Authorization"] == "Bearer api-token"
        body = json.loads(request.content)
        assert body["title"] == "buy milk"
        assert body["userId"] == "user-123"
        assert body["status"] == "pending"
        assert body["ai_generated"] is True

    async def test_create_reminder(self, api_config, json_transport, requests_seen):
        client = _client(
            api_config,
            json_transport,
            lambda request: httpx.Response(200, json={"success": True, "data": {"id": "r1"}}),
            requests_seen,
        )
        try:
            await client.create_reminder("Call your mom", "2025-01-16T17:30:00+05:30")
        finally:
            await client.close()

        request = requests_seen[0]
        assert request.url.path == "/api/reminders/create"
        body = json.loads(request.content)
        assert body["title"] == "Call your mom"
        assert body["reminder_time"] == "2025-01-16T17:30:00+05:30"
        assert body["is_recurring"] is False

    async def test_search_tracks(self, api_config, json_transport, requests_seen):
        payload = {
            "tracks": [
                {"id": "4uLU6hMCjMI75M1A2tKUQC", "name": "Shape of You", "artists": ["Ed Sheeran"], "album": "Divide"},
                {"name": "missing id"},
            ]
        }
        client = _client(api_config, json_transport, lambda request: httpx.Response(200, json=payload), requests_seen)
        try:
            tracks = await client.search_tracks("shape of you")
        finally:
            await client.close()

        assert tracks == [Track("4uLU6hMCjMI75M1A2tKUQC", "Shape of You", ("Ed Sheeran",), "Divide")]
        assert tracks[0].label == "Shape of You by Ed Sheeran"
        params = requests_seen[0].url.params
        assert params["q"] == "shape of you"
        assert params["type"] == "track"
        assert params["limit"] == "5"
        assert params["userId"] == "user-123"

    async def test_http_error_raises(self, api_config, json_transport):
        client = _client(api_config, json_transport, lambda request: httpx.Response(500, text="boom"))
        try:
            with pytest.raises(CollaboratorError, match="500"):
                await client.create_task("buy milk")
        finally:
            await client.close()

    async def test_success_false_raises(self, api_config, json_transport):
        client = _client(
            api_config, json_transport, lambda request: httpx.Response(200, json={"success": False, "error": "nope"})
        )
        try:
            with pytest.raises(CollaboratorError, match="nope"):
                await client.create_task("buy milk")
        finally:
            await client.close()

    async def test_connection_error_raises(self, api_config, json_transport):
        def _refuse(request):
            raise httpx.ConnectError("refused", request=request)

        client = _client(api_config, json_transport, _refuse)
        try:
            with pytest.raises(CollaboratorError, match="Failed to contact"):
                await client.search_tracks("anything")
        finally:
            await client.close()

    async def test_auto_play(self, api_config, json_transport, requests_seen):
        client = _client(
            api_config, json_transport, lambda request: httpx.Response(200, json={"success": True}), requests_seen
        )
        try:
            assert await client.auto_play("4uLU6hMCjMI75M1A2tKUQC", "user-123") is True
        finally:
            await client.close()

        assert requests_seen[0].url.path == "/api/spotify/play"
        assert json.loads(requests_seen[0].content) == {"trackId": "4uLU6hMCjMI75M1A2tKUQC", "userId": "user-123"}

    async def test_auto_play_failure_returns_false(self, api_config, json_transport):
        client = _client(api_config, json_transport, lambda request: httpx.Response(404, text="no device"))
        try:
            assert await client.auto_play("4uLU6hMCjMI75M1A2tKUQC", "user-123") is False
        finally:
            await client.close()


# ============================================================================
# Navigator
# ============================================================================


class TestNavigator:
    async def test_callback_preferred(self):
        callback = Mock(return_value=None)
        router = Mock()
        navigator = Navigator(callback=callback, router=router)

        assert await navigator.navigate("/tasks") is True
        callback.assert_called_once_with("/tasks")
        router.push.assert_not_called()

    async def test_async_router(self):
        router = Mock()
        router.push = AsyncMock()
        navigator = Navigator(router=router)

        assert await navigator.navigate("/reminders") is True
        router.push.assert_awaited_once_with("/reminders")

    async def test_nothing_configured(self, mock_logger):
        navigator = Navigator(logger=mock_logger)

        assert navigator.available is False
        assert await navigator.navigate("/tasks") is False
