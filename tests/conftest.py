"""Shared test fixtures and configuration for the Lara test suite.

This module provides reusable fixtures for common test scenarios including:
- Configuration objects built without touching the real environment
- A scripted streaming recognizer for wake word tests
- httpx mock transports for the NLP and Lara API clients
- Async test utilities
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from unittest.mock import Mock

import httpx
import pytest
from lara.assistant.config import (
    ApiConfig,
    AssistantConfig,
    MicConfig,
    MqttConfig,
    NlpConfig,
    RedirectConfig,
)
from lara.assistant.recognizer import StreamingRecognizer
from lara.datetime_utils import IST

# ============================================================================
# Pytest Configuration
# ============================================================================


@pytest.fixture(scope="session")
def anyio_backend():
    """Configure anyio backend for async tests."""
    return "asyncio"


# ============================================================================
# Logging Fixtures
# ============================================================================


@pytest.fixture
def mock_logger():
    """Create a mock logger for testing.

    Returns a Mock with spec=logging.Logger to ensure only valid
    logger methods can be called.
    """
    return Mock(spec=logging.Logger)


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def assistant_config() -> AssistantConfig:
    """Assistant configuration with short timings and no external services."""
    return AssistantConfig.from_env(
        {
            "LARA_HOSTNAME": "test-host",
            "LARA_RECORD_MS": "100",
            "LARA_WAKE_SETTLE_MS": "0",
            "LARA_WAKE_NO_SPEECH_RESTART_MS": "0",
            "LARA_WAKE_END_RESTART_MS": "0",
            "LARA_TOPIC_BASE": "lara/test-host/assistant",
        }
    )


@pytest.fixture
def mic_config() -> MicConfig:
    """Standard 16kHz mono mic configuration."""
    return MicConfig(command=["arecord"], rate=16000, width=2, channels=1, chunk_ms=30)


@pytest.fixture
def mqtt_config() -> MqttConfig:
    return MqttConfig(
        host="localhost",
        port=1883,
        username=None,
        password=None,
        tls_enabled=False,
        cert=None,
        key=None,
        ca_cert=None,
        topic_base="lara/test-host/assistant",
    )


@pytest.fixture
def nlp_config() -> NlpConfig:
    return NlpConfig(
        provider="openai",
        model="gpt-4o-mini",
        api_key="sk-test",
        base_url="https://nlp.example.test/v1",
        timeout=0.5,
    )


@pytest.fixture
def api_config() -> ApiConfig:
    return ApiConfig(
        base_url="https://lara.example.test",
        token="api-token",
        user_id="user-123",
        timeout=5.0,
        search_limit=5,
    )


@pytest.fixture
def redirect_config() -> RedirectConfig:
    return RedirectConfig(
        android_timeout_ms=60,
        default_timeout_ms=50,
        platform="linux",
        launcher=None,
        poll_interval_ms=10,
    )


@pytest.fixture
def fixed_now() -> datetime:
    """Wednesday 2025-01-15 10:00 IST."""
    return datetime(2025, 1, 15, 10, 0, tzinfo=IST)


# ============================================================================
# HTTP Fixtures
# ============================================================================


@pytest.fixture
def json_transport() -> Callable[..., httpx.MockTransport]:
    """Build a MockTransport that records requests and answers with a handler."""

    def _factory(handler: Callable[[httpx.Request], httpx.Response], seen: list[httpx.Request] | None = None):
        def _wrapped(request: httpx.Request) -> httpx.Response:
            if seen is not None:
                seen.append(request)
            return handler(request)

        return httpx.MockTransport(_wrapped)

    return _factory


# ============================================================================
# Recognizer Fixtures
# ============================================================================


class ScriptedRecognizer(StreamingRecognizer):
    """Recognizer double driven directly by the test."""

    def __init__(self) -> None:
        super().__init__()
        self.running = False
        self.start_calls = 0
        self.stop_calls = 0
        self.fail_start = False

    @property
    def is_running(self) -> bool:
        return self.running

    async def start(self) -> None:
        if self.fail_start:
            raise RuntimeError("engine unavailable")
        if self.running:
            raise RuntimeError("Recognizer already started")
        self.start_calls += 1
        self.running = True

    async def stop(self) -> None:
        self.stop_calls += 1
        self.running = False

    def say(self, text: str) -> None:
        self._emit_segment(text)

    def error(self, code: str) -> None:
        self.running = False
        self._emit_error(code)

    def end(self) -> None:
        self.running = False
        self._emit_end()


@pytest.fixture
def recognizer() -> ScriptedRecognizer:
    return ScriptedRecognizer()
