"""Configuration helpers for the Lara voice assistant."""

from __future__ import annotations

import os
import shlex
import socket
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Literal

from lara.utils import parse_bool, parse_float, parse_int, split_csv

DEFAULT_WAKE_PHRASES = (
    "hey lara",
    "hey laura",
    "hey lora",
    "hey larra",
    "hey laira",
    "hey lera",
)
NLP_PROVIDERS = {"openai", "cohere"}
TRANSCRIPTION_BACKENDS = {"wyoming", "openai"}
PLATFORMS = {"android", "ios", "windows", "macos", "linux", "unknown"}


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _normalize_choice(value: str | None, valid: set[str], default: str) -> str:
    if not value:
        return default
    lowered = value.strip().lower()
    return lowered if lowered in valid else default


@dataclass(frozen=True)
class WyomingEndpoint:
    host: str
    port: int
    model: str | None = None


@dataclass(frozen=True)
class MicConfig:
    command: list[str]
    rate: int
    width: int
    channels: int
    chunk_ms: int

    @property
    def bytes_per_chunk(self) -> int:
        samples = int(self.rate * (self.chunk_ms / 1000))
        return samples * self.width * self.channels

    def bytes_for(self, duration_ms: int) -> int:
        frames = int(self.rate * (duration_ms / 1000))
        return frames * self.width * self.channels


@dataclass(frozen=True)
class WakeConfig:
    phrases: tuple[str, ...]
    segment_ms: int
    no_speech_restart_ms: int
    end_restart_ms: int
    settle_ms: int
    rms_floor: int


@dataclass(frozen=True)
class CaptureConfig:
    record_ms: int
    backend: Literal["wyoming", "openai"]
    language: str
    openai_model: str
    openai_api_key: str | None
    openai_base_url: str
    timeout: float


@dataclass(frozen=True)
class NlpConfig:
    provider: Literal["openai", "cohere"]
    model: str
    api_key: str | None
    base_url: str
    timeout: float


@dataclass(frozen=True)
class RedirectConfig:
    android_timeout_ms: int
    default_timeout_ms: int
    platform: str | None
    launcher: list[str] | None
    poll_interval_ms: int


@dataclass(frozen=True)
class ApiConfig:
    base_url: str | None
    token: str | None
    user_id: str | None
    timeout: float
    search_limit: int


@dataclass(frozen=True)
class MqttConfig:
    host: str | None
    port: int
    username: str | None
    password: str | None
    tls_enabled: bool
    cert: str | None
    key: str | None
    ca_cert: str | None
    topic_base: str


@dataclass(frozen=True)
class AssistantConfig:
    hostname: str
    language: str
    mic: MicConfig
    wake: WakeConfig
    capture: CaptureConfig
    nlp: NlpConfig
    redirect: RedirectConfig
    api: ApiConfig
    mqtt: MqttConfig
    stt_endpoint: WyomingEndpoint
    tts_endpoint: WyomingEndpoint | None
    tts_voice: str | None
    audio_player: str | None
    greeting_prompt: str
    one_shot: bool
    log_transcripts: bool

    @property
    def state_topic(self) -> str:
        return f"{self.mqtt.topic_base}/state"

    @property
    def transcript_topic(self) -> str:
        return f"{self.mqtt.topic_base}/transcript"

    @property
    def response_topic(self) -> str:
        return f"{self.mqtt.topic_base}/response"

    @property
    def command_topic(self) -> str:
        return f"{self.mqtt.topic_base}/command"

    @property
    def ptt_topic(self) -> str:
        return f"{self.mqtt.topic_base}/ptt"

    @staticmethod
    def from_env(env: Mapping[str, str] | None = None) -> AssistantConfig:
        source = env if env is not None else os.environ
        hostname = source.get("LARA_HOSTNAME") or socket.gethostname()
        language = source.get("LARA_LANGUAGE", "en")

        mic_command = shlex.split(
            source.get(
                "LARA_MIC_CMD",
                "arecord -q -t raw -f S16_LE -c 1 -r 16000 -",
            )
        )
        mic = MicConfig(
            command=mic_command,
            rate=parse_int(source.get("LARA_MIC_RATE"), 16000),
            width=parse_int(source.get("LARA_MIC_WIDTH"), 2),
            channels=parse_int(source.get("LARA_MIC_CHANNELS"), 1),
            chunk_ms=parse_int(source.get("LARA_MIC_CHUNK_MS"), 30),
        )

        phrases = tuple(phrase.lower() for phrase in split_csv(source.get("LARA_WAKE_PHRASES")))
        wake = WakeConfig(
            phrases=phrases or DEFAULT_WAKE_PHRASES,
            segment_ms=parse_int(source.get("LARA_WAKE_SEGMENT_MS"), 2000),
            no_speech_restart_ms=parse_int(source.get("LARA_WAKE_NO_SPEECH_RESTART_MS"), 500),
            end_restart_ms=parse_int(source.get("LARA_WAKE_END_RESTART_MS"), 500),
            settle_ms=parse_int(source.get("LARA_WAKE_SETTLE_MS"), 500),
            rms_floor=parse_int(source.get("LARA_WAKE_RMS_FLOOR"), 120),
        )

        capture = CaptureConfig(
            record_ms=parse_int(source.get("LARA_RECORD_MS"), 5000),
            backend=_normalize_choice(source.get("LARA_STT_BACKEND"), TRANSCRIPTION_BACKENDS, "wyoming"),  # type: ignore[arg-type]
            language=language,
            openai_model=source.get("LARA_STT_OPENAI_MODEL", "whisper-1"),
            openai_api_key=_strip_or_none(source.get("OPENAI_API_KEY")),
            openai_base_url=source.get("OPENAI_BASE_URL", "https://api.openai.com/v1"),
            timeout=parse_float(source.get("LARA_STT_TIMEOUT_SECONDS"), 30.0),
        )

        provider = _normalize_choice(source.get("LARA_NLP_PROVIDER"), NLP_PROVIDERS, "cohere")
        if provider == "cohere":
            nlp = NlpConfig(
                provider="cohere",
                model=source.get("COHERE_MODEL", "command-r-08-2024"),
                api_key=_strip_or_none(source.get("COHERE_API_KEY")),
                base_url=source.get("COHERE_BASE_URL", "https://api.cohere.com/v2"),
                timeout=parse_float(source.get("LARA_NLP_TIMEOUT_SECONDS"), 3.0),
            )
        else:
            nlp = NlpConfig(
                provider="openai",
                model=source.get("OPENAI_MODEL", "gpt-4o-mini"),
                api_key=_strip_or_none(source.get("OPENAI_API_KEY")),
                base_url=source.get("OPENAI_BASE_URL", "https://api.openai.com/v1"),
                timeout=parse_float(source.get("LARA_NLP_TIMEOUT_SECONDS"), 3.0),
            )

        launcher_raw = _strip_or_none(source.get("LARA_URI_LAUNCHER"))
        platform = _strip_or_none(source.get("LARA_PLATFORM"))
        redirect = RedirectConfig(
            android_timeout_ms=parse_int(source.get("LARA_REDIRECT_ANDROID_TIMEOUT_MS"), 2500),
            default_timeout_ms=parse_int(source.get("LARA_REDIRECT_TIMEOUT_MS"), 2000),
            platform=_normalize_choice(platform, PLATFORMS, "unknown") if platform else None,
            launcher=shlex.split(launcher_raw) if launcher_raw else None,
            poll_interval_ms=parse_int(source.get("LARA_REDIRECT_POLL_MS"), 100),
        )

        api_base = _strip_or_none(source.get("LARA_API_BASE_URL"))
        api = ApiConfig(
            base_url=api_base.rstrip("/") if api_base else None,
            token=_strip_or_none(source.get("LARA_API_TOKEN")),
            user_id=_strip_or_none(source.get("LARA_USER_ID")),
            timeout=parse_float(source.get("LARA_API_TIMEOUT_SECONDS"), 10.0),
            search_limit=parse_int(source.get("LARA_SEARCH_LIMIT"), 5),
        )

        topic_base = source.get("LARA_TOPIC_BASE") or f"lara/{hostname}/assistant"
        mqtt = MqttConfig(
            host=_strip_or_none(source.get("MQTT_HOST")),
            port=parse_int(source.get("MQTT_PORT"), 1883),
            username=_strip_or_none(source.get("MQTT_USER") or source.get("MQTT_USERNAME")),
            password=_strip_or_none(source.get("MQTT_PASS") or source.get("MQTT_PASSWORD")),
            tls_enabled=parse_bool(source.get("MQTT_TLS_ENABLED"), False),
            cert=_strip_or_none(source.get("MQTT_CERT")),
            key=_strip_or_none(source.get("MQTT_KEY")),
            ca_cert=_strip_or_none(source.get("MQTT_CA_CERT")),
            topic_base=topic_base,
        )

        stt_endpoint = WyomingEndpoint(
            host=source.get("WYOMING_WHISPER_HOST", "127.0.0.1"),
            port=parse_int(source.get("WYOMING_WHISPER_PORT"), 10300),
            model=_strip_or_none(source.get("LARA_STT_MODEL")),
        )
        tts_host = source.get("WYOMING_PIPER_HOST", "127.0.0.1")
        tts_endpoint = (
            WyomingEndpoint(host=tts_host, port=parse_int(source.get("WYOMING_PIPER_PORT"), 10200))
            if tts_host.strip()
            else None
        )

        return AssistantConfig(
            hostname=hostname,
            language=language,
            mic=mic,
            wake=wake,
            capture=capture,
            nlp=nlp,
            redirect=redirect,
            api=api,
            mqtt=mqtt,
            stt_endpoint=stt_endpoint,
            tts_endpoint=tts_endpoint,
            tts_voice=_strip_or_none(source.get("LARA_TTS_VOICE")),
            audio_player=_strip_or_none(source.get("LARA_AUDIO_PLAYER")),
            greeting_prompt=source.get("LARA_GREETING_PROMPT", "How can I help you?"),
            one_shot=parse_bool(source.get("LARA_ONE_SHOT"), False),
            log_transcripts=parse_bool(source.get("LARA_LOG_TRANSCRIPTS"), True),
        )
