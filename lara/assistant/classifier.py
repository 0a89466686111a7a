"""Intent classification: NLP chat call first, deterministic rules second."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from lara.utils import race_with_timeout

from .config import NlpConfig
from .fallback_rules import classify_with_rules
from .intents import ClassificationOutcome, Fallback, Intent, IntentKind, Primary, normalize_intent_label

LOGGER = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are the intent parser for a personal assistant called "Lara".
Classify the user's voice command into exactly one of these intents:
- add_task: add an item to the task list ("add task buy groceries")
- show_tasks: open the task list ("show my tasks")
- add_reminder: create a reminder ("remind me to call mom tomorrow at 5 pm")
- show_reminders: open the reminder list ("show my reminders")
- play_music: play a song, artist, genre, language or mood ("play telugu songs")
- navigate: open a section of the app ("go to healthcare")
- greeting: a greeting with no request ("hello lara")
- unknown: anything else

Return STRICT JSON ONLY, no prose, with this structure:
{
  "intent": "<one of the intents above>",
  "entities": {
    "title": "<add_task: the task text>",
    "description": "<add_reminder: what to be reminded about>",
    "time": "<add_reminder: the time phrase exactly as spoken, if any>",
    "query": "<play_music: song, artist, genre or mood; null for a generic request>",
    "page": "<navigate: the requested section>"
  },
  "confidence": <number between 0.0 and 1.0>
}
Omit entities that do not apply."""

_TASK_KEYS = ("title", "task", "taskText", "task_text")
_REMINDER_KEYS = ("description", "reminderText", "reminder_text", "reminder", "text")
_TIME_KEYS = ("time", "datetime", "when")
_MUSIC_KEYS = ("query", "musicQuery", "music_query", "songName", "song", "track")
_MUSIC_MODIFIER_KEYS = ("artist", "artistName", "genre", "mood", "language")
_PAGE_KEYS = ("page", "pageName", "navigationTarget", "target")


class NlpProviderError(RuntimeError):
    """The NLP service answered with something other than chat content."""


def extract_json_object(content: str) -> str | None:
    """Return the first balanced ``{...}`` block in ``content``, ignoring braces inside strings."""
    start = content.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(content)):
            char = content[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return content[start : index + 1]
        start = content.find("{", start + 1)
    return None


def _first_text(sources: tuple[dict[str, Any], ...], keys: tuple[str, ...]) -> str | None:
    for source in sources:
        for key in keys:
            value = source.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None


def parse_primary_response(content: str, source_text: str) -> Intent:
    """Validate an NLP reply and convert it into an :class:`Intent`.

    Raises ``ValueError`` when the reply has no JSON object, no known intent label or a
    non-numeric confidence.
    """
    if not content:
        raise ValueError("Empty NLP response")
    raw = extract_json_object(content)
    if raw is None:
        raise ValueError("NLP response did not contain a JSON object")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Unparsable NLP response: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValueError("NLP response is not an object")
    kind = normalize_intent_label(payload.get("intent"))
    if kind is None:
        raise ValueError(f"Unknown intent label: {payload.get('intent')!r}")
    confidence = payload.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise ValueError(f"Non-numeric confidence: {confidence!r}")
    confidence = max(0.0, min(1.0, float(confidence)))

    nested = payload.get("entities")
    entities_source = nested if isinstance(nested, dict) else {}
    # Top-level "query" echoes the command in some replies, so only nested entities count for music
    sources = (entities_source, payload)
    entities: dict[str, str | None] = {}
    if kind is IntentKind.ADD_TASK:
        entities["title"] = _first_text(sources, _TASK_KEYS)
    elif kind is IntentKind.ADD_REMINDER:
        entities["description"] = _first_text(sources, _REMINDER_KEYS)
        entities["time"] = _first_text(sources, _TIME_KEYS)
    elif kind is IntentKind.PLAY_MUSIC:
        query = _first_text((entities_source,), _MUSIC_KEYS) or _first_text((payload,), _MUSIC_KEYS[1:])
        modifier = _first_text(sources, _MUSIC_MODIFIER_KEYS)
        if query and modifier and modifier.lower() not in query.lower():
            query = f"{query} {modifier}"
        entities["query"] = query or modifier
    elif kind is IntentKind.NAVIGATE:
        entities["page"] = _first_text(sources, _PAGE_KEYS)
    return Intent(kind=kind, entities=entities, confidence=confidence, source_text=source_text)


class NlpProvider:
    """Chat-style NLP backend returning the raw assistant message text."""

    name = "nlp"

    async def complete(self, text: str) -> str:
        raise NotImplementedError

    async def close(self) -> None:
        return None


@dataclass(slots=True)
class _ChatProviderBase(NlpProvider):
    config: NlpConfig
    transport: httpx.AsyncBaseTransport | None = None
    _client: httpx.AsyncClient = field(init=False, repr=False)
    _closed: bool = field(init=False, default=True, repr=False)

    def __post_init__(self) -> None:
        if not self.config.api_key:
            raise ValueError(f"{self.name} API key is not configured")
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }
        self._client = httpx.AsyncClient(
            base_url=self.config.base_url.rstrip("/"),
            headers=headers,
            timeout=max(self.config.timeout, 1.0) + 2.0,
            transport=self.transport,
            trust_env=False,
        )
        self._closed = False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._client.aclose()

    def _messages(self, text: str) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": f"Classify this command: {text}"},
        ]

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        response = await self._client.post(path, json=body)
        if response.status_code >= 400:
            raise NlpProviderError(f"{self.name} error {response.status_code}: {response.text}")
        data = response.json()
        if not isinstance(data, dict):
            raise NlpProviderError(f"{self.name} returned a non-object payload")
        return data


@dataclass(slots=True)
class OpenAIChatProvider(_ChatProviderBase):
    """OpenAI-compatible ``/chat/completions`` backend."""

    name = "openai"

    async def complete(self, text: str) -> str:
        data = await self._post(
            "/chat/completions",
            {
                "model": self.config.model,
                "messages": self._messages(text),
                "temperature": 0.3,
                "max_tokens": 300,
                "response_format": {"type": "json_object"},
            },
        )
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise NlpProviderError("openai reply has no message content") from exc
        if not isinstance(content, str):
            raise NlpProviderError("openai message content is not text")
        return content


@dataclass(slots=True)
class CohereChatProvider(_ChatProviderBase):
    """Cohere v2 ``/chat`` backend."""

    name = "cohere"

    async def complete(self, text: str) -> str:
        data = await self._post(
            "/chat",
            {
                "model": self.config.model,
                "messages": self._messages(text),
                "temperature": 0.3,
                "response_format": {"type": "json_object"},
            },
        )
        try:
            parts = data["message"]["content"]
        except (KeyError, TypeError) as exc:
            raise NlpProviderError("cohere reply has no message content") from exc
        if isinstance(parts, str):
            return parts
        texts = [
            part.get("text", "") for part in parts if isinstance(part, dict) and part.get("type", "text") == "text"
        ]
        if not texts:
            raise NlpProviderError("cohere reply has no text content")
        return "".join(texts)


def build_nlp_provider(
    config: NlpConfig,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    logger: logging.Logger | None = None,
) -> NlpProvider | None:
    log = logger or LOGGER
    if not config.api_key:
        log.info("[classifier] No %s API key configured; using rule-based classification only", config.provider)
        return None
    if config.provider == "cohere":
        return CohereChatProvider(config, transport=transport)
    return OpenAIChatProvider(config, transport=transport)


class IntentClassifier:
    """Classify transcripts into intents without ever raising."""

    def __init__(
        self,
        provider: NlpProvider | None,
        *,
        timeout: float = 3.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self.provider = provider
        self.timeout = timeout
        self.logger = logger or LOGGER

    async def classify(self, text: str | None) -> Intent:
        outcome = await self.classify_outcome(text)
        return outcome.intent

    async def classify_outcome(self, text: str | None) -> ClassificationOutcome:
        cleaned = (text or "").strip()
        if not cleaned:
            return self._fallback(cleaned, "empty text")
        if self.provider is None:
            return self._fallback(cleaned, "no NLP provider configured")
        try:
            content = await race_with_timeout(self.provider.complete(cleaned), self.timeout)
            intent = parse_primary_response(content, cleaned)
        except TimeoutError:
            return self._fallback(cleaned, f"NLP request timed out after {self.timeout:.1f}s")
        except (httpx.HTTPError, NlpProviderError, ValueError) as exc:
            return self._fallback(cleaned, str(exc) or exc.__class__.__name__)
        except Exception as exc:  # noqa: BLE001
            self.logger.exception("[classifier] Unexpected NLP failure")
            return self._fallback(cleaned, f"unexpected error: {exc}")
        self.logger.debug(
            "[classifier] %s intent=%s confidence=%.2f", self.provider.name, intent.kind.value, intent.confidence
        )
        return Primary(intent)

    def _fallback(self, text: str, reason: str) -> Fallback:
        intent = classify_with_rules(text)
        self.logger.info(
            "[classifier] Falling back to rules (%s): intent=%s confidence=%.2f",
            reason,
            intent.kind.value,
            intent.confidence,
        )
        return Fallback(intent, reason)

    async def close(self) -> None:
        if self.provider is not None:
            await self.provider.close()
