"""MQTT telemetry for voice command runs.

The publisher keeps no run state of its own: the orchestrator passes stage names,
transcripts, replies and finished run metrics in, and the publisher maps them onto
topics under the configured base.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from .config import AssistantConfig
from .mqtt import AssistantMqtt

LOGGER = logging.getLogger(__name__)


class AssistantMqttPublisher:
    """Publish assistant stage, transcript and response updates."""

    def __init__(self, mqtt: AssistantMqtt, config: AssistantConfig, logger: logging.Logger | None = None) -> None:
        self.mqtt = mqtt
        self.config = config
        self.logger = logger or LOGGER

        base_topic = config.mqtt.topic_base
        self.in_progress_topic = f"{base_topic}/in_progress"
        self.metrics_topic = f"{base_topic}/metrics"
        self.stage_topic = f"{base_topic}/stage"
        self.intent_topic = f"{base_topic}/intent"
        self.error_topic = f"{base_topic}/error"
        self.navigate_topic = f"{base_topic}/navigate"

    def publish_message(self, topic: str, payload: str, *, retain: bool = False) -> None:
        self.mqtt.publish(topic, payload=payload, retain=retain)

    def publish_state(self, state: str, extra: dict[str, Any] | None = None) -> None:
        payload: dict[str, Any] = {"state": state}
        if extra:
            payload.update(extra)
        payload["device"] = self.config.hostname
        self.publish_message(self.config.state_topic, json.dumps(payload))

    def publish_stage(self, stage: str, extra: dict[str, Any] | None = None) -> None:
        """Publish a run stage (listening, thinking, speaking, idle, error)."""
        in_progress = stage not in {"idle", "error"}
        self.publish_message(self.in_progress_topic, "ON" if in_progress else "OFF", retain=True)
        self.publish_state(stage, extra)
        self.publish_message(self.stage_topic, stage, retain=True)

    def publish_metrics(self, metrics: dict[str, Any]) -> None:
        self.publish_message(self.metrics_topic, json.dumps(metrics))

    def publish_transcript(self, text: str, source: str) -> None:
        if not self.config.log_transcripts:
            return
        self.publish_message(self.config.transcript_topic, json.dumps({"text": text, "source": source}))

    def publish_intent(self, kind: str, confidence: float, classifier: str, entities: dict[str, Any]) -> None:
        payload = {"intent": kind, "confidence": round(confidence, 3), "classifier": classifier, "entities": entities}
        self.publish_message(self.intent_topic, json.dumps(payload))

    def publish_response(self, text: str, *, success: bool, effects: tuple[str, ...] = ()) -> None:
        payload = {"text": text, "success": success, "effects": list(effects)}
        self.publish_message(self.config.response_topic, json.dumps(payload))

    def publish_navigation(self, path: str) -> None:
        self.publish_message(self.navigate_topic, json.dumps({"path": path}))

    def publish_error(self, reason: str, message: str) -> None:
        self.publish_message(self.error_topic, json.dumps({"reason": reason, "message": message}), retain=True)
