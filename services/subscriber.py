"""MQTT subscription feeding transport messages into ingestion."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Tuple

import paho.mqtt.client as mqtt

from services.ingestion import IngestionService
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

TOPICS: Tuple[str, ...] = ("zigbee/#", "air-quality/#")


def create_mqtt_client(client_id: str = "") -> mqtt.Client:
    return mqtt.Client(
        callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        client_id=client_id,
        protocol=mqtt.MQTTv311,
    )


class MqttSubscriber:
    """Subscribes to the sensor topics and ingests every delivered message.

    Messages are handled one at a time on paho's network thread. A failing
    message is logged with its traceback and does not stop the loop.
    """

    def __init__(
        self,
        ingestion: IngestionService,
        host: str = "localhost",
        port: int = 1883,
        username: Optional[str] = None,
        password: Optional[str] = None,
        tls: bool = False,
        client_id: str = "telemetry-ingest",
        topics: Tuple[str, ...] = TOPICS,
        client_factory: Callable[[str], Any] = create_mqtt_client,
    ) -> None:
        self.ingestion = ingestion
        self.host = host
        self.port = port
        self.topics = topics
        self.client = client_factory(client_id)
        if username:
            self.client.username_pw_set(username, password)
        if tls:
            self.client.tls_set()
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_message = self._on_message

    @classmethod
    def from_settings(
        cls, ingestion: IngestionService, settings: Optional[Settings] = None
    ) -> MqttSubscriber:
        settings = settings or get_settings()
        return cls(
            ingestion,
            host=settings.mqtt_host,
            port=settings.mqtt_port,
            username=settings.mqtt_username,
            password=settings.mqtt_password,
            tls=settings.mqtt_tls,
            client_id=settings.mqtt_client_id,
        )

    def start(self) -> None:
        logger.info("Connecting to MQTT broker %s:%s", self.host, self.port)
        self.client.connect_async(self.host, self.port)
        self.client.loop_start()

    def stop(self) -> None:
        self.client.disconnect()
        self.client.loop_stop()
        logger.info("Disconnected from MQTT broker")

    def _on_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        if reason_code.is_failure:
            logger.error("MQTT connection refused", extra={"reason": str(reason_code)})
            return
        # subscriptions are renewed on every reconnect
        for topic in self.topics:
            client.subscribe(topic)
        logger.info("Subscribed to %s", ", ".join(self.topics))

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None) -> None:
        if reason_code.is_failure:
            logger.warning("Lost MQTT connection", extra={"reason": str(reason_code)})

    def _on_message(self, client, userdata, msg) -> None:
        try:
            self.ingestion.ingest(msg.topic, msg.payload)
        except Exception:
            logger.exception("Failed to ingest message", extra={"topic": msg.topic})
