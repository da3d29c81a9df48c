"""MQTT broadcaster and change feed for fuel queue events."""

import logging
from typing import Any

import paho.mqtt.client as mqtt
from pydantic import ValidationError

from .events import ChangeEvent, EventBus

logger = logging.getLogger(__name__)


class MQTTBroadcaster:
    """MQTT publisher for queue change events and station snapshots."""

    def __init__(self, broker: str, port: int):
        self.broker = broker
        self.port = port
        self.client: mqtt.Client | None = None
        self.connected = False

    def connect(self) -> bool:
        try:
            self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
            self.client.on_connect = self._on_connect
            self.client.connect(self.broker, self.port, keepalive=60)
            self.client.loop_start()
            self.connected = True
            return True
        except Exception as e:
            logger.warning(f"Failed to connect to MQTT broker: {e}")
            return False

    def disconnect(self):
        if self.client:
            self.client.loop_stop()
            self.client.disconnect()
            self.connected = False

    def publish_event(self, topic: str, payload: str) -> bool:
        if not self.connected or not self.client:
            return False
        try:
            result = self.client.publish(topic, payload, qos=1)
            return result.rc == mqtt.MQTT_ERR_SUCCESS
        except Exception as e:
            logger.error(f"Error publishing event: {e}")
            return False

    def publish_retained(self, topic: str, payload: str, qos: int = 1) -> bool:
        """Publish a retained MQTT message."""
        if not self.connected or not self.client:
            return False
        try:
            result = self.client.publish(topic, payload, qos=qos, retain=True)
            return result.rc == mqtt.MQTT_ERR_SUCCESS
        except Exception as e:
            logger.error(f"Error publishing retained message: {e}")
            return False

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        self.connected = not reason_code.is_failure


class NoOpBroadcaster:
    """No-operation broadcaster for testing or when MQTT disabled."""
    def connect(self) -> bool:
        return True
    def disconnect(self):
        pass
    def publish_event(self, topic: str, payload: str) -> bool:
        return True
    def publish_retained(self, topic: str, payload: str, qos: int = 1) -> bool:
        return True


class MQTTChangeFeed:
    """Subscribe to queue change events on the broker and replay them locally.

    Remote dashboards attach their handlers to ``bus`` exactly as in-process
    consumers do.
    """

    def __init__(self, broker: str, port: int, topic: str, bus: EventBus):
        self.broker = broker
        self.port = port
        self.topic = topic
        self.bus = bus
        self.client: mqtt.Client | None = None
        self.connected = False

    @property
    def subscription_topic(self) -> str:
        return f"{self.topic}/#"

    def connect(self) -> bool:
        try:
            self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
            self.client.on_connect = self._on_connect
            self.client.on_message = self._on_message
            self.client.connect(self.broker, self.port, keepalive=60)
            self.client.loop_start()
            return True
        except Exception as e:
            logger.warning(f"Failed to connect change feed to MQTT broker: {e}")
            return False

    def disconnect(self):
        if self.client:
            self.client.loop_stop()
            self.client.disconnect()
            self.connected = False

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        self.connected = not reason_code.is_failure
        if self.connected:
            client.subscribe(self.subscription_topic, qos=1)

    def _on_message(self, client, userdata: Any, msg: mqtt.MQTTMessage) -> None:
        try:
            event = ChangeEvent.model_validate_json(msg.payload)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed change event on {msg.topic}: {e}")
            return
        _ = self.bus.publish(event)
