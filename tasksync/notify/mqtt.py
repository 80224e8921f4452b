"""Deliver notifications as JSON messages over MQTT."""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any

import paho.mqtt.client as mqtt

from ..config import MQTTConfig
from .base import NotificationKind, Notifier

logger = logging.getLogger(__name__)


class MQTTNotifier(Notifier):
    """Publishes each event to ``{topic_prefix}/{kind}``.

    Subscribers (a phone app, a desktop toast daemon) decide how to show it.
    When the broker is unreachable the event is logged instead.
    """

    def __init__(self, config: MQTTConfig, client: mqtt.Client | None = None):
        self.config = config

        # Paho MQTT client
        self._client = client or mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self._client.on_connect = self._handle_connect
        self._client.on_disconnect = self._handle_disconnect

        # Connection state
        self._connected = False
        self._connect_attempted = False

    def _handle_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        """Handle connection to broker."""
        if reason_code == 0:
            self._connected = True
            logger.info(f"Connected to MQTT broker at {self.config.broker}:{self.config.port}")
        else:
            logger.error(f"Failed to connect to MQTT broker: {reason_code}")

    def _handle_disconnect(
        self,
        client: mqtt.Client,
        userdata: Any,
        disconnect_flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        """Handle disconnection from broker."""
        self._connected = False
        logger.warning(f"Disconnected from MQTT broker: {reason_code}")

    async def connect(self) -> bool:
        """Connect to the MQTT broker.

        Returns:
            True if connection successful.
        """
        self._connect_attempted = True

        if self.config.username and self.config.password:
            self._client.username_pw_set(self.config.username, self.config.password)

        try:
            self._client.connect(self.config.broker, self.config.port, keepalive=60)
            self._client.loop_start()

            # Wait for connection
            for _ in range(50):  # 5 second timeout
                if self._connected:
                    return True
                await asyncio.sleep(0.1)

            logger.error("Timeout waiting for MQTT connection")
            return False

        except OSError as e:
            logger.error(f"Failed to connect to MQTT broker: {e}")
            return False

    async def close(self) -> None:
        """Disconnect from the MQTT broker."""
        if self._connect_attempted:
            self._client.loop_stop()
            self._client.disconnect()
        self._connected = False

    @property
    def is_connected(self) -> bool:
        """Check if connected to broker."""
        return self._connected

    async def notify(self, kind: NotificationKind, message: str) -> None:
        if not self._connected and not self._connect_attempted:
            await self.connect()

        if not self._connected:
            logger.info(f"[{kind.value}] {message} (MQTT unavailable)")
            return

        payload = json.dumps(
            {
                "kind": kind.value,
                "message": message,
                "timestamp": datetime.now().isoformat(),
            }
        )
        topic = f"{self.config.topic_prefix}/{kind.value}"
        result = self._client.publish(topic, payload)
        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.warning(f"Failed to publish {kind.value} notification: rc={result.rc}")
