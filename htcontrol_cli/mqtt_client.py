"""
MQTT client wrapper for one-shot status messages (send mode).

Handles MQTT connection, publishing, and disconnection.
"""

import logging
import threading
from typing import Optional

import paho.mqtt.client as mqtt

from htcontrol_mqtt.schemas import StatusMessage

logger = logging.getLogger(__name__)


class MQTTStatusClient:
    """
    MQTT client that publishes a single status message and disconnects.

    Typical use is reporting a state change the control plane did not cause,
    e.g. somebody switched the TV on with its own remote.
    """

    def __init__(
        self,
        broker: str = "127.0.0.1",
        port: int = 1883,
        username: Optional[str] = None,
        password: Optional[str] = None,
        client_id: str = "HTControl",
        client: Optional[mqtt.Client] = None,
    ):
        """
        Initialize MQTT status client.

        Args:
            broker: MQTT broker host
            port: MQTT broker port
            username: Optional MQTT username
            password: Optional MQTT password
            client_id: MQTT client identifier
            client: Pre-built paho client (tests)
        """
        self.broker = broker
        self.port = port

        self.client = client or mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
        )
        self.client.on_connect = self._on_connect

        if username:
            self.client.username_pw_set(username, password)

        self._connected = threading.Event()

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.error(f"❌ Connection refused by broker ({reason_code})")
        else:
            self._connected.set()

    def send_status(
        self,
        status: StatusMessage,
        qos: int = 0,
        timeout: float = 5.0,
    ) -> None:
        """
        Publish a status message and wait for it to be sent.

        Args:
            status: Topic and payload to publish
            qos: Quality of Service
            timeout: Seconds to wait for the connection and for the publish

        Raises:
            ConnectionError: If unable to connect to MQTT broker
            RuntimeError: If the publish fails or is not acknowledged
        """
        try:
            self.client.connect(self.broker, self.port, keepalive=2)
        except OSError as e:
            raise ConnectionError(
                f"Unable to connect to MQTT broker at {self.broker}:{self.port}: {e}"
            ) from e

        self.client.loop_start()
        try:
            if not self._connected.wait(timeout=timeout):
                raise ConnectionError(
                    f"Unable to connect to MQTT broker at {self.broker}:{self.port} "
                    f"within {timeout}s"
                )

            logger.debug(f"{status.topic} -> {status.payload}")
            info = self.client.publish(status.topic, status.payload, qos=qos, retain=False)
            if info.rc != mqtt.MQTT_ERR_SUCCESS:
                raise RuntimeError(f"Publish error: {mqtt.error_string(info.rc)}")

            try:
                info.wait_for_publish(timeout=timeout)
            except (ValueError, RuntimeError) as e:
                raise RuntimeError(f"Publish error: {e}") from e
            if not info.is_published():
                raise RuntimeError(f"Publish of {status.topic} not acknowledged within {timeout}s")

            logger.info(f"✅ Status sent: {status.topic} -> {status.payload}")

        finally:
            self.client.disconnect()
            self.client.loop_stop()
