"""
MQTTControlPlane - MQTT side of serve mode

Bounded Context: MQTT connection management + command reception
Responsibilities:
  - MQTT connection lifecycle (connect, disconnect)
  - Subscription to the control topic (re-done on every reconnect)
  - Hand inbound messages to CommandDispatcher
  - Publish the resulting StatusMessage and wait for completion

QoS Policy:
  - Subscribe and publish with the configured QoS (default 0)
  - Status is not retained (device state is forwarded, not stored)

Threading:
  - MQTT client runs its own network thread (loop_start/loop_stop)
  - _on_message runs in the MQTT thread and only starts a worker thread
  - Each worker runs one dispatch (which may block on an external tool)
    followed by the status publish, so a slow tool never stalls the
    network loop and a publish can be awaited safely
  - disconnect() gives in-flight workers SHUTDOWN_GRACE seconds to finish
"""

import logging
import threading
import time
from threading import Event
from typing import Optional

import paho.mqtt.client as mqtt

from htcontrol_config import Settings
from htcontrol_mqtt.schemas import StatusMessage

from .dispatcher import CommandDispatcher

logger = logging.getLogger(__name__)

# Seconds disconnect() waits for in-flight dispatches to publish their status
SHUTDOWN_GRACE = 2.0


class MQTTControlPlane:
    """
    MQTT Control Plane for receiving commands and publishing status.

    Example:
        control_plane = MQTTControlPlane(settings, dispatcher)

        if control_plane.connect(timeout=5.0):
            control_plane.wait()       # until stop() is called

        control_plane.disconnect()
    """

    def __init__(
        self,
        settings: Settings,
        dispatcher: CommandDispatcher,
        client: Optional[mqtt.Client] = None,
    ):
        """
        Initialize MQTT Control Plane.

        Args:
            settings: Effective settings (broker, credentials, topics, QoS)
            dispatcher: Handles each inbound message
            client: Pre-built paho client (tests); built from settings if None
        """
        self.settings = settings
        self.dispatcher = dispatcher
        self.broker_host = settings.broker_host
        self.broker_port = settings.broker_port
        self.subscribe_topic = settings.subscribe_topic
        self.qos = settings.qos
        self.publish_timeout = settings.publish_timeout
        self.client_id = settings.get("client_id", "HTControl")

        # MQTT client
        self.client = client or mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            protocol=mqtt.MQTTv311,
        )
        self.client.on_connect = self._on_connect
        self.client.on_message = self._on_message
        self.client.on_disconnect = self._on_disconnect

        # Authentication
        if settings.username:
            self.client.username_pw_set(settings.username, settings.password)

        # Connection synchronization
        self._connected = Event()
        self._stopped = Event()
        self._running = False

        # In-flight dispatch workers
        self._workers = set()
        self._workers_lock = threading.Lock()

    def connect(self, timeout: float = 5.0) -> bool:
        """
        Connect to MQTT broker with timeout.

        Returns:
            True if connected successfully, False otherwise

        Thread Safety: Blocks until connected or timeout
        """
        try:
            logger.info(f"🔌 Connecting to MQTT broker: {self.broker_host}:{self.broker_port}")
            self.client.connect(self.broker_host, self.broker_port, keepalive=60)
            self.client.loop_start()
            self._running = True

            if self._connected.wait(timeout=timeout):
                logger.info(f"✅ Connected to server {self.broker_host}:{self.broker_port}")
                return True
            else:
                logger.error(f"❌ Connection timeout after {timeout}s")
                return False

        except (OSError, ValueError) as e:
            logger.error(f"❌ Connection error: {e}")
            return False

    def disconnect(self, grace: float = SHUTDOWN_GRACE) -> None:
        """
        Disconnect from MQTT broker.

        Waits up to grace seconds for running dispatches so their status can
        still be published; workers still busy after that are abandoned.

        Thread Safety: Safe to call multiple times
        """
        if self._running:
            self.drain(grace)
            logger.info("🔌 Disconnecting from MQTT broker")
            self.client.disconnect()
            self.client.loop_stop()
            self._running = False
            self._connected.clear()
            logger.info("✅ MQTT Control Plane disconnected")

    def drain(self, timeout: float) -> int:
        """
        Wait for in-flight dispatch workers.

        Returns:
            Number of workers still running after timeout
        """
        deadline = time.monotonic() + max(timeout, 0.0)
        with self._workers_lock:
            workers = list(self._workers)

        for worker in workers:
            worker.join(timeout=max(deadline - time.monotonic(), 0.0))

        pending = [worker.name for worker in workers if worker.is_alive()]
        if pending:
            logger.warning(
                f"⚠️ {len(pending)} dispatch(es) still running after {timeout}s, "
                f"their status will not be published: {', '.join(pending)}"
            )
        return len(pending)

    def is_connected(self) -> bool:
        return self._connected.is_set()

    def stop(self) -> None:
        """Release wait(). Safe to call from a signal handler."""
        self._stopped.set()

    def wait(self, poll_interval: float = 1.0) -> None:
        """Block until stop() is called."""
        while not self._stopped.wait(timeout=poll_interval):
            pass

    def publish_status(self, status: StatusMessage) -> bool:
        """
        Publish a status message and wait until paho reports it sent.

        Returns:
            True if the publish completed within publish_timeout

        Thread Safety: Safe from worker threads, NOT from MQTT callbacks
        (the network thread would never get to send the message)
        """
        try:
            info = self.client.publish(status.topic, status.payload, qos=self.qos, retain=False)
            if info.rc != mqtt.MQTT_ERR_SUCCESS:
                logger.error(
                    f"❌ Publish error: {status.topic} -> {status.payload} "
                    f"({mqtt.error_string(info.rc)})"
                )
                return False

            info.wait_for_publish(timeout=self.publish_timeout)
            if not info.is_published():
                logger.error(
                    f"❌ Publish of {status.topic} -> {status.payload} not acknowledged "
                    f"within {self.publish_timeout}s"
                )
                return False

        except (ValueError, RuntimeError) as e:
            logger.error(f"❌ Publish error: {status.topic} -> {status.payload} ({e})")
            return False

        logger.info(f"📤 {status.topic}: {status.payload}")
        return True

    def handle_message(self, topic: str, payload: bytes) -> None:
        """
        Dispatch one inbound message and publish its status, if any.

        Runs in a worker thread. Errors are logged, never raised, so one
        bad message cannot take the service down.
        """
        try:
            status = self.dispatcher.on_inbound(topic, payload)
            if status is not None:
                self.publish_status(status)
        except Exception as e:
            logger.error(f"❌ Error processing message on {topic}: {e}", exc_info=True)
        finally:
            with self._workers_lock:
                self._workers.discard(threading.current_thread())

    # ===== MQTT Callbacks (run in MQTT thread) =====

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.error(f"❌ Connection failed ({reason_code})")
            self._connected.clear()
            return

        logger.info(f"✅ Connected to broker ({reason_code})")

        result, _ = client.subscribe(self.subscribe_topic, qos=self.qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            logger.error(f"❌ Subscribe error: {mqtt.error_string(result)}")
        else:
            logger.info(f"📥 Subscribed to {self.subscribe_topic} (QoS {self.qos})")

        self._connected.set()

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.warning(f"⚠️ Unexpected disconnection ({reason_code})")
        else:
            logger.info("✅ Disconnected from broker")
        self._connected.clear()

    def _on_message(self, client, userdata, msg):
        logger.debug(f"📦 {msg.topic}: {msg.payload!r}")
        worker = threading.Thread(
            target=self.handle_message,
            args=(msg.topic, msg.payload),
            name=f"dispatch-{msg.topic}",
            daemon=True,
        )
        with self._workers_lock:
            self._workers.add(worker)
        worker.start()
