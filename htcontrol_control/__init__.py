"""
htcontrol_control - Control path for home-theatre devices

Bounded Context: MQTT-driven hardware control
Responsibilities:
  - Device table (IR vs CEC per device)
  - External tool invocation (irsend, cec-client)
  - Inbound message validation and dispatch
  - MQTT connection, subscription and status publishing

Architecture:
  - DeviceRegistry: device id -> TransportKind
  - TransportSender: IRTransport / CECTransport behind one send()
  - CommandDispatcher: on_inbound(topic, payload) -> StatusMessage | None
  - MQTTControlPlane: paho-mqtt client feeding the dispatcher

Design Philosophy:
  - Settings passed explicitly, never looked up globally
  - Dispatcher testable without a broker (feed it topic/payload pairs)
  - Only TransportSender spawns processes
"""

from .registry import DeviceRegistry, DeviceNotFoundError
from .transport import (
    BaseTransport,
    CECTransport,
    IRTransport,
    TransportError,
    TransportResult,
    TransportSender,
)
from .dispatcher import CommandDispatcher, TopicParseError, normalize_action, parse_topic
from .plane import MQTTControlPlane

__all__ = [
    "DeviceRegistry",
    "DeviceNotFoundError",
    "BaseTransport",
    "CECTransport",
    "IRTransport",
    "TransportError",
    "TransportResult",
    "TransportSender",
    "CommandDispatcher",
    "TopicParseError",
    "normalize_action",
    "parse_topic",
    "MQTTControlPlane",
]
