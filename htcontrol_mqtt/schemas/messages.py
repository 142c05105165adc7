"""
Control and Status Message Schemas
==================================

Bounded Context: Data Structures

Immutable message types exchanged over the bus, plus the enums that
describe what a device understands.

Design Principles:
- Immutability: frozen=True prevents accidental mutation
- Validation: Constructor validates invariants
- Serialization: to_dict() for logging metadata

Types:
- TransportKind: Physical signalling used by a device (IR, CEC)
- Action: Canonical power action sent to the transport tools
- ControlMessage: Parsed inbound command
- StatusMessage: Outbound device state report
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Dict


class TransportKind(str, Enum):
    """Physical signalling technology used to command a device."""
    IR = "ir"
    CEC = "cec"


class Action(str, Enum):
    """
    Canonical power action.

    The values are the tokens the transport tools expect (LIRC button
    names, and the keys of the CEC directive table).
    """
    POWER_ON = "poweron"
    POWER_OFF = "poweroff"

    @property
    def state(self) -> str:
        """Device state reported on the status topic ("on" / "off")."""
        return self.value.replace("power", "", 1)


@dataclass(frozen=True)
class ControlMessage:
    """
    Parsed inbound control message.

    Attributes:
        topic: Topic the message arrived on (e.g. "ht/control/sonytv")
        payload: Raw payload text as received
        device_id: Device segment of the topic
        action: Normalized action

    Invariants:
        - device_id is non-empty
    """
    topic: str
    payload: str
    device_id: str
    action: Action

    def __post_init__(self):
        if not self.device_id:
            raise ValueError(f"ControlMessage needs a device id, topic={self.topic!r}")

    def to_dict(self) -> Dict[str, str]:
        return {
            'topic': self.topic,
            'payload': self.payload,
            'device': self.device_id,
            'action': self.action.value,
        }


@dataclass(frozen=True)
class StatusMessage:
    """
    Outbound device state report.

    Attributes:
        topic: "{status_topic}/{device_id}"
        payload: Device state ("on" / "off", or any string in send mode)

    Example:
        >>> StatusMessage.for_action("ht/status", "sonytv", Action.POWER_ON)
        StatusMessage(topic='ht/status/sonytv', payload='on')
    """
    topic: str
    payload: str

    def __post_init__(self):
        if not self.topic:
            raise ValueError("StatusMessage topic cannot be empty")

    @classmethod
    def for_device(cls, status_topic: str, device_id: str, payload: str) -> 'StatusMessage':
        return cls(topic=f"{status_topic}/{device_id}", payload=payload)

    @classmethod
    def for_action(cls, status_topic: str, device_id: str, action: Action) -> 'StatusMessage':
        return cls.for_device(status_topic, device_id, action.state)

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)
