"""
HTControl MQTT Schemas
======================

Bounded Context: Data Structures

Immutable, typed data structures for control and status messages.

Public API
----------
    TransportKind: Enum (IR, CEC)
    Action: Enum (POWER_ON, POWER_OFF)
    ControlMessage: Parsed inbound command
    StatusMessage: Outbound device state

Example:
    >>> from htcontrol_mqtt.schemas import StatusMessage, Action
    >>> StatusMessage.for_action("ht/status", "lgtv", Action.POWER_OFF).payload
    'off'
"""

from .messages import TransportKind, Action, ControlMessage, StatusMessage

__all__ = [
    'TransportKind',
    'Action',
    'ControlMessage',
    'StatusMessage',
]
