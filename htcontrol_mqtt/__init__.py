"""
HTControl MQTT Package
======================

Bounded Context: Message formats and observability

Shared by the control plane (serve mode) and the CLI (send mode).

Architecture:
- schemas/: Immutable message types and enums
- logging/: Structured JSON logging for the control path

Public API
----------
Schemas:
    TransportKind, Action, ControlMessage, StatusMessage

Logging:
    LogEvent, StructuredLogger, create_logger
"""

from .schemas import TransportKind, Action, ControlMessage, StatusMessage
from .logging import LogEvent, StructuredLogger, create_logger

__all__ = [
    # Schemas
    'TransportKind',
    'Action',
    'ControlMessage',
    'StatusMessage',
    # Logging
    'LogEvent',
    'StructuredLogger',
    'create_logger',
]
