"""
Structured Logging for HTControl
================================

Bounded Context: Observability

JSON-structured logging for the per-message control path (dispatcher and
IR/CEC transports). Connection lifecycle messages use plain module loggers.

Public API
----------
    LogEvent: Typed event names (enum)
    StructuredLogger: JSON logger implementation
    create_logger: Factory function

Example:
    >>> from htcontrol_mqtt.logging import create_logger, LogEvent
    >>> logger = create_logger("dispatcher")
    >>> logger.info(
    ...     event=LogEvent.STATUS_EMITTED,
    ...     message="Status ready",
    ...     metadata={'topic': 'ht/status/sonytv', 'payload': 'on'}
    ... )
"""

from .events import LogEvent
from .structured import StructuredLogger, create_logger

__all__ = [
    'LogEvent',
    'StructuredLogger',
    'create_logger',
]
