"""
Structured JSON Logger
=====================

Bounded Context: Observability Infrastructure

Structured logger that emits one JSON document per control-path event.

Design:
- JSON message body (parseable by log aggregators and by tests)
- Thread-safe (uses standard logging module)
- Contextual metadata (topic, payload, device, command line)
- Type-safe events (LogEvent enum)

Example:
    >>> logger = StructuredLogger(component="dispatcher")
    >>> logger.warning(
    ...     event=LogEvent.DEVICE_LOOKUP_ERROR,
    ...     message="Unknown device",
    ...     metadata={'topic': 'ht/control/unknown', 'device': 'unknown'}
    ... )

Output:
    {
        "timestamp": "2026-10-19T15:30:45.123456+00:00",
        "level": "WARNING",
        "component": "dispatcher",
        "event": "error.device_lookup",
        "message": "Unknown device",
        "metadata": {"topic": "ht/control/unknown", "device": "unknown"}
    }
"""

import json
import logging
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from .events import LogEvent


class StructuredLogger:
    """
    JSON structured logger for the control path.

    Wraps Python's logging module with structured metadata support.

    Attributes:
        component: Component name (e.g., "dispatcher", "transport")
        logger: Underlying Python logger instance

    Thread Safety:
        Thread-safe via Python's logging module.
    """

    def __init__(
        self,
        component: str,
        level: Optional[int] = None,
        logger_name: Optional[str] = None
    ):
        """
        Initialize structured logger.

        Args:
            component: Component identifier (e.g., "dispatcher")
            level: Logging level (default: inherit from the root logger)
            logger_name: Custom logger name (default: htcontrol.<component>)
        """
        self.component = component
        self.logger_name = logger_name or f"htcontrol.{component}"
        self.logger = logging.getLogger(self.logger_name)
        if level is not None:
            self.logger.setLevel(level)

        # Standalone use (no logging.basicConfig): print JSON lines ourselves
        if not self.logger.handlers and not logging.getLogger().handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(JSONFormatter())
            self.logger.addHandler(handler)

    def _log(
        self,
        level: str,
        event: LogEvent,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        exc_info: Optional[BaseException] = None
    ) -> None:
        """
        Internal log method with structured format.

        Args:
            level: Log level (DEBUG, INFO, WARNING, ERROR)
            event: Typed log event
            message: Human-readable message
            metadata: Additional context (topic, device, command, ...)
            exc_info: Exception for ERROR logs
        """
        log_level = getattr(logging, level)
        if not self.logger.isEnabledFor(log_level):
            return

        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': level,
            'component': self.component,
            'event': event.value,
            'message': message,
        }

        if metadata:
            log_entry['metadata'] = metadata

        if exc_info:
            log_entry['exception'] = {
                'type': type(exc_info).__name__,
                'message': str(exc_info)
            }

        self.logger.log(
            log_level,
            json.dumps(log_entry, default=str),
            exc_info=exc_info if level == 'ERROR' else None
        )

    def debug(
        self,
        event: LogEvent,
        message: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log DEBUG level message."""
        self._log('DEBUG', event, message, metadata)

    def info(
        self,
        event: LogEvent,
        message: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Log INFO level message.

        Example:
            >>> logger.info(
            ...     event=LogEvent.TRANSPORT_SENT,
            ...     message="IR command sent",
            ...     metadata={'device': 'sonytv', 'action': 'poweron'}
            ... )
        """
        self._log('INFO', event, message, metadata)

    def warning(
        self,
        event: LogEvent,
        message: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log WARNING level message."""
        self._log('WARNING', event, message, metadata)

    def error(
        self,
        event: LogEvent,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        exc_info: Optional[BaseException] = None
    ) -> None:
        """
        Log ERROR level message.

        Args:
            event: Typed log event
            message: Human-readable message
            metadata: Additional context
            exc_info: Exception instance for traceback

        Example:
            >>> try:
            ...     subprocess.Popen(command)
            ... except OSError as e:
            ...     logger.error(
            ...         event=LogEvent.TRANSPORT_FAILED,
            ...         message="Failed to start irsend",
            ...         exc_info=e,
            ...         metadata={'command': command}
            ...     )
        """
        self._log('ERROR', event, message, metadata, exc_info)


class JSONFormatter(logging.Formatter):
    """
    Formatter used when no application logging is configured.

    The message from StructuredLogger is already JSON, pass it through.
    """

    def format(self, record: logging.LogRecord) -> str:
        return record.getMessage()


def create_logger(
    component: str,
    level: Optional[int] = None
) -> StructuredLogger:
    """
    Factory function to create configured StructuredLogger.

    Example:
        >>> logger = create_logger("dispatcher", level=logging.DEBUG)
    """
    return StructuredLogger(component=component, level=level)
