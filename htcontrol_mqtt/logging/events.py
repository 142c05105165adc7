"""
Structured Log Event Types
==========================

Bounded Context: Observability Event Taxonomy

Typed event names for structured logging of the control path.

Event Naming Convention:
    <component>.<category>.<action>

    component: command, transport, status, error
    category: received, ignored, dropped, sent

Example Log Query (CloudWatch Insights):
    fields @timestamp, event, metadata.device
    | filter event = "transport.failed"
    | stats count() by metadata.device
"""

from enum import Enum


class LogEvent(str, Enum):
    """
    Typed log event names for structured logging.

    Categories:
    - command.*: Inbound control messages
    - transport.*: IR / CEC tool invocations
    - status.*: Outbound status messages
    - error.*: Rejected messages
    """

    # ========== Command Events ==========
    COMMAND_RECEIVED = "command.received"
    """Control message accepted for dispatch."""

    COMMAND_IGNORED = "command.ignored"
    """Payload outside the action vocabulary (common, harmless)."""

    COMMAND_DROPPED = "command.dropped"
    """Transport failed, status suppressed."""

    # ========== Transport Events ==========
    TRANSPORT_SENT = "transport.sent"
    """External tool exited with status zero."""

    TRANSPORT_FAILED = "transport.failed"
    """External tool could not start, exited non-zero or timed out."""

    # ========== Status Events ==========
    STATUS_EMITTED = "status.emitted"
    """Status message produced for publication."""

    # ========== Error Events ==========
    TOPIC_PARSE_ERROR = "error.topic_parse"
    """Inbound topic did not match the control topic layout."""

    DEVICE_LOOKUP_ERROR = "error.device_lookup"
    """Inbound topic addressed an unregistered device."""

