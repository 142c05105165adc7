"""
CommandDispatcher - Control message to hardware action
======================================================

Bounded Context: Command dispatch
Responsibilities:
  - Parse the device identifier out of an inbound control topic
  - Normalize the payload to a canonical Action (or ignore it)
  - Resolve the device's transport kind
  - Run the transport and build the StatusMessage to publish

Pipeline per message:
    topic, payload
        → parse_topic()          (TopicParseError → logged, dropped)
        → normalize_action()     (unknown payload → debug log, dropped)
        → registry.lookup()      (DeviceNotFoundError → logged, dropped)
        → sender.send()          (failure → no status published)
        → StatusMessage          ("{status_topic}/{device}", "on"/"off")

Threading:
    Stateless apart from immutable collaborators. The control plane may call
    on_inbound() from several worker threads at once.
"""

from typing import Optional, Protocol, Union

from htcontrol_config import Settings
from htcontrol_mqtt.logging import LogEvent, StructuredLogger, create_logger
from htcontrol_mqtt.schemas import Action, ControlMessage, StatusMessage, TransportKind

from .registry import DeviceNotFoundError, DeviceRegistry
from .transport import TransportResult

# Inbound vocabulary: both the short and the tool-style tokens are accepted
ACTION_TOKENS = {
    "on": Action.POWER_ON,
    "off": Action.POWER_OFF,
    "poweron": Action.POWER_ON,
    "poweroff": Action.POWER_OFF,
}


class TopicParseError(ValueError):
    """Raised when an inbound topic does not match {control_topic}/{device}"""
    pass


class Sender(Protocol):
    """Anything with TransportSender's send() signature (tests use fakes)."""

    def send(self, kind: TransportKind, device_id: str, action: Action) -> TransportResult:
        ...


def parse_topic(topic: str, control_topic: str) -> str:
    """
    Extract the device identifier from a control topic.

    The device is the segment right after the control prefix, so with the
    default prefix "ht/control" the topic "ht/control/sonytv" yields
    "sonytv". Deeper segments (possible with a "#" subscription) are ignored.

    Raises:
        TopicParseError: Wrong prefix, too few segments or empty device
    """
    # Split the prefix exactly like the topic so a leading "/" stays a segment
    prefix = control_topic.rstrip("/").split("/")
    parts = topic.split("/")

    if len(parts) <= len(prefix):
        raise TopicParseError(
            f"Topic '{topic}' has too few segments, expected {control_topic}/<device>"
        )
    if parts[:len(prefix)] != prefix:
        raise TopicParseError(f"Topic '{topic}' is not under {control_topic}")

    device_id = parts[len(prefix)]
    if not device_id:
        raise TopicParseError(f"Topic '{topic}' has an empty device segment")
    return device_id


def normalize_action(payload: Union[str, bytes]) -> Optional[Action]:
    """
    Map a payload to a canonical Action.

    Returns:
        The Action, or None when the payload is not a recognized token
    """
    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError:
            return None
    return ACTION_TOKENS.get(payload.strip().lower())


class CommandDispatcher:
    """
    Turns (topic, payload) pairs into hardware actions and status messages.

    Example:
        dispatcher = CommandDispatcher(
            settings=settings,
            registry=DeviceRegistry.from_settings(settings),
            sender=TransportSender.from_settings(settings),
        )

        status = dispatcher.on_inbound("ht/control/sonytv", b"on")
        if status:
            control_plane.publish_status(status)
    """

    def __init__(
        self,
        settings: Settings,
        registry: DeviceRegistry,
        sender: Sender,
        logger: Optional[StructuredLogger] = None,
    ):
        self.registry = registry
        self.sender = sender
        self.control_topic = settings.control_topic
        self.status_topic = settings.status_topic
        self.logger = logger or create_logger("dispatcher")

    def parse(self, topic: str, payload: Union[str, bytes]) -> Optional[ControlMessage]:
        """
        Validate an inbound message without side effects.

        Returns:
            ControlMessage, or None if the message should be dropped
        """
        text = payload.decode("utf-8", errors="replace") if isinstance(payload, bytes) else payload
        metadata = {'topic': topic, 'payload': text}

        try:
            device_id = parse_topic(topic, self.control_topic)
        except TopicParseError as e:
            self.logger.warning(
                event=LogEvent.TOPIC_PARSE_ERROR,
                message=str(e),
                metadata=metadata,
            )
            return None

        action = normalize_action(payload)
        if action is None:
            self.logger.debug(
                event=LogEvent.COMMAND_IGNORED,
                message="Payload is not a power action, ignoring",
                metadata={**metadata, 'device': device_id},
            )
            return None

        return ControlMessage(topic=topic, payload=text, device_id=device_id, action=action)

    def on_inbound(self, topic: str, payload: Union[str, bytes]) -> Optional[StatusMessage]:
        """
        Handle one inbound control message.

        Args:
            topic: Topic the message arrived on
            payload: Raw payload (bytes from MQTT, or str)

        Returns:
            StatusMessage to publish, or None when nothing should be published
        """
        message = self.parse(topic, payload)
        if message is None:
            return None

        metadata = message.to_dict()

        try:
            kind = self.registry.lookup(message.device_id)
        except DeviceNotFoundError as e:
            self.logger.warning(
                event=LogEvent.DEVICE_LOOKUP_ERROR,
                message=str(e),
                metadata=metadata,
            )
            return None

        self.logger.info(
            event=LogEvent.COMMAND_RECEIVED,
            message=f"{message.action.value} -> {message.device_id} ({kind.value})",
            metadata={**metadata, 'transport': kind.value},
        )

        result = self.sender.send(kind, message.device_id, message.action)
        if not result.ok:
            self.logger.warning(
                event=LogEvent.COMMAND_DROPPED,
                message="Transport failed, no status published",
                metadata={**metadata, **result.to_dict()},
            )
            return None

        status = StatusMessage.for_action(self.status_topic, message.device_id, message.action)
        self.logger.debug(
            event=LogEvent.STATUS_EMITTED,
            message="Status ready for publication",
            metadata=status.to_dict(),
        )
        return status
