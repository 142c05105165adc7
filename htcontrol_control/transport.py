"""
Transport senders - IR and CEC hardware control
===============================================

Bounded Context: External tool invocation

This module is the only place in HTControl that spawns processes. Each call
runs one external tool to completion and reports a TransportResult; nothing
is retried.

Architecture:
    BaseTransport (abstract)
        ↓
    IRTransport   (LIRC:  irsend send_once <device> <action>)
    CECTransport  (libcec: cec-client, one directive written to stdin)

    TransportSender: picks the backend for a TransportKind

Threading:
    Backends hold no mutable state. Concurrent sends each spawn their own
    child process; commands to the same device are not serialized.
"""

import shlex
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from htcontrol_config import Settings
from htcontrol_mqtt.logging import LogEvent, StructuredLogger, create_logger
from htcontrol_mqtt.schemas import Action, TransportKind

# Failure causes
CAUSE_SPAWN = "spawn"
CAUSE_EXIT = "exit"
CAUSE_TIMEOUT = "timeout"

# Keep log lines readable when a tool is chatty on stderr
STDERR_TAIL = 500

# cec-client directive verbs; anything not listed falls back to "ping"
CEC_DIRECTIVES = {
    Action.POWER_ON: "on",
    Action.POWER_OFF: "standby",
}


class TransportError(Exception):
    """Raised by TransportResult.raise_for_status() for a failed invocation"""
    pass


@dataclass(frozen=True)
class TransportResult:
    """
    Outcome of one external tool invocation.

    Attributes:
        ok: True when the tool exited with status zero
        command: Full command line that was attempted
        returncode: Exit status (None if the process never started)
        cause: "spawn", "exit" or "timeout" on failure
        error: OS error text or stderr tail on failure
    """
    ok: bool
    command: Tuple[str, ...] = field(default_factory=tuple)
    returncode: Optional[int] = None
    cause: Optional[str] = None
    error: Optional[str] = None

    def raise_for_status(self) -> None:
        if not self.ok:
            raise TransportError(
                f"Command {list(self.command)} failed ({self.cause}): {self.error}"
            )

    def to_dict(self) -> Dict[str, object]:
        return {
            'ok': self.ok,
            'command': ' '.join(shlex.quote(part) for part in self.command),
            'returncode': self.returncode,
            'cause': self.cause,
            'error': self.error,
        }


class BaseTransport(ABC):
    """
    Abstract base class for hardware transports.

    Subclasses build the command line (and optional stdin text) for an
    action; _run() owns process handling, timeouts and failure logging.
    """

    kind: TransportKind

    def __init__(
        self,
        command: Sequence[str],
        logger: Optional[StructuredLogger] = None,
        timeout: Optional[float] = None,
    ):
        """
        Args:
            command: Tool executable plus fixed leading arguments
            logger: Structured logger (default: "transport" component)
            timeout: Seconds to wait for the tool; None waits indefinitely
        """
        if not command:
            raise ValueError(f"{type(self).__name__} needs a command to run")
        self.command = list(command)
        self.logger = logger or create_logger("transport")
        self.timeout = timeout if timeout and timeout > 0 else None

    @abstractmethod
    def send(self, device_id: str, action: Action) -> TransportResult:
        raise NotImplementedError("Subclasses must implement send()")

    def _run(
        self,
        command: List[str],
        device_id: str,
        action: Action,
        stdin_text: Optional[str] = None,
    ) -> TransportResult:
        metadata = {
            'transport': self.kind.value,
            'device': device_id,
            'action': action.value,
            'command': ' '.join(shlex.quote(part) for part in command),
        }

        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.PIPE if stdin_text is not None else subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as e:
            self.logger.error(
                event=LogEvent.TRANSPORT_FAILED,
                message=f"Failed to start {command[0]}",
                exc_info=e,
                metadata=metadata,
            )
            return TransportResult(
                ok=False, command=tuple(command), cause=CAUSE_SPAWN, error=str(e)
            )

        try:
            # communicate() writes stdin_text, closes stdin, then waits
            _, stderr = process.communicate(input=stdin_text, timeout=self.timeout)
        except subprocess.TimeoutExpired:
            process.kill()
            process.communicate()
            self.logger.error(
                event=LogEvent.TRANSPORT_FAILED,
                message=f"{command[0]} timed out after {self.timeout}s",
                metadata=metadata,
            )
            return TransportResult(
                ok=False,
                command=tuple(command),
                returncode=process.returncode,
                cause=CAUSE_TIMEOUT,
                error=f"timed out after {self.timeout}s",
            )

        if process.returncode != 0:
            error = (stderr or "").strip()[-STDERR_TAIL:] or f"exit status {process.returncode}"
            self.logger.error(
                event=LogEvent.TRANSPORT_FAILED,
                message=f"{command[0]} exited with status {process.returncode}",
                metadata={**metadata, 'returncode': process.returncode, 'stderr': error},
            )
            return TransportResult(
                ok=False,
                command=tuple(command),
                returncode=process.returncode,
                cause=CAUSE_EXIT,
                error=error,
            )

        self.logger.info(
            event=LogEvent.TRANSPORT_SENT,
            message=f"{self.kind.value.upper()} command sent",
            metadata=metadata,
        )
        return TransportResult(ok=True, command=tuple(command), returncode=0)


class IRTransport(BaseTransport):
    """
    Infrared remote emulation through LIRC.

    Runs ``irsend send_once <device> <action>``; the LIRC remote is named
    after the device and its buttons after the actions (poweron, poweroff).
    """

    kind = TransportKind.IR

    def send(self, device_id: str, action: Action) -> TransportResult:
        command = self.command + ["send_once", device_id, action.value]
        return self._run(command, device_id, action)


class CECTransport(BaseTransport):
    """
    HDMI-CEC control through a one-shot cec-client process.

    The action is translated into a cec-client directive which is written to
    the tool's stdin; stdin is then closed so the tool exits.

        poweron  -> "on <address>"
        poweroff -> "standby <address>"
        other    -> "ping" (harmless adapter check)
    """

    kind = TransportKind.CEC

    def __init__(
        self,
        command: Sequence[str],
        address: str = "0",
        logger: Optional[StructuredLogger] = None,
        timeout: Optional[float] = None,
    ):
        """
        Args:
            command: cec-client executable plus its arguments
            address: CEC logical address of the target (0 = TV)
        """
        super().__init__(command, logger=logger, timeout=timeout)
        self.address = address

    def directive(self, action: Action) -> str:
        verb = CEC_DIRECTIVES.get(action)
        if verb is None:
            return "ping"
        return f"{verb} {self.address}"

    def send(self, device_id: str, action: Action) -> TransportResult:
        directive = self.directive(action)
        return self._run(list(self.command), device_id, action, stdin_text=directive + "\n")


class TransportSender:
    """
    Dispatches a send to the backend registered for a TransportKind.

    Example:
        sender = TransportSender.from_settings(settings)
        result = sender.send(TransportKind.IR, 'sonytv', Action.POWER_ON)
        if not result.ok:
            ...
    """

    def __init__(self, transports: Dict[TransportKind, BaseTransport]):
        self._transports = dict(transports)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        logger: Optional[StructuredLogger] = None,
    ) -> "TransportSender":
        logger = logger or create_logger("transport")
        timeout = settings.get_float("transport_timeout", 0.0)
        return cls({
            TransportKind.IR: IRTransport(
                shlex.split(settings.get("irsend_command", "irsend")),
                logger=logger,
                timeout=timeout,
            ),
            TransportKind.CEC: CECTransport(
                shlex.split(settings.get("cec_command", "cec-client")),
                address=settings.get("cec_address", "0"),
                logger=logger,
                timeout=timeout,
            ),
        })

    def send(self, kind: TransportKind, device_id: str, action: Action) -> TransportResult:
        """
        Run the hardware action for a device.

        Raises:
            KeyError: If no backend is configured for kind
        """
        return self._transports[TransportKind(kind)].send(device_id, action)
