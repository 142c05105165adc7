"""
HTControl CLI - Main entry point.

Two modes:
  serve   Watch the control topic and drive IR / CEC hardware
  send    Publish one status message and exit

Exit status is 0 on success or clean shutdown, 1 on any configuration,
connection or publish error.
"""

import argparse
import logging
import os
import signal
import sys
from typing import Dict, List, Mapping, Optional

from htcontrol_config import (
    DEFAULTS,
    ConfigurationError,
    Settings,
    environment_overrides,
    resolve,
)
from htcontrol_control import (
    CommandDispatcher,
    DeviceRegistry,
    MQTTControlPlane,
    TransportSender,
)
from htcontrol_mqtt import StatusMessage, create_logger

from . import __version__
from .mqtt_client import MQTTStatusClient

logger = logging.getLogger("htcontrol")

CONNECT_TIMEOUT = 10.0


# ─────────────────────────────────────────────────────────────────────────────
# Logging Setup
# ─────────────────────────────────────────────────────────────────────────────

def setup_logging(debug: bool = False) -> None:
    """
    Configure the root logger once for the whole process.

    Args:
        debug: Enable DEBUG level (default INFO)
    """
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)],
    )


# ─────────────────────────────────────────────────────────────────────────────
# Configuration
# ─────────────────────────────────────────────────────────────────────────────

def cli_overrides(args: argparse.Namespace) -> Dict[str, Optional[str]]:
    """Settings given on the command line (None when the flag was omitted)."""
    return {
        "broker": args.broker,
        "username": args.username,
        "password": args.password,
        "control_topic": args.control_topic,
        "status_topic": args.status_topic,
    }


def build_settings(args: argparse.Namespace, environ: Mapping[str, str]) -> Settings:
    """
    Resolve effective settings: defaults < config file < environment < CLI.

    Raises:
        ConfigurationError: If the config file cannot be used
    """
    overrides = environment_overrides(environ)
    overrides.update({k: v for k, v in cli_overrides(args).items() if v})

    settings = resolve(DEFAULTS, args.config, overrides)

    logger.debug(f"Broker: {settings.get('broker')}")
    logger.debug(f"Username: {settings.get('username')}")
    logger.debug(f"Topic: Control: {settings.control_topic}")
    logger.debug(f"Topic: Status: {settings.status_topic}")
    return settings


# ─────────────────────────────────────────────────────────────────────────────
# send
# ─────────────────────────────────────────────────────────────────────────────

def run_send(settings: Settings, device: str, status: str,
             client: Optional[MQTTStatusClient] = None) -> int:
    """Publish status to {status_topic}/{device} once."""
    message = StatusMessage.for_device(settings.status_topic, device, status)

    client = client or MQTTStatusClient(
        broker=settings.broker_host,
        port=settings.broker_port,
        username=settings.username,
        password=settings.password,
        client_id=settings.get("client_id", "HTControl"),
    )
    try:
        client.send_status(message, qos=settings.qos, timeout=settings.publish_timeout)
    except (ConnectionError, RuntimeError) as e:
        logger.error(f"❌ {e}")
        return 1
    return 0


# ─────────────────────────────────────────────────────────────────────────────
# serve
# ─────────────────────────────────────────────────────────────────────────────

class ServeApp:
    """
    Serve mode wrapper.

    Handles:
    - Component wiring (registry, transports, dispatcher, control plane)
    - Signal handling (SIGTERM, SIGINT)
    - Graceful shutdown
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.control_plane: Optional[MQTTControlPlane] = None
        self._shutdown_requested = False

    def setup(self) -> None:
        """
        Build all components from settings.

        Raises:
            ConfigurationError: If the device table is invalid
        """
        registry = DeviceRegistry.from_settings(self.settings)
        logger.info(f"📋 Devices: {', '.join(sorted(registry.devices)) or '(none)'}")

        dispatcher = CommandDispatcher(
            settings=self.settings,
            registry=registry,
            sender=TransportSender.from_settings(self.settings, logger=create_logger("transport")),
            logger=create_logger("dispatcher"),
        )
        self.control_plane = MQTTControlPlane(self.settings, dispatcher)

    def run(self) -> int:
        """
        Connect and block until SIGINT / SIGTERM.

        Returns:
            Process exit status
        """
        if not self.control_plane:
            raise RuntimeError("Service not initialized. Call setup() first.")

        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

        if not self.control_plane.connect(timeout=CONNECT_TIMEOUT):
            self.shutdown()
            return 1

        logger.info("Press Ctrl+C to stop")
        self.control_plane.wait()
        self.shutdown()
        return 0

    def shutdown(self) -> None:
        if self._shutdown_requested:
            return
        self._shutdown_requested = True

        logger.info("🛑 Shutting down")
        if self.control_plane:
            self.control_plane.disconnect()
        logger.info("✅ Shutdown complete")

    def _signal_handler(self, signum, frame):
        logger.info(f"⚠️  Received signal {signal.Signals(signum).name}")
        if self.control_plane:
            self.control_plane.stop()


# ─────────────────────────────────────────────────────────────────────────────
# CLI
# ─────────────────────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="htcontrol",
        description="HTControl - MQTT control for IR / HDMI-CEC home theatre devices",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the control loop
  htcontrol --config ~/.htcontrol.yaml serve

  # Report that the TV was switched on by its own remote
  htcontrol --broker mqtt.local:1883 send sonytv on

Environment:
  MQTT_broker, MQTT_username, MQTT_password override the config file;
  command-line flags override everything.
"""
    )

    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-b", "--broker", help=f"MQTT broker host[:port] (default: {DEFAULTS['broker']})")
    parser.add_argument("-u", "--username", help="MQTT username")
    parser.add_argument("-p", "--password", help="MQTT password")
    parser.add_argument(
        "--control-topic",
        help=f"MQTT topic for control messages (default: {DEFAULTS['control_topic']})",
    )
    parser.add_argument(
        "--status-topic",
        help=f"MQTT topic for status messages (default: {DEFAULTS['status_topic']})",
    )
    parser.add_argument("-c", "--config", help="Path to YAML config file")
    parser.add_argument("--debug", action="store_true", help="Enable verbose debugging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    send = subparsers.add_parser("send", help="Publish one status message and exit")
    send.add_argument("device", help="Device identifier (status topic suffix)")
    send.add_argument("status", help="Status payload, e.g. on / off")

    subparsers.add_parser("serve", help="Run the control loop until interrupted")

    return parser


def main(argv: Optional[List[str]] = None, environ: Optional[Mapping[str, str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(args.debug)

    try:
        settings = build_settings(args, os.environ if environ is None else environ)

        if args.command == "send":
            return run_send(settings, args.device, args.status)

        app = ServeApp(settings)
        app.setup()
        return app.run()

    except ConfigurationError as e:
        logger.error(f"❌ Configuration error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
