"""
Layered configuration for HTControl.

Effective settings are merged from three sources, lowest precedence first:

    1. Built-in defaults (DEFAULTS)
    2. Optional YAML config file
    3. Explicit overrides (environment variables, then CLI flags)

A key missing from a later layer never erases an earlier value, and empty
override values are ignored. The result is an immutable Settings value that
is passed explicitly to every component.

Example YAML:
    broker: "mqtt.local:1883"
    username: "ht"
    password: "secret"
    control_topic: "ht/control"
    status_topic: "ht/status"

    devices:
      sonytv: ir
      marantz: ir
      lgtv: cec
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Union

import yaml

logger = logging.getLogger(__name__)


DEFAULTS: Dict[str, Any] = {
    "broker": "127.0.0.1:1883",
    "username": "",
    "password": "",
    "control_topic": "ht/control",
    "status_topic": "ht/status",
    "subscribe_wildcard": "+",
    "client_id": "HTControl",
    "qos": "0",
    "publish_timeout": "5",
    "irsend_command": "irsend",
    "cec_command": "cec-client -s -d 1 RPI",
    "cec_address": "0",
    "transport_timeout": "0",
    "devices": {
        "sonytv": "ir",
        "marantz": "ir",
        "lgtv": "cec",
    },
}

# Environment variable names understood for broker credentials
ENVIRONMENT_KEYS = {
    "MQTT_broker": "broker",
    "MQTT_username": "username",
    "MQTT_password": "password",
}


class ConfigurationError(Exception):
    """Raised when the effective configuration cannot be built (fatal at startup)"""
    pass


def normalize_key(key: str) -> str:
    """'control-topic' and 'control_topic' name the same setting."""
    return str(key).strip().replace("-", "_").lower()


def _coerce(key: str, value: Any) -> Any:
    if key == "devices":
        if not isinstance(value, Mapping):
            raise ConfigurationError(
                f"'devices' must be a mapping of device id to transport kind, "
                f"got {type(value).__name__}"
            )
        return {str(device): str(kind) for device, kind in value.items()}

    if isinstance(value, (Mapping, list)):
        raise ConfigurationError(
            f"Setting '{key}' must be a scalar, got {type(value).__name__}"
        )
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def load_yaml_config(config_path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load YAML configuration file.

    Args:
        config_path: Path to YAML file (``~`` is expanded)

    Returns:
        Dictionary with the document's top-level keys

    Raises:
        ConfigurationError: If the file is missing, unreadable, not valid
            YAML, empty, or not a mapping
    """
    path = Path(config_path).expanduser()

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        raise ConfigurationError(f"Config file {path} is empty")
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Config file {path} must contain a mapping, got {type(data).__name__}"
        )
    return data


def environment_overrides(environ: Mapping[str, str]) -> Dict[str, str]:
    """Pick broker credentials out of an environment mapping."""
    return {
        key: environ[name]
        for name, key in ENVIRONMENT_KEYS.items()
        if environ.get(name)
    }


@dataclass(frozen=True)
class Settings:
    """
    Effective, read-only settings.

    Built once by resolve(); nothing mutates it afterwards, so it can be
    shared between the MQTT thread and dispatch workers without locking.
    """

    values: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        # Freeze a private copy so callers cannot mutate us through their dict
        frozen = dict(self.values)
        if isinstance(frozen.get("devices"), Mapping):
            frozen["devices"] = MappingProxyType(dict(frozen["devices"]))
        object.__setattr__(self, "values", MappingProxyType(frozen))

    def get(self, key: str, default: Any = None) -> Any:
        """Resolved value for key, else default (None when not supplied)."""
        return self.values.get(normalize_key(key), default)

    def get_int(self, key: str, default: int = 0) -> int:
        raw = self.get(key)
        if raw in (None, ""):
            return default
        try:
            return int(raw)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Setting '{key}' must be an integer, got {raw!r}")

    def get_float(self, key: str, default: float = 0.0) -> float:
        raw = self.get(key)
        if raw in (None, ""):
            return default
        try:
            return float(raw)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Setting '{key}' must be a number, got {raw!r}")

    # ===== Typed accessors =====

    def _broker_parts(self):
        broker = str(self.get("broker", DEFAULTS["broker"]))
        if "://" in broker:
            broker = broker.split("://", 1)[1]
        host, sep, port = broker.rpartition(":")
        if not sep:
            return broker, 1883
        if not host:
            raise ConfigurationError(f"Broker address has no host: {broker!r}")
        try:
            port_number = int(port)
        except ValueError:
            raise ConfigurationError(f"Invalid broker port in {broker!r}")
        if not 1 <= port_number <= 65535:
            raise ConfigurationError(
                f"MQTT port must be in [1, 65535], got {port_number}"
            )
        return host, port_number

    @property
    def broker_host(self) -> str:
        return self._broker_parts()[0]

    @property
    def broker_port(self) -> int:
        return self._broker_parts()[1]

    @property
    def username(self) -> Optional[str]:
        return self.get("username") or None

    @property
    def password(self) -> Optional[str]:
        return self.get("password") or None

    @property
    def control_topic(self) -> str:
        return str(self.get("control_topic") or DEFAULTS["control_topic"]).rstrip("/")

    @property
    def status_topic(self) -> str:
        return str(self.get("status_topic") or DEFAULTS["status_topic"]).rstrip("/")

    @property
    def subscribe_topic(self) -> str:
        wildcard = self.get("subscribe_wildcard") or DEFAULTS["subscribe_wildcard"]
        return f"{self.control_topic}/{wildcard}"

    @property
    def qos(self) -> int:
        qos = self.get_int("qos", 0)
        if qos not in {0, 1, 2}:
            raise ConfigurationError(f"MQTT QoS must be 0, 1, or 2, got {qos}")
        return qos

    @property
    def publish_timeout(self) -> float:
        return self.get_float("publish_timeout", 5.0)

    @property
    def devices(self) -> Mapping[str, str]:
        return self.get("devices") or {}


def _merge(target: Dict[str, Any], layer: Mapping[str, Any], source: str, skip_empty: bool) -> None:
    known = set(DEFAULTS) | set(target)
    for raw_key, value in layer.items():
        key = normalize_key(raw_key)
        if key not in known:
            logger.debug(f"Ignoring unknown {source} key: {raw_key}")
            continue
        if value is None or (skip_empty and value == ""):
            continue
        target[key] = _coerce(key, value)


def resolve(
    defaults: Mapping[str, Any],
    config_file: Optional[Union[str, Path]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> Settings:
    """
    Merge defaults, an optional YAML file, and explicit overrides.

    Args:
        defaults: Built-in values (usually DEFAULTS)
        config_file: Optional path; when None the file layer contributes nothing
        overrides: Highest-precedence values; None or "" values are skipped

    Returns:
        Immutable Settings

    Raises:
        ConfigurationError: If config_file is given but cannot be loaded
    """
    merged: Dict[str, Any] = {normalize_key(k): v for k, v in defaults.items()}

    if config_file:
        logger.debug(f"Loading configuration: {config_file}")
        _merge(merged, load_yaml_config(config_file), "config file", skip_empty=False)

    if overrides:
        _merge(merged, overrides, "override", skip_empty=True)

    return Settings(merged)
