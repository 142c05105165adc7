"""
DeviceRegistry - Static device table

Bounded Context: Device resolution
Responsibilities:
  - Map device identifiers to their transport kind (IR or CEC)
  - Reject unknown devices with a clear error
  - Provide introspection (devices, is_registered)

Threading: Read-only after construction, safe to share between threads
"""

from types import MappingProxyType
from typing import Dict, Mapping, Set

from htcontrol_config import ConfigurationError, Settings
from htcontrol_mqtt.schemas import TransportKind


class DeviceNotFoundError(Exception):
    """Raised when a message addresses a device that is not in the table"""
    pass


class DeviceRegistry:
    """
    Read-only mapping of device identifier to TransportKind.

    Example:
        registry = DeviceRegistry({'sonytv': 'ir', 'lgtv': 'cec'})
        registry.lookup('lgtv')       # TransportKind.CEC

        try:
            registry.lookup('toaster')
        except DeviceNotFoundError as e:
            print(f"Device not available: {e}")
    """

    def __init__(self, table: Mapping[str, str]):
        """
        Args:
            table: device id -> transport kind ("ir" / "cec" or TransportKind)

        Raises:
            ConfigurationError: If a kind is not a known transport
        """
        devices: Dict[str, TransportKind] = {}
        for device_id, kind in table.items():
            try:
                devices[str(device_id)] = TransportKind(str(kind).lower())
            except ValueError:
                valid = ', '.join(k.value for k in TransportKind)
                raise ConfigurationError(
                    f"Device '{device_id}' has unknown transport '{kind}'. "
                    f"Must be one of: {valid}"
                )
        self._devices = MappingProxyType(devices)

    @classmethod
    def from_settings(cls, settings: Settings) -> "DeviceRegistry":
        return cls(settings.devices)

    def lookup(self, device_id: str) -> TransportKind:
        """
        Resolve the transport kind for a device.

        Raises:
            DeviceNotFoundError: If device is not registered
        """
        try:
            return self._devices[device_id]
        except KeyError:
            raise DeviceNotFoundError(
                f"Device '{device_id}' not registered. "
                f"Known devices: {', '.join(sorted(self._devices)) or '(none)'}"
            ) from None

    def is_registered(self, device_id: str) -> bool:
        return device_id in self._devices

    @property
    def devices(self) -> Set[str]:
        """Snapshot of registered device identifiers."""
        return set(self._devices)
