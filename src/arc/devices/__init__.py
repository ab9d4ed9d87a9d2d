"""Device handlers for different switch types."""
from dataclasses import fields
from typing import Optional

from ..config.sessions import SessionStore
from ..config.settings import ReconcileSettings
from .base import NetworkDevice, DeviceConfig
from .aruba import ArubaDevice
from .mock import MockDevice

__all__ = [
    "NetworkDevice",
    "DeviceConfig",
    "ArubaDevice",
    "MockDevice",
    "DEVICE_TYPES",
    "create_device",
]

# Device type registry
DEVICE_TYPES = {
    "aruba": ArubaDevice,
    "mock": MockDevice,
}


def create_device(
    device_id: str,
    config: dict,
    settings: Optional[ReconcileSettings] = None,
    sessions: Optional[SessionStore] = None,
) -> NetworkDevice:
    """Factory function to create device instances."""
    device_type = config.get("type", "").lower()
    if device_type not in DEVICE_TYPES:
        raise ValueError(f"Unknown device type: {device_type}")

    known = {f.name for f in fields(DeviceConfig)}
    values = {k: v for k, v in config.items() if k in known}
    values.setdefault("name", device_id)
    device_config = DeviceConfig(**values)

    if device_type == "aruba":
        return ArubaDevice(device_id, device_config, settings, sessions)
    return DEVICE_TYPES[device_type](device_id, device_config, settings)
