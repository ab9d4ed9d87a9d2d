"""Device inventory management from YAML configuration."""
import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import AnyHttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..devices import create_device, NetworkDevice
from .sessions import SessionStore
from .settings import ReconcileSettings

logger = logging.getLogger(__name__)

_URL_ADAPTER = TypeAdapter(AnyHttpUrl)


class DeviceInventory:
    """Manages the device inventory loaded from YAML config.

    ```yaml
    defaults:
      username: manager
      password_env: ARC_PASSWORD

    reconcile:
      request_timeout: 20
      retry_budget: 2

    devices:
      core-1:
        type: aruba
        name: "Core 1"
        host: 10.0.0.2

    groups:
      core:
        - core-1
    ```
    """

    def __init__(
        self,
        config_path: Optional[str] = None,
        sessions: Optional[SessionStore] = None,
    ):
        self.config_path = config_path or self._find_config()
        self.sessions = sessions or SessionStore()
        self._config: dict = {}
        self._devices: dict[str, NetworkDevice] = {}
        self._load_config()
        self.settings = ReconcileSettings.from_dict(
            self._config.get("reconcile")
        ).with_env()

    def _find_config(self) -> str:
        """Find the devices.yaml config file."""
        search_paths = [
            Path.cwd() / "configs" / "devices.yaml",
            Path.cwd() / "devices.yaml",
            Path.home() / ".config" / "arc" / "devices.yaml",
            Path("/etc/arc/devices.yaml"),
        ]

        for path in search_paths:
            if path.exists():
                return str(path)

        raise FileNotFoundError(
            "Could not find devices.yaml. Create one in ./configs/devices.yaml"
        )

    def _load_config(self) -> None:
        """Load the YAML configuration."""
        with open(self.config_path) as f:
            self._config = yaml.safe_load(f) or {}

        # Apply defaults
        defaults = self._config.get("defaults", {})
        for device_id, device_config in self._config.get("devices", {}).items():
            for key, value in defaults.items():
                if key not in device_config:
                    device_config[key] = value

        self._validate_urls()
        self._validate_groups()

    def _validate_urls(self) -> None:
        """Warn early about devices whose REST base URL is malformed."""
        for device_id, config in self._config.get("devices", {}).items():
            error = self.check_base_url(config)
            if error:
                logger.warning(f"Device '{device_id}' has an invalid address: {error}")

    @staticmethod
    def check_base_url(config: dict) -> Optional[str]:
        """Return an error message if the device's base URL is invalid."""
        protocol = config.get("protocol", "https")
        host = config.get("host", "")
        port = config.get("port", 443 if protocol == "https" else 80)
        try:
            _URL_ADAPTER.validate_python(f"{protocol}://{host}:{port}/")
        except PydanticValidationError as e:
            return e.errors()[0].get("msg", str(e))
        return None

    def get_device_ids(self) -> list[str]:
        """Get all device IDs."""
        return list(self._config.get("devices", {}).keys())

    def get_device_config(self, device_id: str) -> dict:
        """Get raw config for a device."""
        devices = self._config.get("devices", {})
        if device_id not in devices:
            raise KeyError(f"Unknown device: {device_id}")
        return devices[device_id]

    def get_device_type(self, device_id: str) -> str:
        """Get the device type, or "unknown"."""
        try:
            return self.get_device_config(device_id).get("type", "unknown")
        except KeyError:
            return "unknown"

    def get_device(self, device_id: str) -> NetworkDevice:
        """Get or create a device instance."""
        if device_id not in self._devices:
            config = self.get_device_config(device_id)
            error = self.check_base_url(config)
            if error:
                raise ValueError(f"Invalid address for device {device_id}: {error}")
            self._devices[device_id] = create_device(
                device_id, config, self.settings, self.sessions
            )
        return self._devices[device_id]

    async def close_all(self) -> None:
        """Close all device connections."""
        for device in self._devices.values():
            if device.is_connected:
                await device.disconnect()
        self._devices.clear()

    # === Group Management ===

    def _validate_groups(self) -> None:
        """Validate that all group members reference valid devices."""
        groups = self._config.get("groups", {})
        devices = self._config.get("devices", {})

        for group_name, members in groups.items():
            if not isinstance(members, list):
                logger.warning(f"Group '{group_name}' should be a list of device IDs")
                continue
            for device_id in members:
                if device_id not in devices:
                    logger.warning(
                        f"Group '{group_name}' references unknown device: {device_id}"
                    )

    def get_group_names(self) -> list[str]:
        """Get list of all group names."""
        return list(self._config.get("groups", {}).keys())

    def get_group_members(self, group_name: str) -> list[str]:
        """Get device IDs in a group.

        Raises:
            KeyError: If group doesn't exist
        """
        groups = self._config.get("groups", {})
        if group_name not in groups:
            raise KeyError(f"Unknown group: {group_name}")
        return list(groups[group_name])

    def resolve_targets(
        self,
        device_ids: Optional[list[str]] = None,
        groups: Optional[list[str]] = None,
    ) -> list[str]:
        """Expand devices and groups into a de-duplicated target list.

        With neither given, every device in the inventory is targeted.
        """
        targets: list[str] = []
        for device_id in device_ids or []:
            if device_id not in targets:
                targets.append(device_id)
        for group_name in groups or []:
            for device_id in self.get_group_members(group_name):
                if device_id not in targets:
                    targets.append(device_id)
        if not device_ids and not groups:
            targets = self.get_device_ids()
        return targets
