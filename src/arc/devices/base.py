"""Base device abstraction for managed switches.

A device handler is the capability interface the engine talks to: fetch raw
state, normalize it, apply one operation per request and, where the
management protocol allows it, open/commit/abort a native transaction.
"""
import os
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from ..config.schema import ConfigEntity, EntityKind
from ..config.settings import ReconcileSettings
from ..config_engine.schema import Operation

logger = logging.getLogger(__name__)


@dataclass
class DeviceConfig:
    """Configuration for a managed switch."""
    type: str
    name: str
    host: str
    protocol: str = "https"
    port: Optional[int] = None
    username: str = "manager"
    password: Optional[str] = None
    password_env: str = "ARC_PASSWORD"
    verify_ssl: bool = True
    api_version: str = "v1"

    def get_password(self) -> str:
        """Get password from config or environment variable."""
        if self.password:
            return self.password
        return os.environ.get(self.password_env, "")

    @property
    def base_url(self) -> str:
        """Root URL of the device's REST API."""
        port = self.port or (443 if self.protocol == "https" else 80)
        return f"{self.protocol}://{self.host}:{port}/rest/{self.api_version}/"


class NetworkDevice(ABC):
    """Abstract base class for device handlers.

    The instance is the device handle: it is owned by the single task that
    reconciles the device and is never shared between concurrent operations.
    """

    supports_transactions: bool = False

    def __init__(
        self,
        device_id: str,
        config: DeviceConfig,
        settings: Optional[ReconcileSettings] = None,
    ):
        self.device_id = device_id
        self.config = config
        self.settings = settings or ReconcileSettings()
        self._connected = False
        self._connection: Any = None

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def host(self) -> str:
        return self.config.host

    @property
    def is_connected(self) -> bool:
        return self._connected

    # Connection management
    @abstractmethod
    async def connect(self) -> bool:
        """Establish an authenticated session with the device."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Release the transport (the session itself may be kept)."""
        pass

    # State retrieval
    @abstractmethod
    async def fetch(self, kind: EntityKind) -> list[dict]:
        """Fetch raw wire records for one entity kind.

        Raises:
            TransientDeviceError: On recoverable transport problems
            NotAuthenticated: If the session is no longer valid
            DeviceError: On any other device error
        """
        pass

    @abstractmethod
    def normalize(self, kind: EntityKind, records: list[dict]) -> list[ConfigEntity]:
        """Convert raw wire records into normalized entities."""
        pass

    # Configuration modification
    @abstractmethod
    async def apply_operation(self, operation: Operation) -> tuple[bool, str]:
        """Send exactly one request for an operation.

        Returns:
            Tuple of (success, message). A False result is a rejection by
            the device and is not retried.

        Raises:
            TransientDeviceError: On recoverable errors (retried by caller)
            NotAuthenticated: If the session is no longer valid
        """
        pass

    # Native transactions (optional)
    async def begin_transaction(self) -> None:
        raise NotImplementedError(f"{type(self).__name__} has no native transactions")

    async def commit(self) -> tuple[bool, str]:
        raise NotImplementedError(f"{type(self).__name__} has no native transactions")

    async def abort(self) -> tuple[bool, str]:
        raise NotImplementedError(f"{type(self).__name__} has no native transactions")

    # Context manager support
    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()
        return False
