"""In-memory device handler.

Keeps entities in a dict and applies operations to it. Supports native
transactions (optional), injected rejections and transient failures, and
session expiry, which makes it the device of choice for exercising the
engine without hardware. As inventory type `mock` it starts empty, which is
handy for previewing the full plan of a desired config offline.
"""
import asyncio
import copy
import logging
from typing import Optional

from ..config.schema import ConfigEntity, EntityKind, EntityRef
from ..config.settings import ReconcileSettings
from ..config_engine.schema import Operation, OpType
from ..errors import DeviceError, NotAuthenticated, TransientDeviceError
from .base import DeviceConfig, NetworkDevice

logger = logging.getLogger(__name__)


class MockDevice(NetworkDevice):
    """Switch simulated in memory."""

    def __init__(
        self,
        device_id: str,
        config: Optional[DeviceConfig] = None,
        settings: Optional[ReconcileSettings] = None,
        entities: Optional[list[ConfigEntity]] = None,
        supports_transactions: bool = False,
        delay: float = 0.0,
    ):
        config = config or DeviceConfig(type="mock", name=device_id, host="mock.invalid")
        super().__init__(device_id, config, settings)
        self.supports_transactions = supports_transactions
        self.delay = delay
        self.state: dict[EntityRef, ConfigEntity] = {e.ref: e for e in entities or []}
        self.requests: list[Operation] = []
        self.fetch_count = 0
        self._staged: Optional[dict[EntityRef, ConfigEntity]] = None
        self._rejections: dict[tuple[OpType, EntityRef], str] = {}
        self._transient: dict[tuple[OpType, EntityRef], int] = {}
        self._fetch_failures = 0
        self._fetch_error: Optional[Exception] = None
        self._abort_failure: Optional[str] = None
        self._commit_failure: Optional[str] = None
        self._authenticated = True

    # --- Failure injection ---

    def reject(self, op_type: OpType, ref: EntityRef, reason: str = "rejected by device") -> None:
        """Reject every request of this type for this entity."""
        self._rejections[(OpType(op_type), ref)] = reason

    def fail_transiently(self, op_type: OpType, ref: EntityRef, times: int) -> None:
        """Raise TransientDeviceError for the next `times` matching requests."""
        self._transient[(OpType(op_type), ref)] = times

    def fail_fetches(self, times: int, error: Optional[Exception] = None) -> None:
        """Fail the next `times` fetches (transiently unless `error` is given)."""
        self._fetch_failures = times
        self._fetch_error = error

    def fail_abort(self, reason: str) -> None:
        self._abort_failure = reason

    def fail_commit(self, reason: str) -> None:
        self._commit_failure = reason

    def expire_session(self) -> None:
        self._authenticated = False

    # --- NetworkDevice ---

    async def connect(self) -> bool:
        self._connected = True
        return True

    async def disconnect(self) -> None:
        self._connected = False

    @property
    def in_transaction(self) -> bool:
        return self._staged is not None

    def _target(self) -> dict[EntityRef, ConfigEntity]:
        return self._staged if self._staged is not None else self.state

    async def fetch(self, kind: EntityKind) -> list[dict]:
        if not self._authenticated:
            raise NotAuthenticated(f"{self.device_id}: session expired")
        self.fetch_count += 1
        if self._fetch_failures > 0:
            self._fetch_failures -= 1
            raise self._fetch_error or TransientDeviceError(f"{self.device_id}: fetch timed out")
        return [e.to_dict() for e in self.state.values() if e.kind == kind]

    def normalize(self, kind: EntityKind, records: list[dict]) -> list[ConfigEntity]:
        return [
            ConfigEntity(
                kind=EntityKind(record["kind"]),
                identifier=record["identifier"],
                properties=record["properties"],
                depends_on=frozenset(EntityRef.parse(d) for d in record["depends_on"]),
            )
            for record in records
        ]

    async def apply_operation(self, operation: Operation) -> tuple[bool, str]:
        if not self._authenticated:
            raise NotAuthenticated(f"{self.device_id}: session expired")
        if self.delay:
            await asyncio.sleep(self.delay)
        self.requests.append(operation)

        key = (operation.op_type, operation.ref)
        if self._transient.get(key, 0) > 0:
            self._transient[key] -= 1
            raise TransientDeviceError(f"{self.device_id}: device busy")
        if key in self._rejections:
            return False, self._rejections[key]

        target = self._target()
        ref = operation.ref
        if operation.op_type == OpType.CREATE:
            if ref in target:
                return False, f"{ref} already exists"
            target[ref] = operation.entity or ConfigEntity(
                kind=operation.kind,
                identifier=operation.identifier,
                properties=operation.changes,
                depends_on=operation.depends_on,
            )
            return True, f"created {ref}"

        if operation.op_type == OpType.UPDATE:
            current = target.get(ref)
            if current is None:
                return False, f"{ref} does not exist"
            properties = dict(current.properties)
            properties.update(operation.changes)
            target[ref] = ConfigEntity(
                kind=current.kind,
                identifier=current.identifier,
                properties=properties,
                depends_on=operation.depends_on,
            )
            return True, f"updated {ref}"

        if target.pop(ref, None) is None:
            return True, f"{ref} already absent"
        return True, f"deleted {ref}"

    async def begin_transaction(self) -> None:
        if not self.supports_transactions:
            return await super().begin_transaction()
        if self._staged is not None:
            raise DeviceError(f"{self.device_id}: transaction already open")
        self._staged = copy.copy(self.state)

    async def commit(self) -> tuple[bool, str]:
        if self._staged is None:
            return False, "no open transaction"
        if self._commit_failure:
            self._staged = None
            return False, self._commit_failure
        self.state = self._staged
        self._staged = None
        return True, "committed"

    async def abort(self) -> tuple[bool, str]:
        if self._abort_failure:
            return False, self._abort_failure
        self._staged = None
        return True, "aborted"
