"""Schema definitions for the Config Engine.

Defines operations, change sets and the per-operation, per-device and
per-run results reported back to the caller.
"""
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterator, Literal, Mapping, Optional

from ..config.schema import ConfigEntity, ConfigSnapshot, EntityKind, EntityRef

# Process exit codes derived from a run
EXIT_OK = 0
EXIT_PARTIAL = 2
EXIT_FAILED = 3


class OpType(str, Enum):
    """Type of change."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


OP_RANK = {OpType.CREATE: 0, OpType.UPDATE: 1, OpType.DELETE: 2}


class ApplyStatus(str, Enum):
    """Outcome of a single operation."""
    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED = "skipped"
    ROLLED_BACK = "rolled_back"


# --- Desired State ---

@dataclass(frozen=True)
class DesiredConfig:
    """Parsed and validated desired configuration for one device."""
    device_id: str
    snapshot: ConfigSnapshot
    mode: Literal["full", "patch"] = "patch"
    kinds: frozenset[EntityKind] = frozenset(EntityKind)
    absent: frozenset[EntityRef] = frozenset()
    warnings: tuple[str, ...] = ()
    checksum: Optional[str] = None


@dataclass
class ValidationResult:
    """Result of config validation."""
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


# --- Operations ---

@dataclass(frozen=True)
class Operation:
    """A single change to one entity.

    Equality compares op type, kind, identifier and changed fields only;
    the dependency set and the entity snapshots ride along for ordering and
    compensation.
    """
    op_type: OpType
    kind: EntityKind
    identifier: str
    changes: Mapping[str, Any] = field(default_factory=dict)
    depends_on: frozenset[EntityRef] = field(default=frozenset(), compare=False)
    entity: Optional[ConfigEntity] = field(default=None, compare=False)
    previous: Optional[ConfigEntity] = field(default=None, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "op_type", OpType(self.op_type))
        object.__setattr__(self, "kind", EntityKind(self.kind))
        object.__setattr__(self, "changes", MappingProxyType(dict(self.changes)))
        object.__setattr__(self, "depends_on", frozenset(self.depends_on))

    def __hash__(self) -> int:
        return hash((self.op_type, self.kind, self.identifier, tuple(sorted(self.changes))))

    @classmethod
    def create(cls, entity: ConfigEntity) -> "Operation":
        return cls(
            op_type=OpType.CREATE,
            kind=entity.kind,
            identifier=entity.identifier,
            changes=dict(entity.properties),
            depends_on=entity.depends_on,
            entity=entity,
        )

    @classmethod
    def update(
        cls,
        desired: ConfigEntity,
        live: ConfigEntity,
        changed_keys: list[str],
    ) -> "Operation":
        return cls(
            op_type=OpType.UPDATE,
            kind=desired.kind,
            identifier=desired.identifier,
            changes={key: desired.properties.get(key) for key in changed_keys},
            depends_on=desired.depends_on,
            entity=desired,
            previous=live,
        )

    @classmethod
    def delete(cls, live: ConfigEntity) -> "Operation":
        return cls(
            op_type=OpType.DELETE,
            kind=live.kind,
            identifier=live.identifier,
            depends_on=live.depends_on,
            previous=live,
        )

    @property
    def ref(self) -> EntityRef:
        return EntityRef(self.kind, self.identifier)

    def compensation(self) -> "Operation":
        """Operation that undoes this one.

        Raises:
            ValueError: If the entity state needed to undo is unknown
        """
        if self.op_type == OpType.CREATE:
            if self.entity is None:
                raise ValueError(f"Cannot compensate {self}: created entity unknown")
            return Operation.delete(self.entity)
        if self.previous is None:
            raise ValueError(f"Cannot compensate {self}: previous state unknown")
        if self.op_type == OpType.UPDATE:
            current = self.entity or self.previous
            return Operation.update(self.previous, current, list(self.changes))
        return Operation.create(self.previous)

    def describe(self) -> str:
        """Short human-readable description."""
        if self.op_type == OpType.UPDATE:
            fields_ = ", ".join(f"{k}={v!r}" for k, v in self.changes.items())
            return f"update {self.ref} ({fields_})"
        return f"{self.op_type.value} {self.ref}"

    def __str__(self) -> str:
        return self.describe()

    def to_dict(self) -> dict:
        return {
            "op": self.op_type.value,
            "kind": self.kind.value,
            "identifier": self.identifier,
            "changes": dict(self.changes),
        }


@dataclass(frozen=True)
class ChangeSet:
    """Ordered operations for one device."""
    device_id: str
    operations: tuple[Operation, ...] = ()

    def __iter__(self) -> Iterator[Operation]:
        return iter(self.operations)

    def __len__(self) -> int:
        return len(self.operations)

    def __getitem__(self, index: int) -> Operation:
        return self.operations[index]

    @property
    def empty(self) -> bool:
        return len(self.operations) == 0

    def refs(self) -> list[EntityRef]:
        return [op.ref for op in self.operations]


# --- Execution Results ---

@dataclass
class OperationResult:
    """Outcome of one operation."""
    operation: Operation
    status: ApplyStatus
    reason: Optional[str] = None
    attempts: int = 0
    rollback_reason: Optional[str] = None
    error_type: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "operation": self.operation.to_dict(),
            "status": self.status.value,
            "reason": self.reason,
            "attempts": self.attempts,
            "rollback_reason": self.rollback_reason,
            "error_type": self.error_type,
        }


@dataclass
class DeviceResult:
    """Result of reconciling one device."""
    device_id: str
    stage: str = "validate"
    change_set: Optional[ChangeSet] = None
    results: list[OperationResult] = field(default_factory=list)
    error: Optional[str] = None
    error_type: Optional[str] = None
    warnings: list[str] = field(default_factory=list)
    dry_run: bool = False
    transaction: bool = False
    rollback_performed: bool = False
    cancelled: bool = False

    @property
    def success(self) -> bool:
        """True only if nothing failed and every operation was applied."""
        if self.error is not None:
            return False
        if self.dry_run:
            return True
        return all(r.status == ApplyStatus.APPLIED for r in self.results)

    def _with_status(self, status: ApplyStatus) -> list[OperationResult]:
        return [r for r in self.results if r.status == status]

    @property
    def applied(self) -> list[OperationResult]:
        return self._with_status(ApplyStatus.APPLIED)

    @property
    def failed(self) -> list[OperationResult]:
        return self._with_status(ApplyStatus.FAILED)

    @property
    def rolled_back(self) -> list[OperationResult]:
        return self._with_status(ApplyStatus.ROLLED_BACK)

    @property
    def skipped(self) -> list[OperationResult]:
        return self._with_status(ApplyStatus.SKIPPED)

    @property
    def retained(self) -> list[OperationResult]:
        """Operations left applied on a device whose run failed."""
        return [] if self.success else self.applied

    def to_dict(self) -> dict:
        return {
            "device_id": self.device_id,
            "success": self.success,
            "stage": self.stage,
            "dry_run": self.dry_run,
            "error": self.error,
            "error_type": self.error_type,
            "warnings": self.warnings,
            "transaction": self.transaction,
            "rollback_performed": self.rollback_performed,
            "cancelled": self.cancelled,
            "operations": [r.to_dict() for r in self.results],
            "retained": [r.operation.describe() for r in self.retained],
        }


@dataclass
class RunResult:
    """Results of a multi-device run."""
    devices: list[DeviceResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(d.success for d in self.devices)

    @property
    def exit_code(self) -> int:
        """0 if every device succeeded, 2 if some did, 3 if none did."""
        if self.success:
            return EXIT_OK
        if any(d.success for d in self.devices):
            return EXIT_PARTIAL
        return EXIT_FAILED

    def get(self, device_id: str) -> Optional[DeviceResult]:
        for result in self.devices:
            if result.device_id == device_id:
                return result
        return None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "exit_code": self.exit_code,
            "summary": {
                "total_devices": len(self.devices),
                "succeeded": sum(1 for d in self.devices if d.success),
                "failed": sum(1 for d in self.devices if not d.success),
            },
            "devices": [d.to_dict() for d in self.devices],
        }
