"""Diff engine for calculating changes between desired and live state.

Computes the minimal set of operations needed to reach the desired state.
Pure: no device access, no side effects.
"""
from typing import Iterable

from ..config.schema import (
    ConfigEntity,
    ConfigSnapshot,
    EntityKind,
    EntityRef,
    KIND_SCHEMAS,
    RESETTABLE_KINDS,
    make_entity,
)
from .schema import Operation, OpType


def scope_live(
    live: ConfigSnapshot,
    desired: ConfigSnapshot,
    mode: str,
    kinds: Iterable[EntityKind],
    absent: Iterable[EntityRef] = (),
) -> ConfigSnapshot:
    """
    Restrict live state to what the desired configuration manages.

    Full mode manages every entity of the managed kinds, so undeclared live
    entities of those kinds get deleted. Patch mode only touches entities
    that are declared, or explicitly marked absent.
    """
    if mode == "full":
        return live.restrict(kinds)
    return live.select(desired.refs() | frozenset(absent))


class DiffEngine:
    """Calculate differences between desired and live state."""

    def calculate(
        self,
        desired: ConfigSnapshot,
        live: ConfigSnapshot,
    ) -> list[Operation]:
        """
        Calculate the operations that turn live into desired.

        Args:
            desired: Desired snapshot
            live: Live snapshot, already scoped to the managed entities

        Returns:
            Unordered operations (sorted by ref for stable output)
        """
        operations: list[Operation] = []

        for entity in desired:
            current = live.get(entity.ref)
            if current is None:
                operations.append(Operation.create(entity))
                continue
            changed = self._changed_keys(entity, current)
            if changed:
                operations.append(Operation.update(entity, current, changed))

        for entity in live:
            if entity.ref in desired:
                continue
            if entity.kind in RESETTABLE_KINDS:
                # Ports stay; only settings away from the defaults change
                defaults = make_entity(entity.kind, entity.identifier)
                changed = self._changed_keys(defaults, entity)
                if changed:
                    operations.append(Operation.update(defaults, entity, changed))
                continue
            operations.append(Operation.delete(entity))

        return sorted(operations, key=lambda op: op.ref.sort_key())

    @staticmethod
    def _changed_keys(desired: ConfigEntity, current: ConfigEntity) -> list[str]:
        """Property keys whose values differ, in schema order."""
        schema_order = list(KIND_SCHEMAS[desired.kind])
        keys = set(desired.properties) | set(current.properties)
        ordered = [k for k in schema_order if k in keys] + sorted(keys - set(schema_order))
        return [
            key for key in ordered
            if desired.properties.get(key) != current.properties.get(key)
        ]


def summarize_diff(operations: list[Operation]) -> str:
    """
    Create a human-readable summary of a set of operations.

    Useful for dry-run output and logging.
    """
    if not operations:
        return "No changes needed - live state matches desired state"

    lines = [f"Changes to apply ({len(operations)} total):", ""]
    for op in operations:
        if op.op_type == OpType.CREATE:
            lines.append(f"  [+] Create {op.ref}")
            for key, value in op.changes.items():
                lines.append(f"      {key}: {value}")
        elif op.op_type == OpType.DELETE:
            lines.append(f"  [-] Delete {op.ref}")
        else:
            lines.append(f"  [~] Modify {op.ref}")
            for key, value in op.changes.items():
                was = op.previous.properties.get(key) if op.previous else None
                lines.append(f"      {key}: {was} -> {value}")

    return "\n".join(lines)
