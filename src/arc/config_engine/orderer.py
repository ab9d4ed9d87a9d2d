"""Dependency ordering of operations.

Turns the unordered output of the diff engine into a ChangeSet whose order
never leaves a dangling reference on the device: dependencies are created
before their dependents, and dependents are removed (or re-pointed) before
the entities they depend on are deleted.
"""
import heapq
import logging
from typing import Optional

from ..config.schema import (
    ConfigEntity,
    ConfigSnapshot,
    EntityRef,
    KIND_RANK,
    natural_key,
)
from ..errors import DependencyCycle, DependencyViolation
from .schema import ChangeSet, OP_RANK, Operation, OpType

logger = logging.getLogger(__name__)


def _tie_break(op: Operation) -> tuple:
    return (OP_RANK[op.op_type], KIND_RANK[op.kind], natural_key(op.identifier))


def _target_entity(op: Operation, live: ConfigSnapshot) -> ConfigEntity:
    """Entity as it exists after a create or update."""
    if op.entity is not None:
        return op.entity
    current = live.get(op.ref)
    properties = dict(current.properties) if current else {}
    properties.update(op.changes)
    return ConfigEntity(
        kind=op.kind,
        identifier=op.identifier,
        properties=properties,
        depends_on=op.depends_on,
    )


class DependencyOrderer:
    """Order operations by the dependency graph of their entities."""

    def order(
        self,
        device_id: str,
        operations: list[Operation],
        live: ConfigSnapshot,
    ) -> ChangeSet:
        """
        Produce a dependency-safe ChangeSet.

        Args:
            device_id: Device the operations target
            operations: Unordered operations from the diff engine
            live: Full live snapshot (not only the managed scope)

        Returns:
            ChangeSet in execution order

        Raises:
            DependencyViolation: If the post-apply state would dangle
            DependencyCycle: If the operations depend on each other circularly
        """
        by_ref: dict[EntityRef, Operation] = {}
        for op in operations:
            if op.ref in by_ref:
                raise ValueError(f"More than one operation for {op.ref}")
            by_ref[op.ref] = op

        post_state = self._post_apply_state(by_ref, live)
        self._check_violations(by_ref, post_state)

        adjacency = self._build_graph(by_ref, live, post_state)
        ordered = self._topological_sort(by_ref, adjacency)
        logger.debug(f"Ordered {len(ordered)} operations for {device_id}")
        return ChangeSet(device_id=device_id, operations=tuple(ordered))

    def _post_apply_state(
        self,
        by_ref: dict[EntityRef, Operation],
        live: ConfigSnapshot,
    ) -> dict[EntityRef, ConfigEntity]:
        state = dict(live.entities)
        for ref, op in by_ref.items():
            if op.op_type == OpType.DELETE:
                state.pop(ref, None)
            else:
                state[ref] = _target_entity(op, live)
        return state

    def _check_violations(
        self,
        by_ref: dict[EntityRef, Operation],
        post_state: dict[EntityRef, ConfigEntity],
    ) -> None:
        violations = []
        for ref in sorted(by_ref, key=EntityRef.sort_key):
            op = by_ref[ref]
            if op.op_type == OpType.DELETE:
                holders = sorted(
                    (e.ref for e in post_state.values() if ref in e.depends_on),
                    key=EntityRef.sort_key,
                )
                if holders:
                    names = ", ".join(str(h) for h in holders)
                    violations.append(f"Cannot delete {ref}: still referenced by {names}")
            else:
                for dep in sorted(post_state[ref].depends_on, key=EntityRef.sort_key):
                    if dep not in post_state:
                        violations.append(f"{op.describe()} requires {dep}, which will not exist")
        if violations:
            raise DependencyViolation(violations)

    def _build_graph(
        self,
        by_ref: dict[EntityRef, Operation],
        live: ConfigSnapshot,
        post_state: dict[EntityRef, ConfigEntity],
    ) -> dict[EntityRef, set[EntityRef]]:
        """Edges run from the operation that must come first."""
        adjacency: dict[EntityRef, set[EntityRef]] = {ref: set() for ref in by_ref}
        for ref, op in by_ref.items():
            if op.op_type != OpType.DELETE:
                # Dependencies being created or updated go first
                for dep in post_state[ref].depends_on:
                    dep_op = by_ref.get(dep)
                    if dep_op is not None and dep_op.op_type != OpType.DELETE:
                        adjacency[dep].add(ref)

            # Anything touching a live dependent precedes deleting its dependency
            current = live.get(ref)
            if current is None:
                continue
            for dep in current.depends_on:
                dep_op = by_ref.get(dep)
                if dep_op is not None and dep_op.op_type == OpType.DELETE:
                    adjacency[ref].add(dep)
        return adjacency

    def _topological_sort(
        self,
        by_ref: dict[EntityRef, Operation],
        adjacency: dict[EntityRef, set[EntityRef]],
    ) -> list[Operation]:
        """Kahn's algorithm with a deterministic tie-break."""
        indegree = {ref: 0 for ref in by_ref}
        for targets in adjacency.values():
            for target in targets:
                indegree[target] += 1

        ready = [(_tie_break(by_ref[ref]), ref) for ref, deg in indegree.items() if deg == 0]
        heapq.heapify(ready)
        ordered: list[Operation] = []
        while ready:
            _, ref = heapq.heappop(ready)
            ordered.append(by_ref[ref])
            for target in adjacency[ref]:
                indegree[target] -= 1
                if indegree[target] == 0:
                    heapq.heappush(ready, (_tie_break(by_ref[target]), target))

        if len(ordered) < len(by_ref):
            remaining = {ref for ref, deg in indegree.items() if deg > 0}
            raise DependencyCycle(self._find_cycle(remaining, adjacency) or sorted(remaining))
        return ordered

    @staticmethod
    def _find_cycle(
        nodes: set[EntityRef],
        adjacency: dict[EntityRef, set[EntityRef]],
    ) -> Optional[list[EntityRef]]:
        """Return one cycle as [a, b, ..., a], walking from the smallest node."""
        visiting: list[EntityRef] = []
        on_path: set[EntityRef] = set()
        done: set[EntityRef] = set()

        def visit(ref: EntityRef) -> Optional[list[EntityRef]]:
            visiting.append(ref)
            on_path.add(ref)
            for target in sorted(adjacency[ref] & nodes, key=EntityRef.sort_key):
                if target in on_path:
                    return visiting[visiting.index(target):] + [target]
                if target not in done:
                    found = visit(target)
                    if found:
                        return found
            visiting.pop()
            on_path.discard(ref)
            done.add(ref)
            return None

        for start in sorted(nodes, key=EntityRef.sort_key):
            if start not in done:
                found = visit(start)
                if found:
                    return found
        return None
