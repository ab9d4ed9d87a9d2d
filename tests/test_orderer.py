"""Tests for dependency ordering."""
import pytest

from arc.config.schema import ConfigSnapshot, EntityKind, EntityRef, make_entity
from arc.config_engine import DependencyOrderer, DiffEngine, Operation
from arc.errors import DependencyCycle, DependencyViolation


def snapshot(origin, *entities):
    return ConfigSnapshot.from_entities("sw1", origin, entities)


def order(desired, live):
    operations = DiffEngine().calculate(desired, live)
    return DependencyOrderer().order("sw1", operations, live)


class TestDependencyOrderer:
    """Tests for DependencyOrderer.order."""

    def test_create_vlan_before_membership(self):
        """desired = {VLAN 10, port 1 in VLAN 10}, live = {}."""
        desired = snapshot(
            "desired",
            make_entity(EntityKind.VLAN, "10"),
            make_entity(EntityKind.VLAN_PORT, "10-1"),
        )
        change_set = order(desired, snapshot("live"))
        assert [str(r) for r in change_set.refs()] == ["vlan:10", "vlan-port:10-1"]

    def test_create_order_holds_for_any_input_order(self):
        vlan = make_entity(EntityKind.VLAN, "10")
        member = make_entity(EntityKind.VLAN_PORT, "10-1")
        ops = [Operation.create(member), Operation.create(vlan)]
        change_set = DependencyOrderer().order("sw1", ops, snapshot("live"))
        assert [str(r) for r in change_set.refs()] == ["vlan:10", "vlan-port:10-1"]

    def test_delete_membership_before_vlan(self):
        """desired = {}, live = {VLAN 10, port 1 in VLAN 10}."""
        live = snapshot(
            "live",
            make_entity(EntityKind.VLAN, "10"),
            make_entity(EntityKind.VLAN_PORT, "10-1"),
        )
        change_set = order(snapshot("desired"), live)
        assert [str(r) for r in change_set.refs()] == ["vlan-port:10-1", "vlan:10"]
        assert all(op.op_type.value == "delete" for op in change_set)

    def test_route_repointed_before_vlan_deleted(self):
        live = snapshot(
            "live",
            make_entity(EntityKind.VLAN, "10"),
            make_entity(EntityKind.STATIC_ROUTE, "10.9.0.0/16", {"vlan": 10}),
        )
        desired = snapshot(
            "desired",
            make_entity(EntityKind.STATIC_ROUTE, "10.9.0.0/16", {"gateway": "10.0.0.1"}),
        )
        change_set = order(desired, live)
        assert [f"{op.op_type.value} {op.ref}" for op in change_set] == [
            "update static-route:10.9.0.0/16",
            "delete vlan:10",
        ]

    def test_route_vlan_created_first(self):
        desired = snapshot(
            "desired",
            make_entity(EntityKind.STATIC_ROUTE, "10.9.0.0/16", {"vlan": 30}),
            make_entity(EntityKind.VLAN, "30"),
        )
        change_set = order(desired, snapshot("live"))
        assert [str(r) for r in change_set.refs()] == ["vlan:30", "static-route:10.9.0.0/16"]

    def test_delete_of_referenced_entity_rejected(self):
        """A surviving dependent blocks deleting its dependency."""
        live = snapshot(
            "live",
            make_entity(EntityKind.VLAN, "10"),
            make_entity(EntityKind.VLAN_PORT, "10-1"),
        )
        operations = [Operation.delete(live.get(EntityRef(EntityKind.VLAN, "10")))]

        with pytest.raises(DependencyViolation) as exc_info:
            DependencyOrderer().order("sw1", operations, live)

        assert exc_info.value.violations == [
            "Cannot delete vlan:10: still referenced by vlan-port:10-1"
        ]

    def test_create_with_missing_dependency_rejected(self):
        operations = [Operation.create(make_entity(EntityKind.VLAN_PORT, "10-1"))]
        with pytest.raises(DependencyViolation, match="requires vlan:10, which will not exist"):
            DependencyOrderer().order("sw1", operations, snapshot("live"))

    def test_dependency_already_live(self):
        live = snapshot("live", make_entity(EntityKind.VLAN, "10"))
        operations = [Operation.create(make_entity(EntityKind.VLAN_PORT, "10-1"))]
        change_set = DependencyOrderer().order("sw1", operations, live)
        assert len(change_set) == 1

    def test_cycle_detected(self):
        a = make_entity(EntityKind.VLAN, "10", depends_on=[EntityRef(EntityKind.VLAN, "20")])
        b = make_entity(EntityKind.VLAN, "20", depends_on=[EntityRef(EntityKind.VLAN, "10")])

        with pytest.raises(DependencyCycle) as exc_info:
            DependencyOrderer().order("sw1", [Operation.create(a), Operation.create(b)], snapshot("live"))

        assert str(exc_info.value) == "Dependency cycle: vlan:10 -> vlan:20 -> vlan:10"

    def test_deterministic_tie_break(self):
        """Independent operations: creates, then updates, then deletes."""
        live = snapshot(
            "live",
            make_entity(EntityKind.VLAN, "5", {"name": "old"}),
            make_entity(EntityKind.VLAN, "20"),
        )
        desired = snapshot(
            "desired",
            make_entity(EntityKind.VLAN, "5", {"name": "new"}),
            make_entity(EntityKind.VLAN, "10"),
            make_entity(EntityKind.VLAN, "2"),
        )
        change_set = order(desired, live)
        assert [f"{op.op_type.value} {op.ref}" for op in change_set] == [
            "create vlan:2",
            "create vlan:10",
            "update vlan:5",
            "delete vlan:20",
        ]

    def test_empty(self):
        change_set = DependencyOrderer().order("sw1", [], snapshot("live"))
        assert change_set.empty

    def test_duplicate_operations_rejected(self):
        vlan = make_entity(EntityKind.VLAN, "10")
        with pytest.raises(ValueError, match="More than one operation"):
            DependencyOrderer().order(
                "sw1", [Operation.create(vlan), Operation.create(vlan)], snapshot("live")
            )
