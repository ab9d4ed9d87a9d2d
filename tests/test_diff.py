"""Tests for the diff engine."""
import pytest

from arc.config.schema import ConfigEntity, ConfigSnapshot, EntityKind, EntityRef, make_entity
from arc.config_engine import DiffEngine, OpType, scope_live, summarize_diff
from arc.devices import MockDevice


def snapshot(origin, *entities):
    return ConfigSnapshot.from_entities("sw1", origin, entities)


class TestDiffEngine:
    """Tests for DiffEngine.calculate."""

    def test_create(self):
        desired = snapshot("desired", make_entity(EntityKind.VLAN, "10", {"name": "Users"}))
        ops = DiffEngine().calculate(desired, snapshot("live"))
        assert len(ops) == 1
        assert ops[0].op_type == OpType.CREATE
        assert ops[0].ref == EntityRef(EntityKind.VLAN, "10")
        assert dict(ops[0].changes) == {"name": "Users", "voice": False, "jumbo": False}

    def test_update_carries_only_changed_keys(self):
        desired = snapshot("desired", make_entity(EntityKind.VLAN, "10", {"name": "Users", "jumbo": True}))
        live = snapshot("live", make_entity(EntityKind.VLAN, "10", {"name": "Old", "jumbo": True}))

        ops = DiffEngine().calculate(desired, live)

        assert len(ops) == 1
        assert ops[0].op_type == OpType.UPDATE
        assert dict(ops[0].changes) == {"name": "Users"}
        assert ops[0].previous.properties["name"] == "Old"

    def test_changed_keys_in_schema_order(self):
        desired = snapshot("desired", make_entity(EntityKind.VLAN, "10", {"jumbo": True, "name": "a"}))
        live = snapshot("live", make_entity(EntityKind.VLAN, "10"))
        ops = DiffEngine().calculate(desired, live)
        assert list(ops[0].changes) == ["name", "jumbo"]

    def test_delete(self):
        live = snapshot("live", make_entity(EntityKind.VLAN, "10"))
        ops = DiffEngine().calculate(snapshot("desired"), live)
        assert [(op.op_type, str(op.ref)) for op in ops] == [(OpType.DELETE, "vlan:10")]

    def test_identical_snapshots_produce_no_operations(self):
        entities = [
            make_entity(EntityKind.VLAN, "10", {"name": "Users"}),
            make_entity(EntityKind.VLAN_PORT, "10-1"),
            make_entity(EntityKind.POE, "1", {"priority": "high"}),
        ]
        ops = DiffEngine().calculate(snapshot("desired", *entities), snapshot("live", *entities))
        assert ops == []

    def test_property_order_does_not_matter(self):
        a = ConfigEntity(kind=EntityKind.VLAN, identifier="10",
                         properties={"name": "a", "voice": False, "jumbo": False})
        b = ConfigEntity(kind=EntityKind.VLAN, identifier="10",
                         properties={"jumbo": False, "voice": False, "name": "a"})
        assert DiffEngine().calculate(snapshot("desired", a), snapshot("live", b)) == []

    def test_same_identifier_different_kind_is_independent(self):
        desired = snapshot("desired", make_entity(EntityKind.ACL, "5"))
        live = snapshot("live", make_entity(EntityKind.VLAN, "5"))
        ops = DiffEngine().calculate(desired, live)
        assert {(op.op_type, str(op.ref)) for op in ops} == {
            (OpType.DELETE, "vlan:5"),
            (OpType.CREATE, "acl:5"),
        }

    def test_undeclared_port_reset_to_defaults(self):
        """Ports cannot be removed: only non-default settings are reverted."""
        live = snapshot("live", make_entity(EntityKind.INTERFACE, "2", {"name": "cam", "enabled": False}))
        ops = DiffEngine().calculate(snapshot("desired"), live)

        assert len(ops) == 1
        assert ops[0].op_type == OpType.UPDATE
        assert dict(ops[0].changes) == {"name": "", "enabled": True}
        assert ops[0].previous.properties["name"] == "cam"

    def test_undeclared_port_at_defaults_left_alone(self):
        live = snapshot(
            "live",
            make_entity(EntityKind.INTERFACE, "2"),
            make_entity(EntityKind.POE, "2"),
        )
        assert DiffEngine().calculate(snapshot("desired"), live) == []

    def test_undeclared_poe_resets_only_changed_keys(self):
        live = snapshot("live", make_entity(EntityKind.POE, "3", {"priority": "critical"}))
        ops = DiffEngine().calculate(snapshot("desired"), live)
        assert [(op.op_type, dict(op.changes)) for op in ops] == [(OpType.UPDATE, {"priority": "low"})]

    @pytest.mark.asyncio
    async def test_applying_diff_converges(self):
        """Applying the operations to live state leaves nothing to do."""
        live_entities = [
            make_entity(EntityKind.VLAN, "10", {"name": "Old"}),
            make_entity(EntityKind.VLAN, "30"),
            make_entity(EntityKind.VLAN_PORT, "30-2", {"mode": "tagged"}),
        ]
        desired = snapshot(
            "desired",
            make_entity(EntityKind.VLAN, "10", {"name": "Users"}),
            make_entity(EntityKind.VLAN, "20"),
            make_entity(EntityKind.VLAN_PORT, "20-1"),
        )
        device = MockDevice("sw1", entities=live_entities)

        for op in DiffEngine().calculate(desired, snapshot("live", *live_entities)):
            ok, _ = await device.apply_operation(op)
            assert ok

        after = snapshot("live", *device.state.values())
        assert DiffEngine().calculate(desired, after) == []


class TestScopeLive:
    """Tests for restricting live state to what is managed."""

    @pytest.fixture
    def live(self):
        return snapshot(
            "live",
            make_entity(EntityKind.VLAN, "10"),
            make_entity(EntityKind.VLAN, "20"),
            make_entity(EntityKind.POE, "1"),
        )

    def test_patch_mode_keeps_declared(self, live):
        desired = snapshot("desired", make_entity(EntityKind.VLAN, "10"))
        scoped = scope_live(live, desired, "patch", [EntityKind.VLAN])
        assert scoped.refs() == {EntityRef(EntityKind.VLAN, "10")}

    def test_patch_mode_includes_absent(self, live):
        desired = snapshot("desired")
        absent = [EntityRef(EntityKind.VLAN, "20")]
        scoped = scope_live(live, desired, "patch", [EntityKind.VLAN], absent)
        assert scoped.refs() == {EntityRef(EntityKind.VLAN, "20")}

    def test_full_mode_keeps_managed_kinds(self, live):
        desired = snapshot("desired", make_entity(EntityKind.VLAN, "10"))
        scoped = scope_live(live, desired, "full", [EntityKind.VLAN])
        assert scoped.refs() == {EntityRef(EntityKind.VLAN, "10"), EntityRef(EntityKind.VLAN, "20")}

    def test_full_mode_deletes_undeclared(self, live):
        desired = snapshot("desired", make_entity(EntityKind.VLAN, "10"))
        scoped = scope_live(live, desired, "full", [EntityKind.VLAN])
        ops = DiffEngine().calculate(desired, scoped)
        assert [(op.op_type, str(op.ref)) for op in ops] == [(OpType.DELETE, "vlan:20")]


class TestSummarizeDiff:
    """Tests for summarize_diff."""

    def test_no_changes(self):
        assert "No changes needed" in summarize_diff([])

    def test_summary_lines(self):
        desired = snapshot(
            "desired",
            make_entity(EntityKind.VLAN, "10", {"name": "Users"}),
            make_entity(EntityKind.VLAN, "20"),
        )
        live = snapshot(
            "live",
            make_entity(EntityKind.VLAN, "10", {"name": "Old"}),
            make_entity(EntityKind.VLAN, "30"),
        )

        summary = summarize_diff(DiffEngine().calculate(desired, live))

        assert "Changes to apply (3 total)" in summary
        assert "[~] Modify vlan:10" in summary
        assert "name: Old -> Users" in summary
        assert "[+] Create vlan:20" in summary
        assert "[-] Delete vlan:30" in summary
