"""Tests for desired configuration parsing and validation."""
import pytest

from arc.config.schema import EntityKind, EntityRef
from arc.config_engine import ConfigParser, ConfigValidator, compute_checksum, expand_ports
from arc.errors import ValidationError


def ref(kind: str, identifier: str) -> EntityRef:
    return EntityRef(EntityKind(kind), identifier)


class TestExpandPorts:
    """Tests for port range expansion."""

    def test_numeric_range(self):
        assert expand_ports("1-4") == ["1", "2", "3", "4"]

    def test_lettered_range(self):
        assert expand_ports("A1-A3") == ["A1", "A2", "A3"]

    def test_stacked_range(self):
        assert expand_ports("1/1-1/2") == ["1/1", "1/2"]

    def test_comma_list(self):
        assert expand_ports("1,3,5") == ["1", "3", "5"]

    def test_list_of_specs(self):
        assert expand_ports([5, "7-8"]) == ["5", "7", "8"]

    def test_single_port(self):
        assert expand_ports("A1") == ["A1"]

    def test_backwards_range(self):
        with pytest.raises(ValueError, match="end before start"):
            expand_ports("4-1")


class TestConfigParser:
    """Tests for the ConfigParser."""

    def test_parse_empty_config(self):
        """An empty config manages nothing."""
        desired = ConfigParser().parse({}, "core-1")
        assert desired.device_id == "core-1"
        assert desired.mode == "patch"
        assert len(desired.snapshot) == 0
        assert desired.kinds == frozenset()

    def test_parse_vlan_with_ports(self):
        """Port lists on a VLAN become vlan-port memberships."""
        config = {
            "vlans": {
                100: {
                    "name": "Production",
                    "untagged_ports": ["1-2"],
                    "tagged_ports": ["24"],
                }
            }
        }

        desired = ConfigParser("aruba").parse(config, "core-1")

        snapshot = desired.snapshot
        assert snapshot.get(ref("vlan", "100")).properties["name"] == "Production"
        assert snapshot.get(ref("vlan-port", "100-1")).properties["mode"] == "untagged"
        assert snapshot.get(ref("vlan-port", "100-2")).properties["mode"] == "untagged"
        assert snapshot.get(ref("vlan-port", "100-24")).properties["mode"] == "tagged"
        assert desired.kinds == {EntityKind.VLAN, EntityKind.VLAN_PORT}
        assert desired.warnings == ()

    def test_parse_interface_memberships(self):
        """An interface entry with only memberships does not manage the port itself."""
        config = {
            "vlans": {10: {}, 20: {}},
            "interfaces": {"1-2": {"untagged_vlan": 10, "tagged_vlans": [20]}},
        }

        desired = ConfigParser("aruba").parse(config, "core-1")

        assert desired.snapshot.refs() == {
            ref("vlan", "10"), ref("vlan", "20"),
            ref("vlan-port", "10-1"), ref("vlan-port", "10-2"),
            ref("vlan-port", "20-1"), ref("vlan-port", "20-2"),
        }
        assert desired.snapshot.get(ref("vlan-port", "20-1")).properties["mode"] == "tagged"

    def test_parse_interface_with_properties(self):
        config = {
            "vlans": {10: {}},
            "interfaces": {"5": {"name": "printer", "untagged_vlan": 10}},
        }

        desired = ConfigParser("aruba").parse(config, "core-1")

        port = desired.snapshot.get(ref("interface", "5"))
        assert dict(port.properties) == {"name": "printer", "enabled": True}
        assert ref("vlan-port", "10-5") in desired.snapshot

    def test_parse_absent(self):
        """absent entries are collected, not added to the snapshot."""
        desired = ConfigParser().parse({"vlans": {20: {"action": "absent"}}}, "core-1")
        assert desired.absent == {ref("vlan", "20")}
        assert len(desired.snapshot) == 0
        assert desired.kinds == {EntityKind.VLAN}

    def test_parse_generic_entities(self):
        config = {
            "entities": [
                {"kind": "vlan", "identifier": 30, "properties": {"name": "Voice", "voice": True}},
            ]
        }
        desired = ConfigParser().parse(config, "core-1")
        assert desired.snapshot.get(ref("vlan", "30")).properties["voice"] is True

    def test_parse_full_mode_with_kinds(self):
        config = {"mode": "full", "kinds": ["vlan", "poe"], "vlans": {10: {"untagged_ports": []}}}
        desired = ConfigParser().parse(config, "core-1")
        assert desired.mode == "full"
        assert desired.kinds == {EntityKind.VLAN, EntityKind.POE}

    def test_acl_rule_prefixes_canonicalized(self):
        config = {
            "acls": {"ops": {"type": "extended"}},
            "acl_rules": {"ops/10": {"source": "10.0.0.5/24", "destination": "10.1.1.1"}},
        }
        desired = ConfigParser().parse(config, "core-1")
        rule = desired.snapshot.get(ref("acl-rule", "ops/10"))
        assert rule.properties["source"] == "10.0.0.0/24"
        assert rule.properties["destination"] == "10.1.1.1/32"
        assert rule.depends_on == {ref("acl", "ops")}

    def test_route_depends_on_vlan(self):
        config = {
            "vlans": {30: {}},
            "routes": {"10.9.0.0/16": {"vlan": 30}},
        }
        desired = ConfigParser().parse(config, "core-1")
        route = desired.snapshot.get(ref("static-route", "10.9.0.0/16"))
        assert route.depends_on == {ref("vlan", "30")}

    def test_device_overlay(self):
        """Entries under devices.<id> override shared sections for that device."""
        config = {
            "vlans": {10: {"name": "shared"}},
            "devices": {"core-1": {"vlans": {10: {"name": "core"}}}},
        }
        parser = ConfigParser()
        assert parser.parse(config, "core-1").snapshot.get(ref("vlan", "10")).properties["name"] == "core"
        assert parser.parse(config, "edge-1").snapshot.get(ref("vlan", "10")).properties["name"] == "shared"

    def test_checksum_verified(self):
        config = {"vlans": {10: {"name": "Users"}}}
        config["checksum"] = compute_checksum(config)
        desired = ConfigParser().parse(config, "core-1")
        assert desired.checksum == config["checksum"]

    def test_checksum_mismatch(self):
        config = {"vlans": {10: {}}, "checksum": "sha256:0000000000000000"}
        with pytest.raises(ValidationError, match="Checksum mismatch"):
            ConfigParser().parse(config, "core-1")

    def test_empty_vlan_warning(self):
        desired = ConfigParser().parse({"vlans": {10: {"name": "Users"}}}, "core-1")
        assert "VLAN 10 has no ports assigned" in desired.warnings


class TestComputeChecksum:
    """Tests for config checksums."""

    def test_deterministic(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})

    def test_ignores_checksum_field(self):
        config = {"vlans": {10: {}}}
        assert compute_checksum(config) == compute_checksum({**config, "checksum": "sha256:x"})

    def test_format(self):
        checksum = compute_checksum({})
        assert checksum.startswith("sha256:")
        assert len(checksum) == len("sha256:") + 16


class TestValidation:
    """Tests for invariants enforced while parsing."""

    def parse_errors(self, config, device_type="aruba"):
        with pytest.raises(ValidationError) as exc_info:
            ConfigParser(device_type).parse(config, "core-1")
        return exc_info.value.errors

    def test_collects_every_error(self):
        """All violations are reported, not just the first."""
        errors = self.parse_errors({
            "mode": "sideways",
            "vlans": {1: {}, 5000: {}, 10: {"name": 5}},
        })
        assert len(errors) == 4
        assert any("Invalid mode" in e for e in errors)
        assert any("default VLAN" in e for e in errors)
        assert any("Invalid VLAN ID 5000" in e for e in errors)
        assert any("vlan:10: name must be of type str" in e for e in errors)

    def test_dangling_dependency(self):
        errors = self.parse_errors({"vlan_ports": {"10-1": {"mode": "untagged"}}})
        assert errors == ["vlan-port:10-1 depends on vlan:10, which is not declared"]

    def test_untagged_in_two_vlans(self):
        errors = self.parse_errors({
            "vlans": {10: {"untagged_ports": ["1"]}, 20: {"untagged_ports": ["1"]}},
        })
        assert "Port 1 assigned untagged to both VLAN 10 and VLAN 20" in errors

    def test_tagged_and_untagged_in_same_vlan(self):
        errors = self.parse_errors({
            "vlans": {10: {"untagged_ports": ["1"], "tagged_ports": ["1"]}},
        })
        assert "Port 1 in VLAN 10 cannot be both tagged and untagged" in errors

    def test_invalid_port_name(self):
        errors = self.parse_errors({"interfaces": {"lan1": {"enabled": False}}})
        assert "Invalid port name 'lan1' in interface:lan1" in errors

    def test_port_name_pattern_per_device_type(self):
        """The mock device accepts free-form port names."""
        desired = ConfigParser("mock").parse({"interfaces": {"lan1": {"enabled": False}}}, "lab")
        assert ref("interface", "lan1") in desired.snapshot

    def test_poe_value_without_power(self):
        errors = self.parse_errors({"poe": {"1": {"allocation": "value"}}})
        assert "poe:1: allocated_power is required when allocation is 'value'" in errors

    def test_standard_acl_rule_restrictions(self):
        errors = self.parse_errors({
            "acls": {"mgmt": {"type": "standard"}},
            "acl_rules": {"mgmt/10": {"protocol": "tcp", "destination": "10.0.0.0/8"}},
        })
        assert "acl-rule:mgmt/10: standard ACL rules only match protocol 'ip'" in errors
        assert "acl-rule:mgmt/10: standard ACL rules cannot match a destination" in errors

    def test_cannot_delete_default_vlan(self):
        errors = self.parse_errors({"vlans": {1: {"action": "absent"}}})
        assert errors == ["Cannot delete VLAN 1: Default VLAN"]

    def test_present_and_absent(self):
        errors = self.parse_errors({
            "vlans": {10: {}},
            "entities": [{"kind": "vlan", "identifier": "10", "action": "absent"}],
        })
        assert "vlan:10 is declared both present and absent" in errors

    def test_declared_twice(self):
        errors = self.parse_errors({
            "vlans": {10: {}},
            "entities": [{"kind": "vlan", "identifier": "10"}],
        })
        assert "vlan:10 declared more than once (entities[0])" in errors

    def test_kinds_must_cover_declared(self):
        errors = self.parse_errors({"kinds": ["vlan"], "poe": {"1": {}}})
        assert "Entities of kind 'poe' are declared but not in 'kinds'" in errors

    def test_unknown_kind(self):
        errors = self.parse_errors({"kinds": ["vlan", "lldp"]})
        assert any("Unknown kind 'lldp'" in e for e in errors)

    def test_unknown_section(self):
        errors = self.parse_errors({"vlanz": {}})
        assert errors == ["Unknown section 'vlanz'"]

    def test_invalid_action(self):
        errors = self.parse_errors({"vlans": {10: {"action": "remove"}}})
        assert any("invalid action 'remove'" in e for e in errors)

    def test_bad_dependency_reference(self):
        errors = self.parse_errors({"vlans": {10: {"depends_on": ["nonsense"]}}})
        assert any("vlans.10" in e and "Invalid entity reference" in e for e in errors)

    def test_not_a_mapping(self):
        with pytest.raises(ValidationError, match="must be a mapping"):
            ConfigParser().parse(["vlan 10"], "core-1")

    def test_mixed_type_list_property(self):
        errors = self.parse_errors({"vlans": {10: {"name": [1, "a"]}}})
        assert any("vlan:10: name must be of type str" in e for e in errors)

    def test_depends_on_not_a_list(self):
        errors = self.parse_errors({"vlans": {10: {"depends_on": 5}}})
        assert errors == ["vlans.10: depends_on must be a list of references, got int"]

    def test_depends_on_single_reference(self):
        desired = ConfigParser().parse({"vlans": {10: {}, 20: {"depends_on": "vlan:10"}}}, "core-1")
        assert ref("vlan", "10") in desired.snapshot.get(ref("vlan", "20")).depends_on

    def test_kinds_not_a_list(self):
        errors = self.parse_errors({"kinds": 5, "vlans": {10: {}}})
        assert "'kinds' must be a list of kinds, got int" in errors

    def test_generic_properties_not_a_mapping(self):
        errors = self.parse_errors({"entities": [{"kind": "vlan", "identifier": 10, "properties": [1]}]})
        assert errors == ["entities[0]: properties must be a mapping"]


class TestConfigValidator:
    """Tests for the validator used on its own."""

    def test_large_change_warning(self):
        config = {"vlans": {vid: {"tagged_ports": ["1"]} for vid in range(10, 25)}}
        desired = ConfigParser().parse(config, "core-1")
        result = ConfigValidator().validate(desired)
        assert result.valid
        assert any("Large change set" in w for w in result.warnings)
