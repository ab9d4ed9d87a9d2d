"""Pre-flight validation for desired configurations.

Catches logical errors before any switch communication.
"""
import re
from typing import Optional

from ..config.schema import (
    DEFAULT_VLAN,
    EntityKind,
    EntityRef,
    check_identifier,
    check_properties,
    split_acl_rule,
    split_vlan_port,
)
from .schema import DesiredConfig, ValidationResult


# Port name patterns by device type
PORT_PATTERNS = {
    "aruba": re.compile(r"^(\d+/)?[A-Z]?\d+$"),  # 1, 24, A1, 1/A1, 2/24
    "mock": re.compile(r"^[\w/.-]+$"),
}

# Protected VLANs that cannot be deleted
PROTECTED_VLANS = {
    DEFAULT_VLAN: "Default VLAN",
}

LARGE_CONFIG_THRESHOLD = 20
MANY_MEMBERSHIPS_THRESHOLD = 50


class ConfigValidator:
    """Validate desired configuration for logical errors before execution."""

    def __init__(self, device_type: Optional[str] = None):
        """
        Initialize validator.

        Args:
            device_type: Optional device type for port name validation
        """
        self.device_type = device_type

    def validate(self, desired: DesiredConfig) -> ValidationResult:
        """
        Validate a desired configuration.

        Performs pre-flight checks:
        - identifier format and uniqueness per kind
        - property types and ranges per kind schema
        - port name formats
        - dependency references resolve within the snapshot
        - untagged port conflicts
        - standard ACL rule restrictions

        Args:
            desired: The desired configuration to validate

        Returns:
            ValidationResult with valid flag, errors, and warnings
        """
        errors: list[str] = []
        warnings: list[str] = []

        self._validate_entities(desired, errors)
        self._validate_absent(desired, errors)
        self._check_references(desired, errors)
        self._check_port_conflicts(desired, errors)
        self._check_acl_rules(desired, errors)
        self._check_empty_vlans(desired, warnings)
        self._check_change_size(desired, warnings)

        return ValidationResult(
            valid=len(errors) == 0,
            errors=errors,
            warnings=warnings,
        )

    def _validate_entities(self, desired: DesiredConfig, errors: list[str]) -> None:
        for entity in sorted(desired.snapshot, key=lambda e: e.ref.sort_key()):
            error = check_identifier(entity.kind, entity.identifier)
            if error:
                errors.append(error)
                continue
            for problem in check_properties(entity.kind, entity.properties):
                errors.append(f"{entity.ref}: {problem}")
            port = self._port_of(entity.ref)
            if port is not None and not self._valid_port_name(port):
                errors.append(f"Invalid port name '{port}' in {entity.ref}")

    def _validate_absent(self, desired: DesiredConfig, errors: list[str]) -> None:
        for ref in sorted(desired.absent, key=EntityRef.sort_key):
            if ref.kind == EntityKind.VLAN and ref.identifier.isdigit() \
                    and int(ref.identifier) in PROTECTED_VLANS:
                errors.append(
                    f"Cannot delete VLAN {ref.identifier}: {PROTECTED_VLANS[int(ref.identifier)]}"
                )
                continue
            error = check_identifier(ref.kind, ref.identifier)
            if error:
                errors.append(error)

    def _check_references(self, desired: DesiredConfig, errors: list[str]) -> None:
        for ref, missing in desired.snapshot.dangling_references():
            errors.append(f"{ref} depends on {missing}, which is not declared")

    def _check_port_conflicts(self, desired: DesiredConfig, errors: list[str]) -> None:
        """A port can only be untagged in ONE VLAN."""
        untagged_assignments: dict[str, int] = {}
        memberships = sorted(
            desired.snapshot.of_kind(EntityKind.VLAN_PORT), key=lambda e: e.ref.sort_key()
        )
        for entity in memberships:
            if entity.properties.get("mode") != "untagged":
                continue
            try:
                vlan_id, port = split_vlan_port(entity.identifier)
            except ValueError:
                continue
            if port in untagged_assignments:
                errors.append(
                    f"Port {port} assigned untagged to both "
                    f"VLAN {untagged_assignments[port]} and VLAN {vlan_id}"
                )
            else:
                untagged_assignments[port] = vlan_id

    def _check_acl_rules(self, desired: DesiredConfig, errors: list[str]) -> None:
        """Standard ACLs match on source only."""
        for rule in desired.snapshot.of_kind(EntityKind.ACL_RULE):
            try:
                acl_name, _ = split_acl_rule(rule.identifier)
            except ValueError:
                continue
            acl = desired.snapshot.get(EntityRef(EntityKind.ACL, acl_name))
            if acl is None or acl.properties.get("type") != "standard":
                continue
            if rule.properties.get("protocol") != "ip":
                errors.append(f"{rule.ref}: standard ACL rules only match protocol 'ip'")
            if rule.properties.get("destination") != "any":
                errors.append(f"{rule.ref}: standard ACL rules cannot match a destination")

    def _check_empty_vlans(self, desired: DesiredConfig, warnings: list[str]) -> None:
        for vlan in sorted(desired.snapshot.of_kind(EntityKind.VLAN), key=lambda e: e.ref.sort_key()):
            if not desired.snapshot.dependents_of(vlan.ref):
                warnings.append(f"VLAN {vlan.identifier} has no ports assigned")

    def _check_change_size(self, desired: DesiredConfig, warnings: list[str]) -> None:
        """Warn about large change sets."""
        total_items = len(desired.snapshot) + len(desired.absent)
        if total_items > LARGE_CONFIG_THRESHOLD:
            warnings.append(
                f"Large change set ({total_items} items) - consider staging"
            )

        total_ports = len(desired.snapshot.of_kind(EntityKind.VLAN_PORT))
        if total_ports > MANY_MEMBERSHIPS_THRESHOLD:
            warnings.append(
                f"Many port changes ({total_ports} ports) - verify before applying"
            )

    @staticmethod
    def _port_of(ref: EntityRef) -> Optional[str]:
        if ref.kind in (EntityKind.INTERFACE, EntityKind.POE):
            return ref.identifier
        if ref.kind == EntityKind.VLAN_PORT:
            try:
                return split_vlan_port(ref.identifier)[1]
            except ValueError:
                return None
        return None

    def _valid_port_name(self, port: str) -> bool:
        """Check if port name is valid for the device type."""
        if not port:
            return False

        # If device type specified, use specific pattern
        if self.device_type and self.device_type in PORT_PATTERNS:
            return bool(PORT_PATTERNS[self.device_type].match(port))

        # Otherwise, accept any known pattern
        return any(
            pattern.match(port)
            for pattern in PORT_PATTERNS.values()
        )
