"""Parser for desired configuration.

Converts a raw dict (as loaded from YAML) into a validated DesiredConfig.
Every problem found is collected; a ValidationError lists all of them.
"""
import hashlib
import json
import re
from typing import Any, Iterable, Optional

from ..config.schema import (
    ConfigEntity,
    ConfigSnapshot,
    EntityKind,
    EntityRef,
    canonical_prefix,
    make_entity,
)
from ..errors import ValidationError
from .schema import DesiredConfig
from .validator import ConfigValidator

# Top-level section -> entity kind
SECTIONS = {
    "vlans": EntityKind.VLAN,
    "interfaces": EntityKind.INTERFACE,
    "vlan_ports": EntityKind.VLAN_PORT,
    "poe": EntityKind.POE,
    "acls": EntityKind.ACL,
    "acl_rules": EntityKind.ACL_RULE,
    "routes": EntityKind.STATIC_ROUTE,
}

# Sections whose keys are port names and may be ranges
PORT_SECTIONS = {"interfaces", "poe"}

ACTIONS = ("ensure", "absent")

TOP_LEVEL_KEYS = set(SECTIONS) | {
    "mode", "kinds", "entities", "devices", "checksum", "version", "description",
}

PORT_RANGE = re.compile(r"^(?P<prefix>.*?)(?P<start>\d+)-(?P=prefix)?(?P<end>\d+)$")


def expand_ports(spec: Any) -> list[str]:
    """Expand port specs, handling ranges and comma lists.

    Examples:
        "1-4" -> ["1", "2", "3", "4"]
        "A1-A3" -> ["A1", "A2", "A3"]
        "1/1-1/2" -> ["1/1", "1/2"]
        "1,3,5" -> ["1", "3", "5"]
        [5, "7-8"] -> ["5", "7", "8"]

    Raises:
        ValueError: If a range runs backwards
    """
    if isinstance(spec, (list, tuple)):
        items = [str(s) for s in spec]
    else:
        items = str(spec).split(",")

    ports = []
    for item in (i.strip() for i in items):
        if not item:
            continue
        match = PORT_RANGE.match(item)
        if not match:
            ports.append(item)
            continue
        prefix = match.group("prefix")
        start, end = int(match.group("start")), int(match.group("end"))
        if end < start:
            raise ValueError(f"Invalid port range '{item}': end before start")
        ports.extend(f"{prefix}{n}" for n in range(start, end + 1))
    return ports


def compute_checksum(config: dict[str, Any]) -> str:
    """
    Compute SHA256 checksum of a config dict.

    Useful for integrity verification.
    """
    # Remove existing checksum field for computation
    config_copy = {k: v for k, v in config.items() if k != "checksum"}

    # Serialize deterministically
    config_str = json.dumps(config_copy, sort_keys=True, separators=(",", ":"), default=str)

    return f"sha256:{hashlib.sha256(config_str.encode()).hexdigest()[:16]}"


def resolve_for_device(config: dict[str, Any], device_id: str) -> dict[str, Any]:
    """Merge the per-device overlay (`devices: {id: {...}}`) over the shared sections."""
    overlay = (config.get("devices") or {}).get(device_id) or {}
    merged = {k: v for k, v in config.items() if k != "devices"}
    for key, value in overlay.items():
        if key in SECTIONS and isinstance(value, dict):
            section = dict(merged.get(key) or {})
            section.update(value)
            merged[key] = section
        elif key == "entities" and isinstance(value, list):
            merged[key] = list(merged.get(key) or []) + value
        else:
            merged[key] = value
    return merged


class _Collector:
    """Accumulates entities, absent refs and errors while parsing."""

    def __init__(self):
        self.entities: dict[EntityRef, ConfigEntity] = {}
        self.absent: set[EntityRef] = set()
        self.errors: list[str] = []

    def add(self, entity: ConfigEntity, where: str) -> None:
        existing = self.entities.get(entity.ref)
        if existing is None:
            self.entities[entity.ref] = entity
        elif entity.kind == EntityKind.VLAN_PORT and existing.properties != entity.properties:
            vlan, _, port = entity.identifier.partition("-")
            self.errors.append(f"Port {port} in VLAN {vlan} cannot be both tagged and untagged")
        else:
            self.errors.append(f"{entity.ref} declared more than once ({where})")

    def mark_absent(self, ref: EntityRef) -> None:
        self.absent.add(ref)


class ConfigParser:
    """Parse desired configuration from dict/YAML format."""

    def __init__(self, device_type: Optional[str] = None):
        """
        Initialize parser.

        Args:
            device_type: Optional device type for port name validation
        """
        self.validator = ConfigValidator(device_type)

    def parse(self, config: dict[str, Any], device_id: str) -> DesiredConfig:
        """
        Parse and validate a configuration dict for one device.

        Args:
            config: Dict with mode, kinds, vlans, interfaces, ... sections
            device_id: Device the configuration is meant for

        Returns:
            DesiredConfig with the desired snapshot

        Raises:
            ValidationError: Listing every violated invariant
        """
        if not isinstance(config, dict):
            raise ValidationError([f"Configuration must be a mapping, got {type(config).__name__}"])

        checksum = config.get("checksum")
        errors: list[str] = []
        if checksum and checksum != compute_checksum(config):
            errors.append(f"Checksum mismatch: expected {compute_checksum(config)}, got {checksum}")

        raw = resolve_for_device(config, device_id)
        collector = _Collector()

        for key in raw:
            if key not in TOP_LEVEL_KEYS:
                errors.append(f"Unknown section '{key}'")

        mode = raw.get("mode", "patch")
        if mode not in ("full", "patch"):
            errors.append(f"Invalid mode: {mode}. Must be 'full' or 'patch'")
            mode = "patch"

        for section, kind in SECTIONS.items():
            entries = raw.get(section)
            if entries is None:
                continue
            if not isinstance(entries, dict):
                errors.append(f"Section '{section}' must be a mapping")
                continue
            for key, entry in entries.items():
                self._parse_section_entry(section, kind, key, entry, collector)

        generic = raw.get("entities") or []
        if not isinstance(generic, list):
            errors.append("Section 'entities' must be a list")
            generic = []
        for index, entry in enumerate(generic):
            self._parse_generic_entry(index, entry, collector)

        for ref in sorted(collector.absent & set(collector.entities)):
            collector.errors.append(f"{ref} is declared both present and absent")

        kinds = self._parse_kinds(raw.get("kinds"), collector, errors)

        errors.extend(collector.errors)
        snapshot = ConfigSnapshot(
            device_id=device_id,
            origin="desired",
            entities=collector.entities,
        )
        desired = DesiredConfig(
            device_id=device_id,
            snapshot=snapshot,
            mode=mode,
            kinds=kinds,
            absent=frozenset(collector.absent),
            checksum=checksum or compute_checksum(config),
        )

        result = self.validator.validate(desired)
        errors.extend(result.errors)
        if errors:
            raise ValidationError(errors, result.warnings)

        return DesiredConfig(
            device_id=desired.device_id,
            snapshot=desired.snapshot,
            mode=desired.mode,
            kinds=desired.kinds,
            absent=desired.absent,
            warnings=tuple(result.warnings),
            checksum=desired.checksum,
        )

    def _parse_kinds(
        self,
        kinds: Any,
        collector: _Collector,
        errors: list[str],
    ) -> frozenset[EntityKind]:
        """Kinds under management: explicit list, else the kinds declared."""
        declared = {ref.kind for ref in collector.entities} | {ref.kind for ref in collector.absent}
        if kinds is None:
            return frozenset(declared)

        if isinstance(kinds, str):
            kinds = [kinds]
        elif not isinstance(kinds, list):
            errors.append(f"'kinds' must be a list of kinds, got {type(kinds).__name__}")
            return frozenset(declared)
        managed = set()
        for value in kinds:
            try:
                managed.add(EntityKind(value))
            except ValueError:
                errors.append(
                    f"Unknown kind '{value}'. Valid: {', '.join(k.value for k in EntityKind)}"
                )
        for kind in sorted(declared - managed, key=lambda k: k.value):
            errors.append(f"Entities of kind '{kind.value}' are declared but not in 'kinds'")
        return frozenset(managed)

    def _split_entry(
        self,
        where: str,
        entry: Any,
        collector: _Collector,
    ) -> Optional[tuple[str, list[EntityRef], dict[str, Any]]]:
        """Split an entry into (action, explicit dependencies, properties)."""
        if entry is None:
            entry = {}
        if not isinstance(entry, dict):
            collector.errors.append(f"{where}: entry must be a mapping")
            return None

        props = dict(entry)
        action = props.pop("action", "ensure")
        if action not in ACTIONS:
            collector.errors.append(
                f"{where}: invalid action '{action}'. Must be 'ensure' or 'absent'"
            )
            return None

        raw_deps = props.pop("depends_on", None) or []
        if isinstance(raw_deps, str):
            raw_deps = [raw_deps]
        elif not isinstance(raw_deps, list):
            collector.errors.append(
                f"{where}: depends_on must be a list of references, got {type(raw_deps).__name__}"
            )
            return None

        deps = []
        for dep in raw_deps:
            try:
                deps.append(EntityRef.parse(dep))
            except ValueError as e:
                collector.errors.append(f"{where}: {e}")
        return action, deps, props

    def _parse_section_entry(
        self,
        section: str,
        kind: EntityKind,
        key: Any,
        entry: Any,
        collector: _Collector,
    ) -> None:
        where = f"{section}.{key}"
        split = self._split_entry(where, entry, collector)
        if split is None:
            return
        action, deps, props = split

        if section in PORT_SECTIONS:
            try:
                identifiers = expand_ports(key)
            except ValueError as e:
                collector.errors.append(f"{where}: {e}")
                return
        else:
            identifiers = [str(key)]

        memberships = self._pop_memberships(section, key, props, collector)

        for identifier in identifiers:
            if action == "absent":
                collector.mark_absent(EntityRef(kind, identifier))
                continue

            for vlan, mode, ports in memberships:
                # Membership keys on an interface entry apply to that port
                for port in ports if section == "vlans" else [identifier]:
                    vlan_id = identifier if section == "vlans" else vlan
                    self._add(
                        EntityKind.VLAN_PORT, f"{vlan_id}-{port}", {"mode": mode}, [],
                        f"{where}", collector,
                    )

            # An interface entry that only sets memberships leaves the port alone
            if section == "interfaces" and not props and memberships:
                continue
            self._add(kind, identifier, props, deps, where, collector)

    def _pop_memberships(
        self,
        section: str,
        key: Any,
        props: dict[str, Any],
        collector: _Collector,
    ) -> list[tuple[Any, str, list[str]]]:
        """Extract VLAN membership shorthands as (vlan, mode, ports) tuples."""
        where = f"{section}.{key}"
        memberships: list[tuple[Any, str, list[str]]] = []
        try:
            if section == "vlans":
                for field_, mode in (("untagged_ports", "untagged"), ("tagged_ports", "tagged")):
                    if field_ in props:
                        memberships.append((key, mode, expand_ports(props.pop(field_) or [])))
            elif section == "interfaces":
                untagged = props.pop("untagged_vlan", None)
                tagged = props.pop("tagged_vlans", None) or []
                if untagged is not None:
                    memberships.append((untagged, "untagged", []))
                if isinstance(tagged, (str, int)):
                    tagged = [tagged]
                memberships.extend((vlan, "tagged", []) for vlan in tagged)
        except ValueError as e:
            collector.errors.append(f"{where}: {e}")
        return memberships

    def _parse_generic_entry(self, index: int, entry: Any, collector: _Collector) -> None:
        where = f"entities[{index}]"
        if not isinstance(entry, dict):
            collector.errors.append(f"{where}: entry must be a mapping")
            return
        try:
            kind = EntityKind(entry.get("kind"))
        except ValueError:
            collector.errors.append(f"{where}: unknown kind '{entry.get('kind')}'")
            return
        identifier = entry.get("identifier")
        if identifier is None:
            collector.errors.append(f"{where}: missing identifier")
            return

        properties = entry.get("properties") or {}
        if not isinstance(properties, dict):
            collector.errors.append(f"{where}: properties must be a mapping")
            return
        body = dict(properties)
        for extra in ("action", "depends_on"):
            if extra in entry:
                body[extra] = entry[extra]
        split = self._split_entry(where, body, collector)
        if split is None:
            return
        action, deps, props = split
        if action == "absent":
            collector.mark_absent(EntityRef(kind, str(identifier)))
        else:
            self._add(kind, str(identifier), props, deps, where, collector)

    def _add(
        self,
        kind: EntityKind,
        identifier: str,
        props: dict[str, Any],
        deps: Iterable[EntityRef],
        where: str,
        collector: _Collector,
    ) -> None:
        if kind == EntityKind.ACL_RULE:
            for side in ("source", "destination"):
                value = props.get(side)
                if isinstance(value, str):
                    try:
                        props[side] = canonical_prefix(value)
                    except ValueError:
                        # Reported by the property check
                        pass
        collector.add(make_entity(kind, identifier, props, deps), where)
